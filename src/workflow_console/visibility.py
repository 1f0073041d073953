from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .elements import UIElement
from .references import resolve_references
from .values import FieldValue, dump_value, raw_choice


def active_follow_up(element: UIElement, current_value: FieldValue | None) -> list[UIElement]:
    if not element.has_conditional_follow_ups:
        return []
    choice = raw_choice(current_value)
    if choice is None:
        return []
    for follow_up in element.conditional_follow_ups:
        # no coercion: True never matches "true"
        if type(follow_up.condition_value) is type(choice) and follow_up.condition_value == choice:
            return follow_up.elements
    return []


@dataclass(slots=True)
class FormEntry:
    element: UIElement
    depth: int
    value: FieldValue | None = None
    text: str | None = None
    dynamic_for: str | None = None
    children: list[FormEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "element": self.element.to_dict(),
            "depth": self.depth,
            "value": dump_value(self.value),
            "children": [child.to_dict() for child in self.children],
        }
        if self.text is not None:
            payload["text"] = self.text
        if self.dynamic_for is not None:
            payload["dynamicFor"] = self.dynamic_for
        return payload


def build_form(
    elements: list[UIElement],
    values: dict[str, FieldValue],
    dynamic: Mapping[str, list[UIElement]] | None = None,
    tab: str | None = None,
    resolve_text: bool = True,
) -> list[FormEntry]:
    dynamic = dynamic or {}

    def render(items: list[UIElement], depth: int, dynamic_for: str | None = None) -> list[FormEntry]:
        entries: list[FormEntry] = []
        for element in items:
            if element.type == "button":
                entries.extend(render(dynamic.get(element.id, []), depth, dynamic_for=element.id))
            entry = FormEntry(element=element, depth=depth, value=values.get(element.id), dynamic_for=dynamic_for)
            if element.type in {"text-block", "section-divider"}:
                entry.text = resolve_references(element.display_text, elements, values) if resolve_text else element.display_text
            entry.children = render(active_follow_up(element, entry.value), depth + 1)
            entries.append(entry)
        return entries

    roots = elements if tab is None else [element for element in elements if element.tab == tab]
    return render(roots, 0)
