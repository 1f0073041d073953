from __future__ import annotations

import re

from .elements import UIElement, walk
from .values import FieldValue, is_empty, value_text

REFERENCE_PATTERN = re.compile(r"#\{([^{}]*)\}")
QUERY_PATTERN = re.compile(r"^[A-Za-z0-9 ]*$")


def find_element_by_label(elements: list[UIElement], label: str, value_only: bool = False) -> UIElement | None:
    for element, _ in walk(elements):
        if value_only and not element.referenceable:
            continue
        if element.label == label:
            return element
    return None


def format_reference(element: UIElement, value: FieldValue | None) -> str:
    return value_text(value, element.type)


def resolve_references(text: str | None, elements: list[UIElement], values: dict[str, FieldValue]) -> str:
    if not text:
        return ""

    def replace(match: re.Match[str]) -> str:
        element = find_element_by_label(elements, match.group(1).strip(), value_only=True)
        if element is None:
            return ""
        return format_reference(element, values.get(element.id))

    return REFERENCE_PATTERN.sub(replace, text)


def referenced_labels(text: str | None) -> list[str]:
    return [label.strip() for label in REFERENCE_PATTERN.findall(text or "")]


def has_all_referenced_values(text: str | None, elements: list[UIElement], values: dict[str, FieldValue]) -> bool:
    for label in referenced_labels(text):
        element = find_element_by_label(elements, label, value_only=True)
        if element is None or is_empty(values.get(element.id)):
            return False
    return True


def render_map_description(text: str | None, elements: list[UIElement], values: dict[str, FieldValue]) -> str:
    """Map cards only show a description once every referenced field is filled in."""
    if not text:
        return ""
    if not has_all_referenced_values(text, elements, values):
        return ""
    return resolve_references(text, elements, values)


def get_suggestions(prefix: str, elements: list[UIElement], referenceable_only: bool = True) -> list[UIElement]:
    wanted = prefix.strip().lower()
    suggestions = []
    seen: set[str] = set()
    for element, _ in walk(elements):
        if referenceable_only and not element.referenceable:
            continue
        if not element.label or element.label in seen:
            continue
        if element.label.lower().startswith(wanted):
            seen.add(element.label)
            suggestions.append(element)
    return suggestions


def suggestion_query(text: str, cursor: int) -> str | None:
    before = text[:cursor]
    marker = before.rfind("#")
    if marker == -1:
        return None
    typed = before[marker + 1 :]
    if typed.startswith("{"):
        typed = typed[1:]
    if not QUERY_PATTERN.match(typed):
        return None
    return typed


def insert_reference(text: str, cursor: int, label: str) -> tuple[str, int]:
    token = f"#{{{label}}}"
    marker = text.rfind("#", 0, cursor)
    start = marker if marker != -1 else cursor
    updated = text[:start] + token + text[cursor:]
    return updated, start + len(token)
