from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .elements import OPTION_TYPES, UIElement, clone_with_new_ids, elements_from_list, new_element, new_element_id
from .references import find_element_by_label
from .values import Bool, FieldValue

logger = logging.getLogger(__name__)

ELEMENT_REFERENCE_PATTERN = re.compile(r"^#\{(.+)\}$")
SYNTHESIZED_OPTIONS = ("Option 1", "Option 2", "Option 3")
TYPE_KEYWORDS = (
    (("dropdown", "select"), "dropdown"),
    (("checkbox", "check"), "checkbox"),
    (("toggle", "switch"), "toggle"),
    (("file", "upload"), "file-upload"),
    (("number",), "number"),
    (("date",), "date"),
    (("radio", "choice"), "radio"),
    (("textarea", "description", "comment"), "textarea"),
)


def dynamic_element_id() -> str:
    return new_element_id("dynamic")


def infer_element_type(label: str) -> str:
    lowered = label.lower()
    for keywords, element_type in TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return element_type
    return "text"


def synthesize_element(label: str) -> UIElement:
    element_type = infer_element_type(label)
    options = list(SYNTHESIZED_OPTIONS) if element_type in OPTION_TYPES else []
    return new_element(element_type, label, element_id=dynamic_element_id(), options=options)


@dataclass(slots=True)
class ClickResult:
    button_id: str
    value: Bool
    added: list[UIElement] = field(default_factory=list)


class DynamicElements:
    """Elements materialized at runtime, one list per button id."""

    def __init__(self, by_button: dict[str, list[UIElement]] | None = None) -> None:
        self.by_button: dict[str, list[UIElement]] = by_button or {}

    def elements_for(self, button_id: str) -> list[UIElement]:
        return self.by_button.get(button_id, [])

    def all_elements(self) -> list[UIElement]:
        return [element for elements in self.by_button.values() for element in elements]

    def click(self, button: UIElement, original_elements: list[UIElement]) -> ClickResult:
        if button.type != "button":
            raise ValueError(f"element {button.id} is not a button")
        result = ClickResult(button_id=button.id, value=Bool(True))
        if not button.adds_elements:
            return result

        if button.add_new_elements:
            result.added = [clone_with_new_ids(element, dynamic_element_id) for element in button.added_elements]
        else:
            match = ELEMENT_REFERENCE_PATTERN.match((button.element_reference or "").strip())
            if match is None:
                logger.warning(
                    "button_reference_invalid",
                    extra={"button_id": button.id, "reference": button.element_reference},
                )
                return result
            label = match.group(1)
            source = find_element_by_label(original_elements, label)
            if source is not None:
                result.added = [clone_with_new_ids(source, dynamic_element_id)]
            else:
                result.added = [synthesize_element(label)]

        self.by_button.setdefault(button.id, []).extend(result.added)
        logger.info(
            "dynamic_elements_added",
            extra={"button_id": button.id, "element_ids": [element.id for element in result.added]},
        )
        return result

    def remove(self, element_id: str, values: dict[str, FieldValue]) -> dict[str, FieldValue]:
        """Clear the value of a materialized element; the element itself stays listed."""
        if not any(element.id == element_id for element in self.all_elements()):
            raise KeyError(f"unknown dynamic element: {element_id}")
        return {key: value for key, value in values.items() if key != element_id}

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> DynamicElements:
        return cls({str(button_id): elements_from_list(items) for button_id, items in (payload or {}).items()})

    def to_dict(self) -> dict[str, Any]:
        return {button_id: [element.to_dict() for element in items] for button_id, items in self.by_button.items()}
