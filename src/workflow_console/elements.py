from __future__ import annotations

import copy
import logging
import re
import secrets
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from .icons import IconName, parse_icon

logger = logging.getLogger(__name__)

ELEMENT_TYPES = (
    "text",
    "textarea",
    "dropdown",
    "radio",
    "checkbox",
    "toggle",
    "button",
    "file-upload",
    "number",
    "date",
    "section-divider",
    "text-block",
    "screening-questions",
    "conditions-module",
    "events-module",
    "trigger-conditions-module",
)
CHOICE_TYPES = frozenset({"dropdown", "toggle", "radio", "checkbox"})
OPTION_TYPES = frozenset({"dropdown", "radio", "checkbox"})
HALF_SIZE_TYPES = frozenset({"text", "dropdown", "date", "number"})
RANGE_TYPES = frozenset({"number", "date"})
VALUELESS_TYPES = frozenset({"section-divider", "text-block", "button"})
CONDITION_MODULE_TYPES = frozenset({"conditions-module", "trigger-conditions-module"})
TABS = ("Configuration", "Advanced", "User Interface")
DEFAULT_TAB = "Configuration"
ICON_POSITIONS = ("left", "right")

DEFAULT_EVENTS = (
    ("The Dream Career Conference", "High Volume Hiring", "Upcoming"),
    ("Technical Professionals Meetup", "High Volume Hiring", "Upcoming"),
    ("How Phenom keeps employees happy", "High Volume Hiring", "Upcoming"),
)


class ElementSchemaError(ValueError):
    """Raised when an element definition violates the element schema."""


@dataclass(slots=True)
class PropertyOption:
    label: str
    value: str
    values: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> PropertyOption:
        return cls(
            label=str(payload.get("label") or ""),
            value=str(payload.get("value") or ""),
            values=[str(item) for item in payload.get("values") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "value": self.value, "values": list(self.values)}


@dataclass(slots=True)
class OperatorOption:
    label: str
    value: str

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> OperatorOption:
        return cls(label=str(payload.get("label") or ""), value=str(payload.get("value") or ""))

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "value": self.value}


@dataclass(slots=True)
class EventSummary:
    title: str
    subtitle: str = ""
    tag: str = ""

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> EventSummary:
        return cls(
            title=str(payload.get("title") or ""),
            subtitle=str(payload.get("subtitle") or ""),
            tag=str(payload.get("tag") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "subtitle": self.subtitle, "tag": self.tag}


@dataclass(slots=True)
class ConditionalFollowUp:
    condition_value: str | bool
    elements: list[UIElement] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ConditionalFollowUp:
        raw_value = payload.get("conditionValue", "")
        condition_value = raw_value if isinstance(raw_value, bool) else str(raw_value)
        return cls(
            condition_value=condition_value,
            elements=[UIElement.from_dict(item) for item in payload.get("elements") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "conditionValue": self.condition_value,
            "elements": [element.to_dict() for element in self.elements],
        }


@dataclass(slots=True)
class UIElement:
    id: str
    type: str
    label: str = ""
    required: bool = False
    placeholder: str | None = None
    default_value: str | bool | float | None = None
    tab: str = DEFAULT_TAB
    half_size: bool = False
    disabled: bool = False
    has_title: bool = False
    title: str | None = None
    text: str | None = None
    options: list[str] = field(default_factory=list)
    multiselect: bool = False
    min_value: float | str | None = None
    max_value: float | str | None = None
    step: float | None = None
    has_icon: bool = False
    icon: IconName | None = None
    icon_position: str = "left"
    adds_elements: bool = False
    add_new_elements: bool = False
    added_elements: list[UIElement] = field(default_factory=list)
    element_reference: str | None = None
    events: list[EventSummary] = field(default_factory=list)
    property_options: list[PropertyOption] = field(default_factory=list)
    operator_options: list[OperatorOption] = field(default_factory=list)
    has_conditional_follow_ups: bool = False
    conditional_follow_ups: list[ConditionalFollowUp] = field(default_factory=list)

    @property
    def referenceable(self) -> bool:
        return self.type not in VALUELESS_TYPES

    @property
    def display_text(self) -> str:
        return self.text or self.label

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> UIElement:
        if not isinstance(payload, dict):
            raise ElementSchemaError("element definition must be an object")
        element_id = str(payload.get("id") or "").strip()
        if not element_id:
            raise ElementSchemaError("element id is required")

        icon = None
        if payload.get("icon"):
            icon = parse_icon(str(payload["icon"]), capability="button")

        element = cls(
            id=element_id,
            type=str(payload.get("type") or ""),
            label=str(payload.get("label") or ""),
            required=bool(payload.get("required", False)),
            placeholder=_optional_str(payload.get("placeholder")),
            default_value=payload.get("defaultValue"),
            tab=str(payload.get("tab") or DEFAULT_TAB),
            half_size=bool(payload.get("halfSize", False)),
            disabled=bool(payload.get("disabled", False)),
            has_title=bool(payload.get("hasTitle", False)),
            title=_optional_str(payload.get("title")),
            text=_optional_str(payload.get("text")),
            options=[str(option) for option in payload.get("options") or []],
            multiselect=bool(payload.get("multiselect", False)),
            min_value=payload.get("min"),
            max_value=payload.get("max"),
            step=payload.get("step"),
            has_icon=bool(payload.get("hasIcon", False)),
            icon=icon,
            icon_position=str(payload.get("iconPosition") or "left"),
            adds_elements=bool(payload.get("addsElements", False)),
            add_new_elements=bool(payload.get("addNewElements", False)),
            added_elements=[cls.from_dict(item) for item in payload.get("addedElements") or []],
            element_reference=_optional_str(payload.get("elementReference")),
            events=[EventSummary.from_dict(item) for item in payload.get("events") or []],
            property_options=[PropertyOption.from_dict(item) for item in payload.get("propertyOptions") or []],
            operator_options=[OperatorOption.from_dict(item) for item in payload.get("operatorOptions") or []],
            has_conditional_follow_ups=bool(payload.get("hasConditionalFollowUps", False)),
            conditional_follow_ups=[
                ConditionalFollowUp.from_dict(item) for item in payload.get("conditionalFollowUps") or []
            ],
        )
        validate_element(element)
        return element

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "type": self.type, "label": self.label}
        if self.required:
            payload["required"] = True
        if self.placeholder is not None:
            payload["placeholder"] = self.placeholder
        if self.default_value is not None:
            payload["defaultValue"] = self.default_value
        if self.tab != DEFAULT_TAB:
            payload["tab"] = self.tab
        if self.half_size:
            payload["halfSize"] = True
        if self.disabled:
            payload["disabled"] = True
        if self.has_title:
            payload["hasTitle"] = True
        if self.title is not None:
            payload["title"] = self.title
        if self.text is not None:
            payload["text"] = self.text
        if self.options:
            payload["options"] = list(self.options)
        if self.multiselect:
            payload["multiselect"] = True
        if self.min_value is not None:
            payload["min"] = self.min_value
        if self.max_value is not None:
            payload["max"] = self.max_value
        if self.step is not None:
            payload["step"] = self.step
        if self.type == "button":
            payload["hasIcon"] = self.has_icon
            if self.icon is not None:
                payload["icon"] = self.icon.value
            payload["iconPosition"] = self.icon_position
            payload["addsElements"] = self.adds_elements
            payload["addNewElements"] = self.add_new_elements
            if self.added_elements:
                payload["addedElements"] = [element.to_dict() for element in self.added_elements]
            if self.element_reference is not None:
                payload["elementReference"] = self.element_reference
        if self.events:
            payload["events"] = [event.to_dict() for event in self.events]
        if self.property_options:
            payload["propertyOptions"] = [option.to_dict() for option in self.property_options]
        if self.operator_options:
            payload["operatorOptions"] = [option.to_dict() for option in self.operator_options]
        if self.has_conditional_follow_ups or self.conditional_follow_ups:
            payload["hasConditionalFollowUps"] = self.has_conditional_follow_ups
            payload["conditionalFollowUps"] = [follow_up.to_dict() for follow_up in self.conditional_follow_ups]
        return payload


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def validate_element(element: UIElement) -> None:
    if element.type not in ELEMENT_TYPES:
        raise ElementSchemaError(f"unsupported element type: {element.type!r}")
    if element.tab not in TABS:
        raise ElementSchemaError(f"unsupported tab {element.tab!r} on element {element.id}")
    if element.half_size and element.type not in HALF_SIZE_TYPES:
        raise ElementSchemaError(f"halfSize is not supported for {element.type} elements")
    if element.multiselect and element.type != "dropdown":
        raise ElementSchemaError("multiselect is only supported for dropdown elements")
    if (element.has_conditional_follow_ups or element.conditional_follow_ups) and element.type not in CHOICE_TYPES:
        raise ElementSchemaError(f"{element.type} elements cannot own conditional follow-ups")
    if element.icon_position not in ICON_POSITIONS:
        raise ElementSchemaError(f"unsupported icon position: {element.icon_position!r}")
    if element.icon is not None and not isinstance(element.icon, IconName):
        element.icon = parse_icon(element.icon, capability="button")


def walk(elements: list[UIElement], depth: int = 0) -> Iterator[tuple[UIElement, int]]:
    for element in elements:
        yield element, depth
        for follow_up in element.conditional_follow_ups:
            yield from walk(follow_up.elements, depth + 1)


def validate_tree(elements: list[UIElement]) -> None:
    seen: set[str] = set()
    for element, _ in walk(elements):
        if element.id in seen:
            raise ElementSchemaError(f"duplicate element id: {element.id}")
        seen.add(element.id)


def duplicate_labels(elements: list[UIElement]) -> list[str]:
    counts: dict[str, int] = {}
    for element, _ in walk(elements):
        if element.label:
            counts[element.label] = counts.get(element.label, 0) + 1
    return sorted(label for label, count in counts.items() if count > 1)


def elements_from_list(payload: list[dict[str, Any]] | None) -> list[UIElement]:
    elements = [UIElement.from_dict(item) for item in payload or []]
    validate_tree(elements)
    duplicates = duplicate_labels(elements)
    if duplicates:
        logger.warning("duplicate_element_labels", extra={"labels": duplicates})
    return elements


def elements_to_list(elements: list[UIElement]) -> list[dict[str, Any]]:
    return [element.to_dict() for element in elements]


def new_element_id(prefix: str = "element") -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(5)}"


def clone_with_new_ids(element: UIElement, id_factory: Callable[[], str]) -> UIElement:
    clone = copy.deepcopy(element)
    for node, _ in walk([clone]):
        node.id = id_factory()
    return clone


def new_element(element_type: str, label: str, element_id: str | None = None, **attributes: Any) -> UIElement:
    element = UIElement(id=element_id or new_element_id(), type=element_type, label=label, **attributes)
    if element_type == "events-module" and not element.events:
        element.events = [EventSummary(title=title, subtitle=subtitle, tag=tag) for title, subtitle, tag in DEFAULT_EVENTS]
    validate_element(element)
    return element


class ElementTree:
    """Element list with id and parent indexes so nested edits happen in place."""

    def __init__(self, elements: list[UIElement] | None = None) -> None:
        self.elements: list[UIElement] = elements if elements is not None else []
        self._index: dict[str, UIElement] = {}
        self._parent: dict[str, tuple[str | None, int | None]] = {}
        self._reindex()

    def __contains__(self, element_id: object) -> bool:
        return element_id in self._index

    def __iter__(self) -> Iterator[UIElement]:
        return (element for element, _ in walk(self.elements))

    def __len__(self) -> int:
        return len(self._index)

    def _reindex(self) -> None:
        self._index.clear()
        self._parent.clear()
        for element in self.elements:
            self._register(element, None, None)

    def _register(self, element: UIElement, parent_id: str | None, follow_up_index: int | None) -> None:
        if element.id in self._index:
            raise ElementSchemaError(f"duplicate element id: {element.id}")
        self._index[element.id] = element
        self._parent[element.id] = (parent_id, follow_up_index)
        for index, follow_up in enumerate(element.conditional_follow_ups):
            for child in follow_up.elements:
                self._register(child, element.id, index)

    def _unregister(self, element: UIElement) -> None:
        for node, _ in walk([element]):
            self._index.pop(node.id, None)
            self._parent.pop(node.id, None)

    def get(self, element_id: str) -> UIElement:
        try:
            return self._index[element_id]
        except KeyError:
            raise KeyError(f"unknown element: {element_id}") from None

    def parent_of(self, element_id: str) -> UIElement | None:
        self.get(element_id)
        parent_id, _ = self._parent[element_id]
        return self._index[parent_id] if parent_id is not None else None

    def siblings(self, element_id: str) -> list[UIElement]:
        self.get(element_id)
        parent_id, follow_up_index = self._parent[element_id]
        return self._container(parent_id, follow_up_index)

    def _container(self, parent_id: str | None, follow_up_index: int | None) -> list[UIElement]:
        if parent_id is None:
            return self.elements
        parent = self.get(parent_id)
        if follow_up_index is None or not 0 <= follow_up_index < len(parent.conditional_follow_ups):
            raise ElementSchemaError(f"element {parent_id} has no follow-up {follow_up_index}")
        return parent.conditional_follow_ups[follow_up_index].elements

    def add(
        self,
        element: UIElement,
        parent_id: str | None = None,
        follow_up_index: int | None = None,
        position: int | None = None,
    ) -> UIElement:
        validate_element(element)
        for node, _ in walk([element]):
            if node.id in self._index:
                raise ElementSchemaError(f"duplicate element id: {node.id}")
        container = self._container(parent_id, follow_up_index)
        if position is None:
            container.append(element)
        else:
            container.insert(position, element)
        self._register(element, parent_id, follow_up_index)
        return element

    def update(self, element_id: str, **changes: Any) -> UIElement:
        element = self.get(element_id)
        unknown = [key for key in changes if key not in UIElement.__dataclass_fields__]
        if unknown:
            raise ElementSchemaError(f"unknown element attributes: {', '.join(sorted(unknown))}")
        new_type = changes.get("type")
        if new_type == "file-upload" and element.type != "file-upload" and "label" not in changes:
            changes["label"] = "Upload file"
        for key, value in changes.items():
            setattr(element, key, value)
        if new_type == "events-module" and not element.events:
            element.events = [EventSummary(title=t, subtitle=s, tag=g) for t, s, g in DEFAULT_EVENTS]
            if "label" not in changes:
                element.label = ""
        validate_element(element)
        if "id" in changes or "conditional_follow_ups" in changes:
            self._reindex()
        return element

    def remove(self, element_id: str) -> UIElement:
        element = self.get(element_id)
        self.siblings(element_id).remove(element)
        self._unregister(element)
        return element

    def move(self, element_id: str, direction: str) -> bool:
        if direction not in {"up", "down"}:
            raise ValueError(f"unsupported move direction: {direction}")
        siblings = self.siblings(element_id)
        current = next(index for index, item in enumerate(siblings) if item.id == element_id)
        target = current - 1 if direction == "up" else current + 1
        if not 0 <= target < len(siblings):
            return False
        siblings[current], siblings[target] = siblings[target], siblings[current]
        return True

    def add_follow_up(self, element_id: str, condition_value: str | bool | None = None) -> int:
        element = self.get(element_id)
        if element.type not in CHOICE_TYPES:
            raise ElementSchemaError(f"{element.type} elements cannot own conditional follow-ups")
        if condition_value is None:
            if element.options:
                condition_value = element.options[0]
            elif element.type == "toggle":
                condition_value = True
            else:
                condition_value = ""
        element.conditional_follow_ups.append(ConditionalFollowUp(condition_value=condition_value))
        element.has_conditional_follow_ups = True
        return len(element.conditional_follow_ups) - 1

    def update_follow_up(self, element_id: str, index: int, condition_value: str | bool) -> None:
        element = self.get(element_id)
        element.conditional_follow_ups[index].condition_value = condition_value

    def remove_follow_up(self, element_id: str, index: int) -> ConditionalFollowUp:
        element = self.get(element_id)
        follow_up = element.conditional_follow_ups.pop(index)
        for child in follow_up.elements:
            self._unregister(child)
        element.has_conditional_follow_ups = bool(element.conditional_follow_ups)
        # later follow-ups shifted down by one
        self._reindex()
        return follow_up

    def add_follow_up_element(
        self,
        element_id: str,
        follow_up_index: int,
        element: UIElement | None = None,
    ) -> UIElement:
        child = element or new_element("text", "Follow-up Field")
        return self.add(child, parent_id=element_id, follow_up_index=follow_up_index)


WIRE_ATTRIBUTES = {"min": "min_value", "max": "max_value"}
NESTED_KEYS = frozenset({"conditionalFollowUps", "addedElements", "events", "propertyOptions", "operatorOptions"})


def required_param(params: dict[str, Any], key: str) -> Any:
    if key not in params:
        raise ValueError(f"{key} is required")
    return params[key]


def index_param(params: dict[str, Any], key: str) -> int:
    raw = required_param(params, key)
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        raise ValueError(f"{key} must be a non-negative integer")
    return raw


def _attribute(key: str) -> str:
    if key in NESTED_KEYS:
        raise ElementSchemaError(f"{key} has its own edit actions")
    return WIRE_ATTRIBUTES.get(key) or re.sub(r"(?<=[a-z])(?=[A-Z])", "_", key).lower()


def _element_param(params: dict[str, Any]) -> UIElement | None:
    raw = params.get("element")
    return UIElement.from_dict(raw) if raw is not None else None


def _add(tree: ElementTree, params: dict[str, Any]) -> None:
    element = _element_param(params) or new_element(
        str(params.get("type") or "text"), str(params.get("label") or "New Field")
    )
    follow_up_index = index_param(params, "followUpIndex") if params.get("followUpIndex") is not None else None
    position = index_param(params, "position") if params.get("position") is not None else None
    tree.add(element, parent_id=params.get("parentId"), follow_up_index=follow_up_index, position=position)


def _update(tree: ElementTree, params: dict[str, Any]) -> None:
    changes = required_param(params, "changes")
    if not isinstance(changes, dict):
        raise ValueError("changes must be an object")
    tree.update(str(required_param(params, "id")), **{_attribute(key): value for key, value in changes.items()})


ELEMENT_EDITS: dict[str, Callable[[ElementTree, dict[str, Any]], Any]] = {
    "add": _add,
    "update": _update,
    "remove": lambda tree, params: tree.remove(str(required_param(params, "id"))),
    "move": lambda tree, params: tree.move(str(required_param(params, "id")), str(required_param(params, "direction"))),
    "addFollowUp": lambda tree, params: tree.add_follow_up(
        str(required_param(params, "id")), params.get("conditionValue")
    ),
    "updateFollowUp": lambda tree, params: tree.update_follow_up(
        str(required_param(params, "id")), index_param(params, "index"), required_param(params, "conditionValue")
    ),
    "removeFollowUp": lambda tree, params: tree.remove_follow_up(
        str(required_param(params, "id")), index_param(params, "index")
    ),
    "addFollowUpElement": lambda tree, params: tree.add_follow_up_element(
        str(required_param(params, "id")), index_param(params, "index"), _element_param(params)
    ),
}


def edit_elements(elements: list[UIElement], action: str, params: dict[str, Any]) -> list[UIElement]:
    """Apply one editor action to a copy of ``elements`` and return the edited copy."""
    handler = ELEMENT_EDITS.get(action)
    if handler is None:
        raise ValueError(f"unsupported element action: {action!r}")
    tree = ElementTree(copy.deepcopy(elements))
    try:
        handler(tree, params)
    except IndexError:
        raise ValueError(f"follow-up index out of range for {action}") from None
    logger.debug("elements_edited", extra={"action": action, "elements": len(tree)})
    return tree.elements
