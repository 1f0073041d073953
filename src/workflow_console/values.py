from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from .conditions import ConditionBranch, TriggerCondition
from .elements import UIElement, walk


@dataclass(slots=True, frozen=True)
class Text:
    value: str


@dataclass(slots=True, frozen=True)
class Number:
    value: float


@dataclass(slots=True, frozen=True)
class Bool:
    value: bool


@dataclass(slots=True, frozen=True)
class FileRef:
    name: str
    size: int | None = None
    content_type: str | None = None


@dataclass(slots=True, frozen=True)
class StringList:
    items: tuple[str, ...] = ()


@dataclass(slots=True)
class BranchSet:
    branches: list[ConditionBranch] = field(default_factory=list)

    def get(self, name: str) -> ConditionBranch | None:
        return next((branch for branch in self.branches if branch.name == name), None)


@dataclass(slots=True)
class TriggerConditionSet:
    conditions: list[TriggerCondition] = field(default_factory=list)


FieldValue = Union[Text, Number, Bool, FileRef, StringList, BranchSet, TriggerConditionSet]


def format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def parse_value(raw: Any, element_type: str | None = None) -> FieldValue | None:
    """Parse a wire value, typed by its element when the element is known.

    Without an element type the JSON shape decides, so an empty list reads as
    a ``StringList``.
    """
    if raw is None:
        return None
    if element_type in ("conditions-module", "trigger-conditions-module"):
        if not isinstance(raw, list) or not all(isinstance(item, dict) for item in raw):
            raise ValueError(f"{element_type} values must be a list of objects")
        if element_type == "conditions-module":
            return BranchSet([ConditionBranch.from_dict(item) for item in raw])
        return TriggerConditionSet([TriggerCondition.from_dict(item) for item in raw])
    if isinstance(raw, bool):
        return Bool(raw)
    if isinstance(raw, (int, float)):
        return Number(raw)
    if isinstance(raw, str):
        return Text(raw)
    if isinstance(raw, dict):
        if "name" not in raw:
            raise ValueError("file values require a name")
        size = raw.get("size")
        return FileRef(
            name=str(raw["name"]),
            size=int(size) if size is not None else None,
            content_type=raw.get("type"),
        )
    if isinstance(raw, list):
        if all(isinstance(item, str) for item in raw):
            return StringList(tuple(raw))
        if all(isinstance(item, dict) for item in raw):
            if all("attribute" in item for item in raw):
                return TriggerConditionSet([TriggerCondition.from_dict(item) for item in raw])
            if all("name" in item for item in raw):
                return BranchSet([ConditionBranch.from_dict(item) for item in raw])
        raise ValueError("unsupported list value")
    raise ValueError(f"unsupported value of type {type(raw).__name__}")


def dump_value(value: FieldValue | None) -> Any:
    if value is None:
        return None
    if isinstance(value, (Text, Number, Bool)):
        return value.value
    if isinstance(value, FileRef):
        payload: dict[str, Any] = {"name": value.name}
        if value.size is not None:
            payload["size"] = value.size
        if value.content_type is not None:
            payload["type"] = value.content_type
        return payload
    if isinstance(value, StringList):
        return list(value.items)
    if isinstance(value, BranchSet):
        return [branch.to_dict() for branch in value.branches]
    if isinstance(value, TriggerConditionSet):
        return [condition.to_dict() for condition in value.conditions]
    raise TypeError(f"unsupported field value: {value!r}")


def element_types(elements: list[UIElement] | None) -> dict[str, str]:
    return {element.id: element.type for element, _ in walk(elements or [])}


def parse_values(payload: dict[str, Any] | None, elements: list[UIElement] | None = None) -> dict[str, FieldValue]:
    types = element_types(elements)
    values: dict[str, FieldValue] = {}
    for key, raw in (payload or {}).items():
        parsed = parse_value(raw, types.get(str(key)))
        if parsed is not None:
            values[str(key)] = parsed
    return values


def dump_values(values: dict[str, FieldValue]) -> dict[str, Any]:
    return {key: dump_value(value) for key, value in values.items()}


def value_text(value: FieldValue | None, element_type: str | None = None) -> str:
    """Display text for a value, as substituted into ``#{Label}`` references."""
    if value is None:
        return ""
    if isinstance(value, Bool):
        if element_type == "toggle":
            return "ON" if value.value else "OFF"
        if element_type == "checkbox":
            return "checked" if value.value else "unchecked"
        return "true" if value.value else "false"
    if isinstance(value, Text):
        return value.value
    if isinstance(value, Number):
        return format_number(value.value)
    if isinstance(value, FileRef):
        return value.name
    if isinstance(value, StringList):
        return ", ".join(value.items)
    if isinstance(value, BranchSet):
        return ", ".join(branch.name for branch in value.branches)
    if isinstance(value, TriggerConditionSet):
        return ", ".join(condition.attribute for condition in value.conditions if condition.attribute)
    raise TypeError(f"unsupported field value: {value!r}")


def value_items(value: FieldValue | None) -> list[str]:
    """Comparable string items for condition evaluation."""
    if value is None:
        return []
    if isinstance(value, Bool):
        return ["true" if value.value else "false"]
    if isinstance(value, Text):
        return [value.value]
    if isinstance(value, Number):
        return [format_number(value.value)]
    if isinstance(value, FileRef):
        return [value.name]
    if isinstance(value, StringList):
        return list(value.items)
    if isinstance(value, (BranchSet, TriggerConditionSet)):
        return []
    raise TypeError(f"unsupported field value: {value!r}")


def is_empty(value: FieldValue | None) -> bool:
    return value_text(value) == ""


def raw_choice(value: FieldValue | None) -> str | bool | None:
    """The primitive a follow-up ``conditionValue`` is compared against."""
    if value is None:
        return None
    if isinstance(value, (Text, Bool)):
        return value.value
    if isinstance(value, (Number, FileRef, StringList, BranchSet, TriggerConditionSet)):
        return None
    raise TypeError(f"unsupported field value: {value!r}")
