from __future__ import annotations

import copy
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .elements import OperatorOption, PropertyOption, index_param, required_param

LOGIC_VALUES = ("and", "or")
DEFAULT_OPERATOR = "is"
BRANCH_NAME_PATTERN = re.compile(r"^Branch (\d+)\.(\d+)$")

DEFAULT_PROPERTY_OPTIONS = [
    PropertyOption(label="Job ID", value="jobID", values=["302", "203", "504"]),
    PropertyOption(label="Department", value="department", values=["Engineering", "HR", "Sales"]),
    PropertyOption(label="Country", value="country", values=["US", "Canada"]),
    PropertyOption(label="Profile skills", value="profileSkills", values=["empty", "less than 5", "more than 5"]),
    PropertyOption(label="City", value="city", values=["Bucharest", "Oslo"]),
]
DEFAULT_OPERATOR_OPTIONS = [
    OperatorOption(label="is", value="is"),
    OperatorOption(label="is not", value="is_not"),
    OperatorOption(label="contains", value="contains"),
]
TRIGGER_PROPERTY_OPTIONS = [
    PropertyOption(label="Job ID", value="jobID", values=["302", "203", "504"]),
    PropertyOption(label="City", value="city", values=["Bucharest", "Oslo"]),
    PropertyOption(label="Country", value="country", values=["US", "Canada"]),
    PropertyOption(label="Employee tenure", value="employeeTenure", values=["less than 2 weeks", "more than 2 weeks"]),
    PropertyOption(label="Profile Skills", value="profileSkills", values=["JavaScript", "Python", "Design", "Empty"]),
]
TRIGGER_OPERATOR_OPTIONS = [
    *DEFAULT_OPERATOR_OPTIONS,
    OperatorOption(label="does not contain", value="does_not_contain"),
]


def _logic(value: Any, default: str) -> str:
    candidate = str(value or default).strip().lower()
    if candidate not in LOGIC_VALUES:
        raise ValueError(f"unsupported logic: {value!r}")
    return candidate


@dataclass(slots=True)
class ConditionLine:
    property: str = ""
    operator: str = DEFAULT_OPERATOR
    value: str = ""
    logic: str | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ConditionLine:
        logic = payload.get("logic")
        return cls(
            property=str(payload.get("property") or payload.get("field") or ""),
            operator=str(payload.get("operator") or ""),
            value=str(payload.get("value") if payload.get("value") is not None else ""),
            logic=_logic(logic, "or") if logic else None,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"property": self.property, "operator": self.operator, "value": self.value}
        if self.logic is not None:
            payload["logic"] = self.logic
        return payload


@dataclass(slots=True)
class ConditionGroup:
    lines: list[ConditionLine] = field(default_factory=lambda: [ConditionLine()])
    group_logic: str = "or"

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ConditionGroup:
        lines = [ConditionLine.from_dict(item) for item in payload.get("lines") or []]
        return cls(lines=lines or [ConditionLine()], group_logic=_logic(payload.get("groupLogic"), "or"))

    def to_dict(self) -> dict[str, Any]:
        return {"lines": [line.to_dict() for line in self.lines], "groupLogic": self.group_logic}


@dataclass(slots=True)
class ConditionBranch:
    name: str
    outer_logic: str = "or"
    groups: list[ConditionGroup] = field(default_factory=lambda: [ConditionGroup()])
    condition_node_number: int = 0

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ConditionBranch:
        name = str(payload.get("name") or "").strip()
        if not name:
            raise ValueError("branch name is required")
        return cls(
            name=name,
            outer_logic=_logic(payload.get("outerLogic"), "or"),
            groups=[ConditionGroup.from_dict(item) for item in payload.get("groups") or []],
            condition_node_number=int(payload.get("conditionNodeNumber") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "outerLogic": self.outer_logic,
            "groups": [group.to_dict() for group in self.groups],
            "conditionNodeNumber": self.condition_node_number,
        }


@dataclass(slots=True)
class TriggerCondition:
    attribute: str = ""
    operator: str = DEFAULT_OPERATOR
    values: list[str] = field(default_factory=list)
    logic: str = "and"

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> TriggerCondition:
        return cls(
            attribute=str(payload.get("attribute") or ""),
            operator=str(payload.get("operator") or DEFAULT_OPERATOR),
            values=[str(item) for item in payload.get("values") or []],
            logic=_logic(payload.get("logic"), "and"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"attribute": self.attribute, "operator": self.operator, "values": list(self.values), "logic": self.logic}


def branch_name(condition_number: int, index: int) -> str:
    return f"Branch {condition_number}.{index + 1}"


def new_branch(name: str, condition_number: int) -> ConditionBranch:
    return ConditionBranch(name=name, condition_node_number=condition_number)


def add_branch(
    branches: list[ConditionBranch],
    condition_number: int,
    taken_names: Iterable[str] = (),
) -> list[ConditionBranch]:
    taken = set(taken_names) | {branch.name for branch in branches}
    index = len(branches)
    name = branch_name(condition_number, index)
    while name in taken:
        index += 1
        name = branch_name(condition_number, index)
    return [*copy.deepcopy(branches), new_branch(name, condition_number)]


def _replace_group(branch: ConditionBranch, group_index: int, group: ConditionGroup) -> ConditionBranch:
    updated = copy.deepcopy(branch)
    updated.groups[group_index] = group
    return updated


def new_group() -> ConditionGroup:
    return ConditionGroup(lines=[ConditionLine()], group_logic="or")


def add_group(branch: ConditionBranch) -> ConditionBranch:
    updated = copy.deepcopy(branch)
    updated.groups.append(new_group())
    return updated


def remove_group(branch: ConditionBranch, group_index: int) -> ConditionBranch:
    updated = copy.deepcopy(branch)
    del updated.groups[group_index]
    return updated


def add_line(branch: ConditionBranch, group_index: int) -> ConditionBranch:
    group = copy.deepcopy(branch.groups[group_index])
    group.lines.append(ConditionLine(logic=group.group_logic))
    return _replace_group(branch, group_index, group)


def set_property(branch: ConditionBranch, group_index: int, property_value: str) -> ConditionBranch:
    group = copy.deepcopy(branch.groups[group_index])
    group.lines[0].property = property_value
    group.lines[0].value = ""
    return _replace_group(branch, group_index, group)


def set_operator(branch: ConditionBranch, group_index: int, line_index: int, operator: str) -> ConditionBranch:
    group = copy.deepcopy(branch.groups[group_index])
    group.lines[line_index].operator = operator
    return _replace_group(branch, group_index, group)


def set_value(branch: ConditionBranch, group_index: int, line_index: int, value: str) -> ConditionBranch:
    group = copy.deepcopy(branch.groups[group_index])
    group.lines[line_index].value = value
    return _replace_group(branch, group_index, group)


def set_group_logic(branch: ConditionBranch, group_index: int, logic: str) -> ConditionBranch:
    group = copy.deepcopy(branch.groups[group_index])
    group.group_logic = _logic(logic, "or")
    for line in group.lines:
        line.logic = group.group_logic
    return _replace_group(branch, group_index, group)


def set_outer_logic(branch: ConditionBranch, logic: str) -> ConditionBranch:
    updated = copy.deepcopy(branch)
    updated.outer_logic = _logic(logic, "or")
    return updated


def effective_lines(group: ConditionGroup) -> list[tuple[str, str, str]]:
    """Lines with property/operator inherited from the nearest preceding line that set them."""
    resolved: list[tuple[str, str, str]] = []
    current_property = ""
    current_operator = DEFAULT_OPERATOR
    for line in group.lines:
        if line.property:
            current_property = line.property
        if line.operator:
            current_operator = line.operator
        resolved.append((current_property, current_operator, line.value))
    return resolved


def property_values(property_value: str, property_options: list[PropertyOption] | None = None) -> list[str]:
    for option in property_options or DEFAULT_PROPERTY_OPTIONS:
        if option.value == property_value:
            return list(option.values)
    return []


def camel_to_snake(token: str) -> str:
    return re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", token).replace("-", "_").replace(" ", "_").lower()


def snake_to_camel(token: str) -> str:
    head, *rest = token.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def snake_to_title(token: str) -> str:
    return " ".join(part.capitalize() for part in camel_to_snake(token).split("_") if part)


def prettify(token: str, labels: dict[str, str], title_case: bool = True) -> str:
    if not token:
        return ""
    if token in labels:
        return labels[token]
    for candidate in (snake_to_camel(token), camel_to_snake(token)):
        if candidate in labels:
            return labels[candidate]
    normalized = camel_to_snake(token)
    for key, label in labels.items():
        if camel_to_snake(key) == normalized:
            return label
    pretty = snake_to_title(token)
    return pretty if title_case else pretty.lower()


def _labels(options: Iterable[PropertyOption | OperatorOption]) -> dict[str, str]:
    return {option.value: option.label for option in options if option.value}


def summarize(
    branch: ConditionBranch,
    property_options: list[PropertyOption] | None = None,
    operator_options: list[OperatorOption] | None = None,
) -> str:
    property_labels = _labels(property_options or DEFAULT_PROPERTY_OPTIONS)
    operator_labels = _labels(operator_options or TRIGGER_OPERATOR_OPTIONS)

    rendered: list[list[str]] = []
    joiners: list[str] = []
    for group in branch.groups:
        clauses = [
            f"{prettify(prop, property_labels)} {prettify(op, operator_labels, title_case=False)} {value}"
            for prop, op, value in effective_lines(group)
            if prop and value != ""
        ]
        if clauses:
            rendered.append(clauses)
            joiners.append(f" {group.group_logic.upper()} ")

    parts = []
    for clauses, joiner in zip(rendered, joiners, strict=True):
        text = joiner.join(clauses)
        if len(rendered) > 1 and len(clauses) > 1:
            text = f"({text})"
        parts.append(text)
    return f" {branch.outer_logic.upper()} ".join(parts)


def shared_trigger_logic(conditions: list[TriggerCondition]) -> str:
    if len(conditions) > 1:
        return conditions[1].logic
    return "and"


def add_trigger_condition(conditions: list[TriggerCondition]) -> list[TriggerCondition]:
    return [*copy.deepcopy(conditions), TriggerCondition(logic=shared_trigger_logic(conditions))]


def remove_trigger_condition(conditions: list[TriggerCondition], index: int) -> list[TriggerCondition]:
    return [copy.deepcopy(condition) for i, condition in enumerate(conditions) if i != index]


def set_trigger_attribute(conditions: list[TriggerCondition], index: int, attribute: str) -> list[TriggerCondition]:
    updated = copy.deepcopy(conditions)
    updated[index] = TriggerCondition(attribute=attribute, logic=updated[index].logic)
    return updated


def set_trigger_operator(conditions: list[TriggerCondition], index: int, operator: str) -> list[TriggerCondition]:
    updated = copy.deepcopy(conditions)
    updated[index].operator = operator
    return updated


def toggle_trigger_value(conditions: list[TriggerCondition], index: int, value: str) -> list[TriggerCondition]:
    updated = copy.deepcopy(conditions)
    values = updated[index].values
    if value in values:
        values.remove(value)
    else:
        values.append(value)
    return updated


def set_trigger_logic(conditions: list[TriggerCondition], logic: str) -> list[TriggerCondition]:
    updated = copy.deepcopy(conditions)
    for condition in updated:
        condition.logic = _logic(logic, "and")
    return updated


def summarize_trigger_conditions(
    conditions: list[TriggerCondition],
    property_options: list[PropertyOption] | None = None,
    operator_options: list[OperatorOption] | None = None,
) -> str:
    property_labels = _labels(property_options or TRIGGER_PROPERTY_OPTIONS)
    operator_labels = _labels(operator_options or TRIGGER_OPERATOR_OPTIONS)
    clauses = [
        f"{prettify(condition.attribute, property_labels)} "
        f"{prettify(condition.operator, operator_labels, title_case=False)} "
        f"{' or '.join(condition.values)}"
        for condition in conditions
        if condition.attribute and condition.values
    ]
    return f" {shared_trigger_logic(conditions).upper()} ".join(clauses)


BRANCH_EDITS: dict[str, Callable[[ConditionBranch, dict[str, Any]], ConditionBranch]] = {
    "addGroup": lambda branch, params: add_group(branch),
    "removeGroup": lambda branch, params: remove_group(branch, index_param(params, "group")),
    "addLine": lambda branch, params: add_line(branch, index_param(params, "group")),
    "setProperty": lambda branch, params: set_property(
        branch, index_param(params, "group"), str(required_param(params, "value"))
    ),
    "setOperator": lambda branch, params: set_operator(
        branch, index_param(params, "group"), index_param(params, "line"), str(required_param(params, "value"))
    ),
    "setValue": lambda branch, params: set_value(
        branch, index_param(params, "group"), index_param(params, "line"), str(required_param(params, "value"))
    ),
    "setGroupLogic": lambda branch, params: set_group_logic(
        branch, index_param(params, "group"), str(required_param(params, "value"))
    ),
    "setOuterLogic": lambda branch, params: set_outer_logic(branch, str(required_param(params, "value"))),
}

TRIGGER_EDITS: dict[str, Callable[[list[TriggerCondition], dict[str, Any]], list[TriggerCondition]]] = {
    "add": lambda conditions, params: add_trigger_condition(conditions),
    "remove": lambda conditions, params: remove_trigger_condition(conditions, index_param(params, "index")),
    "setAttribute": lambda conditions, params: set_trigger_attribute(
        conditions, index_param(params, "index"), str(required_param(params, "value"))
    ),
    "setOperator": lambda conditions, params: set_trigger_operator(
        conditions, index_param(params, "index"), str(required_param(params, "value"))
    ),
    "toggleValue": lambda conditions, params: toggle_trigger_value(
        conditions, index_param(params, "index"), str(required_param(params, "value"))
    ),
    "setLogic": lambda conditions, params: set_trigger_logic(conditions, str(required_param(params, "value"))),
}


def edit_branch(branch: ConditionBranch, action: str, params: dict[str, Any]) -> ConditionBranch:
    handler = BRANCH_EDITS.get(action)
    if handler is None:
        raise ValueError(f"unsupported branch action: {action!r}")
    try:
        return handler(branch, params)
    except IndexError:
        raise ValueError(f"group or line index out of range for {action}") from None


def edit_trigger_conditions(
    conditions: list[TriggerCondition], action: str, params: dict[str, Any]
) -> list[TriggerCondition]:
    handler = TRIGGER_EDITS.get(action)
    if handler is None:
        raise ValueError(f"unsupported trigger condition action: {action!r}")
    try:
        return handler(conditions, params)
    except IndexError:
        raise ValueError(f"condition index out of range for {action}") from None
