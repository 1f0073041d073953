from __future__ import annotations

import re
from collections.abc import Callable

from .conditions import ConditionBranch, TriggerCondition, effective_lines, shared_trigger_logic
from .elements import UIElement, walk
from .values import FieldValue, value_items


class UnsupportedOperatorError(ValueError):
    """Raised when a condition line names an operator the evaluator does not know."""


OPERATORS: dict[str, Callable[[list[str], str], bool]] = {
    "is": lambda items, expected: any(item == expected for item in items),
    "is_not": lambda items, expected: all(item != expected for item in items),
    "contains": lambda items, expected: any(expected in item for item in items),
    "does_not_contain": lambda items, expected: all(expected not in item for item in items),
}
NEGATED_OPERATORS = frozenset({"is_not", "does_not_contain"})


def normalize_key(text: str) -> str:
    return re.sub(r"[^a-z0-9]", "", text.lower())


def lookup_value(
    property_name: str,
    values: dict[str, FieldValue],
    elements: list[UIElement] | None = None,
) -> FieldValue | None:
    if property_name in values:
        return values[property_name]
    wanted = normalize_key(property_name)
    for element, _ in walk(elements or []):
        if element.id == property_name or normalize_key(element.label) == wanted:
            if element.id in values:
                return values[element.id]
    return None


def compare(operator: str, value: FieldValue | None, expected: str) -> bool:
    try:
        test = OPERATORS[operator]
    except KeyError:
        raise UnsupportedOperatorError(f"unsupported operator: {operator!r}") from None
    return test(value_items(value), expected)


def _combine(logic: str, results: list[bool]) -> bool:
    if logic == "and":
        return all(results)
    return any(results)


def evaluate_branch(
    branch: ConditionBranch,
    values: dict[str, FieldValue],
    elements: list[UIElement] | None = None,
) -> bool:
    if not branch.groups:
        return False
    group_results = []
    for group in branch.groups:
        line_results = []
        for property_name, operator, expected in effective_lines(group):
            if not property_name:
                line_results.append(False)
                continue
            line_results.append(compare(operator, lookup_value(property_name, values, elements), expected))
        group_results.append(_combine(group.group_logic, line_results))
    return _combine(branch.outer_logic, group_results)


def evaluate_trigger_conditions(
    conditions: list[TriggerCondition],
    values: dict[str, FieldValue],
    elements: list[UIElement] | None = None,
) -> bool:
    if not conditions:
        return True
    results = []
    for condition in conditions:
        if not condition.attribute:
            results.append(False)
            continue
        value = lookup_value(condition.attribute, values, elements)
        matches = [compare(condition.operator, value, expected) for expected in condition.values]
        # negated operators must hold for every selected value
        if condition.operator in NEGATED_OPERATORS:
            results.append(bool(matches) and all(matches))
        else:
            results.append(any(matches))
    return _combine(shared_trigger_logic(conditions), results)
