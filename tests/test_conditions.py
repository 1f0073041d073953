import pytest

from workflow_console.conditions import (
    ConditionBranch,
    ConditionGroup,
    ConditionLine,
    TriggerCondition,
    add_branch,
    add_group,
    add_line,
    add_trigger_condition,
    branch_name,
    edit_branch,
    edit_trigger_conditions,
    effective_lines,
    prettify,
    property_values,
    remove_group,
    remove_trigger_condition,
    set_group_logic,
    set_operator,
    set_outer_logic,
    set_property,
    set_trigger_attribute,
    set_trigger_logic,
    set_value,
    summarize,
    summarize_trigger_conditions,
    toggle_trigger_value,
)
from workflow_console.elements import OperatorOption, PropertyOption


def _city_group() -> ConditionGroup:
    return ConditionGroup(
        lines=[ConditionLine("city", "is", "Oslo"), ConditionLine("", "", "Bucharest")],
        group_logic="or",
    )


def test_branch_names_follow_condition_number() -> None:
    assert branch_name(3, 0) == "Branch 3.1"

    branches = add_branch(add_branch([], 1), 1)

    assert [branch.name for branch in branches] == ["Branch 1.1", "Branch 1.2"]
    assert all(branch.condition_node_number == 1 for branch in branches)


def test_add_branch_skips_names_taken_elsewhere() -> None:
    branches = add_branch(add_branch([], 1), 1)

    updated = add_branch(branches, 1, taken_names={"Branch 1.3"})

    assert [branch.name for branch in updated] == ["Branch 1.1", "Branch 1.2", "Branch 1.4"]
    assert len(branches) == 2


def test_later_lines_inherit_property_and_operator() -> None:
    assert effective_lines(_city_group()) == [("city", "is", "Oslo"), ("city", "is", "Bucharest")]


def test_summary_for_multi_line_group() -> None:
    branch = ConditionBranch(name="Branch 1.1", groups=[_city_group()])

    assert summarize(branch) == "City is Oslo OR City is Bucharest"


def test_summary_parenthesizes_groups_and_uses_outer_logic() -> None:
    branch = ConditionBranch(
        name="Branch 1.1",
        outer_logic="and",
        groups=[_city_group(), ConditionGroup(lines=[ConditionLine("country", "is_not", "US")])],
    )

    assert summarize(branch) == "(City is Oslo OR City is Bucharest) AND Country is not US"


def test_summary_skips_incomplete_lines() -> None:
    branch = ConditionBranch(
        name="Branch 1.1",
        groups=[
            ConditionGroup(lines=[ConditionLine("country", "is", "US"), ConditionLine("", "", "")]),
            ConditionGroup(lines=[ConditionLine("", "is", "Oslo")]),
        ],
    )

    assert summarize(branch) == "Country is US"
    assert summarize(ConditionBranch(name="Branch 1.2")) == ""


def test_prettify_tiers() -> None:
    labels = {"jobID": "Job ID", "profileSkills": "Profile skills"}

    assert prettify("jobID", labels) == "Job ID"
    assert prettify("job_id", labels) == "Job ID"
    assert prettify("profile_skills", labels) == "Profile skills"
    assert prettify("employee_tenure", labels) == "Employee Tenure"
    assert prettify("hireDate", labels) == "Hire Date"
    assert prettify("greater_than", {}, title_case=False) == "greater than"
    assert prettify("", labels) == ""


def test_summary_uses_instance_option_tables() -> None:
    branch = ConditionBranch(
        name="Branch 1.1",
        groups=[ConditionGroup(lines=[ConditionLine("tenure_band", "at_least", "2 years")])],
    )

    assert summarize(branch) == "Tenure Band at least 2 years"
    assert (
        summarize(
            branch,
            property_options=[PropertyOption("Seniority", "tenureBand")],
            operator_options=[OperatorOption("is at least", "at_least")],
        )
        == "Seniority is at least 2 years"
    )


def test_editing_operations_return_new_branches() -> None:
    branch = ConditionBranch(name="Branch 1.1")

    edited = set_property(branch, 0, "city")
    edited = set_value(edited, 0, 0, "Oslo")
    edited = add_line(edited, 0)
    edited = set_value(edited, 0, 1, "Bucharest")
    edited = set_group_logic(edited, 0, "and")

    assert branch.groups[0].lines[0].property == ""
    assert [line.logic for line in edited.groups[0].lines] == ["and", "and"]
    assert summarize(edited) == "City is Oslo AND City is Bucharest"

    reset = set_property(edited, 0, "country")
    assert reset.groups[0].lines[0].value == ""
    assert reset.groups[0].lines[1].property == ""

    grouped = set_outer_logic(add_group(edited), "and")
    assert len(grouped.groups) == 2
    assert grouped.outer_logic == "and"
    assert len(remove_group(grouped, 1).groups) == 1


def test_logic_values_are_validated() -> None:
    with pytest.raises(ValueError):
        set_outer_logic(ConditionBranch(name="Branch 1.1"), "xor")
    with pytest.raises(ValueError):
        ConditionBranch.from_dict({"name": "Branch 1.1", "outerLogic": "nand"})
    with pytest.raises(ValueError):
        ConditionBranch.from_dict({"outerLogic": "and"})


def test_branch_wire_format() -> None:
    payload = {
        "name": "Branch 2.1",
        "outerLogic": "and",
        "groups": [{"lines": [{"property": "city", "operator": "is", "value": "Oslo"}], "groupLogic": "or"}],
        "conditionNodeNumber": 2,
    }

    assert ConditionBranch.from_dict(payload).to_dict() == payload


def test_trigger_conditions_share_the_second_condition_logic() -> None:
    conditions = [
        TriggerCondition("city", "is", ["Oslo", "Bucharest"]),
        TriggerCondition("country", "is_not", ["US"], logic="or"),
    ]

    assert summarize_trigger_conditions(conditions) == "City is Oslo or Bucharest OR Country is not US"
    assert add_trigger_condition(conditions)[-1].logic == "or"
    assert [condition.logic for condition in set_trigger_logic(conditions, "and")] == ["and", "and"]


def test_trigger_condition_editing() -> None:
    conditions = add_trigger_condition([])
    conditions = set_trigger_attribute(conditions, 0, "city")
    conditions = toggle_trigger_value(conditions, 0, "Oslo")
    conditions = toggle_trigger_value(conditions, 0, "Bucharest")
    conditions = toggle_trigger_value(conditions, 0, "Oslo")

    assert conditions[0].values == ["Bucharest"]
    assert set_trigger_attribute(conditions, 0, "country")[0].values == []
    assert summarize_trigger_conditions([TriggerCondition("city")]) == ""

    pair = add_trigger_condition(conditions)
    assert [condition.attribute for condition in remove_trigger_condition(pair, 0)] == [""]
    assert len(pair) == 2


def test_operator_edit_and_property_values() -> None:
    branch = set_property(ConditionBranch(name="Branch 1.1"), 0, "country")
    branch = set_value(set_operator(branch, 0, 0, "is_not"), 0, 0, "US")

    assert summarize(branch) == "Country is not US"
    assert property_values("country") == ["US", "Canada"]
    assert property_values("tenure", [PropertyOption("Tenure", "tenure", ["1", "2"])]) == ["1", "2"]
    assert property_values("unknown") == []


def test_edit_branch_dispatches_actions() -> None:
    branch = ConditionBranch(name="Branch 1.1")

    branch = edit_branch(branch, "setProperty", {"group": 0, "value": "city"})
    branch = edit_branch(branch, "setValue", {"group": 0, "line": 0, "value": "Oslo"})
    branch = edit_branch(branch, "addLine", {"group": 0})
    branch = edit_branch(branch, "setValue", {"group": 0, "line": 1, "value": "Bucharest"})

    assert summarize(branch) == "City is Oslo OR City is Bucharest"
    assert edit_branch(branch, "setOuterLogic", {"value": "and"}).outer_logic == "and"

    with pytest.raises(ValueError):
        edit_branch(branch, "setValue", {"group": 4, "line": 0, "value": "x"})
    with pytest.raises(ValueError):
        edit_branch(branch, "explode", {})
    with pytest.raises(ValueError):
        edit_branch(branch, "setValue", {"group": 0, "line": 0})


def test_edit_trigger_conditions_dispatches_actions() -> None:
    conditions = edit_trigger_conditions([], "add", {})
    conditions = edit_trigger_conditions(conditions, "setAttribute", {"index": 0, "value": "country"})
    conditions = edit_trigger_conditions(conditions, "setOperator", {"index": 0, "value": "is_not"})
    conditions = edit_trigger_conditions(conditions, "toggleValue", {"index": 0, "value": "US"})

    assert summarize_trigger_conditions(conditions) == "Country is not US"
    assert edit_trigger_conditions(conditions, "remove", {"index": 0}) == []

    with pytest.raises(ValueError):
        edit_trigger_conditions(conditions, "toggleValue", {"index": 2, "value": "US"})
    with pytest.raises(ValueError):
        edit_trigger_conditions(conditions, "setLogic", {"value": "xor"})
