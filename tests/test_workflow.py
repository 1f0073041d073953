import pytest

from workflow_console.activities import ActivityTemplate
from workflow_console.conditions import ConditionBranch, ConditionGroup, ConditionLine
from workflow_console.elements import new_element
from workflow_console.icons import IconName
from workflow_console.values import BranchSet, StringList, Text
from workflow_console.workflow import (
    AddBranch,
    AddNode,
    BranchNameConflictError,
    DeleteBranches,
    NodeNotFoundError,
    RemoveNode,
    RenameBranch,
    SetTriggerValues,
    UpdateBranchConditions,
    UpdateNode,
    Workflow,
    WorkflowDocument,
    WorkflowNode,
    parse_metadata,
)


def _message_template() -> ActivityTemplate:
    return ActivityTemplate(
        id="tpl-message",
        name="Message",
        icon=IconName.MESSAGE,
        description="Send #{Subject}",
        side_panel_elements=[new_element("text", "Subject", element_id="subject")],
    )


def _condition_template() -> ActivityTemplate:
    return ActivityTemplate(
        id="tpl-condition",
        name="Condition",
        icon=IconName.SPLIT,
        description="Route candidates",
        side_panel_elements=[new_element("conditions-module", "Conditions", element_id="conditions")],
    )


def _add(document: WorkflowDocument, template: ActivityTemplate, branch: str = "main", position: int | None = None) -> WorkflowNode:
    before = {node.id for node in document.nodes}
    document.apply(AddNode(template, position=position, branch=branch))
    return next(node for node in document.nodes if node.id not in before)


def _branch_references(node: WorkflowNode) -> set[str]:
    names = {node.branch, *node.branches, *node.branch_conditions}
    for value in node.values.values():
        if isinstance(value, BranchSet):
            names.update(branch.name for branch in value.branches)
    return names


@pytest.fixture
def document() -> WorkflowDocument:
    return WorkflowDocument(Workflow(id="wf-1", name="Onboarding"))


def test_add_node_copies_template_elements(document) -> None:
    template = _message_template()

    node = _add(document, template)
    template.side_panel_elements[0].label = "Renamed"

    assert node.elements[0].label == "Subject"
    assert node.activity_template_id == "tpl-message"
    assert node.branch == "main"
    assert node.map_description == "Send #{Subject}"
    assert node.is_condition is False


def test_add_node_inserts_at_position_within_branch(document) -> None:
    first = _add(document, _message_template())
    condition = _add(document, _condition_template())
    in_branch = _add(document, _message_template(), branch="Branch 1.1")
    last = _add(document, _message_template())

    front = _add(document, _message_template(), position=0)
    second_in_branch = _add(document, _message_template(), branch="Branch 1.1", position=0)

    assert [node.id for node in document.nodes_for_branch("main")] == [front.id, first.id, condition.id, last.id]
    assert [node.id for node in document.nodes_for_branch("Branch 1.1")] == [second_in_branch.id, in_branch.id]
    assert [node.id for node in document.nodes] == [
        front.id,
        first.id,
        condition.id,
        last.id,
        second_in_branch.id,
        in_branch.id,
    ]


def test_add_node_rejects_unknown_branch(document) -> None:
    with pytest.raises(ValueError):
        document.apply(AddNode(_message_template(), branch="Branch 9.9"))


def test_condition_nodes_get_stable_numbers_and_seeded_branches(document) -> None:
    first = _add(document, _condition_template())
    nested = _add(document, _condition_template(), branch="Branch 1.2")

    assert first.condition_number == 1
    assert first.branches == ["Branch 1.1", "Branch 1.2"]
    assert sorted(first.branch_conditions) == ["Branch 1.1", "Branch 1.2"]
    assert [branch.name for branch in first.branch_set().branches] == ["Branch 1.1", "Branch 1.2"]
    assert nested.condition_number == 2
    assert nested.branches == ["Branch 2.1", "Branch 2.2"]

    document.apply(RemoveNode(first.id))
    third = _add(document, _condition_template())

    assert document.nodes == [third]
    assert third.condition_number == 1


def test_condition_numbers_are_not_recomputed(document) -> None:
    first = _add(document, _condition_template())
    second = _add(document, _condition_template())
    third = _add(document, _condition_template())

    document.apply(RemoveNode(second.id))

    assert [first.condition_number, third.condition_number] == [1, 3]
    assert _add(document, _condition_template()).condition_number == 4


def test_add_branch_uses_persisted_number_and_stays_unique(document) -> None:
    condition = _add(document, _condition_template())

    document.apply(RenameBranch("Branch 1.1", "Branch 1.3"))
    document.apply(AddBranch(condition.id))

    assert condition.branches == ["Branch 1.3", "Branch 1.2", "Branch 1.4"]
    assert [branch.name for branch in condition.branch_set().branches] == ["Branch 1.3", "Branch 1.2", "Branch 1.4"]
    assert len(document.all_branches()) == len(set(document.all_branches()))

    plain = _add(document, _message_template())
    with pytest.raises(ValueError):
        document.apply(AddBranch(plain.id))


def test_rename_cascades_everywhere(document) -> None:
    condition = _add(document, _condition_template())
    member = _add(document, _message_template(), branch="Branch 1.1")

    document.apply(RenameBranch("Branch 1.1", "Approved"))

    assert member.branch == "Approved"
    assert condition.branches == ["Approved", "Branch 1.2"]
    assert "Approved" in condition.branch_conditions
    assert condition.branch_conditions["Approved"].name == "Approved"
    assert "Branch 1.1" not in condition.branch_conditions
    assert [branch.name for branch in condition.branch_set().branches] == ["Approved", "Branch 1.2"]


@pytest.mark.parametrize("new_name", ["", "   ", "main", "Branch 1.2", "Branch 2.1"])
def test_rename_rejects_empty_or_used_names(document, new_name) -> None:
    _add(document, _condition_template())
    _add(document, _condition_template(), branch="Branch 1.1")

    with pytest.raises(BranchNameConflictError):
        document.apply(RenameBranch("Branch 1.1", new_name))


def test_rename_unknown_branch(document) -> None:
    with pytest.raises(KeyError):
        document.apply(RenameBranch("Branch 4.1", "Other"))


def test_cascade_delete_removes_nested_descendants(document) -> None:
    head = _add(document, _message_template())
    outer = _add(document, _condition_template())
    in_first = _add(document, _message_template(), branch="Branch 1.1")
    inner = _add(document, _condition_template(), branch="Branch 1.1")
    deep_left = _add(document, _message_template(), branch="Branch 2.1")
    deep_right = _add(document, _message_template(), branch="Branch 2.2")
    in_second = _add(document, _message_template(), branch="Branch 1.2")

    document.apply(DeleteBranches(("Branch 1.1",)))

    surviving = {node.id for node in document.nodes}
    assert surviving == {head.id, outer.id, in_second.id}
    assert not surviving & {in_first.id, inner.id, deep_left.id, deep_right.id}
    deleted = {"Branch 1.1", "Branch 2.1", "Branch 2.2"}
    for node in document.nodes:
        assert not _branch_references(node) & deleted
    assert outer.branches == ["Branch 1.2"]
    assert document.valid_branch_names() == ["main", "Branch 1.2"]


def test_removing_a_condition_node_deletes_its_branches(document) -> None:
    head = _add(document, _message_template())
    outer = _add(document, _condition_template())
    _add(document, _message_template(), branch="Branch 1.1")
    _add(document, _condition_template(), branch="Branch 1.2")
    _add(document, _message_template(), branch="Branch 2.1")

    document.apply(RemoveNode(outer.id))

    assert [node.id for node in document.nodes] == [head.id]
    assert document.all_branches() == []


def test_orphans_are_dropped_until_stable() -> None:
    workflow = Workflow.from_dict(
        {
            "id": "wf-2",
            "name": "Broken",
            "nodes": [
                {"id": "a", "activityTemplateId": "tpl-message", "metadata": {"branch": "main"}},
                {
                    "id": "ghost-condition",
                    "activityTemplateId": "tpl-condition",
                    "metadata": {"branch": "Gone", "branches": ["Branch 5.1"], "conditionNodeNumber": 5},
                },
                {"id": "ghost-child", "activityTemplateId": "tpl-message", "metadata": {"branch": "Branch 5.1"}},
            ],
        }
    )
    document = WorkflowDocument(workflow)

    document.apply(DeleteBranches(("Unrelated",)))

    assert [node.id for node in document.nodes] == ["a"]


def test_update_node_merges_values_and_fields(document) -> None:
    node = _add(document, _message_template())

    document.apply(UpdateNode(node.id, values={"subject": Text("Welcome")}, user_assigned_name="Welcome mail"))
    document.apply(UpdateNode(node.id, values={"subject": None}, map_description="Plain"))

    assert node.values == {}
    assert node.user_assigned_name == "Welcome mail"
    assert node.map_description == "Plain"

    with pytest.raises(NodeNotFoundError):
        document.apply(UpdateNode("missing"))


def test_update_branch_conditions_syncs_branch_set(document) -> None:
    condition = _add(document, _condition_template())
    branch = ConditionBranch(
        name="Branch 1.2",
        groups=[ConditionGroup(lines=[ConditionLine("country", "is", "US")])],
    )

    document.apply(UpdateBranchConditions(condition.id, branch))

    stored = condition.branch_conditions["Branch 1.2"]
    assert stored.groups[0].lines[0].value == "US"
    assert stored.condition_node_number == 1
    assert condition.branch_set().get("Branch 1.2").groups[0].lines[0].property == "country"

    with pytest.raises(KeyError):
        document.apply(UpdateBranchConditions(condition.id, ConditionBranch(name="Branch 7.1")))


def test_apply_never_touches_the_source_workflow() -> None:
    source = Workflow(id="wf-3", name="Source")
    document = WorkflowDocument(source)

    updated = document.apply(SetTriggerValues({"trigger-type": Text("Manual")}))

    assert updated.trigger_values == {"trigger-type": Text("Manual")}
    assert source.trigger_values == {}
    assert updated is not source


def test_leaf_branch_follows_first_sub_branches(document) -> None:
    assert document.leaf_branch() == "main"

    _add(document, _condition_template())
    _add(document, _condition_template(), branch="Branch 1.1")

    assert document.leaf_branch() == "Branch 2.1"
    assert document.leaf_branch("Branch 1.2") == "Branch 1.2"


def test_node_wire_format_keeps_metadata_keys(document) -> None:
    condition = _add(document, _condition_template())

    payload = condition.to_dict()
    metadata = payload["metadata"]

    assert metadata["branch"] == "main"
    assert metadata["branches"] == ["Branch 1.1", "Branch 1.2"]
    assert set(metadata["branchConditions"]) == {"Branch 1.1", "Branch 1.2"}
    assert metadata["conditionNodeNumber"] == 1
    assert [branch["name"] for branch in metadata["conditions"]] == ["Branch 1.1", "Branch 1.2"]
    assert WorkflowNode.from_dict(payload).to_dict() == payload


def test_workflow_validates_status() -> None:
    with pytest.raises(ValueError):
        Workflow.from_dict({"name": "x", "status": "archived"})
    with pytest.raises(ValueError):
        Workflow.from_dict({"name": ""})


def test_emptying_the_branch_set_deletes_every_branch(document) -> None:
    condition = _add(document, _condition_template())
    _add(document, _message_template(), branch="Branch 1.1")

    document.apply(UpdateNode(condition.id, values=parse_metadata({"conditions": []}, condition.elements)))

    assert document.nodes == [condition]
    assert condition.branches == []
    assert condition.branch_conditions == {}
    assert condition.values["conditions"] == BranchSet([])


def test_dropping_a_branch_from_the_set_cascades(document) -> None:
    condition = _add(document, _condition_template())
    dropped = _add(document, _message_template(), branch="Branch 1.1")
    kept = _add(document, _message_template(), branch="Branch 1.2")

    values = parse_metadata({"conditions": [{"name": "Branch 1.2"}]}, condition.elements)
    document.apply(UpdateNode(condition.id, values=values))

    assert condition.branches == ["Branch 1.2"]
    assert set(condition.branch_conditions) == {"Branch 1.2"}
    assert kept in document.nodes
    assert dropped not in document.nodes


def test_branch_set_with_duplicate_names_is_rejected(document) -> None:
    condition = _add(document, _condition_template())
    values = parse_metadata({"conditions": [{"name": "Branch 1.1"}, {"name": "Branch 1.1"}]}, condition.elements)

    with pytest.raises(BranchNameConflictError):
        document.apply(UpdateNode(condition.id, values=values))


@pytest.mark.parametrize("taken", ["main", "Branch 2.1"])
def test_branch_set_cannot_reuse_names_from_elsewhere(document, taken) -> None:
    condition = _add(document, _condition_template())
    _add(document, _condition_template())
    values = parse_metadata({"conditions": [{"name": "Branch 1.1"}, {"name": taken}]}, condition.elements)

    with pytest.raises(BranchNameConflictError):
        document.apply(UpdateNode(condition.id, values=values))


def test_conditions_value_must_be_a_branch_set(document) -> None:
    condition = _add(document, _condition_template())

    with pytest.raises(ValueError):
        parse_metadata({"conditions": ["Branch 1.1"]}, condition.elements)
    with pytest.raises(ValueError):
        document.apply(UpdateNode(condition.id, values={"conditions": StringList(())}))


def test_metadata_without_a_matching_element_falls_back_to_shape(document) -> None:
    condition = _add(document, _condition_template())

    assert parse_metadata({"notes": []}, condition.elements) == {"notes": StringList(())}
    assert parse_metadata({"conditions": []}) == {"conditions": StringList(())}


def test_empty_branch_set_survives_a_reload(document) -> None:
    condition = _add(document, _condition_template())
    document.apply(DeleteBranches(("Branch 1.1", "Branch 1.2")))

    reloaded = Workflow.from_dict(document.workflow.to_dict())

    [node] = reloaded.nodes
    assert node.id == condition.id
    assert node.values["conditions"] == BranchSet([])
    assert node.branch_set() == BranchSet([])
    assert node.branches == []
