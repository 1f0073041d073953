from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Union

from .activities import ActivityTemplate, is_condition_template
from .conditions import ConditionBranch, add_branch, new_branch
from .elements import UIElement, elements_from_list, elements_to_list, new_element_id
from .materializer import DynamicElements
from .values import BranchSet, FieldValue, TriggerConditionSet, dump_values, element_types, parse_value, parse_values

logger = logging.getLogger(__name__)

MAIN_BRANCH = "main"
WORKFLOW_STATUSES = ("draft", "published")
NODE_METADATA_KEYS = ("branch", "branches", "branchConditions", "conditionNodeNumber")


class BranchNameConflictError(ValueError):
    """Raised when a branch rename would produce an empty or duplicate name."""


class WorkflowNotFoundError(KeyError):
    """Raised when a workflow id is unknown."""


class NodeNotFoundError(KeyError):
    """Raised when a node id is unknown within a workflow."""


@dataclass(slots=True)
class WorkflowNode:
    id: str
    activity_template_id: str
    elements: list[UIElement] = field(default_factory=list)
    values: dict[str, FieldValue] = field(default_factory=dict)
    user_assigned_name: str | None = None
    side_panel_description: str | None = None
    map_description: str | None = None
    branch: str = MAIN_BRANCH
    branches: list[str] = field(default_factory=list)
    branch_conditions: dict[str, ConditionBranch] = field(default_factory=dict)
    condition_number: int | None = None
    dynamic: DynamicElements = field(default_factory=DynamicElements)

    @property
    def is_condition(self) -> bool:
        return self.condition_number is not None

    def conditions_element(self) -> UIElement | None:
        return next((element for element in self.elements if element.type == "conditions-module"), None)

    def branch_set(self) -> BranchSet | None:
        element = self.conditions_element()
        if element is None:
            return None
        value = self.values.get(element.id)
        return value if isinstance(value, BranchSet) else None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> WorkflowNode:
        node_id = str(payload.get("id") or "").strip()
        if not node_id:
            raise ValueError("node id is required")
        metadata = dict(payload.get("metadata") or {})
        branch_conditions = {
            str(name): ConditionBranch.from_dict({"name": name, **(item or {})})
            for name, item in (metadata.get("branchConditions") or {}).items()
        }
        condition_number = metadata.get("conditionNodeNumber")
        elements = elements_from_list(payload.get("localSidePanelElements"))
        return cls(
            id=node_id,
            activity_template_id=str(payload.get("activityTemplateId") or ""),
            elements=elements,
            values=parse_values(
                {key: value for key, value in metadata.items() if key not in NODE_METADATA_KEYS}, elements
            ),
            user_assigned_name=payload.get("userAssignedName"),
            side_panel_description=payload.get("sidePanelDescription"),
            map_description=payload.get("mapDescription"),
            branch=str(metadata.get("branch") or MAIN_BRANCH),
            branches=[str(name) for name in metadata.get("branches") or []],
            branch_conditions=branch_conditions,
            condition_number=int(condition_number) if condition_number is not None else None,
            dynamic=DynamicElements.from_dict(payload.get("dynamicElements")),
        )

    def to_dict(self) -> dict[str, Any]:
        metadata = dump_values(self.values)
        metadata["branch"] = self.branch
        if self.is_condition:
            metadata["branches"] = list(self.branches)
            metadata["branchConditions"] = {name: branch.to_dict() for name, branch in self.branch_conditions.items()}
            metadata["conditionNodeNumber"] = self.condition_number
        payload: dict[str, Any] = {
            "id": self.id,
            "activityTemplateId": self.activity_template_id,
            "localSidePanelElements": elements_to_list(self.elements),
            "metadata": metadata,
        }
        if self.user_assigned_name is not None:
            payload["userAssignedName"] = self.user_assigned_name
        if self.side_panel_description is not None:
            payload["sidePanelDescription"] = self.side_panel_description
        if self.map_description is not None:
            payload["mapDescription"] = self.map_description
        if self.dynamic.by_button:
            payload["dynamicElements"] = self.dynamic.to_dict()
        return payload


@dataclass(slots=True)
class Workflow:
    id: str
    name: str
    description: str = ""
    nodes: list[WorkflowNode] = field(default_factory=list)
    status: str = "draft"
    trigger_values: dict[str, FieldValue] = field(default_factory=dict)
    channel: str | None = None
    version: str | None = None
    locale: str | None = None
    creator: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Workflow:
        name = str(payload.get("name") or "").strip()
        if not name:
            raise ValueError("workflow name is required")
        status = str(payload.get("status") or "draft")
        if status not in WORKFLOW_STATUSES:
            raise ValueError(f"unsupported workflow status: {status!r}")
        return cls(
            id=str(payload.get("id") or ""),
            name=name,
            description=str(payload.get("description") or ""),
            nodes=[WorkflowNode.from_dict(item) for item in payload.get("nodes") or []],
            status=status,
            trigger_values=parse_values(payload.get("triggerValues") or payload.get("triggerMetadata")),
            channel=payload.get("channel"),
            version=payload.get("version"),
            locale=payload.get("locale"),
            creator=payload.get("creator"),
            created_at=payload.get("createdAt"),
            updated_at=payload.get("updatedAt"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "nodes": [node.to_dict() for node in self.nodes],
            "status": self.status,
            "triggerValues": dump_values(self.trigger_values),
            "channel": self.channel,
            "version": self.version,
            "locale": self.locale,
            "creator": self.creator,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(slots=True, frozen=True)
class AddNode:
    template: ActivityTemplate
    position: int | None = None
    branch: str = MAIN_BRANCH


@dataclass(slots=True, frozen=True)
class UpdateNode:
    node_id: str
    values: dict[str, FieldValue | None] | None = None
    user_assigned_name: str | None = None
    side_panel_description: str | None = None
    map_description: str | None = None
    elements: list[UIElement] | None = None


@dataclass(slots=True, frozen=True)
class RemoveNode:
    node_id: str


@dataclass(slots=True, frozen=True)
class AddBranch:
    node_id: str


@dataclass(slots=True, frozen=True)
class RenameBranch:
    old_name: str
    new_name: str


@dataclass(slots=True, frozen=True)
class DeleteBranches:
    names: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class UpdateBranchConditions:
    node_id: str
    branch: ConditionBranch


@dataclass(slots=True, frozen=True)
class SetTriggerValues:
    values: dict[str, FieldValue]


Command = Union[AddNode, UpdateNode, RemoveNode, AddBranch, RenameBranch, DeleteBranches, UpdateBranchConditions, SetTriggerValues]


class WorkflowDocument:
    """Edits a private copy of a workflow; the caller swaps the result in wholesale."""

    def __init__(self, workflow: Workflow) -> None:
        self.workflow = copy.deepcopy(workflow)

    @property
    def nodes(self) -> list[WorkflowNode]:
        return self.workflow.nodes

    def node(self, node_id: str) -> WorkflowNode:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise NodeNotFoundError(f"unknown node: {node_id}")

    def condition_nodes(self) -> list[WorkflowNode]:
        return [node for node in self.nodes if node.is_condition]

    def nodes_for_branch(self, name: str) -> list[WorkflowNode]:
        return [node for node in self.nodes if node.branch == name]

    def all_branches(self) -> list[str]:
        return [name for node in self.condition_nodes() for name in node.branches]

    def valid_branch_names(self) -> list[str]:
        return [MAIN_BRANCH, *self.all_branches()]

    def leaf_branch(self, start: str = MAIN_BRANCH) -> str:
        current = start
        visited = {current}
        while True:
            condition = next((node for node in self.nodes_for_branch(current) if node.is_condition and node.branches), None)
            if condition is None or condition.branches[0] in visited:
                return current
            current = condition.branches[0]
            visited.add(current)

    def apply(self, command: Command) -> Workflow:
        handler = {
            AddNode: self._add_node,
            UpdateNode: self._update_node,
            RemoveNode: self._remove_node,
            AddBranch: self._add_branch,
            RenameBranch: self._rename_branch,
            DeleteBranches: self._delete_branches,
            UpdateBranchConditions: self._update_branch_conditions,
            SetTriggerValues: self._set_trigger_values,
        }.get(type(command))
        if handler is None:
            raise TypeError(f"unsupported command: {command!r}")
        handler(command)
        return self.workflow

    def _add_node(self, command: AddNode) -> None:
        if command.branch not in self.valid_branch_names():
            raise ValueError(f"unknown branch: {command.branch}")
        template = command.template
        node = WorkflowNode(
            id=new_element_id("node"),
            activity_template_id=template.id,
            elements=copy.deepcopy(template.side_panel_elements),
            side_panel_description=template.side_panel_description or None,
            map_description=template.description or None,
            branch=command.branch,
        )
        if is_condition_template(template):
            self._seed_condition_node(node)

        branch_nodes = self.nodes_for_branch(command.branch)
        if command.position is not None and 0 <= command.position < len(branch_nodes):
            index = self.nodes.index(branch_nodes[command.position])
        elif branch_nodes:
            index = self.nodes.index(branch_nodes[-1]) + 1
        else:
            index = len(self.nodes)
        self.nodes.insert(index, node)
        logger.info(
            "node_added",
            extra={"workflow_id": self.workflow.id, "node_id": node.id, "branch": node.branch, "index": index},
        )

    def _seed_condition_node(self, node: WorkflowNode) -> None:
        number = max((other.condition_number or 0 for other in self.condition_nodes()), default=0) + 1
        taken = set(self.valid_branch_names())
        branches: list[ConditionBranch] = []
        for _ in range(2):
            branches = add_branch(branches, number, taken_names=taken)
        node.condition_number = number
        node.branches = [branch.name for branch in branches]
        node.branch_conditions = {branch.name: copy.deepcopy(branch) for branch in branches}
        element = node.conditions_element()
        if element is not None:
            node.values[element.id] = BranchSet(branches)

    def _update_node(self, command: UpdateNode) -> None:
        node = self.node(command.node_id)
        if command.elements is not None:
            node.elements = copy.deepcopy(command.elements)
        for key, value in (command.values or {}).items():
            if value is None:
                node.values.pop(key, None)
            else:
                node.values[key] = value
        if command.user_assigned_name is not None:
            node.user_assigned_name = command.user_assigned_name or None
        if command.side_panel_description is not None:
            node.side_panel_description = command.side_panel_description
        if command.map_description is not None:
            node.map_description = command.map_description
        element = node.conditions_element()
        if not node.is_condition or element is None or element.id not in node.values:
            return
        branch_set = node.values[element.id]
        if not isinstance(branch_set, BranchSet):
            raise ValueError(f"{element.id} must hold a list of branches")
        self._sync_branch_set(node, branch_set)

    def _sync_branch_set(self, node: WorkflowNode, branch_set: BranchSet) -> None:
        names = [branch.name for branch in branch_set.branches]
        if len(set(names)) != len(names):
            raise BranchNameConflictError("branch names must be unique")
        others = {name for other in self.condition_nodes() if other.id != node.id for name in other.branches}
        clashing = sorted(others & set(names))
        if clashing or MAIN_BRANCH in names:
            raise BranchNameConflictError(f"branch name already used: {', '.join(clashing) or MAIN_BRANCH}")
        node.branch_conditions = {branch.name: copy.deepcopy(branch) for branch in branch_set.branches}
        removed = [name for name in node.branches if name not in names]
        node.branches = names
        if removed:
            self._delete_branches(DeleteBranches(tuple(removed)))

    def _remove_node(self, command: RemoveNode) -> None:
        node = self.node(command.node_id)
        self.nodes.remove(node)
        logger.info("node_removed", extra={"workflow_id": self.workflow.id, "node_id": node.id})
        if node.is_condition and node.branches:
            self._delete_branches(DeleteBranches(tuple(node.branches)))

    def _add_branch(self, command: AddBranch) -> None:
        node = self.node(command.node_id)
        if not node.is_condition:
            raise ValueError(f"node {node.id} is not a condition node")
        number = node.condition_number or 0
        current = self._node_branches(node)
        others = [name for name in self.valid_branch_names() if name not in node.branches]
        updated = add_branch(current, number, taken_names=others)
        added = updated[-1]
        node.branches.append(added.name)
        node.branch_conditions[added.name] = copy.deepcopy(added)
        self._store_branch_set(node, updated)
        logger.info("branch_added", extra={"workflow_id": self.workflow.id, "node_id": node.id, "branch": added.name})

    def _node_branches(self, node: WorkflowNode) -> list[ConditionBranch]:
        branch_set = node.branch_set()
        if branch_set is not None:
            return copy.deepcopy(branch_set.branches)
        number = node.condition_number or 0
        return [node.branch_conditions.get(name) or new_branch(name, number) for name in node.branches]

    def _store_branch_set(self, node: WorkflowNode, branches: list[ConditionBranch]) -> None:
        element = node.conditions_element()
        if element is not None:
            node.values[element.id] = BranchSet(copy.deepcopy(branches))

    def _rename_branch(self, command: RenameBranch) -> None:
        old, new = command.old_name, command.new_name.strip()
        if old not in self.all_branches():
            raise KeyError(f"unknown branch: {old}")
        if old == new:
            return
        if not new:
            raise BranchNameConflictError("branch name cannot be empty")
        if new in self.valid_branch_names():
            raise BranchNameConflictError(f"branch name already used: {new}")

        for node in self.nodes:
            if node.branch == old:
                node.branch = new
            node.branches = [new if name == old else name for name in node.branches]
            if old in node.branch_conditions:
                node.branch_conditions = {
                    (new if name == old else name): branch for name, branch in node.branch_conditions.items()
                }
                node.branch_conditions[new].name = new
            for value in node.values.values():
                if isinstance(value, BranchSet):
                    for branch in value.branches:
                        if branch.name == old:
                            branch.name = new
        logger.info("branch_renamed", extra={"workflow_id": self.workflow.id, "old": old, "new": new})

    def _delete_branches(self, command: DeleteBranches) -> None:
        deleted = set(command.names)
        if not deleted:
            return

        # follow nested condition nodes until no new branch names turn up
        doomed: set[str] = set()
        pending = set(deleted)
        while pending:
            name = pending.pop()
            for node in self.nodes_for_branch(name):
                if node.id in doomed:
                    continue
                doomed.add(node.id)
                for child in node.branches:
                    if child not in deleted:
                        deleted.add(child)
                        pending.add(child)

        self.workflow.nodes = [node for node in self.nodes if node.id not in doomed]

        for node in self.nodes:
            node.branches = [name for name in node.branches if name not in deleted]
            node.branch_conditions = {
                name: branch for name, branch in node.branch_conditions.items() if name not in deleted
            }
            for key, value in list(node.values.items()):
                if isinstance(value, BranchSet):
                    node.values[key] = BranchSet([branch for branch in value.branches if branch.name not in deleted])

        orphans_removed = 0
        while True:
            valid = set(self.valid_branch_names())
            orphans = [node for node in self.nodes if node.branch not in valid]
            if not orphans:
                break
            orphan_ids = {node.id for node in orphans}
            self.workflow.nodes = [node for node in self.nodes if node.id not in orphan_ids]
            orphans_removed += len(orphans)

        logger.info(
            "branches_deleted",
            extra={
                "workflow_id": self.workflow.id,
                "branches": sorted(deleted),
                "nodes_removed": len(doomed) + orphans_removed,
            },
        )

    def _update_branch_conditions(self, command: UpdateBranchConditions) -> None:
        node = self.node(command.node_id)
        name = command.branch.name
        if name not in node.branches:
            raise KeyError(f"branch {name} does not belong to node {node.id}")
        branch = copy.deepcopy(command.branch)
        branch.condition_node_number = node.condition_number or 0
        node.branch_conditions[name] = branch
        branches = [branch if item.name == name else item for item in self._node_branches(node)]
        self._store_branch_set(node, branches)

    def _set_trigger_values(self, command: SetTriggerValues) -> None:
        self.workflow.trigger_values = dict(command.values)


def trigger_conditions(workflow: Workflow) -> TriggerConditionSet | None:
    for value in workflow.trigger_values.values():
        if isinstance(value, TriggerConditionSet):
            return value
    return None


def parse_metadata(
    payload: dict[str, Any] | None, elements: list[UIElement] | None = None
) -> dict[str, FieldValue | None]:
    """Element values from a node metadata patch; ``None`` clears a value."""
    types = element_types(elements)
    return {
        str(key): parse_value(value, types.get(str(key)))
        for key, value in (payload or {}).items()
        if key not in NODE_METADATA_KEYS
    }

