from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .activities import ActivityTemplate, TemplateNotFoundError, ensure_trigger_template, is_trigger_template
from .assistant import AssistantReply, SuggestionAssistant, target_branch
from .conditions import (
    TriggerCondition,
    edit_branch,
    edit_trigger_conditions,
    new_branch,
    summarize,
    summarize_trigger_conditions,
)
from .db import StorageError
from .elements import UIElement, edit_elements, elements_to_list, walk
from .evaluator import evaluate_branch, evaluate_trigger_conditions
from .references import render_map_description
from .values import FieldValue, TriggerConditionSet
from .visibility import FormEntry, build_form
from .workflow import (
    MAIN_BRANCH,
    AddNode,
    Command,
    NodeNotFoundError,
    SetTriggerValues,
    UpdateBranchConditions,
    UpdateNode,
    Workflow,
    WorkflowDocument,
    WorkflowNode,
    WorkflowNotFoundError,
    trigger_conditions,
)

logger = logging.getLogger(__name__)

WORKFLOW_FIELDS = ("name", "description", "status", "channel", "version", "locale", "creator")

Subscriber = Callable[[str, Workflow], None]


class WorkflowConsole:
    """In-memory console state backed by a storage collaborator.

    Every workflow edit swaps in a new document, notifies subscribers and then
    auto-saves. A failed auto-save only sets ``error``; memory stays ahead of storage.
    """

    def __init__(self, storage: Any, assistant: SuggestionAssistant | None = None) -> None:
        self.storage = storage
        self.assistant = assistant or SuggestionAssistant()
        self.templates: list[ActivityTemplate] = []
        self.workflows: dict[str, Workflow] = {}
        self.loading = False
        self.error: str | None = None
        self._subscribers: list[Subscriber] = []
        self._trigger_checked = False

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)
        return lambda: self._subscribers.remove(callback)

    def _notify(self, event: str, workflow: Workflow) -> None:
        for callback in list(self._subscribers):
            callback(event, workflow)

    def _record_failure(self, verb: str, noun: str, exc: Exception) -> None:
        self.error = f"Failed to {verb} {noun}: {exc}"
        logger.error("storage_failure", extra={"action": verb, "target": noun, "error": str(exc)})

    def clear_error(self) -> None:
        self.error = None

    def load(self) -> None:
        self.loading = True
        self.error = None
        self._trigger_checked = False
        try:
            templates = self.storage.load_templates()
            workflows = self.storage.load_workflows()
        except (StorageError, ValueError) as exc:
            logger.error("load_failed", extra={"error": str(exc)})
            self.templates = []
            self.workflows = {}
            self.error = "Failed to load data from database"
            return
        finally:
            self.loading = False

        self.templates = templates
        self.workflows = {workflow.id: workflow for workflow in workflows}
        logger.info("console_loaded", extra={"templates": len(templates), "workflows": len(workflows)})
        self._ensure_trigger_template()

    def _ensure_trigger_template(self) -> None:
        if self._trigger_checked:
            return
        self._trigger_checked = True
        try:
            self.templates = ensure_trigger_template(
                self.templates, self.storage.create_template, self.storage.delete_template
            )
        except StorageError as exc:
            self._record_failure("bootstrap", "trigger template", exc)

    def get_template(self, template_id: str) -> ActivityTemplate:
        for template in self.templates:
            if template.id == template_id:
                return template
        raise TemplateNotFoundError(f"unknown activity template: {template_id}")

    def trigger_template(self) -> ActivityTemplate | None:
        return next((template for template in self.templates if is_trigger_template(template)), None)

    def trigger_elements(self) -> list[UIElement]:
        template = self.trigger_template()
        return template.side_panel_elements if template is not None else []

    def create_template(self, payload: dict[str, Any]) -> ActivityTemplate:
        template = ActivityTemplate.from_dict({**payload, "id": ""})
        try:
            created = self.storage.create_template(template)
        except StorageError as exc:
            self._record_failure("create", "activity template", exc)
            raise
        self.templates = [*self.templates, created]
        logger.info("template_created", extra={"template_id": created.id, "template_name": created.name})
        return created

    def update_template(self, template_id: str, payload: dict[str, Any]) -> ActivityTemplate:
        current = self.get_template(template_id)
        template = ActivityTemplate.from_dict({**current.to_dict(), **payload, "id": template_id})
        try:
            updated = self.storage.update_template(template)
        except StorageError as exc:
            self._record_failure("update", "activity template", exc)
            raise
        self.templates = [updated if item.id == template_id else item for item in self.templates]
        logger.info("template_updated", extra={"template_id": template_id})
        return updated

    def delete_template(self, template_id: str) -> None:
        self.get_template(template_id)
        try:
            self.storage.delete_template(template_id)
        except StorageError as exc:
            self._record_failure("delete", "activity template", exc)
            raise
        self.templates = [item for item in self.templates if item.id != template_id]
        logger.info("template_deleted", extra={"template_id": template_id})

    def edit_template_elements(self, template_id: str, action: str, params: dict[str, Any]) -> ActivityTemplate:
        template = self.get_template(template_id)
        elements = edit_elements(template.side_panel_elements, action, params)
        return self.update_template(template_id, {"sidePanelElements": elements_to_list(elements)})

    def get_workflow(self, workflow_id: str) -> Workflow:
        try:
            return self.workflows[workflow_id]
        except KeyError:
            raise WorkflowNotFoundError(f"unknown workflow: {workflow_id}") from None

    def create_workflow(self, payload: dict[str, Any]) -> Workflow:
        workflow = Workflow.from_dict({**payload, "id": ""})
        try:
            created = self.storage.create_workflow(workflow)
        except StorageError as exc:
            self._record_failure("create", "workflow", exc)
            raise
        self.workflows = {**self.workflows, created.id: created}
        self._notify("workflow_created", created)
        logger.info("workflow_created", extra={"workflow_id": created.id})
        return created

    def delete_workflow(self, workflow_id: str) -> None:
        workflow = self.get_workflow(workflow_id)
        try:
            self.storage.delete_workflow(workflow_id)
        except StorageError as exc:
            self._record_failure("delete", "workflow", exc)
            raise
        self.workflows = {key: value for key, value in self.workflows.items() if key != workflow_id}
        self._notify("workflow_deleted", workflow)
        logger.info("workflow_deleted", extra={"workflow_id": workflow_id})

    def update_workflow(self, workflow_id: str, payload: dict[str, Any]) -> Workflow:
        current = self.get_workflow(workflow_id)
        merged = current.to_dict()
        merged.update({key: payload[key] for key in WORKFLOW_FIELDS if key in payload})
        return self._replace(Workflow.from_dict(merged), "workflow_updated")

    def _replace(self, workflow: Workflow, event: str) -> Workflow:
        self.workflows = {**self.workflows, workflow.id: workflow}
        self._notify(event, workflow)
        self._autosave(workflow)
        return workflow

    def _autosave(self, workflow: Workflow) -> None:
        try:
            self.storage.update_workflow(workflow)
        except StorageError as exc:
            self._record_failure("save", "workflow", exc)

    def apply(self, workflow_id: str, command: Command) -> Workflow:
        document = WorkflowDocument(self.get_workflow(workflow_id))
        updated = document.apply(command)
        return self._replace(updated, type(command).__name__)

    def document(self, workflow_id: str) -> WorkflowDocument:
        return WorkflowDocument(self.get_workflow(workflow_id))

    def add_node(self, workflow_id: str, template_id: str, position: int | None = None, branch: str = MAIN_BRANCH) -> Workflow:
        return self.apply(workflow_id, AddNode(self.get_template(template_id), position=position, branch=branch))

    def node(self, workflow_id: str, node_id: str) -> WorkflowNode:
        return self.document(workflow_id).node(node_id)

    def click_button(self, workflow_id: str, node_id: str, button_id: str) -> tuple[Workflow, list[UIElement]]:
        document = self.document(workflow_id)
        node = document.node(node_id)
        button = _find_element(node.elements, button_id)
        result = node.dynamic.click(button, node.elements)
        node.values[result.button_id] = result.value
        return self._replace(document.workflow, "button_clicked"), result.added

    def remove_dynamic_element(self, workflow_id: str, node_id: str, element_id: str) -> Workflow:
        document = self.document(workflow_id)
        node = document.node(node_id)
        node.values = node.dynamic.remove(element_id, node.values)
        return self._replace(document.workflow, "dynamic_element_removed")

    def edit_node_elements(self, workflow_id: str, node_id: str, action: str, params: dict[str, Any]) -> Workflow:
        node = self.node(workflow_id, node_id)
        elements = edit_elements(node.elements, action, params)
        return self.apply(workflow_id, UpdateNode(node_id, elements=elements))

    def form(self, workflow_id: str, node_id: str, tab: str | None = None) -> list[FormEntry]:
        node = self.node(workflow_id, node_id)
        return build_form(node.elements, node.values, node.dynamic.by_button, tab=tab)

    def trigger_form(self, workflow_id: str, tab: str | None = None) -> list[FormEntry]:
        workflow = self.get_workflow(workflow_id)
        return build_form(self.trigger_elements(), workflow.trigger_values, tab=tab)

    def set_trigger_values(self, workflow_id: str, values: dict[str, FieldValue]) -> Workflow:
        return self.apply(workflow_id, SetTriggerValues(values))

    def edit_branch_conditions(
        self, workflow_id: str, node_id: str, name: str, action: str, params: dict[str, Any]
    ) -> Workflow:
        node = self.node(workflow_id, node_id)
        if name not in node.branches:
            raise KeyError(f"branch {name} does not belong to node {node_id}")
        branch_set = node.branch_set()
        current = branch_set.get(name) if branch_set is not None else None
        branch = current or node.branch_conditions.get(name) or new_branch(name, node.condition_number or 0)
        return self.apply(workflow_id, UpdateBranchConditions(node_id, edit_branch(branch, action, params)))

    def edit_trigger(self, workflow_id: str, action: str, params: dict[str, Any]) -> Workflow:
        workflow = self.get_workflow(workflow_id)
        element = next(
            (element for element, _ in walk(self.trigger_elements()) if element.type == "trigger-conditions-module"),
            None,
        )
        if element is None:
            raise ValueError("the trigger template has no trigger-conditions-module element")
        current = workflow.trigger_values.get(element.id)
        conditions = current.conditions if isinstance(current, TriggerConditionSet) else []
        edited = edit_trigger_conditions(conditions, action, params)
        values = {**workflow.trigger_values, element.id: TriggerConditionSet(edited)}
        return self.set_trigger_values(workflow_id, values)

    def matching_branches(self, workflow_id: str, node_id: str, values: dict[str, FieldValue]) -> list[str]:
        node = self.node(workflow_id, node_id)
        if not node.is_condition:
            raise ValueError(f"node {node_id} is not a condition node")
        branch_set = node.branch_set()
        branches = branch_set.branches if branch_set is not None else list(node.branch_conditions.values())
        return [branch.name for branch in branches if evaluate_branch(branch, values, node.elements)]

    def trigger_matches(self, workflow_id: str, values: dict[str, FieldValue]) -> bool:
        workflow = self.get_workflow(workflow_id)
        return evaluate_trigger_conditions(_conditions_of(workflow), values, self.trigger_elements())

    def workflow_map(self, workflow_id: str) -> dict[str, Any]:
        document = self.document(workflow_id)
        workflow = document.workflow
        trigger = self.trigger_template()
        trigger_elements = trigger.side_panel_elements if trigger is not None else []
        return {
            "workflowId": workflow.id,
            "trigger": {
                "name": "Trigger",
                "description": render_map_description(
                    trigger.description if trigger is not None else "", trigger_elements, workflow.trigger_values
                ),
                "conditions": summarize_trigger_conditions(_conditions_of(workflow)),
            },
            "branches": [
                {"name": name, "nodes": [self._card(node) for node in document.nodes_for_branch(name)]}
                for name in document.valid_branch_names()
            ],
        }

    def _card(self, node: WorkflowNode) -> dict[str, Any]:
        try:
            template: ActivityTemplate | None = self.get_template(node.activity_template_id)
        except TemplateNotFoundError:
            template = None
        card: dict[str, Any] = {
            "id": node.id,
            "name": node.user_assigned_name or (template.name if template is not None else ""),
            "icon": template.icon.value if template is not None else None,
            "iconColor": template.icon_color if template is not None else None,
            "description": render_map_description(node.map_description, node.elements, node.values),
        }
        if node.is_condition:
            element = node.conditions_element()
            property_options = element.property_options if element is not None else None
            operator_options = element.operator_options if element is not None else None
            branch_set = node.branch_set()
            branches = {branch.name: branch for branch in branch_set.branches} if branch_set is not None else {}
            card["branches"] = []
            for name in node.branches:
                branch = branches.get(name) or node.branch_conditions.get(name)
                summary = summarize(branch, property_options, operator_options) if branch is not None else ""
                card["branches"].append({"name": name, "summary": summary})
        return card

    def suggest(self, workflow_id: str, messages: list[dict[str, str]]) -> tuple[AssistantReply, str]:
        document = self.document(workflow_id)
        reply = self.assistant.suggest(messages, self.templates)
        last_user = next((str(m.get("content") or "") for m in reversed(messages) if m.get("role") == "user"), "")
        return reply, target_branch(last_user, document)

    def apply_suggestions(self, workflow_id: str, template_ids: list[str], branch: str = MAIN_BRANCH) -> Workflow:
        document = self.document(workflow_id)
        for template_id in template_ids:
            document.apply(AddNode(self.get_template(template_id), branch=branch))
        return self._replace(document.workflow, "suggestions_applied")


def _conditions_of(workflow: Workflow) -> list[TriggerCondition]:
    condition_set = trigger_conditions(workflow)
    return condition_set.conditions if condition_set is not None else []


def _find_element(elements: list[UIElement], element_id: str) -> UIElement:
    for element, _ in walk(elements):
        if element.id == element_id:
            return element
    raise NodeNotFoundError(f"unknown element: {element_id}")
