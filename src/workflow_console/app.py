from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from flask import Flask, jsonify, request
from werkzeug.exceptions import BadRequest, HTTPException

from .activities import grouped_catalog
from .assistant import SuggestionAssistant
from .conditions import ConditionBranch
from .console import WorkflowConsole
from .db import SqliteStorage, StorageError
from .elements import elements_from_list, required_param
from .icons import registry_payload
from .references import (
    get_suggestions,
    insert_reference,
    render_map_description,
    resolve_references,
    suggestion_query,
)
from .values import parse_values
from .workflow import (
    MAIN_BRANCH,
    AddBranch,
    DeleteBranches,
    RemoveNode,
    RenameBranch,
    UpdateBranchConditions,
    UpdateNode,
    parse_metadata,
)

DELETE_BRANCHES_KEY = "__deleteNodesInBranches"


def _db_path(app: Flask) -> Path:
    return Path(app.config["DATABASE_PATH"])


def _configure_observability(app: Flask, app_name: str) -> None:
    app.config["APP_NAME"] = app_name
    level_name = os.environ.get("APP_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger("workflow_console").setLevel(level)


def _error_message(error: Exception) -> str:
    return str(error.args[0]) if error.args else error.__class__.__name__


def _configure_error_handlers(app: Flask) -> None:
    @app.errorhandler(BadRequest)
    def handle_bad_request(error: BadRequest) -> Any:
        app.logger.warning("bad_request", extra={"path": request.path, "method": request.method, "error": str(error)})
        return jsonify({"error": "invalid request payload"}), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException) -> Any:
        app.logger.warning(
            "http_error",
            extra={"path": request.path, "method": request.method, "status_code": error.code, "error": error.description},
        )
        return jsonify({"error": error.description}), error.code

    @app.errorhandler(KeyError)
    def handle_not_found(error: KeyError) -> Any:
        app.logger.info("not_found", extra={"path": request.path, "method": request.method, "error": _error_message(error)})
        return jsonify({"error": _error_message(error)}), 404

    @app.errorhandler(ValueError)
    def handle_invalid(error: ValueError) -> Any:
        app.logger.info("invalid_input", extra={"path": request.path, "method": request.method, "error": str(error)})
        return jsonify({"error": str(error)}), 400

    @app.errorhandler(StorageError)
    def handle_storage_error(error: StorageError) -> Any:
        console: WorkflowConsole = app.extensions["workflow_console"]
        return jsonify({"error": console.error or str(error)}), 503

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception) -> Any:
        app.logger.exception("unexpected_error", extra={"path": request.path, "method": request.method})
        return jsonify({"error": "internal server error"}), 500


def _json_body() -> dict[str, Any]:
    body = request.get_json(force=True, silent=False) or {}
    if not isinstance(body, dict):
        raise BadRequest("expected a JSON object")
    return body


def _edit_request() -> tuple[str, dict[str, Any]]:
    params = dict(_json_body())
    action = str(params.pop("action", "") or "")
    if not action:
        raise ValueError("action is required")
    return action, params


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def create_console_app(
    database_path: str | None = None,
    storage: Any | None = None,
    assistant: SuggestionAssistant | None = None,
) -> Flask:
    app = Flask(__name__)
    _configure_observability(app, "console")
    _configure_error_handlers(app)
    app.config["DATABASE_PATH"] = database_path or os.environ.get("WORKFLOW_DB_PATH", "./workflows.db")

    console = WorkflowConsole(storage or SqliteStorage(_db_path(app)), assistant)
    console.load()
    app.extensions["workflow_console"] = console

    @app.get("/healthz")
    def healthz() -> Any:
        return jsonify({"status": "ok", "app": app.config["APP_NAME"]})

    @app.get("/api/state")
    def state() -> Any:
        return jsonify({"loading": console.loading, "error": console.error})

    @app.delete("/api/state/error")
    def clear_error() -> Any:
        console.clear_error()
        return jsonify({"loading": console.loading, "error": console.error})

    @app.get("/api/icons")
    def icons() -> Any:
        return jsonify(registry_payload())

    @app.get("/api/templates")
    def list_templates() -> Any:
        search = request.args.get("search", "")
        if request.args.get("grouped"):
            groups = grouped_catalog(console.templates, search)
            return jsonify(
                {"groups": {name: [item.to_dict() for item in items] for name, items in groups.items()}}
            )
        return jsonify({"templates": [template.to_dict() for template in console.templates]})

    @app.post("/api/templates")
    def create_template() -> Any:
        template = console.create_template(_json_body())
        return jsonify(template.to_dict()), 201

    @app.put("/api/templates/<template_id>")
    def update_template(template_id: str) -> Any:
        return jsonify(console.update_template(template_id, _json_body()).to_dict())

    @app.post("/api/templates/<template_id>/elements")
    def edit_template_elements(template_id: str) -> Any:
        action, params = _edit_request()
        return jsonify(console.edit_template_elements(template_id, action, params).to_dict())

    @app.delete("/api/templates/<template_id>")
    def delete_template(template_id: str) -> Any:
        console.delete_template(template_id)
        return jsonify({"deleted": template_id})

    @app.get("/api/workflows")
    def list_workflows() -> Any:
        return jsonify({"workflows": [workflow.to_dict() for workflow in console.workflows.values()]})

    @app.post("/api/workflows")
    def create_workflow() -> Any:
        workflow = console.create_workflow(_json_body())
        return jsonify(workflow.to_dict()), 201

    @app.get("/api/workflows/<workflow_id>")
    def get_workflow(workflow_id: str) -> Any:
        return jsonify(console.get_workflow(workflow_id).to_dict())

    @app.put("/api/workflows/<workflow_id>")
    def update_workflow(workflow_id: str) -> Any:
        return jsonify(console.update_workflow(workflow_id, _json_body()).to_dict())

    @app.delete("/api/workflows/<workflow_id>")
    def delete_workflow(workflow_id: str) -> Any:
        console.delete_workflow(workflow_id)
        return jsonify({"deleted": workflow_id})

    @app.post("/api/workflows/<workflow_id>/nodes")
    def add_node(workflow_id: str) -> Any:
        body = _json_body()
        template_id = str(body.get("templateId") or "").strip()
        if not template_id:
            raise ValueError("templateId is required")
        workflow = console.add_node(
            workflow_id,
            template_id,
            position=_optional_int(body.get("position")),
            branch=str(body.get("branch") or MAIN_BRANCH),
        )
        return jsonify(workflow.to_dict()), 201

    @app.put("/api/workflows/<workflow_id>/nodes/<node_id>")
    def update_node(workflow_id: str, node_id: str) -> Any:
        body = _json_body()
        metadata = dict(body.get("metadata") or {})
        # older clients signal a cascade through the metadata bag
        pending_delete = metadata.pop(DELETE_BRANCHES_KEY, None)
        raw_elements = body.get("localSidePanelElements")
        elements = elements_from_list(raw_elements) if raw_elements is not None else None
        typed_by = elements if elements is not None else console.node(workflow_id, node_id).elements
        workflow = console.apply(
            workflow_id,
            UpdateNode(
                node_id=node_id,
                values=parse_metadata(metadata, typed_by),
                user_assigned_name=body.get("userAssignedName"),
                side_panel_description=body.get("sidePanelDescription"),
                map_description=body.get("mapDescription"),
                elements=elements,
            ),
        )
        if pending_delete:
            workflow = console.apply(workflow_id, DeleteBranches(tuple(str(name) for name in pending_delete)))
        return jsonify(workflow.to_dict())

    @app.post("/api/workflows/<workflow_id>/nodes/<node_id>/elements")
    def edit_node_elements(workflow_id: str, node_id: str) -> Any:
        action, params = _edit_request()
        return jsonify(console.edit_node_elements(workflow_id, node_id, action, params).to_dict())

    @app.delete("/api/workflows/<workflow_id>/nodes/<node_id>")
    def remove_node(workflow_id: str, node_id: str) -> Any:
        return jsonify(console.apply(workflow_id, RemoveNode(node_id)).to_dict())

    @app.get("/api/workflows/<workflow_id>/nodes/<node_id>/form")
    def node_form(workflow_id: str, node_id: str) -> Any:
        entries = console.form(workflow_id, node_id, tab=request.args.get("tab") or None)
        return jsonify({"entries": [entry.to_dict() for entry in entries]})

    @app.post("/api/workflows/<workflow_id>/nodes/<node_id>/buttons/<button_id>/click")
    def click_button(workflow_id: str, node_id: str, button_id: str) -> Any:
        workflow, added = console.click_button(workflow_id, node_id, button_id)
        return jsonify({"workflow": workflow.to_dict(), "added": [element.to_dict() for element in added]})

    @app.delete("/api/workflows/<workflow_id>/nodes/<node_id>/dynamic/<element_id>")
    def remove_dynamic_element(workflow_id: str, node_id: str, element_id: str) -> Any:
        return jsonify(console.remove_dynamic_element(workflow_id, node_id, element_id).to_dict())

    @app.post("/api/workflows/<workflow_id>/nodes/<node_id>/branches")
    def add_branch(workflow_id: str, node_id: str) -> Any:
        return jsonify(console.apply(workflow_id, AddBranch(node_id)).to_dict()), 201

    @app.put("/api/workflows/<workflow_id>/nodes/<node_id>/branches/<name>")
    def update_branch_conditions(workflow_id: str, node_id: str, name: str) -> Any:
        branch = ConditionBranch.from_dict({**_json_body(), "name": name})
        return jsonify(console.apply(workflow_id, UpdateBranchConditions(node_id, branch)).to_dict())

    @app.post("/api/workflows/<workflow_id>/nodes/<node_id>/branches/<name>/edit")
    def edit_branch_conditions(workflow_id: str, node_id: str, name: str) -> Any:
        action, params = _edit_request()
        return jsonify(console.edit_branch_conditions(workflow_id, node_id, name, action, params).to_dict())

    @app.post("/api/workflows/<workflow_id>/nodes/<node_id>/evaluate")
    def evaluate_node(workflow_id: str, node_id: str) -> Any:
        values = parse_values(_json_body().get("values"))
        return jsonify({"branches": console.matching_branches(workflow_id, node_id, values)})

    @app.post("/api/workflows/<workflow_id>/branches/rename")
    def rename_branch(workflow_id: str) -> Any:
        body = _json_body()
        command = RenameBranch(str(body.get("old") or ""), str(body.get("new") or ""))
        return jsonify(console.apply(workflow_id, command).to_dict())

    @app.post("/api/workflows/<workflow_id>/branches/delete")
    def delete_branches(workflow_id: str) -> Any:
        names = _json_body().get("names") or []
        if not isinstance(names, list):
            raise ValueError("names must be a list")
        return jsonify(console.apply(workflow_id, DeleteBranches(tuple(str(name) for name in names))).to_dict())

    @app.put("/api/workflows/<workflow_id>/trigger")
    def set_trigger(workflow_id: str) -> Any:
        values = parse_values(_json_body().get("values"), console.trigger_elements())
        return jsonify(console.set_trigger_values(workflow_id, values).to_dict())

    @app.post("/api/workflows/<workflow_id>/trigger/conditions")
    def edit_trigger_conditions(workflow_id: str) -> Any:
        action, params = _edit_request()
        return jsonify(console.edit_trigger(workflow_id, action, params).to_dict())

    @app.get("/api/workflows/<workflow_id>/trigger/form")
    def trigger_form(workflow_id: str) -> Any:
        entries = console.trigger_form(workflow_id, tab=request.args.get("tab") or None)
        return jsonify({"entries": [entry.to_dict() for entry in entries]})

    @app.post("/api/workflows/<workflow_id>/trigger/evaluate")
    def evaluate_trigger(workflow_id: str) -> Any:
        values = parse_values(_json_body().get("values"), console.trigger_elements())
        return jsonify({"matches": console.trigger_matches(workflow_id, values)})

    @app.get("/api/workflows/<workflow_id>/map")
    def workflow_map(workflow_id: str) -> Any:
        return jsonify(console.workflow_map(workflow_id))

    @app.post("/api/references/suggestions")
    def reference_suggestions() -> Any:
        body = _json_body()
        elements = elements_from_list(body.get("elements"))
        if "prefix" in body:
            query: str | None = str(body.get("prefix") or "")
        else:
            query = suggestion_query(str(body.get("text") or ""), int(body.get("cursor") or 0))
        if query is None:
            return jsonify({"query": None, "suggestions": []})
        suggestions = get_suggestions(query, elements, referenceable_only=bool(body.get("referenceableOnly", True)))
        return jsonify(
            {
                "query": query,
                "suggestions": [
                    {"id": element.id, "label": element.label, "type": element.type} for element in suggestions
                ],
            }
        )

    @app.post("/api/references/resolve")
    def resolve() -> Any:
        body = _json_body()
        elements = elements_from_list(body.get("elements"))
        values = parse_values(body.get("values"), elements)
        text = str(body.get("text") or "")
        return jsonify(
            {
                "text": resolve_references(text, elements, values),
                "mapDescription": render_map_description(text, elements, values),
            }
        )

    @app.post("/api/references/insert")
    def reference_insert() -> Any:
        body = _json_body()
        text, cursor = insert_reference(
            str(body.get("text") or ""), int(body.get("cursor") or 0), str(required_param(body, "label"))
        )
        return jsonify({"text": text, "cursor": cursor})

    @app.post("/api/workflows/<workflow_id>/assistant")
    def assistant_suggest(workflow_id: str) -> Any:
        messages = _json_body().get("messages") or []
        if not isinstance(messages, list):
            raise ValueError("messages must be a list")
        reply, branch = console.suggest(workflow_id, messages)
        return jsonify({**reply.to_dict(), "branch": branch})

    @app.post("/api/workflows/<workflow_id>/assistant/apply")
    def assistant_apply(workflow_id: str) -> Any:
        body = _json_body()
        suggestions = body.get("suggestions") or []
        if not isinstance(suggestions, list):
            raise ValueError("suggestions must be a list")
        workflow = console.apply_suggestions(
            workflow_id,
            [str(item) for item in suggestions],
            branch=str(body.get("branch") or MAIN_BRANCH),
        )
        return jsonify(workflow.to_dict())

    return app
