from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .activities import ActivityTemplate
from .workflow import Workflow

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS activity_templates (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    icon TEXT NOT NULL DEFAULT 'Settings',
    icon_color TEXT NOT NULL DEFAULT 'purple',
    category TEXT NOT NULL DEFAULT 'Workflow',
    description TEXT NOT NULL DEFAULT '',
    side_panel_description TEXT NOT NULL DEFAULT '',
    side_panel_elements TEXT NOT NULL DEFAULT '[]',
    position INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS workflows (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'draft',
    nodes TEXT NOT NULL DEFAULT '[]',
    trigger_values TEXT NOT NULL DEFAULT '{}',
    channel TEXT,
    version TEXT,
    locale TEXT,
    creator TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class StorageError(RuntimeError):
    """Raised when the backing store rejects a read or write."""


def connect(db_path: str | Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str | Path) -> None:
    conn = connect(db_path)
    try:
        with conn:
            conn.executescript(SCHEMA)
            migrate_workflows_schema(conn)
    finally:
        conn.close()


def migrate_workflows_schema(conn: sqlite3.Connection) -> None:
    columns = {row["name"] for row in conn.execute("PRAGMA table_info(workflows)").fetchall()}
    if "trigger_values" not in columns:
        conn.execute("ALTER TABLE workflows ADD COLUMN trigger_values TEXT NOT NULL DEFAULT '{}'")
    if "locale" not in columns:
        conn.execute("ALTER TABLE workflows ADD COLUMN locale TEXT")
    if "creator" not in columns:
        conn.execute("ALTER TABLE workflows ADD COLUMN creator TEXT")


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), sort_keys=True)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteStorage:
    """Template and workflow persistence; every failure surfaces as ``StorageError``."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        init_db(self.db_path)

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        conn = connect(self.db_path)
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            logger.error("storage_error", extra={"action": action, "error": str(exc)})
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    def load_templates(self) -> list[ActivityTemplate]:
        with self._transaction("load_templates") as conn:
            rows = conn.execute("SELECT * FROM activity_templates ORDER BY position, created_at").fetchall()
        return [_template_from_row(row) for row in rows]

    def create_template(self, template: ActivityTemplate) -> ActivityTemplate:
        now = _now()
        with self._transaction("create_template") as conn:
            position = conn.execute("SELECT COALESCE(MAX(position), 0) + 1 FROM activity_templates").fetchone()[0]
            created = ActivityTemplate.from_dict(
                {**template.to_dict(), "id": template.id or str(uuid.uuid4()), "createdAt": now, "updatedAt": now}
            )
            conn.execute(
                """
                INSERT INTO activity_templates(
                    id, name, icon, icon_color, category, description, side_panel_description,
                    side_panel_elements, position, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (*_template_columns(created), position, now, now),
            )
        return created

    def update_template(self, template: ActivityTemplate) -> ActivityTemplate:
        now = _now()
        with self._transaction("update_template") as conn:
            cursor = conn.execute(
                """
                UPDATE activity_templates
                SET name = ?, icon = ?, icon_color = ?, category = ?, description = ?,
                    side_panel_description = ?, side_panel_elements = ?, updated_at = ?
                WHERE id = ?
                """,
                (*_template_columns(template)[1:], now, template.id),
            )
            if cursor.rowcount == 0:
                raise StorageError(f"template not found: {template.id}")
            row = conn.execute("SELECT * FROM activity_templates WHERE id = ?", (template.id,)).fetchone()
        return _template_from_row(row)

    def delete_template(self, template_id: str) -> None:
        with self._transaction("delete_template") as conn:
            conn.execute("DELETE FROM activity_templates WHERE id = ?", (template_id,))

    def load_workflows(self) -> list[Workflow]:
        with self._transaction("load_workflows") as conn:
            rows = conn.execute("SELECT * FROM workflows ORDER BY created_at").fetchall()
        return [_workflow_from_row(row) for row in rows]

    def create_workflow(self, workflow: Workflow) -> Workflow:
        now = _now()
        workflow_id = workflow.id or str(uuid.uuid4())
        with self._transaction("create_workflow") as conn:
            conn.execute(
                """
                INSERT INTO workflows(
                    id, name, description, status, nodes, trigger_values, channel, version, locale,
                    creator, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (workflow_id, *_workflow_columns(workflow), now, now),
            )
            row = conn.execute("SELECT * FROM workflows WHERE id = ?", (workflow_id,)).fetchone()
        return _workflow_from_row(row)

    def update_workflow(self, workflow: Workflow) -> Workflow:
        now = _now()
        with self._transaction("update_workflow") as conn:
            cursor = conn.execute(
                """
                UPDATE workflows
                SET name = ?, description = ?, status = ?, nodes = ?, trigger_values = ?, channel = ?,
                    version = ?, locale = ?, creator = ?, updated_at = ?
                WHERE id = ?
                """,
                (*_workflow_columns(workflow), now, workflow.id),
            )
            if cursor.rowcount == 0:
                raise StorageError(f"workflow not found: {workflow.id}")
            row = conn.execute("SELECT * FROM workflows WHERE id = ?", (workflow.id,)).fetchone()
        return _workflow_from_row(row)

    def delete_workflow(self, workflow_id: str) -> None:
        with self._transaction("delete_workflow") as conn:
            conn.execute("DELETE FROM workflows WHERE id = ?", (workflow_id,))


def _template_columns(template: ActivityTemplate) -> tuple[Any, ...]:
    payload = template.to_dict()
    return (
        template.id,
        template.name,
        payload["icon"],
        template.icon_color,
        template.category,
        template.description,
        template.side_panel_description,
        json_dumps(payload["sidePanelElements"]),
    )


def _template_from_row(row: sqlite3.Row) -> ActivityTemplate:
    return ActivityTemplate.from_dict(
        {
            "id": row["id"],
            "name": row["name"],
            "icon": row["icon"],
            "iconColor": row["icon_color"],
            "category": row["category"],
            "description": row["description"],
            "sidePanelDescription": row["side_panel_description"],
            "sidePanelElements": json.loads(row["side_panel_elements"] or "[]"),
            "createdAt": row["created_at"],
            "updatedAt": row["updated_at"],
        }
    )


def _workflow_columns(workflow: Workflow) -> tuple[Any, ...]:
    payload = workflow.to_dict()
    return (
        workflow.name,
        workflow.description,
        workflow.status,
        json_dumps(payload["nodes"]),
        json_dumps(payload["triggerValues"]),
        workflow.channel,
        workflow.version,
        workflow.locale,
        workflow.creator,
    )


def _workflow_from_row(row: sqlite3.Row) -> Workflow:
    return Workflow.from_dict(
        {
            "id": row["id"],
            "name": row["name"],
            "description": row["description"],
            "status": row["status"],
            "nodes": json.loads(row["nodes"] or "[]"),
            "triggerValues": json.loads(row["trigger_values"] or "{}"),
            "channel": row["channel"],
            "version": row["version"],
            "locale": row["locale"],
            "creator": row["creator"],
            "createdAt": row["created_at"],
            "updatedAt": row["updated_at"],
        }
    )
