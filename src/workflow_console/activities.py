from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .elements import UIElement, elements_from_list, elements_to_list, new_element
from .icons import IconName, parse_icon, parse_icon_color

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Workflow"
TRIGGER_TYPES = ["Manual", "Schedule", "Webhook", "Email Received", "File Upload"]


class TemplateNotFoundError(KeyError):
    """Raised when an activity template id is unknown."""


@dataclass(slots=True)
class ActivityTemplate:
    id: str
    name: str
    icon: IconName = IconName.SETTINGS
    icon_color: str = "purple"
    category: str = DEFAULT_CATEGORY
    description: str = ""
    side_panel_description: str = ""
    side_panel_elements: list[UIElement] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ActivityTemplate:
        name = str(payload.get("name") or "").strip()
        if not name:
            raise ValueError("template name is required")
        return cls(
            id=str(payload.get("id") or ""),
            name=name,
            icon=parse_icon(payload.get("icon") or IconName.SETTINGS.value, capability="activity"),
            icon_color=parse_icon_color(payload.get("iconColor")),
            category=str(payload.get("category") or DEFAULT_CATEGORY).strip(),
            description=str(payload.get("description") or ""),
            side_panel_description=str(payload.get("sidePanelDescription") or ""),
            side_panel_elements=elements_from_list(payload.get("sidePanelElements")),
            created_at=payload.get("createdAt"),
            updated_at=payload.get("updatedAt"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "icon": self.icon.value,
            "iconColor": self.icon_color,
            "category": self.category,
            "description": self.description,
            "sidePanelDescription": self.side_panel_description,
            "sidePanelElements": elements_to_list(self.side_panel_elements),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


def is_trigger_template(template: ActivityTemplate) -> bool:
    return "trigger" in template.name.lower() or template.icon is IconName.ZAP


def is_condition_template(template: ActivityTemplate) -> bool:
    if is_trigger_template(template):
        return False
    if any(element.type == "conditions-module" for element in template.side_panel_elements):
        return True
    return "condition" in template.name.lower() or "condition" in template.description.lower()


def default_trigger_template() -> ActivityTemplate:
    return ActivityTemplate(
        id="",
        name="Trigger",
        icon=IconName.ZAP,
        icon_color="teal",
        category=DEFAULT_CATEGORY,
        description="#{Trigger Type}",
        side_panel_description="Configure when this workflow should start",
        side_panel_elements=[
            new_element(
                "dropdown",
                "Trigger Type",
                element_id="trigger-type",
                required=True,
                options=list(TRIGGER_TYPES),
                placeholder="Select trigger type",
            ),
            new_element(
                "text",
                "Trigger Condition",
                element_id="trigger-condition",
                placeholder="Optional condition",
            ),
        ],
    )


def ensure_trigger_template(
    templates: list[ActivityTemplate],
    create: Callable[[ActivityTemplate], ActivityTemplate],
    delete: Callable[[str], None],
) -> list[ActivityTemplate]:
    """Leave exactly one trigger-like template: create the default or drop the extras."""
    triggers = [template for template in templates if is_trigger_template(template)]
    if not triggers:
        created = create(default_trigger_template())
        logger.info("trigger_template_created", extra={"template_id": created.id})
        return [*templates, created]

    extras = triggers[1:]
    for template in extras:
        delete(template.id)
        logger.info("trigger_template_removed", extra={"template_id": template.id, "kept": triggers[0].id})
    extra_ids = {template.id for template in extras}
    return [template for template in templates if template.id not in extra_ids]


def catalog_group(template: ActivityTemplate) -> str:
    name = template.name.lower()
    if "message" in name or "email" in name:
        return "COMMUNICATION"
    if "job" in name or "search" in name:
        return "JOB SEARCH"
    return "WORKFLOW"


def grouped_catalog(templates: list[ActivityTemplate], search: str = "") -> dict[str, list[ActivityTemplate]]:
    term = search.strip().lower()
    groups: dict[str, list[ActivityTemplate]] = {}
    for template in templates:
        if term and term not in template.name.lower() and term not in template.description.lower():
            continue
        groups.setdefault(catalog_group(template), []).append(template)
    return groups


def categories(templates: list[ActivityTemplate]) -> list[str]:
    seen: dict[str, str] = {}
    for template in templates:
        category = template.category.strip()
        if category and category.lower() not in seen:
            seen[category.lower()] = category
    return sorted(seen.values(), key=str.lower)
