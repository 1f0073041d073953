from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any

from openai import OpenAI, OpenAIError

from .activities import ActivityTemplate
from .workflow import MAIN_BRANCH, WorkflowDocument

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"
FALLBACK_REPLY = "Sorry, I couldn't get a response. Please try again."
BRANCH_MENTION_PATTERNS = (
    re.compile(r"(?:add\s+)?(?:to\s+|in\s+|on\s+)?branch\s*([\w.\-]+)", re.IGNORECASE),
    re.compile(r"branch\s*([\w.\-]+)", re.IGNORECASE),
)
CANONICAL_BRANCH = re.compile(r"^Branch \d+\.\d+$")

SYSTEM_PROMPT = """You are an expert workflow building assistant. Your goal is to help users build a workflow by suggesting only the most relevant activities from the list below.
- Only suggest activities that are directly and specifically relevant to the user's request.
- Do NOT suggest generic or unrelated activities.
- If only one activity is relevant, only suggest that one.
- If the user asks for a specific activity, only suggest that activity.
- When the user requests multiple activities in a specific order, keep that order in the suggestions array.

Here are the available activities:
{catalog}

Answer with a JSON object of the form:
{{"reply": "<short answer for the user>", "suggestions": ["<activity id>", ...]}}
"""


@dataclass(slots=True)
class AssistantReply:
    reply: str
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"reply": self.reply, "suggestions": list(self.suggestions)}


def catalog_text(catalog: list[ActivityTemplate]) -> str:
    return "\n".join(f"- {template.name}: {template.description} (id: {template.id})" for template in catalog)


def build_messages(messages: list[dict[str, str]], catalog: list[ActivityTemplate]) -> list[dict[str, str]]:
    system = {"role": "system", "content": SYSTEM_PROMPT.format(catalog=catalog_text(catalog))}
    conversation = [
        {"role": str(message.get("role") or "user"), "content": str(message.get("content") or "")}
        for message in messages
    ]
    if conversation and conversation[0]["role"] == "system":
        conversation = conversation[1:]
    return [system, *conversation]


def parse_reply(raw: str, valid_ids: set[str]) -> AssistantReply:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return AssistantReply(reply=raw)
    if not isinstance(data, dict):
        return AssistantReply(reply=raw)
    reply = str(data.get("reply") or "")
    suggestions = data.get("suggestions")
    if not isinstance(suggestions, list):
        return AssistantReply(reply=reply)
    return AssistantReply(
        reply=reply,
        suggestions=[item for item in suggestions if isinstance(item, str) and item in valid_ids],
    )


class SuggestionAssistant:
    def __init__(self, client: Any | None = None, model: str | None = None) -> None:
        self._client = client
        self.model = model or os.environ.get("OPENAI_MODEL", DEFAULT_MODEL)

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = OpenAI(api_key=os.environ.get("OPENAI_API_KEY"))
        return self._client

    def suggest(self, messages: list[dict[str, str]], catalog: list[ActivityTemplate]) -> AssistantReply:
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=build_messages(messages, catalog),
                response_format={"type": "json_object"},
            )
            content = completion.choices[0].message.content if completion.choices else None
        except OpenAIError as exc:
            logger.warning("assistant_request_failed", extra={"model": self.model, "error": str(exc)})
            return AssistantReply(reply=FALLBACK_REPLY)
        if not content:
            logger.warning("assistant_empty_response", extra={"model": self.model})
            return AssistantReply(reply=FALLBACK_REPLY)
        reply = parse_reply(content, {template.id for template in catalog})
        logger.info("assistant_replied", extra={"model": self.model, "suggestions": reply.suggestions})
        return reply


def target_branch(message: str, document: WorkflowDocument) -> str:
    available = document.valid_branch_names()
    for pattern in BRANCH_MENTION_PATTERNS:
        match = pattern.search(message)
        if match is None:
            continue
        candidate = f"Branch {match.group(1)}"
        if candidate in available:
            return candidate
        lowered = candidate.lower()
        for name in available:
            if name.lower() == lowered:
                return name
        if CANONICAL_BRANCH.match(candidate):
            return candidate
    if document.condition_nodes():
        return document.leaf_branch(MAIN_BRANCH)
    return MAIN_BRANCH
