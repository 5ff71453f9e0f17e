from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .types import LogMessage, MessageType

logger = logging.getLogger(__name__)

# Extraction order is fixed; matches are joined in this order.
PROMPT_TAGS = ("user_message", "task", "feedback", "answer")
PROMPT_SEPARATOR = " | "
_TAG_RES = {tag: re.compile(rf"<{tag}>(.*?)</{tag}>", re.DOTALL) for tag in PROMPT_TAGS}


@dataclass
class ContentPart:
    type: str
    text: str | None = None


@dataclass
class ConversationTurn:
    role: str
    parts: list[ContentPart] = field(default_factory=list)

    def texts(self) -> list[str]:
        return [part.text for part in self.parts if part.type == "text" and part.text]


def _parse_part(raw: Any) -> ContentPart | None:
    if isinstance(raw, str):
        return ContentPart(type="text", text=raw)
    if not isinstance(raw, dict):
        return None
    part_type = str(raw.get("type") or "")
    text = raw.get("text")
    return ContentPart(type=part_type, text=text if isinstance(text, str) else None)


def _parse_turn(raw: Any) -> ConversationTurn:
    if not isinstance(raw, dict):
        raise ValueError("conversation turn must be an object")
    role = raw.get("role")
    if not isinstance(role, str):
        raise ValueError("conversation turn is missing a role")
    content = raw.get("content")
    if isinstance(content, str):
        return ConversationTurn(role=role, parts=[ContentPart(type="text", text=content)])
    if content is None:
        return ConversationTurn(role=role)
    if not isinstance(content, list):
        raise ValueError("conversation content must be a string or a list")
    parts = [part for part in (_parse_part(item) for item in content) if part is not None]
    return ConversationTurn(role=role, parts=parts)


def parse_turns(request: str) -> list[ConversationTurn]:
    """Parse a serialized request into conversation turns.

    Accepts a single JSON turn, a JSON array of turns, or newline-separated
    JSON turns (one per line).
    """
    text = request.strip()
    if not text:
        raise ValueError("empty request")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = [json.loads(line) for line in text.splitlines() if line.strip()]
    if isinstance(data, dict):
        return [_parse_turn(data)]
    if isinstance(data, list):
        return [_parse_turn(item) for item in data]
    raise ValueError("request is not a conversation turn")


def extract_user_prompt(texts: list[str]) -> str | None:
    """Pull the tagged user text out of ``texts``.

    Returns ``None`` when no closing tag is present, and the joined tag
    contents (possibly empty) otherwise.
    """
    if not any(f"</{tag}>" in text for text in texts for tag in PROMPT_TAGS):
        return None
    found: list[str] = []
    for tag in PROMPT_TAGS:
        pattern = _TAG_RES[tag]
        for text in texts:
            for match in pattern.findall(text):
                value = match.strip()
                if value:
                    found.append(value)
    return PROMPT_SEPARATOR.join(found)


def classify_message(message: LogMessage) -> LogMessage:
    """Set ``message_type`` and ``user_prompt`` on ``message`` in place.

    The newest turn of the request decides: a user turn carrying one of the
    prompt tags is a ``User`` message, anything else is ``System``. Requests
    that cannot be parsed are left unclassified.
    """
    try:
        turns = parse_turns(message.request)
    except (ValueError, TypeError) as exc:
        logger.warning("could not classify log message: %s", exc)
        return message
    if not turns:
        logger.warning("could not classify log message: no conversation turns")
        return message
    turn = turns[-1]
    prompt = extract_user_prompt(turn.texts()) if turn.role == "user" else None
    if prompt is None:
        message.message_type = MessageType.SYSTEM
        return message
    message.message_type = MessageType.USER
    message.user_prompt = prompt or None
    return message
