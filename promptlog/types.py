from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, cast

STATE_RECORDED = 1


class MessageType(str, Enum):
    USER = "User"
    SYSTEM = "System"


class Mode(str, Enum):
    PLAN = "plan"
    ACT = "act"


# attribute name -> on-disk / wire key
_RECORD_KEYS = {
    "request": "request",
    "response": "response",
    "input_token_count": "inputTokenCount",
    "output_token_count": "outputTokenCount",
    "max_input_tokens": "maxInputTokens",
    "model_name": "modelName",
    "vendor_name": "vendorName",
    "model_id": "modelId",
    "model_family": "modelFamily",
    "model_version": "modelVersion",
    "task_id": "taskId",
    "mode": "mode",
    "user_prompt": "userPrompt",
    "message_type": "messageType",
    "log_trace_id": "logTraceId",
    "user_id": "userId",
    "created_date": "createdDate",
    "log_date": "logDate",
    "state": "state",
    "checksum": "checksum",
    "failed_at": "failedAt",
    "retry_count": "retryCount",
}
_ATTR_NAMES = {value: key for key, value in _RECORD_KEYS.items()}
_DATE_ATTRS = {"created_date", "log_date", "failed_at"}
_INT_ATTRS = {
    "input_token_count",
    "output_token_count",
    "max_input_tokens",
    "state",
    "retry_count",
}


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def format_timestamp(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.UTC)
    return value.astimezone(dt.UTC).isoformat()


def parse_timestamp(value: Any) -> dt.datetime | None:
    if isinstance(value, dt.datetime):
        return value if value.tzinfo else value.replace(tzinfo=dt.UTC)
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed.astimezone(dt.UTC)


def _coerce_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class LogMessage:
    """One recorded LLM exchange.

    Producers fill the request/response and model identity fields; the
    logger stamps trace id, dates, state, task and mode before sending.
    """

    request: str = ""
    response: str = ""
    input_token_count: int | None = None
    output_token_count: int | None = None
    max_input_tokens: int | None = None
    model_name: str | None = None
    vendor_name: str | None = None
    model_id: str | None = None
    model_family: str | None = None
    model_version: str | None = None
    task_id: str | None = None
    mode: str | None = None
    user_prompt: str | None = None
    message_type: MessageType | None = None
    log_trace_id: str | None = None
    user_id: str | None = None
    created_date: dt.datetime | None = None
    log_date: dt.datetime | None = None
    state: int | None = None

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            if item.name in _DATE_ATTRS:
                value = format_timestamp(value)
            elif isinstance(value, Enum):
                value = value.value
            record[_RECORD_KEYS[item.name]] = value
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> LogMessage:
        known = {item.name for item in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in record.items():
            attr = _ATTR_NAMES.get(key, key)
            if attr not in known or value is None:
                continue
            if attr in _DATE_ATTRS:
                value = parse_timestamp(value)
            elif attr in _INT_ATTRS:
                value = _coerce_int(value)
            elif attr == "message_type":
                try:
                    value = MessageType(value)
                except ValueError:
                    value = None
            elif attr in {"request", "response"}:
                value = str(value)
            kwargs[attr] = value
        return cls(**kwargs)

    def log_fields(self) -> LogMessage:
        """Copy of just the log record, without retry bookkeeping."""
        values = {item.name: getattr(self, item.name) for item in fields(LogMessage)}
        return LogMessage(**values)


@dataclass
class FailedLogMessage(LogMessage):
    checksum: str = ""
    failed_at: dt.datetime | None = None
    retry_count: int = 0

    @classmethod
    def from_message(
        cls,
        message: LogMessage,
        *,
        checksum: str,
        failed_at: dt.datetime | None = None,
    ) -> FailedLogMessage:
        values = {item.name: getattr(message, item.name) for item in fields(LogMessage)}
        return cls(**values, checksum=checksum, failed_at=failed_at or utc_now(), retry_count=0)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> FailedLogMessage:
        entry = cast(FailedLogMessage, super().from_record(record))
        if entry.retry_count is None:
            entry.retry_count = 0
        if entry.checksum is None:
            entry.checksum = ""
        return entry


@dataclass
class UserMessageCacheEntry:
    task_id: str
    user_prompt: str
    created_date: dt.datetime = field(default_factory=utc_now)

    def to_record(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "userPrompt": self.user_prompt,
            "createdDate": format_timestamp(self.created_date),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> UserMessageCacheEntry | None:
        task_id = record.get("taskId")
        prompt = record.get("userPrompt")
        created = parse_timestamp(record.get("createdDate"))
        if not isinstance(task_id, str) or not isinstance(prompt, str) or created is None:
            return None
        return cls(task_id=task_id, user_prompt=prompt, created_date=created)
