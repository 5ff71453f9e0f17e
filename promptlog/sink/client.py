from __future__ import annotations

from collections.abc import Sequence
from http.client import HTTPException
from typing import Any

from ..errors import SinkError
from . import http_client

SAVE_MULTI_PATH = "/save-multi"


def _error_detail(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    for key in ("error", "message", "Message"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class RemoteSink:
    """Bulk-insert client for the log collection service.

    No retries here: callers decide what a failed batch means.
    """

    def __init__(self, base_url: str, token: str | None = None, *, timeout_s: float = 10.0) -> None:
        self.base_url = http_client.build_base_url(base_url)
        self.token = token
        self.timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def send_batch(self, records: Sequence[dict[str, Any]]) -> int:
        """POST ``records`` to ``/save-multi``; returns the HTTP status on success."""
        if not self.base_url:
            raise SinkError(None, "log sink url is not configured")
        url = f"{self.base_url}{SAVE_MULTI_PATH}"
        try:
            status, payload = http_client.request_json(
                "POST",
                url,
                headers=self._headers(),
                body=list(records),
                timeout_s=self.timeout_s,
            )
        except (OSError, HTTPException, ValueError) as exc:
            raise SinkError(None, str(exc) or exc.__class__.__name__) from exc
        if not 200 <= status < 300:
            raise SinkError(status, _error_detail(payload))
        return status
