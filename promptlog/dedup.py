from __future__ import annotations

import datetime as dt
import logging
import threading
from dataclasses import dataclass

from .errors import StoreError
from .store import LogStore
from .types import LogMessage, MessageType, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LatestUserMessage:
    task_id: str
    user_prompt: str


class DuplicateSuppressionCache:
    """Suppresses repeat recordings of the same user prompt within a task.

    Checks the in-memory latest-message slot first, then the store's
    ``user_message_cache`` collection (which survives restarts and is shared
    by every window on the machine).
    """

    def __init__(self, store: LogStore) -> None:
        self.store = store
        self._lock = threading.Lock()
        self._latest: LatestUserMessage | None = None

    @property
    def latest(self) -> LatestUserMessage | None:
        with self._lock:
            return self._latest

    def is_duplicate(self, message: LogMessage) -> bool:
        if message.message_type != MessageType.USER or not message.user_prompt:
            return False
        task_id = message.task_id or ""
        with self._lock:
            latest = self._latest
        if latest == LatestUserMessage(task_id=task_id, user_prompt=message.user_prompt):
            return True
        try:
            return self.store.has_cache_entry(task_id, message.user_prompt)
        except StoreError:
            logger.warning("dedup cache lookup failed", exc_info=True)
            return False

    def remember(self, message: LogMessage) -> None:
        """Record a message that reached the remote service."""
        if message.message_type != MessageType.USER or not message.user_prompt:
            return
        task_id = message.task_id or ""
        with self._lock:
            self._latest = LatestUserMessage(task_id=task_id, user_prompt=message.user_prompt)
        try:
            self.store.append_cache_entry(task_id, message.user_prompt, skip_existing=True)
        except StoreError:
            logger.warning("dedup cache write failed", exc_info=True)

    def prune(self, *, retention_days: int = 3, now: dt.datetime | None = None) -> int:
        cutoff = (now or utc_now()) - dt.timedelta(days=retention_days)
        removed = self.store.prune_cache_older_than(cutoff)
        if removed:
            logger.info("pruned %s dedup cache entries older than %s", removed, cutoff.isoformat())
        return removed
