from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..checksum import validate_checksum
from ..errors import PromptLogError, SinkError
from ..sink import RemoteSink
from ..store import LogStore
from ..types import FailedLogMessage

logger = logging.getLogger(__name__)

DEFAULT_FETCH_LIMIT = 500
DEFAULT_BATCH_SIZE = 25
DEFAULT_MAX_RETRY_COUNT = 3


@dataclass
class SyncResult:
    sent: int = 0
    failed: int = 0
    gave_up: int = 0
    invalid: int = 0
    deleted: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "gave_up": self.gave_up,
            "invalid": self.invalid,
            "deleted": self.deleted,
            "errors": list(self.errors),
        }


def chunk_entries(
    entries: Sequence[FailedLogMessage], size: int
) -> Iterator[list[FailedLogMessage]]:
    size = max(1, size)
    for start in range(0, len(entries), size):
        yield list(entries[start : start + size])


def run_sync_pass(
    store: LogStore | None,
    sink: RemoteSink,
    *,
    fetch_limit: int = DEFAULT_FETCH_LIMIT,
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_retry_count: int = DEFAULT_MAX_RETRY_COUNT,
) -> SyncResult:
    """Drain queued failed logs to the remote sink once.

    Entries that already hit ``max_retry_count`` and entries whose checksum no
    longer matches are dropped without being sent. Each batch of the rest is
    sent in one call; a failed batch only bumps retry counts, so entries that
    reach the limit are dropped on the following pass.
    """
    result = SyncResult()
    if store is None or not store.is_open:
        return result
    entries = store.list_failed_logs(fetch_limit)
    if not entries:
        return result

    to_delete: set[str] = set()
    untracked = 0
    for batch in chunk_entries(entries, batch_size):
        valid: list[FailedLogMessage] = []
        for entry in batch:
            trace_id = entry.log_trace_id or ""
            if not trace_id:
                logger.warning("Dropping log without trace id: it cannot be tracked")
                untracked += 1
                result.invalid += 1
                continue
            if entry.retry_count >= max_retry_count:
                logger.warning(
                    "Dropping log %s: retry limit reached (%s/%s)",
                    trace_id,
                    entry.retry_count,
                    max_retry_count,
                )
                to_delete.add(trace_id)
                result.gave_up += 1
                continue
            if not validate_checksum(entry):
                logger.warning("Skipping log %s: checksum validation failed", trace_id)
                to_delete.add(trace_id)
                result.invalid += 1
                continue
            valid.append(entry)
        if not valid:
            continue

        trace_ids = [entry.log_trace_id or "" for entry in valid]
        try:
            sink.send_batch([entry.log_fields().to_record() for entry in valid])
        except SinkError as exc:
            result.failed += len(valid)
            result.errors.append(str(exc))
            logger.warning("failed log batch of %s not accepted: %s", len(valid), exc)
            try:
                store.increment_retry_counts(trace_ids)
            except PromptLogError:
                logger.exception("could not record retry count for failed batch")
            continue
        to_delete.update(trace_ids)
        result.sent += len(valid)

    if to_delete:
        result.deleted = store.delete_failed_logs_by_trace_id(to_delete)
    if untracked:
        result.deleted += store.purge_failed_logs_without_trace_id()
    if result.sent or result.gave_up or result.invalid:
        logger.info(
            "failed log sync: sent=%s gave_up=%s invalid=%s failed=%s",
            result.sent,
            result.gave_up,
            result.invalid,
            result.failed,
        )
    return result


def sync_failed_logs(
    store: LogStore | None,
    sink: RemoteSink,
    *,
    fetch_limit: int = DEFAULT_FETCH_LIMIT,
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_retry_count: int = DEFAULT_MAX_RETRY_COUNT,
) -> int:
    """Run one sync pass and return how many logs reached the remote sink."""
    return run_sync_pass(
        store,
        sink,
        fetch_limit=fetch_limit,
        batch_size=batch_size,
        max_retry_count=max_retry_count,
    ).sent
