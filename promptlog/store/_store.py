from __future__ import annotations

import datetime as dt
import json
import logging
import os
import random
import tempfile
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from ..errors import StoreError, StoreWriteError
from ..types import (
    FailedLogMessage,
    UserMessageCacheEntry,
    format_timestamp,
    parse_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

DB_FILENAME = "cline-logs.db"
JSON_DIRNAME = "json"
ENCRYPTED_DIRNAME = "encrypted-json"

LOG_MESSAGES = "log_messages"
USER_MESSAGE_CACHE = "user_message_cache"
FAILED_LOGS = "failed_logs"
COLLECTIONS = (LOG_MESSAGES, USER_MESSAGE_CACHE, FAILED_LOGS)

WRITE_BASE_DELAY_S = 0.05


def empty_document() -> dict[str, list[dict[str, Any]]]:
    return {name: [] for name in COLLECTIONS}


class LogStore:
    """Single JSON document holding the logger's three collections.

    The whole document is read from disk and written back on every mutation.
    All read-modify-write cycles run under one lock, and each one re-reads the
    file first, so writers in this process never lose each other's updates.
    """

    def __init__(
        self,
        root: Path | str,
        *,
        write_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.root = Path(root).expanduser()
        self.path = self.root / DB_FILENAME
        self.write_retries = max(1, int(write_retries))
        self._sleep = sleep
        self._lock = threading.RLock()
        self._opened = False

    @property
    def is_open(self) -> bool:
        return self._opened

    def open(self) -> None:
        with self._lock:
            try:
                self.root.mkdir(parents=True, exist_ok=True)
                (self.root / JSON_DIRNAME).mkdir(exist_ok=True)
                (self.root / ENCRYPTED_DIRNAME).mkdir(exist_ok=True)
            except OSError as exc:
                raise StoreError(f"cannot create log directory {self.root}: {exc}") from exc
            if not self.path.exists():
                self._write(empty_document())
            else:
                try:
                    self._load_strict()
                except (ValueError, OSError, UnicodeDecodeError) as exc:
                    self._recover_corrupted(exc)
            self._opened = True

    def close(self) -> None:
        with self._lock:
            self._opened = False

    def _recover_corrupted(self, exc: BaseException) -> None:
        stamp = utc_now().strftime("%Y%m%dT%H%M%S%fZ")
        backup_path: Path | None = self.path.with_name(f"{self.path.name}.corrupted-{stamp}")
        try:
            os.replace(self.path, backup_path)
        except OSError:
            logger.exception("failed to move corrupted log store aside")
            backup_path = None
        logger.warning(
            "log store %s was unreadable (%s); backed up to %s and reinitialized",
            self.path,
            exc,
            backup_path,
        )
        self._write(empty_document())

    def _load_strict(self) -> dict[str, list[dict[str, Any]]]:
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            return empty_document()
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("log store must be a JSON object")
        document = empty_document()
        for name in COLLECTIONS:
            items = data.get(name)
            if items is None:
                continue
            if not isinstance(items, list):
                raise ValueError(f"log store collection {name} must be a list")
            document[name] = [item for item in items if isinstance(item, dict)]
        return document

    def _read(self) -> dict[str, list[dict[str, Any]]]:
        try:
            return self._load_strict()
        except FileNotFoundError:
            return empty_document()
        except (ValueError, OSError, UnicodeDecodeError) as exc:
            self._recover_corrupted(exc)
            return empty_document()

    def _write_once(self, document: dict[str, list[dict[str, Any]]]) -> None:
        payload = json.dumps(document)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.root)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    def _write(self, document: dict[str, list[dict[str, Any]]]) -> None:
        last_exc: OSError | None = None
        for attempt in range(self.write_retries):
            try:
                self._write_once(document)
                return
            except OSError as exc:
                last_exc = exc
                if attempt + 1 >= self.write_retries:
                    break
                delay = WRITE_BASE_DELAY_S * (2**attempt) + random.uniform(0, WRITE_BASE_DELAY_S)
                logger.debug(
                    "log store write failed (attempt %s/%s), retrying in %.3fs",
                    attempt + 1,
                    self.write_retries,
                    delay,
                )
                self._sleep(delay)
        raise StoreWriteError(str(self.path), self.write_retries, last_exc)

    def _require_open(self) -> None:
        if not self._opened:
            raise StoreError("log store is not open")

    def append_failed_log(self, entry: FailedLogMessage) -> None:
        with self._lock:
            self._require_open()
            document = self._read()
            document[FAILED_LOGS].append(entry.to_record())
            self._write(document)

    def list_failed_logs(self, limit: int | None = None) -> list[FailedLogMessage]:
        """Oldest-first failed logs, left in place."""
        with self._lock:
            if not self._opened:
                return []
            records = self._read()[FAILED_LOGS]
        epoch = dt.datetime.min.replace(tzinfo=dt.UTC)
        entries = [FailedLogMessage.from_record(record) for record in records]
        entries.sort(key=lambda entry: entry.failed_at or epoch)
        if limit is not None:
            entries = entries[: max(0, limit)]
        return entries

    def count_failed_logs(self) -> int:
        with self._lock:
            if not self._opened:
                return 0
            return len(self._read()[FAILED_LOGS])

    def increment_retry_counts(self, trace_ids: Iterable[str]) -> int:
        wanted = {trace_id for trace_id in trace_ids if trace_id}
        if not wanted:
            return 0
        with self._lock:
            self._require_open()
            document = self._read()
            updated = 0
            for record in document[FAILED_LOGS]:
                if record.get("logTraceId") not in wanted:
                    continue
                try:
                    current = int(record.get("retryCount") or 0)
                except (TypeError, ValueError):
                    current = 0
                record["retryCount"] = current + 1
                updated += 1
            if updated:
                self._write(document)
            return updated

    def delete_failed_logs_by_trace_id(self, trace_ids: Iterable[str]) -> int:
        wanted = {trace_id for trace_id in trace_ids if trace_id}
        if not wanted:
            return 0
        with self._lock:
            if not self._opened:
                return 0
            document = self._read()
            before = len(document[FAILED_LOGS])
            document[FAILED_LOGS] = [
                record
                for record in document[FAILED_LOGS]
                if record.get("logTraceId") not in wanted
            ]
            removed = before - len(document[FAILED_LOGS])
            if removed:
                self._write(document)
            return removed

    def purge_failed_logs_without_trace_id(self) -> int:
        """Remove failed-log rows that have no usable ``logTraceId``."""
        with self._lock:
            if not self._opened:
                return 0
            document = self._read()
            kept = [record for record in document[FAILED_LOGS] if record.get("logTraceId")]
            removed = len(document[FAILED_LOGS]) - len(kept)
            if removed:
                document[FAILED_LOGS] = kept
                self._write(document)
            return removed

    def append_cache_entry(
        self,
        task_id: str,
        user_prompt: str,
        *,
        created_date: dt.datetime | None = None,
        skip_existing: bool = False,
    ) -> bool:
        """Add a dedup cache row; with ``skip_existing`` an exact match is left alone."""
        entry = UserMessageCacheEntry(
            task_id=task_id,
            user_prompt=user_prompt,
            created_date=created_date or utc_now(),
        )
        with self._lock:
            self._require_open()
            document = self._read()
            if skip_existing and _find_cache_row(document, task_id, user_prompt) is not None:
                return False
            document[USER_MESSAGE_CACHE].append(entry.to_record())
            self._write(document)
            return True

    def has_cache_entry(self, task_id: str, user_prompt: str) -> bool:
        with self._lock:
            if not self._opened:
                return False
            return _find_cache_row(self._read(), task_id, user_prompt) is not None

    def list_cache_entries(self) -> list[UserMessageCacheEntry]:
        with self._lock:
            if not self._opened:
                return []
            records = self._read()[USER_MESSAGE_CACHE]
        entries = []
        for record in records:
            entry = UserMessageCacheEntry.from_record(record)
            if entry is not None:
                entries.append(entry)
        return entries

    def prune_cache_older_than(self, cutoff: dt.datetime) -> int:
        with self._lock:
            if not self._opened:
                return 0
            document = self._read()
            kept = []
            for record in document[USER_MESSAGE_CACHE]:
                created = parse_timestamp(record.get("createdDate"))
                # undated rows are pruned as well
                if created is None or created < cutoff:
                    continue
                kept.append(record)
            removed = len(document[USER_MESSAGE_CACHE]) - len(kept)
            if removed:
                document[USER_MESSAGE_CACHE] = kept
                self._write(document)
            return removed

    def stats(self) -> dict[str, Any]:
        with self._lock:
            document = self._read() if self._opened else empty_document()
        retries: dict[int, int] = {}
        for record in document[FAILED_LOGS]:
            try:
                count = int(record.get("retryCount") or 0)
            except (TypeError, ValueError):
                count = 0
            retries[count] = retries.get(count, 0) + 1
        oldest = None
        failed_dates = [
            parse_timestamp(record.get("failedAt")) for record in document[FAILED_LOGS]
        ]
        failed_dates = [value for value in failed_dates if value is not None]
        if failed_dates:
            oldest = format_timestamp(min(failed_dates))
        return {
            "path": str(self.path),
            "failed_logs": len(document[FAILED_LOGS]),
            "failed_by_retry_count": dict(sorted(retries.items())),
            "oldest_failed_at": oldest,
            "user_message_cache": len(document[USER_MESSAGE_CACHE]),
            "log_messages": len(document[LOG_MESSAGES]),
        }


def _find_cache_row(
    document: dict[str, list[dict[str, Any]]], task_id: str, user_prompt: str
) -> dict[str, Any] | None:
    for record in document[USER_MESSAGE_CACHE]:
        if record.get("taskId") == task_id and record.get("userPrompt") == user_prompt:
            return record
    return None
