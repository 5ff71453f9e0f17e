from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from types import TracebackType

from .checksum import compute_checksum
from .classifier import classify_message
from .config import PromptLogConfig, load_config
from .dedup import DuplicateSuppressionCache
from .errors import BackupError, PromptLogError, SinkError
from .identity import UserIdentity, collect_identity, register_identity
from .sink import RemoteSink
from .store import EncryptedBackupWriter, LogStore, load_or_create_key
from .store.backup import parse_key
from .sync import SyncScheduler, run_sync_pass
from .sync.sync_pass import SyncResult
from .types import STATE_RECORDED, FailedLogMessage, LogMessage, MessageType, Mode, utc_now

logger = logging.getLogger(__name__)

# Producers emit this model identity with zero tokens when nothing was exchanged.
NOOP_MODEL_ID = "noop"

STORAGE_FAILURE_NOTICE = "Logging failed: the local log store is unavailable."


class SaveOutcome(str, Enum):
    SKIPPED = "skipped"
    SENT = "sent"
    PERSISTED = "persisted"
    LOST = "lost"


def is_noop_placeholder(message: LogMessage) -> bool:
    if NOOP_MODEL_ID not in {message.model_id, message.model_name}:
        return False
    return not message.input_token_count and not message.output_token_count


def _default_notify(text: str) -> None:
    logger.error(text)


class PromptLogger:
    """Records LLM exchanges to the remote log service.

    ``save_log`` tries the remote service first. A log that cannot be sent is
    checksummed and queued in the local store (plus an encrypted backup file);
    the sync job re-sends queued logs later. ``save_log`` never raises.
    """

    def __init__(
        self,
        *,
        store: LogStore,
        sink: RemoteSink,
        backup: EncryptedBackupWriter | None = None,
        identity: UserIdentity | None = None,
        register_url: str | None = None,
        notify: Callable[[str], None] | None = None,
        sync_interval_s: float = 300,
        cleanup_interval_s: float = 1800,
        sync_fetch_limit: int = 500,
        sync_batch_size: int = 25,
        max_retry_count: int = 3,
        cache_retention_days: int = 3,
    ) -> None:
        self.store = store
        self.sink = sink
        self.backup = backup
        self.dedup = DuplicateSuppressionCache(store)
        self.identity = identity
        self.register_url = register_url
        self.notify = notify or _default_notify
        self.sync_fetch_limit = sync_fetch_limit
        self.sync_batch_size = sync_batch_size
        self.max_retry_count = max_retry_count
        self.cache_retention_days = cache_retention_days
        self.scheduler = SyncScheduler(
            sync=self.sync_failed_logs,
            cleanup=self.cleanup_cache,
            sync_interval_s=sync_interval_s,
            cleanup_interval_s=cleanup_interval_s,
        )
        self._context_lock = threading.Lock()
        self._task_id: str | None = None
        self._mode: str | None = None
        self._initialized = False

    @classmethod
    def from_config(
        cls,
        cfg: PromptLogConfig | None = None,
        *,
        notify: Callable[[str], None] | None = None,
    ) -> PromptLogger:
        cfg = cfg or load_config()
        logs_root = cfg.logs_path
        store = LogStore(logs_root, write_retries=cfg.write_retries)
        sink = RemoteSink(cfg.api_url, cfg.api_token, timeout_s=cfg.request_timeout_s)
        return cls(
            store=store,
            sink=sink,
            backup=_build_backup(logs_root, cfg.backup_key),
            register_url=cfg.register_url,
            notify=notify,
            sync_interval_s=cfg.sync_interval_s,
            cleanup_interval_s=cfg.cleanup_interval_s,
            sync_fetch_limit=cfg.sync_fetch_limit,
            sync_batch_size=cfg.sync_batch_size,
            max_retry_count=cfg.max_retry_count,
            cache_retention_days=cfg.cache_retention_days,
        )

    @property
    def task_id(self) -> str | None:
        with self._context_lock:
            return self._task_id

    @property
    def mode(self) -> str | None:
        with self._context_lock:
            return self._mode

    def set_task_id(self, task_id: str | None) -> None:
        with self._context_lock:
            self._task_id = task_id

    def set_mode(self, mode: Mode | str) -> None:
        value = Mode(mode).value
        with self._context_lock:
            self._mode = value

    def init(self, *, start_jobs: bool = True) -> PromptLogger:
        if self._initialized:
            return self
        try:
            self.store.open()
        except PromptLogError:
            logger.exception("log store could not be opened; failed logs will only be backed up")
        if self.identity is None:
            self.identity = collect_identity()
        register_identity(self.identity, self.register_url, timeout_s=self.sink.timeout_s)
        if start_jobs:
            self.scheduler.start()
        self._initialized = True
        return self

    def shutdown(self) -> None:
        self.scheduler.stop()
        self.store.close()
        self._initialized = False

    def __enter__(self) -> PromptLogger:
        return self.init()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.shutdown()

    def _stamp(self, message: LogMessage) -> LogMessage:
        now = utc_now()
        with self._context_lock:
            task_id = message.task_id or self._task_id
            mode = self._mode
        return dataclasses.replace(
            message,
            log_trace_id=str(uuid.uuid4()),
            created_date=now,
            log_date=now,
            state=STATE_RECORDED,
            task_id=task_id,
            mode=mode,
            user_id=self.identity.user_id if self.identity else message.user_id,
        )

    def save_log(self, message: LogMessage) -> SaveOutcome:
        try:
            return self._save_log(message)
        except Exception:
            logger.exception("Error saving log")
            return SaveOutcome.LOST

    def _save_log(self, message: LogMessage) -> SaveOutcome:
        if is_noop_placeholder(message):
            return SaveOutcome.SKIPPED
        classify_message(message)
        stamped = self._stamp(message)
        if stamped.message_type == MessageType.USER and self.dedup.is_duplicate(stamped):
            logger.debug("user prompt already recorded for task %s", stamped.task_id)
            stamped.message_type = MessageType.SYSTEM
            stamped.user_prompt = None
        try:
            self.sink.send_batch([stamped.to_record()])
        except SinkError as exc:
            logger.warning("Error saving log %s: %s", stamped.log_trace_id, exc)
            return self._persist_failed(stamped)
        self.dedup.remember(stamped)
        return SaveOutcome.SENT

    def _persist_failed(self, stamped: LogMessage) -> SaveOutcome:
        failed = FailedLogMessage.from_message(stamped, checksum=compute_checksum(stamped))
        stored = False
        try:
            self.store.append_failed_log(failed)
            stored = True
        except Exception:
            logger.exception("could not queue failed log %s", failed.log_trace_id)
        backed_up = False
        if self.backup is not None:
            try:
                self.backup.write(failed.to_record())
                backed_up = True
            except Exception:
                logger.exception("could not write encrypted backup for %s", failed.log_trace_id)
        if stored or backed_up:
            return SaveOutcome.PERSISTED
        self.notify(STORAGE_FAILURE_NOTICE)
        return SaveOutcome.LOST

    def run_sync(self) -> SyncResult:
        return run_sync_pass(
            self.store,
            self.sink,
            fetch_limit=self.sync_fetch_limit,
            batch_size=self.sync_batch_size,
            max_retry_count=self.max_retry_count,
        )

    def sync_failed_logs(self) -> int:
        return self.run_sync().sent

    def cleanup_cache(self) -> int:
        return self.dedup.prune(retention_days=self.cache_retention_days)


def _build_backup(logs_root: Path, key: str | None) -> EncryptedBackupWriter | None:
    try:
        key_bytes = parse_key(key) if key else load_or_create_key(logs_root)
    except (BackupError, OSError):
        logger.exception("encrypted backup disabled: no usable key")
        return None
    return EncryptedBackupWriter(logs_root, key_bytes)
