from __future__ import annotations

import datetime as dt
import json
from pathlib import Path

import pytest

from promptlog.errors import StoreError, StoreWriteError
from promptlog.store import DB_FILENAME, ENCRYPTED_DIRNAME, JSON_DIRNAME, LogStore
from promptlog.types import FailedLogMessage, LogMessage


def _failed(trace_id: str, *, failed_at: dt.datetime | None = None) -> FailedLogMessage:
    message = LogMessage(request="req", response="resp", task_id="t1", log_trace_id=trace_id)
    return FailedLogMessage.from_message(message, checksum="abc", failed_at=failed_at)


def _open_store(root: Path, **kwargs) -> LogStore:
    store = LogStore(root, **kwargs)
    store.open()
    return store


def test_open_creates_layout(tmp_path: Path) -> None:
    root = tmp_path / "logs"
    store = _open_store(root)

    assert store.is_open
    assert (root / JSON_DIRNAME).is_dir()
    assert (root / ENCRYPTED_DIRNAME).is_dir()
    data = json.loads((root / DB_FILENAME).read_text())
    assert data == {"log_messages": [], "user_message_cache": [], "failed_logs": []}


def test_open_moves_corrupted_document_aside(tmp_path: Path) -> None:
    root = tmp_path / "logs"
    root.mkdir()
    (root / DB_FILENAME).write_text("{not json")

    store = _open_store(root)

    backups = list(root.glob(f"{DB_FILENAME}.corrupted-*"))
    assert len(backups) == 1
    assert backups[0].read_text() == "{not json"
    assert store.count_failed_logs() == 0
    store.append_failed_log(_failed("t-1"))
    assert store.count_failed_logs() == 1


def test_failed_logs_list_oldest_first_with_limit(tmp_path: Path) -> None:
    store = _open_store(tmp_path)
    base = dt.datetime(2026, 1, 1, tzinfo=dt.UTC)
    store.append_failed_log(_failed("c", failed_at=base + dt.timedelta(minutes=2)))
    store.append_failed_log(_failed("a", failed_at=base))
    store.append_failed_log(_failed("b", failed_at=base + dt.timedelta(minutes=1)))

    entries = store.list_failed_logs(2)

    assert [entry.log_trace_id for entry in entries] == ["a", "b"]
    assert entries[0].checksum == "abc"
    assert entries[0].retry_count == 0
    assert store.count_failed_logs() == 3


def test_delete_by_trace_id(tmp_path: Path) -> None:
    store = _open_store(tmp_path)
    for trace_id in ("a", "b", "c"):
        store.append_failed_log(_failed(trace_id))

    assert store.delete_failed_logs_by_trace_id({"a", "c", "missing"}) == 2
    assert [entry.log_trace_id for entry in store.list_failed_logs()] == ["b"]
    assert store.delete_failed_logs_by_trace_id(set()) == 0


def test_increment_retry_counts(tmp_path: Path) -> None:
    store = _open_store(tmp_path)
    store.append_failed_log(_failed("a"))
    store.append_failed_log(_failed("b"))

    assert store.increment_retry_counts(["a"]) == 1
    assert store.increment_retry_counts(["a", "b"]) == 2

    counts = {entry.log_trace_id: entry.retry_count for entry in store.list_failed_logs()}
    assert counts == {"a": 2, "b": 1}


def test_cache_entries_and_prune(tmp_path: Path) -> None:
    store = _open_store(tmp_path)
    now = dt.datetime(2026, 3, 10, tzinfo=dt.UTC)
    store.append_cache_entry("t1", "old prompt", created_date=now - dt.timedelta(days=4))
    store.append_cache_entry("t1", "new prompt", created_date=now)

    assert store.has_cache_entry("t1", "old prompt")
    assert not store.has_cache_entry("t2", "old prompt")
    assert store.append_cache_entry("t1", "new prompt", skip_existing=True) is False

    removed = store.prune_cache_older_than(now - dt.timedelta(days=3))

    assert removed == 1
    assert [entry.user_prompt for entry in store.list_cache_entries()] == ["new prompt"]


def test_writers_sharing_a_file_keep_each_others_rows(tmp_path: Path) -> None:
    first = _open_store(tmp_path)
    second = _open_store(tmp_path)

    first.append_failed_log(_failed("a"))
    second.append_failed_log(_failed("b"))

    assert {entry.log_trace_id for entry in first.list_failed_logs()} == {"a", "b"}


def test_write_retries_then_raises(tmp_path: Path, monkeypatch) -> None:
    sleeps: list[float] = []
    store = _open_store(tmp_path, write_retries=3, sleep=sleeps.append)

    def failing(document) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(store, "_write_once", failing)

    with pytest.raises(StoreWriteError) as excinfo:
        store.append_failed_log(_failed("a"))

    assert excinfo.value.attempts == 3
    assert len(sleeps) == 2
    assert sleeps[0] <= sleeps[1]


def test_write_recovers_after_transient_failure(tmp_path: Path, monkeypatch) -> None:
    store = _open_store(tmp_path, sleep=lambda _: None)
    real_write = store._write_once
    calls = {"count": 0}

    def flaky(document) -> None:
        calls["count"] += 1
        if calls["count"] == 1:
            raise OSError("busy")
        real_write(document)

    monkeypatch.setattr(store, "_write_once", flaky)

    store.append_failed_log(_failed("a"))

    assert calls["count"] == 2
    assert store.count_failed_logs() == 1


def test_unopened_store(tmp_path: Path) -> None:
    store = LogStore(tmp_path)

    assert store.list_failed_logs() == []
    assert store.delete_failed_logs_by_trace_id({"a"}) == 0
    assert store.has_cache_entry("t", "p") is False
    with pytest.raises(StoreError):
        store.append_failed_log(_failed("a"))


def test_stats(tmp_path: Path) -> None:
    store = _open_store(tmp_path)
    store.append_failed_log(_failed("a", failed_at=dt.datetime(2026, 1, 1, tzinfo=dt.UTC)))
    store.append_failed_log(_failed("b"))
    store.increment_retry_counts(["b"])
    store.append_cache_entry("t1", "prompt")

    stats = store.stats()

    assert stats["failed_logs"] == 2
    assert stats["failed_by_retry_count"] == {0: 1, 1: 1}
    assert stats["oldest_failed_at"] == "2026-01-01T00:00:00+00:00"
    assert stats["user_message_cache"] == 1


def test_purge_rows_without_trace_id(tmp_path: Path) -> None:
    store = _open_store(tmp_path)
    store.append_failed_log(_failed("a"))
    store.append_failed_log(_failed(""))

    assert store.purge_failed_logs_without_trace_id() == 1
    assert [entry.log_trace_id for entry in store.list_failed_logs()] == ["a"]
    assert store.purge_failed_logs_without_trace_id() == 0


def test_lone_surrogate_text_is_written_as_escaped_json(tmp_path: Path) -> None:
    store = _open_store(tmp_path)
    entry = _failed("a")
    entry.request = json.loads('"cut mid-emoji \\ud83d"')

    store.append_failed_log(entry)

    assert "\\ud83d" in store.path.read_text()
    [stored] = store.list_failed_logs()
    assert stored.request == entry.request
