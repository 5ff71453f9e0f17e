from __future__ import annotations

import datetime as dt
import json
import logging
from pathlib import Path

import pytest

from promptlog.checksum import compute_checksum
from promptlog.errors import SinkError
from promptlog.store import LogStore
from promptlog.sync import run_sync_pass, sync_failed_logs
from promptlog.types import FailedLogMessage, LogMessage

BASE = dt.datetime(2026, 2, 1, tzinfo=dt.UTC)


class _FakeSink:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.batches: list[list[dict]] = []

    def send_batch(self, records) -> int:
        self.batches.append(list(records))
        if self.fail:
            raise SinkError(503, "unavailable")
        return 200


@pytest.fixture
def store(tmp_path: Path) -> LogStore:
    store = LogStore(tmp_path)
    store.open()
    return store


def _queue(store: LogStore, trace_id: str, *, index: int = 0, retry_count: int = 0) -> None:
    message = LogMessage(
        request=f"request {trace_id}",
        response="response",
        input_token_count=5,
        output_token_count=7,
        model_name="model",
        model_id="model-1",
        task_id="task-1",
        log_trace_id=trace_id,
    )
    entry = FailedLogMessage.from_message(
        message,
        checksum=compute_checksum(message),
        failed_at=BASE + dt.timedelta(seconds=index),
    )
    entry.retry_count = retry_count
    store.append_failed_log(entry)


def test_valid_entries_are_sent_in_one_batch_and_removed(store: LogStore) -> None:
    for index, trace_id in enumerate(("a", "b", "c")):
        _queue(store, trace_id, index=index)
    sink = _FakeSink()

    result = run_sync_pass(store, sink)  # type: ignore[arg-type]

    assert result.sent == 3
    assert result.deleted == 3
    assert len(sink.batches) == 1
    assert [record["logTraceId"] for record in sink.batches[0]] == ["a", "b", "c"]
    for record in sink.batches[0]:
        assert "checksum" not in record
        assert "failedAt" not in record
        assert "retryCount" not in record
    assert store.count_failed_logs() == 0


def test_entry_at_retry_limit_is_dropped_without_sending(store: LogStore, caplog) -> None:
    _queue(store, "worn-out", retry_count=3)
    sink = _FakeSink()

    with caplog.at_level(logging.WARNING, logger="promptlog.sync.sync_pass"):
        result = run_sync_pass(store, sink, max_retry_count=3)  # type: ignore[arg-type]

    assert result.gave_up == 1
    assert result.sent == 0
    assert sink.batches == []
    assert store.count_failed_logs() == 0
    assert "retry limit" in caplog.text


def test_tampered_entry_is_dropped_without_sending(store: LogStore, caplog) -> None:
    _queue(store, "good", index=0)
    _queue(store, "tampered", index=1)
    raw = store.path.read_text().replace("request tampered", "request edited")
    store.path.write_text(raw)
    sink = _FakeSink()

    with caplog.at_level(logging.WARNING, logger="promptlog.sync.sync_pass"):
        result = run_sync_pass(store, sink)  # type: ignore[arg-type]

    assert result.invalid == 1
    assert result.sent == 1
    assert [record["logTraceId"] for batch in sink.batches for record in batch] == ["good"]
    assert store.count_failed_logs() == 0
    assert "Skipping log tampered: checksum validation failed" in caplog.text


def test_failed_batch_bumps_retry_counts(store: LogStore) -> None:
    _queue(store, "a", index=0)
    _queue(store, "b", index=1)
    sink = _FakeSink(fail=True)

    result = run_sync_pass(store, sink)  # type: ignore[arg-type]

    assert result.failed == 2
    assert result.sent == 0
    assert result.errors
    assert {entry.retry_count for entry in store.list_failed_logs()} == {1}


def test_entries_are_dropped_after_repeated_failures(store: LogStore) -> None:
    _queue(store, "a")
    sink = _FakeSink(fail=True)

    for _ in range(3):
        run_sync_pass(store, sink, max_retry_count=3)  # type: ignore[arg-type]
    assert len(sink.batches) == 3
    assert store.list_failed_logs()[0].retry_count == 3

    result = run_sync_pass(store, sink, max_retry_count=3)  # type: ignore[arg-type]

    assert result.gave_up == 1
    assert len(sink.batches) == 3
    assert store.count_failed_logs() == 0


def test_batches_respect_batch_size(store: LogStore) -> None:
    for index in range(5):
        _queue(store, f"t{index}", index=index)
    sink = _FakeSink()

    result = run_sync_pass(store, sink, batch_size=2)  # type: ignore[arg-type]

    assert [len(batch) for batch in sink.batches] == [2, 2, 1]
    assert result.sent == 5


def test_fetch_limit_caps_one_pass(store: LogStore) -> None:
    for index in range(4):
        _queue(store, f"t{index}", index=index)
    sink = _FakeSink()

    sent = sync_failed_logs(store, sink, fetch_limit=3)  # type: ignore[arg-type]

    assert sent == 3
    assert [entry.log_trace_id for entry in store.list_failed_logs()] == ["t3"]


def test_missing_or_unopened_store_is_a_noop(tmp_path: Path) -> None:
    sink = _FakeSink()

    assert run_sync_pass(None, sink).sent == 0  # type: ignore[arg-type]
    assert run_sync_pass(LogStore(tmp_path), sink).sent == 0  # type: ignore[arg-type]
    assert sink.batches == []


def test_rows_without_trace_id_are_dropped(store: LogStore) -> None:
    _queue(store, "keep", index=0)
    _queue(store, "lost-id", index=1)
    document = json.loads(store.path.read_text())
    for record in document["failed_logs"]:
        if record["logTraceId"] == "lost-id":
            del record["logTraceId"]
    store.path.write_text(json.dumps(document))
    sink = _FakeSink()

    result = run_sync_pass(store, sink)  # type: ignore[arg-type]

    assert result.invalid == 1
    assert result.sent == 1
    assert result.deleted == 2
    assert [record["logTraceId"] for batch in sink.batches for record in batch] == ["keep"]
    assert store.count_failed_logs() == 0
