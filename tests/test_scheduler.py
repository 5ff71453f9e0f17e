from __future__ import annotations

import logging
import threading

from promptlog.sync import PeriodicJob, SyncScheduler


def test_stop_is_safe_before_start_and_twice() -> None:
    job = PeriodicJob("noop", 60, lambda: None)

    job.stop()
    job.start()
    assert job.running
    job.stop()
    job.stop()

    assert not job.running


def test_run_once_logs_and_swallows_errors(caplog) -> None:
    def boom() -> None:
        raise RuntimeError("sync exploded")

    job = PeriodicJob("sync", 60, boom)

    with caplog.at_level(logging.ERROR, logger="promptlog.sync.scheduler"):
        assert job.run_once() is None

    assert "sync job failed" in caplog.text


def test_job_keeps_running_after_a_failing_tick() -> None:
    calls: list[int] = []
    second_tick = threading.Event()

    def flaky() -> None:
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first tick fails")
        second_tick.set()

    job = PeriodicJob("flaky", 1, flaky)
    job.start()
    try:
        assert second_tick.wait(5.0)
    finally:
        job.stop()

    assert len(calls) >= 2


def test_scheduler_starts_and_stops_both_jobs() -> None:
    scheduler = SyncScheduler(
        sync=lambda: None,
        cleanup=lambda: None,
        sync_interval_s=60,
        cleanup_interval_s=60,
    )

    scheduler.start()
    assert scheduler.sync_job.running
    assert scheduler.cleanup_job.running

    scheduler.stop()
    scheduler.stop()
    assert not scheduler.running
