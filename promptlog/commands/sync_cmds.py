from __future__ import annotations

import json
import threading

import typer
from rich import print

from ..dedup import DuplicateSuppressionCache


def sync_once_cmd(
    *,
    config_or_exit,
    open_store_or_exit,
    sink_from_config,
    run_sync_pass,
    as_json: bool,
) -> None:
    """Run a single failed-log sync pass."""

    cfg = config_or_exit()
    sink = sink_from_config(cfg)
    if not sink.configured:
        print("[yellow]Remote sink is not configured (set PROMPTLOG_API_URL)[/yellow]")
        raise typer.Exit(code=1)
    store = open_store_or_exit(cfg)
    try:
        result = run_sync_pass(
            store,
            sink,
            fetch_limit=cfg.sync_fetch_limit,
            batch_size=cfg.sync_batch_size,
            max_retry_count=cfg.max_retry_count,
        )
    finally:
        store.close()
    if as_json:
        print(json.dumps(result.as_dict(), indent=2))
        return
    print(
        f"- sent {result.sent}, failed {result.failed}, "
        f"dropped {result.gave_up + result.invalid} (retry limit {result.gave_up}, "
        f"bad checksum {result.invalid})"
    )
    for error in result.errors:
        print(f"  [yellow]{error}[/yellow]")


def sync_daemon_cmd(
    *,
    config_or_exit,
    build_logger,
    interval_s: int | None,
    stop_event: threading.Event | None = None,
) -> None:
    """Run the sync and cache cleanup jobs until interrupted."""

    cfg = config_or_exit()
    if interval_s:
        cfg.sync_interval_s = interval_s
    prompt_logger = build_logger(cfg)
    prompt_logger.init(start_jobs=True)
    print(
        f"[green]Sync running every {cfg.sync_interval_s}s "
        f"(cache cleanup every {cfg.cleanup_interval_s}s)[/green]"
    )
    stop = stop_event or threading.Event()
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        print("Stopping sync daemon")
    finally:
        prompt_logger.shutdown()


def cache_prune_cmd(*, config_or_exit, open_store_or_exit, days: int | None) -> None:
    """Remove dedup cache entries older than the retention window."""

    cfg = config_or_exit()
    store = open_store_or_exit(cfg)
    try:
        removed = DuplicateSuppressionCache(store).prune(
            retention_days=days if days is not None else cfg.cache_retention_days
        )
    finally:
        store.close()
    print(f"Removed {removed} cache entries")
