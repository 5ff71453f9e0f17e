from __future__ import annotations

from rich import print


def status_cmd(*, config_or_exit, open_store_or_exit, sink_from_config) -> None:
    """Show log store and remote sink status."""

    cfg = config_or_exit()
    store = open_store_or_exit(cfg)
    try:
        stats = store.stats()
    finally:
        store.close()
    sink = sink_from_config(cfg)

    print("[bold]Remote sink[/bold]")
    if sink.configured:
        print(f"- URL: {sink.base_url}")
        print(f"- Token: {'set' if cfg.api_token else 'not set'}")
    else:
        print("- [yellow]not configured (set PROMPTLOG_API_URL)[/yellow]")

    print("\n[bold]Log store[/bold]")
    print(f"- Path: {stats['path']}")
    print(f"- Failed logs queued: {stats['failed_logs']}")
    for retry_count, count in stats["failed_by_retry_count"].items():
        print(f"  - retry {retry_count}: {count}")
    if stats["oldest_failed_at"]:
        print(f"- Oldest failure: {stats['oldest_failed_at']}")
    print(f"- Dedup cache entries: {stats['user_message_cache']}")
