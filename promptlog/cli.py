from __future__ import annotations

import logging

import typer
from rich import print

from . import __version__
from .commands.backup_cmds import backup_show_cmd
from .commands.common import config_or_exit, open_store_or_exit, sink_from_config
from .commands.log_cmds import save_cmd
from .commands.status_cmds import status_cmd
from .commands.sync_cmds import cache_prune_cmd, sync_daemon_cmd, sync_once_cmd
from .logger import PromptLogger
from .sync import run_sync_pass

app = typer.Typer(help="promptlog: durable telemetry for LLM exchanges")
sync_app = typer.Typer(help="Re-send logs that failed to reach the remote sink")
cache_app = typer.Typer(help="Duplicate-prompt cache maintenance")
backup_app = typer.Typer(help="Inspect encrypted backup files")
app.add_typer(sync_app, name="sync")
app.add_typer(cache_app, name="cache")
app.add_typer(backup_app, name="backup")


@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def status() -> None:
    """Show log store and remote sink status."""
    status_cmd(
        config_or_exit=config_or_exit,
        open_store_or_exit=open_store_or_exit,
        sink_from_config=sink_from_config,
    )


@app.command()
def save(
    input_path: str | None = typer.Argument(
        None, help="JSON file with the log message (default: stdin)"
    ),
    task_id: str | None = typer.Option(None, "--task-id", help="Task id for the message"),
    mode: str | None = typer.Option(None, help="Conversation mode (plan or act)"),
) -> None:
    """Record one log message."""
    save_cmd(config_or_exit=config_or_exit, input_path=input_path, task_id=task_id, mode=mode)


@sync_app.command("once")
def sync_once(
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Run a single sync pass."""
    sync_once_cmd(
        config_or_exit=config_or_exit,
        open_store_or_exit=open_store_or_exit,
        sink_from_config=sink_from_config,
        run_sync_pass=run_sync_pass,
        as_json=as_json,
    )


@sync_app.command("daemon")
def sync_daemon(
    interval_s: int | None = typer.Option(None, help="Sync interval in seconds"),
) -> None:
    """Run the sync and cache cleanup jobs until interrupted."""
    sync_daemon_cmd(
        config_or_exit=config_or_exit,
        build_logger=PromptLogger.from_config,
        interval_s=interval_s,
    )


@cache_app.command("prune")
def cache_prune(
    days: int | None = typer.Option(None, help="Retention window in days"),
) -> None:
    """Remove cache entries older than the retention window."""
    cache_prune_cmd(config_or_exit=config_or_exit, open_store_or_exit=open_store_or_exit, days=days)


@backup_app.command("show")
def backup_show(
    path: str = typer.Argument(..., help="Encrypted backup file"),
    key: str | None = typer.Option(None, help="Hex backup key (default: configured key)"),
) -> None:
    """Decrypt and print an encrypted backup file."""
    backup_show_cmd(config_or_exit=config_or_exit, path=path, key=key)


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)


def main() -> None:
    app()
