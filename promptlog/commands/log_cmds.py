from __future__ import annotations

import json
import sys

import typer
from rich import print

from ..logger import PromptLogger, SaveOutcome
from ..types import LogMessage


def save_cmd(
    *, config_or_exit, input_path: str | None, task_id: str | None, mode: str | None
) -> None:
    """Record one log message read from a JSON file or stdin."""

    if input_path and input_path != "-":
        try:
            with open(input_path, encoding="utf-8") as handle:
                raw = handle.read()
        except OSError as exc:
            print(f"[red]Failed to read {input_path}: {exc}[/red]")
            raise typer.Exit(code=1) from exc
    else:
        raw = sys.stdin.read()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        print(f"[red]Invalid JSON input: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    if not isinstance(data, dict):
        print("[red]Log message must be a JSON object[/red]")
        raise typer.Exit(code=1)

    prompt_logger = PromptLogger.from_config(config_or_exit())
    if mode:
        try:
            prompt_logger.set_mode(mode)
        except ValueError as exc:
            print(f"[red]Unknown mode: {mode}[/red]")
            raise typer.Exit(code=1) from exc
    prompt_logger.set_task_id(task_id)
    prompt_logger.init(start_jobs=False)
    try:
        outcome = prompt_logger.save_log(LogMessage.from_record(data))
    finally:
        prompt_logger.shutdown()

    if outcome == SaveOutcome.SENT:
        print("[green]Log sent[/green]")
    elif outcome == SaveOutcome.PERSISTED:
        print("[yellow]Remote sink unavailable; log queued for retry[/yellow]")
    elif outcome == SaveOutcome.SKIPPED:
        print("Placeholder message skipped")
    else:
        print("[red]Log could not be sent or stored[/red]")
        raise typer.Exit(code=1)
