from __future__ import annotations

import json
from pathlib import Path

import typer
from rich import print

from ..errors import BackupError
from ..store.backup import KEY_FILENAME, parse_key, read_backup_file


def backup_show_cmd(*, config_or_exit, path: str, key: str | None) -> None:
    """Decrypt an encrypted backup file and print its records."""

    cfg = config_or_exit()
    try:
        if key or cfg.backup_key:
            key_bytes = parse_key(key or cfg.backup_key or "")
        else:
            key_bytes = parse_key((cfg.logs_path / KEY_FILENAME).read_text())
        records = read_backup_file(Path(path).expanduser(), key_bytes)
    except (BackupError, OSError, ValueError) as exc:
        print(f"[red]Cannot read backup {path}: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    # log content may contain rich markup brackets
    typer.echo(json.dumps(records, indent=2))
