from __future__ import annotations

import typer
from rich import print

from ..config import PromptLogConfig, load_config
from ..errors import PromptLogError
from ..sink import RemoteSink
from ..store import LogStore


def config_or_exit() -> PromptLogConfig:
    try:
        return load_config()
    except OSError as exc:
        print(f"[red]Failed to read config: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def open_store_or_exit(cfg: PromptLogConfig) -> LogStore:
    store = LogStore(cfg.logs_path, write_retries=cfg.write_retries)
    try:
        store.open()
    except PromptLogError as exc:
        print(f"[red]Failed to open log store: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    return store


def sink_from_config(cfg: PromptLogConfig) -> RemoteSink:
    return RemoteSink(cfg.api_url, cfg.api_token, timeout_s=cfg.request_timeout_s)
