from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/promptlog/config.json").expanduser()
DEFAULT_LOGS_DIR = "~/.cline/logs"

CONFIG_ENV_OVERRIDES = {
    "api_url": "PROMPTLOG_API_URL",
    "api_token": "PROMPTLOG_API_TOKEN",
    "request_timeout_s": "PROMPTLOG_REQUEST_TIMEOUT_S",
    "logs_dir": "PROMPTLOG_LOGS_DIR",
    "backup_key": "PROMPTLOG_BACKUP_KEY",
    "sync_interval_s": "PROMPTLOG_SYNC_INTERVAL_S",
    "cleanup_interval_s": "PROMPTLOG_CLEANUP_INTERVAL_S",
    "sync_fetch_limit": "PROMPTLOG_SYNC_FETCH_LIMIT",
    "sync_batch_size": "PROMPTLOG_SYNC_BATCH_SIZE",
    "max_retry_count": "PROMPTLOG_MAX_RETRY_COUNT",
    "cache_retention_days": "PROMPTLOG_CACHE_RETENTION_DAYS",
    "write_retries": "PROMPTLOG_WRITE_RETRIES",
    "register_url": "PROMPTLOG_REGISTER_URL",
}

_INT_KEYS = {
    "sync_interval_s",
    "cleanup_interval_s",
    "sync_fetch_limit",
    "sync_batch_size",
    "max_retry_count",
    "cache_retention_days",
    "write_retries",
}
_FLOAT_KEYS = {"request_timeout_s"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("PROMPTLOG_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def _strip_json_comments(text: str) -> str:
    """Drop // line comments and /* */ block comments outside strings."""
    result: list[str] = []
    in_string = False
    escape_next = False
    i = 0
    while i < len(text):
        char = text[i]
        if in_string:
            result.append(char)
            if escape_next:
                escape_next = False
            elif char == "\\":
                escape_next = True
            elif char == '"':
                in_string = False
            i += 1
            continue
        if char == '"':
            in_string = True
            result.append(char)
            i += 1
            continue
        if text.startswith("//", i):
            end = text.find("\n", i)
            i = len(text) if end == -1 else end
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end == -1:
                result.append(text[i:])
                break
            i = end + 2
            continue
        result.append(char)
        i += 1
    return "".join(result)


def _strip_trailing_commas(text: str) -> str:
    result: list[str] = []
    in_string = False
    escape_next = False
    for i, char in enumerate(text):
        if in_string:
            result.append(char)
            if escape_next:
                escape_next = False
            elif char == "\\":
                escape_next = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == ",":
            rest = text[i + 1 :].lstrip()
            if rest[:1] in {"]", "}"}:
                continue
        result.append(char)
    return "".join(result)


def _loads_jsonc(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        pass
    return json.loads(_strip_trailing_commas(_strip_json_comments(raw)))


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = _loads_jsonc(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class PromptLogConfig:
    api_url: str = ""
    api_token: str | None = None
    request_timeout_s: float = 10.0
    logs_dir: str = DEFAULT_LOGS_DIR
    backup_key: str | None = None
    sync_interval_s: int = 300
    cleanup_interval_s: int = 1800
    sync_fetch_limit: int = 500
    sync_batch_size: int = 25
    max_retry_count: int = 3
    cache_retention_days: int = 3
    write_retries: int = 3
    register_url: str | None = None

    @property
    def logs_path(self) -> Path:
        return Path(self.logs_dir).expanduser()


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def load_config(path: Path | None = None) -> PromptLogConfig:
    cfg = PromptLogConfig()
    try:
        data = read_config_file(path)
    except ValueError as exc:
        warnings.warn(
            f"Invalid config file {get_config_path(path)}; using defaults ({exc})",
            RuntimeWarning,
            stacklevel=2,
        )
        data = {}
    cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: PromptLogConfig, data: dict[str, Any]) -> PromptLogConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if isinstance(value, str) and not value.strip() and key != "api_url":
            continue
        setattr(cfg, key, value)
    return cfg
