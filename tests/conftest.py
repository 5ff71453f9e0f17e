from __future__ import annotations

from pathlib import Path

import pytest

from promptlog.config import CONFIG_ENV_OVERRIDES


@pytest.fixture(autouse=True)
def _isolate_promptlog_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for env_var in CONFIG_ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.setenv("PROMPTLOG_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("PROMPTLOG_LOGS_DIR", str(tmp_path / "logs"))
