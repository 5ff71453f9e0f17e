from __future__ import annotations

from .client import SAVE_MULTI_PATH, RemoteSink

__all__ = ["SAVE_MULTI_PATH", "RemoteSink"]
