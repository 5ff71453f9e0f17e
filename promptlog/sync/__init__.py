from __future__ import annotations

from .scheduler import PeriodicJob, SyncScheduler
from .sync_pass import SyncResult, run_sync_pass, sync_failed_logs

__all__ = ["PeriodicJob", "SyncResult", "SyncScheduler", "run_sync_pass", "sync_failed_logs"]
