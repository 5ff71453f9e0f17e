from __future__ import annotations

from ._store import (
    COLLECTIONS,
    DB_FILENAME,
    ENCRYPTED_DIRNAME,
    FAILED_LOGS,
    JSON_DIRNAME,
    LOG_MESSAGES,
    USER_MESSAGE_CACHE,
    LogStore,
)
from .backup import EncryptedBackupWriter, load_or_create_key, read_backup_file

__all__ = [
    "COLLECTIONS",
    "DB_FILENAME",
    "ENCRYPTED_DIRNAME",
    "FAILED_LOGS",
    "JSON_DIRNAME",
    "LOG_MESSAGES",
    "USER_MESSAGE_CACHE",
    "EncryptedBackupWriter",
    "LogStore",
    "load_or_create_key",
    "read_backup_file",
]
