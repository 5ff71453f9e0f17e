"""Encrypted flat-file copies of logs that could not be sent.

Each failed save is appended to ``encrypted-json/<YYYY-MM-DD>/<HH-MM>.json``
as an ``{iv, encryptedData, authTag}`` triple of hex strings (AES-256-GCM,
96-bit random IV per entry). The files are independent of the JSON store so
a broken store does not take the backups with it.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import os
import secrets
import threading
from pathlib import Path
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import BackupError
from ..types import utc_now
from ._store import ENCRYPTED_DIRNAME

logger = logging.getLogger(__name__)

KEY_FILENAME = "backup.key"
KEY_BYTES = 32
IV_BYTES = 12
TAG_BYTES = 16


def parse_key(value: str | bytes) -> bytes:
    if isinstance(value, bytes):
        key = value
    else:
        try:
            key = bytes.fromhex(value.strip())
        except ValueError as exc:
            raise BackupError("backup key must be hex encoded") from exc
    if len(key) != KEY_BYTES:
        raise BackupError(f"backup key must be {KEY_BYTES} bytes, got {len(key)}")
    return key


def _read_key_file(path: Path) -> bytes | None:
    try:
        raw = path.read_text().strip()
    except FileNotFoundError:
        return None
    return parse_key(raw) if raw else None


def _write_key_file(path: Path, key: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        os.write(fd, key.hex().encode("ascii") + b"\n")
    finally:
        os.close(fd)


def load_or_create_key(logs_root: Path | str) -> bytes:
    path = Path(logs_root).expanduser() / KEY_FILENAME
    key = _read_key_file(path)
    if key:
        return key
    key = AESGCM.generate_key(bit_length=KEY_BYTES * 8)
    _write_key_file(path, key)
    return key


def encrypt_record(record: dict[str, Any], key: bytes) -> dict[str, str]:
    iv = secrets.token_bytes(IV_BYTES)
    plaintext = json.dumps(record).encode("ascii")
    sealed = AESGCM(key).encrypt(iv, plaintext, None)
    return {
        "iv": iv.hex(),
        "encryptedData": sealed[:-TAG_BYTES].hex(),
        "authTag": sealed[-TAG_BYTES:].hex(),
    }


def decrypt_record(item: dict[str, Any], key: bytes) -> dict[str, Any]:
    try:
        iv = bytes.fromhex(str(item["iv"]))
        data = bytes.fromhex(str(item["encryptedData"]))
        tag = bytes.fromhex(str(item["authTag"]))
        plaintext = AESGCM(key).decrypt(iv, data + tag, None)
    except (KeyError, ValueError, InvalidTag) as exc:
        raise BackupError("cannot decrypt backup entry") from exc
    record = json.loads(plaintext.decode("utf-8"))
    if not isinstance(record, dict):
        raise BackupError("backup entry is not an object")
    return record


def partition_path(logs_root: Path, when: dt.datetime) -> Path:
    local = when.astimezone()
    return (
        logs_root
        / ENCRYPTED_DIRNAME
        / local.strftime("%Y-%m-%d")
        / f"{local.strftime('%H-%M')}.json"
    )


class EncryptedBackupWriter:
    def __init__(self, logs_root: Path | str, key: bytes) -> None:
        self.logs_root = Path(logs_root).expanduser()
        self._key = parse_key(key)
        self._lock = threading.Lock()

    def write(self, record: dict[str, Any], *, now: dt.datetime | None = None) -> Path:
        path = partition_path(self.logs_root, now or utc_now())
        try:
            item = encrypt_record(record, self._key)
        except Exception as exc:
            raise BackupError("backup encryption failed") from exc
        with self._lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                items = self._read_partition(path)
                items.append(item)
                path.write_text(json.dumps(items, indent=2), encoding="utf-8")
            except OSError as exc:
                raise BackupError(f"cannot write backup file {path}: {exc}") from exc
        return path

    def _read_partition(self, path: Path) -> list[Any]:
        if not path.exists():
            return []
        try:
            items = json.loads(path.read_text(encoding="utf-8"))
        except (ValueError, UnicodeDecodeError):
            logger.warning("encrypted backup %s is corrupted; starting a new array", path)
            return []
        if not isinstance(items, list):
            logger.warning("encrypted backup %s is not an array; starting a new array", path)
            return []
        return items


def read_backup_file(path: Path | str, key: bytes) -> list[dict[str, Any]]:
    items = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(items, list):
        raise BackupError("backup file must contain an array")
    return [decrypt_record(item, key) for item in items if isinstance(item, dict)]
