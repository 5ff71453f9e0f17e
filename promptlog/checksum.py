from __future__ import annotations

import hashlib
import logging

from .types import FailedLogMessage, LogMessage

logger = logging.getLogger(__name__)

CHECKSUM_DELIMITER = "|"

# vendor_name, mode, max_input_tokens and the dates stay out of the digest:
# drift in those fields must not get an entry rejected.


def _critical_fields(entry: LogMessage) -> list[str]:
    return [
        entry.request if entry.request is not None else "",
        entry.response if entry.response is not None else "",
        str(entry.input_token_count) if entry.input_token_count is not None else "0",
        str(entry.output_token_count) if entry.output_token_count is not None else "0",
        entry.model_name or "",
        entry.model_id or "",
        entry.task_id or "",
        entry.user_prompt or "",
    ]


def digest(entry: LogMessage) -> str:
    payload = CHECKSUM_DELIMITER.join(_critical_fields(entry))
    return hashlib.sha256(payload.encode("utf-8", "surrogatepass")).hexdigest()


def compute_checksum(entry: LogMessage) -> str:
    """SHA-256 hex digest over the tamper-relevant fields of ``entry``.

    Returns an empty string (which never validates) if hashing fails.
    """
    try:
        return digest(entry)
    except Exception:
        logger.exception("Error generating log checksum")
        return ""


def validate_checksum(entry: FailedLogMessage) -> bool:
    try:
        if not entry.checksum:
            return False
        return digest(entry) == entry.checksum
    except Exception:
        logger.exception("Error validating log checksum")
        return False
