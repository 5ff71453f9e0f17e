from __future__ import annotations


class PromptLogError(Exception):
    pass


class StoreError(PromptLogError):
    pass


class StoreWriteError(StoreError):
    def __init__(self, path: str, attempts: int, cause: BaseException | None = None) -> None:
        self.path = path
        self.attempts = attempts
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"store write failed after {attempts} attempts ({path}){detail}")


class SinkError(PromptLogError):
    """Remote sink rejected a batch or could not be reached.

    ``status`` is ``None`` for transport errors (DNS, refused, timeout).
    """

    def __init__(self, status: int | None, detail: str | None = None) -> None:
        self.status = status
        self.detail = detail
        if status is None:
            suffix = f" ({detail})" if detail else ""
        else:
            suffix = f" ({status}: {detail})" if detail else f" ({status})"
        super().__init__(f"log sink request failed{suffix}")


class BackupError(PromptLogError):
    pass
