from __future__ import annotations

from pathlib import Path


class TracerError(Exception):
    """Base class for errors raised by the tracer core."""


class ValidationError(TracerError, ValueError):
    pass


class NotFoundError(TracerError, LookupError):
    def __init__(self, issue_id: str, message: str | None = None):
        super().__init__(message or f"issue not found: {issue_id}")
        self.issue_id = issue_id


class StorageError(TracerError):
    pass


class ReconciliationError(TracerError):
    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        line_num: int | None = None,
    ):
        super().__init__(message)
        self.path = path
        self.line_num = line_num
