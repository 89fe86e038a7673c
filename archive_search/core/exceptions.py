"""Custom exception hierarchy for the archive search index."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import status


class ApplicationError(Exception):
    """Base application error with HTTP semantics."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "application_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            return f"{base} :: {self.details}"
        return base


class ScanError(ApplicationError):
    """A file or directory under an archive root could not be read."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "scan_error"


class NormalizationError(ApplicationError):
    """Markup could not be converted; the document is kept unnormalized."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "normalization_error"


class StoreError(ApplicationError):
    """Constraint violation, transaction misuse or I/O failure in the store."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "store_error"


class NestedTransactionError(StoreError):
    code = "nested_transaction"


class NotFoundError(ApplicationError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class SchedulingError(ApplicationError):
    """Raised when a trigger cannot be configured, e.g. a malformed cron expression."""

    code = "scheduling_error"


class IndexingError(ApplicationError):
    """Raised when an indexing run fails and has been rolled back."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "indexing_failed"


class IndexingInProgressError(ApplicationError):
    status_code = status.HTTP_409_CONFLICT
    code = "indexing_in_progress"


__all__ = [
    "ApplicationError",
    "IndexingError",
    "IndexingInProgressError",
    "NestedTransactionError",
    "NormalizationError",
    "NotFoundError",
    "ScanError",
    "SchedulingError",
    "StoreError",
]
