"""Error taxonomy for the upload and reconciliation pipeline."""

from __future__ import annotations

from typing import Any, Dict, Optional


class IngestionError(Exception):
    """Base exception for all pipeline errors."""

    status_code = 500
    retryable = False

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def as_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"type": type(self).__name__, "retryable": self.retryable}
        if self.context:
            detail["context"] = self.context
        return detail


class ValidationError(IngestionError):
    """Upload rejected before any write."""

    status_code = 400


class EmptyInputError(ValidationError):
    """The spreadsheet has a header but no data rows."""


class MalformedInputError(ValidationError):
    """The byte stream is not a readable spreadsheet."""


class MissingDateError(ValidationError):
    """The uploaded file name carries no YYYY-MM-DD date."""


class UnsupportedFileTypeError(ValidationError):
    """The file extension is not accepted by the endpoint."""


class PartialRowError(IngestionError):
    """A single row failed; the upload continues without it."""

    def __init__(self, message: str, *, row_number: int, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, context=context)
        self.row_number = row_number


class TransactionFailure(IngestionError):
    """The all-or-nothing path failed and was rolled back."""


class PersistenceFailure(IngestionError):
    """Data could not be persisted; the caller must retry."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        store_emptied: bool = False,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, context=context)
        self.store_emptied = store_emptied

    def as_detail(self) -> Dict[str, Any]:
        detail = super().as_detail()
        detail["store_emptied"] = self.store_emptied
        return detail


class ConcurrentBatchError(IngestionError):
    """Another replacement of the same batch table is in progress."""

    status_code = 409
    retryable = True
