"""
Fuel Import Errors

Exception hierarchy for the fuel statement reconciliation pipeline.
"""

from typing import Any


class FuelImportError(Exception):
    """Base exception for fuel import errors."""
    pass


class ConfigurationError(FuelImportError):
    """Configuration loading or validation errors."""
    pass


class ParseError(FuelImportError):
    """Statement could not be parsed into any usable rows."""

    def __init__(self, message: str, row_errors: list | None = None):
        super().__init__(message)
        self.row_errors = row_errors or []


class SessionError(FuelImportError):
    """Reconciliation session errors."""
    pass


class UnknownTransactionError(SessionError, KeyError):
    """Source transaction id is not part of the session."""

    def __init__(self, source_id: str):
        super().__init__(f"Unknown source transaction id: {source_id}")
        self.source_id = source_id

    def __str__(self) -> str:
        return self.args[0]


class SessionClosedError(SessionError):
    """Session was already committed or cancelled."""
    pass


class ValidationError(SessionError):
    """Session rows cannot be resolved for commit."""

    def __init__(self, message: str, source_ids: list[str] | None = None):
        super().__init__(message)
        self.source_ids = source_ids or []


class StoreError(FuelImportError):
    """A store operation failed for a single row or unit of work."""
    pass


class StoreUnavailableError(StoreError):
    """The store cannot be reached at all; the pipeline must stop."""

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.result = result


class CommitPartialFailure(FuelImportError):
    """Some rows failed to persist; successful rows are kept."""

    def __init__(self, result: Any):
        failed = ", ".join(sorted(result.failed))
        super().__init__(
            f"{len(result.failed)} of {result.total} transactions failed to import: {failed}"
        )
        self.result = result
