"""Ledger error taxonomy. Each error carries a machine-readable code."""

from __future__ import annotations


class LedgerError(Exception):
    """Base for all expected ledger failures (reported to callers, not crashes)."""

    code = "ledger_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class Unauthorized(LedgerError):
    code = "unauthorized"


class NotFound(LedgerError):
    code = "not_found"


class InvalidState(LedgerError):
    code = "invalid_state"


class InvalidInput(LedgerError):
    code = "invalid_input"


class InsufficientFunds(LedgerError):
    code = "insufficient_funds"


class StorageUnavailable(LedgerError):
    """Object store exhausted retries on both primary and fallback."""

    code = "storage_unavailable"


class StorageError(Exception):
    """A single failed object store call. Retried by ResilientObjectStore."""
