"""
Exception hierarchy for the deal-flow core.

Input errors are raised at the call boundary before anything is applied.
Oracle errors are recovered locally by the caller. Merge aborts are reported
per dedup group. Persistence errors always propagate.
"""

from typing import Any


class DealflowError(Exception):
    """Base exception for all deal-flow errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


# Input errors


class InputError(DealflowError):
    """Malformed input rejected at the call boundary."""

    pass


class InvalidSourceError(InputError):
    """Unknown extraction source."""

    pass


class InvalidPatchError(InputError):
    """Field patch is not a mapping of field names to values."""

    pass


class InvalidWeightsError(InputError):
    """Scoring weights are negative or not numeric."""

    pass


class InvalidDecisionError(InputError):
    """User decision not allowed in the match's current state."""

    pass


# External dependencies


class OracleError(DealflowError):
    """Extraction or scoring oracle failed."""

    pass


class OracleTimeoutError(OracleError):
    """Oracle call timed out."""

    pass


# Dedup


class MergeAbortedError(DealflowError):
    """A duplicate group could not be merged; nothing was changed."""

    pass


# Persistence


class PersistenceError(DealflowError):
    """Could not read or write a record."""

    pass


class RecordNotFoundError(PersistenceError):
    """Requested record does not exist."""

    pass


def wrap_persistence_error(
    exc: Exception,
    context: dict[str, Any] | None = None,
) -> PersistenceError:
    """Wrap a database driver exception in the typed hierarchy."""
    ctx = dict(context or {})
    ctx["original_error"] = str(exc)
    ctx["error_type"] = type(exc).__name__
    return PersistenceError(f"Persistence error: {exc}", context=ctx)
