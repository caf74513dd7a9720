"""
Custom exceptions for the amqp_store package.

Callers can tell lifecycle misuse (StoreNotRunningError) apart from broker
failures (TransportError); both derive from StoreError.
"""

from typing import Optional


class StoreError(Exception):
    """Base class for every error raised by amqp_store."""


class StoreNotRunningError(StoreError):
    """Raised when publish or subscribe is called on a store that is not running."""

    def __init__(self, message: Optional[str] = None):
        if message is None:
            message = "store: is not running"
        super().__init__(message)


class TransportError(StoreError):
    """Raised when a broker operation fails. The driver error is chained as __cause__."""

    def __init__(self, operation: str, cause: Exception, message: Optional[str] = None):
        self.operation = operation
        self.cause = cause
        if message is None:
            message = f"{operation}: {cause}"
        super().__init__(message)


class ConfigValidationError(StoreError, ValueError):
    """Raised when a configuration object fails validation.

    ``errors`` maps a field name (or a named publish/consume entry) to a
    message, or to a nested report for entries.
    """

    def __init__(self, errors, message: Optional[str] = None):
        self.errors = errors
        if message is None:
            message = str(errors)
        super().__init__(message)
