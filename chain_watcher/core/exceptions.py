"""
Custom exception classes for the chain watcher.
Provides structured error handling across all modules.
"""

from typing import Any, Optional, Dict


class ChainWatcherException(Exception):
    """Base exception class for the chain watcher."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(ChainWatcherException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class DatabaseError(ChainWatcherException):
    """Raised when there's a database error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class ChainRPCError(ChainWatcherException):
    """Raised when a chain node call fails. Retried on the next poll."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CHAIN_RPC_ERROR", details)


class MalformedEventError(ChainWatcherException):
    """Raised when a decoded event lacks required fields."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "MALFORMED_EVENT", details)


class DuplicateEventError(ChainWatcherException):
    """Raised when an event with the same natural key is already stored."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DUPLICATE_EVENT", details)


class HandlerExecutionError(ChainWatcherException):
    """Raised by event handlers to reject an event."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "HANDLER_EXECUTION_ERROR", details)


class ConsistencyViolationError(ChainWatcherException):
    """
    Raised when the domain store references blocks beyond the event store.

    Fatal: requires manual data repair before the watcher may start.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONSISTENCY_VIOLATION", details)


class NotFoundError(ChainWatcherException):
    """Raised when a requested record is not found."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)
