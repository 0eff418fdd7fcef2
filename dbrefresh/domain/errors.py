"""Defines custom exception classes for the application."""

from typing import Optional

from dbrefresh.domain.enums import RemoteFailureKind


class RefreshError(Exception):
    """Base exception class for all refresh errors."""
    def __init__(self, message: str, context: dict = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ConnectivityError(RefreshError):
    """Raised when the array, a database instance or a remote host is unreachable or rejects login."""
    pass


class NotFoundError(RefreshError):
    """Raised when a database, disk or volume lookup returns nothing usable."""
    pass


class AmbiguousMappingError(NotFoundError):
    """Raised when a lookup that must be unique returns several candidates."""
    def __init__(self, message: str, candidates: list = None, context: dict = None):
        super().__init__(message, context)
        self.candidates = candidates or []


class StateTransitionError(RefreshError):
    """Raised when the database engine or the OS rejects an offline/online request."""
    pass


class ReplicationError(RefreshError):
    """Raised when the array rejects or fails a volume overwrite."""
    pass


class RemoteExecutionError(RefreshError):
    """Raised when dispatching work to a remote host fails."""
    def __init__(self, message: str, host_name: str = None,
                 kind: RemoteFailureKind = RemoteFailureKind.TRANSPORT,
                 exit_status: Optional[int] = None, context: dict = None):
        super().__init__(message, context)
        self.host_name = host_name
        self.kind = kind
        self.exit_status = exit_status


class ConfigurationError(RefreshError):
    """Exception raised for configuration-related errors."""
    pass


class CancelledError(RefreshError):
    """Raised when an operator cancels the refresh before any mutation."""
    pass
