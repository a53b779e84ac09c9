"""
Exceptions raised by Drive Watch.

Setup paths let these propagate to the caller. Reconciliation paths catch
them per document and log.
"""


class MonitorError(Exception):
    """Base exception for monitoring errors."""
    pass


class AuthError(MonitorError):
    """Missing, unreadable or unrefreshable credential."""
    pass


class RegistrationError(MonitorError):
    """The remote store rejected a watch channel request."""
    pass


class FetchError(MonitorError):
    """Metadata or content retrieval failed (including timeouts)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NormalizationError(MonitorError):
    """Content could not be converted to plain text."""
    pass


class CursorInvalidated(MonitorError):
    """The remote store no longer recognizes the change cursor."""

    def __init__(self, cursor: str, status_code: int | None = None):
        super().__init__(f"Change cursor {cursor!r} rejected by remote store")
        self.cursor = cursor
        self.status_code = status_code
