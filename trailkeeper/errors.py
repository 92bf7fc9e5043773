"""
Error types raised by the tracking core
"""


class TrackingError(Exception):
    """Base class for all tracking errors"""


class SessionAlreadyActive(TrackingError):
    """A session is already active; stop it before starting another."""

    def __init__(self, message: str = "A tracking session is already active"):
        super().__init__(message)


class NoActiveSession(TrackingError):
    """Stop was requested while no session is active."""

    def __init__(self, message: str = "No tracking session is active"):
        super().__init__(message)


class InvalidNarrative(TrackingError):
    """The narrative is empty after trimming whitespace."""

    def __init__(self, message: str = "A narrative is required to start tracking"):
        super().__init__(message)


class SessionNotFound(TrackingError):
    def __init__(self, session_id: str):
        super().__init__(f"Tracking session {session_id} not found")
        self.session_id = session_id


class SessionPersistenceFailed(TrackingError):
    """The store did not confirm a session create/end."""


class PointPersistenceFailed(TrackingError):
    """A location point could not be written. Logged and skipped by ingestion."""


class StoreQueryFailed(TrackingError):
    """Reading from the session store failed."""


class StoreError(TrackingError):
    """Low-level failure inside a store implementation."""
