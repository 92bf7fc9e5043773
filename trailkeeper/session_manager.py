"""
Tracking session lifecycle: start, stop and orphan recovery
"""

import logging
import threading
from typing import List, Optional, Union

from trailkeeper.errors import (
    InvalidNarrative, NoActiveSession, SessionAlreadyActive, SessionNotFound,
    SessionPersistenceFailed, StoreError, StoreQueryFailed,
)
from trailkeeper.models import SessionState, TrackingMode, TrackingSession, ValidationConfig
from trailkeeper.stores import SessionStore
from trailkeeper.utils import now_utc

logger = logging.getLogger(__name__)


class SessionListener:
    """
    Notified after the store has confirmed a lifecycle transition, and once
    more just before a stop is written.
    """

    def on_session_started(self, session: TrackingSession, config: ValidationConfig,
                           mode: Optional[str] = None):
        pass

    def on_session_stopping(self, session: TrackingSession):
        """Called before the store ends the session, while it is still active"""
        pass

    def on_session_stopped(self, session: TrackingSession):
        pass


class SessionStateMachine:
    """
    Owns the single active tracking session.

    States are NO_ACTIVE_SESSION and ACTIVE_SESSION. All transitions go
    through start(), stop() and recover_orphans(), which are serialized by
    one lock. The session store is the source of truth: start() re-queries
    it for active sessions instead of trusting the in-memory state, and the
    in-memory state only changes after the store has confirmed the write.
    """

    def __init__(self, store: SessionStore, listeners: Optional[List[SessionListener]] = None,
                 clock=now_utc):
        self.store = store
        self.listeners: List[SessionListener] = list(listeners or [])
        self.clock = clock

        self._lock = threading.RLock()
        self._active: Optional[TrackingSession] = None
        self._active_config: Optional[ValidationConfig] = None
        self._active_mode: Optional[str] = None
        self._recovered = False

    @property
    def state(self) -> SessionState:
        with self._lock:
            if self._active is None:
                return SessionState.NO_ACTIVE_SESSION
            return SessionState.ACTIVE_SESSION

    @property
    def active_session(self) -> Optional[TrackingSession]:
        with self._lock:
            return self._active

    @property
    def active_config(self) -> Optional[ValidationConfig]:
        with self._lock:
            return self._active_config

    @property
    def active_mode(self) -> Optional[str]:
        with self._lock:
            return self._active_mode

    def add_listener(self, listener: SessionListener):
        self.listeners.append(listener)

    def start(self, narrative: str, config: Union[ValidationConfig, TrackingMode]) -> TrackingSession:
        """
        Start a new tracking session.

        Raises:
            SessionAlreadyActive: a session is active in this process or in the store
            InvalidNarrative: narrative is empty after trimming
            StoreQueryFailed: active sessions could not be queried
            SessionPersistenceFailed: the store did not confirm the new session
        """
        mode = None
        if isinstance(config, TrackingMode):
            mode = config.value
            config = config.config()

        with self._lock:
            self._ensure_recovered()

            if self._active is not None:
                raise SessionAlreadyActive()

            narrative = (narrative or "").strip()
            if not narrative:
                raise InvalidNarrative()

            try:
                active = self.store.fetch_active_sessions()
            except StoreError as e:
                raise StoreQueryFailed(f"Could not check for active sessions: {e}") from e
            if active:
                logger.info("Refusing to start: session %s is already active", active[0].id)
                raise SessionAlreadyActive()

            try:
                session = self.store.create(narrative, self.clock())
            except StoreError as e:
                logger.exception("Failed to create tracking session")
                raise SessionPersistenceFailed(f"Failed to save tracking session: {e}") from e

            self._active = session
            self._active_config = config
            self._active_mode = mode
            logger.info("Started tracking session %s (%s)", session.id, mode or "custom")

            for listener in self.listeners:
                try:
                    listener.on_session_started(session, config, mode)
                except Exception:
                    logger.exception("Session listener failed on start")

            return session

    def stop(self) -> TrackingSession:
        """
        Stop the active session and return its final stored state.

        Raises:
            NoActiveSession: nothing to stop
            SessionPersistenceFailed: the store did not confirm the end
        """
        with self._lock:
            self._ensure_recovered()

            if self._active is None:
                raise NoActiveSession()

            for listener in self.listeners:
                try:
                    listener.on_session_stopping(self._active)
                except Exception:
                    logger.exception("Session listener failed before stop")

            try:
                ended = self.store.end(self._active, self.clock())
            except StoreError as e:
                logger.exception("Failed to end tracking session %s", self._active.id)
                raise SessionPersistenceFailed(f"Failed to end tracking session: {e}") from e

            self._active = None
            self._active_config = None
            self._active_mode = None
            logger.info("Stopped tracking session %s", ended.id)

            for listener in self.listeners:
                try:
                    listener.on_session_stopped(ended)
                except Exception:
                    logger.exception("Session listener failed on stop")

            return ended

    def recover_orphans(self) -> int:
        """
        Close sessions left active by a previous run that ended abnormally.

        Tolerates any number of orphans. The session owned by this process,
        if any, is left alone. Store failures are logged, not raised; the
        return value is the number of sessions actually closed.
        """
        with self._lock:
            self._recovered = True
            recovery_time = self.clock()

            try:
                active = self.store.fetch_active_sessions()
            except StoreError:
                logger.exception("Orphan recovery could not query active sessions")
                return 0

            recovered = 0
            for session in active:
                if self._active is not None and session.id == self._active.id:
                    continue
                try:
                    self.store.end(session, recovery_time)
                    recovered += 1
                except StoreError:
                    logger.exception("Failed to recover orphaned session %s", session.id)

            if recovered:
                logger.info("Recovered %d orphaned tracking session(s)", recovered)
            return recovered

    def delete(self, session_id: str):
        """
        Delete a finished session and its points.

        Raises:
            SessionNotFound: unknown id
            SessionAlreadyActive: the session is still active
            SessionPersistenceFailed: the store did not confirm the delete
        """
        with self._lock:
            try:
                session = self.store.get(session_id)
            except StoreError as e:
                raise StoreQueryFailed(str(e)) from e
            if session is None:
                raise SessionNotFound(session_id)
            if session.is_active:
                raise SessionAlreadyActive("Stop the session before deleting it")

            try:
                self.store.delete(session)
            except StoreError as e:
                logger.exception("Failed to delete session %s", session_id)
                raise SessionPersistenceFailed(f"Failed to delete session: {e}") from e
            logger.info("Deleted tracking session %s", session_id)

    def _ensure_recovered(self):
        if not self._recovered:
            self.recover_orphans()
