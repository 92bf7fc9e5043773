"""
Outbound notifications and the published tracking status
"""

import threading
from typing import Optional

from trailkeeper.models import CurrentStatus, RawFix, TrackingSession


class TrackingObserver:
    """
    Receives tracking events. Hooks may be called from the sensor delivery
    thread or the persistence writer thread; override the ones you need.
    """

    def session_started(self, session: TrackingSession, mode: Optional[str] = None):
        pass

    def session_stopped(self, session: TrackingSession):
        pass

    def point_count_changed(self, session_id: str, count: int):
        pass

    def location_changed(self, fix: RawFix):
        pass

    def fix_rejected(self, fix: RawFix, reason: str):
        pass


class StatusBoard(TrackingObserver):
    """
    Holds the status shown to foreground readers (API, UI).

    Every update and every snapshot happens under one lock, so a reader never
    sees a session id from one session paired with the count of another.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._status = CurrentStatus(is_tracking=False)

    def session_started(self, session: TrackingSession, mode: Optional[str] = None):
        with self._lock:
            self._status = self._status.model_copy(update={
                "is_tracking": True,
                "session_id": session.id,
                "narrative": session.narrative,
                "mode": mode,
                "point_count": 0,
                "rejected_count": 0,
            })

    def session_stopped(self, session: TrackingSession):
        with self._lock:
            if self._status.session_id != session.id:
                return
            self._status = self._status.model_copy(update={
                "is_tracking": False,
                "session_id": None,
                "narrative": None,
                "mode": None,
            })

    def point_count_changed(self, session_id: str, count: int):
        with self._lock:
            if self._status.session_id == session_id:
                self._status = self._status.model_copy(update={"point_count": count})

    def location_changed(self, fix: RawFix):
        with self._lock:
            self._status = self._status.model_copy(update={
                "current_location": fix,
                "last_fix_time": fix.timestamp,
            })

    def fix_rejected(self, fix: RawFix, reason: str):
        with self._lock:
            if self._status.is_tracking:
                self._status = self._status.model_copy(
                    update={"rejected_count": self._status.rejected_count + 1}
                )

    def snapshot(self) -> CurrentStatus:
        with self._lock:
            return self._status
