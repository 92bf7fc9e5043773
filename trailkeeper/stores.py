"""
Persistence interfaces used by the tracking core
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from trailkeeper.models import LocationPoint, TrackingSession


class SessionStore(ABC):
    """
    Durable storage of tracking sessions.

    `create` must refuse to create a session while another one is active,
    atomically with respect to other callers.
    """

    @abstractmethod
    def fetch_active_sessions(self) -> List[TrackingSession]:
        ...

    @abstractmethod
    def create(self, narrative: str, start_time: datetime) -> TrackingSession:
        ...

    @abstractmethod
    def end(self, session: TrackingSession, end_time: datetime) -> TrackingSession:
        """Mark a session inactive with the given end time and return the stored copy"""

    @abstractmethod
    def delete(self, session: TrackingSession) -> None:
        """Delete a session together with its location points"""

    @abstractmethod
    def get(self, session_id: str) -> Optional[TrackingSession]:
        ...

    @abstractmethod
    def fetch_all_sessions(self) -> List[TrackingSession]:
        """All sessions, newest first"""


class LocationStore(ABC):
    """
    Durable storage of location points, owned by a session.

    `append` runs on the writer thread after the coordinator has released
    its lock, so a session may end between that check and the write.
    Implementations must re-check inside the write and refuse points for a
    session that is missing or no longer active.
    """

    @abstractmethod
    def append(self, point: LocationPoint, session: TrackingSession) -> None:
        """
        Persist a point.

        Raises:
            PointPersistenceFailed: the session is missing or no longer active,
                or the write failed
        """

    @abstractmethod
    def fetch_ordered(self, session: TrackingSession) -> List[LocationPoint]:
        """Points of a session in ascending timestamp order"""

    @abstractmethod
    def count(self, session: TrackingSession) -> int:
        ...
