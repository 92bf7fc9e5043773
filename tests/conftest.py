"""
Shared fixtures for Trailkeeper tests.

Provides a file-backed SQLite database per test, SQL stores, an in-memory
session store for failure and orphan scenarios, and a fix factory that
places fixes at metre offsets from a base coordinate.
"""

import math
import threading
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import List, Optional

import pytest
import pytz
from sqlalchemy.orm import sessionmaker

from trailkeeper.database import SqlLocationStore, SqlSessionStore, create_db_engine, init_db
from trailkeeper.errors import SessionAlreadyActive, StoreError
from trailkeeper.models import RawFix, TrackingSession, ValidationConfig
from trailkeeper.stores import SessionStore
from trailkeeper.utils import EARTH_RADIUS_M

BASE_LAT = 52.520008
BASE_LON = 13.404954
T0 = datetime(2025, 6, 1, 12, 0, 0, tzinfo=pytz.UTC)

# Metres per degree of latitude on the sphere used by haversine_m
METERS_PER_DEG = math.radians(1.0) * EARTH_RADIUS_M


def make_fix(
    t: float = 0.0,
    north_m: float = 0.0,
    east_m: float = 0.0,
    accuracy: float = 10.0,
    speed: float = -1.0,
    course: float = -1.0,
    monotonic: Optional[float] = None,
) -> RawFix:
    """Build a fix `t` seconds after T0, offset from the base coordinate in metres."""
    lat = BASE_LAT + north_m / METERS_PER_DEG
    lon = BASE_LON + east_m / (METERS_PER_DEG * math.cos(math.radians(BASE_LAT)))
    return RawFix(
        latitude=lat,
        longitude=lon,
        timestamp=T0 + timedelta(seconds=t),
        monotonic=monotonic,
        horizontal_accuracy_m=accuracy,
        altitude_m=35.0,
        speed_mps=speed,
        course_deg=course,
    )


class FakeClock:
    """Deterministic clock advancing by `step` seconds on every call"""

    def __init__(self, start: datetime = T0, step: float = 60.0):
        self.now = start
        self.step = timedelta(seconds=step)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


class MemorySessionStore(SessionStore):
    """
    In-memory session store. Unlike the SQL store it accepts several active
    sessions via seed(), and can be told to fail specific operations.
    """

    def __init__(self):
        self.sessions: "OrderedDict[str, TrackingSession]" = OrderedDict()
        self.fail_on = set()
        self._lock = threading.Lock()

    def _check(self, operation: str):
        if operation in self.fail_on:
            raise StoreError(f"simulated {operation} failure")

    def seed(self, narrative: str = "left over", start_time: datetime = T0,
             is_active: bool = True) -> TrackingSession:
        session = TrackingSession(
            id=str(uuid.uuid4()), narrative=narrative, start_time=start_time, is_active=is_active,
        )
        self.sessions[session.id] = session
        return session

    def fetch_active_sessions(self) -> List[TrackingSession]:
        self._check("fetch")
        return [s for s in self.sessions.values() if s.is_active]

    def create(self, narrative: str, start_time: datetime) -> TrackingSession:
        self._check("create")
        with self._lock:
            if any(s.is_active for s in self.sessions.values()):
                raise SessionAlreadyActive()
            return self.seed(narrative, start_time)

    def end(self, session: TrackingSession, end_time: datetime) -> TrackingSession:
        self._check("end")
        ended = self.sessions[session.id].model_copy(update={"is_active": False, "end_time": end_time})
        self.sessions[session.id] = ended
        return ended

    def delete(self, session: TrackingSession) -> None:
        self._check("delete")
        self.sessions.pop(session.id, None)

    def get(self, session_id: str) -> Optional[TrackingSession]:
        return self.sessions.get(session_id)

    def fetch_all_sessions(self) -> List[TrackingSession]:
        return sorted(self.sessions.values(), key=lambda s: s.start_time, reverse=True)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    db_engine = create_db_engine(f"sqlite:///{tmp_path / 'trailkeeper-test.db'}")
    init_db(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def session_store(session_factory) -> SqlSessionStore:
    return SqlSessionStore(session_factory)


@pytest.fixture
def location_store(session_factory) -> SqlLocationStore:
    return SqlLocationStore(session_factory)


@pytest.fixture
def memory_store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def scenario_config() -> ValidationConfig:
    """Thresholds of the reference walkthrough (balanced preset values)"""
    return ValidationConfig(
        max_horizontal_accuracy_m=50.0,
        max_reasonable_speed_mps=69.0,
        max_distance_jump_m=1000.0,
        min_time_between_fixes_s=5.0,
        min_distance_between_points_m=200.0,
        adaptive_sampling=True,
    )


@pytest.fixture
def open_config() -> ValidationConfig:
    """Accepts everything with sane accuracy; no throttling or spacing"""
    return ValidationConfig(
        max_horizontal_accuracy_m=100.0,
        max_reasonable_speed_mps=1000.0,
        max_distance_jump_m=1_000_000.0,
        min_time_between_fixes_s=0.0,
        min_distance_between_points_m=None,
        adaptive_sampling=False,
    )
