"""
Database setup, table models and SQL-backed stores
"""

import logging
import threading
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text,
    create_engine, event, func,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from trailkeeper.config import DATABASE_URL
from trailkeeper.errors import PointPersistenceFailed, SessionAlreadyActive, StoreError
from trailkeeper.models import LocationPoint, TrackingSession
from trailkeeper.stores import LocationStore, SessionStore
from trailkeeper.utils import ensure_utc

logger = logging.getLogger(__name__)

Base = declarative_base()


class TrackingSessionDB(Base):
    """Database model for tracking sessions"""
    __tablename__ = "tracking_sessions"

    id = Column(String(36), primary_key=True)
    narrative = Column(Text, nullable=False)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    points = relationship(
        "LocationPointDB",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


# At most one row may have is_active = true
Index(
    "uq_tracking_sessions_single_active",
    TrackingSessionDB.is_active,
    unique=True,
    sqlite_where=TrackingSessionDB.is_active == True,  # noqa: E712
    postgresql_where=TrackingSessionDB.is_active == True,  # noqa: E712
)


class LocationPointDB(Base):
    """Database model for persisted location points"""
    __tablename__ = "location_points"

    row_id = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, nullable=False)
    session_id = Column(
        String(36),
        ForeignKey("tracking_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    timestamp = Column(DateTime, nullable=False, index=True)
    accuracy_m = Column(Float)
    altitude_m = Column(Float)
    speed_mps = Column(Float)
    course_deg = Column(Float)

    session = relationship("TrackingSessionDB", back_populates="points")


def create_db_engine(url: str) -> Engine:
    """Create an engine; SQLite connections are shared across threads."""
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    sqlite_engine = create_engine(url, **kwargs)

    @event.listens_for(sqlite_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


# Create engine and session
engine = create_db_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Optional[Engine] = None):
    """Initialize the database - create all tables"""
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database initialized")


def _to_session(row: TrackingSessionDB) -> TrackingSession:
    return TrackingSession(
        id=row.id,
        narrative=row.narrative,
        start_time=ensure_utc(row.start_time),
        end_time=ensure_utc(row.end_time) if row.end_time else None,
        is_active=row.is_active,
    )


def _to_point(row: LocationPointDB) -> LocationPoint:
    return LocationPoint(
        id=row.id,
        latitude=row.latitude,
        longitude=row.longitude,
        timestamp=ensure_utc(row.timestamp),
        accuracy_m=row.accuracy_m,
        altitude_m=row.altitude_m,
        speed_mps=row.speed_mps,
        course_deg=row.course_deg,
        session_id=row.session_id,
    )


def _utc_naive(dt: datetime) -> datetime:
    return ensure_utc(dt).replace(tzinfo=None)


class SqlSessionStore(SessionStore):
    """Session store backed by SQLAlchemy"""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory
        self._create_lock = threading.Lock()

    def fetch_active_sessions(self) -> List[TrackingSession]:
        db = self.session_factory()
        try:
            rows = db.query(TrackingSessionDB).filter(
                TrackingSessionDB.is_active == True  # noqa: E712
            ).order_by(TrackingSessionDB.start_time.asc()).all()
            return [_to_session(r) for r in rows]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to query active sessions: {e}") from e
        finally:
            db.close()

    def create(self, narrative: str, start_time: datetime) -> TrackingSession:
        with self._create_lock:
            db = self.session_factory()
            try:
                already_active = db.query(TrackingSessionDB.id).filter(
                    TrackingSessionDB.is_active == True  # noqa: E712
                ).first()
                if already_active:
                    raise SessionAlreadyActive()

                row = TrackingSessionDB(
                    id=str(uuid.uuid4()),
                    narrative=narrative,
                    start_time=_utc_naive(start_time),
                    is_active=True,
                )
                db.add(row)
                db.commit()
                return _to_session(row)
            except IntegrityError as e:
                db.rollback()
                raise SessionAlreadyActive() from e
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreError(f"Failed to create session: {e}") from e
            finally:
                db.close()

    def end(self, session: TrackingSession, end_time: datetime) -> TrackingSession:
        db = self.session_factory()
        try:
            row = db.get(TrackingSessionDB, session.id)
            if row is None:
                raise StoreError(f"Session {session.id} does not exist")
            row.is_active = False
            row.end_time = _utc_naive(end_time)
            db.commit()
            return _to_session(row)
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Failed to end session {session.id}: {e}") from e
        finally:
            db.close()

    def delete(self, session: TrackingSession) -> None:
        db = self.session_factory()
        try:
            row = db.get(TrackingSessionDB, session.id)
            if row is not None:
                db.delete(row)
                db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Failed to delete session {session.id}: {e}") from e
        finally:
            db.close()

    def get(self, session_id: str) -> Optional[TrackingSession]:
        db = self.session_factory()
        try:
            row = db.get(TrackingSessionDB, session_id)
            return _to_session(row) if row else None
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load session {session_id}: {e}") from e
        finally:
            db.close()

    def fetch_all_sessions(self) -> List[TrackingSession]:
        db = self.session_factory()
        try:
            rows = db.query(TrackingSessionDB).order_by(
                TrackingSessionDB.start_time.desc()
            ).all()
            return [_to_session(r) for r in rows]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to query sessions: {e}") from e
        finally:
            db.close()


class SqlLocationStore(LocationStore):
    """Location point store backed by SQLAlchemy"""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def append(self, point: LocationPoint, session: TrackingSession) -> None:
        db = self.session_factory()
        try:
            owner = db.get(TrackingSessionDB, session.id)
            if owner is None or not owner.is_active:
                raise PointPersistenceFailed(f"Session {session.id} is not active")

            db.add(LocationPointDB(
                id=point.id,
                session_id=session.id,
                latitude=point.latitude,
                longitude=point.longitude,
                timestamp=_utc_naive(point.timestamp),
                accuracy_m=point.accuracy_m,
                altitude_m=point.altitude_m,
                speed_mps=point.speed_mps,
                course_deg=point.course_deg,
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PointPersistenceFailed(f"Failed to store point {point.id}: {e}") from e
        finally:
            db.close()

    def fetch_ordered(self, session: TrackingSession) -> List[LocationPoint]:
        db = self.session_factory()
        try:
            rows = db.query(LocationPointDB).filter(
                LocationPointDB.session_id == session.id
            ).order_by(
                LocationPointDB.timestamp.asc(),
                LocationPointDB.row_id.asc(),
            ).all()
            return [_to_point(r) for r in rows]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to fetch points for {session.id}: {e}") from e
        finally:
            db.close()

    def count(self, session: TrackingSession) -> int:
        db = self.session_factory()
        try:
            return db.query(func.count(LocationPointDB.row_id)).filter(
                LocationPointDB.session_id == session.id
            ).scalar() or 0
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to count points for {session.id}: {e}") from e
        finally:
            db.close()
