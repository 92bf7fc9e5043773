"""
FastAPI Backend for Trailkeeper
Main application with REST API endpoints
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from trailkeeper.background import ExecutionExtension, TimedExtension
from trailkeeper.config import (
    API_HOST, API_PORT, DEFAULT_TRACKING_MODE, DISPLAY_TIMEZONE, LOG_LEVEL,
    PERSIST_EXTENSION_SECONDS,
)
from trailkeeper.database import SqlLocationStore, SqlSessionStore, engine as default_engine, init_db
from trailkeeper.errors import (
    InvalidNarrative, NoActiveSession, SessionAlreadyActive, SessionNotFound,
    SessionPersistenceFailed, StoreError, StoreQueryFailed, TrackingError,
)
from trailkeeper.ingestion import IngestionCoordinator
from trailkeeper.models import (
    CurrentStatus, RawFix, SessionDetail, StartSessionRequest, TrackingMode,
    TrackingModeInfo, TrackingSession,
)
from trailkeeper.observers import StatusBoard
from trailkeeper.serial_reader import FixReader, get_fix_reader
from trailkeeper.session_manager import SessionStateMachine
from trailkeeper.utils import to_local

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


class TrackingServices:
    """Wires stores, the session state machine and the ingestion pipeline together"""

    def __init__(self, bind: Engine, extension: Optional[ExecutionExtension] = None,
                 reader: Optional[FixReader] = None):
        self.engine = bind
        session_factory = sessionmaker(autocommit=False, autoflush=False, bind=bind)

        self.session_store = SqlSessionStore(session_factory)
        self.location_store = SqlLocationStore(session_factory)
        self.status_board = StatusBoard()
        self.coordinator = IngestionCoordinator(
            self.location_store,
            observers=[self.status_board],
            extension=extension or TimedExtension(PERSIST_EXTENSION_SECONDS),
        )
        self.sessions = SessionStateMachine(self.session_store, listeners=[self.coordinator])
        self.reader = reader

    def startup(self, connect_serial: bool = True):
        init_db(self.engine)
        self.sessions.recover_orphans()
        self.coordinator.start()

        if not connect_serial:
            return
        if self.reader is None:
            self.reader = get_fix_reader()
        self.reader.set_callback(self.coordinator.on_fix)
        if self.reader.connect():
            self.reader.start_reading()
        else:
            logger.warning("Could not connect to serial port. Running without live fixes.")

    def shutdown(self):
        if self.reader:
            self.reader.stop_reading()
        self.coordinator.flush(timeout=5.0)
        self.coordinator.shutdown()


def _error_status(error: TrackingError) -> int:
    if isinstance(error, SessionNotFound):
        return 404
    if isinstance(error, (SessionAlreadyActive, NoActiveSession)):
        return 409
    if isinstance(error, InvalidNarrative):
        return 422
    if isinstance(error, (SessionPersistenceFailed, StoreQueryFailed, StoreError)):
        return 503
    return 500


def _http_error(error: TrackingError) -> HTTPException:
    return HTTPException(status_code=_error_status(error), detail=str(error))


def _localize(session: TrackingSession) -> TrackingSession:
    return session.model_copy(update={
        "start_time": to_local(session.start_time, DISPLAY_TIMEZONE),
        "end_time": to_local(session.end_time, DISPLAY_TIMEZONE),
    })


def create_app(bind: Optional[Engine] = None, connect_serial: bool = True,
               extension: Optional[ExecutionExtension] = None,
               reader: Optional[FixReader] = None) -> FastAPI:
    services = TrackingServices(bind or default_engine, extension=extension, reader=reader)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events"""
        logger.info("Starting Trailkeeper backend...")
        services.startup(connect_serial=connect_serial)
        yield
        logger.info("Shutting down...")
        services.shutdown()

    app = FastAPI(
        title="Trailkeeper API",
        description="Backend API for recording GPS tracking sessions",
        version=VERSION,
        lifespan=lifespan
    )
    app.state.services = services

    # Enable CORS for frontend access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ==================== API ENDPOINTS ====================

    @app.get("/")
    def root():
        """Root endpoint - API status"""
        return {
            "status": "running",
            "name": "Trailkeeper API",
            "version": VERSION,
            "serial_connected": services.reader.is_running if services.reader else False,
        }

    @app.get("/api/status", response_model=CurrentStatus)
    def get_current_status():
        """
        Get current tracking status.
        Returns whether a session is running, its point count and the last raw fix.
        """
        return services.status_board.snapshot()

    @app.get("/api/modes", response_model=List[TrackingModeInfo])
    def get_tracking_modes():
        """List tracking modes and the validation thresholds they select"""
        return [TrackingModeInfo(mode=mode, thresholds=mode.config()) for mode in TrackingMode]

    @app.post("/api/sessions/start", response_model=TrackingSession)
    def start_session(request: StartSessionRequest):
        """Start a tracking session. Only one session may be active at a time."""
        mode = request.mode or TrackingMode(DEFAULT_TRACKING_MODE)
        try:
            session = services.sessions.start(request.narrative, mode)
        except TrackingError as e:
            raise _http_error(e)
        return _localize(session)

    @app.post("/api/sessions/stop", response_model=TrackingSession)
    def stop_session():
        """Stop the active tracking session"""
        try:
            session = services.sessions.stop()
        except TrackingError as e:
            raise _http_error(e)
        return _localize(session)

    @app.get("/api/sessions", response_model=List[TrackingSession])
    def list_sessions():
        """All sessions, newest first"""
        try:
            sessions = services.session_store.fetch_all_sessions()
        except TrackingError as e:
            raise _http_error(e)
        return [_localize(s) for s in sessions]

    @app.get("/api/sessions/{session_id}", response_model=SessionDetail)
    def get_session(session_id: str):
        """A session with its points in timestamp order"""
        try:
            session = services.session_store.get(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            points = services.location_store.fetch_ordered(session)
        except TrackingError as e:
            raise _http_error(e)
        return SessionDetail(session=_localize(session), point_count=len(points), points=points)

    @app.delete("/api/sessions/{session_id}")
    def delete_session(session_id: str):
        """Delete a finished session and all its points"""
        try:
            services.sessions.delete(session_id)
        except TrackingError as e:
            raise _http_error(e)
        return {"message": f"Session {session_id} deleted"}

    @app.post("/api/fixes", status_code=202)
    def submit_fix(fix: RawFix):
        """Hand one raw fix to the ingestion pipeline"""
        services.coordinator.on_fix(fix)
        return {"accepted_for_processing": True}

    @app.get("/api/serial/status")
    def get_serial_status():
        """Get serial connection status"""
        reader = services.reader
        if reader:
            recent = reader.get_recent_fixes(1)
            return {
                "connected": reader.is_running,
                "port": reader.port,
                "baud_rate": reader.baud_rate,
                "recent_fixes_count": len(reader.recent_fixes),
                "skipped_lines": reader.skipped_lines,
                "last_fix": recent[-1] if recent else None,
            }
        return {"connected": False, "error": "Serial reader not initialized"}

    @app.post("/api/serial/reconnect")
    def reconnect_serial():
        """Attempt to reconnect to serial port"""
        reader = services.reader
        if reader:
            reader.stop_reading()
            time.sleep(1)

            if reader.connect():
                reader.start_reading()
                return {"success": True, "message": "Reconnected successfully"}
            return {"success": False, "message": "Failed to reconnect"}

        return {"success": False, "message": "Serial reader not initialized"}

    return app


app = create_app()


# ==================== MAIN ====================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "trailkeeper.main:app",
        host=API_HOST,
        port=API_PORT,
    )
