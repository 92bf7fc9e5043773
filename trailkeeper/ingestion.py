"""
Fix ingestion: validation, spacing, smoothing and ordered persistence
"""

import logging
import threading
import time
from queue import Full, Queue
from typing import List, NamedTuple, Optional

from trailkeeper.background import ExecutionExtension
from trailkeeper.config import (
    FILTER_ENABLED, FILTER_PROCESS_NOISE, PERSIST_QUEUE_SIZE, PERSIST_STOP_FLUSH_SECONDS,
)
from trailkeeper.filters import CoordinateSmoother
from trailkeeper.models import LocationPoint, RawFix, TrackingSession, ValidationConfig
from trailkeeper.observers import TrackingObserver
from trailkeeper.session_manager import SessionListener
from trailkeeper.stores import LocationStore
from trailkeeper.utils import haversine_m
from trailkeeper.validator import FixValidator

logger = logging.getLogger(__name__)

_STOP = object()


class PendingWrite(NamedTuple):
    session: TrackingSession
    point: LocationPoint


class IngestionCoordinator(SessionListener):
    """
    Turns raw fixes into persisted location points for the active session.

    on_fix() runs on the sensor delivery thread and only does cheap work:
    validation against the last accepted fix, the minimum-spacing gate
    against the last persisted fix, smoothing, and handing the point to the
    writer queue. A single writer thread drains the queue in FIFO order, so
    points of a session are written in the order they were accepted.

    The last-accepted / last-persisted memory, the smoother and the counters
    belong to one session. They are reset when a session starts and dropped
    when it stops. Points still queued when a stop is requested get up to
    `stop_flush_timeout` seconds to be written; later ones are dropped.
    """

    def __init__(
        self,
        location_store: LocationStore,
        validator: Optional[FixValidator] = None,
        observers: Optional[List[TrackingObserver]] = None,
        extension: Optional[ExecutionExtension] = None,
        filter_enabled: bool = FILTER_ENABLED,
        process_noise: float = FILTER_PROCESS_NOISE,
        queue_size: int = PERSIST_QUEUE_SIZE,
        stop_flush_timeout: float = PERSIST_STOP_FLUSH_SECONDS,
    ):
        self.location_store = location_store
        self.validator = validator or FixValidator()
        self.observers: List[TrackingObserver] = list(observers or [])
        self.extension = extension or ExecutionExtension()
        self.filter_enabled = filter_enabled
        self.process_noise = process_noise
        self.stop_flush_timeout = stop_flush_timeout

        self._lock = threading.Lock()
        self._session: Optional[TrackingSession] = None
        self._config: Optional[ValidationConfig] = None
        self._smoother: Optional[CoordinateSmoother] = None
        self._last_accepted: Optional[RawFix] = None
        self._last_persisted: Optional[RawFix] = None
        self._point_count = 0
        self._rejected_count = 0

        self._queue: Queue = Queue(maxsize=queue_size)
        self._writer: Optional[threading.Thread] = None

    # ==================== WRITER THREAD ====================

    @property
    def is_running(self) -> bool:
        return self._writer is not None and self._writer.is_alive()

    def start(self):
        """Start the background persistence thread"""
        if self.is_running:
            return
        self._writer = threading.Thread(target=self._write_loop, name="point-writer", daemon=True)
        self._writer.start()
        logger.info("Point writer started")

    def shutdown(self, timeout: float = 5.0):
        """Let queued writes finish, then stop the writer thread"""
        if not self.is_running:
            return
        self._queue.put(_STOP)
        self._writer.join(timeout=timeout)
        if self._writer.is_alive():
            logger.warning("Point writer did not stop within %.1fs", timeout)
        else:
            logger.info("Point writer stopped")
        self._writer = None

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every queued write has been handled.
        Returns False if the timeout ran out first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                if deadline is None:
                    self._queue.all_tasks_done.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    # ==================== SESSION LIFECYCLE ====================

    def on_session_started(self, session: TrackingSession, config: ValidationConfig,
                           mode: Optional[str] = None):
        with self._lock:
            self._session = session
            self._config = config
            self._smoother = CoordinateSmoother(self.process_noise) if self.filter_enabled else None
            self._last_accepted = None
            self._last_persisted = None
            self._point_count = 0
            self._rejected_count = 0
        self._notify("session_started", session, mode)

    def on_session_stopping(self, session: TrackingSession):
        """Give queued points of the ending session a chance to be written"""
        if not self.is_running:
            return
        if not self.flush(timeout=self.stop_flush_timeout):
            logger.warning("Stopping session %s with %d point(s) still queued",
                           session.id, self.pending_writes)

    def on_session_stopped(self, session: TrackingSession):
        with self._lock:
            if self._session is not None and self._session.id == session.id:
                self._session = None
                self._config = None
                self._smoother = None
                self._last_accepted = None
                self._last_persisted = None
        self._notify("session_stopped", session)

    # ==================== INGESTION ====================

    @property
    def point_count(self) -> int:
        with self._lock:
            return self._point_count

    @property
    def rejected_count(self) -> int:
        with self._lock:
            return self._rejected_count

    @property
    def pending_writes(self) -> int:
        return self._queue.qsize()

    def on_fix(self, fix: RawFix):
        """
        Handle one raw fix from the sensor source.
        Never raises for per-fix problems; rejected fixes are dropped.
        """
        self._notify("location_changed", fix)

        rejection = None
        with self._lock:
            session = self._session
            if session is None:
                logger.debug("Discarding fix at %s: no active session", fix.timestamp.isoformat())
                return

            previous = self._last_accepted
            result = self.validator.validate(fix, previous, None, self._config)
            if not result.accepted:
                self._rejected_count += 1
                rejection = result.reason.value
            else:
                self._last_accepted = fix
                if self._passes_spacing_gate(fix, previous):
                    point = self._build_point(fix, session)
                    try:
                        self._queue.put_nowait(PendingWrite(session, point))
                        self._last_persisted = fix
                    except Full:
                        logger.warning("Writer queue full, dropping point at %s", fix.timestamp.isoformat())

        if rejection is not None:
            self._notify("fix_rejected", fix, rejection)

    def _passes_spacing_gate(self, fix: RawFix, previous: Optional[RawFix]) -> bool:
        """
        Minimum distance from the last persisted fix.
        With adaptive sampling, slow movement shrinks the required distance.
        """
        config = self._config
        min_distance = config.min_distance_between_points_m
        if min_distance is None or self._last_persisted is None:
            return True

        if config.adaptive_sampling:
            speed = self.validator.instantaneous_speed(fix, previous)
            if speed is not None and speed < config.slow_motion_speed_mps:
                min_distance *= config.slow_motion_distance_factor

        distance = haversine_m(
            self._last_persisted.latitude, self._last_persisted.longitude,
            fix.latitude, fix.longitude,
        )
        if distance < min_distance:
            logger.debug("Skipping fix at %s: %.1fm from last point (< %.1fm)",
                         fix.timestamp.isoformat(), distance, min_distance)
            return False
        return True

    def _build_point(self, fix: RawFix, session: TrackingSession) -> LocationPoint:
        if self._smoother is None:
            return LocationPoint.from_fix(fix, session.id)
        latitude, longitude = self._smoother.smooth(fix.latitude, fix.longitude, fix.horizontal_accuracy_m)
        return LocationPoint.from_fix(fix, session.id, latitude=latitude, longitude=longitude)

    # ==================== PERSISTENCE ====================

    def _write_loop(self):
        """Main writer loop - runs in separate thread"""
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._persist(item)
            finally:
                self._queue.task_done()

    def _persist(self, item: PendingWrite):
        with self._lock:
            current = self._session
        if current is None or current.id != item.session.id:
            logger.warning("Dropping point %s for ended session %s", item.point.id, item.session.id)
            return

        token = self._begin_extension()
        try:
            self.location_store.append(item.point, item.session)
        except Exception:
            logger.exception("Error storing point %s", item.point.id)
            return
        finally:
            self._end_extension(token)

        with self._lock:
            if self._session is None or self._session.id != item.session.id:
                return
            self._point_count += 1
            count = self._point_count
        self._notify("point_count_changed", item.session.id, count)

    def _begin_extension(self):
        try:
            return self.extension.begin("persist-location")
        except Exception:
            logger.warning("Execution extension request failed", exc_info=True)
            return None

    def _end_extension(self, token):
        try:
            self.extension.end(token)
        except Exception:
            logger.warning("Execution extension release failed", exc_info=True)

    def _notify(self, hook: str, *args):
        for observer in self.observers:
            try:
                getattr(observer, hook)(*args)
            except Exception:
                logger.exception("Observer %s failed in %s", type(observer).__name__, hook)
