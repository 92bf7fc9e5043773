"""
Bounded execution windows requested around persistence work.

The host platform may suspend the process at any time. Before each write the
coordinator asks for a short extension and releases it afterwards; an
extension that is denied or runs out only means the write may not have
completed.
"""

import logging
import threading
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class ExecutionExtension:
    """Default extension provider: grants nothing, costs nothing."""

    def begin(self, name: str) -> Optional[int]:
        """Request an extension. Returns a token, or None when denied."""
        return None

    def end(self, token: Optional[int]):
        """Release an extension obtained from begin()"""


class TimedExtension(ExecutionExtension):
    """
    Grants windows of a fixed length, tracked with threading.Timer.
    Windows that run out before end() are logged and counted as expired.
    """

    def __init__(self, seconds: float = 5.0):
        self.seconds = seconds
        self.expired_count = 0
        self._lock = threading.Lock()
        self._timers: Dict[int, threading.Timer] = {}
        self._next_token = 1

    def begin(self, name: str) -> Optional[int]:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            timer = threading.Timer(self.seconds, self._expire, args=(token, name))
            timer.daemon = True
            self._timers[token] = timer
        timer.start()
        return token

    def end(self, token: Optional[int]):
        if token is None:
            return
        with self._lock:
            timer = self._timers.pop(token, None)
        if timer is not None:
            timer.cancel()

    def _expire(self, token: int, name: str):
        with self._lock:
            if self._timers.pop(token, None) is None:
                return
            self.expired_count += 1
        logger.warning("Execution window for %s expired; work may not have completed", name)

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._timers)
