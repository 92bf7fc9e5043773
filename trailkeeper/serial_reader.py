"""
Serial port reader for live GPS fixes
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, List, Optional

import pytz
import serial

from trailkeeper.config import BAUD_RATE, SERIAL_PORT
from trailkeeper.models import RawFix

logger = logging.getLogger(__name__)


class FixReader:
    """
    Reads CSV fixes from a GPS receiver via serial port.
    Runs in a separate thread to avoid blocking the main application.
    """

    def __init__(self, port: str = SERIAL_PORT, baud_rate: int = BAUD_RATE):
        self.port = port
        self.baud_rate = baud_rate
        self.serial_connection: Optional[serial.Serial] = None
        self.is_running = False
        self.read_thread: Optional[threading.Thread] = None

        # Callback for real-time processing
        self.on_fix_callback: Optional[Callable[[RawFix], None]] = None

        # Buffer for recent fixes
        self.recent_fixes: List[RawFix] = []
        self.max_recent_fixes = 100
        self.skipped_lines = 0

    def connect(self) -> bool:
        """
        Establish connection to the serial port.
        Returns True if successful, False otherwise.
        """
        try:
            self.serial_connection = serial.Serial(
                port=self.port,
                baudrate=self.baud_rate,
                timeout=1
            )
            logger.info("Connected to %s at %d baud", self.port, self.baud_rate)

            # Drop whatever the receiver sent before we attached
            self.serial_connection.reset_input_buffer()
            return True

        except serial.SerialException as e:
            logger.warning("Error connecting to %s: %s", self.port, e)
            return False

    def disconnect(self):
        """Close the serial connection"""
        if self.serial_connection and self.serial_connection.is_open:
            self.serial_connection.close()
            logger.info("Disconnected from %s", self.port)

    @staticmethod
    def parse_csv_line(line: str) -> Optional[RawFix]:
        """
        Parse a CSV line from the receiver.
        Expected format: timestamp,lat,lon,accuracy,altitude,speed,course
        Example: 2025-06-01T14:30:15.250Z,52.520008,13.404954,8.5,34.0,1.4,270.0
        Speed and course may be empty or negative when unknown.
        Elapsed time between fixes comes from the timestamp column, so lines
        buffered by the receiver keep their real spacing.
        """
        line = line.strip()
        if not line or line.startswith("#") or line.lower().startswith("timestamp"):
            return None

        parts = line.split(",")
        if len(parts) != 7:
            return None

        try:
            timestamp = datetime.fromisoformat(parts[0].replace("Z", "+00:00"))
            if timestamp.tzinfo is None:
                timestamp = pytz.UTC.localize(timestamp)

            return RawFix(
                timestamp=timestamp,
                latitude=float(parts[1]),
                longitude=float(parts[2]),
                horizontal_accuracy_m=float(parts[3]),
                altitude_m=float(parts[4]) if parts[4] else 0.0,
                speed_mps=float(parts[5]) if parts[5] else -1.0,
                course_deg=float(parts[6]) if parts[6] else -1.0,
            )
        except ValueError:
            # Invalid line format - skip it
            return None

    def handle_line(self, line: str) -> Optional[RawFix]:
        """Parse one received line, buffer the fix and hand it to the callback"""
        fix = self.parse_csv_line(line)
        if fix is None:
            self.skipped_lines += 1
            return None

        self.recent_fixes.append(fix)
        if len(self.recent_fixes) > self.max_recent_fixes:
            self.recent_fixes.pop(0)

        if self.on_fix_callback:
            self.on_fix_callback(fix)
        return fix

    def _read_loop(self):
        """Main reading loop - runs in separate thread"""
        logger.info("Serial reading started")

        while self.is_running:
            try:
                if self.serial_connection and self.serial_connection.in_waiting > 0:
                    line = self.serial_connection.readline().decode("utf-8", errors="ignore")
                    self.handle_line(line)
                else:
                    # Small delay to prevent busy waiting
                    time.sleep(0.05)

            except Exception as e:
                logger.error("Error reading from serial: %s", e)
                time.sleep(0.5)

        logger.info("Serial reading stopped")

    def start_reading(self):
        """Start the background reading thread"""
        if self.is_running:
            logger.debug("Already reading")
            return

        if not self.serial_connection or not self.serial_connection.is_open:
            if not self.connect():
                logger.warning("Failed to connect. Cannot start reading.")
                return

        self.is_running = True
        self.read_thread = threading.Thread(target=self._read_loop, name="fix-reader", daemon=True)
        self.read_thread.start()

    def stop_reading(self):
        """Stop the background reading thread"""
        self.is_running = False

        if self.read_thread:
            self.read_thread.join(timeout=2)

        self.disconnect()

    def get_recent_fixes(self, count: int = 50) -> List[RawFix]:
        """Get the most recent fixes"""
        return self.recent_fixes[-count:]

    def set_callback(self, callback: Callable[[RawFix], None]):
        """Set callback function to be called for each new fix"""
        self.on_fix_callback = callback


# Singleton instance for global access
_fix_reader: Optional[FixReader] = None


def get_fix_reader() -> FixReader:
    """Get or create the global fix reader instance"""
    global _fix_reader
    if _fix_reader is None:
        _fix_reader = FixReader()
    return _fix_reader
