"""
Data models for the Trailkeeper tracking backend
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Stored course value when the receiver does not report one
COURSE_UNKNOWN = -1.0


class RawFix(BaseModel):
    """Raw position fix from the GPS receiver"""
    latitude: float
    longitude: float
    timestamp: datetime  # Wall-clock time of the fix
    monotonic: Optional[float] = None  # Monotonic seconds, when the source provides them
    horizontal_accuracy_m: float
    altitude_m: float = 0.0
    speed_mps: float = -1.0  # Negative = unknown
    course_deg: float = -1.0  # Negative = unknown


class LocationPoint(BaseModel):
    """Accepted fix persisted as part of a tracking session"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    latitude: float
    longitude: float
    timestamp: datetime
    accuracy_m: float
    altitude_m: float
    speed_mps: float
    course_deg: float
    session_id: str

    @classmethod
    def from_fix(
        cls,
        fix: RawFix,
        session_id: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> "LocationPoint":
        """
        Build a point from an accepted fix.
        Coordinates default to the raw fix; pass smoothed values to override.
        """
        return cls(
            latitude=fix.latitude if latitude is None else latitude,
            longitude=fix.longitude if longitude is None else longitude,
            timestamp=fix.timestamp,
            accuracy_m=fix.horizontal_accuracy_m,
            altitude_m=fix.altitude_m,
            speed_mps=max(0.0, fix.speed_mps),
            course_deg=fix.course_deg if fix.course_deg >= 0 else COURSE_UNKNOWN,
            session_id=session_id,
        )


class TrackingSession(BaseModel):
    """One tracking run. Its points are served by the location store."""
    id: str
    narrative: str
    start_time: datetime
    end_time: Optional[datetime] = None
    is_active: bool = True


class SessionDetail(BaseModel):
    """A session together with its points in timestamp order"""
    session: TrackingSession
    point_count: int
    points: List[LocationPoint]


class ValidationConfig(BaseModel):
    """
    Thresholds used to validate and thin out fixes.
    Selected once when a session starts and fixed for its lifetime.
    """
    model_config = ConfigDict(frozen=True)

    max_horizontal_accuracy_m: float
    max_reasonable_speed_mps: float
    max_distance_jump_m: float
    min_time_between_fixes_s: float
    min_distance_between_points_m: Optional[float] = None  # None disables distance gating
    adaptive_sampling: bool = False

    # Adaptive sampling: below this speed the distance gate shrinks by the factor
    slow_motion_speed_mps: float = 5.0
    slow_motion_distance_factor: float = 0.1


class TrackingMode(str, Enum):
    """Named validation presets"""
    DETAILED = "detailed"
    BALANCED = "balanced"
    EFFICIENT = "efficient"
    PERMISSIVE = "permissive"

    def config(self) -> ValidationConfig:
        return PRESETS[self]


PRESETS = {
    # Walking, hiking, city tours
    TrackingMode.DETAILED: ValidationConfig(
        max_horizontal_accuracy_m=20.0,
        max_reasonable_speed_mps=30.0,
        max_distance_jump_m=500.0,
        min_time_between_fixes_s=2.0,
        min_distance_between_points_m=10.0,
        adaptive_sampling=False,
    ),
    # Most driving trips, ~250 km/h ceiling
    TrackingMode.BALANCED: ValidationConfig(
        max_horizontal_accuracy_m=50.0,
        max_reasonable_speed_mps=69.0,
        max_distance_jump_m=1000.0,
        min_time_between_fixes_s=5.0,
        min_distance_between_points_m=200.0,
        adaptive_sampling=True,
    ),
    # Long road trips and flights
    TrackingMode.EFFICIENT: ValidationConfig(
        max_horizontal_accuracy_m=65.0,
        max_reasonable_speed_mps=150.0,
        max_distance_jump_m=5000.0,
        min_time_between_fixes_s=10.0,
        min_distance_between_points_m=500.0,
        adaptive_sampling=True,
    ),
    # Time-based only, no distance filtering
    TrackingMode.PERMISSIVE: ValidationConfig(
        max_horizontal_accuracy_m=100.0,
        max_reasonable_speed_mps=150.0,
        max_distance_jump_m=5000.0,
        min_time_between_fixes_s=1.0,
        min_distance_between_points_m=None,
        adaptive_sampling=False,
    ),
}


class RejectReason(str, Enum):
    """Why a fix failed validation"""
    INVALID_ACCURACY = "invalid_accuracy"
    POOR_ACCURACY = "poor_accuracy"
    TOO_FREQUENT = "too_frequent"
    IMPOSSIBLE_SPEED = "impossible_speed"
    DISTANCE_JUMP = "distance_jump"


class ValidationResult(BaseModel):
    """Accept/reject decision for one fix"""
    model_config = ConfigDict(frozen=True)

    accepted: bool
    reason: Optional[RejectReason] = None
    elapsed_s: Optional[float] = None
    distance_m: Optional[float] = None
    speed_mps: Optional[float] = None


class SessionState(str, Enum):
    """Lifecycle states of the session state machine"""
    NO_ACTIVE_SESSION = "no_active_session"
    ACTIVE_SESSION = "active_session"


class CurrentStatus(BaseModel):
    """Current tracking status for real-time display"""
    is_tracking: bool
    session_id: Optional[str] = None
    narrative: Optional[str] = None
    mode: Optional[str] = None
    point_count: int = 0
    rejected_count: int = 0
    current_location: Optional[RawFix] = None
    last_fix_time: Optional[datetime] = None


class StartSessionRequest(BaseModel):
    """Body of a start-session request"""
    narrative: str
    mode: Optional[TrackingMode] = None


class TrackingModeInfo(BaseModel):
    """A tracking mode and the thresholds it selects"""
    mode: TrackingMode
    thresholds: ValidationConfig
