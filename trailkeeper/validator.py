"""
Validation of raw fixes against the previously accepted fix
"""

import logging
from datetime import datetime
from typing import Optional

from trailkeeper.models import RawFix, RejectReason, ValidationConfig, ValidationResult
from trailkeeper.utils import ensure_utc, haversine_m, seconds_between

logger = logging.getLogger(__name__)

ACCEPTED = ValidationResult(accepted=True)


class FixValidator:
    """
    Decides whether a raw fix is valid. Stateless: the caller owns the
    last accepted fix.

    Rules, first match wins:
    1. accuracy < 0                                   -> invalid_accuracy
    2. accuracy > max_horizontal_accuracy_m           -> poor_accuracy
    3. elapsed since last accepted < min time         -> too_frequent
    4. implied speed > max_reasonable_speed_mps       -> impossible_speed
       distance > max_distance_jump_m                 -> distance_jump
    5. otherwise accepted

    Whether an accepted fix is worth persisting (minimum spacing) is decided
    by the ingestion coordinator, not here.
    """

    def validate(
        self,
        fix: RawFix,
        last_accepted: Optional[RawFix],
        last_accepted_time: Optional[datetime],
        config: ValidationConfig,
    ) -> ValidationResult:
        accuracy = fix.horizontal_accuracy_m

        if accuracy < 0:
            return self._reject(RejectReason.INVALID_ACCURACY, fix)

        if accuracy > config.max_horizontal_accuracy_m:
            return self._reject(RejectReason.POOR_ACCURACY, fix)

        if last_accepted is None:
            return ACCEPTED

        elapsed = self._elapsed(fix, last_accepted, last_accepted_time)

        if elapsed < config.min_time_between_fixes_s:
            return self._reject(RejectReason.TOO_FREQUENT, fix, elapsed_s=elapsed)

        if elapsed <= 0:
            return ValidationResult(accepted=True, elapsed_s=elapsed)

        distance = haversine_m(
            last_accepted.latitude, last_accepted.longitude,
            fix.latitude, fix.longitude,
        )
        speed = distance / elapsed

        if speed > config.max_reasonable_speed_mps:
            return self._reject(
                RejectReason.IMPOSSIBLE_SPEED, fix,
                elapsed_s=elapsed, distance_m=distance, speed_mps=speed,
            )

        if distance > config.max_distance_jump_m:
            return self._reject(
                RejectReason.DISTANCE_JUMP, fix,
                elapsed_s=elapsed, distance_m=distance, speed_mps=speed,
            )

        return ValidationResult(accepted=True, elapsed_s=elapsed, distance_m=distance, speed_mps=speed)

    @staticmethod
    def instantaneous_speed(fix: RawFix, previous: Optional[RawFix]) -> Optional[float]:
        """
        Speed at this fix in m/s.
        Uses the receiver's speed when reported, otherwise the speed implied
        by the distance from the previous fix. None when neither is available.
        """
        if fix.speed_mps >= 0:
            return fix.speed_mps
        if previous is None:
            return None

        elapsed = seconds_between(previous, fix)
        if elapsed <= 0:
            return None
        distance = haversine_m(previous.latitude, previous.longitude, fix.latitude, fix.longitude)
        return distance / elapsed

    @staticmethod
    def _elapsed(fix: RawFix, last_accepted: RawFix, last_accepted_time: Optional[datetime]) -> float:
        if last_accepted_time is None:
            return seconds_between(last_accepted, fix)
        return (ensure_utc(fix.timestamp) - ensure_utc(last_accepted_time)).total_seconds()

    @staticmethod
    def _reject(reason: RejectReason, fix: RawFix, **diagnostics) -> ValidationResult:
        logger.debug(
            "Rejected fix at %s (%.6f, %.6f): %s",
            fix.timestamp.isoformat(), fix.latitude, fix.longitude, reason.value,
        )
        return ValidationResult(accepted=False, reason=reason, **diagnostics)
