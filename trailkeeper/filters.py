"""
Recursive smoothing of position fixes
"""

import math
from typing import Optional, Tuple

from trailkeeper.utils import METERS_PER_DEGREE_LAT

# Floor for a channel's measurement noise so a reported 0 m accuracy
# never produces a zero-variance measurement
MIN_ACCURACY_M = 1.0


class SmoothingFilter:
    """
    Scalar Kalman filter for one signal channel.

    Starts uninitialized; the first measurement seeds the state
    (mean = measurement, variance = measurement noise) and is returned
    unchanged. Every later measurement runs a predict + update step with a
    fixed process noise. One instance per (session, channel); never share.
    """

    def __init__(self, process_noise: float = 1e-5):
        self.process_noise = process_noise
        self._state: Optional[Tuple[float, float]] = None

    @property
    def is_initialized(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> Optional[Tuple[float, float]]:
        """Current (mean, variance), or None before the first measurement"""
        return self._state

    @property
    def variance(self) -> Optional[float]:
        return self._state[1] if self._state else None

    def process(self, measurement: float, measurement_noise: float) -> float:
        """
        Feed one measurement and return the filtered value.

        Args:
            measurement: The new value
            measurement_noise: Variance of the measurement
        """
        if self._state is None:
            self._state = (measurement, measurement_noise)
            return measurement

        mean, variance = self._state

        # Prediction
        predicted_variance = variance + self.process_noise

        # Measurement update
        gain = predicted_variance / (predicted_variance + measurement_noise)
        new_mean = mean + gain * (measurement - mean)
        new_variance = (1 - gain) * predicted_variance

        self._state = (new_mean, new_variance)
        return new_mean

    def reset(self):
        self._state = None


class CoordinateSmoother:
    """
    Smooths latitude and longitude of a session's fixes with one filter each.

    The fix accuracy (meters) is turned into a per-channel variance in
    degrees squared; longitude degrees shrink with cos(latitude).
    """

    def __init__(self, process_noise: float = 1e-5):
        self.latitude = SmoothingFilter(process_noise)
        self.longitude = SmoothingFilter(process_noise)

    def smooth(self, latitude: float, longitude: float, accuracy_m: float) -> Tuple[float, float]:
        accuracy_m = max(accuracy_m, MIN_ACCURACY_M)

        lat_sigma = accuracy_m / METERS_PER_DEGREE_LAT
        cos_lat = max(abs(math.cos(math.radians(latitude))), 1e-6)
        lon_sigma = accuracy_m / (METERS_PER_DEGREE_LAT * cos_lat)

        smoothed_lat = self.latitude.process(latitude, lat_sigma ** 2)
        smoothed_lon = self.longitude.process(longitude, lon_sigma ** 2)
        return smoothed_lat, smoothed_lon

    def reset(self):
        self.latitude.reset()
        self.longitude.reset()
