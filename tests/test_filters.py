"""
Unit tests for SmoothingFilter and CoordinateSmoother.

Tests cover:
- First measurement seeds the state and passes through
- Predict/update arithmetic
- Convergence to a constant signal with shrinking variance
- Independent per-channel state
"""

import pytest

from trailkeeper.filters import CoordinateSmoother, SmoothingFilter


class TestSmoothingFilter:

    def test_starts_uninitialized(self):
        kf = SmoothingFilter()
        assert not kf.is_initialized
        assert kf.state is None
        assert kf.variance is None

    def test_first_measurement_passes_through(self):
        kf = SmoothingFilter()
        assert kf.process(42.5, 4.0) == 42.5
        assert kf.state == (42.5, 4.0)

    def test_update_step(self):
        kf = SmoothingFilter(process_noise=0.0)
        kf.process(10.0, 4.0)

        # gain = 4 / (4 + 4) = 0.5
        assert kf.process(20.0, 4.0) == pytest.approx(15.0)
        assert kf.variance == pytest.approx(2.0)

    def test_process_noise_added_before_update(self):
        kf = SmoothingFilter(process_noise=1.0)
        kf.process(0.0, 1.0)

        # predicted variance 2, gain 2/3
        assert kf.process(3.0, 1.0) == pytest.approx(2.0)
        assert kf.variance == pytest.approx(2.0 / 3.0)

    def test_converges_to_constant_measurement(self):
        kf = SmoothingFilter()
        kf.process(0.0, 1.0)

        variances = [kf.variance]
        value = None
        for _ in range(5000):
            value = kf.process(5.0, 1.0)
            variances.append(kf.variance)

        assert value == pytest.approx(5.0, abs=1e-3)
        for earlier, later in zip(variances, variances[1:]):
            assert later <= earlier + 1e-15

    def test_reset_returns_to_uninitialized(self):
        kf = SmoothingFilter()
        kf.process(1.0, 1.0)
        kf.process(2.0, 1.0)
        kf.reset()

        assert not kf.is_initialized
        assert kf.process(7.0, 1.0) == 7.0


class TestCoordinateSmoother:

    def test_first_fix_unchanged(self):
        smoother = CoordinateSmoother()
        assert smoother.smooth(52.52, 13.405, 10.0) == (52.52, 13.405)

    def test_channels_keep_separate_state(self):
        smoother = CoordinateSmoother()
        smoother.smooth(52.52, 13.405, 10.0)
        smoother.smooth(52.53, 13.405, 10.0)

        lat_mean, _ = smoother.latitude.state
        lon_mean, _ = smoother.longitude.state
        assert 52.52 < lat_mean < 52.53
        assert lon_mean == pytest.approx(13.405)

    def test_smoothed_value_lies_between_estimate_and_measurement(self):
        smoother = CoordinateSmoother()
        smoother.smooth(52.52, 13.405, 10.0)
        lat, lon = smoother.smooth(52.521, 13.406, 10.0)

        assert 52.52 < lat < 52.521
        assert 13.405 < lon < 13.406

    def test_zero_accuracy_does_not_break_filter(self):
        smoother = CoordinateSmoother()
        smoother.smooth(52.52, 13.405, 0.0)
        lat, _ = smoother.smooth(52.52, 13.405, 0.0)
        assert lat == pytest.approx(52.52)
