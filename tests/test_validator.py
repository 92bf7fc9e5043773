"""
Unit tests for FixValidator.

Tests cover:
- Accuracy checks (negative, boundary inclusive)
- Temporal throttling independent of distance
- Impossible speed and distance jump rejection
- Rule order and determinism
- Instantaneous speed used by adaptive sampling
"""

from datetime import timedelta

import pytest

from trailkeeper.models import RejectReason, TrackingMode, ValidationConfig
from trailkeeper.validator import FixValidator

from tests.conftest import T0, make_fix


@pytest.fixture
def validator():
    return FixValidator()


class TestAccuracyGate:
    """Rules 1 and 2: accuracy checks"""

    def test_first_fix_with_good_accuracy_is_accepted(self, validator, scenario_config):
        result = validator.validate(make_fix(accuracy=10.0), None, None, scenario_config)
        assert result.accepted
        assert result.reason is None

    def test_negative_accuracy_is_invalid(self, validator, scenario_config):
        result = validator.validate(make_fix(accuracy=-1.0), None, None, scenario_config)
        assert not result.accepted
        assert result.reason == RejectReason.INVALID_ACCURACY

    def test_accuracy_at_limit_is_accepted(self, validator, scenario_config):
        limit = scenario_config.max_horizontal_accuracy_m
        result = validator.validate(make_fix(accuracy=limit), None, None, scenario_config)
        assert result.accepted

    def test_accuracy_above_limit_is_rejected(self, validator, scenario_config):
        limit = scenario_config.max_horizontal_accuracy_m
        result = validator.validate(make_fix(accuracy=limit + 1), None, None, scenario_config)
        assert not result.accepted
        assert result.reason == RejectReason.POOR_ACCURACY

    def test_accuracy_checked_before_throttle(self, validator, scenario_config):
        previous = make_fix(t=0)
        result = validator.validate(make_fix(t=1, accuracy=-5), previous, None, scenario_config)
        assert result.reason == RejectReason.INVALID_ACCURACY


class TestTemporalThrottle:
    """Rule 3: minimum time between accepted fixes"""

    def test_fix_just_under_interval_is_rejected(self, validator, scenario_config):
        previous = make_fix(t=0)
        result = validator.validate(make_fix(t=4.9), previous, None, scenario_config)
        assert not result.accepted
        assert result.reason == RejectReason.TOO_FREQUENT

    def test_fix_at_interval_is_accepted(self, validator, scenario_config):
        previous = make_fix(t=0)
        result = validator.validate(make_fix(t=5.0), previous, None, scenario_config)
        assert result.accepted

    def test_throttle_applies_regardless_of_distance(self, validator, scenario_config):
        previous = make_fix(t=0)
        far_and_fast = make_fix(t=1, north_m=5000)
        result = validator.validate(far_and_fast, previous, None, scenario_config)
        assert result.reason == RejectReason.TOO_FREQUENT

    def test_explicit_last_accepted_time_is_used(self, validator, scenario_config):
        previous = make_fix(t=0)
        result = validator.validate(
            make_fix(t=6), previous, T0 + timedelta(seconds=3), scenario_config,
        )
        assert result.reason == RejectReason.TOO_FREQUENT

    def test_monotonic_clock_preferred_over_wall_clock(self, validator, scenario_config):
        previous = make_fix(t=0, monotonic=100.0)
        # Wall clock says 10s passed, monotonic clock says 2s
        fix = make_fix(t=10, monotonic=102.0)
        result = validator.validate(fix, previous, None, scenario_config)
        assert result.reason == RejectReason.TOO_FREQUENT


class TestAnomalyDetection:
    """Rule 4: implausible movement since the last accepted fix"""

    def test_impossible_speed_is_rejected(self, validator):
        config = ValidationConfig(
            max_horizontal_accuracy_m=50.0,
            max_reasonable_speed_mps=69.0,
            max_distance_jump_m=1000.0,
            min_time_between_fixes_s=1.0,
        )
        previous = make_fix(t=0)
        result = validator.validate(make_fix(t=1, north_m=100), previous, None, config)
        assert not result.accepted
        assert result.reason == RejectReason.IMPOSSIBLE_SPEED
        assert result.speed_mps == pytest.approx(100.0, rel=1e-6)

    def test_distance_jump_is_rejected_at_plausible_speed(self, validator, scenario_config):
        previous = make_fix(t=0)
        # 1500 m in 30 s is 50 m/s: fast but plausible, yet a jump over 1000 m
        result = validator.validate(make_fix(t=30, north_m=1500), previous, None, scenario_config)
        assert result.reason == RejectReason.DISTANCE_JUMP
        assert result.distance_m == pytest.approx(1500.0, rel=1e-6)

    def test_speed_checked_before_distance_jump(self, validator, scenario_config):
        previous = make_fix(t=0)
        result = validator.validate(make_fix(t=6, north_m=5000), previous, None, scenario_config)
        assert result.reason == RejectReason.IMPOSSIBLE_SPEED

    def test_plausible_move_is_accepted_with_diagnostics(self, validator, scenario_config):
        previous = make_fix(t=0)
        result = validator.validate(make_fix(t=10, north_m=200), previous, None, scenario_config)
        assert result.accepted
        assert result.elapsed_s == pytest.approx(10.0)
        assert result.distance_m == pytest.approx(200.0, rel=1e-6)
        assert result.speed_mps == pytest.approx(20.0, rel=1e-6)

    def test_zero_elapsed_skips_anomaly_checks(self, validator, open_config):
        previous = make_fix(t=0)
        result = validator.validate(make_fix(t=0, north_m=10_000_000), previous, None, open_config)
        assert result.accepted


class TestDeterminism:
    def test_same_inputs_same_decision(self, validator, scenario_config):
        previous = make_fix(t=0)
        fix = make_fix(t=7, north_m=300)
        results = {validator.validate(fix, previous, None, scenario_config) for _ in range(10)}
        assert len(results) == 1

    def test_presets_validate_consistently(self, validator):
        fix = make_fix(accuracy=30.0)
        assert not validator.validate(fix, None, None, TrackingMode.DETAILED.config()).accepted
        assert validator.validate(fix, None, None, TrackingMode.BALANCED.config()).accepted


class TestInstantaneousSpeed:
    def test_reported_speed_wins(self):
        assert FixValidator.instantaneous_speed(make_fix(t=5, speed=3.5), make_fix(t=0)) == 3.5

    def test_derived_from_previous_fix(self):
        speed = FixValidator.instantaneous_speed(make_fix(t=10, north_m=50), make_fix(t=0))
        assert speed == pytest.approx(5.0, rel=1e-6)

    def test_unknown_without_previous(self):
        assert FixValidator.instantaneous_speed(make_fix(), None) is None
