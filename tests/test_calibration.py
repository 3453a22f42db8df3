"""
Unit tests for baseline calibration and presence detection.

Tests cover:
- Calibration schedule validation and speeds
- Baseline exponential update
- Conjunctive presence detection
- Calibrated (filtered) input
"""

import numpy as np
import pytest

from magneto_core.localization import (
    Baseline,
    CalibrationSchedule,
    filtered_input,
    is_source_present,
)
from magneto_core.metrics import get_metrics


class TestCalibrationSchedule:
    """Tests for the startup calibration protocol."""

    def test_default_speeds(self):
        """Test 25 frames from 0.95 down in steps of 0.01."""
        speeds = list(CalibrationSchedule().speeds())

        assert len(speeds) == 25
        assert speeds[0] == pytest.approx(0.95)
        assert speeds[1] == pytest.approx(0.94)
        assert speeds[-1] == pytest.approx(0.71)

    def test_speed_leaving_range_rejected(self):
        """Test a schedule that would reach speed <= 0 is rejected."""
        with pytest.raises(ValueError):
            CalibrationSchedule(frames=200, initial_speed=0.95, speed_step=0.01)

    def test_initial_speed_above_one_rejected(self):
        """Test an initial speed above 1 is rejected."""
        with pytest.raises(ValueError):
            CalibrationSchedule(frames=5, initial_speed=1.5)

    def test_empty_schedule(self):
        """Test zero frames is a valid (skip calibration) schedule."""
        assert list(CalibrationSchedule(frames=0).speeds()) == []


class TestBaseline:
    """Tests for the baseline update."""

    def test_starts_at_zero(self):
        """Test a new baseline is all zero."""
        np.testing.assert_array_equal(Baseline(3).values, np.zeros(3))

    def test_full_speed_replaces(self):
        """Test speed 1 replaces the baseline with the sample."""
        baseline = Baseline(3)
        baseline.update([10.0, 20.0, 30.0], 1.0)

        np.testing.assert_allclose(baseline.values, [10.0, 20.0, 30.0])

    def test_weighted_update(self):
        """Test the update blends old and new values."""
        baseline = Baseline(2)
        baseline.update([100.0, 200.0], 1.0)
        baseline.update([200.0, 0.0], 0.25)

        np.testing.assert_allclose(baseline.values, [125.0, 150.0])

    def test_tiny_speed_keeps_baseline(self):
        """Test an update with speed close to 0 leaves the baseline unchanged."""
        baseline = Baseline(3)
        baseline.update([50.0, 60.0, 70.0], 1.0)
        baseline.update([5000.0, -5000.0, 0.0], 1e-12)

        np.testing.assert_allclose(baseline.values, [50.0, 60.0, 70.0], atol=1e-6)

    def test_schedule_converges_to_constant_field(self):
        """Test the default schedule learns a constant ambient field."""
        baseline = Baseline(3)
        for speed in CalibrationSchedule().speeds():
            baseline.update([120.0, 80.0, 95.0], speed)

        np.testing.assert_allclose(baseline.values, [120.0, 80.0, 95.0])
        assert get_metrics().get_counter('baseline_updates') == 25

    @pytest.mark.parametrize("speed", [0.0, -0.1, 1.01])
    def test_invalid_speed(self, speed: float):
        """Test speeds outside (0, 1] raise ValueError."""
        with pytest.raises(ValueError):
            Baseline(3).update([1.0, 2.0, 3.0], speed)

    def test_size_mismatch(self):
        """Test a sample of the wrong size raises ValueError."""
        with pytest.raises(ValueError):
            Baseline(3).update([1.0, 2.0], 0.5)

    def test_invalid_sensor_count(self):
        """Test a non-positive sensor count is rejected."""
        with pytest.raises(ValueError):
            Baseline(0)


class TestPresenceDetection:
    """Tests for the conjunctive threshold test."""

    def test_all_above_threshold(self):
        """Test presence when every sensor deviates enough."""
        assert is_source_present([140.0, 60.0, 200.0], [100.0, 100.0, 100.0], 30.0)

    def test_threshold_is_inclusive(self):
        """Test a deviation equal to the threshold counts."""
        assert is_source_present([130.0, 70.0, 130.0], [100.0, 100.0, 100.0], 30.0)

    def test_one_sensor_below_threshold(self):
        """Test absence when a single sensor stays near its baseline."""
        assert not is_source_present([140.0, 110.0, 200.0], [100.0, 100.0, 100.0], 30.0)

    def test_size_mismatch_is_absent(self):
        """Test mismatched sizes report no source."""
        assert not is_source_present([140.0, 160.0], [100.0, 100.0, 100.0], 30.0)

    def test_baseline_method(self):
        """Test the Baseline method uses its own values."""
        baseline = Baseline(3)
        baseline.update([100.0, 100.0, 100.0], 1.0)

        assert baseline.is_source_present(np.array([0.0, 200.0, 50.0]), 30.0)
        assert not baseline.is_source_present(np.array([100.0, 200.0, 50.0]), 30.0)


class TestFilteredInput:
    """Tests for the calibrated magnitudes."""

    def test_absolute_difference(self):
        """Test inputs are |sample - baseline|."""
        result = filtered_input([150.0, 40.0, 100.0], [100.0, 100.0, 100.0])

        np.testing.assert_allclose(result, [50.0, 60.0, 0.0])

    def test_size_mismatch(self):
        """Test mismatched sizes raise ValueError."""
        with pytest.raises(ValueError):
            filtered_input([1.0, 2.0], [1.0, 2.0, 3.0])

    def test_baseline_method(self):
        """Test the Baseline method matches the function."""
        baseline = Baseline(3)
        baseline.update([10.0, 20.0, 30.0], 1.0)

        np.testing.assert_allclose(
            baseline.filtered_input([0.0, 25.0, 30.0]), [10.0, 5.0, 0.0]
        )
