"""
Unit tests for the localization engine.

Tests cover:
- Engine construction and configuration validation
- Apollonius circle construction and the equal-ratio singularity
- Candidate generation and triangle elimination
- Aggregation (sequential midpoint and centroid)
- Rejection statuses and metrics
- Reference scenarios on the standard sensor layout
"""

import logging

import pytest

from magneto_core.geometry import Point
from magneto_core.localization import EngineConfig, LocalizationEngine
from magneto_core.metrics import get_metrics
from magneto_core.proto import EstimateStatus

# Source outside the sensor triangle; its twin solution (inverse in the
# circumcircle) falls inside the triangle and is eliminated.
SOURCE = Point(2.0, 10.0)


class TestEngineSetup:
    """Tests for engine construction."""

    def test_too_few_sensors(self):
        """Test fewer than 3 sensors raise ValueError."""
        with pytest.raises(ValueError):
            LocalizationEngine([Point(0, 0), Point(1, 0)])

    def test_collinear_sensors(self):
        """Test a degenerate sensor triangle raises ValueError."""
        with pytest.raises(ValueError):
            LocalizationEngine([Point(0, 0), Point(1, 0), Point(2, 0)])

    def test_expected_candidates(self, engine):
        """Test 3 sensors give 3 circles and up to 6 candidates."""
        assert engine.circle_count == 3
        assert engine.expected_candidates == 6

    def test_invalid_aggregation(self):
        """Test an unknown aggregation mode is rejected."""
        with pytest.raises(ValueError):
            EngineConfig(aggregation='median')

    def test_invalid_min_valid_points(self):
        """Test min_valid_points below 1 is rejected."""
        with pytest.raises(ValueError):
            EngineConfig(min_valid_points=0)

    def test_input_size_mismatch(self, engine):
        """Test inputs that do not match the layout raise ValueError."""
        with pytest.raises(ValueError):
            engine.locate([1.0, 2.0])


class TestApolloniusCircles:
    """Tests for circle construction."""

    def test_circle_passes_through_source(self, engine, source_inputs):
        """Test each circle contains the point its ratio was built from."""
        inputs = source_inputs(SOURCE)
        circles = engine.make_circles(inputs)

        assert len(circles) == 3
        for c in circles:
            assert SOURCE.dist(c.center) == pytest.approx(c.radius, rel=1e-9)

    def test_known_circle(self):
        """Test the circle for a ratio of 2 between two sensors."""
        engine = LocalizationEngine([Point(0, 0), Point(3, 0), Point(0, 3)])
        # cbrt(8) / cbrt(1) = 2: |X - p0| = 2 |X - p1|
        circle = engine.make_circle([8.0, 1.0, 1.0], 0, 1)

        assert circle.center.as_tuple() == pytest.approx((4.0, 0.0))
        assert circle.radius == pytest.approx(2.0)

    def test_equal_ratio_is_degenerate(self, engine):
        """Test equal magnitudes give no circle."""
        assert engine.make_circle([100.0, 100.0, 50.0], 0, 1) is None

    def test_zero_input_is_degenerate(self, engine):
        """Test a zero magnitude gives no circle."""
        assert engine.make_circle([0.0, 100.0, 50.0], 0, 1) is None


class TestTriangleElimination:
    """Tests for candidate filtering."""

    def test_inside_points_removed(self, engine):
        """Test candidates strictly inside the triangle are dropped."""
        points = [Point(0, 1), Point(0, -2), Point(5, 5), Point(0.2, 2.0)]

        assert engine.eliminate_triangle(points) == [Point(0, -2), Point(5, 5)]

    def test_boundary_points_kept(self, engine, sensor_layout):
        """Test edge and vertex candidates survive."""
        points = [Point(0, 0), sensor_layout[1]]

        assert engine.eliminate_triangle(points) == points


class TestAggregation:
    """Tests for the survivor aggregation."""

    def test_sequential_midpoint(self, engine):
        """Test folding from the back weighs the first point most."""
        points = [Point(0, 0), Point(4, 0), Point(8, 0)]

        # mid(mid((8,0), (4,0)), (0,0)) = mid((6,0), (0,0))
        assert engine.aggregate(points) == Point(3.0, 0.0)

    def test_sequential_midpoint_order_dependent(self, engine):
        """Test reversing the list changes the sequential result."""
        points = [Point(0, 0), Point(4, 0), Point(8, 0)]

        assert engine.aggregate(list(reversed(points))) == Point(5.0, 0.0)

    def test_two_points(self, engine):
        """Test two survivors give their midpoint."""
        assert engine.aggregate([Point(0, 2), Point(2, 0)]) == Point(1.0, 1.0)

    def test_centroid(self, sensor_layout):
        """Test centroid mode is the arithmetic mean."""
        engine = LocalizationEngine(sensor_layout, EngineConfig(aggregation='centroid'))
        points = [Point(0, 0), Point(4, 0), Point(8, 0)]

        assert engine.aggregate(points) == Point(4.0, 0.0)

    def test_empty(self, engine):
        """Test aggregating nothing raises ValueError."""
        with pytest.raises(ValueError):
            engine.aggregate([])


class TestLocate:
    """Tests for the full per-frame pipeline."""

    def test_locates_source(self, engine, source_inputs):
        """Test a consistent frame is located at the source."""
        estimate = engine.locate(source_inputs(SOURCE))

        assert estimate.status == EstimateStatus.OK
        assert estimate.is_valid
        assert len(estimate.circles) == 3
        assert len(estimate.points) == 6
        assert len(estimate.filtered) == 3
        assert estimate.result.as_tuple() == pytest.approx(SOURCE.as_tuple(), abs=1e-6)

    def test_success_metrics(self, engine, source_inputs):
        """Test a located frame is counted."""
        engine.locate(source_inputs(SOURCE))

        metrics = get_metrics()
        assert metrics.get_counter('locate_attempts') == 1
        assert metrics.get_counter('locate_success') == 1
        assert metrics.get_histogram_stats('surviving_points')['max'] == 3

    def test_equal_magnitudes_degenerate(self, engine):
        """Test (100, 100, 100) is rejected by the singularity guard."""
        estimate = engine.locate([100.0, 100.0, 100.0])

        assert estimate.status == EstimateStatus.DEGENERATE_RATIO
        assert estimate.result is None
        assert estimate.drop_reason == 'degenerate_ratio'

    def test_zero_magnitude_degenerate(self, engine):
        """Test a zero input is rejected by the singularity guard."""
        estimate = engine.locate([0.0, 50.0, 70.0])

        assert estimate.status == EstimateStatus.DEGENERATE_RATIO

    def test_reference_scenario(self, engine):
        """Test (80, 120, 95) builds 3 circles and ends valid or rejected."""
        estimate = engine.locate([80.0, 120.0, 95.0])

        assert len(estimate.circles) == 3
        assert 0 <= len(estimate.points) <= 6
        if estimate.is_valid:
            assert isinstance(estimate.result, Point)
            assert len(estimate.filtered) >= 2
        else:
            assert estimate.status in (
                EstimateStatus.MISSING_SOLUTIONS,
                EstimateStatus.MISSING_VALID_POINTS,
            )

    def test_missing_solutions(self, sensor_layout, source_inputs):
        """Test fewer candidates than required is rejected."""
        engine = LocalizationEngine(sensor_layout, EngineConfig(min_candidates=7))
        estimate = engine.locate(source_inputs(SOURCE))

        assert estimate.status == EstimateStatus.MISSING_SOLUTIONS
        assert len(estimate.points) == 6
        assert estimate.filtered == []

    def test_missing_valid_points(self, sensor_layout, source_inputs):
        """Test too few survivors are rejected with geometry kept."""
        config = EngineConfig(min_valid_points=4, expected_valid_points=4)
        engine = LocalizationEngine(sensor_layout, config)
        estimate = engine.locate(source_inputs(SOURCE))

        assert estimate.status == EstimateStatus.MISSING_VALID_POINTS
        assert len(estimate.filtered) == 3
        assert estimate.to_dict()['result'] is None

    def test_fewer_than_expected_warns(self, sensor_layout, source_inputs, caplog):
        """Test survivors between minimum and expected warn but proceed."""
        config = EngineConfig(min_valid_points=2, expected_valid_points=4)
        engine = LocalizationEngine(sensor_layout, config)

        with caplog.at_level(logging.WARNING):
            estimate = engine.locate(source_inputs(SOURCE))

        assert estimate.is_valid
        assert 'valid points' in caplog.text
        assert get_metrics().get_counter('two_point_estimates') == 1

    def test_to_dict(self, engine, source_inputs):
        """Test the estimate serializes to plain types."""
        data = engine.locate(source_inputs(SOURCE)).to_dict()

        assert data['status'] == 'OK'
        assert len(data['circles']) == 3
        assert data['result'] == pytest.approx(SOURCE.as_tuple(), abs=1e-6)
