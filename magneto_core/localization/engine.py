"""
Dipole Source Localization Engine.

Field magnitude of a dipole falls off with the cube of distance, so the
ratio of cube roots of two sensor magnitudes constrains the source to an
Apollonius circle around that sensor pair. With three sensors the three
circles intersect pairwise in up to six candidates; candidates inside the
sensor triangle are artifacts of the planar model and are discarded, the
rest are averaged into one position.

Stages per frame:
1. Build one Apollonius circle per sensor pair
2. Intersect every pair of circles
3. Eliminate candidates strictly inside the sensor triangle
4. Aggregate the survivors (sequential midpoint or centroid)
"""

from itertools import combinations
from typing import List, Optional, Sequence
from dataclasses import dataclass
import logging
import math

import numpy as np

from magneto_core.geometry import Circle, Point, Triangle, intersect, midpoint
from magneto_core.proto.estimate import Estimate, EstimateStatus, create_rejected
from magneto_core.metrics import get_metrics

logger = logging.getLogger(__name__)

AGGREGATION_MODES = ('sequential_midpoint', 'centroid')


@dataclass
class EngineConfig:
    """
    Configuration for the localization engine.

    Attributes:
        aggregation: 'sequential_midpoint' (later points weigh more) or
            'centroid' (arithmetic mean of the survivors)
        min_candidates: Raw intersection points required; None means
            every circle pair must intersect in two points
        min_valid_points: Survivors required after triangle elimination
        expected_valid_points: Survivors expected on clean geometry; fewer
            (but at least min_valid_points) is logged as a warning
    """

    aggregation: str = 'sequential_midpoint'
    min_candidates: Optional[int] = None
    min_valid_points: int = 2
    expected_valid_points: int = 3

    def __post_init__(self):
        """Validate configuration."""
        if self.aggregation not in AGGREGATION_MODES:
            raise ValueError(f"Unknown aggregation mode: {self.aggregation}")

        if self.min_valid_points < 1:
            raise ValueError(f"min_valid_points must be >= 1: {self.min_valid_points}")


class LocalizationEngine:
    """
    Locate a dipole source from calibrated sensor magnitudes.

    Usage:
        engine = LocalizationEngine(sensors)

        estimate = engine.locate(baseline.filtered_input(sample.magnitudes))
        if estimate.is_valid:
            print(f"Source at {estimate.result}")
        else:
            print(f"Rejected: {estimate.status.name}")

    The engine keeps no state between frames; the sensor layout and the
    triangle built from its first three sensors are fixed at construction.
    """

    def __init__(self, sensors: Sequence[Point], config: Optional[EngineConfig] = None):
        """
        Initialize engine for a sensor layout.

        Args:
            sensors: Sensor positions, at least 3, first three counter-clockwise
            config: Engine configuration (uses defaults if None)

        Raises:
            ValueError: fewer than 3 sensors or degenerate sensor triangle
        """
        if len(sensors) < 3:
            raise ValueError(f"Localization needs at least 3 sensors, got {len(sensors)}")

        self.sensors = tuple(sensors)
        self.triangle = Triangle(self.sensors[:3])
        self.config = config or EngineConfig()
        self.metrics = get_metrics()

        circle_count = len(self.sensors) * (len(self.sensors) - 1) // 2
        self.expected_candidates = circle_count * (circle_count - 1)

    @property
    def sensor_count(self) -> int:
        return len(self.sensors)

    @property
    def circle_count(self) -> int:
        return len(self.sensors) * (len(self.sensors) - 1) // 2

    def locate(self, inputs: Sequence[float]) -> Estimate:
        """
        Run the full localization pipeline for one frame.

        Args:
            inputs: Calibrated magnitude per sensor

        Returns:
            Estimate (OK with result, or a rejection status)

        Raises:
            ValueError: inputs size does not match the sensor layout
        """
        inputs = np.asarray(inputs, dtype=float)
        if inputs.shape != (self.sensor_count,):
            raise ValueError(
                f"Expected {self.sensor_count} inputs, got {inputs.size}"
            )

        self.metrics.increment('locate_attempts')
        inputs_tuple = tuple(float(v) for v in inputs)

        circles = self.make_circles(inputs)
        if circles is None:
            return create_rejected(EstimateStatus.DEGENERATE_RATIO, inputs_tuple)

        points = self.make_points(circles)
        min_candidates = self.config.min_candidates
        if min_candidates is None:
            min_candidates = self.expected_candidates

        if len(points) < min_candidates:
            logger.debug(f"Skipping frame: missing solutions ({len(points)}/{min_candidates})")
            return create_rejected(
                EstimateStatus.MISSING_SOLUTIONS, inputs_tuple, circles, points
            )

        filtered = self.eliminate_triangle(points)
        self.metrics.record_histogram('surviving_points', len(filtered))

        if len(filtered) < self.config.expected_valid_points:
            if len(filtered) < self.config.min_valid_points:
                logger.debug(f"Skipping frame: {len(filtered)} valid points")
                return create_rejected(
                    EstimateStatus.MISSING_VALID_POINTS,
                    inputs_tuple, circles, points, filtered,
                )
            logger.warning(
                f"Only {len(filtered)} valid points outside the sensor triangle, "
                f"expected at least {self.config.expected_valid_points}"
            )
            self.metrics.increment('two_point_estimates')

        result = self.aggregate(filtered)
        self.metrics.increment('locate_success')

        return Estimate(
            status=EstimateStatus.OK,
            inputs=inputs_tuple,
            circles=circles,
            points=points,
            filtered=filtered,
            result=result,
        )

    def make_circle(self, inputs: Sequence[float], i: int, j: int) -> Optional[Circle]:
        """
        Apollonius circle for sensor pair (i, j).

        Locus of points X with |X - p_i| / |X - p_j| = k, where
        k = cbrt(inputs[i]) / cbrt(inputs[j]).

        Returns:
            Circle, or None at the singularity (k == 1 or a non-positive
            input), where the locus degenerates into a line.
        """
        if inputs[i] <= 0.0 or inputs[j] <= 0.0:
            return None

        p = self.sensors[i]
        q = self.sensors[j]
        kk = (float(np.cbrt(inputs[i])) / float(np.cbrt(inputs[j]))) ** 2
        men = kk - 1.0

        if men == 0.0:
            return None

        center = (kk * q - p) / men
        r2 = center.norm_sq() - (kk * q.norm_sq() - p.norm_sq()) / men

        return Circle(center, math.sqrt(max(r2, 0.0)))

    def make_circles(self, inputs: Sequence[float]) -> Optional[List[Circle]]:
        """One circle per sensor pair, or None if any pair is degenerate."""
        circles = []
        for i, j in combinations(range(self.sensor_count), 2):
            circle = self.make_circle(inputs, i, j)
            if circle is None:
                logger.debug(
                    f"Degenerate ratio for sensors {i},{j}: "
                    f"{inputs[i]:.2f} / {inputs[j]:.2f}"
                )
                return None
            circles.append(circle)
        return circles

    def make_points(self, circles: Sequence[Circle]) -> List[Point]:
        """All intersection points of every circle pair, in pair order."""
        points = []
        for a, b in combinations(circles, 2):
            found, _ = intersect(a, b)
            points.extend(found)
        return points

    def eliminate_triangle(self, points: Sequence[Point]) -> List[Point]:
        """Keep the candidates that are not strictly inside the sensor triangle."""
        return [p for p in points if not self.triangle.contains(p)]

    def aggregate(self, points: Sequence[Point]) -> Point:
        """
        Combine survivors into one position.

        sequential_midpoint: start from the last point and fold in the
        remaining ones from the back, each step taking the midpoint. Not a
        centroid: points folded in later carry more weight.
        """
        if not points:
            raise ValueError("Cannot aggregate an empty point list")

        if self.config.aggregation == 'centroid':
            return Point(
                sum(p.x for p in points) / len(points),
                sum(p.y for p in points) / len(points),
            )

        remaining = list(points)
        result = remaining.pop()
        while remaining:
            result = midpoint(result, remaining.pop())
        return result
