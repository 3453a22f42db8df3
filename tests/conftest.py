"""
Pytest configuration and shared fixtures for magnetic dipole locator tests.

This module provides reusable fixtures for the sensor layout, the
localization engine, synthetic sensor frames and shared-memory segments.
"""

import sys
import math
import uuid
from pathlib import Path
from typing import Callable, List, Sequence

import pytest
from multiprocessing.shared_memory import SharedMemory

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from magneto_core.geometry import Point
from magneto_core.localization import LocalizationEngine
from magneto_core.metrics import reset_metrics


# =============================================================================
# Metrics
# =============================================================================


@pytest.fixture(autouse=True)
def fresh_metrics():
    """
    Reset the global metrics singleton before every test.

    Components grab the singleton at construction, so this must run before
    any component fixture.
    """
    reset_metrics()
    yield


# =============================================================================
# Sensor Layout Fixtures
# =============================================================================


@pytest.fixture
def sensor_layout() -> List[Point]:
    """
    Standard sensor layout (counter-clockwise equilateral triangle).

    Returns:
        Sensors at (-3, 0), (3, 0) and (0, sqrt(27)), 6 cm apart.
    """
    return [
        Point(-3.0, 0.0),
        Point(3.0, 0.0),
        Point(0.0, math.sqrt(6 * 6 - 3 * 3)),
    ]


@pytest.fixture
def poi() -> Point:
    """Circumcenter of the standard sensor triangle."""
    return Point(0.0, 1.7320508076)


@pytest.fixture
def engine(sensor_layout: List[Point]) -> LocalizationEngine:
    """Localization engine with default configuration."""
    return LocalizationEngine(sensor_layout)


@pytest.fixture
def source_inputs(sensor_layout: List[Point]) -> Callable[[Point], List[float]]:
    """
    Calibrated inputs whose Apollonius circles all pass through a point.

    The engine takes k = cbrt(in_i) / cbrt(in_j) as the distance ratio
    |X - p_i| / |X - p_j|, so in_i = d_i ** 3 puts X on every circle.
    """
    def make(source: Point) -> List[float]:
        return [source.dist(p) ** 3 for p in sensor_layout]

    return make


# =============================================================================
# Frame Fixtures
# =============================================================================


def frame_line(magnitudes: Sequence[int], line_ending: str = "\r\n") -> str:
    """
    Build a collector line whose per-sensor magnitudes are exactly the
    given integers (reading on the x axis only).
    """
    return " ".join(f"{int(m)} 0 0" for m in magnitudes) + " " + line_ending


@pytest.fixture
def make_frame() -> Callable[..., str]:
    """Frame line builder, see frame_line()."""
    return frame_line


# =============================================================================
# Shared Memory Fixtures
# =============================================================================


@pytest.fixture
def segment_name() -> str:
    """
    Unique shared-memory segment name, unlinked after the test if a test
    left it behind.
    """
    name = f"magneto-test-{uuid.uuid4().hex[:8]}"
    yield name

    try:
        shm = SharedMemory(name=name, create=False)
    except FileNotFoundError:
        return
    shm.close()
    shm.unlink()
