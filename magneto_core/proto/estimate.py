"""
Localization Estimate Output Schema.

Defines the per-frame output of the localization engine: the Apollonius
circles, every intersection candidate, the candidates that survived the
sensor-triangle elimination, and the aggregated source position.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from enum import IntEnum

from magneto_core.geometry import Circle, Point


class EstimateStatus(IntEnum):
    """Outcome of one localization attempt."""

    OK = 0                    # Valid averaged position
    DEGENERATE_RATIO = 1      # Equal or zero magnitudes, circle undefined
    MISSING_SOLUTIONS = 2     # Fewer intersection points than expected
    MISSING_VALID_POINTS = 3  # Fewer than 2 points outside the triangle


# Drop reason code reported to metrics per rejected status
DROP_REASON = {
    EstimateStatus.DEGENERATE_RATIO: 'degenerate_ratio',
    EstimateStatus.MISSING_SOLUTIONS: 'missing_solutions',
    EstimateStatus.MISSING_VALID_POINTS: 'missing_valid_points',
}


@dataclass
class Estimate:
    """
    Localization result for one frame.

    Attributes:
        status: OK or the reason the frame was rejected
        inputs: Calibrated magnitude per sensor fed to the engine
        circles: Apollonius circles, one per sensor pair
        points: All circle-circle intersection candidates
        filtered: Candidates outside the sensor triangle
        result: Aggregated source position (None unless status is OK)

    Notes:
        - Geometry built before a rejection is kept for diagnostics
        - A rejected estimate is never published
    """

    status: EstimateStatus
    inputs: Tuple[float, ...]
    circles: List[Circle] = field(default_factory=list)
    points: List[Point] = field(default_factory=list)
    filtered: List[Point] = field(default_factory=list)
    result: Optional[Point] = None

    def __post_init__(self):
        """Validate estimate consistency."""
        if self.status == EstimateStatus.OK and self.result is None:
            raise ValueError("OK estimate requires a result point")

    @property
    def is_valid(self) -> bool:
        """Check if this estimate carries a usable position."""
        return self.status == EstimateStatus.OK

    @property
    def drop_reason(self) -> Optional[str]:
        """Metrics drop reason for a rejected estimate."""
        return DROP_REASON.get(self.status)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/serialization."""
        return {
            'status': self.status.name,
            'inputs': list(self.inputs),
            'circles': [(c.center.x, c.center.y, c.radius) for c in self.circles],
            'points': [p.as_tuple() for p in self.points],
            'filtered': [p.as_tuple() for p in self.filtered],
            'result': self.result.as_tuple() if self.result is not None else None,
        }


def create_rejected(
    status: EstimateStatus,
    inputs: Tuple[float, ...],
    circles: Optional[List[Circle]] = None,
    points: Optional[List[Point]] = None,
    filtered: Optional[List[Point]] = None,
) -> Estimate:
    """
    Create a rejected estimate.

    Args:
        status: Rejection status (anything but OK)
        inputs: Calibrated inputs of the frame
        circles/points/filtered: Geometry built before the rejection

    Returns:
        Estimate without a result
    """
    if status == EstimateStatus.OK:
        raise ValueError("Rejected estimate cannot have OK status")

    return Estimate(
        status=status,
        inputs=tuple(inputs),
        circles=list(circles or []),
        points=list(points or []),
        filtered=list(filtered or []),
    )
