"""
Localization Module: calibration, dipole triangulation, output smoothing.

Key classes:
- Baseline: Per-sensor ambient magnitude learned at startup
- CalibrationSchedule: Decaying-rate startup calibration protocol
- LocalizationEngine: Apollonius circles -> intersections -> averaged position
- MovingAverage: Boxcar smoothing of the printed distance/bearing
"""

from .calibration import (
    Baseline,
    CalibrationSchedule,
    filtered_input,
    is_source_present,
)
from .engine import (
    AGGREGATION_MODES,
    EngineConfig,
    LocalizationEngine,
)
from .smoothing import MovingAverage

__all__ = [
    'Baseline',
    'CalibrationSchedule',
    'filtered_input',
    'is_source_present',
    'AGGREGATION_MODES',
    'EngineConfig',
    'LocalizationEngine',
    'MovingAverage',
]
