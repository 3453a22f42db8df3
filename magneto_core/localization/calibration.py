"""
Ambient Baseline Calibration and Source Presence Detection.

The baseline is the believed no-source magnitude of every sensor. It is
learned during a short startup window with an exponentially weighted
update whose rate starts high and decays each frame, then frozen.

Presence detection is conjunctive: a source is present only if every
sensor deviates from its baseline by at least the threshold.
"""

from typing import Iterator, Sequence
from dataclasses import dataclass

import numpy as np

from magneto_core.metrics import get_metrics


@dataclass
class CalibrationSchedule:
    """
    Startup calibration protocol.

    Attributes:
        frames: Number of frames fed through Baseline.update()
        initial_speed: Update rate used for the first frame
        speed_step: Amount the rate decreases after every frame
    """

    frames: int = 25
    initial_speed: float = 0.95
    speed_step: float = 0.01

    def __post_init__(self):
        """Validate that every scheduled speed lies in (0, 1]."""
        if self.frames < 0:
            raise ValueError(f"Calibration frames cannot be negative: {self.frames}")

        last_speed = self.initial_speed - self.speed_step * max(self.frames - 1, 0)
        if self.frames and not (0.0 < last_speed and self.initial_speed <= 1.0):
            raise ValueError(
                f"Schedule leaves (0, 1]: {self.initial_speed} -> {last_speed}"
            )

    def speeds(self) -> Iterator[float]:
        """Yield the update rate for each calibration frame."""
        speed = self.initial_speed
        for _ in range(self.frames):
            yield speed
            speed -= self.speed_step


class Baseline:
    """
    Per-sensor ambient magnitude.

    Usage:
        baseline = Baseline(sensor_count=3)
        for speed in CalibrationSchedule().speeds():
            baseline.update(next_sample(), speed)

        if baseline.is_source_present(sample, threshold=30.0):
            inputs = baseline.filtered_input(sample)
    """

    def __init__(self, sensor_count: int):
        if sensor_count <= 0:
            raise ValueError(f"Sensor count must be positive: {sensor_count}")

        self.values = np.zeros(sensor_count)
        self.metrics = get_metrics()

    @property
    def sensor_count(self) -> int:
        return len(self.values)

    def update(self, sample: Sequence[float], speed: float):
        """
        Blend a sample into the baseline.

        Args:
            sample: Magnitude per sensor
            speed: Weight of the new sample, 0 < speed <= 1

        Raises:
            ValueError: speed out of range or sample size mismatch
        """
        if speed <= 0.0 or speed > 1.0:
            raise ValueError(f"Invalid calibration speed: {speed}")

        sample = np.asarray(sample, dtype=float)
        if sample.shape != self.values.shape:
            raise ValueError(
                f"Sample has {sample.size} values, baseline has {self.sensor_count}"
            )

        self.values = self.values * (1.0 - speed) + sample * speed
        self.metrics.increment('baseline_updates')

    def is_source_present(self, sample: Sequence[float], threshold: float) -> bool:
        """See is_source_present()."""
        return is_source_present(sample, self.values, threshold)

    def filtered_input(self, sample: Sequence[float]) -> np.ndarray:
        """See filtered_input()."""
        return filtered_input(sample, self.values)

    def __repr__(self) -> str:
        return f"Baseline({np.array2string(self.values, precision=2)})"


def is_source_present(
    sample: Sequence[float],
    baseline: Sequence[float],
    threshold: float,
) -> bool:
    """
    Conjunctive presence test.

    Returns:
        True iff |sample[i] - baseline[i]| >= threshold for every sensor.
        False on size mismatch.
    """
    sample = np.asarray(sample, dtype=float)
    baseline = np.asarray(baseline, dtype=float)

    if sample.shape != baseline.shape:
        return False

    return bool(np.all(np.abs(sample - baseline) >= threshold))


def filtered_input(sample: Sequence[float], baseline: Sequence[float]) -> np.ndarray:
    """Calibrated magnitude per sensor: |sample[i] - baseline[i]|."""
    sample = np.asarray(sample, dtype=float)
    baseline = np.asarray(baseline, dtype=float)

    if sample.shape != baseline.shape:
        raise ValueError(
            f"Sample has {sample.size} values, baseline has {baseline.size}"
        )

    return np.abs(sample - baseline)
