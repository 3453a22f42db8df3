"""
Sensor Frame Message Schema.

One frame is one ASCII line emitted by the data collector:
three signed axis readings per magnetometer, sensor-major,

    "x0 y0 z0 x1 y1 z1 x2 y2 z2 \\r\\n"

Integers are separated by whitespace or directly adjacent ("12-5" reads
as 12, -5). Readings whose absolute value exceeds SATURATION_LIMIT are
near the ADC rail and make the whole frame unusable.
"""

from typing import Tuple
from dataclasses import dataclass
import re

import numpy as np

AXIS_COUNT = 3
SATURATION_LIMIT = 4090

_INT_TOKEN = re.compile(r'\s*([+-]?\d+)')


class FrameParseError(ValueError):
    """Base class for frame parsing failures."""


class MalformedFrameError(FrameParseError):
    """Line cannot be tokenized into the expected number of integers."""


class SaturatedFrameError(FrameParseError):
    """
    An axis reading is saturated.

    Attributes:
        sensor_index: Index of the saturated sensor
        axis_index: Index of the saturated axis (0=x, 1=y, 2=z)
        value: The offending raw reading
    """

    def __init__(self, sensor_index: int, axis_index: int, value: int):
        super().__init__(f"Sensor {sensor_index} axis {axis_index} is saturated ({value})")
        self.sensor_index = sensor_index
        self.axis_index = axis_index
        self.value = value


@dataclass(frozen=True)
class FrameSample:
    """
    Parsed sensor frame.

    Attributes:
        axes: Raw axis readings, sensor-major (3 per sensor)
        magnitudes: Field magnitude per sensor, never negative
    """

    axes: Tuple[int, ...]
    magnitudes: np.ndarray

    @property
    def sensor_count(self) -> int:
        return len(self.magnitudes)


def read_frame(line: str, sensor_count: int) -> FrameSample:
    """
    Parse one frame into raw axes and per-sensor magnitudes.

    Args:
        line: Raw text line (trailing whitespace / line ending allowed)
        sensor_count: Number of magnetometers in the frame

    Returns:
        FrameSample

    Raises:
        SaturatedFrameError: first axis (in frame order) above the limit
        MalformedFrameError: bad token, too few or too many values
    """
    if sensor_count <= 0:
        raise MalformedFrameError(f"Invalid sensor count: {sensor_count}")

    expected = sensor_count * AXIS_COUNT
    axes = []
    pos = 0

    for index in range(expected):
        match = _INT_TOKEN.match(line, pos)
        if match is None:
            raise MalformedFrameError(
                f"Expected {expected} integers, token {index} unreadable: {line!r}"
            )

        value = int(match.group(1))
        if abs(value) > SATURATION_LIMIT:
            raise SaturatedFrameError(index // AXIS_COUNT, index % AXIS_COUNT, value)

        axes.append(value)
        pos = match.end()

    if line[pos:].strip():
        raise MalformedFrameError(f"Trailing data after {expected} integers: {line!r}")

    raw = np.array(axes, dtype=float).reshape(sensor_count, AXIS_COUNT)
    magnitudes = np.sqrt(np.sum(raw * raw, axis=1))

    return FrameSample(axes=tuple(axes), magnitudes=magnitudes)


def parse_frame(line: str, sensor_count: int) -> np.ndarray:
    """
    Parse one frame into per-sensor magnitudes.

    See read_frame() for the accepted format and raised errors.
    """
    return read_frame(line, sensor_count).magnitudes
