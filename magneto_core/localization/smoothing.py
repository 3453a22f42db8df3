"""
Moving-Average Output Smoothing.

Fixed-length boxcar filter used for the human-readable distance and
bearing columns of the producer output. It does not feed back into the
localization pipeline.
"""

from collections import deque


class MovingAverage:
    """
    Mean of the last `length` values.

    The window starts filled with `initial`, so the first outputs are
    pulled towards that value until the window has been replaced.
    """

    def __init__(self, length: int = 30, initial: float = 0.0):
        if length <= 0:
            raise ValueError(f"Window length must be positive: {length}")

        self.length = length
        self._window = deque([initial] * length, maxlen=length)
        self._sum = initial * length
        self.value = initial

    def update(self, value: float) -> float:
        """Push a value and return the new mean."""
        self._sum += value - self._window[0]
        self._window.append(value)
        self.value = self._sum / self.length
        return self.value
