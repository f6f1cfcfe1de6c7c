"""Rolling statistics and exponential smoothing primitives."""

from __future__ import annotations

import statistics
from collections import deque
from typing import Iterable


def clamp(value: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, value))


def ema(new: float, previous: float, alpha: float) -> float:
    """Exponential moving average step: ``alpha*new + (1-alpha)*previous``."""
    return alpha * new + (1 - alpha) * previous


class RollingStats:
    """Bounded FIFO buffer of numeric samples with summary statistics.

    All statistics are population statistics over the current contents.
    An empty buffer reports 0 for mean, stddev, median and spread.
    """

    def __init__(self, capacity: int, values: Iterable[float] = ()) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._buf: deque[float] = deque(values, maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def push(self, value: float) -> None:
        self._buf.append(float(value))

    def clear(self) -> None:
        self._buf.clear()

    def values(self) -> list[float]:
        return list(self._buf)

    def mean(self) -> float:
        if not self._buf:
            return 0.0
        return statistics.fmean(self._buf)

    def stddev(self) -> float:
        if len(self._buf) < 2:
            return 0.0
        return statistics.pstdev(self._buf)

    def median(self) -> float:
        if not self._buf:
            return 0.0
        return statistics.median(self._buf)

    def min(self, default: float = 0.0) -> float:
        return min(self._buf) if self._buf else default

    def spread(self) -> float:
        """``max - min`` of the current contents."""
        if not self._buf:
            return 0.0
        return max(self._buf) - min(self._buf)

    def fraction_below(self, threshold: float) -> float:
        if not self._buf:
            return 0.0
        return sum(1 for v in self._buf if v < threshold) / len(self._buf)

    def __len__(self) -> int:
        return len(self._buf)

    def __repr__(self) -> str:
        return f"RollingStats(capacity={self._capacity}, n={len(self._buf)})"


class ExponentialSmoother:
    """Single-value EMA state.

    The first update seeds the state with the observed value unless an
    ``initial`` value is supplied.
    """

    def __init__(self, alpha: float, initial: float | None = None) -> None:
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = alpha
        self._initial = initial
        self._value = initial

    @property
    def value(self) -> float | None:
        return self._value

    def update(self, new: float) -> float:
        if self._value is None:
            self._value = float(new)
        else:
            self._value = ema(new, self._value, self.alpha)
        return self._value

    def reset(self) -> None:
        self._value = self._initial
