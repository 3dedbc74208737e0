from __future__ import annotations

from collections import deque
from typing import Deque, Optional


class WindowedAverager:
    """Fixed-capacity FIFO of recent frequencies; the oldest entry is evicted once full."""

    def __init__(self, capacity: int):
        if int(capacity) < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = int(capacity)
        self._values: Deque[float] = deque(maxlen=self.capacity)

    def push(self, value: float) -> None:
        self._values.append(float(value))

    def average(self) -> Optional[float]:
        if not self._values:
            return None
        return sum(self._values) / len(self._values)

    def is_outlier(self, value: float, threshold: float) -> bool:
        """True when ``value`` sits more than ``threshold`` away from the current mean."""
        mean = self.average()
        if mean is None:
            return False
        return abs(float(value) - mean) > float(threshold)

    def clear(self) -> None:
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)


class ExponentialSmoother:
    """``state <- alpha * new + (1 - alpha) * state``, seeded by the first value."""

    def __init__(self, alpha: float = 0.3):
        if not (0.0 < float(alpha) <= 1.0):
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = float(alpha)
        self._state: Optional[float] = None

    @property
    def value(self) -> Optional[float]:
        return self._state

    def update(self, value: float) -> float:
        if self._state is None:
            self._state = float(value)
        else:
            self._state = self.alpha * float(value) + (1.0 - self.alpha) * self._state
        return self._state

    def reset(self) -> None:
        self._state = None
