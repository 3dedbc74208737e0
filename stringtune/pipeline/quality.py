from __future__ import annotations

from collections import deque
from typing import Deque

import numpy as np

# Not measured yet; the score keeps a fixed harmonic term.
HARMONIC_RATIO_PLACEHOLDER = 0.2

RMS_WEIGHT = 0.4
STABILITY_WEIGHT = 0.4
HARMONIC_WEIGHT = 0.2

# Std-dev (Hz) at which stability reaches zero
STABILITY_SPREAD_HZ = 5.0


def _clamp01(x: float) -> float:
    return float(min(1.0, max(0.0, x)))


class QualityScorer:
    """Confidence from loudness, short-term frequency stability and a harmonic term."""

    def __init__(self, history_size: int = 8):
        self.history_size = int(history_size)
        self._history: Deque[float] = deque(maxlen=self.history_size)

    def update(self, freq: float) -> None:
        self._history.append(float(freq))

    def stability(self) -> float:
        if not self._history:
            return 0.0
        std = float(np.std(np.fromiter(self._history, dtype=np.float64)))
        return _clamp01(1.0 - std / STABILITY_SPREAD_HZ)

    def score(self, rms: float, harmonic_ratio: float = HARMONIC_RATIO_PLACEHOLDER) -> float:
        rms_score = _clamp01(rms * 20.0)
        return _clamp01(
            RMS_WEIGHT * rms_score
            + STABILITY_WEIGHT * self.stability()
            + HARMONIC_WEIGHT * (1.0 - harmonic_ratio)
        )

    def reset(self) -> None:
        self._history.clear()

    def __len__(self) -> int:
        return len(self._history)
