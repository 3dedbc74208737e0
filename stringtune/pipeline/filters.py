# stringtune/pipeline/filters.py
"""
Biquad IIR stages and the static filter chain that conditions each buffer
before pitch estimation.

Each ``Biquad`` is a bilinear-transform second-order section in Direct Form I.
``process`` handles one sample; ``process_block`` runs ``scipy.signal.lfilter``
over a whole buffer, seeded from (and writing back to) the same DF-I history,
so the two paths can be mixed freely.
"""
from __future__ import annotations

import logging
import math
from typing import List, Optional, Tuple

import numpy as np
import scipy.signal

from .config import FilterConfig

logger = logging.getLogger(__name__)

FILTER_KINDS = ("highpass", "lowpass", "notch", "bandpass")

MAINS_NOTCHES_HZ = (
    ("notch_50", 50.0),
    ("notch_60", 60.0),
    ("notch_100", 100.0),
    ("notch_120", 120.0),
)


def biquad_coefficients(kind: str, sample_rate: float, fc: float, q: float) -> Tuple[np.ndarray, np.ndarray]:
    """Return normalised ``(b, a)`` with ``a[0] == 1``."""
    if kind not in FILTER_KINDS:
        raise ValueError(f"Unknown biquad kind {kind!r}; expected one of {FILTER_KINDS}")
    if sample_rate <= 0:
        raise ValueError(f"sample_rate must be positive, got {sample_rate}")
    if not (0.0 < fc < sample_rate / 2.0):
        raise ValueError(f"{kind} corner {fc} Hz outside (0, {sample_rate / 2.0}) Hz")
    if q <= 0:
        raise ValueError(f"Q must be positive, got {q}")

    w0 = 2.0 * math.pi * fc / sample_rate
    alpha = math.sin(w0) / (2.0 * q)
    cosw0 = math.cos(w0)

    if kind == "highpass":
        b = ((1.0 + cosw0) / 2.0, -(1.0 + cosw0), (1.0 + cosw0) / 2.0)
    elif kind == "lowpass":
        b = ((1.0 - cosw0) / 2.0, 1.0 - cosw0, (1.0 - cosw0) / 2.0)
    elif kind == "notch":
        b = (1.0, -2.0 * cosw0, 1.0)
    else:
        b = (alpha, 0.0, -alpha)

    a0 = 1.0 + alpha
    a = (a0, -2.0 * cosw0, 1.0 - alpha)
    return np.asarray(b, dtype=np.float64) / a0, np.asarray(a, dtype=np.float64) / a0


class Biquad:
    """Single second-order IIR stage."""

    def __init__(self, kind: str, sample_rate: float, fc: float, q: float = 0.707):
        self.kind = kind
        self.sample_rate = float(sample_rate)
        self.fc = float(fc)
        self.q = float(q)
        b, a = biquad_coefficients(kind, self.sample_rate, self.fc, self.q)
        self.b = b
        self.a = a
        self.b0, self.b1, self.b2 = (float(v) for v in b)
        self.a1, self.a2 = float(a[1]), float(a[2])
        self.reset()

    @classmethod
    def highpass(cls, sample_rate: float, fc: float, q: float = 0.707) -> "Biquad":
        return cls("highpass", sample_rate, fc, q)

    @classmethod
    def lowpass(cls, sample_rate: float, fc: float, q: float = 0.707) -> "Biquad":
        return cls("lowpass", sample_rate, fc, q)

    @classmethod
    def notch(cls, sample_rate: float, fc: float, q: float = 30.0) -> "Biquad":
        return cls("notch", sample_rate, fc, q)

    @classmethod
    def bandpass(cls, sample_rate: float, fc: float, q: float = 8.0) -> "Biquad":
        return cls("bandpass", sample_rate, fc, q)

    def reset(self) -> None:
        self.x1 = self.x2 = 0.0
        self.y1 = self.y2 = 0.0

    def process(self, x: float) -> float:
        y = (
            self.b0 * x + self.b1 * self.x1 + self.b2 * self.x2
            - self.a1 * self.y1 - self.a2 * self.y2
        )
        self.x2, self.x1 = self.x1, x
        self.y2, self.y1 = self.y1, y
        return y

    def process_block(self, samples: np.ndarray) -> np.ndarray:
        x = np.asarray(samples, dtype=np.float64).reshape(-1)
        if x.size == 0:
            return x.copy()
        # lfiltic wants most-recent-first history
        zi = scipy.signal.lfiltic(self.b, self.a, y=[self.y1, self.y2], x=[self.x1, self.x2])
        y, _ = scipy.signal.lfilter(self.b, self.a, x, zi=zi)

        if x.size >= 2:
            self.x1, self.x2 = float(x[-1]), float(x[-2])
            self.y1, self.y2 = float(y[-1]), float(y[-2])
        else:
            self.x2, self.x1 = self.x1, float(x[-1])
            self.y2, self.y1 = self.y1, float(y[-1])
        return y

    def frequency_response(self, freqs_hz: np.ndarray) -> np.ndarray:
        """Complex response at ``freqs_hz`` (diagnostics and tests)."""
        _, h = scipy.signal.freqz(self.b, self.a, worN=np.asarray(freqs_hz, dtype=np.float64), fs=self.sample_rate)
        return h

    def __repr__(self) -> str:
        return f"Biquad({self.kind!r}, fc={self.fc:g}, q={self.q:g}, fs={self.sample_rate:g})"


class FilterChain:
    """
    Ordered cascade of biquads. Topology is fixed at construction apart from
    explicit ``add_bandpass`` calls; every enabled stage sees every sample.
    """

    def __init__(self, sample_rate: float, stages: Optional[List[Biquad]] = None):
        self.sample_rate = float(sample_rate)
        self.stages: List[Biquad] = list(stages or [])

    @classmethod
    def from_config(cls, sample_rate: float, config: FilterConfig) -> "FilterChain":
        chain = cls(sample_rate)
        nyquist = float(sample_rate) / 2.0

        if config.rumble_highpass:
            chain.stages.append(Biquad.highpass(sample_rate, config.rumble_cutoff_hz, config.rumble_q))

        for attr, hz in MAINS_NOTCHES_HZ:
            if getattr(config, attr):
                chain.stages.append(Biquad.notch(sample_rate, hz, config.notch_q))

        if config.anti_alias_lowpass:
            fc = min(float(config.lowpass_cutoff_hz), 0.45 * float(sample_rate))
            if fc < config.lowpass_cutoff_hz:
                logger.warning(
                    "Anti-alias corner %.0f Hz clamped to %.0f Hz (Nyquist %.0f Hz)",
                    config.lowpass_cutoff_hz, fc, nyquist,
                )
            chain.stages.append(Biquad.lowpass(sample_rate, fc, config.lowpass_q))

        return chain

    def add_bandpass(self, center_hz: float, q: float = 8.0) -> Biquad:
        stage = Biquad.bandpass(self.sample_rate, center_hz, q)
        self.stages.append(stage)
        return stage

    def process(self, x: float) -> float:
        for stage in self.stages:
            x = stage.process(x)
        return x

    def process_block(self, samples: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
        y = np.asarray(samples, dtype=np.float64).reshape(-1)
        for stage in self.stages:
            y = stage.process_block(y)
        if out is not None:
            out[: y.size] = y
            return out
        return y

    def reset(self) -> None:
        for stage in self.stages:
            stage.reset()

    def describe(self) -> List[str]:
        return [repr(s) for s in self.stages]

    def __len__(self) -> int:
        return len(self.stages)
