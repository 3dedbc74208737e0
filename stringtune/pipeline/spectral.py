# stringtune/pipeline/spectral.py
"""
Sub-bin frequency refinement.

Given an approximate f0 from the base estimator, look at the Hann-windowed
magnitude spectrum around that bin and fit a parabola through the local peak
and its two neighbours.
"""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import scipy.fft
import scipy.signal

logger = logging.getLogger(__name__)

# Bins this close to DC or Nyquist cannot be refined
EDGE_GUARD_BINS = 2
_DENOM_EPS = 1e-12


def parabolic_offset(m_left: float, m_center: float, m_right: float) -> Optional[float]:
    """
    Vertex offset (in bins, relative to the centre sample) of the parabola through
    three equally spaced points. ``None`` when the points are collinear.
    """
    denom = m_left - 2.0 * m_center + m_right
    if abs(denom) < _DENOM_EPS:
        return None
    return 0.5 * (m_left - m_right) / denom


class SpectralRefiner:
    """
    Window and FFT scratch are allocated once for ``size`` samples; ``refine``
    reuses them on every call.
    """

    def __init__(self, sample_rate: int, size: int):
        if int(size) < 8:
            raise ValueError(f"refiner size too small: {size}")
        self.sample_rate = int(sample_rate)
        self.size = int(size)
        self.bin_resolution = float(self.sample_rate) / float(self.size)
        # Periodic Hann: 0.5 - 0.5*cos(2*pi*i/N)
        self.window = scipy.signal.get_window("hann", self.size, fftbins=True).astype(np.float64)
        self._scratch = np.zeros(self.size, dtype=np.float64)
        self.n_bins = self.size // 2 + 1

    def _load(self, buffer: np.ndarray) -> np.ndarray:
        x = np.asarray(buffer, dtype=np.float64).reshape(-1)
        n = x.size
        if n >= self.size:
            np.multiply(x[n - self.size:], self.window, out=self._scratch)
        else:
            self._scratch.fill(0.0)
            np.multiply(x, self.window[:n], out=self._scratch[:n])
        return self._scratch

    def magnitude_spectrum(self, buffer: np.ndarray) -> np.ndarray:
        return np.abs(scipy.fft.rfft(self._load(buffer)))

    def refine(self, buffer: np.ndarray, approx_hz: float) -> Optional[float]:
        """Refined frequency in Hz, or ``None`` when the peak cannot be refined."""
        if not np.isfinite(approx_hz) or approx_hz <= 0.0:
            return None

        target = int(round(approx_hz / self.bin_resolution))
        if target < EDGE_GUARD_BINS or target > self.n_bins - 1 - EDGE_GUARD_BINS:
            logger.debug("refine: bin %d too close to spectrum edge", target)
            return None

        mags = self.magnitude_spectrum(buffer)

        lo = target - 1
        peak = lo + int(np.argmax(mags[lo: target + 2]))
        if peak < 1 or peak > self.n_bins - 2:
            return None

        delta = parabolic_offset(float(mags[peak - 1]), float(mags[peak]), float(mags[peak + 1]))
        if delta is None:
            return peak * self.bin_resolution
        return (peak + delta) * self.bin_resolution
