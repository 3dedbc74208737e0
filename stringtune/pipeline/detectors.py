# stringtune/pipeline/detectors.py
from __future__ import annotations

import math
import warnings
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import scipy.fft

from .config import EngineConfig
from .spectral import SpectralRefiner, parabolic_offset

_FFT_LIB = scipy.fft

NO_PITCH = math.inf


# --------------------------------------------------------------------------------------
# Utility
# --------------------------------------------------------------------------------------
def _as_buffer(buffer: Any) -> np.ndarray:
    return np.asarray(buffer, dtype=np.float64).reshape(-1)


def _cross_correlation(head: np.ndarray, x: np.ndarray, n_lags: int) -> np.ndarray:
    """
    r[tau] = sum_j head[j] * x[j + tau] for tau in [0, n_lags), via FFT.
    """
    fft_len = _FFT_LIB.next_fast_len(head.size + x.size)
    H = _FFT_LIB.rfft(head, n=fft_len)
    X = _FFT_LIB.rfft(x, n=fft_len)
    r = _FFT_LIB.irfft(np.conj(H) * X, n=fft_len)
    return r[:n_lags]


def _energy_prefix(x: np.ndarray) -> np.ndarray:
    out = np.empty(x.size + 1, dtype=np.float64)
    out[0] = 0.0
    np.cumsum(x * x, out=out[1:])
    return out


# --------------------------------------------------------------------------------------
# Estimator base + implementations
# --------------------------------------------------------------------------------------
class BasePitchEstimator:
    """
    Base class used by the pitch engine.
    Must implement: estimate(buffer) -> frequency in Hz, or NO_PITCH (inf).
    """

    name = "base"

    def __init__(
        self,
        sample_rate: int,
        freq_min: float = 60.0,
        freq_max: float = 1200.0,
        **kwargs: Any,  # absorb unknown config keys safely
    ):
        self.sample_rate = int(sample_rate)
        self.freq_min = float(freq_min)
        self.freq_max = float(freq_max)
        self._warned: Dict[str, bool] = {}
        self.kwargs = kwargs

    def _warn_once(self, key: str, msg: str) -> None:
        if not self._warned.get(key, False):
            warnings.warn(msg)
            self._warned[key] = True

    def _in_band(self, freq: float) -> bool:
        return self.freq_min <= freq <= self.freq_max

    def estimate(self, buffer: np.ndarray) -> float:
        raise NotImplementedError

    def reset(self) -> None:
        """Drop any internal stream state. Stateless estimators ignore this."""


class YinEstimator(BasePitchEstimator):
    """
    YIN: cumulative-mean-normalised squared difference, first dip under
    ``threshold`` between the lag bounds, refined with a parabola.
    """

    name = "yin"

    def __init__(self, threshold: float, freq_min: float, freq_max: float, sample_rate: int, **kwargs: Any):
        super().__init__(sample_rate=sample_rate, freq_min=freq_min, freq_max=freq_max, **kwargs)
        self.threshold = float(threshold)
        self.tau_min = max(2, int(self.sample_rate / self.freq_max))
        self.tau_max = max(self.tau_min + 2, int(self.sample_rate / self.freq_min))

    def difference(self, x: np.ndarray, tau_max: int) -> np.ndarray:
        """d[tau] over a fixed window of ``len(x) - tau_max`` samples."""
        w = x.size - tau_max
        head = x[:w]
        prefix = _energy_prefix(x)
        e0 = prefix[w]
        taus = np.arange(tau_max)
        e_tau = prefix[taus + w] - prefix[taus]
        r = _cross_correlation(head, x, tau_max)
        d = e0 + e_tau - 2.0 * r
        d[0] = 0.0
        return np.maximum(d, 0.0)

    @staticmethod
    def cmnd(d: np.ndarray) -> np.ndarray:
        out = np.ones_like(d)
        if d.size > 1:
            running = np.cumsum(d[1:])
            taus = np.arange(1, d.size, dtype=np.float64)
            with np.errstate(divide="ignore", invalid="ignore"):
                out[1:] = np.where(running > 0.0, d[1:] * taus / running, 1.0)
        return out

    def estimate(self, buffer: np.ndarray) -> float:
        x = _as_buffer(buffer)
        tau_max = min(self.tau_max, x.size // 2)
        if tau_max <= self.tau_min + 1:
            self._warn_once(
                "short_buffer",
                f"YIN buffer of {x.size} samples too short for freq_min={self.freq_min} Hz",
            )
            return NO_PITCH

        cmnd = self.cmnd(self.difference(x, tau_max))

        below = np.flatnonzero(cmnd[self.tau_min:tau_max] < self.threshold)
        if below.size == 0:
            return NO_PITCH
        tau = int(below[0]) + self.tau_min
        while tau + 1 < tau_max and cmnd[tau + 1] < cmnd[tau]:
            tau += 1

        period = float(tau)
        if 1 <= tau < cmnd.size - 1:
            delta = parabolic_offset(float(cmnd[tau - 1]), float(cmnd[tau]), float(cmnd[tau + 1]))
            if delta is not None and abs(delta) <= 1.0:
                period += delta

        freq = self.sample_rate / period
        return freq if self._in_band(freq) else NO_PITCH


class McLeodEstimator(BasePitchEstimator):
    """
    McLeod pitch method: normalised square difference function, key maxima
    between positive zero crossings, first key maximum within
    ``clarity_threshold`` of the highest one.
    """

    name = "mcleod"

    def __init__(
        self,
        sample_rate: int,
        power_threshold: float = 5.0,
        clarity_threshold: float = 0.7,
        freq_min: float = 40.0,
        freq_max: float = 1200.0,
        **kwargs: Any,
    ):
        super().__init__(sample_rate=sample_rate, freq_min=freq_min, freq_max=freq_max, **kwargs)
        self.power_threshold = float(power_threshold)
        self.clarity_threshold = float(clarity_threshold)
        self.last_clarity = 0.0

    def nsdf(self, x: np.ndarray) -> np.ndarray:
        n = x.size
        r = _cross_correlation(x, x, n)
        prefix = _energy_prefix(x)
        taus = np.arange(n)
        m = prefix[n - taus] + (prefix[n] - prefix[taus])
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.where(m > 0.0, 2.0 * r / m, 0.0)

    @staticmethod
    def key_maxima(nsdf: np.ndarray) -> List[Tuple[int, float]]:
        positive = nsdf > 0.0
        # Skip the lobe around lag 0
        first_neg = np.flatnonzero(~positive)
        if first_neg.size == 0:
            return []
        start = int(first_neg[0])
        edges = np.diff(positive[start:].astype(np.int8))
        rises = np.flatnonzero(edges == 1) + start + 1
        falls = np.flatnonzero(edges == -1) + start + 1

        peaks: List[Tuple[int, float]] = []
        for rise in rises:
            after = falls[falls > rise]
            end = int(after[0]) if after.size else nsdf.size
            idx = rise + int(np.argmax(nsdf[rise:end]))
            peaks.append((int(idx), float(nsdf[idx])))
        return peaks

    def estimate(self, buffer: np.ndarray) -> float:
        x = _as_buffer(buffer)
        self.last_clarity = 0.0
        if x.size < 4:
            return NO_PITCH
        if float(np.dot(x, x)) < self.power_threshold:
            return NO_PITCH

        nsdf = self.nsdf(x)
        lag_min = max(1, int(self.sample_rate / self.freq_max))
        lag_max = min(nsdf.size - 2, int(self.sample_rate / self.freq_min) + 1)
        peaks = [(i, v) for i, v in self.key_maxima(nsdf) if lag_min <= i <= lag_max]
        if not peaks:
            return NO_PITCH

        highest = max(v for _, v in peaks)
        if highest <= 0.0:
            return NO_PITCH
        cutoff = self.clarity_threshold * highest
        idx, value = next((i, v) for i, v in peaks if v >= cutoff)

        period = float(idx)
        delta = parabolic_offset(float(nsdf[idx - 1]), float(nsdf[idx]), float(nsdf[idx + 1]))
        if delta is not None and abs(delta) <= 1.0:
            period += delta

        self.last_clarity = value
        freq = self.sample_rate / period
        return freq if self._in_band(freq) else NO_PITCH


class SpectralPeakEstimator(BasePitchEstimator):
    """
    Strongest spectral bin of a sliding sample stream, with peak-hold decay
    on the displayed magnitudes (spectrum-visualiser style).
    """

    name = "spectral_peak"

    def __init__(
        self,
        sample_rate: int,
        size: int = 4096,
        freq_min: float = 60.0,
        freq_max: float = 1200.0,
        decay: float = 0.5,
        **kwargs: Any,
    ):
        super().__init__(sample_rate=sample_rate, freq_min=freq_min, freq_max=freq_max, **kwargs)
        self.size = int(size)
        self.decay = float(np.clip(decay, 0.0, 1.0))
        self._spectrum = SpectralRefiner(self.sample_rate, self.size)
        self._stream = np.zeros(self.size, dtype=np.float64)
        self._volumes = np.zeros(self._spectrum.n_bins, dtype=np.float64)
        freqs = np.arange(self._spectrum.n_bins) * self._spectrum.bin_resolution
        self._band = (freqs >= self.freq_min) & (freqs <= self.freq_max)
        self._freqs = freqs

    def push_data(self, buffer: np.ndarray) -> None:
        x = _as_buffer(buffer)
        n = x.size
        if n == 0:
            return
        if n >= self.size:
            self._stream[:] = x[n - self.size:]
        else:
            self._stream[:-n] = self._stream[n:]
            self._stream[-n:] = x

    def update(self) -> np.ndarray:
        mags = self._spectrum.magnitude_spectrum(self._stream) / (self.size / 4.0)
        np.maximum(mags, self._volumes * self.decay, out=self._volumes)
        return self._volumes

    def estimate(self, buffer: np.ndarray) -> float:
        self.push_data(buffer)
        volumes = self.update()
        if not np.any(self._band):
            return NO_PITCH
        banded = np.where(self._band, volumes, 0.0)
        idx = int(np.argmax(banded))
        if banded[idx] <= 1e-9:
            return NO_PITCH
        return float(self._freqs[idx])

    def reset(self) -> None:
        self._stream.fill(0.0)
        self._volumes.fill(0.0)


ESTIMATORS = ("yin", "mcleod", "spectral_peak")


def build_estimator(config: EngineConfig) -> BasePitchEstimator:
    name = (config.estimator or "yin").lower()
    if name == "yin":
        return YinEstimator(
            threshold=config.threshold,
            freq_min=config.freq_min,
            freq_max=config.freq_max,
            sample_rate=config.sample_rate,
        )
    if name == "mcleod":
        return McLeodEstimator(
            sample_rate=config.sample_rate,
            power_threshold=config.power_threshold,
            clarity_threshold=config.clarity_threshold,
            freq_min=config.freq_min,
            freq_max=config.freq_max,
        )
    if name == "spectral_peak":
        return SpectralPeakEstimator(
            sample_rate=config.sample_rate,
            size=config.block_size,
            freq_min=config.freq_min,
            freq_max=config.freq_max,
            decay=config.spectrum_decay,
        )
    raise ValueError(f"Unknown estimator {config.estimator!r}; expected one of {ESTIMATORS}")
