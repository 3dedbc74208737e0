# stringtune/pipeline/engine.py
"""
Pitch engine: one per audio source.

One engine owns the filter chain, the base estimator, the spectral refiner,
the smoothers and the quality scorer for a single input stream.  ``detect``
runs one buffer through:

    input RMS -> AGC -> filter chain -> noise gate -> base estimate
      -> spectral refinement (+ harmonic correction) -> octave correction
      -> outlier gate -> exponential smoothing -> confidence -> note match

Any per-frame failure returns ``None``; nothing on this path raises for bad
audio.  Configuration problems raise at construction time.
"""
from __future__ import annotations

import logging
import math
from dataclasses import asdict
from typing import Any, Optional

import numpy as np

from .config import EngineConfig, FeatureConfig, FilterConfig, resolve_preset, get_preset
from .corrections import cents_between, harmonic_correct, octave_correct
from .detectors import BasePitchEstimator, build_estimator
from .filters import FilterChain
from .instrumentation import PipelineLogger
from .models import PitchResult
from .quality import QualityScorer
from .smoothing import ExponentialSmoother, WindowedAverager
from .spectral import SpectralRefiner
from .tunings import TuningRegistry

logger = logging.getLogger(__name__)

# Pre-filter RMS below this is treated as silence
NOISE_FLOOR_RMS = 0.005
# AGC never amplifies by more than this
MAX_AGC_GAIN = 10.0


class PitchEngine:
    def __init__(
        self,
        config: EngineConfig,
        registry: TuningRegistry,
        estimator: Optional[BasePitchEstimator] = None,
        pipeline_logger: Optional[PipelineLogger] = None,
    ):
        config.validate()
        self.config = config
        self.registry = registry
        self.pipeline_logger = pipeline_logger

        self.filter_chain = FilterChain.from_config(config.sample_rate, config.filters)
        self.estimator = estimator if estimator is not None else build_estimator(config)
        self.refiner = SpectralRefiner(config.sample_rate, config.block_size)
        self.averager = WindowedAverager(config.averaging_window_size)
        self.smoother = ExponentialSmoother(config.smoothing_alpha)
        self.quality = QualityScorer(config.quality_history_size)

        # Reused input copy; grows only if a caller sends a longer buffer
        self._scratch = np.zeros(config.block_size, dtype=np.float64)

        if self.pipeline_logger is not None:
            self.pipeline_logger.emit_config(
                "engine",
                config,
                extras={
                    "estimator": getattr(self.estimator, "name", type(self.estimator).__name__),
                    "filter_stages": self.filter_chain.describe(),
                },
            )

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------
    @classmethod
    def from_params(
        cls,
        registry: TuningRegistry,
        threshold: float,
        freq_min: float,
        freq_max: float,
        sample_rate: int,
        block_size: int,
        filter_mask: int,
        feature_mask: int,
        averaging_window_size: int = 5,
        smoothing_alpha: float = 0.3,
        **kwargs: Any,
    ) -> "PitchEngine":
        config = EngineConfig(
            sample_rate=int(sample_rate),
            block_size=int(block_size),
            threshold=float(threshold),
            freq_min=float(freq_min),
            freq_max=float(freq_max),
            filters=FilterConfig.from_mask(filter_mask),
            features=FeatureConfig.from_mask(feature_mask),
            averaging_window_size=int(averaging_window_size),
            smoothing_alpha=float(smoothing_alpha),
        )
        return cls(config, registry, **kwargs)

    @classmethod
    def from_preset(
        cls,
        name: Optional[str],
        registry: TuningRegistry,
        sample_rate: int = 48000,
        block_size: Optional[int] = None,
        **kwargs: Any,
    ) -> "PitchEngine":
        preset = resolve_preset(name)
        pipeline_logger = kwargs.get("pipeline_logger")
        if pipeline_logger is not None and get_preset(name) is None:
            pipeline_logger.log_event("engine", "preset_fallback", {"requested": name, "used": preset.name})
        return cls(preset.to_engine_config(sample_rate=sample_rate, block_size=block_size), registry, **kwargs)

    # ------------------------------------------------------------------
    # Runtime controls
    # ------------------------------------------------------------------
    def set_expected_frequency(self, hz: Optional[float]) -> None:
        """Target used by octave correction; ``None`` or <= 0 clears it."""
        self.config.expected_frequency = float(hz) if hz and hz > 0 else 0.0

    def enable_agc(self, enabled: bool, target_rms: float = 0.1) -> None:
        if target_rms <= 0:
            raise ValueError(f"AGC target RMS must be positive, got {target_rms}")
        self.config.features.agc = bool(enabled)
        self.config.agc_target_rms = float(target_rms)

    def enable_harmonic_correction(self, enabled: bool) -> None:
        self.config.features.harmonic_correction = bool(enabled)

    def enable_octave_correction(self, enabled: bool) -> None:
        self.config.features.octave_correction = bool(enabled)

    def add_string_filter(self, hz: float, q: Optional[float] = None) -> None:
        self.filter_chain.add_bandpass(hz, q if q is not None else self.config.filters.string_filter_q)

    def add_tuning_string_filters(self, tuning_id: str, q: Optional[float] = None) -> int:
        """One bandpass stage per note of a registered scheme; returns the count added."""
        scheme = self.registry.get(tuning_id)
        if scheme is None:
            raise KeyError(f"Unknown tuning {tuning_id!r}")
        for freq in scheme.frequencies:
            self.add_string_filter(freq, q)
        return len(scheme.notes)

    def reset(self) -> None:
        self.filter_chain.reset()
        self.estimator.reset()
        self.averager.clear()
        self.smoother.reset()
        self.quality.reset()

    # ------------------------------------------------------------------
    # Per-frame pipeline
    # ------------------------------------------------------------------
    def _reject(self, reason: str) -> None:
        logger.debug("frame rejected: %s", reason)
        if self.pipeline_logger is not None:
            self.pipeline_logger.count(f"rejected_{reason}")

    def _load(self, buffer: Any) -> np.ndarray:
        x = np.asarray(buffer, dtype=np.float64).reshape(-1)
        if x.size > self._scratch.size:
            self._scratch = np.zeros(x.size, dtype=np.float64)
        view = self._scratch[: x.size]
        view[:] = x
        return view

    def detect(self, buffer: Any, tuning_id: str) -> Optional[PitchResult]:
        cfg = self.config
        features = cfg.features

        frame = self._load(buffer)
        if frame.size == 0:
            self._reject("empty")
            return None

        # 1. input RMS (pre-AGC, pre-filter)
        rms = float(np.sqrt(np.mean(frame * frame)))
        if not math.isfinite(rms):
            self._reject("non_finite")
            return None

        # 2. AGC
        if features.agc and rms > 0.0:
            gain = min(cfg.agc_target_rms / rms, MAX_AGC_GAIN)
            frame *= gain

        # 3. filter chain (keeps its state across frames)
        self.filter_chain.process_block(frame, out=frame)

        # 4. noise gate
        if rms < NOISE_FLOOR_RMS:
            self._reject("silence")
            return None

        # 5. base estimate
        approx = float(self.estimator.estimate(frame))
        if not math.isfinite(approx) or approx <= 0.0:
            self._reject("no_pitch")
            return None

        # 6. spectral refinement and harmonic correction
        freq = approx
        if features.spectral_refinement:
            refined = self.refiner.refine(frame, approx)
            if refined is not None:
                if features.harmonic_correction:
                    refined = harmonic_correct(refined, approx, cfg.harmonic_tolerance)
                freq = refined
        if not math.isfinite(freq) or freq <= 0.0:
            self._reject("invalid_refinement")
            return None

        # 7. octave correction against a known target
        if features.octave_correction and cfg.expected_frequency > 0.0:
            freq = octave_correct(freq, cfg.expected_frequency, cfg.octave_tolerance_cents)

        # 8. outlier gate; the emitted value stays un-averaged
        if features.outlier_gate:
            outlier = self.averager.is_outlier(freq, cfg.outlier_threshold_hz)
            self.averager.push(freq)
            if outlier:
                self._reject("outlier")
                return None

        # 9. exponential smoothing
        if features.exponential_smoothing:
            freq = self.smoother.update(freq)

        # 10. confidence
        self.quality.update(freq)
        confidence = self.quality.score(rms)

        # 11. note match
        match = self.registry.nearest_note(tuning_id, freq)
        if match is None:
            self._reject("unknown_tuning")
            return None

        # 12. result
        return PitchResult(
            frequency=freq,
            raw_frequency=approx,
            tuning=tuning_id,
            note=match.note,
            note_frequency=match.frequency,
            distance=match.distance,
            cents=cents_between(freq, match.frequency),
            confidence=confidence,
            rms=rms,
        )

    maybe_find_pitch = detect

    def describe(self) -> dict:
        return {
            "config": asdict(self.config),
            "estimator": getattr(self.estimator, "name", type(self.estimator).__name__),
            "filter_stages": self.filter_chain.describe(),
        }
