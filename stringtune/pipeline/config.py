from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from enum import IntFlag
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# Bitmask encodings (wire/config format only)
# ------------------------------------------------------------

class FilterFlags(IntFlag):
    RUMBLE_HIGHPASS = 1
    NOTCH_50 = 2
    NOTCH_60 = 4
    NOTCH_100 = 8
    NOTCH_120 = 16
    ANTI_ALIAS_LOWPASS = 32


class FeatureFlags(IntFlag):
    SPECTRAL_REFINEMENT = 1
    HARMONIC_CORRECTION = 2
    OCTAVE_CORRECTION = 4
    OUTLIER_GATE = 8
    EXPONENTIAL_SMOOTHING = 16
    AGC = 32


_FILTER_BITS = {
    "rumble_highpass": FilterFlags.RUMBLE_HIGHPASS,
    "notch_50": FilterFlags.NOTCH_50,
    "notch_60": FilterFlags.NOTCH_60,
    "notch_100": FilterFlags.NOTCH_100,
    "notch_120": FilterFlags.NOTCH_120,
    "anti_alias_lowpass": FilterFlags.ANTI_ALIAS_LOWPASS,
}

_FEATURE_BITS = {
    "spectral_refinement": FeatureFlags.SPECTRAL_REFINEMENT,
    "harmonic_correction": FeatureFlags.HARMONIC_CORRECTION,
    "octave_correction": FeatureFlags.OCTAVE_CORRECTION,
    "outlier_gate": FeatureFlags.OUTLIER_GATE,
    "exponential_smoothing": FeatureFlags.EXPONENTIAL_SMOOTHING,
    "agc": FeatureFlags.AGC,
}


# ------------------------------------------------------------
# Filter chain selection
# ------------------------------------------------------------

@dataclass
class FilterConfig:
    rumble_highpass: bool = True
    notch_50: bool = False
    notch_60: bool = False
    notch_100: bool = False
    notch_120: bool = False
    anti_alias_lowpass: bool = True

    # Stage parameters
    rumble_cutoff_hz: float = 60.0
    rumble_q: float = 0.707
    notch_q: float = 30.0
    lowpass_cutoff_hz: float = 5000.0
    lowpass_q: float = 0.707
    string_filter_q: float = 8.0

    @classmethod
    def from_mask(cls, mask: int, **params: Any) -> "FilterConfig":
        flags = FilterFlags(int(mask) & sum(_FILTER_BITS.values()))
        enabled = {name: bool(flags & bit) for name, bit in _FILTER_BITS.items()}
        return cls(**enabled, **params)

    def to_mask(self) -> int:
        mask = 0
        for name, bit in _FILTER_BITS.items():
            if getattr(self, name):
                mask |= int(bit)
        return mask


# ------------------------------------------------------------
# Post-estimation features
# ------------------------------------------------------------

@dataclass
class FeatureConfig:
    # YIN and McLeod already interpolate the period; parabolic refinement on
    # 4096-point Hann bins adds up to ~9 cents of bias on open strings.
    # Turn it on for the bin-quantised spectral_peak estimator.
    spectral_refinement: bool = False
    harmonic_correction: bool = True
    octave_correction: bool = False
    outlier_gate: bool = True
    exponential_smoothing: bool = True
    agc: bool = False

    @classmethod
    def from_mask(cls, mask: int) -> "FeatureConfig":
        flags = FeatureFlags(int(mask) & sum(_FEATURE_BITS.values()))
        return cls(**{name: bool(flags & bit) for name, bit in _FEATURE_BITS.items()})

    def to_mask(self) -> int:
        mask = 0
        for name, bit in _FEATURE_BITS.items():
            if getattr(self, name):
                mask |= int(bit)
        return mask


# ------------------------------------------------------------
# Engine Config
# ------------------------------------------------------------

@dataclass
class EngineConfig:
    sample_rate: int = 48000
    block_size: int = 4096

    # Base estimator: "yin" | "mcleod" | "spectral_peak"
    estimator: str = "yin"
    threshold: float = 0.15         # YIN CMND threshold
    freq_min: float = 60.0
    freq_max: float = 1200.0

    # McLeod parameters
    power_threshold: float = 5.0
    clarity_threshold: float = 0.7

    # Spectral-peak stream parameters
    spectrum_decay: float = 0.5

    filters: FilterConfig = field(default_factory=FilterConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)

    # AGC
    agc_target_rms: float = 0.1

    # Correction heuristics
    harmonic_tolerance: float = 0.1
    octave_tolerance_cents: float = 50.0
    expected_frequency: float = 0.0     # 0 disables octave correction

    # Smoothing
    averaging_window_size: int = 5
    outlier_threshold_hz: float = 5.5
    smoothing_alpha: float = 0.3
    quality_history_size: int = 8

    # Preset that produced this config (informational)
    preset: Optional[str] = None

    def validate(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.block_size < 16:
            raise ValueError(f"block_size too small: {self.block_size}")
        if not (0.0 < self.freq_min < self.freq_max):
            raise ValueError(f"invalid frequency bounds: {self.freq_min}..{self.freq_max}")
        if self.freq_max >= self.sample_rate / 2.0:
            raise ValueError(f"freq_max {self.freq_max} must be below Nyquist ({self.sample_rate / 2.0})")
        if self.averaging_window_size < 1:
            raise ValueError("averaging_window_size must be >= 1")
        if not (0.0 < self.smoothing_alpha <= 1.0):
            raise ValueError(f"smoothing_alpha must be in (0, 1], got {self.smoothing_alpha}")


# ------------------------------------------------------------
# Instrument Presets
# ------------------------------------------------------------

@dataclass
class InstrumentPreset:
    name: str
    freq_min: float
    freq_max: float
    threshold: float
    filters: FilterConfig = field(default_factory=FilterConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    block_size: int = 4096
    averaging_window_size: int = 5
    smoothing_alpha: float = 0.3
    # Extra EngineConfig overrides applied verbatim
    special: Dict[str, Any] = field(default_factory=dict)

    def to_engine_config(self, sample_rate: int = 48000, block_size: Optional[int] = None) -> EngineConfig:
        cfg = EngineConfig(
            sample_rate=int(sample_rate),
            block_size=int(block_size or self.block_size),
            threshold=self.threshold,
            freq_min=self.freq_min,
            freq_max=self.freq_max,
            filters=replace(self.filters),
            features=replace(self.features),
            averaging_window_size=self.averaging_window_size,
            smoothing_alpha=self.smoothing_alpha,
            preset=self.name,
        )
        known = {f.name for f in fields(EngineConfig)}
        for key, value in self.special.items():
            if key in known:
                setattr(cfg, key, value)
        return cfg


DEFAULT_PRESET = "acoustic"

PRESETS: List[InstrumentPreset] = [
    # Steel-string acoustic, E2..E6 with headroom for harmonics
    InstrumentPreset(
        name="acoustic",
        freq_min=60.0,
        freq_max=1200.0,
        threshold=0.15,
    ),

    # Electric (clean): pickups pick up mains hum
    InstrumentPreset(
        name="electric-clean",
        freq_min=60.0,
        freq_max=1400.0,
        threshold=0.12,
        filters=FilterConfig(notch_50=True, notch_60=True),
    ),

    # Electric (distorted): strong upper harmonics, lower anti-alias corner
    InstrumentPreset(
        name="electric-distorted",
        freq_min=60.0,
        freq_max=1000.0,
        threshold=0.20,
        filters=FilterConfig(notch_50=True, notch_60=True, notch_100=True, notch_120=True,
                             lowpass_cutoff_hz=1000.0),
        averaging_window_size=7,
        smoothing_alpha=0.2,
    ),

    # Nylon-string classical: soft attack, lighter smoothing
    InstrumentPreset(
        name="classical",
        freq_min=60.0,
        freq_max=1000.0,
        threshold=0.15,
        smoothing_alpha=0.4,
    ),

    # Bass guitar (4/5 string): B0..G2 fundamentals, larger block
    InstrumentPreset(
        name="bass",
        freq_min=28.0,
        freq_max=450.0,
        threshold=0.15,
        filters=FilterConfig(rumble_cutoff_hz=25.0, lowpass_cutoff_hz=2000.0),
        block_size=8192,
        averaging_window_size=4,
    ),

    # 7/8-string guitars: down to F#1
    InstrumentPreset(
        name="extended-range",
        freq_min=40.0,
        freq_max=1200.0,
        threshold=0.15,
        filters=FilterConfig(rumble_cutoff_hz=35.0),
        block_size=8192,
    ),
]

_ALIASES = {
    "steel": "acoustic",
    "acoustic-guitar": "acoustic",
    "electric": "electric-clean",
    "electric-guitar": "electric-clean",
    "clean": "electric-clean",
    "distorted": "electric-distorted",
    "electric-overdrive": "electric-distorted",
    "nylon": "classical",
    "bass-guitar": "bass",
    "7-string": "extended-range",
    "8-string": "extended-range",
}


def get_preset(name: Optional[str]) -> Optional[InstrumentPreset]:
    """
    Preset lookup with simple aliasing. ``_`` and ``-`` are interchangeable.
    """
    if not name:
        return None
    canonical = name.strip().lower().replace("_", "-").replace(" ", "-")
    canonical = _ALIASES.get(canonical, canonical)
    for p in PRESETS:
        if p.name == canonical:
            return p
    return None


def resolve_preset(name: Optional[str]) -> InstrumentPreset:
    """Like ``get_preset`` but falls back to the default preset."""
    preset = get_preset(name)
    if preset is None:
        logger.warning("Unknown instrument preset %r; falling back to %r", name, DEFAULT_PRESET)
        preset = get_preset(DEFAULT_PRESET)
        assert preset is not None
    return preset
