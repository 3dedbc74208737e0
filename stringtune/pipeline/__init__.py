"""Pitch pipeline package.

Filters, estimators, correction heuristics and the ``PitchEngine`` that ties
them together for one audio source.
"""

from __future__ import annotations

from .config import (
    DEFAULT_PRESET,
    PRESETS,
    EngineConfig,
    FeatureConfig,
    FeatureFlags,
    FilterConfig,
    FilterFlags,
    InstrumentPreset,
    get_preset,
    resolve_preset,
)
from .engine import NOISE_FLOOR_RMS, PitchEngine
from .models import NoteMatch, PitchResult, TuningScheme, TuningTable
from .tunings import (
    DEFAULT_TUNINGS,
    RegistryLockError,
    TuningRegistrationError,
    TuningRegistry,
)

__all__ = [
    "DEFAULT_PRESET",
    "DEFAULT_TUNINGS",
    "EngineConfig",
    "FeatureConfig",
    "FeatureFlags",
    "FilterConfig",
    "FilterFlags",
    "InstrumentPreset",
    "NOISE_FLOOR_RMS",
    "NoteMatch",
    "PRESETS",
    "PitchEngine",
    "PitchResult",
    "RegistryLockError",
    "TuningRegistrationError",
    "TuningRegistry",
    "TuningScheme",
    "TuningTable",
    "get_preset",
    "resolve_preset",
]
