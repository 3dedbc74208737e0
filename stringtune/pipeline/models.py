# stringtune/pipeline/models.py
"""Dataclasses shared by the tuning registry and the pitch engine."""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Tuple


@dataclass(frozen=True)
class TuningScheme:
    tuning_id: str
    label: str
    notes: Tuple[Tuple[str, float], ...]    # (name, hz) sorted by hz

    @property
    def note_names(self) -> List[str]:
        return [name for name, _ in self.notes]

    @property
    def frequencies(self) -> List[float]:
        return [freq for _, freq in self.notes]

    def as_mapping(self) -> Dict[str, float]:
        return {name: freq for name, freq in self.notes}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.tuning_id,
            "label": self.label,
            "notes": self.as_mapping(),
        }


# Snapshot returned by registry listings (sorted by tuning id)
TuningTable = List[TuningScheme]


@dataclass(frozen=True)
class NoteMatch:
    note: str
    frequency: float        # target note frequency (Hz)
    distance: float         # |target - detected| (Hz)


@dataclass(frozen=True)
class PitchResult:
    frequency: float        # emitted frequency after refinement/correction/smoothing
    raw_frequency: float    # base estimator output
    tuning: str
    note: str
    note_frequency: float
    distance: float         # Hz, always >= 0
    cents: float            # 1200 * log2(frequency / note_frequency)
    confidence: float       # 0..1
    rms: float              # input RMS, before AGC and filtering

    @property
    def in_tune(self) -> bool:
        return abs(self.cents) < 5.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
