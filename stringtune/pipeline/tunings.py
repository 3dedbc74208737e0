# stringtune/pipeline/tunings.py
"""
Tuning registry: tuning-scheme id -> {note name -> target Hz}.

One registry is shared by every engine in a process and passed around
explicitly.  Reads (nearest-note lookups on the audio path) and writes
(registrations) serialise through a single lock.
"""
from __future__ import annotations

import math
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Mapping, Optional, Sequence, Tuple, Union

import librosa
from librosa.util.exceptions import ParameterError

from .models import NoteMatch, TuningScheme, TuningTable

# Lock waits longer than this mean the registry is wedged
LOCK_TIMEOUT_S = 1.0

NoteSpec = Union[Mapping[str, float], Sequence[Tuple[str, float]]]

DEFAULT_TUNINGS: Dict[str, Tuple[str, Dict[str, float]]] = {
    "standard-e": ("Standard E", {
        "E2": 82.41, "A2": 110.00, "D3": 146.83, "G3": 196.00, "B3": 246.94, "E4": 329.63,
    }),
    "flat-e": ("Standard Eb (half-step down)", {
        "Eb2": 77.78, "Ab2": 103.83, "Db3": 138.59, "Gb3": 185.00, "Bb3": 233.08, "Eb4": 311.13,
    }),
    "drop-d": ("Drop D", {
        "D2": 73.42, "A2": 110.00, "D3": 146.83, "G3": 196.00, "B3": 246.94, "E4": 329.63,
    }),
}


class TuningRegistrationError(ValueError):
    """Raised when a tuning scheme cannot be registered as given."""


class RegistryLockError(RuntimeError):
    """Raised when the registry lock cannot be acquired; the registry is unusable."""


def _build_scheme(tuning_id: str, label: str, pairs: Sequence[Tuple[str, float]]) -> TuningScheme:
    if not tuning_id:
        raise TuningRegistrationError("tuning id must be a non-empty string")
    if not pairs:
        raise TuningRegistrationError(f"tuning {tuning_id!r} has no notes")

    seen = set()
    cleaned = []
    for name, freq in pairs:
        name = str(name)
        try:
            hz = float(freq)
        except (TypeError, ValueError) as exc:
            raise TuningRegistrationError(f"note {name!r}: frequency {freq!r} is not a number") from exc
        if name in seen:
            raise TuningRegistrationError(f"duplicate note name {name!r} in tuning {tuning_id!r}")
        if not math.isfinite(hz) or hz <= 0.0:
            raise TuningRegistrationError(f"note {name!r}: frequency must be positive, got {freq!r}")
        seen.add(name)
        cleaned.append((name, hz))

    cleaned.sort(key=lambda p: (p[1], p[0]))
    return TuningScheme(tuning_id=tuning_id, label=label or tuning_id, notes=tuple(cleaned))


class TuningRegistry:
    """Thread-safe mapping of tuning schemes."""

    def __init__(self, lock_timeout: float = LOCK_TIMEOUT_S):
        self._lock = threading.Lock()
        self._lock_timeout = float(lock_timeout)
        self._schemes: Dict[str, TuningScheme] = {}

    @classmethod
    def with_defaults(cls) -> "TuningRegistry":
        registry = cls()
        for tuning_id, (label, notes) in DEFAULT_TUNINGS.items():
            registry.register(tuning_id, notes, label=label)
        return registry

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise RegistryLockError(f"tuning registry lock not acquired within {self._lock_timeout}s")
        try:
            yield
        finally:
            self._lock.release()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def register(self, tuning_id: str, notes: NoteSpec, label: Optional[str] = None) -> TuningScheme:
        """Register (or overwrite) ``tuning_id``."""
        pairs = list(notes.items()) if isinstance(notes, Mapping) else list(notes)
        scheme = _build_scheme(tuning_id, label or tuning_id, pairs)
        with self._locked():
            self._schemes[tuning_id] = scheme
        return scheme

    def register_tuning(
        self,
        tuning_id: str,
        label: str,
        note_names: Sequence[str],
        frequencies: Sequence[float],
    ) -> TuningTable:
        """Register from parallel name/frequency arrays and return the updated table."""
        if len(note_names) != len(frequencies):
            raise TuningRegistrationError(
                f"tuning {tuning_id!r}: {len(note_names)} note names but {len(frequencies)} frequencies"
            )
        self.register(tuning_id, list(zip(note_names, frequencies)), label=label)
        return self.list_tunings()

    def register_from_note_names(self, tuning_id: str, label: str, note_names: Sequence[str]) -> TuningScheme:
        """Register an equal-tempered (A4 = 440 Hz) scheme from scientific pitch names."""
        try:
            freqs = [float(librosa.note_to_hz(name)) for name in note_names]
        except ParameterError as exc:
            raise TuningRegistrationError(f"tuning {tuning_id!r}: {exc}") from exc
        return self.register(tuning_id, list(zip(note_names, freqs)), label=label)

    def unregister(self, tuning_id: str) -> bool:
        with self._locked():
            return self._schemes.pop(tuning_id, None) is not None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, tuning_id: str) -> Optional[TuningScheme]:
        with self._locked():
            return self._schemes.get(tuning_id)

    def list_tunings(self) -> TuningTable:
        with self._locked():
            return [self._schemes[k] for k in sorted(self._schemes)]

    def nearest_note(self, tuning_id: str, freq: float) -> Optional[NoteMatch]:
        """
        Closest note to ``freq`` in ``tuning_id`` by absolute Hz distance.

        Ties go to the lower note frequency (then the note name), so the
        answer never depends on insertion order.
        """
        if not math.isfinite(freq) or freq <= 0.0:
            return None
        with self._locked():
            scheme = self._schemes.get(tuning_id)
        if scheme is None:
            return None

        name, target = min(scheme.notes, key=lambda p: (abs(p[1] - freq), p[1], p[0]))
        return NoteMatch(note=name, frequency=target, distance=abs(target - freq))

    def __contains__(self, tuning_id: object) -> bool:
        with self._locked():
            return tuning_id in self._schemes

    def __len__(self) -> int:
        with self._locked():
            return len(self._schemes)
