"""Structured session logging for tuning runs.

A ``PipelineLogger`` owns one run directory with a JSONL event log and a
``timing.json`` summary. Per-frame code only bumps in-memory counters; the
counters are written once, at ``finalize``. Writes are best-effort: an I/O
failure is reported through the module logger and never reaches the caller.
"""
from __future__ import annotations

import importlib.util
import json
import logging
import os
import time
from contextlib import contextmanager
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_DEPENDENCIES = ("numpy", "scipy", "librosa", "soundfile")


def json_default(o: Any) -> Any:
    """``json.dumps`` fallback for numpy scalars/arrays, dataclasses and enums."""
    if isinstance(o, np.generic):
        return o.item()
    if isinstance(o, np.ndarray):
        return o.tolist()
    if is_dataclass(o) and not isinstance(o, type):
        return asdict(o)
    if isinstance(o, Enum):
        return o.value
    return str(o)


def dependency_snapshot(modules: Sequence[str]) -> Dict[str, bool]:
    snapshot: Dict[str, bool] = {}
    for name in modules:
        try:
            snapshot[name] = importlib.util.find_spec(name) is not None
        except (ImportError, ValueError):
            snapshot[name] = False
    return snapshot


class PipelineLogger:
    def __init__(
        self,
        base_dir: str = "results",
        run_name: Optional[str] = None,
        dependencies: Sequence[str] = DEFAULT_DEPENDENCIES,
    ):
        self.run_name = run_name or f"session_{int(time.time())}"
        self.run_dir = os.path.join(base_dir, self.run_name)
        os.makedirs(self.run_dir, exist_ok=True)
        self.logs_path = os.path.join(self.run_dir, "logs.jsonl")
        self.timing_path = os.path.join(self.run_dir, "timing.json")

        self._timing: Dict[str, float] = {}
        self._counters: Dict[str, int] = {}
        self._t0 = time.perf_counter()

        self.log_event("session", "start", {"run_dir": self.run_dir, "dependencies": dependency_snapshot(dependencies)})

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def log_event(self, stage: str, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        entry: Dict[str, Any] = {"stage": stage, "event": event, "timestamp": time.time()}
        for key, value in (payload or {}).items():
            try:
                json.dumps(value, default=json_default)
            except (TypeError, ValueError):
                value = repr(value)
            entry[key] = value
        self._append_lines([json.dumps(entry, default=json_default)])

    def emit_config(self, stage: str, config_obj: Any, extras: Optional[Dict[str, Any]] = None) -> None:
        if is_dataclass(config_obj) and not isinstance(config_obj, type):
            config: Any = asdict(config_obj)
        else:
            config = str(config_obj)
        payload: Dict[str, Any] = {"config": config}
        payload.update(extras or {})
        self.log_event(stage, "config", payload)

    # ------------------------------------------------------------------
    # Counters and timing
    # ------------------------------------------------------------------
    def count(self, key: str, n: int = 1) -> None:
        self._counters[key] = self._counters.get(key, 0) + int(n)

    @property
    def counters(self) -> Dict[str, int]:
        return dict(self._counters)

    def record_timing(self, stage: str, duration_s: float, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._timing[stage] = float(duration_s)
        self.log_event(stage, "timing", {"duration_s": float(duration_s), **(metadata or {})})

    @contextmanager
    def timed(self, stage: str, **metadata: Any) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_timing(stage, time.perf_counter() - start, metadata)

    @property
    def timing(self) -> Dict[str, float]:
        return dict(self._timing)

    def finalize(self) -> None:
        self._timing.setdefault("total", time.perf_counter() - self._t0)
        if self._counters:
            self.log_event("session", "counters", dict(self._counters))
        self.write_json("timing.json", self._timing)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------
    def write_json(self, filename: str, obj: Any) -> None:
        path = os.path.join(self.run_dir, filename)
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(obj, f, ensure_ascii=False, indent=2, default=json_default)
        except OSError as e:
            logger.warning("Could not write %s: %s", path, e)

    def _append_lines(self, lines: List[str]) -> None:
        try:
            with open(self.logs_path, "a", encoding="utf-8") as f:
                f.writelines(line + "\n" for line in lines)
        except OSError as e:
            logger.warning("Could not append to %s: %s", self.logs_path, e)
