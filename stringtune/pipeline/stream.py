# stringtune/pipeline/stream.py
"""
Offline driver: feed a whole recording through one ``PitchEngine`` block by
block, the way a live audio callback would.
"""
from __future__ import annotations

import logging
import time
import warnings
from dataclasses import dataclass
from typing import List, Optional

import librosa
import numpy as np
import soundfile as sf

from .engine import PitchEngine
from .instrumentation import PipelineLogger
from .models import PitchResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameDetection:
    index: int
    time_s: float
    result: Optional[PitchResult]

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "time_s": self.time_s,
            "result": self.result.to_dict() if self.result is not None else None,
        }


def frame_audio(y: np.ndarray, frame_length: int, hop_length: int) -> np.ndarray:
    """
    Read-only ``(n_frames, frame_length)`` view of ``y``. A signal shorter than
    one frame is zero-padded to a single frame; a trailing partial frame is dropped.
    """
    if frame_length <= 0 or hop_length <= 0:
        raise ValueError(f"frame_length and hop_length must be positive ({frame_length}, {hop_length})")
    y = np.ascontiguousarray(y, dtype=np.float64).reshape(-1)
    if len(y) == 0:
        return np.zeros((0, frame_length), dtype=np.float64)
    if len(y) < frame_length:
        y = np.pad(y, (0, frame_length - len(y)), mode="constant")

    n_frames = 1 + (len(y) - frame_length) // hop_length
    return np.lib.stride_tricks.as_strided(
        y,
        shape=(n_frames, frame_length),
        strides=(y.strides[0] * hop_length, y.strides[0]),
        writeable=False,
    )


def load_audio(path: str, target_sr: int) -> np.ndarray:
    """Read a file with soundfile, downmix to mono and resample to ``target_sr``."""
    audio, sr = sf.read(path, dtype="float32", always_2d=True)
    if audio.shape[0] == 0:
        raise ValueError(f"Audio file is empty: {path}")
    y = librosa.to_mono(audio.T)
    if int(sr) != int(target_sr):
        logger.info("Resampling %s from %d Hz to %d Hz", path, sr, target_sr)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            y = librosa.resample(y, orig_sr=int(sr), target_sr=int(target_sr))
    return np.asarray(y, dtype=np.float64)


def analyze_audio(
    y: np.ndarray,
    sr: int,
    engine: PitchEngine,
    tuning_id: str,
    hop: Optional[int] = None,
    pipeline_logger: Optional[PipelineLogger] = None,
) -> List[FrameDetection]:
    """
    Run ``y`` through ``engine`` one block at a time.

    ``hop`` defaults to the engine block size. A smaller hop overlaps frames,
    which replays samples through the stateful filter chain.
    """
    if int(sr) != engine.config.sample_rate:
        raise ValueError(f"Audio sample rate {sr} does not match engine rate {engine.config.sample_rate}")

    block = engine.config.block_size
    hop = int(hop or block)
    frames = frame_audio(y, block, hop)

    t0 = time.perf_counter()
    detections: List[FrameDetection] = []
    for i, frame in enumerate(frames):
        result = engine.detect(frame, tuning_id)
        detections.append(FrameDetection(index=i, time_s=i * hop / float(sr), result=result))

    voiced = sum(1 for d in detections if d.result is not None)
    logger.info("Analysed %d frames, %d with pitch", len(detections), voiced)
    if pipeline_logger is not None:
        pipeline_logger.record_timing(
            "analyze",
            time.perf_counter() - t0,
            {"frames": len(detections), "voiced": voiced, "tuning": tuning_id, "hop": hop},
        )
    return detections
