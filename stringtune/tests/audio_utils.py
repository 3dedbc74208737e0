import numpy as np


def generate_sine_wave(freq_hz: float, duration_sec: float, sr: int = 48000, amplitude: float = 0.5) -> np.ndarray:
    """Generates a pure sine wave."""
    t = np.arange(int(duration_sec * sr)) / float(sr)
    audio = amplitude * np.sin(2 * np.pi * freq_hz * t)
    return audio.astype(np.float64)


def generate_plucked_string(
    freq_hz: float,
    duration_sec: float,
    sr: int = 48000,
    amplitude: float = 0.5,
    harmonics=(1.0, 0.5, 0.33, 0.25),
    decay_s: float = 2.0,
) -> np.ndarray:
    """Fundamental plus decaying harmonics, roughly what a picked string looks like."""
    t = np.arange(int(duration_sec * sr)) / float(sr)
    audio = np.zeros_like(t)
    for k, weight in enumerate(harmonics, start=1):
        audio += weight * np.sin(2 * np.pi * freq_hz * k * t)
    audio *= np.exp(-t / decay_s)
    peak = np.max(np.abs(audio)) or 1.0
    return (amplitude * audio / peak).astype(np.float64)


def generate_silence(duration_sec: float, sr: int = 48000) -> np.ndarray:
    """Generates silence."""
    return np.zeros(int(duration_sec * sr), dtype=np.float64)


def generate_noise(duration_sec: float, sr: int = 48000, amplitude: float = 0.1, seed: int = 0) -> np.ndarray:
    """Generates white noise."""
    rng = np.random.default_rng(seed)
    return (rng.random(int(duration_sec * sr)) * 2 - 1) * amplitude


def chunk(audio: np.ndarray, block_size: int):
    """Consecutive full blocks, as an audio callback would deliver them."""
    n = len(audio) // block_size
    return [audio[i * block_size:(i + 1) * block_size] for i in range(n)]


def last_result(engine, audio: np.ndarray, tuning: str):
    """Stream ``audio`` through ``engine`` and return the final non-None result."""
    result = None
    for block in chunk(audio, engine.config.block_size):
        r = engine.detect(block, tuning)
        if r is not None:
            result = r
    return result
