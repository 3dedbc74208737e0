"""Harmonic-lock and octave-error correction. Pure functions over frequency ratios."""
from __future__ import annotations

import math


def cents_between(freq: float, reference: float) -> float:
    return 1200.0 * math.log2(freq / reference)


def harmonic_correct(refined: float, approx: float, tolerance: float = 0.1) -> float:
    """
    Undo a lock onto an upper harmonic (ratio 2, 3 or 4) or a sub-harmonic
    (ratio ~0.5) between the refined and the approximate estimate.
    """
    if refined <= 0.0 or approx <= 0.0:
        return refined
    ratio = refined / approx
    nearest = round(ratio)
    if 1.5 <= nearest <= 4.0 and abs(ratio - nearest) < tolerance:
        return refined / nearest
    if 0.4 < ratio < 0.6:
        return refined * 2.0
    return refined


def octave_correct(detected: float, expected: float, tolerance_cents: float = 50.0) -> float:
    """
    Snap ``detected`` back by one octave when it sits closer to ``2*expected``
    or ``expected/2`` than to ``expected`` itself. Needs a known target.
    """
    if expected <= 0.0 or detected <= 0.0:
        return detected

    direct = abs(cents_between(detected, expected))
    octave_up = abs(cents_between(detected, expected * 2.0))
    octave_down = abs(cents_between(detected, expected / 2.0))

    if octave_up <= tolerance_cents and octave_up < direct:
        return detected / 2.0
    if octave_down <= tolerance_cents and octave_down < direct:
        return detected * 2.0
    return detected
