"""Interpolation utilities shared by the transition and animation engines.

Provides easing curves, a clamped ``lerp`` and multi-phase segment evaluation.
Preset tables reference easing curves by name so that every preset stays a
plain data record.

Usage:
    from export_engine.utils.interpolation import get_easing_function, PhaseSegment

    ease = get_easing_function("ease_in_out")
    value = ease(0.25)

    # Overshoot-and-settle: -100 -> 20 -> 0
    segments = (PhaseSegment(0.0, 0.6, -100, 20), PhaseSegment(0.6, 1.0, 20, 0))
    value = interpolate_segments(0.7, segments)
"""

import math
from dataclasses import dataclass
from typing import Callable, Sequence


# =============================================================================
# Easing Functions
# =============================================================================


def linear(t: float) -> float:
    """Linear easing (no easing)."""
    return t


def ease_in(t: float) -> float:
    """Ease in (cubic)."""
    return t * t * t


def ease_out(t: float) -> float:
    """Ease out (cubic)."""
    return 1 - (1 - t) ** 3


def ease_in_out(t: float) -> float:
    """Ease in-out (cubic)."""
    if t < 0.5:
        return 4 * t * t * t
    else:
        return 1 - (-2 * t + 2) ** 3 / 2


def ease_in_quad(t: float) -> float:
    """Ease in (quadratic)."""
    return t * t


def ease_out_quad(t: float) -> float:
    """Ease out (quadratic)."""
    return 1 - (1 - t) * (1 - t)


def ease_in_out_quad(t: float) -> float:
    """Ease in-out (quadratic)."""
    if t < 0.5:
        return 2 * t * t
    else:
        return 1 - (-2 * t + 2) ** 2 / 2


def ease_out_sine(t: float) -> float:
    """Ease out (sine)."""
    return math.sin((t * math.pi) / 2)


def pulse(t: float) -> float:
    """Half sine wave: 0 at both ends, 1 at the midpoint."""
    return math.sin(t * math.pi)


# Easing name -> function lookup for table-driven presets
EASING_FUNCTIONS: dict[str, Callable[[float], float]] = {
    "linear": linear,
    "ease_in": ease_in,
    "ease_out": ease_out,
    "ease_in_out": ease_in_out,
    "ease_in_quad": ease_in_quad,
    "ease_out_quad": ease_out_quad,
    "ease_in_out_quad": ease_in_out_quad,
    "ease_out_sine": ease_out_sine,
    "pulse": pulse,
}


def get_easing_function(name: str) -> Callable[[float], float]:
    """Get an easing function by name.

    Args:
        name: Easing function name (e.g., "ease_in_out", "linear")

    Returns:
        Easing function

    Raises:
        ValueError: If the easing name is not recognized
    """
    fn = EASING_FUNCTIONS.get(name)
    if fn is None:
        raise ValueError(
            f"Unknown easing function: {name}. "
            f"Available: {', '.join(EASING_FUNCTIONS.keys())}"
        )
    return fn


# =============================================================================
# Core Interpolation
# =============================================================================


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def lerp(start: float, end: float, t: float) -> float:
    return start + (end - start) * t


@dataclass(frozen=True)
class PhaseSegment:
    """One monotonic sub-phase of a multi-phase curve."""

    p_start: float
    p_end: float
    from_value: float
    to_value: float

    def value_at(self, progress: float) -> float:
        span = self.p_end - self.p_start
        if span <= 0:
            return self.to_value
        return lerp(self.from_value, self.to_value, clamp((progress - self.p_start) / span))


def interpolate_segments(progress: float, segments: Sequence[PhaseSegment]) -> float:
    """Evaluate a piecewise-linear curve.

    Inside a segment the value is interpolated linearly; before the first
    segment it holds the first ``from_value``, after the last (or in a gap)
    it holds the most recent ``to_value``.

    Args:
        progress: Position in [0, 1]
        segments: Segments ordered by ``p_start``

    Returns:
        Curve value at ``progress``
    """
    if not segments:
        raise ValueError("segments must not be empty")

    if progress < segments[0].p_start:
        return segments[0].from_value

    value = segments[0].from_value
    for segment in segments:
        if progress < segment.p_start:
            break
        value = segment.value_at(progress)
    return value


@dataclass(frozen=True)
class Ramp:
    """Value going ``start`` -> ``end`` over eased progress.

    ``pulse`` adds ``pulse * sin(progress * pi * cycles)``, which is zero at
    both ends of the window.
    """

    start: float = 0.0
    end: float = 0.0
    curve: str = "linear"
    pulse: float = 0.0
    cycles: float = 1.0

    def at(self, progress: float) -> float:
        value = lerp(self.start, self.end, get_easing_function(self.curve)(progress))
        if self.pulse:
            value += self.pulse * math.sin(progress * math.pi * self.cycles)
        return value
