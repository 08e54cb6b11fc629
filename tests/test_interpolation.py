"""Tests for easing curves, multi-phase segments and ramps."""

import math

import pytest

from export_engine.utils.interpolation import (
    EASING_FUNCTIONS,
    PhaseSegment,
    Ramp,
    clamp,
    get_easing_function,
    interpolate_segments,
    lerp,
)


class TestEasing:
    """Easing functions map [0, 1] onto [0, 1]."""

    @pytest.mark.parametrize("name", sorted(set(EASING_FUNCTIONS) - {"pulse"}))
    def test_endpoints(self, name):
        """Every monotonic curve starts at 0 and ends at 1."""
        fn = get_easing_function(name)
        assert fn(0) == pytest.approx(0, abs=1e-9)
        assert fn(1) == pytest.approx(1, abs=1e-9)

    def test_unknown_name_raises(self):
        """Unknown easing names are rejected with the list of valid ones."""
        with pytest.raises(ValueError, match="Unknown easing function"):
            get_easing_function("wobble")

    def test_ease_in_out_is_symmetric(self):
        """ease_in_out(0.5) is the midpoint."""
        assert get_easing_function("ease_in_out")(0.5) == pytest.approx(0.5)


class TestSegments:
    """Piecewise-linear curves."""

    def test_holds_values_outside_segments(self):
        """Before the first segment the first value holds; after the last the last value holds."""
        segments = [PhaseSegment(0.2, 0.5, 0.0, 1.0), PhaseSegment(0.5, 0.8, 1.0, 0.5)]
        assert interpolate_segments(0.0, segments) == 0.0
        assert interpolate_segments(0.35, segments) == pytest.approx(0.5)
        assert interpolate_segments(0.65, segments) == pytest.approx(0.75)
        assert interpolate_segments(1.0, segments) == pytest.approx(0.5)

    def test_empty_segments_rejected(self):
        with pytest.raises(ValueError):
            interpolate_segments(0.5, [])

    def test_zero_length_segment_jumps(self):
        """A zero-length segment yields its target value."""
        assert PhaseSegment(0.5, 0.5, 0, 3).value_at(0.5) == 3


class TestRamp:
    def test_linear_ramp(self):
        ramp = Ramp(100, 0)
        assert ramp.at(0) == 100
        assert ramp.at(0.25) == pytest.approx(75)
        assert ramp.at(1) == 0

    def test_pulse_is_zero_at_the_edges(self):
        """A pulse ramp returns to its base at both ends of the window."""
        ramp = Ramp(1, 1, pulse=0.1, cycles=3)
        assert ramp.at(0) == pytest.approx(1)
        assert ramp.at(1) == pytest.approx(1, abs=1e-9)
        assert ramp.at(0.5) == pytest.approx(1 + 0.1 * math.sin(0.5 * math.pi * 3))


def test_clamp_and_lerp():
    assert clamp(-1) == 0
    assert clamp(2) == 1
    assert clamp(5, 0, 10) == 5
    assert lerp(10, 20, 0.5) == 15
