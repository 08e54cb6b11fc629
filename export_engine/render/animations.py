"""Entrance and exit animation presets.

Presets come in two shapes:

* ``ramps``: each field runs ``start`` -> ``end`` over the cubic-eased
  progress (optionally through a further easing curve).
* ``phases``: each field is a piecewise-linear curve over the *raw* progress,
  for overshoot-and-settle motion and the flicker.

Exit animations play the same preset with progress reversed, so every preset
only has to describe its entrance.
"""

from dataclasses import dataclass, field
from typing import Mapping

from export_engine.render.style import Style
from export_engine.schemas.timeline import AnimationSpec
from export_engine.utils.interpolation import (
    PhaseSegment,
    Ramp,
    clamp,
    ease_in_out,
    interpolate_segments,
)


@dataclass(frozen=True)
class AnimationPreset:
    name: str
    ramps: Mapping[str, Ramp] = field(default_factory=dict)
    phases: Mapping[str, tuple[PhaseSegment, ...]] = field(default_factory=dict)

    def evaluate(self, progress: float) -> Style:
        eased = ease_in_out(progress)
        values = {name: ramp.at(eased) for name, ramp in self.ramps.items()}
        for name, segments in self.phases.items():
            values[name] = interpolate_segments(progress, segments)
        return Style(**values)


def _phases(*points: tuple[float, float, float, float]) -> tuple[PhaseSegment, ...]:
    return tuple(PhaseSegment(*point) for point in points)


def _ramp(name: str, **fields: tuple) -> AnimationPreset:
    """Ramp preset that also fades in, the common case."""
    ramps = {"opacity": Ramp(0, 1)}
    ramps.update({key: Ramp(*value) for key, value in fields.items()})
    return AnimationPreset(name, ramps=ramps)


FADE_IN_EARLY = _phases((0, 0.4, 0, 1))


def _bounce(name: str, axis: str, start: float, overshoot: float, rebound: float) -> AnimationPreset:
    return AnimationPreset(
        name,
        phases={
            axis: _phases((0, 0.6, start, overshoot), (0.6, 0.8, overshoot, rebound), (0.8, 1, rebound, 0)),
            "opacity": FADE_IN_EARLY,
        },
    )


_GROW_SETTLE = _phases((0, 0.6, 0.5, 1.1), (0.6, 1, 1.1, 1))
_SHAKE = AnimationPreset(
    "up-down-1",
    phases={
        "translate_y_pct": _phases(
            (0, 0.2, -20, 20), (0.2, 0.4, 20, -10), (0.4, 0.6, -10, 10), (0.6, 0.8, 10, -5), (0.8, 1, -5, 0)
        ),
        "opacity": _phases((0, 0.2, 0, 1)),
    },
)

ANIMATION_PRESETS: tuple[AnimationPreset, ...] = (
    AnimationPreset("fade-in", ramps={"opacity": Ramp(0, 1)}),
    # Multi-phase
    AnimationPreset(
        "boom",
        phases={"scale": _phases((0, 0.5, 0.8, 1.1), (0.5, 1, 1.1, 1)), "opacity": _phases((0, 0.5, 0, 1))},
    ),
    _bounce("bounce-left", "translate_x_pct", -100, 20, -10),
    _bounce("bounce-right", "translate_x_pct", 100, -20, 10),
    _bounce("bounce-up", "translate_y_pct", 100, -20, 10),
    _bounce("bounce-down", "translate_y_pct", -100, 20, -10),
    AnimationPreset(
        "pulse-open",
        phases={
            "scale": _phases((0, 0.5, 1.2, 0.9), (0.5, 1, 0.9, 1)),
            "blur_px": _phases((0, 0.5, 2, 0)),
            "opacity": _phases((0, 0.5, 0, 1)),
        },
    ),
    AnimationPreset(
        "old-tv",
        phases={
            "scale_y": _phases((0, 0.5, 0.01, 0.01), (0.5, 1, 0.01, 1)),
            "scale_x": _phases((0, 0.5, 0, 1)),
            "opacity": _phases((0, 0.5, 0, 1)),
        },
    ),
    AnimationPreset("grow-shrink", phases={"scale": _GROW_SETTLE, "opacity": FADE_IN_EARLY}),
    AnimationPreset("zoom-in-1", phases={"scale": _GROW_SETTLE, "opacity": _phases((0, 0.6, 0, 1))}),
    AnimationPreset(
        "blurry-eject",
        phases={
            "scale": _phases((0, 0.6, 0.5, 1.05), (0.6, 1, 1.05, 1)),
            "opacity": _phases((0, 0.6, 0, 1)),
            "blur_px": _phases((0, 0.6, 5, 0)),
        },
    ),
    _SHAKE,
    AnimationPreset("shake-up-down", phases=_SHAKE.phases),
    AnimationPreset(
        "screen-flicker",
        phases={
            "opacity": _phases(
                (0, 0.2, 0, 0.5),
                (0.2, 0.3, 0.5, 0.2),
                (0.3, 0.4, 0.2, 0.5),
                (0.4, 0.6, 0.5, 1),
                (0.6, 0.7, 1, 0.8),
                (0.7, 0.8, 0.8, 1),
            )
        },
    ),
    # Rotations
    _ramp("rotate-cw-1", rotate_deg=(-360, 0)),
    _ramp("rotate-cw-2", rotate_deg=(-180, 0)),
    _ramp("rotate-ccw", rotate_deg=(360, 0)),
    _ramp("spin-open", scale=(0.1, 1), rotate_deg=(720, 0)),
    _ramp("spin-1", rotate_deg=(-90, 0), scale=(0.5, 1)),
    _ramp("black-hole", scale=(0, 1), rotate_deg=(180, 0)),
    _ramp("shard-roll", rotate_deg=(360, 0), scale=(0, 1)),
    # Moves and slides
    _ramp("slide-down-up-1", translate_y_pct=(100, 0)),
    _ramp("move-left", translate_x_pct=(100, 0)),
    _ramp("move-right", translate_x_pct=(-100, 0)),
    _ramp("move-top", translate_y_pct=(100, 0)),
    _ramp("move-bottom", translate_y_pct=(-100, 0)),
    _ramp("fade-slide-left", translate_x_pct=(50, 0)),
    _ramp("fade-slide-right", translate_x_pct=(-50, 0)),
    _ramp("fade-slide-up", translate_y_pct=(50, 0)),
    _ramp("fade-slide-down", translate_y_pct=(-50, 0)),
    _ramp("to-left-1", translate_x_pct=(100, 0)),
    _ramp("to-left-2", translate_x_pct=(50, 0)),
    _ramp("to-right-1", translate_x_pct=(-100, 0)),
    _ramp("to-right-2", translate_x_pct=(-50, 0)),
    _ramp("up-down-2", translate_y_pct=(20, 0)),
    _ramp("pan-enter-left", translate_x_pct=(-100, 0)),
    _ramp("pan-enter-right", translate_x_pct=(100, 0)),
    _ramp("flip-down-1", scale=(0.3, 1), translate_y_pct=(-20, 0)),
    _ramp("flip-down-2", scale=(0.3, 1), translate_y_pct=(-20, 0)),
    _ramp("flip-up-1", scale=(0.3, 1), translate_y_pct=(20, 0)),
    _ramp("flip-up-2", scale=(0.3, 1), translate_y_pct=(20, 0)),
    _ramp("fly-in-rotate", translate_x_pct=(-100, 0), rotate_deg=(-90, 0)),
    _ramp("fly-in-flip", translate_x_pct=(-100, 0), scale_x=(0, 1, "ease_out_sine")),
    _ramp("fly-to-zoom", scale=(0, 1), translate_x_pct=(-100, 0)),
    _ramp("rgb-drop", translate_y_pct=(-50, 0), scale=(0.8, 1)),
    _ramp("tear-paper", translate_x_pct=(-20, 0), rotate_deg=(-5, 0)),
    # Zooms
    _ramp("fade-zoom-in", scale=(0.8, 1)),
    _ramp("fade-zoom-out", scale=(1.2, 1)),
    _ramp("flash-open", scale=(0.5, 1)),
    _ramp("round-open", scale=(0, 1)),
    _ramp("expansion", scale_x=(0, 1)),
    _ramp("stretch-to-full", scale=(0.5, 1)),
    _ramp("tiny-zoom", scale=(0.1, 1)),
    _ramp("zoom-in-center", scale=(0, 1)),
    _ramp("zoom-in-left", scale=(0, 1)),
    _ramp("zoom-in-right", scale=(0, 1)),
    _ramp("zoom-in-top", scale=(0, 1)),
    _ramp("zoom-in-bottom", scale=(0, 1)),
    _ramp("zoom-in-2", scale=(0.2, 1)),
    _ramp("zoom-out-1", scale=(1.5, 1)),
    _ramp("zoom-out-2", scale=(2, 1)),
    _ramp("zoom-out-3", scale=(3, 1), blur_px=(5, 0)),
    _ramp("wham", scale=(2, 1), rotate_deg=(10, 0), blur_px=(10, 0)),
    # Blurs
    _ramp("motion-blur", scale=(1.1, 1), blur_px=(20, 0)),
    _ramp("blur-in", blur_px=(10, 0)),
    _ramp("pixelated-motion", blur_px=(10, 0)),
    _ramp("flash-drop", translate_y_pct=(-50, 0), blur_px=(10, 0)),
    _ramp("stretch-in-left", scale_x=(2, 1), translate_x_pct=(-50, 0), blur_px=(5, 0)),
    _ramp("stretch-in-right", scale_x=(2, 1), translate_x_pct=(50, 0), blur_px=(5, 0)),
    _ramp("stretch-in-up", scale_y=(2, 1), translate_y_pct=(50, 0), blur_px=(5, 0)),
    _ramp("stretch-in-down", scale_y=(2, 1), translate_y_pct=(-50, 0), blur_px=(5, 0)),
)

PRESETS_BY_NAME: dict[str, AnimationPreset] = {preset.name: preset for preset in ANIMATION_PRESETS}

DEFAULT_PRESET = AnimationPreset("default", ramps={"opacity": Ramp(0, 1)})


def animation_progress(
    spec: AnimationSpec, item_start: float, item_duration: float, current_time: float
) -> float | None:
    """Raw 0-1 progress of the animation, or None outside its windows.

    The enter window is ``[0, duration)`` of item time; the exit window is
    ``[item_duration - duration, item_duration]`` with progress reversed.
    With ``timing="both"`` the exit window wins where the two overlap.
    """
    item_time = current_time - item_start
    anim_duration = spec.duration or 1.0
    progress = None

    if spec.timing in ("enter", "both") and 0 <= item_time < anim_duration:
        progress = item_time / anim_duration

    if spec.timing in ("exit", "both"):
        exit_start = item_duration - anim_duration
        if exit_start <= item_time <= item_duration:
            progress = 1 - (item_time - exit_start) / anim_duration

    if progress is None:
        return None
    return clamp(progress)


def animation_style(
    spec: AnimationSpec | None, item_start: float, item_duration: float, current_time: float
) -> Style:
    """Style contributed by an item's animation at ``current_time``.

    Returns an empty ``Style`` when the item has no animation or the time is
    outside every animation window.
    """
    if spec is None:
        return Style()
    progress = animation_progress(spec, item_start, item_duration, current_time)
    if progress is None:
        return Style()
    preset = PRESETS_BY_NAME.get(spec.type, DEFAULT_PRESET)
    return preset.evaluate(progress)
