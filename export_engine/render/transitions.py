"""Transition presets.

Every preset is a ``TransitionPreset`` record naming one of a handful of
shared formulas plus the parameters that formula reads. ``transition_style``
looks the preset up by name and evaluates it; unknown names fall back to a
linear cross-fade.

Boundary contract for every preset: the Main item is hidden at progress 0
and fully visible at progress 1, and the Outgoing item is fully visible at
progress 0. The dip presets keep a small opacity floor on both sides.
"""

import math
from dataclasses import dataclass, field
from typing import Callable, Mapping

from export_engine.render.style import ClipShape, Role, Style
from export_engine.utils.interpolation import Ramp, clamp, get_easing_function


def _pulse(amount: float, cycles: float = 1.0, base: float = 0.0) -> Ramp:
    return Ramp(base, base, pulse=amount, cycles=cycles)


FADE_IN = Ramp(0.0, 1.0)
FADE_OUT = Ramp(1.0, 0.0)


@dataclass(frozen=True)
class TransitionPreset:
    name: str
    formula: Callable[["TransitionPreset", float, Role, str], Style]
    curve: str = "linear"
    # Opacity floor for dips
    floor: float = 0.0
    # Outgoing opacity is curve(1 - p) instead of 1 - curve(p)
    mirror: bool = False
    # Motion ramps per role; "shift" is a translation along the direction vector
    main: Mapping[str, Ramp] = field(default_factory=dict)
    outgoing: Mapping[str, Ramp] = field(default_factory=dict)
    rotate_with_direction: bool = False
    # Deterministic horizontal jitter and hue shift (digital family)
    jitter: float = 0.0
    hue_shift: float = 0.0
    # Clip shape builders
    shape: str | None = None
    directional: bool = True
    fade_outgoing: bool = True
    stripes: int = 0
    checker_size: float = 0.1


def direction_vector(direction: str) -> tuple[int, int]:
    """Translation multipliers (x, y) for a transition direction."""
    if direction == "right":
        return -1, 0
    if direction == "up":
        return 0, 1
    if direction == "down":
        return 0, -1
    return 1, 0


# =============================================================================
# Formulas
# =============================================================================


def crossfade(preset: TransitionPreset, p: float, role: Role, direction: str) -> Style:
    ease = get_easing_function(preset.curve)
    if role is Role.MAIN:
        return Style(opacity=ease(p))
    if preset.mirror:
        return Style(opacity=ease(1 - p))
    return Style(opacity=1 - ease(p))


def dip(preset: TransitionPreset, p: float, role: Role, direction: str) -> Style:
    """Outgoing fades out over the first half, Main fades in over the second."""
    if role is Role.OUTGOING:
        return Style(opacity=1 - p * 2 if p < 0.5 else preset.floor)
    return Style(opacity=(p - 0.5) * 2 if p > 0.5 else preset.floor)


def flash(preset: TransitionPreset, p: float, role: Role, direction: str) -> Style:
    if role is Role.OUTGOING:
        return Style(opacity=1.0 if p < 0.5 else 0.0)
    return Style(opacity=1.0 if p >= 0.5 else 0.0)


def motion(preset: TransitionPreset, p: float, role: Role, direction: str) -> Style:
    ramps = preset.main if role is Role.MAIN else preset.outgoing
    values = {name: ramp.at(p) for name, ramp in ramps.items()}

    shift = values.pop("shift", None)
    if shift is not None:
        x_mult, y_mult = direction_vector(direction)
        values["translate_x_pct"] = values.get("translate_x_pct", 0.0) + x_mult * shift
        values["translate_y_pct"] = values.get("translate_y_pct", 0.0) + y_mult * shift

    if preset.rotate_with_direction and "rotate_deg" in values:
        values["rotate_deg"] *= 1 if direction == "left" else -1

    if preset.jitter:
        offset = math.sin(p * 50) * preset.jitter * (1 - p)
        if role is Role.OUTGOING:
            offset = -offset
        values["translate_x_pct"] = values.get("translate_x_pct", 0.0) + offset

    if preset.hue_shift:
        values["hue_rotate_deg"] = math.sin(p * math.pi) * preset.hue_shift

    return Style(**values)


def _circle(preset: TransitionPreset, e: float, direction: str) -> ClipShape:
    return ClipShape.circle(e)


def _box(preset: TransitionPreset, e: float, direction: str) -> ClipShape:
    inset = 0.5 - 0.5 * e
    return ClipShape.inset_rect(inset, inset, inset, inset)


def _diamond(preset: TransitionPreset, e: float, direction: str) -> ClipShape:
    # Corners of the frame sit on |x| + |y| = 1, so d must pass 1.0
    d = e * 1.05
    return ClipShape.polygon([(0.5, 0.5 - d), (0.5 + d, 0.5), (0.5, 0.5 + d), (0.5 - d, 0.5)])


def _cross(preset: TransitionPreset, e: float, direction: str) -> ClipShape:
    w = 0.5 * e
    return ClipShape.polygon(
        [
            (0.5 - w, 0), (0.5 + w, 0), (0.5 + w, 0.5 - w),
            (1, 0.5 - w), (1, 0.5 + w), (0.5 + w, 0.5 + w),
            (0.5 + w, 1), (0.5 - w, 1), (0.5 - w, 0.5 + w),
            (0, 0.5 + w), (0, 0.5 - w), (0.5 - w, 0.5 - w),
        ]
    )


def _heart(preset: TransitionPreset, e: float, direction: str) -> ClipShape:
    s = e * 2.0
    return ClipShape.polygon(
        [
            (0.5, 0.5 + s * 0.9),
            (0.5 - s * 0.9, 0.5 - s * 0.1),
            (0.5 - s * 0.5, 0.5 - s * 0.6),
            (0.5, 0.5 - s * 0.3),
            (0.5 + s * 0.5, 0.5 - s * 0.6),
            (0.5 + s * 0.9, 0.5 - s * 0.1),
        ]
    )


def _triangle(preset: TransitionPreset, e: float, direction: str) -> ClipShape:
    s = e * 2.0
    return ClipShape.polygon([(0.5, 0.5 - s), (0.5 + s, 0.5 + s), (0.5 - s, 0.5 + s)])


def _wipe(preset: TransitionPreset, e: float, direction: str) -> ClipShape:
    hidden = 1 - e
    if not preset.directional or direction == "left":
        return ClipShape.inset_rect(0, hidden, 0, 0)
    if direction == "right":
        return ClipShape.inset_rect(0, 0, 0, hidden)
    if direction == "up":
        return ClipShape.inset_rect(hidden, 0, 0, 0)
    return ClipShape.inset_rect(0, 0, hidden, 0)


def _barn_doors(preset: TransitionPreset, e: float, direction: str) -> ClipShape:
    inset = 0.5 - 0.5 * e
    if direction in ("left", "right"):
        return ClipShape.inset_rect(0, inset, 0, inset)
    return ClipShape.inset_rect(inset, 0, inset, 0)


def _blinds(preset: TransitionPreset, e: float, direction: str) -> ClipShape:
    return ClipShape.blinds(preset.stripes, e)


def _checker(preset: TransitionPreset, e: float, direction: str) -> ClipShape:
    return ClipShape.checker(preset.checker_size, e)


def _wedge(preset: TransitionPreset, e: float, direction: str) -> ClipShape:
    angle = e * 180
    return ClipShape.arc(-angle, angle)


def _clock(preset: TransitionPreset, e: float, direction: str) -> ClipShape:
    return ClipShape.arc(-90, -90 + 360 * e)


SHAPE_BUILDERS: dict[str, Callable[[TransitionPreset, float, str], ClipShape]] = {
    "circle": _circle,
    "box": _box,
    "diamond": _diamond,
    "cross": _cross,
    "heart": _heart,
    "triangle": _triangle,
    "wipe": _wipe,
    "barn-doors": _barn_doors,
    "blinds": _blinds,
    "checker": _checker,
    "wedge": _wedge,
    "clock": _clock,
}


def reveal(preset: TransitionPreset, p: float, role: Role, direction: str) -> Style:
    """Main is revealed through a growing clip shape."""
    if role is Role.OUTGOING:
        return Style(opacity=1 - p) if preset.fade_outgoing else Style()
    eased = get_easing_function("ease_out")(p)
    return Style(opacity=1.0, clip=SHAPE_BUILDERS[preset.shape](preset, eased, direction))


# =============================================================================
# Catalog
# =============================================================================


def _fade(name: str, curve: str = "linear", *, mirror: bool = False) -> TransitionPreset:
    return TransitionPreset(name, crossfade, curve=curve, mirror=mirror)


def _dip(name: str, floor: float = 0.05) -> TransitionPreset:
    return TransitionPreset(name, dip, floor=floor)


def _shape(name: str, shape: str, **kwargs) -> TransitionPreset:
    return TransitionPreset(name, reveal, shape=shape, **kwargs)


def _motion(name: str, main: dict, outgoing: dict, **kwargs) -> TransitionPreset:
    return TransitionPreset(name, motion, main=main, outgoing=outgoing, **kwargs)


_SLIDE_IN = Ramp(100, 0)
_PUSH_OUT = Ramp(0, -100)
_CUBE_MAIN = {
    "rotate_deg": Ramp(-90, 0, "ease_out"),
    "scale": Ramp(0.8, 1, "ease_out"),
    "opacity": Ramp(0, 1, "ease_out"),
}
_CUBE_OUTGOING = {
    "rotate_deg": Ramp(0, 90, "ease_out"),
    "scale": Ramp(1, 0.8, "ease_out"),
    "opacity": FADE_OUT,
}

TRANSITION_PRESETS: tuple[TransitionPreset, ...] = (
    # Dissolves
    _fade("dissolve", "ease_in_out"),
    _fade("film-dissolve", "ease_in_out_quad"),
    _fade("additive-dissolve"),
    _fade("luma-dissolve", "ease_out_quad"),
    _fade("non-additive-dissolve", "ease_in_quad", mirror=True),
    _fade("light-leak"),
    _fade("liquid"),
    _fade("pixelate"),
    _fade("random-blocks"),
    _dip("dip-to-black"),
    _dip("dip-to-white"),
    _dip("fade-dissolve"),
    _dip("fade-color", floor=0.01),
    TransitionPreset("flash", flash),
    # Slides and pushes
    _motion("slide", {"shift": _SLIDE_IN}, {}),
    _motion("push", {"shift": _SLIDE_IN}, {"shift": _PUSH_OUT}),
    _motion("band-slide", {"shift": _SLIDE_IN}, {"shift": _PUSH_OUT}),
    _motion(
        "whip",
        {"shift": _SLIDE_IN, "blur_px": _pulse(5)},
        {"shift": _PUSH_OUT, "blur_px": _pulse(5)},
    ),
    _motion(
        "stack",
        {"shift": _SLIDE_IN, "scale": Ramp(0.8, 1), "blur_px": Ramp(3, 0), "opacity": Ramp(0.3, 1)},
        {"scale": Ramp(1, 0.8), "blur_px": Ramp(0, 2), "opacity": Ramp(1, 0.7)},
    ),
    _motion(
        "flow",
        {"shift": _SLIDE_IN, "scale": Ramp(0.9, 1), "opacity": FADE_IN},
        {"shift": Ramp(0, -50), "scale": Ramp(1, 0.9), "opacity": FADE_OUT},
    ),
    # Movement
    _motion(
        "smooth-wipe",
        {"translate_x_pct": Ramp(50, 0), "opacity": FADE_IN},
        {"translate_x_pct": Ramp(0, -50), "opacity": FADE_OUT},
    ),
    _motion(
        "tile-drop",
        {"translate_y_pct": Ramp(-100, 0), "opacity": FADE_IN},
        {"translate_y_pct": Ramp(0, 100), "opacity": FADE_OUT},
    ),
    _motion("whip-pan", {"translate_x_pct": Ramp(100, 0)}, {"translate_x_pct": Ramp(0, -100)}),
    _motion("film-roll", {"translate_y_pct": Ramp(100, 0)}, {"translate_y_pct": Ramp(0, -100)}),
    # Zooms
    _motion(
        "cross-zoom",
        {"scale": Ramp(3, 1), "blur_px": _pulse(10), "opacity": FADE_IN},
        {"scale": Ramp(1, 4), "blur_px": _pulse(10), "opacity": FADE_OUT},
    ),
    _motion("zoom-in", {"scale": Ramp(0.5, 1), "opacity": FADE_IN}, {"opacity": FADE_OUT}),
    _motion("zoom-out", {"opacity": FADE_IN}, {"scale": Ramp(1, 1.5), "opacity": FADE_OUT}),
    _motion(
        "flash-zoom-in",
        {"scale": Ramp(2, 1), "opacity": FADE_IN},
        {"scale": Ramp(1, 2), "opacity": FADE_OUT},
    ),
    _motion(
        "flash-zoom-out",
        {"scale": Ramp(0.5, 1), "opacity": FADE_IN},
        {"scale": Ramp(1, 0.5), "opacity": FADE_OUT},
    ),
    _motion(
        "warp-zoom",
        {"scale": Ramp(0.5, 1), "blur_px": Ramp(5, 0), "opacity": FADE_IN},
        {"scale": Ramp(1, 2.5), "blur_px": Ramp(0, 5), "opacity": FADE_OUT},
    ),
    _motion("mosaic-grid", {"scale": Ramp(0.5, 1), "opacity": FADE_IN}, {"opacity": FADE_OUT}),
    _motion(
        "speed-blur",
        {"scale": Ramp(1.2, 1), "blur_px": Ramp(10, 0), "opacity": FADE_IN},
        {"scale": Ramp(1, 0.8), "blur_px": Ramp(0, 10), "opacity": FADE_OUT},
    ),
    _motion(
        "stretch",
        {"scale": Ramp(0.1, 1), "opacity": FADE_IN},
        {"scale": Ramp(1, 2), "opacity": FADE_OUT},
    ),
    _motion(
        "morph-cut",
        {"scale": Ramp(0.95, 1), "opacity": FADE_IN},
        {"scale": Ramp(1.05, 1), "opacity": FADE_OUT},
    ),
    _motion(
        "blur",
        {"blur_px": Ramp(20, 0), "opacity": FADE_IN},
        {"blur_px": Ramp(0, 20), "opacity": FADE_OUT},
    ),
    _motion(
        "zoom-blur",
        {"blur_px": Ramp(20, 0), "opacity": FADE_IN},
        {"blur_px": Ramp(0, 20), "opacity": FADE_OUT},
    ),
    # Spins and 3D
    _motion(
        "spin",
        {"rotate_deg": Ramp(-360, 0), "scale": Ramp(0, 1), "opacity": FADE_IN},
        {"rotate_deg": Ramp(0, 360), "scale": Ramp(1, 0), "opacity": FADE_OUT},
    ),
    _motion("cube-rotate", _CUBE_MAIN, _CUBE_OUTGOING, rotate_with_direction=True),
    _motion("flip-3d", _CUBE_MAIN, _CUBE_OUTGOING, rotate_with_direction=True),
    _motion(
        "spin-3d",
        {"rotate_deg": Ramp(-90, 0), "opacity": FADE_IN},
        {"rotate_deg": Ramp(0, 90), "opacity": FADE_OUT},
    ),
    _motion(
        "page-curl",
        {"rotate_deg": Ramp(-5, 0), "scale": Ramp(0.9, 1), "opacity": FADE_IN},
        {"opacity": FADE_OUT},
    ),
    _motion("page-peel", {"rotate_deg": Ramp(-5, 0), "opacity": FADE_IN}, {"opacity": FADE_OUT}),
    # Film and distortion
    _motion(
        "film-burn",
        {"scale": _pulse(0.1, base=1), "opacity": FADE_IN},
        {"scale": _pulse(0.1, base=1), "opacity": FADE_OUT},
    ),
    _motion(
        "ripple",
        {"scale": _pulse(0.05, cycles=3, base=1), "opacity": FADE_IN},
        {"opacity": FADE_OUT},
    ),
    _motion(
        "ripple-dissolve",
        {"scale": _pulse(0.05, cycles=4, base=1), "blur_px": _pulse(2), "opacity": FADE_IN},
        {"scale": _pulse(0.05, cycles=4, base=1), "blur_px": _pulse(2), "opacity": FADE_OUT},
    ),
    # Digital
    _motion("glitch", {"opacity": FADE_IN}, {"opacity": FADE_OUT}, jitter=5, hue_shift=45),
    _motion(
        "rgb-split",
        {"scale": _pulse(0.1, base=1), "opacity": FADE_IN},
        {"scale": _pulse(0.1, base=1), "opacity": FADE_OUT},
        hue_shift=20,
    ),
    _motion("chromatic-aberration", {"opacity": FADE_IN}, {"opacity": FADE_OUT}, hue_shift=30),
    _motion(
        "datamosh",
        {"scale": _pulse(0.08, cycles=3, base=1), "opacity": FADE_IN},
        {"scale": _pulse(0.08, cycles=3, base=1), "opacity": FADE_OUT},
    ),
    # Iris and shapes
    _shape("iris-round", "circle"),
    _shape("circle", "circle"),
    _shape("shape-circle", "circle"),
    _shape("brush-reveal", "circle"),
    _shape("ink-splash", "circle"),
    _shape("iris-box", "box"),
    _shape("iris-diamond", "diamond"),
    _shape("iris-cross", "cross"),
    _shape("shape-heart", "heart"),
    _shape("shape-triangle", "triangle"),
    # Wipes
    _shape("wipe", "wipe", fade_outgoing=False),
    _shape("simple-wipe", "wipe", fade_outgoing=False),
    _shape("multi-panel", "wipe", directional=False),
    _shape("barn-doors", "barn-doors"),
    _shape("split-screen", "barn-doors"),
    # Patterns
    _shape("checker-wipe", "checker", checker_size=0.1),
    _shape("venetian-blinds", "blinds", stripes=12),
    _shape("zig-zag", "blinds", stripes=8),
    _shape("band-wipe", "blinds", stripes=5),
    # Radial
    _shape("wedge-wipe", "wedge"),
    _shape("clock-wipe", "clock"),
    _shape("radial-wipe", "clock"),
)

PRESETS_BY_NAME: dict[str, TransitionPreset] = {preset.name: preset for preset in TRANSITION_PRESETS}

DEFAULT_PRESET = _fade("default")


def get_transition_preset(name: str) -> TransitionPreset:
    return PRESETS_BY_NAME.get(name, DEFAULT_PRESET)


def transition_style(type_: str, progress: float, role: Role, direction: str = "left") -> Style:
    """Style for one side of a transition.

    Args:
        type_: Preset name; unknown names cross-fade linearly
        progress: Position inside the transition window, clamped to [0, 1]
        role: ``Role.MAIN`` for the incoming item, ``Role.OUTGOING`` for its predecessor
        direction: left | right | up | down (ignored by non-directional presets)
    """
    preset = get_transition_preset(type_)
    return preset.formula(preset, clamp(progress), role, direction)
