"""Typed style records produced by the transition and animation engines.

A ``Style`` is sparse: ``None`` means "not touched by this effect". Styles
from independent sources (static item properties, transition, animation) are
merged with ``combine``, which is total and order-independent for every field
except the clip shape (the last non-empty clip wins).
"""

from dataclasses import dataclass
from enum import Enum


class Role(Enum):
    """Which side of a transition an item is on."""

    MAIN = "main"
    OUTGOING = "outgoing"


class ClipKind(Enum):
    CIRCLE = "circle"
    INSET = "inset"
    POLYGON = "polygon"
    ARC = "arc"
    BLINDS = "blinds"
    CHECKER = "checker"


@dataclass(frozen=True)
class ClipShape:
    """Geometric reveal mask in item-local normalized coordinates.

    ``radius`` is a fraction of the item's half-diagonal, insets are fractions
    of the item size, polygon points are normalized 0-1, and ``reveal`` is the
    0-1 progress for the blinds and checker patterns.
    """

    kind: ClipKind
    radius: float | None = None
    inset: tuple[float, float, float, float] | None = None  # top, right, bottom, left
    points: tuple[tuple[float, float], ...] | None = None
    arc_start_deg: float | None = None
    arc_end_deg: float | None = None
    stripe_count: int | None = None
    checker_size: float | None = None
    reveal: float | None = None

    @classmethod
    def circle(cls, radius: float) -> "ClipShape":
        return cls(ClipKind.CIRCLE, radius=radius)

    @classmethod
    def inset_rect(cls, top: float, right: float, bottom: float, left: float) -> "ClipShape":
        return cls(ClipKind.INSET, inset=(top, right, bottom, left))

    @classmethod
    def polygon(cls, points) -> "ClipShape":
        return cls(ClipKind.POLYGON, points=tuple((float(x), float(y)) for x, y in points))

    @classmethod
    def arc(cls, start_deg: float, end_deg: float) -> "ClipShape":
        return cls(ClipKind.ARC, arc_start_deg=start_deg, arc_end_deg=end_deg)

    @classmethod
    def blinds(cls, stripe_count: int, reveal: float) -> "ClipShape":
        return cls(ClipKind.BLINDS, stripe_count=stripe_count, reveal=reveal)

    @classmethod
    def checker(cls, checker_size: float, reveal: float) -> "ClipShape":
        return cls(ClipKind.CHECKER, checker_size=checker_size, reveal=reveal)


def _multiply(a: float | None, b: float | None) -> float | None:
    if a is None and b is None:
        return None
    return (1.0 if a is None else a) * (1.0 if b is None else b)


def _add(a: float | None, b: float | None) -> float | None:
    if a is None and b is None:
        return None
    return (a or 0.0) + (b or 0.0)


@dataclass(frozen=True)
class Style:
    opacity: float | None = None
    scale: float | None = None
    scale_x: float | None = None
    scale_y: float | None = None
    rotate_deg: float | None = None
    translate_x_pct: float | None = None
    translate_y_pct: float | None = None
    blur_px: float | None = None
    hue_rotate_deg: float | None = None
    clip: ClipShape | None = None

    def is_empty(self) -> bool:
        return self == IDENTITY

    def combine(self, other: "Style") -> "Style":
        return combine(self, other)

    @property
    def effective_opacity(self) -> float:
        return 1.0 if self.opacity is None else self.opacity

    @property
    def effective_scale_x(self) -> float:
        return (1.0 if self.scale is None else self.scale) * (1.0 if self.scale_x is None else self.scale_x)

    @property
    def effective_scale_y(self) -> float:
        return (1.0 if self.scale is None else self.scale) * (1.0 if self.scale_y is None else self.scale_y)


IDENTITY = Style()


def combine(a: Style, b: Style) -> Style:
    """Merge two styles.

    Opacity and scales multiply; rotation, translation, blur and hue shift
    add. A clip shape from ``b`` replaces one from ``a``.
    """
    return Style(
        opacity=_multiply(a.opacity, b.opacity),
        scale=_multiply(a.scale, b.scale),
        scale_x=_multiply(a.scale_x, b.scale_x),
        scale_y=_multiply(a.scale_y, b.scale_y),
        rotate_deg=_add(a.rotate_deg, b.rotate_deg),
        translate_x_pct=_add(a.translate_x_pct, b.translate_x_pct),
        translate_y_pct=_add(a.translate_y_pct, b.translate_y_pct),
        blur_px=_add(a.blur_px, b.blur_px),
        hue_rotate_deg=_add(a.hue_rotate_deg, b.hue_rotate_deg),
        clip=b.clip if b.clip is not None else a.clip,
    )
