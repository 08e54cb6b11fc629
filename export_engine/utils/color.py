"""CSS colour and gradient parsing for colour items and text.

Solid colours accept anything Pillow's ``ImageColor`` understands (hex with
or without alpha, ``rgb()``/``rgba()``, ``hsl()``, named colours).
Gradients accept ``linear-gradient(<angle|to side>, stops...)`` and
``radial-gradient([shape], stops...)``; stop positions are optional
percentages.
"""

import logging
import math
import re

import numpy as np
from PIL import Image, ImageColor

logger = logging.getLogger(__name__)

RGBA = tuple[int, int, int, int]

FALLBACK_COLOR: RGBA = (0, 0, 0, 255)

_SIDE_ANGLES = {
    "to top": 0.0,
    "to right": 90.0,
    "to bottom": 180.0,
    "to left": 270.0,
    "to top right": 45.0,
    "to right top": 45.0,
    "to bottom right": 135.0,
    "to right bottom": 135.0,
    "to bottom left": 225.0,
    "to left bottom": 225.0,
    "to top left": 315.0,
    "to left top": 315.0,
}

_GRADIENT_RE = re.compile(r"^\s*(linear|radial)-gradient\((.*)\)\s*$", re.IGNORECASE | re.DOTALL)
_STOP_RE = re.compile(r"^(.*?)(?:\s+(-?[\d.]+)%)?$")
# CSS rgba() with a 0-1 alpha (ImageColor only accepts 0-255 integers)
_CSS_RGBA_RE = re.compile(
    r"^rgba\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d*\.\d+|[01])\s*\)$", re.IGNORECASE
)


def _getcolor(value: str) -> RGBA:
    match = _CSS_RGBA_RE.match(value)
    if match:
        r, g, b = (min(255, int(match.group(i))) for i in (1, 2, 3))
        return (r, g, b, round(float(match.group(4)) * 255))
    return ImageColor.getcolor(value, "RGBA")


def parse_color(value: str | None, alpha: float = 1.0) -> RGBA:
    """Parse a CSS colour into RGBA, multiplying its alpha by ``alpha``.

    Unparseable values log a warning and return opaque black.
    """
    if not value or value == "transparent":
        return (0, 0, 0, 0)
    try:
        r, g, b, a = _getcolor(value.strip())
    except ValueError:
        logger.warning(f"[COLOR] Unparseable colour {value!r}, using black")
        r, g, b, a = FALLBACK_COLOR
    return (r, g, b, round(a * max(0.0, min(1.0, alpha))))


def split_args(text: str) -> list[str]:
    """Split on top-level commas (commas inside ``rgb(...)`` are kept)."""
    parts: list[str] = []
    depth = 0
    current = []
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    if current:
        parts.append("".join(current).strip())
    return [part for part in parts if part]


def is_gradient(value: str | None) -> bool:
    return bool(value) and _GRADIENT_RE.match(value) is not None


def parse_color_safely(value: str) -> bool:
    """True when ``value`` is a colour Pillow can parse."""
    try:
        _getcolor(value.strip())
        return True
    except ValueError:
        return False


def _is_stop(arg: str) -> bool:
    return parse_color_safely(_STOP_RE.match(arg.strip()).group(1))


def _parse_stops(args: list[str]) -> list[tuple[float, RGBA]]:
    stops: list[tuple[float | None, RGBA]] = []
    for arg in args:
        match = _STOP_RE.match(arg.strip())
        color_text, position = match.group(1), match.group(2)
        stops.append((float(position) / 100 if position else None, parse_color(color_text)))

    # Evenly distribute stops without explicit positions
    count = len(stops)
    resolved = []
    for index, (position, color) in enumerate(stops):
        if position is None:
            position = index / (count - 1) if count > 1 else 0.0
        resolved.append((position, color))
    return resolved


def _interpolate_stops(t: np.ndarray, stops: list[tuple[float, RGBA]]) -> np.ndarray:
    # Stops out of order clamp to the previous position, as in CSS
    positions = np.maximum.accumulate(np.array([position for position, _ in stops], dtype=np.float32))
    colors = np.array([color for _, color in stops], dtype=np.float32)
    channels = [np.interp(t, positions, colors[:, channel]) for channel in range(4)]
    return np.stack(channels, axis=-1)


def _linear_angle(first_arg: str) -> float | None:
    text = first_arg.strip().lower()
    if text in _SIDE_ANGLES:
        return _SIDE_ANGLES[text]
    if text.endswith("deg"):
        try:
            return float(text[:-3])
        except ValueError:
            return None
    return None


def render_gradient(value: str, width: int, height: int) -> Image.Image:
    """Rasterise a CSS gradient to an RGBA image."""
    match = _GRADIENT_RE.match(value)
    kind = match.group(1).lower()
    args = split_args(match.group(2))

    ys, xs = np.mgrid[0:height, 0:width].astype(np.float32)
    xs += 0.5
    ys += 0.5

    if kind == "linear":
        angle = _linear_angle(args[0]) if args else None
        if angle is None:
            angle = 180.0
        else:
            args = args[1:]
        # CSS angles: 0deg points up, clockwise
        radians = math.radians(angle)
        dx, dy = math.sin(radians), -math.cos(radians)
        half_length = (abs(width * dx) + abs(height * dy)) / 2
        projection = (xs - width / 2) * dx + (ys - height / 2) * dy
        t = (projection / (2 * half_length)) + 0.5 if half_length > 0 else np.zeros_like(xs)
    else:
        if args and not _is_stop(args[0]):
            args = args[1:]
        radius = math.hypot(width, height) / 2
        t = np.hypot(xs - width / 2, ys - height / 2) / radius

    stops = _parse_stops(args)
    if len(stops) < 2:
        color = stops[0][1] if stops else FALLBACK_COLOR
        return Image.new("RGBA", (width, height), color)

    pixels = _interpolate_stops(np.clip(t, 0, 1), stops)
    return Image.fromarray(np.rint(pixels).astype(np.uint8))


def render_fill(value: str | None, width: int, height: int) -> Image.Image:
    """Solid colour or gradient fill of the given size."""
    if is_gradient(value):
        return render_gradient(value, width, height)
    return Image.new("RGBA", (width, height), parse_color(value))


def first_color(value: str | None) -> RGBA:
    """The solid colour of ``value``, or the first stop of a gradient."""
    if is_gradient(value):
        args = split_args(_GRADIENT_RE.match(value).group(2))
        for arg in args:
            if _is_stop(arg):
                return parse_color(_STOP_RE.match(arg.strip()).group(1))
        return FALLBACK_COLOR
    return parse_color(value)
