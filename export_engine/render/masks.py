"""Rasterise transition clip shapes into Pillow ``L`` masks.

``build_clip_mask`` returns None when no clipping applies (no shape, a shape
that covers the whole item, or a malformed shape), otherwise a mask the size
of the item where 255 means visible.
"""

import logging
import math

from PIL import Image, ImageDraw

from export_engine.render.style import ClipKind, ClipShape

logger = logging.getLogger(__name__)

# Points tested to decide whether a polygon covers the whole item
_COVERAGE_SAMPLES = [(x, y) for x in (0.001, 0.5, 0.999) for y in (0.001, 0.5, 0.999)]


def _empty(width: int, height: int) -> Image.Image:
    return Image.new("L", (width, height), 0)


def _is_finite(*values) -> bool:
    return all(v is not None and math.isfinite(v) for v in values)


def _polygon_area(points) -> float:
    area = 0.0
    for i, (x1, y1) in enumerate(points):
        x2, y2 = points[(i + 1) % len(points)]
        area += x1 * y2 - x2 * y1
    return abs(area) / 2


def _point_in_polygon(x: float, y: float, points) -> bool:
    inside = False
    j = len(points) - 1
    for i, (xi, yi) in enumerate(points):
        xj, yj = points[j]
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def _circle_mask(clip: ClipShape, width: int, height: int) -> Image.Image | None:
    if not _is_finite(clip.radius) or clip.radius < 0:
        return None
    # A circle through the corners covers the item
    if clip.radius >= 1:
        return None
    radius = clip.radius * math.hypot(width, height) / 2
    mask = _empty(width, height)
    if radius <= 0:
        return mask
    cx, cy = width / 2, height / 2
    ImageDraw.Draw(mask).ellipse([cx - radius, cy - radius, cx + radius, cy + radius], fill=255)
    return mask


def _inset_mask(clip: ClipShape, width: int, height: int) -> Image.Image | None:
    if clip.inset is None or not _is_finite(*clip.inset):
        return None
    top, right, bottom, left = (max(0.0, v) for v in clip.inset)
    if top == right == bottom == left == 0:
        return None
    x0 = round(left * width)
    y0 = round(top * height)
    x1 = round(width - right * width)
    y1 = round(height - bottom * height)
    mask = _empty(width, height)
    if x1 > x0 and y1 > y0:
        ImageDraw.Draw(mask).rectangle([x0, y0, x1 - 1, y1 - 1], fill=255)
    return mask


def _polygon_mask(clip: ClipShape, width: int, height: int) -> Image.Image | None:
    points = clip.points
    if not points or len(points) < 3 or not _is_finite(*(v for point in points for v in point)):
        logger.warning(f"[COMPOSITOR] Ignoring malformed clip polygon: {points}")
        return None
    if all(_point_in_polygon(x, y, points) for x, y in _COVERAGE_SAMPLES):
        return None
    mask = _empty(width, height)
    scaled = [(x * width, y * height) for x, y in points]
    if _polygon_area(scaled) < 0.5:
        return mask
    ImageDraw.Draw(mask).polygon(scaled, fill=255)
    return mask


def _arc_mask(clip: ClipShape, width: int, height: int) -> Image.Image | None:
    if not _is_finite(clip.arc_start_deg, clip.arc_end_deg):
        return None
    start, end = clip.arc_start_deg, clip.arc_end_deg
    if end - start >= 360:
        return None
    mask = _empty(width, height)
    if end <= start:
        return mask
    # Radius of the full diagonal so the wedge always reaches the corners
    radius = math.hypot(width, height)
    cx, cy = width / 2, height / 2
    ImageDraw.Draw(mask).pieslice([cx - radius, cy - radius, cx + radius, cy + radius], start, end, fill=255)
    return mask


def _blinds_mask(clip: ClipShape, width: int, height: int) -> Image.Image | None:
    if not clip.stripe_count or clip.stripe_count < 1 or not _is_finite(clip.reveal):
        return None
    reveal = min(1.0, max(0.0, clip.reveal))
    if reveal >= 1:
        return None
    mask = _empty(width, height)
    draw = ImageDraw.Draw(mask)
    stripes = clip.stripe_count
    for i in range(stripes):
        top = i * height / stripes
        visible = (height / stripes) * reveal
        y0, y1 = round(top), round(top + visible)
        if y1 > y0:
            draw.rectangle([0, y0, width - 1, y1 - 1], fill=255)
    return mask


def _checker_mask(clip: ClipShape, width: int, height: int) -> Image.Image | None:
    """Diagonal checkerboard reveal.

    Squares where ``row + col`` is even open during the first half, the odd
    ones during the second half, so the board is solid at reveal 1.
    """
    if not _is_finite(clip.checker_size, clip.reveal) or clip.checker_size <= 0:
        return None
    reveal = min(1.0, max(0.0, clip.reveal))
    if reveal >= 1:
        return None
    size = clip.checker_size * min(width, height)
    cols = math.ceil(width / size)
    rows = math.ceil(height / size)
    diagonals = cols + rows - 1
    even_threshold = min(1.0, reveal * 2) * diagonals
    odd_threshold = max(0.0, reveal * 2 - 1) * diagonals

    mask = _empty(width, height)
    draw = ImageDraw.Draw(mask)
    for row in range(rows):
        for col in range(cols):
            diagonal = row + col
            threshold = even_threshold if diagonal % 2 == 0 else odd_threshold
            if diagonal < threshold:
                x0, y0 = round(col * size), round(row * size)
                x1, y1 = min(width, round((col + 1) * size)), min(height, round((row + 1) * size))
                draw.rectangle([x0, y0, x1 - 1, y1 - 1], fill=255)
    return mask


_BUILDERS = {
    ClipKind.CIRCLE: _circle_mask,
    ClipKind.INSET: _inset_mask,
    ClipKind.POLYGON: _polygon_mask,
    ClipKind.ARC: _arc_mask,
    ClipKind.BLINDS: _blinds_mask,
    ClipKind.CHECKER: _checker_mask,
}


def build_clip_mask(clip: ClipShape | None, width: int, height: int) -> Image.Image | None:
    """Rasterise ``clip`` at ``width x height``.

    Returns:
        None when the whole item stays visible, otherwise an ``L`` mask
    """
    if clip is None or width <= 0 or height <= 0:
        return None
    return _BUILDERS[clip.kind](clip, width, height)
