"""Colour filter presets and adjustment sliders applied to RGBA pixel buffers.

Buffers are ``H x W x 4`` ``uint8`` numpy arrays and are modified in place.
Alpha is never touched. Stages run in a fixed order: grayscale, sepia, hue
rotation, saturation, brightness, contrast, temperature, tint, blur. A stage
whose parameter is neutral is skipped.
"""

import math
from dataclasses import dataclass

import numpy as np
from PIL import Image, ImageFilter

from export_engine.schemas.timeline import Adjustments

# Luma weights shared by grayscale and saturation
LUMA = np.array([0.2989, 0.587, 0.114], dtype=np.float32)

SEPIA_MATRIX = np.array(
    [
        [0.393, 0.769, 0.189],
        [0.349, 0.686, 0.168],
        [0.272, 0.534, 0.131],
    ],
    dtype=np.float32,
)


@dataclass(frozen=True)
class FilterPreset:
    """Named look. Percentages are relative to 100 (neutral)."""

    grayscale: float = 0
    sepia: float = 0
    hue_rotate: float = 0
    saturate: float = 100
    brightness: float = 100
    contrast: float = 100
    blur: float = 0


FILTER_PRESETS: dict[str, FilterPreset] = {
    "bw": FilterPreset(grayscale=100),
    "blockbuster": FilterPreset(contrast=120, saturate=110, sepia=20, hue_rotate=-10),
    "boost-color": FilterPreset(saturate=150, contrast=110),
    "brighten": FilterPreset(brightness=120, contrast=105),
    "cool": FilterPreset(saturate=90, hue_rotate=10, brightness=105),
    "cool-max": FilterPreset(saturate=80, hue_rotate=20, brightness=110, contrast=110),
    "darken": FilterPreset(brightness=80, contrast=120),
    "elegant": FilterPreset(sepia=10, contrast=110, brightness=105, saturate=90),
    "epic": FilterPreset(contrast=130, saturate=120, sepia=15),
    "fantasy": FilterPreset(saturate=130, brightness=110, hue_rotate=-10, contrast=90),
    "far-east": FilterPreset(sepia=20, contrast=110, brightness=105, hue_rotate=5),
    "film-stock": FilterPreset(contrast=120, saturate=90, sepia=10),
    "jungle": FilterPreset(saturate=140, hue_rotate=-10, brightness=95),
    "lomo": FilterPreset(contrast=130, saturate=120, sepia=10),
    "old-film": FilterPreset(sepia=50, contrast=110, grayscale=20),
    "polaroid": FilterPreset(contrast=110, brightness=110, sepia=20, saturate=90),
    "tv": FilterPreset(contrast=120, brightness=110, saturate=110, blur=0.5),
    "vignette-1": FilterPreset(brightness=90, contrast=120),
    "warm": FilterPreset(sepia=20, saturate=120, brightness=105),
    "warm-max": FilterPreset(sepia=40, saturate=140, brightness=110),
    "fresco": FilterPreset(sepia=30, brightness=110, contrast=110),
    "belvedere": FilterPreset(sepia=40, contrast=90),
    "flint": FilterPreset(brightness=110, contrast=90, grayscale=20),
    "luna": FilterPreset(grayscale=100, contrast=110),
    "festive": FilterPreset(saturate=150, brightness=105),
    "summer": FilterPreset(saturate=120, sepia=20, brightness=110),
}


@dataclass(frozen=True)
class FilterParams:
    """Effective per-stage parameters after merging a preset with the sliders."""

    grayscale: float
    sepia: float
    hue_rotate: float
    saturate: float
    brightness: float
    contrast: float
    temperature: float
    tint: float
    blur: float = 0


def resolve_filter_params(preset_id: str | None, adjustments: Adjustments | None) -> FilterParams | None:
    """Merge a preset and adjustment sliders.

    Returns None when there is nothing to do (no known preset and every
    slider at zero).
    """
    preset = FILTER_PRESETS.get(preset_id or "")
    adj = adjustments or Adjustments()

    if preset is None and adj.is_neutral():
        return None
    preset = preset or FilterPreset()

    eff_brightness = adj.brightness + 0.15 * (adj.highlights + adj.shadows + adj.whites + adj.blacks)
    eff_contrast = adj.contrast + 0.05 * adj.highlights - 0.1 * adj.shadows + 0.2 * adj.clarity
    eff_saturation = adj.saturation + 0.5 * adj.vibrance

    return FilterParams(
        grayscale=preset.grayscale,
        sepia=preset.sepia,
        hue_rotate=preset.hue_rotate + adj.hue * 1.8,
        saturate=preset.saturate * (100 + eff_saturation) / 100,
        brightness=preset.brightness * (100 + eff_brightness) / 100,
        contrast=preset.contrast * (100 + eff_contrast) / 100,
        temperature=adj.temperature,
        tint=adj.tint,
        blur=preset.blur,
    )


# =============================================================================
# Pixel Stages (float32 RGB, shape (..., 3))
# =============================================================================


def hue_rotation_matrix(degrees: float) -> np.ndarray:
    angle = math.radians(degrees)
    cos = math.cos(angle)
    sin = math.sin(angle)
    return np.array(
        [
            [0.213 + 0.787 * cos - 0.213 * sin, 0.715 - 0.715 * cos - 0.715 * sin, 0.072 - 0.072 * cos + 0.928 * sin],
            [0.213 - 0.213 * cos + 0.143 * sin, 0.715 + 0.285 * cos + 0.140 * sin, 0.072 - 0.072 * cos - 0.283 * sin],
            [0.213 - 0.213 * cos - 0.787 * sin, 0.715 - 0.715 * cos + 0.715 * sin, 0.072 + 0.928 * cos + 0.072 * sin],
        ],
        dtype=np.float32,
    )


def _grayscale(rgb: np.ndarray, intensity: float) -> np.ndarray:
    gray = (rgb @ LUMA)[..., None]
    return rgb + (gray - rgb) * (intensity / 100)


def _sepia(rgb: np.ndarray, intensity: float) -> np.ndarray:
    toned = rgb @ SEPIA_MATRIX.T
    return np.minimum(255, rgb + (toned - rgb) * (intensity / 100))


def _hue_rotate(rgb: np.ndarray, degrees: float) -> np.ndarray:
    return np.clip(rgb @ hue_rotation_matrix(degrees).T, 0, 255)


def _saturate(rgb: np.ndarray, percent: float) -> np.ndarray:
    gray = (rgb @ LUMA)[..., None]
    return np.clip(gray + (rgb - gray) * (percent / 100), 0, 255)


def _brightness(rgb: np.ndarray, percent: float) -> np.ndarray:
    return np.clip(rgb * (percent / 100), 0, 255)


def _contrast(rgb: np.ndarray, percent: float) -> np.ndarray:
    return np.clip(((rgb / 255 - 0.5) * (percent / 100) + 0.5) * 255, 0, 255)


def process_rgb(rgb: np.ndarray, params: FilterParams) -> np.ndarray:
    if params.grayscale > 0:
        rgb = _grayscale(rgb, params.grayscale)
    if params.sepia > 0:
        rgb = _sepia(rgb, params.sepia)
    if params.hue_rotate != 0:
        rgb = _hue_rotate(rgb, params.hue_rotate)
    if params.saturate != 100:
        rgb = _saturate(rgb, params.saturate)
    if params.brightness != 100:
        rgb = _brightness(rgb, params.brightness)
    if params.contrast != 100:
        rgb = _contrast(rgb, params.contrast)
    if params.temperature > 0:
        # Warm: partial sepia
        rgb = _sepia(rgb, params.temperature * 0.3)
    elif params.temperature < 0:
        # Cool: slight negative hue rotation
        rgb = _hue_rotate(rgb, params.temperature * 0.3)
    if params.tint != 0:
        rgb = _hue_rotate(rgb, params.tint)
    return rgb


def _blur_rgb(rgb: np.ndarray, radius: float) -> np.ndarray:
    # Gaussian blur on colour only; callers keep alpha
    image = Image.fromarray(np.ascontiguousarray(rgb), "RGB")
    return np.asarray(image.filter(ImageFilter.GaussianBlur(radius)))


def clamp_region(region: tuple[float, float, float, float], width: int, height: int) -> tuple[int, int, int, int]:
    """Clamp ``(x, y, w, h)`` to the buffer; returns ``(x0, y0, x1, y1)``."""
    x, y, w, h = region
    x0 = max(0, math.floor(x))
    y0 = max(0, math.floor(y))
    x1 = min(width, math.floor(x) + math.ceil(w))
    y1 = min(height, math.floor(y) + math.ceil(h))
    return x0, y0, x1, y1


def apply_filters(
    pixels: np.ndarray,
    region: tuple[float, float, float, float],
    preset_id: str | None,
    adjustments: Adjustments | None,
) -> bool:
    """Apply a filter preset and adjustment sliders in place.

    Args:
        pixels: ``H x W x 4`` uint8 RGBA buffer
        region: ``(x, y, w, h)`` in pixels, clamped to the buffer
        preset_id: Filter preset name (unknown names contribute nothing)
        adjustments: Slider values, or None

    Returns:
        False when nothing needed doing and the buffer was not read or written
    """
    params = resolve_filter_params(preset_id, adjustments)
    if params is None:
        return False

    height, width = pixels.shape[:2]
    x0, y0, x1, y1 = clamp_region(region, width, height)
    if x1 <= x0 or y1 <= y0:
        return False

    view = pixels[y0:y1, x0:x1]
    rgb = process_rgb(view[..., :3].astype(np.float32), params)
    view[..., :3] = np.rint(np.clip(rgb, 0, 255)).astype(np.uint8)
    if params.blur > 0:
        view[..., :3] = _blur_rgb(view[..., :3], params.blur)
    return True


def apply_hue_rotation(pixels: np.ndarray, degrees: float) -> None:
    """Rotate the hue of a whole RGBA buffer in place."""
    if degrees == 0:
        return
    rgb = _hue_rotate(pixels[..., :3].astype(np.float32), degrees)
    pixels[..., :3] = np.rint(rgb).astype(np.uint8)
