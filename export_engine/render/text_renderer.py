"""Text layout and text effects for timeline text items.

Features:
- Multi-line text, line height 1.4x the font size
- Alignment (left/center/right), bullet and numbered lists
- Upper/lowercase transform, underline and line-through
- Effects: shadow, lift, hollow, splice, outline, echo, glitch, neon, background
- Solid or gradient text colour

Every layer is drawn as a glyph mask (``L``) first and then coloured, so the
alpha of the result never depends on how the font backend fills pixels.
"""

import logging
import math
from dataclasses import dataclass

from PIL import Image, ImageChops, ImageDraw, ImageFilter, ImageFont

from export_engine.config import Settings, get_settings
from export_engine.schemas.timeline import TextEffect, TimelineItem
from export_engine.utils.color import parse_color, render_fill

logger = logging.getLogger(__name__)

LINE_HEIGHT = 1.4
# Effect sizes are tuned for 40px text and scale with the font size
EFFECT_BASE_SIZE = 40
ITALIC_SHEAR = 0.2

LIFT_SHADOW_COLOR = (0, 0, 0, 128)
GLITCH_COLORS = ("#00ffff", "#ff00ff")

# Map font families to candidate paths (macOS -> Linux fallback)
FONT_CANDIDATES = {
    "noto sans jp": [
        "/System/Library/Fonts/ヒラギノ角ゴシック W3.ttc",
        "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
        "/usr/share/fonts/truetype/noto/NotoSansCJK-Regular.ttc",
    ],
    "noto sans jp bold": [
        "/System/Library/Fonts/ヒラギノ角ゴシック W6.ttc",
        "/usr/share/fonts/opentype/noto/NotoSansCJK-Bold.ttc",
        "/usr/share/fonts/truetype/noto/NotoSansCJK-Bold.ttc",
    ],
    "noto serif jp": [
        "/System/Library/Fonts/ヒラギノ明朝 ProN.ttc",
        "/usr/share/fonts/opentype/noto/NotoSerifCJK-Regular.ttc",
        "/usr/share/fonts/truetype/noto/NotoSerifCJK-Regular.ttc",
    ],
    "serif": [
        "/usr/share/fonts/truetype/dejavu/DejaVuSerif.ttf",
        "/System/Library/Fonts/Times.ttc",
    ],
    "serif bold": [
        "/usr/share/fonts/truetype/dejavu/DejaVuSerif-Bold.ttf",
    ],
    "monospace": [
        "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf",
        "/System/Library/Fonts/Menlo.ttc",
    ],
    "monospace bold": [
        "/usr/share/fonts/truetype/dejavu/DejaVuSansMono-Bold.ttf",
    ],
}


@dataclass
class TextImage:
    """Rendered text block.

    ``padding`` is the transparent margin added around the text block so
    effects (shadows, glows, offsets) are not cut off. Callers align the
    block itself, not the padded image.
    """

    image: Image.Image
    padding: int
    block_width: int
    block_height: int


@dataclass
class _Line:
    text: str
    x: float
    center_y: float
    width: float


def _is_bold(weight: str) -> bool:
    if weight in ("bold", "bolder"):
        return True
    try:
        return int(weight) >= 600
    except ValueError:
        return False


class TextRenderer:
    """Renders text items to RGBA images using Pillow."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._fonts: dict[tuple[str, bool, int], ImageFont.FreeTypeFont | ImageFont.ImageFont] = {}

    # =========================================================================
    # Fonts
    # =========================================================================

    def _font_candidates(self, family: str | None, bold: bool) -> list[str]:
        key = (family or self.settings.export_default_font).strip().lower()
        candidates = list(FONT_CANDIDATES.get(f"{key} bold" if bold else key, []))
        if bold:
            candidates += FONT_CANDIDATES.get(key, [])
        # Always append default candidates as final fallback
        defaults = self.settings.export_bold_font_paths if bold else []
        defaults = defaults + self.settings.export_font_paths
        return candidates + [c for c in defaults if c not in candidates]

    def load_font(self, family: str | None, weight: str, size: int):
        bold = _is_bold(weight)
        key = ((family or "").lower(), bold, size)
        font = self._fonts.get(key)
        if font is not None:
            return font

        for candidate_path in self._font_candidates(family, bold):
            try:
                font = ImageFont.truetype(candidate_path, size)
                logger.info(f"[TEXT] Loaded font: {candidate_path}")
                break
            except OSError:
                continue

        if font is None:
            logger.warning(f"[TEXT] No suitable font found for {family!r}, using PIL default")
            font = ImageFont.load_default(size=size)

        self._fonts[key] = font
        return font

    # =========================================================================
    # Layout
    # =========================================================================

    @staticmethod
    def prepare_lines(item: TimelineItem) -> list[str]:
        """Text lines after transform and list formatting."""
        text = item.text_content
        if item.text_transform == "uppercase":
            text = text.upper()
        elif item.text_transform == "lowercase":
            text = text.lower()

        lines = text.split("\n")
        if item.list_type == "bullet":
            lines = [f"• {line}" for line in lines]
        elif item.list_type == "number":
            lines = [f"{index + 1}. {line}" for index, line in enumerate(lines)]
        return lines

    @staticmethod
    def _effect_padding(effect: TextEffect | None, scale: float, font_size: int) -> int:
        if effect is None or effect.type == "none":
            return math.ceil(font_size / 10) + 2
        dist = effect.offset / 100 * 20 * scale
        blur = effect.intensity / 100 * 20 * scale
        reach = max(
            3 * dist,
            dist + 2 * blur,
            2 * blur + 10 * scale + dist * 0.5 + 4 * scale,
            effect.intensity * 0.1 * scale * 8,
            (effect.offset / 100 * 5 + 2) * scale,
            8 * scale,
        )
        return math.ceil(reach + 4 * scale + font_size / 10) + 2

    def render(self, item: TimelineItem) -> TextImage | None:
        """Render a text item; returns None when there is no text."""
        if not item.text_content:
            return None

        font_size = max(1, round(item.font_size))
        font = self.load_font(item.font_family, item.font_weight, font_size)
        lines = self.prepare_lines(item)
        line_height = font_size * LINE_HEIGHT
        scale = font_size / EFFECT_BASE_SIZE
        effect = item.text_effect

        widths = [font.getlength(line) for line in lines]
        block_width = math.ceil(max(widths)) if widths else 0
        block_height = math.ceil(line_height * len(lines))
        padding = self._effect_padding(effect, scale, font_size)

        width = max(1, block_width + padding * 2)
        height = max(1, block_height + padding * 2)

        layout = []
        for index, (line, line_width) in enumerate(zip(lines, widths)):
            if item.text_align == "left":
                x = padding
            elif item.text_align == "right":
                x = padding + block_width - line_width
            else:
                x = padding + (block_width - line_width) / 2
            layout.append(_Line(line, x, padding + (index + 0.5) * line_height, line_width))

        painter = _Painter((width, height), font, layout)
        image = painter.paint(item, effect, scale, font_size)

        if item.font_style in ("italic", "oblique"):
            image = _shear(image)

        return TextImage(image=image, padding=padding, block_width=block_width, block_height=block_height)


def _shear(image: Image.Image) -> Image.Image:
    width, height = image.size
    shift = ITALIC_SHEAR * height
    return image.transform(
        (width + math.ceil(shift), height),
        Image.Transform.AFFINE,
        (1, ITALIC_SHEAR, -shift, 0, 1, 0),
        resample=Image.Resampling.BICUBIC,
    )


class _Painter:
    """Draws glyph masks and layers them into the final text image."""

    def __init__(self, size: tuple[int, int], font, layout: list[_Line]):
        self.size = size
        self.font = font
        self.layout = layout

    def mask(self, dx: float = 0, dy: float = 0, stroke_width: int = 0, hollow: bool = False) -> Image.Image:
        mask = Image.new("L", self.size, 0)
        draw = ImageDraw.Draw(mask)
        for line in self.layout:
            draw.text(
                (line.x + dx, line.center_y + dy),
                line.text,
                font=self.font,
                fill=255,
                anchor="lm",
                stroke_width=stroke_width,
                stroke_fill=255,
            )
        if hollow:
            return ImageChops.subtract(mask, self.mask(dx, dy))
        return mask

    def layer(self, mask: Image.Image, fill, alpha: float = 1.0, blur: float = 0) -> Image.Image:
        """Colour ``mask`` with a colour value, gradient or RGBA tuple."""
        if isinstance(fill, tuple):
            layer = Image.new("RGBA", self.size, fill)
        else:
            layer = render_fill(fill, *self.size)
        if blur > 0:
            # Canvas shadow blur is roughly twice the gaussian radius
            mask = mask.filter(ImageFilter.GaussianBlur(blur / 2))
        alpha_channel = ImageChops.multiply(layer.getchannel("A"), mask)
        if alpha < 1:
            alpha_channel = alpha_channel.point(lambda value: round(value * alpha))
        layer.putalpha(alpha_channel)
        return layer

    def paint(self, item: TimelineItem, effect: TextEffect | None, scale: float, font_size: int) -> Image.Image:
        color = item.color or "#ffffff"
        layers = []
        kind = effect.type if effect else "none"

        if effect is not None and kind != "none":
            eff_color = effect.color or "#000000"
            dist = effect.offset / 100 * 20 * scale
            blur = effect.intensity / 100 * 20 * scale
            stroke = max(1, round(((effect.intensity / 100) * 3 + 1) * scale / 2))

            if kind == "shadow":
                layers.append(self.layer(self.mask(dist, dist), eff_color, blur=blur))
                layers.append(self.layer(self.mask(), color))
            elif kind == "lift":
                shadow_mask = self.mask(0, dist * 0.5 + 4 * scale)
                layers.append(self.layer(shadow_mask, LIFT_SHADOW_COLOR, blur=blur + 10 * scale))
                layers.append(self.layer(self.mask(), color))
            elif kind == "hollow":
                layers.append(self.layer(self.mask(stroke_width=stroke, hollow=True), color))
            elif kind == "splice":
                shift = dist + 2 * scale
                layers.append(self.layer(self.mask(shift, shift), eff_color))
                layers.append(self.layer(self.mask(stroke_width=stroke, hollow=True), color))
            elif kind == "outline":
                layers.append(self.layer(self.mask(stroke_width=stroke), eff_color))
                layers.append(self.layer(self.mask(), color))
            elif kind == "echo":
                for steps, alpha in ((3, 0.2), (2, 0.4), (1, 0.8)):
                    layers.append(self.layer(self.mask(dist * steps, dist * steps), eff_color, alpha=alpha))
                layers.append(self.layer(self.mask(), color))
            elif kind == "glitch":
                offset = ((effect.offset / 100) * 5 + 2) * scale
                layers.append(self.layer(self.mask(-offset, -offset), GLITCH_COLORS[0]))
                layers.append(self.layer(self.mask(offset, offset), GLITCH_COLORS[1]))
                layers.append(self.layer(self.mask(), color))
            elif kind == "neon":
                glow = effect.intensity * 0.1 * scale
                text_mask = self.mask()
                for factor in (4, 2, 1):
                    if glow > 0:
                        layers.append(self.layer(text_mask, eff_color, blur=glow * factor))
                layers.append(self.layer(text_mask, color))
            elif kind == "background":
                layers.append(self._background(eff_color, scale, font_size))
                layers.append(self.layer(self.mask(), color))
            else:
                logger.warning(f"[TEXT] Unknown text effect {kind!r}, drawing plain text")
                layers.append(self.layer(self.mask(), color))
        else:
            layers.append(self.layer(self.mask(), color))

        if item.text_decoration != "none":
            layers.append(self._decoration(item.text_decoration, color, font_size))

        image = Image.new("RGBA", self.size, (0, 0, 0, 0))
        for layer in layers:
            image = Image.alpha_composite(image, layer)
        return image

    def _background(self, fill: str, scale: float, font_size: int) -> Image.Image:
        box = Image.new("RGBA", self.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(box)
        pad_x, pad_y = 8 * scale, 4 * scale
        box_height = font_size * 1.2
        for line in self.layout:
            draw.rectangle(
                [
                    line.x - pad_x,
                    line.center_y - box_height / 2 - pad_y,
                    line.x + line.width + pad_x,
                    line.center_y + box_height / 2 + pad_y,
                ],
                fill=parse_color(fill),
            )
        return box

    def _decoration(self, decoration: str, fill: str, font_size: int) -> Image.Image:
        mask = Image.new("L", self.size, 0)
        draw = ImageDraw.Draw(mask)
        thickness = max(1, round(font_size / 20))
        for line in self.layout:
            if decoration == "underline":
                y = line.center_y + font_size * 0.4
            else:
                y = line.center_y + font_size * 0.05
            draw.line([(line.x, y), (line.x + line.width, y)], fill=255, width=thickness)
        return self.layer(mask, fill)
