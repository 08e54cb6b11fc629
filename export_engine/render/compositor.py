"""Per-frame compositing of timeline items onto an RGBA canvas.

For every output time the compositor:
1. Resolves the render set: per track, which items are visible and, during a
   transition window, which one is entering (``Role.MAIN``) and which one is
   leaving (``Role.OUTGOING``).
2. Orders the entries: background items first, then ascending ``layer``.
3. Paints each entry: content -> crop/fit -> border -> clip mask -> hue shift
   -> opacity -> scale/flip -> rotation -> blur -> translation -> composite,
   then runs colour filters over the region that was drawn.

A missing or undecodable media file skips that paint only.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image, ImageChops, ImageDraw, ImageFilter, ImageOps

from export_engine.config import Settings, get_settings
from export_engine.exceptions import MediaLoadError
from export_engine.render.animations import animation_style
from export_engine.render.filters import apply_filters, apply_hue_rotation
from export_engine.render.masks import build_clip_mask
from export_engine.render.media import MediaLibrary
from export_engine.render.style import IDENTITY, Role, Style, combine
from export_engine.render.text_renderer import TextRenderer
from export_engine.render.transitions import transition_style
from export_engine.schemas.timeline import TimelineItem, Track, TransitionSpec
from export_engine.utils.color import parse_color, render_fill

logger = logging.getLogger(__name__)

CANVAS_COLOR = (0, 0, 0, 255)
DEFAULT_ITEM_SIZE_PCT = 50
# Last decodable instant of a clip is just before its end
END_EPSILON = 1e-3


@dataclass
class RenderEntry:
    """One paint operation for the current frame."""

    track_id: str
    item: TimelineItem
    role: Role = Role.MAIN
    transition: TransitionSpec | None = None
    progress: float = 0.0

    @property
    def is_transitioning(self) -> bool:
        return self.transition is not None


@dataclass
class Layer:
    """Item content sized to its on-canvas bounds, before effects."""

    image: Image.Image
    x: float
    y: float

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height


def _has_transition(item: TimelineItem | None) -> bool:
    return item is not None and item.transition is not None and item.transition.type not in ("", "none")


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def text_origin(
    item: TimelineItem,
    padding: int,
    block_width: float,
    block_height: float,
    canvas_width: int,
    canvas_height: int,
) -> tuple[float, float]:
    """Top-left of a rendered text image on the canvas.

    The anchor is the canvas centre offset by ``x``/``y`` percent. Left and
    top alignment put the text block's edge on the anchor, right and bottom
    its far edge, center and middle its centre.
    """
    anchor_x = canvas_width / 2 + item.x / 100 * canvas_width
    anchor_y = canvas_height / 2 + item.y / 100 * canvas_height
    if item.text_align == "left":
        block_left = anchor_x
    elif item.text_align == "right":
        block_left = anchor_x - block_width
    else:
        block_left = anchor_x - block_width / 2
    if item.vertical_align == "top":
        block_top = anchor_y
    elif item.vertical_align == "bottom":
        block_top = anchor_y - block_height
    else:
        block_top = anchor_y - block_height / 2
    return block_left - padding, block_top - padding


class FrameCompositor:
    """Renders timeline frames with Pillow.

    Args:
        width: Canvas width in pixels
        height: Canvas height in pixels
        media: Media library used to resolve and decode sources
        text_renderer: Text layout engine
        settings: Application settings (defaults to ``get_settings()``)
    """

    def __init__(
        self,
        width: int,
        height: int,
        media: MediaLibrary | None = None,
        text_renderer: TextRenderer | None = None,
        settings: Settings | None = None,
    ):
        self.width = width
        self.height = height
        self.settings = settings or get_settings()
        self.media = media or MediaLibrary(settings=self.settings)
        self.text_renderer = text_renderer or TextRenderer(self.settings)
        # Sized content of stills, fills and text, keyed per item and size
        self._layers: dict[tuple, object] = {}

    # =========================================================================
    # Render Set
    # =========================================================================

    def _resolve_transition_track(self, track: Track, t: float) -> list[RenderEntry]:
        items = [item for item in track.sorted_items() if item.type != "audio"]
        active = [index for index, item in enumerate(items) if item.is_active(t)]

        # During overlaps the later-starting item is the one on screen
        main_index = active[-1] if active else None
        main_item = items[main_index] if main_index is not None else None

        if main_index is not None:
            next_index = main_index + 1
        else:
            next_index = next((index for index, item in enumerate(items) if item.start > t), None)
        next_item = items[next_index] if next_index is not None and next_index < len(items) else None

        incoming_index = None
        progress = 0.0

        # Incoming transition on the main item
        if _has_transition(main_item):
            spec = main_item.transition
            duration = spec.effective_duration
            window_start = main_item.start + spec.window_start()
            if window_start <= t <= window_start + duration:
                incoming_index = main_index
                progress = (t - window_start) / duration

        # Transition of the next item that starts before the item itself
        if incoming_index is None and _has_transition(next_item) and next_item.transition.timing != "postfix":
            spec = next_item.transition
            duration = spec.effective_duration
            lead = -spec.window_start()
            time_until_next = next_item.start - t
            if 0 < time_until_next <= lead:
                incoming_index = next_index
                progress = (lead - time_until_next) / duration

        if incoming_index is not None:
            incoming = items[incoming_index]
            entries = []
            if incoming_index > 0:
                entries.append(
                    RenderEntry(track.id, items[incoming_index - 1], Role.OUTGOING, incoming.transition, _clamp01(progress))
                )
            entries.append(RenderEntry(track.id, incoming, Role.MAIN, incoming.transition, _clamp01(progress)))
            return entries

        if main_item is not None:
            return [RenderEntry(track.id, main_item)]
        return []

    def resolve_render_set(self, tracks: list[Track], t: float) -> list[RenderEntry]:
        """Entries to paint at time ``t``, in paint order."""
        entries: list[RenderEntry] = []
        for track in tracks:
            if track.hidden or track.kind == "audio":
                continue
            if track.supports_transitions:
                entries.extend(self._resolve_transition_track(track, t))
            else:
                entries.extend(
                    RenderEntry(track.id, item)
                    for item in track.items
                    if item.type != "audio" and item.is_active(t)
                )

        # Stable: entries with equal keys keep track order
        entries.sort(key=lambda entry: (not entry.item.is_background, 0 if entry.item.is_background else entry.item.layer))
        return entries

    # =========================================================================
    # Styles
    # =========================================================================

    def entry_style(self, entry: RenderEntry, t: float) -> Style:
        """Transition style combined with the item's animation style."""
        style = IDENTITY
        if entry.transition is not None:
            style = transition_style(entry.transition.type, entry.progress, entry.role, entry.transition.direction)
        item = entry.item
        return combine(style, animation_style(item.animation, item.start, item.duration, t))

    def entry_opacity(self, entry: RenderEntry, t: float) -> float:
        """Base opacity x transition opacity x animation opacity."""
        return entry.item.opacity / 100 * self.entry_style(entry, t).effective_opacity

    # =========================================================================
    # Content
    # =========================================================================

    def media_time(self, item: TimelineItem, t: float) -> float:
        """Source timestamp shown at timeline time ``t``."""
        local = min(max(0.0, t - item.start), max(0.0, item.duration - END_EPSILON))
        return item.offset + local * item.speed

    def fit_bounds(self, item: TimelineItem, media_width: int, media_height: int) -> tuple[float, float, float, float]:
        """``(x, y, w, h)`` of an item on the canvas."""
        canvas_width, canvas_height = self.width, self.height

        if item.is_background:
            media_aspect = media_width / media_height if media_height else 1.0
            canvas_aspect = canvas_width / canvas_height
            if item.fit == "fill":
                width, height = canvas_width, canvas_height
            elif item.fit == "cover":
                if media_aspect > canvas_aspect:
                    height = canvas_height
                    width = height * media_aspect
                else:
                    width = canvas_width
                    height = width / media_aspect
            else:
                if media_aspect > canvas_aspect:
                    width = canvas_width
                    height = width / media_aspect
                else:
                    height = canvas_height
                    width = height * media_aspect
        else:
            width = (item.width or DEFAULT_ITEM_SIZE_PCT) / 100 * canvas_width
            height = (item.height or DEFAULT_ITEM_SIZE_PCT) / 100 * canvas_height

        # Center the item based on x, y position percentages
        x = canvas_width / 2 + item.x / 100 * canvas_width - width / 2
        y = canvas_height / 2 + item.y / 100 * canvas_height - height / 2
        return x, y, width, height

    @staticmethod
    def crop_source(image: Image.Image, item: TimelineItem) -> Image.Image:
        """Apply ``crop {x, y, zoom}``: zoom in and pan to ``x``/``y`` percent."""
        if item.crop is None or item.crop.zoom <= 1:
            return image
        zoom = item.crop.zoom
        visible_width = image.width / zoom
        visible_height = image.height / zoom
        left = item.crop.x / 100 * (image.width - visible_width)
        top = item.crop.y / 100 * (image.height - visible_height)
        return image.crop((round(left), round(top), round(left + visible_width), round(top + visible_height)))

    def _sized(self, source: Image.Image, item: TimelineItem, bounds) -> Image.Image | None:
        _, _, width, height = bounds
        size = (round(width), round(height))
        if size[0] < 1 or size[1] < 1:
            return None
        image = self.crop_source(source, item)
        if image.size != size:
            image = image.resize(size, Image.Resampling.BILINEAR)
        if item.border is not None and item.border.width > 0 and not item.is_background:
            image = image.copy()
            ImageDraw.Draw(image).rectangle(
                [0, 0, size[0] - 1, size[1] - 1],
                outline=parse_color(item.border.color),
                width=max(1, round(item.border.width)),
            )
        return image

    def _media_layer(self, item: TimelineItem, t: float) -> Layer | None:
        path = self.media.resolve(item)
        if item.type == "image":
            source = self.media.load_image(path, item.id)
            bounds = self.fit_bounds(item, source.width, source.height)
            key = ("image", item.id, str(path), round(bounds[2]), round(bounds[3]))
            image = self._layers.get(key)
            if image is None:
                image = self._sized(source, item, bounds)
                if image is not None:
                    self._layers[key] = image
        else:
            source = self.media.load_video_frame(path, self.media_time(item, t), item.id)
            bounds = self.fit_bounds(item, source.width, source.height)
            image = self._sized(source, item, bounds)
        if image is None:
            return None
        return Layer(image, bounds[0], bounds[1])

    def _color_layer(self, item: TimelineItem) -> Layer | None:
        if item.is_background or (item.width is None and item.height is None):
            bounds = (0.0, 0.0, float(self.width), float(self.height))
        else:
            bounds = self.fit_bounds(item, self.width, self.height)
        size = (round(bounds[2]), round(bounds[3]))
        if size[0] < 1 or size[1] < 1:
            return None
        key = ("color", item.id, item.src, size)
        image = self._layers.get(key)
        if image is None:
            image = render_fill(item.src or "#000000", *size)
            self._layers[key] = image
        return Layer(image, bounds[0], bounds[1])

    def _text_layer(self, item: TimelineItem) -> Layer | None:
        key = ("text", item.id)
        cached = self._layers.get(key)
        if cached is None:
            rendered = self.text_renderer.render(item)
            if rendered is None:
                return None
            cached = (rendered.image, rendered.padding, rendered.block_width, rendered.block_height)
            self._layers[key] = cached
        image, padding, block_width, block_height = cached
        left, top = text_origin(item, padding, block_width, block_height, self.width, self.height)
        return Layer(image, left, top)

    def load_layer(self, item: TimelineItem, t: float) -> Layer | None:
        """Sized content for ``item``.

        Raises:
            MediaLoadError: If the item's media cannot be loaded
        """
        if item.type in ("image", "video"):
            return self._media_layer(item, t)
        if item.type == "color":
            return self._color_layer(item)
        if item.type == "text":
            return self._text_layer(item)
        return None

    # =========================================================================
    # Painting
    # =========================================================================

    def _composite(self, canvas: Image.Image, image: Image.Image, left: int, top: int):
        """Alpha-composite ``image`` at ``(left, top)``, clipped to the canvas.

        Returns:
            The drawn box ``(x0, y0, x1, y1)``, or None when nothing is visible
        """
        x0 = max(0, left)
        y0 = max(0, top)
        x1 = min(canvas.width, left + image.width)
        y1 = min(canvas.height, top + image.height)
        if x1 <= x0 or y1 <= y0:
            return None
        canvas.alpha_composite(image, dest=(x0, y0), source=(x0 - left, y0 - top, x1 - left, y1 - top))
        return x0, y0, x1, y1

    def paint_entry(self, canvas: Image.Image, entry: RenderEntry, t: float) -> bool:
        """Paint one entry; returns False when nothing was drawn."""
        item = entry.item
        style = self.entry_style(entry, t)
        opacity = item.opacity / 100 * style.effective_opacity
        if opacity <= 0:
            return False

        layer = self.load_layer(item, t)
        if layer is None:
            return False
        image = layer.image
        center_x = layer.x + layer.width / 2
        center_y = layer.y + layer.height / 2

        mask = build_clip_mask(style.clip, image.width, image.height)
        if mask is not None or style.hue_rotate_deg or opacity < 1:
            image = image.convert("RGBA") if image.mode != "RGBA" else image.copy()

        if mask is not None:
            image.putalpha(ImageChops.multiply(image.getchannel("A"), mask))

        if style.hue_rotate_deg:
            pixels = np.array(image)
            apply_hue_rotation(pixels, style.hue_rotate_deg)
            image = Image.fromarray(pixels)

        if opacity < 1:
            image.putalpha(image.getchannel("A").point(lambda value: round(value * opacity)))

        scale_x = style.effective_scale_x
        scale_y = style.effective_scale_y
        if scale_x == 0 or scale_y == 0:
            return False
        size = (round(image.width * abs(scale_x)), round(image.height * abs(scale_y)))
        if size[0] < 1 or size[1] < 1:
            return False
        if size != image.size:
            image = image.resize(size, Image.Resampling.BILINEAR)
        if item.flip_h != (scale_x < 0):
            image = ImageOps.mirror(image)
        if item.flip_v != (scale_y < 0):
            image = ImageOps.flip(image)

        rotation = item.rotation + (style.rotate_deg or 0)
        if abs(rotation) > 0.01:
            image = image.rotate(-rotation, expand=True, resample=Image.Resampling.BICUBIC, fillcolor=(0, 0, 0, 0))

        if style.blur_px and style.blur_px > 0:
            image = image.filter(ImageFilter.GaussianBlur(style.blur_px))

        center_x += (style.translate_x_pct or 0) / 100 * self.width
        center_y += (style.translate_y_pct or 0) / 100 * self.height
        left = round(center_x - image.width / 2)
        top = round(center_y - image.height / 2)

        box = self._composite(canvas, image, left, top)
        if box is None:
            return False

        if item.has_filters():
            region = canvas.crop(box)
            pixels = np.array(region)
            if apply_filters(pixels, (0, 0, region.width, region.height), item.filter, item.adjustments):
                canvas.paste(Image.fromarray(pixels), box[:2])
        return True

    def render_frame(self, tracks: list[Track], t: float) -> Image.Image:
        """Render the frame shown at ``t`` seconds as a canvas-sized RGBA image."""
        canvas = Image.new("RGBA", (self.width, self.height), CANVAS_COLOR)
        for entry in self.resolve_render_set(tracks, t):
            try:
                self.paint_entry(canvas, entry, t)
            except MediaLoadError as e:
                logger.warning(f"[COMPOSITOR] Skipping {entry.item.id} at {t:.3f}s: {e.message}")
        return canvas

    @staticmethod
    def frame_bytes(image: Image.Image) -> bytes:
        """Raw RGBA bytes of a rendered frame."""
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        return image.tobytes()

    # =========================================================================
    # Memory
    # =========================================================================

    def bind_media_dir(self, media_dir: str | Path | None) -> None:
        """Point the compositor at another job's media and drop every cache."""
        self.media = MediaLibrary(media_dir, self.settings)
        self._layers.clear()

    def release_caches(self) -> None:
        """Drop decoded video frames and sized layers (stills stay decoded)."""
        self.media.release_frames()
        self._layers.clear()

    def reset(self) -> None:
        """Drop every cache, as if freshly created."""
        self.media.clear()
        self._layers.clear()
