"""
Render strategies for exports.

An export tries an ordered list of strategies; each is attempted at most
once. A compositor failure raises ``RenderStageError`` so the orchestrator
can move on to the next strategy, while encoder failures are terminal.

- ``StreamingStrategy``: frames rendered in-process and piped to ffmpeg
- ``DiskBufferedStrategy``: frames written as JPEGs, then encoded as a sequence
- ``FilterGraphStrategy``: no compositor at all, ffmpeg overlays the sources
"""

import asyncio
import gc
import logging
import shutil
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any
from dataclasses import dataclass, field
from pathlib import Path

from PIL import Image

from export_engine.config import Settings
from export_engine.exceptions import MediaLoadError, RenderStageError
from export_engine.render.audio_mixer import AudioSource
from export_engine.render.compositor import DEFAULT_ITEM_SIZE_PCT, FrameCompositor, text_origin
from export_engine.render.encoder import FRAME_PATTERN, EncodeTarget, FFmpegEncoder
from export_engine.render.media import MediaLibrary
from export_engine.render.pool import RendererPool
from export_engine.render.text_renderer import TextRenderer
from export_engine.schemas.export import ExportSettings
from export_engine.schemas.timeline import Timeline, TimelineItem, Track
from export_engine.services.cancellation import CancellationToken
from export_engine.utils.color import first_color

logger = logging.getLogger(__name__)

EncoderFactory = Callable[..., FFmpegEncoder]


@dataclass
class RenderContext:
    """Everything a strategy needs to produce one job's output file."""

    job_id: str
    timeline: Timeline
    settings: ExportSettings
    job_dir: Path
    media_dir: Path
    output_path: Path
    token: CancellationToken = field(default_factory=CancellationToken)
    audio_sources: list[AudioSource] = field(default_factory=list)
    on_progress: Callable[[float, str], None] | None = None
    on_encoding: Callable[[], None] | None = None
    # Encoder of the running strategy, so a cancel can kill it
    encoder: FFmpegEncoder | None = None

    @property
    def frame_count(self) -> int:
        return self.settings.frame_count(self.timeline.duration)

    @property
    def target(self) -> EncodeTarget:
        return EncodeTarget(
            settings=self.settings,
            output_path=self.output_path,
            duration=self.timeline.duration,
            audio_sources=self.audio_sources,
        )

    def scratch_dir(self, name: str) -> Path:
        """Empty scratch directory inside the job directory."""
        path = self.job_dir / name
        if path.exists():
            shutil.rmtree(path)
        path.mkdir(parents=True)
        return path

    def report(self, percent: float, stage: str) -> None:
        if self.on_progress is not None:
            self.on_progress(percent, stage)

    def enter_encoding(self) -> None:
        self.token.raise_if_cancelled()
        if self.on_encoding is not None:
            self.on_encoding()


@dataclass(frozen=True)
class ResourcePolicy:
    """How often a long render releases memory, by output resolution.

    Intervals are in frames: caches are released every ``release_interval``,
    ``gc.collect()`` runs every ``gc_interval`` and the compositor is reset
    to a fresh state every ``recycle_interval``.
    """

    release_interval: int
    gc_interval: int
    recycle_interval: int

    @classmethod
    def for_resolution(cls, width: int, height: int) -> "ResourcePolicy":
        area = width * height
        if area >= 3840 * 2160:
            return cls(15, 300, 9000)
        if area >= 1920 * 1080:
            return cls(45, 600, 18000)
        return cls(90, 900, 27000)

    def after_frame(self, rendered: int, compositor: FrameCompositor) -> None:
        """Housekeeping after ``rendered`` frames have been produced."""
        if rendered % self.recycle_interval == 0:
            logger.info(f"[EXPORT] Recycling compositor context after {rendered} frames")
            compositor.reset()
        elif rendered % self.release_interval == 0:
            compositor.release_caches()
        if rendered % self.gc_interval == 0:
            gc.collect()


class RenderStrategy(ABC):
    """One way of turning a timeline into an encoded file."""

    name = "base"

    def __init__(self, pool: RendererPool, encoder_factory: EncoderFactory = FFmpegEncoder):
        self.pool = pool
        self.encoder_factory = encoder_factory

    @property
    def settings(self) -> Settings:
        return self.pool.settings

    def create_encoder(self, ctx: RenderContext, progress_range: tuple[float, float] | None = None) -> FFmpegEncoder:
        """Encoder for this attempt; ffmpeg progress is mapped into ``progress_range``."""
        on_progress = None
        if progress_range is not None:
            low, high = progress_range

            def on_progress(fraction: float) -> None:
                ctx.report(low + (high - low) * fraction, "encoding")

        encoder = self.encoder_factory(settings=self.settings, on_progress=on_progress)
        ctx.encoder = encoder
        return encoder

    def render_frame(self, compositor: FrameCompositor, tracks: list[Track], t: float) -> Image.Image:
        """Render one frame (runs in a worker thread)."""
        return compositor.render_frame(tracks, t)

    def frame_payload(self, compositor: FrameCompositor, image: Image.Image) -> Any:
        """What the sink receives for a rendered frame (runs in the same worker thread)."""
        return image

    def _produce_frame(self, compositor: FrameCompositor, tracks: list[Track], t: float) -> Any:
        return self.frame_payload(compositor, self.render_frame(compositor, tracks, t))

    async def render_frames(
        self,
        ctx: RenderContext,
        compositor: FrameCompositor,
        sink: Callable[[int, Any], Awaitable[None]],
        progress_range: tuple[float, float],
    ) -> None:
        """Render every output frame in order and hand its payload to ``sink``.

        Raises:
            JobCancelledError: If the job is cancelled between frames
            RenderStageError: If the compositor fails on a frame
        """
        tracks = ctx.timeline.tracks
        total = ctx.frame_count
        fps = ctx.settings.fps
        policy = ResourcePolicy.for_resolution(ctx.settings.width, ctx.settings.height)
        low, high = progress_range

        for index in range(total):
            ctx.token.raise_if_cancelled()
            t = index / fps
            try:
                payload = await asyncio.to_thread(self._produce_frame, compositor, tracks, t)
            except Exception as e:
                raise RenderStageError(f"Frame {index} ({t:.3f}s) failed: {e}", strategy=self.name) from e
            await sink(index, payload)
            policy.after_frame(index + 1, compositor)
            ctx.report(low + (high - low) * (index + 1) / total, "rendering")

    @abstractmethod
    async def run(self, ctx: RenderContext) -> Path:
        """Produce ``ctx.output_path``.

        Raises:
            RenderStageError: If this strategy cannot render the timeline
            EncodeError: If the encoder fails
            JobCancelledError: If the job is cancelled
        """


class StreamingStrategy(RenderStrategy):
    """Raw RGBA frames piped into ffmpeg's stdin while rendering."""

    name = "streaming"

    def frame_payload(self, compositor: FrameCompositor, image: Image.Image) -> bytes:
        return compositor.frame_bytes(image)

    async def run(self, ctx: RenderContext) -> Path:
        settings = ctx.settings
        encoder = self.create_encoder(ctx)
        logger.info(f"[EXPORT] {ctx.job_id}: streaming {ctx.frame_count} frames at {settings.width}x{settings.height}")

        async with self.pool.checkout(settings.width, settings.height, ctx.media_dir) as compositor:
            await encoder.open_stream(ctx.target, ctx.token)
            try:

                async def write(index: int, data: bytes) -> None:
                    await encoder.write_frame(data, ctx.token)

                await self.render_frames(ctx, compositor, write, (0, 95))
                ctx.enter_encoding()
                await encoder.close_stream(ctx.token)
            except BaseException:
                await encoder.abort()
                raise

        ctx.report(99, "encoding")
        return ctx.output_path


class DiskBufferedStrategy(RenderStrategy):
    """JPEG frames in the job directory, encoded afterwards as an image sequence."""

    name = "disk"

    @staticmethod
    def _save_frame(image: Image.Image, path: Path, quality: int) -> None:
        image.convert("RGB").save(path, "JPEG", quality=quality)

    async def run(self, ctx: RenderContext) -> Path:
        settings = ctx.settings
        frames_dir = ctx.scratch_dir("frames")
        quality = self.settings.export_frame_quality
        logger.info(f"[EXPORT] {ctx.job_id}: buffering {ctx.frame_count} frames in {frames_dir}")

        async with self.pool.checkout(settings.width, settings.height, ctx.media_dir) as compositor:

            async def save(index: int, image: Image.Image) -> None:
                path = frames_dir / (FRAME_PATTERN % index)
                try:
                    await asyncio.to_thread(self._save_frame, image, path, quality)
                except OSError as e:
                    raise RenderStageError(f"Could not write {path.name}: {e}", strategy=self.name) from e

            await self.render_frames(ctx, compositor, save, (0, 70))

        ctx.enter_encoding()
        encoder = self.create_encoder(ctx, (70, 99))
        await encoder.encode_sequence(ctx.target, frames_dir, ctx.token)
        ctx.report(99, "encoding")
        return ctx.output_path


@dataclass
class GraphInput:
    """One ``-i`` input of the overlay graph and the chain applied to it."""

    args: list[str]
    filters: list[str]
    x: str
    y: str
    start: float
    end: float


class FilterGraphStrategy(RenderStrategy):
    """Pure ffmpeg composition: overlays on a black base, no per-frame Python.

    Only placement, size, rotation, opacity and timing are reproduced;
    transitions, animations and colour filters are not.
    """

    name = "filter_graph"

    def paint_order(self, timeline: Timeline) -> list[TimelineItem]:
        """Visual items in the compositor's paint order."""
        items = [
            item
            for track in timeline.tracks
            if not track.hidden and track.kind != "audio"
            for item in track.sorted_items()
            if item.type != "audio"
        ]
        items.sort(key=lambda item: (not item.is_background, 0 if item.is_background else item.layer))
        return items

    def _size_filters(self, item: TimelineItem, width: int, height: int) -> list[str]:
        if item.is_background:
            if item.fit == "fill":
                return [f"scale={width}:{height}"]
            if item.fit == "cover":
                return [f"scale={width}:{height}:force_original_aspect_ratio=increase", f"crop={width}:{height}"]
            return [f"scale={width}:{height}:force_original_aspect_ratio=decrease"]
        item_width = max(1, round((item.width or DEFAULT_ITEM_SIZE_PCT) / 100 * width))
        item_height = max(1, round((item.height or DEFAULT_ITEM_SIZE_PCT) / 100 * height))
        return [f"scale={item_width}:{item_height}"]

    def _effect_filters(self, item: TimelineItem) -> list[str]:
        filters = []
        if item.flip_h:
            filters.append("hflip")
        if item.flip_v:
            filters.append("vflip")
        if abs(item.rotation) > 0.01:
            filters.append(f"rotate={item.rotation:g}*PI/180:ow='hypot(iw,ih)':oh='hypot(iw,ih)':fillcolor=none")
        if item.opacity < 100:
            filters.append(f"colorchannelmixer=aa={item.opacity / 100:.4f}")
        return filters

    def _centered(self, item: TimelineItem, width: int, height: int) -> tuple[str, str]:
        # x/y are offsets of the item centre from the canvas centre
        offset_x = round(item.x / 100 * width)
        offset_y = round(item.y / 100 * height)
        return f"(main_w/2)+({offset_x})-(overlay_w/2)", f"(main_h/2)+({offset_y})-(overlay_h/2)"

    def _media_input(self, item: TimelineItem, media: MediaLibrary, width: int, height: int) -> GraphInput:
        path = str(media.resolve(item))
        filters = ["format=rgba"]
        if item.crop is not None and item.crop.zoom > 1:
            zoom = item.crop.zoom
            filters.append(
                f"crop=iw/{zoom:g}:ih/{zoom:g}:(iw-iw/{zoom:g})*{item.crop.x / 100:.4f}:(ih-ih/{zoom:g})*{item.crop.y / 100:.4f}"
            )
        filters.extend(self._size_filters(item, width, height))
        filters.extend(self._effect_filters(item))
        if item.type == "video":
            args = ["-ss", f"{item.offset:g}", "-t", f"{item.duration * item.speed:g}", "-i", path]
            filters.append(f"setpts=(PTS-STARTPTS)/{item.speed:g}+{item.start:.6f}/TB")
        else:
            args = ["-loop", "1", "-t", f"{item.duration:g}", "-i", path]
            filters.append(f"setpts=PTS-STARTPTS+{item.start:.6f}/TB")
        x, y = self._centered(item, width, height)
        return GraphInput(args, filters, x, y, item.start, item.end)

    def _color_input(self, item: TimelineItem, width: int, height: int, fps: float) -> GraphInput:
        red, green, blue, alpha = first_color(item.src or "#000000")
        if item.is_background or (item.width is None and item.height is None):
            size = (width, height)
        else:
            size = (
                max(1, round((item.width or DEFAULT_ITEM_SIZE_PCT) / 100 * width)),
                max(1, round((item.height or DEFAULT_ITEM_SIZE_PCT) / 100 * height)),
            )
        source = f"color=c=0x{red:02x}{green:02x}{blue:02x}@{alpha / 255:.3f}:s={size[0]}x{size[1]}:r={fps:g}"
        args = ["-f", "lavfi", "-t", f"{item.duration:g}", "-i", source]
        filters = ["format=rgba", *self._effect_filters(item), f"setpts=PTS-STARTPTS+{item.start:.6f}/TB"]
        x, y = self._centered(item, width, height)
        return GraphInput(args, filters, x, y, item.start, item.end)

    def _text_input(
        self, item: TimelineItem, text_renderer: TextRenderer, scratch: Path, width: int, height: int
    ) -> GraphInput | None:
        rendered = text_renderer.render(item)
        if rendered is None:
            return None
        path = scratch / f"text_{item.id}.png"
        rendered.image.save(path, "PNG")
        left, top = text_origin(
            item, rendered.padding, rendered.block_width, rendered.block_height, width, height
        )
        args = ["-loop", "1", "-t", f"{item.duration:g}", "-i", str(path)]
        filters = ["format=rgba", *self._effect_filters(item), f"setpts=PTS-STARTPTS+{item.start:.6f}/TB"]
        return GraphInput(args, filters, str(round(left)), str(round(top)), item.start, item.end)

    def build_inputs(self, ctx: RenderContext, scratch: Path) -> list[GraphInput]:
        """Graph inputs for every drawable item; items whose media is missing are skipped."""
        width, height, fps = ctx.settings.width, ctx.settings.height, ctx.settings.fps
        media = MediaLibrary(ctx.media_dir, self.settings)
        # Per call: concurrent jobs build their inputs on separate threads
        text_renderer = TextRenderer(self.settings)
        inputs = []
        for item in self.paint_order(ctx.timeline):
            try:
                if item.type in ("image", "video"):
                    graph_input = self._media_input(item, media, width, height)
                elif item.type == "color":
                    graph_input = self._color_input(item, width, height, fps)
                elif item.type == "text":
                    graph_input = self._text_input(item, text_renderer, scratch, width, height)
                else:
                    graph_input = None
            except MediaLoadError as e:
                logger.warning(f"[EXPORT] Filter graph skipping {item.id}: {e.message}")
                continue
            if graph_input is not None:
                inputs.append(graph_input)
        return inputs

    def build_graph(self, ctx: RenderContext, inputs: list[GraphInput]) -> tuple[list[str], int, str]:
        """``(input args, input count, filter_complex)`` ending in ``[vout]``."""
        settings = ctx.settings
        duration = ctx.timeline.duration
        args = [
            "-f", "lavfi",
            "-t", f"{duration:g}",
            "-i", f"color=c=black:s={settings.width}x{settings.height}:r={settings.fps:g}",
        ]
        parts = []
        current = "0:v"
        for index, graph_input in enumerate(inputs, start=1):
            args.extend(graph_input.args)
            parts.append(f"[{index}:v]{','.join(graph_input.filters)}[clip{index}]")
            enable = f"between(t,{graph_input.start:.6f},{graph_input.end:.6f})"
            parts.append(
                f"[{current}][clip{index}]overlay=x={graph_input.x}:y={graph_input.y}"
                f":eof_action=pass:enable='{enable}'[v{index}]"
            )
            current = f"v{index}"
        parts.append(f"[{current}]format=yuv420p[vout]")
        return args, len(inputs) + 1, ";".join(parts)

    async def run(self, ctx: RenderContext) -> Path:
        scratch = ctx.scratch_dir("graph")
        try:
            inputs = await asyncio.to_thread(self.build_inputs, ctx, scratch)
        except (OSError, ValueError) as e:
            raise RenderStageError(f"Filter graph could not be prepared: {e}", strategy=self.name) from e
        args, input_count, video_filter = self.build_graph(ctx, inputs)
        logger.info(f"[EXPORT] {ctx.job_id}: filter graph with {len(inputs)} overlays")

        ctx.enter_encoding()
        encoder = self.create_encoder(ctx, (0, 99))
        await encoder.run_filter_graph(ctx.target, args, input_count, video_filter, "vout", ctx.token)
        ctx.report(99, "encoding")
        return ctx.output_path


def default_strategies(pool: RendererPool, encoder_factory: EncoderFactory = FFmpegEncoder) -> list[RenderStrategy]:
    """Streaming first, then disk buffering, then the ffmpeg-only graph."""
    return [
        StreamingStrategy(pool, encoder_factory),
        DiskBufferedStrategy(pool, encoder_factory),
        FilterGraphStrategy(pool, encoder_factory),
    ]
