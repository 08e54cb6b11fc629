"""
Audio mix graph for exports.

This module handles:
- Collecting audio sources (audio items plus video items with un-muted sound)
- Per-source trim, playback speed, volume and timeline delay
- Summing all sources into one stream with ``amix``

The encoder receives each source file as an extra ``-i`` input and the
returned filter graph as part of its ``-filter_complex``.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial

from export_engine.config import Settings, get_settings
from export_engine.exceptions import MediaLoadError
from export_engine.render.media import MediaLibrary
from export_engine.schemas.timeline import Timeline
from export_engine.utils.media_info import AudioStreamInfo, inspect_audio

logger = logging.getLogger(__name__)

MIX_OUTPUT_LABEL = "aout"

AudioInspector = Callable[[str], AudioStreamInfo | None]


@dataclass
class AudioSource:
    """One audio input placed on the timeline."""

    item_id: str
    file_path: str
    start: float
    duration: float
    offset: float = 0.0
    speed: float = 1.0
    volume: float = 1.0

    @property
    def delay_ms(self) -> int:
        return round(self.start * 1000)

    @property
    def source_duration(self) -> float:
        """Seconds of source media consumed (the timeline span times the speed)."""
        return self.duration * self.speed

    def to_dict(self) -> dict:
        """Serialize to dictionary (used for the export log)."""
        return {
            "item_id": self.item_id,
            "file_path": self.file_path,
            "start": self.start,
            "duration": self.duration,
            "offset": self.offset,
            "speed": self.speed,
            "volume": self.volume,
            "source_duration": self.source_duration,
        }


def collect_audio_sources(
    timeline: Timeline,
    media: MediaLibrary,
    inspector: AudioInspector | None = None,
) -> list[AudioSource]:
    """Audio sources of a timeline in track order.

    Audio items count unless silent (volume 0). Video items count unless
    muted, silent or known to carry no audio. Every remaining file is
    inspected: a file without an audio stream is skipped, and the trim
    window is capped at the end of the stream so ``atrim`` never asks for
    audio past it. When inspection fails, audio items are kept uncapped
    while video items with ``has_audio=None`` are treated as silent. Items
    on muted tracks and items whose media cannot be found are skipped.
    """
    if inspector is None:
        inspector = partial(inspect_audio, settings=media.settings)
    sources = []
    for track, item in timeline.iter_items():
        if track.muted or item.type not in ("audio", "video"):
            continue
        if item.volume <= 0:
            continue
        if item.type == "video" and (item.muted or item.has_audio is False):
            continue

        try:
            path = str(media.resolve(item))
        except MediaLoadError as e:
            logger.warning(f"[AUDIO MIX] Skipping {item.id}: {e.message}")
            continue

        info = inspector(path)
        if info is None:
            if item.type == "video" and item.has_audio is None:
                continue
        elif not info.has_audio:
            logger.info(f"[AUDIO MIX] {item.id} has no audio stream")
            continue

        duration = item.duration
        available = info.available_after(item.offset) if info is not None else None
        if available is not None:
            if available <= 0:
                logger.info(f"[AUDIO MIX] {item.id}: offset {item.offset:g}s is past the end of its audio")
                continue
            duration = min(duration, available / item.speed)

        sources.append(
            AudioSource(
                item_id=item.id,
                file_path=path,
                start=item.start,
                duration=duration,
                offset=item.offset,
                speed=item.speed,
                volume=item.volume,
            )
        )
    return sources


def atempo_chain(speed: float) -> list[str]:
    """``atempo`` filters for a playback rate (each stage limited to 0.5-2.0)."""
    filters = []
    while speed > 2.0:
        filters.append("atempo=2.0")
        speed /= 2.0
    while speed < 0.5:
        filters.append("atempo=0.5")
        speed /= 0.5
    if speed != 1.0:
        filters.append(f"atempo={speed:g}")
    return filters


class AudioMixer:
    """Builds the ffmpeg filter graph that mixes audio sources."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def build_source_filter(self, source: AudioSource, input_index: int, label: str) -> str:
        parts = [
            f"atrim=start={source.offset:g}:duration={source.source_duration:g}",
            "asetpts=PTS-STARTPTS",
        ]
        parts.extend(atempo_chain(source.speed))
        if source.volume != 1.0:
            parts.append(f"volume={source.volume:g}")
        delay = source.delay_ms
        parts.append(f"adelay={delay}|{delay}")
        return f"[{input_index}:a]" + ",".join(parts) + f"[{label}]"

    def build_filter(
        self,
        sources: list[AudioSource],
        first_input_index: int,
    ) -> tuple[list[str], str, str] | None:
        """
        Build encoder inputs and the mix graph.

        Args:
            sources: Audio sources to mix
            first_input_index: ffmpeg input index of the first source

        Returns:
            ``(input_args, filter_graph, output_label)``, or None without sources
        """
        if not sources:
            return None

        inputs: list[str] = []
        filter_parts: list[str] = []
        labels: list[str] = []

        for idx, source in enumerate(sources):
            inputs.extend(["-i", source.file_path])
            label = f"a{idx}"
            if len(sources) == 1:
                # Single source - no mixing needed
                label = MIX_OUTPUT_LABEL
            filter_parts.append(self.build_source_filter(source, first_input_index + idx, label))
            labels.append(label)

        if len(sources) > 1:
            mix_inputs = "".join(f"[{label}]" for label in labels)
            filter_parts.append(
                f"{mix_inputs}amix=inputs={len(labels)}:duration=longest:dropout_transition=0:normalize=0[{MIX_OUTPUT_LABEL}]"
            )

        logger.info(f"[AUDIO MIX] Mixing {len(sources)} source(s)")
        return inputs, ";".join(filter_parts), MIX_OUTPUT_LABEL

    def output_args(self, audio_codec: str) -> list[str]:
        return [
            "-c:a", audio_codec,
            "-b:a", self.settings.export_audio_bitrate,
            "-ar", str(self.settings.export_audio_sample_rate),
        ]
