from export_engine.render.audio_mixer import AudioMixer, AudioSource, collect_audio_sources
from export_engine.render.compositor import FrameCompositor, RenderEntry
from export_engine.render.encoder import EncodeTarget, FFmpegEncoder
from export_engine.render.pool import RendererPool
from export_engine.render.strategies import (
    DiskBufferedStrategy,
    FilterGraphStrategy,
    RenderContext,
    RenderStrategy,
    StreamingStrategy,
    default_strategies,
)

__all__ = [
    "FrameCompositor",
    "RenderEntry",
    "AudioMixer",
    "AudioSource",
    "collect_audio_sources",
    "EncodeTarget",
    "FFmpegEncoder",
    "RendererPool",
    "RenderContext",
    "RenderStrategy",
    "StreamingStrategy",
    "DiskBufferedStrategy",
    "FilterGraphStrategy",
    "default_strategies",
]
