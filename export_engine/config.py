import os
import tempfile
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    # Seconds before an ffprobe inspection of a source file is abandoned
    export_ffprobe_timeout: float = 30

    # Job workspace: every job gets <export_temp_dir>/<job_id>/
    export_temp_dir: str = os.path.join(tempfile.gettempdir(), "export-engine")

    # Worker slots (independent jobs rendered concurrently)
    export_max_concurrent_jobs: int = 2
    # Reusable compositor contexts kept warm across jobs
    export_renderer_pool_size: int = 2

    # Encoding
    export_audio_bitrate: str = "192k"
    export_audio_sample_rate: int = 48000
    export_ffmpeg_threads: int = 2
    export_x264_preset: str = "medium"
    export_nvenc_preset: str = "fast"
    # JPEG quality for disk-buffered frame sequences
    export_frame_quality: int = 90

    # Decoded video frames kept per compositor (LRU)
    export_video_frame_cache_size: int = 64

    # Text rendering
    export_default_font: str = "DejaVuSans"
    export_font_paths: list[str] = [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
        "/usr/share/fonts/truetype/noto/NotoSansCJK-Regular.ttc",
        "/System/Library/Fonts/Helvetica.ttc",
    ]
    export_bold_font_paths: list[str] = [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/opentype/noto/NotoSansCJK-Bold.ttc",
        "/usr/share/fonts/truetype/noto/NotoSansCJK-Bold.ttc",
    ]


@lru_cache
def get_settings() -> Settings:
    return Settings()
