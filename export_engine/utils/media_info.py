"""Audio stream inspection of export sources using FFprobe."""

import json
import logging
import subprocess
from dataclasses import dataclass

from export_engine.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioStreamInfo:
    """What the mixer needs to know about a source file's sound."""

    has_audio: bool
    # Seconds of audio in the first stream; None when ffprobe reports none
    duration: float | None = None

    def available_after(self, offset: float) -> float | None:
        """Seconds of audio left from ``offset`` on, or None when unknown."""
        if self.duration is None:
            return None
        return max(0.0, self.duration - offset)


NO_AUDIO = AudioStreamInfo(has_audio=False)


def _run_ffprobe(file_path: str, *args, settings: Settings) -> dict:
    """Run ffprobe and return parsed JSON."""
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=settings.export_ffprobe_timeout)
    except subprocess.TimeoutExpired as e:
        raise RuntimeError(f"ffprobe timed out after {e.timeout:g}s") from e
    except OSError as e:
        raise RuntimeError(f"ffprobe could not be started: {e}") from e
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr.strip()}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}") from e


def _seconds(value) -> float | None:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds > 0 else None


def inspect_audio(file_path: str, settings: Settings | None = None) -> AudioStreamInfo | None:
    """
    Look up the first audio stream of a media file.

    The stream duration is preferred; containers that only report a format
    duration (common for MP3) fall back to that.

    Args:
        file_path: Path to media file
        settings: Application settings (defaults to ``get_settings()``)

    Returns:
        Stream info, or None when ffprobe could not inspect the file
    """
    settings = settings or get_settings()
    try:
        data = _run_ffprobe(
            file_path, "-show_streams", "-show_format", "-select_streams", "a:0", settings=settings
        )
    except RuntimeError as e:
        logger.warning(f"[AUDIO MIX] Could not inspect {file_path}: {e}")
        return None

    streams = data.get("streams") or []
    if not streams:
        return NO_AUDIO
    duration = _seconds(streams[0].get("duration"))
    if duration is None:
        duration = _seconds((data.get("format") or {}).get("duration"))
    return AudioStreamInfo(has_audio=True, duration=duration)
