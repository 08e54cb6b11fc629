"""FFmpeg encoder process for exports.

Three input modes share one output section:
- stream: raw RGBA frames written to stdin (``-f rawvideo -i pipe:0``)
- sequence: a directory of numbered JPEG frames
- graph: source files composed by an ffmpeg ``filter_complex``

Audio sources are appended as extra inputs with the mix graph from
``AudioMixer``. Progress is read from ffmpeg's ``time=`` status lines on
stderr; the last lines of stderr are kept for error reports.
"""

import asyncio
import logging
import re
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from export_engine.config import Settings, get_settings
from export_engine.exceptions import EncodeError
from export_engine.render.audio_mixer import AudioMixer, AudioSource
from export_engine.schemas.export import ExportSettings
from export_engine.services.cancellation import CancellationToken

logger = logging.getLogger(__name__)

# CRF per container and quality
QUALITY_CRF = {
    "mp4": {"high": 18, "medium": 23, "low": 28},
    "mov": {"high": 18, "medium": 23, "low": 28},
    "webm": {"high": 18, "medium": 28, "low": 35},
}

FRAME_PATTERN = "frame_%05d.jpg"
STDERR_TAIL_LINES = 40
# How often a running ffmpeg is checked for cancellation (seconds)
POLL_INTERVAL = 0.25

_TIME_RE = re.compile(r"time=(\d+):(\d+):(\d+(?:\.\d+)?)")
_LINE_SPLIT_RE = re.compile(r"[\r\n]")


def parse_progress_time(line: str) -> float | None:
    """Seconds from an ffmpeg ``time=HH:MM:SS.xx`` status line."""
    match = _TIME_RE.search(line)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


@dataclass
class EncodeTarget:
    """What to produce: format, destination, length and audio."""

    settings: ExportSettings
    output_path: Path
    duration: float
    audio_sources: list[AudioSource] = field(default_factory=list)


class FFmpegEncoder:
    """Owns at most one ffmpeg process at a time.

    Args:
        settings: Application settings (defaults to ``get_settings()``)
        on_progress: Called with the encoded fraction (0-1) while encoding
    """

    def __init__(
        self,
        settings: Settings | None = None,
        on_progress: Callable[[float], None] | None = None,
    ):
        self.settings = settings or get_settings()
        self.audio_mixer = AudioMixer(self.settings)
        self.on_progress = on_progress
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task | None = None
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._duration = 0.0

    # =========================================================================
    # Command Building
    # =========================================================================

    def video_codec_args(self, export: ExportSettings) -> list[str]:
        crf = QUALITY_CRF[export.format][export.quality]
        if export.format == "webm":
            return ["-c:v", "libvpx-vp9", "-crf", str(crf), "-b:v", "0"]
        if export.hardware_accel:
            return ["-c:v", "h264_nvenc", "-preset", self.settings.export_nvenc_preset, "-rc", "vbr", "-cq", str(crf)]
        return ["-c:v", "libx264", "-preset", self.settings.export_x264_preset, "-crf", str(crf)]

    @staticmethod
    def audio_codec(export: ExportSettings) -> str:
        return "libopus" if export.format == "webm" else "aac"

    def _with_output(
        self,
        cmd: list[str],
        target: EncodeTarget,
        first_audio_index: int,
        video_map: str,
        video_filter: str | None = None,
    ) -> list[str]:
        export = target.settings
        audio = self.audio_mixer.build_filter(target.audio_sources, first_audio_index)

        filters = [video_filter] if video_filter else []
        if audio is not None:
            audio_inputs, audio_filter, audio_label = audio
            cmd.extend(audio_inputs)
            filters.append(audio_filter)
        if filters:
            cmd.extend(["-filter_complex", ";".join(filters)])

        cmd.extend(["-map", video_map])
        if audio is not None:
            cmd.extend(["-map", f"[{audio_label}]"])

        cmd.extend(self.video_codec_args(export))
        cmd.extend(["-pix_fmt", "yuv420p", "-r", f"{export.fps:g}"])
        if audio is not None:
            cmd.extend(self.audio_mixer.output_args(self.audio_codec(export)))
        cmd.extend(["-t", f"{target.duration:g}"])
        if export.format in ("mp4", "mov"):
            cmd.extend(["-movflags", "+faststart"])
        cmd.extend(["-threads", str(self.settings.export_ffmpeg_threads)])
        cmd.append(str(target.output_path))
        return cmd

    def build_stream_command(self, target: EncodeTarget) -> list[str]:
        """Command reading raw RGBA frames from stdin."""
        export = target.settings
        cmd = [
            self.settings.ffmpeg_path,
            "-y",
            "-f", "rawvideo",
            "-pix_fmt", "rgba",
            "-s", f"{export.width}x{export.height}",
            "-r", f"{export.fps:g}",
            "-i", "pipe:0",
        ]
        return self._with_output(cmd, target, 1, "0:v")

    def build_sequence_command(self, target: EncodeTarget, frames_dir: Path) -> list[str]:
        """Command reading ``frame_00000.jpg``... from ``frames_dir``."""
        cmd = [
            self.settings.ffmpeg_path,
            "-y",
            "-framerate", f"{target.settings.fps:g}",
            "-start_number", "0",
            "-i", str(Path(frames_dir) / FRAME_PATTERN),
        ]
        return self._with_output(cmd, target, 1, "0:v")

    def build_graph_command(
        self,
        target: EncodeTarget,
        inputs: list[str],
        input_count: int,
        video_filter: str,
        video_label: str,
    ) -> list[str]:
        """Command composing ``input_count`` video inputs with ``video_filter``."""
        cmd = [self.settings.ffmpeg_path, "-y", *inputs]
        return self._with_output(cmd, target, input_count, f"[{video_label}]", video_filter)

    # =========================================================================
    # Process Control
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    async def _spawn(self, cmd: list[str], duration: float, stdin=None) -> None:
        if self.running:
            raise EncodeError("Encoder is already running")
        self._stderr_tail.clear()
        self._duration = duration
        logger.info(f"[ENCODE] {' '.join(cmd)}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=stdin,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncodeError(f"ffmpeg could not be started: {e}") from e
        self._stderr_task = asyncio.create_task(self._read_stderr(self._process.stderr))

    async def _read_stderr(self, stream: asyncio.StreamReader) -> None:
        # ffmpeg separates status updates with \r, so read chunks, not lines
        pending = ""
        last_reported = -1
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            pending += chunk.decode("utf-8", errors="replace")
            *lines, pending = _LINE_SPLIT_RE.split(pending)
            for line in lines:
                if not line.strip():
                    continue
                self._stderr_tail.append(line)
                seconds = parse_progress_time(line)
                if seconds is None or self.on_progress is None or self._duration <= 0:
                    continue
                pct = min(100, int(seconds / self._duration * 100))
                if pct > last_reported:
                    last_reported = pct
                    self.on_progress(pct / 100)
        if pending.strip():
            self._stderr_tail.append(pending)

    async def _wait(self, token: CancellationToken | None) -> None:
        """Wait for ffmpeg to exit, checking ``token`` while it runs.

        Raises:
            JobCancelledError: If cancelled (the process is killed first)
            EncodeError: If ffmpeg exits non-zero
        """
        process = self._process
        exited = asyncio.ensure_future(process.wait())
        while not exited.done():
            if token is not None and token.cancelled:
                await self.abort()
                token.raise_if_cancelled()
            await asyncio.wait({exited}, timeout=POLL_INTERVAL)

        if self._stderr_task is not None:
            await self._stderr_task
            self._stderr_task = None

        if process.returncode != 0:
            tail = self.stderr_tail
            logger.error(f"[ENCODE] ffmpeg exited with {process.returncode}: {tail[-2000:]}")
            raise EncodeError(
                f"ffmpeg exited with code {process.returncode}",
                returncode=process.returncode,
                stderr_tail=tail,
            )
        logger.info("[ENCODE] ffmpeg finished")

    async def open_stream(self, target: EncodeTarget, token: CancellationToken | None = None) -> None:
        if token is not None:
            token.raise_if_cancelled()
        await self._spawn(self.build_stream_command(target), target.duration, stdin=asyncio.subprocess.PIPE)

    async def write_frame(self, data: bytes, token: CancellationToken | None = None) -> None:
        """Write one frame, suspending while the pipe is full."""
        if token is not None:
            token.raise_if_cancelled()
        if not self.running:
            raise EncodeError(
                "ffmpeg is not accepting frames",
                returncode=self._process.returncode if self._process else None,
                stderr_tail=self.stderr_tail,
            )
        try:
            self._process.stdin.write(data)
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise EncodeError(
                f"ffmpeg input stream broke: {e}",
                returncode=self._process.returncode,
                stderr_tail=self.stderr_tail,
            ) from e

    async def close_stream(self, token: CancellationToken | None = None) -> None:
        """Signal end of input and wait for the muxed output."""
        stdin = self._process.stdin
        if not stdin.is_closing():
            stdin.close()
        try:
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass
        await self._wait(token)

    async def encode_sequence(
        self,
        target: EncodeTarget,
        frames_dir: Path,
        token: CancellationToken | None = None,
    ) -> None:
        await self._spawn(self.build_sequence_command(target, frames_dir), target.duration)
        await self._wait(token)

    async def run_filter_graph(
        self,
        target: EncodeTarget,
        inputs: list[str],
        input_count: int,
        video_filter: str,
        video_label: str,
        token: CancellationToken | None = None,
    ) -> None:
        cmd = self.build_graph_command(target, inputs, input_count, video_filter, video_label)
        await self._spawn(cmd, target.duration)
        await self._wait(token)

    async def abort(self) -> None:
        """Kill the running process, if any. Safe to call repeatedly."""
        process = self._process
        if process is None:
            return
        if process.returncode is None:
            logger.info("[ENCODE] Killing ffmpeg")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
        if self._stderr_task is not None:
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
            self._stderr_task = None
