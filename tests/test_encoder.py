"""
Tests for ffmpeg command building and process control.

Command-building tests run everywhere. Tests that spawn a real ffmpeg are
marked with requires_ffmpeg.
"""

from pathlib import Path

import pytest

from export_engine.config import Settings
from export_engine.exceptions import EncodeError, JobCancelledError
from export_engine.render.audio_mixer import AudioSource
from export_engine.render.encoder import FRAME_PATTERN, EncodeTarget, FFmpegEncoder, parse_progress_time
from export_engine.schemas.export import ExportSettings
from export_engine.services.cancellation import CancellationToken


def _target(tmp: Path, audio: list[AudioSource] | None = None, **settings) -> EncodeTarget:
    payload = {"resolution": {"width": 32, "height": 16}, "fps": 10, **settings}
    export = ExportSettings.model_validate(payload)
    output = tmp / f"out.{export.format}"
    return EncodeTarget(export, output, duration=1.0, audio_sources=audio or [])


def _value_after(cmd: list[str], flag: str) -> str:
    return cmd[cmd.index(flag) + 1]


class TestCommandBuilding:
    def test_stream_command(self, temp_output_dir):
        """Raw RGBA frames at the export size and rate from stdin."""
        cmd = FFmpegEncoder(Settings()).build_stream_command(_target(temp_output_dir))
        assert cmd[0] == "ffmpeg"
        assert _value_after(cmd, "-f") == "rawvideo"
        assert _value_after(cmd, "-pix_fmt") == "rgba"
        assert _value_after(cmd, "-s") == "32x16"
        assert _value_after(cmd, "-i") == "pipe:0"
        assert _value_after(cmd, "-map") == "0:v"
        assert _value_after(cmd, "-t") == "1"
        assert cmd[-1] == str(temp_output_dir / "out.mp4")
        assert "-filter_complex" not in cmd

    def test_h264_defaults(self, temp_output_dir):
        cmd = FFmpegEncoder(Settings()).build_stream_command(_target(temp_output_dir, quality="medium"))
        assert _value_after(cmd, "-c:v") == "libx264"
        assert _value_after(cmd, "-crf") == "23"
        assert "+faststart" in cmd

    def test_nvenc(self, temp_output_dir):
        cmd = FFmpegEncoder(Settings()).build_stream_command(_target(temp_output_dir, hardwareAccel=True))
        assert _value_after(cmd, "-c:v") == "h264_nvenc"
        assert _value_after(cmd, "-cq") == "18"

    def test_webm(self, temp_output_dir):
        """WebM uses VP9 with Opus audio and no faststart."""
        audio = [AudioSource("music", "/m/music.mp3", start=0, duration=1)]
        cmd = FFmpegEncoder(Settings()).build_stream_command(_target(temp_output_dir, audio, format="webm", quality="low"))
        assert _value_after(cmd, "-c:v") == "libvpx-vp9"
        assert _value_after(cmd, "-crf") == "35"
        assert _value_after(cmd, "-c:a") == "libopus"
        assert "+faststart" not in cmd

    def test_audio_inputs_follow_video(self, temp_output_dir):
        """Audio files are inputs 1..n and the mix is mapped as the audio stream."""
        audio = [
            AudioSource("a", "/m/a.mp3", start=0, duration=1),
            AudioSource("b", "/m/b.mp3", start=0.5, duration=0.5),
        ]
        cmd = FFmpegEncoder(Settings()).build_stream_command(_target(temp_output_dir, audio))
        inputs = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-i"]
        assert inputs == ["pipe:0", "/m/a.mp3", "/m/b.mp3"]
        graph = _value_after(cmd, "-filter_complex")
        assert graph.startswith("[1:a]")
        assert "[2:a]" in graph
        maps = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-map"]
        assert maps == ["0:v", "[aout]"]
        assert _value_after(cmd, "-c:a") == "aac"

    def test_sequence_command(self, temp_output_dir):
        frames_dir = temp_output_dir / "frames"
        cmd = FFmpegEncoder(Settings()).build_sequence_command(_target(temp_output_dir), frames_dir)
        assert _value_after(cmd, "-framerate") == "10"
        assert _value_after(cmd, "-start_number") == "0"
        assert _value_after(cmd, "-i") == str(frames_dir / FRAME_PATTERN)

    def test_graph_command(self, temp_output_dir):
        """The video graph and the audio mix share one -filter_complex."""
        audio = [AudioSource("a", "/m/a.mp3", start=0, duration=1)]
        inputs = ["-f", "lavfi", "-i", "color=c=black:s=32x16:r=10", "-i", "/m/clip.mp4"]
        cmd = FFmpegEncoder(Settings()).build_graph_command(
            _target(temp_output_dir, audio), inputs, 2, "[0:v][1:v]overlay[vout]", "vout"
        )
        graph = _value_after(cmd, "-filter_complex")
        assert graph.startswith("[0:v][1:v]overlay[vout];[2:a]")
        maps = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-map"]
        assert maps == ["[vout]", "[aout]"]

    def test_custom_ffmpeg_path(self, temp_output_dir):
        cmd = FFmpegEncoder(Settings(ffmpeg_path="/opt/ffmpeg/bin/ffmpeg")).build_stream_command(_target(temp_output_dir))
        assert cmd[0] == "/opt/ffmpeg/bin/ffmpeg"


class TestProgressParsing:
    @pytest.mark.parametrize(
        "line,expected",
        [
            ("frame=  30 fps=0.0 q=28.0 size=0kB time=00:00:01.00 bitrate=0.4kbits/s", 1.0),
            ("size=  100kB time=01:02:03.50 bitrate=", 3723.5),
            ("Input #0, rawvideo, from 'pipe:0':", None),
        ],
    )
    def test_parse_progress_time(self, line, expected):
        assert parse_progress_time(line) == expected


@pytest.mark.requires_ffmpeg
@pytest.mark.asyncio
class TestFFmpegProcess:
    async def test_stream_encode(self, temp_output_dir):
        """Ten black frames become an output file; progress only moves forward."""
        reported = []
        encoder = FFmpegEncoder(Settings(), on_progress=reported.append)
        target = _target(temp_output_dir)
        await encoder.open_stream(target)
        frame = bytes(32 * 16 * 4)
        for _ in range(10):
            await encoder.write_frame(frame)
        await encoder.close_stream()
        assert target.output_path.stat().st_size > 0
        assert not encoder.running
        assert reported == sorted(reported)

    async def test_failure_keeps_stderr_tail(self, temp_output_dir):
        """An empty frame directory makes ffmpeg fail; the error carries its stderr."""
        encoder = FFmpegEncoder(Settings())
        empty = temp_output_dir / "frames"
        empty.mkdir()
        with pytest.raises(EncodeError) as exc_info:
            await encoder.encode_sequence(_target(temp_output_dir), empty)
        assert exc_info.value.returncode not in (None, 0)
        assert exc_info.value.stderr_tail

    async def test_cancel_kills_process(self, temp_output_dir):
        token = CancellationToken()
        encoder = FFmpegEncoder(Settings())
        await encoder.open_stream(_target(temp_output_dir), token)
        token.cancel("test")
        with pytest.raises(JobCancelledError):
            await encoder.close_stream(token)
        assert not encoder.running
        await encoder.abort()
