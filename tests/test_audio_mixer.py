"""
Tests for audio source collection and the mix graph.

Test cases:
1. Which items contribute audio
2. Per-source filter chain (trim, speed, volume, delay)
3. Single source vs amix
"""

from pathlib import Path

import pytest

from export_engine.config import Settings
from export_engine.render.audio_mixer import (
    MIX_OUTPUT_LABEL,
    AudioMixer,
    AudioSource,
    atempo_chain,
    collect_audio_sources,
)
from export_engine.render.media import MediaLibrary
from export_engine.utils.media_info import NO_AUDIO, AudioStreamInfo


@pytest.fixture
def media_dir(temp_output_dir: Path) -> Path:
    """Media directory with one empty file per item id."""
    for name in ("music.mp3", "clip.mp4", "silent.mp4", "muted.mp4", "quiet.mp3"):
        (temp_output_dir / name).write_bytes(b"")
    return temp_output_dir


def _inspect_by_name(path: str) -> AudioStreamInfo:
    """Files named silent* carry no audio; everything else has a long stream."""
    if "silent" in Path(path).name:
        return NO_AUDIO
    return AudioStreamInfo(has_audio=True, duration=600)


class TestCollectAudioSources:
    def test_selection(self, make_timeline, media_dir):
        """Audio items and un-muted video items with sound are collected."""
        timeline = make_timeline(
            [
                {
                    "id": "v",
                    "type": "video",
                    "items": [
                        {"id": "clip", "type": "video", "start": 0, "duration": 2, "volume": 0.5},
                        {"id": "silent", "type": "video", "start": 2, "duration": 1},
                        {"id": "muted", "type": "video", "start": 3, "duration": 1, "muteVideo": True},
                    ],
                },
                {
                    "id": "a",
                    "type": "audio",
                    "items": [
                        {"id": "music", "type": "audio", "start": 1, "duration": 3, "offset": 2},
                        {"id": "quiet", "type": "audio", "start": 0, "duration": 1, "volume": 0},
                    ],
                },
            ]
        )
        sources = collect_audio_sources(timeline, MediaLibrary(media_dir, Settings()), inspector=_inspect_by_name)
        assert [source.item_id for source in sources] == ["clip", "music"]
        assert sources[0].volume == 0.5
        assert sources[1].offset == 2
        assert Path(sources[1].file_path).name == "music.mp3"

    def test_known_silent_video_is_not_inspected(self, make_timeline, media_dir):
        calls = []

        def inspector(path: str) -> AudioStreamInfo:
            calls.append(path)
            return AudioStreamInfo(has_audio=True)

        timeline = make_timeline(
            [{"id": "v", "type": "video", "items": [{"id": "clip", "type": "video", "start": 0, "duration": 2, "hasAudio": False}]}]
        )
        assert collect_audio_sources(timeline, MediaLibrary(media_dir, Settings()), inspector=inspector) == []
        assert calls == []

    def test_muted_track_and_missing_media_are_skipped(self, make_timeline, media_dir):
        timeline = make_timeline(
            [
                {"id": "a1", "type": "audio", "muted": True, "items": [{"id": "music", "type": "audio", "start": 0, "duration": 1}]},
                {"id": "a2", "type": "audio", "items": [{"id": "nowhere", "type": "audio", "start": 0, "duration": 1}]},
            ]
        )
        assert collect_audio_sources(timeline, MediaLibrary(media_dir, Settings()), inspector=_inspect_by_name) == []


class TestStreamLength:
    def _timeline(self, make_timeline, **item):
        payload = {"id": "music", "type": "audio", "start": 0, "duration": 10}
        payload.update(item)
        return make_timeline([{"id": "a", "type": "audio", "items": [payload]}], duration=20)

    def test_trim_window_capped_at_stream_end(self, make_timeline, media_dir):
        """4s of audio from offset 2 at 2x speed fills 1s of timeline."""
        timeline = self._timeline(make_timeline, offset=2, speed=2)
        sources = collect_audio_sources(
            timeline, MediaLibrary(media_dir, Settings()), inspector=lambda path: AudioStreamInfo(True, 4.0)
        )
        assert sources[0].duration == pytest.approx(1.0)
        assert sources[0].source_duration == pytest.approx(2.0)
        graph = AudioMixer(Settings()).build_filter(sources, 1)[1]
        assert graph.startswith("[1:a]atrim=start=2:duration=2,")

    def test_offset_past_end_is_skipped(self, make_timeline, media_dir):
        timeline = self._timeline(make_timeline, offset=5)
        sources = collect_audio_sources(
            timeline, MediaLibrary(media_dir, Settings()), inspector=lambda path: AudioStreamInfo(True, 4.0)
        )
        assert sources == []

    def test_unknown_length_is_not_capped(self, make_timeline, media_dir):
        timeline = self._timeline(make_timeline)
        sources = collect_audio_sources(
            timeline, MediaLibrary(media_dir, Settings()), inspector=lambda path: AudioStreamInfo(True)
        )
        assert sources[0].duration == 10

    def test_uninspectable_files(self, make_timeline, media_dir):
        """Audio items are kept as-is; video items of unknown sound are dropped."""
        timeline = make_timeline(
            [
                {"id": "v", "type": "video", "items": [{"id": "clip", "type": "video", "start": 0, "duration": 2}]},
                {"id": "a", "type": "audio", "items": [{"id": "music", "type": "audio", "start": 0, "duration": 3}]},
            ]
        )
        sources = collect_audio_sources(timeline, MediaLibrary(media_dir, Settings()), inspector=lambda path: None)
        assert [(source.item_id, source.duration) for source in sources] == [("music", 3)]

    def test_audio_file_without_stream_is_skipped(self, make_timeline, media_dir):
        timeline = self._timeline(make_timeline)
        sources = collect_audio_sources(timeline, MediaLibrary(media_dir, Settings()), inspector=lambda path: NO_AUDIO)
        assert sources == []


class TestAudioSource:
    def test_to_dict(self):
        source = AudioSource("music", "/m/music.mp3", start=1, duration=3, offset=0.5, speed=2, volume=0.7)
        assert source.to_dict() == {
            "item_id": "music",
            "file_path": "/m/music.mp3",
            "start": 1,
            "duration": 3,
            "offset": 0.5,
            "speed": 2,
            "volume": 0.7,
            "source_duration": 6,
        }
        assert source.delay_ms == 1000


class TestAtempo:
    @pytest.mark.parametrize(
        "speed,expected",
        [
            (1.0, []),
            (1.5, ["atempo=1.5"]),
            (4.0, ["atempo=2.0", "atempo=2"]),
            (0.25, ["atempo=0.5", "atempo=0.5"]),
        ],
    )
    def test_chain(self, speed, expected):
        assert atempo_chain(speed) == expected


class TestMixGraph:
    def test_no_sources(self):
        assert AudioMixer(Settings()).build_filter([], 1) is None

    def test_single_source_skips_amix(self):
        source = AudioSource("music", "/m/music.mp3", start=1.5, duration=3, offset=2, speed=2, volume=0.8)
        inputs, graph, label = AudioMixer(Settings()).build_filter([source], 1)
        assert inputs == ["-i", "/m/music.mp3"]
        assert label == MIX_OUTPUT_LABEL
        assert graph == (
            "[1:a]atrim=start=2:duration=6,asetpts=PTS-STARTPTS,atempo=2,"
            "volume=0.8,adelay=1500|1500[aout]"
        )
        assert "amix" not in graph

    def test_multiple_sources_are_mixed(self):
        sources = [
            AudioSource("a", "/m/a.mp3", start=0, duration=2),
            AudioSource("b", "/m/b.mp3", start=1, duration=2),
        ]
        inputs, graph, label = AudioMixer(Settings()).build_filter(sources, 3)
        assert inputs == ["-i", "/m/a.mp3", "-i", "/m/b.mp3"]
        chains = graph.split(";")
        assert chains[0].startswith("[3:a]") and chains[0].endswith("[a0]")
        assert chains[1].startswith("[4:a]") and chains[1].endswith("[a1]")
        assert chains[2] == "[a0][a1]amix=inputs=2:duration=longest:dropout_transition=0:normalize=0[aout]"

    def test_output_args(self):
        settings = Settings()
        args = AudioMixer(settings).output_args("aac")
        assert args[:2] == ["-c:a", "aac"]
        assert str(settings.export_audio_sample_rate) in args
