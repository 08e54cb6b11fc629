"""
Tests for the frame compositor.

Test cases:
1. Render set roles during and outside transition windows
2. Paint order (backgrounds first, then layer)
3. Background fit (cover fills the canvas, contain letterboxes)
4. Overlap dissolve midpoint
5. Missing media is skipped, not fatal
"""

from pathlib import Path

import pytest
from PIL import Image

from export_engine.config import Settings
from export_engine.render.compositor import FrameCompositor
from export_engine.render.media import MediaLibrary
from export_engine.render.style import Role

WIDTH, HEIGHT = 64, 36


def _color(item_id: str, start: float, duration: float, fill: str = "#ff0000", **fields) -> dict:
    return {"id": item_id, "type": "color", "src": fill, "start": start, "duration": duration, **fields}


@pytest.fixture
def compositor() -> FrameCompositor:
    return FrameCompositor(WIDTH, HEIGHT, settings=Settings())


@pytest.fixture
def solid_image(temp_output_dir: Path):
    """Write a solid-colour PNG and return its path."""

    def _make(size: tuple[int, int], color=(255, 0, 0, 255), name: str = "solid.png") -> Path:
        path = temp_output_dir / name
        Image.new("RGBA", size, color).save(path)
        return path

    return _make


class TestRenderSet:
    """Per-track transition state machine."""

    def test_plain_item(self, compositor, make_timeline):
        timeline = make_timeline([{"id": "v", "type": "video", "items": [_color("a", 0, 2)]}])
        entries = compositor.resolve_render_set(timeline.tracks, 1.0)
        assert [(e.item.id, e.role) for e in entries] == [("a", Role.MAIN)]
        assert not entries[0].is_transitioning

    def test_postfix_transition_roles(self, compositor, make_timeline):
        """Inside B's window: A is Outgoing (painted first), B is Main."""
        timeline = make_timeline(
            [
                {
                    "id": "v",
                    "type": "video",
                    "items": [
                        _color("a", 0, 2),
                        _color("b", 2, 2, transition={"type": "dissolve", "duration": 1}),
                    ],
                }
            ]
        )
        entries = compositor.resolve_render_set(timeline.tracks, 2.5)
        assert [(e.item.id, e.role) for e in entries] == [("a", Role.OUTGOING), ("b", Role.MAIN)]
        assert entries[1].progress == pytest.approx(0.5)

        after = compositor.resolve_render_set(timeline.tracks, 3.5)
        assert [(e.item.id, e.role) for e in after] == [("b", Role.MAIN)]

    def test_first_item_transition_has_no_outgoing(self, compositor, make_timeline):
        """At the start of a track only Main is emitted."""
        timeline = make_timeline(
            [{"id": "v", "type": "video", "items": [_color("a", 0, 2, transition={"type": "slide", "duration": 1})]}]
        )
        entries = compositor.resolve_render_set(timeline.tracks, 0.5)
        assert [(e.item.id, e.role) for e in entries] == [("a", Role.MAIN)]
        assert entries[0].is_transitioning

    def test_prefix_transition_starts_before_item(self, compositor, make_timeline):
        """A prefix window runs before B starts, while A is still on screen."""
        timeline = make_timeline(
            [
                {
                    "id": "v",
                    "type": "video",
                    "items": [
                        _color("a", 0, 2),
                        _color("b", 2, 2, transition={"type": "dissolve", "duration": 1, "timing": "prefix"}),
                    ],
                }
            ]
        )
        entries = compositor.resolve_render_set(timeline.tracks, 1.5)
        assert [(e.item.id, e.role) for e in entries] == [("a", Role.OUTGOING), ("b", Role.MAIN)]
        assert entries[1].progress == pytest.approx(0.5)

    def test_never_two_main_entries_per_track(self, compositor, make_timeline):
        timeline = make_timeline(
            [
                {
                    "id": "v",
                    "type": "video",
                    "items": [
                        _color("a", 0, 3),
                        _color("b", 2, 2, transition={"type": "dissolve", "duration": 1, "timing": "overlap"}),
                        _color("c", 4, 1, transition={"type": "wipe", "duration": 0.5, "timing": "prefix"}),
                    ],
                }
            ]
        )
        for step in range(0, 50):
            t = step / 10
            entries = compositor.resolve_render_set(timeline.tracks, t)
            mains = [e for e in entries if e.role is Role.MAIN]
            outgoing = [e for e in entries if e.role is Role.OUTGOING]
            assert len(mains) <= 1, t
            assert len(outgoing) <= 1, t
            if outgoing:
                assert len(mains) == 1

    def test_text_tracks_emit_every_active_item(self, compositor, make_timeline):
        timeline = make_timeline(
            [
                {
                    "id": "t",
                    "type": "text",
                    "items": [
                        {"id": "t1", "type": "text", "text": "a", "start": 0, "duration": 2},
                        {"id": "t2", "type": "text", "text": "b", "start": 1, "duration": 2},
                    ],
                }
            ]
        )
        entries = compositor.resolve_render_set(timeline.tracks, 1.5)
        assert [e.item.id for e in entries] == ["t1", "t2"]

    def test_hidden_and_audio_tracks_are_not_drawn(self, compositor, make_timeline):
        timeline = make_timeline(
            [
                {"id": "v", "type": "video", "hidden": True, "items": [_color("a", 0, 2)]},
                {"id": "a", "type": "audio", "items": [{"id": "s", "type": "audio", "start": 0, "duration": 2}]},
            ]
        )
        assert compositor.resolve_render_set(timeline.tracks, 1.0) == []

    def test_paint_order(self, compositor, make_timeline):
        """Backgrounds first, then ascending layer; ties keep track order."""
        timeline = make_timeline(
            [
                {"id": "o1", "type": "overlay", "items": [_color("top", 0, 2, layer=5)]},
                {"id": "o2", "type": "overlay", "items": [_color("low", 0, 2, layer=1)]},
                {"id": "v", "type": "video", "items": [_color("bg", 0, 2, isBackground=True, layer=9)]},
                {"id": "o3", "type": "overlay", "items": [_color("low2", 0, 2, layer=1)]},
            ]
        )
        entries = compositor.resolve_render_set(timeline.tracks, 1.0)
        assert [e.item.id for e in entries] == ["bg", "low", "low2", "top"]


class TestPainting:
    def test_cover_background_is_fully_opaque(self, compositor, make_timeline, solid_image):
        """A canvas-aspect background with fit=cover leaves no letterbox bars."""
        path = solid_image((128, 72))
        timeline = make_timeline(
            [
                {
                    "id": "v",
                    "type": "video",
                    "items": [
                        {
                            "id": "bg",
                            "type": "image",
                            "localPath": str(path),
                            "start": 0,
                            "duration": 5,
                            "isBackground": True,
                            "fit": "cover",
                        }
                    ],
                }
            ]
        )
        for t in (0, 2.5, 4.99):
            frame = compositor.render_frame(timeline.tracks, t)
            assert frame.size == (WIDTH, HEIGHT)
            assert set(frame.getdata()) == {(255, 0, 0, 255)}

    def test_contain_letterboxes(self, compositor, make_timeline, solid_image):
        """A square source with fit=contain leaves black bars at the sides."""
        path = solid_image((50, 50))
        timeline = make_timeline(
            [
                {
                    "id": "v",
                    "type": "video",
                    "items": [
                        {"id": "bg", "type": "image", "localPath": str(path), "start": 0, "duration": 5, "isBackground": True}
                    ],
                }
            ]
        )
        frame = compositor.render_frame(timeline.tracks, 1)
        assert frame.getpixel((0, HEIGHT // 2)) == (0, 0, 0, 255)
        assert frame.getpixel((WIDTH // 2, HEIGHT // 2)) == (255, 0, 0, 255)

    def test_overlap_dissolve_midpoint(self, compositor, make_timeline):
        """B starts 1s before A ends; at B.start both are at half opacity."""
        timeline = make_timeline(
            [
                {
                    "id": "v",
                    "type": "video",
                    "items": [
                        _color("a", 0, 3, "#ff0000"),
                        _color("b", 2, 3, "#0000ff", transition={"type": "dissolve", "duration": 1, "timing": "overlap"}),
                    ],
                }
            ]
        )
        t = 2.0
        entries = compositor.resolve_render_set(timeline.tracks, t)
        opacities = {e.item.id: compositor.entry_opacity(e, t) for e in entries}
        assert opacities["a"] == pytest.approx(0.5)
        assert opacities["b"] == pytest.approx(0.5)

        r, g, b, a = compositor.render_frame(timeline.tracks, t).getpixel((WIDTH // 2, HEIGHT // 2))
        assert r == pytest.approx(64, abs=3)
        assert b == pytest.approx(128, abs=3)
        assert a == 255

    def test_item_size_and_position(self, compositor, make_timeline):
        """Non-background items use percent sizes and are offset from the centre."""
        timeline = make_timeline(
            [{"id": "o", "type": "overlay", "items": [_color("box", 0, 2, width=25, height=50, x=25, y=0)]}]
        )
        frame = compositor.render_frame(timeline.tracks, 1)
        # 16x18 box centred at (48, 18)
        assert frame.getpixel((48, 18)) == (255, 0, 0, 255)
        assert frame.getpixel((20, 18)) == (0, 0, 0, 255)
        assert frame.getpixel((41, 18)) == (255, 0, 0, 255)
        assert frame.getpixel((38, 18)) == (0, 0, 0, 255)

    def test_zero_opacity_draws_nothing(self, compositor, make_timeline):
        timeline = make_timeline([{"id": "o", "type": "overlay", "items": [_color("box", 0, 2, opacity=0)]}])
        frame = compositor.render_frame(timeline.tracks, 1)
        assert set(frame.getdata()) == {(0, 0, 0, 255)}

    def test_filters_only_touch_drawn_region(self, compositor, make_timeline):
        """A bw filter greys the item but not the rest of the canvas."""
        timeline = make_timeline(
            [
                {"id": "v", "type": "video", "items": [_color("bg", 0, 2, "#00ff00", isBackground=True)]},
                {"id": "o", "type": "overlay", "items": [_color("box", 0, 2, "#ff0000", width=50, height=50, filter="bw")]},
            ]
        )
        frame = compositor.render_frame(timeline.tracks, 1)
        r, g, b, _ = frame.getpixel((WIDTH // 2, HEIGHT // 2))
        assert abs(r - g) <= 1 and abs(g - b) <= 1
        assert frame.getpixel((1, 1)) == (0, 255, 0, 255)

    def test_fade_in_animation(self, compositor, make_timeline):
        timeline = make_timeline(
            [
                {
                    "id": "o",
                    "type": "overlay",
                    "items": [_color("box", 0, 4, "#ffffff", animation={"type": "fade-in", "duration": 2})],
                }
            ]
        )
        early = compositor.render_frame(timeline.tracks, 0).getpixel((WIDTH // 2, HEIGHT // 2))
        settled = compositor.render_frame(timeline.tracks, 3).getpixel((WIDTH // 2, HEIGHT // 2))
        assert early == (0, 0, 0, 255)
        assert settled == (255, 255, 255, 255)

    def test_missing_media_is_skipped(self, compositor, make_timeline):
        """An unresolvable source is logged and skipped; the frame still renders."""
        timeline = make_timeline(
            [
                {
                    "id": "v",
                    "type": "video",
                    "items": [{"id": "gone", "type": "image", "src": "gone.png", "start": 0, "duration": 2}],
                },
                {"id": "o", "type": "overlay", "items": [_color("box", 0, 2, "#ffffff", width=10, height=10)]},
            ]
        )
        frame = compositor.render_frame(timeline.tracks, 1)
        assert frame.getpixel((WIDTH // 2, HEIGHT // 2)) == (255, 255, 255, 255)

    def test_text_item(self, compositor, make_timeline):
        timeline = make_timeline(
            [{"id": "t", "type": "text", "items": [{"id": "t1", "type": "text", "text": "Hi", "fontSize": 20, "start": 0, "duration": 2}]}]
        )
        frame = compositor.render_frame(timeline.tracks, 1)
        assert any(px[0] > 200 for px in frame.getdata())


class TestMediaTime:
    def test_offset_and_speed(self, compositor, make_timeline):
        """Source time = offset + (t - start) x speed."""
        timeline = make_timeline(
            [{"id": "v", "type": "video", "items": [{"id": "clip", "type": "video", "start": 1, "duration": 2, "offset": 3, "speed": 2}]}]
        )
        item = timeline.tracks[0].items[0]
        assert compositor.media_time(item, 2) == pytest.approx(5)

    def test_last_instant_stays_inside_clip(self, compositor, make_timeline):
        timeline = make_timeline(
            [{"id": "v", "type": "video", "items": [{"id": "clip", "type": "video", "start": 0, "duration": 2}]}]
        )
        assert compositor.media_time(timeline.tracks[0].items[0], 5) < 2


class TestMemory:
    def test_frame_bytes(self, compositor):
        frame = Image.new("RGBA", (WIDTH, HEIGHT))
        assert len(FrameCompositor.frame_bytes(frame)) == WIDTH * HEIGHT * 4

    def test_bind_media_dir_resolves_by_id(self, compositor, make_timeline, temp_output_dir, solid_image):
        """Items without a local path are found as <media_dir>/<id>.*"""
        solid_image((64, 36), name="bg.png")
        compositor.bind_media_dir(temp_output_dir)
        assert isinstance(compositor.media, MediaLibrary)
        timeline = make_timeline(
            [{"id": "v", "type": "video", "items": [{"id": "bg", "type": "image", "start": 0, "duration": 2, "isBackground": True}]}]
        )
        frame = compositor.render_frame(timeline.tracks, 0.5)
        assert frame.getpixel((0, 0)) == (255, 0, 0, 255)

    def test_reset_drops_layers(self, compositor, make_timeline):
        timeline = make_timeline([{"id": "o", "type": "overlay", "items": [_color("box", 0, 2)]}])
        compositor.render_frame(timeline.tracks, 1)
        assert compositor._layers
        compositor.reset()
        assert not compositor._layers
