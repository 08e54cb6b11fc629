"""
Tests for text layout and text effects.

Test cases:
1. Plain text renders inside its padded block
2. Transforms and lists change the laid-out lines
3. Every effect renders without error and paints its colour
4. Alignment anchors the block on the canvas
"""

import pytest

from export_engine.config import Settings
from export_engine.render.compositor import text_origin
from export_engine.render.text_renderer import TextRenderer
from export_engine.schemas.timeline import TimelineItem

EFFECTS = ["shadow", "lift", "hollow", "splice", "outline", "echo", "glitch", "neon", "background"]


def _text_item(**fields) -> TimelineItem:
    payload = {"id": "txt", "type": "text", "start": 0, "duration": 2, "text": "Hello", "fontSize": 32}
    payload.update(fields)
    return TimelineItem.model_validate(payload)


@pytest.fixture
def renderer() -> TextRenderer:
    return TextRenderer(Settings())


class TestTextLayout:
    def test_plain_text(self, renderer):
        """The image is the text block plus padding on every side."""
        rendered = renderer.render(_text_item())
        assert rendered.image.mode == "RGBA"
        assert rendered.image.width == rendered.block_width + 2 * rendered.padding
        assert rendered.image.height == rendered.block_height + 2 * rendered.padding
        assert rendered.image.getbbox() is not None

    def test_empty_text_renders_nothing(self, renderer):
        assert renderer.render(_text_item(text="", name="")) is None

    def test_multiline_height(self, renderer):
        """Each line takes 1.4 x font size."""
        rendered = renderer.render(_text_item(text="one\ntwo\nthree"))
        assert rendered.block_height == pytest.approx(32 * 1.4 * 3, abs=1)

    def test_uppercase(self):
        assert TextRenderer.prepare_lines(_text_item(text="abc", textTransform="uppercase")) == ["ABC"]

    def test_lowercase(self):
        assert TextRenderer.prepare_lines(_text_item(text="ABC", textTransform="lowercase")) == ["abc"]

    def test_bullet_list(self):
        lines = TextRenderer.prepare_lines(_text_item(text="a\nb", listType="bullet"))
        assert lines == ["• a", "• b"]

    def test_number_list(self):
        lines = TextRenderer.prepare_lines(_text_item(text="a\nb", listType="number"))
        assert lines == ["1. a", "2. b"]

    def test_italic_is_wider(self, renderer):
        upright = renderer.render(_text_item())
        italic = renderer.render(_text_item(fontStyle="italic"))
        assert italic.image.width > upright.image.width

    def test_font_cache(self, renderer):
        assert renderer.load_font(None, "normal", 20) is renderer.load_font(None, "normal", 20)


class TestTextEffects:
    @pytest.mark.parametrize("effect", EFFECTS)
    def test_effect_renders(self, renderer, effect):
        """Every effect draws something and needs more padding than plain text."""
        plain = renderer.render(_text_item())
        rendered = renderer.render(_text_item(textEffect={"type": effect, "color": "#ff0000", "intensity": 60, "offset": 50}))
        assert rendered.image.getbbox() is not None
        assert rendered.padding > plain.padding

    def test_shadow_paints_effect_colour(self, renderer):
        """A red shadow on white text leaves red pixels."""
        rendered = renderer.render(
            _text_item(color="#ffffff", textEffect={"type": "shadow", "color": "#ff0000", "intensity": 0, "offset": 100})
        )
        pixels = rendered.image.getdata()
        assert any(r > 200 and g < 50 and b < 50 and a > 200 for r, g, b, a in pixels)

    def test_background_box_is_opaque(self, renderer):
        rendered = renderer.render(_text_item(textEffect={"type": "background", "color": "#0000ff"}))
        center = (rendered.image.width // 2, rendered.image.height // 2)
        assert rendered.image.getpixel(center)[3] == 255

    def test_unknown_effect_draws_plain_text(self, renderer):
        rendered = renderer.render(_text_item(textEffect={"type": "sparkle"}))
        assert rendered.image.getbbox() is not None

    @pytest.mark.parametrize("decoration", ["underline", "line-through"])
    def test_decorations(self, renderer, decoration):
        """Decorations add a horizontal stroke across the line."""
        plain = renderer.render(_text_item(text="ii"))
        decorated = renderer.render(_text_item(text="ii", textDecoration=decoration))
        assert sum(px[3] for px in decorated.image.getdata()) > sum(px[3] for px in plain.image.getdata())

    def test_gradient_fill(self, renderer):
        rendered = renderer.render(
            _text_item(text="WWWW", fontSize=60, color="linear-gradient(to right, #ff0000, #0000ff)")
        )
        opaque = [(r, g, b) for r, g, b, a in rendered.image.getdata() if a == 255]
        assert any(r > b for r, g, b in opaque)
        assert any(b > r for r, g, b in opaque)


class TestTextPlacement:
    """Alignment anchors the block at the canvas centre plus x/y percent."""

    def test_centered(self):
        left, top = text_origin(_text_item(), 10, 100, 40, 1920, 1080)
        assert (left, top) == (960 - 50 - 10, 540 - 20 - 10)

    def test_left_top(self):
        item = _text_item(textAlign="left", verticalAlign="top", x=-25, y=-25)
        left, top = text_origin(item, 10, 100, 40, 1920, 1080)
        assert (left, top) == (480 - 10, 270 - 10)

    def test_right_bottom(self):
        item = _text_item(textAlign="right", verticalAlign="bottom")
        left, top = text_origin(item, 0, 100, 40, 1920, 1080)
        assert (left, top) == (860, 500)
