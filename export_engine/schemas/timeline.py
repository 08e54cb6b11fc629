from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from export_engine.exceptions import ValidationError

# Tolerance for float rounding when checking the timeline duration invariant
DURATION_EPSILON = 1e-6

TrackKind = Literal["video", "audio", "overlay", "text"]
ItemType = Literal["video", "image", "audio", "text", "color"]
FitMode = Literal["contain", "cover", "fill"]
Direction = Literal["left", "right", "up", "down"]
TransitionTiming = Literal["prefix", "postfix", "overlap"]
AnimationTiming = Literal["enter", "exit", "both"]


# =============================================================================
# Effect Specs
# =============================================================================


class TransitionSpec(BaseModel):
    """How an item enters relative to its predecessor on the same track."""

    type: str
    duration: float = Field(default=1.0, gt=0)
    direction: Direction = "left"
    timing: TransitionTiming = "postfix"
    speed: float | None = Field(default=None, gt=0)

    @property
    def effective_duration(self) -> float:
        """Window length after applying the optional speed multiplier."""
        if self.speed:
            return self.duration / self.speed
        return self.duration

    def window_start(self) -> float:
        """Window start relative to the item's nominal start."""
        duration = self.effective_duration
        if self.timing == "overlap":
            return -duration / 2
        if self.timing == "prefix":
            return -duration
        return 0.0


class AnimationSpec(BaseModel):
    type: str
    duration: float = Field(default=1.0, gt=0)
    timing: AnimationTiming = "enter"


class Adjustments(BaseModel):
    """Colour sliders. Every value defaults to 0 (neutral)."""

    temperature: float = 0
    tint: float = 0
    brightness: float = 0
    contrast: float = 0
    highlights: float = 0
    shadows: float = 0
    whites: float = 0
    blacks: float = 0
    saturation: float = 0
    vibrance: float = 0
    hue: float = 0
    sharpness: float = 0
    clarity: float = 0
    vignette: float = 0

    def is_neutral(self) -> bool:
        return all(value == 0 for value in self.model_dump().values())


class Crop(BaseModel):
    x: float = 50
    y: float = 50
    zoom: float = Field(default=1.0, gt=0)


class Border(BaseModel):
    width: float = Field(default=0, ge=0)
    color: str = "#000000"


class TextEffect(BaseModel):
    type: str = "none"
    color: str = "#000000"
    intensity: float = 50
    offset: float = 50


# =============================================================================
# Timeline
# =============================================================================


class TimelineItem(BaseModel):
    """One timeline element.

    Spatial fields are percentages of the canvas (``x``/``y`` offset the item
    centre from the canvas centre), ``rotation`` is in degrees and
    ``opacity`` is 0-100. Text items use ``text`` (falling back to ``name``)
    as their content.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: ItemType
    name: str = ""
    src: str = ""
    local_path: str | None = Field(default=None, alias="localPath")

    # Timing (seconds)
    start: float = Field(ge=0)
    duration: float = Field(gt=0)
    offset: float = Field(default=0, ge=0)
    speed: float = Field(default=1.0, gt=0)

    # Layout
    x: float = 0
    y: float = 0
    width: float | None = None
    height: float | None = None
    rotation: float = 0
    opacity: float = Field(default=100, ge=0, le=100)
    is_background: bool = Field(default=False, alias="isBackground")
    fit: FitMode = "contain"
    layer: int = 0
    flip_h: bool = Field(default=False, alias="flipH")
    flip_v: bool = Field(default=False, alias="flipV")

    # Effects
    transition: TransitionSpec | None = None
    animation: AnimationSpec | None = None
    adjustments: Adjustments | None = None
    filter: str | None = None
    crop: Crop | None = None
    border: Border | None = None

    # Audio
    volume: float = Field(default=1.0, ge=0)
    muted: bool = Field(default=False, alias="muteVideo")
    has_audio: bool | None = Field(default=None, alias="hasAudio")

    # Text
    text: str | None = None
    font_family: str | None = Field(default=None, alias="fontFamily")
    font_size: float = Field(default=40, gt=0, alias="fontSize")
    font_weight: str = Field(default="normal", alias="fontWeight")
    font_style: str = Field(default="normal", alias="fontStyle")
    color: str = "#ffffff"
    text_align: Literal["left", "center", "right"] = Field(default="center", alias="textAlign")
    vertical_align: Literal["top", "middle", "bottom"] = Field(default="middle", alias="verticalAlign")
    text_transform: Literal["none", "uppercase", "lowercase"] = Field(default="none", alias="textTransform")
    text_decoration: Literal["none", "underline", "line-through"] = Field(default="none", alias="textDecoration")
    list_type: Literal["none", "bullet", "number"] = Field(default="none", alias="listType")
    text_effect: TextEffect | None = Field(default=None, alias="textEffect")

    @property
    def end(self) -> float:
        return self.start + self.duration

    @property
    def text_content(self) -> str:
        return self.text if self.text is not None else self.name

    def is_active(self, t: float) -> bool:
        return self.start <= t < self.end

    def has_filters(self) -> bool:
        has_filter = bool(self.filter) and self.filter != "none"
        has_adjustments = self.adjustments is not None and not self.adjustments.is_neutral()
        return has_filter or has_adjustments


class Track(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    kind: TrackKind = Field(alias="type")
    items: list[TimelineItem] = Field(default_factory=list)
    muted: bool = False
    hidden: bool = False

    @property
    def supports_transitions(self) -> bool:
        return self.kind in ("video", "overlay")

    def sorted_items(self) -> list[TimelineItem]:
        return sorted(self.items, key=lambda item: item.start)


class Dimension(BaseModel):
    width: int = Field(default=1920, gt=0)
    height: int = Field(default=1080, gt=0)


class Timeline(BaseModel):
    tracks: list[Track] = Field(default_factory=list)
    duration: float = Field(gt=0)
    dimension: Dimension = Field(default_factory=Dimension)

    @model_validator(mode="after")
    def check_duration_covers_items(self) -> "Timeline":
        for track in self.tracks:
            for item in track.items:
                if item.end > self.duration + DURATION_EPSILON:
                    raise ValueError(
                        f"Item {item.id} ends at {item.end}s, after the timeline duration {self.duration}s"
                    )
        return self

    def iter_items(self):
        for track in self.tracks:
            for item in track.items:
                yield track, item


def parse_timeline(payload: dict[str, Any]) -> Timeline:
    """Validate an editor payload into a ``Timeline``.

    Raises:
        ValidationError: If the payload is malformed
    """
    try:
        return Timeline.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid timeline: {e}") from e
