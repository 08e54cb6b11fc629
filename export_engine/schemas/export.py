import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from export_engine.exceptions import ValidationError
from export_engine.schemas.timeline import Dimension, Timeline

ExportQuality = Literal["low", "medium", "high"]
ExportFormat = Literal["mp4", "webm", "mov"]


class ExportSettings(BaseModel):
    resolution: Dimension = Field(default_factory=Dimension)
    fps: float = Field(default=30, gt=0, le=240)
    quality: ExportQuality = "high"
    format: ExportFormat = "mp4"
    hardware_accel: bool = Field(
        default=False,
        validation_alias=AliasChoices("hardware_accel", "hardwareAccel", "useHardwareAccel"),
    )

    @property
    def width(self) -> int:
        return self.resolution.width

    @property
    def height(self) -> int:
        return self.resolution.height

    def frame_count(self, duration: float) -> int:
        """Number of output frames for a timeline of ``duration`` seconds."""
        # Round first so 0.1s * 30fps does not become 3.0000000000000004 -> 4
        return math.ceil(round(duration * self.fps, 6))


def parse_export_settings(payload: dict[str, Any]) -> ExportSettings:
    """Validate an export settings payload.

    Raises:
        ValidationError: If the payload is malformed
    """
    try:
        return ExportSettings.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid export settings: {e}") from e


# =============================================================================
# Jobs
# =============================================================================


class JobStatus(str, Enum):
    """Export job lifecycle status."""

    PENDING = "pending"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    ENCODING = "encoding"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.ERROR, JobStatus.CANCELLED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExportJob(BaseModel):
    """One export request and its progress."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: JobStatus = JobStatus.PENDING
    progress: float = Field(default=0, ge=0, le=100)
    timeline: Timeline
    settings: ExportSettings
    output_path: str | None = Field(default=None, alias="outputPath")
    error: str | None = None
    error_code: str | None = None
    stage: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class JobStatusView(BaseModel):
    """What status-polling collaborators see."""

    model_config = ConfigDict(populate_by_name=True)

    status: JobStatus
    progress: float
    error: str | None = None
    stage: str | None = None
    output_ready: bool = Field(default=False, alias="outputReady")
