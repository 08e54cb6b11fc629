from export_engine.schemas.export import (
    ExportJob,
    ExportSettings,
    JobStatus,
    JobStatusView,
    parse_export_settings,
)
from export_engine.schemas.timeline import (
    AnimationSpec,
    Timeline,
    TimelineItem,
    Track,
    TransitionSpec,
    parse_timeline,
)

__all__ = [
    "Timeline",
    "Track",
    "TimelineItem",
    "TransitionSpec",
    "AnimationSpec",
    "parse_timeline",
    "ExportSettings",
    "ExportJob",
    "JobStatus",
    "JobStatusView",
    "parse_export_settings",
]
