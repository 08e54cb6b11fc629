"""Exceptions raised by the export engine.

Every error carries a machine-readable ``code`` so that the job registry can
surface it to status-polling collaborators without string matching.

Propagation policy:
- ``MediaLoadError`` is recovered by the compositor (the paint is skipped).
- ``RenderStageError`` is recovered by the orchestrator (next strategy).
- ``EncodeError`` and anything unexpected is terminal for the job.
- ``JobCancelledError`` is a cooperative stop and is never reported as an error.
"""


class ExportEngineError(Exception):
    """Base exception for all export engine errors."""

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        """Serialize to dictionary."""
        return {"code": self.code, "message": self.message}


# =============================================================================
# Input Errors
# =============================================================================


class ValidationError(ExportEngineError):
    """Malformed timeline or export settings (rejected before any work starts)."""

    code = "VALIDATION_ERROR"
    message = "Invalid timeline or export settings"


class JobNotFoundError(ExportEngineError):
    """Job not found."""

    code = "JOB_NOT_FOUND"
    message = "Job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Job not found: {job_id}" if job_id else self.message
        super().__init__(message)


class InvalidJobTransitionError(ExportEngineError):
    """A job status change that the lifecycle does not allow."""

    code = "INVALID_JOB_TRANSITION"
    message = "Invalid job status transition"

    def __init__(self, current: str | None = None, target: str | None = None):
        message = self.message
        if current and target:
            message = f"Invalid job status transition: {current} -> {target}"
        super().__init__(message)


# =============================================================================
# Render Errors
# =============================================================================


class MediaLoadError(ExportEngineError):
    """A referenced media asset is missing or cannot be decoded."""

    code = "MEDIA_LOAD_ERROR"
    message = "Failed to load media"

    def __init__(self, message: str | None = None, *, item_id: str | None = None):
        self.item_id = item_id
        super().__init__(message)


class RenderStageError(ExportEngineError):
    """The active renderer backend failed; the next strategy may still succeed."""

    code = "RENDER_STAGE_ERROR"
    message = "Renderer stage failed"

    def __init__(self, message: str | None = None, *, strategy: str | None = None):
        self.strategy = strategy
        super().__init__(message)


class EncodeError(ExportEngineError):
    """The external encoder exited non-zero or its input stream broke."""

    code = "ENCODE_ERROR"
    message = "Encoding failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        returncode: int | None = None,
        stderr_tail: str | None = None,
    ):
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        super().__init__(message)


class JobCancelledError(ExportEngineError):
    """Cooperative cancellation was observed."""

    code = "JOB_CANCELLED"
    message = "Export cancelled"
