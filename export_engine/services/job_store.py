"""In-memory export job registry.

Jobs are ephemeral: nothing survives a process restart. Every update
replaces the stored record under a lock and every read returns a copy, so
status pollers always see a consistent snapshot.
"""

import logging
import threading
from pathlib import Path

from export_engine.exceptions import InvalidJobTransitionError, JobNotFoundError, ValidationError
from export_engine.schemas.export import ExportJob, ExportSettings, JobStatus, JobStatusView, utcnow
from export_engine.schemas.timeline import Timeline

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.UPLOADING, JobStatus.PROCESSING, JobStatus.ERROR, JobStatus.CANCELLED},
    JobStatus.UPLOADING: {JobStatus.PROCESSING, JobStatus.ERROR, JobStatus.CANCELLED},
    JobStatus.PROCESSING: {JobStatus.ENCODING, JobStatus.ERROR, JobStatus.CANCELLED},
    JobStatus.ENCODING: {JobStatus.COMPLETE, JobStatus.ERROR, JobStatus.CANCELLED},
    JobStatus.COMPLETE: set(),
    JobStatus.ERROR: set(),
    JobStatus.CANCELLED: set(),
}


class JobStore:
    """Thread-safe job registry."""

    def __init__(self) -> None:
        self._jobs: dict[str, ExportJob] = {}
        self._lock = threading.Lock()

    def _require(self, job_id: str) -> ExportJob:
        """Get a job or raise (called under lock)."""
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _replace(self, job: ExportJob, **changes) -> ExportJob:
        """Store an updated copy of ``job`` (called under lock)."""
        updated = job.model_copy(update={**changes, "updated_at": utcnow()})
        self._jobs[job.id] = updated
        return updated.model_copy()

    def create(self, job_id: str, timeline: Timeline, settings: ExportSettings) -> ExportJob:
        with self._lock:
            if job_id in self._jobs:
                raise ValidationError(f"Job already exists: {job_id}")
            job = ExportJob(id=job_id, timeline=timeline, settings=settings)
            self._jobs[job_id] = job
            logger.info(f"[JOB] Created {job_id}")
            return job.model_copy()

    def get(self, job_id: str) -> ExportJob:
        """Snapshot of a job.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        with self._lock:
            return self._require(job_id).model_copy()

    def find(self, job_id: str) -> ExportJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy() if job else None

    def list_jobs(self) -> list[ExportJob]:
        with self._lock:
            return [job.model_copy() for job in self._jobs.values()]

    def transition(self, job_id: str, status: JobStatus, stage: str | None = None) -> ExportJob:
        """Move a job to ``status``. Moving to the current status is a no-op.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidJobTransitionError: If the lifecycle forbids the move
        """
        with self._lock:
            job = self._require(job_id)
            if job.status == status:
                return job.model_copy()
            if status not in ALLOWED_TRANSITIONS[job.status]:
                raise InvalidJobTransitionError(job.status.value, status.value)
            changes = {"status": status}
            if stage is not None:
                changes["stage"] = stage
            logger.info(f"[JOB] {job_id}: {job.status.value} -> {status.value}")
            return self._replace(job, **changes)

    def update_progress(self, job_id: str, progress: float, stage: str | None = None) -> ExportJob:
        """Raise progress to ``progress`` (never lowers it, ignored once terminal)."""
        with self._lock:
            job = self._require(job_id)
            if job.status.is_terminal:
                return job.model_copy()
            changes = {"progress": max(job.progress, min(100.0, max(0.0, progress)))}
            if stage is not None:
                changes["stage"] = stage
            return self._replace(job, **changes)

    def set_stage(self, job_id: str, stage: str) -> ExportJob:
        with self._lock:
            return self._replace(self._require(job_id), stage=stage)

    def complete(self, job_id: str, output_path: str) -> ExportJob:
        with self._lock:
            job = self._require(job_id)
            if JobStatus.COMPLETE not in ALLOWED_TRANSITIONS[job.status]:
                raise InvalidJobTransitionError(job.status.value, JobStatus.COMPLETE.value)
            logger.info(f"[JOB] {job_id} complete: {output_path}")
            return self._replace(job, status=JobStatus.COMPLETE, progress=100.0, output_path=output_path, stage=None)

    def fail(self, job_id: str, error: str, code: str | None = None) -> ExportJob:
        """Mark a job failed. A job that already finished keeps its status."""
        with self._lock:
            job = self._require(job_id)
            if job.status.is_terminal:
                return job.model_copy()
            logger.error(f"[JOB] {job_id} failed: {error}")
            return self._replace(job, status=JobStatus.ERROR, error=error, error_code=code, output_path=None)

    def cancel(self, job_id: str) -> bool:
        """Mark a job cancelled; False when it had already finished."""
        with self._lock:
            job = self._require(job_id)
            if job.status.is_terminal:
                return False
            logger.info(f"[JOB] {job_id} cancelled")
            self._replace(job, status=JobStatus.CANCELLED, output_path=None)
            return True

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def status_view(self, job_id: str) -> JobStatusView:
        """Polling view; ``output_ready`` only for complete jobs whose file exists."""
        job = self.get(job_id)
        output_ready = (
            job.status == JobStatus.COMPLETE
            and job.output_path is not None
            and Path(job.output_path).is_file()
        )
        return JobStatusView(
            status=job.status,
            progress=job.progress,
            error=job.error,
            stage=job.stage,
            output_ready=output_ready,
        )
