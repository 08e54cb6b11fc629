"""
Export job orchestration.

Owns the lifecycle of export jobs:
- job-scoped directories (``<export_temp_dir>/<job_id>/media`` for inputs,
  scratch directories for frames, ``output.<format>`` for the result)
- worker slots bounding how many jobs render at once
- the ordered strategy fallback chain
- cancellation and cleanup
"""

import asyncio
import logging
import shutil
import uuid
from functools import partial
from pathlib import Path
from typing import Any

from export_engine.config import Settings, get_settings
from export_engine.exceptions import ExportEngineError, JobCancelledError, RenderStageError, ValidationError
from export_engine.render.audio_mixer import AudioInspector, collect_audio_sources
from export_engine.render.encoder import FFmpegEncoder
from export_engine.render.media import MediaLibrary
from export_engine.render.pool import RendererPool
from export_engine.render.strategies import EncoderFactory, RenderContext, RenderStrategy, default_strategies
from export_engine.schemas.export import ExportJob, ExportSettings, JobStatus, JobStatusView, parse_export_settings
from export_engine.schemas.timeline import Timeline, parse_timeline
from export_engine.services.cancellation import CancellationToken
from export_engine.services.job_store import JobStore
from export_engine.utils.media_info import inspect_audio

logger = logging.getLogger(__name__)

MEDIA_DIR_NAME = "media"
SCRATCH_DIR_NAMES = ("frames", "graph")


class ExportOrchestrator:
    """Runs export jobs against an injected ``JobStore``.

    Args:
        store: Job registry shared with status pollers
        settings: Application settings (defaults to ``get_settings()``)
        strategies: Ordered fallback chain (defaults to streaming, disk, filter graph)
        encoder_factory: Builds the encoder used by the default strategies
        pool: Compositor pool used by the default strategies
        audio_inspector: Audio stream lookup used when collecting audio sources
            (defaults to ffprobe with these settings)
    """

    def __init__(
        self,
        store: JobStore,
        settings: Settings | None = None,
        strategies: list[RenderStrategy] | None = None,
        encoder_factory: EncoderFactory = FFmpegEncoder,
        pool: RendererPool | None = None,
        audio_inspector: AudioInspector | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.pool = pool or RendererPool(settings=self.settings)
        self.strategies = strategies if strategies is not None else default_strategies(self.pool, encoder_factory)
        self.audio_inspector = audio_inspector or partial(inspect_audio, settings=self.settings)
        self._slots = asyncio.Semaphore(max(1, self.settings.export_max_concurrent_jobs))
        self._tokens: dict[str, CancellationToken] = {}
        self._contexts: dict[str, RenderContext] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    # =========================================================================
    # Directories
    # =========================================================================

    def job_dir(self, job_id: str) -> Path:
        return Path(self.settings.export_temp_dir) / job_id

    def media_dir(self, job_id: str) -> Path:
        return self.job_dir(job_id) / MEDIA_DIR_NAME

    def output_path(self, job: ExportJob) -> Path:
        return self.job_dir(job.id) / f"output.{job.settings.format}"

    def _remove_scratch(self, job_id: str) -> None:
        for name in SCRATCH_DIR_NAMES:
            shutil.rmtree(self.job_dir(job_id) / name, ignore_errors=True)

    # =========================================================================
    # Job Lifecycle
    # =========================================================================

    def create_job(
        self,
        timeline: Timeline | dict[str, Any],
        settings: ExportSettings | dict[str, Any] | None = None,
        job_id: str | None = None,
    ) -> ExportJob:
        """Validate the request and register a pending job.

        Raises:
            ValidationError: If the timeline or settings are malformed
        """
        if isinstance(timeline, dict):
            timeline = parse_timeline(timeline)
        if settings is None:
            settings = ExportSettings()
        elif isinstance(settings, dict):
            settings = parse_export_settings(settings)

        job_id = job_id or uuid.uuid4().hex
        if "/" in job_id or job_id in (".", ".."):
            raise ValidationError(f"Invalid job id: {job_id}")

        job = self.store.create(job_id, timeline, settings)
        self.media_dir(job_id).mkdir(parents=True, exist_ok=True)
        self._tokens[job_id] = CancellationToken()
        logger.info(
            f"[EXPORT] Job {job_id}: {timeline.duration:g}s at {settings.width}x{settings.height} "
            f"{settings.fps:g}fps, {settings.format}/{settings.quality}"
        )
        return job

    def begin_upload(self, job_id: str) -> Path:
        """Mark the job as receiving media; returns the directory to put it in."""
        self.store.transition(job_id, JobStatus.UPLOADING, stage="uploading")
        return self.media_dir(job_id)

    def add_media(self, job_id: str, filename: str, data: bytes) -> Path:
        """Store one uploaded media file for the job."""
        name = Path(filename).name
        if not name:
            raise ValidationError(f"Invalid media file name: {filename!r}")
        job = self.store.get(job_id)
        if job.status not in (JobStatus.PENDING, JobStatus.UPLOADING):
            raise ValidationError(f"Job {job_id} no longer accepts media ({job.status.value})")
        path = self.media_dir(job_id) / name
        path.write_bytes(data)
        return path

    def start_job(self, job_id: str) -> asyncio.Task:
        """Schedule the job on the running event loop."""
        task = self._tasks.get(job_id)
        if task is not None:
            return task
        self.store.get(job_id)
        task = asyncio.create_task(self.run_job(job_id), name=f"export-{job_id}")
        self._tasks[job_id] = task
        return task

    async def wait(self, job_id: str) -> ExportJob:
        """Wait for a started job to finish and return its final snapshot."""
        task = self._tasks.get(job_id)
        if task is not None:
            await task
        return self.store.get(job_id)

    async def run_job(self, job_id: str) -> ExportJob:
        """Render and encode one job, waiting for a free worker slot first."""
        try:
            return await self._run_job(job_id)
        finally:
            # Finished jobs keep only their store record
            self._tokens.pop(job_id, None)
            self._tasks.pop(job_id, None)

    async def _run_job(self, job_id: str) -> ExportJob:
        token = self._tokens.setdefault(job_id, CancellationToken())
        async with self._slots:
            job = self.store.get(job_id)
            if job.status.is_terminal:
                # Cancelled while waiting for a slot
                if job.status == JobStatus.CANCELLED:
                    await self.cleanup(job_id)
                return job
            try:
                token.raise_if_cancelled()
                self.store.transition(job_id, JobStatus.PROCESSING, stage="preparing")

                ctx = RenderContext(
                    job_id=job_id,
                    timeline=job.timeline,
                    settings=job.settings,
                    job_dir=self.job_dir(job_id),
                    media_dir=self.media_dir(job_id),
                    output_path=self.output_path(job),
                    token=token,
                    on_progress=lambda percent, stage: self.store.update_progress(job_id, percent, stage),
                    on_encoding=lambda: self.store.transition(job_id, JobStatus.ENCODING, stage="encoding"),
                )
                self._contexts[job_id] = ctx
                media = MediaLibrary(ctx.media_dir, self.settings)
                ctx.audio_sources = await asyncio.to_thread(
                    collect_audio_sources, job.timeline, media, self.audio_inspector
                )
                for source in ctx.audio_sources:
                    logger.info(f"[EXPORT] {job_id}: audio source {source.to_dict()}")

                output = await self._run_strategies(ctx)
                token.raise_if_cancelled()
                job = self.store.complete(job_id, str(output))
                self._remove_scratch(job_id)
                return job

            except JobCancelledError:
                await self._finish_cancelled(job_id)
            except ExportEngineError as e:
                if token.cancelled:
                    await self._finish_cancelled(job_id)
                else:
                    await self._fail(job_id, e)
            except Exception as e:
                logger.exception(f"[EXPORT] Job {job_id} crashed")
                await self._fail(job_id, ExportEngineError(f"Internal error: {e}"))
            finally:
                self._contexts.pop(job_id, None)
            return self.store.get(job_id)

    async def _finish_cancelled(self, job_id: str) -> None:
        self.store.cancel(job_id)
        await self.cleanup(job_id)

    async def _fail(self, job_id: str, error: ExportEngineError) -> None:
        details = error.to_dict()
        self.store.fail(job_id, details["message"], details["code"])
        await self.cleanup(job_id)

    async def _run_strategies(self, ctx: RenderContext) -> Path:
        """Try each strategy once, in order, until one produces the output.

        Raises:
            RenderStageError: If every strategy failed to render
        """
        errors = []
        for strategy in self.strategies:
            ctx.token.raise_if_cancelled()
            logger.info(f"[EXPORT] {ctx.job_id}: rendering with {strategy.name}")
            try:
                return await strategy.run(ctx)
            except RenderStageError as e:
                logger.warning(f"[EXPORT] {ctx.job_id}: {strategy.name} failed, falling back: {e.message}")
                errors.append(f"{strategy.name}: {e.message}")
                ctx.output_path.unlink(missing_ok=True)
            finally:
                ctx.encoder = None
        raise RenderStageError("All render strategies failed (" + "; ".join(errors) + ")")

    # =========================================================================
    # Cancellation / Cleanup
    # =========================================================================

    async def cancel(self, job_id: str) -> bool:
        """Cancel a job; False when it had already finished.

        A running job stops at its next cancellation check (the encoder is
        killed immediately) and cleans up after itself.
        """
        self.store.get(job_id)
        token = self._tokens.get(job_id)
        if token is not None:
            token.cancel("Job cancelled")
        cancelled = self.store.cancel(job_id)

        ctx = self._contexts.get(job_id)
        task = self._tasks.get(job_id)
        if ctx is not None and ctx.encoder is not None:
            await ctx.encoder.abort()
        # A running task cleans up after itself
        if cancelled and (task is None or task.done()):
            await self.cleanup(job_id)
        return cancelled

    async def cleanup(self, job_id: str) -> None:
        """Kill the job's encoder and remove its directory. Safe to repeat."""
        ctx = self._contexts.get(job_id)
        if ctx is not None and ctx.encoder is not None:
            await ctx.encoder.abort()
        job_dir = self.job_dir(job_id)
        if job_dir.exists():
            await asyncio.to_thread(shutil.rmtree, job_dir, True)
            logger.info(f"[EXPORT] Removed {job_dir}")

    async def delete(self, job_id: str) -> bool:
        """Cancel if needed, remove files and forget the job."""
        job = self.store.find(job_id)
        if job is None:
            return False
        if not job.status.is_terminal:
            await self.cancel(job_id)
            task = self._tasks.get(job_id)
            if task is not None:
                await task
        await self.cleanup(job_id)
        self._tokens.pop(job_id, None)
        self._tasks.pop(job_id, None)
        return self.store.delete(job_id)

    def status(self, job_id: str) -> JobStatusView:
        return self.store.status_view(job_id)
