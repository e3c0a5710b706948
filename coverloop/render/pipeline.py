"""
Video job pipeline.

This module drives one job from submission to a terminal state:
1. Download the cover and tracks        (downloading)
2. Probe track durations                (analyzing_audio)
3. Loop-fill the playlist to the target (composing)
4. Assemble audio, compose video        (encoding)
5. Publish the artifact                 (completed)

Any fatal error moves the job to failed. Whatever the outcome, the job's
workspace is deleted and the notifier is called once.

Concurrency:
- Stages of one job run strictly in sequence.
- At most ``max_concurrent_jobs`` jobs are past queued at the same time;
  the rest wait on a semaphore in the queued state.
- Cancelling a job marks it failed. With ``terminate_on_cancel`` the
  pipeline task is cancelled too, which stops a running ffmpeg process
  group; otherwise the pipeline stops at its next stage transition.
"""

import asyncio
import functools
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from coverloop.config import get_settings
from coverloop.exceptions import (
    CleanupError,
    CoverloopError,
    InvalidTransitionError,
    JobCancelledError,
    JobNotCancellableError,
    JobNotFoundError,
)
from coverloop.models.video_job import JobSpec, JobStatus, VideoJob
from coverloop.render.duration_analyzer import DurationAnalyzer
from coverloop.render.encoder import MediaEncoder, get_encode_preset, publish_artifact
from coverloop.render.playlist_composer import compose_playlist, cycles_needed
from coverloop.render.workspace import Workspace
from coverloop.services.job_store import JobStore
from coverloop.services.media_fetcher import MediaFetcher
from coverloop.services.notifier import WebhookNotifier

logger = logging.getLogger(__name__)

# Progress checkpoints (percent)
PROGRESS_DOWNLOADING = 5
PROGRESS_DOWNLOADED = 25
PROGRESS_ANALYZING = 30
PROGRESS_COMPOSING = 45
PROGRESS_ENCODING = 65
PROGRESS_AUDIO_ASSEMBLED = 85
PROGRESS_COMPLETED = 100


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _JobRun:
    """Per-run state that must survive an aborted pipeline."""

    job_id: str
    workspace: Optional[Workspace] = None
    started: bool = False
    notified: bool = False


class JobOrchestrator:
    """Runs video jobs through the pipeline and owns their lifecycle."""

    def __init__(
        self,
        store: Optional[JobStore] = None,
        fetcher: Optional[MediaFetcher] = None,
        analyzer: Optional[DurationAnalyzer] = None,
        encoder: Optional[MediaEncoder] = None,
        notifier: Optional[WebhookNotifier] = None,
        *,
        max_concurrent_jobs: Optional[int] = None,
        temp_dir: Optional[str] = None,
        output_dir: Optional[str] = None,
        public_base_url: Optional[str] = None,
        terminate_on_cancel: Optional[bool] = None,
    ):
        settings = get_settings()
        self.store = store or JobStore()
        self.fetcher = fetcher or MediaFetcher()
        self.analyzer = analyzer or DurationAnalyzer()
        self.encoder = encoder or MediaEncoder()
        self.notifier = notifier or WebhookNotifier()

        self.max_concurrent_jobs = max(1, max_concurrent_jobs or settings.max_concurrent_jobs)
        self.temp_dir = temp_dir or settings.temp_dir
        self.output_dir = output_dir or settings.output_dir
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")
        self.terminate_on_cancel = (
            settings.terminate_on_cancel if terminate_on_cancel is None else terminate_on_cancel
        )

        self._slots = asyncio.Semaphore(self.max_concurrent_jobs)
        self._tasks: dict[str, asyncio.Task] = {}
        self._active: set[str] = set()
        self._cleanups: set[asyncio.Future] = set()
        self._shutting_down = False

    @property
    def active_count(self) -> int:
        """Number of jobs currently holding a concurrency slot."""
        return len(self._active)

    # ========================================================================
    # Public API
    # ========================================================================

    async def submit(self, spec: JobSpec) -> VideoJob:
        """Create a queued job and start its pipeline in the background.

        Returns immediately with the queued record.
        """
        job = self.store.create(spec)
        run = _JobRun(job_id=job.id)
        task = asyncio.create_task(self._run(run, spec), name=f"video-job-{job.id}")
        task.add_done_callback(functools.partial(self._on_task_done, run))
        self._tasks[job.id] = task
        logger.info(
            f"[PIPELINE] Job {job.id} queued: {len(spec.tracks)} tracks, "
            f"target {spec.target_duration_ms / 1000:.0f}s, preset {spec.encode_preset}"
        )
        return job

    async def run(self, job_id: str, spec: JobSpec) -> VideoJob:
        """Run the pipeline for an already-created job in the calling task.

        Used by workers that schedule jobs themselves; ``submit`` uses the
        same code path inside a background task.
        """
        await self._run(_JobRun(job_id=job_id), spec)
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> VideoJob:
        """Wait until a job's pipeline has finished and return its record.

        Waiting never cancels the job, even if the waiter itself is cancelled.
        """
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task}, timeout=timeout)
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def run_to_completion(self, spec: JobSpec) -> VideoJob:
        """Submit a job and wait for it: the synchronous response mode."""
        job = await self.submit(spec)
        return await self.wait(job.id)

    def cancel(self, job_id: str) -> VideoJob:
        """Move a non-terminal job to failed with a cancellation reason.

        Raises:
            JobNotFoundError: If the job does not exist
            JobNotCancellableError: If the job already reached a terminal state
        """
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status.is_terminal:
            raise JobNotCancellableError(job_id, job.status.value)

        try:
            cancelled = self.store.transition(
                job_id,
                JobStatus.FAILED,
                error_code=JobCancelledError.code,
                error_message=JobCancelledError.message,
                failed_at=_now(),
            )
        except InvalidTransitionError:
            current = self.store.get(job_id)
            raise JobNotCancellableError(job_id, current.status.value if current else None) from None

        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            # A queued job has no external process yet, so stopping it is always safe.
            if self.terminate_on_cancel or job.status is JobStatus.QUEUED:
                task.cancel()
        logger.info(f"[PIPELINE] Job {job_id} cancelled (was {job.status.value})")
        return cancelled

    async def join(self) -> None:
        """Wait for every submitted pipeline and pending cleanup to finish."""
        while self._tasks or self._cleanups:
            await asyncio.gather(*self._tasks.values(), *self._cleanups, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every unfinished pipeline and wait for their cleanup."""
        self._shutting_down = True
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"[PIPELINE] Shutting down, interrupting {len(tasks)} jobs")
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._cleanups:
            await asyncio.gather(*self._cleanups, return_exceptions=True)

    # ========================================================================
    # Pipeline
    # ========================================================================

    async def _run(self, run: _JobRun, spec: JobSpec) -> None:
        run.started = True
        job_id = run.job_id
        try:
            async with self._slots:
                self._active.add(job_id)
                try:
                    await self._execute(run, spec)
                finally:
                    self._active.discard(job_id)
        except asyncio.CancelledError:
            self._record_failure(job_id, JobCancelledError(self._interrupt_reason()))
            raise
        except CoverloopError as e:
            self._record_failure(job_id, e)
        except Exception as e:
            logger.exception(f"[PIPELINE] Job {job_id} crashed: {e}")
            self._record_failure(job_id, CoverloopError(f"Internal error: {e}"))
        finally:
            await self._finish(run)

    def _on_task_done(self, run: _JobRun, task: asyncio.Task) -> None:
        self._tasks.pop(run.job_id, None)
        if run.started:
            return
        # Cancelled before the coroutine ever ran, so _run could not clean up.
        self._record_failure(run.job_id, JobCancelledError(self._interrupt_reason()))
        cleanup = asyncio.ensure_future(self._finish(run))
        self._cleanups.add(cleanup)
        cleanup.add_done_callback(self._cleanups.discard)

    def _interrupt_reason(self) -> str:
        return "Service shutting down" if self._shutting_down else "Job interrupted"

    async def _execute(self, run: _JobRun, spec: JobSpec) -> None:
        job_id = run.job_id
        target_ms = spec.target_duration_ms
        preset = get_encode_preset(spec.encode_preset)

        # Step 1: Download assets
        self._advance(job_id, JobStatus.DOWNLOADING, PROGRESS_DOWNLOADING, started_at=_now())
        run.workspace = Workspace.create(job_id, self.temp_dir)

        async def on_batch_done(done: int, total: int) -> None:
            span = PROGRESS_DOWNLOADED - PROGRESS_DOWNLOADING
            self._advance(job_id, JobStatus.DOWNLOADING, PROGRESS_DOWNLOADING + span * done // total)

        assets = await self.fetcher.fetch(spec, run.workspace.path, on_batch_done=on_batch_done)

        # Step 2: Reconcile durations
        self._advance(job_id, JobStatus.ANALYZING_AUDIO, PROGRESS_ANALYZING)
        report = await self.analyzer.analyze(assets.tracks)

        # Step 3: Loop-fill
        self._advance(job_id, JobStatus.COMPOSING, PROGRESS_COMPOSING, warnings=list(report.warnings))
        manifest = compose_playlist(report.chosen_ms, target_ms)
        logger.info(
            f"[PIPELINE] Job {job_id}: {len(manifest)} playlist entries over at most "
            f"{cycles_needed(report.chosen_ms, target_ms)} loops, final entry "
            f"{manifest[-1].included_ms / 1000:.3f}s"
        )

        # Step 4: Encode
        self._advance(job_id, JobStatus.ENCODING, PROGRESS_ENCODING)
        audio_path = await self.encoder.assemble_audio(manifest, report.tracks, run.workspace.path, target_ms)
        self._advance(job_id, JobStatus.ENCODING, PROGRESS_AUDIO_ASSEMBLED)

        filename = f"{job_id}.mp4"
        video_path = await self.encoder.compose_video(
            assets.cover_path, audio_path, run.workspace.file(filename), target_ms, preset
        )

        # Step 5: Publish
        output_path = await asyncio.to_thread(publish_artifact, video_path, self.output_dir, filename)
        try:
            self._advance(
                job_id,
                JobStatus.COMPLETED,
                PROGRESS_COMPLETED,
                video_url=f"{self.public_base_url}/api/videos/{filename}",
                output_path=output_path,
                completed_at=_now(),
            )
        except JobCancelledError:
            # Cancelled while encoding: a failed job must not expose a video.
            _remove_file(output_path)
            raise
        logger.info(f"[PIPELINE] Job {job_id} completed: {output_path}")

    def _advance(self, job_id: str, status: JobStatus, progress: int, **changes) -> VideoJob:
        """Record stage progress, or stop the pipeline if the job was cancelled."""
        try:
            job = self.store.transition(job_id, status, progress=progress, **changes)
        except InvalidTransitionError as e:
            raise JobCancelledError(f"Job left the pipeline before {status.value} ({e.current})") from e
        if job is None:
            raise JobCancelledError("Job record was deleted")
        return job

    def _record_failure(self, job_id: str, error: CoverloopError) -> None:
        try:
            job = self.store.transition(
                job_id,
                JobStatus.FAILED,
                error_code=error.code,
                error_message=error.message,
                failed_at=_now(),
            )
        except InvalidTransitionError:
            # Already terminal, e.g. cancelled by a caller.
            logger.debug(f"[PIPELINE] Job {job_id} already terminal, not recording: {error.message}")
            return
        if job is not None:
            logger.error(f"[PIPELINE] Job {job_id} failed [{error.code}]: {error.message}")

    async def _finish(self, run: _JobRun) -> None:
        """Delete the workspace and send the single notification."""
        if run.workspace is not None:
            try:
                await asyncio.to_thread(run.workspace.remove)
            except CleanupError as e:
                logger.warning(f"[PIPELINE] Job {run.job_id}: {e.message}")

        job = self.store.get(run.job_id)
        if job is None or not job.status.is_terminal or run.notified:
            return
        run.notified = True
        try:
            await self.notifier.notify(job)
        except Exception:
            logger.exception(f"[PIPELINE] Notifier raised for job {run.job_id}")


def _remove_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
