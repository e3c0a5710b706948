"""In-memory video job store.

Jobs are kept per process only. A Redis/DB backend can replace this class
as long as it keeps the same methods.
"""

from __future__ import annotations

import threading
from dataclasses import fields, replace
from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import uuid4

from coverloop.exceptions import InvalidTransitionError
from coverloop.models.video_job import JobSpec, JobStatus, VideoJob

_JOB_FIELDS = {f.name for f in fields(VideoJob)} - {"id", "spec", "created_at"}


def _snapshot(job: VideoJob) -> VideoJob:
    """Copy a record so callers never share mutable state with the store."""
    return replace(job, warnings=list(job.warnings))


class JobStore:
    """Thread-safe registry of job id -> job record.

    Every method holds the same lock for its whole body, so an update that
    touches several fields (status + progress + timestamps) is applied
    atomically and readers only ever see whole records.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, VideoJob] = {}
        self._lock = threading.Lock()

    def create(self, spec: JobSpec) -> VideoJob:
        """Register a new job in QUEUED state."""
        job = VideoJob(
            id=str(uuid4()),
            spec=spec,
            status=JobStatus.QUEUED,
            progress=0,
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._jobs[job.id] = job
            return _snapshot(job)

    def get(self, job_id: str) -> VideoJob | None:
        """Get a job by id, or None if unknown."""
        with self._lock:
            job = self._jobs.get(job_id)
            return _snapshot(job) if job else None

    def list(self, statuses: Iterable[JobStatus] | None = None) -> list[VideoJob]:
        """List jobs newest first, optionally filtered by status."""
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            # Insertion order is creation order.
            return [
                _snapshot(job)
                for job in reversed(self._jobs.values())
                if wanted is None or job.status in wanted
            ]

    def list_active(self) -> list[VideoJob]:
        """List jobs that have not reached a terminal state."""
        return self.list(s for s in JobStatus if not s.is_terminal)

    def update(self, job_id: str, **changes: Any) -> VideoJob | None:
        """Apply a partial update atomically.

        A ``status`` change is checked against the state machine and raises
        InvalidTransitionError when it would move the job backwards or out of
        a terminal state. ``progress`` never decreases.

        Returns:
            The updated record, or None if the job does not exist.
        """
        unknown = set(changes) - _JOB_FIELDS
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None

            status = changes.get("status")
            if status is not None and status is not job.status:
                if not job.status.can_transition_to(status):
                    raise InvalidTransitionError(job_id, job.status.value, status.value)

            if "progress" in changes:
                changes["progress"] = max(job.progress, min(100, int(changes["progress"])))

            updated = replace(job, **changes)
            self._jobs[job_id] = updated
            return _snapshot(updated)

    def transition(self, job_id: str, status: JobStatus, **changes: Any) -> VideoJob | None:
        """Move a job to ``status`` together with any other field changes."""
        return self.update(job_id, status=status, **changes)

    def delete(self, job_id: str) -> bool:
        """Remove a job record. Returns False if it did not exist."""
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def stats(self) -> dict[str, int]:
        """Count jobs by coarse state."""
        with self._lock:
            statuses = [job.status for job in self._jobs.values()]
        return {
            "active": sum(1 for s in statuses if s.is_active),
            "queued": sum(1 for s in statuses if s is JobStatus.QUEUED),
            "completed": sum(1 for s in statuses if s is JobStatus.COMPLETED),
            "failed": sum(1 for s in statuses if s is JobStatus.FAILED),
        }
