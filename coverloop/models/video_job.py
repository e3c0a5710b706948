"""Domain records for video jobs.

Jobs live in the in-memory ``JobStore``; these are plain dataclasses, not
ORM rows. All durations are integer milliseconds.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class JobStatus(Enum):
    """Video job status, in pipeline order."""

    QUEUED = "queued"
    DOWNLOADING = "downloading"
    ANALYZING_AUDIO = "analyzing_audio"
    COMPOSING = "composing"
    ENCODING = "encoding"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def is_active(self) -> bool:
        """Holding a concurrency slot: started and not yet terminal."""
        return not self.is_terminal and self is not JobStatus.QUEUED

    def can_transition_to(self, target: "JobStatus") -> bool:
        """Whether a job may move from this status to ``target``.

        Transitions only move forward along the pipeline order. FAILED is
        reachable from every non-terminal state; nothing leaves a terminal
        state.
        """
        if self.is_terminal:
            return False
        if target is JobStatus.FAILED:
            return True
        return _STATUS_ORDER.index(target) > _STATUS_ORDER.index(self)


_STATUS_ORDER = [
    JobStatus.QUEUED,
    JobStatus.DOWNLOADING,
    JobStatus.ANALYZING_AUDIO,
    JobStatus.COMPOSING,
    JobStatus.ENCODING,
    JobStatus.COMPLETED,
]


@dataclass(frozen=True)
class TrackSpec:
    """One playlist entry as submitted."""

    url: str
    declared_duration_ms: int
    title: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "file_url": self.url,
            "length": self.declared_duration_ms / 1000,
        }


@dataclass(frozen=True)
class JobSpec:
    """Input of a video job."""

    cover_url: str
    tracks: tuple[TrackSpec, ...]
    target_duration_ms: int
    encode_preset: str = "fast"
    title: Optional[str] = None
    video_creation_id: Optional[str] = None
    channel_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "video_creation_id": self.video_creation_id,
            "channel_id": self.channel_id,
            "thumbnail_url": self.cover_url,
            "songs": [track.to_dict() for track in self.tracks],
            "target_duration_seconds": self.target_duration_ms / 1000,
            "encode_preset": self.encode_preset,
        }


@dataclass(frozen=True)
class Track:
    """A fetched track. Immutable once fetched."""

    index: int
    source_url: str
    path: str
    declared_duration_ms: int
    measured_duration_ms: Optional[int] = None

    @property
    def chosen_duration_ms(self) -> int:
        """Measured duration when probing succeeded, declared otherwise."""
        if self.measured_duration_ms is not None:
            return self.measured_duration_ms
        return self.declared_duration_ms


@dataclass(frozen=True)
class ManifestEntry:
    """One playlist manifest row: which track, and how much of it to play."""

    track_index: int
    included_ms: int


@dataclass
class VideoJob:
    """Video job record."""

    id: str
    spec: JobSpec
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    video_url: Optional[str] = None
    output_path: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    @property
    def finished_at(self) -> Optional[datetime]:
        return self.completed_at or self.failed_at

    @property
    def processing_time_seconds(self) -> Optional[int]:
        if self.started_at and self.finished_at:
            return round((self.finished_at - self.started_at).total_seconds())
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            **self.spec.to_dict(),
            "status": self.status.value,
            "progress": self.progress,
            "video_url": self.video_url,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "warnings": list(self.warnings),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "failed_at": self.failed_at.isoformat() if self.failed_at else None,
        }
