from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, HttpUrl, PositiveFloat, field_validator

from coverloop.config import Settings
from coverloop.models.video_job import JobSpec, TrackSpec, VideoJob

EncodePresetName = Literal["fast", "balanced", "quality"]


class SongInput(BaseModel):
    title: str | None = None
    file_url: HttpUrl
    length: PositiveFloat = Field(..., description="Declared duration in seconds")


class VideoJobCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    video_creation_id: str | None = None
    channel_id: str | None = None
    thumbnail_url: HttpUrl
    songs: list[SongInput] = Field(..., min_length=1)
    target_duration_seconds: PositiveFloat | None = None  # Defaults to settings
    encode_preset: EncodePresetName | None = None  # Defaults to settings

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v

    def to_spec(self, settings: Settings) -> JobSpec:
        """Convert the request into a pipeline input.

        Raises:
            ValueError: If ``settings.required_track_count`` is set and the
                number of songs does not match it, or if a duration rounds
                to zero milliseconds
        """
        required = settings.required_track_count
        if required and len(self.songs) != required:
            raise ValueError(f"Exactly {required} songs are required, got {len(self.songs)}")

        target_seconds = self.target_duration_seconds or settings.target_duration_seconds
        target_duration_ms = round(target_seconds * 1000)
        if target_duration_ms <= 0:
            raise ValueError(f"target_duration_seconds must be at least 1 ms, got {target_seconds}")

        tracks = []
        for index, song in enumerate(self.songs):
            declared_duration_ms = round(song.length * 1000)
            if declared_duration_ms <= 0:
                raise ValueError(f"songs[{index}].length must be at least 1 ms, got {song.length}")
            tracks.append(
                TrackSpec(url=str(song.file_url), declared_duration_ms=declared_duration_ms, title=song.title)
            )

        return JobSpec(
            cover_url=str(self.thumbnail_url),
            tracks=tuple(tracks),
            target_duration_ms=target_duration_ms,
            encode_preset=self.encode_preset or settings.default_encode_preset,
            title=self.title,
            video_creation_id=self.video_creation_id,
            channel_id=self.channel_id,
        )


class SongResponse(BaseModel):
    title: str | None
    file_url: str
    length: float


class VideoJobResponse(BaseModel):
    id: str
    title: str | None
    video_creation_id: str | None
    channel_id: str | None
    thumbnail_url: str
    songs: list[SongResponse]
    target_duration_seconds: float
    encode_preset: str
    status: str
    progress: int
    video_url: str | None
    error_code: str | None
    error_message: str | None
    warnings: list[str]
    created_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    failed_at: datetime | None
    processing_time_seconds: int | None = None

    @classmethod
    def from_job(cls, job: VideoJob) -> "VideoJobResponse":
        spec = job.spec
        return cls(
            id=job.id,
            title=spec.title,
            video_creation_id=spec.video_creation_id,
            channel_id=spec.channel_id,
            thumbnail_url=spec.cover_url,
            songs=[SongResponse(**track.to_dict()) for track in spec.tracks],
            target_duration_seconds=spec.target_duration_ms / 1000,
            encode_preset=spec.encode_preset,
            status=job.status.value,
            progress=job.progress,
            video_url=job.video_url,
            error_code=job.error_code,
            error_message=job.error_message,
            warnings=list(job.warnings),
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            failed_at=job.failed_at,
            processing_time_seconds=job.processing_time_seconds,
        )


class VideoJobSubmitResponse(BaseModel):
    job_id: str
    status: str
    message: str


class VideoJobListResponse(BaseModel):
    jobs: list[VideoJobResponse]
    total: int


class JobStatsResponse(BaseModel):
    active: int
    queued: int
    completed: int
    failed: int
    max_concurrent_jobs: int
