from coverloop.models.video_job import (
    JobSpec,
    JobStatus,
    ManifestEntry,
    Track,
    TrackSpec,
    VideoJob,
)

__all__ = [
    "JobSpec",
    "JobStatus",
    "ManifestEntry",
    "Track",
    "TrackSpec",
    "VideoJob",
]
