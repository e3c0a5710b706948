from coverloop.schemas.video_job import (
    JobStatsResponse,
    SongInput,
    VideoJobCreate,
    VideoJobListResponse,
    VideoJobResponse,
    VideoJobSubmitResponse,
)

__all__ = [
    "SongInput",
    "VideoJobCreate",
    "VideoJobResponse",
    "VideoJobSubmitResponse",
    "VideoJobListResponse",
    "JobStatsResponse",
]
