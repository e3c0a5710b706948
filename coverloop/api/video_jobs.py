"""Video job API endpoints.

Jobs run in the background by default: POST returns 202 with the job id and
clients poll GET /video-jobs/{id}. With ``?wait=true`` the request stays open
until the job is terminal and the full record is returned.
"""

import logging
import os
import re

from fastapi import APIRouter, Query, Response, status
from fastapi.responses import FileResponse

from coverloop.api.deps import AppSettings, Orchestrator
from coverloop.exceptions import CoverloopError, JobNotFoundError, VideoNotFoundError
from coverloop.schemas.video_job import (
    JobStatsResponse,
    VideoJobCreate,
    VideoJobListResponse,
    VideoJobResponse,
    VideoJobSubmitResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)

# Artifacts are always <job uuid>.mp4; anything else is rejected before touching the disk.
VIDEO_FILENAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+\.mp4$")


@router.post(
    "/video-jobs",
    response_model=VideoJobSubmitResponse | VideoJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_video_job(
    job_request: VideoJobCreate,
    orchestrator: Orchestrator,
    settings: AppSettings,
    response: Response,
    wait: bool = Query(False, description="Wait for the job to finish and return it"),
) -> VideoJobSubmitResponse | VideoJobResponse:
    """Queue a video job."""
    try:
        spec = job_request.to_spec(settings)
    except ValueError as e:
        raise CoverloopError(str(e), code="VALIDATION_ERROR", status_code=422) from e

    if wait:
        job = await orchestrator.run_to_completion(spec)
        response.status_code = status.HTTP_200_OK
        return VideoJobResponse.from_job(job)

    job = await orchestrator.submit(spec)
    logger.info(f"[API] Accepted video job {job.id} ({job_request.title})")
    return VideoJobSubmitResponse(
        job_id=job.id,
        status=job.status.value,
        message="Video creation job queued",
    )


@router.get("/video-jobs", response_model=VideoJobListResponse)
async def list_video_jobs(orchestrator: Orchestrator) -> VideoJobListResponse:
    """List all jobs, newest first."""
    jobs = orchestrator.store.list()
    return VideoJobListResponse(jobs=[VideoJobResponse.from_job(j) for j in jobs], total=len(jobs))


@router.get("/video-jobs/active", response_model=VideoJobListResponse)
async def list_active_video_jobs(orchestrator: Orchestrator) -> VideoJobListResponse:
    """List jobs that are queued or in progress."""
    jobs = orchestrator.store.list_active()
    return VideoJobListResponse(jobs=[VideoJobResponse.from_job(j) for j in jobs], total=len(jobs))


@router.get("/video-jobs/{job_id}", response_model=VideoJobResponse)
async def get_video_job(job_id: str, orchestrator: Orchestrator) -> VideoJobResponse:
    job = orchestrator.store.get(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return VideoJobResponse.from_job(job)


@router.delete("/video-jobs/{job_id}", response_model=VideoJobResponse)
async def cancel_video_job(job_id: str, orchestrator: Orchestrator) -> VideoJobResponse:
    """Cancel a job that has not finished yet."""
    job = orchestrator.cancel(job_id)
    return VideoJobResponse.from_job(job)


@router.get("/stats", response_model=JobStatsResponse)
async def get_stats(orchestrator: Orchestrator) -> JobStatsResponse:
    return JobStatsResponse(
        **orchestrator.store.stats(),
        max_concurrent_jobs=orchestrator.max_concurrent_jobs,
    )


@router.get("/videos/{filename}")
async def get_video(filename: str, orchestrator: Orchestrator) -> FileResponse:
    """Serve a finished video from the output directory."""
    if not VIDEO_FILENAME_PATTERN.match(filename):
        raise VideoNotFoundError(f"Video not found: {filename}")

    path = os.path.join(orchestrator.output_dir, filename)
    if not os.path.isfile(path):
        raise VideoNotFoundError(f"Video not found: {filename}")

    return FileResponse(path, media_type="video/mp4", filename=filename)
