"""Error codes dictionary for the video job API.

Single source of truth for error codes, their retryability and the
suggested fix surfaced to callers. Used by exception handlers and by the
job pipeline when it records why a job failed.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_fix: str


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Pipeline errors (recorded on the job)
    # ==========================================================================
    "DOWNLOAD_FAILED": {
        "retryable": True,
        "suggested_fix": "Check that every file_url is reachable, then submit a new job",
    },
    "INVALID_ASSET": {
        "retryable": False,
        "suggested_fix": "thumbnail_url must serve a PNG or JPEG image with an image/* content type",
    },
    "PROBE_FAILED": {
        "retryable": False,
    },
    "COMPOSITION_FAILED": {
        "retryable": False,
        "suggested_fix": "Every song must have a positive duration",
    },
    "ENCODING_FAILED": {
        "retryable": True,
        "suggested_fix": "Check that the audio files are valid, then submit a new job",
    },
    "CLEANUP_FAILED": {
        "retryable": False,
    },
    "JOB_CANCELLED": {
        "retryable": True,
        "suggested_fix": "Submit a new job",
    },
    # ==========================================================================
    # Request errors
    # ==========================================================================
    "JOB_NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "List jobs with GET /api/video-jobs",
    },
    "JOB_NOT_CANCELLABLE": {
        "retryable": False,
        "suggested_fix": "Only queued or running jobs can be cancelled",
    },
    "VIDEO_NOT_FOUND": {
        "retryable": True,
        "suggested_fix": "Wait until the job status is completed",
    },
    "INVALID_TRANSITION": {
        "retryable": False,
    },
    "VALIDATION_ERROR": {
        "retryable": False,
        "suggested_fix": "Fix the request body according to the error message",
    },
    "INTERNAL_ERROR": {
        "retryable": True,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested fix
    """
    return ERROR_CODES.get(code, {"retryable": False})


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    return get_error_spec(code).get("retryable", False)
