"""Custom exceptions for the coverloop service.

Pipeline errors are recorded on the failing job (code + message) and
request errors are rendered by the FastAPI exception handlers. Every
exception carries a machine-readable code looked up in
``coverloop.constants.error_codes``.
"""

from typing import Any

from coverloop.constants.error_codes import get_error_spec


class CoverloopError(Exception):
    """Base exception for all coverloop application errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def to_error_info(self) -> dict[str, Any]:
        """Convert exception to the error body used in API responses."""
        spec = get_error_spec(self.code)
        return {
            "code": self.code,
            "message": self.message,
            "retryable": spec.get("retryable", False),
            "suggested_fix": self.suggested_fix or spec.get("suggested_fix"),
        }


# =============================================================================
# Pipeline Errors
# =============================================================================


class PipelineError(CoverloopError):
    """Base class for errors raised while a job is being processed."""

    #: Fatal errors abort the job; non-fatal ones are logged and absorbed.
    fatal: bool = True


class DownloadError(PipelineError):
    """Network or HTTP failure while fetching an asset."""

    code = "DOWNLOAD_FAILED"
    status_code = 502
    message = "Failed to download asset"

    def __init__(self, url: str | None = None, reason: str | None = None):
        message = self.message
        if url:
            message = f"Failed to download {url}"
            if reason:
                message += f": {reason}"
        super().__init__(message)
        self.url = url


class InvalidAssetError(PipelineError):
    """Cover image failed content-type or signature validation."""

    code = "INVALID_ASSET"
    status_code = 422
    message = "Invalid asset"


class ProbeError(PipelineError):
    """Duration probing failed. Triggers the declared-duration fallback."""

    code = "PROBE_FAILED"
    message = "Failed to probe media duration"
    fatal = False


class CompositionError(PipelineError):
    """Degenerate playlist: empty track set or non-positive durations."""

    code = "COMPOSITION_FAILED"
    status_code = 422
    message = "Cannot compose playlist"


class EncodingError(PipelineError):
    """External encoder exited with a non-zero status."""

    code = "ENCODING_FAILED"
    message = "Encoding failed"

    def __init__(self, message: str | None = None, *, returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class CleanupError(PipelineError):
    """Workspace deletion failed. Logged only."""

    code = "CLEANUP_FAILED"
    message = "Failed to delete workspace"
    fatal = False


class JobCancelledError(PipelineError):
    """The job left its active state while its pipeline was running."""

    code = "JOB_CANCELLED"
    message = "Cancelled by user"


# =============================================================================
# Job Store / Request Errors
# =============================================================================


class ResourceNotFoundError(CoverloopError):
    """Base class for resource not found errors."""

    status_code = 404


class JobNotFoundError(ResourceNotFoundError):
    """Job not found."""

    code = "JOB_NOT_FOUND"
    message = "Job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Job not found: {job_id}" if job_id else self.message
        super().__init__(message)


class VideoNotFoundError(ResourceNotFoundError):
    """Video artifact not found."""

    code = "VIDEO_NOT_FOUND"
    message = "Video not found"


class JobNotCancellableError(CoverloopError):
    """Job already reached a terminal state."""

    code = "JOB_NOT_CANCELLABLE"
    status_code = 409
    message = "Cannot cancel completed or failed job"

    def __init__(self, job_id: str | None = None, status: str | None = None):
        message = self.message
        if job_id and status:
            message = f"Cannot cancel job {job_id}: already {status}"
        super().__init__(message)


class InvalidTransitionError(CoverloopError):
    """Status change that would move a job backwards or out of a terminal state."""

    code = "INVALID_TRANSITION"
    status_code = 409
    message = "Invalid status transition"

    def __init__(self, job_id: str, current: str, requested: str):
        super().__init__(f"Job {job_id}: cannot move from {current} to {requested}")
        self.job_id = job_id
        self.current = current
        self.requested = requested
