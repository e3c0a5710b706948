import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from coverloop.api import video_jobs
from coverloop.config import get_settings
from coverloop.constants.error_codes import get_error_spec
from coverloop.exceptions import CoverloopError
from coverloop.render.pipeline import JobOrchestrator

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    orchestrator = getattr(app.state, "orchestrator", None) or JobOrchestrator()
    app.state.orchestrator = orchestrator
    logger.info(
        f"[APP] {settings.app_name} {settings.app_version} started "
        f"(max {orchestrator.max_concurrent_jobs} concurrent jobs)"
    )
    yield
    # Shutdown
    await orchestrator.shutdown()
    app.state.orchestrator = None


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


def _error_response(status_code: int, error: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error})


@app.exception_handler(CoverloopError)
async def coverloop_exception_handler(request: Request, exc: CoverloopError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[APP] {request.method} {request.url.path} failed [{exc.code}]: {exc.message}")
    return _error_response(exc.status_code, exc.to_error_info())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request validation errors in the same error format as everything else."""
    spec = get_error_spec("VALIDATION_ERROR")

    # Build a human-readable message from the first validation error
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        loc = " -> ".join(str(x) for x in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        message = f"{loc}: {msg}" if loc else msg
    else:
        message = "Validation error"

    return _error_response(
        422,
        {
            "code": "VALIDATION_ERROR",
            "message": message,
            "retryable": spec.get("retryable", False),
            "suggested_fix": spec.get("suggested_fix"),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    spec = get_error_spec("INTERNAL_ERROR")
    return _error_response(
        500,
        {
            "code": "INTERNAL_ERROR",
            "message": "Internal server error",
            "retryable": spec.get("retryable", False),
            "suggested_fix": spec.get("suggested_fix"),
        },
    )


# Routers
app.include_router(video_jobs.router, prefix="/api", tags=["video-jobs"])


@app.get("/health")
async def health_check(request: Request) -> dict:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    return {
        "status": "healthy",
        "version": settings.app_version,
        "git_hash": settings.git_hash,
        "active_jobs": orchestrator.active_count if orchestrator else 0,
    }


@app.get("/api/version")
async def get_version() -> dict[str, str]:
    """Return the service version info."""
    return {"version": settings.app_version, "git_hash": settings.git_hash}


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=settings.log_level.lower())
