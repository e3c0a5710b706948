from typing import Annotated

from fastapi import Depends, Request

from coverloop.config import Settings, get_settings
from coverloop.render.pipeline import JobOrchestrator


def get_orchestrator(request: Request) -> JobOrchestrator:
    """The orchestrator created by the application lifespan."""
    return request.app.state.orchestrator


Orchestrator = Annotated[JobOrchestrator, Depends(get_orchestrator)]
AppSettings = Annotated[Settings, Depends(get_settings)]
