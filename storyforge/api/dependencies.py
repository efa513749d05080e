"""Shared FastAPI dependencies."""

from fastapi import Request

from storyforge.orchestrator import StudioOrchestrator


def get_orchestrator(request: Request) -> StudioOrchestrator:
    """The studio owned by the running app."""
    return request.app.state.orchestrator
