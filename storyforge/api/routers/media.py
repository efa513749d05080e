"""Media router: serves the bytes behind blob handles."""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from storyforge.api.dependencies import get_orchestrator
from storyforge.orchestrator import StudioOrchestrator

router = APIRouter()


@router.get("/{handle}")
async def get_media(handle: str, orchestrator: StudioOrchestrator = Depends(get_orchestrator)):
    """Serve the bytes registered under a blob handle."""
    entry = orchestrator.blobs.get(handle)
    if entry is None:
        raise HTTPException(status_code=404, detail="Media not found")
    data, mime_type = entry
    return Response(content=data, media_type=mime_type)
