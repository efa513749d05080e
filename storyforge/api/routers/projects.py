"""Projects router for Storyforge API."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from storyforge.api.dependencies import get_orchestrator
from storyforge.api.routers.storyboard import StateResponse, media_url, state_response
from storyforge.core.logging_config import get_logger
from storyforge.orchestrator import StudioOrchestrator

logger = get_logger("api.projects")

router = APIRouter()

EXPORT_FILENAME = "storyforge-projects.json"


class ProjectSummary(BaseModel):
    id: str
    title: str
    timestamp: int
    thumbnail_url: Optional[str] = None
    panel_count: int = 0


class SaveResponse(BaseModel):
    id: str
    title: str
    timestamp: int


class ImportResponse(BaseModel):
    imported: int


@router.get("/", response_model=List[ProjectSummary])
async def list_projects(orchestrator: StudioOrchestrator = Depends(get_orchestrator)):
    """List saved projects, newest first."""
    return [
        ProjectSummary(
            id=record.id,
            title=record.title,
            timestamp=record.timestamp,
            thumbnail_url=media_url(record.thumbnail_ref),
            panel_count=len(record.app_state.storyboard_panels),
        )
        for record in orchestrator.list_projects()
    ]


@router.post("/", response_model=SaveResponse)
async def save_project(orchestrator: StudioOrchestrator = Depends(get_orchestrator)):
    """Save the open session (new id on first save, overwrite afterwards)."""
    record = orchestrator.save_project()
    return SaveResponse(id=record.id, title=record.title, timestamp=record.timestamp)


@router.post("/new", response_model=StateResponse)
async def new_project(orchestrator: StudioOrchestrator = Depends(get_orchestrator)):
    orchestrator.new_project()
    return state_response(orchestrator)


@router.get("/export")
async def export_projects(
    inline_media: bool = False,
    orchestrator: StudioOrchestrator = Depends(get_orchestrator),
):
    """Download every project as a JSON array."""
    data = orchestrator.export_projects(inline_media=inline_media)
    return JSONResponse(
        content=data,
        headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
    )


@router.post("/import", response_model=ImportResponse)
async def import_projects(request: Request, orchestrator: StudioOrchestrator = Depends(get_orchestrator)):
    """Import a JSON array of projects (the request body is the export file)."""
    body = await request.body()
    imported = orchestrator.import_projects(body)
    return ImportResponse(imported=imported)


@router.post("/{project_id}/load", response_model=StateResponse)
async def load_project(project_id: str, orchestrator: StudioOrchestrator = Depends(get_orchestrator)):
    orchestrator.load_project(project_id)
    return state_response(orchestrator)


@router.delete("/{project_id}")
async def delete_project(project_id: str, orchestrator: StudioOrchestrator = Depends(get_orchestrator)):
    orchestrator.delete_project(project_id)
    return {"success": True, "message": f"Deleted project {project_id}"}
