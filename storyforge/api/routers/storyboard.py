"""Storyboard router for Storyforge API.

Generation flows, panel edits, scene expansion and videos for the open session.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.util import get_remote_address

from storyforge.api.dependencies import get_orchestrator
from storyforge.core.constants import (
    AspectRatio,
    DEFAULT_LANGUAGE,
    DEFAULT_SCENE_COUNT,
    DEFAULT_TEXT_MODEL,
    DEFAULT_IMAGE_MODEL,
    DEFAULT_VIDEO_MODEL,
    MAX_SCENE_COUNT,
    MIN_SCENE_COUNT,
    AppMode,
    Mood,
    Tone,
    VideoLength,
    VisualStyle,
)
from storyforge.core.exceptions import ExpansionError
from storyforge.core.logging_config import get_logger
from storyforge.core.media import BlobHandle, InlineMedia, MediaRef, RemoteMedia
from storyforge.core.models import GenerationConfig, Panel
from storyforge.orchestrator import StudioOrchestrator

logger = get_logger("api.storyboard")

router = APIRouter()

# Rate limiter for generation endpoints
limiter = Limiter(key_func=get_remote_address)


# =============================================================================
# MODELS
# =============================================================================

class GenerationConfigModel(BaseModel):
    scene_count: int = Field(DEFAULT_SCENE_COUNT, ge=MIN_SCENE_COUNT, le=MAX_SCENE_COUNT)
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    visual_style: VisualStyle = VisualStyle.CINEMATIC
    mood: Mood = Mood.FAST_PACED
    video_length: VideoLength = VideoLength.SHORT
    language: str = DEFAULT_LANGUAGE
    text_model: str = DEFAULT_TEXT_MODEL
    image_model: str = DEFAULT_IMAGE_MODEL
    video_model: str = DEFAULT_VIDEO_MODEL

    def to_config(self) -> GenerationConfig:
        return GenerationConfig.from_dict(self.model_dump(mode="json"))


class PanelModel(BaseModel):
    id: str
    index: int
    description: str
    image_state: str
    image_url: Optional[str] = None
    video_state: str
    video_url: Optional[str] = None
    video_error: Optional[str] = None
    scene_duration_seconds: int


class StateResponse(BaseModel):
    mode: str
    product_name: str
    key_features: str
    target_audience: str
    tone: str
    story_idea: str
    description: str
    generation_config: dict
    panels: List[PanelModel] = []
    current_project_id: Optional[str] = None
    can_save: bool
    can_generate_all_videos: bool
    has_videos: bool
    image_queue_idle: bool
    is_loading: bool
    error: Optional[str] = None


class DescriptionRequest(BaseModel):
    product_name: str
    key_features: str
    target_audience: str = ""
    tone: Tone = Tone.PROFESSIONAL
    config: Optional[GenerationConfigModel] = None


class IdeaRequest(BaseModel):
    story_idea: str
    config: Optional[GenerationConfigModel] = None


class DurationRequest(BaseModel):
    seconds: float


class PanelDescriptionRequest(BaseModel):
    description: str


class ShotEdit(BaseModel):
    """One staged shot to keep, by its position in the staged list."""
    index: int
    description: Optional[str] = None


class ExpansionCommitRequest(BaseModel):
    shots: Optional[List[ShotEdit]] = None  # None keeps every staged shot as-is


class VideoRequest(BaseModel):
    regenerate: bool = False


class TranslateRequest(BaseModel):
    target_language: str


class EditImageRequest(BaseModel):
    prompt: str


class ModeRequest(BaseModel):
    mode: AppMode


# =============================================================================
# SERIALIZATION
# =============================================================================

def media_url(ref: Optional[MediaRef]) -> Optional[str]:
    """Displayable URL for a media reference, if it has one."""
    if isinstance(ref, BlobHandle):
        return f"/api/media/{ref.handle}"
    if isinstance(ref, (InlineMedia, RemoteMedia)):
        return ref.to_json()
    return None


def panel_model(panel: Panel, index: int) -> PanelModel:
    return PanelModel(
        id=panel.id,
        index=index,
        description=panel.description,
        image_state=panel.image_state.value,
        image_url=media_url(panel.image_ref),
        video_state=panel.video_state.value,
        video_url=media_url(panel.video_ref),
        video_error=panel.video_error,
        scene_duration_seconds=panel.scene_duration_seconds,
    )


def state_response(orchestrator: StudioOrchestrator) -> StateResponse:
    state = orchestrator.app_state
    return StateResponse(
        mode=state.mode.value,
        product_name=state.product_name,
        key_features=state.key_features,
        target_audience=state.target_audience,
        tone=state.tone.value,
        story_idea=state.story_idea,
        description=state.description,
        generation_config=state.generation_config.to_dict(),
        panels=[panel_model(p, i) for i, p in enumerate(state.storyboard_panels)],
        current_project_id=orchestrator.current_project_id,
        can_save=orchestrator.can_save,
        can_generate_all_videos=orchestrator.can_generate_all_videos,
        has_videos=orchestrator.has_videos,
        image_queue_idle=orchestrator.pipeline.is_idle,
        is_loading=orchestrator.is_loading,
        error=orchestrator.error,
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/state", response_model=StateResponse)
async def get_state(orchestrator: StudioOrchestrator = Depends(get_orchestrator)):
    """Current session state."""
    return state_response(orchestrator)


@router.put("/mode", response_model=StateResponse)
async def set_mode(body: ModeRequest, orchestrator: StudioOrchestrator = Depends(get_orchestrator)):
    orchestrator.set_mode(body.mode)
    return state_response(orchestrator)


@router.post("/description", response_model=StateResponse)
@limiter.limit("5/minute")
async def generate_from_description(
    request: Request,
    body: DescriptionRequest,
    orchestrator: StudioOrchestrator = Depends(get_orchestrator),
):
    """Product description flow: description, translation, scenes, image queue."""
    if orchestrator.app_state.mode != AppMode.DESCRIPTION:
        orchestrator.set_mode(AppMode.DESCRIPTION)
    orchestrator.update_form(
        product_name=body.product_name,
        key_features=body.key_features,
        target_audience=body.target_audience,
        tone=body.tone,
    )
    if body.config is not None:
        orchestrator.set_generation_config(body.config.to_config())
    await orchestrator.generate_description_flow()
    return state_response(orchestrator)


@router.post("/idea", response_model=StateResponse)
@limiter.limit("5/minute")
async def generate_from_idea(
    request: Request,
    body: IdeaRequest,
    orchestrator: StudioOrchestrator = Depends(get_orchestrator),
):
    """Story idea flow: scenes, image queue."""
    if orchestrator.app_state.mode != AppMode.STORYBOARD:
        orchestrator.set_mode(AppMode.STORYBOARD)
    orchestrator.update_form(story_idea=body.story_idea)
    if body.config is not None:
        orchestrator.set_generation_config(body.config.to_config())
    await orchestrator.generate_storyboard_from_idea()
    return state_response(orchestrator)


@router.post("/translate", response_model=StateResponse)
@limiter.limit("10/minute")
async def translate_description(
    request: Request,
    body: TranslateRequest,
    orchestrator: StudioOrchestrator = Depends(get_orchestrator),
):
    await orchestrator.translate_description(body.target_language)
    return state_response(orchestrator)


@router.post("/panels/{index}/regenerate", response_model=StateResponse)
async def regenerate_image(index: int, orchestrator: StudioOrchestrator = Depends(get_orchestrator)):
    orchestrator.regenerate_image(index)
    return state_response(orchestrator)


@router.delete("/panels/{index}", response_model=StateResponse)
async def delete_panel(index: int, orchestrator: StudioOrchestrator = Depends(get_orchestrator)):
    """Delete a panel. The HTTP call itself is the confirmation."""
    await orchestrator.delete_panel(index, confirm=lambda panel, i: True)
    return state_response(orchestrator)


@router.put("/panels/{index}/duration", response_model=StateResponse)
async def set_duration(
    index: int,
    body: DurationRequest,
    orchestrator: StudioOrchestrator = Depends(get_orchestrator),
):
    orchestrator.set_scene_duration(index, body.seconds)
    return state_response(orchestrator)


@router.put("/panels/{index}/description", response_model=StateResponse)
async def set_panel_description(
    index: int,
    body: PanelDescriptionRequest,
    orchestrator: StudioOrchestrator = Depends(get_orchestrator),
):
    orchestrator.update_panel_description(index, body.description)
    return state_response(orchestrator)


@router.post("/panels/{index}/edit", response_model=StateResponse)
@limiter.limit("10/minute")
async def edit_panel_image(
    request: Request,
    index: int,
    body: EditImageRequest,
    orchestrator: StudioOrchestrator = Depends(get_orchestrator),
):
    await orchestrator.edit_panel_image(index, body.prompt)
    return state_response(orchestrator)


@router.post("/panels/{index}/expand", response_model=List[PanelModel])
@limiter.limit("10/minute")
async def expand_scene(
    request: Request,
    index: int,
    orchestrator: StudioOrchestrator = Depends(get_orchestrator),
):
    """Stage an expansion of one panel into shots for review."""
    staged = await orchestrator.expand_scene(index)
    return [panel_model(p, i) for i, p in enumerate(staged)]


@router.post("/panels/{index}/expand/commit", response_model=StateResponse)
async def commit_expansion(
    index: int,
    body: ExpansionCommitRequest,
    orchestrator: StudioOrchestrator = Depends(get_orchestrator),
):
    edited = None
    if body.shots is not None:
        staging = orchestrator.pipeline.staging
        if staging is None:
            raise ExpansionError("No expansion is staged")
        edited = []
        for shot in body.shots:
            if not 0 <= shot.index < len(staging.panels):
                raise ExpansionError(f"Staged shot {shot.index} does not exist", {"shot": shot.index})
            panel = staging.panels[shot.index]
            if shot.description is not None:
                panel = panel.evolve(description=shot.description)
            edited.append(panel)
    orchestrator.commit_expansion(index, edited)
    return state_response(orchestrator)


@router.delete("/expansion", response_model=StateResponse)
async def discard_expansion(orchestrator: StudioOrchestrator = Depends(get_orchestrator)):
    orchestrator.discard_expansion()
    return state_response(orchestrator)


@router.post("/panels/{index}/video", response_model=StateResponse, status_code=202)
@limiter.limit("5/minute")
async def generate_video(
    request: Request,
    index: int,
    body: Optional[VideoRequest] = None,
    orchestrator: StudioOrchestrator = Depends(get_orchestrator),
):
    """Start a video job for one panel; poll /state for the result."""
    regenerate = body.regenerate if body else False
    orchestrator.start_video(index, regenerate=regenerate)
    return state_response(orchestrator)


@router.post("/videos", response_model=StateResponse, status_code=202)
@limiter.limit("2/minute")
async def generate_all_videos(
    request: Request,
    orchestrator: StudioOrchestrator = Depends(get_orchestrator),
):
    """Start a video job for every eligible panel."""
    started = orchestrator.start_all_videos()
    logger.info(f"Started {started} video jobs")
    return state_response(orchestrator)
