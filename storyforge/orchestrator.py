"""
Storyforge Studio Orchestrator

Top-level state owner. Wires user actions (description flow, idea flow, panel
edits, videos, project management) to the panel pipeline, the generation
gateway and the project repository.
"""

from contextlib import contextmanager
from dataclasses import replace
from typing import Any, List, Optional, Union

from storyforge.core.config import StoryforgeConfig
from storyforge.core.constants import DEFAULT_LANGUAGE, AppMode, VideoState
from storyforge.core.exceptions import (
    InputValidationError,
    PipelineError,
    ProjectNotFoundError,
    StoryforgeError,
)
from storyforge.core.logging_config import get_logger
from storyforge.core.media import BlobRegistry
from storyforge.core.models import AppState, GenerationConfig, Panel, ProjectRecord
from storyforge.llm.gateway import GeminiGateway, GenerationGateway
from storyforge.pipelines.panel_pipeline import ConfirmCallback, PanelPipeline
from storyforge.storage.asset_store import FileAssetStore
from storyforge.storage.persistence import ProjectRepository
from storyforge.storage.project_store import FileProjectStore

logger = get_logger("orchestrator")

FORM_FIELDS = ("product_name", "key_features", "target_audience", "tone", "story_idea")


class StudioOrchestrator:
    """
    Owns the AppState, the PanelPipeline, the ProjectRepository and the id of
    the open project.

    The panel collection lives in the pipeline; `app_state` composes it with
    the form fields into one snapshot.
    """

    def __init__(
        self,
        gateway: GenerationGateway,
        repository: ProjectRepository,
        blobs: BlobRegistry,
        config: Optional[StoryforgeConfig] = None,
        confirm: Optional[ConfirmCallback] = None,
    ):
        self.config = config or StoryforgeConfig()
        self.gateway = gateway
        self.repository = repository
        self.blobs = blobs
        self.pipeline = PanelPipeline(gateway, blobs, settings=self.config.pipeline, confirm=confirm)

        self._state = AppState(generation_config=self.config.defaults)
        self.current_project_id: Optional[str] = None
        self.error: Optional[str] = None
        self.is_loading = False

    @classmethod
    def from_config(cls, config: StoryforgeConfig, gateway: Optional[GenerationGateway] = None) -> "StudioOrchestrator":
        """Build the file-backed studio. Fails fast when no API key is configured."""
        blobs = BlobRegistry()
        repository = ProjectRepository(
            FileProjectStore(config.projects_dir),
            FileAssetStore(config.assets_dir),
            blobs,
        )
        gateway = gateway or GeminiGateway(config.gateway, blobs)
        return cls(gateway, repository, blobs, config)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def app_state(self) -> AppState:
        return self._state.with_panels(self.pipeline.panels)

    @property
    def panels(self) -> List[Panel]:
        return self.pipeline.panels

    @property
    def generation_config(self) -> GenerationConfig:
        return self._state.generation_config

    def update_form(self, **values: Any) -> AppState:
        """Set product form fields and / or the story idea."""
        unknown = set(values) - set(FORM_FIELDS)
        if unknown:
            raise InputValidationError(", ".join(sorted(unknown)), "is not a form field")
        self._state = replace(self._state, **values)
        return self.app_state

    def set_generation_config(self, config: GenerationConfig) -> None:
        self._state = replace(self._state, generation_config=config)

    def set_description(self, description: str) -> None:
        self._state = replace(self._state, description=description)

    @contextmanager
    def _operation(self, name: str):
        """Clear the top-level error, record it again if the operation fails."""
        self.error = None
        try:
            yield
        except StoryforgeError as e:
            self.error = e.message
            logger.error(f"{name} failed: {e}")
            raise

    def _reset_session(self, clear_form: bool) -> None:
        keep = {} if clear_form else {name: getattr(self._state, name) for name in FORM_FIELDS}
        self._state = AppState(
            mode=self._state.mode,
            generation_config=self._state.generation_config,
            **keep,
        )
        self.pipeline.load_panels([])
        self.error = None

    def set_mode(self, mode: AppMode) -> None:
        """Switch input flow. The session is reset; form fields too on a real change."""
        changed = mode != self._state.mode
        self._reset_session(clear_form=changed)
        self._state = replace(self._state, mode=mode)
        if changed:
            self.current_project_id = None

    # ------------------------------------------------------------------
    # Derived flags
    # ------------------------------------------------------------------

    @property
    def can_save(self) -> bool:
        panels = self.pipeline.panels
        return bool(panels) and not any(p.image_pending for p in panels)

    @property
    def can_generate_all_videos(self) -> bool:
        panels = self.pipeline.panels
        return (
            any(p.eligible_for_batch_video for p in panels)
            and not any(p.video_state == VideoState.GENERATING for p in panels)
        )

    @property
    def has_videos(self) -> bool:
        return any(p.has_video for p in self.pipeline.panels)

    # ------------------------------------------------------------------
    # Generation flows
    # ------------------------------------------------------------------

    async def generate_description_flow(self) -> List[Panel]:
        """
        Product description -> optional translation -> scenes -> image queue.

        Nothing is committed unless every text step succeeds.
        """
        with self._operation("generate_description_flow"):
            state = self._state
            if not state.product_name.strip():
                raise InputValidationError("product_name")
            if not state.key_features.strip():
                raise InputValidationError("key_features")

            config = state.generation_config
            self._reset_session(clear_form=False)
            self.is_loading = True
            try:
                description = await self.gateway.generate_description(state.product, config.text_model)
                if config.language != DEFAULT_LANGUAGE:
                    description = await self.gateway.translate_text(description, config.language, config.text_model)
                scenes = await self.gateway.generate_storyboard_scenes(description, config)
            finally:
                self.is_loading = False

            self._state = replace(self._state, description=description)
            return self.pipeline.submit_scene_list(scenes, config)

    async def generate_storyboard_from_idea(self) -> List[Panel]:
        with self._operation("generate_storyboard_from_idea"):
            state = self._state
            if not state.story_idea.strip():
                raise InputValidationError("story_idea")

            config = state.generation_config
            self._reset_session(clear_form=False)
            self.is_loading = True
            try:
                scenes = await self.gateway.generate_storyboard_scenes(state.story_idea, config)
            finally:
                self.is_loading = False

            return self.pipeline.submit_scene_list(scenes, config)

    async def translate_description(self, target_language: str) -> str:
        with self._operation("translate_description"):
            if not self._state.description.strip():
                raise InputValidationError("description")
            translated = await self.gateway.translate_text(
                self._state.description, target_language, self._state.generation_config.text_model
            )
            self._state = replace(self._state, description=translated)
            return translated

    # ------------------------------------------------------------------
    # Panel pass-throughs
    # ------------------------------------------------------------------

    def regenerate_image(self, index: int) -> Panel:
        with self._operation("regenerate_image"):
            return self.pipeline.regenerate_image(index)

    async def delete_panel(self, index: int, confirm: Optional[ConfirmCallback] = None) -> bool:
        with self._operation("delete_panel"):
            return await self.pipeline.delete_panel(index, confirm)

    def set_scene_duration(self, index: int, seconds) -> Panel:
        with self._operation("set_scene_duration"):
            return self.pipeline.set_scene_duration(index, seconds)

    def update_panel_description(self, index: int, description: str) -> Panel:
        with self._operation("update_panel_description"):
            return self.pipeline.update_description(index, description)

    async def expand_scene(self, index: int) -> List[Panel]:
        with self._operation("expand_scene"):
            return await self.pipeline.expand_scene(index, self._state.generation_config)

    def commit_expansion(self, index: int, edited_panels: Optional[List[Panel]] = None) -> List[Panel]:
        with self._operation("commit_expansion"):
            return self.pipeline.commit_expansion(index, edited_panels)

    def discard_expansion(self) -> None:
        self.pipeline.discard_expansion()

    async def edit_panel_image(self, index: int, prompt: str) -> Panel:
        with self._operation("edit_panel_image"):
            if not prompt.strip():
                raise InputValidationError("prompt")
            return await self.pipeline.edit_image(index, prompt)

    async def generate_video(self, index: int) -> None:
        with self._operation("generate_video"):
            await self.pipeline.generate_video(index)

    async def regenerate_video(self, index: int) -> None:
        with self._operation("regenerate_video"):
            await self.pipeline.regenerate_video(index)

    def start_video(self, index: int, regenerate: bool = False) -> None:
        """Validate now and run the video job in the background."""
        with self._operation("start_video"):
            self.pipeline.start_video(index, regenerate=regenerate)

    def start_all_videos(self) -> int:
        with self._operation("start_all_videos"):
            return len(self.pipeline.start_all_videos())

    async def generate_all_videos(self) -> int:
        with self._operation("generate_all_videos"):
            return await self.pipeline.generate_all_videos()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def new_project(self) -> None:
        self._state = AppState(mode=self._state.mode, generation_config=self.config.defaults)
        self.pipeline.load_panels([], self.config.defaults)
        self.current_project_id = None
        self.error = None

    def save_project(self) -> ProjectRecord:
        """Save the session. The id is assigned on first save and kept after."""
        with self._operation("save_project"):
            if not self.can_save:
                raise PipelineError("Nothing to save until every panel image has finished")
            record = self.repository.save_project(self.app_state, self.current_project_id)
            self.current_project_id = record.id
            return record

    def load_project(self, project_id: str) -> AppState:
        with self._operation("load_project"):
            state = self.repository.get_project_state(project_id)
            if state is None:
                raise ProjectNotFoundError(project_id)
            self._state = state.with_panels([])
            self.pipeline.load_panels(state.storyboard_panels, state.generation_config)
            self.current_project_id = project_id
            logger.info(f"Loaded project {project_id}")
            return self.app_state

    def delete_project(self, project_id: str) -> None:
        with self._operation("delete_project"):
            self.repository.delete_project(project_id)
            if project_id == self.current_project_id:
                self.new_project()

    def list_projects(self) -> List[ProjectRecord]:
        with self._operation("list_projects"):
            return self.repository.get_projects()

    def export_projects(self, inline_media: bool = False) -> List[dict]:
        with self._operation("export_projects"):
            return self.repository.export_projects(inline_media=inline_media)

    def import_projects(self, payload: Union[str, bytes, list]) -> int:
        with self._operation("import_projects"):
            return self.repository.import_projects(payload)

    async def close(self) -> None:
        await self.pipeline.close()
