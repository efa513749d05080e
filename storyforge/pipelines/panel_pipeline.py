"""
Storyforge Panel Pipeline

Owns the ordered panel collection and its lifecycle:

- a self-driving image queue: every mutation of the collection wakes a
  persistent worker that generates images one at a time, in panel order
- scene expansion into staged sub-panels, committed or discarded on review
- per-panel video jobs, run concurrently and independently

Panels are immutable. Every mutation replaces the whole collection through an
updater function, and in-flight results are applied by panel id so a result
for a deleted or regenerated panel is simply dropped.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, List, Optional, Set, Tuple, Union

from storyforge.core.config import PipelineSettings
from storyforge.core.constants import (
    DEFAULT_SCENE_DURATION,
    ImageState,
    VideoState,
)
from storyforge.core.exceptions import (
    ExpansionError,
    GenerationError,
    MediaResolutionError,
    PanelIndexError,
    PipelineError,
    VideoNotAllowedError,
    is_quota_message,
)
from storyforge.core.logging_config import get_logger, panel_logger
from storyforge.core.media import MEDIA_ERROR, MEDIA_QUOTA_ERROR, BlobHandle, BlobRegistry, MediaRef
from storyforge.core.models import GenerationConfig, Panel, clamp_scene_duration, new_panel_id
from storyforge.llm.gateway import GenerationGateway

logger = get_logger("pipelines.panel")

PanelsUpdater = Callable[[List[Panel]], List[Panel]]
ConfirmCallback = Callable[[Panel, int], Union[bool, Awaitable[bool]]]


def classify_failure(error: BaseException) -> ImageState:
    """Quota / rate-limit failures become QUOTA_ERROR, everything else ERROR."""
    if isinstance(error, GenerationError) and error.is_quota:
        return ImageState.QUOTA_ERROR
    if is_quota_message(str(error)):
        return ImageState.QUOTA_ERROR
    return ImageState.ERROR


def blob_handles(panels: Iterable[Panel]) -> Set[str]:
    handles = set()
    for panel in panels:
        for ref in (panel.image_ref, panel.video_ref):
            if isinstance(ref, BlobHandle):
                handles.add(ref.handle)
    return handles


def failure_ref(state: ImageState) -> MediaRef:
    return MEDIA_QUOTA_ERROR if state == ImageState.QUOTA_ERROR else MEDIA_ERROR


def describe_error(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "Generation timed out"
    return getattr(error, "message", None) or str(error) or error.__class__.__name__


@dataclass
class ExpansionStaging:
    """Sub-panels awaiting review, bound to the source panel's identity."""
    source_panel_id: str
    source_description: str
    panels: List[Panel] = field(default_factory=list)


class PanelPipeline:
    """
    Panel collection plus the image queue, expansion and video jobs.

    Usage:
        pipeline = PanelPipeline(gateway, blobs)
        pipeline.submit_scene_list(scenes, config)
        await pipeline.wait_until_idle()
        await pipeline.generate_video(0)
    """

    def __init__(
        self,
        gateway: GenerationGateway,
        blobs: BlobRegistry,
        settings: Optional[PipelineSettings] = None,
        confirm: Optional[ConfirmCallback] = None,
        log_callback: Callable[[str], None] = None,
    ):
        self.gateway = gateway
        self.blobs = blobs
        self.settings = settings or PipelineSettings()
        self.confirm = confirm
        self.log = log_callback or (lambda msg: logger.info(msg))

        self._panels: Tuple[Panel, ...] = ()
        self._config = GenerationConfig()
        self._staging: Optional[ExpansionStaging] = None

        # Drain machinery
        self._changed = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._drain_lock = asyncio.Lock()
        self._worker: Optional[asyncio.Task] = None

        self._video_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def panels(self) -> List[Panel]:
        return list(self._panels)

    @property
    def config(self) -> GenerationConfig:
        return self._config

    @property
    def staging(self) -> Optional[ExpansionStaging]:
        return self._staging

    @property
    def is_idle(self) -> bool:
        return self._idle.is_set()

    def update_panels(self, updater: PanelsUpdater) -> None:
        """Replace the collection with updater(previous) and wake the queue."""
        previous = self._panels
        self._panels = tuple(updater(list(previous)))
        self._release_blobs(previous)
        self._signal_change()

    def _live_handles(self) -> Set[str]:
        live = blob_handles(self._panels)
        if self._staging is not None:
            live |= blob_handles(self._staging.panels)
        return live

    def _release_blobs(self, dropped: Iterable[Panel]) -> None:
        """Revoke the blob handles that only the dropped panels referenced."""
        for handle in blob_handles(dropped) - self._live_handles():
            self.blobs.revoke(handle)

    def _release_ref(self, ref: Optional[MediaRef]) -> None:
        if isinstance(ref, BlobHandle) and ref.handle not in self._live_handles():
            self.blobs.revoke(ref.handle)

    def _clear_staging(self) -> None:
        staging, self._staging = self._staging, None
        if staging is not None:
            self._release_blobs(staging.panels)

    def _panel_at(self, index: int) -> Panel:
        if not 0 <= index < len(self._panels):
            raise PanelIndexError(index, len(self._panels))
        return self._panels[index]

    def _find(self, panel_id: str) -> Optional[Panel]:
        for panel in self._panels:
            if panel.id == panel_id:
                return panel
        return None

    def _apply(self, panel_id: str, change: Callable[[Panel], Panel], what: str) -> bool:
        """Apply a change to the panel with this id. False if it is gone."""
        if self._find(panel_id) is None:
            logger.info(f"Discarding {what} result for vanished panel {panel_id}")
            return False
        self.update_panels(lambda panels: [change(p) if p.id == panel_id else p for p in panels])
        return True

    def load_panels(self, panels: List[Panel], config: Optional[GenerationConfig] = None) -> None:
        """Replace the collection wholesale (project load / new session)."""
        if config is not None:
            self._config = config
        self._clear_staging()
        # Nothing is generating yet in a freshly loaded collection
        panels = [
            p.evolve(image_state=ImageState.QUEUED) if p.image_state == ImageState.GENERATING else p
            for p in panels
        ]
        self.update_panels(lambda _: panels)

    # ------------------------------------------------------------------
    # Image queue
    # ------------------------------------------------------------------

    def _next_queued(self) -> Optional[Panel]:
        if any(p.image_state == ImageState.GENERATING for p in self._panels):
            return None
        for panel in self._panels:
            if panel.image_state == ImageState.QUEUED:
                return panel
        return None

    def _has_pending_images(self) -> bool:
        return any(p.image_pending for p in self._panels)

    def _signal_change(self) -> None:
        if self._has_pending_images():
            self._idle.clear()
        self._changed.set()
        self._ensure_worker()

    def _ensure_worker(self) -> None:
        if self._worker is not None and not self._worker.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; start() or the next mutation inside a loop starts it
            return
        self._worker = loop.create_task(self._run_worker())

    async def start(self) -> None:
        self._ensure_worker()
        if self._has_pending_images():
            self._changed.set()

    async def _run_worker(self) -> None:
        logger.debug("Image queue worker started")
        while True:
            await self._changed.wait()
            self._changed.clear()
            try:
                await self.drain()
            except Exception as e:
                logger.exception(f"Image queue drain failed: {e}")

    async def drain(self) -> None:
        """Generate queued images one at a time until none is left."""
        async with self._drain_lock:
            while True:
                panel = self._next_queued()
                if panel is None:
                    break
                await self._generate_panel_image(panel.id)
            if not self._has_pending_images():
                self._idle.set()

    async def _call_with_timeout(self, coro: Awaitable, timeout: Optional[float]):
        if timeout is None:
            return await coro
        return await asyncio.wait_for(coro, timeout)

    async def _generate_panel_image(self, panel_id: str) -> None:
        panel = self._find(panel_id)
        index = self._panels.index(panel)
        log = panel_logger(logger, panel_id)
        self._apply(panel_id, lambda p: p.evolve(image_state=ImageState.GENERATING), "image")
        self.log(f"Generating image for panel {index + 1}/{len(self._panels)}")

        config = self._config
        try:
            ref = await self._call_with_timeout(
                self.gateway.generate_image(
                    panel.description,
                    config.visual_style.value,
                    config.aspect_ratio.value,
                    config.image_model,
                ),
                self.settings.image_timeout_seconds,
            )
        except Exception as e:
            state = classify_failure(e)
            log.error(f"Image generation failed ({state.value}): {describe_error(e)}")
            self._apply(
                panel_id,
                lambda p: p.evolve(image_state=state, image_ref=failure_ref(state)),
                "image",
            )
            return

        if self._apply(panel_id, lambda p: p.evolve(image_state=ImageState.READY, image_ref=ref), "image"):
            log.debug("Image ready")
        else:
            self._release_ref(ref)

    async def wait_until_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until no panel is queued or generating an image."""
        self._ensure_worker()
        if self._has_pending_images():
            self._idle.clear()
            self._changed.set()
        await self._call_with_timeout(self._idle.wait(), timeout)

    async def close(self) -> None:
        """Stop the worker and cancel outstanding video jobs."""
        tasks = list(self._video_tasks)
        if self._worker is not None:
            tasks.append(self._worker)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._worker = None
        self._video_tasks.clear()

    # ------------------------------------------------------------------
    # Panel operations
    # ------------------------------------------------------------------

    def submit_scene_list(self, scenes: List[str], config: GenerationConfig) -> List[Panel]:
        """Replace the collection with one queued panel per scene."""
        self._config = config
        self._clear_staging()
        panels = [Panel(description=scene) for scene in scenes]
        self.update_panels(lambda _: panels)
        logger.info(f"Submitted {len(panels)} scenes")
        return list(panels)

    def regenerate_image(self, index: int) -> Panel:
        """
        Queue a panel's image again. The panel gets a new id, so a result still
        in flight for the old one is discarded.
        """
        panel = self._panel_at(index)
        fresh = panel.evolve(
            id=new_panel_id(),
            image_state=ImageState.QUEUED,
            image_ref=None,
            video_state=VideoState.NONE,
            video_ref=None,
            video_error=None,
        )
        self.update_panels(lambda panels: [fresh if p.id == panel.id else p for p in panels])
        return fresh

    async def delete_panel(self, index: int, confirm: Optional[ConfirmCallback] = None) -> bool:
        """
        Remove the panel at index once confirmed.

        Returns:
            True if the panel was removed, False if confirmation was declined
        """
        panel = self._panel_at(index)
        confirm = confirm or self.confirm
        if confirm is not None:
            answer = confirm(panel, index)
            if inspect.isawaitable(answer):
                answer = await answer
            if not answer:
                return False

        self.update_panels(lambda panels: [p for p in panels if p.id != panel.id])
        if self._staging is not None and self._staging.source_panel_id == panel.id:
            self._clear_staging()
        logger.info(f"Deleted panel {index}")
        return True

    def set_scene_duration(self, index: int, seconds) -> Panel:
        panel = self._panel_at(index).evolve(scene_duration_seconds=clamp_scene_duration(seconds))
        self.update_panels(lambda panels: [panel if p.id == panel.id else p for p in panels])
        return panel

    def update_description(self, index: int, description: str) -> Panel:
        panel = self._panel_at(index).evolve(description=description)
        self.update_panels(lambda panels: [panel if p.id == panel.id else p for p in panels])
        return panel

    async def edit_image(self, index: int, prompt: str) -> Panel:
        """Apply an edit instruction to a ready image; any video is reset."""
        panel = self._panel_at(index)
        if not panel.has_raw_image:
            raise PipelineError(f"Panel {index} has no ready image to edit", {"index": index})
        data, mime_type = self.blobs.read(panel.image_ref)

        ref = await self.gateway.edit_image(prompt, data, mime_type)

        def change(p: Panel) -> Panel:
            return p.evolve(image_ref=ref, video_state=VideoState.NONE, video_ref=None, video_error=None)

        if not self._apply(panel.id, change, "image edit"):
            self._release_ref(ref)
            return change(panel)
        panel_logger(logger, panel.id).info(f"Applied image edit: {prompt}")
        return self._find(panel.id)

    # ------------------------------------------------------------------
    # Expansion
    # ------------------------------------------------------------------

    async def _generate_staged_image(self, panel: Panel, config: GenerationConfig) -> Panel:
        try:
            ref = await self._call_with_timeout(
                self.gateway.generate_image(
                    panel.description,
                    config.visual_style.value,
                    config.aspect_ratio.value,
                    config.image_model,
                ),
                self.settings.image_timeout_seconds,
            )
        except Exception as e:
            state = classify_failure(e)
            logger.warning(f"Expansion image failed ({state.value}): {describe_error(e)}")
            return panel.evolve(image_state=state, image_ref=failure_ref(state))
        return panel.evolve(image_state=ImageState.READY, image_ref=ref)

    async def expand_scene(self, index: int, config: Optional[GenerationConfig] = None) -> List[Panel]:
        """
        Split a panel into shots and render each shot's image concurrently.

        The result is staged for review, not merged; see commit_expansion.
        """
        config = config or self._config
        source = self._panel_at(index)
        self._clear_staging()

        descriptions = await self.gateway.expand_scene(source.description, config.language, config.text_model)
        staged = [Panel(description=d, image_state=ImageState.GENERATING) for d in descriptions]
        self.log(f"Expanding panel {index + 1} into {len(staged)} shots")

        results = await asyncio.gather(*(self._generate_staged_image(p, config) for p in staged))

        self._clear_staging()
        self._staging = ExpansionStaging(
            source_panel_id=source.id,
            source_description=source.description,
            panels=list(results),
        )
        return list(results)

    def commit_expansion(self, index: int, edited_panels: Optional[List[Panel]] = None) -> List[Panel]:
        """
        Replace the panel at index with the (possibly edited) staged sub-panels.

        Returns:
            The inserted panels
        """
        staging = self._staging
        if staging is None:
            raise ExpansionError("No expansion is staged")

        source = self._panel_at(index)
        if source.id != staging.source_panel_id:
            raise ExpansionError(
                "Staged expansion belongs to a different panel",
                {"index": index, "staged_for": staging.source_panel_id},
            )

        sub_panels = staging.panels if edited_panels is None else edited_panels
        if not sub_panels:
            raise ExpansionError("Cannot commit an empty expansion")

        inserted = []
        for sub in sub_panels:
            if sub.image_ref is None:
                state = ImageState.QUEUED
            elif sub.image_ref.is_terminal:
                state = sub.image_state if sub.image_state in (ImageState.ERROR, ImageState.QUOTA_ERROR) else ImageState.ERROR
            else:
                state = ImageState.READY
            inserted.append(Panel(
                description=sub.description,
                image_ref=sub.image_ref,
                image_state=state,
                scene_duration_seconds=DEFAULT_SCENE_DURATION,
            ))

        def splice(panels: List[Panel]) -> List[Panel]:
            position = next(i for i, p in enumerate(panels) if p.id == source.id)
            return panels[:position] + inserted + panels[position + 1:]

        self.update_panels(splice)
        self._clear_staging()
        logger.info(f"Committed expansion of panel {index} into {len(inserted)} panels")
        return inserted

    def discard_expansion(self) -> None:
        self._clear_staging()

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------

    def _begin_video(self, index: int, allow_existing: bool) -> Tuple[Panel, bytes, str]:
        """Check the eligibility gate and mark the panel generating."""
        panel = self._panel_at(index)
        if not panel.can_generate_video:
            raise VideoNotAllowedError(
                f"Panel {index} cannot generate a video: image must be ready and no video may be in progress",
                {"index": index, "image_state": panel.image_state.value, "video_state": panel.video_state.value},
            )
        if not allow_existing and panel.has_video:
            raise VideoNotAllowedError(
                f"Panel {index} already has a video; regenerate it instead", {"index": index}
            )
        try:
            data, mime_type = self.blobs.read(panel.image_ref)
        except MediaResolutionError as e:
            raise VideoNotAllowedError(f"Panel {index} image bytes are unavailable: {e.message}", {"index": index})

        self._apply(panel.id, lambda p: p.evolve(video_state=VideoState.GENERATING, video_error=None), "video")
        return panel, data, mime_type

    async def _run_video(self, panel: Panel, data: bytes, mime_type: str) -> None:
        config = self._config
        log = panel_logger(logger, panel.id)
        self.log(f"Generating {panel.scene_duration_seconds}s video for panel {panel.id}")
        try:
            ref = await self._call_with_timeout(
                self.gateway.generate_video(
                    panel.description,
                    data,
                    mime_type,
                    config.visual_style.value,
                    panel.scene_duration_seconds,
                    config.video_model,
                ),
                self.settings.video_timeout_seconds,
            )
        except Exception as e:
            cause = describe_error(e)
            log.error(f"Video generation failed: {cause}")
            self._apply(
                panel.id,
                lambda p: p.evolve(video_state=VideoState.ERROR, video_ref=None, video_error=cause),
                "video",
            )
            return

        applied = self._apply(
            panel.id,
            lambda p: p.evolve(video_state=VideoState.READY, video_ref=ref, video_error=None),
            "video",
        )
        if applied:
            log.info("Video ready")
        else:
            self._release_ref(ref)

    async def generate_video(self, index: int) -> None:
        """Render the panel's video. Rejected without side effects if ineligible."""
        panel, data, mime_type = self._begin_video(index, allow_existing=False)
        await self._run_video(panel, data, mime_type)

    async def regenerate_video(self, index: int) -> None:
        """Like generate_video, but replaces an existing video."""
        panel, data, mime_type = self._begin_video(index, allow_existing=True)
        await self._run_video(panel, data, mime_type)

    def start_video(self, index: int, regenerate: bool = False) -> asyncio.Task:
        """Validate now, run the video job in the background."""
        panel, data, mime_type = self._begin_video(index, allow_existing=regenerate)
        task = asyncio.get_running_loop().create_task(self._run_video(panel, data, mime_type))
        self._video_tasks.add(task)
        task.add_done_callback(self._video_tasks.discard)
        return task

    def _eligible_video_indices(self) -> List[int]:
        return [i for i, p in enumerate(self._panels) if p.eligible_for_batch_video]

    def start_all_videos(self) -> List[asyncio.Task]:
        """Background job per eligible panel; panels that fail the gate are skipped."""
        tasks = []
        for index in self._eligible_video_indices():
            try:
                tasks.append(self.start_video(index))
            except VideoNotAllowedError as e:
                logger.warning(f"Skipping panel {index}: {e.message}")
        return tasks

    async def generate_all_videos(self) -> int:
        """
        One concurrent video job per eligible panel (image ready with raw bytes
        and no video yet).

        Returns:
            Number of jobs started
        """
        jobs = []
        for index in self._eligible_video_indices():
            try:
                jobs.append(self._begin_video(index, allow_existing=False))
            except VideoNotAllowedError as e:
                logger.warning(f"Skipping panel {index}: {e.message}")
        if jobs:
            self.log(f"Generating {len(jobs)} videos")
            await asyncio.gather(*(self._run_video(*job) for job in jobs))
        return len(jobs)
