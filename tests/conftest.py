"""
Pytest Configuration and Fixtures

Shared fixtures for all tests: an in-process generation gateway, memory
stores, and the pipeline / repository / orchestrator built on top of them.
"""

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from storyforge.core.constants import ImageState
from storyforge.core.exceptions import GenerationError
from storyforge.core.media import BlobRegistry, InlineMedia, MediaRef
from storyforge.core.models import GenerationConfig, Panel, ProductDetails
from storyforge.llm.gateway import GenerationGateway
from storyforge.orchestrator import StudioOrchestrator
from storyforge.pipelines.panel_pipeline import PanelPipeline
from storyforge.storage.asset_store import MemoryAssetStore
from storyforge.storage.persistence import ProjectRepository
from storyforge.storage.project_store import MemoryProjectStore


class FakeGateway(GenerationGateway):
    """
    Deterministic gateway that records every call.

    Images are PNG-tagged bytes derived from the description, videos are
    registered in the blob registry. Failures and gates are keyed by
    description so tests can target individual panels.
    """

    def __init__(self, blobs: BlobRegistry):
        self.blobs = blobs
        self.calls: List[tuple] = []

        self.description = "A sleek bottle that keeps drinks cold for 24 hours."
        self.scenes: Optional[List[str]] = None
        self.shots = ["Wide shot", "Close-up", "Over the shoulder"]

        self.image_errors: Dict[str, Exception] = {}
        self.image_gates: Dict[str, asyncio.Event] = {}
        self.video_errors: Dict[str, Exception] = {}
        self.video_gates: Dict[str, asyncio.Event] = {}
        self.text_error: Optional[Exception] = None

        self.active_images = 0
        self.max_active_images = 0

    async def generate_description(self, product: ProductDetails, text_model: str) -> str:
        self.calls.append(("description", product.product_name))
        if self.text_error:
            raise self.text_error
        return self.description

    async def generate_storyboard_scenes(self, idea: str, config: GenerationConfig) -> List[str]:
        self.calls.append(("scenes", idea))
        if self.text_error:
            raise self.text_error
        if self.scenes is not None:
            return list(self.scenes)
        return [f"Scene {i + 1}" for i in range(config.scene_count)]

    async def expand_scene(self, description: str, language: str, text_model: str) -> List[str]:
        self.calls.append(("expand", description))
        return [f"{description}: {shot}" for shot in self.shots]

    async def generate_image(self, description: str, style: str, aspect_ratio: str, image_model: str) -> MediaRef:
        self.calls.append(("image", description))
        self.active_images += 1
        self.max_active_images = max(self.max_active_images, self.active_images)
        try:
            gate = self.image_gates.get(description)
            if gate is not None:
                await gate.wait()
            if description in self.image_errors:
                raise self.image_errors[description]
            return InlineMedia(data=f"png:{description}".encode(), mime_type="image/png")
        finally:
            self.active_images -= 1

    async def generate_video(
        self,
        description: str,
        image_bytes: bytes,
        mime_type: str,
        style: str,
        duration_seconds: int,
        video_model: str,
    ) -> MediaRef:
        self.calls.append(("video", description, duration_seconds))
        gate = self.video_gates.get(description)
        if gate is not None:
            await gate.wait()
        if description in self.video_errors:
            raise self.video_errors[description]
        return self.blobs.create(b"mp4:" + image_bytes, "video/mp4")

    async def translate_text(self, text: str, target_language: str, text_model: str = "") -> str:
        self.calls.append(("translate", target_language))
        return f"[{target_language}] {text}"

    async def edit_image(self, prompt: str, image_bytes: bytes, mime_type: str) -> MediaRef:
        self.calls.append(("edit", prompt))
        return InlineMedia(data=image_bytes + f"|{prompt}".encode(), mime_type=mime_type)

    def calls_of(self, kind: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == kind]


def make_ready_panel(description: str, **changes) -> Panel:
    panel = Panel(
        description=description,
        image_ref=InlineMedia(data=f"png:{description}".encode(), mime_type="image/png"),
        image_state=ImageState.READY,
    )
    return panel.evolve(**changes) if changes else panel


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def blobs() -> BlobRegistry:
    return BlobRegistry()


@pytest.fixture
def gateway(blobs) -> FakeGateway:
    return FakeGateway(blobs)


@pytest.fixture
def ready_panel():
    """Factory for panels whose image is already rendered."""
    return make_ready_panel


@pytest.fixture
def pipeline(gateway, blobs) -> PanelPipeline:
    return PanelPipeline(gateway, blobs)


@pytest.fixture
def repository(blobs) -> ProjectRepository:
    return ProjectRepository(MemoryProjectStore(), MemoryAssetStore(), blobs)


@pytest.fixture
def orchestrator(gateway, repository, blobs) -> StudioOrchestrator:
    return StudioOrchestrator(gateway, repository, blobs)


@pytest.fixture
def quota_error() -> GenerationError:
    return GenerationError("generate_image", "RESOURCE_EXHAUSTED: quota exceeded", 429)
