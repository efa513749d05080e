"""
Generation Gateway

The boundary to the generative models. Every operation is a stateless
coroutine that returns an artifact or raises a GenerationError.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import List, Optional

from storyforge.core.config import GatewayConfig
from storyforge.core.constants import (
    DEFAULT_TEXT_MODEL,
    EXPANSION_SHOT_COUNT,
    IMAGE_EDIT_MODEL,
)
from storyforge.core.exceptions import GenerationError, GenerationTimeoutError, ResponseFormatError
from storyforge.core.logging_config import get_logger
from storyforge.core.media import BlobRegistry, InlineMedia, MediaRef
from storyforge.core.retry import TEXT_RETRY_CONFIG
from storyforge.core.models import GenerationConfig, ProductDetails
from storyforge.llm.api_clients import GeminiClient

logger = get_logger("llm.gateway")


class GenerationGateway(ABC):
    """Async contract the pipeline and orchestrator depend on."""

    @abstractmethod
    async def generate_description(self, product: ProductDetails, text_model: str) -> str:
        ...

    @abstractmethod
    async def generate_storyboard_scenes(self, idea: str, config: GenerationConfig) -> List[str]:
        """Exactly config.scene_count scene descriptions, or raise."""

    @abstractmethod
    async def expand_scene(self, description: str, language: str, text_model: str) -> List[str]:
        ...

    @abstractmethod
    async def generate_image(
        self, description: str, style: str, aspect_ratio: str, image_model: str
    ) -> MediaRef:
        """Raw image bytes as a MediaRef."""

    @abstractmethod
    async def generate_video(
        self,
        description: str,
        image_bytes: bytes,
        mime_type: str,
        style: str,
        duration_seconds: int,
        video_model: str,
    ) -> MediaRef:
        """Playable video reference. Long-running; polls internally."""

    @abstractmethod
    async def translate_text(self, text: str, target_language: str, text_model: str = DEFAULT_TEXT_MODEL) -> str:
        ...

    @abstractmethod
    async def edit_image(self, prompt: str, image_bytes: bytes, mime_type: str) -> MediaRef:
        ...


# =============================================================================
# PROMPTS
# =============================================================================

def description_prompt(product: ProductDetails) -> str:
    return (
        "Generate a compelling product description in English.\n"
        f"Product Name: {product.product_name}\n"
        f"Key Features: {product.key_features}\n"
        f"Target Audience: {product.target_audience}\n"
        f"Tone of Voice: {product.tone.value.lower()}"
    )


def storyboard_prompt(idea: str, config: GenerationConfig) -> str:
    return (
        f'Create a storyboard for a short video based on this idea: "{idea}".\n'
        f"The video should have exactly {config.scene_count} scenes.\n"
        f"The mood should be {config.mood.value}.\n"
        f"The overall video length is approximately {config.video_length.value}.\n"
        "Provide a concise, one-sentence description for each scene, focusing on the visual elements.\n"
        f"The descriptions should be in {config.language}."
    )


def expansion_prompt(description: str, language: str) -> str:
    return (
        f'Expand this single scene into {EXPANSION_SHOT_COUNT} distinct shots: "{description}".\n'
        "Describe each shot with a focus on camera angle and action.\n"
        f"The descriptions should be in {language}."
    )


def image_prompt(description: str, style: str) -> str:
    return f"{description}, {style} style."


def video_prompt(description: str, duration_seconds: int) -> str:
    return f"{description}. A video clip, approximately {duration_seconds} seconds long."


def translation_prompt(text: str, target_language: str) -> str:
    return (
        f"Translate the following text into {target_language}. "
        "Return only the translation, preserving paragraph breaks.\n\n"
        f"{text}"
    )


def scenes_schema(scene_count: int) -> dict:
    return {
        "type": "OBJECT",
        "properties": {
            "scenes": {
                "type": "ARRAY",
                "description": f"An array of {scene_count} scene descriptions.",
                "items": {"type": "STRING"},
            }
        },
        "required": ["scenes"],
    }


SHOTS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "shots": {
            "type": "ARRAY",
            "description": f"An array of {EXPANSION_SHOT_COUNT} detailed shot descriptions.",
            "items": {
                "type": "OBJECT",
                "properties": {"description": {"type": "STRING"}},
                "required": ["description"],
            },
        }
    },
    "required": ["shots"],
}


# =============================================================================
# GEMINI
# =============================================================================

class GeminiGateway(GenerationGateway):
    """
    Gateway backed by the Gemini REST API.

    Usage:
        gateway = GeminiGateway(config.gateway, blobs)
        scenes = await gateway.generate_storyboard_scenes(idea, generation_config)
    """

    def __init__(
        self,
        config: GatewayConfig,
        blobs: BlobRegistry,
        client: Optional[GeminiClient] = None,
    ):
        self.config = config
        self.blobs = blobs
        # resolve_api_key raises MissingConfigError when no key is configured
        self.client = client or GeminiClient(
            api_key=config.resolve_api_key(),
            base_url=config.base_url,
            timeout=config.timeout,
            retry_config=replace(TEXT_RETRY_CONFIG, max_retries=config.max_retries),
        )

    async def generate_description(self, product: ProductDetails, text_model: str) -> str:
        logger.info(f"Generating description for '{product.product_name}'")
        text = await self.client.generate_text(
            description_prompt(product), text_model, operation="generate_description"
        )
        return text.strip()

    async def generate_storyboard_scenes(self, idea: str, config: GenerationConfig) -> List[str]:
        operation = "generate_storyboard"
        result = await self.client.generate_json(
            storyboard_prompt(idea, config),
            config.text_model,
            scenes_schema(config.scene_count),
            operation=operation,
        )
        scenes = [str(s).strip() for s in result.get("scenes", []) if str(s).strip()]
        if len(scenes) != config.scene_count:
            raise ResponseFormatError(
                operation, f"Expected {config.scene_count} scenes, got {len(scenes)}"
            )
        logger.info(f"Storyboard scenes generated: {len(scenes)}")
        return scenes

    async def expand_scene(self, description: str, language: str, text_model: str) -> List[str]:
        operation = "expand_scene"
        result = await self.client.generate_json(
            expansion_prompt(description, language), text_model, SHOTS_SCHEMA, operation=operation
        )
        shots = []
        for shot in result.get("shots", []):
            text = shot.get("description", "") if isinstance(shot, dict) else str(shot)
            if text.strip():
                shots.append(text.strip())
        if not shots:
            raise ResponseFormatError(operation, "Model returned no shots")
        return shots

    async def generate_image(
        self, description: str, style: str, aspect_ratio: str, image_model: str
    ) -> MediaRef:
        images = await self.client.predict_images(
            image_prompt(description, style), image_model, aspect_ratio
        )
        data, mime_type = images[0]
        return InlineMedia(data=data, mime_type=mime_type)

    async def generate_video(
        self,
        description: str,
        image_bytes: bytes,
        mime_type: str,
        style: str,
        duration_seconds: int,
        video_model: str,
    ) -> MediaRef:
        operation = "generate_video"
        prompt = video_prompt(description, duration_seconds)
        job = await self.client.start_video_job(prompt, image_bytes, mime_type, video_model)
        name = job.get("name")
        logger.info(f"Video job started: {name}")

        started = time.monotonic()
        while not job.get("done"):
            if not name:
                raise ResponseFormatError(operation, "Video job has no operation name")
            if self.config.video_max_wait is not None and time.monotonic() - started > self.config.video_max_wait:
                raise GenerationTimeoutError(
                    operation, f"Video job did not finish within {self.config.video_max_wait}s"
                )
            await asyncio.sleep(self.config.video_poll_interval)
            job = await self.client.get_operation(name)

        if job.get("error"):
            raise GenerationError(operation, job["error"].get("message", "Video job failed"))

        samples = (
            job.get("response", {})
            .get("generateVideoResponse", {})
            .get("generatedSamples", [])
        )
        uri = samples[0].get("video", {}).get("uri") if samples else None
        if not uri:
            raise GenerationError(operation, "Video generation failed to produce a download link")

        data, video_mime = await self.client.download(uri)
        logger.info(f"Video downloaded: {len(data)} bytes")
        return self.blobs.create(data, video_mime)

    async def translate_text(self, text: str, target_language: str, text_model: str = DEFAULT_TEXT_MODEL) -> str:
        translated = await self.client.generate_text(
            translation_prompt(text, target_language), text_model, operation="translate_text"
        )
        return translated.strip()

    async def edit_image(self, prompt: str, image_bytes: bytes, mime_type: str) -> MediaRef:
        data, out_mime, commentary = await self.client.edit_image(
            prompt, image_bytes, mime_type, IMAGE_EDIT_MODEL
        )
        if commentary:
            logger.debug(f"Image edit commentary: {commentary}")
        return InlineMedia(data=data, mime_type=out_mime)
