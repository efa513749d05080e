"""
Storyforge Data Model

Panels, generation configuration, application state snapshots and project
records, with their JSON dictionary forms.
"""

import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from .constants import (
    AppMode, Tone, AspectRatio, VisualStyle, Mood, VideoLength,
    ImageState, VideoState,
    DEFAULT_SCENE_COUNT, MIN_SCENE_COUNT, MAX_SCENE_COUNT,
    DEFAULT_SCENE_DURATION, MIN_SCENE_DURATION, MAX_SCENE_DURATION,
    DEFAULT_LANGUAGE, DEFAULT_TEXT_MODEL, DEFAULT_IMAGE_MODEL, DEFAULT_VIDEO_MODEL,
    PENDING_IMAGE_STATES, UNTITLED_PROJECT,
)
from .exceptions import InvalidConfigError
from .media import MediaRef, media_to_json, parse_media_ref


def new_panel_id() -> str:
    return uuid.uuid4().hex


def clamp_scene_duration(seconds: Any) -> int:
    """Coerce a scene duration into the supported [2, 10] second range."""
    try:
        value = int(round(float(seconds)))
    except (TypeError, ValueError):
        return DEFAULT_SCENE_DURATION
    return max(MIN_SCENE_DURATION, min(MAX_SCENE_DURATION, value))


@dataclass(frozen=True)
class Panel:
    """One storyboard beat. Panels are immutable; use evolve() to change one."""
    description: str
    image_ref: Optional[MediaRef] = None
    image_state: ImageState = ImageState.QUEUED
    video_ref: Optional[MediaRef] = None
    video_state: VideoState = VideoState.NONE
    video_error: Optional[str] = None
    scene_duration_seconds: int = DEFAULT_SCENE_DURATION
    id: str = field(default_factory=new_panel_id)

    def evolve(self, **changes) -> "Panel":
        return replace(self, **changes)

    @property
    def has_raw_image(self) -> bool:
        return (
            self.image_state == ImageState.READY
            and self.image_ref is not None
            and self.image_ref.is_raw_bytes
        )

    @property
    def can_generate_video(self) -> bool:
        """Image ready with raw bytes and no video job already running."""
        return self.has_raw_image and self.video_state != VideoState.GENERATING

    @property
    def eligible_for_batch_video(self) -> bool:
        """Eligible for 'generate all videos': no video reference yet."""
        return self.can_generate_video and self.video_ref is None

    @property
    def image_pending(self) -> bool:
        return self.image_state in PENDING_IMAGE_STATES

    @property
    def has_video(self) -> bool:
        return (
            self.video_state == VideoState.READY
            and self.video_ref is not None
            and not self.video_ref.is_terminal
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "image_ref": media_to_json(self.image_ref),
            "image_state": self.image_state.value,
            "video_ref": media_to_json(self.video_ref),
            "video_state": self.video_state.value,
            "video_error": self.video_error,
            "scene_duration_seconds": self.scene_duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Panel":
        return cls(
            id=data.get("id") or new_panel_id(),
            description=data.get("description", ""),
            image_ref=parse_media_ref(data.get("image_ref")),
            image_state=ImageState(data.get("image_state", ImageState.QUEUED.value)),
            video_ref=parse_media_ref(data.get("video_ref")),
            video_state=VideoState(data.get("video_state", VideoState.NONE.value)),
            video_error=data.get("video_error"),
            scene_duration_seconds=clamp_scene_duration(
                data.get("scene_duration_seconds", DEFAULT_SCENE_DURATION)
            ),
        )


@dataclass(frozen=True)
class GenerationConfig:
    """Options for one generation run. Read-only to the pipeline."""
    scene_count: int = DEFAULT_SCENE_COUNT
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    visual_style: VisualStyle = VisualStyle.CINEMATIC
    mood: Mood = Mood.FAST_PACED
    video_length: VideoLength = VideoLength.SHORT
    language: str = DEFAULT_LANGUAGE
    text_model: str = DEFAULT_TEXT_MODEL
    image_model: str = DEFAULT_IMAGE_MODEL
    video_model: str = DEFAULT_VIDEO_MODEL

    def __post_init__(self):
        if not MIN_SCENE_COUNT <= self.scene_count <= MAX_SCENE_COUNT:
            raise InvalidConfigError(
                f"scene_count must be between {MIN_SCENE_COUNT} and {MAX_SCENE_COUNT}",
                {"scene_count": self.scene_count}
            )

    def evolve(self, **changes) -> "GenerationConfig":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scene_count": self.scene_count,
            "aspect_ratio": self.aspect_ratio.value,
            "visual_style": self.visual_style.value,
            "mood": self.mood.value,
            "video_length": self.video_length.value,
            "language": self.language,
            "text_model": self.text_model,
            "image_model": self.image_model,
            "video_model": self.video_model,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationConfig":
        defaults = cls()
        try:
            return cls(
                scene_count=int(data.get("scene_count", defaults.scene_count)),
                aspect_ratio=AspectRatio(data.get("aspect_ratio", defaults.aspect_ratio.value)),
                visual_style=VisualStyle(data.get("visual_style", defaults.visual_style.value)),
                mood=Mood(data.get("mood", defaults.mood.value)),
                video_length=VideoLength(data.get("video_length", defaults.video_length.value)),
                language=data.get("language", defaults.language),
                text_model=data.get("text_model", defaults.text_model),
                image_model=data.get("image_model", defaults.image_model),
                video_model=data.get("video_model", defaults.video_model),
            )
        except ValueError as e:
            raise InvalidConfigError(f"Invalid generation config: {e}")


@dataclass
class ProductDetails:
    """Product form fields for the description flow."""
    product_name: str = ""
    key_features: str = ""
    target_audience: str = ""
    tone: Tone = Tone.PROFESSIONAL


@dataclass
class AppState:
    """Full snapshot of one editing session."""
    mode: AppMode = AppMode.DESCRIPTION
    product_name: str = ""
    key_features: str = ""
    target_audience: str = ""
    tone: Tone = Tone.PROFESSIONAL
    story_idea: str = ""
    generation_config: GenerationConfig = field(default_factory=GenerationConfig)
    description: str = ""
    storyboard_panels: List[Panel] = field(default_factory=list)

    @property
    def product(self) -> ProductDetails:
        return ProductDetails(
            product_name=self.product_name,
            key_features=self.key_features,
            target_audience=self.target_audience,
            tone=self.tone,
        )

    @property
    def title(self) -> str:
        title = self.product_name if self.mode == AppMode.DESCRIPTION else self.story_idea
        return title.strip() or UNTITLED_PROJECT

    def with_panels(self, panels: List[Panel]) -> "AppState":
        return replace(self, storyboard_panels=list(panels))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "product_name": self.product_name,
            "key_features": self.key_features,
            "target_audience": self.target_audience,
            "tone": self.tone.value,
            "story_idea": self.story_idea,
            "generation_config": self.generation_config.to_dict(),
            "description": self.description,
            "storyboard_panels": [p.to_dict() for p in self.storyboard_panels],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppState":
        return cls(
            mode=AppMode(data.get("mode", AppMode.DESCRIPTION.value)),
            product_name=data.get("product_name", ""),
            key_features=data.get("key_features", ""),
            target_audience=data.get("target_audience", ""),
            tone=Tone(data.get("tone", Tone.PROFESSIONAL.value)),
            story_idea=data.get("story_idea", ""),
            generation_config=GenerationConfig.from_dict(data.get("generation_config", {})),
            description=data.get("description", ""),
            storyboard_panels=[Panel.from_dict(p) for p in data.get("storyboard_panels", [])],
        )


@dataclass
class ProjectRecord:
    """A saved project: metadata plus the AppState snapshot."""
    id: str
    title: str
    timestamp: int
    app_state: AppState
    thumbnail_ref: Optional[MediaRef] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "timestamp": self.timestamp,
            "thumbnail_ref": media_to_json(self.thumbnail_ref),
            "app_state": self.app_state.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectRecord":
        app_state = data.get("app_state", data.get("appState", {}))
        return cls(
            id=str(data["id"]),
            title=data.get("title") or UNTITLED_PROJECT,
            timestamp=int(data.get("timestamp", 0)),
            thumbnail_ref=parse_media_ref(data.get("thumbnail_ref")),
            app_state=AppState.from_dict(app_state),
        )
