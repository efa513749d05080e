"""
Storyforge Constants

Global constants and option enums used throughout Storyforge.
"""

from enum import Enum

# =============================================================================
# VERSION INFO
# =============================================================================
VERSION = "1.0.0"
PROJECT_NAME = "Storyforge"

# =============================================================================
# APPLICATION MODES & FORM OPTIONS
# =============================================================================

class AppMode(Enum):
    """Which input flow produced the storyboard."""
    DESCRIPTION = "DESCRIPTION"
    STORYBOARD = "STORYBOARD"


class Tone(Enum):
    """Tone of voice for product descriptions."""
    PROFESSIONAL = "PROFESSIONAL"
    FRIENDLY = "FRIENDLY"
    HUMOROUS = "HUMOROUS"
    LUXURIOUS = "LUXURIOUS"


class AspectRatio(Enum):
    """Supported panel aspect ratios."""
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"
    SQUARE = "1:1"
    CLASSIC = "4:3"


class VideoLength(Enum):
    """Approximate total video length classes."""
    SHORT = "15 seconds"
    MEDIUM = "30 seconds"
    LONG = "60 seconds"


class VisualStyle(Enum):
    """Visual style options for storyboard generation."""
    PHOTOREALISTIC = "Photorealistic"
    CINEMATIC = "Cinematic"
    ANIME = "Anime"
    WATERCOLOR = "Watercolor"
    CLAYMATION = "Claymation"
    PIXEL_ART = "Pixel Art"


class Mood(Enum):
    """Storyboard mood options."""
    FAST_PACED = "Fast-paced & Energetic"
    EMOTIONAL = "Slow & Emotional"
    MYSTERIOUS = "Mysterious & Suspenseful"
    COMEDIC = "Comedic & Lighthearted"
    EPIC = "Epic & Grandiose"


DEFAULT_LANGUAGE = "English"

# =============================================================================
# PANEL LIFECYCLE
# =============================================================================

class ImageState(Enum):
    """Image axis of a panel's lifecycle."""
    QUEUED = "queued"
    GENERATING = "generating"
    READY = "ready"
    ERROR = "error"
    QUOTA_ERROR = "quota_error"


class VideoState(Enum):
    """Video axis of a panel's lifecycle."""
    NONE = "none"
    GENERATING = "generating"
    READY = "ready"
    ERROR = "error"


PENDING_IMAGE_STATES = (ImageState.QUEUED, ImageState.GENERATING)

# =============================================================================
# SCENE LIMITS
# =============================================================================

MIN_SCENE_COUNT = 2
MAX_SCENE_COUNT = 10
DEFAULT_SCENE_COUNT = 4

MIN_SCENE_DURATION = 2
MAX_SCENE_DURATION = 10
DEFAULT_SCENE_DURATION = 4

EXPANSION_SHOT_COUNT = 3

# =============================================================================
# MODELS
# =============================================================================

DEFAULT_TEXT_MODEL = "gemini-2.5-flash"
DEFAULT_IMAGE_MODEL = "imagen-4.0-generate-001"
DEFAULT_VIDEO_MODEL = "veo-2.0-generate-001"
IMAGE_EDIT_MODEL = "gemini-2.5-flash-image-preview"

# =============================================================================
# PERSISTENCE
# =============================================================================

UNTITLED_PROJECT = "Untitled Project"
IMAGE_ASSET_MARKER = "-img-"
VIDEO_ASSET_MARKER = "-vid-"

VIDEO_POLL_INTERVAL_SECONDS = 10.0
