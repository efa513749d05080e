"""
Storyforge - AI Storyboard and Video Studio

Turns a product idea or a story idea into a multi-panel storyboard with
generated images, optional per-panel video clips, and saved projects that can
be reloaded, exported and imported.

Version: 1.0.0
"""

__version__ = "1.0.0"
__project__ = "Storyforge"

from pathlib import Path

# Load environment variables early - before any other imports that might need them
from storyforge.core.env_loader import ensure_env_loaded
ensure_env_loaded()

# Package root directory
PACKAGE_ROOT = Path(__file__).parent
PROJECT_ROOT = PACKAGE_ROOT.parent

__all__ = [
    "__version__",
    "__project__",
    "PACKAGE_ROOT",
    "PROJECT_ROOT",
]
