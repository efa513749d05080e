"""
Centralized environment variable loading for Storyforge.

This module ensures .env is loaded once and consistently across the entire application.
Import this module early in the application startup to ensure env vars are available.

Usage:
    from storyforge.core.env_loader import ensure_env_loaded
    ensure_env_loaded()
"""

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

_env_loaded = False

GEMINI_KEY_NAMES = ["GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY"]


def get_project_root() -> Path:
    """Get the project root directory (where .env is located)."""
    # storyforge/core/env_loader.py -> two levels up
    return Path(__file__).parent.parent.parent


def ensure_env_loaded(env_path: Optional[Path] = None) -> bool:
    """
    Ensure environment variables from .env are loaded.

    Args:
        env_path: Explicit .env location. Defaults to the project root.

    Returns:
        True if .env was loaded, False if already loaded or file not found
    """
    global _env_loaded

    if _env_loaded:
        return False

    env_path = Path(env_path) if env_path else get_project_root() / ".env"

    if not env_path.exists():
        return False

    # override=True so .env wins over empty system vars
    load_dotenv(env_path, override=True)
    _env_loaded = True
    return True


def get_api_key(key_name: str, fallback_keys: Optional[List[str]] = None) -> Optional[str]:
    """
    Get an API key from environment, with fallback options.

    Args:
        key_name: Primary environment variable name
        fallback_keys: List of fallback variable names to try

    Returns:
        API key value or None if not found
    """
    ensure_env_loaded()

    for name in [key_name] + list(fallback_keys or []):
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()

    return None

