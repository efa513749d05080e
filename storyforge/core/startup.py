"""
Startup validation and environment checks.

Validates required API keys and configuration at application startup.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from .config import StoryforgeConfig
from .env_loader import GEMINI_KEY_NAMES, ensure_env_loaded


@dataclass
class ValidationResult:
    """Result of environment validation."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def validate_environment(config: Optional[StoryforgeConfig] = None) -> ValidationResult:
    """
    Validate the environment configuration.

    Checks:
    - A Gemini API key is available (explicit config or environment)
    - The data directory is writable (warning otherwise)
    - Pipeline timeouts are sane

    Returns:
        ValidationResult with validation status and any errors/warnings
    """
    ensure_env_loaded()
    errors = []
    warnings = []

    key_names = list(GEMINI_KEY_NAMES)
    if config and config.gateway.api_key_env not in key_names:
        key_names.insert(0, config.gateway.api_key_env)

    explicit_key = config.gateway.api_key if config else None
    found = [name for name in key_names if (os.environ.get(name) or "").strip()]
    if not explicit_key and not found:
        errors.append(
            "No Gemini API key found. Set at least one of: " + ", ".join(key_names)
        )
    elif found and found[0] != key_names[0]:
        warnings.append(f"{key_names[0]} not set - using {found[0]} instead")

    if config is not None:
        data_dir = config.data_dir
        if data_dir.exists() and not os.access(data_dir, os.W_OK):
            warnings.append(f"Data directory is not writable: {data_dir}")

        for name in ("image_timeout_seconds", "video_timeout_seconds"):
            value = getattr(config.pipeline, name)
            if value is not None and value <= 0:
                errors.append(f"pipeline.{name} must be positive (got {value})")

        if config.gateway.video_poll_interval <= 0:
            errors.append("gateway.video_poll_interval must be positive")

    return ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings
    )
