"""
Storyforge Configuration Management

Centralized configuration system with JSON loading and validation.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .constants import PROJECT_NAME, VERSION, VIDEO_POLL_INTERVAL_SECONDS
from .exceptions import ConfigurationError, MissingConfigError, InvalidConfigError
from .env_loader import get_api_key
from .models import GenerationConfig

DEFAULT_CONFIG_PATH = Path("config/storyforge_config.json")

API_KEY_FALLBACKS = ["GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY"]


@dataclass
class GatewayConfig:
    """Connection settings for the generation gateway."""
    api_key_env: str = "GEMINI_API_KEY"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout: float = 120.0
    video_poll_interval: float = VIDEO_POLL_INTERVAL_SECONDS
    video_max_wait: Optional[float] = 600.0
    max_retries: int = 3
    api_key: Optional[str] = None  # Explicit key, takes precedence over the environment

    def resolve_api_key(self) -> str:
        """Return the API key or fail fast when none is configured."""
        if self.api_key:
            return self.api_key
        value = get_api_key(self.api_key_env, API_KEY_FALLBACKS)
        if value:
            return value
        raise MissingConfigError(
            f"No API key configured. Set {self.api_key_env} in the environment or .env file",
            {"api_key_env": self.api_key_env}
        )

    @classmethod
    def from_dict(cls, data: dict) -> 'GatewayConfig':
        return cls(
            api_key_env=data.get('api_key_env', 'GEMINI_API_KEY'),
            base_url=data.get('base_url', cls.base_url),
            timeout=float(data.get('timeout', 120.0)),
            video_poll_interval=float(data.get('video_poll_interval', VIDEO_POLL_INTERVAL_SECONDS)),
            video_max_wait=data.get('video_max_wait', 600.0),
            max_retries=int(data.get('max_retries', 3)),
        )


@dataclass
class PipelineSettings:
    """Panel pipeline settings."""
    image_timeout_seconds: Optional[float] = None
    video_timeout_seconds: Optional[float] = None


@dataclass
class StoryforgeConfig:
    """Main configuration class for Storyforge."""

    project_name: str = PROJECT_NAME
    version: str = VERSION

    # Paths
    data_dir: Path = field(default_factory=lambda: Path("data"))
    logs_dir: Path = field(default_factory=lambda: Path("logs"))

    # Sub-configurations
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    defaults: GenerationConfig = field(default_factory=GenerationConfig)

    verbose_logging: bool = False

    @property
    def projects_dir(self) -> Path:
        return self.data_dir / "projects"

    @property
    def assets_dir(self) -> Path:
        return self.data_dir / "assets"

    @classmethod
    def from_dict(cls, data: dict) -> 'StoryforgeConfig':
        """Create StoryforgeConfig from dictionary."""
        config = cls()

        config.project_name = data.get('project_name', config.project_name)
        config.version = data.get('version', config.version)
        config.verbose_logging = data.get('verbose_logging', config.verbose_logging)

        if 'paths' in data:
            paths = data['paths']
            config.data_dir = Path(paths.get('data_dir', 'data'))
            config.logs_dir = Path(paths.get('logs_dir', 'logs'))

        if 'gateway' in data:
            config.gateway = GatewayConfig.from_dict(data['gateway'])

        if 'pipeline' in data:
            pipe_data = data['pipeline']
            config.pipeline = PipelineSettings(
                image_timeout_seconds=pipe_data.get('image_timeout_seconds'),
                video_timeout_seconds=pipe_data.get('video_timeout_seconds'),
            )

        if 'defaults' in data:
            config.defaults = GenerationConfig.from_dict(data['defaults'])

        return config

    def to_dict(self) -> Dict[str, Any]:
        return {
            'project_name': self.project_name,
            'version': self.version,
            'verbose_logging': self.verbose_logging,
            'paths': {
                'data_dir': str(self.data_dir),
                'logs_dir': str(self.logs_dir),
            },
            'gateway': {
                'api_key_env': self.gateway.api_key_env,
                'base_url': self.gateway.base_url,
                'timeout': self.gateway.timeout,
                'video_poll_interval': self.gateway.video_poll_interval,
                'video_max_wait': self.gateway.video_max_wait,
                'max_retries': self.gateway.max_retries,
            },
            'pipeline': {
                'image_timeout_seconds': self.pipeline.image_timeout_seconds,
                'video_timeout_seconds': self.pipeline.video_timeout_seconds,
            },
            'defaults': self.defaults.to_dict(),
        }


def load_config(config_path: Path = None) -> StoryforgeConfig:
    """
    Load configuration from JSON file.

    Args:
        config_path: Path to configuration file. If None, uses default.

    Returns:
        Loaded StoryforgeConfig instance
    """
    config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        return StoryforgeConfig()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return StoryforgeConfig.from_dict(data)
    except json.JSONDecodeError as e:
        raise InvalidConfigError(f"Invalid JSON in config file: {e}")
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(f"Failed to load config: {e}")


def save_config(config: StoryforgeConfig, config_path: Path = None) -> Path:
    """Write configuration to a JSON file."""
    config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w', encoding='utf-8') as f:
        json.dump(config.to_dict(), f, indent=2)
    return config_path


_config: Optional[StoryforgeConfig] = None


def get_config() -> StoryforgeConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: StoryforgeConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
