"""
Tests for Configuration Module

Tests for storyforge/core/config.py and storyforge/core/startup.py
"""

import json
from pathlib import Path

import pytest

from storyforge.core.config import (
    GatewayConfig,
    PipelineSettings,
    StoryforgeConfig,
    load_config,
    save_config,
)
from storyforge.core.constants import AspectRatio
from storyforge.core.exceptions import InvalidConfigError, MissingConfigError
from storyforge.core.startup import validate_environment

KEY_NAMES = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")


@pytest.fixture
def no_api_keys(monkeypatch):
    for name in KEY_NAMES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def sample_config():
    return {
        "project_name": "Storyforge",
        "paths": {"data_dir": "studio-data", "logs_dir": "studio-logs"},
        "gateway": {"timeout": 30, "video_poll_interval": 2, "max_retries": 1},
        "pipeline": {"image_timeout_seconds": 90},
        "defaults": {"scene_count": 6, "aspect_ratio": "9:16"},
    }


class TestStoryforgeConfig:
    """Tests for StoryforgeConfig class."""

    def test_default_config(self):
        config = StoryforgeConfig()

        assert config.project_name == "Storyforge"
        assert config.projects_dir == Path("data") / "projects"
        assert config.assets_dir == Path("data") / "assets"
        assert config.defaults.scene_count == 4

    def test_config_from_dict(self, sample_config):
        config = StoryforgeConfig.from_dict(sample_config)

        assert config.data_dir == Path("studio-data")
        assert config.gateway.timeout == 30.0
        assert config.gateway.max_retries == 1
        assert config.pipeline.image_timeout_seconds == 90
        assert config.pipeline.video_timeout_seconds is None
        assert config.defaults.scene_count == 6
        assert config.defaults.aspect_ratio == AspectRatio.PORTRAIT

    def test_invalid_scene_count(self, sample_config):
        sample_config["defaults"]["scene_count"] = 11

        with pytest.raises(InvalidConfigError):
            StoryforgeConfig.from_dict(sample_config)


class TestLoadSaveConfig:
    """Tests for config loading and saving."""

    def test_save_then_load(self, temp_dir, sample_config):
        config = StoryforgeConfig.from_dict(sample_config)
        path = save_config(config, temp_dir / "nested" / "config.json")

        loaded = load_config(path)

        assert loaded.to_dict() == config.to_dict()

    def test_missing_file_gives_defaults(self, temp_dir):
        config = load_config(temp_dir / "absent.json")

        assert config.to_dict() == StoryforgeConfig().to_dict()

    def test_invalid_json(self, temp_dir):
        path = temp_dir / "bad.json"
        path.write_text("{ not json")

        with pytest.raises(InvalidConfigError):
            load_config(path)

    def test_api_key_never_written(self, temp_dir):
        config = StoryforgeConfig(gateway=GatewayConfig(api_key="secret"))
        path = save_config(config, temp_dir / "config.json")

        assert "secret" not in path.read_text()
        assert "api_key" not in json.loads(path.read_text())["gateway"]


class TestApiKeyResolution:
    """Tests for GatewayConfig.resolve_api_key."""

    def test_explicit_key_wins(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "from-env")

        assert GatewayConfig(api_key="explicit").resolve_api_key() == "explicit"

    def test_primary_env_var(self, monkeypatch, no_api_keys):
        monkeypatch.setenv("GEMINI_API_KEY", " from-env ")

        assert GatewayConfig().resolve_api_key() == "from-env"

    def test_fallback_env_var(self, monkeypatch, no_api_keys):
        monkeypatch.setenv("GOOGLE_API_KEY", "google-key")

        assert GatewayConfig().resolve_api_key() == "google-key"

    def test_missing_key_fails_fast(self, no_api_keys):
        with pytest.raises(MissingConfigError):
            GatewayConfig().resolve_api_key()


class TestValidateEnvironment:
    """Tests for startup validation."""

    def test_valid_environment(self, monkeypatch, no_api_keys):
        monkeypatch.setenv("GEMINI_API_KEY", "key")

        result = validate_environment(StoryforgeConfig())

        assert result.valid
        assert result.errors == []

    def test_missing_key(self, no_api_keys):
        result = validate_environment(StoryforgeConfig())

        assert not result.valid
        assert "GEMINI_API_KEY" in result.errors[0]

    def test_fallback_key_warns(self, monkeypatch, no_api_keys):
        monkeypatch.setenv("API_KEY", "key")

        result = validate_environment(StoryforgeConfig())

        assert result.valid
        assert any("API_KEY" in warning for warning in result.warnings)

    def test_bad_timeouts(self, monkeypatch, no_api_keys):
        monkeypatch.setenv("GEMINI_API_KEY", "key")
        config = StoryforgeConfig(pipeline=PipelineSettings(video_timeout_seconds=0))
        config.gateway.video_poll_interval = -1

        result = validate_environment(config)

        assert not result.valid
        assert len(result.errors) == 2
