"""
Storyforge Core Module

Contains core systems including configuration, constants, exceptions, media
references, the data model and logging.
"""

from .config import StoryforgeConfig, GatewayConfig, PipelineSettings, load_config, get_config, set_config
from .constants import *
from .exceptions import *
from .logging_config import setup_logging, get_logger
from .media import (
    MediaRef,
    InlineMedia,
    BlobHandle,
    AssetKey,
    RemoteMedia,
    TerminalMedia,
    TerminalKind,
    MEDIA_ERROR,
    MEDIA_QUOTA_ERROR,
    BlobRegistry,
    parse_media_ref,
)
from .models import Panel, GenerationConfig, ProductDetails, AppState, ProjectRecord

__all__ = [
    'StoryforgeConfig',
    'GatewayConfig',
    'PipelineSettings',
    'load_config',
    'get_config',
    'set_config',
    'setup_logging',
    'get_logger',
    # Media
    'MediaRef',
    'InlineMedia',
    'BlobHandle',
    'AssetKey',
    'RemoteMedia',
    'TerminalMedia',
    'TerminalKind',
    'MEDIA_ERROR',
    'MEDIA_QUOTA_ERROR',
    'BlobRegistry',
    'parse_media_ref',
    # Models
    'Panel',
    'GenerationConfig',
    'ProductDetails',
    'AppState',
    'ProjectRecord',
]
