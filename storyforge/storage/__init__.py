"""
Storyforge Storage Module

Asset store, project store and the project repository that ties them together.
"""

from .asset_store import AssetStore, StoredAsset, FileAssetStore, MemoryAssetStore
from .project_store import ProjectStore, FileProjectStore, MemoryProjectStore
from .persistence import ProjectRepository

__all__ = [
    'AssetStore',
    'StoredAsset',
    'FileAssetStore',
    'MemoryAssetStore',
    'ProjectStore',
    'FileProjectStore',
    'MemoryProjectStore',
    'ProjectRepository',
]
