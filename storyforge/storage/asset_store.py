"""
Asset Store

Durable key/value storage for binary media. Project records only ever hold
asset keys; the bytes live here.
"""

import json
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import quote, unquote

from storyforge.core.exceptions import AssetStoreError
from storyforge.core.logging_config import get_logger

logger = get_logger("storage.assets")


@dataclass
class StoredAsset:
    """Bytes plus the mime type they were stored with."""
    key: str
    data: bytes
    mime_type: str = "application/octet-stream"


class AssetStore(ABC):
    """Abstract asset store."""

    @abstractmethod
    def put(self, key: str, data: bytes, mime_type: str) -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> Optional[StoredAsset]:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove an asset. Missing keys are ignored."""

    @abstractmethod
    def keys(self) -> List[str]:
        ...

    def exists(self, key: str) -> bool:
        return self.get(key) is not None


class MemoryAssetStore(AssetStore):
    """In-process asset store, used for tests and headless runs."""

    def __init__(self):
        self._assets: Dict[str, StoredAsset] = {}
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes, mime_type: str) -> None:
        with self._lock:
            self._assets[key] = StoredAsset(key=key, data=bytes(data), mime_type=mime_type)

    def get(self, key: str) -> Optional[StoredAsset]:
        with self._lock:
            return self._assets.get(key)

    def delete(self, key: str) -> None:
        with self._lock:
            self._assets.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._assets)

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._assets


class FileAssetStore(AssetStore):
    """
    Directory-backed asset store.

    Each asset is written as `<key>.bin` with a `<key>.json` sidecar holding
    the mime type. Keys are percent-encoded into file names.
    """

    DATA_SUFFIX = ".bin"
    META_SUFFIX = ".json"

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _stem(self, key: str) -> str:
        if not key:
            raise AssetStoreError("Asset key must not be empty")
        return quote(key, safe="-_.")

    def _data_path(self, key: str) -> Path:
        return self.root / (self._stem(key) + self.DATA_SUFFIX)

    def _meta_path(self, key: str) -> Path:
        return self.root / (self._stem(key) + self.META_SUFFIX)

    def put(self, key: str, data: bytes, mime_type: str) -> None:
        data_path = self._data_path(key)
        meta = {
            "key": key,
            "mime_type": mime_type,
            "size": len(data),
            "stored_at": datetime.now().isoformat(),
        }
        try:
            tmp_path = data_path.with_suffix(".tmp")
            tmp_path.write_bytes(data)
            tmp_path.replace(data_path)
            self._meta_path(key).write_text(json.dumps(meta, indent=2), encoding="utf-8")
        except OSError as e:
            raise AssetStoreError(f"Failed to write asset '{key}': {e}", {"key": key})
        logger.debug(f"Stored asset {key} ({len(data)} bytes, {mime_type})")

    def get(self, key: str) -> Optional[StoredAsset]:
        data_path = self._data_path(key)
        if not data_path.exists():
            return None

        mime_type = "application/octet-stream"
        meta_path = self._meta_path(key)
        if meta_path.exists():
            try:
                mime_type = json.loads(meta_path.read_text(encoding="utf-8")).get("mime_type", mime_type)
            except json.JSONDecodeError as e:
                logger.warning(f"Corrupt sidecar for asset {key}: {e}")

        try:
            return StoredAsset(key=key, data=data_path.read_bytes(), mime_type=mime_type)
        except OSError as e:
            raise AssetStoreError(f"Failed to read asset '{key}': {e}", {"key": key})

    def delete(self, key: str) -> None:
        for path in (self._data_path(key), self._meta_path(key)):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise AssetStoreError(f"Failed to delete asset '{key}': {e}", {"key": key})

    def keys(self) -> List[str]:
        return sorted(unquote(p.stem) for p in self.root.glob(f"*{self.DATA_SUFFIX}"))

    def exists(self, key: str) -> bool:
        return self._data_path(key).exists()
