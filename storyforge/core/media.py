"""
Media References

Tagged references to image and video content. A panel never holds a bare
string for its media; it holds one of:

- InlineMedia: the bytes themselves (serialized as a data: URI)
- BlobHandle: an ephemeral handle into the process-wide BlobRegistry
- AssetKey: a durable key into the asset store
- RemoteMedia: a remote URL (displayable, but not raw bytes)
- TerminalMedia: the error / quota_error sentinel

The string forms only exist at the JSON boundary (see to_json/parse_media_ref).
"""

import base64
import re
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from .constants import IMAGE_ASSET_MARKER, VIDEO_ASSET_MARKER
from .exceptions import MediaResolutionError

BLOB_SCHEME = "blob:storyforge/"
ASSET_KEY_PATTERN = re.compile(r"^(?!.*://)(?P<project>.+)-(?P<kind>img|vid)-(?P<index>\d+)$")
DATA_URI_PATTERN = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[^,;]*)*?;base64,(?P<data>.*)$", re.DOTALL)


class TerminalKind(Enum):
    """Terminal media sentinels."""
    ERROR = "error"
    QUOTA_ERROR = "quota_error"


class MediaRef:
    """Base class for media references."""

    @property
    def is_terminal(self) -> bool:
        return False

    @property
    def is_raw_bytes(self) -> bool:
        return False

    @property
    def is_durable(self) -> bool:
        return False

    def to_json(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class InlineMedia(MediaRef):
    data: bytes
    mime_type: str = "image/png"

    @property
    def is_raw_bytes(self) -> bool:
        return True

    def to_json(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"

    def __repr__(self) -> str:
        return f"InlineMedia(mime_type={self.mime_type!r}, size={len(self.data)})"


@dataclass(frozen=True)
class BlobHandle(MediaRef):
    handle: str
    mime_type: str = "application/octet-stream"

    @property
    def is_raw_bytes(self) -> bool:
        return True

    def to_json(self) -> str:
        return f"{BLOB_SCHEME}{self.handle}"


@dataclass(frozen=True)
class AssetKey(MediaRef):
    key: str

    @property
    def is_durable(self) -> bool:
        return True

    def to_json(self) -> str:
        return self.key


@dataclass(frozen=True)
class RemoteMedia(MediaRef):
    url: str

    def to_json(self) -> str:
        return self.url


@dataclass(frozen=True)
class TerminalMedia(MediaRef):
    kind: TerminalKind = TerminalKind.ERROR

    @property
    def is_terminal(self) -> bool:
        return True

    def to_json(self) -> str:
        return self.kind.value


MEDIA_ERROR = TerminalMedia(TerminalKind.ERROR)
MEDIA_QUOTA_ERROR = TerminalMedia(TerminalKind.QUOTA_ERROR)


def image_asset_key(project_id: str, index: int) -> AssetKey:
    return AssetKey(f"{project_id}{IMAGE_ASSET_MARKER}{index}")


def video_asset_key(project_id: str, index: int) -> AssetKey:
    return AssetKey(f"{project_id}{VIDEO_ASSET_MARKER}{index}")


def is_asset_key(value: str) -> bool:
    """Check if a string matches the durable asset-key pattern."""
    return bool(value) and ASSET_KEY_PATTERN.match(value) is not None


def parse_media_ref(value: Optional[str]) -> Optional[MediaRef]:
    """
    Parse the JSON string form of a media reference.

    Empty values map to None. Unrecognised strings are treated as remote URLs.
    """
    if not value:
        return None
    if value in (TerminalKind.ERROR.value, TerminalKind.QUOTA_ERROR.value):
        return TerminalMedia(TerminalKind(value))
    if value.startswith("data:"):
        match = DATA_URI_PATTERN.match(value)
        if not match:
            raise ValueError("Malformed data URI media reference")
        data = base64.b64decode(match.group("data"))
        return InlineMedia(data=data, mime_type=match.group("mime") or "application/octet-stream")
    if value.startswith(BLOB_SCHEME):
        return BlobHandle(handle=value[len(BLOB_SCHEME):])
    if is_asset_key(value):
        return AssetKey(value)
    return RemoteMedia(value)


def media_to_json(ref: Optional[MediaRef]) -> Optional[str]:
    return ref.to_json() if ref is not None else None


class BlobRegistry:
    """
    In-process registry of byte buffers addressed by ephemeral handles.

    Handles only live as long as the registry; they are never persisted.
    """

    def __init__(self):
        self._blobs: Dict[str, Tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    def create(self, data: bytes, mime_type: str = "application/octet-stream") -> BlobHandle:
        handle = uuid.uuid4().hex
        with self._lock:
            self._blobs[handle] = (bytes(data), mime_type)
        return BlobHandle(handle=handle, mime_type=mime_type)

    def get(self, handle: str) -> Optional[Tuple[bytes, str]]:
        with self._lock:
            return self._blobs.get(handle)

    def revoke(self, handle: str) -> None:
        with self._lock:
            self._blobs.pop(handle, None)

    def clear(self) -> None:
        with self._lock:
            self._blobs.clear()

    def __len__(self) -> int:
        return len(self._blobs)

    def read(self, ref: MediaRef) -> Tuple[bytes, str]:
        """Resolve a raw-bytes reference to (data, mime_type)."""
        if isinstance(ref, InlineMedia):
            return ref.data, ref.mime_type
        if isinstance(ref, BlobHandle):
            entry = self.get(ref.handle)
            if entry is None:
                raise MediaResolutionError(f"Blob handle is no longer registered: {ref.handle}")
            return entry
        raise MediaResolutionError(f"Media reference does not hold raw bytes: {ref!r}")
