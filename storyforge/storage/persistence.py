"""
Project Persistence

Saves AppState snapshots as project records with asset indirection: raw media
bytes go to the asset store under `{projectId}-img-{index}` /
`{projectId}-vid-{index}` and the record only keeps those keys. Loading
reverses the substitution into fresh blob handles.
"""

import json
import time
from typing import Any, List, Optional, Union

from storyforge.core.constants import ImageState, VideoState
from storyforge.core.exceptions import (
    ImportValidationError,
    InvalidConfigError,
    MediaResolutionError,
    PersistenceError,
    ProjectNotFoundError,
)
from storyforge.core.logging_config import get_logger
from storyforge.core.media import (
    MEDIA_ERROR,
    AssetKey,
    BlobHandle,
    BlobRegistry,
    InlineMedia,
    MediaRef,
    image_asset_key,
    video_asset_key,
)
from storyforge.core.models import AppState, Panel, ProjectRecord
from storyforge.storage.asset_store import AssetStore
from storyforge.storage.project_store import ProjectStore

logger = get_logger("storage.persistence")

REQUIRED_IMPORT_FIELDS = ("id", "title")


def new_project_id() -> str:
    """Millisecond timestamp string."""
    return str(int(time.time() * 1000))


def referenced_asset_keys(app_state: AppState) -> List[str]:
    keys = []
    for panel in app_state.storyboard_panels:
        for ref in (panel.image_ref, panel.video_ref):
            if isinstance(ref, AssetKey):
                keys.append(ref.key)
    return keys


class ProjectRepository:
    """
    Project and asset persistence.

    Usage:
        repo = ProjectRepository(FileProjectStore(dir), FileAssetStore(dir), blobs)
        record = repo.save_project(app_state)
        state = repo.get_project_state(record.id)
    """

    def __init__(self, projects: ProjectStore, assets: AssetStore, blobs: BlobRegistry):
        self.projects = projects
        self.assets = assets
        self.blobs = blobs
        self._thumbnail_handles: List[BlobHandle] = []

    # ------------------------------------------------------------------
    # Substitution
    # ------------------------------------------------------------------

    def _store_media(self, ref: Optional[MediaRef], key: AssetKey) -> Optional[MediaRef]:
        """Move raw bytes into the asset store; everything else passes through."""
        if ref is None or not ref.is_raw_bytes:
            return ref
        try:
            data, mime_type = self.blobs.read(ref)
        except MediaResolutionError as e:
            raise PersistenceError(f"Cannot read media for {key.key}: {e.message}", {"asset_key": key.key})
        self.assets.put(key.key, data, mime_type)
        return key

    def _persist_panels(self, project_id: str, panels: List[Panel]) -> List[Panel]:
        stored = []
        for index, panel in enumerate(panels):
            stored.append(panel.evolve(
                image_ref=self._store_media(panel.image_ref, image_asset_key(project_id, index)),
                video_ref=self._store_media(panel.video_ref, video_asset_key(project_id, index)),
            ))
        return stored

    def _resolve(self, ref: Optional[MediaRef]) -> Optional[MediaRef]:
        """Asset key -> fresh blob handle, or the error sentinel if it is gone."""
        if not isinstance(ref, AssetKey):
            return ref
        asset = self.assets.get(ref.key)
        if asset is None:
            logger.warning(f"Asset missing during hydration: {ref.key}")
            return MEDIA_ERROR
        return self.blobs.create(asset.data, asset.mime_type)

    def _hydrate_panel(self, panel: Panel) -> Panel:
        image_ref = self._resolve(panel.image_ref)
        image_state = panel.image_state
        if isinstance(panel.image_ref, AssetKey) and image_ref.is_terminal:
            image_state = ImageState.ERROR
        elif image_state == ImageState.GENERATING:
            # An interrupted job is picked up again by the image queue
            image_state = ImageState.QUEUED

        video_ref = self._resolve(panel.video_ref)
        video_state = panel.video_state
        video_error = panel.video_error
        if isinstance(panel.video_ref, AssetKey) and video_ref.is_terminal:
            video_state = VideoState.ERROR
            video_error = "Stored video could not be found"
        elif video_state == VideoState.GENERATING:
            video_state = VideoState.READY if video_ref is not None else VideoState.NONE

        return panel.evolve(
            image_ref=image_ref,
            image_state=image_state,
            video_ref=video_ref,
            video_state=video_state,
            video_error=video_error,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def save_project(self, app_state: AppState, project_id: Optional[str] = None) -> ProjectRecord:
        """
        Persist a snapshot of app_state.

        Args:
            app_state: Live state. It is never mutated.
            project_id: Existing id to overwrite; a new id is assigned when None.

        Returns:
            The stored record (asset keys in place of raw media).
        """
        previous = None
        if project_id is None:
            project_id = new_project_id()
            while self.projects.exists(project_id):
                project_id = str(int(project_id) + 1)
        else:
            try:
                previous = self.projects.get(project_id)
            except PersistenceError as e:
                logger.warning(f"Overwriting unreadable project {project_id}: {e.message}")

        panels = self._persist_panels(project_id, list(app_state.storyboard_panels))
        record = ProjectRecord(
            id=project_id,
            title=app_state.title,
            timestamp=int(time.time() * 1000),
            app_state=app_state.with_panels(panels),
        )
        self.projects.put(record)

        if previous is not None:
            # Panels removed or videos dropped since the last save
            stale = set(referenced_asset_keys(previous.app_state)) - set(referenced_asset_keys(record.app_state))
            for key in sorted(stale):
                self.assets.delete(key)
            if stale:
                logger.info(f"Removed {len(stale)} stale assets from project {project_id}")

        logger.info(f"Saved project {project_id} '{record.title}' ({len(panels)} panels)")
        return record

    def get_projects(self) -> List[ProjectRecord]:
        """All records, newest first, with thumbnails resolved to blob handles."""
        for handle in self._thumbnail_handles:
            self.blobs.revoke(handle.handle)
        self._thumbnail_handles = []

        records = sorted(self.projects.get_all(), key=lambda r: r.timestamp, reverse=True)
        for record in records:
            record.thumbnail_ref = None
            panels = record.app_state.storyboard_panels
            first = panels[0].image_ref if panels else None
            if isinstance(first, AssetKey):
                asset = self.assets.get(first.key)
                if asset is not None:
                    handle = self.blobs.create(asset.data, asset.mime_type)
                    self._thumbnail_handles.append(handle)
                    record.thumbnail_ref = handle
        return records

    def get_project_state(self, project_id: str) -> Optional[AppState]:
        """
        Hydrated AppState for a project, or None when the id is unknown.

        Stored media comes back as fresh blob handles owned by the caller; the
        panel pipeline revokes them once the panels leave its collection.
        """
        record = self.projects.get(project_id)
        if record is None:
            return None
        panels = [self._hydrate_panel(p) for p in record.app_state.storyboard_panels]
        return record.app_state.with_panels(panels)

    def delete_project(self, project_id: str) -> None:
        """Delete every asset the project references, then the record."""
        record = self.projects.get(project_id)
        if record is None:
            raise ProjectNotFoundError(project_id)

        keys = referenced_asset_keys(record.app_state)
        for key in keys:
            self.assets.delete(key)
        self.projects.delete(project_id)
        logger.info(f"Deleted project {project_id} and {len(keys)} assets")

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def _inline(self, ref: Optional[MediaRef]) -> Optional[MediaRef]:
        if not isinstance(ref, AssetKey):
            return ref
        asset = self.assets.get(ref.key)
        if asset is None:
            logger.warning(f"Asset missing during export, keeping key: {ref.key}")
            return ref
        return InlineMedia(data=asset.data, mime_type=asset.mime_type)

    def export_projects(self, inline_media: bool = False) -> List[dict]:
        """
        Export all project records as JSON-ready dicts.

        With inline_media=True, asset keys are replaced by data: URIs so the
        export stands on its own.
        """
        exported = []
        for record in sorted(self.projects.get_all(), key=lambda r: r.timestamp, reverse=True):
            if inline_media:
                panels = [
                    p.evolve(image_ref=self._inline(p.image_ref), video_ref=self._inline(p.video_ref))
                    for p in record.app_state.storyboard_panels
                ]
                record.app_state = record.app_state.with_panels(panels)
            record.thumbnail_ref = None
            exported.append(record.to_dict())
        return exported

    def import_projects(self, payload: Union[str, bytes, List[Any]]) -> int:
        """
        Import project records.

        Every entry needs id, title and app_state (or appState); a single
        malformed entry rejects the whole payload. Existing ids are skipped.

        Returns:
            Number of projects imported
        """
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as e:
                raise ImportValidationError(f"Import file is not valid JSON: {e}")

        if not isinstance(payload, list):
            raise ImportValidationError("Import file must contain a JSON array of projects")

        records = []
        for position, entry in enumerate(payload):
            if not isinstance(entry, dict):
                raise ImportValidationError(f"Entry {position} is not an object")
            missing = [f for f in REQUIRED_IMPORT_FIELDS if f not in entry]
            if "app_state" not in entry and "appState" not in entry:
                missing.append("app_state")
            if missing:
                raise ImportValidationError(
                    f"Entry {position} is missing required fields: {', '.join(missing)}",
                    {"entry": position, "missing": missing},
                )
            app_state = entry.get("app_state", entry.get("appState"))
            if not isinstance(app_state, dict):
                raise ImportValidationError(f"Entry {position} app_state is not an object", {"entry": position})
            try:
                records.append(ProjectRecord.from_dict(entry))
            except (AttributeError, KeyError, TypeError, ValueError, InvalidConfigError) as e:
                raise ImportValidationError(f"Entry {position} is malformed: {e}", {"entry": position})

        imported = 0
        for record in records:
            if self.projects.exists(record.id):
                logger.info(f"Skipping import of existing project {record.id}")
                continue
            panels = []
            for panel in record.app_state.storyboard_panels:
                # Blob handles from another process cannot be resolved here
                if isinstance(panel.image_ref, BlobHandle) and self.blobs.get(panel.image_ref.handle) is None:
                    panel = panel.evolve(image_ref=MEDIA_ERROR, image_state=ImageState.ERROR)
                if isinstance(panel.video_ref, BlobHandle) and self.blobs.get(panel.video_ref.handle) is None:
                    panel = panel.evolve(video_ref=None, video_state=VideoState.NONE)
                panels.append(panel)
            record.app_state = record.app_state.with_panels(self._persist_panels(record.id, panels))
            record.thumbnail_ref = None
            self.projects.put(record)
            imported += 1

        logger.info(f"Imported {imported} of {len(records)} projects")
        return imported
