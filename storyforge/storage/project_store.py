"""
Project Store

Durable storage for project records (metadata + AppState snapshot).
"""

import json
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from storyforge.core.exceptions import InvalidConfigError, PersistenceError
from storyforge.core.logging_config import get_logger
from storyforge.core.models import ProjectRecord

logger = get_logger("storage.projects")


class ProjectStore(ABC):
    """Abstract project store. Re-putting an existing id overwrites it."""

    @abstractmethod
    def put(self, record: ProjectRecord) -> None:
        ...

    @abstractmethod
    def get(self, project_id: str) -> Optional[ProjectRecord]:
        ...

    @abstractmethod
    def get_all(self) -> List[ProjectRecord]:
        ...

    @abstractmethod
    def delete(self, project_id: str) -> None:
        ...

    def exists(self, project_id: str) -> bool:
        return self.get(project_id) is not None


class MemoryProjectStore(ProjectStore):
    """In-process project store. Records are kept in their dict form."""

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def put(self, record: ProjectRecord) -> None:
        with self._lock:
            self._records[record.id] = record.to_dict()

    def get(self, project_id: str) -> Optional[ProjectRecord]:
        with self._lock:
            data = self._records.get(project_id)
        return ProjectRecord.from_dict(data) if data is not None else None

    def get_all(self) -> List[ProjectRecord]:
        with self._lock:
            items = list(self._records.values())
        return [ProjectRecord.from_dict(data) for data in items]

    def delete(self, project_id: str) -> None:
        with self._lock:
            self._records.pop(project_id, None)

    def exists(self, project_id: str) -> bool:
        with self._lock:
            return project_id in self._records


class FileProjectStore(ProjectStore):
    """One JSON file per project under a directory."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, project_id: str) -> Path:
        return self.root / f"{quote(project_id, safe='-_.')}.json"

    def put(self, record: ProjectRecord) -> None:
        path = self._path(record.id)
        try:
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(record.to_dict(), indent=2), encoding="utf-8")
            tmp_path.replace(path)
        except OSError as e:
            raise PersistenceError(f"Failed to write project '{record.id}': {e}", {"project_id": record.id})
        logger.debug(f"Wrote project {record.id} to {path}")

    def _read(self, path: Path) -> ProjectRecord:
        return ProjectRecord.from_dict(json.loads(path.read_text(encoding="utf-8")))

    def get(self, project_id: str) -> Optional[ProjectRecord]:
        path = self._path(project_id)
        if not path.exists():
            return None
        try:
            return self._read(path)
        except (json.JSONDecodeError, KeyError, ValueError, InvalidConfigError) as e:
            raise PersistenceError(f"Corrupt project file {path.name}: {e}", {"project_id": project_id})

    def get_all(self) -> List[ProjectRecord]:
        records = []
        for path in sorted(self.root.glob("*.json")):
            try:
                records.append(self._read(path))
            except (json.JSONDecodeError, KeyError, ValueError, InvalidConfigError) as e:
                logger.warning(f"Skipping unreadable project file {path.name}: {e}")
        return records

    def delete(self, project_id: str) -> None:
        try:
            self._path(project_id).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(f"Failed to delete project '{project_id}': {e}", {"project_id": project_id})

    def exists(self, project_id: str) -> bool:
        return self._path(project_id).exists()
