"""
Storage Backends for Stage Snapshots

Provides:
- StateStorage interface (string key/value)
- In-memory storage
- File-based storage, one JSON document per key
"""

import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional


def get_default_storage_path() -> Path:
    """
    Get the default storage path for snapshots

    Returns:
        Path to storage directory
    """
    env_path = os.environ.get("STAGEFLOW_STORAGE_PATH")
    if env_path:
        return Path(env_path)

    return Path.home() / ".stageflow" / "storage"


class StateStorage(ABC):
    """Key/value backend for persisted snapshots"""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the stored value or None"""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store value under key"""

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove key if present"""


class MemoryStorage(StateStorage):
    """Process-local storage, mainly for tests"""

    def __init__(self):
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._items.keys())


class FileStorage(StateStorage):
    """
    File-based storage for snapshots

    Directory structure:
        <path>/
            <key>.json
    """

    def __init__(self, storage_path: Optional[Path] = None):
        """
        Initialize file storage

        Args:
            storage_path: Directory for snapshot files (default: get_default_storage_path())
        """
        self.path = Path(storage_path) if storage_path else get_default_storage_path()
        self.path.mkdir(parents=True, exist_ok=True)

    def _file_for(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.path / f"{safe}.json"

    def get_item(self, key: str) -> Optional[str]:
        filepath = self._file_for(key)
        if not filepath.exists():
            return None
        return filepath.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        filepath = self._file_for(key)
        tmp_path = filepath.with_suffix(".json.tmp")
        tmp_path.write_text(value, encoding="utf-8")
        tmp_path.replace(filepath)

    def remove_item(self, key: str) -> None:
        filepath = self._file_for(key)
        if filepath.exists():
            filepath.unlink()

    def keys(self) -> List[str]:
        return [f.stem for f in sorted(self.path.glob("*.json"))]
