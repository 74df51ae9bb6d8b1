"""
Persistence Manager

Saves and loads {stage, data} snapshots through a StateStorage backend,
with expiration and schema versioning.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from .storage import MemoryStorage, StateStorage

logger = logging.getLogger(__name__)


class StateSnapshot(BaseModel):
    """Persisted stage snapshot"""
    stage: str = Field(..., min_length=1)
    data: Any = None
    saved_at: float = Field(..., ge=0)  # Epoch milliseconds
    version: str = "1.0.0"


@dataclass
class PersistenceConfig:
    """Engine-level persistence settings"""

    storage: StateStorage = field(default_factory=MemoryStorage)
    key: str = "stageflow-state"
    ttl_ms: Optional[float] = None  # None never expires
    version: str = "1.0.0"
    enabled: bool = True

    def to_dict(self) -> dict:
        return {
            "storage": type(self.storage).__name__,
            "key": self.key,
            "ttl_ms": self.ttl_ms,
            "version": self.version,
            "enabled": self.enabled
        }


class PersistenceManager:
    """
    Snapshot persistence for one engine

    Expired, malformed or version-mismatched snapshots are discarded on load.
    """

    def __init__(
        self,
        storage: Optional[StateStorage] = None,
        key: str = "stageflow-state",
        ttl_ms: Optional[float] = None,
        version: str = "1.0.0"
    ):
        self.storage = storage or MemoryStorage()
        self.key = key
        self.ttl_ms = ttl_ms
        self.version = version
        self.saves = 0
        self.loads = 0

    @classmethod
    def from_config(cls, config: PersistenceConfig) -> "PersistenceManager":
        return cls(
            storage=config.storage,
            key=config.key,
            ttl_ms=config.ttl_ms,
            version=config.version
        )

    def save(self, stage: str, data: Any) -> StateSnapshot:
        """
        Persist the given stage and data

        Args:
            stage: Current stage name
            data: Current stage data (must be JSON serializable)

        Returns:
            The snapshot written to storage
        """
        snapshot = StateSnapshot(
            stage=stage,
            data=data,
            saved_at=time.time() * 1000,
            version=self.version
        )
        self.storage.set_item(self.key, snapshot.model_dump_json())
        self.saves += 1
        logger.debug(f"[Persistence] Saved stage '{stage}' under '{self.key}'")
        return snapshot

    def load(self) -> Optional[StateSnapshot]:
        """Load the stored snapshot, or None if absent or unusable"""
        raw = self.storage.get_item(self.key)
        if raw is None:
            return None

        try:
            snapshot = StateSnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"[Persistence] Discarding malformed snapshot '{self.key}': {e}")
            self.clear()
            return None

        if snapshot.version != self.version:
            logger.info(
                f"[Persistence] Discarding snapshot '{self.key}' "
                f"(version {snapshot.version}, expected {self.version})"
            )
            self.clear()
            return None

        if self.is_expired(snapshot):
            logger.info(f"[Persistence] Snapshot '{self.key}' expired")
            self.clear()
            return None

        self.loads += 1
        return snapshot

    def is_expired(self, snapshot: StateSnapshot, now_ms: Optional[float] = None) -> bool:
        if self.ttl_ms is None:
            return False
        now_ms = time.time() * 1000 if now_ms is None else now_ms
        return now_ms - snapshot.saved_at > self.ttl_ms

    def clear(self) -> None:
        self.storage.remove_item(self.key)

    def get_statistics(self) -> dict:
        return {
            "key": self.key,
            "storage": type(self.storage).__name__,
            "ttl_ms": self.ttl_ms,
            "version": self.version,
            "saves": self.saves,
            "loads": self.loads
        }
