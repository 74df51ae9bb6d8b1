"""
Stage snapshot persistence

Provides:
- Storage backends (memory, file)
- Versioned snapshots with expiration
"""

from .storage import (
    StateStorage,
    MemoryStorage,
    FileStorage,
    get_default_storage_path,
)
from .manager import (
    StateSnapshot,
    PersistenceConfig,
    PersistenceManager,
)

__all__ = [
    # Storage
    "StateStorage",
    "MemoryStorage",
    "FileStorage",
    "get_default_storage_path",
    # Snapshots
    "StateSnapshot",
    "PersistenceConfig",
    "PersistenceManager",
]
