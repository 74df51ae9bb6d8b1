"""
Persistence Plugin

Saves {stage, data} snapshots after every transition and restores them on
request.
"""

import logging
from typing import Any, Optional

from ..persistence.manager import PersistenceManager, StateSnapshot
from ..persistence.storage import StateStorage
from .base import Plugin

logger = logging.getLogger(__name__)


class PersistencePlugin(Plugin):
    """
    Snapshot persistence as a plugin

    Unlike StageFlowConfig.persistence, which resumes automatically on
    start(), this plugin only saves; call restore() on a started engine to
    navigate back to the saved stage.
    """

    name = "persistence"
    version = "1.0.0"
    description = "Persists stage snapshots to a storage backend"

    def __init__(
        self,
        storage: Optional[StateStorage] = None,
        key: str = "stageflow-state",
        ttl_ms: Optional[float] = None,
        version: str = "1.0.0",
        save_on_install: bool = True
    ):
        self.manager = PersistenceManager(storage=storage, key=key, ttl_ms=ttl_ms, version=version)
        self.save_on_install = save_on_install
        self.engine: Any = None

    def install(self, engine: Any) -> None:
        self.engine = engine
        if self.save_on_install and self.manager.load() is None:
            self.manager.save(engine.get_current_stage(), engine.get_current_data())

    def uninstall(self, engine: Any) -> None:
        self.engine = None

    def after_transition(self, context: Any) -> None:
        self.manager.save(self.engine.get_current_stage(), self.engine.get_current_data())
        self.engine.set_plugin_state(self.name, {"last_saved_stage": context.target})

    def load(self) -> Optional[StateSnapshot]:
        return self.manager.load()

    async def restore(self) -> bool:
        """Navigate the engine to the saved stage; False if nothing to restore"""
        if self.engine is None:
            return False
        snapshot = self.manager.load()
        if snapshot is None:
            return False
        if snapshot.stage not in self.engine.get_stage_names():
            logger.warning(f"[Persistence] Saved stage '{snapshot.stage}' is no longer declared")
            self.manager.clear()
            return False
        if snapshot.stage == self.engine.get_current_stage():
            await self.engine.set_stage_data(snapshot.data)
            return True
        return await self.engine.go_to(snapshot.stage, snapshot.data)

    def clear(self) -> None:
        self.manager.clear()
