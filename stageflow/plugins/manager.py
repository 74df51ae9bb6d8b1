"""
Plugin Manager

Provides:
- Ordered plugin registry with dependency validation
- Install/uninstall lifecycle bound to the engine
- Hook dispatch in registration order
- Per-plugin state
"""

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..errors import PluginError, StageFlowError
from ..utils import call_maybe_async
from .base import Plugin, PluginRecord, PluginStatus
from .hooks import HookStats, HookType

logger = logging.getLogger(__name__)


def order_plugins(plugins: List[Plugin]) -> List[Plugin]:
    """
    Sort plugins so each comes after its dependencies

    Dependencies outside the list are treated as missing. Declaration
    order is kept wherever dependencies allow.
    """
    by_name = {p.name: p for p in plugins}
    ordered: List[Plugin] = []
    visiting: List[str] = []
    done = set()

    def visit(plugin: Plugin) -> None:
        if plugin.name in done:
            return
        if plugin.name in visiting:
            cycle = visiting[visiting.index(plugin.name):] + [plugin.name]
            raise PluginError(
                f"Circular plugin dependency: {' -> '.join(cycle)}",
                context={"plugin": plugin.name}
            )
        visiting.append(plugin.name)
        for dependency in plugin.dependencies:
            if dependency not in by_name:
                raise PluginError(
                    f"Plugin \"{plugin.name}\" depends on missing plugin \"{dependency}\"",
                    context={"plugin": plugin.name, "dependency": dependency}
                )
            visit(by_name[dependency])
        visiting.pop()
        done.add(plugin.name)
        ordered.append(plugin)

    for plugin in plugins:
        visit(plugin)
    return ordered


class PluginManager:
    """
    Manages plugins for one engine

    Install hooks run when the engine is active: immediately for plugins
    installed on a started engine, otherwise on start. Stopping the engine
    runs uninstall hooks but keeps the registry so a restart re-installs.
    """

    def __init__(self, engine: Any):
        self.engine = engine
        self.plugins: Dict[str, PluginRecord] = {}
        self.hook_stats: Dict[HookType, HookStats] = {
            hook_type: HookStats(hook_type) for hook_type in HookType
        }

    # Registry

    def register(self, plugin: Plugin) -> PluginRecord:
        """Add plugin to the registry after checking name and dependencies"""
        if not isinstance(plugin, Plugin):
            raise PluginError(f"Not a plugin: {plugin!r}")
        if not plugin.name:
            raise PluginError("Plugin name is required")
        if plugin.name in self.plugins:
            raise PluginError(
                f"Plugin \"{plugin.name}\" is already installed",
                context={"plugin": plugin.name}
            )

        missing = self.check_dependencies(plugin)
        if missing:
            raise PluginError(
                f"Plugin \"{plugin.name}\" depends on \"{missing[0]}\" which is not installed",
                context={"plugin": plugin.name, "missing": missing}
            )

        record = PluginRecord(plugin=plugin)
        self.plugins[plugin.name] = record
        logger.debug(f"[Plugin] Registered '{plugin.name}'")
        return record

    def check_dependencies(self, plugin: Plugin) -> List[str]:
        """Names of declared dependencies not in the registry"""
        return [d for d in plugin.dependencies if d not in self.plugins]

    def get_dependents(self, name: str) -> List[str]:
        return [
            record.name for record in self.plugins.values()
            if name in record.plugin.dependencies
        ]

    # Lifecycle

    async def install(self, plugin: Plugin, activate: bool) -> PluginRecord:
        """Register plugin and run its install hook if activate is set"""
        record = self.register(plugin)
        if activate:
            try:
                await self._activate(record)
            except PluginError:
                del self.plugins[plugin.name]
                raise
        return record

    async def uninstall(self, name: str) -> None:
        """Run the uninstall hook and drop the plugin from the registry"""
        record = self.plugins.get(name)
        if not record:
            raise PluginError(f"Plugin \"{name}\" is not installed", context={"plugin": name})

        dependents = self.get_dependents(name)
        if dependents:
            raise PluginError(
                f"Cannot uninstall \"{name}\": required by {', '.join(dependents)}",
                context={"plugin": name, "dependents": dependents}
            )

        if record.status == PluginStatus.INSTALLED:
            await self._deactivate(record)
        del self.plugins[name]
        logger.info(f"[Plugin] Uninstalled '{name}'")

    async def activate_all(self) -> None:
        """Run pending install hooks in registration order"""
        for record in list(self.plugins.values()):
            if record.status != PluginStatus.INSTALLED:
                await self._activate(record)

    async def deactivate_all(self) -> None:
        """Run uninstall hooks in reverse registration order"""
        first_error: Optional[PluginError] = None
        for record in reversed(list(self.plugins.values())):
            if record.status != PluginStatus.INSTALLED:
                continue
            try:
                await self._deactivate(record)
            except PluginError as e:
                logger.error(f"[Plugin] {e.message}")
                first_error = first_error or e
        if first_error:
            raise first_error

    async def _activate(self, record: PluginRecord) -> None:
        try:
            await call_maybe_async(record.plugin.install, self.engine)
        except Exception as e:
            record.status = PluginStatus.ERROR
            record.error_message = str(e)
            raise PluginError(
                f"Plugin \"{record.name}\" failed to install: {e}",
                context={"plugin": record.name}
            ) from e
        record.status = PluginStatus.INSTALLED
        record.installed_at = datetime.now()
        record.error_message = None
        logger.info(f"[Plugin] Installed '{record.name}' v{record.plugin.version}")

    async def _deactivate(self, record: PluginRecord) -> None:
        try:
            await call_maybe_async(record.plugin.uninstall, self.engine)
        except Exception as e:
            record.status = PluginStatus.ERROR
            record.error_message = str(e)
            raise PluginError(
                f"Plugin \"{record.name}\" failed to uninstall: {e}",
                context={"plugin": record.name}
            ) from e
        record.status = PluginStatus.REGISTERED

    # Hooks

    async def run_hook(self, hook_type: HookType, context: Any) -> None:
        """Invoke hook_type on every installed plugin that defines it"""
        stats = self.hook_stats[hook_type]
        for record in list(self.plugins.values()):
            if record.status != PluginStatus.INSTALLED:
                continue
            hook = record.plugin.get_hook(hook_type)
            if hook is None:
                continue

            started = time.perf_counter()
            try:
                await call_maybe_async(hook, context)
            except StageFlowError:
                stats.failure_count += 1
                raise
            except Exception as e:
                stats.failure_count += 1
                raise PluginError(
                    f"Plugin \"{record.name}\" {hook_type.value} hook failed: {e}",
                    context={"plugin": record.name, "hook": hook_type.value}
                ) from e
            finally:
                stats.execution_count += 1
                stats.total_duration_ms += (time.perf_counter() - started) * 1000
                record.hook_calls += 1

    # Queries and state

    def get_plugin(self, name: str) -> Optional[Plugin]:
        record = self.plugins.get(name)
        return record.plugin if record else None

    def get_record(self, name: str) -> Optional[PluginRecord]:
        return self.plugins.get(name)

    def get_names(self) -> List[str]:
        return list(self.plugins.keys())

    def get_state(self, name: str) -> Dict[str, Any]:
        record = self.plugins.get(name)
        if not record:
            raise PluginError(f"Plugin \"{name}\" is not installed", context={"plugin": name})
        return record.state

    def set_state(self, name: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Merge updates into the plugin's state"""
        state = self.get_state(name)
        state.update(updates)
        return state

    def get_statistics(self) -> dict:
        by_status: Dict[str, int] = {}
        for record in self.plugins.values():
            by_status[record.status.value] = by_status.get(record.status.value, 0) + 1

        return {
            "total_plugins": len(self.plugins),
            "by_status": by_status,
            "hooks": {h.value: s.to_dict() for h, s in self.hook_stats.items()}
        }
