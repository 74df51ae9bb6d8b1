"""
Engine plugins

Provides:
- Plugin base class and HookPlugin
- Plugin manager with dependency checks
- Logging and persistence plugins
"""

from .hooks import (
    HookType,
    HookStats,
)
from .base import (
    Plugin,
    PluginStatus,
    PluginRecord,
    HookPlugin,
)
from .manager import (
    PluginManager,
    order_plugins,
)
from .logger import LoggingPlugin
from .persistence import PersistencePlugin

__all__ = [
    # Hooks
    "HookType",
    "HookStats",
    # Base
    "Plugin",
    "PluginStatus",
    "PluginRecord",
    "HookPlugin",
    # Manager
    "PluginManager",
    "order_plugins",
    # Plugins
    "LoggingPlugin",
    "PersistencePlugin",
]
