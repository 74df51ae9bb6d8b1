"""
Plugin Base Classes

Provides:
- Plugin base class
- Plugin status and registry records
- HookPlugin built from plain callables
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .hooks import HookType


class PluginStatus(Enum):
    """Plugin lifecycle status"""
    REGISTERED = "registered"  # In the registry, install hook not run yet
    INSTALLED = "installed"  # Install hook ran; receives lifecycle hooks
    ERROR = "error"


class Plugin(ABC):
    """
    Base class for engine plugins

    Subclasses implement install() and may define any of the lifecycle
    hook methods named by HookType (before_transition, after_transition,
    on_stage_enter, on_stage_exit). Hooks and install/uninstall may be
    sync or async.
    """

    name: str = ""
    version: str = "1.0.0"
    description: str = ""
    dependencies: Tuple[str, ...] = ()

    @abstractmethod
    def install(self, engine: Any) -> Any:
        """Called once the plugin is installed on an active engine"""

    def uninstall(self, engine: Any) -> Any:
        """Called before the plugin is removed or the engine stops"""
        return None

    def get_hook(self, hook_type: HookType) -> Optional[Callable]:
        hook = getattr(self, hook_type.value, None)
        return hook if callable(hook) else None

    def get_info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "dependencies": list(self.dependencies),
            "hooks": [h.value for h in HookType if self.get_hook(h)]
        }


class HookPlugin(Plugin):
    """Plugin assembled from callables instead of a subclass"""

    def __init__(
        self,
        name: str,
        hooks: Optional[Dict[HookType, Callable]] = None,
        on_install: Optional[Callable] = None,
        on_uninstall: Optional[Callable] = None,
        dependencies: Optional[List[str]] = None,
        version: str = "1.0.0",
        description: str = ""
    ):
        self.name = name
        self.version = version
        self.description = description
        self.dependencies = tuple(dependencies or ())
        self._hooks = dict(hooks or {})
        self._on_install = on_install
        self._on_uninstall = on_uninstall

    def install(self, engine: Any) -> Any:
        if self._on_install:
            return self._on_install(engine)
        return None

    def uninstall(self, engine: Any) -> Any:
        if self._on_uninstall:
            return self._on_uninstall(engine)
        return None

    def get_hook(self, hook_type: HookType) -> Optional[Callable]:
        return self._hooks.get(hook_type)


@dataclass
class PluginRecord:
    """Registry entry for one plugin"""

    plugin: Plugin
    status: PluginStatus = PluginStatus.REGISTERED
    state: Dict[str, Any] = field(default_factory=dict)
    registered_at: datetime = field(default_factory=datetime.now)
    installed_at: Optional[datetime] = None
    hook_calls: int = 0
    error_message: Optional[str] = None

    @property
    def name(self) -> str:
        return self.plugin.name

    def to_dict(self) -> dict:
        return {
            **self.plugin.get_info(),
            "status": self.status.value,
            "state": self.state,
            "registered_at": self.registered_at.isoformat(),
            "installed_at": self.installed_at.isoformat() if self.installed_at else None,
            "hook_calls": self.hook_calls,
            "error_message": self.error_message
        }
