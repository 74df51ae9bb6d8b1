"""
Logging Plugin

Logs engine lifecycle hooks through the standard logging module.
"""

import logging
from typing import Any, Optional

from .base import Plugin


class LoggingPlugin(Plugin):
    """Writes one log line per transition and stage change"""

    name = "logging"
    version = "1.0.0"
    description = "Logs transitions and stage enter/exit"

    def __init__(
        self,
        level: int = logging.INFO,
        include_data: bool = False,
        log_prefix: str = "[StageFlow]",
        log: Optional[logging.Logger] = None
    ):
        self.level = level
        self.include_data = include_data
        self.log_prefix = log_prefix
        self.log = log or logging.getLogger(__name__)

    def _write(self, message: str, data: Any = None) -> None:
        if self.include_data and data is not None:
            message = f"{message} data={data!r}"
        self.log.log(self.level, f"{self.log_prefix} {message}")

    def install(self, engine: Any) -> None:
        self._write(f"Logging plugin installed (stage: {engine.get_current_stage()})")

    def uninstall(self, engine: Any) -> None:
        self._write("Logging plugin uninstalled")

    def before_transition(self, context: Any) -> None:
        event = f" (event: {context.event})" if context.event else ""
        self._write(f"Transitioning {context.source} -> {context.target}{event}", context.data)

    def after_transition(self, context: Any) -> None:
        self._write(f"Transitioned {context.source} -> {context.target}")

    def on_stage_enter(self, context: Any) -> None:
        self._write(f"Entered stage '{context.current}'", context.data)

    def on_stage_exit(self, context: Any) -> None:
        self._write(f"Exited stage '{context.current}'")
