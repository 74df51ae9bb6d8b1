"""
Stage Definitions

Provides:
- Stage definition data structures
- Stage context handed to hooks and conditions
- Top-level stage flow configuration
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..persistence.manager import PersistenceConfig
from .transitions import TransitionDefinition


@dataclass
class StageDefinition:
    """A named stage and the transitions leaving it"""

    name: str
    transitions: List[TransitionDefinition] = field(default_factory=list)
    data: Any = None  # Default payload, copied on entry
    effect: Any = None  # Opaque to the engine
    on_enter: Optional[Callable] = None
    on_exit: Optional[Callable] = None

    def get_delayed_transitions(self) -> List[TransitionDefinition]:
        return [t for t in self.transitions if t.is_delayed]

    def get_event_transitions(self, event: str) -> List[TransitionDefinition]:
        return [t for t in self.transitions if t.matches(event)]

    def find_transition_to(self, target: str) -> Optional[TransitionDefinition]:
        for transition in self.transitions:
            if transition.target == target:
                return transition
        return None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "transitions": [t.to_dict() for t in self.transitions],
            "data": self.data,
            "effect": self.effect if isinstance(self.effect, (str, int, float, type(None))) else repr(self.effect),
            "has_on_enter": self.on_enter is not None,
            "has_on_exit": self.on_exit is not None
        }


@dataclass
class StageContext:
    """Read view of the current stage plus navigation helpers"""

    current: str
    data: Any
    timestamp: datetime = field(default_factory=datetime.now)
    send: Optional[Callable] = None
    go_to: Optional[Callable] = None

    def to_dict(self) -> dict:
        return {
            "current": self.current,
            "data": self.data,
            "timestamp": self.timestamp.isoformat()
        }


@dataclass
class StageFlowConfig:
    """Declarative configuration for one engine"""

    initial: str
    stages: List[StageDefinition] = field(default_factory=list)
    middleware: List[Any] = field(default_factory=list)
    plugins: List[Any] = field(default_factory=list)
    persistence: Optional[PersistenceConfig] = None
    effects: Optional[Dict[str, Any]] = None
    history_limit: Optional[int] = None  # None keeps the full history

    def get_stage(self, name: str) -> Optional[StageDefinition]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def get_stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    def to_dict(self) -> dict:
        return {
            "initial": self.initial,
            "stages": [s.to_dict() for s in self.stages],
            "middleware": [getattr(m, "name", repr(m)) for m in self.middleware],
            "plugins": [getattr(p, "name", repr(p)) for p in self.plugins],
            "persistence": self.persistence.to_dict() if self.persistence else None,
            "history_limit": self.history_limit
        }
