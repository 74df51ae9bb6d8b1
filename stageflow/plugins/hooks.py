"""
Plugin Hooks

Provides:
- Lifecycle hook types
- Per-hook execution statistics
"""

from dataclasses import dataclass
from enum import Enum


class HookType(Enum):
    """Lifecycle points a plugin may attach to"""
    BEFORE_TRANSITION = "before_transition"  # Receives the TransitionContext
    AFTER_TRANSITION = "after_transition"  # Receives the TransitionContext
    ON_STAGE_ENTER = "on_stage_enter"  # Receives the StageContext of the new stage
    ON_STAGE_EXIT = "on_stage_exit"  # Receives the StageContext of the old stage


@dataclass
class HookStats:
    """Execution counters for one hook type"""

    hook_type: HookType
    execution_count: int = 0
    failure_count: int = 0
    total_duration_ms: float = 0.0

    @property
    def avg_duration_ms(self) -> float:
        if not self.execution_count:
            return 0.0
        return self.total_duration_ms / self.execution_count

    def to_dict(self) -> dict:
        return {
            "hook_type": self.hook_type.value,
            "execution_count": self.execution_count,
            "failure_count": self.failure_count,
            "avg_duration_ms": self.avg_duration_ms
        }
