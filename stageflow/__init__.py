"""
StageFlow

Declarative stage transition engine with middleware, plugins and
delay timers.
"""

from .errors import (
    StageFlowError,
    TransitionError,
    MiddlewareError,
    PluginError,
    ConfigurationError,
)
from .statemachine import (
    StageFlowEngine,
    StageFlowConfig,
    StageDefinition,
    StageContext,
    TransitionDefinition,
    TransitionContext,
    ConditionOperator,
    FieldCondition,
    all_of,
    any_of,
    none_of,
    HistoryEntry,
    StageFlowState,
    validate_config,
)
from .middleware import (
    Middleware,
    PipelineOutcome,
)
from .plugins import (
    Plugin,
    HookPlugin,
    HookType,
    LoggingPlugin,
    PersistencePlugin,
)
from .timers import (
    ManualClock,
    LoopClock,
    TimerEvent,
    TimerEventType,
    TimerRecord,
)
from .persistence import (
    PersistenceConfig,
    MemoryStorage,
    FileStorage,
)

__version__ = "1.0.0"

__all__ = [
    # Errors
    "StageFlowError",
    "TransitionError",
    "MiddlewareError",
    "PluginError",
    "ConfigurationError",
    # Engine and configuration
    "StageFlowEngine",
    "StageFlowConfig",
    "StageDefinition",
    "StageContext",
    "TransitionDefinition",
    "TransitionContext",
    "ConditionOperator",
    "FieldCondition",
    "all_of",
    "any_of",
    "none_of",
    "HistoryEntry",
    "StageFlowState",
    "validate_config",
    # Middleware
    "Middleware",
    "PipelineOutcome",
    # Plugins
    "Plugin",
    "HookPlugin",
    "HookType",
    "LoggingPlugin",
    "PersistencePlugin",
    # Timers
    "ManualClock",
    "LoopClock",
    "TimerEvent",
    "TimerEventType",
    "TimerRecord",
    # Persistence
    "PersistenceConfig",
    "MemoryStorage",
    "FileStorage",
]
