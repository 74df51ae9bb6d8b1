"""
Stage flow state machine

Provides:
- Stage and transition definitions
- Conditions
- State store and configuration validation
- The transition engine
"""

from .transitions import (
    ConditionOperator,
    ConditionLogic,
    FieldCondition,
    CallableCondition,
    CompositeCondition,
    TransitionDefinition,
    TransitionContext,
    all_of,
    any_of,
    none_of,
    as_condition,
    evaluate_condition,
)
from .stages import (
    StageDefinition,
    StageContext,
    StageFlowConfig,
)
from .store import (
    HistoryEntry,
    StageFlowState,
    StateStore,
)
from .validation import (
    ValidationIssue,
    ValidationResult,
    validate_config,
    ensure_valid_config,
)
from .engine import StageFlowEngine

__all__ = [
    # Transitions
    "ConditionOperator",
    "ConditionLogic",
    "FieldCondition",
    "CallableCondition",
    "CompositeCondition",
    "TransitionDefinition",
    "TransitionContext",
    "all_of",
    "any_of",
    "none_of",
    "as_condition",
    "evaluate_condition",
    # Stages
    "StageDefinition",
    "StageContext",
    "StageFlowConfig",
    # Store
    "HistoryEntry",
    "StageFlowState",
    "StateStore",
    # Validation
    "ValidationIssue",
    "ValidationResult",
    "validate_config",
    "ensure_valid_config",
    # Engine
    "StageFlowEngine",
]
