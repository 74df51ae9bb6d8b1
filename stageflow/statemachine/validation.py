"""
Configuration Validation

Provides:
- Structural checks of a stage flow configuration
- Validation results with errors and warnings
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, List, Optional, Set

from ..errors import ConfigurationError
from .stages import StageFlowConfig

logger = logging.getLogger(__name__)


@dataclass
class ValidationIssue:
    """Validation error"""

    field: str
    message: str
    value: Any = None

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "message": self.message,
            "value": str(self.value) if self.value is not None else None
        }

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


@dataclass
class ValidationResult:
    """Result of configuration validation"""

    valid: bool = True
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, field: str, message: str, value: Any = None) -> None:
        """Add validation error"""
        self.errors.append(ValidationIssue(field=field, message=message, value=value))
        self.valid = False

    def add_warning(self, message: str) -> None:
        """Add validation warning"""
        self.warnings.append(message)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": self.warnings,
            "error_count": len(self.errors)
        }


def validate_config(config: StageFlowConfig) -> ValidationResult:
    """
    Check a configuration for structural errors

    Errors make the configuration unusable; warnings flag likely mistakes
    such as stages that can never be reached.
    """
    result = ValidationResult()

    if not config.stages:
        result.add_error("stages", "At least one stage must be declared")
        return result

    names = [stage.name for stage in config.stages]
    declared: Set[str] = set(names)

    for name, count in Counter(names).items():
        if count > 1:
            result.add_error("stages", f"Duplicate stage name \"{name}\"", name)
        if not name:
            result.add_error("stages", "Stage name must be a non-empty string", name)

    if not config.initial:
        result.add_error("initial", "Initial stage is required")
    elif config.initial not in declared:
        result.add_error("initial", f"Initial stage \"{config.initial}\" is not declared", config.initial)

    if config.history_limit is not None and config.history_limit < 1:
        result.add_error("history_limit", "History limit must be positive", config.history_limit)

    for stage in config.stages:
        for index, transition in enumerate(stage.transitions):
            where = f"stages.{stage.name}.transitions[{index}]"
            if transition.target not in declared:
                result.add_error(
                    where,
                    f"Transition targets undeclared stage \"{transition.target}\"",
                    transition.target
                )
            if transition.after is not None:
                if isinstance(transition.after, bool) or not isinstance(transition.after, (int, float)):
                    result.add_error(where, "Delay must be a number of milliseconds", transition.after)
                elif transition.after <= 0:
                    result.add_error(where, "Delay must be positive", transition.after)
            if transition.condition is not None and not (
                hasattr(transition.condition, "evaluate") or callable(transition.condition)
            ):
                result.add_error(where, "Condition must be callable or expose evaluate()", transition.condition)
            _check_unique_names(result, f"{where}.middleware", transition.middleware)
            if transition.event is None and transition.after is None:
                result.add_warning(
                    f"{where}: transition to \"{transition.target}\" has no event or delay "
                    f"and is only reachable through go_to"
                )

        if isinstance(stage.effect, str) and config.effects is not None and stage.effect not in config.effects:
            result.add_warning(f"stages.{stage.name}: effect \"{stage.effect}\" is not registered")

    _check_unique_names(result, "middleware", config.middleware)
    _check_unique_names(result, "plugins", config.plugins)

    if result.valid:
        for name in sorted(declared - _reachable(config)):
            result.add_warning(f"stages.{name}: stage is unreachable from \"{config.initial}\"")

    return result


def ensure_valid_config(config: StageFlowConfig) -> ValidationResult:
    """Validate and raise ConfigurationError on any error"""
    result = validate_config(config)
    for warning in result.warnings:
        logger.warning(f"[StageFlow] Configuration warning: {warning}")
    if not result.valid:
        messages = [str(e) for e in result.errors]
        raise ConfigurationError(
            f"Invalid stage flow configuration: {'; '.join(messages)}",
            errors=messages
        )
    return result


def _entry_name(item: Any) -> Optional[str]:
    # Plain middleware functions are registered under their __name__
    name = getattr(item, "name", None)
    if not name and callable(item) and not hasattr(item, "execute"):
        name = getattr(item, "__name__", None)
    return name or None


def _check_unique_names(result: ValidationResult, where: str, items: List[Any]) -> None:
    names = [_entry_name(item) for item in items]
    for name, count in Counter(names).items():
        if name is None:
            result.add_error(where, "Every entry must have a name")
        elif count > 1:
            result.add_error(where, f"Duplicate name \"{name}\"", name)


def _reachable(config: StageFlowConfig) -> Set[str]:
    seen: Set[str] = set()
    pending = [config.initial]
    while pending:
        name = pending.pop()
        if name in seen:
            continue
        seen.add(name)
        stage = config.get_stage(name)
        if stage:
            pending.extend(t.target for t in stage.transitions)
    return seen
