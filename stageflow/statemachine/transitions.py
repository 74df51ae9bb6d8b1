"""
Transition Definitions

Provides:
- Transition definitions declared on stages
- Condition capability objects (field, callable, composite)
- Transition context passed through the middleware pipeline
"""

import operator
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from ..errors import MiddlewareError, TransitionError
from ..utils import maybe_await


class ConditionOperator(Enum):
    """Condition operators"""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_EQUAL = "greater_equal"
    LESS_EQUAL = "less_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    IN = "in"
    NOT_IN = "not_in"
    MATCHES = "matches"  # Regex


class ConditionLogic(Enum):
    """How composite conditions combine their members"""
    ALL = "all"
    ANY = "any"
    NONE = "none"


def _lookup(data: Any, path: str) -> Any:
    """Resolve a dotted path against dicts and plain objects"""
    value = data
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    return value


def _present(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    """Comparison that is False whenever the field is missing"""
    return lambda actual, expected: actual is not None and compare(actual, expected)


def _membership(actual: Any, expected: Any) -> bool:
    return isinstance(expected, (list, tuple, set, frozenset)) and actual in expected


_OPERATORS: Dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.EQUALS: operator.eq,
    ConditionOperator.NOT_EQUALS: operator.ne,
    ConditionOperator.GREATER_THAN: _present(operator.gt),
    ConditionOperator.LESS_THAN: _present(operator.lt),
    ConditionOperator.GREATER_EQUAL: _present(operator.ge),
    ConditionOperator.LESS_EQUAL: _present(operator.le),
    ConditionOperator.CONTAINS: _present(lambda actual, expected: expected in actual),
    ConditionOperator.NOT_CONTAINS: lambda actual, expected: actual is None or expected not in actual,
    ConditionOperator.STARTS_WITH: _present(lambda actual, expected: str(actual).startswith(str(expected))),
    ConditionOperator.ENDS_WITH: _present(lambda actual, expected: str(actual).endswith(str(expected))),
    ConditionOperator.IS_NULL: lambda actual, _: actual is None,
    ConditionOperator.IS_NOT_NULL: lambda actual, _: actual is not None,
    ConditionOperator.IN: _membership,
    ConditionOperator.NOT_IN: lambda actual, expected: not _membership(actual, expected),
    ConditionOperator.MATCHES: _present(lambda actual, expected: re.match(str(expected), str(actual)) is not None),
}


@dataclass
class FieldCondition:
    """Declarative condition over a field of the current stage data"""

    field: str  # Dotted path into the stage data
    operator: ConditionOperator
    value: Any = None
    negate: bool = False
    description: str = ""

    def evaluate(self, context: Any) -> bool:
        """Evaluate condition against the stage context"""
        actual = _lookup(getattr(context, "data", context), self.field)
        result = bool(_OPERATORS[self.operator](actual, self.value))
        return result != self.negate

    def to_dict(self) -> dict:
        return {
            "type": "field",
            "field": self.field,
            "operator": self.operator.value,
            "value": self.value,
            "negate": self.negate,
            "description": self.description
        }


class CallableCondition:
    """Wraps a plain (sync or async) predicate taking the stage context"""

    def __init__(self, predicate: Callable[[Any], Any], name: Optional[str] = None):
        if not callable(predicate):
            raise TypeError(f"Condition predicate must be callable, got {type(predicate).__name__}")
        self.predicate = predicate
        self.name = name or getattr(predicate, "__name__", "condition")

    def evaluate(self, context: Any) -> Any:
        return self.predicate(context)

    def to_dict(self) -> dict:
        return {"type": "callable", "name": self.name}


class CompositeCondition:
    """Combines several conditions with all/any/none logic"""

    def __init__(self, logic: ConditionLogic, conditions: List[Any]):
        self.logic = logic
        self.conditions = [as_condition(c) for c in conditions]

    async def evaluate(self, context: Any) -> bool:
        # Short-circuits in declaration order
        for condition in self.conditions:
            result = bool(await maybe_await(condition.evaluate(context)))
            if self.logic == ConditionLogic.ALL and not result:
                return False
            if self.logic == ConditionLogic.ANY and result:
                return True
            if self.logic == ConditionLogic.NONE and result:
                return False
        return self.logic != ConditionLogic.ANY

    def to_dict(self) -> dict:
        return {
            "type": self.logic.value,
            "conditions": [
                c.to_dict() if hasattr(c, "to_dict") else repr(c)
                for c in self.conditions
            ]
        }


def all_of(*conditions: Any) -> CompositeCondition:
    return CompositeCondition(ConditionLogic.ALL, list(conditions))


def any_of(*conditions: Any) -> CompositeCondition:
    return CompositeCondition(ConditionLogic.ANY, list(conditions))


def none_of(*conditions: Any) -> CompositeCondition:
    return CompositeCondition(ConditionLogic.NONE, list(conditions))


def as_condition(condition: Any) -> Any:
    """Normalize a condition to an object exposing evaluate(context)"""
    if hasattr(condition, "evaluate"):
        return condition
    if callable(condition):
        return CallableCondition(condition)
    raise TypeError(
        f"Condition must be callable or expose evaluate(), got {type(condition).__name__}"
    )


async def evaluate_condition(condition: Any, context: Any) -> bool:
    """Evaluate an optional condition; absent conditions pass"""
    if condition is None:
        return True
    return bool(await maybe_await(as_condition(condition).evaluate(context)))


@dataclass
class TransitionDefinition:
    """A rule moving the owning stage to target"""

    target: str
    event: Optional[str] = None
    condition: Optional[Any] = None
    after: Optional[float] = None  # Delay in milliseconds
    middleware: List[Any] = field(default_factory=list)

    @property
    def is_delayed(self) -> bool:
        return self.after is not None

    def matches(self, event: str) -> bool:
        return self.event is not None and self.event == event

    def to_dict(self) -> dict:
        condition = None
        if self.condition is not None:
            condition = self.condition.to_dict() if hasattr(self.condition, "to_dict") else "callable"
        return {
            "target": self.target,
            "event": self.event,
            "condition": condition,
            "after": self.after,
            "middleware": [getattr(m, "name", repr(m)) for m in self.middleware]
        }


class TransitionContext:
    """
    Mutable proposal for one transition attempt

    Middleware may cancel() the transition or modify() its target and data.
    Once cancelled the context is terminal. Cancelling in the same
    middleware invocation that already modified the context is rejected.
    """

    def __init__(
        self,
        source: str,
        target: str,
        event: Optional[str] = None,
        data: Any = None,
        stage_names: Optional[FrozenSet[str]] = None,
        timestamp: Optional[datetime] = None
    ):
        self.source = source
        self.target = target
        self.event = event
        self.data = data
        self.timestamp = timestamp or datetime.now()
        self.cancelled = False
        self.metadata: Dict[str, Any] = {}
        self._stage_names = stage_names
        self._active_middleware: Optional[str] = None
        self._modified_by: Optional[str] = None

    @property
    def active_middleware(self) -> Optional[str]:
        return self._active_middleware

    def cancel(self) -> None:
        """Abort the transition; nothing will be committed"""
        if self._modified_by is not None and self._modified_by == self._active_middleware:
            raise MiddlewareError(
                f"Middleware \"{self._active_middleware}\" cannot cancel a transition it modified",
                context={"source": self.source, "target": self.target}
            )
        self.cancelled = True

    def modify(self, to: Optional[str] = None, data: Any = None) -> None:
        """Rewrite target stage and/or data for the rest of the pipeline"""
        if self.cancelled:
            raise MiddlewareError(
                "Cannot modify a cancelled transition",
                context={
                    "source": self.source,
                    "target": self.target,
                    "middleware": self._active_middleware
                }
            )
        if to is not None:
            if self._stage_names is not None and to not in self._stage_names:
                raise TransitionError(
                    f"Cannot redirect transition to unknown stage \"{to}\"",
                    context={"source": self.source, "target": to}
                )
            self.target = to
        if data is not None:
            self.data = data
        self._modified_by = self._active_middleware

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "target": self.target,
            "event": self.event,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "cancelled": self.cancelled
        }

    def __repr__(self) -> str:
        return (
            f"TransitionContext(source={self.source!r}, target={self.target!r}, "
            f"event={self.event!r}, cancelled={self.cancelled})"
        )
