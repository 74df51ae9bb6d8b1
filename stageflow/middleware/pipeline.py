"""
Middleware Pipeline

Provides:
- Middleware capability (name + execute(context, next))
- Ordered registry of global middleware
- Sequential pipeline runs with cancel/halt detection
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..errors import MiddlewareError, StageFlowError
from ..statemachine.transitions import TransitionContext
from ..utils import maybe_await

logger = logging.getLogger(__name__)

NextFunction = Callable[[], Awaitable[None]]


class Middleware:
    """
    Named transition interceptor

    Either pass a handler(context, next) or subclass and override execute().
    The handler must await next() to let the transition proceed; returning
    without calling it halts the transition.
    """

    def __init__(self, name: str, handler: Optional[Callable] = None):
        if not name:
            raise MiddlewareError("Middleware name is required")
        self.name = name
        self.handler = handler

    async def execute(self, context: TransitionContext, next: NextFunction) -> None:
        if self.handler is None:
            await next()
            return
        await maybe_await(self.handler(context, next))

    def __repr__(self) -> str:
        return f"Middleware(name={self.name!r})"


def as_middleware(item: Any) -> Any:
    """Normalize a middleware object or plain function"""
    if hasattr(item, "execute") and getattr(item, "name", None):
        return item
    if callable(item):
        return Middleware(getattr(item, "__name__", "middleware"), item)
    raise MiddlewareError(f"Invalid middleware: {item!r}")


class PipelineOutcome(Enum):
    """How a pipeline run ended"""
    COMPLETED = "completed"  # Reached the end; commit may proceed
    CANCELLED = "cancelled"  # A middleware called cancel()
    HALTED = "halted"  # A middleware returned without calling next()


@dataclass
class PipelineResult:
    """Result of one pipeline run"""

    outcome: PipelineOutcome
    context: TransitionContext
    executed: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def completed(self) -> bool:
        return self.outcome == PipelineOutcome.COMPLETED

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "context": self.context.to_dict(),
            "executed": self.executed,
            "duration_ms": self.duration_ms
        }


class MiddlewarePipeline:
    """
    Global middleware registry and pipeline runner

    A run executes transition-scoped middleware first, then global
    middleware, each in declaration order, strictly one at a time.
    """

    def __init__(self, middleware: Optional[List[Any]] = None):
        self._middleware: Dict[str, Any] = {}
        for item in middleware or []:
            self.add(item)

        # Statistics
        self.runs = 0
        self.completed = 0
        self.cancelled = 0
        self.halted = 0
        self.failed = 0

    def add(self, middleware: Any) -> Any:
        """Register global middleware; names must be unique"""
        middleware = as_middleware(middleware)
        if middleware.name in self._middleware:
            raise MiddlewareError(
                f"Middleware \"{middleware.name}\" is already registered",
                context={"middleware": middleware.name}
            )
        self._middleware[middleware.name] = middleware
        logger.debug(f"[Middleware] Added '{middleware.name}'")
        return middleware

    def remove(self, name: str) -> None:
        if name not in self._middleware:
            raise MiddlewareError(
                f"Middleware \"{name}\" is not registered",
                context={"middleware": name}
            )
        del self._middleware[name]
        logger.debug(f"[Middleware] Removed '{name}'")

    def get(self, name: str) -> Optional[Any]:
        return self._middleware.get(name)

    def get_names(self) -> List[str]:
        return list(self._middleware.keys())

    def __len__(self) -> int:
        return len(self._middleware)

    async def run(
        self,
        context: TransitionContext,
        scoped: Optional[List[Any]] = None
    ) -> PipelineResult:
        """Run scoped then global middleware against context"""
        chain = [as_middleware(m) for m in scoped or []] + list(self._middleware.values())
        executed: List[str] = []
        reached_end = False

        async def terminal() -> None:
            nonlocal reached_end
            if not context.cancelled:
                reached_end = True

        # Fold the chain from the end so each step holds its own continuation
        call: NextFunction = terminal
        for middleware in reversed(chain):
            call = self._bind(middleware, context, call, executed)

        self.runs += 1
        started = time.perf_counter()
        try:
            await call()
        except Exception:
            self.failed += 1
            raise

        if context.cancelled:
            outcome = PipelineOutcome.CANCELLED
            self.cancelled += 1
        elif reached_end:
            outcome = PipelineOutcome.COMPLETED
            self.completed += 1
        else:
            outcome = PipelineOutcome.HALTED
            self.halted += 1

        result = PipelineResult(
            outcome=outcome,
            context=context,
            executed=executed,
            duration_ms=(time.perf_counter() - started) * 1000
        )
        if outcome != PipelineOutcome.COMPLETED:
            logger.debug(
                f"[Middleware] Transition '{context.source}' -> '{context.target}' "
                f"{outcome.value} after {executed}"
            )
        return result

    @staticmethod
    def _bind(
        middleware: Any,
        context: TransitionContext,
        downstream: NextFunction,
        executed: List[str]
    ) -> NextFunction:
        async def step() -> None:
            if context.cancelled:
                return
            executed.append(middleware.name)
            previous = context._active_middleware
            context._active_middleware = middleware.name
            try:
                await middleware.execute(context, downstream)
            except StageFlowError:
                raise
            except Exception as e:
                raise MiddlewareError(
                    f"Middleware \"{middleware.name}\" failed: {e}",
                    context={
                        "middleware": middleware.name,
                        "source": context.source,
                        "target": context.target,
                        "event": context.event
                    }
                ) from e
            finally:
                context._active_middleware = previous

        return step

    def get_statistics(self) -> dict:
        return {
            "registered": self.get_names(),
            "runs": self.runs,
            "completed": self.completed,
            "cancelled": self.cancelled,
            "halted": self.halted,
            "failed": self.failed
        }
