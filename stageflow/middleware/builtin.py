"""
Built-in Middleware

Provides:
- Logging, validation and timing middleware
- Rate limiting and retry
- Combinators (conditional, compose, stage/event specific)
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from ..errors import MiddlewareError
from ..statemachine.transitions import TransitionContext
from ..utils import maybe_await
from .pipeline import Middleware, NextFunction, as_middleware

logger = logging.getLogger(__name__)


def logging_middleware(
    level: int = logging.INFO,
    include_data: bool = False,
    log: Optional[logging.Logger] = None,
    name: str = "logging-middleware"
) -> Middleware:
    """Log every transition attempt and whether it was cancelled"""
    log = log or logger

    async def handler(context: TransitionContext, next: NextFunction) -> None:
        message = f"[StageFlow] {context.source} -> {context.target}"
        if context.event:
            message += f" (event: {context.event})"
        if include_data:
            message += f" data={context.data!r}"
        log.log(level, message)
        await next()
        if context.cancelled:
            log.log(level, f"[StageFlow] {context.source} -> {context.target} cancelled")

    return Middleware(name, handler)


def validation_middleware(
    validator: Callable[[TransitionContext], Any],
    error_message: str = "Validation failed",
    name: str = "validation-middleware"
) -> Middleware:
    """Reject the transition with MiddlewareError when validator returns False"""

    async def handler(context: TransitionContext, next: NextFunction) -> None:
        if not await maybe_await(validator(context)):
            raise MiddlewareError(
                error_message,
                context={"middleware": name, "source": context.source, "target": context.target}
            )
        await next()

    return Middleware(name, handler)


def timing_middleware(
    on_complete: Optional[Callable[[float, TransitionContext], Any]] = None,
    log_timing: bool = False,
    threshold_ms: float = 0.0,
    name: str = "timing-middleware"
) -> Middleware:
    """Measure the time spent in the rest of the pipeline"""

    async def handler(context: TransitionContext, next: NextFunction) -> None:
        started = time.perf_counter()
        await next()
        duration = (time.perf_counter() - started) * 1000

        if log_timing and duration >= threshold_ms:
            logger.info(
                f"[StageFlow] Transition {context.source} -> {context.target} took {duration:.2f}ms"
            )
        if on_complete:
            await maybe_await(on_complete(duration, context))

    return Middleware(name, handler)


def rate_limit_middleware(
    max_transitions: int,
    window_ms: float,
    key: Optional[Callable[[TransitionContext], str]] = None,
    now: Optional[Callable[[], float]] = None,
    name: str = "rate-limit-middleware"
) -> Middleware:
    """
    Allow at most max_transitions per key within a fixed window

    Args:
        max_transitions: Transitions allowed per window
        window_ms: Window length in milliseconds
        key: Maps a context to a rate-limit bucket (default: "source-target")
        now: Millisecond clock (default: time.monotonic)
    """
    key = key or (lambda ctx: f"{ctx.source}-{ctx.target}")
    now = now or (lambda: time.monotonic() * 1000)
    windows: Dict[str, Tuple[int, float]] = {}

    async def handler(context: TransitionContext, next: NextFunction) -> None:
        bucket = key(context)
        current = now()
        count, reset_at = windows.get(bucket, (0, 0.0))
        if current >= reset_at:
            count, reset_at = 0, current + window_ms

        if count >= max_transitions:
            raise MiddlewareError(
                f"Rate limit exceeded for transition {context.source} -> {context.target}",
                context={"middleware": name, "bucket": bucket, "limit": max_transitions}
            )

        windows[bucket] = (count + 1, reset_at)
        await next()

    return Middleware(name, handler)


def conditional_middleware(
    predicate: Callable[[TransitionContext], Any],
    middleware: Any,
    name: Optional[str] = None
) -> Middleware:
    """Run middleware only when predicate holds, otherwise pass through"""
    inner = as_middleware(middleware)

    async def handler(context: TransitionContext, next: NextFunction) -> None:
        if await maybe_await(predicate(context)):
            await inner.execute(context, next)
        else:
            await next()

    return Middleware(name or f"conditional-{inner.name}", handler)


def compose_middleware(*middlewares: Any, name: Optional[str] = None) -> Middleware:
    """Combine several middleware into one, preserving their order"""
    chain = [as_middleware(m) for m in middlewares]

    async def handler(context: TransitionContext, next: NextFunction) -> None:
        call = next
        for middleware in reversed(chain):
            call = _continuation(middleware, context, call)
        await call()

    return Middleware(name or "composed-" + "-".join(m.name for m in chain), handler)


def _continuation(middleware: Any, context: TransitionContext, downstream: NextFunction) -> NextFunction:
    async def step() -> None:
        if context.cancelled:
            return
        await middleware.execute(context, downstream)
    return step


def stage_specific_middleware(
    stages: Iterable[str],
    middleware: Any,
    match: str = "source"
) -> Middleware:
    """
    Run middleware only for transitions touching the given stages

    match is "source", "target" or "both" (either end).
    """
    if match not in ("source", "target", "both"):
        raise MiddlewareError(f"Invalid stage match type \"{match}\"")
    stage_set = set(stages)

    def applies(context: TransitionContext) -> bool:
        if match == "source":
            return context.source in stage_set
        if match == "target":
            return context.target in stage_set
        return context.source in stage_set or context.target in stage_set

    inner = as_middleware(middleware)
    return conditional_middleware(applies, inner, name=f"stage-specific-{inner.name}")


def event_specific_middleware(events: Iterable[str], middleware: Any) -> Middleware:
    """Run middleware only for transitions triggered by the given events"""
    event_set = set(events)
    inner = as_middleware(middleware)
    return conditional_middleware(
        lambda context: context.event in event_set,
        inner,
        name=f"event-specific-{inner.name}"
    )


def retry_middleware(
    max_attempts: int = 3,
    delay_ms: float = 0.0,
    backoff: float = 2.0,
    should_retry: Optional[Callable[[BaseException, TransitionContext], bool]] = None,
    name: str = "retry-middleware"
) -> Middleware:
    """
    Re-run the downstream pipeline when it fails

    Place it early so it wraps the middleware that may fail. The last
    error is re-raised once attempts are exhausted.
    """
    if max_attempts < 1:
        raise MiddlewareError("max_attempts must be at least 1")

    async def handler(context: TransitionContext, next: NextFunction) -> None:
        delay = delay_ms
        for attempt in range(1, max_attempts + 1):
            try:
                await next()
                return
            except Exception as e:
                cause = e.__cause__ or e
                if attempt >= max_attempts or (should_retry and not should_retry(cause, context)):
                    raise
                logger.warning(
                    f"[Middleware] Transition {context.source} -> {context.target} failed "
                    f"(attempt {attempt}/{max_attempts}): {cause}"
                )
                if delay > 0:
                    await asyncio.sleep(delay / 1000)
                    delay *= backoff

    return Middleware(name, handler)
