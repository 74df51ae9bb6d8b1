"""
Transition middleware

Provides:
- Middleware capability and pipeline
- Built-in middleware catalog
"""

from .pipeline import (
    Middleware,
    MiddlewarePipeline,
    PipelineOutcome,
    PipelineResult,
    as_middleware,
)
from .builtin import (
    logging_middleware,
    validation_middleware,
    timing_middleware,
    rate_limit_middleware,
    conditional_middleware,
    compose_middleware,
    stage_specific_middleware,
    event_specific_middleware,
    retry_middleware,
)

__all__ = [
    # Pipeline
    "Middleware",
    "MiddlewarePipeline",
    "PipelineOutcome",
    "PipelineResult",
    "as_middleware",
    # Built-in
    "logging_middleware",
    "validation_middleware",
    "timing_middleware",
    "rate_limit_middleware",
    "conditional_middleware",
    "compose_middleware",
    "stage_specific_middleware",
    "event_specific_middleware",
    "retry_middleware",
]
