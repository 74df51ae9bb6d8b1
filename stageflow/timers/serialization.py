"""
Timer State Serialization

Versioned JSON encoding of timer records, validated with pydantic.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, Field

TIMER_STATE_VERSION = 1


class SerializedTimer(BaseModel):
    """One timer record as persisted"""
    id: str = Field(..., min_length=1)
    stage: str = Field(..., min_length=1)
    target: str = Field(..., min_length=1)
    duration: float = Field(..., gt=0)
    remaining_time: float = Field(..., ge=0)
    is_paused: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)


class TimerStateSnapshot(BaseModel):
    """Envelope for a set of serialized timers"""
    version: int = TIMER_STATE_VERSION
    saved_at: float = Field(..., ge=0)  # Epoch milliseconds
    timers: List[SerializedTimer] = Field(default_factory=list)
