"""
Delay transition timers

Provides:
- Clocks (asyncio loop, virtual)
- Timer manager with pause/resume/reset
- Timer events and versioned serialization
"""

from .clock import (
    Clock,
    LoopClock,
    ManualClock,
    TimerHandle,
)
from .manager import (
    TimerEventType,
    TimerEvent,
    TimerRecord,
    TimerManager,
)
from .serialization import (
    TIMER_STATE_VERSION,
    SerializedTimer,
    TimerStateSnapshot,
)

__all__ = [
    # Clocks
    "Clock",
    "LoopClock",
    "ManualClock",
    "TimerHandle",
    # Manager
    "TimerEventType",
    "TimerEvent",
    "TimerRecord",
    "TimerManager",
    # Serialization
    "TIMER_STATE_VERSION",
    "SerializedTimer",
    "TimerStateSnapshot",
]
