"""
Timer Manager

Provides:
- Timer records for delay transitions of the current stage
- Pause, resume, reset and cancellation
- Timer lifecycle events
- Versioned serialization and validated restore
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import ValidationError

from .clock import Clock, LoopClock, TimerHandle
from .serialization import TIMER_STATE_VERSION, SerializedTimer, TimerStateSnapshot

if TYPE_CHECKING:
    from ..statemachine.stages import StageDefinition
    from ..statemachine.transitions import TransitionDefinition

logger = logging.getLogger(__name__)


class TimerEventType(Enum):
    """Timer lifecycle events"""
    STARTED = "timer:started"
    PAUSED = "timer:paused"
    RESUMED = "timer:resumed"
    RESET = "timer:reset"
    COMPLETED = "timer:completed"
    CANCELLED = "timer:cancelled"
    FAILED = "timer:failed"


@dataclass
class TimerEvent:
    """Notification published to timer listeners"""

    type: TimerEventType
    timer_id: str
    stage: str
    target: str
    timestamp: float  # Clock milliseconds
    remaining_time: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "timer_id": self.timer_id,
            "stage": self.stage,
            "target": self.target,
            "timestamp": self.timestamp,
            "remaining_time": self.remaining_time,
            "error": self.error
        }


@dataclass
class TimerRecord:
    """Scheduling state for one delay transition"""

    id: str
    stage: str
    target: str
    duration: float
    scheduled_time: float
    is_paused: bool = False
    remaining_time: Optional[float] = None  # Only meaningful while paused
    metadata: Dict[str, Any] = field(default_factory=dict)
    generation: int = 0  # Stage entry that armed this timer
    transition: Optional["TransitionDefinition"] = field(default=None, repr=False)
    handle: Optional[TimerHandle] = field(default=None, repr=False)

    def get_remaining(self, now: float) -> float:
        if self.is_paused:
            return self.remaining_time or 0.0
        return max(0.0, self.scheduled_time - now)

    def to_dict(self, now: Optional[float] = None) -> dict:
        return {
            "id": self.id,
            "stage": self.stage,
            "target": self.target,
            "duration": self.duration,
            "scheduled_time": self.scheduled_time,
            "is_paused": self.is_paused,
            "remaining_time": self.get_remaining(now) if now is not None else self.remaining_time,
            "metadata": self.metadata
        }


def _format_ms(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


class TimerManager:
    """
    Schedules delay transitions for the current stage

    Firing hands the record to on_fire, which is expected to request the
    transition through the engine and return False when the record belongs
    to a stage entry that has since ended. Fire coroutines run as tasks
    tracked so callers can wait for them with wait_idle().
    """

    def __init__(
        self,
        stages: Dict[str, "StageDefinition"],
        on_fire: Callable[[TimerRecord], Awaitable[Any]],
        clock: Optional[Clock] = None
    ):
        self.stages = stages
        self.on_fire = on_fire
        self.clock = clock or LoopClock()
        self.timers: Dict[str, TimerRecord] = {}
        self._listeners: List[Callable[[TimerEvent], Any]] = []
        self._tasks: Set[asyncio.Task] = set()
        self.generation = 0

        # Statistics
        self.timers_started = 0
        self.timers_fired = 0
        self.timers_cancelled = 0
        self.timers_failed = 0

    # Scheduling

    def setup_stage_timers(self, stage: str) -> List[TimerRecord]:
        """Create and arm timers for every delay transition of stage"""
        self.clear_stage_timers(stage)
        self.generation += 1
        definition = self.stages.get(stage)
        if not definition:
            return []

        records = []
        for transition in definition.get_delayed_transitions():
            timer_id = self._make_id(stage, transition.target, transition.after)
            record = TimerRecord(
                id=timer_id,
                stage=stage,
                target=transition.target,
                duration=float(transition.after),
                scheduled_time=self.clock.now() + transition.after,
                generation=self.generation,
                transition=transition
            )
            self.timers[timer_id] = record
            self._arm(record, record.duration)
            self.timers_started += 1
            self._emit(TimerEventType.STARTED, record)
            records.append(record)

        if records:
            logger.debug(f"[Timer] Armed {len(records)} timer(s) for stage '{stage}'")
        return records

    def clear_stage_timers(self, stage: str) -> int:
        """Cancel all timers owned by stage"""
        cleared = 0
        for record in [r for r in self.timers.values() if r.stage == stage]:
            self._cancel(record)
            cleared += 1
        return cleared

    def clear_all_timers(self) -> int:
        cleared = 0
        for record in list(self.timers.values()):
            self._cancel(record)
            cleared += 1
        if cleared:
            logger.debug(f"[Timer] Cleared {cleared} timer(s)")
        return cleared

    def cancel_timer(self, timer_id: str) -> bool:
        record = self.timers.get(timer_id)
        if not record:
            return False
        self._cancel(record)
        return True

    def pause_stage_timers(self, stage: str) -> int:
        """Freeze running timers of stage, capturing their remaining time"""
        now = self.clock.now()
        paused = 0
        for record in self._stage_records(stage):
            if record.is_paused:
                continue
            record.remaining_time = max(0.0, record.scheduled_time - now)
            record.is_paused = True
            if record.handle:
                record.handle.cancel()
                record.handle = None
            paused += 1
            self._emit(TimerEventType.PAUSED, record)
        return paused

    def resume_stage_timers(self, stage: str) -> int:
        """Restart paused timers of stage from their remaining time"""
        resumed = 0
        for record in self._stage_records(stage):
            if not record.is_paused:
                continue
            remaining = record.remaining_time or 0.0
            record.is_paused = False
            record.remaining_time = None
            record.scheduled_time = self.clock.now() + remaining
            self._arm(record, remaining)
            resumed += 1
            self._emit(TimerEventType.RESUMED, record)
        return resumed

    def reset_stage_timers(self, stage: str) -> int:
        """Re-arm timers of stage with their original duration"""
        reset = 0
        for record in self._stage_records(stage):
            if record.handle:
                record.handle.cancel()
            record.is_paused = False
            record.remaining_time = None
            record.scheduled_time = self.clock.now() + record.duration
            self._arm(record, record.duration)
            reset += 1
            self._emit(TimerEventType.RESET, record)
        return reset

    # Queries

    def get_active_timers(self) -> List[TimerRecord]:
        return self._sorted(self.timers.values())

    def get_stage_timers(self, stage: str) -> List[TimerRecord]:
        return self._stage_records(stage)

    def get_remaining_time(self, stage: str) -> float:
        """Shortest remaining time among timers of stage, 0 if none"""
        now = self.clock.now()
        records = self._stage_records(stage)
        if not records:
            return 0.0
        return min(r.get_remaining(now) for r in records)

    def are_timers_paused(self, stage: str) -> bool:
        records = self._stage_records(stage)
        return bool(records) and all(r.is_paused for r in records)

    def is_current(self, record: TimerRecord) -> bool:
        """True if record was armed during the latest stage entry"""
        return record.generation == self.generation

    # Events

    def subscribe(self, listener: Callable[[TimerEvent], Any]) -> Callable[[], None]:
        """Register a timer event listener; returns an unsubscribe function"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Serialization

    def serialize(self, stage: Optional[str] = None) -> str:
        """Encode timers (optionally only those of stage) as versioned JSON"""
        now = self.clock.now()
        records = self._stage_records(stage) if stage is not None else self.get_active_timers()
        snapshot = TimerStateSnapshot(
            version=TIMER_STATE_VERSION,
            saved_at=time.time() * 1000,
            timers=[
                SerializedTimer(
                    id=r.id,
                    stage=r.stage,
                    target=r.target,
                    duration=r.duration,
                    remaining_time=r.get_remaining(now),
                    is_paused=r.is_paused,
                    metadata=r.metadata
                )
                for r in records
            ]
        )
        return snapshot.model_dump_json()

    def restore(self, raw: Any, current_stage: str) -> bool:
        """
        Replace the timers of current_stage with a serialized set

        Running timers are shortened by the wall-clock time elapsed since the
        state was saved (never below zero); paused timers keep their
        remaining time.

        Args:
            raw: Output of serialize()
            current_stage: Stage the engine is in; other stages' timers are skipped

        Returns:
            True if restored, False if the input was rejected (nothing changed)
        """
        if not isinstance(raw, (str, bytes)):
            logger.warning(f"[Timer] Rejecting timer state of type {type(raw).__name__}")
            return False

        try:
            snapshot = TimerStateSnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"[Timer] Rejecting malformed timer state: {e.error_count()} error(s)")
            return False

        if snapshot.version != TIMER_STATE_VERSION:
            logger.warning(
                f"[Timer] Rejecting timer state version {snapshot.version}, "
                f"expected {TIMER_STATE_VERSION}"
            )
            return False

        elapsed = max(0.0, time.time() * 1000 - snapshot.saved_at)

        # Validate everything before touching live timers
        restored: List[TimerRecord] = []
        seen: Set[str] = set()
        for item in snapshot.timers:
            if item.id in seen:
                logger.warning(f"[Timer] Rejecting timer state: duplicate id '{item.id}'")
                return False
            seen.add(item.id)

            transition = self._find_transition(item.stage, item.target, item.duration)
            if transition is None:
                logger.warning(
                    f"[Timer] Rejecting timer state: no delay transition "
                    f"'{item.stage}' -> '{item.target}'"
                )
                return False
            if item.stage != current_stage:
                logger.debug(f"[Timer] Skipping timer '{item.id}' of inactive stage '{item.stage}'")
                continue

            remaining = item.remaining_time
            if not item.is_paused:
                remaining = max(0.0, remaining - elapsed)
            restored.append(TimerRecord(
                id=item.id,
                stage=item.stage,
                target=item.target,
                duration=item.duration,
                scheduled_time=self.clock.now() + remaining,
                is_paused=item.is_paused,
                remaining_time=remaining if item.is_paused else None,
                metadata=dict(item.metadata),
                transition=transition
            ))

        self.clear_stage_timers(current_stage)
        self.generation += 1
        for record in restored:
            record.generation = self.generation
            self.timers[record.id] = record
            if not record.is_paused:
                self._arm(record, record.scheduled_time - self.clock.now())
            self._emit(TimerEventType.PAUSED if record.is_paused else TimerEventType.STARTED, record)

        logger.info(f"[Timer] Restored {len(restored)} timer(s) for stage '{current_stage}'")
        return True

    async def wait_idle(self) -> None:
        """Wait until no fire task is running"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def get_statistics(self) -> dict:
        return {
            "active_timers": len(self.timers),
            "paused_timers": sum(1 for r in self.timers.values() if r.is_paused),
            "timers_started": self.timers_started,
            "timers_fired": self.timers_fired,
            "timers_cancelled": self.timers_cancelled,
            "timers_failed": self.timers_failed,
            "listeners": len(self._listeners)
        }

    # Internals

    def _make_id(self, stage: str, target: str, after: float) -> str:
        base = f"{stage}-{target}-{_format_ms(after)}"
        timer_id = base
        suffix = 1
        while timer_id in self.timers:
            suffix += 1
            timer_id = f"{base}#{suffix}"
        return timer_id

    def _find_transition(self, stage: str, target: str, duration: float) -> Optional["TransitionDefinition"]:
        definition = self.stages.get(stage)
        if not definition:
            return None
        candidates = [t for t in definition.get_delayed_transitions() if t.target == target]
        for transition in candidates:
            if float(transition.after) == duration:
                return transition
        return candidates[0] if candidates else None

    def _stage_records(self, stage: str) -> List[TimerRecord]:
        return self._sorted(r for r in self.timers.values() if r.stage == stage)

    @staticmethod
    def _sorted(records) -> List[TimerRecord]:
        return sorted(records, key=lambda r: (r.duration, r.target, r.id))

    def _arm(self, record: TimerRecord, delay: float) -> None:
        timer_id = record.id
        record.handle = self.clock.call_later(delay, lambda: self._fire(timer_id, record))

    def _cancel(self, record: TimerRecord) -> None:
        if record.handle:
            record.handle.cancel()
            record.handle = None
        self.timers.pop(record.id, None)
        self.timers_cancelled += 1
        self._emit(TimerEventType.CANCELLED, record)

    def _fire(self, timer_id: str, record: TimerRecord) -> None:
        # A cancelled or replaced record must not fire
        if self.timers.get(timer_id) is not record or record.is_paused:
            return
        del self.timers[timer_id]
        record.handle = None
        self.timers_fired += 1
        logger.debug(f"[Timer] Timer '{timer_id}' fired: '{record.stage}' -> '{record.target}'")

        task = asyncio.get_running_loop().create_task(self._run_fire(record))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_fire(self, record: TimerRecord) -> None:
        try:
            handled = await self.on_fire(record)
        except Exception as e:
            # No caller to propagate to
            self.timers_failed += 1
            logger.exception(f"[Timer] Transition for timer '{record.id}' failed: {e}")
            self._emit(TimerEventType.FAILED, record, error=str(e))
            return
        if handled is False:
            self._emit(TimerEventType.CANCELLED, record)
            return
        self._emit(TimerEventType.COMPLETED, record)

    def _emit(self, event_type: TimerEventType, record: TimerRecord, error: Optional[str] = None) -> None:
        now = self.clock.now()
        event = TimerEvent(
            type=event_type,
            timer_id=record.id,
            stage=record.stage,
            target=record.target,
            timestamp=now,
            remaining_time=record.get_remaining(now),
            error=error
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"[Timer] Event listener error: {e}")
