"""
Stage Flow Engine

Provides:
- Transition resolution for events and direct navigation
- Middleware pipeline, plugin hooks and commit orchestration
- Single-flight transition gate shared with timers
- Subscriber notification and query surface
"""

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from ..errors import ConfigurationError, PluginError, StageFlowError, TransitionError
from ..middleware.pipeline import MiddlewarePipeline
from ..persistence.manager import PersistenceManager
from ..plugins.base import Plugin
from ..plugins.hooks import HookType
from ..plugins.manager import PluginManager, order_plugins
from ..timers.clock import Clock
from ..timers.manager import TimerEvent, TimerManager, TimerRecord
from ..utils import call_maybe_async, maybe_await
from .stages import StageContext, StageDefinition, StageFlowConfig
from .store import HistoryEntry, StageFlowState, StateStore
from .transitions import TransitionContext, TransitionDefinition, evaluate_condition
from .validation import ensure_valid_config

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, Any], Any]


class StageFlowEngine:
    """
    Drives one declarative stage flow

    Transitions, resets and timer firings are serialized through a single
    gate and served in arrival order. A transition requested from inside
    another one by the same task (for example a hook awaiting send())
    raises TransitionError instead of waiting on itself.

    If a stage hook fails after the store was committed, the store is rolled
    back to the pre-transition stage, data and history before the error
    propagates. Timers are only swapped once a transition fully succeeds.
    """

    def __init__(self, config: StageFlowConfig, clock: Optional[Clock] = None):
        ensure_valid_config(config)
        self.config = config
        self._stages: Dict[str, StageDefinition] = {s.name: s for s in config.stages}
        self._stage_names = frozenset(self._stages)

        self.store = StateStore(
            config.initial,
            self._stages[config.initial].data,
            history_limit=config.history_limit
        )
        self.pipeline = MiddlewarePipeline(config.middleware)
        self.plugins = PluginManager(self)
        self.timers = TimerManager(self._stages, self._on_timer_fire, clock=clock)
        self.persistence: Optional[PersistenceManager] = None
        if config.persistence and config.persistence.enabled:
            self.persistence = PersistenceManager.from_config(config.persistence)

        try:
            for plugin in order_plugins(list(config.plugins)):
                self.plugins.register(plugin)
        except PluginError as e:
            raise ConfigurationError(f"Invalid plugin configuration: {e.message}", errors=[e.message]) from e

        self._subscribers: List[Subscriber] = []
        self._gate = asyncio.Lock()
        self._gate_owner: Optional[asyncio.Task] = None
        self._started = False

        # Statistics
        self.transitions_committed = 0
        self.transitions_cancelled = 0
        self.transitions_failed = 0
        self.events_unmatched = 0

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def is_transitioning(self) -> bool:
        return self.store.is_transitioning

    @property
    def clock(self) -> Clock:
        return self.timers.clock

    # Lifecycle

    async def start(self) -> None:
        """Enter the initial (or restored) stage and arm its timers"""
        async with self._transition_gate("start the engine"):
            if self._started:
                logger.debug("[StageFlow] start() ignored, engine already started")
                return

            self.store.reset()
            snapshot = self.persistence.load() if self.persistence else None
            if snapshot and snapshot.stage in self._stages:
                self.store.current = snapshot.stage
                self.store.data = snapshot.data
                logger.info(f"[StageFlow] Resuming persisted stage '{snapshot.stage}'")
            self.store.record()

            self._started = True
            try:
                await self.plugins.activate_all()
                await self._enter_stage(self._stage_context(self.store.current, self.store.data))
            except Exception:
                self._started = False
                raise

            self.timers.setup_stage_timers(self.store.current)
            logger.info(f"[StageFlow] Engine started in stage '{self.store.current}'")
            await self._notify_subscribers()

    async def stop(self) -> None:
        """Clear timers, run exit and uninstall hooks, deactivate"""
        async with self._transition_gate("stop the engine"):
            if not self._started:
                return

            self.timers.clear_all_timers()
            self._started = False
            try:
                await self._exit_stage(self._stage_context(self.store.current, self.store.data))
            finally:
                await self.plugins.deactivate_all()
            logger.info(f"[StageFlow] Engine stopped in stage '{self.store.current}'")

    async def reset(self) -> None:
        """Return to the initial stage with a fresh history"""
        was_started = self._started
        await self.stop()
        if self.persistence:
            self.persistence.clear()
        self.store.reset()
        if was_started:
            await self.start()

    # Transitions

    async def send(self, event: str, data: Any = None) -> bool:
        """
        Trigger the first matching transition of the current stage for event

        Returns:
            True if a transition was committed. An unmatched event or a
            cancelled/halted transition returns False without error.
        """
        async with self._transition_gate(f"send '{event}'"):
            self._require_started("send")
            stage = self._stages[self.store.current]

            for transition in stage.get_event_transitions(event):
                if await self._check_condition(transition):
                    return await self._execute(
                        transition.target, event, data, transition.middleware
                    )

            self.events_unmatched += 1
            logger.debug(f"[StageFlow] No transition for '{event}' from '{self.store.current}'")
            return False

    async def go_to(self, stage: str, data: Any = None) -> bool:
        """Transition directly to stage, still through middleware and hooks"""
        async with self._transition_gate(f"go to '{stage}'"):
            self._require_started("go_to")
            if stage not in self._stages:
                raise TransitionError(
                    f"Cannot go to unknown stage \"{stage}\"",
                    context={"source": self.store.current, "target": stage}
                )

            declared = self._stages[self.store.current].find_transition_to(stage)
            if declared:
                return await self._execute(stage, declared.event, data, declared.middleware)
            return await self._execute(stage, f"direct-to-{stage}", data, [])

    async def _on_timer_fire(self, record: TimerRecord) -> bool:
        """Run the delay transition of record; False if the fire was stale"""
        async with self._transition_gate(f"fire timer '{record.id}'"):
            # The stage may have been left and re-entered while this fire waited
            if not self._started or self.store.current != record.stage or not self.timers.is_current(record):
                logger.debug(f"[StageFlow] Dropping timer '{record.id}', its stage entry has ended")
                return False

            transition = record.transition
            if transition is not None and not await self._check_condition(transition):
                logger.debug(f"[StageFlow] Timer '{record.id}' condition not met")
                return True
            await self._execute(
                record.target,
                transition.event if transition else None,
                None,
                transition.middleware if transition else []
            )
            return True

    async def _execute(
        self,
        target: str,
        event: Optional[str],
        data: Any,
        scoped_middleware: List[Any]
    ) -> bool:
        source = self.store.current
        context = TransitionContext(
            source=source,
            target=target,
            event=event,
            data=data,
            stage_names=self._stage_names
        )
        snapshot = self.store.snapshot()
        committed = False

        self.store.is_transitioning = True
        try:
            result = await self.pipeline.run(context, scoped_middleware)
            if not result.completed:
                self.transitions_cancelled += 1
                return False

            await self.plugins.run_hook(HookType.BEFORE_TRANSITION, context)
            if context.cancelled:
                self.transitions_cancelled += 1
                return False

            await self._exit_stage(self._stage_context(source, snapshot.data))

            target_stage = self._stages[context.target]
            new_data = context.data if context.data is not None else copy.deepcopy(target_stage.data)
            self.store.commit(context.target, new_data)
            committed = True

            await self._enter_stage(self._stage_context(context.target, new_data))
            await self.plugins.run_hook(HookType.AFTER_TRANSITION, context)
        except Exception as e:
            self.transitions_failed += 1
            if committed:
                self.store.restore(snapshot)
                logger.warning(
                    f"[StageFlow] Rolled back '{source}' -> '{context.target}' after hook failure: {e}"
                )
            raise
        finally:
            self.store.is_transitioning = False

        self.transitions_committed += 1
        self.timers.clear_stage_timers(source)
        self.timers.setup_stage_timers(context.target)
        logger.info(
            f"[StageFlow] {source} -> {context.target}"
            + (f" (event: {event})" if event else "")
        )
        self._persist()
        await self._notify_subscribers()
        return True

    async def _check_condition(self, transition: TransitionDefinition) -> bool:
        try:
            return await evaluate_condition(
                transition.condition,
                self._stage_context(self.store.current, self.store.data)
            )
        except StageFlowError:
            raise
        except Exception as e:
            raise TransitionError(
                f"Condition for '{self.store.current}' -> '{transition.target}' failed: {e}",
                context={"source": self.store.current, "target": transition.target, "event": transition.event}
            ) from e

    async def _enter_stage(self, context: StageContext) -> None:
        await self.plugins.run_hook(HookType.ON_STAGE_ENTER, context)
        await self._run_stage_callback(self._stages[context.current].on_enter, "on_enter", context)

    async def _exit_stage(self, context: StageContext) -> None:
        await self.plugins.run_hook(HookType.ON_STAGE_EXIT, context)
        await self._run_stage_callback(self._stages[context.current].on_exit, "on_exit", context)

    @staticmethod
    async def _run_stage_callback(callback: Optional[Callable], name: str, context: StageContext) -> None:
        if callback is None:
            return
        try:
            await call_maybe_async(callback, context)
        except StageFlowError:
            raise
        except Exception as e:
            raise TransitionError(
                f"Stage \"{context.current}\" {name} failed: {e}",
                context={"stage": context.current, "hook": name}
            ) from e

    @asynccontextmanager
    async def _transition_gate(self, operation: str) -> AsyncIterator[None]:
        task = asyncio.current_task()
        if task is not None and self._gate_owner is task:
            raise TransitionError(
                f"Cannot {operation} from inside an in-flight transition",
                context={"current": self.store.current}
            )
        async with self._gate:
            self._gate_owner = task
            try:
                yield
            finally:
                self._gate_owner = None

    def _require_started(self, operation: str) -> None:
        if not self._started:
            raise TransitionError(
                f"Engine must be started before calling {operation}()",
                context={"current": self.store.current}
            )

    def _stage_context(self, stage: str, data: Any) -> StageContext:
        return StageContext(current=stage, data=data, send=self.send, go_to=self.go_to)

    # Subscribers

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register callback(stage, data); returns an unsubscribe function"""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def _notify_subscribers(self) -> None:
        stage, data = self.store.current, self.store.data
        for callback in list(self._subscribers):
            try:
                await maybe_await(callback(stage, data))
            except Exception as e:
                logger.error(f"[StageFlow] Subscriber error: {e}")

    def _persist(self) -> None:
        if not self.persistence:
            return
        try:
            self.persistence.save(self.store.current, self.store.data)
        except Exception as e:
            logger.error(f"[StageFlow] Failed to persist stage '{self.store.current}': {e}")

    # Data

    async def set_stage_data(self, data: Any) -> None:
        """
        Replace the current data without a transition; subscribers are notified

        Waits for any in-flight transition so the write is applied on top of
        its outcome instead of being overwritten by its commit or rollback.
        """
        async with self._transition_gate("set stage data"):
            self.store.set_data(data)
            self._persist()
            await self._notify_subscribers()

    # Queries

    def get_current_stage(self) -> str:
        return self.store.current

    def get_current_data(self) -> Any:
        return self.store.data

    def get_current_stage_effect(self) -> Any:
        return self._stages[self.store.current].effect

    def get_stage_effect(self, stage: str) -> Any:
        definition = self._stages.get(stage)
        return definition.effect if definition else None

    def get_stage_names(self) -> List[str]:
        return list(self._stages)

    def get_history(self) -> List[HistoryEntry]:
        return self.store.get_history()

    def get_state(self) -> StageFlowState:
        return self.store.snapshot()

    # Plugins

    async def install_plugin(self, plugin: Plugin) -> None:
        await self.plugins.install(plugin, activate=self._started)

    async def uninstall_plugin(self, name: str) -> None:
        await self.plugins.uninstall(name)

    def get_installed_plugins(self) -> List[str]:
        return self.plugins.get_names()

    def get_plugin(self, name: str) -> Optional[Plugin]:
        return self.plugins.get_plugin(name)

    def get_plugin_state(self, name: str) -> Dict[str, Any]:
        return self.plugins.get_state(name)

    def set_plugin_state(self, name: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        return self.plugins.set_state(name, updates)

    # Middleware

    def add_middleware(self, middleware: Any) -> None:
        self.pipeline.add(middleware)

    def remove_middleware(self, name: str) -> None:
        self.pipeline.remove(name)

    def get_middleware(self) -> List[str]:
        return self.pipeline.get_names()

    # Timers

    def pause_timers(self) -> int:
        return self.timers.pause_stage_timers(self.store.current)

    def resume_timers(self) -> int:
        return self.timers.resume_stage_timers(self.store.current)

    def reset_timers(self) -> int:
        return self.timers.reset_stage_timers(self.store.current)

    def cancel_timer(self, timer_id: str) -> bool:
        return self.timers.cancel_timer(timer_id)

    def get_active_timers(self) -> List[TimerRecord]:
        return self.timers.get_active_timers()

    def get_stage_timers(self, stage: str) -> List[TimerRecord]:
        return self.timers.get_stage_timers(stage)

    def get_timer_remaining_time(self) -> float:
        return self.timers.get_remaining_time(self.store.current)

    def are_timers_paused(self) -> bool:
        return self.timers.are_timers_paused(self.store.current)

    def serialize_timer_state(self) -> str:
        return self.timers.serialize(self.store.current)

    def restore_timer_state(self, serialized: Any) -> bool:
        return self.timers.restore(serialized, self.store.current)

    def subscribe_to_timer_events(self, listener: Callable[[TimerEvent], Any]) -> Callable[[], None]:
        return self.timers.subscribe(listener)

    def get_statistics(self) -> dict:
        return {
            "started": self._started,
            "current_stage": self.store.current,
            "history_length": len(self.store.history),
            "subscribers": len(self._subscribers),
            "transitions_committed": self.transitions_committed,
            "transitions_cancelled": self.transitions_cancelled,
            "transitions_failed": self.transitions_failed,
            "events_unmatched": self.events_unmatched,
            "middleware": self.pipeline.get_statistics(),
            "plugins": self.plugins.get_statistics(),
            "timers": self.timers.get_statistics(),
            "persistence": self.persistence.get_statistics() if self.persistence else None
        }
