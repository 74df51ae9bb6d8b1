"""
Testing Utilities

Provides:
- StageFlowTestEngine bound to a virtual clock
- Deterministic time advancement that runs timer-driven transitions
"""

from typing import Optional

from .statemachine.engine import StageFlowEngine
from .statemachine.stages import StageFlowConfig
from .timers.clock import ManualClock


class StageFlowTestEngine(StageFlowEngine):
    """
    Engine whose timers run on virtual time

    advance_time() fires due timers in order and waits for each resulting
    transition before moving on, so chained delay transitions behave as
    they would in real time.
    """

    def __init__(self, config: StageFlowConfig, start_time: float = 0.0):
        self.manual_clock = ManualClock(start_time)
        super().__init__(config, clock=self.manual_clock)

    async def advance_time(self, ms: float) -> None:
        """Move virtual time forward by ms, running due timers"""
        target = self.manual_clock.now() + ms
        while True:
            due = self.manual_clock.next_due()
            if due is None or due > target:
                break
            self.manual_clock.advance_to(due)
            await self.flush()
        self.manual_clock.advance_to(target)
        await self.flush()

    async def flush(self) -> None:
        """Wait for in-flight timer-driven transitions"""
        await self.timers.wait_idle()

    def get_pending_timer_count(self) -> int:
        return self.manual_clock.pending()

    def get_time(self) -> float:
        return self.manual_clock.now()


def create_test_engine(config: StageFlowConfig, start_time: Optional[float] = None) -> StageFlowTestEngine:
    return StageFlowTestEngine(config, start_time=start_time or 0.0)
