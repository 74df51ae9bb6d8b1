"""
State Store

Provides:
- The single source of truth for one engine (stage, data, flags, history)
- Snapshots used to roll back a failed transition
"""

import copy
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, List, Optional


@dataclass
class HistoryEntry:
    """One committed stage visit"""

    stage: str
    data: Any
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "stage": self.stage,
            "data": self.data,
            "timestamp": self.timestamp.isoformat()
        }


@dataclass
class StageFlowState:
    """Point-in-time copy of the store contents"""

    current: str
    data: Any
    is_transitioning: bool
    history: List[HistoryEntry]

    def to_dict(self) -> dict:
        return {
            "current": self.current,
            "data": self.data,
            "is_transitioning": self.is_transitioning,
            "history": [h.to_dict() for h in self.history]
        }


class StateStore:
    """
    Holds the current stage, its data, the transitioning flag and history

    History is append-only and optionally capped; the oldest entries are
    dropped first once history_limit is reached.
    """

    def __init__(self, initial: str, data: Any = None, history_limit: Optional[int] = None):
        self._initial = initial
        self._initial_data = data
        self.history_limit = history_limit
        self.current = initial
        self.data = copy.deepcopy(data)
        self.is_transitioning = False
        self.history: Deque[HistoryEntry] = deque(maxlen=history_limit)

    def reset(self) -> None:
        """Return to the initial stage and clear history"""
        self.current = self._initial
        self.data = copy.deepcopy(self._initial_data)
        self.is_transitioning = False
        self.history.clear()

    def commit(self, stage: str, data: Any) -> HistoryEntry:
        """Make stage current and record it in history"""
        self.current = stage
        self.data = data
        return self.record()

    def record(self) -> HistoryEntry:
        entry = HistoryEntry(stage=self.current, data=copy.deepcopy(self.data))
        self.history.append(entry)
        return entry

    def set_data(self, data: Any) -> None:
        self.data = data

    def snapshot(self) -> StageFlowState:
        return StageFlowState(
            current=self.current,
            data=self.data,
            is_transitioning=self.is_transitioning,
            history=list(self.history)
        )

    def restore(self, state: StageFlowState) -> None:
        """Put back a snapshot taken with snapshot()"""
        self.current = state.current
        self.data = state.data
        self.history.clear()
        self.history.extend(state.history)

    def get_history(self) -> List[HistoryEntry]:
        return list(self.history)

    def to_dict(self) -> dict:
        return self.snapshot().to_dict()
