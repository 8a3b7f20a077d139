"""Bounded history of recent wake events, used for context packing."""

import time
from collections import deque
from dataclasses import dataclass, field

HISTORY_CAPACITY = 20


@dataclass(frozen=True)
class WakeEvent:
    """A wake that was dispatched to the agent."""
    task_name: str
    message: str
    urgent: bool = False
    timestamp: float = field(default_factory=time.time)


class EventHistory:
    """Fixed-capacity ring buffer; the oldest event is dropped once full."""

    def __init__(self, capacity: int = HISTORY_CAPACITY):
        self._events: deque[WakeEvent] = deque(maxlen=capacity)

    def record(self, event: WakeEvent) -> None:
        self._events.append(event)

    def recent(self, count: int = 5) -> list[WakeEvent]:
        """Most recent ``count`` events, oldest first."""
        if count <= 0:
            return []
        return list(self._events)[-count:]

    def __len__(self) -> int:
        return len(self._events)
