"""Heartbeat: the tick loop, its tasks and wake dispatch.

Exports:
    HeartbeatScheduler - Non-overlapping tick loop
    HeartbeatTask - A named periodic check
    TaskRegistry - Task set with a pre-start pending queue
    WakeDispatcher - Normal/urgent wake delivery with context packing
    EventHistory - Recent wake events
"""

from .history import EventHistory, WakeEvent
from .scheduler import HeartbeatScheduler
from .tasks import HeartbeatTask, TaskInfo, TaskRegistry, TaskResult
from .wake import WakeDispatcher, WakeOutcome

__all__ = [
    "EventHistory",
    "HeartbeatScheduler",
    "HeartbeatTask",
    "TaskInfo",
    "TaskRegistry",
    "TaskResult",
    "WakeDispatcher",
    "WakeEvent",
    "WakeOutcome",
]
