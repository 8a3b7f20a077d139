"""Pluggable heartbeat checks and the registry that holds them.

A task is a named async check run every ``interval_ticks`` ticks. It must be
lightweight (no LLM calls) and returns a TaskResult saying whether the
agent should be woken.

Built-in tasks:
- economy-check      - survival tier degradation (every tick)
- periodic-thinking  - scheduled self-reflection wake
- service-health     - HTTP probe of a remote service
- process-watch      - process-manager status of a named process
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from pulsekeeper.economy.ledger import ResourceLedger
from pulsekeeper.economy.tiers import SurvivalTier, is_worse
from pulsekeeper.runtime import HealthProbe, ProcessStatusQuery

logger = logging.getLogger(__name__)

HEALTH_PROBE_TIMEOUT_S = 5.0
PROCESS_QUERY_TIMEOUT_S = 10.0


@dataclass
class TaskResult:
    """Outcome of one task run."""
    should_wake: bool = False
    urgent: bool = False
    message: str = ""
    notify_owner: bool = False  # also alert the owner directly


@dataclass
class HeartbeatTask:
    """A named periodic check."""
    name: str
    run: Callable[[], Awaitable[TaskResult]]
    interval_ticks: int = 1
    timeout_s: float = 30.0
    description: str = ""

    def __post_init__(self):
        if self.interval_ticks < 1:
            raise ValueError(f"interval_ticks must be >= 1, got {self.interval_ticks}")
        if self.timeout_s <= 0:
            raise ValueError(f"timeout_s must be positive, got {self.timeout_s}")

    def is_due(self, tick: int) -> bool:
        return tick % self.interval_ticks == 0


@dataclass
class TaskInfo:
    name: str
    interval_ticks: int
    status: str  # "active" or "pending"


class TaskRegistry:
    """Named tasks, with a pending queue for submissions made before activation.

    Usage:
        registry = TaskRegistry()
        registry.register(task)      # queued until activate()
        registry.activate()          # scheduler start flushes the queue
    """

    def __init__(self):
        self._tasks: list[HeartbeatTask] = []
        self._pending: list[HeartbeatTask] = []
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def register(self, task: HeartbeatTask) -> None:
        """Add a task; a task with the same name is replaced (last write wins)."""
        if not self._active:
            idx = _index_of(self._pending, task.name)
            if idx >= 0:
                self._pending[idx] = task
            else:
                self._pending.append(task)
            logger.info(f"Heartbeat not active yet, queuing task \"{task.name}\"")
            return

        idx = _index_of(self._tasks, task.name)
        if idx >= 0:
            logger.warning(f"HeartbeatTask \"{task.name}\" already registered, replacing")
            self._tasks[idx] = task
        else:
            self._tasks.append(task)
            logger.info(
                f"HeartbeatTask registered: \"{task.name}\" (every {task.interval_ticks} ticks)")

    def unregister(self, name: str) -> bool:
        """Remove a task by name. Returns True if something was removed."""
        target = self._tasks if self._active else self._pending
        idx = _index_of(target, name)
        if idx < 0:
            return False
        del target[idx]
        logger.info(f"HeartbeatTask unregistered: \"{name}\"")
        return True

    def activate(self) -> None:
        """Switch to active mode and flush pending submissions in order."""
        if self._active:
            return
        self._active = True
        pending, self._pending = self._pending, []
        for task in pending:
            self.register(task)
        if pending:
            logger.info(f"Registered {len(pending)} pending heartbeat tasks")

    def list_tasks(self) -> list[TaskInfo]:
        if self._active:
            return [TaskInfo(t.name, t.interval_ticks, "active") for t in self._tasks]
        return [TaskInfo(t.name, t.interval_ticks, "pending") for t in self._pending]

    def tasks(self) -> list[HeartbeatTask]:
        """Snapshot of active tasks, safe to iterate while tasks re-register."""
        return list(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks) if self._active else len(self._pending)


def _index_of(tasks: list[HeartbeatTask], name: str) -> int:
    for i, t in enumerate(tasks):
        if t.name == name:
            return i
    return -1


# ── Built-in: Economy Check ─────────────────────────────

def create_economy_check_task(ledger: ResourceLedger) -> HeartbeatTask:
    """Urgent wake (plus owner alert) when the survival tier gets worse."""

    async def run() -> TaskResult:
        ledger.refresh()
        tier = ledger.tier
        previous = ledger.previous_tier
        ledger.acknowledge_tier()

        if tier == previous:
            return TaskResult()
        if is_worse(tier, previous):
            return TaskResult(
                should_wake=True,
                urgent=True,
                notify_owner=True,
                message=(
                    f"⚠️ Survival tier degraded: {previous.value} → {tier.value}, "
                    f"strategy needs adjusting"
                ),
            )
        logger.info(f"Survival tier improved: {previous.value} → {tier.value}")
        return TaskResult()

    return HeartbeatTask(
        name="economy-check",
        run=run,
        interval_ticks=1,
        description="Detect survival tier degradation",
    )


# ── Built-in: Periodic Thinking ─────────────────────────

def create_thinking_task(
    ledger: ResourceLedger,
    think_interval_s: float,
    heartbeat_interval_s: float,
) -> HeartbeatTask:
    """Non-urgent scheduled wake for self-reflection.

    Skipped in danger/hibernate so thinking does not burn scarce tokens.
    """
    interval_ticks = max(1, round(think_interval_s / heartbeat_interval_s))

    async def run() -> TaskResult:
        tier = ledger.tier
        if tier in (SurvivalTier.DANGER, SurvivalTier.HIBERNATE):
            return TaskResult()

        s = ledger.state
        return TaskResult(
            should_wake=True,
            urgent=False,
            message="\n".join([
                "Scheduled reflection: review pending work, evaluate strategy, look for opportunities",
                "",
                "Current resources:",
                f"  Survival tier: {tier.value}",
                f"  Token balance: {s.balance.token_credits:,}",
                f"  Currency balance: ${s.balance.currency:.4f}",
                f"  Spent today: {s.today.tokens_spent:,} tokens ({s.today.calls} calls)",
            ]),
        )

    return HeartbeatTask(
        name="periodic-thinking",
        run=run,
        interval_ticks=interval_ticks,
        description="Periodic self-reflection wake",
    )


# ── Built-in: Service / Process Watch ───────────────────

def _transition_watch(
    name: str,
    label: str,
    probe: Callable[[], Awaitable[bool]],
    interval_ticks: int,
    timeout_s: float,
) -> HeartbeatTask:
    """Wake on healthy <-> unhealthy transitions only; silent while unchanged."""
    state = {"healthy": True}

    async def run() -> TaskResult:
        try:
            healthy = await probe()
        except Exception as e:
            logger.warning(f"{label} check failed: {e}")
            healthy = False

        was_healthy = state["healthy"]
        state["healthy"] = healthy
        if healthy == was_healthy:
            return TaskResult()
        if not healthy:
            return TaskResult(
                should_wake=True,
                urgent=True,
                message=f"🚨 {label} is down",
            )
        return TaskResult(should_wake=True, urgent=False, message=f"✅ {label} recovered")

    return HeartbeatTask(
        name=name,
        run=run,
        interval_ticks=interval_ticks,
        # outer bound on top of the capability's own timeout
        timeout_s=timeout_s + 5.0,
        description=f"Watch {label}",
    )


def create_service_health_task(
    probe: HealthProbe,
    url: str,
    interval_ticks: int = 5,
) -> HeartbeatTask:
    return _transition_watch(
        name="service-health",
        label=f"Service {url}",
        probe=lambda: probe.check(url, HEALTH_PROBE_TIMEOUT_S),
        interval_ticks=interval_ticks,
        timeout_s=HEALTH_PROBE_TIMEOUT_S,
    )


def create_process_watch_task(
    query: ProcessStatusQuery,
    process_name: str,
    interval_ticks: int = 5,
) -> HeartbeatTask:
    return _transition_watch(
        name="process-watch",
        label=f"Process {process_name}",
        probe=lambda: query.is_running(process_name, PROCESS_QUERY_TIMEOUT_S),
        interval_ticks=interval_ticks,
        timeout_s=PROCESS_QUERY_TIMEOUT_S,
    )
