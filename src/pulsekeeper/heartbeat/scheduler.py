"""Heartbeat scheduler - the non-overlapping tick loop.

The loop is self-rescheduling rather than fixed-rate: the next tick is
scheduled only after the current one (every task run, every wake, the
ledger save) has finished. A slow tick delays the schedule; it never
overlaps the next one.

Each tick:
1. Increments the tick counter (first tick is 1)
2. Runs every task with ``tick % interval_ticks == 0``, each bounded by
   its own timeout and isolated from the others
3. Hands wake-worthy results to the WakeDispatcher
4. Persists the ledger (no-op when nothing changed)
5. Logs a status line every 10th tick
"""

import asyncio
import logging

from pulsekeeper.economy.ledger import ResourceLedger
from pulsekeeper.heartbeat.tasks import HeartbeatTask, TaskRegistry
from pulsekeeper.heartbeat.wake import WakeDispatcher

logger = logging.getLogger(__name__)

STATUS_LOG_EVERY = 10


class HeartbeatScheduler:
    """Drives the tick loop.

    Usage:
        scheduler = HeartbeatScheduler(registry, ledger, dispatcher, interval_s=60)
        await scheduler.start()   # first tick runs immediately
        ...
        await scheduler.stop()    # an in-flight tick is allowed to finish
    """

    def __init__(
        self,
        registry: TaskRegistry,
        ledger: ResourceLedger,
        dispatcher: WakeDispatcher,
        interval_s: float = 60.0,
    ):
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {interval_s}")
        self.registry = registry
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.interval_s = interval_s

        self._running = False
        self._ticking = False
        self._tick_count = 0
        self._loop_task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Activate the registry and start ticking. No-op if already running."""
        if self._running:
            return
        self._running = True
        self._stop_event = asyncio.Event()
        self.registry.activate()
        self._loop_task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Heartbeat started ({len(self.registry)} tasks, every {self.interval_s:g}s)")

    async def stop(self) -> None:
        """Cancel the pending schedule and wait for an in-flight tick to finish."""
        if not self._running:
            return
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        logger.info("Heartbeat stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Heartbeat tick error: {e}")

            if not self._running:
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_s)
            except asyncio.TimeoutError:
                pass

    async def tick(self) -> bool:
        """Run one tick. Returns False if a tick was already in progress."""
        if self._ticking:
            logger.warning("Heartbeat tick already in progress, skipping")
            return False

        self._ticking = True
        try:
            self._tick_count += 1
            count = self._tick_count

            for task in self.registry.tasks():
                if task.is_due(count):
                    await self._run_task(task)

            self.ledger.save()

            if count % STATUS_LOG_EVERY == 0:
                logger.info(
                    f"💓 tick #{count} | tier={self.ledger.tier.value} | "
                    f"balance={self.ledger.state.balance.token_credits} | "
                    f"tasks={len(self.registry)}")
        finally:
            self._ticking = False
        return True

    async def _run_task(self, task: HeartbeatTask) -> None:
        try:
            result = await asyncio.wait_for(task.run(), timeout=task.timeout_s)
            if result.should_wake and result.message:
                await self.dispatcher.dispatch(task.name, result)
        except asyncio.TimeoutError:
            logger.error(f"Task \"{task.name}\" timed out after {task.timeout_s:g}s")
        except Exception as e:
            logger.error(f"Task \"{task.name}\" failed: {e}")
