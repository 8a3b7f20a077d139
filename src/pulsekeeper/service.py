"""Service wiring: builds the ledger, registry, dispatcher and scheduler.

Nothing here is a singleton; the CLI and HTTP app each construct one
LoopService and hand it what it needs.

Usage:
    config = load_config()
    service = LoopService(config, build_runtime(config))
    await service.run_forever()     # until SIGINT/SIGTERM
"""

import asyncio
import logging
import os
import signal
from pathlib import Path

from pulsekeeper.config import LoopConfig
from pulsekeeper.decisions import DecisionLog
from pulsekeeper.economy.ledger import ResourceLedger
from pulsekeeper.heartbeat.history import EventHistory
from pulsekeeper.heartbeat.scheduler import HeartbeatScheduler
from pulsekeeper.heartbeat.tasks import (
    HeartbeatTask,
    TaskInfo,
    TaskRegistry,
    create_economy_check_task,
    create_process_watch_task,
    create_service_health_task,
    create_thinking_task,
)
from pulsekeeper.heartbeat.wake import WakeDispatcher
from pulsekeeper.messaging import TelegramNotifier
from pulsekeeper.runtime import (
    CommandWakeTrigger,
    FileInbox,
    HostRuntime,
    HttpHealthProbe,
    Pm2ProcessStatus,
)

logger = logging.getLogger(__name__)

PID_FILENAME = "pulsekeeper.pid"


def is_daemon_running(data_dir: Path) -> bool:
    """Is a live service holding the ledger in this data directory?"""
    pid_file = Path(data_dir) / PID_FILENAME
    if not pid_file.exists():
        return False
    try:
        pid = int(pid_file.read_text().strip())
        os.kill(pid, 0)  # Signal 0 = check if process exists
        return True
    except (ValueError, OSError):
        return False


def build_runtime(config: LoopConfig) -> HostRuntime:
    """Default capabilities for running standalone."""
    return HostRuntime(
        inbox=FileInbox(config.data_dir / "inbox.jsonl"),
        wake_trigger=CommandWakeTrigger(config.wake_command) if config.wake_command else None,
        notifier=TelegramNotifier(bot_token=config.telegram_bot_token),
        health_probe=HttpHealthProbe(),
        process_status=Pm2ProcessStatus(),
    )


class LoopService:
    """One daemon instance: ledger + decisions + heartbeat."""

    def __init__(self, config: LoopConfig, runtime: HostRuntime):
        self.config = config
        self.runtime = runtime

        self.ledger = ResourceLedger(config.data_dir, newest_first=config.ledger_newest_first)
        self.decisions = DecisionLog(config.data_dir)
        self.history = EventHistory()
        self.dispatcher = WakeDispatcher(
            runtime,
            self.ledger,
            self.history,
            owner_id=config.owner_chat_id,
            decisions=self.decisions,
        )
        self.registry = TaskRegistry()
        self.scheduler = HeartbeatScheduler(
            self.registry,
            self.ledger,
            self.dispatcher,
            interval_s=config.heartbeat_interval_s,
        )
        self._register_builtin_tasks()

    def _register_builtin_tasks(self) -> None:
        cfg = self.config
        self.registry.register(create_economy_check_task(self.ledger))

        if cfg.think_interval_s > 0:
            self.registry.register(create_thinking_task(
                self.ledger, cfg.think_interval_s, cfg.heartbeat_interval_s))

        if cfg.service_url:
            if self.runtime.health_probe is None:
                logger.warning("service_url set but no health probe available, skipping")
            else:
                self.registry.register(create_service_health_task(
                    self.runtime.health_probe, cfg.service_url, cfg.health_interval_ticks))

        if cfg.process_name:
            if self.runtime.process_status is None:
                logger.warning("process_name set but no process query available, skipping")
            else:
                self.registry.register(create_process_watch_task(
                    self.runtime.process_status, cfg.process_name, cfg.process_interval_ticks))

    # ── Lifecycle ───────────────────────────────────────

    @property
    def pid_file(self) -> Path:
        return self.config.data_dir / PID_FILENAME

    async def start(self) -> None:
        self.ledger.load()
        self.config.data_dir.mkdir(parents=True, exist_ok=True)
        self.pid_file.write_text(str(os.getpid()))
        if not self.config.enabled:
            logger.info("Heartbeat disabled in config, not starting")
            return
        await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        self.ledger.save()
        self.pid_file.unlink(missing_ok=True)
        notifier = self.runtime.notifier
        if isinstance(notifier, TelegramNotifier):
            await notifier.close()

    async def run_forever(self) -> None:
        """Run in the foreground until SIGINT/SIGTERM."""
        shutdown = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, shutdown.set)

        await self.start()
        try:
            await shutdown.wait()
        finally:
            logger.info("Shutting down...")
            await self.stop()

    # ── Tasks ───────────────────────────────────────────

    def register_task(self, task: HeartbeatTask) -> None:
        self.registry.register(task)

    def unregister_task(self, name: str) -> bool:
        return self.registry.unregister(name)

    def list_tasks(self) -> list[TaskInfo]:
        return self.registry.list_tasks()

    # ── Reports ─────────────────────────────────────────

    def status_report(self) -> str:
        state = "running" if self.scheduler.is_running else "stopped"
        return "\n".join([
            self.ledger.status_report(),
            "",
            f"💓 Heartbeat: {state} | tick #{self.scheduler.tick_count} | "
            f"tasks={len(self.registry)}",
        ])

    def ledger_report(self, count: int = 10) -> str:
        return self.ledger.recent_ledger_report(count)
