"""Host capabilities the daemon depends on.

Everything that leaves the process goes through one of these interfaces,
so the scheduler and tasks can be driven with fakes in tests:

- AgentInbox           - asynchronous message queue read by the agent
- ImmediateWakeTrigger - bounded command that wakes the agent right now
- DirectNotifier       - owner alert that bypasses the agent
- HealthProbe          - is a remote service answering?
- ProcessStatusQuery   - is a named process running?

Default implementations are provided for running standalone.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


class WakeTriggerError(RuntimeError):
    """The immediate wake command failed or timed out."""


class ProcessQueryError(RuntimeError):
    """The process manager could not be queried."""


# ── Interfaces ──────────────────────────────────────────

class AgentInbox(Protocol):
    async def enqueue_message(self, text: str) -> None: ...


class ImmediateWakeTrigger(Protocol):
    async def trigger(self, text: str, timeout: float) -> None: ...


class DirectNotifier(Protocol):
    async def send(self, recipient: str, text: str) -> bool: ...


class HealthProbe(Protocol):
    async def check(self, url: str, timeout: float) -> bool: ...


class ProcessStatusQuery(Protocol):
    async def is_running(self, name: str, timeout: float) -> bool: ...


@dataclass
class HostRuntime:
    """Bundle of capabilities handed to the service at construction.

    ``wake_trigger`` and ``notifier`` may be None when the host has no such
    channel; urgent wakes then degrade to a plain enqueue.
    """
    inbox: AgentInbox
    wake_trigger: ImmediateWakeTrigger | None = None
    notifier: DirectNotifier | None = None
    health_probe: HealthProbe | None = None
    process_status: ProcessStatusQuery | None = None


# ── Default implementations ─────────────────────────────

class FileInbox:
    """Inbox backed by a JSONL file the agent drains on its own poll cycle."""

    def __init__(self, path: Path):
        self.path = Path(path)

    async def enqueue_message(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps({"timestamp": time.time(), "text": text},
                               ensure_ascii=False) + "\n")


class CommandWakeTrigger:
    """Runs a configured command to wake the agent immediately.

    ``{text}`` in any argument is replaced with the wake message, e.g.
    ["agentctl", "event", "--text", "{text}", "--mode", "now"].
    """

    def __init__(self, argv: list[str]):
        if not argv:
            raise ValueError("wake command must not be empty")
        self.argv = list(argv)

    async def trigger(self, text: str, timeout: float) -> None:
        cmd = [arg.replace("{text}", text) for arg in self.argv]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise WakeTriggerError(f"cannot start {cmd[0]}: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise WakeTriggerError(f"{cmd[0]} timed out after {timeout:.0f}s")

        if proc.returncode != 0:
            raise WakeTriggerError(
                f"{cmd[0]} exited {proc.returncode}: {stderr.decode(errors='replace').strip()}")


class HttpHealthProbe:
    """GETs a URL; any 2xx is healthy, everything else (errors included) is not."""

    async def check(self, url: str, timeout: float) -> bool:
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.get(url)
            return resp.is_success
        except httpx.HTTPError as e:
            logger.debug(f"Health probe {url} failed: {e}")
            return False


class Pm2ProcessStatus:
    """Asks pm2 whether a named process is online."""

    def __init__(self, pm2_bin: str = "pm2"):
        self.pm2_bin = pm2_bin

    async def is_running(self, name: str, timeout: float) -> bool:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.pm2_bin, "jlist",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProcessQueryError(f"cannot start {self.pm2_bin}: {e}") from e

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ProcessQueryError(f"{self.pm2_bin} jlist timed out after {timeout:.0f}s")

        if proc.returncode != 0:
            raise ProcessQueryError(f"{self.pm2_bin} jlist exited {proc.returncode}")

        try:
            processes = json.loads(stdout.decode(errors="replace"))
        except json.JSONDecodeError as e:
            raise ProcessQueryError(f"unparsable pm2 output: {e}") from e

        for p in processes:
            if p.get("name") == name:
                return p.get("pm2_env", {}).get("status") == "online"
        return False
