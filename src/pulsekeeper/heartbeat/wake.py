"""Wake dispatch - asking the agent to resume.

Two levels:
- Normal: enqueue into the agent's inbox; picked up on its next poll
- Urgent: normal enqueue, then an immediate trigger bounded by a timeout

Urgent is strictly additive. If the immediate trigger fails the inbox
message stays queued, so the agent still sees it eventually.

Every wake carries packed context (trigger, resource snapshot, recent
events) so the agent can act without asking follow-up questions.
"""

import asyncio
import logging
import time
from dataclasses import dataclass

from pulsekeeper.decisions import DecisionLog
from pulsekeeper.economy.ledger import ResourceLedger
from pulsekeeper.heartbeat.history import EventHistory, WakeEvent
from pulsekeeper.heartbeat.tasks import TaskResult
from pulsekeeper.runtime import HostRuntime

logger = logging.getLogger(__name__)

WAKE_PREFIX = "[pulsekeeper]"
URGENT_TRIGGER_TIMEOUT_S = 10.0
CONTEXT_EVENT_COUNT = 5


@dataclass
class WakeOutcome:
    """What actually happened on each channel."""
    enqueued: bool = False
    triggered: bool = False
    notified: bool = False


class WakeDispatcher:
    """Packs context and delivers wakes through the host runtime.

    Usage:
        dispatcher = WakeDispatcher(runtime, ledger, history, owner_id="12345")
        await dispatcher.dispatch("economy-check", result)
    """

    def __init__(
        self,
        runtime: HostRuntime,
        ledger: ResourceLedger,
        history: EventHistory,
        owner_id: str = "",
        decisions: DecisionLog | None = None,
        trigger_timeout_s: float = URGENT_TRIGGER_TIMEOUT_S,
    ):
        self.runtime = runtime
        self.ledger = ledger
        self.history = history
        self.owner_id = owner_id
        self.decisions = decisions
        self.trigger_timeout_s = trigger_timeout_s

    async def dispatch(self, task_name: str, result: TaskResult) -> WakeOutcome:
        """Deliver one wake. Never raises for channel failures."""
        text = f"{WAKE_PREFIX} {self.pack_context(task_name, result)}"
        logger.info(
            f"🔔 Wake{' (URGENT)' if result.urgent else ''}: {text.splitlines()[0]}")

        outcome = WakeOutcome()
        outcome.enqueued = await self._enqueue(text)
        if result.urgent:
            outcome.triggered = await self._trigger(text)

        self.history.record(WakeEvent(
            task_name=task_name,
            message=result.message,
            urgent=result.urgent,
        ))

        if result.notify_owner:
            outcome.notified = await self.notify_owner(f"🔴 {result.message}")

        return outcome

    async def _enqueue(self, text: str) -> bool:
        try:
            await self.runtime.inbox.enqueue_message(text)
            return True
        except Exception as e:
            logger.error(f"Wake enqueue failed: {e}")
            return False

    async def _trigger(self, text: str) -> bool:
        trigger = self.runtime.wake_trigger
        if trigger is None:
            logger.warning("No immediate wake trigger available, urgent wake left in inbox")
            return False
        try:
            await asyncio.wait_for(
                trigger.trigger(text, self.trigger_timeout_s),
                timeout=self.trigger_timeout_s,
            )
            return True
        except asyncio.TimeoutError:
            logger.error(
                f"Immediate wake timed out after {self.trigger_timeout_s:.0f}s "
                f"(message stays queued)")
        except Exception as e:
            logger.error(f"Immediate wake failed (message stays queued): {e}")
        return False

    async def notify_owner(self, text: str) -> bool:
        """Best-effort direct alert. Logged on failure, never retried."""
        notifier = self.runtime.notifier
        if notifier is None:
            logger.warning("Cannot notify owner: no notifier available")
            return False
        try:
            sent = await notifier.send(self.owner_id, text)
        except Exception as e:
            logger.error(f"Owner notification failed: {e}")
            return False
        if sent:
            logger.info(f"📱 Notified owner: {text}")
        else:
            logger.warning("Owner notification was not delivered")
        return bool(sent)

    # ── Context Packing ─────────────────────────────────

    def pack_context(self, task_name: str, result: TaskResult) -> str:
        """Trigger reason + resource snapshot + recent event history."""
        s = self.ledger.state
        sections = [
            f"[trigger] {task_name}: {result.message}",
            "\n".join([
                f"[resources] tier={s.balance.tier.value} | "
                f"tokens={s.balance.token_credits:,} | currency=${s.balance.currency:.4f}",
                f"  today: earned +{s.today.tokens_earned:,} spent -{s.today.tokens_spent:,} "
                f"calls {s.today.calls}",
            ]),
        ]

        recent = self.history.recent(CONTEXT_EVENT_COUNT)
        if recent:
            now = time.time()
            lines = []
            for e in recent:
                ago = round((now - e.timestamp) / 60)
                tag = "🔴" if e.urgent else "🔵"
                lines.append(f"  {tag} {ago}m ago [{e.task_name}] {e.message}")
            sections.append("[recent events]\n" + "\n".join(lines))

        if self.decisions is not None:
            try:
                summary = self.decisions.get_summary()
            except Exception as e:
                logger.warning(f"Recent decisions left out of wake context: {e}")
                summary = ""
            if summary:
                sections.append(summary)

        return "\n".join(sections)
