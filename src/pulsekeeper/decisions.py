"""Decision log - what the agent did after being woken.

The agent reports back after acting on a wake; each report is appended
as one JSON line to a per-day file:

    <data_dir>/decisions/2026-10-17.jsonl

JSONL keeps the log append-only and crash-safe: a torn write loses one
line, and readers skip lines that do not parse.
"""

import json
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    NOTIFY = "notify"
    FIX = "fix"
    TRADE = "trade"
    MEMORY = "memory"
    PLAN = "plan"
    SKIP = "skip"
    OTHER = "other"


@dataclass
class DecisionAction:
    """One step the agent took."""
    type: ActionType
    description: str
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "description": self.description,
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "DecisionAction":
        return cls(
            type=ActionType(d.get("type", "other")),
            description=d.get("description", ""),
            success=bool(d.get("success", True)),
        )


@dataclass
class Decision:
    """A self-reported decision. ``id`` and ``timestamp`` are assigned by the log."""
    trigger: str
    reasoning: str
    tier: str
    context: str = ""
    actions: list[DecisionAction] = field(default_factory=list)
    outcome: str | None = None
    tokens_used: int | None = None
    id: str = ""
    timestamp: str = ""

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "trigger": self.trigger,
            "context": self.context,
            "reasoning": self.reasoning,
            "actions": [a.to_dict() for a in self.actions],
            "tier": self.tier,
        }
        if self.outcome is not None:
            d["outcome"] = self.outcome
        if self.tokens_used is not None:
            d["tokens_used"] = self.tokens_used
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Decision":
        """Rebuild a logged decision. Raises on wrongly typed fields."""
        for key in ("id", "timestamp", "trigger"):
            if not isinstance(d.get(key), str):
                raise ValueError(f"decision field {key!r} must be a string")
        if not isinstance(d.get("actions", []), list):
            raise ValueError("decision field 'actions' must be a list")
        return cls(
            id=d["id"],
            timestamp=d["timestamp"],
            trigger=d.get("trigger", ""),
            context=d.get("context", ""),
            reasoning=d.get("reasoning", ""),
            actions=[DecisionAction.from_dict(a) for a in d.get("actions", [])],
            outcome=d.get("outcome"),
            tokens_used=d.get("tokens_used"),
            tier=d.get("tier", ""),
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DecisionLog:
    """Append-only, day-partitioned decision store."""

    def __init__(self, data_dir: Path, clock: Callable[[], datetime] | None = None):
        self.decisions_dir = Path(data_dir) / "decisions"
        self._clock = clock or _utcnow

    def log(self, decision: Decision) -> str:
        """Append a decision and return its generated id.

        Write failures are logged, not raised; the id is returned either way.
        """
        now = self._clock().astimezone(timezone.utc)
        stamp = now.isoformat(timespec="milliseconds")
        decision.id = f"dec_{stamp.replace(':', '-').replace('.', '-')}_{secrets.token_hex(2)}"
        decision.timestamp = stamp

        file_path = self.decisions_dir / f"{now.date().isoformat()}.jsonl"
        try:
            self.decisions_dir.mkdir(parents=True, exist_ok=True)
            with open(file_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(decision.to_dict(), ensure_ascii=False) + "\n")
            logger.info(f"Decision logged: {decision.id} — {decision.trigger[:50]}")
        except OSError as e:
            logger.error(f"Decision log write failed: {e}")

        return decision.id

    def get_recent(self, count: int = 10) -> list[Decision]:
        """Newest decisions first, across day files."""
        if count <= 0 or not self.decisions_dir.is_dir():
            return []

        decisions: list[Decision] = []
        files = sorted(self.decisions_dir.glob("*.jsonl"), reverse=True)
        for file_path in files:
            if len(decisions) >= count:
                break
            try:
                lines = file_path.read_text(encoding="utf-8").splitlines()
            except OSError as e:
                logger.warning(f"Skipping unreadable decision file {file_path}: {e}")
                continue

            for line in reversed(lines):
                if len(decisions) >= count:
                    break
                if not line.strip():
                    continue
                try:
                    decisions.append(Decision.from_dict(json.loads(line)))
                except (ValueError, KeyError, TypeError, AttributeError):
                    continue  # malformed line

        return decisions

    def get_summary(self, count: int = 5) -> str:
        """Compact rendering for wake context packing."""
        decisions = self.get_recent(count)
        if not decisions:
            return ""

        now = time.time()
        lines = []
        for d in decisions:
            ago = _minutes_since(d.timestamp, now)
            actions = "; ".join(
                f"{'✅' if a.success else '❌'} {a.type.value}: {a.description}"
                for a in d.actions
            )
            lines.append(f"  {ago}m ago [{d.trigger[:30]}] → {actions}")
        return "[recent decisions]\n" + "\n".join(lines)

    def get_report(self, count: int = 10) -> str:
        """Operator-facing rendering."""
        decisions = self.get_recent(count)
        if not decisions:
            return "📝 No decisions recorded yet"

        blocks = []
        for d in decisions:
            actions = "\n    ".join(
                f"{'✅' if a.success else '❌'} {a.description}" for a in d.actions
            )
            block = f"🧠 {d.timestamp[5:16]} — {d.trigger}"
            if actions:
                block += f"\n    {actions}"
            if d.outcome:
                block += f"\n    → {d.outcome}"
            blocks.append(block)

        return "\n".join([f"📝 Last {len(decisions)} decisions:", "", *blocks])


def _minutes_since(iso_timestamp: str, now: float) -> int:
    try:
        then = datetime.fromisoformat(iso_timestamp).timestamp()
    except ValueError:
        return 0
    return round((now - then) / 60)
