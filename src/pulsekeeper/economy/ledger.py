"""Resource ledger - balances, lifetime and daily statistics, transaction history.

The ledger is the single owner of the resource state. Everything else reads
it; only ``record_income`` / ``record_expense`` mutate balances.

Persistence:
- One JSON document (``economy.json``) holding the full state
- Saved only when dirty, replaced wholesale (temp file + os.replace)
- Any read/parse failure on load falls back to the default state

Invariant: for each unit, ``balance == lifetime_earned - lifetime_spent``.
"""

import json
import logging
import math
import os
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from pulsekeeper.economy.tiers import SurvivalTier, TierThresholds, classify

logger = logging.getLogger(__name__)

STATE_VERSION = 1
HISTORY_CAP = 500
# Expenses at or below this many tokens (with no currency) are not written
# to the history; they still move balances and counters.
EXPENSE_NOISE_FLOOR = 1000

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def _base36(n: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = digits[r] + out
    return out or "0"


class EntryKind(str, Enum):
    """Transaction categories."""
    OWNER_REWARD = "owner_reward"
    SERVICE_REVENUE = "service_revenue"
    LLM_INFERENCE = "llm_inference"
    SERVICE_PAYMENT = "service_payment"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class Direction(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class Unit(str, Enum):
    TOKEN = "token"
    CURRENCY = "currency"


@dataclass(frozen=True)
class LedgerEntry:
    """One immutable transaction record."""
    id: str
    timestamp: str
    kind: EntryKind
    direction: Direction
    amount: float
    unit: Unit
    description: str
    meta: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "kind": self.kind.value,
            "direction": self.direction.value,
            "amount": self.amount,
            "unit": self.unit.value,
            "description": self.description,
        }
        if self.meta:
            d["meta"] = self.meta
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "LedgerEntry":
        return cls(
            id=d["id"],
            timestamp=d["timestamp"],
            kind=EntryKind(d["kind"]),
            direction=Direction(d["direction"]),
            amount=d["amount"],
            unit=Unit(d["unit"]),
            description=d.get("description", ""),
            meta=d.get("meta"),
        )


@dataclass
class Balance:
    token_credits: int = 0
    currency: float = 0.0
    tier: SurvivalTier = SurvivalTier.HIBERNATE
    previous_tier: SurvivalTier = SurvivalTier.HIBERNATE


@dataclass
class LifetimeTotals:
    tokens_earned: int = 0
    tokens_spent: int = 0
    currency_earned: float = 0.0
    currency_spent: float = 0.0


@dataclass
class DailyStats:
    date: str = ""
    tokens_earned: int = 0
    tokens_spent: int = 0
    currency_earned: float = 0.0
    currency_spent: float = 0.0
    calls: int = 0


@dataclass
class SpendLimits:
    """Currency caps for outgoing payments."""
    max_single_currency: float = 0.01
    max_daily_currency: float = 0.10


@dataclass
class LedgerConfig:
    thresholds: TierThresholds = field(default_factory=TierThresholds)
    spend_limits: SpendLimits = field(default_factory=SpendLimits)


@dataclass
class ResourceState:
    """The persisted ledger snapshot."""
    version: int = STATE_VERSION
    last_updated: str = ""
    balance: Balance = field(default_factory=Balance)
    totals: LifetimeTotals = field(default_factory=LifetimeTotals)
    today: DailyStats = field(default_factory=DailyStats)
    history: list[LedgerEntry] = field(default_factory=list)
    config: LedgerConfig = field(default_factory=LedgerConfig)

    @classmethod
    def default(cls, now: datetime) -> "ResourceState":
        """Documented initial state: zero balances, hibernate tier, empty history."""
        return cls(
            last_updated=_iso(now),
            today=DailyStats(date=now.astimezone(timezone.utc).date().isoformat()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "last_updated": self.last_updated,
            "balance": {
                "token_credits": self.balance.token_credits,
                "currency": self.balance.currency,
                "tier": self.balance.tier.value,
                "previous_tier": self.balance.previous_tier.value,
            },
            "totals": {
                "tokens_earned": self.totals.tokens_earned,
                "tokens_spent": self.totals.tokens_spent,
                "currency_earned": self.totals.currency_earned,
                "currency_spent": self.totals.currency_spent,
            },
            "today": {
                "date": self.today.date,
                "tokens_earned": self.today.tokens_earned,
                "tokens_spent": self.today.tokens_spent,
                "currency_earned": self.today.currency_earned,
                "currency_spent": self.today.currency_spent,
                "calls": self.today.calls,
            },
            "history": [e.to_dict() for e in self.history],
            "config": {
                "thresholds": self.config.thresholds.to_dict(),
                "spend_limits": {
                    "max_single_currency": self.config.spend_limits.max_single_currency,
                    "max_daily_currency": self.config.spend_limits.max_daily_currency,
                },
            },
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ResourceState":
        """Rebuild a state document. Raises on anything inconsistent."""
        bal = d["balance"]
        tot = d["totals"]
        day = d["today"]
        cfg = d.get("config", {})
        limits = cfg.get("spend_limits", {})

        state = cls(
            version=d.get("version", STATE_VERSION),
            last_updated=d.get("last_updated", ""),
            balance=Balance(
                token_credits=int(bal["token_credits"]),
                currency=float(bal["currency"]),
                tier=SurvivalTier(bal.get("tier", SurvivalTier.HIBERNATE.value)),
                previous_tier=SurvivalTier(
                    bal.get("previous_tier", SurvivalTier.HIBERNATE.value)),
            ),
            totals=LifetimeTotals(
                tokens_earned=int(tot["tokens_earned"]),
                tokens_spent=int(tot["tokens_spent"]),
                currency_earned=float(tot["currency_earned"]),
                currency_spent=float(tot["currency_spent"]),
            ),
            today=DailyStats(
                date=str(day["date"]),
                tokens_earned=int(day.get("tokens_earned", 0)),
                tokens_spent=int(day.get("tokens_spent", 0)),
                currency_earned=float(day.get("currency_earned", 0.0)),
                currency_spent=float(day.get("currency_spent", 0.0)),
                calls=int(day.get("calls", 0)),
            ),
            history=[LedgerEntry.from_dict(e) for e in d.get("history", [])][-HISTORY_CAP:],
            config=LedgerConfig(
                thresholds=TierThresholds.from_dict(cfg.get("thresholds", {})),
                spend_limits=SpendLimits(
                    max_single_currency=float(limits.get("max_single_currency", 0.01)),
                    max_daily_currency=float(limits.get("max_daily_currency", 0.10)),
                ),
            ),
        )

        if state.balance.token_credits != state.totals.tokens_earned - state.totals.tokens_spent:
            raise ValueError("token balance does not match lifetime totals")
        expected_currency = state.totals.currency_earned - state.totals.currency_spent
        if not math.isclose(state.balance.currency, expected_currency, abs_tol=1e-9):
            raise ValueError("currency balance does not match lifetime totals")
        return state


class ResourceLedger:
    """Durable accounting of token credits and currency.

    Usage:
        ledger = ResourceLedger(data_dir=Path("~/.pulsekeeper/data").expanduser())
        ledger.load()
        ledger.record_income(EntryKind.OWNER_REWARD, tokens=50_000, description="report")
        ledger.record_expense(EntryKind.LLM_INFERENCE, tokens=1_200)
        ledger.save()
    """

    def __init__(
        self,
        data_dir: Path,
        clock: Clock | None = None,
        newest_first: bool = False,
    ):
        self.data_dir = Path(data_dir)
        self.file_path = self.data_dir / "economy.json"
        self.newest_first = newest_first
        self._clock = clock or _utcnow
        self.state = ResourceState.default(self._clock())
        self.dirty = False

    # ── Persistence ─────────────────────────────────────

    def load(self) -> None:
        """Load the persisted state, falling back to defaults on any failure."""
        try:
            raw = self.file_path.read_text(encoding="utf-8")
            self.state = ResourceState.from_dict(json.loads(raw))
            self.state.balance.tier = classify(
                self.state.balance.token_credits, self.state.config.thresholds)
            logger.info(
                f"Ledger loaded: {self.state.balance.token_credits} tokens, "
                f"tier={self.state.balance.tier.value}")
        except FileNotFoundError:
            logger.info("No existing ledger state, starting fresh")
            self.state = ResourceState.default(self._clock())
        except Exception as e:
            logger.warning(f"Unreadable ledger state at {self.file_path} ({e}), starting fresh")
            self.state = ResourceState.default(self._clock())
        self.dirty = False
        self._rollover_day()

    def save(self) -> bool:
        """Write the full state if anything changed. Returns True if written."""
        if not self.dirty:
            return False
        tmp_path = self.file_path.with_name(self.file_path.name + ".tmp")
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self.state.last_updated = _iso(self._clock())
            tmp_path.write_text(
                json.dumps(self.state.to_dict(), indent=2), encoding="utf-8")
            os.replace(tmp_path, self.file_path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Ledger save failed: {e}")
            if tmp_path.exists():
                tmp_path.unlink()
            return False
        self.dirty = False
        return True

    # ── Day rollover ────────────────────────────────────

    def _rollover_day(self) -> None:
        today = self._clock().astimezone(timezone.utc).date().isoformat()
        if self.state.today.date != today:
            self.state.today = DailyStats(date=today)
            self.dirty = True

    def refresh(self) -> None:
        """Heartbeat hook. Only rolls the day over for now; real balance
        queries against providers belong here."""
        self._rollover_day()

    # ── Mutations ───────────────────────────────────────

    def record_income(
        self,
        kind: EntryKind | str,
        tokens: int = 0,
        currency: float = 0.0,
        description: str = "",
        meta: dict[str, Any] | None = None,
    ) -> list[LedgerEntry]:
        """Credit the balance. Always writes at least one history entry."""
        _check_amounts(tokens, currency)
        _check_meta(meta)
        kind = EntryKind(kind)
        self._rollover_day()

        s = self.state
        s.balance.token_credits += tokens
        s.balance.currency += currency
        s.totals.tokens_earned += tokens
        s.totals.currency_earned += currency
        s.today.tokens_earned += tokens
        s.today.currency_earned += currency

        entries = []
        if tokens or not currency:
            entries.append(self._append(
                kind, Direction.INCOME, tokens, Unit.TOKEN, description, meta))
        if currency:
            entries.append(self._append(
                kind, Direction.INCOME, currency, Unit.CURRENCY, description, meta))

        self._update_tier()
        self.dirty = True
        return entries

    def record_expense(
        self,
        kind: EntryKind | str,
        tokens: int = 0,
        currency: float = 0.0,
        description: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> list[LedgerEntry]:
        """Debit the balance. No floor is enforced; the balance may go negative.

        Small token-only debits (<= EXPENSE_NOISE_FLOOR) are counted but not
        written to history.
        """
        _check_amounts(tokens, currency)
        _check_meta(meta)
        kind = EntryKind(kind)
        self._rollover_day()

        s = self.state
        s.balance.token_credits -= tokens
        s.balance.currency -= currency
        s.totals.tokens_spent += tokens
        s.totals.currency_spent += currency
        s.today.tokens_spent += tokens
        s.today.currency_spent += currency
        s.today.calls += 1

        if description is None:
            description = f"{(meta or {}).get('model') or 'llm'} inference"

        entries = []
        if tokens > EXPENSE_NOISE_FLOOR:
            entries.append(self._append(
                kind, Direction.EXPENSE, tokens, Unit.TOKEN, description, meta))
        if currency != 0:
            entries.append(self._append(
                kind, Direction.EXPENSE, currency, Unit.CURRENCY, description, meta))

        self._update_tier()
        self.dirty = True
        return entries

    def _append(
        self,
        kind: EntryKind,
        direction: Direction,
        amount: float,
        unit: Unit,
        description: str,
        meta: dict[str, Any] | None,
    ) -> LedgerEntry:
        now = self._clock()
        entry = LedgerEntry(
            id=f"tx_{_base36(int(now.timestamp() * 1000))}_{secrets.token_hex(2)}",
            timestamp=_iso(now),
            kind=kind,
            direction=direction,
            amount=amount,
            unit=unit,
            description=description,
            meta={k: v for k, v in meta.items() if v is not None} if meta else None,
        )
        self.state.history.append(entry)
        if len(self.state.history) > HISTORY_CAP:
            del self.state.history[:-HISTORY_CAP]
        return entry

    # ── Tiers ───────────────────────────────────────────

    def _update_tier(self) -> None:
        self.state.balance.tier = classify(
            self.state.balance.token_credits, self.state.config.thresholds)

    @property
    def tier(self) -> SurvivalTier:
        return self.state.balance.tier

    @property
    def previous_tier(self) -> SurvivalTier:
        """Tier as of the last acknowledged check."""
        return self.state.balance.previous_tier

    def acknowledge_tier(self) -> None:
        """Mark the current tier as observed, closing a transition."""
        if self.state.balance.previous_tier != self.state.balance.tier:
            self.state.balance.previous_tier = self.state.balance.tier
            self.dirty = True

    def within_spend_limits(self, currency: float) -> bool:
        """Would a currency payment of this size stay under the configured caps?"""
        limits = self.state.config.spend_limits
        if currency > limits.max_single_currency:
            return False
        return self.state.today.currency_spent + currency <= limits.max_daily_currency

    # ── Reports ─────────────────────────────────────────

    def snapshot(self) -> dict[str, Any]:
        """State without history, for status APIs."""
        d = self.state.to_dict()
        d.pop("history")
        return d

    def status_report(self) -> str:
        s = self.state
        tier_icon = {
            SurvivalTier.RICH: "🟢",
            SurvivalTier.NORMAL: "🟡",
            SurvivalTier.TIGHT: "🟠",
            SurvivalTier.DANGER: "🔴",
            SurvivalTier.HIBERNATE: "💀",
        }
        return "\n".join([
            "📊 Resource status",
            "",
            f"{tier_icon[s.balance.tier]} Survival tier: {s.balance.tier.value}",
            f"💰 Token balance: {s.balance.token_credits:,}",
            f"💵 Currency balance: ${s.balance.currency:.4f}",
            "",
            f"📅 Today ({s.today.date}):",
            f"  Earned: +{s.today.tokens_earned:,} tokens, +${s.today.currency_earned:.4f}",
            f"  Spent: -{s.today.tokens_spent:,} tokens, -${s.today.currency_spent:.4f}",
            f"  Calls: {s.today.calls}",
            "",
            "📈 Lifetime:",
            f"  Earned: {s.totals.tokens_earned:,} tokens / ${s.totals.currency_earned:.4f}",
            f"  Spent: {s.totals.tokens_spent:,} tokens / ${s.totals.currency_spent:.4f}",
            "",
            f"🕐 Updated: {s.last_updated}",
        ])

    def recent_entries(self, count: int = 10) -> list[LedgerEntry]:
        if count <= 0:
            return []
        entries = self.state.history[-count:]
        if self.newest_first:
            entries = list(reversed(entries))
        return entries

    def recent_ledger_report(self, count: int = 10) -> str:
        entries = self.recent_entries(count)
        if not entries:
            return "📒 No transactions yet"

        lines = []
        for e in entries:
            sign = "+" if e.direction == Direction.INCOME else "-"
            icon = "💚" if e.direction == Direction.INCOME else "💸"
            amount = f"{e.amount:,}" if e.unit == Unit.TOKEN else f"${e.amount:.4f}"
            lines.append(
                f"{icon} {e.timestamp[5:16]} {sign}{amount} {e.unit.value} — {e.description}")
        return "\n".join([f"📒 Last {len(entries)} transactions:", "", *lines])


def _check_amounts(tokens: int, currency: float) -> None:
    if tokens < 0 or currency < 0:
        raise ValueError(
            f"Amounts must be non-negative (tokens={tokens}, currency={currency})")


def _check_meta(meta: dict[str, Any] | None) -> None:
    if not meta:
        return
    try:
        json.dumps(meta)
    except (TypeError, ValueError) as e:
        raise ValueError(f"meta must be JSON-serializable: {e}") from e
