"""Operator commands and the LLM usage hook.

These are the write paths into the ledger that come from outside the
heartbeat: the owner granting a reward, and the host reporting token
usage after each model call. Both are plain functions over a ledger so
the CLI, the HTTP app and host integrations share them.
"""

import logging
from dataclasses import dataclass
from typing import Any

from pulsekeeper.economy.ledger import EntryKind, LedgerEntry, ResourceLedger

logger = logging.getLogger(__name__)

DEFAULT_REWARD_DESCRIPTION = "Owner reward"
REWARD_USAGE = "Usage: reward <tokens> [description], e.g. reward 50000 finished the weekly report"


@dataclass
class CommandResult:
    ok: bool
    text: str


def _parse_amount(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw) if raw.is_integer() else None
    try:
        return int(str(raw).strip().replace(",", "").replace("_", ""))
    except ValueError:
        return None


def record_reward(
    ledger: ResourceLedger,
    amount: Any,
    description: str | None = None,
) -> CommandResult:
    """Credit an owner reward in tokens and persist immediately.

    Non-numeric or non-positive amounts are rejected without touching
    the ledger.
    """
    tokens = _parse_amount(amount)
    if tokens is None or tokens <= 0:
        return CommandResult(ok=False, text=f"❌ Invalid amount: {amount!r}. {REWARD_USAGE}")

    description = (description or "").strip() or DEFAULT_REWARD_DESCRIPTION
    ledger.record_income(EntryKind.OWNER_REWARD, tokens=tokens, description=description)
    ledger.save()
    logger.info(f"Owner reward recorded: +{tokens} tokens ({description})")

    return CommandResult(
        ok=True,
        text=(
            f"✅ Reward recorded: +{tokens:,} tokens — {description}\n\n"
            f"Current balance: {ledger.state.balance.token_credits:,} tokens"
        ),
    )


def record_llm_usage(
    ledger: ResourceLedger,
    usage: dict[str, Any] | None,
    model: str | None = None,
    provider: str | None = None,
    session_key: str | None = None,
) -> list[LedgerEntry]:
    """Token-usage hook: debit input + output + cache-read tokens.

    ``usage`` uses the keys ``input``, ``output`` and ``cache_read``
    (``cacheRead`` is accepted too). Zero usage records nothing.
    """
    if not usage:
        return []

    total = (
        int(usage.get("input") or 0)
        + int(usage.get("output") or 0)
        + int(usage.get("cache_read") or usage.get("cacheRead") or 0)
    )
    if total == 0:
        return []

    return ledger.record_expense(
        EntryKind.LLM_INFERENCE,
        tokens=total,
        meta={"model": model, "provider": provider, "session": session_key},
    )
