"""Survival tiers - a pure mapping from token balance to resource health."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class SurvivalTier(str, Enum):
    """Resource health, richest first."""
    RICH = "rich"
    NORMAL = "normal"
    TIGHT = "tight"
    DANGER = "danger"
    HIBERNATE = "hibernate"


TIER_ORDER: list[SurvivalTier] = [
    SurvivalTier.RICH,
    SurvivalTier.NORMAL,
    SurvivalTier.TIGHT,
    SurvivalTier.DANGER,
    SurvivalTier.HIBERNATE,
]


@dataclass
class TierThresholds:
    """Minimum balance for each tier. Must be strictly descending."""
    rich: int = 1_000_000
    normal: int = 200_000
    tight: int = 50_000
    danger: int = 10_000
    hibernate: int = 0

    def __post_init__(self):
        values = [self.rich, self.normal, self.tight, self.danger, self.hibernate]
        if any(a <= b for a, b in zip(values, values[1:])):
            raise ValueError(f"Tier thresholds must be strictly descending: {values}")

    def for_tier(self, tier: SurvivalTier) -> int:
        return getattr(self, tier.value)

    def to_dict(self) -> dict[str, int]:
        return {tier.value: self.for_tier(tier) for tier in TIER_ORDER}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "TierThresholds":
        defaults = cls()
        return cls(**{
            tier.value: d.get(tier.value, defaults.for_tier(tier))
            for tier in TIER_ORDER
        })


def classify(balance: float, thresholds: TierThresholds | None = None) -> SurvivalTier:
    """Pick the richest tier whose threshold is <= balance.

    Balances below the hibernate threshold (negative balances) are still
    hibernate.
    """
    thresholds = thresholds or TierThresholds()
    for tier in TIER_ORDER:
        if balance >= thresholds.for_tier(tier):
            return tier
    return SurvivalTier.HIBERNATE


def tier_index(tier: SurvivalTier) -> int:
    return TIER_ORDER.index(SurvivalTier(tier))


def is_worse(current: SurvivalTier, previous: SurvivalTier) -> bool:
    """True if ``current`` sits further down the order than ``previous``."""
    return tier_index(current) > tier_index(previous)
