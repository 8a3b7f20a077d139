"""Resource economy: the ledger and survival tiers.

Exports:
    ResourceLedger - Durable balance and transaction accounting
    SurvivalTier - Ordered resource-health classification
"""

from .ledger import (
    Direction,
    EntryKind,
    LedgerEntry,
    ResourceLedger,
    ResourceState,
    Unit,
)
from .tiers import SurvivalTier, TierThresholds, classify, is_worse

__all__ = [
    "Direction",
    "EntryKind",
    "LedgerEntry",
    "ResourceLedger",
    "ResourceState",
    "SurvivalTier",
    "TierThresholds",
    "Unit",
    "classify",
    "is_worse",
]
