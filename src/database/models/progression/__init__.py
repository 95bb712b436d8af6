"""
Progression ORM models.

Exports:
- LevelDefinitionRecord
- ProgressionLedger
- LevelHistoryEntry
- RewardClaim
"""

from .level_definition import LevelDefinitionRecord
from .level_history import LevelHistoryEntry
from .progression_ledger import ProgressionLedger
from .reward_claim import RewardClaim

__all__ = [
    "LevelDefinitionRecord",
    "LevelHistoryEntry",
    "ProgressionLedger",
    "RewardClaim",
]
