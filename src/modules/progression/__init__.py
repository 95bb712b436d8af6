"""
Progression module.

Level catalog (seeding and the cached Level Table) and the per-user
progression ledger.
"""

from src.modules.progression.level_catalog import LevelCatalogService
from src.modules.progression.service import ProgressionService

__all__ = ["LevelCatalogService", "ProgressionService"]
