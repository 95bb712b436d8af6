"""
Quests module.

Quest catalog seeding and lookups, and the per-user quest lifecycle.
"""

from src.modules.quests.catalog_service import QuestCatalogService
from src.modules.quests.service import QuestService

__all__ = ["QuestCatalogService", "QuestService"]
