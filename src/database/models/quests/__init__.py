"""
Quest ORM models.

Exports:
- QuestDefinitionRecord
- QuestInstance
"""

from .quest_definition import QuestDefinitionRecord
from .quest_instance import ACTIVE_INSTANCE_INDEX, QuestInstance

__all__ = [
    "ACTIVE_INSTANCE_INDEX",
    "QuestDefinitionRecord",
    "QuestInstance",
]
