"""
Quest Catalog Service
=====================

Purpose
-------
Seeds the quest catalog from ``quests.catalog`` config and serves quest
definitions as domain objects.

Catalog rows are reference data: seeding only inserts ids that are not yet
stored, so a deployed definition is never rewritten underneath running
attempts.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from src.core.database.service import DatabaseService
from src.core.exceptions import ConfigurationError
from src.core.logging.logger import get_logger
from src.core.validation.input_validator import InputValidator
from src.database.models.quests.quest_definition import QuestDefinitionRecord
from src.domain.models.base import DomainValidationError
from src.domain.models.quest import QuestDefinition, QuestType
from src.modules.shared.base_repository import BaseRepository
from src.modules.shared.base_service import BaseService
from src.modules.shared.exceptions import NotFoundError

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from src.core.config.manager import ConfigManager
    from src.core.event.bus import EventBus


# ============================================================================
# Repository
# ============================================================================


class QuestDefinitionRepository(BaseRepository[QuestDefinitionRecord]):
    """Repository for QuestDefinitionRecord model."""

    pass


# ============================================================================
# QuestCatalogService
# ============================================================================


class QuestCatalogService(BaseService):
    """
    Service for the quest catalog.

    Public Methods
    --------------
    - configured_definitions() -> Definitions parsed from config
    - seed_catalog() -> Insert missing definitions (idempotent)
    - get_definition() -> One definition
    - list_definitions() -> Definitions ordered by difficulty, then reward XP

    Session Helpers
    ---------------
    ``load_definition`` / ``load_definitions`` read inside a caller's session
    so ``QuestService`` can check the catalog in the same transaction that
    writes the attempt.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        **kwargs: Any,
    ) -> None:
        super().__init__(config_manager, event_bus, logger, **kwargs)

        self._quest_repo = QuestDefinitionRepository(
            model_class=QuestDefinitionRecord,
            logger=get_logger(f"{__name__}.QuestDefinitionRepository"),
        )

    # ========================================================================
    # CONFIG
    # ========================================================================

    def configured_definitions(self) -> List[QuestDefinition]:
        """
        Parse ``quests.catalog``.

        Raises:
            ConfigurationError: On a malformed entry or a duplicated id
        """
        entries = self.get_config("quests.catalog", default=[]) or []
        definitions: List[QuestDefinition] = []
        seen: set = set()

        for entry in entries:
            try:
                definition = QuestDefinition.from_dict(entry)
            except DomainValidationError as exc:
                raise ConfigurationError("quests.catalog", str(exc)) from exc

            if definition.id in seen:
                raise ConfigurationError("quests.catalog", f"Duplicate quest id '{definition.id}'")
            seen.add(definition.id)
            definitions.append(definition)

        return definitions

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def seed_catalog(self, definitions: Optional[List[QuestDefinition]] = None) -> int:
        """
        Insert every configured quest whose id is not stored yet.

        Returns:
            Number of inserted definitions
        """
        definitions = definitions if definitions is not None else self.configured_definitions()
        self.log_operation("seed_catalog", quest_count=len(definitions))

        async def work() -> int:
            async with DatabaseService.get_transaction() as session:
                stored = {record.id for record in await self._quest_repo.find_many_where(session)}
                inserted = 0
                for definition in definitions:
                    if definition.id in stored:
                        continue
                    self._quest_repo.add(session, self._to_record(definition))
                    inserted += 1
                return inserted

        inserted = await self.run_with_retry("quests.seed_catalog", work, resource_type="QuestDefinition")
        self.log.info(
            "Quest catalog seeded",
            extra={"inserted": inserted, "configured": len(definitions)},
        )
        return inserted

    @staticmethod
    def _to_record(definition: QuestDefinition) -> QuestDefinitionRecord:
        data = definition.to_dict()
        return QuestDefinitionRecord(
            id=data["id"],
            title=data["title"],
            description=data["description"],
            quest_type=data["quest_type"],
            category=data["category"],
            difficulty=data["difficulty"],
            requirements=data["requirements"],
            rewards=data["rewards"],
            reset_type=data["reset_type"],
            min_level=data["min_level"],
            is_active=data["is_active"],
            is_hidden=data["is_hidden"],
            allow_reattempt=data["allow_reattempt"],
            icon=data["icon"],
        )

    # ========================================================================
    # SESSION HELPERS
    # ========================================================================

    async def load_definition(self, session: AsyncSession, quest_id: str) -> QuestDefinition:
        record = await self._quest_repo.get(session, quest_id)
        if record is None:
            raise NotFoundError("Quest", quest_id)
        return QuestDefinition.from_db(record)

    async def load_definitions(self, session: AsyncSession) -> Dict[str, QuestDefinition]:
        records = await self._quest_repo.find_many_where(session, order_by=[QuestDefinitionRecord.id])
        return {record.id: QuestDefinition.from_db(record) for record in records}

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_definition(self, quest_id: str) -> QuestDefinition:
        """
        One definition by id.

        Raises:
            NotFoundError: Unknown quest id
        """
        quest_id = InputValidator.validate_quest_id(quest_id)
        async with DatabaseService.get_session() as session:
            return await self.load_definition(session, quest_id)

    async def list_definitions(
        self,
        quest_type: Optional[str] = None,
        *,
        include_inactive: bool = False,
        include_hidden: bool = False,
    ) -> List[QuestDefinition]:
        """Definitions ordered by difficulty, then reward XP, then id."""
        wanted = InputValidator.validate_enum(quest_type, "quest_type", QuestType) if quest_type else None

        async with DatabaseService.get_session() as session:
            definitions = list((await self.load_definitions(session)).values())

        return sorted(
            (
                definition
                for definition in definitions
                if (include_inactive or definition.is_active)
                and (include_hidden or not definition.is_hidden)
                and (wanted is None or definition.quest_type is wanted)
            ),
            key=QuestDefinition.sort_key,
        )
