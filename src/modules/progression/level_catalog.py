"""
Level Catalog Service
=====================

Purpose
-------
Owns the Level Table: seeds the persisted catalog from the configured growth
curve at deployment time and serves the validated, in-memory ``LevelTable``
every level lookup goes through.

Domain
------
- Generate level definitions from ``progression.*`` config
- Append-only seeding (existing levels are never rewritten)
- Load and cache the ``LevelTable`` (reference data only, never user state)
- Level listing and single-level lookups for callers

A table that fails validation (gap, non-increasing thresholds) is a seeding
defect and surfaces as ``InternalConsistencyError``; nothing here ever falls
back to a default level.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence

from src.core.database.service import DatabaseService
from src.core.exceptions import ConfigurationError
from src.core.logging.logger import get_logger
from src.core.validation.input_validator import InputValidator
from src.database.models.progression.level_definition import LevelDefinitionRecord
from src.domain.models.base import DomainValidationError
from src.domain.models.level import (
    LevelDefinition,
    LevelTable,
    LevelTableError,
    TierSpec,
    generate_level_definitions,
)
from src.modules.shared.base_repository import BaseRepository
from src.modules.shared.base_service import BaseService
from src.modules.shared.exceptions import InternalConsistencyError, NotFoundError

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from src.core.config.manager import ConfigManager
    from src.core.event.bus import EventBus


# ============================================================================
# Repository
# ============================================================================


class LevelDefinitionRepository(BaseRepository[LevelDefinitionRecord]):
    """Repository for persisted level definitions."""

    async def all_ordered(self, session: AsyncSession) -> List[LevelDefinitionRecord]:
        return await self.find_many_where(session, order_by=[LevelDefinitionRecord.level])


# ============================================================================
# LevelCatalogService
# ============================================================================


class LevelCatalogService(BaseService):
    """
    Service for the level catalog.

    Public Methods
    --------------
    - build_default_definitions() -> Level definitions from config
    - seed_levels() -> Insert missing levels (idempotent)
    - get_table() -> Validated, cached LevelTable
    - reload() -> Drop the cached table
    - list_levels() -> Catalog rows, optionally for one tier
    - get_level() -> One catalog row
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        **kwargs: Any,
    ) -> None:
        super().__init__(config_manager, event_bus, logger, **kwargs)

        self._level_repo = LevelDefinitionRepository(
            model_class=LevelDefinitionRecord,
            logger=get_logger(f"{__name__}.LevelDefinitionRepository"),
        )
        self._table: Optional[LevelTable] = None
        self._load_lock = asyncio.Lock()

    # ========================================================================
    # CATALOG GENERATION
    # ========================================================================

    def _tier_specs(self) -> List[TierSpec]:
        raw_tiers = self.get_config("progression.tiers", default=[]) or []
        if not raw_tiers:
            raise ConfigurationError("progression.tiers", "At least one tier must be configured")

        specs: List[TierSpec] = []
        for raw in raw_tiers:
            try:
                specs.append(
                    TierSpec(
                        name=str(raw["name"]),
                        color=str(raw["color"]),
                        icon=str(raw.get("icon", "")),
                        category=str(raw.get("category", "Social")),
                        description=str(raw.get("description", "Level {level}")),
                        unlock_message=str(raw.get("unlock_message", "Level {level} reached!")),
                        badge_description=str(
                            raw.get(
                                "badge_description",
                                "Completed level {level} of the {tier} tier",
                            )
                        ),
                    )
                )
            except (KeyError, TypeError) as exc:
                raise ConfigurationError(
                    "progression.tiers", f"Invalid tier entry {raw!r}: {exc}"
                ) from exc
        return specs

    @staticmethod
    def _level_keyed(raw: Optional[Mapping[Any, Sequence[str]]]) -> Dict[int, List[str]]:
        # YAML may hand us int or str keys depending on quoting
        return {int(level): list(keys) for level, keys in (raw or {}).items()}

    def build_default_definitions(self) -> List[LevelDefinition]:
        """
        Level definitions generated from ``progression.*`` config.

        Raises:
            ConfigurationError: If the configured curve yields an invalid table
        """
        try:
            definitions = generate_level_definitions(
                max_level=int(self.get_config("progression.max_level", default=100)),
                base_xp=int(self.get_config("progression.curve.base_xp", default=100)),
                growth=float(self.get_config("progression.curve.growth", default=1.15)),
                tiers=self._tier_specs(),
                levels_per_tier=int(self.get_config("progression.levels_per_tier", default=10)),
                features=self._level_keyed(self.get_config("progression.features", default={})),
                abilities=self._level_keyed(self.get_config("progression.abilities", default={})),
            )
            # Same validation the runtime table applies
            LevelTable(definitions)
        except (DomainValidationError, LevelTableError) as exc:
            raise ConfigurationError("progression.curve", f"Configured level curve is invalid: {exc}") from exc
        return definitions

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def seed_levels(self, definitions: Optional[Sequence[LevelDefinition]] = None) -> int:
        """
        Insert every level not yet present in the catalog.

        This is a **write operation** using get_transaction(). Existing rows
        are never modified; a differing threshold is only logged.

        Args:
            definitions: Definitions to seed (defaults to the configured curve)

        Returns:
            Number of inserted levels
        """
        definitions = list(definitions) if definitions is not None else self.build_default_definitions()
        self.log_operation("seed_levels", level_count=len(definitions))

        async def work() -> int:
            async with DatabaseService.get_transaction() as session:
                existing = {record.level: record for record in await self._level_repo.all_ordered(session)}
                inserted = 0
                for definition in definitions:
                    record = existing.get(definition.level)
                    if record is not None:
                        if record.xp_required != definition.xp_required:
                            self.log.warning(
                                "Seeded level differs from configured curve; keeping stored row",
                                extra={
                                    "level": definition.level,
                                    "stored_xp_required": record.xp_required,
                                    "configured_xp_required": definition.xp_required,
                                },
                            )
                        continue

                    self._level_repo.add(
                        session,
                        LevelDefinitionRecord(
                            level=definition.level,
                            xp_required=definition.xp_required,
                            xp_to_next=definition.xp_to_next,
                            tier=definition.tier,
                            tier_color=definition.tier_color,
                            icon=definition.icon,
                            title=definition.title,
                            description=definition.description,
                            unlock_message=definition.unlock_message,
                            category=definition.category,
                            rewards=definition.rewards.to_dict(),
                        ),
                    )
                    inserted += 1
                return inserted

        inserted = await self.run_with_retry(
            "levels.seed",
            work,
            resource_type="LevelDefinition",
        )
        self.reload()

        self.log.info(
            "Level catalog seeded",
            extra={"inserted": inserted, "configured": len(definitions)},
        )
        return inserted

    def reload(self) -> None:
        """Drop the cached table; the next ``get_table()`` reads the store."""
        self._table = None

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_table(self) -> LevelTable:
        """
        Validated Level Table, loaded once and cached.

        Raises:
            InternalConsistencyError: If the stored catalog is empty, has a
                gap or has non-increasing thresholds
        """
        if self._table is not None:
            return self._table

        async with self._load_lock:
            if self._table is not None:
                return self._table

            async with DatabaseService.get_session() as session:
                records = await self._level_repo.all_ordered(session)

            try:
                table = LevelTable(LevelDefinition.from_db(record) for record in records)
            except (LevelTableError, DomainValidationError) as exc:
                self.log.critical(
                    "Level table failed validation",
                    extra={"reason": str(exc), "row_count": len(records)},
                )
                raise InternalConsistencyError(
                    "level_table",
                    str(exc),
                    {"level": getattr(exc, "level", None)},
                ) from exc

            self._table = table
            self.log.info("Level table loaded", extra={"max_level": table.max_level})
            return table

    async def list_levels(self, tier: Optional[str] = None) -> List[Dict[str, Any]]:
        """Catalog rows in level order, optionally restricted to one tier."""
        table = await self.get_table()
        if tier is None:
            return [definition.to_dict() for definition in table]

        tier = InputValidator.validate_string(tier, "tier", max_length=32)
        return [definition.to_dict() for definition in table.tier_levels(tier)]

    async def get_level(self, level: int) -> Dict[str, Any]:
        """
        One catalog row.

        Raises:
            ValidationError: If ``level`` is not a positive integer
            NotFoundError: If the level is beyond the catalog
        """
        level = InputValidator.validate_positive_integer(level, "level")
        table = await self.get_table()
        definition = table.get(level)
        if definition is None:
            raise NotFoundError("Level", level)
        return definition.to_dict()
