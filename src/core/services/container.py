"""
Service Container
=================

Purpose
-------
Centralized dependency injection container for the engine services.
Builds every service once, in dependency order, and exposes them (and the
``EngineGateway``) as properties.

Responsibilities
----------------
- Initialize all services with config, event bus and a named logger
- Wire service-to-service dependencies (quests -> progression -> levels)
- Register the notification listeners on the event bus
- Optionally seed the level and quest catalogs on startup
- Shutdown and a small health snapshot

Non-Responsibilities
--------------------
- Database engine lifecycle (``DatabaseService.initialize``/``shutdown``)
- Business logic

Architecture Notes
------------------
- Every service follows the constructor pattern
  ``(config_manager, event_bus, logger, **dependencies)``
- The social graph is an external collaborator injected by the host
  application; without one, level-ups notify only the user
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Dict, Optional

from src.core.config.manager import ConfigManager
from src.core.database.service import DatabaseService
from src.core.logging.logger import get_logger
from src.modules.engine import EngineGateway
from src.modules.notifications import NotificationService
from src.modules.progression import LevelCatalogService, ProgressionService
from src.modules.quests import QuestCatalogService, QuestService

if TYPE_CHECKING:
    from logging import Logger

    from src.core.event.bus import EventBus
    from src.modules.notifications import NotificationSink, SocialGraph

SERVICE_COUNT = 5


class ServiceContainer:
    """
    Dependency injection container for the engine services.

    Usage:
        container = ServiceContainer(ConfigManager, event_bus, logger)
        await container.initialize(seed_catalogs=True)

        result = await container.gateway.apply_experience("u-1", 150, "post")
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        *,
        social_graph: Optional[SocialGraph] = None,
        notification_sink: Optional[NotificationSink] = None,
    ) -> None:
        """
        Initialize service container with required dependencies.

        Args:
            config_manager: Application configuration manager
            event_bus: Event bus for post-commit notifications
            logger: Structured logger instance
            social_graph: Follower lookup for friend notifications
            notification_sink: Delivery endpoint (defaults to the event bus)
        """
        self._config_manager = config_manager
        self._event_bus = event_bus
        self._logger = logger
        self._social_graph = social_graph
        self._notification_sink = notification_sink

        self._level_catalog: Optional[LevelCatalogService] = None
        self._progression: Optional[ProgressionService] = None
        self._quest_catalog: Optional[QuestCatalogService] = None
        self._quests: Optional[QuestService] = None
        self._notifications: Optional[NotificationService] = None
        self._gateway: Optional[EngineGateway] = None

        self._initialized = False

        self._service_init_times: Dict[str, float] = {}
        self._init_start: Optional[float] = None
        self._init_end: Optional[float] = None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def initialize(self, *, seed_catalogs: bool = False) -> None:
        """
        Initialize all services.

        Call this during application startup after ConfigManager, EventBus
        and DatabaseService are ready.

        Args:
            seed_catalogs: Insert missing levels and quests from config
        """
        if self._initialized:
            self._logger.warning("ServiceContainer already initialized")
            return

        self._init_start = time.perf_counter()
        self._logger.info("Service container initialization starting...")

        try:
            self._level_catalog = self._create_service("level_catalog", LevelCatalogService)
            self._progression = self._create_service(
                "progression",
                ProgressionService,
                level_catalog=self._level_catalog,
            )
            self._quest_catalog = self._create_service("quest_catalog", QuestCatalogService)
            self._quests = self._create_service(
                "quests",
                QuestService,
                quest_catalog=self._quest_catalog,
                progression_service=self._progression,
            )
            self._notifications = self._create_service(
                "notifications",
                NotificationService,
                social_graph=self._social_graph,
                sink=self._notification_sink,
            )
            self._notifications.register()

            self._gateway = EngineGateway(
                progression_service=self._progression,
                quest_service=self._quests,
                event_bus=self._event_bus,
                logger=get_logger(f"{EngineGateway.__module__}.EngineGateway"),
            )

            if seed_catalogs:
                levels = await self._level_catalog.seed_levels()
                quests = await self._quest_catalog.seed_catalog()
                self._logger.info(
                    "Catalogs seeded",
                    extra={"levels_inserted": levels, "quests_inserted": quests},
                )

            self._initialized = True
            self._init_end = time.perf_counter()
            self._logger.info(
                "Service container initialized",
                extra={
                    "service_count": len(self._service_init_times),
                    "duration_seconds": round(self._init_end - self._init_start, 3),
                },
            )

        except Exception as e:
            self._logger.critical(
                "Service container initialization failed",
                exc_info=True,
                extra={"error": str(e)},
            )
            raise

    def _create_service(self, name: str, cls: type, **dependencies: Any) -> Any:
        """
        Service constructor with timing.

        Raises:
            Exception: If service initialization fails
        """
        start = time.perf_counter()

        try:
            instance = cls(
                config_manager=self._config_manager,
                event_bus=self._event_bus,
                logger=get_logger(f"{cls.__module__}.{cls.__name__}"),
                **dependencies,
            )
        except Exception:
            self._logger.error(f"Failed to initialize {name}", exc_info=True)
            raise

        duration = time.perf_counter() - start
        self._service_init_times[name] = duration
        self._logger.debug(f"Initialized {name} in {duration:.3f}s")

        return instance

    async def shutdown(self) -> None:
        """
        Unregister listeners and wait for in-flight notifications.
        """
        if not self._initialized:
            return

        self._logger.info("Shutting down service container...")

        if self._notifications is not None:
            self._notifications.unregister()
        pending = await self._event_bus.drain(timeout=5.0)
        if pending:
            self._logger.warning(
                "Background listeners still running at shutdown",
                extra={"pending": pending},
            )

        self._initialized = False
        self._logger.info("Service container shut down")

    async def health_check(self) -> Dict[str, Any]:
        return {
            "initialized": self._initialized,
            "service_count": len(self._service_init_times),
            "total_init_time_seconds": (
                round(self._init_end - self._init_start, 3)
                if self._init_start and self._init_end
                else None
            ),
            "all_services_available": self._initialized
            and len(self._service_init_times) == SERVICE_COUNT,
            "database_initialized": DatabaseService.is_initialized(),
            "database_healthy": await DatabaseService.health_check(),
        }

    # ========================================================================
    # Services
    # ========================================================================

    def _require(self, service: Optional[Any], name: str) -> Any:
        if service is None:
            raise RuntimeError(f"ServiceContainer not initialized: {name} unavailable")
        return service

    @property
    def level_catalog(self) -> LevelCatalogService:
        return self._require(self._level_catalog, "level_catalog")

    @property
    def progression(self) -> ProgressionService:
        return self._require(self._progression, "progression")

    @property
    def quest_catalog(self) -> QuestCatalogService:
        return self._require(self._quest_catalog, "quest_catalog")

    @property
    def quests(self) -> QuestService:
        return self._require(self._quests, "quests")

    @property
    def notifications(self) -> NotificationService:
        return self._require(self._notifications, "notifications")

    @property
    def gateway(self) -> EngineGateway:
        return self._require(self._gateway, "gateway")
