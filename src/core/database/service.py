"""
Database Service - async engine and session management.

Purpose
-------
Centralized async database engine and session management for the engine.
Provides atomic transactions, pessimistic locking and a health check.

Responsibilities
----------------
- Initialize and manage a single AsyncEngine with connection pooling
- Provide async context managers for read sessions and atomic transactions
- Enforce transaction discipline: commit on success, rollback on exception
- Configure statement timeouts for PostgreSQL connections
- Create the schema from ``Base.metadata`` (bootstrap and tests)

Non-Responsibilities
--------------------
- Retry policies for transient failures (``DatabaseRetryPolicy``)
- Migrations
- Domain logic

Transaction Model
-----------------
- ``get_transaction()`` is the interface for all state mutations
- Automatic commit on success, rollback on any exception
- Never call ``session.commit()`` inside service code
- Lock rows with ``with_for_update`` (ignored by SQLite, which serializes
  writers at the database level)

Usage Example
-------------
>>> async with DatabaseService.get_transaction() as session:
...     ledger = await session.get(ProgressionLedger, ledger_id, with_for_update=True)
...     ledger.xp += 150
...     # Automatic commit on exit
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from src.core.config.config import Config
from src.core.database.base import Base
from src.core.logging.logger import get_logger

logger = get_logger(__name__)


class DatabaseInitializationError(RuntimeError):
    """Raised when database engine initialization fails."""


class DatabaseNotInitializedError(RuntimeError):
    """Raised when database operations are attempted before initialization."""


@dataclass(frozen=True)
class _DatabaseConfigSnapshot:
    """Immutable view of the database configuration for the engine's lifetime."""

    url: str
    echo: bool
    use_null_pool: bool
    pool_size: int
    max_overflow: int
    pool_recycle: int
    pool_timeout: int
    statement_timeout_ms: int

    @property
    def is_postgres(self) -> bool:
        return self.url.startswith(("postgresql://", "postgresql+asyncpg://"))

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def url_scheme(self) -> str:
        return self.url.split(":", 1)[0] if ":" in self.url else "unknown"


class DatabaseService:
    """
    Centralized async database engine and session management.

    Public API
    ----------
    - initialize() / shutdown()
    - get_session() -> read access
    - get_transaction() -> atomic write transaction (preferred)
    - create_schema() / drop_schema()
    - health_check()
    """

    _engine: Optional[AsyncEngine] = None
    _session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    _config_snapshot: Optional[_DatabaseConfigSnapshot] = None
    _init_lock: asyncio.Lock = asyncio.Lock()

    @classmethod
    def _build_config_snapshot(cls) -> _DatabaseConfigSnapshot:
        database_url = getattr(Config, "DATABASE_URL", None)
        if not database_url or not isinstance(database_url, str):
            logger.error("DATABASE_URL is not configured or invalid")
            raise DatabaseInitializationError("DATABASE_URL must be configured as a non-empty string")

        snapshot = _DatabaseConfigSnapshot(
            url=database_url,
            echo=bool(Config.DATABASE_ECHO),
            use_null_pool=Config.is_testing() or database_url.startswith("sqlite"),
            pool_size=int(Config.DATABASE_POOL_SIZE),
            max_overflow=int(Config.DATABASE_MAX_OVERFLOW),
            pool_recycle=int(Config.DATABASE_POOL_RECYCLE),
            pool_timeout=int(Config.DATABASE_POOL_TIMEOUT),
            statement_timeout_ms=int(Config.DATABASE_STATEMENT_TIMEOUT_MS),
        )

        logger.debug(
            "Database configuration snapshot created",
            extra={
                "url_scheme": snapshot.url_scheme,
                "null_pool": snapshot.use_null_pool,
                "pool_size": snapshot.pool_size,
                "max_overflow": snapshot.max_overflow,
                "statement_timeout_ms": snapshot.statement_timeout_ms,
            },
        )
        return snapshot

    @classmethod
    async def initialize(cls) -> None:
        """
        Initialize the database engine and session factory (idempotent).

        Raises
        ------
        DatabaseInitializationError
            If configuration is invalid or engine creation fails.
        """
        async with cls._init_lock:
            if cls._engine is not None:
                logger.debug("DatabaseService already initialized; skipping")
                return

            logger.info("Initializing DatabaseService")

            try:
                config = cls._build_config_snapshot()
                cls._config_snapshot = config

                engine_kwargs: dict[str, Any] = {"echo": config.echo}
                if config.use_null_pool:
                    engine_kwargs["poolclass"] = NullPool
                else:
                    engine_kwargs.update(
                        {
                            "pool_size": config.pool_size,
                            "max_overflow": config.max_overflow,
                            "pool_recycle": config.pool_recycle,
                            "pool_timeout": config.pool_timeout,
                            "pool_pre_ping": True,
                        }
                    )
                if config.is_sqlite:
                    engine_kwargs["connect_args"] = {"timeout": 30}

                cls._engine = create_async_engine(config.url, **engine_kwargs)
                if config.is_sqlite:
                    cls._install_sqlite_pragmas(cls._engine)

                cls._session_factory = async_sessionmaker(
                    bind=cls._engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                )

                logger.info(
                    "DatabaseService initialized successfully",
                    extra={"url_scheme": config.url_scheme, "null_pool": config.use_null_pool},
                )

            except Exception as exc:
                logger.error(
                    "DatabaseService initialization failed",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )
                cls._engine = None
                cls._session_factory = None
                cls._config_snapshot = None
                raise DatabaseInitializationError(f"Database initialization failed: {exc}") from exc

    @staticmethod
    def _install_sqlite_pragmas(engine: AsyncEngine) -> None:
        @event.listens_for(engine.sync_engine, "connect")
        def _set_pragmas(dbapi_connection, _record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    @classmethod
    async def shutdown(cls) -> None:
        """Dispose the engine and reset internal state (no-op if not initialized)."""
        async with cls._init_lock:
            if cls._engine is None:
                logger.debug("DatabaseService not initialized; nothing to shutdown")
                return

            logger.info("Shutting down DatabaseService")
            try:
                await cls._engine.dispose()
                logger.info("DatabaseService shutdown complete")
            finally:
                cls._engine = None
                cls._session_factory = None
                cls._config_snapshot = None

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._engine is not None

    @classmethod
    async def create_schema(cls) -> None:
        """Create every table known to ``Base.metadata`` (existing tables are kept)."""
        cls._ensure_initialized()
        # Model modules register their tables on import
        import src.database.models  # noqa: F401

        async with cls._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured", extra={"table_count": len(Base.metadata.tables)})

    @classmethod
    async def drop_schema(cls) -> None:
        cls._ensure_initialized()
        async with cls._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.warning("Database schema dropped")

    @classmethod
    async def health_check(cls) -> bool:
        """Run ``SELECT 1``; returns False instead of raising."""
        if cls._engine is None:
            logger.warning("Health check called on uninitialized DatabaseService")
            return False

        start = time.perf_counter()
        try:
            async with cls._engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (OperationalError, DBAPIError) as exc:
            logger.warning(
                "Database health check failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return False
        finally:
            logger.debug(
                "Database health check completed",
                extra={"duration_ms": (time.perf_counter() - start) * 1000.0},
            )

    @classmethod
    def _ensure_initialized(cls) -> None:
        if cls._session_factory is None or cls._engine is None:
            logger.error("DatabaseService operation attempted before initialization")
            raise DatabaseNotInitializedError(
                "DatabaseService must be initialized before use. "
                "Call DatabaseService.initialize() during startup."
            )

    @classmethod
    async def _apply_statement_timeout(cls, session: AsyncSession) -> None:
        config = cls._config_snapshot
        if config is not None and config.is_postgres and config.statement_timeout_ms > 0:
            await session.execute(text(f"SET LOCAL statement_timeout = {config.statement_timeout_ms}"))

    @classmethod
    @asynccontextmanager
    async def get_session(cls) -> AsyncGenerator[AsyncSession, None]:
        """
        Session without automatic commit, for reads.

        Prefer ``get_transaction()`` for anything that writes.
        """
        cls._ensure_initialized()

        async with cls._session_factory() as session:
            await cls._apply_statement_timeout(session)
            yield session

    @classmethod
    @asynccontextmanager
    async def get_transaction(cls) -> AsyncGenerator[AsyncSession, None]:
        """
        Session wrapped in an atomic transaction.

        Commits on success. On any exception rolls back and re-raises the
        original exception: database failures are logged as errors, domain
        rule violations only at debug level since they are expected outcomes.
        """
        cls._ensure_initialized()

        start = time.perf_counter()
        async with cls._session_factory() as session:
            try:
                await cls._apply_statement_timeout(session)
                yield session
                await session.commit()
                logger.debug(
                    "Database transaction committed",
                    extra={"duration_ms": (time.perf_counter() - start) * 1000.0},
                )
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error(
                    "Database error in transaction; rolled back",
                    extra={
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "duration_ms": (time.perf_counter() - start) * 1000.0,
                    },
                )
                raise
            except BaseException as exc:
                await session.rollback()
                logger.debug(
                    "Transaction rolled back",
                    extra={"error_type": type(exc).__name__},
                )
                raise
