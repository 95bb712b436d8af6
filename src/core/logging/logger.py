"""
Questline Logging Subsystem

Purpose
-------
Async-safe structured logging for the progression and quest engine:

- Structured JSON logs for aggregation and analysis.
- LogContext-based propagation of operation context via ContextVars, so a
  level-up logged deep inside a transaction still carries the user and
  quest it belongs to.
- Correlation IDs for tracing one engine call across services.
- Async-safe logging via a QueueHandler + QueueListener pair, so file and
  console I/O never runs on the event loop.
- Bounded queue with graceful degradation (records are dropped and counted
  rather than blocking the caller).

Responsibilities
----------------
- Initialize and configure the global logging stack once per process.
- Enrich all log records with contextual fields:
  user_id, quest_id, operation, component, correlation_id.
- Emit JSON in production and readable (optionally coloured) text elsewhere.
- Provide helper APIs: get_logger(), LogContext, set_log_context(),
  clear_log_context(), get_logging_health().

Design Decisions
----------------
- Console is the primary sink; a daily-rotating JSON file keeps a one-day
  local backup.
- Extra fields passed via ``logger.info("msg", extra={...})`` are merged into
  the JSON payload; values that are not JSON-native are rendered with str().

Dependencies
------------
- src.core.config.config.Config
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from src.core.config.config import Config

# ============================================================================
# Operation Context (ContextVars)
# ============================================================================

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "questline_request_context",
    default={},
)

_INIT_FLAG = "_questline_logging_initialized"


# ============================================================================
# Config / Environment
# ============================================================================


@dataclass(frozen=True, slots=True)
class LoggerConfig:
    """Configuration for the logging subsystem, derived from ``Config``."""

    CONSOLE_FORMAT: str = "%(asctime)s | %(levelname)-8s | %(name)-34s | %(message)s"
    DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"

    DAILY_BASENAME: str = "questline_daily.json.log"
    DAILY_BACKUP_COUNT: int = 1

    QUEUE_MAX_SIZE: int = 10_000

    @property
    def environment(self) -> str:
        return str(getattr(Config, "ENVIRONMENT", "development")).lower()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def logs_dir(self) -> Path:
        return Path(Config.LOGS_DIR).resolve()

    @property
    def log_level(self) -> int:
        level_name = getattr(Config, "LOG_LEVEL", "INFO")
        if not isinstance(level_name, str):
            level_name = "INFO"
        return getattr(logging, level_name.upper(), logging.INFO)

    @property
    def use_json(self) -> bool:
        return bool(getattr(Config, "LOG_JSON", self.is_production))

    @property
    def use_colors(self) -> bool:
        if self.use_json:
            return False
        return sys.stdout.isatty()

    @property
    def write_file(self) -> bool:
        # Test runs should not litter the logs directory
        return self.environment != "testing"


LOGGER_CONFIG = LoggerConfig()


# ============================================================================
# Logging Metrics / Health
# ============================================================================


@dataclass(slots=True)
class LoggingMetrics:
    records_enqueued: int = 0
    records_dropped: int = 0
    listener_errors: int = 0


@dataclass(frozen=True, slots=True)
class LoggingHealth:
    initialized: bool
    queue_size: int
    queue_max_size: int
    records_enqueued: int
    records_dropped: int
    listener_errors: int


_logging_metrics: LoggingMetrics = LoggingMetrics()
_log_queue: Optional["queue.Queue[logging.LogRecord]"] = None


# ============================================================================
# Filters & Formatters
# ============================================================================


class ContextFilter(logging.Filter):
    """Copy the current LogContext onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context: Dict[str, Any] = _request_context.get({})

        record.user_id = context.get("user_id", "N/A")
        record.quest_id = context.get("quest_id", "N/A")
        record.operation = context.get("operation", "N/A")
        record.correlation_id = context.get("correlation_id", "N/A")
        record.component = context.get("component") or record.name.rsplit(".", 1)[-1]

        return True


class ColoredFormatter(logging.Formatter):
    COLORS: Dict[str, str] = {
        "DEBUG": "\033[90m",
        "INFO": "\033[94m",
        "WARNING": "\033[93m",
        "ERROR": "\033[91m",
        "CRITICAL": "\033[91m\033[1m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        original = record.levelname
        prefix = self.COLORS.get(original)
        if prefix:
            record.levelname = f"{prefix}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class JSONFormatter(logging.Formatter):
    """Render a record as one JSON object per line."""

    # Attributes every LogRecord carries; anything else came in via extra=
    STANDARD_ATTRS = frozenset(
        logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
    ) | {"message", "asctime", "taskName"}

    CONTEXT_ATTRS = frozenset(
        {"user_id", "quest_id", "operation", "correlation_id", "component"}
    )

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for attr in self.CONTEXT_ATTRS:
            value = getattr(record, attr, None)
            if value not in (None, "N/A"):
                log_data[attr] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = {
            key: val
            for key, val in record.__dict__.items()
            if key not in self.STANDARD_ATTRS
            and key not in self.CONTEXT_ATTRS
            and not key.startswith("_")
        }
        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data, ensure_ascii=False, default=str)


# ============================================================================
# Queue Handler & Listener
# ============================================================================


class QuestlineQueueHandler(QueueHandler):
    """Non-blocking enqueue; drops and counts records when the queue is full."""

    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        _logging_metrics.records_enqueued += 1
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            _logging_metrics.records_dropped += 1
            sys.stderr.write("Questline logging queue full; dropping log record.\n")


class QuestlineQueueListener(QueueListener):
    def handleError(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        _logging_metrics.listener_errors += 1
        sys.stderr.write("Questline logging handler error while processing record.\n")


# ============================================================================
# Global Setup
# ============================================================================

_queue_listener: Optional[QueueListener] = None


def _build_console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(LOGGER_CONFIG.log_level)

    if LOGGER_CONFIG.use_json:
        handler.setFormatter(JSONFormatter())
    elif LOGGER_CONFIG.use_colors:
        handler.setFormatter(
            ColoredFormatter(fmt=LOGGER_CONFIG.CONSOLE_FORMAT, datefmt=LOGGER_CONFIG.DATE_FORMAT)
        )
    else:
        handler.setFormatter(
            logging.Formatter(fmt=LOGGER_CONFIG.CONSOLE_FORMAT, datefmt=LOGGER_CONFIG.DATE_FORMAT)
        )
    return handler


def _build_daily_file_handler() -> logging.Handler:
    LOGGER_CONFIG.logs_dir.mkdir(parents=True, exist_ok=True)

    handler = TimedRotatingFileHandler(
        filename=str(LOGGER_CONFIG.logs_dir / LOGGER_CONFIG.DAILY_BASENAME),
        when="midnight",
        interval=1,
        backupCount=LOGGER_CONFIG.DAILY_BACKUP_COUNT,
        encoding="utf-8",
        utc=True,
    )
    handler.setLevel(LOGGER_CONFIG.log_level)
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging() -> None:
    """Install the queue-backed logging stack on the root logger (idempotent)."""
    global _queue_listener, _logging_metrics, _log_queue

    root = logging.getLogger()
    if getattr(root, _INIT_FLAG, False):
        return

    _logging_metrics = LoggingMetrics()

    root.setLevel(LOGGER_CONFIG.log_level)
    root.handlers.clear()
    root.filters.clear()

    handlers = [_build_console_handler()]
    if LOGGER_CONFIG.write_file:
        handlers.append(_build_daily_file_handler())

    _log_queue = queue.Queue(LOGGER_CONFIG.QUEUE_MAX_SIZE)
    _queue_listener = QuestlineQueueListener(_log_queue, *handlers, respect_handler_level=True)
    _queue_listener.start()

    queue_handler = QuestlineQueueHandler(_log_queue)
    queue_handler.setLevel(LOGGER_CONFIG.log_level)
    # Context must be captured on the calling task, before the record is queued
    queue_handler.addFilter(ContextFilter())
    root.addHandler(queue_handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    setattr(root, _INIT_FLAG, True)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "environment": LOGGER_CONFIG.environment,
            "log_level": logging.getLevelName(LOGGER_CONFIG.log_level),
            "json": LOGGER_CONFIG.use_json,
            "file_backup": LOGGER_CONFIG.write_file,
            "queue_max_size": LOGGER_CONFIG.QUEUE_MAX_SIZE,
        },
    )


def shutdown_logging() -> None:
    """Stop the listener and flush every handler."""
    global _queue_listener, _log_queue

    root = logging.getLogger()
    if not getattr(root, _INIT_FLAG, False):
        return

    logging.getLogger(__name__).info("Shutting down logging subsystem.")

    if _queue_listener is not None:
        _queue_listener.stop()
        for handler in _queue_listener.handlers:
            handler.flush()
            handler.close()
        _queue_listener = None

    for handler in list(root.handlers):
        root.removeHandler(handler)

    setattr(root, _INIT_FLAG, False)
    _log_queue = None


def get_logging_health() -> LoggingHealth:
    queue_size = _log_queue.qsize() if _log_queue is not None else 0
    max_size = _log_queue.maxsize if _log_queue is not None else 0

    return LoggingHealth(
        initialized=bool(getattr(logging.getLogger(), _INIT_FLAG, False)),
        queue_size=queue_size,
        queue_max_size=max_size,
        records_enqueued=_logging_metrics.records_enqueued,
        records_dropped=_logging_metrics.records_dropped,
        listener_errors=_logging_metrics.listener_errors,
    )


# ============================================================================
# Public API
# ============================================================================


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Scope log context to a block of code.

    Usage
    -----
    >>> async with LogContext(user_id="u-1", operation="apply_experience"):
    ...     logger.info("XP applied")   # carries user_id and operation
    """

    def __init__(
        self,
        user_id: Optional[str] = None,
        quest_id: Optional[str] = None,
        operation: Optional[str] = None,
        component: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        inherited = _request_context.get({})
        self.context: Dict[str, Any] = {
            **inherited,
            "correlation_id": correlation_id
            or inherited.get("correlation_id")
            or self._generate_correlation_id(),
            **extra,
        }
        if user_id is not None:
            self.context["user_id"] = str(user_id)
        if quest_id is not None:
            self.context["quest_id"] = str(quest_id)
        if operation is not None:
            self.context["operation"] = operation
        if component is not None:
            self.context["component"] = component

        self._token: Optional[Token[Dict[str, Any]]] = None

    @staticmethod
    def _generate_correlation_id() -> str:
        return uuid.uuid4().hex[:8]

    def __enter__(self) -> "LogContext":
        self._token = _request_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _request_context.reset(self._token)

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def set_log_context(
    user_id: Optional[str] = None,
    quest_id: Optional[str] = None,
    operation: Optional[str] = None,
    component: Optional[str] = None,
    correlation_id: Optional[str] = None,
    **extra: Any,
) -> None:
    """Merge fields into the current context without scoping."""
    current = _request_context.get({}).copy()

    if user_id is not None:
        current["user_id"] = str(user_id)
    if quest_id is not None:
        current["quest_id"] = str(quest_id)
    if operation is not None:
        current["operation"] = operation
    if component is not None:
        current["component"] = component
    if correlation_id:
        current["correlation_id"] = correlation_id

    current.update(extra)
    _request_context.set(current)


def get_log_context() -> Dict[str, Any]:
    return dict(_request_context.get({}))


def clear_log_context() -> None:
    _request_context.set({})


# Initialize logging automatically
setup_logging()
