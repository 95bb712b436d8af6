"""
ConfigManager: dot-notation access to the engine's tunable configuration.

Purpose
-------
- Provide hierarchical, dot-notation access to tunables such as the XP curve,
  quest reset windows, view limits and event listener timeouts.
- Back configuration with YAML defaults from the ``config/`` directory.
- Allow in-memory overrides for hot tuning and for tests.

Responsibilities
----------------
- Load and deep-merge every YAML file under ``Config.CONFIG_DIR``.
- Serve reads from an in-memory cache (defaults with overrides on top).
- Track simple read metrics (hits, misses, fallbacks).

Key Design Decisions
--------------------
- YAML is the single source for **defaults**; overrides live only in memory
  and are dropped by ``reset()``.
- Reads never raise: a missing key yields the caller-supplied default.
- Top-level YAML keys are namespaces (``progression``, ``quests``, ``core``);
  files may contribute to the same namespace and are merged recursively.

Dependencies
------------
- PyYAML for parsing (``yaml.safe_load``).
- ``src.core.config.config.Config`` for the configuration directory.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional

import yaml

from src.core.config.config import Config
from src.core.logging.logger import get_logger

logger = get_logger(__name__)

__all__ = ["ConfigManager"]

_MISSING = object()


class ConfigManager:
    """
    Tunable engine configuration with YAML defaults and in-memory overrides.

    Features
    --------
    - Hierarchical config access with dot notation (``"progression.curve.growth"``).
    - Modular YAML composition (every file under ``config/`` is merged).
    - ``set()`` / ``reset()`` for runtime overrides.
    """

    _cache: Dict[str, Any] = {}
    _defaults: Dict[str, Any] = {}
    _overrides: Dict[str, Any] = {}

    _initialized: bool = False
    _config_dir: Optional[Path] = None

    _metrics: Dict[str, int] = {"gets": 0, "hits": 0, "misses": 0}

    # =========================================================================
    # YAML LOADING & DEFAULTS
    # =========================================================================

    @staticmethod
    def _deep_merge_dict(
        target: MutableMapping[str, Any],
        source: MutableMapping[str, Any],
    ) -> None:
        """Recursively merge `source` into `target` (in-place)."""
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                ConfigManager._deep_merge_dict(target[key], value)
            else:
                target[key] = copy.deepcopy(value)

    @classmethod
    def _load_yaml_configs(cls, config_dir: Path) -> None:
        """
        Recursively load all YAML config files from `config_dir` into `_defaults`.

        Files are merged in sorted path order so the result is deterministic.
        A malformed file is logged and skipped; the remaining files still load.
        """
        cls._defaults = {}

        if not config_dir.exists():
            logger.warning(
                "Config directory not found; using built-in defaults only",
                extra={"config_dir": str(config_dir)},
            )
            return

        yaml_files = sorted(
            list(config_dir.rglob("*.yaml")) + list(config_dir.rglob("*.yml"))
        )
        loaded_count = 0

        for yaml_file in yaml_files:
            try:
                with yaml_file.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle)
            except (OSError, yaml.YAMLError) as exc:
                logger.warning(
                    "Failed to load YAML config",
                    extra={
                        "file": str(yaml_file.relative_to(config_dir)),
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
                continue

            if isinstance(data, dict):
                cls._deep_merge_dict(cls._defaults, data)
                loaded_count += 1
                logger.debug(
                    "Loaded YAML config",
                    extra={"file": str(yaml_file.relative_to(config_dir))},
                )
            elif data is not None:
                logger.warning(
                    "Ignoring non-dict YAML root object",
                    extra={
                        "file": str(yaml_file.relative_to(config_dir)),
                        "root_type": type(data).__name__,
                    },
                )

        logger.info(
            "YAML configs loaded",
            extra={"yaml_file_count": loaded_count, "top_level_keys": sorted(cls._defaults)},
        )

    @classmethod
    def _rebuild_cache(cls) -> None:
        cache: Dict[str, Any] = copy.deepcopy(cls._defaults)
        cls._deep_merge_dict(cache, cls._overrides)
        cls._cache = cache

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    @classmethod
    def initialize(cls, config_dir: Optional[Path] = None) -> None:
        """
        Load YAML defaults (idempotent unless a different directory is given).

        Parameters
        ----------
        config_dir:
            Directory to load from. Defaults to ``Config.CONFIG_DIR``.
        """
        target_dir = Path(config_dir) if config_dir is not None else Config.CONFIG_DIR
        if cls._initialized and cls._config_dir == target_dir:
            return

        cls._config_dir = target_dir
        cls._load_yaml_configs(target_dir)
        cls._rebuild_cache()
        cls._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Drop every override and reload YAML from the configured directory."""
        cls._overrides = {}
        cls._initialized = False
        cls.initialize(cls._config_dir)

    # =========================================================================
    # READS
    # =========================================================================

    @classmethod
    def _lookup(cls, source: Dict[str, Any], key: str) -> Any:
        value: Any = source
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                return _MISSING
            value = value[part]
        return value

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Retrieve a configuration value by dot-notation path.

        Examples
        --------
        >>> ConfigManager.get("progression.curve.growth", 1.15)
        1.15
        >>> ConfigManager.get("quests.reset_windows.daily_hours", 24)
        24
        """
        if not cls._initialized:
            cls.initialize()

        cls._metrics["gets"] += 1
        value = cls._lookup(cls._cache, key)
        if value is _MISSING or value is None:
            cls._metrics["misses"] += 1
            return default

        cls._metrics["hits"] += 1
        return value

    # =========================================================================
    # OVERRIDES
    # =========================================================================

    @classmethod
    def set(cls, key: str, value: Any) -> None:
        """
        Override a configuration value in memory.

        The override survives until ``reset()``; YAML defaults are untouched.
        """
        if not cls._initialized:
            cls.initialize()

        parts = key.split(".")
        node = cls._overrides
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
        cls._rebuild_cache()

        logger.info("Configuration override applied", extra={"config_key": key})

    @classmethod
    def get_metrics(cls) -> Dict[str, Any]:
        gets = cls._metrics["gets"]
        return {
            **cls._metrics,
            "hit_rate": round(cls._metrics["hits"] / gets * 100, 2) if gets else 0.0,
            "override_count": len(cls._overrides),
            "initialized": cls._initialized,
        }
