"""Expose entity engine configuration as stable module-level constants.

This package provides a facade over the Pydantic settings model defined in
[`config.settings`](config/settings.py:1). The primary API is the `settings`
singleton plus a set of module-level constants mirroring its fields.

Configuration precedence and lifecycle:
- On initial import, configuration is loaded by importing [`config.settings`](config/settings.py:1),
  which constructs the `settings` singleton.
- Values come from the process environment (prefix `ENTITY_ENGINE_`) and may be
  sourced from a `.env` file.
- [`reload()`](config/__init__.py:76) re-reads `.env` with override enabled, then
  replaces this module's exported values (see [`config.loader.reload_settings()`](config/loader.py:24)).

Notes:
    Components read these values as constructor defaults only; passing explicit
    arguments always wins over configuration.
"""

from typing import Any

from .settings import EngineSettings as EngineSettings
from .settings import RelevanceWeights as RelevanceWeights
from .settings import rich_formatter as rich_formatter
from .settings import settings as settings
from .settings import simple_formatter as simple_formatter

QUERY_MAX_RESULTS = settings.QUERY_MAX_RESULTS
QUERY_CACHE_ENABLED = settings.QUERY_CACHE_ENABLED
QUERY_CACHE_MAXSIZE = settings.QUERY_CACHE_MAXSIZE
QUERY_CACHE_TTL_SECONDS = settings.QUERY_CACHE_TTL_SECONDS
RELATED_MIN_STRENGTH = settings.RELATED_MIN_STRENGTH
DRAMATIC_TIMING_MIN_INTERVAL_SECONDS = settings.DRAMATIC_TIMING_MIN_INTERVAL_SECONDS
PRIORITY_SCALE = settings.PRIORITY_SCALE
LEVEL_PROXIMITY_WINDOW = settings.LEVEL_PROXIMITY_WINDOW

INDIRECT_STRENGTH_DECAY = settings.INDIRECT_STRENGTH_DECAY
INDIRECT_MAX_DEPTH = settings.INDIRECT_MAX_DEPTH
PATH_MAX_HOPS = settings.PATH_MAX_HOPS
GRAPH_CACHE_MAXSIZE = settings.GRAPH_CACHE_MAXSIZE
HUB_CONNECTIVITY_FACTOR = settings.HUB_CONNECTIVITY_FACTOR

RECOMMENDATION_MIN_SCORE = settings.RECOMMENDATION_MIN_SCORE
RECOMMENDATION_MAX_SCORE = settings.RECOMMENDATION_MAX_SCORE
RECOMMENDATION_MIN_ALIGNMENT = settings.RECOMMENDATION_MIN_ALIGNMENT
RECOMMENDATION_MAX_RESULTS = settings.RECOMMENDATION_MAX_RESULTS

BATCH_MAX_WORKERS = settings.BATCH_MAX_WORKERS

LOG_LEVEL = settings.LOG_LEVEL
LOG_FORMAT = settings.LOG_FORMAT
LOG_DATE_FORMAT = settings.LOG_DATE_FORMAT
LOG_DIR = settings.LOG_DIR
LOG_FILE = settings.LOG_FILE
ENABLE_RICH_CONSOLE = settings.ENABLE_RICH_CONSOLE
SIMPLE_LOGGING_MODE = settings.SIMPLE_LOGGING_MODE


def get(key: str) -> Any:
    """Return the value of a configuration attribute from `settings`.

    Raises:
        AttributeError: If `key` is not a valid attribute on `settings`.
    """
    return getattr(settings, key)


def set(key: str, value: Any) -> None:
    """Set a configuration attribute on `settings` at runtime.

    This mutates the in-memory settings instance and does not persist to `.env`.
    """
    setattr(settings, key, value)


def reload() -> bool:
    """Reload configuration and refresh this package's exported constants.

    Returns:
        True when the settings were rebuilt, False when the loader failed.
    """
    from .loader import reload_settings

    return reload_settings()
