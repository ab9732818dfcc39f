# config/settings.py
"""
Configuration settings for the entity rule engine.
Uses Pydantic BaseSettings for automatic environment variable loading.
"""

from __future__ import annotations

import logging as stdlib_logging
from collections.abc import MutableMapping
from typing import Any

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = structlog.get_logger()


class RelevanceWeights(BaseModel):
    """Weights of the relevance score components. Must sum to 1.0."""

    priority: float = 0.30
    tags: float = 0.20
    location: float = 0.20
    level: float = 0.15
    story: float = 0.15

    @model_validator(mode="after")
    def check_weights(self) -> RelevanceWeights:
        values = (self.priority, self.tags, self.location, self.level, self.story)
        if any(v < 0 for v in values):
            raise ValueError("relevance weights must be non-negative")
        if abs(sum(values) - 1.0) > 1e-6:
            raise ValueError(f"relevance weights must sum to 1.0, got {sum(values):.4f}")
        return self


class EngineSettings(BaseSettings):
    """Full configuration for the entity rule engine."""

    # Query processing
    QUERY_MAX_RESULTS: int = 50
    QUERY_CACHE_ENABLED: bool = True
    QUERY_CACHE_MAXSIZE: int = 1000
    QUERY_CACHE_TTL_SECONDS: float | None = None
    RELATED_MIN_STRENGTH: float = 0.3
    DRAMATIC_TIMING_MIN_INTERVAL_SECONDS: float = 300.0
    PRIORITY_SCALE: float = 10.0
    LEVEL_PROXIMITY_WINDOW: int = 10
    relevance_weights: RelevanceWeights = Field(default_factory=RelevanceWeights)

    # Relationship graph
    INDIRECT_STRENGTH_DECAY: float = 0.8
    INDIRECT_MAX_DEPTH: int = 3
    PATH_MAX_HOPS: int = 5
    GRAPH_CACHE_MAXSIZE: int = 512
    HUB_CONNECTIVITY_FACTOR: float = 2.0

    # Recommendations
    RECOMMENDATION_MIN_SCORE: float = 0.5
    RECOMMENDATION_MAX_SCORE: float = 1.0
    RECOMMENDATION_MIN_ALIGNMENT: float = 0.3
    RECOMMENDATION_MAX_RESULTS: int = 5

    # Concurrency
    BATCH_MAX_WORKERS: int = 4

    # Logging & UI
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = (
        "%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s:%(lineno)d] - %(message)s"
    )
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_DIR: str = "logs"
    LOG_FILE: str | None = None
    ENABLE_RICH_CONSOLE: bool = True
    # Console only, no rotation/Rich
    SIMPLE_LOGGING_MODE: bool = False

    @model_validator(mode="after")
    def clamp_ranges(self) -> EngineSettings:
        # Probabilities live in [0, 1]; at least one worker and one level of window.
        object.__setattr__(
            self, "INDIRECT_STRENGTH_DECAY", min(max(self.INDIRECT_STRENGTH_DECAY, 0.0), 1.0)
        )
        object.__setattr__(
            self, "RELATED_MIN_STRENGTH", min(max(self.RELATED_MIN_STRENGTH, 0.0), 1.0)
        )
        object.__setattr__(self, "BATCH_MAX_WORKERS", max(self.BATCH_MAX_WORKERS, 1))
        object.__setattr__(self, "LEVEL_PROXIMITY_WINDOW", max(self.LEVEL_PROXIMITY_WINDOW, 1))
        return self

    model_config = SettingsConfigDict(
        env_prefix="ENTITY_ENGINE_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )


settings = EngineSettings()


# Update module level variables for backward compatibility
for _field in EngineSettings.model_fields:
    globals()[_field] = getattr(settings, _field)


# Configure structlog to integrate with standard logging and output human‑readable messages
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="%m/%d/%Y, %H:%M:%S"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)


def filter_internal_keys(
    logger: Any, name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Remove internal structlog fields from event dict."""
    keys_to_remove = [k for k in event_dict.keys() if k.startswith("_")]
    for key in keys_to_remove:
        event_dict.pop(key, None)
    return event_dict


def _format_event(event_dict: MutableMapping[str, Any], *, markup: bool) -> str:
    level = str(event_dict.pop("level", "INFO")).upper()
    timestamp = event_dict.pop("timestamp", "")
    logger_name = event_dict.pop("logger", "")
    event = event_dict.pop("event", "")

    parts = []
    if timestamp:
        parts.append(f"{timestamp}")
    if logger_name:
        short_name = logger_name.split(".")[-1]
        parts.append(f"[cyan]{short_name}[/cyan]" if markup else f"[{short_name}]")

    if markup and level in ("ERROR", "CRITICAL"):
        parts.append(f"[red]{level}[/red]")
    elif markup and level == "WARNING":
        parts.append(f"[yellow]{level}[/yellow]")
    elif markup and level == "INFO":
        parts.append(f"[green]{level}[/green]")
    else:
        parts.append(level)

    if event:
        parts.append(f"[bold]{event}[/bold]" if markup else str(event))

    context_parts = []
    for key, value in event_dict.items():
        if key.startswith("_"):
            continue
        if isinstance(value, str) and len(value) > 50:
            value_str = f"{value[:47]}..."
        else:
            value_str = str(value)
        context_parts.append(f"[dim]{key}[/dim]={value_str}" if markup else f"{key}={value_str}")
    if context_parts:
        parts.append(f"({', '.join(context_parts)})")

    return " ".join(parts)


def simple_log_format_rich(
    logger: Any, name: str, event_dict: MutableMapping[str, Any]
) -> str:
    """Simple human-readable log formatter with Rich markup for console output."""
    return _format_event(event_dict, markup=True)


def simple_log_format_plain(
    logger: Any, name: str, event_dict: MutableMapping[str, Any]
) -> str:
    """Simple human-readable log formatter without markup for file output."""
    return _format_event(event_dict, markup=False)


_foreign_pre_chain = [
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="%m/%d/%Y, %H:%M:%S"),
]

# Formatter for file output (plain text, no Rich markup)
simple_formatter = structlog.stdlib.ProcessorFormatter(
    foreign_pre_chain=_foreign_pre_chain,
    processors=[
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
        filter_internal_keys,
        simple_log_format_plain,
    ],
)

# Formatter for Rich console output (with color markup)
rich_formatter = structlog.stdlib.ProcessorFormatter(
    foreign_pre_chain=_foreign_pre_chain,
    processors=[
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
        filter_internal_keys,
        simple_log_format_rich,
    ],
)

stdlib_logging.getLogger().setLevel(settings.LOG_LEVEL)
