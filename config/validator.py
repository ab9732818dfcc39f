# config/validator.py
"""
Configuration validation utilities for the entity rule engine.

This module provides a single public function `validate_all()` that inspects the
current `EngineSettings` object and performs cross‑field sanity checks that cannot
be expressed purely with Pydantic field validators.

The report layout:

{
    "overall_health": "healthy" | "warning" | "error",
    "issues": {
        "errors":   [{ "field": "<field>", "message": "<msg>" }, ...],
        "warnings": [{ "field": "<field>", "message": "<msg>" }, ...],
        "info":     [{ "field": "<field>", "message": "<msg>" }, ...],
    }
}
"""

from __future__ import annotations

from .settings import EngineSettings


def _add_issue(
    issues: dict[str, list[dict[str, str]]],
    severity: str,
    field: str,
    message: str,
) -> None:
    """Utility to append an issue entry to the report."""
    issues.setdefault(severity, []).append({"field": field, "message": message})


def validate_all(current_settings: EngineSettings | None = None) -> dict:
    """
    Validate the given (or current) configuration state.

    Returns a health‑report dict with overall status and detailed issue lists.
    """
    if current_settings is None:
        from config import settings as current_settings

    issues: dict[str, list[dict[str, str]]] = {"errors": [], "warnings": [], "info": []}

    weights = current_settings.relevance_weights
    total = weights.priority + weights.tags + weights.location + weights.level + weights.story
    if abs(total - 1.0) > 1e-6:
        _add_issue(
            issues,
            "errors",
            "relevance_weights",
            f"Relevance weights must sum to 1.0; got {total:.4f}.",
        )

    if current_settings.PRIORITY_SCALE <= 0:
        _add_issue(
            issues,
            "errors",
            "PRIORITY_SCALE",
            f"PRIORITY_SCALE must be > 0; got {current_settings.PRIORITY_SCALE}.",
        )

    if current_settings.LEVEL_PROXIMITY_WINDOW <= 0:
        _add_issue(
            issues,
            "errors",
            "LEVEL_PROXIMITY_WINDOW",
            f"LEVEL_PROXIMITY_WINDOW must be > 0; got {current_settings.LEVEL_PROXIMITY_WINDOW}.",
        )

    if current_settings.INDIRECT_STRENGTH_DECAY in (0.0, 1.0):
        _add_issue(
            issues,
            "warnings",
            "INDIRECT_STRENGTH_DECAY",
            (
                f"INDIRECT_STRENGTH_DECAY = {current_settings.INDIRECT_STRENGTH_DECAY} "
                "disables distance weighting of indirect relationships."
            ),
        )

    if current_settings.RECOMMENDATION_MIN_SCORE > current_settings.RECOMMENDATION_MAX_SCORE:
        _add_issue(
            issues,
            "errors",
            "RECOMMENDATION_MIN_SCORE",
            (
                f"RECOMMENDATION_MIN_SCORE ({current_settings.RECOMMENDATION_MIN_SCORE}) exceeds "
                f"RECOMMENDATION_MAX_SCORE ({current_settings.RECOMMENDATION_MAX_SCORE})."
            ),
        )

    # Sizes: lower bound is an error, very large values only a warning
    size_fields = [
        ("QUERY_MAX_RESULTS", 1, 10_000),
        ("QUERY_CACHE_MAXSIZE", 1, 100_000),
        ("GRAPH_CACHE_MAXSIZE", 1, 100_000),
        ("INDIRECT_MAX_DEPTH", 1, 10),
        ("PATH_MAX_HOPS", 1, 50),
        ("BATCH_MAX_WORKERS", 1, 64),
    ]
    for name, min_val, max_val in size_fields:
        value = getattr(current_settings, name)
        if value < min_val:
            _add_issue(issues, "errors", name, f"{name} must be >= {min_val}; got {value}.")
        elif value > max_val:
            _add_issue(
                issues,
                "warnings",
                name,
                f"{name} is very large ({value}); consider lowering it.",
            )

    if current_settings.QUERY_CACHE_TTL_SECONDS is None and current_settings.QUERY_CACHE_ENABLED:
        _add_issue(
            issues,
            "info",
            "QUERY_CACHE_TTL_SECONDS",
            "Query cache entries never expire; they are cleared on graph mutation or clear_caches().",
        )

    overall = "healthy"
    if issues["errors"]:
        overall = "error"
    elif issues["warnings"]:
        overall = "warning"

    return {
        "overall_health": overall,
        "issues": issues,
    }
