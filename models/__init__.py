# models/__init__.py
"""Export commonly used rule engine model types.

This package exposes a stable import surface for the condition, game-state,
relationship and query models used across the engine.
"""

from .conditions import (
    CompoundCondition,
    ConditionExpression,
    ContextualCondition,
    FunctionCondition,
    SimpleCondition,
    UnknownCondition,
    parse_condition,
    parse_conditions,
)
from .engine_constants import EntityKind, RelationshipType, infer_entity_kind
from .game_state import (
    EvaluationContext,
    GameState,
    PlayerState,
    RandomSource,
    RecentEvent,
    SessionState,
    StoryState,
    WorldState,
)
from .query_models import (
    AvailabilityResult,
    BatchProcessingResult,
    EntityConditionSet,
    EntityProcessingResult,
    EntityRecord,
    QueryFilter,
    QueryOptions,
    QueryResult,
)
from .relationships import (
    GraphMetrics,
    GraphSnapshot,
    GraphValidationReport,
    PathfindingResult,
    Relationship,
    RelationshipAnalysis,
)

__all__ = [
    "SimpleCondition",
    "CompoundCondition",
    "FunctionCondition",
    "ContextualCondition",
    "UnknownCondition",
    "ConditionExpression",
    "parse_condition",
    "parse_conditions",
    "EntityKind",
    "RelationshipType",
    "infer_entity_kind",
    "GameState",
    "PlayerState",
    "WorldState",
    "SessionState",
    "StoryState",
    "RecentEvent",
    "EvaluationContext",
    "RandomSource",
    "EntityRecord",
    "QueryFilter",
    "QueryOptions",
    "QueryResult",
    "EntityConditionSet",
    "EntityProcessingResult",
    "BatchProcessingResult",
    "AvailabilityResult",
    "Relationship",
    "GraphSnapshot",
    "RelationshipAnalysis",
    "PathfindingResult",
    "GraphMetrics",
    "GraphValidationReport",
]
