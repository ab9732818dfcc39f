# models/engine_constants.py
"""
Vocabularies shared by the condition evaluator, relationship graph and query processor.

Operator and name vocabularies are closed enums. Condition models keep the raw
strings so an unknown name survives parsing and is reported (and evaluated as
`false`) by the evaluator instead of failing validation.
"""

from enum import Enum


class EntityKind(str, Enum):
    """Coarse kind tag of a game content entity."""

    ITEM = "item"
    QUEST = "quest"
    EVENT = "event"
    NPC = "npc"
    ENEMY = "enemy"


# ID prefix convention used when the caller does not supply a kind
ENTITY_ID_PREFIXES: dict[str, EntityKind] = {
    "item_": EntityKind.ITEM,
    "quest_": EntityKind.QUEST,
    "event_": EntityKind.EVENT,
    "npc_": EntityKind.NPC,
    "enemy_": EntityKind.ENEMY,
}

DEFAULT_ENTITY_KIND = EntityKind.ITEM


def infer_entity_kind(entity_id: str) -> EntityKind:
    """Infer an entity kind from its ID prefix (`quest_dragon` -> quest)."""
    for prefix, kind in ENTITY_ID_PREFIXES.items():
        if entity_id.startswith(prefix):
            return kind
    return DEFAULT_ENTITY_KIND


class ConditionType(str, Enum):
    SIMPLE = "simple"
    COMPOUND = "compound"
    FUNCTION = "function"
    CONTEXTUAL = "contextual"


class ComparisonOperator(str, Enum):
    """Operators of `simple` conditions (and numeric function comparisons)."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_EQUAL = "greater_equal"
    LESS_EQUAL = "less_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"


class LogicalOperator(str, Enum):
    AND = "and"
    OR = "or"
    NOT = "not"


class FunctionName(str, Enum):
    DISTANCE = "distance"
    HAS_ITEM = "has_item"
    RELATIONSHIP_LEVEL = "relationship_level"
    TIME_BETWEEN = "time_between"
    PROBABILITY = "probability"
    DICE_ROLL = "dice_roll"


# Functions whose outcome depends on the random source; results using them are not cached
NON_DETERMINISTIC_FUNCTIONS = frozenset({FunctionName.PROBABILITY.value, FunctionName.DICE_ROLL.value})


class ContextType(str, Enum):
    STORY_PHASE = "story_phase"
    PLAYER_BEHAVIOR = "player_behavior"
    WORLD_STATE = "world_state"
    SESSION_CONTEXT = "session_context"


class SessionPhase(str, Enum):
    EXPLORATION = "exploration"
    COMBAT = "combat"
    SOCIAL = "social"
    REST = "rest"


# Caller session modes that are not phases themselves
SESSION_MODE_ALIASES: dict[str, SessionPhase] = {
    "conversation": SessionPhase.SOCIAL,
    "break": SessionPhase.REST,
    "planning": SessionPhase.EXPLORATION,
}


class RelationshipType(str, Enum):
    DEPENDENCY = "dependency"
    PREREQUISITE = "prerequisite"
    CONFLICT = "conflict"
    SYNERGY = "synergy"
    SEQUENCE = "sequence"
    ALTERNATIVE = "alternative"


DEPENDENCY_RELATIONSHIP_TYPES = frozenset({RelationshipType.DEPENDENCY, RelationshipType.PREREQUISITE})


class ValidationStatus(str, Enum):
    VALID = "valid"
    NEEDS_UPDATE = "needs_update"
    INVALID = "invalid"


class PathType(str, Enum):
    DIRECT = "direct"
    INDIRECT = "indirect"
    COMPLEX = "complex"


class ImpactLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SortStrategy(str, Enum):
    RELEVANCE = "relevance"
    PRIORITY = "priority"
    TIMESTAMP = "timestamp"


class ContextFactor(str, Enum):
    STORY_APPROPRIATE = "story_appropriate"
    PLAYER_READY = "player_ready"
    DRAMATIC_TIMING = "dramatic_timing"
    RESOURCE_AVAILABLE = "resource_available"
