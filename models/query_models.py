# models/query_models.py
"""Define candidate records, query filters and the result shapes of the engine.

Candidate records are owned by the caller (see
[`EntityProvider`](core/entity_provider.py:1)); the engine only reads the fields
declared here plus whatever extra keys a record carries.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .conditions import ConditionExpression
from .engine_constants import EntityKind, SortStrategy, infer_entity_kind


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class EntityRequirements(BaseModel):
    level: int | None = None
    items: list[str] = Field(default_factory=list)


class ResourceRequirements(BaseModel):
    hp: float | None = None
    mp: float | None = None


class EntityRecord(BaseModel):
    """A game content entity as seen by the query processor.

    Notes:
        Unknown keys are kept (`extra="allow"`) and returned untouched. When `type`
        is omitted it is inferred from the ID prefix.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    type: EntityKind | None = Field(default=None, validation_alias=_alias("type", "entity_type", "entityType"))
    name: str | None = None
    tags: list[str] = Field(default_factory=list)
    priority: float = 0.0
    location: str | None = None
    required_level: int | None = Field(default=None, validation_alias=_alias("required_level", "requiredLevel"))
    story_relevance: float | None = Field(
        default=None, validation_alias=_alias("story_relevance", "storyRelevance")
    )
    player_alignment: float | None = Field(
        default=None, validation_alias=_alias("player_alignment", "playerAlignment")
    )
    difficulty: float | None = None
    timestamp: datetime | None = None
    available_from: datetime | None = Field(default=None, validation_alias=_alias("available_from", "availableFrom"))
    available_until: datetime | None = Field(
        default=None, validation_alias=_alias("available_until", "availableUntil")
    )
    required_phase: str | None = Field(default=None, validation_alias=_alias("required_phase", "requiredPhase"))
    requirements: EntityRequirements | None = None
    # Seconds that must pass since the latest recent event
    min_event_interval: float | None = Field(
        default=None, validation_alias=_alias("min_event_interval", "minEventInterval")
    )
    resource_requirements: ResourceRequirements | None = Field(
        default=None, validation_alias=_alias("resource_requirements", "resourceRequirements")
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _infer_type(self) -> EntityRecord:
        if self.type is None:
            self.type = infer_entity_kind(self.id)
        return self


class PriorityRange(BaseModel):
    min: float | None = None
    max: float | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_number(cls, value: Any) -> Any:
        # A bare number is a priority floor
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return {"min": value}
        return value


class TimeConstraints(BaseModel):
    """Availability window an entity must fit inside."""

    model_config = ConfigDict(populate_by_name=True)

    start_time: datetime | None = Field(default=None, validation_alias=_alias("start_time", "startTime", "after"))
    end_time: datetime | None = Field(default=None, validation_alias=_alias("end_time", "endTime", "before"))


class ScoreRange(BaseModel):
    min: float = 0.0
    max: float = 1.0


class MinimumBound(BaseModel):
    min: float = 0.0


class DifficultyMatch(BaseModel):
    target: float
    tolerance: float = 0.0


class AICriteria(BaseModel):
    """Soft numeric bounds layered on top of the hard boolean conditions."""

    model_config = ConfigDict(populate_by_name=True)

    recommendation_score: ScoreRange | None = Field(
        default=None, validation_alias=_alias("recommendation_score", "recommendationScore")
    )
    player_alignment: MinimumBound | None = Field(
        default=None, validation_alias=_alias("player_alignment", "playerAlignment")
    )
    story_relevance: MinimumBound | None = Field(
        default=None, validation_alias=_alias("story_relevance", "storyRelevance")
    )
    difficulty_match: DifficultyMatch | None = Field(
        default=None, validation_alias=_alias("difficulty_match", "difficultyMatch")
    )


class QueryFilter(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    entity_types: list[EntityKind] | None = Field(
        default=None, validation_alias=_alias("entity_types", "entityTypes")
    )
    tags: list[str] | None = None
    priority: PriorityRange | None = None
    exclude_ids: list[str] | None = Field(default=None, validation_alias=_alias("exclude_ids", "excludeIds"))
    location: str | None = None
    conditions: list[ConditionExpression] | None = None
    context_factors: list[str] | None = Field(
        default=None, validation_alias=_alias("context_factors", "contextFactors")
    )
    time_constraints: TimeConstraints | None = Field(
        default=None, validation_alias=_alias("time_constraints", "timeConstraints")
    )
    ai_criteria: AICriteria | None = Field(default=None, validation_alias=_alias("ai_criteria", "aiCriteria"))

    @field_validator("context_factors", mode="before")
    @classmethod
    def _factor_names(cls, value: Any) -> Any:
        # {"player_ready": true, ...} is accepted; the keys name the factors
        if isinstance(value, dict):
            return list(value.keys())
        return value

    def applied_filters(self) -> list[str]:
        names = ("tags", "priority", "exclude_ids", "location", "conditions", "context_factors", "time_constraints", "ai_criteria")
        return [name for name in names if getattr(self, name)]


class QueryOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    max_results: int | None = Field(default=None, validation_alias=_alias("max_results", "maxResults"))
    include_related: bool = Field(default=False, validation_alias=_alias("include_related", "includeRelated"))
    # Kept as a plain string; an unrecognized strategy leaves the order unchanged
    sort_by: str = Field(default=SortStrategy.RELEVANCE.value, validation_alias=_alias("sort_by", "sortBy"))
    use_cache: bool = Field(default=True, validation_alias=_alias("use_cache", "useCache"))


class QueryMetadata(BaseModel):
    filters_applied: list[str] = Field(default_factory=list)
    sorted_by: str = SortStrategy.RELEVANCE.value
    context_factors: list[str] = Field(default_factory=list)
    cache_hit: bool = False


class QueryResult(BaseModel):
    entities: list[EntityRecord] = Field(default_factory=list)
    total_count: int = 0
    relevance_scores: list[float] = Field(default_factory=list)
    execution_time: float = 0.0
    metadata: QueryMetadata = Field(default_factory=QueryMetadata)


class EntityConditionSet(BaseModel):
    """Conditions attached to one entity, as submitted for (batch) evaluation."""

    model_config = ConfigDict(populate_by_name=True)

    entity_id: str = Field(validation_alias=_alias("entity_id", "entityId"))
    conditions: list[ConditionExpression] = Field(default_factory=list)
    entity_type: EntityKind | None = Field(default=None, validation_alias=_alias("entity_type", "entityType"))


class ConditionCounts(BaseModel):
    evaluated: int = 0
    passed: int = 0
    failed: int = 0


class EntityProcessingResult(BaseModel):
    success: bool
    entity_id: str
    entity_type: EntityKind | None = None
    processing_time: float = 0.0
    conditions: ConditionCounts = Field(default_factory=ConditionCounts)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class BatchProcessingResult(BaseModel):
    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    processing_time: float = 0.0
    results: list[EntityProcessingResult] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class AvailabilityResult(BaseModel):
    available: bool
    reason: str | None = None
    confidence: float = 0.0
