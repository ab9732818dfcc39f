# models/relationships.py
"""Define relationship graph models and graph-analysis result shapes.

Field names are snake_case. Inputs also accept the camelCase names used by
existing persisted graphs (`sourceEntityId`, `relationType`, `totalNodes`, ...),
so an exported snapshot can be fed back through
[`RelationshipGraph.import_graph()`](core/relationship_graph.py:1) unchanged.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from core.exceptions import GraphValidationError, create_error_context

from .conditions import ConditionExpression
from .engine_constants import ImpactLevel, PathType, RelationshipType, ValidationStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def clamp_unit(value: float) -> float:
    """Clamp a number into [0, 1]."""
    return max(0.0, min(1.0, float(value)))


class RelationshipMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    description: str | None = None
    created_at: datetime = Field(
        default_factory=utc_now, validation_alias=AliasChoices("created_at", "createdAt")
    )
    last_validated: datetime | None = Field(
        default=None, validation_alias=AliasChoices("last_validated", "lastValidated")
    )
    validation_count: int = Field(
        default=0, validation_alias=AliasChoices("validation_count", "validationCount")
    )
    # Only relevant while this tag is among the game state's context tags
    context: str | None = None


class Relationship(BaseModel):
    """A typed, weighted, directed edge between two entity IDs.

    Notes:
        `strength` is clamped to [0, 1] on construction. A relationship whose source
        equals its target is representable so that graph validation can report it;
        traversals skip it.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    source_id: str = Field(validation_alias=AliasChoices("source_id", "sourceId", "sourceEntityId"))
    target_id: str = Field(validation_alias=AliasChoices("target_id", "targetId", "targetEntityId"))
    type: RelationshipType = Field(validation_alias=AliasChoices("type", "relation_type", "relationType"))
    strength: float = 1.0
    bidirectional: bool = False
    conditions: list[ConditionExpression] | None = None
    metadata: RelationshipMetadata = Field(default_factory=RelationshipMetadata)

    @field_validator("strength", mode="before")
    @classmethod
    def _clamp_strength(cls, value: Any) -> float:
        return clamp_unit(value)

    @model_validator(mode="after")
    def _default_id(self) -> Relationship:
        if not self.id:
            self.id = f"{self.source_id}-{self.target_id}-{self.type.value}"
        return self

    @property
    def key(self) -> tuple[str, str, RelationshipType]:
        """Upsert key: `(source_id, target_id, type)`."""
        return (self.source_id, self.target_id, self.type)

    @property
    def is_self_reference(self) -> bool:
        return self.source_id == self.target_id

    def inverted(self) -> Relationship:
        """Return a copy with source and target swapped (an incoming-edge view)."""
        return self.model_copy(
            deep=True,
            update={
                "id": f"{self.id}-reverse",
                "source_id": self.target_id,
                "target_id": self.source_id,
                "metadata": self.metadata.model_copy(),
            }
        )


class GraphMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_nodes: int = Field(default=0, validation_alias=AliasChoices("total_nodes", "totalNodes"))
    total_edges: int = Field(default=0, validation_alias=AliasChoices("total_edges", "totalEdges"))
    last_updated: datetime = Field(
        default_factory=utc_now, validation_alias=AliasChoices("last_updated", "lastUpdated")
    )
    validation_status: ValidationStatus = Field(
        default=ValidationStatus.VALID,
        validation_alias=AliasChoices("validation_status", "validationStatus"),
    )


class GraphSnapshot(BaseModel):
    """Serializable form of a whole relationship graph.

    `relationships` maps source ID to its outgoing edges. `nodes` lists entities
    registered without edges so isolated nodes survive a round trip.
    """

    relationships: dict[str, list[Relationship]] = Field(default_factory=dict)
    metadata: GraphMetadata = Field(default_factory=GraphMetadata)
    nodes: list[str] = Field(default_factory=list)


class RelationshipAnalysis(BaseModel):
    entity_id: str
    direct_relationships: list[Relationship] = Field(default_factory=list)
    indirect_relationships: list[Relationship] = Field(default_factory=list)
    dependency_chain: list[str] = Field(default_factory=list)
    circular_dependencies: list[list[str]] = Field(default_factory=list)
    relationship_score: float = 0.0
    impact_level: ImpactLevel = ImpactLevel.LOW


class PathfindingResult(BaseModel):
    path: list[str]
    relationship_strength: float
    hops: int
    path_type: PathType


class HubNode(BaseModel):
    id: str
    connection_count: int


class GraphMetrics(BaseModel):
    total_nodes: int = 0
    total_edges: int = 0
    average_connectivity: float = 0.0
    strongly_connected_components: list[list[str]] = Field(default_factory=list)
    isolated_nodes: list[str] = Field(default_factory=list)
    hub_nodes: list[HubNode] = Field(default_factory=list)


class GraphValidationIssue(BaseModel):
    kind: str
    source_id: str
    target_id: str
    type: RelationshipType
    message: str


class GraphValidationReport(BaseModel):
    """Outcome of `validate_graph()`; reports only, never repairs."""

    status: ValidationStatus = ValidationStatus.VALID
    issues: list[GraphValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def raise_for_errors(self) -> None:
        """Raise `GraphValidationError` if any issue was found."""
        if self.issues:
            raise GraphValidationError(
                f"Relationship graph failed validation with {len(self.issues)} issue(s)",
                details=create_error_context(
                    status=self.status.value,
                    issues=[issue.message for issue in self.issues],
                ),
            )
