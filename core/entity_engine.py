# core/entity_engine.py
"""
Engine facade: the single entry point callers use.

Composes the condition evaluator, the relationship graph and the query
processor. The facade keeps no per-call state; everything a call needs comes
from the caller's `GameState`. Shared mutable state is limited to the graph and
the caches owned by the graph and the query processor.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import structlog
from pydantic import ValidationError

import config
from core.condition_evaluator import ConditionEvaluator
from core.entity_provider import EntityProvider
from core.exceptions import QueryExecutionError
from core.query_processor import QueryProcessor
from core.relationship_graph import RelationshipGraph
from models.conditions import ConditionBase
from models.engine_constants import EntityKind, SortStrategy, infer_entity_kind
from models.game_state import EvaluationContext, GameState, RandomSource
from models.query_models import (
    AICriteria,
    AvailabilityResult,
    BatchProcessingResult,
    ConditionCounts,
    EntityConditionSet,
    EntityProcessingResult,
    MinimumBound,
    QueryFilter,
    QueryOptions,
    QueryResult,
    ScoreRange,
)
from models.relationships import (
    GraphMetrics,
    GraphSnapshot,
    GraphValidationReport,
    PathfindingResult,
    Relationship,
    RelationshipAnalysis,
)

logger = structlog.get_logger(__name__)

ConditionInput = ConditionBase | Mapping[str, Any]
BatchEntry = EntityConditionSet | Mapping[str, Any] | tuple[str, Sequence[ConditionInput]]


def _coerce_state(game_state: GameState | Mapping[str, Any]) -> GameState:
    if isinstance(game_state, GameState):
        return game_state
    return GameState.model_validate(game_state)


class EntityRuleEngine:
    """Evaluate, query and relate game content entities against a game state."""

    def __init__(
        self,
        *,
        provider: EntityProvider | None = None,
        graph: RelationshipGraph | GraphSnapshot | Mapping[str, Any] | None = None,
        rng: RandomSource | None = None,
        evaluator: ConditionEvaluator | None = None,
        max_workers: int | None = None,
        **query_options: Any,
    ) -> None:
        self.evaluator = evaluator or ConditionEvaluator(rng=rng)
        self.graph = graph if isinstance(graph, RelationshipGraph) else RelationshipGraph(graph)
        self.query_processor = QueryProcessor(self.evaluator, provider, self.graph, **query_options)
        self.max_workers = config.BATCH_MAX_WORKERS if max_workers is None else max(1, max_workers)
        logger.debug(
            "Entity rule engine initialized",
            max_workers=self.max_workers,
            total_nodes=self.graph.metadata.total_nodes,
        )

    # ---------------------------------------------------------- evaluation

    def evaluate_entity(
        self,
        entity_id: str,
        conditions: Iterable[ConditionInput],
        game_state: GameState | Mapping[str, Any],
        *,
        entity_type: EntityKind | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> EntityProcessingResult:
        """Evaluate every condition for one entity; success means none failed."""
        started = time.perf_counter()
        conditions = list(conditions)
        kind = entity_type or infer_entity_kind(entity_id)
        try:
            context = EvaluationContext(
                game_state=_coerce_state(game_state),
                entity_id=entity_id,
                entity_type=kind,
                metadata=dict(metadata or {}),
            )
        except ValidationError as exc:
            logger.error("Invalid game state for entity evaluation", entity_id=entity_id, error=str(exc))
            return EntityProcessingResult(
                success=False,
                entity_id=entity_id,
                entity_type=kind,
                processing_time=(time.perf_counter() - started) * 1000,
                conditions=ConditionCounts(evaluated=len(conditions), failed=len(conditions)),
                errors=[f"Invalid game state: {exc.error_count()} validation error(s)"],
            )

        passed = failed = 0
        errors: list[str] = []
        warnings: list[str] = []
        for condition in conditions:
            outcome = self.evaluator.evaluate_with_diagnostics(condition, context)
            if outcome.result:
                passed += 1
            else:
                failed += 1
            errors.extend(outcome.errors)
            warnings.extend(outcome.warnings)

        return EntityProcessingResult(
            success=failed == 0,
            entity_id=entity_id,
            entity_type=kind,
            processing_time=(time.perf_counter() - started) * 1000,
            conditions=ConditionCounts(evaluated=len(conditions), passed=passed, failed=failed),
            errors=errors,
            warnings=warnings,
        )

    def _process_entry(self, entry: BatchEntry, game_state: GameState | Mapping[str, Any]) -> EntityProcessingResult:
        try:
            if isinstance(entry, EntityConditionSet):
                parsed = entry
            elif isinstance(entry, tuple):
                parsed = EntityConditionSet(entity_id=entry[0], conditions=list(entry[1]))
            else:
                parsed = EntityConditionSet.model_validate(entry)
        except (ValidationError, IndexError, TypeError) as exc:
            entity_id = entry.get("entity_id", entry.get("entityId", "")) if isinstance(entry, Mapping) else ""
            logger.warning("Invalid batch entry", entity_id=entity_id, error=str(exc))
            return EntityProcessingResult(success=False, entity_id=str(entity_id), errors=[f"Invalid entry: {exc}"])
        return self.evaluate_entity(parsed.entity_id, parsed.conditions, game_state, entity_type=parsed.entity_type)

    def batch_process_entities(
        self, entries: Iterable[BatchEntry], game_state: GameState | Mapping[str, Any]
    ) -> BatchProcessingResult:
        """Evaluate many entities independently; results keep the input order."""
        started = time.perf_counter()
        entries = list(entries)

        if self.max_workers > 1 and len(entries) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="entity-batch-") as executor:
                results = list(executor.map(lambda entry: self._process_entry(entry, game_state), entries))
        else:
            results = [self._process_entry(entry, game_state) for entry in entries]

        errors = [f"Entity {result.entity_id}: {error}" for result in results for error in result.errors]
        successful = sum(1 for result in results if result.success)
        return BatchProcessingResult(
            total_processed=len(results),
            successful=successful,
            failed=len(results) - successful,
            processing_time=(time.perf_counter() - started) * 1000,
            results=results,
            errors=errors,
        )

    def check_entity_availability(
        self,
        entity_id: str,
        conditions: Iterable[ConditionInput],
        game_state: GameState | Mapping[str, Any],
    ) -> AvailabilityResult:
        """Availability plus confidence = passed / evaluated (0 without conditions)."""
        result = self.evaluate_entity(entity_id, conditions, game_state)
        counts = result.conditions
        confidence = counts.passed / counts.evaluated if counts.evaluated else 0.0
        reason = None
        if result.errors:
            reason = result.errors[0]
        elif not result.success:
            reason = f"{counts.failed} of {counts.evaluated} conditions not met"
        return AvailabilityResult(available=result.success, reason=reason, confidence=confidence)

    # -------------------------------------------------------------- queries

    def query_entities(
        self,
        query_filter: QueryFilter | Mapping[str, Any],
        game_state: GameState | Mapping[str, Any],
        options: QueryOptions | Mapping[str, Any] | None = None,
    ) -> QueryResult:
        """Ranked query; raises `QueryExecutionError` when the pipeline fails."""
        try:
            state = _coerce_state(game_state)
        except ValidationError as exc:
            raise QueryExecutionError(
                "Query execution failed: invalid game state",
                details={"errors": exc.errors(include_url=False)},
            ) from exc
        return self.query_processor.query_entities(query_filter, state, options)

    def get_recommended_entities(
        self,
        entity_type: EntityKind | str,
        game_state: GameState | Mapping[str, Any],
        max_results: int | None = None,
    ) -> QueryResult:
        """Query preset with recommendation-score and player-alignment floors.

        Raises:
            QueryExecutionError: If `entity_type` is not a known entity kind.
        """
        try:
            kind = EntityKind(entity_type)
        except ValueError as exc:
            raise QueryExecutionError(
                f"Query execution failed: unknown entity type {entity_type!r}",
                details={"entity_type": entity_type, "known": [member.value for member in EntityKind]},
            ) from exc
        query_filter = QueryFilter(
            entity_types=[kind],
            ai_criteria=AICriteria(
                recommendation_score=ScoreRange(
                    min=config.RECOMMENDATION_MIN_SCORE, max=config.RECOMMENDATION_MAX_SCORE
                ),
                player_alignment=MinimumBound(min=config.RECOMMENDATION_MIN_ALIGNMENT),
            ),
        )
        options = QueryOptions(
            max_results=config.RECOMMENDATION_MAX_RESULTS if max_results is None else max_results,
            include_related=True,
            sort_by=SortStrategy.RELEVANCE.value,
        )
        return self.query_entities(query_filter, game_state, options)

    async def aquery_entities(
        self,
        query_filter: QueryFilter | Mapping[str, Any],
        game_state: GameState | Mapping[str, Any],
        options: QueryOptions | Mapping[str, Any] | None = None,
    ) -> QueryResult:
        return await asyncio.to_thread(self.query_entities, query_filter, game_state, options)

    async def abatch_process_entities(
        self, entries: Iterable[BatchEntry], game_state: GameState | Mapping[str, Any]
    ) -> BatchProcessingResult:
        return await asyncio.to_thread(self.batch_process_entities, list(entries), game_state)

    # ---------------------------------------------------------------- graph

    def add_relationship(self, relationship: Relationship | Mapping[str, Any]) -> Relationship:
        return self.graph.add_relationship(relationship)

    def remove_relationship(self, source_id: str, target_id: str, relationship_type: str | None = None) -> bool:
        return self.graph.remove_relationship(source_id, target_id, relationship_type)

    def register_entity(self, entity_id: str) -> None:
        self.graph.register_entity(entity_id)

    def analyze_entity_relationships(self, entity_id: str) -> RelationshipAnalysis:
        return self.graph.analyze_relationships(entity_id)

    def find_entity_path(self, from_id: str, to_id: str, max_hops: int | None = None) -> PathfindingResult | None:
        return self.graph.find_path(from_id, to_id, max_hops)

    def find_entity_groups(self, min_strength: float = 0.7) -> list[list[str]]:
        return self.graph.find_strongly_connected_groups(min_strength)

    def get_graph_metrics(self) -> GraphMetrics:
        return self.graph.calculate_graph_metrics()

    def validate_graph(self) -> GraphValidationReport:
        return self.graph.validate_graph()

    def build_subgraph(self, center_id: str, depth: int = 2) -> GraphSnapshot:
        return self.graph.build_subgraph(center_id, depth)

    def export_graph(self) -> GraphSnapshot:
        return self.graph.export_graph()

    def import_graph(self, snapshot: GraphSnapshot | Mapping[str, Any]) -> None:
        self.graph.import_graph(snapshot)

    # ------------------------------------------------------------ lifecycle

    def get_engine_statistics(self) -> dict[str, Any]:
        return {
            "condition_evaluator": self.evaluator.statistics(),
            "query_processor": self.query_processor.statistics(),
            "relationship_graph": self.graph.statistics(),
        }

    def clear_caches(self) -> None:
        """Drop the query, analysis and path caches."""
        self.query_processor.clear_cache()
        self.graph.clear_caches()
        logger.info("Entity engine caches cleared")


entity_engine = EntityRuleEngine()
