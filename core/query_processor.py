# core/query_processor.py
"""
Filter, score, rank and truncate candidate entities for a game-state snapshot.

Pipeline, in order:
    1. fetch candidates per requested entity kind from the `EntityProvider`
    2. hard filters: excluded IDs, tag intersection, priority range,
       location match-or-unset, availability window
    3. filter-level conditions (all must pass) via the `ConditionEvaluator`
    4. context factors, then the soft `ai_criteria` bounds on entity fields
    5. optional expansion with related entities from the `RelationshipGraph`
    6. relevance scoring (and the recommendation-score bound)
    7. stable sort by the requested strategy
    8. truncation to `max_results`

Results are cached by `QueryFingerprint` unless the query draws random numbers
or depends on the wall clock. The cache is cleared on every relationship graph
mutation and by `clear_cache()`. Any unexpected failure inside the pipeline is
raised as `QueryExecutionError`; an empty result is a normal, successful result.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import ValidationError

import config
from config.settings import RelevanceWeights
from core.condition_evaluator import ConditionEvaluator
from core.entity_provider import EntityProvider, InMemoryEntityProvider
from core.exceptions import QueryExecutionError, create_error_context
from core.lightweight_cache import QueryFingerprint, ResultCache
from core.relationship_graph import RelationshipGraph
from models.conditions import is_deterministic
from models.engine_constants import SESSION_MODE_ALIASES, ContextFactor, SortStrategy
from models.game_state import EvaluationContext, GameState
from models.query_models import EntityRecord, QueryFilter, QueryMetadata, QueryOptions, QueryResult
from models.relationships import Relationship, clamp_unit

logger = structlog.get_logger(__name__)

_DEFAULT_RESOURCE_LEVEL = 100.0


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ScoredEntity:
    __slots__ = ("entity", "score")

    def __init__(self, entity: EntityRecord, score: float) -> None:
        self.entity = entity
        self.score = score


class QueryProcessor:
    """Answer `query_entities()` over a caller-supplied entity provider."""

    def __init__(
        self,
        evaluator: ConditionEvaluator,
        provider: EntityProvider | None = None,
        graph: RelationshipGraph | None = None,
        *,
        max_results: int | None = None,
        cache_enabled: bool | None = None,
        cache_maxsize: int | None = None,
        cache_ttl: float | None = None,
        related_min_strength: float | None = None,
        dramatic_interval_seconds: float | None = None,
        priority_scale: float | None = None,
        level_window: int | None = None,
        weights: RelevanceWeights | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.evaluator = evaluator
        self.provider: EntityProvider = provider if provider is not None else InMemoryEntityProvider()
        self.graph = graph
        self.max_results = config.QUERY_MAX_RESULTS if max_results is None else max_results
        self.cache_enabled = config.QUERY_CACHE_ENABLED if cache_enabled is None else cache_enabled
        self.related_min_strength = (
            config.RELATED_MIN_STRENGTH if related_min_strength is None else related_min_strength
        )
        self.dramatic_interval_seconds = (
            config.DRAMATIC_TIMING_MIN_INTERVAL_SECONDS
            if dramatic_interval_seconds is None
            else dramatic_interval_seconds
        )
        self.priority_scale = config.PRIORITY_SCALE if priority_scale is None else priority_scale
        self.level_window = max(1, config.LEVEL_PROXIMITY_WINDOW if level_window is None else level_window)
        self.weights = weights or config.settings.relevance_weights
        self._clock = clock or _utc_now

        self._cache = ResultCache(
            "query_results",
            maxsize=config.QUERY_CACHE_MAXSIZE if cache_maxsize is None else cache_maxsize,
            ttl=config.QUERY_CACHE_TTL_SECONDS if cache_ttl is None else cache_ttl,
        )
        self._lock = threading.Lock()
        self._queries = 0
        self._failures = 0
        # Bumped by every clear; a result computed across a clear is not stored
        self._generation = 0

        if graph is not None:
            graph.add_mutation_listener(self.clear_cache)
        subscribe = getattr(self.provider, "add_mutation_listener", None)
        if callable(subscribe):
            subscribe(self.clear_cache)

    # ------------------------------------------------------------------ API

    def query_entities(
        self,
        query_filter: QueryFilter | Mapping[str, Any],
        game_state: GameState,
        options: QueryOptions | Mapping[str, Any] | None = None,
    ) -> QueryResult:
        """Run the pipeline and return ranked entities.

        Raises:
            QueryExecutionError: If the filter or options are invalid, or the
                pipeline fails unexpectedly.
        """
        with self._lock:
            self._queries += 1
        try:
            query_filter = (
                query_filter if isinstance(query_filter, QueryFilter) else QueryFilter.model_validate(query_filter)
            )
            if options is None:
                options = QueryOptions()
            elif not isinstance(options, QueryOptions):
                options = QueryOptions.model_validate(options)
        except ValidationError as exc:
            self._record_failure()
            raise QueryExecutionError(
                "Query execution failed: invalid filter or options",
                details={"errors": exc.errors(include_url=False)},
            ) from exc

        cache_key = None
        if self._is_cacheable(query_filter, options):
            cache_key = QueryFingerprint.build(query_filter, game_state, options)
            cached = self._cache.get(cache_key)
            if cached is not None:
                hit = cached.model_copy(deep=True)
                hit.metadata.cache_hit = True
                logger.debug("Query cache hit", entity_types=cache_key.entity_types)
                return hit

        with self._lock:
            generation = self._generation
        try:
            result = self._run_pipeline(query_filter, game_state, options)
        except Exception as exc:
            self._record_failure()
            logger.error("Query execution failed", error=str(exc), exc_info=True)
            raise QueryExecutionError(
                f"Query execution failed: {exc}",
                details=create_error_context(
                    entity_types=[kind.value for kind in query_filter.entity_types or []] or None,
                    sort_by=options.sort_by,
                ),
            ) from exc

        if cache_key is not None:
            with self._lock:
                if generation == self._generation:
                    self._cache.set(cache_key, result.model_copy(deep=True))
                else:
                    logger.debug("Query result not cached; sources changed during the query")
        return result

    def clear_cache(self) -> None:
        with self._lock:
            self._generation += 1
            self._cache.clear()
        logger.debug("Query cache cleared")

    def cache_size(self) -> int:
        return self._cache.size()

    def statistics(self) -> dict[str, Any]:
        metrics = self._cache.metrics()
        with self._lock:
            return {
                "queries": self._queries,
                "failures": self._failures,
                "cache_size": metrics["size"],
                "cache_hits": metrics["hits"],
                "cache_misses": metrics["misses"],
                "cache_hit_rate": metrics["hit_rate"],
            }

    def score_entity(self, entity: EntityRecord, query_filter: QueryFilter, game_state: GameState) -> float:
        """Weighted relevance in [0, 1]; monotonic in each factor."""
        weights = self.weights
        priority_factor = clamp_unit(entity.priority / self.priority_scale) if self.priority_scale > 0 else 0.0

        tag_factor = 0.0
        if query_filter.tags:
            wanted = set(query_filter.tags)
            tag_factor = len(wanted & set(entity.tags)) / len(wanted)

        location_factor = 1.0 if query_filter.location and entity.location == query_filter.location else 0.0

        player_level = game_state.player.level
        required = entity.required_level if entity.required_level is not None else player_level
        level_factor = max(0.0, (self.level_window - abs(required - player_level)) / self.level_window)

        story_factor = 0.0
        if entity.story_relevance is not None and game_state.story is not None:
            story_factor = clamp_unit(entity.story_relevance)

        score = (
            weights.priority * priority_factor
            + weights.tags * tag_factor
            + weights.location * location_factor
            + weights.level * level_factor
            + weights.story * story_factor
        )
        return clamp_unit(score)

    # ------------------------------------------------------------ pipeline

    def _record_failure(self) -> None:
        with self._lock:
            self._failures += 1

    def _is_cacheable(self, query_filter: QueryFilter, options: QueryOptions) -> bool:
        if not (self.cache_enabled and options.use_cache):
            return False
        if ContextFactor.DRAMATIC_TIMING.value in (query_filter.context_factors or []):
            return False
        return is_deterministic(query_filter.conditions or [])

    def _run_pipeline(self, query_filter: QueryFilter, game_state: GameState, options: QueryOptions) -> QueryResult:
        started = time.perf_counter()

        candidates = self._fetch_candidates(query_filter)
        candidates = [entity for entity in candidates if self._passes_hard_filters(entity, query_filter)]
        if query_filter.conditions:
            candidates = [entity for entity in candidates if self._passes_conditions(entity, query_filter, game_state)]
        if query_filter.context_factors:
            candidates = [
                entity for entity in candidates if self._passes_context_factors(entity, query_filter, game_state)
            ]
        if query_filter.ai_criteria:
            candidates = [entity for entity in candidates if self._passes_soft_bounds(entity, query_filter)]
        if options.include_related and self.graph is not None:
            candidates = self._include_related(candidates, query_filter, game_state)

        scored = [ScoredEntity(entity, self.score_entity(entity, query_filter, game_state)) for entity in candidates]
        score_range = query_filter.ai_criteria.recommendation_score if query_filter.ai_criteria else None
        if score_range is not None:
            scored = [item for item in scored if score_range.min <= item.score <= score_range.max]

        ordered = self._sort(scored, options.sort_by)
        limit = self.max_results if options.max_results is None else options.max_results
        limited = ordered[: max(0, limit)]

        return QueryResult(
            entities=[item.entity for item in limited],
            total_count=len(ordered),
            relevance_scores=[item.score for item in limited],
            execution_time=(time.perf_counter() - started) * 1000,
            metadata=QueryMetadata(
                filters_applied=query_filter.applied_filters(),
                sorted_by=options.sort_by,
                context_factors=self._context_factor_names(game_state),
                cache_hit=False,
            ),
        )

    def _fetch_candidates(self, query_filter: QueryFilter) -> list[EntityRecord]:
        if not query_filter.entity_types:
            return list(self.provider.get_entities(None))
        seen: set[str] = set()
        candidates: list[EntityRecord] = []
        for kind in query_filter.entity_types:
            for entity in self.provider.get_entities(kind):
                if entity.id not in seen:
                    seen.add(entity.id)
                    candidates.append(entity)
        return candidates

    @staticmethod
    def _passes_hard_filters(entity: EntityRecord, query_filter: QueryFilter) -> bool:
        if query_filter.exclude_ids and entity.id in query_filter.exclude_ids:
            return False
        if query_filter.tags and not set(query_filter.tags) & set(entity.tags):
            return False
        priority = query_filter.priority
        if priority is not None:
            if priority.min is not None and entity.priority < priority.min:
                return False
            if priority.max is not None and entity.priority > priority.max:
                return False
        if query_filter.location and entity.location and entity.location != query_filter.location:
            return False
        window = query_filter.time_constraints
        if window is not None:
            if window.end_time and entity.available_until and _as_utc(entity.available_until) > _as_utc(window.end_time):
                return False
            if window.start_time and entity.available_from and _as_utc(entity.available_from) < _as_utc(window.start_time):
                return False
        return True

    def _passes_conditions(self, entity: EntityRecord, query_filter: QueryFilter, game_state: GameState) -> bool:
        context = EvaluationContext(
            game_state=game_state,
            entity_id=entity.id,
            entity_type=entity.type,
            metadata=entity.metadata,
        )
        return all(self.evaluator.evaluate(condition, context) for condition in query_filter.conditions or [])

    def _passes_context_factors(self, entity: EntityRecord, query_filter: QueryFilter, game_state: GameState) -> bool:
        for name in query_filter.context_factors or []:
            try:
                factor = ContextFactor(name)
            except ValueError:
                logger.warning("Unknown context factor ignored", factor=name)
                continue
            if not self._context_factor_holds(factor, entity, game_state):
                return False
        return True

    def _context_factor_holds(self, factor: ContextFactor, entity: EntityRecord, game_state: GameState) -> bool:
        player = game_state.player
        if factor is ContextFactor.STORY_APPROPRIATE:
            if not entity.required_phase:
                return True
            required = SESSION_MODE_ALIASES.get(entity.required_phase, entity.required_phase)
            return game_state.session.phase == required

        if factor is ContextFactor.PLAYER_READY:
            requirements = entity.requirements
            if requirements is None:
                return True
            if requirements.level is not None and player.level < requirements.level:
                return False
            return all(item in player.items for item in requirements.items)

        if factor is ContextFactor.DRAMATIC_TIMING:
            last_event = game_state.last_event_time()
            if last_event is None:
                return True
            interval = (
                entity.min_event_interval if entity.min_event_interval is not None else self.dramatic_interval_seconds
            )
            elapsed = (_as_utc(self._clock()) - _as_utc(last_event)).total_seconds()
            return elapsed >= interval

        resources = entity.resource_requirements
        if resources is None:
            return True
        stats = player.stats
        hp = stats.get("hp", stats.get("hitPoints", _DEFAULT_RESOURCE_LEVEL))
        mp = stats.get("mp", stats.get("magicPoints", _DEFAULT_RESOURCE_LEVEL))
        if resources.hp and hp < resources.hp:
            return False
        if resources.mp and mp < resources.mp:
            return False
        return True

    @staticmethod
    def _passes_soft_bounds(entity: EntityRecord, query_filter: QueryFilter) -> bool:
        # Bounds only exclude candidates that carry the field
        criteria = query_filter.ai_criteria
        if criteria is None:
            return True
        if criteria.player_alignment and entity.player_alignment is not None:
            if entity.player_alignment < criteria.player_alignment.min:
                return False
        if criteria.story_relevance and entity.story_relevance is not None:
            if entity.story_relevance < criteria.story_relevance.min:
                return False
        if criteria.difficulty_match and entity.difficulty is not None:
            match = criteria.difficulty_match
            if abs(entity.difficulty - match.target) > match.tolerance:
                return False
        return True

    def _relationship_relevant(self, relationship: Relationship, game_state: GameState) -> bool:
        if relationship.strength < self.related_min_strength:
            return False
        tag = relationship.metadata.context
        return not tag or tag in game_state.context_tags

    def _include_related(
        self, candidates: list[EntityRecord], query_filter: QueryFilter, game_state: GameState
    ) -> list[EntityRecord]:
        seen = {entity.id for entity in candidates}
        excluded = set(query_filter.exclude_ids or [])
        related: list[EntityRecord] = []
        for entity in candidates:
            for relationship in self.graph.get_entity_relationships(entity.id, include_incoming=False):
                target_id = relationship.target_id
                if target_id in seen or target_id in excluded:
                    continue
                if not self._relationship_relevant(relationship, game_state):
                    continue
                target = self.provider.get_entity(target_id)
                if target is None:
                    continue
                seen.add(target_id)
                related.append(target)
        if related:
            logger.debug("Related entities included", count=len(related))
        return candidates + related

    @staticmethod
    def _sort(scored: list[ScoredEntity], strategy: str) -> list[ScoredEntity]:
        # sorted() is stable, ties keep candidate order
        if strategy == SortStrategy.RELEVANCE.value:
            return sorted(scored, key=lambda item: item.score, reverse=True)
        if strategy == SortStrategy.PRIORITY.value:
            return sorted(scored, key=lambda item: item.entity.priority, reverse=True)
        if strategy == SortStrategy.TIMESTAMP.value:
            return sorted(
                scored,
                key=lambda item: _as_utc(item.entity.timestamp).timestamp() if item.entity.timestamp else float("-inf"),
                reverse=True,
            )
        return list(scored)

    @staticmethod
    def _context_factor_names(game_state: GameState) -> list[str]:
        names = []
        if game_state.story is not None:
            names.append("story_context")
        if game_state.player.id:
            names.append("player_context")
        names.append("session_context")
        if game_state.context_tags:
            names.append("tag_context")
        return names
