# tests/test_query_processor.py
from datetime import datetime, timedelta, timezone

import pytest

from core.condition_evaluator import ConditionEvaluator
from core.entity_provider import InMemoryEntityProvider
from core.exceptions import QueryExecutionError
from core.query_processor import QueryProcessor
from core.relationship_graph import RelationshipGraph
from models.game_state import RecentEvent
from models.query_models import EntityRecord, QueryFilter, QueryOptions

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_processor(records, graph=None, **kwargs):
    kwargs.setdefault("clock", lambda: NOW)
    return QueryProcessor(ConditionEvaluator(), InMemoryEntityProvider(records), graph, **kwargs)


def ids(result):
    return [entity.id for entity in result.entities]


class TestTruncationAndOrdering:
    def test_max_results_keeps_first_of_equal_scores(self, game_state):
        records = [{"id": f"quest_{i}", "priority": 5} for i in range(10)]
        processor = make_processor(records)

        result = processor.query_entities({"entity_types": ["quest"]}, game_state, {"maxResults": 2})

        assert ids(result) == ["quest_0", "quest_1"]
        assert result.total_count == 10
        assert len(result.relevance_scores) == 2
        assert result.relevance_scores[0] == result.relevance_scores[1]

    def test_relevance_order_follows_priority(self, game_state):
        processor = make_processor(
            [{"id": "quest_low", "priority": 1}, {"id": "quest_high", "priority": 9}, {"id": "quest_mid", "priority": 5}]
        )
        result = processor.query_entities({}, game_state)
        assert ids(result) == ["quest_high", "quest_mid", "quest_low"]
        assert all(0.0 <= score <= 1.0 for score in result.relevance_scores)
        assert result.relevance_scores == sorted(result.relevance_scores, reverse=True)

    def test_sort_by_timestamp_puts_undated_last(self, game_state):
        processor = make_processor(
            [
                {"id": "event_undated"},
                {"id": "event_old", "timestamp": "2026-01-01T00:00:00Z"},
                {"id": "event_new", "timestamp": "2026-02-01T00:00:00Z"},
            ]
        )
        result = processor.query_entities({}, game_state, QueryOptions(sort_by="timestamp"))
        assert ids(result) == ["event_new", "event_old", "event_undated"]
        assert result.metadata.sorted_by == "timestamp"

    def test_unknown_sort_strategy_keeps_candidate_order(self, game_state):
        processor = make_processor([{"id": "item_b", "priority": 1}, {"id": "item_a", "priority": 9}])
        result = processor.query_entities({}, game_state, {"sort_by": "alphabetical"})
        assert ids(result) == ["item_b", "item_a"]

    def test_entity_types_select_kinds(self, game_state):
        processor = make_processor([{"id": "item_a"}, {"id": "quest_b"}, {"id": "npc_c"}])
        result = processor.query_entities({"entity_types": ["npc", "item"]}, game_state, {"sort_by": "none"})
        assert ids(result) == ["npc_c", "item_a"]


class TestHardFilters:
    def test_tags_priority_location_and_exclusions(self, game_state):
        processor = make_processor(
            [
                {"id": "quest_a", "tags": ["combat"], "priority": 5, "location": "forest"},
                {"id": "quest_b", "tags": ["social"], "priority": 5},
                {"id": "quest_c", "tags": ["combat"], "priority": 1},
                {"id": "quest_d", "tags": ["combat", "boss"], "priority": 8, "location": "castle"},
                {"id": "quest_e", "tags": ["boss"], "priority": 6},
                {"id": "quest_f", "tags": ["boss"], "priority": 6},
            ]
        )
        query = {
            "tags": ["combat", "boss"],
            "priority": 3,
            "location": "forest",
            "exclude_ids": ["quest_f"],
        }
        result = processor.query_entities(query, game_state, {"sort_by": "none"})

        assert ids(result) == ["quest_a", "quest_e"]
        assert result.metadata.filters_applied == ["tags", "priority", "exclude_ids", "location"]

    def test_priority_upper_bound(self, game_state):
        processor = make_processor([{"id": "item_a", "priority": 2}, {"id": "item_b", "priority": 9}])
        result = processor.query_entities({"priority": {"max": 5}}, game_state)
        assert ids(result) == ["item_a"]

    def test_time_window(self, game_state):
        processor = make_processor(
            [
                {"id": "event_inside", "available_from": "2026-03-02T00:00:00Z", "available_until": "2026-03-05T00:00:00Z"},
                {"id": "event_late", "available_until": "2026-04-01T00:00:00Z"},
                {"id": "event_early", "available_from": "2026-02-01T00:00:00Z"},
                {"id": "event_open"},
            ]
        )
        window = {"time_constraints": {"startTime": "2026-03-01T00:00:00Z", "endTime": "2026-03-10T00:00:00"}}
        result = processor.query_entities(window, game_state, {"sort_by": "none"})
        assert ids(result) == ["event_inside", "event_open"]


class TestConditionsAndContext:
    def test_level_condition_filters_every_candidate(self, game_state):
        processor = make_processor([{"id": "quest_dragon"}, {"id": "quest_rats"}])
        query = {"conditions": [{"type": "simple", "field": "player.level", "operator": "greater_equal", "value": 10}]}

        result = processor.query_entities(query, game_state)

        assert result.entities == []
        assert result.total_count == 0

    def test_player_ready_and_story_appropriate(self, game_state):
        processor = make_processor(
            [
                {"id": "quest_easy", "requirements": {"level": 5, "items": ["item_sword"]}},
                {"id": "quest_hard", "requirements": {"level": 10}},
                {"id": "quest_key", "requirements": {"items": ["item_key"]}},
                {"id": "quest_battle", "requiredPhase": "combat"},
                {"id": "quest_plan", "requiredPhase": "planning"},
            ]
        )
        result = processor.query_entities(
            {"context_factors": {"player_ready": True, "story_appropriate": True}}, game_state, {"sort_by": "none"}
        )
        assert ids(result) == ["quest_easy", "quest_plan"]

    def test_resource_available(self, game_state):
        processor = make_processor(
            [
                {"id": "item_cheap", "resource_requirements": {"hp": 50}},
                {"id": "item_costly", "resourceRequirements": {"hp": 90}},
                {"id": "item_mana", "resource_requirements": {"mp": 30}},
            ]
        )
        result = processor.query_entities({"context_factors": ["resource_available"]}, game_state)
        assert ids(result) == ["item_cheap"]

    def test_dramatic_timing_uses_last_event(self, game_state):
        state = game_state.model_copy(
            update={"recent_events": [RecentEvent(type="battle", timestamp=NOW - timedelta(seconds=60))]}
        )
        processor = make_processor([{"id": "event_ambush"}, {"id": "event_quick", "min_event_interval": 30}])

        result = processor.query_entities({"context_factors": ["dramatic_timing"]}, state)

        assert ids(result) == ["event_quick"]
        assert processor.cache_size() == 0

    def test_unknown_context_factor_is_ignored(self, game_state):
        processor = make_processor([{"id": "item_a"}])
        result = processor.query_entities({"context_factors": ["moon_phase"]}, game_state)
        assert ids(result) == ["item_a"]

    def test_soft_bounds_only_apply_to_records_with_the_field(self, game_state):
        processor = make_processor(
            [
                {"id": "npc_friend", "player_alignment": 0.9},
                {"id": "npc_foe", "player_alignment": 0.1},
                {"id": "npc_unknown"},
                {"id": "npc_tough", "difficulty": 9},
            ]
        )
        criteria = {"aiCriteria": {"playerAlignment": {"min": 0.5}, "difficultyMatch": {"target": 5, "tolerance": 2}}}
        result = processor.query_entities(criteria, game_state, {"sort_by": "none"})
        assert ids(result) == ["npc_friend", "npc_unknown"]

    def test_recommendation_score_range(self, game_state):
        processor = make_processor([{"id": "quest_top", "priority": 10}, {"id": "quest_bottom", "priority": 0, "required_level": 40}])
        result = processor.query_entities({"ai_criteria": {"recommendation_score": {"min": 0.3}}}, game_state)
        assert ids(result) == ["quest_top"]

    def test_metadata_context_factors(self, game_state):
        result = make_processor([]).query_entities({}, game_state)
        assert result.metadata.context_factors == ["player_context", "session_context", "tag_context"]
        assert result.metadata.cache_hit is False


class TestRelatedEntities:
    @pytest.fixture
    def graph(self):
        graph = RelationshipGraph()
        graph.add_relationship({"source_id": "quest_dragon", "target_id": "item_sword", "type": "prerequisite", "strength": 0.9})
        graph.add_relationship({"source_id": "quest_dragon", "target_id": "item_rope", "type": "synergy", "strength": 0.1})
        graph.add_relationship(
            {
                "source_id": "quest_dragon",
                "target_id": "item_torch",
                "type": "synergy",
                "strength": 0.8,
                "metadata": {"context": "night"},
            }
        )
        graph.add_relationship(
            {
                "source_id": "quest_dragon",
                "target_id": "item_parasol",
                "type": "synergy",
                "strength": 0.8,
                "metadata": {"context": "desert"},
            }
        )
        return graph

    @pytest.fixture
    def records(self):
        return [{"id": name} for name in ("quest_dragon", "item_sword", "item_rope", "item_torch", "item_parasol")]

    def test_strong_and_in_context_relations_are_added(self, game_state, graph, records):
        processor = make_processor(records, graph)
        result = processor.query_entities({"entity_types": ["quest"]}, game_state, {"include_related": True, "sort_by": "none"})
        assert ids(result) == ["quest_dragon", "item_sword", "item_torch"]

    def test_related_respects_exclusions(self, game_state, graph, records):
        processor = make_processor(records, graph)
        result = processor.query_entities(
            {"entity_types": ["quest"], "exclude_ids": ["item_sword"]}, game_state, {"include_related": True}
        )
        assert "item_sword" not in ids(result)

    def test_without_flag_only_candidates(self, game_state, graph, records):
        processor = make_processor(records, graph)
        assert ids(processor.query_entities({"entity_types": ["quest"]}, game_state)) == ["quest_dragon"]


class TestCaching:
    def test_repeat_query_is_a_cache_hit(self, game_state):
        processor = make_processor([{"id": "item_a", "priority": 3}])
        first = processor.query_entities({}, game_state)
        second = processor.query_entities({}, game_state)

        assert first.metadata.cache_hit is False
        assert second.metadata.cache_hit is True
        assert ids(second) == ids(first)
        assert processor.statistics()["cache_hits"] == 1

    def test_graph_mutation_clears_cache(self, game_state):
        graph = RelationshipGraph()
        processor = make_processor([{"id": "item_a"}], graph)
        processor.query_entities({}, game_state)
        assert processor.cache_size() == 1

        graph.add_relationship({"source_id": "item_a", "target_id": "item_b", "type": "synergy"})
        assert processor.cache_size() == 0

    def test_random_conditions_and_opt_out_skip_the_cache(self, game_state):
        processor = make_processor([{"id": "item_a"}])
        chance = {"type": "function", "function_name": "probability", "parameters": {"chance": 1.0}}
        processor.query_entities({"conditions": [chance]}, game_state)
        processor.query_entities({}, game_state, {"use_cache": False})
        assert processor.cache_size() == 0

    def test_different_state_is_a_different_key(self, game_state):
        processor = make_processor([{"id": "item_a"}])
        processor.query_entities({}, game_state)
        moved = game_state.model_copy(update={"context_tags": ["castle"]})
        assert processor.query_entities({}, moved).metadata.cache_hit is False

    def test_provider_changes_clear_cache(self, game_state):
        provider = InMemoryEntityProvider([{"id": "quest_a", "priority": 1}])
        processor = QueryProcessor(ConditionEvaluator(), provider, clock=lambda: NOW)
        assert ids(processor.query_entities({}, game_state)) == ["quest_a"]

        provider.add({"id": "quest_b", "priority": 9})
        after_add = processor.query_entities({}, game_state)
        assert after_add.metadata.cache_hit is False
        assert ids(after_add) == ["quest_b", "quest_a"]

        assert provider.remove("quest_b") is True
        assert ids(processor.query_entities({}, game_state)) == ["quest_a"]
        assert provider.remove("quest_b") is False
        assert processor.cache_size() == 1

    def test_result_computed_across_a_mutation_is_not_stored(self, game_state):
        graph = RelationshipGraph()

        class MutatingProvider(InMemoryEntityProvider):
            def get_entities(self, kind=None):
                entities = super().get_entities(kind)
                if not graph.has_entity("item_a"):
                    graph.add_relationship({"source_id": "item_a", "target_id": "item_b", "type": "synergy"})
                return entities

        processor = QueryProcessor(ConditionEvaluator(), MutatingProvider([{"id": "item_a"}]), graph)
        processor.query_entities({}, game_state)
        assert processor.cache_size() == 0

        processor.query_entities({}, game_state)
        assert processor.cache_size() == 1


class TestFailures:
    def test_invalid_filter(self, game_state):
        with pytest.raises(QueryExecutionError):
            make_processor([]).query_entities({"entity_types": ["spaceship"]}, game_state)

    def test_provider_failure_is_wrapped(self, game_state):
        class BrokenProvider:
            def get_entities(self, kind=None):
                raise RuntimeError("storage offline")

            def get_entity(self, entity_id):
                return None

        processor = QueryProcessor(ConditionEvaluator(), BrokenProvider())
        with pytest.raises(QueryExecutionError, match="storage offline"):
            processor.query_entities({}, game_state)
        assert processor.statistics()["failures"] == 1


class TestScoring:
    def test_score_is_monotonic_in_priority_and_tags(self, game_state):
        processor = make_processor([])
        query = QueryFilter(tags=["combat", "boss"])
        low = EntityRecord(id="quest_a", priority=2, tags=["combat"])
        high = EntityRecord(id="quest_b", priority=8, tags=["combat"])
        tagged = EntityRecord(id="quest_c", priority=8, tags=["combat", "boss"])

        scores = [processor.score_entity(entity, query, game_state) for entity in (low, high, tagged)]
        assert scores == sorted(scores)
        assert scores[0] < scores[1] < scores[2]
        assert all(0.0 <= score <= 1.0 for score in scores)

    def test_score_is_clamped_for_extreme_priority(self, game_state):
        processor = make_processor([])
        entity = EntityRecord(id="quest_a", priority=1000, story_relevance=5)
        assert processor.score_entity(entity, QueryFilter(), game_state) <= 1.0

    def test_zero_level_window_is_raised_to_one(self, game_state):
        processor = make_processor([], level_window=0)
        assert processor.level_window == 1
        entity = EntityRecord(id="quest_a", required_level=game_state.player.level)
        assert 0.0 <= processor.score_entity(entity, QueryFilter(), game_state) <= 1.0
