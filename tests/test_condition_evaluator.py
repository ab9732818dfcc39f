# tests/test_condition_evaluator.py
import random

import pytest

from core.condition_evaluator import ConditionEvaluator, compare, resolve_path
from models.engine_constants import ComparisonOperator
from models.game_state import EvaluationContext


def simple(field, operator, value):
    return {"type": "simple", "field": field, "operator": operator, "value": value}


def function(name, **parameters):
    return {"type": "function", "function_name": name, "parameters": parameters}


def contextual(context_type, **data):
    return {"type": "contextual", "context_type": context_type, "context_data": data}


class TestResolvePath:
    def test_nested_mapping_and_list_index(self, game_state):
        assert resolve_path(game_state, "player.stats.hp") == 80
        assert resolve_path(game_state, "session.npcs_present.0") == "npc_merchant"

    def test_missing_segments_resolve_to_none(self, game_state):
        assert resolve_path(game_state, "player.unknown") is None
        assert resolve_path(game_state, "session.npcs_present.5") is None
        assert resolve_path(game_state, "") is None


class TestCompare:
    def test_absent_value_only_satisfies_negations(self):
        assert compare(None, ComparisonOperator.NOT_EQUALS, 3) is True
        assert compare(None, ComparisonOperator.NOT_CONTAINS, "x") is True
        assert compare(None, ComparisonOperator.NOT_IN, [1, 2]) is True
        assert compare(None, ComparisonOperator.NOT_IN, 5) is False
        assert compare(None, ComparisonOperator.EQUALS, None) is False
        assert compare(None, ComparisonOperator.GREATER_THAN, 1) is False

    def test_numeric_strings_are_coerced(self):
        assert compare("7", ComparisonOperator.EQUALS, 7) is True
        assert compare("10", ComparisonOperator.GREATER_THAN, 9) is True
        assert compare("abc", ComparisonOperator.LESS_THAN, 9) is False

    def test_contains_on_lists_and_strings(self):
        assert compare(["a", "b"], ComparisonOperator.CONTAINS, "a") is True
        assert compare("dark_forest", ComparisonOperator.CONTAINS, "forest") is True
        assert compare(["a"], ComparisonOperator.NOT_CONTAINS, "b") is True

    def test_in_requires_a_list(self):
        assert compare("x", ComparisonOperator.IN, ["x", "y"]) is True
        assert compare("x", ComparisonOperator.IN, "x") is False
        assert compare("z", ComparisonOperator.NOT_IN, ["x", "y"]) is True


class TestSimpleConditions:
    def test_level_threshold(self, evaluator, context):
        assert evaluator.evaluate(simple("player.level", "greater_equal", 5), context) is True
        assert evaluator.evaluate(simple("player.level", "greater_equal", 10), context) is False

    def test_item_membership(self, evaluator, context):
        assert evaluator.evaluate(simple("player.items", "contains", "item_sword"), context) is True
        assert evaluator.evaluate(simple("player.items", "contains", "item_shield"), context) is False

    def test_phase_in_list(self, evaluator, context):
        assert evaluator.evaluate(simple("session.phase", "in", ["exploration", "combat"]), context) is True

    def test_missing_field(self, evaluator, context):
        assert evaluator.evaluate(simple("player.gold", "equals", 0), context) is False
        assert evaluator.evaluate(simple("player.gold", "not_equals", 0), context) is True

    def test_unknown_operator_is_a_warning(self, evaluator, context):
        outcome = evaluator.evaluate_with_diagnostics(simple("player.level", "roughly", 7), context)
        assert outcome.result is False
        assert len(outcome.warnings) == 1
        assert not outcome.errors


class TestLenientParsing:
    def test_unknown_condition_type(self, evaluator, context):
        outcome = evaluator.evaluate_with_diagnostics({"type": "telepathy"}, context)
        assert outcome.result is False
        assert "Unknown condition type" in outcome.warnings[0]

    def test_non_mapping_document(self, evaluator, context):
        outcome = evaluator.evaluate_with_diagnostics("player.level > 3", context)
        assert outcome.result is False
        assert outcome.warnings
        assert not outcome.errors

    def test_unknown_function_and_context_type(self, evaluator, context):
        assert evaluator.evaluate(function("teleport"), context) is False
        assert evaluator.evaluate(contextual("astrology"), context) is False
        assert evaluator.statistics()["warnings"] == 2


class TestCompoundConditions:
    @pytest.fixture
    def spy(self, evaluator):
        calls = []

        def spy_fn(parameters, ctx, rng):
            calls.append(parameters)
            return True

        evaluator.register_function("spy", spy_fn)
        return calls

    def test_and_short_circuits(self, evaluator, context, spy):
        expression = {
            "type": "compound",
            "operator": "and",
            "conditions": [simple("player.level", "greater_than", 99), function("spy")],
        }
        assert evaluator.evaluate(expression, context) is False
        assert spy == []

    def test_or_short_circuits(self, evaluator, context, spy):
        expression = {
            "type": "compound",
            "operator": "or",
            "conditions": [simple("player.level", "equals", 7), function("spy")],
        }
        assert evaluator.evaluate(expression, context) is True
        assert spy == []

    def test_and_reaches_later_children_when_earlier_pass(self, evaluator, context, spy):
        expression = {
            "type": "compound",
            "operator": "and",
            "conditions": [simple("player.level", "equals", 7), function("spy", tag="second")],
        }
        assert evaluator.evaluate(expression, context) is True
        assert spy == [{"tag": "second"}]

    def test_not_negates_single_child(self, evaluator, context):
        expression = {"type": "compound", "operator": "not", "conditions": [simple("player.level", "equals", 7)]}
        assert evaluator.evaluate(expression, context) is False

    @pytest.mark.parametrize("children", [0, 2])
    def test_not_requires_exactly_one_child(self, evaluator, context, children):
        expression = {
            "type": "compound",
            "operator": "not",
            "conditions": [simple("player.level", "equals", 7)] * children,
        }
        outcome = evaluator.evaluate_with_diagnostics(expression, context)
        assert outcome.result is False
        assert len(outcome.errors) == 1

    @pytest.mark.parametrize("operator", ["and", "or"])
    def test_empty_compound_is_false(self, evaluator, context, operator):
        assert evaluator.evaluate({"type": "compound", "operator": operator, "conditions": []}, context) is False

    def test_failing_child_does_not_sink_its_siblings(self, evaluator, context):
        expression = {
            "type": "compound",
            "operator": "or",
            "conditions": [function("has_item"), simple("player.level", "equals", 7)],
        }
        outcome = evaluator.evaluate_with_diagnostics(expression, context)
        assert outcome.result is True
        assert len(outcome.errors) == 1
        assert "item_id" in outcome.errors[0]

    def test_not_negates_a_failed_child(self, evaluator, context):
        expression = {"type": "compound", "operator": "not", "conditions": [function("has_item")]}
        outcome = evaluator.evaluate_with_diagnostics(expression, context)
        assert outcome.result is True
        assert len(outcome.errors) == 1


class TestBuiltinFunctions:
    def test_has_item_counts_quantity(self, evaluator, context):
        assert evaluator.evaluate(function("has_item", item_id="item_potion", quantity=2), context) is True
        assert evaluator.evaluate(function("has_item", item_id="item_potion", quantity=3), context) is False
        assert evaluator.evaluate(function("has_item", item_id="item_sword"), context) is True

    def test_relationship_level_defaults_to_zero(self, evaluator, context):
        params = {"npc_id": "npc_merchant", "value": 50, "operator": "greater_equal"}
        assert evaluator.evaluate(function("relationship_level", **params), context) is True
        params = {"npc_id": "npc_stranger", "value": 10, "operator": "less_than"}
        assert evaluator.evaluate(function("relationship_level", **params), context) is True

    def test_time_between_plain_and_wrapping(self, evaluator, context):
        assert evaluator.evaluate(function("time_between", start=10, end=16), context) is True
        assert evaluator.evaluate(function("time_between", start=22, end=6), context) is False
        assert evaluator.evaluate(function("time_between", start=12, end=2), context) is True

    def test_distance_by_location_name(self, evaluator, context):
        params = {"from": "player", "to": "forest", "value": 0, "operator": "equals"}
        assert evaluator.evaluate(function("distance", **params), context) is True
        params["to"] = "castle"
        assert evaluator.evaluate(function("distance", **params), context) is False

    def test_missing_parameter_is_an_error(self, evaluator, context):
        outcome = evaluator.evaluate_with_diagnostics(function("has_item"), context)
        assert outcome.result is False
        assert "item_id" in outcome.errors[0]

    def test_probability_uses_injected_random(self, context, scripted_random):
        evaluator = ConditionEvaluator(rng=scripted_random(floats=[0.3, 0.7]))
        assert evaluator.evaluate(function("probability", chance=0.5), context) is True
        assert evaluator.evaluate(function("probability", chance=0.5), context) is False

    def test_dice_roll_sums_dice(self, context, scripted_random):
        rng = scripted_random(ints=[3, 4])
        evaluator = ConditionEvaluator(rng=rng)
        assert evaluator.evaluate(function("dice_roll", dice=2, sides=6, target=7), context) is True
        assert rng.calls == [("randint", 1, 6), ("randint", 1, 6)]

    def test_dice_roll_with_bad_operator(self, evaluator, context):
        outcome = evaluator.evaluate_with_diagnostics(
            function("dice_roll", dice=1, sides=6, target=3, operator="about"), context
        )
        assert outcome.result is False
        assert outcome.errors

    def test_context_random_source_wins(self, game_state, scripted_random):
        evaluator = ConditionEvaluator(rng=scripted_random(floats=[0.99]))
        ctx = EvaluationContext(game_state=game_state, rng=scripted_random(floats=[0.01]))
        assert evaluator.evaluate(function("probability", chance=0.5), ctx) is True

    def test_seeded_random_is_reproducible(self, context):
        expression = function("dice_roll", dice=3, sides=6, target=10)
        first = [ConditionEvaluator(rng=random.Random(7)).evaluate(expression, context) for _ in range(3)]
        second = [ConditionEvaluator(rng=random.Random(7)).evaluate(expression, context) for _ in range(3)]
        assert first == second


class TestContextualConditions:
    def test_story_phase_with_flags(self, evaluator, context):
        assert evaluator.evaluate(
            contextual("story_phase", required_phase="exploration", story_flags=["met_king"]), context
        )
        assert not evaluator.evaluate(contextual("story_phase", story_flags=["dragon_awake"]), context)

    def test_story_phase_accepts_session_mode_alias(self, evaluator, context):
        assert evaluator.evaluate(contextual("story_phase", required_phase="planning"), context) is True
        assert evaluator.evaluate(contextual("story_phase", required_phase="combat"), context) is False

    def test_player_behavior_reads_metadata_scores(self, evaluator, game_state):
        ctx = EvaluationContext(game_state=game_state, metadata={"behavior_scores": {"aggressive": 0.8}})
        assert evaluator.evaluate(contextual("player_behavior", behavior_pattern="aggressive", threshold=0.5), ctx)
        assert not evaluator.evaluate(contextual("player_behavior", behavior_pattern="stealthy", threshold=0.5), ctx)

    def test_world_state_events_and_weather(self, evaluator, context):
        assert evaluator.evaluate(
            contextual("world_state", required_events=["festival"], weather_conditions=["rain", "storm"]), context
        )
        assert not evaluator.evaluate(contextual("world_state", weather_conditions=["clear"]), context)

    def test_session_context(self, evaluator, context):
        data = {"turn_range": {"min": 10, "max": 20}, "required_npcs": ["npc_merchant"], "location_type": "forest"}
        assert evaluator.evaluate(contextual("session_context", **data), context) is True
        data["turn_range"] = {"min": 13}
        assert evaluator.evaluate(contextual("session_context", **data), context) is False


class TestRegistryAndBatch:
    def test_duplicate_registration_requires_replace(self, evaluator):
        with pytest.raises(ValueError):
            evaluator.register_function("has_item", lambda p, c, r: True)
        evaluator.register_function("has_item", lambda p, c, r: True, replace=True)
        assert "has_item" in evaluator.function_names

    def test_batch_keeps_order_and_isolates_failures(self, evaluator, context):
        results = evaluator.batch_evaluate(
            [
                ("a", simple("player.level", "equals", 7)),
                ("b", {"type": "compound", "operator": "not", "conditions": []}),
                ("c", function("has_item", item_id="item_sword")),
            ],
            context,
        )
        assert results == [
            {"id": "a", "result": True},
            {"id": "b", "result": False},
            {"id": "c", "result": True},
        ]
        stats = evaluator.statistics()
        assert stats["evaluations"] == 3
        assert stats["errors"] == 1

    def test_evaluate_conditions_returns_one_result_each(self, evaluator, context):
        results = evaluator.evaluate_conditions(
            [
                simple("player.level", "greater_equal", 5),
                {"type": "mystery"},
                function("has_item"),
                contextual("world_state", weather_conditions=["rain"]),
            ],
            context,
        )
        assert results == [True, False, False, True]
        stats = evaluator.statistics()
        assert (stats["evaluations"], stats["errors"], stats["warnings"]) == (4, 1, 1)
