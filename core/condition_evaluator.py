# core/condition_evaluator.py
"""
Evaluate declarative condition expressions against a game-state snapshot.

The evaluator is synchronous and side-effect free apart from logging and its
own counters. `evaluate()` never raises:

- Unknown condition types, operators, function names and context types are
  logged as warnings and resolve to `False`.
- Errors raised while evaluating a condition (bad parameter shapes, `not` with
  the wrong number of children) are caught at the node that raised them,
  logged and recorded on the returned `ConditionOutcome`. Only that node
  resolves to `False`; its siblings in a compound still run.

Random functions (`probability`, `dice_roll`) draw from an injected
`RandomSource`: `EvaluationContext.rng` when set, else the evaluator's own.
"""

from __future__ import annotations

import random
import threading
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import structlog
from pydantic import BaseModel

from core.exceptions import ConditionEvaluationError, MalformedConditionError
from models.conditions import (
    CompoundCondition,
    ConditionBase,
    ContextualCondition,
    FunctionCondition,
    SimpleCondition,
    UnknownCondition,
    parse_condition,
)
from models.engine_constants import (
    SESSION_MODE_ALIASES,
    ComparisonOperator,
    ContextType,
    FunctionName,
    LogicalOperator,
)
from models.game_state import EvaluationContext, GameState, RandomSource

logger = structlog.get_logger(__name__)

ConditionFunction = Callable[[Mapping[str, Any], EvaluationContext, RandomSource], bool]


def resolve_path(root: Any, path: str) -> Any:
    """Resolve a dotted path (`player.stats.hp`, `session.npcs_present.0`).

    Returns None when any segment is missing.
    """
    if not path:
        return None
    current = root
    for key in path.split("."):
        if current is None:
            return None
        if isinstance(current, BaseModel):
            extra = current.model_extra or {}
            if key in type(current).model_fields:
                current = getattr(current, key)
            elif key in extra:
                current = extra[key]
            else:
                return None
        elif isinstance(current, Mapping):
            current = current.get(key)
        elif isinstance(current, (list, tuple)):
            if not key.isdigit() or int(key) >= len(current):
                return None
            current = current[int(key)]
        else:
            return None
    return current


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _loose_equals(actual: Any, expected: Any) -> bool:
    if actual == expected:
        return True
    left, right = _as_number(actual), _as_number(expected)
    return left is not None and right is not None and left == right


def _contains(container: Any, item: Any) -> bool:
    if isinstance(container, (list, tuple, set, frozenset)):
        return item in container
    if isinstance(container, Mapping):
        return item in container
    return str(item) in str(container)


def compare(actual: Any, operator: ComparisonOperator, expected: Any) -> bool:
    """Apply a comparison operator to a resolved value and a literal.

    An absent value (None) fails every operator except the negations:
    `not_equals` and `not_contains` hold, `not_in` holds when `expected` is a list.
    """
    if actual is None:
        if operator in (ComparisonOperator.NOT_EQUALS, ComparisonOperator.NOT_CONTAINS):
            return True
        if operator is ComparisonOperator.NOT_IN:
            return isinstance(expected, (list, tuple, set))
        return False

    if operator is ComparisonOperator.EQUALS:
        return _loose_equals(actual, expected)
    if operator is ComparisonOperator.NOT_EQUALS:
        return not _loose_equals(actual, expected)

    if operator in (
        ComparisonOperator.GREATER_THAN,
        ComparisonOperator.LESS_THAN,
        ComparisonOperator.GREATER_EQUAL,
        ComparisonOperator.LESS_EQUAL,
    ):
        left, right = _as_number(actual), _as_number(expected)
        if left is None or right is None:
            return False
        if operator is ComparisonOperator.GREATER_THAN:
            return left > right
        if operator is ComparisonOperator.LESS_THAN:
            return left < right
        if operator is ComparisonOperator.GREATER_EQUAL:
            return left >= right
        return left <= right

    if operator is ComparisonOperator.CONTAINS:
        return _contains(actual, expected)
    if operator is ComparisonOperator.NOT_CONTAINS:
        return not _contains(actual, expected)

    if not isinstance(expected, (list, tuple, set)):
        return False
    members = [getattr(member, "value", member) for member in expected]
    value = getattr(actual, "value", actual)
    if operator is ComparisonOperator.IN:
        return value in members
    return value not in members


def _require(parameters: Mapping[str, Any], key: str, owner: str) -> Any:
    if key not in parameters or parameters[key] is None:
        raise ConditionEvaluationError(
            f"'{owner}' requires parameter '{key}'", details={"parameters": dict(parameters)}
        )
    return parameters[key]


def _require_number(parameters: Mapping[str, Any], key: str, owner: str) -> float:
    value = _as_number(_require(parameters, key, owner))
    if value is None:
        raise ConditionEvaluationError(
            f"'{owner}' parameter '{key}' must be numeric", details={"value": parameters[key]}
        )
    return value


def _operator_param(parameters: Mapping[str, Any], owner: str, default: str | None = None) -> ComparisonOperator:
    raw = parameters.get("operator", default)
    try:
        return ComparisonOperator(raw)
    except ValueError as exc:
        raise ConditionEvaluationError(f"'{owner}' has unsupported operator {raw!r}") from exc


class ConditionOutcome:
    """Result of one condition plus the warnings and errors raised on the way."""

    def __init__(self) -> None:
        self.result = False
        self.errors: list[str] = []
        self.warnings: list[str] = []

    def __bool__(self) -> bool:
        return self.result

    def __repr__(self) -> str:
        return f"ConditionOutcome(result={self.result}, errors={len(self.errors)}, warnings={len(self.warnings)})"


class ConditionEvaluator:
    """Evaluate condition expression trees against a `GameState`."""

    def __init__(self, rng: RandomSource | None = None) -> None:
        self._rng: RandomSource = rng or random.Random()
        self._builtin_functions: dict[str, ConditionFunction] = {
            FunctionName.DISTANCE.value: self._fn_distance,
            FunctionName.HAS_ITEM.value: self._fn_has_item,
            FunctionName.RELATIONSHIP_LEVEL.value: self._fn_relationship_level,
            FunctionName.TIME_BETWEEN.value: self._fn_time_between,
            FunctionName.PROBABILITY.value: self._fn_probability,
            FunctionName.DICE_ROLL.value: self._fn_dice_roll,
        }
        self._functions: dict[str, ConditionFunction] = dict(self._builtin_functions)
        self._context_handlers: dict[ContextType, Callable[[Mapping[str, Any], EvaluationContext], bool]] = {
            ContextType.STORY_PHASE: self._ctx_story_phase,
            ContextType.PLAYER_BEHAVIOR: self._ctx_player_behavior,
            ContextType.WORLD_STATE: self._ctx_world_state,
            ContextType.SESSION_CONTEXT: self._ctx_session_context,
        }
        self._lock = threading.Lock()
        self._evaluations = 0
        self._errors = 0
        self._warnings = 0

    # ------------------------------------------------------------------ API

    def register_function(self, name: str, fn: ConditionFunction, *, replace: bool = False) -> None:
        """Add a named function to the dispatch table.

        `fn(parameters, context, rng) -> bool`. Registering an existing name
        (built-in or custom) requires `replace=True`.
        """
        if name in self._functions and not replace:
            raise ValueError(f"Condition function '{name}' is already registered")
        self._functions[name] = fn
        logger.debug("Registered condition function", function_name=name, replaced=replace)

    @property
    def function_names(self) -> list[str]:
        return sorted(self._functions)

    def evaluate(self, expression: ConditionBase | Mapping[str, Any], context: EvaluationContext) -> bool:
        """Evaluate one expression; never raises."""
        return self.evaluate_with_diagnostics(expression, context).result

    def evaluate_with_diagnostics(
        self, expression: ConditionBase | Mapping[str, Any], context: EvaluationContext
    ) -> ConditionOutcome:
        """Evaluate one expression and return the result with its warnings and errors."""
        outcome = ConditionOutcome()
        try:
            node = parse_condition(expression)
            outcome.result = self._evaluate_node(node, context, outcome)
        except MalformedConditionError as exc:
            self._warn(outcome, "Malformed condition document", entity_id=context.entity_id, error=str(exc))
            outcome.result = False
        except Exception as exc:
            logger.error(
                "Condition evaluation failed",
                entity_id=context.entity_id,
                error=str(exc),
                exc_info=True,
            )
            outcome.errors.append(f"Condition evaluation failed: {exc}")
            outcome.result = False

        with self._lock:
            self._evaluations += 1
            self._errors += len(outcome.errors)
            self._warnings += len(outcome.warnings)
        return outcome

    def evaluate_conditions(
        self, expressions: Iterable[ConditionBase | Mapping[str, Any]], context: EvaluationContext
    ) -> list[bool]:
        """Evaluate each expression independently."""
        return [self.evaluate(expression, context) for expression in expressions]

    def batch_evaluate(
        self,
        batch: Iterable[tuple[str, ConditionBase | Mapping[str, Any]]],
        context: EvaluationContext,
    ) -> list[dict[str, Any]]:
        """Evaluate `(id, expression)` pairs; one failing entry never aborts the others."""
        return [{"id": item_id, "result": self.evaluate(expression, context)} for item_id, expression in batch]

    def statistics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "evaluations": self._evaluations,
                "errors": self._errors,
                "warnings": self._warnings,
                "registered_functions": len(self._functions),
            }

    # ------------------------------------------------------------ dispatch

    def _warn(self, outcome: ConditionOutcome, message: str, **context: Any) -> None:
        logger.warning(message, **context)
        detail = ", ".join(f"{k}={v}" for k, v in context.items() if k != "entity_id")
        outcome.warnings.append(f"{message}: {detail}" if detail else message)

    def _evaluate_node(self, node: ConditionBase, context: EvaluationContext, outcome: ConditionOutcome) -> bool:
        """Evaluate one node of the tree; an error here resolves only this node to False."""
        try:
            return self._dispatch_node(node, context, outcome)
        except Exception as exc:
            logger.error(
                "Condition evaluation failed",
                entity_id=context.entity_id,
                condition_type=getattr(node, "type", None),
                error=str(exc),
                exc_info=True,
            )
            outcome.errors.append(f"Condition evaluation failed: {exc}")
            return False

    def _dispatch_node(self, node: ConditionBase, context: EvaluationContext, outcome: ConditionOutcome) -> bool:
        if isinstance(node, SimpleCondition):
            return self._evaluate_simple(node, context, outcome)
        if isinstance(node, CompoundCondition):
            return self._evaluate_compound(node, context, outcome)
        if isinstance(node, FunctionCondition):
            return self._evaluate_function(node, context, outcome)
        if isinstance(node, ContextualCondition):
            return self._evaluate_contextual(node, context, outcome)
        if isinstance(node, UnknownCondition):
            self._warn(outcome, "Unknown condition type", condition_type=node.type, entity_id=context.entity_id)
            return False
        raise ConditionEvaluationError(f"Unsupported condition node {type(node).__name__}")

    def _evaluate_simple(self, node: SimpleCondition, context: EvaluationContext, outcome: ConditionOutcome) -> bool:
        try:
            operator = ComparisonOperator(node.operator)
        except ValueError:
            self._warn(outcome, "Unknown operator", operator=node.operator, entity_id=context.entity_id)
            return False
        actual = resolve_path(context.game_state, node.field)
        return compare(actual, operator, node.value)

    def _evaluate_compound(
        self, node: CompoundCondition, context: EvaluationContext, outcome: ConditionOutcome
    ) -> bool:
        try:
            operator = LogicalOperator(node.operator)
        except ValueError:
            self._warn(outcome, "Unknown compound operator", operator=node.operator, entity_id=context.entity_id)
            return False

        if operator is LogicalOperator.NOT:
            if len(node.conditions) != 1:
                raise ConditionEvaluationError(
                    "'not' requires exactly one condition", details={"count": len(node.conditions)}
                )
            return not self._evaluate_node(node.conditions[0], context, outcome)

        # Empty and/or are unsatisfiable
        if not node.conditions:
            return False
        if operator is LogicalOperator.AND:
            for child in node.conditions:
                if not self._evaluate_node(child, context, outcome):
                    return False
            return True
        for child in node.conditions:
            if self._evaluate_node(child, context, outcome):
                return True
        return False

    def _evaluate_function(
        self, node: FunctionCondition, context: EvaluationContext, outcome: ConditionOutcome
    ) -> bool:
        fn = self._functions.get(node.function_name)
        if fn is None:
            self._warn(outcome, "Unknown function", function_name=node.function_name, entity_id=context.entity_id)
            return False
        rng = context.rng or self._rng
        return bool(fn(node.parameters, context, rng))

    def _evaluate_contextual(
        self, node: ContextualCondition, context: EvaluationContext, outcome: ConditionOutcome
    ) -> bool:
        try:
            context_type = ContextType(node.context_type)
        except ValueError:
            self._warn(outcome, "Unknown context type", context_type=node.context_type, entity_id=context.entity_id)
            return False
        return self._context_handlers[context_type](node.context_data, context)

    # ----------------------------------------------------------- functions

    @staticmethod
    def _state(context: EvaluationContext) -> GameState:
        return context.game_state

    def _fn_distance(self, parameters: Mapping[str, Any], context: EvaluationContext, rng: RandomSource) -> bool:
        origin = _require(parameters, "from", "distance")
        destination = _require(parameters, "to", "distance")
        threshold = _require_number(parameters, "value", "distance")
        operator = _operator_param(parameters, "distance")

        # Location names only; no coordinates
        if origin == destination:
            distance = 0
        elif origin == "player":
            distance = 0 if self._state(context).player.location == destination else 1
        else:
            distance = 1
        return compare(distance, operator, threshold)

    def _fn_has_item(self, parameters: Mapping[str, Any], context: EvaluationContext, rng: RandomSource) -> bool:
        item_id = _require(parameters, "item_id", "has_item")
        quantity = _as_number(parameters.get("quantity", 1))
        if quantity is None:
            raise ConditionEvaluationError("'has_item' parameter 'quantity' must be numeric")
        owned = sum(1 for item in self._state(context).player.items if item == item_id)
        return owned >= quantity

    def _fn_relationship_level(
        self, parameters: Mapping[str, Any], context: EvaluationContext, rng: RandomSource
    ) -> bool:
        npc_id = _require(parameters, "npc_id", "relationship_level")
        threshold = _require_number(parameters, "value", "relationship_level")
        operator = _operator_param(parameters, "relationship_level")
        level = self._state(context).player.relationships.get(npc_id, 0)
        return compare(level, operator, threshold)

    def _fn_time_between(self, parameters: Mapping[str, Any], context: EvaluationContext, rng: RandomSource) -> bool:
        start = _require_number(parameters, "start", "time_between")
        end = _require_number(parameters, "end", "time_between")
        now = self._state(context).world.time
        if start <= end:
            return start <= now <= end
        # Window wraps past midnight
        return now >= start or now <= end

    def _fn_probability(self, parameters: Mapping[str, Any], context: EvaluationContext, rng: RandomSource) -> bool:
        chance = _require_number(parameters, "chance", "probability")
        return rng.random() < chance

    def _fn_dice_roll(self, parameters: Mapping[str, Any], context: EvaluationContext, rng: RandomSource) -> bool:
        dice = int(_require_number(parameters, "dice", "dice_roll"))
        sides = int(_require_number(parameters, "sides", "dice_roll"))
        target = _require_number(parameters, "target", "dice_roll")
        operator = _operator_param(parameters, "dice_roll", default=ComparisonOperator.GREATER_EQUAL.value)
        if dice < 0 or sides < 1:
            raise ConditionEvaluationError(
                "'dice_roll' needs dice >= 0 and sides >= 1", details={"dice": dice, "sides": sides}
            )
        total = sum(rng.randint(1, sides) for _ in range(dice))
        return compare(total, operator, target)

    # ------------------------------------------------------------- context

    def _ctx_story_phase(self, data: Mapping[str, Any], context: EvaluationContext) -> bool:
        state = self._state(context)
        required = data.get("required_phase")
        if required:
            required = SESSION_MODE_ALIASES.get(required, required)
            if state.session.phase != required:
                return False
        for flag in data.get("story_flags") or []:
            if not state.world.flags.get(flag):
                return False
        return True

    def _ctx_player_behavior(self, data: Mapping[str, Any], context: EvaluationContext) -> bool:
        pattern = _require(data, "behavior_pattern", "player_behavior")
        threshold = _require_number(data, "threshold", "player_behavior")
        scores = context.metadata.get("behavior_scores") or context.metadata.get("playerBehaviorScore") or {}
        if not isinstance(scores, Mapping):
            raise ConditionEvaluationError("behavior scores must be a mapping", details={"type": type(scores).__name__})
        return (_as_number(scores.get(pattern)) or 0.0) >= threshold

    def _ctx_world_state(self, data: Mapping[str, Any], context: EvaluationContext) -> bool:
        world = self._state(context).world
        for event in data.get("required_events") or []:
            if event not in world.events:
                return False
        weather = data.get("weather_conditions")
        if weather and world.weather not in weather:
            return False
        return True

    def _ctx_session_context(self, data: Mapping[str, Any], context: EvaluationContext) -> bool:
        session = self._state(context).session
        turn_range = data.get("turn_range")
        if turn_range:
            if not isinstance(turn_range, Mapping):
                raise ConditionEvaluationError("'turn_range' must be a mapping with min/max")
            low = _as_number(turn_range.get("min"))
            high = _as_number(turn_range.get("max"))
            if low is not None and session.turn < low:
                return False
            if high is not None and session.turn > high:
                return False
        for npc_id in data.get("required_npcs") or []:
            if npc_id not in session.npcs_present:
                return False
        location_type = data.get("location_type")
        if location_type and location_type not in session.location:
            return False
        return True
