# models/conditions.py
"""Define the declarative condition-expression models.

A condition expression is a tagged union discriminated by `type`:

- `simple`: compare a dotted game-state path against a literal.
- `compound`: `and` / `or` / `not` over child expressions.
- `function`: a named procedure evaluated against state and parameters.
- `contextual`: a check against a derived context category.

Notes:
    Parsing is deliberately lenient. A document with an unrecognized `type`
    becomes an [`UnknownCondition`](models/conditions.py:75); unknown operators,
    function names and context types are kept as raw strings. The evaluator reports
    all of these as warnings and resolves them to `false`. Only input that is not a
    mapping at all raises [`MalformedConditionError`](core/exceptions.py:1).
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter, ValidationError

from core.exceptions import MalformedConditionError
from models.engine_constants import NON_DETERMINISTIC_FUNCTIONS, ConditionType

_KNOWN_TYPES = frozenset(t.value for t in ConditionType)


class ConditionBase(BaseModel):
    """Fields shared by every condition variant."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    description: str | None = None
    priority: float | None = None


class SimpleCondition(ConditionBase):
    """`{field, operator, value}` comparison against a dotted game-state path."""

    type: Literal["simple"] = "simple"
    field: str = ""
    operator: str = ""
    value: Any = None


class CompoundCondition(ConditionBase):
    """Boolean composition of child expressions."""

    type: Literal["compound"] = "compound"
    operator: str = ""
    conditions: list[ConditionExpression] = Field(default_factory=list)


class FunctionCondition(ConditionBase):
    """Named procedure such as `has_item` or `dice_roll`."""

    type: Literal["function"] = "function"
    function_name: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)


class ContextualCondition(ConditionBase):
    """Check against a derived context category such as `story_phase`."""

    type: Literal["contextual"] = "contextual"
    context_type: str = ""
    context_data: dict[str, Any] = Field(default_factory=dict)


class UnknownCondition(ConditionBase):
    """Any document whose `type` is not one of the four variants."""

    type: Any = None


def _condition_tag(value: Any) -> str:
    if isinstance(value, dict):
        raw = value.get("type")
    else:
        raw = getattr(value, "type", None)
    return raw if isinstance(raw, str) and raw in _KNOWN_TYPES else "unknown"


ConditionExpression = Annotated[
    Union[
        Annotated[SimpleCondition, Tag("simple")],
        Annotated[CompoundCondition, Tag("compound")],
        Annotated[FunctionCondition, Tag("function")],
        Annotated[ContextualCondition, Tag("contextual")],
        Annotated[UnknownCondition, Tag("unknown")],
    ],
    Discriminator(_condition_tag),
]

CompoundCondition.model_rebuild()

_condition_adapter: TypeAdapter[Any] = TypeAdapter(ConditionExpression)


def parse_condition(raw: Any) -> ConditionExpression:
    """Coerce a raw mapping (or an existing model) into a condition expression.

    Raises:
        MalformedConditionError: If `raw` cannot be interpreted as a condition document.
    """
    if isinstance(raw, ConditionBase):
        return raw
    try:
        return _condition_adapter.validate_python(raw)
    except ValidationError as exc:
        raise MalformedConditionError(
            "Condition document could not be parsed",
            details={"errors": exc.errors(include_url=False)},
        ) from exc


def parse_conditions(raw_conditions: Iterable[Any]) -> list[ConditionExpression]:
    """Parse a sequence of raw condition documents."""
    return [parse_condition(raw) for raw in raw_conditions]


def iter_conditions(expression: ConditionBase) -> Iterator[ConditionBase]:
    """Yield the expression and all of its descendants, depth first."""
    yield expression
    if isinstance(expression, CompoundCondition):
        for child in expression.conditions:
            yield from iter_conditions(child)


def is_deterministic(expressions: Iterable[ConditionBase]) -> bool:
    """Return False if any expression (or descendant) draws from the random source."""
    for expression in expressions:
        for node in iter_conditions(expression):
            if isinstance(node, FunctionCondition) and node.function_name in NON_DETERMINISTIC_FUNCTIONS:
                return False
    return True
