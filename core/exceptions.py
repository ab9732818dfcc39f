# core/exceptions.py
"""Define standardized exception types for the entity rule engine.

Only `QueryExecutionError` is expected to cross the engine facade. The other
types are raised internally and converted into `false` results, error strings on
per-entity results, or validation reports at the component boundaries.
"""

from typing import Any


class EntityEngineError(Exception):
    """Base exception for all entity rule engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class MalformedConditionError(EntityEngineError):
    """A raw condition document could not be coerced into an expression at all."""


class ConditionEvaluationError(EntityEngineError):
    """A function or contextual evaluator received parameters it cannot use.

    Notes:
        Always caught at the per-condition boundary by
        [`ConditionEvaluator.evaluate_with_diagnostics()`](core/condition_evaluator.py:1);
        the condition then counts as failed and the message is attached to the
        entity's result.
    """


class QueryExecutionError(EntityEngineError):
    """Signal that the query pipeline failed and no ranked result is available.

    Notes:
        Distinct from an empty result: "no entities matched" is a successful
        `QueryResult` with zero entities.
    """


class GraphValidationError(EntityEngineError):
    """Raised by callers that escalate an invalid graph validation report."""


def create_error_context(**kwargs: Any) -> dict[str, Any]:
    """Build a context dictionary for structured errors.

    Returns:
        A dictionary containing only keys whose values are not `None`.
    """
    return {k: v for k, v in kwargs.items() if v is not None}


class RuleDocumentError(EntityEngineError):
    """A rule or state document could not be read or does not have the expected shape."""
