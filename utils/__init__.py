"""Utility helpers for the entity rule engine."""

from .rule_documents import (
    RuleDocument,
    build_engine,
    load_game_state,
    load_rule_document,
    parse_rule_document,
    read_structured_file,
)

__all__ = [
    "RuleDocument",
    "build_engine",
    "load_game_state",
    "load_rule_document",
    "parse_rule_document",
    "read_structured_file",
]
