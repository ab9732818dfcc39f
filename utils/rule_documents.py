# utils/rule_documents.py
"""Load authored rule documents and game-state files (YAML or JSON).

A rule document is read-only input for the engine:

```yaml
entities:            # entity id -> conditions that gate it
  quest_dragon:
    - {type: simple, field: player.level, operator: greater_equal, value: 10}
records:             # optional candidate records for queries
  - {id: quest_dragon, priority: 8, tags: [combat]}
relationships:       # optional seed relationships
  - {source_id: item_sword, target_id: quest_dragon, type: prerequisite, strength: 0.9}
```
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError

from core.entity_engine import EntityRuleEngine
from core.entity_provider import InMemoryEntityProvider
from core.exceptions import RuleDocumentError, create_error_context
from core.relationship_graph import RelationshipGraph
from models.conditions import ConditionExpression
from models.game_state import GameState
from models.query_models import EntityConditionSet, EntityRecord
from models.relationships import Relationship

logger = structlog.get_logger(__name__)

_YAML_SUFFIXES = (".yaml", ".yml")
_JSON_SUFFIXES = (".json",)
# Keys that mark a caller session context rather than a snapshot
_CONTEXT_KEYS = ("currentState", "current_state", "sessionMode", "session_mode")


class RuleDocument(BaseModel):
    entities: dict[str, list[ConditionExpression]] = Field(default_factory=dict)
    records: list[EntityRecord] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)

    def condition_sets(self) -> list[EntityConditionSet]:
        return [
            EntityConditionSet(entity_id=entity_id, conditions=conditions)
            for entity_id, conditions in self.entities.items()
        ]


def read_structured_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML or JSON file whose root is a mapping."""
    file_path = Path(path)
    suffix = file_path.suffix.lower()
    if suffix not in _YAML_SUFFIXES + _JSON_SUFFIXES:
        raise RuleDocumentError(f"Unsupported document type: {file_path.name}", details={"suffix": suffix})
    try:
        with open(file_path, encoding="utf-8") as f:
            content = yaml.safe_load(f) if suffix in _YAML_SUFFIXES else json.load(f)
    except FileNotFoundError as exc:
        raise RuleDocumentError(f"Document not found: {file_path}") from exc
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        logger.error(f"Error parsing document {file_path}: {exc}", exc_info=True)
        raise RuleDocumentError(f"Document could not be parsed: {file_path}", details={"error": str(exc)}) from exc

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise RuleDocumentError(
            f"Document {file_path} must have a mapping as its root element",
            details={"root_type": type(content).__name__},
        )
    return content


def parse_rule_document(data: Mapping[str, Any], source: str | None = None) -> RuleDocument:
    try:
        return RuleDocument.model_validate(dict(data))
    except ValidationError as exc:
        raise RuleDocumentError(
            "Rule document has an invalid shape",
            details=create_error_context(source=source, errors=exc.errors(include_url=False)),
        ) from exc


def load_rule_document(path: str | Path) -> RuleDocument:
    document = parse_rule_document(read_structured_file(path), source=str(path))
    logger.info(
        "Loaded rule document",
        path=str(path),
        entities=len(document.entities),
        relationships=len(document.relationships),
    )
    return document


def load_game_state(path: str | Path) -> GameState:
    """Load a snapshot, or convert a caller session context when the file holds one."""
    data = read_structured_file(path)
    try:
        if any(key in data for key in _CONTEXT_KEYS):
            return GameState.from_context(data)
        return GameState.model_validate(data)
    except (ValidationError, TypeError) as exc:
        raise RuleDocumentError(f"Game state file {path} has an invalid shape", details={"error": str(exc)}) from exc


def build_engine(document: RuleDocument, **engine_options: Any) -> EntityRuleEngine:
    """Create an engine whose provider and graph are seeded from `document`."""
    graph = RelationshipGraph()
    for entity_id in document.entities:
        graph.register_entity(entity_id)
    for record in document.records:
        graph.register_entity(record.id)
    for relationship in document.relationships:
        graph.add_relationship(relationship)
    return EntityRuleEngine(
        provider=InMemoryEntityProvider(document.records),
        graph=graph,
        **engine_options,
    )
