# core/entity_provider.py
"""Candidate sources for the query processor.

The engine never owns entity storage. Callers hand the query processor an
`EntityProvider`; `InMemoryEntityProvider` covers tests, the CLI and callers
that already hold their entities in memory.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Protocol, runtime_checkable

import structlog

from models.engine_constants import EntityKind
from models.query_models import EntityRecord

logger = structlog.get_logger(__name__)


@runtime_checkable
class EntityProvider(Protocol):
    """Source of query candidates.

    The query processor caches ranked results. A provider that offers
    `add_mutation_listener(listener)` gets the cache cleared on every change;
    for any other provider, call `EntityRuleEngine.clear_caches()` after the
    underlying records change.
    """

    def get_entities(self, kind: EntityKind | None = None) -> list[EntityRecord]:
        """Return candidates of `kind` (all candidates when None), in a stable order."""
        ...

    def get_entity(self, entity_id: str) -> EntityRecord | None: ...


class InMemoryEntityProvider:
    """Insertion-ordered dictionary of entity records."""

    def __init__(self, entities: Iterable[EntityRecord | Mapping[str, Any]] = ()) -> None:
        self._lock = threading.Lock()
        self._entities: dict[str, EntityRecord] = {}
        self._listeners: list[Callable[[], None]] = []
        for entity in entities:
            self.add(entity)

    def add_mutation_listener(self, listener: Callable[[], None]) -> None:
        """Call `listener()` after every add and every successful remove."""
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    def add(self, entity: EntityRecord | Mapping[str, Any]) -> EntityRecord:
        record = entity if isinstance(entity, EntityRecord) else EntityRecord.model_validate(entity)
        with self._lock:
            if record.id in self._entities:
                logger.debug("Replacing entity record", entity_id=record.id)
            self._entities[record.id] = record
        self._notify()
        return record

    def remove(self, entity_id: str) -> bool:
        with self._lock:
            removed = self._entities.pop(entity_id, None) is not None
        if removed:
            self._notify()
        return removed

    def get_entities(self, kind: EntityKind | None = None) -> list[EntityRecord]:
        with self._lock:
            if kind is None:
                return list(self._entities.values())
            return [entity for entity in self._entities.values() if entity.type == kind]

    def get_entity(self, entity_id: str) -> EntityRecord | None:
        with self._lock:
            return self._entities.get(entity_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entities)
