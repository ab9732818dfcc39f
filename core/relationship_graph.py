# core/relationship_graph.py
"""
In-memory typed, weighted, directed relationship graph between entity IDs.

Storage:
- Forward adjacency `source_id -> [Relationship, ...]`.
- Reverse index `target_id -> [Relationship, ...]` over the same objects, kept in
  step on every mutation, so incoming lookups never scan the whole graph.
- Entities registered without edges, so isolated nodes can be reported.

All reads and writes take one re-entrant lock; a query never observes a
half-updated adjacency map. Every mutation clears the analysis and path caches
and then notifies mutation listeners (the query processor clears its result
cache this way).

Self-referencing edges are stored so that `validate_graph()` can report them,
but every traversal skips them.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Iterator, Mapping
from typing import Any

import structlog

import config
from core.lightweight_cache import ResultCache
from models.engine_constants import (
    DEPENDENCY_RELATIONSHIP_TYPES,
    ImpactLevel,
    PathType,
    RelationshipType,
    ValidationStatus,
)
from models.relationships import (
    GraphMetadata,
    GraphMetrics,
    GraphSnapshot,
    GraphValidationIssue,
    GraphValidationReport,
    HubNode,
    PathfindingResult,
    Relationship,
    RelationshipAnalysis,
    RelationshipMetadata,
    utc_now,
)

logger = structlog.get_logger(__name__)

MutationListener = Callable[[], None]


def classify_path(hops: int) -> PathType:
    if hops <= 1:
        return PathType.DIRECT
    if hops <= 3:
        return PathType.INDIRECT
    return PathType.COMPLEX


class RelationshipGraph:
    """Relationship store plus the graph algorithms that run over it."""

    def __init__(
        self,
        snapshot: GraphSnapshot | Mapping[str, Any] | None = None,
        *,
        strength_decay: float | None = None,
        indirect_max_depth: int | None = None,
        path_max_hops: int | None = None,
        hub_factor: float | None = None,
        cache_maxsize: int | None = None,
    ) -> None:
        self.strength_decay = config.INDIRECT_STRENGTH_DECAY if strength_decay is None else strength_decay
        self.indirect_max_depth = config.INDIRECT_MAX_DEPTH if indirect_max_depth is None else indirect_max_depth
        self.path_max_hops = config.PATH_MAX_HOPS if path_max_hops is None else path_max_hops
        self.hub_factor = config.HUB_CONNECTIVITY_FACTOR if hub_factor is None else hub_factor
        maxsize = config.GRAPH_CACHE_MAXSIZE if cache_maxsize is None else cache_maxsize

        self._lock = threading.RLock()
        self._forward: dict[str, list[Relationship]] = {}
        self._reverse: dict[str, list[Relationship]] = {}
        self._registered: dict[str, None] = {}
        self._metadata = GraphMetadata()
        self._analysis_cache = ResultCache("relationship_analysis", maxsize=maxsize)
        self._path_cache = ResultCache("relationship_paths", maxsize=maxsize)
        self._listeners: list[MutationListener] = []

        if snapshot is not None:
            self.import_graph(snapshot)

    # ----------------------------------------------------------- internals

    def _all_nodes_locked(self) -> list[str]:
        nodes: dict[str, None] = {}
        for source_id, relationships in self._forward.items():
            nodes.setdefault(source_id)
            for rel in relationships:
                nodes.setdefault(rel.target_id)
        for node_id in self._registered:
            nodes.setdefault(node_id)
        return list(nodes)

    def _has_node_locked(self, entity_id: str) -> bool:
        return entity_id in self._forward or entity_id in self._reverse or entity_id in self._registered

    def _refresh_counts_locked(self) -> None:
        self._metadata.total_nodes = len(self._all_nodes_locked())
        self._metadata.total_edges = sum(len(rels) for rels in self._forward.values())
        self._metadata.last_updated = utc_now()

    def _outgoing_locked(self, entity_id: str) -> list[Relationship]:
        return [rel for rel in self._forward.get(entity_id, ()) if not rel.is_self_reference]

    def _invalidate_locked(self) -> None:
        self._analysis_cache.clear()
        self._path_cache.clear()

    def _after_mutation(self) -> None:
        for listener in list(self._listeners):
            listener()

    # ----------------------------------------------------------- mutation

    def add_mutation_listener(self, listener: MutationListener) -> None:
        """Call `listener()` after every mutation and explicit cache clear."""
        self._listeners.append(listener)

    def register_entity(self, entity_id: str) -> None:
        """Add a node without edges."""
        with self._lock:
            if entity_id in self._registered:
                return
            self._registered[entity_id] = None
            self._refresh_counts_locked()
            self._invalidate_locked()
        logger.debug("Registered entity", entity_id=entity_id)
        self._after_mutation()

    def add_relationship(self, relationship: Relationship | Mapping[str, Any]) -> Relationship:
        """Insert or replace the edge keyed by `(source_id, target_id, type)`."""
        rel = relationship if isinstance(relationship, Relationship) else Relationship.model_validate(relationship)
        with self._lock:
            outgoing = self._forward.setdefault(rel.source_id, [])
            replaced = None
            for index, existing in enumerate(outgoing):
                if existing.key == rel.key:
                    replaced = existing
                    outgoing[index] = rel
                    break
            incoming = self._reverse.setdefault(rel.target_id, [])
            if replaced is None:
                outgoing.append(rel)
                incoming.append(rel)
            else:
                incoming[:] = [rel if existing is replaced else existing for existing in incoming]

            if rel.is_self_reference or self._metadata.validation_status is ValidationStatus.INVALID:
                self._metadata.validation_status = ValidationStatus.NEEDS_UPDATE
            self._refresh_counts_locked()
            self._invalidate_locked()

        logger.debug(
            "Relationship stored",
            source_id=rel.source_id,
            target_id=rel.target_id,
            type=rel.type.value,
            replaced=replaced is not None,
        )
        if rel.is_self_reference:
            logger.warning("Self-referencing relationship stored", entity_id=rel.source_id, type=rel.type.value)
        self._after_mutation()
        return rel

    def remove_relationship(
        self, source_id: str, target_id: str, relationship_type: RelationshipType | str | None = None
    ) -> bool:
        """Remove matching edges (every type when `relationship_type` is None)."""
        wanted = None
        if relationship_type is not None:
            try:
                wanted = RelationshipType(relationship_type)
            except ValueError:
                logger.warning("Unknown relationship type", type=relationship_type)
                return False
        with self._lock:
            outgoing = self._forward.get(source_id)
            if not outgoing:
                return False
            removed = [
                rel for rel in outgoing if rel.target_id == target_id and (wanted is None or rel.type is wanted)
            ]
            if not removed:
                return False

            self._forward[source_id] = [rel for rel in outgoing if all(rel is not r for r in removed)]
            if not self._forward[source_id]:
                del self._forward[source_id]
            incoming = [rel for rel in self._reverse.get(target_id, []) if all(rel is not r for r in removed)]
            if incoming:
                self._reverse[target_id] = incoming
            else:
                self._reverse.pop(target_id, None)

            if self._metadata.validation_status is ValidationStatus.INVALID:
                self._metadata.validation_status = ValidationStatus.NEEDS_UPDATE
            self._refresh_counts_locked()
            self._invalidate_locked()

        logger.debug("Relationships removed", source_id=source_id, target_id=target_id, count=len(removed))
        self._after_mutation()
        return True

    def clear_caches(self) -> None:
        with self._lock:
            self._invalidate_locked()
        self._after_mutation()
        logger.debug("Relationship graph caches cleared")

    # ------------------------------------------------------ persistence

    def export_graph(self) -> GraphSnapshot:
        """Return a deep copy of the whole graph."""
        with self._lock:
            return GraphSnapshot(
                relationships={
                    source_id: [rel.model_copy(deep=True) for rel in rels] for source_id, rels in self._forward.items()
                },
                metadata=self._metadata.model_copy(deep=True),
                nodes=list(self._registered),
            )

    def import_graph(self, snapshot: GraphSnapshot | Mapping[str, Any]) -> None:
        """Replace the graph with a deep copy of `snapshot`.

        Edges are stored exactly as given (duplicates included) so that
        `validate_graph()` can report on imported data.
        """
        parsed = snapshot if isinstance(snapshot, GraphSnapshot) else GraphSnapshot.model_validate(snapshot)
        parsed = parsed.model_copy(deep=True)
        with self._lock:
            self._forward = {}
            self._reverse = {}
            for source_id, rels in parsed.relationships.items():
                for rel in rels:
                    if rel.source_id != source_id:
                        rel = rel.model_copy(update={"source_id": source_id})
                    self._forward.setdefault(source_id, []).append(rel)
                    self._reverse.setdefault(rel.target_id, []).append(rel)
            self._registered = dict.fromkeys(parsed.nodes)
            self._metadata = parsed.metadata
            self._metadata.total_nodes = len(self._all_nodes_locked())
            self._metadata.total_edges = sum(len(rels) for rels in self._forward.values())
            self._invalidate_locked()

        logger.debug(
            "Relationship graph imported",
            total_nodes=self._metadata.total_nodes,
            total_edges=self._metadata.total_edges,
        )
        self._after_mutation()

    @property
    def metadata(self) -> GraphMetadata:
        with self._lock:
            return self._metadata.model_copy()

    def has_entity(self, entity_id: str) -> bool:
        with self._lock:
            return self._has_node_locked(entity_id)

    # ------------------------------------------------------------- reads

    def get_entity_relationships(self, entity_id: str, include_incoming: bool = True) -> list[Relationship]:
        """Copies of outgoing edges, followed (optionally) by inverted views of incoming edges."""
        with self._lock:
            result = [rel.model_copy(deep=True) for rel in self._forward.get(entity_id, ())]
            if include_incoming:
                result.extend(
                    rel.inverted() for rel in self._reverse.get(entity_id, ()) if not rel.is_self_reference
                )
            return result

    def find_indirect_relationships(self, entity_id: str, max_depth: int | None = None) -> list[Relationship]:
        """Synthesize `sequence` edges to entities reachable in 2..`max_depth` hops.

        Strength is the last edge's strength times `strength_decay ** (hops - 1)`.
        Targets already on the current path, direct targets and the entity itself
        are skipped; each target is reported once (first discovery wins).
        """
        depth_limit = self.indirect_max_depth if max_depth is None else max_depth
        with self._lock:
            direct_targets = {rel.target_id for rel in self._outgoing_locked(entity_id)}
            reported: set[str] = set(direct_targets)
            found: list[Relationship] = []
            if depth_limit <= 0:
                return found

            # Frames are (depth, path, remaining outgoing edges)
            stack = [(0, [entity_id], iter(self._outgoing_locked(entity_id)))]
            while stack:
                depth, path, edges = stack[-1]
                rel = next(edges, None)
                if rel is None:
                    stack.pop()
                    continue
                target = rel.target_id
                if target == entity_id or target in path:
                    continue
                if depth > 0 and target not in reported:
                    reported.add(target)
                    found.append(
                        Relationship(
                            id=f"indirect-{entity_id}-{target}",
                            source_id=entity_id,
                            target_id=target,
                            type=RelationshipType.SEQUENCE,
                            strength=rel.strength * self.strength_decay**depth,
                            metadata=RelationshipMetadata(
                                description=f"Indirect relationship through {len(path)} entities"
                            ),
                        )
                    )
                if depth + 1 < depth_limit:
                    stack.append((depth + 1, path + [target], iter(self._outgoing_locked(target))))
            return found

    def _dependency_edges_locked(self, entity_id: str) -> Iterator[Relationship]:
        return (rel for rel in self._outgoing_locked(entity_id) if rel.type in DEPENDENCY_RELATIONSHIP_TYPES)

    def build_dependency_chain(self, entity_id: str) -> list[str]:
        """Entity followed by everything it depends on, in DFS visit order."""
        with self._lock:
            if not self._has_node_locked(entity_id):
                return []
            chain = [entity_id]
            visited = {entity_id}
            stack = [self._dependency_edges_locked(entity_id)]
            while stack:
                rel = next(stack[-1], None)
                if rel is None:
                    stack.pop()
                    continue
                if rel.target_id not in visited:
                    visited.add(rel.target_id)
                    chain.append(rel.target_id)
                    stack.append(self._dependency_edges_locked(rel.target_id))
            return chain

    def detect_circular_dependencies(self, entity_id: str) -> list[list[str]]:
        """Cycles over dependency/prerequisite edges reachable from `entity_id`.

        Each cycle is returned closed, e.g. `["A", "B", "A"]`.
        """
        with self._lock:
            cycles: list[list[str]] = []
            if not self._has_node_locked(entity_id):
                return cycles
            visited = {entity_id}
            on_stack = {entity_id}
            path = [entity_id]
            stack = [self._dependency_edges_locked(entity_id)]
            while stack:
                rel = next(stack[-1], None)
                if rel is None:
                    stack.pop()
                    on_stack.discard(path.pop())
                    continue
                target = rel.target_id
                if target not in visited:
                    visited.add(target)
                    on_stack.add(target)
                    path.append(target)
                    stack.append(self._dependency_edges_locked(target))
                elif target in on_stack:
                    start = path.index(target)
                    cycles.append(path[start:] + [target])
            return cycles

    def find_path(self, from_id: str, to_id: str, max_hops: int | None = None) -> PathfindingResult | None:
        """Breadth-first shortest path by hop count.

        The strength is the product of edge strengths along the first shortest
        path found, not the strongest path.
        """
        hop_limit = self.path_max_hops if max_hops is None else max_hops
        if from_id == to_id:
            return PathfindingResult(path=[from_id], relationship_strength=1.0, hops=0, path_type=PathType.DIRECT)

        cache_key = (from_id, to_id, hop_limit)
        with self._lock:
            cached = self._path_cache.get(cache_key)
            if cached is not None:
                return cached.model_copy(deep=True)
            if not self._has_node_locked(from_id) or not self._has_node_locked(to_id):
                return None
            queue: deque[tuple[str, list[str], float]] = deque([(from_id, [from_id], 1.0)])
            visited = {from_id}
            result = None
            while queue and result is None:
                current, path, strength = queue.popleft()
                if len(path) - 1 >= hop_limit:
                    continue
                for rel in self._outgoing_locked(current):
                    target = rel.target_id
                    if target in visited:
                        continue
                    next_path = path + [target]
                    next_strength = strength * rel.strength
                    if target == to_id:
                        hops = len(next_path) - 1
                        result = PathfindingResult(
                            path=next_path,
                            relationship_strength=next_strength,
                            hops=hops,
                            path_type=classify_path(hops),
                        )
                        break
                    visited.add(target)
                    queue.append((target, next_path, next_strength))
            if result is not None:
                self._path_cache.set(cache_key, result.model_copy(deep=True))
        return result

    def _tarjan_locked(self, edge_filter: Callable[[Relationship], bool]) -> list[list[str]]:
        index_of: dict[str, int] = {}
        lowlink: dict[str, int] = {}
        stack: list[str] = []
        on_stack: set[str] = set()
        components: list[list[str]] = []
        counter = 0

        def edges(node: str) -> Iterator[Relationship]:
            return (rel for rel in self._outgoing_locked(node) if edge_filter(rel))

        for root in self._all_nodes_locked():
            if root in index_of:
                continue
            index_of[root] = lowlink[root] = counter
            counter += 1
            stack.append(root)
            on_stack.add(root)
            work = [(root, edges(root))]
            while work:
                node, pending = work[-1]
                rel = next(pending, None)
                if rel is not None:
                    target = rel.target_id
                    if target not in index_of:
                        index_of[target] = lowlink[target] = counter
                        counter += 1
                        stack.append(target)
                        on_stack.add(target)
                        work.append((target, edges(target)))
                    elif target in on_stack:
                        lowlink[node] = min(lowlink[node], index_of[target])
                    continue

                work.pop()
                if work:
                    parent = work[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[node])
                if lowlink[node] == index_of[node]:
                    component = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        component.append(member)
                        if member == node:
                            break
                    if len(component) > 1:
                        components.append(component)
        return components

    def find_strongly_connected_components(self) -> list[list[str]]:
        """Tarjan SCCs over every edge regardless of type; only groups of 2+ members."""
        with self._lock:
            return self._tarjan_locked(lambda rel: True)

    def find_strongly_connected_groups(self, min_strength: float = 0.7) -> list[list[str]]:
        """Tarjan SCCs over edges with `strength >= min_strength` only."""
        with self._lock:
            return self._tarjan_locked(lambda rel: rel.strength >= min_strength)

    def calculate_graph_metrics(self) -> GraphMetrics:
        with self._lock:
            nodes = self._all_nodes_locked()
            total_edges = sum(len(rels) for rels in self._forward.values())
            average = total_edges / len(nodes) if nodes else 0.0
            counts = {
                node: len(self._forward.get(node, ())) + len(self._reverse.get(node, ())) for node in nodes
            }
            isolated = [node for node, count in counts.items() if count == 0]
            hubs = sorted(
                (HubNode(id=node, connection_count=count) for node, count in counts.items() if count > average * self.hub_factor),
                key=lambda hub: hub.connection_count,
                reverse=True,
            )
            return GraphMetrics(
                total_nodes=len(nodes),
                total_edges=total_edges,
                average_connectivity=average,
                strongly_connected_components=self._tarjan_locked(lambda rel: True),
                isolated_nodes=isolated,
                hub_nodes=hubs,
            )

    def validate_graph(self) -> GraphValidationReport:
        """Report self-references and duplicate `(target, type)` pairs per source.

        Sets the graph's validation status; never repairs anything.
        """
        issues: list[GraphValidationIssue] = []
        with self._lock:
            now = utc_now()
            for source_id, rels in self._forward.items():
                seen: set[tuple[str, RelationshipType]] = set()
                for rel in rels:
                    rel.metadata.validation_count += 1
                    rel.metadata.last_validated = now
                    if rel.is_self_reference:
                        issues.append(
                            GraphValidationIssue(
                                kind="self_reference",
                                source_id=source_id,
                                target_id=rel.target_id,
                                type=rel.type,
                                message=f"Self-reference detected: {source_id}",
                            )
                        )
                    pair = (rel.target_id, rel.type)
                    if pair in seen:
                        issues.append(
                            GraphValidationIssue(
                                kind="duplicate",
                                source_id=source_id,
                                target_id=rel.target_id,
                                type=rel.type,
                                message=f"Duplicate relationship: {source_id} -> {rel.target_id} ({rel.type.value})",
                            )
                        )
                    seen.add(pair)
            status = ValidationStatus.INVALID if issues else ValidationStatus.VALID
            self._metadata.validation_status = status

        if issues:
            logger.warning("Relationship graph failed validation", issues=len(issues))
        return GraphValidationReport(status=status, issues=issues)

    def analyze_relationships(self, entity_id: str) -> RelationshipAnalysis:
        """Direct/indirect edges, dependency chain, cycles, score and impact level."""
        with self._lock:
            cached = self._analysis_cache.get(entity_id)
            if cached is not None:
                return cached.model_copy(deep=True)
            if not self._has_node_locked(entity_id):
                return RelationshipAnalysis(entity_id=entity_id)
            direct = self.get_entity_relationships(entity_id, include_incoming=True)
            chain = self.build_dependency_chain(entity_id)
            score = self._relationship_score(direct)
            metrics = self.calculate_graph_metrics()
            analysis = RelationshipAnalysis(
                entity_id=entity_id,
                direct_relationships=direct,
                indirect_relationships=self.find_indirect_relationships(entity_id),
                dependency_chain=chain,
                circular_dependencies=self.detect_circular_dependencies(entity_id),
                relationship_score=score,
                impact_level=self._impact_level(
                    score, len(chain), any(hub.id == entity_id for hub in metrics.hub_nodes)
                ),
            )
            self._analysis_cache.set(entity_id, analysis.model_copy(deep=True))
        return analysis

    @staticmethod
    def _relationship_score(direct: list[Relationship]) -> float:
        if not direct:
            return 0.0
        connectivity = min(len(direct) / 10, 1.0)
        average_strength = sum(rel.strength for rel in direct) / len(direct)
        return (connectivity + average_strength) / 2

    @staticmethod
    def _impact_level(score: float, chain_length: int, is_hub: bool) -> ImpactLevel:
        if is_hub or chain_length > 10:
            return ImpactLevel.CRITICAL
        if score > 0.7 or chain_length > 5:
            return ImpactLevel.HIGH
        if score > 0.4 or chain_length > 2:
            return ImpactLevel.MEDIUM
        return ImpactLevel.LOW

    def build_subgraph(self, center_id: str, depth: int = 2) -> GraphSnapshot:
        """Relationships (incoming ones inverted) within `depth` hops of `center_id`."""
        with self._lock:
            relationships: dict[str, list[Relationship]] = {}
            visited: set[str] = set()

            def enter(entity_id: str, level: int) -> Iterator[Relationship] | None:
                if level > depth or entity_id in visited:
                    return None
                visited.add(entity_id)
                direct = [
                    rel
                    for rel in self.get_entity_relationships(entity_id, include_incoming=True)
                    if not rel.is_self_reference
                ]
                if not direct:
                    return None
                relationships[entity_id] = direct
                return iter(direct)

            stack: list[tuple[int, Iterator[Relationship]]] = []
            if self._has_node_locked(center_id):
                first = enter(center_id, 0)
                if first is not None:
                    stack.append((0, first))
            while stack:
                level, pending = stack[-1]
                rel = next(pending, None)
                if rel is None:
                    stack.pop()
                    continue
                nested = enter(rel.target_id, level + 1)
                if nested is not None:
                    stack.append((level + 1, nested))
            return GraphSnapshot(
                relationships=relationships,
                metadata=GraphMetadata(
                    total_nodes=len(visited),
                    total_edges=sum(len(rels) for rels in relationships.values()),
                ),
            )

    def statistics(self) -> dict[str, Any]:
        with self._lock:
            metadata = self._metadata.model_copy()
        return {
            "total_nodes": metadata.total_nodes,
            "total_edges": metadata.total_edges,
            "validation_status": metadata.validation_status.value,
            "last_updated": metadata.last_updated.isoformat(),
            "analysis_cache": self._analysis_cache.metrics(),
            "path_cache": self._path_cache.metrics(),
        }
