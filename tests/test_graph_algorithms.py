# tests/test_graph_algorithms.py
"""Traversals, cycle detection, components, metrics and analysis."""

import pytest

from core.relationship_graph import RelationshipGraph, classify_path
from models.engine_constants import ImpactLevel, PathType, RelationshipType


def build(edges, **kwargs):
    graph = RelationshipGraph(**kwargs)
    for source, target, rel_type, strength in edges:
        graph.add_relationship({"source_id": source, "target_id": target, "type": rel_type, "strength": strength})
    return graph


class TestFindPath:
    def test_path_to_self_has_zero_hops(self):
        graph = build([("a", "b", "synergy", 0.5)])
        result = graph.find_path("a", "a")
        assert result.path == ["a"]
        assert result.hops == 0
        assert result.relationship_strength == 1.0
        assert result.path_type is PathType.DIRECT

    def test_shortest_path_wins_over_strongest(self):
        graph = build(
            [
                ("a", "d", "sequence", 0.9),
                ("d", "e", "sequence", 0.9),
                ("e", "c", "sequence", 0.9),
                ("a", "b", "sequence", 0.1),
                ("b", "c", "sequence", 0.1),
            ]
        )
        result = graph.find_path("a", "c")
        assert result.path == ["a", "b", "c"]
        assert result.hops == 2
        assert result.relationship_strength == pytest.approx(0.01)
        assert result.path_type is PathType.INDIRECT

    def test_hop_limit_and_unknown_nodes(self):
        graph = build([("a", "b", "sequence", 1.0), ("b", "c", "sequence", 1.0)])
        assert graph.find_path("a", "c", max_hops=1) is None
        assert graph.find_path("a", "c", max_hops=2).hops == 2
        assert graph.find_path("a", "zzz") is None
        assert graph.find_path("c", "a") is None

    def test_cached_path_is_dropped_on_mutation(self):
        graph = build([("a", "b", "sequence", 1.0), ("b", "c", "sequence", 1.0)])
        assert graph.find_path("a", "c").hops == 2
        graph.add_relationship({"source_id": "a", "target_id": "c", "type": "synergy", "strength": 0.4})
        shortcut = graph.find_path("a", "c")
        assert shortcut.path == ["a", "c"]
        assert shortcut.relationship_strength == pytest.approx(0.4)

    @pytest.mark.parametrize("hops, expected", [(1, PathType.DIRECT), (3, PathType.INDIRECT), (4, PathType.COMPLEX)])
    def test_classify_path(self, hops, expected):
        assert classify_path(hops) is expected


class TestDependencies:
    def test_two_node_cycle(self):
        graph = build([("a", "b", "dependency", 1.0), ("b", "a", "prerequisite", 1.0)])
        assert graph.detect_circular_dependencies("a") == [["a", "b", "a"]]

    def test_non_dependency_edges_do_not_form_cycles(self):
        graph = build([("a", "b", "dependency", 1.0), ("b", "a", "synergy", 1.0)])
        assert graph.detect_circular_dependencies("a") == []

    def test_dependency_chain_follows_dependency_types_only(self):
        graph = build(
            [
                ("quest_dragon", "item_sword", "prerequisite", 0.9),
                ("item_sword", "npc_smith", "dependency", 0.8),
                ("quest_dragon", "event_feast", "synergy", 0.8),
            ]
        )
        assert graph.build_dependency_chain("quest_dragon") == ["quest_dragon", "item_sword", "npc_smith"]
        assert graph.build_dependency_chain("unknown") == []

    def test_indirect_relationships_decay_with_distance(self):
        graph = build([("a", "b", "dependency", 0.9), ("b", "c", "synergy", 0.5), ("c", "d", "sequence", 1.0)])
        indirect = graph.find_indirect_relationships("a")

        assert [rel.target_id for rel in indirect] == ["c", "d"]
        assert all(rel.type is RelationshipType.SEQUENCE for rel in indirect)
        assert indirect[0].strength == pytest.approx(0.5 * 0.8)
        assert indirect[1].strength == pytest.approx(1.0 * 0.8**2)
        assert [rel.target_id for rel in graph.find_indirect_relationships("a", max_depth=2)] == ["c"]

    def test_indirect_skips_direct_targets_and_self(self):
        graph = build([("a", "b", "sequence", 1.0), ("b", "c", "sequence", 1.0), ("a", "c", "sequence", 1.0), ("c", "a", "sequence", 1.0)])
        assert graph.find_indirect_relationships("a") == []


class TestComponents:
    def test_three_node_cycle_is_one_component(self):
        graph = build(
            [
                ("a", "b", "sequence", 0.9),
                ("b", "c", "sequence", 0.9),
                ("c", "a", "sequence", 0.9),
                ("c", "d", "sequence", 0.9),
            ]
        )
        components = graph.find_strongly_connected_components()
        assert [sorted(component) for component in components] == [["a", "b", "c"]]

    def test_groups_only_use_strong_edges(self):
        graph = build([("a", "b", "synergy", 0.9), ("b", "a", "synergy", 0.5)])
        assert [sorted(c) for c in graph.find_strongly_connected_groups(min_strength=0.5)] == [["a", "b"]]
        assert graph.find_strongly_connected_groups(min_strength=0.7) == []


class TestMetricsAndAnalysis:
    @pytest.fixture
    def star(self):
        graph = build([("hub", f"leaf_{i}", "synergy", 1.0) for i in range(5)])
        graph.register_entity("lonely")
        return graph

    def test_metrics_report_hubs_and_isolated_nodes(self, star):
        metrics = star.calculate_graph_metrics()
        assert metrics.total_nodes == 7
        assert metrics.total_edges == 5
        assert metrics.average_connectivity == pytest.approx(5 / 7)
        assert metrics.isolated_nodes == ["lonely"]
        assert [(hub.id, hub.connection_count) for hub in metrics.hub_nodes] == [("hub", 5)]
        assert metrics.strongly_connected_components == []

    def test_empty_graph_metrics(self):
        metrics = RelationshipGraph().calculate_graph_metrics()
        assert metrics.total_nodes == 0
        assert metrics.average_connectivity == 0.0

    def test_hub_analysis_is_critical(self, star):
        analysis = star.analyze_relationships("hub")
        assert len(analysis.direct_relationships) == 5
        assert analysis.relationship_score == pytest.approx((0.5 + 1.0) / 2)
        assert 0.0 <= analysis.relationship_score <= 1.0
        assert analysis.impact_level is ImpactLevel.CRITICAL

    def test_leaf_analysis(self, star):
        analysis = star.analyze_relationships("leaf_0")
        assert [rel.target_id for rel in analysis.direct_relationships] == ["hub"]
        assert analysis.dependency_chain == ["leaf_0"]
        assert analysis.impact_level is ImpactLevel.MEDIUM

    def test_unknown_entity_analysis_is_empty(self, star):
        analysis = star.analyze_relationships("ghost")
        assert analysis.direct_relationships == []
        assert analysis.relationship_score == 0.0
        assert analysis.impact_level is ImpactLevel.LOW

    def test_analysis_is_cached_until_mutation(self, star):
        first = star.analyze_relationships("leaf_0")
        assert star.analyze_relationships("leaf_0") == first
        assert star.statistics()["analysis_cache"]["hits"] == 1
        star.add_relationship({"source_id": "leaf_0", "target_id": "leaf_1", "type": "conflict", "strength": 0.2})
        assert len(star.analyze_relationships("leaf_0").direct_relationships) == 2

    def test_chain_length_drives_impact(self):
        graph = build([(f"n{i}", f"n{i + 1}", "dependency", 0.1) for i in range(6)])
        # n0 depends on six entities and has a single link, so it is not a hub
        analysis = graph.analyze_relationships("n0")
        assert len(analysis.dependency_chain) == 7
        assert analysis.impact_level is ImpactLevel.HIGH


class TestLongChains:
    LENGTH = 1500

    @pytest.fixture
    def chain(self):
        return build([(f"q{i}", f"q{i + 1}", "dependency", 0.9) for i in range(self.LENGTH)])

    def test_dependency_chain_walks_the_whole_chain(self, chain):
        result = chain.build_dependency_chain("q0")
        assert len(result) == self.LENGTH + 1
        assert result[-1] == f"q{self.LENGTH}"
        assert chain.detect_circular_dependencies("q0") == []

    def test_closing_the_chain_gives_one_cycle_and_component(self, chain):
        chain.add_relationship({"source_id": f"q{self.LENGTH}", "target_id": "q0", "type": "dependency"})

        cycles = chain.detect_circular_dependencies("q0")
        assert len(cycles) == 1
        assert cycles[0][0] == cycles[0][-1] == "q0"
        assert len(cycles[0]) == self.LENGTH + 2

        components = chain.find_strongly_connected_components()
        assert [len(component) for component in components] == [self.LENGTH + 1]

    def test_deep_traversals(self, chain):
        indirect = chain.find_indirect_relationships("q0", max_depth=self.LENGTH)
        assert len(indirect) == self.LENGTH - 1
        assert indirect[-1].target_id == f"q{self.LENGTH}"

        path = chain.find_path("q0", f"q{self.LENGTH}", max_hops=self.LENGTH)
        assert path.hops == self.LENGTH

        subgraph = chain.build_subgraph("q0", depth=self.LENGTH)
        assert subgraph.metadata.total_nodes == self.LENGTH + 1
