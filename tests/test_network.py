"""
tests/test_network.py
networkx projection: centrality, communities and structural metrics.
"""

from correlator.graph.builder import build_graph
from correlator.graph.network import (
    degree_centrality,
    detect_communities,
    network_metrics,
    to_networkx,
    to_undirected,
)
from correlator.models.record import CALL, SMS, InteractionRecord


def _make_record(rid, a, b, kind=CALL):
    return InteractionRecord(
        id=rid, source_id="cdr.json", timestamp="2024-03-01T10:00:00",
        party_a=a, party_b=b, kind=kind, duration_seconds=60,
    )


# two triangles joined by one bridge call, plus a number that only calls itself
RECORDS = [
    _make_record("r1", "A", "B"), _make_record("r2", "B", "C"), _make_record("r3", "C", "A"),
    _make_record("r4", "D", "E"), _make_record("r5", "E", "F"), _make_record("r6", "F", "D"),
    _make_record("r7", "C", "D"),
    _make_record("r8", "G", "G"),
]


class TestProjection:
    def test_directed_copy_with_attributes(self):
        graph = build_graph(RECORDS + [_make_record("r9", "A", "B", kind=SMS)])
        g = to_networkx(graph)
        assert g.number_of_nodes() == 7
        assert g.has_edge("G", "G")
        assert g["A"]["B"]["weight"] == 2
        assert g["A"]["B"]["sms"] == 1
        assert g.nodes["A"]["interactions"] == 3

    def test_projection_does_not_touch_entity_graph(self):
        graph = build_graph(RECORDS)
        g = to_networkx(graph)
        g.remove_node("A")
        g.nodes["B"]["interactions"] = 99
        assert "A" in graph.nodes
        assert graph.nodes["B"].interaction_count == 2

    def test_undirected_adds_both_directions(self):
        graph = build_graph(RECORDS + [_make_record("r9", "B", "A")])
        u = to_undirected(graph)
        assert u["A"]["B"]["weight"] == 2
        assert not u.has_edge("G", "G")


class TestCentrality:
    def test_degree_over_other_nodes(self):
        centrality = degree_centrality(build_graph(RECORDS))
        assert centrality["C"] == 0.5
        assert centrality["A"] == round(2 / 6, 4)
        assert centrality["G"] == 0.0

    def test_lone_node(self):
        assert degree_centrality(build_graph([_make_record("r1", "X", "X")])) == {"X": 0.0}


class TestCommunities:
    def test_bridged_triangles_split(self):
        communities = detect_communities(build_graph(RECORDS))
        assert [c.members for c in communities] == [("A", "B", "C"), ("D", "E", "F")]
        assert [c.id for c in communities] == [0, 1]
        assert communities[0].interactions == 3
        assert communities[0].density == 1.0

    def test_singletons_left_out(self):
        members = {m for c in detect_communities(build_graph(RECORDS)) for m in c.members}
        assert "G" not in members

    def test_no_edges(self):
        assert detect_communities(build_graph([])) == []
        assert detect_communities(build_graph([_make_record("r1", "X", "X")])) == []

    def test_stable_between_runs(self):
        assert detect_communities(build_graph(RECORDS)) == detect_communities(build_graph(RECORDS[::-1]))


class TestMetrics:
    def test_components_and_density(self):
        metrics = network_metrics(build_graph(RECORDS))
        assert metrics.node_count == 7
        assert metrics.edge_count == 7
        assert metrics.component_count == 2
        assert metrics.largest_component == 6
        assert metrics.density == round(2 * 7 / (7 * 6), 4)

    def test_empty_graph(self):
        assert network_metrics(build_graph([])).node_count == 0
