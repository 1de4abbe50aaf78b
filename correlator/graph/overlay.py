"""
correlator/graph/overlay.py
Presentation-layer decoration for an EntityGraph.

The analytical graph is never touched: hidden ids, custom labels, colours
and icons live here, keyed by node id / edge id, and are applied only when
producing display elements.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from correlator.graph.builder import edge_id
from correlator.models.results import EntityGraph


@dataclass
class GraphOverlay:
    hidden_nodes: Set[str]       = field(default_factory=set)
    hidden_edges: Set[str]       = field(default_factory=set)   # edge ids "a->b"
    node_labels:  Dict[str, str] = field(default_factory=dict)
    node_colors:  Dict[str, str] = field(default_factory=dict)
    node_icons:   Dict[str, str] = field(default_factory=dict)
    edge_colors:  Dict[str, str] = field(default_factory=dict)

    def hide_node(self, node_id: str) -> None:
        self.hidden_nodes.add(node_id)

    def show_node(self, node_id: str) -> None:
        self.hidden_nodes.discard(node_id)

    def hide_edge(self, edge_key: str) -> None:
        self.hidden_edges.add(edge_key)

    def show_edge(self, edge_key: str) -> None:
        self.hidden_edges.discard(edge_key)

    def reset(self) -> None:
        self.hidden_nodes.clear()
        self.hidden_edges.clear()
        self.node_labels.clear()
        self.node_colors.clear()
        self.node_icons.clear()
        self.edge_colors.clear()


def to_elements(graph: EntityGraph, overlay: Optional[GraphOverlay] = None) -> Dict[str, Any]:
    """
    Cytoscape-style elements for the UI.

    Self-loops and hidden ids are left out. When the graph is trimmed only
    the `node_limit` most active nodes (ties by id) are emitted; the
    aggregates on every emitted node and edge are still exact.
    """
    overlay = overlay or GraphOverlay()

    visible = [n for n in graph.nodes.values() if n.id not in overlay.hidden_nodes]
    visible.sort(key=lambda n: (-n.interaction_count, n.id))
    if graph.trimmed:
        visible = visible[:graph.node_limit]
    keep = {n.id for n in visible}

    nodes: List[Dict[str, Any]] = []
    for n in visible:
        data: Dict[str, Any] = {
            'id':        n.id,
            'label':     overlay.node_labels.get(n.id, n.id),
            'callCount': n.interaction_count,
            'outgoing':  n.outgoing,
            'incoming':  n.incoming,
        }
        if n.id in overlay.node_colors:
            data['customColor'] = overlay.node_colors[n.id]
        if n.id in overlay.node_icons:
            data['customIcon'] = overlay.node_icons[n.id]
        nodes.append({'data': data})

    edges: List[Dict[str, Any]] = []
    for key in sorted(graph.edges):
        e = graph.edges[key]
        eid = edge_id(key)
        if e.is_self_loop or eid in overlay.hidden_edges:
            continue
        if e.source not in keep or e.target not in keep:
            continue
        data = {
            'id':               eid,
            'source':           e.source,
            'target':           e.target,
            'callCount':        e.call_count,
            'smsCount':         e.sms_count,
            'transactionCount': e.transaction_count,
            'durationSum':      e.duration_sum,
            'amountSum':        float(e.amount_sum),
        }
        if eid in overlay.edge_colors:
            data['customColor'] = overlay.edge_colors[eid]
        edges.append({'data': data})

    return {'nodes': nodes, 'edges': edges, 'trimmed': graph.trimmed}
