"""
correlator/graph/builder.py
Folds call / SMS / transaction records into a directed entity graph.

FOLD PROPERTIES:
  Every per-node and per-edge aggregate is a sum, a min, a max or a set
  union, so the fold is associative and commutative:
      build_graph(a + b) == merge_graphs(build_graph(a), build_graph(b))
  Multi-file analysis relies on this.
  Transaction amounts are Decimal sums for the same reason.

DIRECTION:
  party_a is the subscriber the row belongs to. OUTGOING (and UNKNOWN)
  rows become edge A→B, INCOMING rows become B→A.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Union

from correlator.finance.cashflow import ZERO, money_flow, transaction_amount
from correlator.models.record import CALL, SMS, TRANSACTION, InteractionRecord
from correlator.models.results import Edge, EdgeKey, EntityGraph, Node, UndirectedEdge
from correlator.temporal.index import (
    MISSING_PARTY,
    UNPARSABLE_TIMESTAMP,
    Diagnostics,
    TimedRecord,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

GRAPH_KINDS = frozenset({CALL, SMS, TRANSACTION})


def edge_id(key: EdgeKey) -> str:
    return f"{key[0]}->{key[1]}"


def _earliest(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def _latest(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


# ── ACCUMULATORS (mutable during the fold only) ─────────────

@dataclass
class _NodeAcc:
    id:                str
    interaction_count: int                = 0
    outgoing:          int                = 0
    incoming:          int                = 0
    total_duration:    int                = 0
    first_seen:        Optional[datetime] = None
    last_seen:         Optional[datetime] = None
    source_ids:        Set[str]           = field(default_factory=set)
    amount_in:         Decimal            = ZERO
    amount_out:        Decimal            = ZERO

    def widen(self, at: Optional[datetime]) -> None:
        self.first_seen = _earliest(self.first_seen, at)
        self.last_seen  = _latest(self.last_seen, at)

    def freeze(self) -> Node:
        return Node(
            id                = self.id,
            interaction_count = self.interaction_count,
            outgoing          = self.outgoing,
            incoming          = self.incoming,
            total_duration    = self.total_duration,
            first_seen        = self.first_seen,
            last_seen         = self.last_seen,
            source_ids        = frozenset(self.source_ids),
            amount_in         = self.amount_in,
            amount_out        = self.amount_out,
        )


@dataclass
class _EdgeAcc:
    source:            str
    target:            str
    call_count:        int                = 0
    sms_count:         int                = 0
    transaction_count: int                = 0
    duration_sum:      int                = 0
    first_seen:        Optional[datetime] = None
    last_seen:         Optional[datetime] = None
    source_ids:        Set[str]           = field(default_factory=set)
    amount_sum:        Decimal            = ZERO

    def freeze(self) -> Edge:
        return Edge(
            source            = self.source,
            target            = self.target,
            call_count        = self.call_count,
            sms_count         = self.sms_count,
            transaction_count = self.transaction_count,
            duration_sum      = self.duration_sum,
            first_seen        = self.first_seen,
            last_seen         = self.last_seen,
            source_ids        = frozenset(self.source_ids),
            amount_sum        = self.amount_sum,
        )


# ── BUILD ────────────────────────────────────────────────────

def build_graph(
    records:        Iterable[Union[InteractionRecord, TimedRecord]],
    tz:             tzinfo                    = timezone.utc,
    excluded_nodes: Optional[Set[str]]        = None,
    excluded_edges: Optional[Set[EdgeKey]]    = None,
    node_limit:     int                       = 500,
    diagnostics:    Optional[Diagnostics]     = None,
) -> EntityGraph:
    """
    Single pass over `records` (raw records, or TimedRecords already stamped
    by the temporal index). Rows without two identifiable parties are
    counted as missing_party. Rows with unparsable timestamps still count
    but never widen first/last seen.

    Args:
        excluded_nodes: node ids to leave out (rows touching them are skipped).
        excluded_edges: directed (source, target) keys to leave out.
        node_limit:     above this many nodes the graph reports trimmed=True.
        diagnostics:    optional sink for per-record fault counts.
    """
    excluded_nodes = excluded_nodes or set()
    excluded_edges = excluded_edges or set()
    diagnostics    = diagnostics if diagnostics is not None else Diagnostics()

    nodes: Dict[str, _NodeAcc]     = {}
    edges: Dict[EdgeKey, _EdgeAcc] = {}

    for item in records:
        if isinstance(item, TimedRecord):
            record, at = item.record, item.at
        else:
            record, at = item, None
        if record.kind not in GRAPH_KINDS:
            continue
        if not record.party_a or not record.party_b:
            diagnostics.add(MISSING_PARTY)
            continue

        source, target = money_flow(record)

        if source in excluded_nodes or target in excluded_nodes:
            continue
        if (source, target) in excluded_edges:
            continue

        if at is None:
            at = parse_timestamp(record.timestamp, tz)
            if at is None:
                diagnostics.add(UNPARSABLE_TIMESTAMP)

        duration = max(int(record.duration_seconds or 0), 0)
        amount   = transaction_amount(record)

        if source not in nodes:
            nodes[source] = _NodeAcc(id=source)
        src = nodes[source]
        src.interaction_count += 1
        src.outgoing          += 1
        src.total_duration    += duration
        src.amount_out        += amount
        src.widen(at)
        src.source_ids.add(record.source_id)

        if target != source:
            if target not in nodes:
                nodes[target] = _NodeAcc(id=target)
            dst = nodes[target]
            dst.interaction_count += 1
            dst.total_duration    += duration
            dst.amount_in         += amount
            dst.widen(at)
            dst.source_ids.add(record.source_id)
        else:
            dst = src
            dst.amount_in += amount
        dst.incoming += 1

        if (source, target) not in edges:
            edges[(source, target)] = _EdgeAcc(source=source, target=target)
        edge = edges[(source, target)]
        if record.kind == CALL:
            edge.call_count += 1
        elif record.kind == SMS:
            edge.sms_count += 1
        else:
            edge.transaction_count += 1
        edge.duration_sum += duration
        edge.amount_sum   += amount
        edge.first_seen    = _earliest(edge.first_seen, at)
        edge.last_seen     = _latest(edge.last_seen, at)
        edge.source_ids.add(record.source_id)

    graph = EntityGraph(
        nodes      = {k: v.freeze() for k, v in nodes.items()},
        edges      = {k: v.freeze() for k, v in edges.items()},
        node_limit = node_limit,
    )
    logger.info(
        f"Graph built: {len(graph.nodes)} nodes, {len(graph.edges)} edges"
        + (" (trimmed for display)" if graph.trimmed else "")
    )
    return graph


# ── MERGE ────────────────────────────────────────────────────

def merge_graphs(*graphs: EntityGraph, node_limit: Optional[int] = None) -> EntityGraph:
    """
    Combine graphs built from separate record partitions. The result equals
    the graph built from the concatenated records.
    """
    nodes: Dict[str, Node]     = {}
    edges: Dict[EdgeKey, Edge] = {}

    for graph in graphs:
        for node_id, n in graph.nodes.items():
            cur = nodes.get(node_id)
            nodes[node_id] = n if cur is None else Node(
                id                = node_id,
                interaction_count = cur.interaction_count + n.interaction_count,
                outgoing          = cur.outgoing + n.outgoing,
                incoming          = cur.incoming + n.incoming,
                total_duration    = cur.total_duration + n.total_duration,
                first_seen        = _earliest(cur.first_seen, n.first_seen),
                last_seen         = _latest(cur.last_seen, n.last_seen),
                source_ids        = cur.source_ids | n.source_ids,
                amount_in         = cur.amount_in + n.amount_in,
                amount_out        = cur.amount_out + n.amount_out,
            )
        for key, e in graph.edges.items():
            cur = edges.get(key)
            edges[key] = e if cur is None else Edge(
                source            = e.source,
                target            = e.target,
                call_count        = cur.call_count + e.call_count,
                sms_count         = cur.sms_count + e.sms_count,
                transaction_count = cur.transaction_count + e.transaction_count,
                duration_sum      = cur.duration_sum + e.duration_sum,
                first_seen        = _earliest(cur.first_seen, e.first_seen),
                last_seen         = _latest(cur.last_seen, e.last_seen),
                source_ids        = cur.source_ids | e.source_ids,
                amount_sum        = cur.amount_sum + e.amount_sum,
            )

    if node_limit is None:
        node_limit = graphs[0].node_limit if graphs else 500
    return EntityGraph(nodes=nodes, edges=edges, node_limit=node_limit)


# ── PROJECTIONS ──────────────────────────────────────────────

def undirected_projection(graph: EntityGraph) -> List[UndirectedEdge]:
    """Collapse A→B and B→A into one pair; self-loops are left out."""
    pairs: Dict[EdgeKey, UndirectedEdge] = {}
    for edge in graph.edges.values():
        if edge.is_self_loop:
            continue
        a, b = sorted((edge.source, edge.target))
        cur = pairs.get((a, b))
        pairs[(a, b)] = UndirectedEdge(
            a                 = a,
            b                 = b,
            interaction_count = edge.interaction_count + (cur.interaction_count if cur else 0),
            duration_sum      = edge.duration_sum + (cur.duration_sum if cur else 0),
            amount_sum        = edge.amount_sum + (cur.amount_sum if cur else ZERO),
            first_seen        = _earliest(cur.first_seen, edge.first_seen) if cur else edge.first_seen,
            last_seen         = _latest(cur.last_seen, edge.last_seen) if cur else edge.last_seen,
        )
    return [pairs[k] for k in sorted(pairs)]
