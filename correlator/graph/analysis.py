"""
correlator/graph/analysis.py
Offline network analysis over an EntityGraph / record set.

rank_key_players is the deterministic counterpart of the dashboard's
AI "network leader" inference: it ranks by degree centrality on the
networkx projection and by interaction volume only, so it is
reproducible and needs no external service. Community detection lives
in correlator.graph.network.

NOTE ON SCORE:
  score = 0.5 * centrality / max_centrality + 0.5 * interactions / max_interactions
  Equal weighting is a PLAUSIBLE heuristic, not a validated centrality model.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

from correlator.graph.network import degree_centrality, to_undirected
from correlator.models.record import InteractionRecord
from correlator.models.results import EntityGraph


@dataclass(frozen=True)
class KeyPlayer:
    node_id:      str
    degree:       int       # distinct counterparties, either direction
    centrality:   float
    interactions: int
    score:        float


@dataclass(frozen=True)
class SourcePresence:
    source_id:     str
    as_a_party:    int
    as_b_party:    int


@dataclass(frozen=True)
class CommonNumber:
    number:            str
    total_occurrences: int
    sources:           Tuple[SourcePresence, ...]


def rank_key_players(graph: EntityGraph, top_n: int = 5) -> List[KeyPlayer]:
    if not graph.nodes:
        return []

    degree     = dict(to_undirected(graph).degree())
    centrality = degree_centrality(graph)
    max_cent   = max(centrality.values()) or 1.0
    max_inter  = max(n.interaction_count for n in graph.nodes.values()) or 1

    players = [
        KeyPlayer(
            node_id      = n.id,
            degree       = degree[n.id],
            centrality   = centrality[n.id],
            interactions = n.interaction_count,
            score        = round(
                0.5 * centrality[n.id] / max_cent
                + 0.5 * n.interaction_count / max_inter, 4),
        )
        for n in graph.nodes.values()
    ]
    players.sort(key=lambda p: (-p.score, -p.degree, p.node_id))
    return players[:top_n]


def common_numbers(records: Iterable[InteractionRecord], min_sources: int = 2) -> List[CommonNumber]:
    """
    Link analysis: numbers that appear in at least `min_sources` uploaded
    sources, with how often each source saw them as A- or B-party.
    """
    a_counts: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
    b_counts: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))

    for r in records:
        if r.party_a:
            a_counts[r.party_a][r.source_id] += 1
        if r.party_b:
            b_counts[r.party_b][r.source_id] += 1

    results: List[CommonNumber] = []
    for number in set(a_counts) | set(b_counts):
        source_ids = set(a_counts.get(number, {})) | set(b_counts.get(number, {}))
        if len(source_ids) < min_sources:
            continue
        presence = tuple(
            SourcePresence(
                source_id  = sid,
                as_a_party = a_counts.get(number, {}).get(sid, 0),
                as_b_party = b_counts.get(number, {}).get(sid, 0),
            )
            for sid in sorted(source_ids)
        )
        results.append(CommonNumber(
            number            = number,
            total_occurrences = sum(p.as_a_party + p.as_b_party for p in presence),
            sources           = presence,
        ))

    results.sort(key=lambda c: (-len(c.sources), -c.total_occurrences, c.number))
    return results
