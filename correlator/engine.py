"""
correlator/engine.py
One analysis pass over a closed record set.

ORDER:
  1. validate config (ConfigError before any work)
  2. stamp every timestamp once, build the shared indexes
  3. graph / chains / fingerprints / locations  (independent, read-only)
  4. anomalies (reads 2 + 3), message flags (optional classifier),
     network structure and cash flows over the merged graph input

With workers > 1 step 3 fans out on a thread pool over contiguous entity
(or record) partitions and is joined in partition order, so the result is
identical to the single-threaded run. Nothing here mutates the input.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

from correlator.anomaly.associations import Associations, build_associations
from correlator.anomaly.detector import detect_anomalies
from correlator.anomaly.rules import AnomalyContext
from correlator.chains.detector import detect_all_chains
from correlator.classify.base import Classifier
from correlator.classify.flagger import flag_messages
from correlator.config import DEFAULT_CONFIG, EngineConfig
from correlator.finance.cashflow import summarize_cash_flow
from correlator.fingerprint.engine import compute_fingerprints
from correlator.graph.analysis import CommonNumber, KeyPlayer, common_numbers, rank_key_players
from correlator.graph.builder import build_graph, merge_graphs
from correlator.graph.network import Community, NetworkMetrics, detect_communities, network_metrics
from correlator.location.colocation import VisitorIndex, build_visitor_index
from correlator.location.resolver import TowerTable, build_location_timelines
from correlator.location.towers import summarize_towers
from correlator.models.record import InteractionRecord
from correlator.models.results import (
    AnomalyReport,
    BehavioralFingerprint,
    CashFlowSummary,
    CoLocation,
    ConversationChain,
    EntityGraph,
    FlaggedMessage,
    LocationEvent,
    TowerActivity,
)
from correlator.temporal.index import (
    MISSING_PARTY,
    Diagnostics,
    TemporalIndex,
    device,
    index_by,
    parties,
    primary_party,
    sim,
    stamp_records,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class AnalysisResult:
    """Complete output of one pass. Swapped in whole, never patched."""
    config:           EngineConfig
    graph:            EntityGraph
    chains:           List[ConversationChain]
    fingerprints:     Dict[str, BehavioralFingerprint]
    timelines:        Dict[str, List[LocationEvent]]
    colocations:      List[CoLocation]
    anomalies:        List[AnomalyReport]
    flagged_messages: List[FlaggedMessage]
    key_players:      List[KeyPlayer]
    common_numbers:   List[CommonNumber]
    tower_activity:   List[TowerActivity]
    communities:      List[Community]
    network:          NetworkMetrics
    cash_flows:       Dict[str, CashFlowSummary]
    associations:     Associations
    visitors:         VisitorIndex
    diagnostics:      Diagnostics
    generated_at:     datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def parameters(self) -> Dict[str, Any]:
        return self.config.to_dict()


def _partition(items: Sequence[T], parts: int) -> List[Sequence[T]]:
    """Split into at most `parts` contiguous, order-preserving slices."""
    if not items:
        return [items]
    size = -(-len(items) // parts)
    return [items[i:i + size] for i in range(0, len(items), size)]


def _tower_table(towers: Optional[Any]) -> TowerTable:
    if towers is None:
        return TowerTable()
    if isinstance(towers, TowerTable):
        return towers
    if isinstance(towers, Mapping):
        return TowerTable(towers)
    return TowerTable.from_rows(towers)


def run_pass(
    records:    Iterable[InteractionRecord],
    towers:     Optional[Any]          = None,
    config:     Optional[EngineConfig] = None,
    classifier: Optional[Classifier]   = None,
) -> AnalysisResult:
    """
    Full recomputation from `records`.

    Args:
        towers:     TowerTable, a locationId → tower mapping, or tower rows.
                    Materialized before resolution starts.
        config:     EngineConfig; defaults when omitted.
        classifier: optional text classifier for suspicious-message flags.

    Raises:
        ConfigError: invalid parameters. Nothing else is raised for bad
                     records; they are counted in result.diagnostics.
    """
    config = (config or DEFAULT_CONFIG).validate()
    tz = config.tz
    records = list(records)
    table = _tower_table(towers)
    logger.info(f"Pass started: {len(records)} records, {len(table)} towers, workers={config.workers}")

    # ── SHARED INDEXES ───────────────────────────────────────
    timed, diagnostics = stamp_records(records, tz)
    by_party   = index_by(timed, parties, diagnostics)
    by_primary = index_by(timed, primary_party, Diagnostics())
    by_device  = index_by(timed, device, Diagnostics())
    by_sim     = index_by(timed, sim, Diagnostics())

    stamped = {row.seq: row for row in timed}
    graph_input = [stamped.get(i, r) for i, r in enumerate(records)]

    # ── INDEPENDENT STAGES ───────────────────────────────────
    def graph_of(part: Sequence[Any]) -> Tuple[EntityGraph, int]:
        local = Diagnostics()
        g = build_graph(part, tz=tz, node_limit=config.node_limit, diagnostics=local)
        return g, local.get(MISSING_PARTY)

    def chains_of(entities: Sequence[str]) -> List[ConversationChain]:
        return detect_all_chains(by_party, config.gap_minutes, config.min_chain_depth, entities)

    def fingerprints_of(index: TemporalIndex, entities: Sequence[str]) -> Dict[str, BehavioralFingerprint]:
        return compute_fingerprints(index, table.as_dict(), config.top_locations, entities)

    def timelines_of() -> Dict[str, List[LocationEvent]]:
        return build_location_timelines(by_primary, table, config.dwell_cap_minutes, diagnostics)

    party_entities = by_party.entities()
    fp_sources = [(by_party, party_entities), (by_device, by_device.entities()), (by_sim, by_sim.entities())]

    if config.workers > 1:
        with ThreadPoolExecutor(max_workers=config.workers) as pool:
            graph_f = [pool.submit(graph_of, p) for p in _partition(graph_input, config.workers)]
            chain_f = [pool.submit(chains_of, p) for p in _partition(party_entities, config.workers)]
            fp_f = [
                [pool.submit(fingerprints_of, idx, p) for p in _partition(ents, config.workers)]
                for idx, ents in fp_sources
            ]
            loc_f = pool.submit(timelines_of)

            graph_parts = [f.result() for f in graph_f]
            graph = merge_graphs(*[g for g, _ in graph_parts], node_limit=config.node_limit)
            missing_party = sum(n for _, n in graph_parts)
            chains = [c for f in chain_f for c in f.result()]
            fp_parts = [{k: v for f in group for k, v in f.result().items()} for group in fp_f]
            timelines = loc_f.result()
    else:
        graph, missing_party = graph_of(graph_input)
        chains = chains_of(party_entities)
        fp_parts = [fingerprints_of(idx, ents) for idx, ents in fp_sources]
        timelines = timelines_of()

    # number fingerprints win if an id also appears as a device / SIM
    fingerprints: Dict[str, BehavioralFingerprint] = {}
    for part in fp_parts:
        for entity, fp in part.items():
            fingerprints.setdefault(entity, fp)
    fingerprints = {k: fingerprints[k] for k in sorted(fingerprints)}

    if missing_party:
        diagnostics.add(MISSING_PARTY, missing_party)

    # ── DERIVED ──────────────────────────────────────────────
    visitors = build_visitor_index(timelines, config.colocation_bucket_minutes, tz)
    associations = build_associations(timed)
    ctx = AnomalyContext(index=by_party, timelines=timelines, associations=associations, config=config)
    anomalies = detect_anomalies(ctx)
    flagged = flag_messages(records, classifier, tz)

    result = AnalysisResult(
        config           = config,
        graph            = graph,
        chains           = chains,
        fingerprints     = fingerprints,
        timelines        = timelines,
        colocations      = visitors.colocations(),
        anomalies        = anomalies,
        flagged_messages = flagged,
        key_players      = rank_key_players(graph),
        common_numbers   = common_numbers(records),
        tower_activity   = summarize_towers(timed, table),
        communities      = detect_communities(graph),
        network          = network_metrics(graph),
        cash_flows       = summarize_cash_flow(graph_input, tz),
        associations     = associations,
        visitors         = visitors,
        diagnostics      = diagnostics,
    )
    logger.info(
        f"Pass complete: {len(graph.nodes)} nodes, {len(chains)} chains, "
        f"{len(fingerprints)} fingerprints, {len(anomalies)} anomalies, "
        f"{len(flagged)} flagged messages, diagnostics={diagnostics.counts}"
    )
    return result
