"""
correlator/anomaly/rules.py
Rule-based anomaly checks. Each rule is a plain function
    rule(ctx: AnomalyContext) -> List[AnomalyReport]
that reads the shared context and never sees another rule's output, so a
finding in one rule cannot hide a finding in another.

SEVERITY LADDERS (heuristic, not calibrated):
  DEVICE_SWAP           1-2 switches LOW, 3-5 MEDIUM, > 5 HIGH
  IMPOSSIBLE_TRAVEL     speed / max  > 1.5 MEDIUM, > 3 HIGH
  BURST_ACTIVITY        z >= 1.5k MEDIUM, z >= 2k HIGH
  DORMANT_REACTIVATION  gap / threshold >= 2 MEDIUM, >= 4 HIGH
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

from correlator.anomaly.associations import Associations, Usage, change_history
from correlator.config import DEFAULT_CONFIG, EngineConfig
from correlator.location.geo import haversine_km
from correlator.models.record import TOWER_PRESENCE
from correlator.models.results import (
    BURST_ACTIVITY,
    DEVICE_SWAP,
    DORMANT_REACTIVATION,
    HIGH,
    IMPOSSIBLE_TRAVEL,
    LOW,
    MEDIUM,
    AnomalyReport,
    Evidence,
    LocationEvent,
)
from correlator.temporal.index import TemporalIndex, TimedRecord

logger = logging.getLogger(__name__)

NUMBER = 'NUMBER'
IMEI   = 'IMEI'
SIM    = 'SIM'


@dataclass
class AnomalyContext:
    """Everything the rules read. Built once per pass, shared read-only."""
    index:        TemporalIndex                        # entity → interactions (both parties)
    timelines:    Dict[str, List[LocationEvent]]       = field(default_factory=dict)
    associations: Associations                         = field(default_factory=Associations)
    config:       EngineConfig                         = DEFAULT_CONFIG


def report_id(category: str, entity: str, n: int) -> str:
    return f"{category}:{entity}:{n}"


# ── SEVERITY ─────────────────────────────────────────────────

def swap_severity(switches: int) -> str:
    if switches > 5:
        return HIGH
    if switches >= 3:
        return MEDIUM
    return LOW


def travel_severity(ratio: float) -> str:
    if ratio > 3:
        return HIGH
    if ratio > 1.5:
        return MEDIUM
    return LOW


def burst_severity(z: float, k: float) -> str:
    if z >= 2 * k:
        return HIGH
    if z >= 1.5 * k:
        return MEDIUM
    return LOW


def dormancy_severity(ratio: float) -> str:
    if ratio >= 4:
        return HIGH
    if ratio >= 2:
        return MEDIUM
    return LOW


# ── DEVICE SWAP ──────────────────────────────────────────────

def device_swap(ctx: AnomalyContext) -> List[AnomalyReport]:
    """
    A device seen with a different SIM (or a SIM in a different device)
    within the rolling window. One report per device / SIM summarizing all
    qualifying switches.
    """
    window_h = ctx.config.device_swap_window_hours
    reports: List[AnomalyReport] = []
    tables = (
        (IMEI, 'SIM',    ctx.associations.sims_by_device),
        (SIM,  'device', ctx.associations.devices_by_sim),
    )
    for entity_type, other_label, table in tables:
        for entity in sorted(table):
            report = _swap_report(entity, entity_type, other_label, table[entity], window_h)
            if report:
                reports.append(report)
    return reports


def _swap_report(entity: str, entity_type: str, other_label: str,
                 usages: List[Usage], window_h: float) -> Optional[AnomalyReport]:
    switches = [c for c in change_history(usages) if c.gap_hours <= window_h]
    if not switches:
        return None

    involved = sorted({c.previous for c in switches} | {c.current for c in switches})
    prev_at = {u.record_id: u.at for u in usages}
    evidence = []
    for c in switches:
        evidence.append(Evidence(c.previous_record_id, prev_at[c.previous_record_id]))
        evidence.append(Evidence(c.record_id, c.at))
    evidence = list(dict.fromkeys(evidence))

    return AnomalyReport(
        id               = report_id(DEVICE_SWAP, entity, 0),
        entity           = entity,
        entity_type      = entity_type,
        category         = DEVICE_SWAP,
        severity         = swap_severity(len(switches)),
        description      = (f"{entity_type} {entity} switched {other_label} {len(switches)} time(s) "
                            f"within {window_h:g}h across {len(involved)} {other_label}s: "
                            f"{', '.join(involved)}"),
        evidence         = tuple(evidence),
        supporting_data  = {
            'counterparts':     involved,
            'switch_count':     len(switches),
            'switch_times':     [c.at.isoformat() for c in switches],
            'window_hours':     window_h,
            'all_counterparts': sorted({u.other for u in usages}),
        },
        suggested_action = f"Confirm who held each {other_label} around the switch times.",
    )


# ── IMPOSSIBLE TRAVEL ────────────────────────────────────────

def impossible_travel(ctx: AnomalyContext) -> List[AnomalyReport]:
    """
    Consecutive resolved location events whose implied speed exceeds
    max_speed_kmh. Unresolved events are skipped, not treated as gaps.
    Zero elapsed time with non-zero distance counts as infinite speed.
    """
    max_kmh = ctx.config.max_speed_kmh
    reports: List[AnomalyReport] = []

    for entity in sorted(ctx.timelines):
        resolved = [e for e in ctx.timelines[entity] if e.resolved]
        n = 0
        for prev, cur in zip(resolved, resolved[1:]):
            km = haversine_km(prev.latitude, prev.longitude, cur.latitude, cur.longitude)
            if km <= 0:
                continue
            hours = (cur.timestamp - prev.timestamp).total_seconds() / 3600.0
            speed = km / hours if hours > 0 else math.inf
            if speed <= max_kmh:
                continue
            ratio = speed / max_kmh
            reports.append(AnomalyReport(
                id               = report_id(IMPOSSIBLE_TRAVEL, entity, n),
                entity           = entity,
                entity_type      = NUMBER,
                category         = IMPOSSIBLE_TRAVEL,
                severity         = travel_severity(ratio),
                description      = (f"{entity} moved {km:.1f} km from {prev.location_id} to "
                                    f"{cur.location_id} in {hours * 60:.1f} min "
                                    f"({'instant' if math.isinf(speed) else f'{speed:.0f} km/h'})"),
                evidence         = (Evidence(prev.record_id, prev.timestamp),
                                    Evidence(cur.record_id, cur.timestamp)),
                supporting_data  = {
                    'from_location': prev.location_id,
                    'to_location':   cur.location_id,
                    'distance_km':   round(km, 3),
                    'elapsed_hours': round(hours, 4),
                    'speed_kmh':     None if math.isinf(speed) else round(speed, 1),
                    'max_speed_kmh': max_kmh,
                },
                suggested_action = "Check for a cloned SIM or a shared handset.",
            ))
            n += 1
    return reports


# ── BURST ACTIVITY ───────────────────────────────────────────

def _hour_key(row: TimedRecord) -> int:
    # floor in the configured zone, then count hours on the absolute timeline
    return int(row.at.replace(minute=0, second=0, microsecond=0).timestamp()) // 3600


def burst_activity(ctx: AnomalyContext) -> List[AnomalyReport]:
    """
    Hours whose interaction count exceeds mean + k·stddev of the entity's
    own hourly history (every hour of its active span, quiet hours
    included) and is at least burst_min_events.
    """
    k = ctx.config.burst_k
    min_events = ctx.config.burst_min_events
    reports: List[AnomalyReport] = []

    for entity in ctx.index.entities():
        buckets: Dict[int, List[TimedRecord]] = defaultdict(list)
        for row in ctx.index.get(entity):
            if row.record.kind != TOWER_PRESENCE:
                buckets[_hour_key(row)].append(row)
        if len(buckets) < 2:
            continue

        first, last = min(buckets), max(buckets)
        span = last - first + 1
        counts = [len(buckets.get(h, ())) for h in range(first, last + 1)]
        mean = sum(counts) / span
        sigma = math.sqrt(sum((c - mean) ** 2 for c in counts) / span)
        if sigma == 0:
            continue
        threshold = mean + k * sigma

        n = 0
        for hour in sorted(buckets):
            rows = buckets[hour]
            if len(rows) <= threshold or len(rows) < min_events:
                continue
            z = (len(rows) - mean) / sigma
            start = rows[0].at.replace(minute=0, second=0, microsecond=0)
            reports.append(AnomalyReport(
                id               = report_id(BURST_ACTIVITY, entity, n),
                entity           = entity,
                entity_type      = NUMBER,
                category         = BURST_ACTIVITY,
                severity         = burst_severity(z, k),
                description      = (f"{entity} had {len(rows)} interactions in the hour from "
                                    f"{start.isoformat()} (baseline {mean:.2f} ± {sigma:.2f})"),
                evidence         = tuple(Evidence(r.record.id, r.at) for r in rows),
                supporting_data  = {
                    'hour_start': start.isoformat(),
                    'count':      len(rows),
                    'mean':       round(mean, 4),
                    'stddev':     round(sigma, 4),
                    'threshold':  round(threshold, 4),
                    'z_score':    round(z, 2),
                    'span_hours': span,
                },
                suggested_action = "Review the counterparties contacted during this hour.",
            ))
            n += 1
    return reports


# ── DORMANT REACTIVATION ─────────────────────────────────────

def dormant_reactivation(ctx: AnomalyContext) -> List[AnomalyReport]:
    """A gap longer than dormancy_days between consecutive interactions."""
    threshold = timedelta(days=ctx.config.dormancy_days)
    reports: List[AnomalyReport] = []

    for entity in ctx.index.entities():
        rows = [r for r in ctx.index.get(entity) if r.record.kind != TOWER_PRESENCE]
        n = 0
        for prev, cur in zip(rows, rows[1:]):
            gap = cur.at - prev.at
            if gap <= threshold:
                continue
            ratio = gap / threshold
            days = gap.total_seconds() / 86400.0
            reports.append(AnomalyReport(
                id               = report_id(DORMANT_REACTIVATION, entity, n),
                entity           = entity,
                entity_type      = NUMBER,
                category         = DORMANT_REACTIVATION,
                severity         = dormancy_severity(ratio),
                description      = (f"{entity} was silent for {days:.1f} days "
                                    f"before reactivating on {cur.at.date().isoformat()}"),
                evidence         = (Evidence(prev.record.id, prev.at),
                                    Evidence(cur.record.id, cur.at)),
                supporting_data  = {
                    'gap_days':       round(days, 2),
                    'dormancy_days':  ctx.config.dormancy_days,
                    'last_active':    prev.at.isoformat(),
                    'reactivated_at': cur.at.isoformat(),
                },
                suggested_action = "Check whether the number changed hands while dormant.",
            ))
            n += 1
    return reports
