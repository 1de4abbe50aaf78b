"""
correlator/fingerprint/engine.py
Statistical behavioral signature per entity (number, IMEI or SIM).

THRESHOLDS:
  Directionality — one direction >= 65% of directed interactions.
  Dominant slot  — a slot holding > 40% of interactions, else VARIED.
  Activity focus — calls or SMS >= 65% of calls+SMS, else MIXED.
  All three are PLAUSIBLE heuristics carried over from the analyst
  dashboard; none is calibrated against labelled data.

TIME ZONE:
  Histograms bucket on the hour / weekday of the timestamp as stamped by
  the temporal index, i.e. in the single configured zone. Weekdays are
  Monday-first (index 0 = Monday).
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from correlator.models.record import CALL, INCOMING, OUTGOING, SMS, InteractionRecord
from correlator.models.results import (
    AFTERNOON,
    BALANCED,
    EVENING,
    FOCUS_CALL,
    FOCUS_MIXED,
    FOCUS_SMS,
    MORNING,
    NIGHT,
    NOT_APPLICABLE,
    VARIED,
    BehavioralFingerprint,
    FingerprintComparison,
    LocationCount,
    SimilarityComponent,
    TowerInfo,
)
from correlator.temporal.index import TemporalIndex, TimedRecord

logger = logging.getLogger(__name__)

DIRECTIONALITY_THRESHOLD = 0.65
DOMINANT_SLOT_THRESHOLD  = 0.40
FOCUS_THRESHOLD          = 0.65

# (label, start hour inclusive, end hour exclusive); NIGHT wraps midnight
TIME_SLOTS = (
    (MORNING,   6, 12),
    (AFTERNOON, 12, 17),
    (EVENING,   17, 22),
    (NIGHT,     22, 6),
)

WEEKDAY_NAMES = ('Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun')


def time_slot(hour: int) -> str:
    for label, start, end in TIME_SLOTS:
        if start < end and start <= hour < end:
            return label
    return NIGHT


def direction_for(record: InteractionRecord, entity: str) -> Optional[str]:
    """
    Direction of `record` from `entity`'s point of view. party_a and the
    device/SIM on the row share the row's direction; party_b sees it flipped.
    """
    if record.direction not in (OUTGOING, INCOMING):
        return None
    if entity == record.party_b and entity != record.party_a:
        return INCOMING if record.direction == OUTGOING else OUTGOING
    return record.direction


def classify_directionality(outgoing: int, incoming: int) -> str:
    total = outgoing + incoming
    if total == 0:
        return NOT_APPLICABLE
    if outgoing / total >= DIRECTIONALITY_THRESHOLD:
        return OUTGOING
    if incoming / total >= DIRECTIONALITY_THRESHOLD:
        return INCOMING
    return BALANCED


def compute_fingerprint(
    entity:        str,
    rows:          Sequence[TimedRecord],
    towers:        Optional[Dict[str, TowerInfo]] = None,
    top_locations: int = 5,
) -> BehavioralFingerprint:
    """
    Fingerprint from one entity's calls + SMS. Zero interactions yield an
    all-zero fingerprint with N/A classifications — never an error.
    """
    towers = towers or {}
    hourly = [0] * 24
    daily  = [0] * 7
    slots: Counter = Counter()
    locations: Counter = Counter()
    call_dir: Counter = Counter()
    sms_dir: Counter = Counter()
    calls = sms = 0
    durations: List[int] = []

    for row in rows:
        r = row.record
        if r.kind not in (CALL, SMS):
            continue
        hourly[row.at.hour] += 1
        daily[row.at.weekday()] += 1
        slots[time_slot(row.at.hour)] += 1
        if r.location_id:
            locations[r.location_id] += 1

        direction = direction_for(r, entity)
        if r.kind == CALL:
            calls += 1
            if direction:
                call_dir[direction] += 1
            if r.duration_seconds and r.duration_seconds > 0:
                durations.append(int(r.duration_seconds))
        else:
            sms += 1
            if direction:
                sms_dir[direction] += 1

    total = calls + sms
    if total == 0:
        return BehavioralFingerprint(entity=entity)

    ranked = sorted(locations.items(), key=lambda kv: (-kv[1], kv[0]))[:top_locations]
    top = tuple(
        LocationCount(
            location_id = loc,
            count       = n,
            address     = towers[loc].address if loc in towers else None,
        )
        for loc, n in ranked
    )

    return BehavioralFingerprint(
        entity                    = entity,
        total_interactions        = total,
        hourly_activity           = tuple(hourly),
        daily_activity            = tuple(daily),
        avg_call_duration_seconds = round(sum(durations) / len(durations), 2) if durations else 0.0,
        call_directionality       = classify_directionality(call_dir[OUTGOING], call_dir[INCOMING]),
        sms_directionality        = classify_directionality(sms_dir[OUTGOING], sms_dir[INCOMING]),
        top_locations             = top,
        primary_activity_focus    = _focus(calls, sms),
        dominant_time_slot        = _dominant_slot(slots, total),
    )


def compute_fingerprints(
    index:         TemporalIndex,
    towers:        Optional[Dict[str, TowerInfo]] = None,
    top_locations: int = 5,
    entities:      Optional[Iterable[str]] = None,
) -> Dict[str, BehavioralFingerprint]:
    selected = sorted(entities) if entities is not None else index.entities()
    result = {
        entity: compute_fingerprint(entity, index.get(entity), towers, top_locations)
        for entity in selected
    }
    logger.info(f"Fingerprints computed: {len(result)} entities")
    return result


# ── COMPARISON ───────────────────────────────────────────────

def compare_fingerprints(a: BehavioralFingerprint, b: BehavioralFingerprint) -> FingerprintComparison:
    """
    Per-metric similarity in [0, 1] and their mean. Used to spot one
    person behind two numbers (e.g. after a SIM change).
    """
    locs_a = {l.location_id for l in a.top_locations}
    locs_b = {l.location_id for l in b.top_locations}
    union = locs_a | locs_b

    components = (
        SimilarityComponent('hourly_pattern', _cosine(a.hourly_activity, b.hourly_activity),
                            a.hourly_activity, b.hourly_activity),
        SimilarityComponent('daily_pattern', _cosine(a.daily_activity, b.daily_activity),
                            a.daily_activity, b.daily_activity),
        SimilarityComponent('call_directionality',
                            1.0 if a.call_directionality == b.call_directionality else 0.0,
                            a.call_directionality, b.call_directionality),
        SimilarityComponent('dominant_time_slot',
                            1.0 if a.dominant_time_slot == b.dominant_time_slot else 0.0,
                            a.dominant_time_slot, b.dominant_time_slot),
        SimilarityComponent('avg_call_duration',
                            _ratio(a.avg_call_duration_seconds, b.avg_call_duration_seconds),
                            a.avg_call_duration_seconds, b.avg_call_duration_seconds),
        SimilarityComponent('top_locations',
                            round(len(locs_a & locs_b) / len(union), 4) if union else 0.0,
                            sorted(locs_a), sorted(locs_b)),
    )
    overall = round(sum(c.score for c in components) / len(components), 4)
    return FingerprintComparison(a.entity, b.entity, components, overall)


# ── HELPERS ──────────────────────────────────────────────────

def _focus(calls: int, sms: int) -> str:
    total = calls + sms
    if total == 0:
        return NOT_APPLICABLE
    if calls / total >= FOCUS_THRESHOLD:
        return FOCUS_CALL
    if sms / total >= FOCUS_THRESHOLD:
        return FOCUS_SMS
    return FOCUS_MIXED


def _dominant_slot(slots: Counter, total: int) -> str:
    if total == 0:
        return NOT_APPLICABLE
    best_label, best_count = None, 0
    for label, _start, _end in TIME_SLOTS:
        if slots[label] > best_count:
            best_label, best_count = label, slots[label]
    if best_label is None or best_count / total <= DOMINANT_SLOT_THRESHOLD:
        return VARIED
    return best_label


def _cosine(u: Tuple[int, ...], v: Tuple[int, ...]) -> float:
    dot = sum(x * y for x, y in zip(u, v))
    norm = math.sqrt(sum(x * x for x in u)) * math.sqrt(sum(y * y for y in v))
    return round(dot / norm, 4) if norm else 0.0


def _ratio(x: float, y: float) -> float:
    if x <= 0 and y <= 0:
        return 1.0
    return round(min(x, y) / max(x, y), 4)
