"""
correlator/models/results.py
Output value objects. Pure data — produced by the engine components,
consumed by export and the presentation layer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Optional, Tuple

# ── DIRECTIONALITY / TIME SLOTS / FOCUS ──────────────────────
BALANCED       = 'BALANCED'
NOT_APPLICABLE = 'N/A'

MORNING   = 'MORNING'
AFTERNOON = 'AFTERNOON'
EVENING   = 'EVENING'
NIGHT     = 'NIGHT'
VARIED    = 'VARIED'

FOCUS_CALL  = 'CALL'
FOCUS_SMS   = 'SMS'
FOCUS_MIXED = 'MIXED'

# ── ANOMALIES ────────────────────────────────────────────────
DEVICE_SWAP          = 'DEVICE_SWAP'
IMPOSSIBLE_TRAVEL    = 'IMPOSSIBLE_TRAVEL'
BURST_ACTIVITY       = 'BURST_ACTIVITY'
DORMANT_REACTIVATION = 'DORMANT_REACTIVATION'

LOW    = 'LOW'
MEDIUM = 'MEDIUM'
HIGH   = 'HIGH'

EdgeKey = Tuple[str, str]


# ── GRAPH ────────────────────────────────────────────────────

@dataclass(frozen=True)
class Node:
    id:                str
    interaction_count: int                  = 0
    outgoing:          int                  = 0
    incoming:          int                  = 0
    total_duration:    int                  = 0
    first_seen:        Optional[datetime]   = None
    last_seen:         Optional[datetime]   = None
    source_ids:        FrozenSet[str]       = frozenset()
    amount_in:         Decimal              = Decimal(0)    # transactions received
    amount_out:        Decimal              = Decimal(0)    # transactions sent


@dataclass(frozen=True)
class Edge:
    source:            str
    target:            str
    call_count:        int                  = 0
    sms_count:         int                  = 0
    transaction_count: int                  = 0
    duration_sum:      int                  = 0
    first_seen:        Optional[datetime]   = None
    last_seen:         Optional[datetime]   = None
    source_ids:        FrozenSet[str]       = frozenset()
    amount_sum:        Decimal              = Decimal(0)

    @property
    def key(self) -> EdgeKey:
        return (self.source, self.target)

    @property
    def interaction_count(self) -> int:
        return self.call_count + self.sms_count + self.transaction_count

    @property
    def is_self_loop(self) -> bool:
        return self.source == self.target


@dataclass(frozen=True)
class UndirectedEdge:
    a:                 str
    b:                 str
    interaction_count: int
    duration_sum:      int
    first_seen:        Optional[datetime]
    last_seen:         Optional[datetime]
    amount_sum:        Decimal = Decimal(0)


@dataclass(frozen=True)
class EntityGraph:
    """Directed entity graph. `trimmed` is a display hint only."""
    nodes:      Dict[str, Node]
    edges:      Dict[EdgeKey, Edge]
    node_limit: int = 500

    @property
    def trimmed(self) -> bool:
        return len(self.nodes) > self.node_limit


# ── CHAINS ───────────────────────────────────────────────────

@dataclass(frozen=True)
class CallEvent:
    record_id: str
    caller:    str
    receiver:  str
    timestamp: datetime
    duration:  int


@dataclass(frozen=True)
class ConversationChain:
    id:              str
    entity:          str
    calls:           Tuple[CallEvent, ...]
    participants:    FrozenSet[str]
    start_time:      datetime
    end_time:        datetime
    total_talk_time: int
    depth:           int                     # distinct counterparties

    @property
    def timespan_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()


# ── FINGERPRINTS ─────────────────────────────────────────────

@dataclass(frozen=True)
class LocationCount:
    location_id: str
    count:       int
    address:     Optional[str] = None


@dataclass(frozen=True)
class BehavioralFingerprint:
    entity:                    str
    total_interactions:        int                      = 0
    hourly_activity:           Tuple[int, ...]          = (0,) * 24
    daily_activity:            Tuple[int, ...]          = (0,) * 7    # Monday first
    avg_call_duration_seconds: float                    = 0.0
    call_directionality:       str                      = NOT_APPLICABLE
    sms_directionality:        str                      = NOT_APPLICABLE
    top_locations:             Tuple[LocationCount, ...] = ()
    primary_activity_focus:    str                      = NOT_APPLICABLE
    dominant_time_slot:        str                      = NOT_APPLICABLE


@dataclass(frozen=True)
class SimilarityComponent:
    metric:  str
    score:   float
    value_a: Any
    value_b: Any


@dataclass(frozen=True)
class FingerprintComparison:
    entity_a:      str
    entity_b:      str
    components:    Tuple[SimilarityComponent, ...]
    overall_score: float


# ── LOCATIONS ────────────────────────────────────────────────

@dataclass(frozen=True)
class TowerInfo:
    location_id: str
    latitude:    float
    longitude:   float
    address:     Optional[str] = None
    operator:    Optional[str] = None
    technology:  Optional[str] = None


@dataclass(frozen=True)
class LocationEvent:
    record_id:     str
    entity:        str
    timestamp:     datetime
    location_id:   str
    latitude:      Optional[float]
    longitude:     Optional[float]
    address:       Optional[str]
    dwell_minutes: float
    kind:          str
    counterparty:  Optional[str] = None
    source_id:     Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class TowerVisit:
    sequence:         int
    location_id:      str
    arrival:          datetime
    departure:        datetime
    duration_minutes: float
    record_count:     int
    address:          Optional[str]   = None
    latitude:         Optional[float] = None
    longitude:        Optional[float] = None


@dataclass(frozen=True)
class CoLocation:
    location_id:  str
    bucket_start: datetime
    entities:     Tuple[str, ...]


@dataclass(frozen=True)
class TowerActivity:
    location_id:     str
    record_count:    int
    distinct_parties: int
    total_duration:  int
    hourly_activity: Tuple[int, ...]
    first_seen:      Optional[datetime]
    last_seen:       Optional[datetime]
    address:         Optional[str]   = None
    latitude:        Optional[float] = None
    longitude:       Optional[float] = None


# ── ANOMALIES ────────────────────────────────────────────────

@dataclass(frozen=True)
class Evidence:
    record_id: str
    timestamp: datetime


@dataclass(frozen=True)
class AnomalyReport:
    id:               str
    entity:           str
    entity_type:      str                   # NUMBER / IMEI / SIM
    category:         str
    severity:         str
    description:      str
    evidence:         Tuple[Evidence, ...]  = ()
    supporting_data:  Dict[str, Any]        = field(default_factory=dict)
    suggested_action: Optional[str]         = None


# ── MESSAGE FLAGS ────────────────────────────────────────────

@dataclass(frozen=True)
class FlaggedMessage:
    """Outcome of the optional content classification step."""
    record_id:      str
    party_a:        str
    party_b:        Optional[str]
    timestamp:      Optional[datetime]
    categories:     Tuple[str, ...]
    severity:       str
    reason:         str
    detection_mode: str                  # KEYWORD / AI / AI_FALLBACK
    model_used:     str                  = 'keyword-only'


# ── CASH FLOW ────────────────────────────────────────────────

@dataclass(frozen=True)
class CounterpartyFlow:
    counterparty: str
    amount:       Decimal
    count:        int


@dataclass(frozen=True)
class DailyFlow:
    date:    str          # local calendar day, YYYY-MM-DD
    inflow:  Decimal
    outflow: Decimal


@dataclass(frozen=True)
class CashFlowSummary:
    """Money moved in and out of one account across every transaction row."""
    account:          str
    inflow:           Decimal
    outflow:          Decimal
    net:              Decimal
    transactions_in:  int
    transactions_out: int
    top_sources:      Tuple[CounterpartyFlow, ...] = ()
    top_destinations: Tuple[CounterpartyFlow, ...] = ()
    daily:            Tuple[DailyFlow, ...]        = ()
