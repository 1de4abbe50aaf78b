"""
correlator/models/record.py
Shared input schema. Every engine component reads these records and
none of them mutates one. Do not add logic here — data only.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

# ── KINDS ────────────────────────────────────────────────────
CALL           = 'CALL'
SMS            = 'SMS'
TRANSACTION    = 'TRANSACTION'
TOWER_PRESENCE = 'TOWER_PRESENCE'

KINDS = frozenset({CALL, SMS, TRANSACTION, TOWER_PRESENCE})

# ── DIRECTIONS (relative to party_a) ─────────────────────────
OUTGOING = 'OUTGOING'
INCOMING = 'INCOMING'
UNKNOWN  = 'UNKNOWN'

DIRECTIONS = frozenset({OUTGOING, INCOMING, UNKNOWN})

RawTimestamp = Union[datetime, int, float, str, None]


@dataclass(frozen=True)
class InteractionRecord:
    """One normalized call / SMS / transaction / tower-presence row."""
    id:               str
    source_id:        str
    timestamp:        RawTimestamp        # parsed by correlator.temporal
    party_a:          str                 # subscriber the row belongs to
    kind:             str                 = CALL
    party_b:          Optional[str]       = None
    duration_seconds: int                 = 0
    device_id:        Optional[str]       = None    # IMEI
    sim_id:           Optional[str]       = None    # IMSI / account
    location_id:      Optional[str]       = None    # "{lac}-{cell}"
    direction:        str                 = UNKNOWN
    content:          Optional[str]       = None    # SMS body, classifier only
    amount:           Optional[float]     = None    # transaction value
