"""
correlator/temporal/index.py
Per-entity chronological index shared by every downstream component.

Timestamps are parsed exactly once per pass (stamp_records). Rows that
cannot be parsed are excluded and counted in Diagnostics — never dropped
silently. Ordering is (timestamp, ingestion order), so ties resolve the
same way on every run.
"""

from __future__ import annotations

import bisect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from correlator.models.record import InteractionRecord, RawTimestamp

logger = logging.getLogger(__name__)

# Diagnostic reasons
UNPARSABLE_TIMESTAMP = 'unparsable_timestamp'
MISSING_KEY          = 'missing_key'
MISSING_PARTY        = 'missing_party'
UNRESOLVED_LOCATION  = 'unresolved_location'

# Epoch values above this are milliseconds (1e11 s is year 5138)
_EPOCH_MS_THRESHOLD = 1e11

_STRING_FORMATS = (
    '%d/%m/%Y %H:%M:%S',
    '%d/%m/%Y %H:%M',
    '%d-%m-%Y %H:%M:%S',
    '%d-%m-%Y %H:%M',
    '%Y/%m/%d %H:%M:%S',
    '%d-%b-%Y %H:%M:%S',
    '%d-%b-%y %I.%M.%S %p',
    '%m/%d/%Y %I:%M:%S %p',
    '%Y%m%d%H%M%S',
)

KeyResult = Union[str, Iterable[Optional[str]], None]


@dataclass(frozen=True)
class TimedRecord:
    at:     datetime            # aware, in the configured zone
    seq:    int                 # ingestion order
    record: InteractionRecord


@dataclass
class Diagnostics:
    """Per-record faults, counted by reason."""
    total_records: int            = 0
    counts:        Dict[str, int] = field(default_factory=dict)

    def add(self, reason: str, n: int = 1) -> None:
        self.counts[reason] = self.counts.get(reason, 0) + n

    def get(self, reason: str) -> int:
        return self.counts.get(reason, 0)

    def merge(self, other: "Diagnostics") -> "Diagnostics":
        merged = Diagnostics(total_records=max(self.total_records, other.total_records),
                             counts=dict(self.counts))
        for reason, n in other.counts.items():
            merged.add(reason, n)
        return merged


# ── TIMESTAMP PARSING ────────────────────────────────────────

def parse_timestamp(value: RawTimestamp, tz: tzinfo = timezone.utc) -> Optional[datetime]:
    """
    Parse a raw record timestamp into an aware datetime in `tz`.
    Naive values are taken to already be in `tz`. Returns None if unparsable.
    Never raises.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=tz)
        return value.astimezone(tz)

    if isinstance(value, (int, float)):
        return _from_epoch(value, tz)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.isdigit() and len(text) != 14:
            try:
                return _from_epoch(int(text), tz)
            except ValueError:  # beyond the int digit limit
                return None
        try:
            iso = text[:-1] + '+00:00' if text.endswith('Z') else text
            return parse_timestamp(datetime.fromisoformat(iso), tz)
        except ValueError:
            pass
        for fmt in _STRING_FORMATS:
            try:
                return datetime.strptime(text, fmt).replace(tzinfo=tz)
            except ValueError:
                continue
    return None


def _from_epoch(value: Union[int, float], tz: tzinfo) -> Optional[datetime]:
    if value != value or value <= 0:  # NaN / corrupt placeholder
        return None
    try:
        seconds = value / 1000.0 if value > _EPOCH_MS_THRESHOLD else float(value)
        return datetime.fromtimestamp(seconds, tz)
    except (OverflowError, OSError, ValueError):
        return None


# ── KEY FUNCTIONS ────────────────────────────────────────────

def parties(record: InteractionRecord) -> Tuple[str, ...]:
    """Both sides of a dyadic record (one id for self-calls / non-dyadic rows)."""
    ids = [p for p in (record.party_a, record.party_b) if p]
    return tuple(dict.fromkeys(ids))


def primary_party(record: InteractionRecord) -> Optional[str]:
    return record.party_a or None


def device(record: InteractionRecord) -> Optional[str]:
    return record.device_id or None


def sim(record: InteractionRecord) -> Optional[str]:
    return record.sim_id or None


# ── INDEX ────────────────────────────────────────────────────

@dataclass
class TemporalIndex:
    entries:     Dict[str, List[TimedRecord]]
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    def get(self, entity: str) -> List[TimedRecord]:
        return self.entries.get(entity, [])

    def entities(self) -> List[str]:
        return sorted(self.entries)

    def window(self, entity: str, start: datetime, end: datetime) -> List[TimedRecord]:
        """Rows for `entity` with start <= at < end."""
        rows = self.get(entity)
        lo = bisect.bisect_left(rows, start, key=lambda t: t.at)
        hi = bisect.bisect_left(rows, end, key=lambda t: t.at)
        return rows[lo:hi]

    def __contains__(self, entity: object) -> bool:
        return entity in self.entries

    def __len__(self) -> int:
        return len(self.entries)


def stamp_records(
    records: Sequence[InteractionRecord],
    tz:      tzinfo = timezone.utc,
) -> Tuple[List[TimedRecord], Diagnostics]:
    """Parse every timestamp once. Unparsable rows are counted, not returned."""
    diagnostics = Diagnostics(total_records=len(records))
    timed: List[TimedRecord] = []
    for seq, record in enumerate(records):
        at = parse_timestamp(record.timestamp, tz)
        if at is None:
            diagnostics.add(UNPARSABLE_TIMESTAMP)
            continue
        timed.append(TimedRecord(at=at, seq=seq, record=record))
    if diagnostics.get(UNPARSABLE_TIMESTAMP):
        logger.info(f"Excluded {diagnostics.get(UNPARSABLE_TIMESTAMP)} record(s) with unparsable timestamps")
    return timed, diagnostics


def index_by(
    timed:       Iterable[TimedRecord],
    key_fn:      Callable[[InteractionRecord], KeyResult],
    diagnostics: Optional[Diagnostics] = None,
) -> TemporalIndex:
    """Group already-stamped rows by entity and sort each group chronologically."""
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    entries: Dict[str, List[TimedRecord]] = defaultdict(list)

    for row in timed:
        keys = _keys(key_fn(row.record))
        if not keys:
            diagnostics.add(MISSING_KEY)
            continue
        for key in keys:
            entries[key].append(row)

    for rows in entries.values():
        rows.sort(key=lambda t: (t.at, t.seq))

    return TemporalIndex(entries=dict(entries), diagnostics=diagnostics)


def build_index(
    records: Sequence[InteractionRecord],
    key_fn:  Callable[[InteractionRecord], KeyResult] = parties,
    tz:      tzinfo = timezone.utc,
) -> TemporalIndex:
    """Convenience: stamp + index in one call."""
    timed, diagnostics = stamp_records(records, tz)
    return index_by(timed, key_fn, diagnostics)


def _keys(result: KeyResult) -> Tuple[str, ...]:
    if result is None:
        return ()
    if isinstance(result, str):
        return (result,) if result else ()
    return tuple(dict.fromkeys(k for k in result if k))
