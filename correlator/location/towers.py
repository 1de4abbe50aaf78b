"""
correlator/location/towers.py
Per-tower activity summary (the cell-tower analytics view).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from correlator.location.resolver import TowerTable
from correlator.models.results import TowerActivity
from correlator.temporal.index import TimedRecord


@dataclass
class _TowerAcc:
    record_count:   int                = 0
    total_duration: int                = 0
    hourly:         List[int]          = field(default_factory=lambda: [0] * 24)
    parties:        Set[str]           = field(default_factory=set)
    first_seen:     Optional[datetime] = None
    last_seen:      Optional[datetime] = None


def summarize_towers(
    timed:  Iterable[TimedRecord],
    towers: Optional[TowerTable] = None,
) -> List[TowerActivity]:
    """Busiest towers first; ties by location id."""
    towers = towers or TowerTable()
    acc: Dict[str, _TowerAcc] = {}

    for row in timed:
        r = row.record
        if not r.location_id:
            continue
        if r.location_id not in acc:
            acc[r.location_id] = _TowerAcc()
        t = acc[r.location_id]
        t.record_count   += 1
        t.total_duration += max(int(r.duration_seconds or 0), 0)
        t.hourly[row.at.hour] += 1
        t.parties.update(p for p in (r.party_a, r.party_b) if p)
        t.first_seen = row.at if t.first_seen is None else min(t.first_seen, row.at)
        t.last_seen  = row.at if t.last_seen is None else max(t.last_seen, row.at)

    result = []
    for loc, t in acc.items():
        info = towers.resolve(loc)
        result.append(TowerActivity(
            location_id      = loc,
            record_count     = t.record_count,
            distinct_parties = len(t.parties),
            total_duration   = t.total_duration,
            hourly_activity  = tuple(t.hourly),
            first_seen       = t.first_seen,
            last_seen        = t.last_seen,
            address          = info.address if info else None,
            latitude         = info.latitude if info else None,
            longitude        = info.longitude if info else None,
        ))
    result.sort(key=lambda a: (-a.record_count, a.location_id))
    return result
