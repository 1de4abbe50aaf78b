"""
correlator/location/resolver.py
Tower lookup + per-entity location timelines.

The lookup table is materialized in full before resolution starts; there
are no per-record lookups against an external service. Tower ids the
table does not know are kept as events with null coordinates / address,
so unresolved-but-real visits stay visible and counted.

DWELL:
  dwell_minutes = minutes until the entity's next location event, capped at
  dwell_cap_minutes. The last event of a timeline has nothing after it and
  gets 0. This is an approximation from record spacing, not a measurement.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from correlator.models.results import LocationEvent, TowerInfo, TowerVisit
from correlator.temporal.index import UNRESOLVED_LOCATION, Diagnostics, TemporalIndex

logger = logging.getLogger(__name__)


def location_id(lac: Any, ci: Any) -> str:
    """Composite tower id from area code + cell id, e.g. '1234-5678'."""
    return f"{str(lac).strip()}-{str(ci).strip()}"


class TowerTable:
    """Read-only locationId → TowerInfo map. May be partial."""

    def __init__(self, towers: Optional[Mapping[str, Union[TowerInfo, Mapping[str, Any]]]] = None):
        self._towers: Dict[str, TowerInfo] = {}
        for loc, info in (towers or {}).items():
            self._towers[loc] = info if isinstance(info, TowerInfo) else _tower_from_mapping(loc, info)

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]]) -> "TowerTable":
        """
        Rows carry either a ready `location_id` or `lac` + `ci`, plus
        `latitude`, `longitude` and optionally `address`. Rows without usable
        coordinates are skipped. Later rows win on duplicate ids.
        """
        table = cls()
        skipped = 0
        for row in rows:
            loc = row.get('location_id')
            if not loc and row.get('lac') not in (None, '') and row.get('ci') not in (None, ''):
                loc = location_id(row['lac'], row['ci'])
            if not loc:
                skipped += 1
                continue
            try:
                table._towers[str(loc)] = _tower_from_mapping(str(loc), row)
            except (TypeError, ValueError):
                skipped += 1
        if skipped:
            logger.warning(f"Tower table: skipped {skipped} row(s) without id or coordinates")
        return table

    def resolve(self, loc: Optional[str]) -> Optional[TowerInfo]:
        if not loc:
            return None
        return self._towers.get(loc)

    def as_dict(self) -> Dict[str, TowerInfo]:
        return dict(self._towers)

    def __contains__(self, loc: object) -> bool:
        return loc in self._towers

    def __len__(self) -> int:
        return len(self._towers)


def _tower_from_mapping(loc: str, data: Mapping[str, Any]) -> TowerInfo:
    lat = data.get('latitude', data.get('lat'))
    lon = data.get('longitude', data.get('lon', data.get('lng')))
    if lat is None or lon is None:
        raise ValueError(f"tower {loc} has no coordinates")
    return TowerInfo(
        location_id = loc,
        latitude    = float(lat),
        longitude   = float(lon),
        address     = data.get('address') or None,
        operator    = data.get('operator') or None,
        technology  = data.get('technology') or None,
    )


# ── TIMELINES ────────────────────────────────────────────────

def build_location_timelines(
    index:             TemporalIndex,
    towers:            Optional[TowerTable] = None,
    dwell_cap_minutes: float = 180.0,
    diagnostics:       Optional[Diagnostics] = None,
) -> Dict[str, List[LocationEvent]]:
    """
    Ordered LocationEvents per entity, from every indexed row carrying a
    location id. Unknown tower ids are counted as unresolved_location.
    """
    towers = towers or TowerTable()
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    timelines: Dict[str, List[LocationEvent]] = {}
    unresolved = 0

    for entity in index.entities():
        located = [row for row in index.get(entity) if row.record.location_id]
        if not located:
            continue
        events: List[LocationEvent] = []
        for i, row in enumerate(located):
            r = row.record
            if i + 1 < len(located):
                gap = (located[i + 1].at - row.at).total_seconds() / 60.0
                dwell = min(gap, dwell_cap_minutes)
            else:
                dwell = 0.0
            info = towers.resolve(r.location_id)
            if info is None:
                unresolved += 1
            events.append(LocationEvent(
                record_id     = r.id,
                entity        = entity,
                timestamp     = row.at,
                location_id   = r.location_id,
                latitude      = info.latitude if info else None,
                longitude     = info.longitude if info else None,
                address       = info.address if info else None,
                dwell_minutes = round(dwell, 2),
                kind          = r.kind,
                counterparty  = r.party_b if entity == r.party_a else r.party_a,
                source_id     = r.source_id,
            ))
        timelines[entity] = events

    if unresolved:
        diagnostics.add(UNRESOLVED_LOCATION, unresolved)
        logger.warning(f"{unresolved} location event(s) reference towers missing from the lookup table")
    logger.info(f"Location timelines: {len(timelines)} entities, "
                f"{sum(len(v) for v in timelines.values())} events")
    return timelines


def tower_visits(events: List[LocationEvent]) -> List[TowerVisit]:
    """
    Collapse consecutive events at the same tower into one visit. Arrival and
    departure are the first and last event times; duration also counts the
    last event's dwell.
    """
    visits: List[TowerVisit] = []
    start = 0
    for i in range(1, len(events) + 1):
        if i < len(events) and events[i].location_id == events[start].location_id:
            continue
        run = events[start:i]
        first, last = run[0], run[-1]
        arrival = first.timestamp
        departure = last.timestamp
        duration = (departure - arrival).total_seconds() / 60.0 + last.dwell_minutes
        visits.append(TowerVisit(
            sequence         = len(visits) + 1,
            location_id      = first.location_id,
            arrival          = arrival,
            departure        = departure,
            duration_minutes = round(duration, 2),
            record_count     = len(run),
            address          = first.address,
            latitude         = first.latitude,
            longitude        = first.longitude,
        ))
        start = i
    return visits
