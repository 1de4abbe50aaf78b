"""
correlator/location/colocation.py
Reverse index locationId → time bucket → visiting entities.

Answers "who else was at this tower at this time". Two entities are
co-located when they hit the same locationId inside the same bucket.
Buckets are floored to bucket_minutes on the local clock of the
configured zone, so hourly buckets start on the hour even in half-hour
offset zones (Asia/Kolkata). 10:04 and 10:06 fall in different 5-minute
buckets; neighbouring buckets are not joined.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone, tzinfo
from itertools import combinations
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from correlator.models.results import CoLocation, LocationEvent

logger = logging.getLogger(__name__)


def bucket_start(at: datetime, bucket_minutes: int, tz: Optional[tzinfo] = None) -> datetime:
    tz = tz or at.tzinfo or timezone.utc
    width = int(bucket_minutes) * 60
    offset = int(at.astimezone(tz).utcoffset().total_seconds())
    local = int(at.timestamp()) + offset
    return datetime.fromtimestamp(local - local % width - offset, tz)


class VisitorIndex:

    def __init__(self, bucket_minutes: int = 5, tz: Optional[tzinfo] = None):
        self.bucket_minutes = bucket_minutes
        self.tz = tz
        self._visits: Dict[str, Dict[datetime, Set[str]]] = defaultdict(lambda: defaultdict(set))

    def add(self, event: LocationEvent) -> None:
        bucket = bucket_start(event.timestamp, self.bucket_minutes, self.tz)
        self._visits[event.location_id][bucket].add(event.entity)

    def who_else(self, location_id: str, at: datetime, exclude: Optional[str] = None) -> List[str]:
        """Entities seen at `location_id` in the bucket containing `at`."""
        buckets = self._visits.get(location_id)
        if not buckets:
            return []
        found = buckets.get(bucket_start(at, self.bucket_minutes, self.tz), set())
        return sorted(e for e in found if e != exclude)

    def colocations(self, min_entities: int = 2) -> List[CoLocation]:
        result = [
            CoLocation(location_id=loc, bucket_start=bucket, entities=tuple(sorted(ents)))
            for loc, buckets in self._visits.items()
            for bucket, ents in buckets.items()
            if len(ents) >= min_entities
        ]
        result.sort(key=lambda c: (c.bucket_start, c.location_id))
        return result

    def candidate_pairs(self) -> List[Tuple[str, str, int]]:
        """Entity pairs sharing at least one (tower, bucket), with the number of shared buckets."""
        shared: Dict[Tuple[str, str], int] = defaultdict(int)
        for co in self.colocations():
            for a, b in combinations(co.entities, 2):
                shared[(a, b)] += 1
        return sorted(((a, b, n) for (a, b), n in shared.items()), key=lambda p: (-p[2], p[0], p[1]))

    def locations(self) -> List[str]:
        return sorted(self._visits)


def build_visitor_index(
    timelines:      Mapping[str, Iterable[LocationEvent]],
    bucket_minutes: int = 5,
    tz:             Optional[tzinfo] = None,
) -> VisitorIndex:
    index = VisitorIndex(bucket_minutes, tz)
    for entity in sorted(timelines):
        for event in timelines[entity]:
            index.add(event)
    logger.debug(f"Visitor index over {len(index.locations())} location(s)")
    return index
