"""
correlator/anomaly/associations.py
Device ↔ SIM association tables over time.

A row links its device_id (IMEI) to a SIM identity: sim_id when the
source carries one, otherwise party_a (the subscriber number stands in
for the SIM, as in CDRs without an IMSI column). Rows without a
device_id carry no association and are ignored.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from correlator.temporal.index import TimedRecord


@dataclass(frozen=True)
class Usage:
    at:        datetime
    other:     str          # the SIM for a device table, the device for a SIM table
    record_id: str


@dataclass(frozen=True)
class Change:
    at:        datetime
    previous:  str
    current:   str
    record_id: str
    gap_hours: float        # time since the previous usage
    previous_record_id: str = ""


@dataclass
class Associations:
    sims_by_device: Dict[str, List[Usage]] = field(default_factory=dict)
    devices_by_sim: Dict[str, List[Usage]] = field(default_factory=dict)

    def sims_for(self, device_id: str) -> List[str]:
        return sorted({u.other for u in self.sims_by_device.get(device_id, [])})

    def devices_for(self, sim_id: str) -> List[str]:
        return sorted({u.other for u in self.devices_by_sim.get(sim_id, [])})


def sim_identity(record) -> Optional[str]:
    return record.sim_id or record.party_a or None


def build_associations(timed: Iterable[TimedRecord]) -> Associations:
    """Both tables, each usage list in (timestamp, ingestion order)."""
    rows = sorted(timed, key=lambda t: (t.at, t.seq))
    by_device: Dict[str, List[Usage]] = defaultdict(list)
    by_sim:    Dict[str, List[Usage]] = defaultdict(list)

    for row in rows:
        r = row.record
        sim = sim_identity(r)
        if not r.device_id or not sim:
            continue
        by_device[r.device_id].append(Usage(at=row.at, other=sim, record_id=r.id))
        by_sim[sim].append(Usage(at=row.at, other=r.device_id, record_id=r.id))

    return Associations(sims_by_device=dict(by_device), devices_by_sim=dict(by_sim))


def change_history(usages: List[Usage]) -> List[Change]:
    """Every point where the associated counterpart differs from the previous usage."""
    changes: List[Change] = []
    for prev, cur in zip(usages, usages[1:]):
        if cur.other != prev.other:
            changes.append(Change(
                at        = cur.at,
                previous  = prev.other,
                current   = cur.other,
                record_id = cur.record_id,
                gap_hours = (cur.at - prev.at).total_seconds() / 3600.0,
                previous_record_id = prev.record_id,
            ))
    return changes
