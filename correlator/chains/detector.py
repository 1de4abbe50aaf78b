"""
correlator/chains/detector.py
Partitions an entity's chronological call history into conversation chains.

ALGORITHM (greedy forward scan, no tie-breaking randomness):
  - open a chain at the first call
  - the next call extends it when it starts <= gap after the previous call
    AND shares a participant with the chain's running participant set
  - otherwise close the chain and open a new one at that call
  Same input order + same gap → same boundaries, every run.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Iterable, List, Optional, Sequence, Set

from correlator.models.record import CALL, INCOMING
from correlator.models.results import CallEvent, ConversationChain
from correlator.temporal.index import TemporalIndex, TimedRecord

logger = logging.getLogger(__name__)


def to_call_event(row: TimedRecord) -> CallEvent:
    r = row.record
    if r.direction == INCOMING:
        caller, receiver = r.party_b or '', r.party_a
    else:
        caller, receiver = r.party_a, r.party_b or ''
    return CallEvent(
        record_id = r.id,
        caller    = caller,
        receiver  = receiver,
        timestamp = row.at,
        duration  = max(int(r.duration_seconds or 0), 0),
    )


def detect_chains(
    entity:      str,
    rows:        Sequence[TimedRecord],
    gap_minutes: float = 30.0,
) -> List[ConversationChain]:
    """
    Chains for one entity. `rows` must be sorted (as TemporalIndex keeps them);
    non-call rows are ignored. A single call is a valid chain of depth 1.
    """
    gap = timedelta(minutes=gap_minutes)
    events = [to_call_event(row) for row in rows if row.record.kind == CALL]

    chains: List[ConversationChain] = []
    current: List[CallEvent] = []
    participants: Set[str] = set()

    for event in events:
        members = {p for p in (event.caller, event.receiver) if p}
        if current and (event.timestamp - current[-1].timestamp) <= gap and members & participants:
            current.append(event)
            participants |= members
            continue
        if current:
            chains.append(_close(entity, len(chains), current, participants))
        current = [event]
        participants = set(members)

    if current:
        chains.append(_close(entity, len(chains), current, participants))

    logger.debug(f"{len(chains)} chain(s) for entity")
    return chains


def detect_all_chains(
    index:       TemporalIndex,
    gap_minutes: float = 30.0,
    min_depth:   int   = 1,
    entities:    Optional[Iterable[str]] = None,
) -> List[ConversationChain]:
    """Chains for every entity in `index` (or the given subset), deepest filter applied."""
    found: List[ConversationChain] = []
    for entity in sorted(entities) if entities is not None else index.entities():
        found.extend(
            c for c in detect_chains(entity, index.get(entity), gap_minutes)
            if c.depth >= min_depth
        )
    return found


def _close(entity: str, n: int, calls: List[CallEvent], participants: Set[str]) -> ConversationChain:
    counterparties = participants - {entity}
    return ConversationChain(
        id              = f"{entity}:{n}",
        entity          = entity,
        calls           = tuple(calls),
        participants    = frozenset(participants),
        start_time      = calls[0].timestamp,
        end_time        = calls[-1].timestamp,
        total_talk_time = sum(c.duration for c in calls),
        depth           = len(counterparties),
    )
