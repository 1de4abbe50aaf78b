"""
tests/test_chains.py
Conversation chain detection.
"""

from correlator.chains.detector import detect_all_chains, detect_chains, to_call_event
from correlator.models.record import CALL, INCOMING, OUTGOING, SMS, InteractionRecord
from correlator.temporal.index import build_index

ENTITY = "01700000000"


def _make_call(rid, time, other, direction=OUTGOING, duration=60, kind=CALL) -> InteractionRecord:
    return InteractionRecord(
        id=rid, source_id="cdr.json", timestamp=f"2024-03-01T{time}:00",
        party_a=ENTITY, party_b=other, kind=kind, direction=direction, duration_seconds=duration,
    )


EXAMPLE = [
    _make_call("c1", "10:00", "01711111111", OUTGOING, 60),
    _make_call("c2", "10:20", "01722222222", INCOMING, 30),
    _make_call("c3", "14:00", "01711111111", OUTGOING, 45),
]


def _chains(records, gap=30.0):
    index = build_index(records)
    return detect_chains(ENTITY, index.get(ENTITY), gap)


class TestChainDetection:
    def test_reference_example(self):
        chains = _chains(EXAMPLE)
        assert len(chains) == 2
        first, second = chains
        assert [c.record_id for c in first.calls] == ["c1", "c2"]
        assert first.depth == 2
        assert first.total_talk_time == 90
        assert first.start_time.hour == 10 and first.start_time.minute == 0
        assert first.end_time.minute == 20
        assert [c.record_id for c in second.calls] == ["c3"]
        assert second.depth == 1

    def test_incoming_call_reverses_caller(self):
        index = build_index(EXAMPLE)
        event = to_call_event(index.get(ENTITY)[1])
        assert event.caller == "01722222222"
        assert event.receiver == ENTITY

    def test_deterministic_and_idempotent(self):
        assert _chains(EXAMPLE) == _chains(EXAMPLE)

    def test_gap_threshold_is_inclusive(self):
        records = [
            _make_call("c1", "10:00", "B"),
            _make_call("c2", "10:30", "C"),
            _make_call("c3", "11:01", "D"),
        ]
        chains = _chains(records)
        assert [len(c.calls) for c in chains] == [2, 1]

    def test_wider_gap_merges(self):
        assert len(_chains(EXAMPLE, gap=300.0)) == 1

    def test_sms_ignored(self):
        records = EXAMPLE + [_make_call("s1", "10:10", "01733333333", kind=SMS, duration=0)]
        chains = _chains(records)
        assert all(c.record_id != "s1" for chain in chains for c in chain.calls)

    def test_no_calls_no_chains(self):
        assert _chains([]) == []

    def test_all_entities_and_min_depth(self):
        index = build_index(EXAMPLE)
        all_chains = detect_all_chains(index, 30.0, min_depth=1)
        deep = detect_all_chains(index, 30.0, min_depth=2)
        assert any(c.entity == ENTITY for c in all_chains)
        assert [c.id for c in deep] == [f"{ENTITY}:0"]

    def test_entity_subset(self):
        index = build_index(EXAMPLE)
        everyone = detect_all_chains(index, 30.0, entities=None)
        mine = detect_all_chains(index, 30.0, entities=[ENTITY])
        assert mine == [c for c in everyone if c.entity == ENTITY]
