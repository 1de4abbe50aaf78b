"""
tests/test_fingerprint.py
Behavioral fingerprints and fingerprint comparison.
"""

from zoneinfo import ZoneInfo

from correlator.fingerprint.engine import (
    compare_fingerprints,
    compute_fingerprint,
    compute_fingerprints,
    direction_for,
    time_slot,
)
from correlator.models.record import CALL, INCOMING, OUTGOING, SMS, TOWER_PRESENCE, InteractionRecord
from correlator.models.results import (
    AFTERNOON,
    BALANCED,
    MORNING,
    NIGHT,
    NOT_APPLICABLE,
    VARIED,
    BehavioralFingerprint,
    TowerInfo,
)
from correlator.temporal.index import build_index

ME = "01700000000"


def _make_record(rid, ts, kind=CALL, direction=OUTGOING, duration=60, a=ME, b="01711111111",
                 location=None) -> InteractionRecord:
    return InteractionRecord(
        id=rid, source_id="cdr.json", timestamp=ts, party_a=a, party_b=b, kind=kind,
        direction=direction, duration_seconds=duration, location_id=location,
    )


def _fingerprint(records, entity=ME, tz=None, **kw):
    index = build_index(records, tz=tz) if tz else build_index(records)
    return compute_fingerprint(entity, index.get(entity), **kw)


class TestFingerprint:
    def test_zero_records(self):
        fp = _fingerprint([])
        assert fp.total_interactions == 0
        assert fp.hourly_activity == (0,) * 24
        assert fp.daily_activity == (0,) * 7
        assert fp.call_directionality == NOT_APPLICABLE
        assert fp.sms_directionality == NOT_APPLICABLE
        assert fp.dominant_time_slot == NOT_APPLICABLE
        assert fp.avg_call_duration_seconds == 0.0

    def test_tower_presence_only_counts_as_zero(self):
        fp = _fingerprint([_make_record("t1", "2024-03-01T10:00:00", kind=TOWER_PRESENCE, b=None)])
        assert fp == BehavioralFingerprint(entity=ME)

    def test_histograms_monday_first(self):
        # 2024-03-04 is a Monday
        fp = _fingerprint([
            _make_record("r1", "2024-03-04T09:15:00"),
            _make_record("r2", "2024-03-10T23:30:00", kind=SMS, duration=0),
        ])
        assert fp.hourly_activity[9] == 1
        assert fp.hourly_activity[23] == 1
        assert fp.daily_activity[0] == 1
        assert fp.daily_activity[6] == 1

    def test_bucketing_uses_configured_zone(self):
        fp = _fingerprint([_make_record("r1", "2024-03-04T04:00:00Z")], tz=ZoneInfo("Asia/Dhaka"))
        assert fp.hourly_activity[10] == 1

    def test_directionality_threshold(self):
        out = [_make_record(f"o{i}", f"2024-03-01T10:0{i}:00") for i in range(2)]
        inc = [_make_record("i0", "2024-03-01T11:00:00", direction=INCOMING)]
        assert _fingerprint(out + inc).call_directionality == OUTGOING      # 66.7%
        more_in = inc + [_make_record("i1", "2024-03-01T11:05:00", direction=INCOMING)]
        assert _fingerprint(out + more_in).call_directionality == BALANCED  # 50%

    def test_direction_flipped_for_b_party(self):
        record = _make_record("r1", "2024-03-01T10:00:00", direction=OUTGOING)
        assert direction_for(record, ME) == OUTGOING
        assert direction_for(record, "01711111111") == INCOMING
        fp = _fingerprint([record], entity="01711111111")
        assert fp.call_directionality == INCOMING

    def test_average_duration_excludes_zero(self):
        fp = _fingerprint([
            _make_record("r1", "2024-03-01T10:00:00", duration=100),
            _make_record("r2", "2024-03-01T10:10:00", duration=0),
            _make_record("r3", "2024-03-01T10:20:00", duration=50),
            _make_record("s1", "2024-03-01T10:30:00", kind=SMS, duration=0),
        ])
        assert fp.avg_call_duration_seconds == 75.0

    def test_dominant_slot_needs_more_than_forty_percent(self):
        two_morning = [_make_record(f"m{i}", f"2024-03-01T0{8 + i}:00:00") for i in range(2)]
        spread = [
            _make_record("a", "2024-03-01T13:00:00"),
            _make_record("e", "2024-03-01T18:00:00"),
            _make_record("n", "2024-03-01T23:00:00"),
        ]
        assert _fingerprint(two_morning + spread).dominant_time_slot == VARIED   # 40% exactly
        three_morning = two_morning + [_make_record("m2", "2024-03-01T11:00:00")]
        assert _fingerprint(three_morning + spread).dominant_time_slot == MORNING

    def test_time_slots(self):
        assert time_slot(6) == MORNING
        assert time_slot(12) == AFTERNOON
        assert time_slot(22) == NIGHT
        assert time_slot(3) == NIGHT

    def test_top_locations_with_address(self):
        records = [
            _make_record("r1", "2024-03-01T10:00:00", location="L-1"),
            _make_record("r2", "2024-03-01T10:10:00", location="L-2"),
            _make_record("r3", "2024-03-01T10:20:00", location="L-2"),
        ]
        towers = {"L-2": TowerInfo("L-2", 23.8, 90.4, address="Gulshan")}
        fp = _fingerprint(records, towers=towers, top_locations=1)
        assert len(fp.top_locations) == 1
        assert fp.top_locations[0].location_id == "L-2"
        assert fp.top_locations[0].count == 2
        assert fp.top_locations[0].address == "Gulshan"

    def test_activity_focus(self):
        sms = [_make_record(f"s{i}", f"2024-03-01T10:0{i}:00", kind=SMS, duration=0) for i in range(3)]
        fp = _fingerprint(sms + [_make_record("c", "2024-03-01T11:00:00")])
        assert fp.primary_activity_focus == SMS

    def test_compute_fingerprints_for_every_entity(self):
        index = build_index([_make_record("r1", "2024-03-01T10:00:00")])
        fps = compute_fingerprints(index)
        assert sorted(fps) == [ME, "01711111111"]
        assert list(compute_fingerprints(index, entities=["01711111111"])) == ["01711111111"]
        assert compute_fingerprints(index, entities=None) == fps


class TestCompareFingerprints:
    def test_identical_behavior_scores_one(self):
        records = [_make_record(f"r{i}", f"2024-03-0{1 + i}T10:00:00", location="L-1") for i in range(3)]
        a = _fingerprint(records)
        twin = [_make_record(f"t{i}", f"2024-03-0{1 + i}T10:00:00", a="01799999999", location="L-1")
                for i in range(3)]
        b = _fingerprint(twin, entity="01799999999")
        result = compare_fingerprints(a, b)
        assert result.overall_score == 1.0
        assert {c.metric for c in result.components} >= {"hourly_pattern", "top_locations"}

    def test_disjoint_behavior_scores_low(self):
        a = _fingerprint([_make_record("r1", "2024-03-04T09:00:00", location="L-1", duration=30)])
        b = _fingerprint([_make_record("r2", "2024-03-09T23:00:00", direction=INCOMING,
                                       location="L-9", duration=300)])
        result = compare_fingerprints(a, b)
        assert result.overall_score < 0.2

    def test_empty_fingerprints_do_not_divide_by_zero(self):
        result = compare_fingerprints(BehavioralFingerprint(entity="x"), BehavioralFingerprint(entity="y"))
        assert 0.0 <= result.overall_score <= 1.0
