"""
tests/test_anomaly.py
Device swap, impossible travel, burst activity and dormant reactivation rules.
"""

from datetime import datetime, timedelta, timezone

from correlator.anomaly import AnomalyContext, detect_anomalies
from correlator.anomaly.associations import build_associations, change_history
from correlator.anomaly.rules import (
    IMEI,
    SIM,
    burst_activity,
    burst_severity,
    device_swap,
    dormant_reactivation,
    dormancy_severity,
    impossible_travel,
    report_id,
    swap_severity,
    travel_severity,
)
from correlator.config import DEFAULT_CONFIG
from correlator.location.resolver import TowerTable, build_location_timelines
from correlator.models.record import CALL, TOWER_PRESENCE, InteractionRecord
from correlator.models.results import (
    BURST_ACTIVITY,
    DEVICE_SWAP,
    DORMANT_REACTIVATION,
    HIGH,
    IMPOSSIBLE_TRAVEL,
    LOW,
    MEDIUM,
)
from correlator.temporal.index import build_index, index_by, parties, primary_party, stamp_records

ME = "01700000000"
BASE = datetime(2024, 3, 1, 0, 30, tzinfo=timezone.utc)

TOWERS = TowerTable({
    "DHK": {"latitude": 23.8103, "longitude": 90.4125},
    "CTG": {"latitude": 22.3569, "longitude": 91.7832},
})


def _make_record(rid, at, a=ME, b="01711111111", kind=CALL, location=None, device=None, sim=None):
    return InteractionRecord(
        id=rid, source_id="cdr.json", timestamp=at, party_a=a, party_b=b, kind=kind,
        duration_seconds=60, location_id=location, device_id=device, sim_id=sim,
    )


def _context(records, config=DEFAULT_CONFIG):
    timed, diag = stamp_records(records)
    by_party = index_by(timed, parties, diag)
    timelines = build_location_timelines(index_by(timed, primary_party), TOWERS)
    return AnomalyContext(index=by_party, timelines=timelines,
                          associations=build_associations(timed), config=config)


class TestSeverityLadders:
    def test_swap(self):
        assert [swap_severity(n) for n in (1, 2, 3, 5, 6)] == [LOW, LOW, MEDIUM, MEDIUM, HIGH]

    def test_travel(self):
        assert [travel_severity(r) for r in (1.2, 1.6, 3.0, 3.1)] == [LOW, MEDIUM, MEDIUM, HIGH]

    def test_burst(self):
        assert [burst_severity(z, 3.0) for z in (3.5, 4.5, 6.0)] == [LOW, MEDIUM, HIGH]

    def test_dormancy(self):
        assert [dormancy_severity(r) for r in (1.1, 2.0, 4.0)] == [LOW, MEDIUM, HIGH]

    def test_report_id(self):
        assert report_id(DEVICE_SWAP, "X", 0) == "DEVICE_SWAP:X:0"


class TestDeviceSwap:
    def _imei_example(self):
        # IMEI X carries SIM A on days 1-5 and SIM B once on day 3
        records = [
            _make_record(f"a{day}", BASE + timedelta(days=day - 1, hours=10), device="X", sim="SIM-A")
            for day in range(1, 6)
        ]
        records.append(_make_record("b3", BASE + timedelta(days=2, hours=12), device="X", sim="SIM-B"))
        return records

    def test_one_report_referencing_both_sims(self):
        reports = device_swap(_context(self._imei_example()))
        assert len(reports) == 1
        report = reports[0]
        assert report.category == DEVICE_SWAP
        assert report.entity == "X"
        assert report.entity_type == IMEI
        assert report.id == "DEVICE_SWAP:X:0"
        assert report.supporting_data["counterparts"] == ["SIM-A", "SIM-B"]
        assert report.supporting_data["switch_count"] == 2
        assert report.severity == LOW
        assert {e.record_id for e in report.evidence} == {"a3", "b3", "a4"}
        day3_switch = (BASE + timedelta(days=2, hours=12)).isoformat()
        assert report.supporting_data["switch_times"][0] == day3_switch

    def test_switch_outside_window_ignored(self):
        records = [
            _make_record("a1", BASE, device="X", sim="SIM-A"),
            _make_record("b1", BASE + timedelta(hours=30), device="X", sim="SIM-B"),
        ]
        assert device_swap(_context(records)) == []

    def test_sim_in_two_devices(self):
        records = [
            _make_record("x1", BASE, device="X", sim="SIM-A"),
            _make_record("y1", BASE + timedelta(hours=1), device="Y", sim="SIM-A"),
        ]
        reports = device_swap(_context(records))
        assert [(r.entity, r.entity_type) for r in reports] == [("SIM-A", SIM)]
        assert reports[0].supporting_data["counterparts"] == ["X", "Y"]

    def test_party_a_stands_in_for_missing_sim(self):
        records = [
            _make_record("x1", BASE, a="017A", device="X"),
            _make_record("x2", BASE + timedelta(hours=2), a="017B", device="X"),
        ]
        reports = device_swap(_context(records))
        assert reports[0].supporting_data["counterparts"] == ["017A", "017B"]

    def test_change_history(self):
        timed, _ = stamp_records(self._imei_example())
        changes = change_history(build_associations(timed).sims_by_device["X"])
        assert [(c.previous, c.current) for c in changes] == [("SIM-A", "SIM-B"), ("SIM-B", "SIM-A")]
        assert changes[0].gap_hours == 2.0


class TestImpossibleTravel:
    def _hop(self, minutes):
        return [
            _make_record("r1", BASE, kind=TOWER_PRESENCE, b=None, location="DHK"),
            _make_record("r2", BASE + timedelta(minutes=minutes), kind=TOWER_PRESENCE, b=None, location="CTG"),
        ]

    def test_emitted_only_above_max_speed(self):
        assert impossible_travel(_context(self._hop(120))) == []
        reports = impossible_travel(_context(self._hop(30)))
        assert len(reports) == 1
        assert reports[0].category == IMPOSSIBLE_TRAVEL
        assert reports[0].supporting_data["speed_kmh"] > 300

    def test_severity_scales_with_speed(self):
        assert impossible_travel(_context(self._hop(30)))[0].severity == LOW
        assert impossible_travel(_context(self._hop(10)))[0].severity == HIGH

    def test_zero_elapsed_is_infinite_speed(self):
        report = impossible_travel(_context(self._hop(0)))[0]
        assert report.severity == HIGH
        assert report.supporting_data["speed_kmh"] is None

    def test_unresolved_events_skipped(self):
        records = self._hop(180)
        records.insert(1, _make_record("u", BASE + timedelta(minutes=1), kind=TOWER_PRESENCE,
                                       b=None, location="UNKNOWN-1"))
        assert impossible_travel(_context(records)) == []

    def test_lower_threshold_flags_more(self):
        config = DEFAULT_CONFIG.replace(max_speed_kmh=50.0)
        assert len(impossible_travel(_context(self._hop(120), config))) == 1


class TestBurstActivity:
    def _steady_month(self):
        # one call an hour for 30 days, each with a new counterparty
        records = [_make_record(f"h{i}", BASE + timedelta(hours=i), b=f"N{i}") for i in range(30 * 24)]
        burst_at = BASE + timedelta(hours=200)
        records += [
            _make_record(f"burst{i}", burst_at + timedelta(seconds=30 * i), b=f"B{i}") for i in range(50)
        ]
        return records, burst_at

    def test_single_burst_hour_flagged(self):
        records, burst_at = self._steady_month()
        reports = burst_activity(_context(records))
        assert len(reports) == 1
        report = reports[0]
        assert report.entity == ME
        assert report.category == BURST_ACTIVITY
        assert report.supporting_data["count"] == 51
        assert report.supporting_data["hour_start"] == burst_at.replace(minute=0).isoformat()
        assert report.severity == HIGH
        assert len(report.evidence) == 51

    def test_flat_history_has_no_burst(self):
        records = [_make_record(f"h{i}", BASE + timedelta(hours=i), b=f"N{i}") for i in range(48)]
        assert burst_activity(_context(records)) == []

    def test_minimum_event_count(self):
        records = [_make_record(f"h{i}", BASE + timedelta(hours=i), b=f"N{i}") for i in range(24)]
        records += [_make_record(f"x{i}", BASE + timedelta(hours=5, minutes=i + 1), b=f"X{i}") for i in range(3)]
        assert burst_activity(_context(records)) == []
        relaxed = DEFAULT_CONFIG.replace(burst_min_events=4)
        assert len(burst_activity(_context(records, relaxed))) == 1

    def test_tower_presence_not_counted(self):
        records = [_make_record(f"h{i}", BASE + timedelta(hours=i), b=f"N{i}") for i in range(24)]
        records += [
            _make_record(f"t{i}", BASE + timedelta(hours=5, minutes=i), b=None, kind=TOWER_PRESENCE)
            for i in range(40)
        ]
        assert burst_activity(_context(records)) == []


class TestDormantReactivation:
    def test_long_gap_flagged(self):
        records = [
            _make_record("r1", BASE, b="B1"),
            _make_record("r2", BASE + timedelta(days=100), b="B2"),
        ]
        reports = dormant_reactivation(_context(records))
        assert len(reports) == 1
        assert reports[0].entity == ME
        assert reports[0].severity == LOW
        assert [e.record_id for e in reports[0].evidence] == ["r1", "r2"]

    def test_severity_by_ratio(self):
        records = [
            _make_record("r1", BASE, b="B1"),
            _make_record("r2", BASE + timedelta(days=400), b="B2"),
        ]
        assert dormant_reactivation(_context(records))[0].severity == HIGH

    def test_gap_at_threshold_not_flagged(self):
        records = [
            _make_record("r1", BASE, b="B1"),
            _make_record("r2", BASE + timedelta(days=90), b="B2"),
        ]
        assert dormant_reactivation(_context(records)) == []


class TestDetector:
    def test_rules_are_independent(self):
        records = [
            _make_record("r1", BASE, b="B1", location="DHK"),
            _make_record("r2", BASE + timedelta(days=120), b="B2", location="DHK"),
            _make_record("r3", BASE + timedelta(days=120, minutes=5), b="B3", location="CTG"),
        ]
        ctx = _context(records)
        everything = detect_anomalies(ctx)
        assert {r.category for r in everything} == {IMPOSSIBLE_TRAVEL, DORMANT_REACTIVATION}
        travel_only = detect_anomalies(ctx, rules=(impossible_travel,))
        assert travel_only == [r for r in everything if r.category == IMPOSSIBLE_TRAVEL]

    def test_empty_context(self):
        assert detect_anomalies(AnomalyContext(index=build_index([]))) == []

    def test_reports_in_rule_order(self):
        records = [
            _make_record("x1", BASE, device="X", sim="SIM-A", b="B1"),
            _make_record("x2", BASE + timedelta(hours=1), device="X", sim="SIM-B", b="B2"),
            _make_record("x3", BASE + timedelta(days=200), device="X", sim="SIM-B", b="B3"),
        ]
        categories = [r.category for r in detect_anomalies(_context(records))]
        assert categories.index(DEVICE_SWAP) < categories.index(DORMANT_REACTIVATION)
