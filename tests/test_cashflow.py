"""
tests/test_cashflow.py
Mobile-money inflow / outflow summaries per account.
"""

from decimal import Decimal
from zoneinfo import ZoneInfo

from correlator.finance.cashflow import summarize_cash_flow, transaction_amount
from correlator.models.record import CALL, INCOMING, OUTGOING, TRANSACTION, InteractionRecord
from correlator.temporal.index import stamp_records

OWNER = "01700000000"


def _make_record(rid, ts, b, amount, direction=OUTGOING, kind=TRANSACTION, a=OWNER):
    return InteractionRecord(
        id=rid, source_id="statement.json", timestamp=ts, party_a=a, party_b=b,
        kind=kind, direction=direction, amount=amount,
    )


STATEMENT = [
    _make_record("t1", "2024-03-01T10:00:00Z", "AGENT-1", 1000, direction=INCOMING),
    _make_record("t2", "2024-03-01T15:00:00Z", "AGENT-1", 500.5, direction=INCOMING),
    _make_record("t3", "2024-03-02T09:00:00Z", "AGENT-2", 300),
    _make_record("t4", "2024-03-02T20:00:00Z", "01799999999", 200),
    _make_record("t5", "garbage", "AGENT-2", 100),
    _make_record("c1", "2024-03-02T10:00:00Z", "AGENT-2", 5000, kind=CALL),
    _make_record("t6", "2024-03-02T11:00:00Z", None, 70),
]


class TestTransactionAmount:
    def test_values(self):
        assert transaction_amount(STATEMENT[1]) == Decimal("500.5")
        assert transaction_amount(STATEMENT[5]) == 0
        assert transaction_amount(_make_record("x", "2024-03-01", "B", None)) == 0
        assert transaction_amount(_make_record("x", "2024-03-01", "B", float("inf"))) == 0


class TestSummarizeCashFlow:
    def test_owner_totals(self):
        owner = summarize_cash_flow(STATEMENT)[OWNER]
        assert owner.inflow == Decimal("1500.5")
        assert owner.outflow == Decimal("600")
        assert owner.net == Decimal("900.5")
        assert owner.transactions_in == 2
        assert owner.transactions_out == 3

    def test_top_counterparties(self):
        owner = summarize_cash_flow(STATEMENT)[OWNER]
        assert [(f.counterparty, f.amount, f.count) for f in owner.top_sources] == [
            ("AGENT-1", Decimal("1500.5"), 2)]
        assert [f.counterparty for f in owner.top_destinations] == ["AGENT-2", "01799999999"]
        assert owner.top_destinations[0].amount == Decimal("400")

    def test_top_n(self):
        owner = summarize_cash_flow(STATEMENT, top_n=1)[OWNER]
        assert [f.counterparty for f in owner.top_destinations] == ["AGENT-2"]

    def test_counterparty_accounts(self):
        flows = summarize_cash_flow(STATEMENT)
        assert sorted(flows) == ["01700000000", "01799999999", "AGENT-1", "AGENT-2"]
        assert flows["AGENT-1"].outflow == Decimal("1500.5")
        assert flows["AGENT-2"].inflow == Decimal("400")

    def test_daily_breakdown_skips_unparsable(self):
        owner = summarize_cash_flow(STATEMENT)[OWNER]
        assert [(d.date, d.inflow, d.outflow) for d in owner.daily] == [
            ("2024-03-01", Decimal("1500.5"), Decimal("0")),
            ("2024-03-02", Decimal("0"), Decimal("500")),
        ]

    def test_daily_uses_local_calendar_day(self):
        owner = summarize_cash_flow(STATEMENT, tz=ZoneInfo("Asia/Dhaka"))[OWNER]
        assert [d.date for d in owner.daily] == ["2024-03-01", "2024-03-02", "2024-03-03"]

    def test_stamped_rows_match_raw(self):
        timed, _ = stamp_records(STATEMENT)
        assert summarize_cash_flow(timed)[OWNER].daily == summarize_cash_flow(STATEMENT)[OWNER].daily

    def test_missing_amount_still_counted(self):
        flows = summarize_cash_flow([_make_record("t1", "2024-03-01T10:00:00Z", "B", None)])
        assert flows[OWNER].transactions_out == 1
        assert flows[OWNER].outflow == 0

    def test_no_transactions(self):
        assert summarize_cash_flow([_make_record("c1", "2024-03-01T10:00:00Z", "B", 5, kind=CALL)]) == {}
