"""
correlator/finance/cashflow.py
Mobile-money flows per account (the cash-in / cash-out and send-money views).

Amounts are summed as Decimal so totals do not depend on the order rows
are folded in; graph partitions merge to the same figures as one pass.

DIRECTION:
  Same convention as the entity graph. OUTGOING (and UNKNOWN) rows move
  money party_a → party_b, INCOMING rows move it party_b → party_a.
  Rows without a counterparty are left out (the graph counts them as
  missing_party).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Tuple, Union

from correlator.models.record import INCOMING, TRANSACTION, InteractionRecord
from correlator.models.results import CashFlowSummary, CounterpartyFlow, DailyFlow
from correlator.temporal.index import TimedRecord, parse_timestamp

logger = logging.getLogger(__name__)

ZERO = Decimal(0)


def transaction_amount(record: InteractionRecord) -> Decimal:
    """Value moved by a TRANSACTION row; 0 for other kinds or a missing/bad amount."""
    if record.kind != TRANSACTION or record.amount is None or isinstance(record.amount, bool):
        return ZERO
    try:
        amount = Decimal(str(record.amount))
    except InvalidOperation:
        return ZERO
    return amount if amount.is_finite() else ZERO


def money_flow(record: InteractionRecord) -> Tuple[str, str]:
    """(payer, payee) for a dyadic row."""
    if record.direction == INCOMING:
        return record.party_b, record.party_a
    return record.party_a, record.party_b


# ── ACCUMULATOR ──────────────────────────────────────────────

@dataclass
class _AccountAcc:
    inflow:       Decimal         = ZERO
    outflow:      Decimal         = ZERO
    count_in:     int             = 0
    count_out:    int             = 0
    sources:      Dict[str, List] = field(default_factory=lambda: defaultdict(lambda: [ZERO, 0]))
    destinations: Dict[str, List] = field(default_factory=lambda: defaultdict(lambda: [ZERO, 0]))
    daily:        Dict[str, List] = field(default_factory=lambda: defaultdict(lambda: [ZERO, ZERO]))


def _top(flows: Dict[str, List], top_n: int) -> Tuple[CounterpartyFlow, ...]:
    ranked = sorted(flows.items(), key=lambda kv: (-kv[1][0], -kv[1][1], kv[0]))
    return tuple(CounterpartyFlow(counterparty=k, amount=v[0], count=v[1]) for k, v in ranked[:top_n])


def summarize_cash_flow(
    records: Iterable[Union[InteractionRecord, TimedRecord]],
    tz:      tzinfo = timezone.utc,
    top_n:   int    = 5,
) -> Dict[str, CashFlowSummary]:
    """
    Inflow / outflow totals, top counterparties each way and a daily
    breakdown for every account that sent or received a transaction.

    Rows with unparsable timestamps still count toward the totals but are
    left out of the daily breakdown.
    """
    accounts: Dict[str, _AccountAcc] = defaultdict(_AccountAcc)

    for item in records:
        if isinstance(item, TimedRecord):
            record, at = item.record, item.at
        else:
            record, at = item, parse_timestamp(item.timestamp, tz)
        if record.kind != TRANSACTION or not record.party_a or not record.party_b:
            continue

        payer, payee = money_flow(record)
        amount = transaction_amount(record)
        day = at.astimezone(tz).date().isoformat() if at is not None else None

        out = accounts[payer]
        out.outflow   += amount
        out.count_out += 1
        out.destinations[payee][0] += amount
        out.destinations[payee][1] += 1

        inc = accounts[payee]
        inc.inflow   += amount
        inc.count_in += 1
        inc.sources[payer][0] += amount
        inc.sources[payer][1] += 1

        if day is not None:
            out.daily[day][1] += amount
            inc.daily[day][0] += amount

    summaries = {
        account: CashFlowSummary(
            account          = account,
            inflow           = acc.inflow,
            outflow          = acc.outflow,
            net              = acc.inflow - acc.outflow,
            transactions_in  = acc.count_in,
            transactions_out = acc.count_out,
            top_sources      = _top(acc.sources, top_n),
            top_destinations = _top(acc.destinations, top_n),
            daily            = tuple(DailyFlow(date=d, inflow=v[0], outflow=v[1])
                                     for d, v in sorted(acc.daily.items())),
        )
        for account, acc in sorted(accounts.items())
    }
    if summaries:
        logger.info(f"Cash flow summarized for {len(summaries)} account(s)")
    return summaries
