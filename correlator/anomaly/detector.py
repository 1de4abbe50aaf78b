"""
correlator/anomaly/detector.py
Runs every anomaly rule over the full context and concatenates the reports.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Callable, List, Sequence

from correlator.anomaly.rules import (
    AnomalyContext,
    burst_activity,
    device_swap,
    dormant_reactivation,
    impossible_travel,
)
from correlator.models.results import AnomalyReport

logger = logging.getLogger(__name__)

Rule = Callable[[AnomalyContext], List[AnomalyReport]]

DEFAULT_RULES: Sequence[Rule] = (
    device_swap,
    impossible_travel,
    burst_activity,
    dormant_reactivation,
)


def detect_anomalies(ctx: AnomalyContext, rules: Sequence[Rule] = DEFAULT_RULES) -> List[AnomalyReport]:
    """
    Reports in rule order, then in each rule's own (entity-sorted) order.
    Every rule runs regardless of what earlier rules found.
    """
    reports: List[AnomalyReport] = []
    for rule in rules:
        found = rule(ctx)
        logger.debug(f"Rule {rule.__name__}: {len(found)} report(s)")
        reports.extend(found)

    if reports:
        by_cat = Counter(r.category for r in reports)
        logger.info(f"Anomalies: {len(reports)} ({', '.join(f'{c}={n}' for c, n in sorted(by_cat.items()))})")
    else:
        logger.info("Anomalies: none")
    return reports
