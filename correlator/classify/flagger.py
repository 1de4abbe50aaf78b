"""
correlator/classify/flagger.py
Two-phase suspicious-message flagging.

Phase 1: keyword scan (always runs, offline)
Phase 2: classifier confirmation (skipped when no classifier is given or
         it is unavailable; per-message failures keep the keyword result)

Message bodies are never logged.
"""

import logging
from datetime import datetime, timezone, tzinfo
from typing import Iterable, List, Optional

from correlator.classify.base import Classifier
from correlator.classify.keywords import highest_severity, scan_text
from correlator.models.record import InteractionRecord
from correlator.models.results import FlaggedMessage
from correlator.temporal.index import parse_timestamp

logger = logging.getLogger(__name__)

KEYWORD     = 'KEYWORD'
AI          = 'AI'
AI_FALLBACK = 'AI_FALLBACK'

_LATEST = datetime.max.replace(tzinfo=timezone.utc)


def flag_messages(
    records:    Iterable[InteractionRecord],
    classifier: Optional[Classifier] = None,
    tz:         tzinfo               = timezone.utc,
) -> List[FlaggedMessage]:
    """Flagged messages in timestamp order (unparsable timestamps last)."""
    candidates = []
    for r in records:
        if not r.content or not r.content.strip():
            continue
        matched = scan_text(r.content)
        if matched:
            candidates.append((r, matched))

    logger.info(f"Keyword scan: {len(candidates)} candidate message(s)")
    if not candidates:
        return []

    use_ai = False
    if classifier is not None:
        use_ai = classifier.is_available()
        if not use_ai:
            logger.warning("Classifier unavailable — keyword-only mode.")

    flagged: List[FlaggedMessage] = []
    dismissed = 0
    for r, matched in candidates:
        at = parse_timestamp(r.timestamp, tz)
        base = dict(record_id=r.id, party_a=r.party_a, party_b=r.party_b, timestamp=at)

        if not use_ai:
            flagged.append(FlaggedMessage(
                **base,
                categories     = tuple(matched),
                severity       = highest_severity(matched),
                reason         = f"Keyword detection: {', '.join(matched)}",
                detection_mode = KEYWORD,
            ))
            continue

        result = classifier.classify(r.content, matched)
        if result is None:
            logger.warning(f"Classifier returned nothing for record {r.id} — keeping keyword result.")
            flagged.append(FlaggedMessage(
                **base,
                categories     = tuple(matched),
                severity       = highest_severity(matched),
                reason         = "Classifier failed — keyword detection only.",
                detection_mode = AI_FALLBACK,
                model_used     = 'fallback',
            ))
            continue

        if not result.suspicious:
            dismissed += 1
            continue

        flagged.append(FlaggedMessage(
            **base,
            categories     = tuple(result.categories or matched),
            severity       = result.severity,
            reason         = result.reason,
            detection_mode = AI,
            model_used     = result.model_used,
        ))

    logger.info(f"Flagging complete: {len(flagged)} flagged, {dismissed} dismissed")
    flagged.sort(key=lambda f: f.timestamp or _LATEST)
    return flagged
