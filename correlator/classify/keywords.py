"""
correlator/classify/keywords.py
Offline keyword pre-scan for SMS bodies. Always runs; an optional
Classifier only confirms or dismisses what this finds.
"""

from typing import Dict, List

# ── KEYWORD DICTIONARIES ─────────────────────────────────────
# Extend freely. Keys become category labels in output.

KEYWORD_MAP: Dict[str, List[str]] = {

    'OBSCENE': [
        'nude', 'naked', 'sexy', 'xxx', 'porn', 'bastard', 'bitch',
        'whore', 'slut', 'f*ck', 'fuck',
    ],

    'VIOLENT': [
        'kill', 'murder', 'shoot', 'stab', 'bomb', 'gun', 'knife',
        'attack', 'beat you', 'break your', 'you are dead', 'finish you',
        'kidnap', 'acid',
    ],

    'CRIMINAL': [
        'yaba', 'heroin', 'cocaine', 'drugs', 'phensedyl', 'smuggle',
        'consignment', 'border crossing', 'bribe', 'ransom', 'extort',
        'fake passport', 'delivery tonight', 'the package', 'hawala',
    ],

    'FINANCIAL': [
        'otp', 'pin number', 'your pin', 'cash out', 'cashout',
        'send money', 'transfer now', 'account blocked', 'lottery',
        'you have won', 'prize money', 'bkash agent', 'verification code',
    ],
}

# Severity precedence (highest wins when multiple categories match)
SEVERITY_RANK = {
    'VIOLENT':   3,
    'CRIMINAL':  3,
    'FINANCIAL': 2,
    'OBSCENE':   1,
}


def scan_text(text: str) -> List[str]:
    """Categories whose keywords appear in `text` (case-insensitive), in map order."""
    lower = (text or '').lower()
    if not lower.strip():
        return []
    matched: List[str] = []
    for category, keywords in KEYWORD_MAP.items():
        for kw in keywords:
            if kw in lower:
                matched.append(category)
                break
    return matched


def highest_severity(categories: List[str]) -> str:
    best = max((SEVERITY_RANK.get(c, 0) for c in categories), default=0)
    if best >= 3: return 'HIGH'
    if best >= 2: return 'MEDIUM'
    return 'LOW'
