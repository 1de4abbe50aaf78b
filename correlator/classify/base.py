"""
correlator/classify/base.py
Capability interface for optional free-text classification.
To add a backend: subclass Classifier and implement classify().
The engine runs fully without one.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class ClassificationResult:
    suspicious: bool
    categories: List[str]     = field(default_factory=list)
    severity:   str           = 'LOW'     # HIGH / MEDIUM / LOW
    reason:     str           = ''
    model_used: str           = ''


class Classifier(ABC):
    """
    Backends implement this interface. flag_messages() calls classify()
    per keyword candidate and never knows which backend is running.
    """

    @abstractmethod
    def is_available(self) -> bool:
        """
        True if the backend is reachable. Checked once before a run so the
        flagger can fall back to keyword-only mode.
        """
        ...

    @abstractmethod
    def classify(self, text: str, hint_categories: List[str]) -> Optional[ClassificationResult]:
        """
        Classify one message body.
        Returns None on failure — caller keeps the keyword result.
        Never raises — catch internally and return None.
        """
        ...

    def build_prompt(self, text: str, hint_categories: List[str]) -> str:
        return (
            "You are a forensic analyst reviewing SMS evidence from a telecom "
            "investigation. Decide whether the message is suspicious.\n\n"
            f"Keyword pre-scan flagged: {', '.join(hint_categories) or 'none'}\n\n"
            f'MESSAGE:\n"{text[:1500]}"\n\n'
            "Respond ONLY with a valid JSON object. No markdown, no explanation.\n\n"
            "{\n"
            '  "suspicious": true or false,\n'
            '  "categories": ["OBSCENE","VIOLENT","CRIMINAL","FINANCIAL"],\n'
            '  "severity": "HIGH" or "MEDIUM" or "LOW",\n'
            '  "reason": "one sentence on why"\n'
            "}\n\n"
            "CATEGORY DEFINITIONS:\n"
            "- OBSCENE: Sexual or abusive language\n"
            "- VIOLENT: Threats of harm, weapons, attacks\n"
            "- CRIMINAL: Drugs, smuggling, bribery, extortion, trafficking\n"
            "- FINANCIAL: Fraud, OTP or PIN requests, suspicious transfers\n\n"
            "Set suspicious=false ONLY if the message is clearly benign "
            "and the keyword match was a false positive.\n"
            "This analysis is an inference, not a legal conclusion."
        )
