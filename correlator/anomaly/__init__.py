"""
correlator/anomaly — rule-based anomaly detection.
"""

from correlator.anomaly.detector import DEFAULT_RULES, detect_anomalies
from correlator.anomaly.rules import AnomalyContext

__all__ = [
    "AnomalyContext",
    "DEFAULT_RULES",
    "detect_anomalies",
]
