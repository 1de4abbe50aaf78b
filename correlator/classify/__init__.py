"""
correlator/classify — optional suspicious-message flagging.

Privacy: message bodies never appear in logs or exports.
"""

from correlator.classify.base import ClassificationResult, Classifier
from correlator.classify.flagger import flag_messages

__all__ = [
    "ClassificationResult",
    "Classifier",
    "flag_messages",
]
