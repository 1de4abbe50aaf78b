"""
tests/test_classify.py
Keyword pre-scan, classifier confirmation and fallback modes.
Synthetic message bodies only.
"""

from unittest.mock import MagicMock

from correlator.classify import ClassificationResult, flag_messages
from correlator.classify.flagger import AI, AI_FALLBACK, KEYWORD
from correlator.classify.keywords import highest_severity, scan_text
from correlator.classify.ollama_adapter import OllamaClassifier
from correlator.models.record import SMS, InteractionRecord


def _make_sms(rid="m1", body="Send the OTP now", ts="2024-03-01T10:00:00", a="01700000000"):
    return InteractionRecord(
        id=rid, source_id="sms.json", timestamp=ts, party_a=a,
        party_b="01711111111", kind=SMS, content=body,
    )


def _mock_classifier(available=True, result=None):
    clf = MagicMock()
    clf.is_available.return_value = available
    clf.classify.return_value = result
    return clf


# ── KEYWORD SCAN ─────────────────────────────────────────────

def test_scan_text_categories_in_map_order():
    assert scan_text("I will KILL you, send the otp") == ["VIOLENT", "FINANCIAL"]


def test_scan_text_benign_and_empty():
    assert scan_text("See you at lunch tomorrow") == []
    assert scan_text("   ") == []
    assert scan_text(None) == []


def test_highest_severity():
    assert highest_severity(["OBSCENE"]) == "LOW"
    assert highest_severity(["OBSCENE", "FINANCIAL"]) == "MEDIUM"
    assert highest_severity(["FINANCIAL", "CRIMINAL"]) == "HIGH"
    assert highest_severity([]) == "LOW"


# ── FLAGGING MODES ───────────────────────────────────────────

def test_keyword_only_without_classifier():
    flagged = flag_messages([_make_sms(), _make_sms("m2", "Lunch at noon?")])
    assert len(flagged) == 1
    assert flagged[0].record_id == "m1"
    assert flagged[0].detection_mode == KEYWORD
    assert flagged[0].categories == ("FINANCIAL",)
    assert flagged[0].severity == "MEDIUM"
    assert flagged[0].model_used == "keyword-only"


def test_unavailable_classifier_falls_back_to_keywords():
    clf = _mock_classifier(available=False)
    flagged = flag_messages([_make_sms(), _make_sms("m2", "bring the gun")], clf)
    assert [f.detection_mode for f in flagged] == [KEYWORD, KEYWORD]
    clf.is_available.assert_called_once()
    clf.classify.assert_not_called()


def test_classifier_failure_keeps_keyword_result():
    clf = _mock_classifier(result=None)
    flagged = flag_messages([_make_sms()], clf)
    assert flagged[0].detection_mode == AI_FALLBACK
    assert flagged[0].model_used == "fallback"
    assert flagged[0].categories == ("FINANCIAL",)


def test_classifier_dismisses_false_positive():
    clf = _mock_classifier(result=ClassificationResult(suspicious=False, model_used="test"))
    assert flag_messages([_make_sms()], clf) == []


def test_classifier_confirms_with_its_own_verdict():
    clf = _mock_classifier(result=ClassificationResult(
        suspicious=True, categories=["FINANCIAL", "CRIMINAL"], severity="HIGH",
        reason="OTP phishing", model_used="test-model",
    ))
    flagged = flag_messages([_make_sms()], clf)
    assert flagged[0].detection_mode == AI
    assert flagged[0].severity == "HIGH"
    assert flagged[0].categories == ("FINANCIAL", "CRIMINAL")
    assert flagged[0].model_used == "test-model"
    clf.classify.assert_called_once_with("Send the OTP now", ["FINANCIAL"])


def test_only_keyword_candidates_reach_classifier():
    clf = _mock_classifier(result=ClassificationResult(suspicious=True, severity="LOW", model_used="t"))
    flag_messages([_make_sms("m1", "Lunch at noon?"), _make_sms("m2", "your pin please")], clf)
    assert clf.classify.call_count == 1


def test_ordered_by_timestamp_unparsable_last():
    records = [
        _make_sms("late", ts="2024-03-02T10:00:00"),
        _make_sms("bad", ts="not a time"),
        _make_sms("early", ts="2024-03-01T10:00:00"),
    ]
    assert [f.record_id for f in flag_messages(records)] == ["early", "late", "bad"]


def test_message_body_not_in_output():
    flagged = flag_messages([_make_sms(body="transfer now to account 12345")])
    assert "12345" not in flagged[0].reason


# ── OLLAMA RESPONSE PARSING ──────────────────────────────────

def test_ollama_parses_fenced_json():
    clf = OllamaClassifier(model="test-model")
    raw = '```json\n{"suspicious": true, "categories": ["violent"], "severity": "high", "reason": "threat"}\n```'
    result = clf._parse_response(raw)
    assert result.suspicious is True
    assert result.categories == ["VIOLENT"]
    assert result.severity == "HIGH"
    assert result.model_used == "test-model"


def test_ollama_unparseable_response_is_none():
    clf = OllamaClassifier()
    assert clf._parse_response("not json at all") is None
    assert clf._parse_response("[1, 2]") is None


def test_ollama_unreachable_host_not_available():
    clf = OllamaClassifier(host="http://127.0.0.1:1")
    assert clf.is_available() is False


def test_prompt_carries_hints_and_truncates():
    clf = OllamaClassifier()
    prompt = clf.build_prompt("x" * 5000, ["FINANCIAL"])
    assert "FINANCIAL" in prompt
    assert "x" * 1501 not in prompt
