"""
correlator/signing.py
Integrity signatures for exported analyses.

HMAC-SHA256 over the export JSON, keyed by a caller-held secret.
Fail closed: an unsigned, tampered or wrongly-keyed export never
verifies. The secret never appears in logs, exceptions or output.
"""

import hashlib
import hmac
import json
from typing import Any, Dict, Union

SIGNATURE_ALGORITHM = "HMAC-SHA256"


def _key_from_secret(secret: str) -> bytes:
    if not secret:
        raise ValueError("A non-empty signing secret is required")
    return hashlib.sha256(secret.encode("utf-8")).digest()


def sign_export(export_content: Union[bytes, str], signing_secret: str) -> str:
    """Hex HMAC-SHA256 of the export bytes."""
    key = _key_from_secret(signing_secret)
    if isinstance(export_content, str):
        export_content = export_content.encode("utf-8")
    return hmac.new(key, export_content, hashlib.sha256).hexdigest()


def verify_export(export_content: Union[bytes, str], signature: str, signing_secret: str) -> bool:
    if not signature or not isinstance(signature, str) or not signing_secret:
        return False
    return hmac.compare_digest(sign_export(export_content, signing_secret), signature)


def signature_record(export_json: str, signing_secret: str) -> Dict[str, Any]:
    """
    Detached signature written next to an export (e.g. analysis.json.sig).
    Carries the export's content hash so a reader can match the pair.
    """
    try:
        content_hash = json.loads(export_json).get("content_hash_sha256")
    except (json.JSONDecodeError, AttributeError):
        content_hash = None
    return {
        "algorithm":           SIGNATURE_ALGORITHM,
        "content_hash_sha256": content_hash,
        "signature":           sign_export(export_json, signing_secret),
    }


def verify_signature_record(export_json: str, record: Dict[str, Any], signing_secret: str) -> bool:
    if not isinstance(record, dict) or record.get("algorithm") != SIGNATURE_ALGORITHM:
        return False
    return verify_export(export_json, record.get("signature", ""), signing_secret)
