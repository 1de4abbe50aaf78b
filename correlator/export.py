"""
correlator/export.py
Evidence export of an AnalysisResult.

Output: JSON (primary), structured dict (same schema, for other renderers).
Every export includes metadata (generated_at, engine parameters,
diagnostics), a SHA-256 integrity hash of the canonical payload and the
export format version. No message content is exported; flagged messages
carry categories and reasons only.
"""

import dataclasses
import hashlib
import json
import math
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from correlator.engine import AnalysisResult
from correlator.graph.builder import edge_id, undirected_projection
from correlator.graph.overlay import GraphOverlay, to_elements

EXPORT_FORMAT_VERSION = "1.0"


def to_jsonable(value: Any) -> Any:
    """Dataclasses → dicts, datetimes → ISO strings, sets → sorted lists, Decimal → float, inf → None."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (set, frozenset)):
        return sorted(to_jsonable(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {(edge_id(k) if isinstance(k, tuple) else str(k)): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, float) and (math.isinf(value) or math.isnan(value)):
        return None
    return value


def result_to_dict(result: AnalysisResult) -> Dict[str, Any]:
    graph = result.graph
    return {
        "graph": {
            "nodes":      to_jsonable(graph.nodes),
            "edges":      to_jsonable(graph.edges),
            "trimmed":    graph.trimmed,
            "node_limit": graph.node_limit,
            "undirected": to_jsonable(undirected_projection(graph)),
        },
        "chains":           to_jsonable(result.chains),
        "fingerprints":     to_jsonable(result.fingerprints),
        "timelines":        to_jsonable(result.timelines),
        "colocations":      to_jsonable(result.colocations),
        "anomalies":        to_jsonable(result.anomalies),
        "flagged_messages": to_jsonable(result.flagged_messages),
        "key_players":      to_jsonable(result.key_players),
        "common_numbers":   to_jsonable(result.common_numbers),
        "tower_activity":   to_jsonable(result.tower_activity),
        "communities":      to_jsonable(result.communities),
        "network":          to_jsonable(result.network),
        "cash_flows":       to_jsonable(result.cash_flows),
    }


def graph_elements(result: AnalysisResult, overlay: Optional[GraphOverlay] = None) -> Dict[str, Any]:
    """Display elements for the graph view (overlay applied, analytics untouched)."""
    return to_elements(result.graph, overlay)


def _build_export_payload(result: AnalysisResult) -> Dict[str, Any]:
    metadata = {
        "generated_at": result.generated_at.isoformat(),
        "parameters":   result.parameters,
        "diagnostics":  {
            "total_records": result.diagnostics.total_records,
            "counts":        dict(sorted(result.diagnostics.counts.items())),
        },
    }
    return {
        "export_format_version": EXPORT_FORMAT_VERSION,
        "metadata":              metadata,
        "result":                result_to_dict(result),
    }


def content_hash(payload: Dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of payload (no hash field)."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def export_to_dict(result: AnalysisResult) -> Dict[str, Any]:
    payload = _build_export_payload(result)
    return {**payload, "content_hash_sha256": content_hash(payload)}


def export_to_json(result: AnalysisResult, indent: Optional[int] = 2) -> str:
    return json.dumps(export_to_dict(result), indent=indent)


def verify_content_hash(exported: Dict[str, Any]) -> bool:
    """Recompute the hash of a parsed export. False if missing or altered."""
    claimed = exported.get("content_hash_sha256")
    if not claimed:
        return False
    payload = {k: v for k, v in exported.items() if k != "content_hash_sha256"}
    return content_hash(payload) == claimed
