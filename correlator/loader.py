"""
correlator/loader.py
Reads already-normalized records and tower tables from JSON.

Parsing raw operator exports (Excel / CSV CDRs) happens upstream; this
module only accepts the normalized shape, in snake_case or camelCase:

    {"id": "r1", "sourceId": "cdr_a.xlsx", "timestamp": "2024-03-01T10:00:00",
     "partyA": "01700000000", "partyB": "01711111111", "kind": "CALL",
     "durationSeconds": 60, "deviceId": "3520...", "simId": "4700...",
     "locationId": "1234-5678", "direction": "OUTGOING"}

Malformed values inside a record (bad timestamp, missing party) are NOT
errors here; the engine counts them. Only a file that is not a JSON list
of objects raises ValueError.
"""

import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from correlator.location.resolver import TowerTable, location_id
from correlator.models.record import (
    CALL,
    INCOMING,
    KINDS,
    OUTGOING,
    SMS,
    TOWER_PRESENCE,
    TRANSACTION,
    UNKNOWN,
    InteractionRecord,
)

logger = logging.getLogger(__name__)

_KIND_ALIASES = {
    'VOICE':          CALL,
    'MOC':            CALL,
    'MTC':            CALL,
    'TEXT':           SMS,
    'MESSAGE':        SMS,
    'TOWER':          TOWER_PRESENCE,
    'LAC':            TOWER_PRESENCE,
    'LOCATION':       TOWER_PRESENCE,
    'TOWERPRESENCE':  TOWER_PRESENCE,
    'TXN':            TRANSACTION,
    'PAYMENT':        TRANSACTION,
}


def _pick(data: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        value = data.get(name)
        if value not in (None, ''):
            return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_kind(value: Any) -> str:
    text = str(value or CALL).strip().upper().replace(' ', '_').replace('-', '_')
    if text in KINDS:
        return text
    return _KIND_ALIASES.get(text.replace('_', ''), _KIND_ALIASES.get(text, CALL))


def normalize_direction(value: Any) -> str:
    text = str(value or '').strip().upper()
    if text.startswith('OUT') or text in ('MO', 'MOC', 'SENT'):
        return OUTGOING
    if text.startswith('IN') or text in ('MT', 'MTC', 'RECEIVED'):
        return INCOMING
    return UNKNOWN


def _duration(value: Any) -> int:
    try:
        return max(int(float(value)), 0)
    except (TypeError, ValueError, OverflowError):  # junk, NaN, Infinity
        return 0


def _amount(value: Any) -> Optional[float]:
    if value in (None, ''):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return amount if math.isfinite(amount) else None


def record_from_dict(data: Mapping[str, Any], default_id: str = '', default_source: str = '') -> InteractionRecord:
    """Build one InteractionRecord from a normalized dict."""
    if not isinstance(data, Mapping):
        raise ValueError(f"record must be an object, got {type(data).__name__}")

    loc = _text(_pick(data, 'location_id', 'locationId'))
    lac, ci = _pick(data, 'lac', 'LAC'), _pick(data, 'ci', 'cell_id', 'CELL_ID')
    if loc is None and lac is not None and ci is not None:
        loc = location_id(lac, ci)

    return InteractionRecord(
        id               = _text(_pick(data, 'id', 'record_id', 'recordId')) or default_id,
        source_id        = _text(_pick(data, 'source_id', 'sourceId', 'source')) or default_source,
        timestamp        = _pick(data, 'timestamp', 'start_time', 'startTime'),
        party_a          = _text(_pick(data, 'party_a', 'partyA', 'a_party', 'aParty')) or '',
        party_b          = _text(_pick(data, 'party_b', 'partyB', 'b_party', 'bParty')),
        kind             = normalize_kind(_pick(data, 'kind', 'type', 'usage_type')),
        duration_seconds = _duration(_pick(data, 'duration_seconds', 'durationSeconds', 'duration')),
        device_id        = _text(_pick(data, 'device_id', 'deviceId', 'imei', 'IMEI')),
        sim_id           = _text(_pick(data, 'sim_id', 'simId', 'imsi', 'IMSI')),
        location_id      = loc,
        direction        = normalize_direction(_pick(data, 'direction')),
        content          = _pick(data, 'content', 'body'),
        amount           = _amount(_pick(data, 'amount')),
    )


def _read_json(path: Path) -> Any:
    path = Path(path)
    if not path.exists():
        raise ValueError(f"File not found: {path}")
    try:
        return json.loads(path.read_text(encoding='utf-8'))
    except json.JSONDecodeError as e:
        raise ValueError(f"{path.name} is not valid JSON: {e}") from e
    except OSError as e:
        raise ValueError(f"Cannot read {path}: {e}") from e


def load_records(path: Path) -> List[InteractionRecord]:
    """
    JSON array of records, or an object with a "records" array.
    Records without an id get "<file>:<n>"; without a source, the file name.
    """
    path = Path(path)
    data = _read_json(path)
    if isinstance(data, dict):
        data = data.get('records')
    if not isinstance(data, list):
        raise ValueError(f"{path.name}: expected a JSON array of records")

    records = [
        record_from_dict(row, default_id=f"{path.name}:{i}", default_source=path.name)
        for i, row in enumerate(data)
    ]
    logger.info(f"Loaded {len(records)} record(s) from {path.name}")
    return records


def load_towers(path: Path) -> TowerTable:
    """
    Either a JSON array of tower rows (lac/ci or location_id, latitude,
    longitude, address) or an object mapping locationId → {lat, lon, address}.
    """
    path = Path(path)
    data = _read_json(path)
    if isinstance(data, list):
        table = TowerTable.from_rows(row for row in data if isinstance(row, dict))
    elif isinstance(data, dict):
        rows: List[Dict[str, Any]] = [
            {**info, 'location_id': loc} for loc, info in data.items() if isinstance(info, dict)
        ]
        table = TowerTable.from_rows(rows)
    else:
        raise ValueError(f"{path.name}: expected a JSON array or object of towers")
    logger.info(f"Loaded {len(table)} tower(s) from {path.name}")
    return table
