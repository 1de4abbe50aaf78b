"""
correlator/api.py
─────────────────────────────────────────────────────────────────────────────
Correlator — dual-mode API layer

TWO USAGE MODES:
  1. Importable module (dashboard back end, notebooks):
         from correlator.api import CorrelatorAPI
         api = CorrelatorAPI()
         api.set_towers(load_towers(Path("towers.json")))
         api.run(records, gap_minutes=20)
         api.get_anomalies(severity="HIGH")

  2. FastAPI HTTP server:
         python -m correlator.api                 # default: port 8765
         uvicorn correlator.api:app --port 8765

ENDPOINTS:
  POST /analyze                — run a full pass over posted records
  POST /towers                 — replace the tower lookup table
  GET  /graph                  — display elements (or full aggregates) + communities
  GET  /anomalies              — anomaly reports, optional filters
  GET  /fingerprints/{entity}  — behavioral fingerprint
  GET  /locations/{entity}     — location timeline + tower visits
  GET  /cashflow/{account}     — mobile-money inflow / outflow summary
  GET  /colocations            — co-location buckets / "who else" query
  GET  /health

RECOMPUTATION:
  Every run() takes a generation number under a lock. A finished pass is
  swapped in only if no newer pass has already been swapped in, so a
  slow stale pass can never overwrite fresher results and readers always
  see one complete result.

CORS: localhost-only. The server binds to 127.0.0.1 by default.
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from correlator.classify.base import Classifier
from correlator.config import DEFAULT_CONFIG, EngineConfig
from correlator.engine import AnalysisResult, run_pass
from correlator.export import export_to_dict, to_jsonable
from correlator.graph.overlay import GraphOverlay, to_elements
from correlator.location.resolver import TowerTable, tower_visits
from correlator.models.record import InteractionRecord
from correlator.temporal.index import parse_timestamp

logger = logging.getLogger(__name__)

__version__ = "1.0.0"

# ── OPTIONAL FASTAPI IMPORT ─────────────────────────────────────────────────
# The CorrelatorAPI class works without FastAPI; the HTTP app needs it.

try:
    from fastapi import Body, FastAPI, HTTPException, Query
    from fastapi.middleware.cors import CORSMiddleware
    from pydantic import BaseModel, Field
    _FASTAPI_AVAILABLE = True
except ImportError:  # pragma: no cover
    _FASTAPI_AVAILABLE = False
    FastAPI = None          # type: ignore
    HTTPException = None    # type: ignore
    BaseModel = object      # type: ignore


# ═══════════════════════════════════════════════════════════════════════════
# IMPORTABLE CLASS
# ═══════════════════════════════════════════════════════════════════════════

class CorrelatorAPI:
    """
    Holds the tower table and the latest complete AnalysisResult.
    Queries read whatever result is current; they never see a partial pass.
    """

    def __init__(
        self,
        config:     Optional[EngineConfig] = None,
        towers:     Optional[TowerTable]   = None,
        classifier: Optional[Classifier]   = None,
    ):
        self.config     = (config or DEFAULT_CONFIG).validate()
        self.classifier = classifier
        self._towers    = towers or TowerTable()
        self._lock      = threading.Lock()
        self._started   = 0
        self._applied   = 0
        self._result: Optional[AnalysisResult] = None

    # ── STATE ─────────────────────────────────────────────────────────────

    @property
    def result(self) -> Optional[AnalysisResult]:
        with self._lock:
            return self._result

    @property
    def generation(self) -> int:
        """Generation of the result currently served (0 = none yet)."""
        with self._lock:
            return self._applied

    def set_towers(self, towers: TowerTable) -> int:
        """Replace the lookup table. Takes effect on the next run()."""
        with self._lock:
            self._towers = towers
        logger.info(f"Tower table replaced: {len(towers)} tower(s)")
        return len(towers)

    # ── RUN ───────────────────────────────────────────────────────────────

    def run(self, records: Iterable[InteractionRecord], **overrides: Any) -> AnalysisResult:
        """
        Full pass with per-invocation parameter overrides.
        Raises ConfigError (a ValueError) before any work if they are invalid.
        """
        config = self.config.replace(**overrides).validate() if overrides else self.config
        with self._lock:
            self._started += 1
            generation = self._started
            towers = self._towers

        result = run_pass(records, towers=towers, config=config, classifier=self.classifier)

        with self._lock:
            if generation > self._applied:
                self._result = result
                self._applied = generation
            else:
                logger.info(f"Discarding stale pass {generation} (serving {self._applied})")
        return result

    # ── QUERIES ───────────────────────────────────────────────────────────

    def get_graph(self, overlay: Optional[GraphOverlay] = None, elements: bool = True) -> Optional[Dict[str, Any]]:
        result = self.result
        if result is None:
            return None
        if elements:
            data = to_elements(result.graph, overlay)
        else:
            data = {
                "nodes":   to_jsonable(result.graph.nodes),
                "edges":   to_jsonable(result.graph.edges),
                "trimmed": result.graph.trimmed,
            }
        data["key_players"] = to_jsonable(result.key_players)
        data["communities"] = to_jsonable(result.communities)
        return data

    def get_anomalies(
        self,
        category: Optional[str] = None,
        severity: Optional[str] = None,
        entity:   Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        result = self.result
        if result is None:
            return []
        reports = result.anomalies
        if category:
            reports = [r for r in reports if r.category == category.upper()]
        if severity:
            reports = [r for r in reports if r.severity == severity.upper()]
        if entity:
            reports = [r for r in reports if r.entity == entity]
        return to_jsonable(reports)

    def get_fingerprint(self, entity: str) -> Optional[Dict[str, Any]]:
        result = self.result
        if result is None or entity not in result.fingerprints:
            return None
        return to_jsonable(result.fingerprints[entity])

    def get_locations(self, entity: str) -> Optional[Dict[str, Any]]:
        result = self.result
        if result is None or entity not in result.timelines:
            return None
        events = result.timelines[entity]
        return {
            "entity": entity,
            "events": to_jsonable(events),
            "visits": to_jsonable(tower_visits(events)),
        }

    def who_else(self, location_id: str, at: Any, exclude: Optional[str] = None) -> List[str]:
        """Entities at `location_id` in the co-location bucket containing `at`."""
        result = self.result
        if result is None:
            return []
        when = parse_timestamp(at, result.config.tz)
        if when is None:
            raise ValueError(f"Unparsable timestamp: {at!r}")
        return result.visitors.who_else(location_id, when, exclude)

    def get_colocations(self, location_id: Optional[str] = None) -> List[Dict[str, Any]]:
        result = self.result
        if result is None:
            return []
        found = result.colocations
        if location_id:
            found = [c for c in found if c.location_id == location_id]
        return to_jsonable(found)

    def get_cash_flow(self, account: str) -> Optional[Dict[str, Any]]:
        result = self.result
        if result is None or account not in result.cash_flows:
            return None
        return to_jsonable(result.cash_flows[account])

    def get_export(self) -> Optional[Dict[str, Any]]:
        result = self.result
        return export_to_dict(result) if result is not None else None


# ═══════════════════════════════════════════════════════════════════════════
# FASTAPI HTTP APP
# Only constructed when FastAPI is available
# ═══════════════════════════════════════════════════════════════════════════

def _build_app(api: Optional[CorrelatorAPI] = None) -> "FastAPI":  # type: ignore
    """Build the FastAPI application around one CorrelatorAPI instance."""
    if not _FASTAPI_AVAILABLE:
        raise ImportError(
            "FastAPI is not installed. Run: pip install fastapi uvicorn"
        )

    from correlator.loader import record_from_dict

    _api = api or CorrelatorAPI()

    _app = FastAPI(
        title       = "Telecom Correlator API",
        description = "Correlation & behavioral analytics over normalized telecom records",
        version     = __version__,
        docs_url    = "/docs",
        redoc_url   = None,
    )

    _app.add_middleware(
        CORSMiddleware,
        allow_origins     = [
            "http://localhost",
            "http://localhost:8765",
            "http://127.0.0.1",
            "http://127.0.0.1:8765",
        ],
        allow_methods     = ["GET", "POST", "OPTIONS"],
        allow_headers     = ["Content-Type"],
        allow_credentials = False,
    )

    # ── REQUEST MODELS ──────────────────────────────────────────────────

    class AnalyzeRequest(BaseModel):
        records:    List[Dict[str, Any]]
        towers:     Optional[Any]  = None     # rows or locationId → tower mapping
        parameters: Dict[str, Any] = Field(default_factory=dict)

    # ── ENDPOINTS ───────────────────────────────────────────────────────

    @_app.post("/analyze", summary="Run a full analysis pass")
    def analyze(req: AnalyzeRequest):
        """
        Recompute everything from the posted records. Invalid parameters
        return 400 before any work starts; bad records are counted in
        diagnostics, not rejected.
        """
        try:
            records = [
                record_from_dict(row, default_id=f"req:{i}", default_source="request")
                for i, row in enumerate(req.records)
            ]
            if req.towers is not None:
                _api.set_towers(
                    TowerTable.from_rows(r for r in req.towers if isinstance(r, dict)) if isinstance(req.towers, list)
                    else TowerTable(req.towers)
                )
            result = _api.run(records, **req.parameters)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except Exception as exc:
            logger.error(f"Analyze endpoint error: {exc}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Analysis failed: {exc}")

        return {
            "status":       "ok",
            "generation":   _api.generation,
            "records":      result.diagnostics.total_records,
            "nodes":        len(result.graph.nodes),
            "edges":        len(result.graph.edges),
            "chains":       len(result.chains),
            "fingerprints": len(result.fingerprints),
            "anomalies":    len(result.anomalies),
            "flagged":      len(result.flagged_messages),
            "diagnostics":  result.diagnostics.counts,
        }

    @_app.post("/towers", summary="Replace the tower lookup table")
    def towers(payload: Any = Body(...)):
        try:
            if isinstance(payload, list):
                table = TowerTable.from_rows(row for row in payload if isinstance(row, dict))
            elif isinstance(payload, dict):
                table = TowerTable(payload)
            else:
                raise ValueError("Expected a list of tower rows or a locationId → tower object")
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        return {"status": "ok", "towers": _api.set_towers(table)}

    @_app.get("/graph", summary="Entity graph")
    def graph(view: str = Query("elements", description="elements (display) or full (aggregates)")):
        data = _api.get_graph(elements=(view != "full"))
        if data is None:
            raise HTTPException(status_code=404, detail="No analysis yet — POST /analyze first.")
        return data

    @_app.get("/anomalies", summary="Anomaly reports")
    def anomalies(
        category: Optional[str] = Query(None, description="DEVICE_SWAP, IMPOSSIBLE_TRAVEL, BURST_ACTIVITY, DORMANT_REACTIVATION"),
        severity: Optional[str] = Query(None, description="HIGH, MEDIUM, LOW"),
        entity:   Optional[str] = Query(None),
    ):
        data = _api.get_anomalies(category=category, severity=severity, entity=entity)
        return {"count": len(data), "anomalies": data}

    @_app.get("/fingerprints/{entity}", summary="Behavioral fingerprint")
    def fingerprint(entity: str):
        data = _api.get_fingerprint(entity)
        if data is None:
            raise HTTPException(status_code=404, detail=f"No fingerprint for: {entity}")
        return data

    @_app.get("/locations/{entity}", summary="Location timeline")
    def locations(entity: str):
        data = _api.get_locations(entity)
        if data is None:
            raise HTTPException(status_code=404, detail=f"No location events for: {entity}")
        return data

    @_app.get("/cashflow/{account}", summary="Mobile-money inflow / outflow")
    def cashflow(account: str):
        data = _api.get_cash_flow(account)
        if data is None:
            raise HTTPException(status_code=404, detail=f"No transactions for: {account}")
        return data

    @_app.get("/colocations", summary="Co-location candidates")
    def colocations(
        location_id: Optional[str] = Query(None),
        at:          Optional[str] = Query(None, description="timestamp; with location_id answers 'who else'"),
        exclude:     Optional[str] = Query(None),
    ):
        if at is not None:
            if not location_id:
                raise HTTPException(status_code=400, detail="location_id is required with at")
            try:
                return {"location_id": location_id, "entities": _api.who_else(location_id, at, exclude)}
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc))
        data = _api.get_colocations(location_id)
        return {"count": len(data), "colocations": data}

    @_app.get("/health", summary="Health check")
    def health():
        return {
            "status":     "ok",
            "version":    __version__,
            "generation": _api.generation,
            "has_result": _api.result is not None,
        }

    return _app


# Module-level app instance — used by uvicorn correlator.api:app
if _FASTAPI_AVAILABLE:
    app = _build_app()
else:
    app = None  # type: ignore


# ═══════════════════════════════════════════════════════════════════════════
# SERVER ENTRYPOINT — python -m correlator.api
# ═══════════════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(
        prog        = "correlator.api",
        description = "Telecom Correlator API server (localhost)",
    )
    parser.add_argument("--port",   type=int, default=8765)
    parser.add_argument("--host",   type=str, default="127.0.0.1",
                        help="Host to bind — keep 127.0.0.1 on shared networks")
    parser.add_argument("--towers", type=str, default=None, help="Tower table JSON to preload")
    args = parser.parse_args()

    if not _FASTAPI_AVAILABLE:
        print("ERROR: FastAPI not installed. Run: pip install fastapi uvicorn", file=sys.stderr)
        sys.exit(1)

    import uvicorn
    from pathlib import Path
    from correlator.loader import load_towers

    server_api = CorrelatorAPI(towers=load_towers(Path(args.towers)) if args.towers else None)
    uvicorn.run(_build_app(server_api), host=args.host, port=args.port, log_level="info")
