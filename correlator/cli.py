"""
correlator/cli.py
Command-line interface for the telecom correlator.

USAGE:
  correlator --records cdr_a.json --records cdr_b.json --towers towers.json --output analysis.json
  correlator --records cdr.json --gap-minutes 20 --burst-k 2.5 --timezone Asia/Dhaka
  correlator --records sms.json --ai --model llama3:8b-instruct
  correlator --records cdr.json --output analysis.json --sign-secret "$CASE_SECRET"

Parameters not given on the command line come from correlator_config.json
in the working directory (if present), then from the built-in defaults.
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from correlator.config import ConfigError, load_config
from correlator.engine import run_pass
from correlator.export import export_to_json
from correlator.loader import load_records, load_towers
from correlator.signing import signature_record

logger = logging.getLogger(__name__)

GREEN  = '\033[92m'
YELLOW = '\033[93m'
RED    = '\033[91m'
CYAN   = '\033[96m'
RESET  = '\033[0m'
BOLD   = '\033[1m'

# flag → (EngineConfig field, type, help)
PARAM_FLAGS = (
    ('--gap-minutes',               'gap_minutes',               float, 'Chain continuation gap (default: 30)'),
    ('--node-limit',                'node_limit',                int,   'Graph display trim threshold (default: 500)'),
    ('--timezone',                  'timezone',                  str,   'IANA zone for bucketing + naive timestamps (default: UTC)'),
    ('--top-locations',             'top_locations',             int,   'Top-N locations per fingerprint (default: 5)'),
    ('--dwell-cap-minutes',         'dwell_cap_minutes',         float, 'Maximum approximated dwell (default: 180)'),
    ('--colocation-bucket-minutes', 'colocation_bucket_minutes', int,   'Co-location bucket width (default: 5)'),
    ('--device-swap-window-hours',  'device_swap_window_hours',  float, 'Device swap rolling window (default: 24)'),
    ('--max-speed-kmh',             'max_speed_kmh',             float, 'Impossible travel threshold (default: 300)'),
    ('--burst-k',                   'burst_k',                   float, 'Burst threshold in stddevs (default: 3)'),
    ('--burst-min-events',          'burst_min_events',          int,   'Minimum events in a burst hour (default: 5)'),
    ('--dormancy-days',             'dormancy_days',             float, 'Dormant reactivation gap (default: 90)'),
    ('--min-chain-depth',           'min_chain_depth',           int,   'Drop chains with fewer counterparties (default: 1)'),
    ('--workers',                   'workers',                   int,   'Thread pool size for independent stages (default: 1)'),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog            = 'correlator',
        description     = 'Correlation & behavioral analytics over normalized telecom records',
        formatter_class = argparse.RawDescriptionHelpFormatter,
        epilog = """
NOTE:
  Dwell times, co-location buckets and anomaly severities are heuristics.
  Treat findings as investigative leads, not conclusions.
        """
    )
    parser.add_argument(
        '--records', '-r',
        required = True,
        action   = 'append',
        type     = Path,
        help     = 'Normalized records JSON (repeat for multiple source files)',
    )
    parser.add_argument(
        '--towers', '-t',
        type    = Path,
        help    = 'Tower lookup table JSON',
    )
    parser.add_argument(
        '--output', '-o',
        type    = Path,
        help    = 'Write the JSON export here (default: summary only)',
    )
    parser.add_argument(
        '--sign-secret',
        default = None,
        help    = 'Write an HMAC-SHA256 signature next to the export (<output>.sig)',
    )
    parser.add_argument(
        '--ai',
        action  = 'store_true',
        help    = 'Confirm keyword-flagged messages with a local Ollama model',
    )
    parser.add_argument(
        '--model', '-m',
        default = 'llama3:8b-instruct',
        help    = 'Ollama model name (default: llama3:8b-instruct)',
    )
    parser.add_argument(
        '--ollama-host',
        default = 'http://localhost:11434',
        help    = 'Ollama host URL (default: http://localhost:11434)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action  = 'store_true',
        help    = 'Enable debug logging',
    )
    params = parser.add_argument_group('engine parameters')
    for flag, dest, kind, text in PARAM_FLAGS:
        params.add_argument(flag, dest=dest, type=kind, default=None, help=text)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # ── LOGGING SETUP ────────────────────────────────────────
    logging.basicConfig(
        level   = logging.DEBUG if args.verbose else logging.INFO,
        format  = '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt = '%H:%M:%S',
    )

    # ── CONFIG ───────────────────────────────────────────────
    overrides = {dest: getattr(args, dest) for _, dest, _, _ in PARAM_FLAGS if getattr(args, dest) is not None}
    try:
        config = load_config().replace(**overrides).validate()
    except ConfigError as e:
        _print(f"{RED}Error: {e}{RESET}")
        return 1

    # ── LOAD ─────────────────────────────────────────────────
    try:
        records = []
        for path in args.records:
            records.extend(load_records(path))
        towers = load_towers(args.towers) if args.towers else None
    except ValueError as e:
        _print(f"{RED}Error: {e}{RESET}")
        return 1

    classifier = None
    if args.ai:
        from correlator.classify.ollama_adapter import OllamaClassifier
        classifier = OllamaClassifier(model=args.model, host=args.ollama_host)

    # ── ANALYZE ──────────────────────────────────────────────
    _step(f"Analyzing {len(records):,} records...")
    t0 = time.time()
    result = run_pass(records, towers=towers, config=config, classifier=classifier)
    _ok(f"Pass complete in {_elapsed(t0)}")

    # ── EXPORT ───────────────────────────────────────────────
    if args.output:
        text = export_to_json(result)
        args.output.write_text(text, encoding='utf-8')
        _ok(f"Export written: {args.output}")
        if args.sign_secret:
            sig_path = args.output.with_name(args.output.name + '.sig')
            sig_path.write_text(json.dumps(signature_record(text, args.sign_secret), indent=2), encoding='utf-8')
            _ok(f"Signature written: {sig_path}")
    elif args.sign_secret:
        _print(f"{YELLOW}--sign-secret ignored without --output{RESET}")

    # ── SUMMARY ──────────────────────────────────────────────
    _print(f"\n{BOLD}{GREEN}✓ Complete{RESET}")
    _print(f"  Records      : {result.diagnostics.total_records:,}")
    _print(f"  Nodes/Edges  : {len(result.graph.nodes):,} / {len(result.graph.edges):,}"
           + ("  (trimmed for display)" if result.graph.trimmed else ""))
    _print(f"  Chains       : {len(result.chains):,}")
    _print(f"  Communities  : {len(result.communities):,}")
    _print(f"  Accounts     : {len(result.cash_flows):,} with transactions")
    _print(f"  Fingerprints : {len(result.fingerprints):,}")
    _print(f"  Co-locations : {len(result.colocations):,}")
    _print(f"  Flagged SMS  : {len(result.flagged_messages):,}")
    _print(f"  Anomalies    : {len(result.anomalies):,}")
    for severity in ('HIGH', 'MEDIUM', 'LOW'):
        n = sum(1 for a in result.anomalies if a.severity == severity)
        if n:
            _print(f"    {severity:<7}: {n}")
    if result.diagnostics.counts:
        _print(f"\n{YELLOW}  Diagnostics: {dict(sorted(result.diagnostics.counts.items()))}{RESET}")
    _print(f"  Parameters   : {json.dumps(config.to_dict())}")
    return 0


# ── PRINT HELPERS ────────────────────────────────────────────

def _step(msg):  _print(f"  {CYAN}→{RESET} {msg}")
def _ok(msg):    _print(f"  {GREEN}✓{RESET} {msg}")
def _print(msg): print(msg)

def _elapsed(t0: float) -> str:
    s = time.time() - t0
    return f"{s:.1f}s" if s < 60 else f"{int(s//60)}m {int(s%60)}s"


if __name__ == '__main__':
    sys.exit(main())
