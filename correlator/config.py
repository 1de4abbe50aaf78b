"""
correlator/config.py
Engine parameters. Every threshold has a documented default and can be
overridden per invocation (EngineConfig.replace) or persisted to
correlator_config.json.

NOTE ON DEFAULTS:
  dwell_cap_minutes and colocation_bucket_minutes are heuristics carried
  over from the analyst dashboard. They are NOT validated against ground
  truth — treat derived dwell times and co-location candidates as leads.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "correlator_config.json"

# Thresholds turned into timedelta values, by how many units make a day.
_DURATION_FIELDS = {
    "gap_minutes":               24 * 60,
    "dwell_cap_minutes":         24 * 60,
    "colocation_bucket_minutes": 24 * 60,
    "device_swap_window_hours":  24,
    "dormancy_days":             1,
}


class ConfigError(ValueError):
    """Invalid engine parameters. Raised before a pass starts."""


@dataclass(frozen=True)
class EngineConfig:
    gap_minutes:               float = 30.0    # chain continuation gap
    node_limit:                int   = 500     # graph display trim threshold
    timezone:                  str   = "UTC"   # bucketing + naive timestamps
    top_locations:             int   = 5
    dwell_cap_minutes:         float = 180.0
    colocation_bucket_minutes: int   = 5
    device_swap_window_hours:  float = 24.0
    max_speed_kmh:             float = 300.0
    burst_k:                   float = 3.0
    burst_min_events:          int   = 5
    dormancy_days:             float = 90.0
    min_chain_depth:           int   = 1
    workers:                   int   = 1

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def replace(self, **overrides: Any) -> "EngineConfig":
        """Per-invocation override. Unknown keys raise ConfigError."""
        unknown = set(overrides) - {f.name for f in dataclasses.fields(self)}
        if unknown:
            raise ConfigError(f"Unknown parameter(s): {', '.join(sorted(unknown))}")
        return dataclasses.replace(self, **overrides)

    def validate(self) -> "EngineConfig":
        """
        Check every parameter and raise one ConfigError listing all problems.
        Returns self so callers can chain: cfg = EngineConfig(...).validate()
        """
        problems: List[str] = []

        def positive(name: str, allow_zero: bool = False) -> None:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                problems.append(f"{name} must be a number (got {value!r})")
            elif isinstance(value, float) and not math.isfinite(value):
                problems.append(f"{name} must be finite (got {value})")
            elif value < 0 or (value == 0 and not allow_zero):
                problems.append(f"{name} must be {'>= 0' if allow_zero else '> 0'} (got {value})")
            elif name in _DURATION_FIELDS and value >= _DURATION_FIELDS[name] * timedelta.max.days:
                problems.append(f"{name} is out of range (got {value})")

        for name in ("gap_minutes", "dwell_cap_minutes", "colocation_bucket_minutes",
                     "device_swap_window_hours", "max_speed_kmh", "burst_k",
                     "dormancy_days", "node_limit", "top_locations",
                     "min_chain_depth", "workers"):
            positive(name)
        positive("burst_min_events", allow_zero=True)

        for name in ("node_limit", "top_locations", "colocation_bucket_minutes",
                     "burst_min_events", "min_chain_depth", "workers"):
            value = getattr(self, name)
            if isinstance(value, float) and not value.is_integer():
                problems.append(f"{name} must be a whole number (got {value})")

        try:
            ZoneInfo(str(self.timezone))
        except (ZoneInfoNotFoundError, ValueError):
            problems.append(f"timezone is not a known IANA zone: {self.timezone!r}")

        if problems:
            raise ConfigError("Invalid engine configuration: " + "; ".join(problems))
        return self

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


DEFAULT_CONFIG = EngineConfig()


def config_from_dict(data: Dict[str, Any], base: Optional[EngineConfig] = None) -> EngineConfig:
    """Merge a dict of overrides over `base` (defaults). Unknown keys are ignored."""
    base = base or DEFAULT_CONFIG
    known = {f.name for f in dataclasses.fields(base)}
    ignored = sorted(set(data) - known)
    if ignored:
        logger.warning(f"Ignoring unknown config keys: {ignored}")
    return dataclasses.replace(base, **{k: v for k, v in data.items() if k in known})


def _config_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path.cwd()
    return root / CONFIG_FILENAME


def load_config(project_root: Optional[Path] = None) -> EngineConfig:
    """Load correlator_config.json. Returns defaults if missing or unreadable."""
    path = _config_path(project_root)
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                return config_from_dict(data)
            logger.warning(f"Config load failed: {path.name} is not a JSON object")
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Config load failed: {e}")
    return DEFAULT_CONFIG


def save_config(config: EngineConfig, project_root: Optional[Path] = None) -> Path:
    """Persist config to correlator_config.json."""
    path = _config_path(project_root)
    path.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
    return path
