"""
Configuration for near-lake-supervisor.

Defaults are merged with an optional YAML file and then with environment variables
(upper-cased key names, e.g. STALLTIMEOUT=10m). The result is a frozen MonitorConfig.
"""

from __future__ import annotations

import math
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

import yaml

DEFAULT_CONFIG_PATH = Path("config") / "local.yaml"

# Config defaults (match config/local.example.yaml)
DEFAULTS = {
    "indexerURL": "http://indexer:3030",
    "queryInterval": "30s",
    "stallTimeout": "5m",
    "restartSleep": "900s",
    "metricName": "near_indexer_streaming_current_block_height",
    "containerName": "near-lake-indexer",
    "installationType": "docker",
    "requestTimeout": "10s",
    "dryRun": False,
    "verbose": False,
    "logFile": "",
}

DURATION_KEYS = ("queryInterval", "stallTimeout", "restartSleep", "requestTimeout")
BOOL_KEYS = ("dryRun", "verbose")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


class ConfigError(Exception):
    pass


def parse_duration(value: Any) -> float:
    """
    Converts a duration to seconds. Accepts bare numbers (seconds) or Go-style strings
    such as "30s", "5m", "1h2m3.5s" or "500ms".
    """
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        raise ConfigError(f"invalid duration: {value!r}")

    s = value.strip()
    try:
        return float(s)
    except ValueError:
        pass

    sign = 1.0
    if s[:1] in ("+", "-"):
        sign = -1.0 if s[0] == "-" else 1.0
        s = s[1:]
    if not s:
        raise ConfigError(f"invalid duration: {value!r}")

    total = 0.0
    pos = 0
    while pos < len(s):
        m = _DURATION_PART.match(s, pos)
        if not m:
            raise ConfigError(f"invalid duration: {value!r}")
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    return sign * total


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        v = value.strip().lower()
        if v in ("1", "true", "yes", "on"):
            return True
        if v in ("0", "false", "no", "off", ""):
            return False
    raise ConfigError(f"invalid boolean: {value!r}")


@dataclass(frozen=True)
class MonitorConfig:
    indexer_url: str = DEFAULTS["indexerURL"]
    metric_name: str = DEFAULTS["metricName"]
    query_interval: float = parse_duration(DEFAULTS["queryInterval"])
    stall_timeout: float = parse_duration(DEFAULTS["stallTimeout"])
    restart_sleep: float = parse_duration(DEFAULTS["restartSleep"])
    container_name: str = DEFAULTS["containerName"]
    installation_type: str = DEFAULTS["installationType"]
    request_timeout: float = parse_duration(DEFAULTS["requestTimeout"])
    dry_run: bool = DEFAULTS["dryRun"]
    verbose: bool = DEFAULTS["verbose"]
    log_file: str = DEFAULTS["logFile"]


def read_config_file(path: Path, log: Optional[Callable[[str], None]] = None) -> dict:
    """Returns the YAML mapping at path, or an empty dict if the file does not exist."""
    if not path.exists():
        if log:
            log(f"Config file not found, using defaults: {path}")
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def merge_config(file_cfg: Mapping[str, Any], environ: Mapping[str, str]) -> dict:
    """Merge defaults, file values and environment overrides (env wins)."""
    merged = dict(DEFAULTS)
    # Keys are case-insensitive: "indexerurl" and "indexerURL" are the same setting
    known = {key.lower(): key for key in DEFAULTS}
    for key, val in file_cfg.items():
        if val is not None:
            merged[known.get(str(key).lower(), key)] = val
    for key in DEFAULTS:
        env_val = environ.get(key.upper())
        if env_val is not None and env_val != "":
            merged[key] = env_val
    return merged


def build_config(merged: Mapping[str, Any]) -> MonitorConfig:
    durations = {key: parse_duration(merged[key]) for key in DURATION_KEYS}
    bools = {key: parse_bool(merged[key]) for key in BOOL_KEYS}

    for key, val in durations.items():
        if not math.isfinite(val):
            raise ConfigError(f"{key} must be finite, got {merged[key]!r}")
    if durations["queryInterval"] <= 0:
        raise ConfigError("queryInterval must be positive")
    if durations["requestTimeout"] <= 0:
        raise ConfigError("requestTimeout must be positive")
    if durations["stallTimeout"] < 0 or durations["restartSleep"] < 0:
        raise ConfigError("stallTimeout and restartSleep must not be negative")

    indexer_url = str(merged["indexerURL"]).strip().rstrip("/")
    if not indexer_url:
        raise ConfigError("indexerURL must not be empty")
    metric_name = str(merged["metricName"]).strip()
    if not metric_name:
        raise ConfigError("metricName must not be empty")

    return MonitorConfig(
        indexer_url=indexer_url,
        metric_name=metric_name,
        query_interval=durations["queryInterval"],
        stall_timeout=durations["stallTimeout"],
        restart_sleep=durations["restartSleep"],
        container_name=str(merged["containerName"] or "").strip(),
        installation_type=str(merged["installationType"] or "docker").strip().lower(),
        request_timeout=durations["requestTimeout"],
        dry_run=bools["dryRun"],
        verbose=bools["verbose"],
        log_file=str(merged["logFile"] or ""),
    )


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    log: Optional[Callable[[str], None]] = None,
) -> MonitorConfig:
    """
    Loads the configuration once at startup. A missing file is not fatal (defaults apply);
    a malformed file or value raises ConfigError.
    """
    path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    environ = os.environ if environ is None else environ
    file_cfg = read_config_file(path, log=log)
    return build_config(merge_config(file_cfg, environ))
