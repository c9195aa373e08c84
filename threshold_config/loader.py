"""
Configuration Loader (``threshold_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into a frozen
``threshold_config.schema.EngineSettings``.  The single public entry point
for runtime config is ``threshold_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from threshold_config.schema import LOG_LEVELS, EngineSettings
from threshold_kernel.domain.events import ExecutionMode


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 checksum of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_settings(data: dict[str, Any]) -> EngineSettings:
    """
    Parse a settings mapping.

    Raises:
        KeyError: if ``config_id``, ``version``, ``database.url`` or
            ``tenancy.default_tenant`` is missing.
        ValueError: on invalid values.
    """
    database = data.get("database") or {}
    tenancy = data.get("tenancy") or {}
    sweeper = data.get("expiry_sweeper") or {}
    logging_section = data.get("logging") or {}

    database_url = database["url"]
    default_tenant = str(tenancy["default_tenant"]).strip()
    if not default_tenant:
        raise ValueError("tenancy.default_tenant must not be empty")

    mode = str(data.get("execution_mode", ExecutionMode.LIVE.value)).upper()
    try:
        execution_mode = ExecutionMode(mode)
    except ValueError as exc:
        raise ValueError(
            f"execution_mode must be one of {[m.value for m in ExecutionMode]}, got {mode!r}"
        ) from exc

    interval = float(sweeper.get("interval_seconds", 60))
    if interval <= 0:
        raise ValueError(f"expiry_sweeper.interval_seconds must be positive, got {interval}")

    log_level = str(logging_section.get("level", "INFO")).upper()
    if log_level not in LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {LOG_LEVELS}, got {log_level!r}")

    return EngineSettings(
        config_id=str(data["config_id"]),
        version=int(data["version"]),
        database_url=str(database_url),
        default_tenant=default_tenant,
        execution_mode=execution_mode,
        echo_sql=bool(database.get("echo", False)),
        sweep_interval_seconds=interval,
        log_level=log_level,
        checksum=compute_checksum(data),
    )


def load_settings(path: Path) -> EngineSettings:
    return parse_settings(load_yaml_file(path))
