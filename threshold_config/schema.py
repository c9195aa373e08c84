"""
EngineSettings schema.

The typed, frozen form of a threshold engine configuration file.  YAML is
parsed into this type by the loader; nothing else in the system reads
configuration files.

Policy constants (the 25% magnitude limit, the 24-hour request window,
the hardcoded default thresholds, the 80% approaching level) are code,
not configuration: a deployment cannot weaken dual control by editing YAML.
"""

from __future__ import annotations

from dataclasses import dataclass

from threshold_kernel.domain.events import ExecutionMode

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class EngineSettings:
    """Runtime settings for one deployment of the threshold engine."""

    config_id: str
    version: int
    database_url: str
    default_tenant: str
    execution_mode: ExecutionMode = ExecutionMode.LIVE
    echo_sql: bool = False
    sweep_interval_seconds: float = 60.0
    log_level: str = "INFO"
    checksum: str = ""
