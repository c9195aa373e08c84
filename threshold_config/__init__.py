"""
threshold_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files directly.

Architecture position:
    Configuration -- sits above ``threshold_kernel`` and below
    ``threshold_services``.  The kernel MUST NEVER import from
    ``threshold_config``.

Failure modes:
    - ``FileNotFoundError`` -- the settings file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing or invalid settings.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``THRESHOLD_CONFIG_TRACE`` log entry with the config id, version,
    checksum and execution mode.  Audit events record the execution mode,
    and the trace ties it to the exact settings file in force.
"""

from __future__ import annotations

import logging
from pathlib import Path

from threshold_config.loader import load_settings
from threshold_config.schema import EngineSettings

_logger = logging.getLogger("threshold_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> EngineSettings:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Settings file to load.  Defaults to
            threshold_config/sets/default.yaml.

    Returns:
        Frozen ``EngineSettings``.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    settings = load_settings(path)

    _logger.info(
        "THRESHOLD_CONFIG_TRACE",
        extra={
            "trace_type": "THRESHOLD_CONFIG_TRACE",
            "config_id": settings.config_id,
            "config_version": settings.version,
            "checksum": settings.checksum,
            "execution_mode": settings.execution_mode.value,
            "default_tenant": settings.default_tenant,
        },
    )
    return settings


__all__ = ["EngineSettings", "get_active_config"]
