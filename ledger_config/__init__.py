"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services never read YAML files or environment
    variables themselves.

Architecture position:
    Configuration -- sits above ``ledger_kernel`` and below
    ``ledger_services``.  The kernel MUST NEVER import from ``ledger_config``.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``ValueError`` / ``KeyError`` -- schema or structural validation
      failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``LEDGER_CONFIG_TRACE`` log entry with the config id, version and
    checksum.
"""

from __future__ import annotations

from pathlib import Path

from ledger_config.loader import load_config_file
from ledger_config.schema import FacilityDef, LedgerConfig, RiskDef, SyncRouteDef
from ledger_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | None = None) -> LedgerConfig:
    """
    The ONLY public configuration entrypoint.

    Args:
        path: Override path to a configuration YAML file.  Defaults to
            ``ledger_config/sets/default.yaml``.

    Returns:
        Frozen ``LedgerConfig``.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If configuration validation fails.
    """
    config = load_config_file(path or _DEFAULT_CONFIG_PATH)

    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "facility_count": len(config.facilities),
            "route_count": len(config.active_routes()),
            "movement_type_count": len(config.movement_types),
        },
    )
    return config


__all__ = [
    "FacilityDef",
    "LedgerConfig",
    "RiskDef",
    "SyncRouteDef",
    "get_active_config",
]
