"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen dataclasses of
``ledger_config.schema``.  Runtime callers go through
``ledger_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required keys have no silent defaults.
* Every sync route references declared facilities, and origin != target.
* ``compute_checksum`` is deterministic for identical YAML content.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import FacilityDef, LedgerConfig, RiskDef, SyncRouteDef
from ledger_kernel.domain.master_data import MovementTypeDef


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    """
    Parse a date from YAML (string or date object).

    Raises:
        ValueError: if ``value`` is not a valid date representation.
    """
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def _roles(data: dict[str, Any], key: str) -> tuple[str, ...]:
    return tuple(str(r).strip() for r in data.get(key, ()) if str(r).strip())


def parse_facility(data: dict[str, Any]) -> FacilityDef:
    code = str(data["code"]).strip().upper()
    aliases = tuple(str(a) for a in data.get("aliases", ())) or (code.lower(),)
    return FacilityDef(
        code=code,
        name=data.get("name", code.title()),
        aliases=aliases,
        receiving_warehouse=str(data.get("receiving_warehouse", code)),
        editor_roles=_roles(data, "editor_roles"),
        approver_roles=_roles(data, "approver_roles"),
        reviewer_roles=_roles(data, "reviewer_roles"),
    )


def parse_route(data: dict[str, Any]) -> SyncRouteDef:
    return SyncRouteDef(
        origin=str(data["origin"]).strip().upper(),
        target=str(data["target"]).strip().upper(),
        start_date=parse_date(data["start_date"]),
        enabled=bool(data.get("enabled", True)),
    )


def parse_risk(data: dict[str, Any]) -> RiskDef:
    return RiskDef(
        critical_months=Decimal(str(data.get("critical_months", "2"))),
        warning_months=Decimal(str(data.get("warning_months", "4"))),
        expiry_warning_days=int(data.get("expiry_warning_days", 90)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """
    Build a ``LedgerConfig`` from the parsed YAML mapping.

    Raises:
        KeyError: if required keys are missing.
        ValueError: on inconsistent routes or facility declarations.
    """
    facilities = tuple(parse_facility(f) for f in data["facilities"])
    codes = [f.code for f in facilities]
    if len(set(codes)) != len(codes):
        raise ValueError(f"Duplicate facility codes: {codes}")

    routes = tuple(parse_route(r) for r in data.get("sync_routes", ()))
    for route in routes:
        if route.origin not in codes or route.target not in codes:
            raise ValueError(
                f"Sync route {route.origin}->{route.target} references an undeclared facility"
            )
        if route.origin == route.target:
            raise ValueError(f"Sync route {route.origin}->{route.target} loops onto itself")

    movement_types = tuple(MovementTypeDef.from_dict(t) for t in data.get("movement_types", ()))

    access = data.get("access", {})
    alerts = data.get("alerts", {})
    return LedgerConfig(
        config_id=str(data["config_id"]),
        version=int(data.get("version", 1)),
        facilities=facilities,
        sync_routes=routes,
        movement_types=movement_types,
        edit_grant_hours=float(access.get("edit_grant_hours", 6)),
        risk=parse_risk(data.get("risk", {})),
        audit_log_limit=int(data.get("audit_log_limit", 500)),
        alert_recipient_roles=_roles(alerts, "recipient_roles"),
        sync_max_retries=int(data.get("sync_max_retries", 3)),
        checksum=compute_checksum(data),
    )


def load_config_file(path: Path) -> LedgerConfig:
    return parse_config(load_yaml_file(path))
