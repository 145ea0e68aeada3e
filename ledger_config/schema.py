"""
Configuration schema (``ledger_config.schema``).

Frozen dataclasses describing one loaded configuration set.  They are built
only by ``ledger_config.loader`` and reach services through
``ledger_config.get_active_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from ledger_kernel.domain.master_data import MovementTypeDef, MovementTypeRegistry


@dataclass(frozen=True)
class FacilityDef:
    """One facility ledger and who may touch it."""

    code: str
    name: str
    aliases: tuple[str, ...]
    receiving_warehouse: str
    editor_roles: tuple[str, ...] = ()
    approver_roles: tuple[str, ...] = ()
    reviewer_roles: tuple[str, ...] = ()


@dataclass(frozen=True)
class SyncRouteDef:
    origin: str
    target: str
    start_date: date
    enabled: bool = True


@dataclass(frozen=True)
class RiskDef:
    critical_months: Decimal = Decimal("2")
    warning_months: Decimal = Decimal("4")
    expiry_warning_days: int = 90


@dataclass(frozen=True)
class LedgerConfig:
    """
    Root configuration object.

    ``checksum`` is the SHA-256 of the canonical JSON form of the source
    YAML and identifies the configuration in logs.
    """

    config_id: str
    version: int
    facilities: tuple[FacilityDef, ...]
    sync_routes: tuple[SyncRouteDef, ...]
    movement_types: tuple[MovementTypeDef, ...]
    edit_grant_hours: float = 6.0
    risk: RiskDef = field(default_factory=RiskDef)
    audit_log_limit: int = 500
    alert_recipient_roles: tuple[str, ...] = ()
    sync_max_retries: int = 3
    checksum: str = ""

    def facility(self, code: str) -> FacilityDef:
        """Facility by code (case-insensitive).

        Raises:
            KeyError: unknown facility code.
        """
        wanted = code.strip().upper()
        for facility in self.facilities:
            if facility.code == wanted:
                return facility
        raise KeyError(f"Unknown facility: {code!r}")

    @property
    def facility_codes(self) -> tuple[str, ...]:
        return tuple(f.code for f in self.facilities)

    def registry(self) -> MovementTypeRegistry:
        return MovementTypeRegistry(self.movement_types)

    def active_routes(self) -> tuple[SyncRouteDef, ...]:
        return tuple(r for r in self.sync_routes if r.enabled)

    def routes_from(self, origin: str) -> tuple[SyncRouteDef, ...]:
        wanted = origin.strip().upper()
        return tuple(r for r in self.active_routes() if r.origin == wanted)
