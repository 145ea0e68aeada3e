"""
ledger_services.master_data_service -- Facility master tables.

Responsibility:
    Read and maintain each facility's lots, products, warehouses, clients
    and locally added movement types.  All writes are gated by edit access,
    reject duplicates and are audited.

Invariants enforced:
    - Lot identity is (product, normalized lot code): "SV-24A" and "sv24a"
      are the same lot of the same product.
    - Warehouse, client and movement-type names are unique
      case-insensitively.  A movement type may not shadow a configured one.
    - The effective movement-type registry is the configured registry
      extended with the facility's persisted types.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable

from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.access import Actor
from ledger_kernel.domain.master_data import (
    LotMasterEntry,
    MasterData,
    MovementTypeDef,
    MovementTypeRegistry,
    ProductMaster,
    Warehouse,
)
from ledger_kernel.domain.normalize import clean, normalize_lot_token, normalize_search
from ledger_kernel.exceptions import DuplicateMasterRecordError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_services.access_service import AccessService
from ledger_services.audit_log import AuditLog
from ledger_services.keys import master_key
from ledger_services.repository import DocumentRepository, update_document

logger = get_logger("services.master_data")


def parse_master(payload: dict[str, Any]) -> MasterData:
    return MasterData(
        lots=tuple(LotMasterEntry.from_dict(row) for row in payload.get("lots", [])),
        products=tuple(ProductMaster.from_dict(row) for row in payload.get("products", [])),
        warehouses=tuple(Warehouse.from_dict(row) for row in payload.get("warehouses", [])),
        clients=tuple(clean(c) for c in payload.get("clients", []) if clean(c)),
        movement_types=tuple(
            MovementTypeDef.from_dict(row) for row in payload.get("movement_types", [])
        ),
    )


def master_payload(master: MasterData) -> dict[str, Any]:
    return {
        "lots": [e.to_dict() for e in master.lots],
        "products": [p.to_dict() for p in master.products],
        "warehouses": [w.to_dict() for w in master.warehouses],
        "clients": list(master.clients),
        "movement_types": [t.to_dict() for t in master.movement_types],
    }


class MasterDataService:
    def __init__(
        self,
        repository: DocumentRepository,
        config: LedgerConfig,
        access: AccessService,
        audit: AuditLog,
    ):
        self._repository = repository
        self._config = config
        self._access = access
        self._audit = audit

    def master_data(self, facility: str) -> MasterData:
        code = self._config.facility(facility).code
        return parse_master(self._repository.load(master_key(code)).payload)

    def registry(self, facility: str) -> MovementTypeRegistry:
        return self._config.registry().merged_with(self.master_data(facility).movement_types)

    def products(self, facility: str) -> tuple[ProductMaster, ...]:
        return self.master_data(facility).products

    # -- Writes -------------------------------------------------------------

    def add_lot(self, facility: str, entry: LotMasterEntry, actor: Actor) -> LotMasterEntry:
        product = clean(entry.product).upper()
        lot = clean(entry.lot)
        if not product or not lot:
            raise ValueError("A lot needs both a product and a lot code")
        entry = replace(entry, product=product, lot=lot)
        wanted = (product, normalize_lot_token(lot))

        def change(master: MasterData) -> MasterData:
            for existing in master.lots:
                if (existing.product, normalize_lot_token(existing.lot)) == wanted:
                    raise DuplicateMasterRecordError("lots", f"{product}/{existing.lot}")
            return master.with_lots([*master.lots, entry])

        self._write(facility, actor, change, "lot_added", f"{product}/{lot}")
        return entry

    def add_product(self, facility: str, product: ProductMaster, actor: Actor) -> ProductMaster:
        def change(master: MasterData) -> MasterData:
            if master.product(product.product) is not None:
                raise DuplicateMasterRecordError("products", product.product)
            return replace(master, products=(*master.products, product))

        self._write(facility, actor, change, "product_added", product.product)
        return product

    def add_movement_type(
        self, facility: str, type_def: MovementTypeDef, actor: Actor
    ) -> MovementTypeDef:
        name = normalize_search(type_def.name)
        if not name:
            raise ValueError("A movement type needs a name")

        def change(master: MasterData) -> MasterData:
            known = [t.name for t in self._config.movement_types] + [
                t.name for t in master.movement_types
            ]
            if any(normalize_search(n) == name for n in known):
                raise DuplicateMasterRecordError("movement_types", type_def.name)
            return replace(master, movement_types=(*master.movement_types, type_def))

        self._write(
            facility, actor, change, "movement_type_added",
            f"{type_def.name} sign={type_def.sign:+d} affects_stock={type_def.affects_stock}",
        )
        return type_def

    def add_warehouse(self, facility: str, name: str, actor: Actor) -> Warehouse:
        warehouse = Warehouse(name=clean(name).upper())
        if not warehouse.name:
            raise ValueError("A warehouse needs a name")

        def change(master: MasterData) -> MasterData:
            if any(normalize_search(w.name) == normalize_search(warehouse.name) for w in master.warehouses):
                raise DuplicateMasterRecordError("warehouses", warehouse.name)
            return replace(master, warehouses=(*master.warehouses, warehouse))

        self._write(facility, actor, change, "warehouse_added", warehouse.name)
        return warehouse

    def add_client(self, facility: str, name: str, actor: Actor) -> str:
        client = clean(name)
        if not client:
            raise ValueError("A client needs a name")

        def change(master: MasterData) -> MasterData:
            if any(normalize_search(c) == normalize_search(client) for c in master.clients):
                raise DuplicateMasterRecordError("clients", client)
            return replace(master, clients=(*master.clients, client))

        self._write(facility, actor, change, "client_added", client)
        return client

    def import_master_data(self, facility: str, master: MasterData, actor: Actor) -> None:
        """Replace the facility's master tables wholesale (initial load)."""
        self._write(
            facility, actor, lambda _current: master, "master_data_imported",
            f"{len(master.lots)} lots, {len(master.products)} products",
        )

    # -- Internals ----------------------------------------------------------

    def _write(
        self,
        facility: str,
        actor: Actor,
        change: Callable[[MasterData], MasterData],
        action: str,
        details: str,
    ) -> None:
        code = self._config.facility(facility).code
        with LogContext.bind(actor_id=actor.id, facility=code):
            self._access.require_edit(code, actor)

            def mutate(payload: dict[str, Any]):
                return master_payload(change(parse_master(payload))), None

            update_document(
                self._repository, master_key(code), mutate, actor.id,
                max_retries=self._config.sync_max_retries,
            )
            logger.info("master_data_changed", extra={"action": action, "details": details})
            self._audit.append(code, actor, action, details)

