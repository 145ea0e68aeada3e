"""
Tests for master table maintenance.
"""

from decimal import Decimal

import pytest

from ledger_kernel.domain.master_data import (
    LotMasterEntry,
    MovementCategory,
    MovementTypeDef,
    ProductMaster,
)
from ledger_kernel.exceptions import DuplicateMasterRecordError, UnauthorizedEditError
from tests.conftest import ADMIN, CANET_OPERATOR, HUARTE_MANAGER, VIEWER, movement_input


class TestLots:
    def test_add_lot_cleans_input(self, services):
        entry = services.master_data.add_lot("canet", LotMasterEntry(" sv ", " SV-25C "), CANET_OPERATOR)
        assert (entry.product, entry.lot) == ("SV", "SV-25C")
        lots = [(e.product, e.lot) for e in services.master_data.master_data("CANET").lots]
        assert ("SV", "SV-25C") in lots

    def test_normalized_duplicate_rejected(self, services):
        with pytest.raises(DuplicateMasterRecordError) as exc_info:
            services.master_data.add_lot("CANET", LotMasterEntry("SV", "sv24a"), ADMIN)
        assert exc_info.value.code == "DUPLICATE_MASTER_RECORD"
        assert len(services.master_data.master_data("CANET").lots) == 3

    def test_same_code_different_product_allowed(self, services):
        services.master_data.add_lot("CANET", LotMasterEntry("KT", "SV-24A"), ADMIN)
        assert len(services.master_data.master_data("CANET").lots) == 4

    def test_lots_are_per_facility(self, services):
        services.master_data.add_lot("HUARTE", LotMasterEntry("SV", "SV-25H"), HUARTE_MANAGER)
        canet_lots = {e.lot for e in services.master_data.master_data("CANET").lots}
        assert "SV-25H" not in canet_lots

    def test_blank_lot_rejected(self, services):
        with pytest.raises(ValueError):
            services.master_data.add_lot("CANET", LotMasterEntry("SV", "  "), ADMIN)

    def test_new_lot_usable_for_postings(self, services):
        services.master_data.add_lot("CANET", LotMasterEntry("SV", "SV-25C"), ADMIN)
        movement = services.ledger.post_movement(
            "CANET", movement_input("entrada", 10, lot="25C"), CANET_OPERATOR
        )
        assert movement.lot == "SV-25C"


class TestProductsWarehousesClients:
    def test_duplicate_product_rejected(self, services):
        with pytest.raises(DuplicateMasterRecordError):
            services.master_data.add_product("CANET", ProductMaster("SV"), ADMIN)

    def test_add_product(self, services):
        services.master_data.add_product(
            "CANET", ProductMaster("GL", monthly_consumption=Decimal("40")), ADMIN
        )
        codes = [p.product for p in services.master_data.products("CANET")]
        assert codes == ["SV", "KT", "GL"]

    def test_warehouse_upper_cased_and_unique(self, services):
        warehouse = services.master_data.add_warehouse("CANET", " almacen sur ", ADMIN)
        assert warehouse.name == "ALMACEN SUR"
        with pytest.raises(DuplicateMasterRecordError):
            services.master_data.add_warehouse("CANET", "Almacén Sur", ADMIN)

    def test_client_duplicate_ignores_case_and_accents(self, services):
        with pytest.raises(DuplicateMasterRecordError):
            services.master_data.add_client("CANET", " farmacia central ", ADMIN)
        services.master_data.add_client("CANET", "Hospital Norte", ADMIN)
        assert services.master_data.master_data("CANET").clients == (
            "Farmacia Central",
            "Hospital Norte",
        )


class TestMovementTypes:
    def test_custom_type_extends_registry(self, services):
        services.master_data.add_movement_type(
            "CANET",
            MovementTypeDef("muestra", sign=-1, category=MovementCategory.OTHER),
            ADMIN,
        )
        assert services.master_data.registry("CANET").sign_for("Muestra") == -1
        assert "muestra" not in services.master_data.registry("HUARTE")

    def test_custom_type_drives_posting_sign(self, services):
        services.master_data.add_movement_type("CANET", MovementTypeDef("muestra", sign=-1), ADMIN)
        services.ledger.post_movement("CANET", movement_input("entrada", 50), CANET_OPERATOR)
        sample = services.ledger.post_movement("CANET", movement_input("muestra", 5), CANET_OPERATOR)
        assert sample.signed_quantity == Decimal("-5")

    def test_configured_type_cannot_be_shadowed(self, services):
        with pytest.raises(DuplicateMasterRecordError):
            services.master_data.add_movement_type("CANET", MovementTypeDef("VENTA", sign=1), ADMIN)

    def test_custom_type_unique(self, services):
        services.master_data.add_movement_type("CANET", MovementTypeDef("muestra", sign=-1), ADMIN)
        with pytest.raises(DuplicateMasterRecordError):
            services.master_data.add_movement_type("CANET", MovementTypeDef("Muestra"), ADMIN)


class TestGuards:
    def test_write_requires_edit_access(self, services):
        with pytest.raises(UnauthorizedEditError):
            services.master_data.add_client("CANET", "Otra", VIEWER)
        with pytest.raises(UnauthorizedEditError):
            services.master_data.add_lot("HUARTE", LotMasterEntry("SV", "X1"), CANET_OPERATOR)

    def test_writes_audited(self, services):
        services.master_data.add_lot("CANET", LotMasterEntry("SV", "SV-25C"), CANET_OPERATOR)
        latest = services.audit.entries("CANET", limit=1)[0]
        assert latest.action == "lot_added"
        assert latest.details == "SV/SV-25C"
        assert latest.user_id == CANET_OPERATOR.id
