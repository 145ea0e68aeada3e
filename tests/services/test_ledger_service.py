"""
Tests for the ledger write path and read side.

Covers:
- Posting, editing and deleting user movements
- Rejections: access, validation, lot mismatch, negative stock, derived rows
- Cross-facility effects (mirror + auto receipt follow every write)
- Effective (lot-resolved) view over legacy rows
- Reviewer notification, audit trail and log records
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_engines.projector import ProjectionFilters
from ledger_kernel.domain.movement import (
    AUTO_TRANSFER_ID_OFFSET,
    MIRROR_ID_OFFSET,
    MovementSource,
)
from ledger_kernel.exceptions import (
    DerivedMovementReadOnlyError,
    LotMismatchError,
    MovementNotFoundError,
    MovementValidationError,
    NegativeStockViolationError,
    OptimisticLockError,
    UnauthorizedEditError,
)
from ledger_services.collaborators import NotificationKind
from ledger_services.keys import movements_key
from ledger_services.orchestrator import LedgerOrchestrator
from ledger_services.repository import InMemoryDocumentRepository
from tests.conftest import (
    ADMIN,
    CANET_MANAGER,
    CANET_OPERATOR,
    HUARTE_MANAGER,
    VIEWER,
    movement_input,
    seed_master,
)

SV_CANET = ("SV", "SV-24A", "CANET")
SV_HUARTE = ("SV", "SV-24A", "HUARTE")


def _balances(services, facility):
    return {b.key: b.raw_balance for b in services.ledger.stock_balances(facility)}


def _receive(services, quantity=500):
    return services.ledger.post_movement("CANET", movement_input("entrada", quantity), CANET_OPERATOR)


def _transfer(quantity=500, **extra):
    return movement_input("traspaso", quantity, destination="HUARTE", **extra)


class TestPostMovement:
    def test_receipt_assigned_first_id(self, services):
        created = _receive(services)
        assert created.id == 1
        assert created.sign == 1
        assert created.source == MovementSource.MANUAL
        assert created.updated_by == CANET_OPERATOR.id
        assert _balances(services, "CANET")[SV_CANET] == Decimal("500")

    def test_ids_increment(self, services):
        _receive(services)
        second = services.ledger.post_movement("CANET", movement_input("venta", 10), CANET_OPERATOR)
        assert second.id == 2
        assert second.signed_quantity == Decimal("-10")

    def test_lot_token_canonicalized(self, services):
        created = services.ledger.post_movement(
            "CANET", movement_input("entrada", 5, lot="24a"), CANET_OPERATOR
        )
        assert created.lot == "SV-24A"

    def test_lot_not_in_master_rejected(self, services):
        with pytest.raises(LotMismatchError) as exc_info:
            services.ledger.post_movement(
                "CANET", movement_input("entrada", 5, lot="ZZ-99"), CANET_OPERATOR
            )
        assert exc_info.value.code == "LOT_MISMATCH"
        assert services.ledger.stored_movements("CANET") == []

    def test_lot_of_other_product_rejected(self, services):
        with pytest.raises(LotMismatchError):
            services.ledger.post_movement(
                "CANET", movement_input("entrada", 5, product="KT", lot="SV-24A"), CANET_OPERATOR
            )

    def test_missing_fields_rejected(self, services):
        with pytest.raises(MovementValidationError) as exc_info:
            services.ledger.post_movement(
                "CANET", movement_input("entrada", 5, product=" ", warehouse=""), CANET_OPERATOR
            )
        assert exc_info.value.fields == ["product", "warehouse"]

    @pytest.mark.parametrize("quantity", [0, -5])
    def test_non_positive_quantity_rejected(self, services, quantity):
        with pytest.raises(MovementValidationError):
            services.ledger.post_movement("CANET", movement_input("entrada", quantity), CANET_OPERATOR)

    def test_viewer_needs_grant(self, services):
        with pytest.raises(UnauthorizedEditError):
            services.ledger.post_movement("CANET", movement_input("entrada", 5), VIEWER)

        request = services.access.request_access("CANET", VIEWER)
        services.access.approve("CANET", request.id, CANET_MANAGER)
        created = services.ledger.post_movement("CANET", movement_input("entrada", 5), VIEWER)
        assert created.updated_by == VIEWER.id

    def test_non_stock_type_bypasses_guard(self, services):
        created = services.ledger.post_movement(
            "CANET", movement_input("rectificativa", 50), CANET_OPERATOR
        )
        assert created.id == 1
        assert _balances(services, "CANET") == {}


class TestNegativeStockGuard:
    def test_withdrawal_beyond_balance_rejected(self, services):
        _receive(services, 500)
        with pytest.raises(NegativeStockViolationError) as exc_info:
            services.ledger.post_movement("CANET", movement_input("venta", 800), CANET_OPERATOR)
        error = exc_info.value
        assert (error.product, error.lot, error.warehouse) == SV_CANET
        assert error.current_balance == Decimal("500")
        assert error.attempted_change == Decimal("-800")
        assert len(services.ledger.stored_movements("CANET")) == 1

    def test_withdrawal_of_exact_balance_allowed(self, services):
        _receive(services, 500)
        services.ledger.post_movement("CANET", movement_input("venta", 500), CANET_OPERATOR)
        assert _balances(services, "CANET")[SV_CANET] == Decimal("0")

    def test_guard_is_per_warehouse(self, services):
        _receive(services, 500)
        with pytest.raises(NegativeStockViolationError):
            services.ledger.post_movement(
                "CANET", movement_input("venta", 1, warehouse="HUARTE"), CANET_OPERATOR
            )

    def test_edit_that_drops_receipt_below_withdrawals_rejected(self, services):
        receipt = _receive(services, 500)
        services.ledger.post_movement("CANET", movement_input("venta", 300), CANET_OPERATOR)
        with pytest.raises(NegativeStockViolationError):
            services.ledger.edit_movement(
                "CANET", receipt.id, movement_input("entrada", 100), CANET_OPERATOR
            )

    def test_delete_of_needed_receipt_rejected(self, services):
        receipt = _receive(services, 500)
        services.ledger.post_movement("CANET", movement_input("venta", 300), CANET_OPERATOR)
        with pytest.raises(NegativeStockViolationError):
            services.ledger.delete_movement("CANET", receipt.id, CANET_OPERATOR)

    def test_derived_receipts_count_towards_stock(self, services):
        _receive(services, 500)
        services.ledger.post_movement("CANET", _transfer(500), CANET_OPERATOR)
        sale = services.ledger.post_movement(
            "HUARTE", movement_input("venta", 200, warehouse="HUARTE"), HUARTE_MANAGER
        )
        assert sale.facility == "HUARTE"
        assert _balances(services, "HUARTE")[SV_HUARTE] == Decimal("300")

    def test_inflow_into_legacy_negative_key_rejected(self, services, repository):
        repository.save(
            movements_key("CANET"),
            {"movements": [{"id": 1, "date": "", "movement_type": "venta", "product": "SV",
                            "lot": "SV-24A", "warehouse": "CANET", "quantity": "-40"}]},
            0,
            "import",
        )
        with pytest.raises(NegativeStockViolationError) as exc_info:
            services.ledger.post_movement("CANET", movement_input("entrada", 10), CANET_OPERATOR)
        assert exc_info.value.current_balance == Decimal("-40")
        assert [m.id for m in services.ledger.stored_movements("CANET")] == [1]

    def test_inflow_clearing_legacy_deficit_accepted(self, services, repository):
        repository.save(
            movements_key("CANET"),
            {"movements": [{"id": 1, "date": "", "movement_type": "venta", "product": "SV",
                            "lot": "SV-24A", "warehouse": "CANET", "quantity": "-40"}]},
            0,
            "import",
        )
        services.ledger.post_movement("CANET", movement_input("entrada", 40), CANET_OPERATOR)
        assert _balances(services, "CANET")[SV_CANET] == Decimal("0")


class TestTransferOriginGuard:
    """Huarte sells stock it received from Canet; Canet then shrinks or drops the transfer."""

    def _ship_and_sell(self, services):
        _receive(services, 500)
        transfer = services.ledger.post_movement("CANET", _transfer(500), CANET_OPERATOR)
        services.ledger.post_movement(
            "HUARTE", movement_input("venta", 400, warehouse="HUARTE"), HUARTE_MANAGER
        )
        return transfer

    def test_shrinking_transfer_below_target_sales_rejected(self, services):
        transfer = self._ship_and_sell(services)
        with pytest.raises(NegativeStockViolationError) as exc_info:
            services.ledger.edit_movement("CANET", transfer.id, _transfer(100), CANET_OPERATOR)
        assert (exc_info.value.product, exc_info.value.lot, exc_info.value.warehouse) == SV_HUARTE
        assert exc_info.value.current_balance == Decimal("100")
        assert exc_info.value.attempted_change == Decimal("-400")
        assert services.ledger.get_movement("CANET", transfer.id).quantity == Decimal("500")
        assert _balances(services, "HUARTE")[SV_HUARTE] == Decimal("100")

    def test_deleting_transfer_with_sold_receipt_rejected(self, services):
        transfer = self._ship_and_sell(services)
        with pytest.raises(NegativeStockViolationError):
            services.ledger.delete_movement("CANET", transfer.id, CANET_OPERATOR)
        assert transfer.id in {m.id for m in services.ledger.stored_movements("CANET")}
        huarte_ids = {m.id for m in services.ledger.stored_movements("HUARTE")}
        assert AUTO_TRANSFER_ID_OFFSET + transfer.id in huarte_ids

    def test_retyping_transfer_away_from_target_rejected(self, services):
        transfer = self._ship_and_sell(services)
        with pytest.raises(NegativeStockViolationError):
            services.ledger.edit_movement(
                "CANET", transfer.id, movement_input("venta", 500), CANET_OPERATOR
            )

    def test_shrinking_within_unsold_stock_accepted(self, services):
        transfer = self._ship_and_sell(services)
        services.ledger.edit_movement("CANET", transfer.id, _transfer(400), CANET_OPERATOR)
        assert _balances(services, "HUARTE")[SV_HUARTE] == Decimal("0")

    def test_rejection_logged_with_target_facility(self, services, captured_logs):
        transfer = self._ship_and_sell(services)
        with pytest.raises(NegativeStockViolationError):
            services.ledger.delete_movement("CANET", transfer.id, CANET_OPERATOR)
        records = [r for r in captured_logs() if r["message"] == "negative_target_stock_rejected"]
        assert records[0]["target_facility"] == "HUARTE"
        assert records[0]["warehouse"] == "HUARTE"


class TestTransferScenario:
    """Canet ships 500 units of SV / SV-24A to Huarte, then edits and deletes."""

    def test_transfer_creates_mirror_and_auto_receipt(self, services):
        _receive(services, 500)
        transfer = services.ledger.post_movement("CANET", _transfer(500), CANET_OPERATOR)

        huarte = {m.id: m for m in services.ledger.stored_movements("HUARTE")}
        mirror = huarte[MIRROR_ID_OFFSET + transfer.id]
        receipt = huarte[AUTO_TRANSFER_ID_OFFSET + transfer.id]
        assert mirror.source == MovementSource.MIRROR
        assert mirror.signed_quantity == Decimal("-500")
        assert receipt.source == MovementSource.AUTO_TRANSFER_IN
        assert receipt.warehouse == "HUARTE"
        assert receipt.signed_quantity == Decimal("500")
        assert receipt.counterparty == "CANET"
        assert receipt.origin_facility == "CANET"

        canet = _balances(services, "CANET")
        assert canet[SV_CANET] == Decimal("0")
        huarte_balances = _balances(services, "HUARTE")
        assert huarte_balances[SV_HUARTE] == Decimal("500")
        assert huarte_balances[SV_CANET] == Decimal("0")

    def test_edit_updates_both_derived_rows(self, services):
        _receive(services, 500)
        transfer = services.ledger.post_movement("CANET", _transfer(500), CANET_OPERATOR)
        edited = services.ledger.edit_movement("CANET", transfer.id, _transfer(300), CANET_OPERATOR)

        assert edited.id == transfer.id
        assert edited.source == MovementSource.EDITED
        huarte = {m.id: m for m in services.ledger.stored_movements("HUARTE")}
        assert huarte[MIRROR_ID_OFFSET + transfer.id].signed_quantity == Decimal("-300")
        assert huarte[AUTO_TRANSFER_ID_OFFSET + transfer.id].signed_quantity == Decimal("300")
        assert _balances(services, "CANET")[SV_CANET] == Decimal("200")

    def test_delete_removes_both_derived_rows(self, services):
        _receive(services, 500)
        transfer = services.ledger.post_movement("CANET", _transfer(500), CANET_OPERATOR)
        services.ledger.delete_movement("CANET", transfer.id, CANET_OPERATOR)

        huarte_ids = {m.id for m in services.ledger.stored_movements("HUARTE")}
        assert MIRROR_ID_OFFSET + transfer.id not in huarte_ids
        assert AUTO_TRANSFER_ID_OFFSET + transfer.id not in huarte_ids
        assert MIRROR_ID_OFFSET + 1 in huarte_ids
        with pytest.raises(MovementNotFoundError):
            services.ledger.get_movement("CANET", transfer.id)

    def test_transfer_into_own_warehouse_not_auto_received(self, services):
        services.ledger.post_movement(
            "CANET", movement_input("entrada", 50, warehouse="HUARTE"), CANET_OPERATOR
        )
        transfer = services.ledger.post_movement(
            "CANET", _transfer(50, warehouse="HUARTE"), CANET_OPERATOR
        )
        huarte_ids = {m.id for m in services.ledger.stored_movements("HUARTE")}
        assert MIRROR_ID_OFFSET + transfer.id in huarte_ids
        assert AUTO_TRANSFER_ID_OFFSET + transfer.id not in huarte_ids

    def test_reverse_route_mirrors_huarte_rows(self, services):
        receipt = movement_input("entrada", 20, warehouse="HUARTE")
        created = services.ledger.post_movement("HUARTE", receipt, HUARTE_MANAGER)
        canet = {m.id: m for m in services.ledger.stored_movements("CANET")}
        assert canet[MIRROR_ID_OFFSET + created.id].origin_facility == "HUARTE"


class TestDerivedRowsReadOnly:
    def test_derived_rows_cannot_be_edited_or_deleted(self, services):
        _receive(services, 500)
        transfer = services.ledger.post_movement("CANET", _transfer(500), CANET_OPERATOR)
        receipt_id = AUTO_TRANSFER_ID_OFFSET + transfer.id

        with pytest.raises(DerivedMovementReadOnlyError) as exc_info:
            services.ledger.edit_movement("HUARTE", receipt_id, _transfer(1), HUARTE_MANAGER)
        assert exc_info.value.source == "auto-transfer-in"
        with pytest.raises(DerivedMovementReadOnlyError):
            services.ledger.delete_movement("HUARTE", MIRROR_ID_OFFSET + transfer.id, HUARTE_MANAGER)

    def test_unknown_movement(self, services):
        with pytest.raises(MovementNotFoundError):
            services.ledger.edit_movement("CANET", 42, movement_input(), CANET_OPERATOR)
        with pytest.raises(MovementNotFoundError):
            services.ledger.delete_movement("CANET", 42, CANET_OPERATOR)


class TestEffectiveView:
    def test_legacy_lot_tokens_resolved_on_read(self, services, repository):
        repository.save(
            movements_key("CANET"),
            {"movements": [
                {"id": 1, "date": "1/3/2026", "movement_type": "entrada", "product": "sv",
                 "lot": "24A", "warehouse": "CANET", "quantity": "100", "sign": 1},
                {"id": 2, "date": "2026-03-02", "movement_type": "entrada", "product": "SV",
                 "lot": "99Z", "warehouse": "CANET", "quantity": "7", "sign": 1},
            ]},
            0,
            "import",
        )
        effective = services.ledger.effective_movements("CANET")
        assert [m.lot for m in effective.movements] == ["SV-24A", "99Z"]
        assert effective.flagged_ids == frozenset({2})
        assert services.ledger.stored_movements("CANET")[0].lot == "24A"

    def test_cutoff_filter(self, services):
        _receive(services, 500)
        services.ledger.post_movement(
            "CANET", movement_input("venta", 100, date_="2026-04-02"), CANET_OPERATOR
        )
        march = services.ledger.stock_balances(
            "CANET", ProjectionFilters(warehouse="CANET", cutoff=date(2026, 3, 15))
        )
        assert march[0].balance == Decimal("500")


class TestSideEffects:
    def test_reviewers_notified_except_actor(self, services, notifier):
        _receive(services)
        reviews = notifier.of_kind(NotificationKind.MOVEMENT_REVIEW)
        assert [n.user_id for n in reviews] == [CANET_MANAGER.id]
        assert "#1" in reviews[0].message

        notifier.clear()
        services.ledger.post_movement("CANET", movement_input("venta", 1), CANET_MANAGER)
        assert notifier.of_kind(NotificationKind.MOVEMENT_REVIEW) == []

    def test_audit_entries(self, services):
        created = _receive(services)
        services.ledger.delete_movement("CANET", created.id, ADMIN)
        entries = services.audit.entries("CANET", limit=2)
        assert [e.action for e in entries] == ["movement_deleted", "movement_created"]
        assert entries[0].user_id == ADMIN.id

    def test_write_logged_with_context(self, services, captured_logs):
        _receive(services)
        created = [r for r in captured_logs() if r["message"] == "movement_created"]
        assert created[0]["facility"] == "CANET"
        assert created[0]["actor_id"] == CANET_OPERATOR.id
        assert created[0]["signed_quantity"] == "500"

    def test_rejection_logged(self, services, captured_logs):
        with pytest.raises(NegativeStockViolationError):
            services.ledger.post_movement("CANET", movement_input("venta", 1), CANET_OPERATOR)
        assert any(r["message"] == "negative_stock_rejected" for r in captured_logs())


class _StuckTargetRepository(InMemoryDocumentRepository):
    """Every write to the HUARTE ledger loses the version race."""

    def save(self, key, payload, expected_version, actor_id):
        if key == movements_key("HUARTE") and actor_id == "sync":
            raise OptimisticLockError(key, expected_version, expected_version + 1)
        return super().save(key, payload, expected_version, actor_id)


class TestSyncFailureAfterWrite:
    def test_write_survives_failed_sync(self, config, notifier, identity, deterministic_clock):
        repository = _StuckTargetRepository(deterministic_clock)
        services = LedgerOrchestrator(repository, config, notifier, identity, deterministic_clock)
        for code in config.facility_codes:
            services.master_data.import_master_data(code, seed_master(), ADMIN)

        created = services.ledger.post_movement("CANET", movement_input("entrada", 5), CANET_OPERATOR)
        assert services.ledger.get_movement("CANET", created.id) == created
        assert services.ledger.stored_movements("HUARTE") == []
