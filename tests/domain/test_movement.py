"""
Tests for the Movement value object and its constructors.

Covers:
- Signed quantity and origin invariants
- Manual / edited constructors
- Mirror and auto-transfer-in derivation
- Stored-row translation, including legacy negative quantities
- User id sequence
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ledger_kernel.domain.movement import (
    AUTO_TRANSFER_ID_OFFSET,
    MIRROR_ID_OFFSET,
    Movement,
    MovementInput,
    MovementSource,
    next_user_id,
)

AT = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _input(**overrides) -> MovementInput:
    fields = dict(
        date="2026-03-01",
        movement_type="traspaso",
        product="sv",
        lot=" SV-24A ",
        warehouse="CANET",
        quantity=Decimal("500"),
        destination="Huarte",
    )
    fields.update(overrides)
    return MovementInput(**fields)


def _manual(movement_id: int = 7, sign: int = -1, **overrides) -> Movement:
    return Movement.manual(
        movement_id, "CANET", _input(**overrides).normalized(),
        sign=sign, at=AT, actor_id="u-1",
    )


class TestMovementInput:
    def test_missing_fields_lists_blank_required_fields(self):
        data = _input(product="  ", warehouse="")
        assert data.missing_fields() == ["product", "warehouse"]

    def test_normalized_trims_and_uppercases_product(self):
        data = _input(quantity="12.5", note="  ").normalized()
        assert data.product == "SV"
        assert data.lot == "SV-24A"
        assert data.quantity == Decimal("12.5")
        assert data.note is None


class TestMovementInvariants:
    def test_signed_quantity(self):
        movement = _manual(sign=-1)
        assert movement.signed_quantity == Decimal("-500")

    def test_rejects_invalid_sign(self):
        with pytest.raises(ValueError, match="sign"):
            _manual(sign=0)

    def test_rejects_negative_quantity(self):
        with pytest.raises(ValueError, match="quantity"):
            Movement(1, "CANET", "", "entrada", "SV", "L", "W", Decimal("-1"), 1)

    def test_derived_row_requires_origin(self):
        with pytest.raises(ValueError, match="origin"):
            Movement(
                MIRROR_ID_OFFSET + 1, "HUARTE", "", "entrada", "SV", "L", "W",
                Decimal("1"), 1, source=MovementSource.MIRROR,
            )

    def test_user_row_cannot_carry_origin(self):
        with pytest.raises(ValueError, match="origin_id"):
            Movement(1, "CANET", "", "entrada", "SV", "L", "W", Decimal("1"), 1, origin_id=3)

    def test_unparseable_date_has_no_movement_date(self):
        assert _manual(date="not a date").movement_date is None


class TestEdited:
    def test_edited_keeps_id_and_creation_time(self):
        original = _manual()
        later = datetime(2026, 3, 2, tzinfo=timezone.utc)
        edited = Movement.edited(
            original, _input(quantity=Decimal("300")).normalized(),
            sign=-1, at=later, actor_id="u-2",
        )
        assert edited.id == original.id
        assert edited.source == MovementSource.EDITED
        assert edited.created_at == AT
        assert edited.updated_at == later
        assert edited.updated_by == "u-2"

    def test_derived_rows_cannot_be_edited(self):
        mirror = Movement.mirror_of(_manual(), "HUARTE", "SV-24A")
        with pytest.raises(ValueError, match="Derived"):
            Movement.edited(mirror, _input().normalized(), sign=-1, at=AT, actor_id="u")


class TestDerivedRows:
    def test_mirror_copies_origin_into_target(self):
        origin = _manual()
        mirror = Movement.mirror_of(origin, "HUARTE", "SV-24A")
        assert mirror.id == MIRROR_ID_OFFSET + 7
        assert mirror.facility == "HUARTE"
        assert mirror.source == MovementSource.MIRROR
        assert mirror.origin_id == 7
        assert mirror.origin_facility == "CANET"
        assert mirror.signed_quantity == origin.signed_quantity
        assert mirror.warehouse == "CANET"

    def test_auto_transfer_in_is_positive_receipt(self):
        origin = _manual(note="pallet 3")
        receipt = Movement.auto_transfer_in_for(origin, "HUARTE", "HUARTE", "SV-24A")
        assert receipt.id == AUTO_TRANSFER_ID_OFFSET + 7
        assert receipt.source == MovementSource.AUTO_TRANSFER_IN
        assert receipt.warehouse == "HUARTE"
        assert receipt.signed_quantity == Decimal("500")
        assert receipt.counterparty == "CANET"
        assert receipt.destination == "HUARTE"
        assert receipt.note == "pallet 3 | Auto receipt from transfer CANET->HUARTE"

    def test_derived_row_cannot_be_an_origin(self):
        mirror = Movement.mirror_of(_manual(), "HUARTE", "SV-24A")
        with pytest.raises(ValueError, match="cannot be an origin"):
            Movement.mirror_of(mirror, "CANET", "SV-24A")


class TestDocumentTranslation:
    def test_round_trip_preserves_signature(self):
        origin = _manual()
        restored = Movement.from_dict(origin.to_dict())
        assert restored.signature() == origin.signature()
        assert restored.created_at == origin.created_at

    def test_legacy_negative_quantity_without_sign(self):
        row = {"id": 3, "movement_type": "venta", "product": "sv", "lot": "L1",
               "warehouse": "CANET", "quantity": "-40"}
        movement = Movement.from_dict(row, "CANET")
        assert movement.quantity == Decimal("40")
        assert movement.sign == -1
        assert movement.facility == "CANET"
        assert movement.product == "SV"
        assert movement.source == MovementSource.MANUAL

    @pytest.mark.parametrize("sign_raw, expected", [("-1.0", -1), ("1.0", 1), (-1, -1), ("-1", -1)])
    def test_legacy_sign_formats(self, sign_raw, expected):
        row = {"id": 4, "movement_type": "venta", "product": "SV", "lot": "L1",
               "warehouse": "CANET", "quantity": "5", "sign": sign_raw}
        assert Movement.from_dict(row, "CANET").sign == expected


class TestNextUserId:
    def test_empty_ledger_starts_at_one(self):
        assert next_user_id([]) == 1

    def test_derived_ids_do_not_feed_sequence(self):
        origin = _manual(movement_id=4)
        mirror = Movement.mirror_of(_manual(movement_id=90), "CANET", "SV-24A")
        assert next_user_id([origin, mirror]) == 5
