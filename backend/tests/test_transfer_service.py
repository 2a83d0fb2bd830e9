import asyncio

import pytest

from repairpos.errors import NotFoundError, StateError, ValidationError
from repairpos.extensions import db
from repairpos.models import EntityLog, InventoryIncrement, InventoryTransfer
from repairpos.models.inventory import (
    LOCATION_IN_TRANSIT,
    TRANSFER_TYPE_ADJUSTMENT,
    TRANSFER_TYPE_MULTI_STORE,
    TRANSFER_TYPE_TRANSFER,
)
from repairpos.services import inventory_service, transfer_service


USER_ID = 7


def _stock(product, location):
    return inventory_service.get_current_quantity(product.id, location.id)


def _adjust(product, location, amount, serials=None):
    return transfer_service.create_transfer(
        TRANSFER_TYPE_ADJUSTMENT, location.id, product.id, amount, USER_ID, "count", serials=serials
    )


def test_serialized_adjustment_places_every_serial(phone, store):
    serials = ["SN-1", "SN-2", "SN-3", "SN-4", "SN-5"]
    transfer = _adjust(phone, store, 5, serials)

    assert _stock(phone, store) == 5
    for serial_number in serials:
        assert inventory_service.get_serial(phone.id, serial_number).location_id == store.id
    assert transfer.from_location_id is None
    assert transfer.from_increment_id is None
    assert transfer.to_increment.amount == 5
    assert transfer.label == f"A-{transfer.id:04d}"


def test_transfer_moves_quantity_between_locations(widget, store, locations):
    in_transit = locations[LOCATION_IN_TRANSIT]
    _adjust(widget, store, 10)

    transfer = transfer_service.create_transfer(
        TRANSFER_TYPE_TRANSFER, in_transit.id, widget.id, 3, USER_ID, "to repair shop",
        from_location_id=store.id,
    )

    assert _stock(widget, store) == 7
    assert _stock(widget, in_transit) == 3
    assert transfer.from_increment.amount == -3
    assert transfer.to_increment.amount == 3
    assert transfer.from_increment.amount == -transfer.to_increment.amount
    assert transfer.label.startswith("T-")


def test_transfer_amount_sign_is_ignored(widget, store, backroom):
    _adjust(widget, store, 4)

    transfer = transfer_service.create_transfer(
        TRANSFER_TYPE_MULTI_STORE, backroom.id, widget.id, -4, USER_ID, from_location_id=store.id
    )

    assert transfer.from_increment.amount == -4
    assert transfer.to_increment.amount == 4
    assert transfer.label == f"MST-{transfer.id:04d}"


def test_negative_adjustment_removes_stock(widget, store):
    _adjust(widget, store, 5)
    _adjust(widget, store, -2)

    assert _stock(widget, store) == 3


def test_same_location_rejected_before_any_write(widget, store):
    _adjust(widget, store, 5)
    increments_before = db.session.query(InventoryIncrement).count()

    with pytest.raises(ValidationError) as excinfo:
        transfer_service.create_transfer(
            TRANSFER_TYPE_TRANSFER, store.id, widget.id, 1, USER_ID, from_location_id=store.id
        )
    assert excinfo.value.identifier == "inventory_transfer_same_location"
    assert db.session.query(InventoryIncrement).count() == increments_before
    assert db.session.query(InventoryTransfer).count() == 1


def test_transfer_requires_from_location(widget, store):
    with pytest.raises(ValidationError):
        transfer_service.create_transfer(TRANSFER_TYPE_TRANSFER, store.id, widget.id, 1, USER_ID)


def test_adjustment_rejects_from_location(widget, store, backroom):
    with pytest.raises(ValidationError):
        transfer_service.create_transfer(
            TRANSFER_TYPE_ADJUSTMENT, store.id, widget.id, 1, USER_ID, from_location_id=backroom.id
        )


def test_unknown_type_and_zero_amount(widget, store, backroom):
    with pytest.raises(ValidationError):
        transfer_service.create_transfer("teleport", store.id, widget.id, 1, USER_ID, from_location_id=backroom.id)
    with pytest.raises(ValidationError):
        _adjust(widget, store, 0)


def test_not_inventoried_product(labor, store):
    with pytest.raises(StateError) as excinfo:
        _adjust(labor, store, 1)
    assert excinfo.value.identifier == "inventory_product_not_inventoried"
    assert db.session.query(InventoryTransfer).count() == 0


def test_serial_count_mismatch(phone, store):
    with pytest.raises(ValidationError) as excinfo:
        _adjust(phone, store, 2, ["SN-1"])
    assert excinfo.value.identifier == "inventory_serialnumber_query"
    assert db.session.query(InventoryIncrement).count() == 0


def test_serialized_transfer_moves_serial_pointers(phone, store, backroom):
    _adjust(phone, store, 2, ["SN-1", "SN-2"])

    transfer_service.create_transfer(
        TRANSFER_TYPE_TRANSFER, backroom.id, phone.id, 1, USER_ID, from_location_id=store.id, serials=["SN-2"]
    )

    sn1 = inventory_service.get_serial(phone.id, "SN-1")
    sn2 = inventory_service.get_serial(phone.id, "SN-2")
    assert sn1.location_id == store.id
    assert sn2.location_id == backroom.id
    assert inventory_service.derive_serial_location(sn2) == backroom.id
    assert _stock(phone, store) == 1
    assert _stock(phone, backroom) == 1


def test_failed_to_side_rolls_back_from_side(widget, store):
    _adjust(widget, store, 5)
    increments_before = db.session.query(InventoryIncrement).count()

    with pytest.raises(NotFoundError):
        transfer_service.create_transfer(
            TRANSFER_TYPE_TRANSFER, 9999, widget.id, 2, USER_ID, from_location_id=store.id
        )

    assert _stock(widget, store) == 5
    assert db.session.query(InventoryIncrement).count() == increments_before


def test_serial_not_at_source_rolls_back(phone, store, backroom):
    _adjust(phone, store, 1, ["SN-1"])
    _adjust(phone, backroom, 1, ["SN-2"])

    with pytest.raises(ValidationError):
        transfer_service.create_transfer(
            TRANSFER_TYPE_TRANSFER, backroom.id, phone.id, 1, USER_ID, from_location_id=store.id, serials=["SN-2"]
        )

    assert _stock(phone, store) == 1
    assert _stock(phone, backroom) == 1
    assert inventory_service.get_serial(phone.id, "SN-2").location_id == backroom.id


def test_cancellation_leaves_no_partial_transfer(monkeypatch, widget, store, backroom):
    _adjust(widget, store, 5)
    increments_before = db.session.query(InventoryIncrement).count()

    def cancelled(**kwargs):
        raise asyncio.CancelledError()

    monkeypatch.setattr(transfer_service, "append_entity_log", cancelled)

    with pytest.raises(asyncio.CancelledError):
        transfer_service.create_transfer(
            TRANSFER_TYPE_TRANSFER, backroom.id, widget.id, 2, USER_ID, from_location_id=store.id
        )

    assert db.session.query(InventoryIncrement).count() == increments_before
    assert _stock(widget, store) == 5
    assert _stock(widget, backroom) == 0


def test_transfer_writes_entity_log(widget, store):
    transfer = _adjust(widget, store, 3)

    logs = db.session.query(EntityLog).filter_by(entity_type="inventory_transfer", entity_id=transfer.id).all()
    assert len(logs) == 1
    assert logs[0].user_id == USER_ID
    assert logs[0].user_note == "count"
    assert transfer.label in logs[0].system_note


def test_replace_adjustment_links_replacement(phone, store):
    original = _adjust(phone, store, 2, ["SN-1", "SN-2"])

    replacement = transfer_service.replace_adjustment(
        original.id, phone.id, 1, USER_ID, "recount", serials=["SN-3"]
    )

    old = db.session.get(InventoryTransfer, original.id)
    assert old.deleted_at is not None
    assert old.replaced_by_transfer_id == replacement.id
    assert old.to_increment.deleted_at is not None
    assert _stock(phone, store) == 1
    assert inventory_service.get_serial(phone.id, "SN-1").location_id is None
    assert inventory_service.get_serial(phone.id, "SN-3").location_id == store.id
    assert [t.id for t in transfer_service.list_transfers(phone.id)] == [replacement.id]


def test_remove_adjustment(widget, store):
    adjustment = _adjust(widget, store, 4)

    transfer_service.remove_adjustment(adjustment.id, widget.id, USER_ID, "entered twice")

    assert _stock(widget, store) == 0
    with pytest.raises(NotFoundError):
        transfer_service.get_transfer(adjustment.id)


def test_only_adjustments_can_be_edited(widget, store, backroom):
    _adjust(widget, store, 4)
    transfer = transfer_service.create_transfer(
        TRANSFER_TYPE_TRANSFER, backroom.id, widget.id, 1, USER_ID, from_location_id=store.id
    )

    with pytest.raises(StateError) as excinfo:
        transfer_service.remove_adjustment(transfer.id, widget.id, USER_ID)
    assert excinfo.value.identifier == "inventory_edit_remove_adjustments"

    with pytest.raises(StateError):
        transfer_service.replace_adjustment(transfer.id, widget.id, 2, USER_ID)


def test_adjustment_addressed_through_wrong_product(widget, phone, store):
    adjustment = _adjust(widget, store, 1)

    with pytest.raises(StateError) as excinfo:
        transfer_service.remove_adjustment(adjustment.id, phone.id, USER_ID)
    assert excinfo.value.identifier == "inventory_mismatch_productid_increment"
    assert _stock(widget, store) == 1
