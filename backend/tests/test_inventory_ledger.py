from datetime import datetime, timedelta

import pytest

from repairpos.errors import ConfigurationError, NotFoundError, StateError, ValidationError
from repairpos.extensions import db
from repairpos.models import InventoryIncrement, InventoryLocation, ProductSerialNumber
from repairpos.models.inventory import LOCATION_SOLD, SYSTEM_LOCATIONS
from repairpos.services import audit_service, inventory_service, location_service


def test_quantity_is_zero_without_increments(widget, store):
    assert inventory_service.get_current_quantity(widget.id, store.id) == 0


def test_quantity_is_sum_of_increments(widget, store):
    inventory_service.record_increment(widget.id, store.id, 5)
    inventory_service.record_increment(widget.id, store.id, -2)
    inventory_service.record_increment(widget.id, store.id, 7)
    db.session.commit()

    assert inventory_service.get_current_quantity(widget.id, store.id) == 10


def test_quantity_as_of_is_inclusive(widget, store):
    t0 = datetime(2024, 1, 1, 12, 0, 0)
    inventory_service.record_increment(widget.id, store.id, 4, occurred_at=t0)
    inventory_service.record_increment(widget.id, store.id, 6, occurred_at=t0 + timedelta(hours=1))
    db.session.commit()

    assert inventory_service.get_current_quantity(widget.id, store.id, as_of=t0 - timedelta(seconds=1)) == 0
    assert inventory_service.get_current_quantity(widget.id, store.id, as_of=t0) == 4
    assert inventory_service.get_current_quantity(widget.id, store.id, as_of="2024-01-01T13:00:00Z") == 10


def test_quantity_unknown_ids(widget, store):
    with pytest.raises(NotFoundError):
        inventory_service.get_current_quantity(9999, store.id)
    with pytest.raises(NotFoundError):
        inventory_service.get_current_quantity(widget.id, 9999)


def test_not_inventoried_product_is_rejected(labor, store):
    with pytest.raises(StateError) as excinfo:
        inventory_service.record_increment(labor.id, store.id, 1)
    assert excinfo.value.identifier == "inventory_product_not_inventoried"
    assert excinfo.value.status_code == 409


def test_zero_amount_is_rejected(widget, store):
    with pytest.raises(ValidationError):
        inventory_service.record_increment(widget.id, store.id, 0)


def test_negative_stock_is_rejected_at_user_locations(widget, store):
    inventory_service.record_increment(widget.id, store.id, 2)

    with pytest.raises(ValidationError) as excinfo:
        inventory_service.record_increment(widget.id, store.id, -3)
    assert excinfo.value.identifier == "inventory_insufficient_quantity"


def test_system_locations_may_go_negative(widget, locations):
    sold = locations[LOCATION_SOLD]
    inventory_service.record_increment(widget.id, sold.id, -1)
    db.session.commit()

    assert inventory_service.get_current_quantity(widget.id, sold.id) == -1


def test_negative_stock_allowed_when_configured(app, widget, store):
    app.config["ALLOW_NEGATIVE_INVENTORY"] = True
    try:
        inventory_service.record_increment(widget.id, store.id, -3)
        db.session.commit()
    finally:
        app.config["ALLOW_NEGATIVE_INVENTORY"] = False

    assert inventory_service.get_current_quantity(widget.id, store.id) == -3


def test_serials_place_and_remove(phone, store):
    increment = inventory_service.record_increment(phone.id, store.id, 2, ["SN-1", "SN-2"])
    db.session.commit()

    serials = inventory_service.list_serials(phone.id, store.id)
    assert sorted(s.serial_number for s in serials) == ["SN-1", "SN-2"]
    assert sorted(s.serial_number for s in increment.serials) == ["SN-1", "SN-2"]

    inventory_service.record_increment(phone.id, store.id, -1, ["SN-1"])
    db.session.commit()

    sn1 = inventory_service.get_serial(phone.id, "SN-1")
    assert sn1.location_id is None
    assert inventory_service.derive_serial_location(sn1) is None
    sn2 = inventory_service.get_serial(phone.id, "SN-2")
    assert sn2.location_id == store.id
    assert inventory_service.derive_serial_location(sn2) == store.id


def test_serial_count_must_match_amount(phone, store):
    with pytest.raises(ValidationError) as excinfo:
        inventory_service.record_increment(phone.id, store.id, 3, ["SN-1", "SN-2"])
    assert excinfo.value.identifier == "inventory_serialnumber_query"


def test_serials_rejected_for_plain_product(widget, store):
    with pytest.raises(ValidationError) as excinfo:
        inventory_service.record_increment(widget.id, store.id, 1, ["SN-1"])
    assert excinfo.value.identifier == "inventory_serialnumber_query"


def test_duplicate_serials_rejected(phone, store):
    with pytest.raises(ValidationError):
        inventory_service.record_increment(phone.id, store.id, 2, ["SN-1", " SN-1 "])


def test_serial_cannot_be_in_two_places(phone, store, backroom):
    inventory_service.record_increment(phone.id, store.id, 1, ["SN-1"])
    db.session.commit()

    with pytest.raises(ValidationError) as excinfo:
        inventory_service.record_increment(phone.id, backroom.id, 1, ["SN-1"])
    assert excinfo.value.identifier == "inventory_serial_in_stock"


def test_removing_serial_from_wrong_location(phone, store, backroom):
    inventory_service.record_increment(phone.id, store.id, 1, ["SN-1"])
    inventory_service.record_increment(phone.id, backroom.id, 1, ["SN-2"])
    db.session.commit()

    with pytest.raises(ValidationError) as excinfo:
        inventory_service.record_increment(phone.id, backroom.id, -1, ["SN-1"])
    assert excinfo.value.identifier == "inventory_serial_wrong_location"


def test_removing_unknown_serial(phone, store):
    inventory_service.record_increment(phone.id, store.id, 1, ["SN-1"])

    with pytest.raises(NotFoundError):
        inventory_service.record_increment(phone.id, store.id, -1, ["SN-404"])


def test_serial_is_sold_in_sold_location(phone, locations):
    sold = locations[LOCATION_SOLD]
    inventory_service.record_increment(phone.id, sold.id, 1, ["SN-9"])
    db.session.commit()

    assert inventory_service.get_serial(phone.id, "SN-9").is_sold is True


def test_void_increment_reverses_quantity_and_serials(phone, store):
    increment = inventory_service.record_increment(phone.id, store.id, 1, ["SN-1"])
    db.session.commit()

    inventory_service.void_increment(increment)
    db.session.commit()

    assert inventory_service.get_current_quantity(phone.id, store.id) == 0
    serial = inventory_service.get_serial(phone.id, "SN-1")
    assert serial.location_id is None
    assert inventory_service.derive_serial_location(serial) is None

    with pytest.raises(NotFoundError):
        inventory_service.get_increment(increment.id)


def test_void_increment_refuses_when_serial_moved(phone, store):
    placed = inventory_service.record_increment(phone.id, store.id, 1, ["SN-1"])
    inventory_service.record_increment(phone.id, store.id, -1, ["SN-1"])
    db.session.commit()

    with pytest.raises(StateError) as excinfo:
        inventory_service.void_increment(placed)
    assert excinfo.value.identifier == "inventory_serial_moved"
    db.session.rollback()


def test_get_increment_with_other_product(widget, phone, store):
    increment = inventory_service.record_increment(widget.id, store.id, 1)
    db.session.commit()

    with pytest.raises(StateError) as excinfo:
        inventory_service.get_increment(increment.id, product_id=phone.id)
    assert excinfo.value.identifier == "inventory_mismatch_productid_increment"


def test_stock_by_location_hides_system_locations(widget, store, locations):
    inventory_service.record_increment(widget.id, store.id, 3)
    inventory_service.record_increment(widget.id, locations["In Transit"].id, 2)
    db.session.commit()

    visible = inventory_service.get_stock_by_location(widget.id)
    assert [(loc.id, qty) for loc, qty in visible] == [(store.id, 3)]
    everything = inventory_service.get_stock_by_location(widget.id, include_system=True)
    assert len(everything) == 2


def test_system_locations_seeded_once(locations):
    location_service.ensure_system_locations()

    system = db.session.query(InventoryLocation).filter_by(system_use_only=True).all()
    assert sorted(loc.name for loc in system) == sorted(SYSTEM_LOCATIONS)
    assert all(not loc.can_be_removed for loc in system)


def test_list_locations_hides_system_locations(locations, backroom):
    names = [loc.name for loc in location_service.list_locations()]
    assert names == ["Stock", "Back Room"]
    assert len(location_service.list_locations(include_system=True)) == len(SYSTEM_LOCATIONS) + 2


def test_default_location_is_exclusive(store, backroom):
    location_service.set_default_location(backroom.id)

    assert location_service.find_default_location().id == backroom.id
    defaults = db.session.query(InventoryLocation).filter_by(default_location=True).all()
    assert len(defaults) == 1


def test_system_locations_cannot_be_removed(locations):
    with pytest.raises(StateError):
        location_service.remove_location(locations[LOCATION_SOLD].id)


def test_remove_user_location(backroom):
    location_service.remove_location(backroom.id)

    with pytest.raises(NotFoundError):
        location_service.get_location(backroom.id)


def test_missing_system_location_is_configuration_error(db_session):
    with pytest.raises(ConfigurationError):
        location_service.get_system_location(LOCATION_SOLD)


def test_increments_are_rows_not_counters(widget, store):
    inventory_service.record_increment(widget.id, store.id, 1)
    inventory_service.record_increment(widget.id, store.id, 1)
    db.session.commit()

    assert db.session.query(InventoryIncrement).count() == 2
    assert db.session.query(ProductSerialNumber).count() == 0


def test_rename_user_location_is_logged(backroom):
    renamed = location_service.rename_location(backroom.id, "  Workshop ", user_id=4)

    assert renamed.name == "Workshop"
    logs = audit_service.list_entity_logs("location", backroom.id)
    assert logs[-1].system_note == "Renamed location Back Room to Workshop"
    assert logs[-1].user_id == 4


def test_system_locations_cannot_be_renamed(locations):
    with pytest.raises(StateError) as excinfo:
        location_service.rename_location(locations[LOCATION_SOLD].id, "Gone")
    assert excinfo.value.identifier == "location_system_use_only"


def test_malformed_timestamps_are_validation_errors(widget, store):
    with pytest.raises(ValidationError) as excinfo:
        inventory_service.get_current_quantity(widget.id, store.id, as_of="yesterday")
    assert excinfo.value.identifier == "invalid_datetime"

    with pytest.raises(ValidationError):
        inventory_service.record_increment(widget.id, store.id, 1, occurred_at="2024-13-40")
