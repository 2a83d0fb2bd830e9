# Overview: Service-layer operations for the inventory ledger; quantities are derived, never stored.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..errors import NotFoundError, StateError, ValidationError
from ..extensions import db
from ..models import (
    IncrementSerial,
    InventoryIncrement,
    InventoryLocation,
    Product,
    ProductSerialNumber,
)
from ..models.inventory import LOCATION_SOLD
from ..time_utils import normalize_datetime, utcnow
from ..validation import parse_int, parse_serials
from .concurrency import lock_for_update
from .location_service import get_location
"""
repairpos Inventory Invariants & Time Semantics (authoritative)

Canonical time handling:
- All internal datetimes are UTC-naive (tzinfo=None).
- As-of filters are inclusive: occurred_at <= as_of.

Inventory model:
- Quantity is ledger-derived: SUM(amount) over live (deleted_at IS NULL)
  InventoryIncrement rows for a (product, location). Nothing stores a
  mutable quantity.
- Increments are append-only. A wrong increment is soft-deleted through
  void_increment(), which also reverses its serial effects.
- Products with inventoried=False never receive increments.

Serial tracking:
- Serialized products carry exactly |amount| distinct serials per increment.
- A positive increment places each serial at its location; the serial must
  not be located anywhere at that moment (first sight creates the row).
- A negative increment removes each serial from its location; every serial
  must currently be at that location.
- ProductSerialNumber.location_id always equals derive_serial_location().

Transactions:
- record_increment() and void_increment() only flush. The caller owns the
  commit so that paired increments land atomically.
"""


def _get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter(Product.id == product_id, Product.deleted_at.is_(None))
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError.for_entity("Product", product_id)
    return product


def require_inventoried(product: Product) -> None:
    if not product.inventoried:
        raise StateError(
            f"Product {product.code} is not inventoried",
            identifier="inventory_product_not_inventoried",
            details={"product_id": product.id},
        )


def _is_sold_location(location: InventoryLocation) -> bool:
    return bool(location.system_use_only) and location.name == LOCATION_SOLD


def _quantity_query(product_id: int, location_id: int):
    return db.session.query(
        func.coalesce(func.sum(InventoryIncrement.amount), 0)
    ).filter(
        InventoryIncrement.product_id == product_id,
        InventoryIncrement.location_id == location_id,
        InventoryIncrement.deleted_at.is_(None),
    )


def get_current_quantity(product_id: int, location_id: int, as_of: datetime | str | None = None) -> int:
    """
    Quantity of a product at a location: the sum of its live increments.

    Returns 0 when there are none. as_of (inclusive) limits the sum to
    increments that occurred at or before that time.

    Raises:
        NotFoundError: unknown product or location id
    """
    if db.session.get(Product, product_id) is None:
        raise NotFoundError.for_entity("Product", product_id)
    if db.session.get(InventoryLocation, location_id) is None:
        raise NotFoundError.for_entity("Location", location_id)

    q = _quantity_query(product_id, location_id)
    as_of_dt = normalize_datetime(as_of)
    if as_of_dt is not None:
        q = q.filter(InventoryIncrement.occurred_at <= as_of_dt)
    return int(q.scalar() or 0)


def get_stock_by_location(product_id: int, *, include_system: bool = False) -> list[tuple[InventoryLocation, int]]:
    """Non-zero quantities of a product per location."""
    _get_product(product_id)
    q = (
        db.session.query(InventoryLocation, func.sum(InventoryIncrement.amount))
        .join(InventoryIncrement, InventoryIncrement.location_id == InventoryLocation.id)
        .filter(
            InventoryIncrement.product_id == product_id,
            InventoryIncrement.deleted_at.is_(None),
        )
        .group_by(InventoryLocation.id)
        .order_by(InventoryLocation.id.asc())
    )
    if not include_system:
        q = q.filter(InventoryLocation.system_use_only.is_(False))
    return [(location, int(total)) for location, total in q.all() if total]


def _check_not_negative(product: Product, location: InventoryLocation, delta: int) -> None:
    # System-use-only locations are bookkeeping markers and may go negative
    if delta >= 0 or location.system_use_only:
        return
    if current_app.config.get("ALLOW_NEGATIVE_INVENTORY", False):
        return
    on_hand = int(_quantity_query(product.id, location.id).scalar() or 0)
    if on_hand + delta < 0:
        raise ValidationError(
            f"Insufficient quantity of {product.code} at {location.name}. "
            f"On-hand: {on_hand}, requested: {-delta}",
            identifier="inventory_insufficient_quantity",
            details={"product_id": product.id, "location_id": location.id, "on_hand": on_hand},
        )


def _validate_serial_count(product: Product, amount: int, serials: list[str]) -> None:
    if product.serialized:
        if len(serials) != abs(amount):
            raise ValidationError(
                f"Serialized product {product.code} needs {abs(amount)} serial numbers, got {len(serials)}",
                identifier="inventory_serialnumber_query",
                details={"expected": abs(amount), "received": len(serials)},
            )
    elif serials:
        raise ValidationError(
            f"Product {product.code} is not serialized",
            identifier="inventory_serialnumber_query",
        )


def _find_serial(product_id: int, serial_number: str) -> ProductSerialNumber | None:
    return lock_for_update(
        db.session.query(ProductSerialNumber).filter(
            ProductSerialNumber.product_id == product_id,
            ProductSerialNumber.serial_number == serial_number,
            ProductSerialNumber.deleted_at.is_(None),
        )
    ).first()


def _place_serial(product: Product, location: InventoryLocation, serial_number: str) -> ProductSerialNumber:
    serial = _find_serial(product.id, serial_number)
    if serial is None:
        serial = ProductSerialNumber(product_id=product.id, serial_number=serial_number)
        db.session.add(serial)
    elif serial.location_id is not None:
        raise ValidationError(
            f"Serial number {serial_number} is already in inventory",
            identifier="inventory_serial_in_stock",
            details={"serial_number": serial_number, "location_id": serial.location_id},
        )
    serial.location_id = location.id
    serial.is_sold = _is_sold_location(location)
    return serial


def _take_serial(product: Product, location: InventoryLocation, serial_number: str) -> ProductSerialNumber:
    serial = _find_serial(product.id, serial_number)
    if serial is None:
        raise NotFoundError(
            f"Serial number {serial_number} not found",
            identifier="serial_number_not_found",
            details={"serial_number": serial_number},
        )
    if serial.location_id != location.id:
        raise ValidationError(
            f"Serial number {serial_number} is not at {location.name}",
            identifier="inventory_serial_wrong_location",
            details={"serial_number": serial_number, "location_id": serial.location_id},
        )
    serial.location_id = None
    serial.is_sold = False
    return serial


def record_increment(
    product_id: int,
    location_id: int,
    amount,
    serials=None,
    *,
    occurred_at: datetime | str | None = None,
) -> InventoryIncrement:
    """
    Append one signed quantity change for a product at a location.

    Flushes only; the caller commits (or rolls back) the surrounding unit of work.

    Raises:
        NotFoundError: unknown product, location or (negative increment) serial
        StateError: product is not inventoried
        ValidationError: zero amount, serial count/location problems, or
            insufficient quantity when negative inventory is disallowed
    """
    delta = parse_int(amount, "amount")
    if delta == 0:
        raise ValidationError("Amount cannot be zero", identifier="inventory_invalid_amount")

    product = _get_product(product_id, lock=True)
    require_inventoried(product)
    location = get_location(location_id)

    serial_numbers = parse_serials(serials)
    _validate_serial_count(product, delta, serial_numbers)
    _check_not_negative(product, location, delta)

    occurred = normalize_datetime(occurred_at) or utcnow()
    increment = InventoryIncrement(
        product_id=product.id,
        location_id=location.id,
        amount=delta,
        occurred_at=occurred,
    )
    db.session.add(increment)
    db.session.flush()

    for serial_number in serial_numbers:
        if delta > 0:
            serial = _place_serial(product, location, serial_number)
        else:
            serial = _take_serial(product, location, serial_number)
        db.session.add(IncrementSerial(increment=increment, serial_number=serial))

    db.session.flush()
    return increment


def get_increment(increment_id: int, product_id: int | None = None) -> InventoryIncrement:
    """
    Load a live increment, optionally asserting which product it belongs to.

    Raises:
        NotFoundError: unknown or voided increment
        StateError: the increment belongs to a different product
    """
    increment = (
        db.session.query(InventoryIncrement)
        .filter(InventoryIncrement.id == increment_id, InventoryIncrement.deleted_at.is_(None))
        .first()
    )
    if increment is None:
        raise NotFoundError.for_entity("Increment", increment_id)
    if product_id is not None and increment.product_id != product_id:
        raise StateError(
            "Increment does not belong to this product",
            identifier="inventory_mismatch_productid_increment",
            details={"increment_id": increment.id, "product_id": product_id},
        )
    return increment


def _latest_live_link(serial: ProductSerialNumber) -> IncrementSerial | None:
    return (
        db.session.query(IncrementSerial)
        .join(InventoryIncrement, InventoryIncrement.id == IncrementSerial.increment_id)
        .filter(
            IncrementSerial.serial_number_id == serial.id,
            IncrementSerial.deleted_at.is_(None),
            InventoryIncrement.deleted_at.is_(None),
        )
        .order_by(IncrementSerial.id.desc())
        .first()
    )


def derive_serial_location(serial: ProductSerialNumber) -> int | None:
    """
    Location implied by the ledger: the location of the most recent live
    increment touching the serial when it was positive, otherwise None.
    """
    link = _latest_live_link(serial)
    if link is None or link.increment.amount < 0:
        return None
    return link.increment.location_id


def void_increment(increment: InventoryIncrement) -> InventoryIncrement:
    """
    Soft-delete an increment and reverse its serial effects.

    Only the most recent movement of a serial can be reversed; a serial that
    has moved on since is a StateError. Flushes only.
    """
    if increment.deleted_at is not None:
        raise StateError("Increment is already voided", identifier="inventory_increment_voided")

    product = _get_product(increment.product_id, lock=True)
    location = db.session.get(InventoryLocation, increment.location_id)

    links = [link for link in increment.serial_links if link.deleted_at is None]
    for link in links:
        latest = _latest_live_link(link.serial_number)
        if latest is None or latest.id != link.id:
            raise StateError(
                f"Serial number {link.serial_number.serial_number} has moved since this increment",
                identifier="inventory_serial_moved",
                details={"serial_number": link.serial_number.serial_number},
            )
    _check_not_negative(product, location, -increment.amount)

    for link in links:
        serial = link.serial_number
        if increment.amount > 0:
            serial.location_id = None
            serial.is_sold = False
        else:
            serial.location_id = location.id
            serial.is_sold = _is_sold_location(location)
        link.deleted_at = utcnow()

    increment.deleted_at = utcnow()
    db.session.flush()
    return increment


def list_serials(product_id: int, location_id: int | None = None) -> list[ProductSerialNumber]:
    query = db.session.query(ProductSerialNumber).filter(
        ProductSerialNumber.product_id == product_id,
        ProductSerialNumber.deleted_at.is_(None),
    )
    if location_id is not None:
        query = query.filter(ProductSerialNumber.location_id == location_id)
    return query.order_by(ProductSerialNumber.id.asc()).all()


def get_serial(product_id: int, serial_number: str) -> ProductSerialNumber:
    serial = (
        db.session.query(ProductSerialNumber)
        .filter(
            ProductSerialNumber.product_id == product_id,
            ProductSerialNumber.serial_number == str(serial_number).strip(),
            ProductSerialNumber.deleted_at.is_(None),
        )
        .first()
    )
    if serial is None:
        raise NotFoundError(
            f"Serial number {serial_number} not found",
            identifier="serial_number_not_found",
            details={"serial_number": serial_number},
        )
    return serial
