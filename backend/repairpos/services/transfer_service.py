# backend/repairpos/services/transfer_service.py
"""
Inventory transfer orchestration.

A transfer is created in one atomic unit of work; there is no pending state.

TYPES:
- transfer / multiStoreTransfer: two increments, -|amount| at the from
  location and +|amount| at the to location, linked by one transfer row
- adjustment: one signed increment at the to location; no from side

EDITING ADJUSTMENTS:
Adjustments are never edited in place. replace_adjustment() voids the old
increment (reversing its serial moves), soft-deletes the old transfer and
links it to a freshly created replacement through replaced_by_transfer_id.
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import NotFoundError, StateError, ValidationError
from ..extensions import db
from ..models import InventoryTransfer
from ..models.inventory import (
    TRANSFER_TYPE_ADJUSTMENT,
    TRANSFER_TYPES,
)
from ..time_utils import utcnow
from ..validation import parse_int, parse_serials
from .audit_service import append_entity_log
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import record_increment, void_increment


def _validate_request(transfer_type: str, from_location_id: int | None, to_location_id: int, amount: int) -> None:
    if transfer_type not in TRANSFER_TYPES:
        raise ValidationError(
            f"Unknown transfer type {transfer_type!r}",
            identifier="inventory_invalid_transfer_type",
            details={"allowed": list(TRANSFER_TYPES)},
        )
    if amount == 0:
        raise ValidationError("Amount cannot be zero", identifier="inventory_invalid_amount")

    if transfer_type == TRANSFER_TYPE_ADJUSTMENT:
        if from_location_id is not None:
            raise ValidationError(
                "Adjustments do not have a from location",
                identifier="inventory_adjustment_from_location",
            )
        return

    if from_location_id is None:
        raise ValidationError(
            "Transfers require a from location",
            identifier="inventory_transfer_missing_from",
        )
    if from_location_id == to_location_id:
        raise ValidationError(
            "Cannot transfer to the same location",
            identifier="inventory_transfer_same_location",
            details={"location_id": to_location_id},
        )


def _build_transfer(
    transfer_type: str,
    to_location_id: int,
    product_id: int,
    amount: int,
    user_id: int,
    notes: str,
    from_location_id: int | None,
    serials: list[str],
    occurred_at,
) -> InventoryTransfer:
    """Write the increments and transfer row. Flushes only."""
    from_increment = None
    if transfer_type == TRANSFER_TYPE_ADJUSTMENT:
        to_increment = record_increment(
            product_id, to_location_id, amount, serials, occurred_at=occurred_at
        )
    else:
        magnitude = abs(amount)
        # Out before in: serials leave the from location before they can land
        from_increment = record_increment(
            product_id, from_location_id, -magnitude, serials, occurred_at=occurred_at
        )
        to_increment = record_increment(
            product_id, to_location_id, magnitude, serials, occurred_at=occurred_at
        )

    transfer = InventoryTransfer(
        type=transfer_type,
        product_id=product_id,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        from_increment_id=from_increment.id if from_increment else None,
        to_increment_id=to_increment.id,
        user_id=user_id,
        notes=notes or "",
    )
    db.session.add(transfer)
    db.session.flush()
    return transfer


def create_transfer(
    transfer_type: str,
    to_location_id: int,
    product_id: int,
    amount,
    user_id: int,
    notes: str = "",
    from_location_id: int | None = None,
    serials=None,
    *,
    occurred_at: datetime | str | None = None,
) -> InventoryTransfer:
    """
    Create a transfer or adjustment with its increments in one transaction.

    Args:
        transfer_type: "transfer", "adjustment" or "multiStoreTransfer"
        to_location_id: Destination location (the only location for an adjustment)
        product_id: Product being moved
        amount: Units to move; signed for adjustments, magnitude for transfers
        user_id: Acting user
        notes: Free-text note, recorded on the transfer and its entity log
        from_location_id: Source location (transfers only)
        serials: Serial numbers for serialized products, exactly |amount| of them

    Returns:
        InventoryTransfer: the committed transfer

    Raises:
        ValidationError: bad type/amount, same location, missing or extra
            from side, serial problems
        StateError: product not inventoried
        NotFoundError: unknown product, location or serial
    """
    def _op():
        transfer = stage_transfer(
            transfer_type,
            to_location_id,
            product_id,
            amount,
            user_id,
            notes,
            from_location_id,
            serials,
            occurred_at=occurred_at,
        )
        db.session.commit()

        current_app.logger.info(
            "Created %s product=%s from=%s to=%s amount=%s user=%s",
            transfer.label,
            product_id,
            from_location_id,
            to_location_id,
            transfer.to_increment.amount,
            user_id,
        )
        return transfer

    return run_with_retry(_op)


def stage_transfer(
    transfer_type: str,
    to_location_id: int,
    product_id: int,
    amount,
    user_id: int,
    notes: str = "",
    from_location_id: int | None = None,
    serials=None,
    *,
    occurred_at: datetime | str | None = None,
) -> InventoryTransfer:
    """
    Validate and write a transfer inside the caller's transaction (flush only).

    Used by documents that move stock as part of a larger unit of work, such
    as posting a sale.
    """
    delta = parse_int(amount, "amount")
    serial_numbers = parse_serials(serials)
    _validate_request(transfer_type, from_location_id, to_location_id, delta)

    transfer = _build_transfer(
        transfer_type,
        to_location_id,
        product_id,
        delta,
        user_id,
        notes,
        from_location_id,
        serial_numbers,
        occurred_at,
    )

    append_entity_log(
        entity_type="inventory_transfer",
        entity_id=transfer.id,
        user_id=user_id,
        user_note=notes,
        system_note=_describe(transfer, delta),
    )
    return transfer


def _describe(transfer: InventoryTransfer, amount: int) -> str:
    if transfer.type == TRANSFER_TYPE_ADJUSTMENT:
        return f"Created adjustment {transfer.label} of {amount} at location {transfer.to_location_id}"
    return (
        f"Created {transfer.type} {transfer.label} of {abs(amount)} "
        f"from location {transfer.from_location_id} to location {transfer.to_location_id}"
    )


def get_transfer(transfer_id: int, product_id: int | None = None, *, lock: bool = False) -> InventoryTransfer:
    """
    Load a live transfer, optionally asserting which product it belongs to.

    Raises:
        NotFoundError: unknown or removed transfer
        StateError: the transfer belongs to a different product
    """
    query = db.session.query(InventoryTransfer).filter(
        InventoryTransfer.id == transfer_id,
        InventoryTransfer.deleted_at.is_(None),
    )
    if lock:
        query = lock_for_update(query)
    transfer = query.first()
    if transfer is None:
        raise NotFoundError.for_entity("Transfer", transfer_id)
    if product_id is not None and transfer.product_id != product_id:
        raise StateError(
            "Transfer does not belong to this product",
            identifier="inventory_mismatch_productid_increment",
            details={"transfer_id": transfer.id, "product_id": product_id},
        )
    return transfer


def list_transfers(product_id: int, *, include_removed: bool = False) -> list[InventoryTransfer]:
    query = db.session.query(InventoryTransfer).filter(InventoryTransfer.product_id == product_id)
    if not include_removed:
        query = query.filter(InventoryTransfer.deleted_at.is_(None))
    return query.order_by(InventoryTransfer.id.asc()).all()


def _require_adjustment(transfer: InventoryTransfer) -> None:
    if transfer.type != TRANSFER_TYPE_ADJUSTMENT:
        raise StateError(
            "Only adjustments can be edited or removed",
            identifier="inventory_edit_remove_adjustments",
            details={"transfer_id": transfer.id, "type": transfer.type},
        )


def _void_adjustment(transfer: InventoryTransfer) -> None:
    void_increment(transfer.to_increment)
    transfer.deleted_at = utcnow()
    db.session.flush()


def replace_adjustment(
    transfer_id: int,
    product_id: int,
    amount,
    user_id: int,
    notes: str = "",
    to_location_id: int | None = None,
    serials=None,
) -> InventoryTransfer:
    """
    Correct an adjustment by replacing it.

    The old adjustment is voided and soft-deleted, and points at the new one
    through replaced_by_transfer_id. Everything happens in one transaction.
    """
    def _op():
        old = get_transfer(transfer_id, product_id, lock=True)
        _require_adjustment(old)

        delta = parse_int(amount, "amount")
        serial_numbers = parse_serials(serials)
        target_location_id = to_location_id if to_location_id is not None else old.to_location_id
        _validate_request(TRANSFER_TYPE_ADJUSTMENT, None, target_location_id, delta)

        _void_adjustment(old)
        replacement = _build_transfer(
            TRANSFER_TYPE_ADJUSTMENT,
            target_location_id,
            old.product_id,
            delta,
            user_id,
            notes,
            None,
            serial_numbers,
            None,
        )
        old.replaced_by_transfer_id = replacement.id

        append_entity_log(
            entity_type="inventory_transfer",
            entity_id=old.id,
            user_id=user_id,
            user_note=notes,
            system_note=f"Replaced adjustment {old.label} with {replacement.label}",
        )
        append_entity_log(
            entity_type="inventory_transfer",
            entity_id=replacement.id,
            user_id=user_id,
            user_note=notes,
            system_note=_describe(replacement, delta),
        )
        db.session.commit()

        current_app.logger.info("Replaced %s with %s user=%s", old.label, replacement.label, user_id)
        return replacement

    return run_with_retry(_op)


def remove_adjustment(transfer_id: int, product_id: int, user_id: int, notes: str = "") -> InventoryTransfer:
    """Void and soft-delete an adjustment, reversing its quantity and serial moves."""
    def _op():
        transfer = get_transfer(transfer_id, product_id, lock=True)
        _require_adjustment(transfer)
        _void_adjustment(transfer)

        append_entity_log(
            entity_type="inventory_transfer",
            entity_id=transfer.id,
            user_id=user_id,
            user_note=notes,
            system_note=f"Removed adjustment {transfer.label}",
        )
        db.session.commit()

        current_app.logger.info("Removed %s user=%s", transfer.label, user_id)
        return transfer

    return run_with_retry(_op)
