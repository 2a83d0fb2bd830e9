# Overview: Service-layer operations for sales; encapsulates business logic and database work.

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..errors import NotFoundError, StateError, ValidationError
from ..extensions import db
from ..models import Sale, SaleLine
from ..models.inventory import LOCATION_RETURNED, LOCATION_SOLD, TRANSFER_TYPE_TRANSFER
from ..models.sales import SALE_STATUS_DRAFT, SALE_STATUS_POSTED, SALE_STATUS_VOIDED
from ..monetary import calculate_line, sum_document_totals
from ..time_utils import utcnow
from ..validation import parse_decimal, parse_serials
from .audit_service import append_entity_log
from .concurrency import lock_for_update, run_with_retry
from .location_service import find_default_location, get_location, get_system_location
from .products_service import get_product
from .settings_service import capture_snapshot
from .transfer_service import stage_transfer
"""
repairpos Sale Invariants (authoritative)

- A sale's currency/tax snapshot is captured once at creation; every line
  copies the sale's snapshot so it is computed against the same tax rate.
- Lines snapshot the product at creation; later product edits never reach them.
- Every operation that changes the line set recomputes all lines and the
  document totals before committing.
- Only DRAFT sales accept line changes.
- Posting moves inventoried lines from the sale location to the "Sold"
  system location; voiding a posted sale moves them on to "Returned".
"""


def _get_sale(sale_id: int, *, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter(Sale.id == sale_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise NotFoundError.for_entity("Sale", sale_id)
    return sale


def _require_draft(sale: Sale) -> None:
    if sale.status != SALE_STATUS_DRAFT:
        raise StateError(
            f"Cannot modify sale in {sale.status} status",
            identifier="sale_not_draft",
            details={"sale_id": sale.id, "status": sale.status},
        )


def _get_line(sale: Sale, line_id: int) -> SaleLine:
    line = db.session.get(SaleLine, line_id)
    if line is None or line.deleted_at is not None:
        raise NotFoundError.for_entity("Sale line", line_id)
    if line.sale_id != sale.id:
        raise StateError(
            "Line does not belong to this sale",
            identifier="sale_mismatch_line",
            details={"sale_id": sale.id, "line_id": line_id},
        )
    return line


def _serials_text(serials) -> str:
    return ",".join(parse_serials(serials))


def get_sale(sale_id: int) -> Sale:
    return _get_sale(sale_id)


def create_sale(
    user_id: int,
    *,
    currency_id: int | None = None,
    tax_id: int | None = None,
    location_id: int | None = None,
    notes: str = "",
) -> Sale:
    """
    Create a DRAFT sale priced in the default (or overridden) currency/tax.

    Raises:
        ConfigurationError: default currency/tax or base currency missing
        NotFoundError: an override or location id does not resolve
        ValidationError: tax override does not belong to the currency override
    """
    def _op():
        snapshot = capture_snapshot(currency_id, tax_id)
        if location_id is not None:
            location = get_location(location_id)
        else:
            location = find_default_location()

        sale = Sale(
            status=SALE_STATUS_DRAFT,
            notes=notes or "",
            created_by_user_id=user_id,
            location_id=location.id if location else None,
        )
        sale.apply_reference_snapshot(snapshot)
        db.session.add(sale)
        sale.calculate_totals()
        db.session.flush()

        append_entity_log(
            entity_type="sale",
            entity_id=sale.id,
            user_id=user_id,
            user_note=notes,
            system_note=f"Created sale in {snapshot.currency_code} with tax {snapshot.tax_code}",
        )
        db.session.commit()
        return sale

    return run_with_retry(_op)


def add_line(
    sale_id: int,
    product_id: int,
    quantity,
    *,
    unit_sell_price=None,
    discount_is_percentage: bool = False,
    discount_amount="0",
    serials=None,
) -> SaleLine:
    """
    Add a product line to a DRAFT sale.

    unit_sell_price defaults to the product's current sell price. The line is
    computed before anything is written: a negative total leaves no row behind.
    """
    def _op():
        sale = _get_sale(sale_id, lock=True)
        _require_draft(sale)
        product = get_product(product_id)

        line = SaleLine()
        line.apply_reference_snapshot(sale.reference_snapshot)
        line.snapshot_product(product)
        line.quantity = parse_decimal(quantity, "quantity")
        if unit_sell_price is None:
            line.unit_sell_price = product.sell_price
        else:
            line.unit_sell_price = parse_decimal(unit_sell_price, "unit_sell_price")
        line.discount_is_percentage = bool(discount_is_percentage)
        line.discount_amount = parse_decimal(discount_amount, "discount_amount")
        line.serial_numbers = _serials_text(serials)
        line.calculate_line_total()

        line.sale = sale
        db.session.add(line)
        sale.calculate_totals()
        db.session.commit()
        return line

    return run_with_retry(_op)


def update_line(
    sale_id: int,
    line_id: int,
    *,
    quantity=None,
    unit_sell_price=None,
    discount_is_percentage: bool | None = None,
    discount_amount=None,
    serials=None,
) -> SaleLine:
    """Edit the user-editable fields of a line; managed fields are recomputed."""
    def _op():
        sale = _get_sale(sale_id, lock=True)
        _require_draft(sale)
        line = _get_line(sale, line_id)

        if quantity is not None:
            line.quantity = parse_decimal(quantity, "quantity")
        if unit_sell_price is not None:
            line.unit_sell_price = parse_decimal(unit_sell_price, "unit_sell_price")
        if discount_is_percentage is not None:
            line.discount_is_percentage = bool(discount_is_percentage)
        if discount_amount is not None:
            line.discount_amount = parse_decimal(discount_amount, "discount_amount")
        if serials is not None:
            line.serial_numbers = _serials_text(serials)

        sale.calculate_totals()
        db.session.commit()
        return line

    return run_with_retry(_op)


def remove_line(sale_id: int, line_id: int) -> Sale:
    def _op():
        sale = _get_sale(sale_id, lock=True)
        _require_draft(sale)
        line = _get_line(sale, line_id)
        line.deleted_at = utcnow()
        sale.calculate_totals()
        db.session.commit()
        return sale

    return run_with_retry(_op)


def get_sale_summary(sale_id: int) -> dict:
    """
    Sale with its live lines and freshly computed totals.

    Totals are recomputed from the line inputs on every read, so a summary is
    never stale. Nothing is written.
    """
    sale = _get_sale(sale_id)
    lines = sale.current_lines()
    amounts = [calculate_line(line.line_inputs()) for line in lines]
    totals = sum_document_totals(amounts)

    data = sale.to_dict()
    data.update(totals.to_dict())
    data["lines"] = [line.to_dict() for line in lines]
    return data


def _integral_quantity(line: SaleLine) -> int:
    quantity = Decimal(line.quantity)
    if quantity != quantity.to_integral_value():
        raise ValidationError(
            f"Inventoried product {line.reference_product_code} needs a whole quantity",
            identifier="sale_line_fractional_quantity",
            details={"line_id": line.id, "quantity": str(line.quantity)},
        )
    return int(quantity)


def post_sale(sale_id: int, user_id: int, *, location_id: int | None = None) -> Sale:
    """
    Finalize a DRAFT sale.

    Every inventoried line moves its quantity (and serials) from the sale
    location to the "Sold" system location. All moves and the status change
    commit together or not at all.

    Raises:
        StateError: sale not DRAFT, or a product is no longer inventoried
        ValidationError: no lines, missing location, serial or quantity problems
        ConfigurationError: system locations were never seeded
    """
    def _op():
        sale = _get_sale(sale_id, lock=True)
        _require_draft(sale)

        lines = sale.current_lines()
        if not lines:
            raise ValidationError("Cannot post a sale with no lines", identifier="sale_no_lines")
        sale.calculate_totals()

        sold = get_system_location(LOCATION_SOLD)
        from_location_id = location_id if location_id is not None else sale.location_id

        for line in lines:
            if not line.reference_product_inventoried or line.product_id is None:
                continue
            if from_location_id is None:
                raise ValidationError(
                    "A location is required to post inventoried lines",
                    identifier="sale_missing_location",
                )
            transfer = stage_transfer(
                TRANSFER_TYPE_TRANSFER,
                sold.id,
                line.product_id,
                _integral_quantity(line),
                user_id,
                notes=f"Sale {sale.id}",
                from_location_id=from_location_id,
                serials=line.serial_list,
            )
            line.sold_transfer_id = transfer.id

        sale.location_id = from_location_id
        sale.status = SALE_STATUS_POSTED
        sale.posted_by_user_id = user_id
        sale.posted_at = utcnow()

        append_entity_log(
            entity_type="sale",
            entity_id=sale.id,
            user_id=user_id,
            system_note=f"Posted sale total {sale.total} {sale.reference_currency_code}",
        )
        db.session.commit()
        current_app.logger.info("Posted sale %s total=%s user=%s", sale.id, sale.total, user_id)
        return sale

    return run_with_retry(_op)


def void_sale(sale_id: int, user_id: int, notes: str = "") -> Sale:
    """
    Void a sale.

    A DRAFT sale is simply closed. A POSTED sale moves every sold line from
    "Sold" to "Returned" in the same transaction.
    """
    def _op():
        sale = _get_sale(sale_id, lock=True)
        if sale.status == SALE_STATUS_VOIDED:
            raise StateError("Sale is already voided", identifier="sale_already_voided")

        if sale.status == SALE_STATUS_POSTED:
            sold = get_system_location(LOCATION_SOLD)
            returned = get_system_location(LOCATION_RETURNED)
            for line in sale.current_lines():
                if line.sold_transfer_id is None:
                    continue
                transfer = stage_transfer(
                    TRANSFER_TYPE_TRANSFER,
                    returned.id,
                    line.product_id,
                    _integral_quantity(line),
                    user_id,
                    notes=notes or f"Void sale {sale.id}",
                    from_location_id=sold.id,
                    serials=line.serial_list,
                )
                line.returned_transfer_id = transfer.id

        sale.status = SALE_STATUS_VOIDED
        sale.voided_by_user_id = user_id
        sale.voided_at = utcnow()

        append_entity_log(
            entity_type="sale",
            entity_id=sale.id,
            user_id=user_id,
            user_note=notes,
            system_note="Voided sale",
        )
        db.session.commit()
        current_app.logger.info("Voided sale %s user=%s", sale.id, user_id)
        return sale

    return run_with_retry(_op)
