# Overview: Product master data and product costs; feeds line-item snapshots.

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, localcontext

from ..errors import NotFoundError, StateError, ValidationError
from ..extensions import db
from ..models import InventoryIncrement, Product, ProductCost
from ..monetary import DECIMAL_CONTEXT
from ..time_utils import utcnow
from ..validation import parse_decimal
from .audit_service import append_entity_log
from .concurrency import lock_for_update, run_with_retry


COST_QUANTUM = Decimal("0.0001")


def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter(Product.id == product_id, Product.deleted_at.is_(None))
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError.for_entity("Product", product_id)
    return product


def get_product_by_code(code: str) -> Product:
    product = (
        db.session.query(Product)
        .filter(Product.code == str(code).strip(), Product.deleted_at.is_(None))
        .first()
    )
    if product is None:
        raise NotFoundError(f"Product {code} not found", identifier="product_not_found", details={"code": code})
    return product


def _parse_code(code) -> str:
    clean = str(code or "").strip()
    if not clean:
        raise ValidationError("Product code is required", identifier="product_invalid_code")
    return clean


def create_product(
    code: str,
    sell_price,
    *,
    description: str = "",
    upc: str = "",
    taxable: bool = True,
    inventoried: bool = True,
    serialized: bool = False,
    user_id: int | None = None,
) -> Product:
    def _op():
        clean_code = _parse_code(code)
        if db.session.query(Product).filter(Product.code == clean_code).first():
            raise ValidationError(
                f"Product code {clean_code} already exists",
                identifier="product_duplicate_code",
            )
        if serialized and not inventoried:
            raise ValidationError(
                "Serialized products must be inventoried",
                identifier="product_serialized_not_inventoried",
            )

        product = Product(
            code=clean_code,
            upc=str(upc or "").strip(),
            description=str(description or "").strip(),
            sell_price=parse_decimal(sell_price, "sell_price", allow_negative=False),
            average_cost=Decimal("0"),
            taxable=bool(taxable),
            inventoried=bool(inventoried),
            serialized=bool(serialized),
        )
        db.session.add(product)
        db.session.flush()

        append_entity_log(
            entity_type="product",
            entity_id=product.id,
            user_id=user_id,
            system_note=f"Created product {product.code}",
        )
        db.session.commit()
        return product

    return run_with_retry(_op)


def _has_live_increments(product_id: int) -> bool:
    return (
        db.session.query(InventoryIncrement.id)
        .filter(InventoryIncrement.product_id == product_id, InventoryIncrement.deleted_at.is_(None))
        .first()
        is not None
    )


def update_product(
    product_id: int,
    *,
    description: str | None = None,
    upc: str | None = None,
    sell_price=None,
    taxable: bool | None = None,
    inventoried: bool | None = None,
    serialized: bool | None = None,
    user_id: int | None = None,
) -> Product:
    """
    Edit product master data.

    Existing line items keep their snapshot. The inventoried and serialized
    flags are frozen once the product has ledger history.
    """
    def _op():
        product = get_product(product_id, lock=True)

        flags_change = (
            (inventoried is not None and bool(inventoried) != product.inventoried)
            or (serialized is not None and bool(serialized) != product.serialized)
        )
        if flags_change and _has_live_increments(product.id):
            raise StateError(
                "Inventory flags cannot change once the product has inventory history",
                identifier="product_inventory_flags_locked",
            )

        if description is not None:
            product.description = str(description).strip()
        if upc is not None:
            product.upc = str(upc).strip()
        if sell_price is not None:
            product.sell_price = parse_decimal(sell_price, "sell_price", allow_negative=False)
        if taxable is not None:
            product.taxable = bool(taxable)
        if inventoried is not None:
            product.inventoried = bool(inventoried)
        if serialized is not None:
            product.serialized = bool(serialized)

        if product.serialized and not product.inventoried:
            raise ValidationError(
                "Serialized products must be inventoried",
                identifier="product_serialized_not_inventoried",
            )

        append_entity_log(
            entity_type="product",
            entity_id=product.id,
            user_id=user_id,
            system_note=f"Updated product {product.code}",
        )
        db.session.commit()
        return product

    return run_with_retry(_op)


def remove_product(product_id: int, *, user_id: int | None = None) -> Product:
    def _op():
        product = get_product(product_id, lock=True)
        product.deleted_at = utcnow()
        append_entity_log(
            entity_type="product",
            entity_id=product.id,
            user_id=user_id,
            system_note=f"Removed product {product.code}",
        )
        db.session.commit()
        return product

    return run_with_retry(_op)


def refresh_average_cost(product: Product) -> Decimal:
    """Store the mean of the product's costs (0 when it has none). Flushes only."""
    costs = [
        row.cost
        for row in db.session.query(ProductCost.cost).filter(ProductCost.product_id == product.id).all()
    ]
    if costs:
        with localcontext(DECIMAL_CONTEXT):
            mean = sum(costs, Decimal("0")) / len(costs)
        # Rounded to the 4 places average_cost stores
        product.average_cost = mean.quantize(COST_QUANTUM, rounding=ROUND_HALF_UP)
    else:
        product.average_cost = Decimal("0")
    db.session.flush()
    return product.average_cost


def add_cost(
    product_id: int,
    cost,
    *,
    supplier_code: str = "",
    make_default: bool = False,
    user_id: int | None = None,
) -> ProductCost:
    def _op():
        product = get_product(product_id, lock=True)
        product_cost = ProductCost(
            product_id=product.id,
            cost=parse_decimal(cost, "cost", allow_negative=False),
            supplier_code=str(supplier_code or "").strip(),
        )
        db.session.add(product_cost)
        db.session.flush()

        if make_default:
            product.default_cost = product_cost
        refresh_average_cost(product)

        append_entity_log(
            entity_type="product",
            entity_id=product.id,
            user_id=user_id,
            system_note=f"Added cost {product_cost.cost} ({product_cost.supplier_code or 'no supplier'})",
        )
        db.session.commit()
        return product_cost

    return run_with_retry(_op)


def set_default_cost(product_id: int, cost_id: int | None, *, user_id: int | None = None) -> Product:
    """
    Point the product at one of its own costs, or clear it (None) to fall
    back to the average cost.
    """
    def _op():
        product = get_product(product_id, lock=True)
        if cost_id is None:
            product.default_cost = None
        else:
            product_cost = db.session.get(ProductCost, cost_id)
            if product_cost is None:
                raise NotFoundError.for_entity("Product cost", cost_id)
            if product_cost.product_id != product.id:
                raise StateError(
                    "Requested product cost is not for this product",
                    identifier="productcosts_mismatched_product_id",
                    details={"product_id": product.id, "cost_id": cost_id},
                )
            product.default_cost = product_cost

        append_entity_log(
            entity_type="product",
            entity_id=product.id,
            user_id=user_id,
            system_note=f"Set default cost to {cost_id}",
        )
        db.session.commit()
        return product

    return run_with_retry(_op)
