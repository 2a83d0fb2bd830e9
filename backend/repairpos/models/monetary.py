"""
Column mixins shared by every monetary document and line item.

Concrete documents (sales, and later purchase orders or repair tickets)
compose these mixins instead of inheriting from one another; the arithmetic
itself lives in repairpos.monetary and never touches the database.

- ReferenceMonetaryFieldsMixin: frozen currency/tax snapshot columns
- LineItemMixin: product snapshot + editable fields + managed fields
- MonetaryDocumentMixin: document-level totals summed from its lines
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import event, inspect
from sqlalchemy.orm import declared_attr

from ..errors import StateError
from ..extensions import db
from ..monetary import (
    TOTAL_FIELDS,
    DocumentTotals,
    LineAmounts,
    LineInputs,
    ReferenceSnapshot,
    calculate_line,
    sum_document_totals,
)
from .types import CALCULATED, MONEY, decimal_str


REFERENCE_FIELDS = (
    "reference_currency_id",
    "reference_currency_name",
    "reference_currency_code",
    "reference_currency_rate",
    "reference_base_currency_id",
    "reference_base_currency_name",
    "reference_base_currency_code",
    "reference_base_currency_rate",
    "reference_tax_id",
    "reference_tax_code",
    "reference_tax_rate",
    "reference_tax_currency_name",
    "reference_tax_currency_code",
    "reference_tax_currency_rate",
)

PRODUCT_REFERENCE_FIELDS = (
    "reference_product_code",
    "reference_product_description",
    "reference_product_sell_price",
    "reference_product_cost_amount",
    "reference_product_serialized",
    "reference_product_inventoried",
)

MANAGED_LINE_FIELDS = (
    "unit_discount_amount",
    "unit_net_price",
    "unit_tax_amount",
    "unit_profit_margin",
) + TOTAL_FIELDS


class ReferenceMonetaryFieldsMixin:
    """
    Currency and tax values at the time the row was created.

    Ids are plain integers, not foreign keys: the Currency or Tax may later be
    edited or deleted and the row must still describe its original state.
    """

    reference_currency_id = db.Column(db.Integer, nullable=False)
    reference_currency_name = db.Column(db.String(64), nullable=False)
    reference_currency_code = db.Column(db.String(3), nullable=False)
    reference_currency_rate = db.Column(MONEY, nullable=False)

    # Base currency (rate 1.0000), only when the document currency is not the base
    reference_base_currency_id = db.Column(db.Integer, nullable=True)
    reference_base_currency_name = db.Column(db.String(64), nullable=True)
    reference_base_currency_code = db.Column(db.String(3), nullable=True)
    reference_base_currency_rate = db.Column(MONEY, nullable=True)

    reference_tax_id = db.Column(db.Integer, nullable=False)
    reference_tax_code = db.Column(db.String(32), nullable=False)
    reference_tax_rate = db.Column(MONEY, nullable=False)
    reference_tax_currency_name = db.Column(db.String(64), nullable=False)
    reference_tax_currency_code = db.Column(db.String(3), nullable=False)
    reference_tax_currency_rate = db.Column(MONEY, nullable=False)

    def apply_reference_snapshot(self, snapshot: ReferenceSnapshot) -> None:
        """Write the snapshot once. A second write is a StateError."""
        if self.reference_currency_id is not None:
            raise StateError(
                "Reference snapshot already captured",
                identifier="reference_snapshot_immutable",
            )
        self.reference_currency_id = snapshot.currency_id
        self.reference_currency_name = snapshot.currency_name
        self.reference_currency_code = snapshot.currency_code
        self.reference_currency_rate = snapshot.currency_rate
        self.reference_base_currency_id = snapshot.base_currency_id
        self.reference_base_currency_name = snapshot.base_currency_name
        self.reference_base_currency_code = snapshot.base_currency_code
        self.reference_base_currency_rate = snapshot.base_currency_rate
        self.reference_tax_id = snapshot.tax_id
        self.reference_tax_code = snapshot.tax_code
        self.reference_tax_rate = snapshot.tax_rate
        self.reference_tax_currency_name = snapshot.tax_currency_name
        self.reference_tax_currency_code = snapshot.tax_currency_code
        self.reference_tax_currency_rate = snapshot.tax_currency_rate

    @property
    def reference_snapshot(self) -> ReferenceSnapshot:
        return ReferenceSnapshot(
            currency_id=self.reference_currency_id,
            currency_name=self.reference_currency_name,
            currency_code=self.reference_currency_code,
            currency_rate=self.reference_currency_rate,
            tax_id=self.reference_tax_id,
            tax_code=self.reference_tax_code,
            tax_rate=self.reference_tax_rate,
            tax_currency_name=self.reference_tax_currency_name,
            tax_currency_code=self.reference_tax_currency_code,
            tax_currency_rate=self.reference_tax_currency_rate,
            base_currency_id=self.reference_base_currency_id,
            base_currency_name=self.reference_base_currency_name,
            base_currency_code=self.reference_base_currency_code,
            base_currency_rate=self.reference_base_currency_rate,
        )

    def reference_fields_dict(self) -> dict:
        return self.reference_snapshot.to_dict()


@event.listens_for(ReferenceMonetaryFieldsMixin, "before_update", propagate=True)
def _reject_reference_rewrite(mapper, connection, target):
    state = inspect(target)
    for name in REFERENCE_FIELDS:
        history = state.attrs[name].history
        if history.has_changes() and any(value is not None for value in history.deleted):
            raise StateError(
                f"{name} is frozen once written",
                identifier="reference_snapshot_immutable",
            )


class LineItemMixin(ReferenceMonetaryFieldsMixin):
    """
    One product entry on a monetary document.

    USER EDITABLE: quantity, unit_sell_price, discount_is_percentage, discount_amount
    MANAGED: every field in MANAGED_LINE_FIELDS, rewritten by calculate_line_total()
    FROZEN: reference_product_* (copied from the Product when the line is created)
    """

    @declared_attr
    def product_id(cls):
        # Nullable: the product may be deleted later; the reference_* fields survive
        return db.Column(
            db.Integer,
            db.ForeignKey("products.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        )

    @declared_attr
    def product(cls):
        return db.relationship("Product")

    reference_product_code = db.Column(db.String(64), nullable=False)
    reference_product_description = db.Column(db.String(255), nullable=False, default="")
    reference_product_sell_price = db.Column(MONEY, nullable=False)
    reference_product_cost_amount = db.Column(MONEY, nullable=False)
    reference_product_serialized = db.Column(db.Boolean, nullable=False, default=False)
    reference_product_inventoried = db.Column(db.Boolean, nullable=False, default=False)

    quantity = db.Column(MONEY, nullable=False)
    unit_sell_price = db.Column(MONEY, nullable=False)
    discount_is_percentage = db.Column(db.Boolean, nullable=False, default=False)
    # 0.50 = 50% when discount_is_percentage, otherwise 12.50 = 12.50 off per unit
    discount_amount = db.Column(MONEY, nullable=False, default=Decimal("0"))

    unit_discount_amount = db.Column(CALCULATED, nullable=False)
    unit_net_price = db.Column(CALCULATED, nullable=False)
    unit_tax_amount = db.Column(CALCULATED, nullable=False)
    unit_profit_margin = db.Column(CALCULATED, nullable=False)

    total_sub_total = db.Column(CALCULATED, nullable=False)
    total_discount_amount = db.Column(CALCULATED, nullable=False)
    total_cost = db.Column(CALCULATED, nullable=False)
    total_profit_margin = db.Column(CALCULATED, nullable=False)
    total_tax_amount = db.Column(CALCULATED, nullable=False)
    total = db.Column(CALCULATED, nullable=False)

    def snapshot_product(self, product) -> None:
        """Freeze the product fields at line creation; later product edits do not reach the line."""
        self.product_id = product.id
        self.reference_product_code = product.code
        self.reference_product_description = product.description or ""
        self.reference_product_sell_price = product.sell_price
        self.reference_product_cost_amount = product.effective_cost_amount
        self.reference_product_serialized = bool(product.serialized)
        self.reference_product_inventoried = bool(product.inventoried)

    def line_inputs(self) -> LineInputs:
        return LineInputs(
            quantity=self.quantity,
            unit_sell_price=self.unit_sell_price,
            discount_is_percentage=bool(self.discount_is_percentage),
            discount_amount=self.discount_amount if self.discount_amount is not None else Decimal("0"),
            tax_rate=self.reference_tax_rate,
            cost_amount=self.reference_product_cost_amount,
        )

    def calculate_line_total(self) -> LineAmounts:
        """Recompute every managed field from the editable inputs."""
        amounts = calculate_line(self.line_inputs())
        for name in MANAGED_LINE_FIELDS:
            setattr(self, name, getattr(amounts, name))
        return amounts

    def monetary_fields_dict(self) -> dict:
        data = {
            "product_id": self.product_id,
            "reference_product_code": self.reference_product_code,
            "reference_product_description": self.reference_product_description,
            "reference_product_sell_price": decimal_str(self.reference_product_sell_price),
            "reference_product_cost_amount": decimal_str(self.reference_product_cost_amount),
            "reference_product_serialized": self.reference_product_serialized,
            "reference_product_inventoried": self.reference_product_inventoried,
            "quantity": decimal_str(self.quantity),
            "unit_sell_price": decimal_str(self.unit_sell_price),
            "discount_is_percentage": self.discount_is_percentage,
            "discount_amount": decimal_str(self.discount_amount),
        }
        for name in MANAGED_LINE_FIELDS:
            data[name] = decimal_str(getattr(self, name))
        return data


class MonetaryDocumentMixin(ReferenceMonetaryFieldsMixin):
    """
    Document-level totals, each the sum of the like-named line field.

    Concrete documents must provide `current_lines()` returning the live
    (non-deleted) LineItemMixin rows.
    """

    total_sub_total = db.Column(CALCULATED, nullable=False, default=Decimal("0"))
    total_discount_amount = db.Column(CALCULATED, nullable=False, default=Decimal("0"))
    total_cost = db.Column(CALCULATED, nullable=False, default=Decimal("0"))
    total_profit_margin = db.Column(CALCULATED, nullable=False, default=Decimal("0"))
    total_tax_amount = db.Column(CALCULATED, nullable=False, default=Decimal("0"))
    total = db.Column(CALCULATED, nullable=False, default=Decimal("0"))

    def current_lines(self) -> list:
        raise NotImplementedError

    def calculate_totals(self) -> DocumentTotals:
        """Recompute every current line, then sum them onto the document."""
        lines = self.current_lines()
        for line in lines:
            line.calculate_line_total()
        totals = sum_document_totals(lines)
        for name in TOTAL_FIELDS:
            setattr(self, name, getattr(totals, name))
        return totals

    def document_totals(self) -> DocumentTotals:
        return DocumentTotals(**{name: getattr(self, name) for name in TOTAL_FIELDS})

    def totals_dict(self) -> dict:
        return {name: decimal_str(getattr(self, name)) for name in TOTAL_FIELDS}
