# Overview: Pure line-item and document-totals arithmetic; no database access.

"""
repairpos Monetary Invariants (authoritative)

- All amounts are decimal.Decimal. Floats never enter a calculation and no
  intermediate value is rounded.
- Inputs carry at most 4 decimal places, so every derived amount has at most
  16 and is stored exactly.
- Derived line fields are a pure function of the editable inputs plus the
  reference snapshot (tax rate) and the product cost snapshot. Recomputing
  with unchanged inputs yields identical outputs.
- total == total_sub_total + total_tax_amount exactly.
- A document total is the sum of its current lines; an empty document is zero.
- A negative line total is a ValidationError, never clamped.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Context, Decimal, localcontext
from typing import Any, Iterable, Optional

from .errors import ValidationError


ZERO = Decimal("0")

# Wide enough that no product or sum of 4-place inputs within MAX_MONEY is rounded
DECIMAL_CONTEXT = Context(prec=80)

BASE_EXCHANGE_RATE = Decimal("1.0000")

TOTAL_FIELDS = (
    "total_sub_total",
    "total_discount_amount",
    "total_cost",
    "total_profit_margin",
    "total_tax_amount",
    "total",
)


@dataclass(frozen=True)
class ReferenceSnapshot:
    """Currency and tax values copied by value at document/line creation."""

    currency_id: int
    currency_name: str
    currency_code: str
    currency_rate: Decimal

    tax_id: int
    tax_code: str
    tax_rate: Decimal
    tax_currency_name: str
    tax_currency_code: str
    tax_currency_rate: Decimal

    # Only populated when currency_rate != 1.0000
    base_currency_id: Optional[int] = None
    base_currency_name: Optional[str] = None
    base_currency_code: Optional[str] = None
    base_currency_rate: Optional[Decimal] = None

    @property
    def needs_base_currency(self) -> bool:
        return self.currency_rate != BASE_EXCHANGE_RATE

    def to_dict(self) -> dict:
        return {
            "currency_id": self.currency_id,
            "currency_name": self.currency_name,
            "currency_code": self.currency_code,
            "currency_rate": str(self.currency_rate),
            "base_currency_id": self.base_currency_id,
            "base_currency_name": self.base_currency_name,
            "base_currency_code": self.base_currency_code,
            "base_currency_rate": str(self.base_currency_rate) if self.base_currency_rate is not None else None,
            "tax_id": self.tax_id,
            "tax_code": self.tax_code,
            "tax_rate": str(self.tax_rate),
            "tax_currency_name": self.tax_currency_name,
            "tax_currency_code": self.tax_currency_code,
            "tax_currency_rate": str(self.tax_currency_rate),
        }


@dataclass(frozen=True)
class LineInputs:
    """User-editable fields plus the frozen rates a line is computed against."""

    quantity: Decimal
    unit_sell_price: Decimal
    discount_is_percentage: bool
    discount_amount: Decimal
    tax_rate: Decimal
    cost_amount: Decimal


@dataclass(frozen=True)
class LineAmounts:
    """System-managed fields of a line item."""

    unit_discount_amount: Decimal
    unit_net_price: Decimal
    unit_tax_amount: Decimal
    unit_profit_margin: Decimal

    total_sub_total: Decimal
    total_discount_amount: Decimal
    total_cost: Decimal
    total_profit_margin: Decimal
    total_tax_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class DocumentTotals:
    total_sub_total: Decimal = ZERO
    total_discount_amount: Decimal = ZERO
    total_cost: Decimal = ZERO
    total_profit_margin: Decimal = ZERO
    total_tax_amount: Decimal = ZERO
    total: Decimal = ZERO

    def to_dict(self) -> dict:
        return {name: str(getattr(self, name)) for name in TOTAL_FIELDS}


def calculate_line(inputs: LineInputs) -> LineAmounts:
    """
    Derive every managed field of a line item.

    discount_amount is a fraction of the unit price (0.10 = 10%) when
    discount_is_percentage, otherwise a flat amount per unit.

    Raises:
        ValidationError: quantity <= 0, unit_sell_price < 0, or a negative total
    """
    if inputs.quantity <= 0:
        raise ValidationError(
            "Quantity must be greater than zero",
            identifier="line_item_invalid_quantity",
            details={"quantity": str(inputs.quantity)},
        )
    if inputs.unit_sell_price < 0:
        raise ValidationError(
            "Unit sell price cannot be negative",
            identifier="line_item_invalid_sell_price",
            details={"unit_sell_price": str(inputs.unit_sell_price)},
        )

    with localcontext(DECIMAL_CONTEXT):
        if inputs.discount_is_percentage:
            unit_discount = inputs.unit_sell_price * inputs.discount_amount
        else:
            unit_discount = inputs.discount_amount

        # May go negative (loss leader); only the line total is guarded.
        unit_net = inputs.unit_sell_price - unit_discount
        unit_tax = inputs.tax_rate * unit_net
        unit_margin = unit_net - inputs.cost_amount

        quantity = inputs.quantity
        sub_total = unit_net * quantity
        tax_total = unit_tax * quantity
        total = sub_total + tax_total
        total_discount = unit_discount * quantity
        total_cost = inputs.cost_amount * quantity
        total_margin = unit_margin * quantity

    if total < 0:
        raise ValidationError(
            "Line total cannot be negative",
            identifier="line_item_negative_total",
            details={"total": str(total)},
        )

    return LineAmounts(
        unit_discount_amount=unit_discount,
        unit_net_price=unit_net,
        unit_tax_amount=unit_tax,
        unit_profit_margin=unit_margin,
        total_sub_total=sub_total,
        total_discount_amount=total_discount,
        total_cost=total_cost,
        total_profit_margin=total_margin,
        total_tax_amount=tax_total,
        total=total,
    )


def sum_document_totals(lines: Iterable[Any]) -> DocumentTotals:
    """
    Sum the like-named total fields of every line.

    Accepts anything exposing the TOTAL_FIELDS attributes (LineAmounts or a
    mapped line row). Callers recompute each line first.
    """
    sums = {name: ZERO for name in TOTAL_FIELDS}
    with localcontext(DECIMAL_CONTEXT):
        for line in lines:
            for name in TOTAL_FIELDS:
                sums[name] += getattr(line, name)
    return DocumentTotals(**sums)
