from __future__ import annotations

from decimal import Decimal, localcontext

from sqlalchemy.types import TypeDecorator

from ..extensions import db
from ..monetary import DECIMAL_CONTEXT


class ExactDecimal(TypeDecorator):
    """
    Fixed-scale Decimal column that round-trips without loss on every backend.

    SQLite has no decimal storage (NUMERIC values come back as floats), so there
    the value is stored as plain fixed-scale text, e.g. "12.5000". Other
    dialects get a native NUMERIC(precision, scale).

    Values are quantized to `scale` on write, so the text form is canonical and
    equality filters (exchange_rate == 1.0000) compare correctly on SQLite.
    """

    impl = db.Numeric
    cache_ok = True

    def __init__(self, precision: int, scale: int):
        super().__init__(precision, scale, asdecimal=True)
        self.precision = precision
        self.scale = scale
        self.quantum = Decimal(1).scaleb(-scale)

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            # sign + integer digits + point + fraction
            return dialect.type_descriptor(db.String(self.precision + 2))
        return dialect.type_descriptor(db.Numeric(self.precision, self.scale, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError("ExactDecimal columns do not accept floats")
        with localcontext(DECIMAL_CONTEXT):
            quantized = Decimal(value).quantize(self.quantum)
        if quantized.is_zero():
            quantized = abs(quantized)
        if dialect.name == "sqlite":
            return format(quantized, "f")
        return quantized

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(str(value)) if not isinstance(value, Decimal) else value


# Inputs, rates and snapshot values: at most 4 decimal places
MONEY = ExactDecimal(19, 4)

# Derived amounts: 4-place inputs multiply out to at most 16 places
# (rate * (price - price * discount) * quantity), so these hold them exactly
CALCULATED = ExactDecimal(48, 16)


def decimal_str(value: Decimal | None) -> str | None:
    """Serialize a Decimal without exponent notation (None passes through)."""
    if value is None:
        return None
    return format(value, "f")
