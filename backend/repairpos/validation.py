from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from .errors import ValidationError
from .monetary import DECIMAL_CONTEXT


# NUMERIC(19,4) holds at most 15 integer digits
MAX_MONEY = Decimal("999999999999999.9999")


def parse_decimal(value: Any, field: str, *, allow_negative: bool = True, places: int = 4) -> Decimal:
    """
    Coerce a monetary input to Decimal.

    Accepts Decimal, int and plain numeric strings. Floats are rejected so a
    binary rounding error can never enter the calculation; booleans are
    rejected even though they are ints.

    More than `places` significant decimal places is rejected: the value must
    fit its NUMERIC(19,4) column unchanged. Trailing zeros are fine.
    """
    if value is None:
        raise ValidationError(f"{field} is required", identifier="invalid_decimal")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a decimal", identifier="invalid_decimal")
    if isinstance(value, float):
        raise ValidationError(
            f"{field} must be a decimal string, not a float",
            identifier="invalid_decimal",
        )

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a decimal", identifier="invalid_decimal")
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a decimal", identifier="invalid_decimal")
    else:
        raise ValidationError(f"{field} must be a decimal", identifier="invalid_decimal")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite decimal", identifier="invalid_decimal")
    if abs(result) > MAX_MONEY:
        raise ValidationError(f"{field} is out of range", identifier="invalid_decimal")
    quantum = Decimal(1).scaleb(-places)
    if result != result.quantize(quantum, context=DECIMAL_CONTEXT):
        raise ValidationError(
            f"{field} allows at most {places} decimal places",
            identifier="invalid_decimal_places",
            details={"value": str(result), "places": places},
        )
    if not allow_negative and result < 0:
        raise ValidationError(f"{field} cannot be negative", identifier="invalid_decimal")
    return result


def parse_int(value: Any, field: str) -> int:
    """Strict integer coercion (no floats, decimals or scientific notation)."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    raise ValidationError(f"{field} must be an integer", identifier="invalid_integer")


def parse_currency_code(value: Any) -> str:
    code = str(value or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(
            "Currency code must be three letters",
            identifier="currency_invalid_code",
            details={"code": value},
        )
    return code


def parse_serials(values: Iterable[Any] | None) -> list[str]:
    """Normalize a serial number list: strip whitespace, reject blanks and duplicates."""
    if values is None:
        return []
    if isinstance(values, str):
        raise ValidationError(
            "Serial numbers must be a list",
            identifier="inventory_serialnumber_query",
        )

    serials: list[str] = []
    seen: set[str] = set()
    for raw in values:
        serial = str(raw or "").strip()
        if not serial:
            raise ValidationError(
                "Serial numbers cannot be blank",
                identifier="inventory_serialnumber_query",
            )
        if serial in seen:
            raise ValidationError(
                f"Serial number {serial} is listed more than once",
                identifier="inventory_serialnumber_query",
                details={"serial_number": serial},
            )
        seen.add(serial)
        serials.append(serial)
    return serials
