# Overview: Currency and tax master data, default resolution, and reference snapshot capture.

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..errors import ConfigurationError, NotFoundError, StateError, ValidationError
from ..extensions import db
from ..models import Currency, Tax
from ..monetary import BASE_EXCHANGE_RATE, ReferenceSnapshot
from ..time_utils import utcnow
from ..validation import parse_currency_code, parse_decimal
from .audit_service import append_entity_log
from .concurrency import lock_for_update, run_with_retry
"""
repairpos Currency/Tax Invariants (authoritative)

- Exactly one live Currency has is_default=True once the system is initialized.
- Each Currency has at most one live Tax with default_tax=True; the default
  Currency must have one.
- Setting a default clears the flag on every other row in the same transaction.
- The base currency has exchange_rate == 1.0000.
- Deletes are soft (deleted_at). The default currency and non-removable taxes
  cannot be removed.
- Snapshots copy values; nothing downstream reads live Currency/Tax rows
  after capture.
"""


def _live_currencies():
    return db.session.query(Currency).filter(Currency.deleted_at.is_(None))


def _live_taxes():
    return db.session.query(Tax).filter(Tax.deleted_at.is_(None))


def _get_currency(currency_id: int, *, lock: bool = False) -> Currency:
    query = _live_currencies().filter(Currency.id == currency_id)
    if lock:
        query = lock_for_update(query)
    currency = query.first()
    if currency is None:
        raise NotFoundError.for_entity("Currency", currency_id)
    return currency


def _get_tax(tax_id: int, *, lock: bool = False) -> Tax:
    query = _live_taxes().filter(Tax.id == tax_id)
    if lock:
        query = lock_for_update(query)
    tax = query.first()
    if tax is None:
        raise NotFoundError.for_entity("Tax", tax_id)
    return tax


def _parse_exchange_rate(value) -> Decimal:
    rate = parse_decimal(value, "exchange_rate")
    if rate <= 0:
        raise ValidationError(
            "Exchange rate must be greater than zero",
            identifier="currency_invalid_exchange_rate",
        )
    return rate


def _parse_tax_code(value) -> str:
    code = str(value or "").strip().upper()
    if not code:
        raise ValidationError("Tax code is required", identifier="tax_invalid_code")
    return code


def _require_unique_tax_code(code: str, *, except_id: int | None = None) -> None:
    query = db.session.query(Tax).filter(Tax.tax_code == code)
    if except_id is not None:
        query = query.filter(Tax.id != except_id)
    if query.first():
        raise ValidationError(
            f"Tax code {code} already exists",
            identifier="tax_duplicate_code",
        )


def _clear_default_currency(except_id: int) -> None:
    others = lock_for_update(
        _live_currencies().filter(Currency.is_default.is_(True), Currency.id != except_id)
    ).all()
    for other in others:
        other.is_default = False


def _clear_default_tax(currency_id: int, except_id: int) -> None:
    others = lock_for_update(
        _live_taxes().filter(
            Tax.currency_id == currency_id,
            Tax.default_tax.is_(True),
            Tax.id != except_id,
        )
    ).all()
    for other in others:
        other.default_tax = False


# --------------------------------------------------------------------------
# Currencies
# --------------------------------------------------------------------------

def list_currencies() -> list[Currency]:
    return _live_currencies().order_by(Currency.id.asc()).all()


def get_currency(currency_id: int) -> Currency:
    return _get_currency(currency_id)


def create_currency(
    name: str,
    code: str,
    exchange_rate,
    *,
    is_default: bool = False,
    default_tax_code: str | None = None,
    default_tax_rate=None,
    user_id: int | None = None,
) -> Currency:
    """
    Create a currency, optionally with its default tax.

    A default currency must have a default tax, so is_default=True requires
    default_tax_code/default_tax_rate; both are written in one transaction.

    Raises:
        ValidationError: blank/duplicate name, bad code, non-positive rate
        ConfigurationError: is_default without a default tax
    """
    def _op():
        clean_name = str(name or "").strip()
        if not clean_name:
            raise ValidationError("Currency name is required", identifier="currency_invalid_name")
        if _live_currencies().filter(Currency.name == clean_name).first():
            raise ValidationError(
                f"Currency {clean_name} already exists",
                identifier="currency_duplicate_name",
            )
        if is_default and default_tax_code is None:
            raise ConfigurationError(
                f"Currency {clean_name} has no default tax",
                identifier="tax_default_not_found",
            )

        currency = Currency(
            name=clean_name,
            code=parse_currency_code(code),
            exchange_rate=_parse_exchange_rate(exchange_rate),
            is_default=bool(is_default),
        )
        db.session.add(currency)
        db.session.flush()

        if default_tax_code is not None:
            tax_code = _parse_tax_code(default_tax_code)
            _require_unique_tax_code(tax_code)
            db.session.add(Tax(
                currency_id=currency.id,
                tax_code=tax_code,
                tax_rate=parse_decimal(default_tax_rate, "tax_rate", allow_negative=False),
                default_tax=True,
                removable=False,
            ))
            db.session.flush()

        if currency.is_default:
            _clear_default_currency(currency.id)

        append_entity_log(
            entity_type="currency",
            entity_id=currency.id,
            user_id=user_id,
            system_note=f"Created currency {currency.code} at {currency.exchange_rate}",
        )
        db.session.commit()
        return currency

    return run_with_retry(_op)


def update_currency(
    currency_id: int,
    *,
    name: str | None = None,
    code: str | None = None,
    exchange_rate=None,
    user_id: int | None = None,
) -> Currency:
    """
    Edit a currency in place.

    Documents already carry their own copy of the rate, so an edit here never
    changes historical totals.
    """
    def _op():
        currency = _get_currency(currency_id, lock=True)
        if name is not None:
            clean_name = str(name).strip()
            if not clean_name:
                raise ValidationError("Currency name is required", identifier="currency_invalid_name")
            currency.name = clean_name
        if code is not None:
            currency.code = parse_currency_code(code)
        if exchange_rate is not None:
            currency.exchange_rate = _parse_exchange_rate(exchange_rate)

        append_entity_log(
            entity_type="currency",
            entity_id=currency.id,
            user_id=user_id,
            system_note=f"Updated currency {currency.code}",
        )
        db.session.commit()
        return currency

    return run_with_retry(_op)


def set_default_currency(currency_id: int, *, user_id: int | None = None) -> Currency:
    """
    Make a currency the system default; every other currency loses the flag.

    Raises:
        NotFoundError: unknown currency
        ConfigurationError: the currency has no default tax
    """
    def _op():
        currency = _get_currency(currency_id, lock=True)
        if find_default_tax(currency.id) is None:
            raise ConfigurationError(
                f"Currency {currency.code} has no default tax",
                identifier="tax_default_not_found",
                details={"currency_id": currency.id},
            )

        _clear_default_currency(currency.id)
        currency.is_default = True

        append_entity_log(
            entity_type="currency",
            entity_id=currency.id,
            user_id=user_id,
            system_note=f"Set {currency.code} as default currency",
        )
        db.session.commit()
        current_app.logger.info("Default currency set to %s (id=%s)", currency.code, currency.id)
        return currency

    return run_with_retry(_op)


def remove_currency(currency_id: int, *, user_id: int | None = None) -> Currency:
    def _op():
        currency = _get_currency(currency_id, lock=True)
        if currency.is_default:
            raise StateError(
                "The default currency cannot be removed",
                identifier="currency_remove_default",
            )
        now = utcnow()
        currency.deleted_at = now
        for tax in currency.taxes:
            if tax.deleted_at is None:
                tax.deleted_at = now

        append_entity_log(
            entity_type="currency",
            entity_id=currency.id,
            user_id=user_id,
            system_note=f"Removed currency {currency.code}",
        )
        db.session.commit()
        return currency

    return run_with_retry(_op)


def find_default_currency(*, lock: bool = False) -> Currency | None:
    query = _live_currencies().filter(Currency.is_default.is_(True))
    if lock:
        query = lock_for_update(query)
    return query.order_by(Currency.id.asc()).first()


def find_base_currency(*, lock: bool = False) -> Currency | None:
    """The currency every exchange rate is relative to (rate exactly 1.0000)."""
    query = _live_currencies().filter(Currency.exchange_rate == BASE_EXCHANGE_RATE)
    if lock:
        query = lock_for_update(query)
    # Prefer the default currency when it is itself the base
    return query.order_by(Currency.is_default.desc(), Currency.id.asc()).first()


# --------------------------------------------------------------------------
# Taxes
# --------------------------------------------------------------------------

def list_taxes(currency_id: int | None = None) -> list[Tax]:
    query = _live_taxes()
    if currency_id is not None:
        query = query.filter(Tax.currency_id == currency_id)
    return query.order_by(Tax.id.asc()).all()


def create_tax(
    currency_id: int,
    tax_code: str,
    tax_rate,
    *,
    default_tax: bool = False,
    removable: bool = True,
    user_id: int | None = None,
) -> Tax:
    """
    Create a tax under a currency.

    tax_rate is a fraction: "0.0825" is 8.25%.
    """
    def _op():
        currency = _get_currency(currency_id, lock=True)
        code = _parse_tax_code(tax_code)
        _require_unique_tax_code(code)

        tax = Tax(
            currency_id=currency.id,
            tax_code=code,
            tax_rate=parse_decimal(tax_rate, "tax_rate", allow_negative=False),
            default_tax=bool(default_tax),
            removable=bool(removable),
        )
        db.session.add(tax)
        db.session.flush()

        if tax.default_tax:
            _clear_default_tax(currency.id, tax.id)

        append_entity_log(
            entity_type="tax",
            entity_id=tax.id,
            user_id=user_id,
            system_note=f"Created tax {tax.tax_code} at {tax.tax_rate} for {currency.code}",
        )
        db.session.commit()
        return tax

    return run_with_retry(_op)


def update_tax(
    tax_id: int,
    *,
    tax_code: str | None = None,
    tax_rate=None,
    user_id: int | None = None,
) -> Tax:
    def _op():
        tax = _get_tax(tax_id, lock=True)
        if tax_code is not None:
            code = _parse_tax_code(tax_code)
            _require_unique_tax_code(code, except_id=tax.id)
            tax.tax_code = code
        if tax_rate is not None:
            tax.tax_rate = parse_decimal(tax_rate, "tax_rate", allow_negative=False)

        append_entity_log(
            entity_type="tax",
            entity_id=tax.id,
            user_id=user_id,
            system_note=f"Updated tax {tax.tax_code}",
        )
        db.session.commit()
        return tax

    return run_with_retry(_op)


def set_default_tax(tax_id: int, *, user_id: int | None = None) -> Tax:
    """Make a tax the default of its currency; siblings lose the flag."""
    def _op():
        tax = _get_tax(tax_id, lock=True)
        _clear_default_tax(tax.currency_id, tax.id)
        tax.default_tax = True

        append_entity_log(
            entity_type="tax",
            entity_id=tax.id,
            user_id=user_id,
            system_note=f"Set {tax.tax_code} as default tax",
        )
        db.session.commit()
        current_app.logger.info("Default tax for currency %s set to %s", tax.currency_id, tax.tax_code)
        return tax

    return run_with_retry(_op)


def remove_tax(tax_id: int, *, user_id: int | None = None) -> Tax:
    def _op():
        tax = _get_tax(tax_id, lock=True)
        if not tax.removable:
            raise StateError(
                f"Tax {tax.tax_code} cannot be removed",
                identifier="tax_not_removable",
            )
        if tax.default_tax:
            raise StateError(
                "The default tax cannot be removed",
                identifier="tax_remove_default",
            )
        tax.deleted_at = utcnow()

        append_entity_log(
            entity_type="tax",
            entity_id=tax.id,
            user_id=user_id,
            system_note=f"Removed tax {tax.tax_code}",
        )
        db.session.commit()
        return tax

    return run_with_retry(_op)


def find_default_tax(currency_id: int, *, lock: bool = False) -> Tax | None:
    query = _live_taxes().filter(Tax.currency_id == currency_id, Tax.default_tax.is_(True))
    if lock:
        query = lock_for_update(query)
    return query.order_by(Tax.id.asc()).first()


# --------------------------------------------------------------------------
# Default resolution and snapshots
# --------------------------------------------------------------------------

def find_default() -> tuple[Currency, Tax]:
    """
    Resolve the system default Currency and its default Tax.

    Raises:
        ConfigurationError: no default currency, or it has no default tax
    """
    currency = find_default_currency(lock=True)
    if currency is None:
        raise ConfigurationError("Default currency not found", identifier="currency_default_not_found")
    tax = find_default_tax(currency.id, lock=True)
    if tax is None:
        raise ConfigurationError(
            "Default tax not found",
            identifier="tax_default_not_found",
            details={"currency_id": currency.id},
        )
    return currency, tax


def validate_currency_tax(currency_id: int, tax_id: int) -> tuple[Currency, Tax]:
    """
    Check that tax_id belongs to currency_id.

    Raises:
        NotFoundError: either id does not resolve
        ValidationError: the tax belongs to another currency
    """
    currency = _get_currency(currency_id, lock=True)
    tax = _get_tax(tax_id, lock=True)
    if tax.currency_id != currency.id:
        raise ValidationError(
            "Invalid tax ID for this currency",
            identifier="tax_invalid_id",
            details={"currency_id": currency.id, "tax_id": tax.id},
        )
    return currency, tax


def resolve_currency_tax(currency_id: int | None = None, tax_id: int | None = None) -> tuple[Currency, Tax]:
    """
    Pick the currency/tax pair a new document is priced in.

    - neither given: the system default pair
    - currency only: that currency with its own default tax
    - tax only: the tax with its owning currency
    - both: must belong together
    """
    if currency_id is None and tax_id is None:
        return find_default()

    if tax_id is None:
        currency = _get_currency(currency_id, lock=True)
        tax = find_default_tax(currency.id, lock=True)
        if tax is None:
            raise ConfigurationError(
                f"Currency {currency.code} has no default tax",
                identifier="tax_default_not_found",
                details={"currency_id": currency.id},
            )
        return currency, tax

    if currency_id is None:
        tax = _get_tax(tax_id, lock=True)
        currency = _get_currency(tax.currency_id, lock=True)
        return currency, tax

    return validate_currency_tax(currency_id, tax_id)


def capture_snapshot(currency_id: int | None = None, tax_id: int | None = None) -> ReferenceSnapshot:
    """
    Copy the currency/tax values a document is created against.

    Reads only; the caller persists the snapshot with its document in its own
    transaction.

    Raises:
        ConfigurationError: default currency/tax missing, or no base currency
            when the chosen currency is not the base
        NotFoundError: an override id does not resolve
        ValidationError: the tax override does not belong to the currency override
    """
    currency, tax = resolve_currency_tax(currency_id, tax_id)
    tax_currency = tax.currency

    base_fields = {}
    if currency.exchange_rate != BASE_EXCHANGE_RATE:
        base = find_base_currency(lock=True)
        if base is None:
            raise ConfigurationError(
                "Base currency (exchange rate 1.0000) not found",
                identifier="currency_base_not_found",
            )
        base_fields = {
            "base_currency_id": base.id,
            "base_currency_name": base.name,
            "base_currency_code": base.code,
            "base_currency_rate": base.exchange_rate,
        }

    return ReferenceSnapshot(
        currency_id=currency.id,
        currency_name=currency.name,
        currency_code=currency.code,
        currency_rate=currency.exchange_rate,
        tax_id=tax.id,
        tax_code=tax.tax_code,
        tax_rate=tax.tax_rate,
        tax_currency_name=tax_currency.name,
        tax_currency_code=tax_currency.code,
        tax_currency_rate=tax_currency.exchange_rate,
        **base_fields,
    )


def ensure_default_settings(
    *,
    currency_name: str,
    currency_code: str,
    tax_code: str,
    tax_rate,
) -> tuple[Currency, Tax]:
    """
    Seed a base default currency with a non-removable default tax.

    Safe to call repeatedly (idempotent): an existing default pair is returned untouched.
    """
    def _op():
        currency = find_default_currency(lock=True)
        if currency is None:
            currency = Currency(
                name=str(currency_name).strip(),
                code=parse_currency_code(currency_code),
                exchange_rate=BASE_EXCHANGE_RATE,
                is_default=True,
            )
            db.session.add(currency)
            db.session.flush()

        tax = find_default_tax(currency.id, lock=True)
        if tax is None:
            tax = Tax(
                currency_id=currency.id,
                tax_code=_parse_tax_code(tax_code),
                tax_rate=parse_decimal(tax_rate, "tax_rate", allow_negative=False),
                default_tax=True,
                removable=False,
            )
            db.session.add(tax)
            db.session.flush()

        db.session.commit()
        return currency, tax

    return run_with_retry(_op)
