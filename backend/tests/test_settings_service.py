from decimal import Decimal

import pytest

from repairpos.errors import ConfigurationError, NotFoundError, StateError, ValidationError
from repairpos.extensions import db
from repairpos.models import Currency, EntityLog, Tax
from repairpos.services import sales_service, settings_service


def test_capture_snapshot_without_defaults_is_configuration_error(db_session):
    with pytest.raises(ConfigurationError) as excinfo:
        settings_service.capture_snapshot()
    assert excinfo.value.identifier == "currency_default_not_found"
    assert excinfo.value.status_code == 500


def test_default_currency_requires_default_tax(db_session):
    with pytest.raises(ConfigurationError) as excinfo:
        settings_service.create_currency("US Dollar", "usd", "1.0000", is_default=True)
    assert excinfo.value.identifier == "tax_default_not_found"
    assert db_session.query(Currency).count() == 0


def test_create_default_currency_with_its_tax(db_session):
    currency = settings_service.create_currency(
        "US Dollar", "usd", "1.0000", is_default=True, default_tax_code="us-tx", default_tax_rate="0.0800"
    )

    snapshot = settings_service.capture_snapshot()
    assert snapshot.currency_id == currency.id
    assert snapshot.tax_code == "US-TX"
    assert snapshot.tax_rate == Decimal("0.0800")
    assert settings_service.find_default_tax(currency.id).removable is False


def test_default_currency_without_default_tax_is_configuration_error(db_session):
    # Only reachable by writing the rows directly
    currency = Currency(name="US Dollar", code="USD", exchange_rate=Decimal("1.0000"), is_default=True)
    db_session.add(currency)
    db_session.commit()
    settings_service.create_tax(currency.id, "US-TX", "0.0800")

    with pytest.raises(ConfigurationError) as excinfo:
        settings_service.capture_snapshot()
    assert excinfo.value.identifier == "tax_default_not_found"


def test_capture_snapshot_uses_defaults(usd, usd_tax):
    snapshot = settings_service.capture_snapshot()

    assert snapshot.currency_id == usd.id
    assert snapshot.currency_code == "USD"
    assert snapshot.currency_rate == Decimal("1.0000")
    assert snapshot.tax_id == usd_tax.id
    assert snapshot.tax_code == "US-TX"
    assert snapshot.tax_rate == Decimal("0.0800")
    assert snapshot.tax_currency_code == "USD"
    assert snapshot.base_currency_id is None


def test_capture_snapshot_adds_base_currency_for_foreign_default(usd):
    eur = settings_service.create_currency("Euro", "EUR", "1.0850")
    settings_service.create_tax(eur.id, "EU-VAT", "0.2000", default_tax=True)
    settings_service.set_default_currency(eur.id)

    snapshot = settings_service.capture_snapshot()

    assert snapshot.currency_code == "EUR"
    assert snapshot.currency_rate == Decimal("1.0850")
    assert snapshot.tax_code == "EU-VAT"
    assert snapshot.base_currency_id == usd.id
    assert snapshot.base_currency_code == "USD"
    assert snapshot.base_currency_rate == Decimal("1.0000")


def test_missing_base_currency_is_configuration_error(db_session):
    cad = settings_service.create_currency("Canadian Dollar", "CAD", "1.3600")
    settings_service.create_tax(cad.id, "CA-GST", "0.0500", default_tax=True)
    settings_service.set_default_currency(cad.id)

    with pytest.raises(ConfigurationError) as excinfo:
        settings_service.capture_snapshot()
    assert excinfo.value.identifier == "currency_base_not_found"


def test_currency_override_uses_its_default_tax(usd):
    eur = settings_service.create_currency("Euro", "EUR", "1.0850")
    vat = settings_service.create_tax(eur.id, "EU-VAT", "0.2000", default_tax=True)

    snapshot = settings_service.capture_snapshot(currency_id=eur.id)

    assert snapshot.currency_id == eur.id
    assert snapshot.tax_id == vat.id
    assert snapshot.base_currency_id == usd.id


def test_tax_override_uses_owning_currency(usd):
    reduced = settings_service.create_tax(usd.id, "US-REDUCED", "0.0200")

    snapshot = settings_service.capture_snapshot(tax_id=reduced.id)

    assert snapshot.currency_id == usd.id
    assert snapshot.tax_rate == Decimal("0.0200")


def test_tax_from_another_currency_is_rejected(usd):
    eur = settings_service.create_currency("Euro", "EUR", "1.0850")
    vat = settings_service.create_tax(eur.id, "EU-VAT", "0.2000", default_tax=True)

    with pytest.raises(ValidationError) as excinfo:
        settings_service.capture_snapshot(currency_id=usd.id, tax_id=vat.id)
    assert excinfo.value.identifier == "tax_invalid_id"


def test_unknown_override_is_not_found(usd):
    with pytest.raises(NotFoundError) as excinfo:
        settings_service.capture_snapshot(currency_id=9999)
    assert excinfo.value.identifier == "currency_not_found"


def test_set_default_currency_is_exclusive(usd):
    eur = settings_service.create_currency("Euro", "EUR", "1.0850")
    settings_service.create_tax(eur.id, "EU-VAT", "0.2000", default_tax=True)

    settings_service.set_default_currency(eur.id)

    defaults = db.session.query(Currency).filter(Currency.is_default.is_(True)).all()
    assert [c.id for c in defaults] == [eur.id]


def test_set_default_tax_is_exclusive_per_currency(usd, usd_tax):
    reduced = settings_service.create_tax(usd.id, "US-REDUCED", "0.0200")

    settings_service.set_default_tax(reduced.id)

    defaults = db.session.query(Tax).filter(Tax.currency_id == usd.id, Tax.default_tax.is_(True)).all()
    assert [t.id for t in defaults] == [reduced.id]
    assert settings_service.capture_snapshot().tax_id == reduced.id


def test_default_change_is_logged(usd):
    logs = db.session.query(EntityLog).filter_by(entity_type="currency", entity_id=usd.id).all()
    assert any("default currency" in log.system_note for log in logs)


def test_cannot_remove_default_currency(usd):
    with pytest.raises(StateError):
        settings_service.remove_currency(usd.id)


def test_cannot_remove_non_removable_tax(usd, usd_tax):
    other = settings_service.create_tax(usd.id, "US-OTHER", "0.0100", default_tax=True)
    assert other.default_tax is True

    with pytest.raises(StateError) as excinfo:
        settings_service.remove_tax(usd_tax.id)
    assert excinfo.value.identifier == "tax_not_removable"


def test_removed_tax_no_longer_resolves(usd):
    extra = settings_service.create_tax(usd.id, "US-EXTRA", "0.0100")
    settings_service.remove_tax(extra.id)

    with pytest.raises(NotFoundError):
        settings_service.capture_snapshot(tax_id=extra.id)


def test_invalid_currency_inputs(db_session):
    with pytest.raises(ValidationError) as excinfo:
        settings_service.create_currency("Bad", "US", "1.0")
    assert excinfo.value.identifier == "currency_invalid_code"

    with pytest.raises(ValidationError):
        settings_service.create_currency("Zero", "ZZZ", "0")

    with pytest.raises(ValidationError):
        settings_service.create_currency("Float", "FLT", 1.5)


def test_duplicate_tax_code_is_rejected(usd):
    with pytest.raises(ValidationError) as excinfo:
        settings_service.create_tax(usd.id, "us-tx", "0.0100")
    assert excinfo.value.identifier == "tax_duplicate_code"


def test_snapshot_survives_rate_edits(usd, usd_tax):
    sale = sales_service.create_sale(user_id=1)

    settings_service.update_currency(usd.id, exchange_rate="1.2500", name="Renamed")
    settings_service.update_tax(usd_tax.id, tax_rate="0.1000")

    db.session.expire_all()
    stored = sales_service.get_sale(sale.id)
    assert stored.reference_currency_rate == Decimal("1.0000")
    assert stored.reference_currency_name == "US Dollar"
    assert stored.reference_tax_rate == Decimal("0.0800")


def test_snapshot_columns_cannot_be_rewritten(usd):
    sale = sales_service.create_sale(user_id=1)

    with pytest.raises(StateError):
        sale.apply_reference_snapshot(settings_service.capture_snapshot())

    sale.reference_tax_rate = Decimal("0.5000")
    with pytest.raises(StateError) as excinfo:
        db.session.commit()
    assert excinfo.value.identifier == "reference_snapshot_immutable"
    db.session.rollback()


def test_ensure_default_settings_is_idempotent(db_session):
    first = settings_service.ensure_default_settings(
        currency_name="US", currency_code="USD", tax_code="NO-TAX", tax_rate="0.0000"
    )
    second = settings_service.ensure_default_settings(
        currency_name="US", currency_code="USD", tax_code="NO-TAX", tax_rate="0.0000"
    )

    assert first[0].id == second[0].id
    assert first[1].id == second[1].id
    assert first[1].removable is False
    assert db.session.query(Currency).count() == 1


def test_list_taxes_filters_by_currency(usd, usd_tax):
    eur = settings_service.create_currency("Euro", "EUR", "1.0850")
    settings_service.create_tax(eur.id, "EU-VAT", "0.2000", default_tax=True)

    assert [tax.tax_code for tax in settings_service.list_taxes(usd.id)] == ["US-TX"]
    assert len(settings_service.list_taxes()) == 2
    assert settings_service.get_currency(eur.id).code == "EUR"


def test_base_currency_matches_rate_written_without_places(db_session):
    base = settings_service.create_currency(
        "US Dollar", "USD", "1", is_default=True, default_tax_code="US-TX", default_tax_rate="0.08"
    )
    foreign = settings_service.create_currency(
        "Euro", "EUR", "1.0850", default_tax_code="EU-VAT", default_tax_rate="0.2000"
    )

    db.session.expire_all()
    assert settings_service.find_base_currency().id == base.id
    snapshot = settings_service.capture_snapshot(currency_id=foreign.id)
    assert snapshot.base_currency_id == base.id
    assert snapshot.currency_rate == Decimal("1.0850")
