# Overview: Flask CLI command groups for bootstrap, settings, and inventory inspection.

# backend/repairpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to the factory (PowerShell: $env:FLASK_APP="repairpos:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, the default base currency with its
#   default tax, and the system inventory locations.
#
# Currencies and taxes:
# - python -m flask currencies list
# - python -m flask currencies create --name "Euro" --code EUR --rate 1.0850
# - python -m flask currencies set-default 2
# - python -m flask taxes create --currency-id 1 --code US-TX --rate 0.0825 --default
#
# Inventory:
# - python -m flask locations list [--all]
# - python -m flask inventory quantity --product-id 1 --location-id 4
# - python -m flask inventory adjust --product-id 1 --location-id 10 --amount 5 --user-id 1 --serial SN1 --serial SN2
# - python -m flask inventory transfer --product-id 1 --from-location-id 10 --to-location-id 1 --amount 3 --user-id 1

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import AppError
from .extensions import db
from .models.inventory import TRANSFER_TYPE_ADJUSTMENT, TRANSFER_TYPE_MULTI_STORE, TRANSFER_TYPE_TRANSFER
from .services import inventory_service, location_service, settings_service, transfer_service


def _fail(exc: AppError):
    raise click.ClickException(f"{exc.identifier}: {exc.reason}")


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize repairpos: tables, default currency/tax, and inventory locations.

    Safe to run repeatedly.
    """
    click.echo("START Initializing repairpos...")
    db.create_all()

    config = current_app.config
    try:
        currency, tax = settings_service.ensure_default_settings(
            currency_name=config["DEFAULT_CURRENCY_NAME"],
            currency_code=config["DEFAULT_CURRENCY_CODE"],
            tax_code=config["DEFAULT_TAX_CODE"],
            tax_rate=config["DEFAULT_TAX_RATE"],
        )
    except AppError as exc:
        _fail(exc)
    click.echo(f"PASS Default currency: {currency.name} ({currency.code}), default tax: {tax.tax_code} @ {tax.tax_rate}")

    created = location_service.ensure_system_locations()
    click.echo(f"PASS Inventory locations ready ({len(created)} created)")


@click.group('currencies')
def currencies_group():
    """Currency settings."""


@currencies_group.command('list')
@with_appcontext
def list_currencies():
    currencies = settings_service.list_currencies()
    if not currencies:
        click.echo("No currencies found. Run: python -m flask system init")
        return

    click.echo("\n" + "=" * 72)
    click.echo(f"{'ID':<5} {'Name':<24} {'Code':<6} {'Rate':<14} {'Default':<8} {'Taxes'}")
    click.echo("=" * 72)
    for currency in currencies:
        taxes = ", ".join(
            f"{t.tax_code}{'*' if t.default_tax else ''}" for t in currency.taxes if t.deleted_at is None
        )
        default_str = "yes" if currency.is_default else ""
        click.echo(
            f"{currency.id:<5} {currency.name:<24} {currency.code:<6} "
            f"{str(currency.exchange_rate):<14} {default_str:<8} {taxes}"
        )
    click.echo("=" * 72 + "\n")


@currencies_group.command('create')
@click.option('--name', required=True, help='Currency name')
@click.option('--code', required=True, help='ISO 4217 code, e.g. EUR')
@click.option('--rate', required=True, help='Exchange rate relative to the base currency')
@click.option('--default', 'is_default', is_flag=True, help='Make this the default currency')
@click.option('--tax-code', help='Default tax code for the new currency')
@click.option('--tax-rate', help='Default tax rate as a fraction, e.g. 0.0825')
@with_appcontext
def create_currency(name, code, rate, is_default, tax_code, tax_rate):
    try:
        currency = settings_service.create_currency(
            name,
            code,
            rate,
            is_default=is_default,
            default_tax_code=tax_code,
            default_tax_rate=tax_rate,
        )
    except AppError as exc:
        _fail(exc)
    click.echo(f"PASS Created currency {currency.code} (ID: {currency.id})")


@currencies_group.command('set-default')
@click.argument('currency_id', type=int)
@with_appcontext
def set_default_currency(currency_id):
    try:
        currency = settings_service.set_default_currency(currency_id)
    except AppError as exc:
        _fail(exc)
    click.echo(f"PASS {currency.code} is now the default currency")


@click.group('taxes')
def taxes_group():
    """Tax settings."""


@taxes_group.command('create')
@click.option('--currency-id', type=int, required=True, help='Owning currency ID')
@click.option('--code', required=True, help='Tax code, e.g. US-TX')
@click.option('--rate', required=True, help='Rate as a fraction, e.g. 0.0825')
@click.option('--default', 'default_tax', is_flag=True, help='Make this the currency default tax')
@with_appcontext
def create_tax(currency_id, code, rate, default_tax):
    try:
        tax = settings_service.create_tax(currency_id, code, rate, default_tax=default_tax)
    except AppError as exc:
        _fail(exc)
    click.echo(f"PASS Created tax {tax.tax_code} (ID: {tax.id})")


@click.group('locations')
def locations_group():
    """Inventory locations."""


@locations_group.command('list')
@click.option('--all', 'include_system', is_flag=True, help='Include system-use-only locations')
@with_appcontext
def list_locations(include_system):
    locations = location_service.list_locations(include_system=include_system)
    click.echo(f"{'ID':<5} {'Name':<28} {'Default':<8} {'System'}")
    for location in locations:
        click.echo(
            f"{location.id:<5} {location.name:<28} "
            f"{'yes' if location.default_location else '':<8} {'yes' if location.system_use_only else ''}"
        )


@click.group('inventory')
def inventory_group():
    """Inventory ledger inspection and adjustments."""


@inventory_group.command('quantity')
@click.option('--product-id', type=int, required=True)
@click.option('--location-id', type=int, required=True)
@click.option('--as-of', help='ISO-8601 timestamp (inclusive)')
@with_appcontext
def show_quantity(product_id, location_id, as_of):
    try:
        quantity = inventory_service.get_current_quantity(product_id, location_id, as_of=as_of)
    except AppError as exc:
        _fail(exc)
    click.echo(str(quantity))


@inventory_group.command('adjust')
@click.option('--product-id', type=int, required=True)
@click.option('--location-id', type=int, required=True)
@click.option('--amount', type=int, required=True, help='Signed number of units')
@click.option('--user-id', type=int, required=True)
@click.option('--notes', default='')
@click.option('--serial', 'serials', multiple=True, help='Serial number (repeat per unit)')
@with_appcontext
def adjust(product_id, location_id, amount, user_id, notes, serials):
    try:
        transfer = transfer_service.create_transfer(
            TRANSFER_TYPE_ADJUSTMENT,
            location_id,
            product_id,
            amount,
            user_id,
            notes,
            serials=list(serials),
        )
    except AppError as exc:
        _fail(exc)
    click.echo(f"PASS Created {transfer.label}")


@inventory_group.command('transfer')
@click.option('--product-id', type=int, required=True)
@click.option('--from-location-id', type=int, required=True)
@click.option('--to-location-id', type=int, required=True)
@click.option('--amount', type=int, required=True)
@click.option('--user-id', type=int, required=True)
@click.option('--notes', default='')
@click.option('--serial', 'serials', multiple=True, help='Serial number (repeat per unit)')
@click.option('--multi-store', is_flag=True, help='Record as a multi-store transfer')
@with_appcontext
def transfer(product_id, from_location_id, to_location_id, amount, user_id, notes, serials, multi_store):
    transfer_type = TRANSFER_TYPE_MULTI_STORE if multi_store else TRANSFER_TYPE_TRANSFER
    try:
        created = transfer_service.create_transfer(
            transfer_type,
            to_location_id,
            product_id,
            amount,
            user_id,
            notes,
            from_location_id=from_location_id,
            serials=list(serials),
        )
    except AppError as exc:
        _fail(exc)
    click.echo(f"PASS Created {created.label}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(currencies_group)
    app.cli.add_command(taxes_group)
    app.cli.add_command(locations_group)
    app.cli.add_command(inventory_group)
