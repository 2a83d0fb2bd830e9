import pytest

from repairpos import create_app
from repairpos.errors import ConfigurationError, NotFoundError, StateError, ValidationError
from repairpos.models import Currency, InventoryLocation
from repairpos.services import inventory_service, products_service


@pytest.fixture
def error_client():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    })

    @app.route('/boom/<kind>')
    def boom(kind):
        errors = {
            'config': ConfigurationError("Default currency not found", identifier="currency_default_not_found"),
            'validation': ValidationError("Quantity must be greater than zero", identifier="line_item_invalid_quantity"),
            'state': StateError("Product is not inventoried", identifier="inventory_product_not_inventoried"),
            'missing': NotFoundError.for_entity("Location", 42),
        }
        raise errors[kind]

    return app.test_client()


@pytest.mark.parametrize("kind,status,code", [
    ("config", 500, "currency_default_not_found"),
    ("validation", 400, "line_item_invalid_quantity"),
    ("state", 409, "inventory_product_not_inventoried"),
    ("missing", 404, "location_not_found"),
])
def test_app_errors_render_as_json(error_client, kind, status, code):
    response = error_client.get(f'/boom/{kind}')

    assert response.status_code == status
    body = response.get_json()
    assert body["error"] is True
    assert body["errorCode"] == code
    assert body["reason"]


def test_config_overrides_apply():
    app = create_app({'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:', 'ALLOW_NEGATIVE_INVENTORY': True})
    assert app.config['ALLOW_NEGATIVE_INVENTORY'] is True


def test_cli_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=['system', 'init'])
    second = runner.invoke(args=['system', 'init'])

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    assert db_session.query(Currency).count() == 1
    assert db_session.query(InventoryLocation).filter_by(system_use_only=False).count() == 1


def test_cli_adjust_and_quantity(app, db_session, store):
    product = products_service.create_product("CLI-1", "5.00")
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        'inventory', 'adjust',
        '--product-id', str(product.id),
        '--location-id', str(store.id),
        '--amount', '4',
        '--user-id', '1',
    ])
    assert result.exit_code == 0, result.output
    assert "PASS Created A-" in result.output

    result = runner.invoke(args=[
        'inventory', 'quantity', '--product-id', str(product.id), '--location-id', str(store.id),
    ])
    assert result.output.strip() == "4"
    assert inventory_service.get_current_quantity(product.id, store.id) == 4


def test_cli_reports_domain_errors(app, db_session, store):
    product = products_service.create_product("CLI-2", "5.00", inventoried=False)
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        'inventory', 'adjust',
        '--product-id', str(product.id),
        '--location-id', str(store.id),
        '--amount', '1',
        '--user-id', '1',
    ])

    assert result.exit_code != 0
    assert "inventory_product_not_inventoried" in result.output


def test_cli_rejects_malformed_as_of(app, db_session, store):
    product = products_service.create_product("CLI-3", "5.00")
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        'inventory', 'quantity',
        '--product-id', str(product.id),
        '--location-id', str(store.id),
        '--as-of', 'not-a-date',
    ])

    assert result.exit_code != 0
    assert "invalid_datetime" in result.output
