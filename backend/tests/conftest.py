"""
Pytest fixtures for repairpos backend tests.

Provides an in-memory database, seeded currency/tax defaults, system
locations, and a few products.
"""

import pytest

from repairpos import create_app
from repairpos.extensions import db
from repairpos.models import InventoryLocation
from repairpos.services import location_service, products_service, settings_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ALLOW_NEGATIVE_INVENTORY': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def usd(db_session):
    """Base default currency (rate 1.0000) with an 8% default tax."""
    currency = settings_service.create_currency("US Dollar", "USD", "1.0000")
    settings_service.create_tax(currency.id, "US-TX", "0.0800", default_tax=True, removable=False)
    return settings_service.set_default_currency(currency.id)


@pytest.fixture(scope='function')
def usd_tax(usd):
    return settings_service.find_default_tax(usd.id)


@pytest.fixture(scope='function')
def locations(db_session):
    """Seed system locations; returns a name -> location map (user Stock under 'store')."""
    location_service.ensure_system_locations()
    by_name = {}
    for location in location_service.list_locations(include_system=True):
        if location.system_use_only:
            by_name[location.name] = location
        else:
            by_name["store"] = location
    return by_name


@pytest.fixture(scope='function')
def store(locations) -> InventoryLocation:
    return locations["store"]


@pytest.fixture(scope='function')
def backroom(locations) -> InventoryLocation:
    return location_service.create_location("Back Room")


@pytest.fixture(scope='function')
def widget(db_session):
    """Inventoried, non-serialized product."""
    product = products_service.create_product("WIDGET-1", "100.00", description="Widget")
    products_service.add_cost(product.id, "60.00", supplier_code="ACME", make_default=True)
    return product


@pytest.fixture(scope='function')
def phone(db_session):
    """Inventoried, serialized product."""
    return products_service.create_product("MD101LL/A", "999.00", description="Phone", serialized=True)


@pytest.fixture(scope='function')
def labor(db_session):
    """Service product that is not tracked in inventory."""
    return products_service.create_product("LABOR-30", "45.00", description="Labor 30 min", inventoried=False)
