"""
Pytest fixtures for stockledger backend tests.

Provides the application, a clean database per test, two tenants with their
locations, and lot-tracked / untracked products.
"""

from datetime import timedelta

import pytest

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Location, Product, Tenant
from stockledger.models.tenancy import LOCATION_KIND_DEPOT, LOCATION_KIND_SHOP
from stockledger.services import ledger_service
from stockledger.time_utils import today


ACTOR_ID = 7


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'STOCK_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema (core deletes bypass the ORM append-only guards)
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def actor_id():
    return ACTOR_ID


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Create Tenant A (first tenant)."""
    tenant = Tenant(name="Tenant A - Central Pharmacy", code="CPH")
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Create Tenant B (second tenant)."""
    tenant = Tenant(name="Tenant B - North Drugstore", code="NDS")
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def shop(db_session, tenant_a):
    """Create the main shop of Tenant A."""
    location = Location(tenant_id=tenant_a.id, name="Main Shop", code="SHOP", kind=LOCATION_KIND_SHOP)
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def depot(db_session, tenant_a):
    """Create the depot of Tenant A."""
    location = Location(tenant_id=tenant_a.id, name="Depot", code="DEPOT", kind=LOCATION_KIND_DEPOT)
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def foreign_location(db_session, tenant_b):
    """Create a shop of Tenant B."""
    location = Location(tenant_id=tenant_b.id, name="North Shop", code="NORTH", kind=LOCATION_KIND_SHOP)
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def tracked_product(db_session, tenant_a):
    """Lot-tracked product of Tenant A, stocked at every location."""
    product = Product(
        tenant_id=tenant_a.id,
        code="PARA-500",
        name="Paracetamol 500mg",
        minimum_stock=10,
        track_batches=True,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def second_product(db_session, tenant_a):
    """Second lot-tracked product of Tenant A."""
    product = Product(
        tenant_id=tenant_a.id,
        code="IBU-400",
        name="Ibuprofen 400mg",
        track_batches=True,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def plain_product(db_session, tenant_a):
    """Product of Tenant A without lot tracking."""
    product = Product(
        tenant_id=tenant_a.id,
        code="BAG-01",
        name="Paper bag",
        track_batches=False,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def foreign_product(db_session, tenant_b):
    """Product of Tenant B."""
    product = Product(tenant_id=tenant_b.id, code="PARA-500", name="Paracetamol 500mg")
    db_session.add(product)
    db_session.commit()
    return product


def days_from_today(days: int):
    """Business date relative to today (lots must be dated relative to the run date)."""
    return today() + timedelta(days=days)


def receive(location, product, quantity, *, batch_number=None, expires_in=None, actor_id=ACTOR_ID):
    """Helper to load stock through an IN movement."""
    return ledger_service.receive_stock(
        location_id=location.id,
        product_id=product.id,
        quantity=quantity,
        actor_id=actor_id,
        batch_number=batch_number,
        expiration_date=days_from_today(expires_in) if expires_in is not None else None,
    )
