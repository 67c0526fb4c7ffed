"""
Pytest fixtures for FleetLedger backend tests.

Provides an in-memory database, a test client and small fleet fixtures
(organization, vehicle, driver, fuel stock item).
"""

from datetime import datetime

import pytest

from fleetledger import create_app
from fleetledger.extensions import db, collection_cache
from fleetledger.models import Driver, Organization, StockItem, Vehicle, Waybill


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'INTEGRITY_HASH_EXECUTOR': 'thread',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        collection_cache.clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        collection_cache.clear()


@pytest.fixture(scope='function')
def organization(db_session):
    org = Organization(name="Northern Haulage", code="NH", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def vehicle(db_session, organization):
    """Truck burning 10 l/100km in summer, 12 in winter, +10% in the city."""
    truck = Vehicle(
        organization_id=organization.id,
        registration_number="A123BC",
        model="GAZelle Next",
        summer_rate=10.0,
        winter_rate=12.0,
        city_increase_percent=10.0,
        mileage=1000,
        current_fuel=50.0,
    )
    db_session.add(truck)
    db_session.commit()
    return truck


@pytest.fixture(scope='function')
def driver(db_session, organization):
    person = Driver(
        organization_id=organization.id,
        full_name="Ivan Petrov",
        personnel_number="0042",
        fuel_card_number="7000-0042",
    )
    db_session.add(person)
    db_session.commit()
    return person


@pytest.fixture(scope='function')
def fuel_item(db_session, organization):
    item = StockItem(
        organization_id=organization.id,
        code="DT",
        name="Diesel",
        group="FUEL",
        unit="l",
        is_fuel=True,
    )
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def make_posted_waybill(db_session):
    """Insert POSTED waybills directly, bypassing the posting workflow."""
    def _make(vehicle, driver, *, day, fuel_filled, number, hour=8):
        waybill = Waybill(
            number=number,
            vehicle_id=vehicle.id,
            driver_id=driver.id,
            date=day,
            valid_from=datetime(day.year, day.month, day.day, hour, 0),
            valid_to=datetime(day.year, day.month, day.day, 18, 0),
            status="POSTED",
            odometer_start=0,
            odometer_end=0,
            fuel_at_start=0.0,
            fuel_filled=fuel_filled,
            fuel_at_end=0.0,
        )
        db_session.add(waybill)
        db_session.commit()
        return waybill

    return _make
