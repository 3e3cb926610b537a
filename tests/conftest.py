"""
Pytest configuration and shared fixtures for fuelcost tests.
"""
import os
import tempfile
from datetime import datetime, timedelta

import pytest

from fuelcost import create_app
from fuelcost.extensions import db
from fuelcost.models import CONSUMPTION, ENTRY, DieselProduct, DieselTransaction, DieselWarehouse

BASE_DATE = datetime(2025, 1, 1)


@pytest.fixture(scope='function')
def app():
    """Create and configure a new app instance for each test."""
    db_fd, db_path = tempfile.mkstemp()

    app = create_app({
        'TESTING': True,
        'DATABASE_URL': f'sqlite:///{db_path}',
        'SECRET_KEY': 'test-secret-key',
        'INVENTORY_LOCK_TIMEOUT_SECONDS': 2.0,
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()

    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()


@pytest.fixture
def db_session(app):
    """Database session inside an application context."""
    with app.app_context():
        yield db.session
        db.session.rollback()


@pytest.fixture
def day():
    """``day(10, hour=14)`` -> 2025-01-10 14:00 (naive UTC)."""
    def _day(number, hour=12, minute=0):
        return BASE_DATE + timedelta(days=number - 1, hours=hour, minutes=minute)
    return _day


class LedgerFactory:
    """Writes master data and raw ledger rows directly, bypassing the services."""

    def __init__(self, session):
        self.session = session
        self._counter = 0

    def _next(self):
        self._counter += 1
        return self._counter

    def product(self, product_type='diesel', reference_price=None, code=None):
        product = DieselProduct(
            product_code=code or f'{product_type.upper()}-{self._next()}',
            name=f'{product_type.title()} standard',
            product_type=product_type,
            reference_price=reference_price,
        )
        self.session.add(product)
        self.session.commit()
        return product

    def warehouse(self, plant_code='P1', product_type='diesel', inventory=0.0, plant_name=None, code=None):
        warehouse = DieselWarehouse(
            warehouse_code=code or f'WH-{plant_code}-{product_type}-{self._next()}',
            name=f'Tank {plant_code}',
            plant_code=plant_code,
            plant_name=plant_name or f'Plant {plant_code}',
            product_type=product_type,
            current_inventory=inventory,
        )
        self.session.add(warehouse)
        self.session.commit()
        return warehouse

    def _row(self, transaction_type, warehouse, product, liters, when, unit_cost=None, is_transfer=False,
             reference=None):
        delta = liters if transaction_type == ENTRY else -liters
        previous, current = warehouse.apply_delta(delta)
        row = DieselTransaction(
            warehouse_id=warehouse.id,
            product_id=product.id,
            transaction_type=transaction_type,
            quantity_liters=liters,
            previous_balance=previous,
            current_balance=current,
            transaction_date=when,
            is_transfer=is_transfer,
            reference_transaction_id=reference.id if reference is not None else None,
        )
        if unit_cost:
            row.assign_price(unit_cost)
        self.session.add(row)
        self.session.commit()
        return row

    def entry(self, warehouse, product, liters, when, unit_cost=None, is_transfer=False, reference=None):
        return self._row(ENTRY, warehouse, product, liters, when, unit_cost, is_transfer, reference)

    def consumption(self, warehouse, product, liters, when, unit_cost=None, is_transfer=False, reference=None):
        return self._row(CONSUMPTION, warehouse, product, liters, when, unit_cost, is_transfer, reference)

    def link(self, first, second):
        first.reference_transaction_id = second.id
        second.reference_transaction_id = first.id
        self.session.commit()


@pytest.fixture
def ledger(db_session):
    """Factory for products, warehouses and raw ledger rows."""
    return LedgerFactory(db_session)


@pytest.fixture
def scenario_one(ledger, day):
    """Warehouse A: 5000 L @ 1.00 (day 1), 3000 L @ 1.20 (day 5), 6000 L consumed (day 10)."""
    product = ledger.product()
    source = ledger.warehouse(plant_code='P1')
    ledger.entry(source, product, 5000.0, day(1), unit_cost=1.00)
    ledger.entry(source, product, 3000.0, day(5), unit_cost=1.20)
    ledger.consumption(source, product, 6000.0, day(10))
    return source, product
