"""
Pytest fixtures for stockpool backend tests.

Provides test database setup, one tenant with two branches, a customer and
one product per tracking mode.
"""

import pytest

from stockpool import create_app
from stockpool.config import TestConfig
from stockpool.extensions import db
from stockpool.models import Branch, Company, Customer, Product, ProductUnit, ProductVariant
from stockpool.models.inventory import TRACK_QUANTITY, TRACK_UNITS, TRACK_VARIANTS
from stockpool.services.cart_composer import CartComposer
from stockpool.services.sale_finalizer import finalize_sale
from stockpool.services.stock_model import StockModel


def _config_dict(config_class) -> dict:
    return {key: getattr(config_class, key) for key in dir(config_class) if key.isupper()}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(_config_dict(TestConfig))

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

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def company(db_session):
    company = Company(name="Celulares Centro", code="CENTRO", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def other_company(db_session):
    company = Company(name="Repuestos Norte", code="NORTE", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def branch(db_session, company):
    branch = Branch(company_id=company.id, name="Sede Principal", address="Calle 10 # 5-20")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def second_branch(db_session, company):
    branch = Branch(company_id=company.id, name="Sede Norte")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def customer(db_session, company):
    customer = Customer(
        company_id=company.id,
        name="Ana Pérez",
        email="ana.pérez@cliente.com",
        phone="300 123 4567",
        name_key="ana pérez",
        phone_key="3001234567",
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def qty_product(db_session, company):
    """QUANTITY product: 10 chargers at 25.000 (cost 12.000)."""
    product = Product(
        company_id=company.id,
        name="Cargador USB-C",
        price_cents=2_500_000,
        cost_cents=1_200_000,
        tracking_mode=TRACK_QUANTITY,
        quantity=10,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def unit_product(db_session, company):
    """UNITS product with three AVAILABLE phones."""
    product = Product(
        company_id=company.id,
        name="Moto G54",
        price_cents=80_000_000,
        cost_cents=65_000_000,
        tracking_mode=TRACK_UNITS,
    )
    db_session.add(product)
    db_session.flush()
    for imei in ("356938035643809", "356938035643810", "356938035643811"):
        db_session.add(ProductUnit(product_id=product.id, imei=imei))
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def variant_product(db_session, company):
    """VARIANTS product: Rojo (3 in stock) and Azul (sold out)."""
    product = Product(
        company_id=company.id,
        name="Forro Silicona",
        price_cents=1_500_000,
        cost_cents=500_000,
        tracking_mode=TRACK_VARIANTS,
    )
    db_session.add(product)
    db_session.flush()
    db_session.add(ProductVariant(product_id=product.id, name="Rojo", sku="FS-RJ", stock=3))
    db_session.add(ProductVariant(product_id=product.id, name="Azul", sku="FS-AZ", stock=0))
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def stock(company):
    return StockModel(company.id)


@pytest.fixture(scope='function')
def units(db_session, unit_product):
    return db_session.query(ProductUnit).filter_by(product_id=unit_product.id).order_by(ProductUnit.id).all()


@pytest.fixture(scope='function')
def variants(db_session, variant_product):
    rows = db_session.query(ProductVariant).filter_by(product_id=variant_product.id).all()
    return {v.name: v for v in rows}


@pytest.fixture(scope='function')
def make_sale(company, branch, customer, stock, qty_product):
    """Factory committing a sale of qty_product chargers."""
    def _make(quantity=1, payment_method="CASH", credit_days=None, now=None):
        composer = CartComposer(stock)
        composer.add_quantity_line(qty_product, quantity)
        return finalize_sale(
            company.id,
            composer.cart,
            customer.id,
            branch.id,
            payment_method,
            credit_days,
            actor="caja1",
            now=now,
        )
    return _make
