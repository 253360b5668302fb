"""
Pytest fixtures for storefront backend tests.

Provides test database setup, tenant/actor fixtures, catalog factories, and test client.
"""

from datetime import timedelta

import pytest
from storefront import create_app
from storefront.extensions import db
from storefront.models import Address, Branch, Product, ProductVariant, User, VariantComboDiscount, Vendor
from storefront.models.auth import ROLE_RIDER, ROLE_SUPER_ADMIN, ROLE_USER, ROLE_VENDOR_ADMIN
from storefront.services.concurrency import run_in_transaction
from storefront.services.inventory_service import MOVEMENT_ADDED, REFERENCE_PRODUCT, record_movement
from storefront.time_utils import utcnow


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'TRANSIENT_RETRY_BACKOFF': 0,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
        # Core DELETE bypasses the ledger's ORM immutability guard
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.remove()


@pytest.fixture(scope='function')
def vendor(db_session):
    v = Vendor(name="Vendor A", code="VA")
    db_session.add(v)
    db_session.commit()
    return v


@pytest.fixture(scope='function')
def branch(db_session, vendor):
    b = Branch(vendor_id=vendor.id, name="Branch A1", code="A1")
    db_session.add(b)
    db_session.commit()
    return b


@pytest.fixture(scope='function')
def other_vendor_branch(db_session):
    """A second tenant: vendor B with its own branch."""
    v = Vendor(name="Vendor B", code="VB")
    db_session.add(v)
    db_session.commit()
    b = Branch(vendor_id=v.id, name="Branch B1", code="B1")
    db_session.add(b)
    db_session.commit()
    return b


def _make_user(db_session, role, name, vendor=None, branch=None):
    user = User(
        name=name,
        email=f"{name}@example.com",
        role=role,
        vendor_id=vendor.id if vendor else None,
        branch_id=branch.id if branch else None,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session):
    return _make_user(db_session, ROLE_USER, "customer")


@pytest.fixture(scope='function')
def other_customer(db_session):
    return _make_user(db_session, ROLE_USER, "customer2")


@pytest.fixture(scope='function')
def vendor_admin(db_session, vendor, branch):
    return _make_user(db_session, ROLE_VENDOR_ADMIN, "vendoradmin", vendor, branch)


@pytest.fixture(scope='function')
def rider(db_session, vendor, branch):
    return _make_user(db_session, ROLE_RIDER, "rider", vendor, branch)


@pytest.fixture(scope='function')
def super_admin(db_session):
    return _make_user(db_session, ROLE_SUPER_ADMIN, "superadmin")


@pytest.fixture(scope='function')
def address(db_session, customer):
    a = Address(name="Customer", city="Springfield", postal_code="00000", created_by=customer.id)
    db_session.add(a)
    db_session.commit()
    return a


def seed_stock(product_id, variant_id, quantity, user_id=None):
    """Opening stock goes through the ledger like any other change."""
    return run_in_transaction(lambda: record_movement(
        product_id=product_id,
        variant_id=variant_id,
        movement_type=MOVEMENT_ADDED,
        quantity_change=quantity,
        reference_type=REFERENCE_PRODUCT,
        reference_id=product_id,
        user_id=user_id,
        notes="Opening stock",
    ))


@pytest.fixture(scope='function')
def make_product(db_session, vendor, branch):
    """Factory: product sold without variants, stocked through the ledger."""
    def _make(*, title="Widget", price_cents=1000, stock=0, threshold_stock=0, branch_obj=None):
        b = branch_obj or branch
        product = Product(
            vendor_id=b.vendor_id,
            branch_id=b.id,
            title=title,
            selling_price_cents=price_cents,
            quantity=0,
            threshold_stock=threshold_stock,
        )
        db_session.add(product)
        db_session.commit()
        product_id = product.id
        if stock:
            seed_stock(product_id, None, stock)
        return db.session.get(Product, product_id)
    return _make


@pytest.fixture(scope='function')
def make_variant(db_session, make_product):
    """Factory: variant (and its parent product), stocked through the ledger."""
    def _make(*, name="1 kg", price_cents=500, stock=0, threshold_stock=0, product=None):
        parent = product or make_product(title=f"Product for {name}", price_cents=0)
        variant = ProductVariant(
            product_id=parent.id,
            vendor_id=parent.vendor_id,
            branch_id=parent.branch_id,
            variant_name=name,
            selling_price_cents=price_cents,
            quantity=0,
            threshold_stock=threshold_stock,
        )
        db_session.add(variant)
        db_session.commit()
        variant_id = variant.id
        if stock:
            seed_stock(parent.id, variant_id, stock)
        return db.session.get(ProductVariant, variant_id)
    return _make


@pytest.fixture(scope='function')
def make_combo(db_session):
    def _make(variant, *, combo_quantity=3, discount_type="PERCENT", discount_value=10, status="ACTIVE"):
        now = utcnow()
        combo = VariantComboDiscount(
            variant_id=variant.id,
            combo_quantity=combo_quantity,
            discount_type=discount_type,
            discount_value=discount_value,
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=1),
            status=status,
        )
        db_session.add(combo)
        db_session.commit()
        return combo
    return _make


def actor_headers(user) -> dict:
    """Headers the auth gateway forwards for an authenticated user."""
    headers = {'X-User-Id': str(user.id), 'X-User-Role': user.role}
    if user.vendor_id is not None:
        headers['X-Vendor-Id'] = str(user.vendor_id)
    if user.branch_id is not None:
        headers['X-Branch-Id'] = str(user.branch_id)
    return headers
