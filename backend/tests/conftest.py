"""
Pytest fixtures for rxstock backend tests.

Provides test database setup, tenant/branch fixtures, products, and test client.
"""

import pytest
from rxstock import create_app
from rxstock.extensions import db
from rxstock.models import Branch, Product, Tenant, User
from rxstock.services.reconciliation_service import build_engine


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'AUDIT_STORE_RETRY_ATTEMPTS': 1,
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

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def tenant_a(db_session):
    tenant = Tenant(name="Tenant A - Green Cross", code="GREEN", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    tenant = Tenant(name="Tenant B - Blue Pill", code="BLUE", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def branch_a(db_session, tenant_a):
    branch = Branch(tenant_id=tenant_a.id, name="Branch A1", code="A1")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_b(db_session, tenant_b):
    branch = Branch(tenant_id=tenant_b.id, name="Branch B1", code="B1")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def user_a(db_session, tenant_a, branch_a):
    user = User(tenant_id=tenant_a.id, branch_id=branch_a.id, username="auditor_a", email="a@green.example")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def user_b(db_session, tenant_b, branch_b):
    user = User(tenant_id=tenant_b.id, branch_id=branch_b.id, username="auditor_b")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(branch, name, quantity, price_cents=1000, status="active")."""
    def _make(branch, name, quantity, price_cents=1000, status="active"):
        product = Product(
            tenant_id=branch.tenant_id,
            branch_id=branch.id,
            name=name,
            quantity=quantity,
            price_cents=price_cents,
            status=status,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def product_a(make_product, branch_a):
    """Paracetamol: 50 on hand at 250 cents."""
    return make_product(branch_a, "Paracetamol 500mg", 50, price_cents=250)


@pytest.fixture(scope='function')
def product_b(make_product, branch_a):
    """Amoxicillin: 20 on hand at 1200 cents."""
    return make_product(branch_a, "Amoxicillin 250mg", 20, price_cents=1200)


@pytest.fixture(scope='function')
def engine(app, db_session):
    return build_engine(app)


@pytest.fixture(scope='function')
def headers_a(tenant_a, branch_a, user_a):
    return {
        "X-Tenant-Id": str(tenant_a.id),
        "X-Branch-Id": str(branch_a.id),
        "X-User-Id": str(user_a.id),
    }
