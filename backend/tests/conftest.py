"""
Pytest fixtures for tillpoint backend tests.

Provides test database setup, tenant/branch/product/customer fixtures,
identity headers and operation contexts.
"""

from decimal import Decimal

import pytest
from tillpoint import create_app
from tillpoint.extensions import SUBSCRIPTION_GATE_KEY, db
from tillpoint.models import Store, Branch, Product, Customer
from tillpoint.services.policy import Identity, OperationContext, ROLE_CASHIER, ROLE_MANAGER
from tillpoint.services.settings_service import BranchSettings
from tillpoint.validation import CartLine, CheckoutRequest


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TILLPOINT_RETRY_ATTEMPTS': 3,
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
def gate(app):
    """The app's subscription gate (store-backed)."""
    return app.extensions[SUBSCRIPTION_GATE_KEY]


@pytest.fixture(scope='function')
def store(db_session):
    store = Store(name="Store A", code="A1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(name="Store B", code="B1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def branch(db_session, store):
    """Branch with no default tax, loyalty on, cash/card/mobile_money."""
    branch = Branch(
        store_id=store.id,
        name="Main",
        code="MAIN",
        default_tax_rate_bps=0,
        loyalty_program=True,
    )
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session, store):
    branch = Branch(store_id=store.id, name="Uptown", code="UP")
    db_session.add(branch)
    db_session.commit()
    return branch


def make_product(session, branch, *, sku="SKU-1", name="Widget", price_cents=1000, stock=10, **extra):
    product = Product(
        branch_id=branch.id,
        sku=sku,
        name=name,
        price_cents=price_cents,
        stock_on_hand=stock,
        **extra,
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def product(db_session, branch):
    """10.00 widget, 10 on hand."""
    return make_product(db_session, branch)


@pytest.fixture(scope='function')
def customer(db_session, store, branch):
    customer = Customer(store_id=store.id, branch_id=branch.id, name="Ada Regular", email="ada@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def cashier(branch):
    return OperationContextFactory(user_id=7, role=ROLE_CASHIER, branch_ids=frozenset({branch.id}))


@pytest.fixture(scope='function')
def manager(branch):
    return OperationContextFactory(user_id=3, role=ROLE_MANAGER, branch_ids=frozenset({branch.id}))


class OperationContextFactory:
    """Identity plus helpers to build contexts and HTTP headers for it."""

    def __init__(self, user_id, role, branch_ids):
        self.identity = Identity(user_id=user_id, role=role, branch_ids=branch_ids)

    def context(self, gate):
        return OperationContext(identity=self.identity, gate=gate)

    @property
    def headers(self):
        return identity_headers(self.identity.user_id, self.identity.role, self.identity.branch_ids)


def identity_headers(user_id, role, branch_ids):
    return {
        'X-User-Id': str(user_id),
        'X-User-Role': role,
        'X-Branch-Access': ",".join(str(b) for b in sorted(branch_ids)),
    }


@pytest.fixture(scope='function')
def cashier_ctx(cashier, gate):
    return cashier.context(gate)


@pytest.fixture(scope='function')
def manager_ctx(manager, gate):
    return manager.context(gate)


def cart(*lines, payment_method="cash", **kwargs) -> CheckoutRequest:
    """cart((product_id, qty), ...) -> CheckoutRequest with sensible defaults."""
    return CheckoutRequest(
        items=tuple(CartLine(product_id=pid, quantity=qty) for pid, qty in lines),
        payment_method=payment_method,
        **kwargs,
    )


def settings_for(branch_id=1, store_id=1, **overrides) -> BranchSettings:
    values = {"default_tax_rate": Decimal(0)}
    values.update(overrides)
    return BranchSettings(branch_id=branch_id, store_id=store_id, **values)
