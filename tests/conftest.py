"""
Pytest configuration and fixtures for the marketplace backend.
"""
import os
import tempfile
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

# Set test environment variables before importing app
os.environ['FLASK_ENV'] = 'testing'
os.environ['SECRET_KEY'] = 'test-secret-key-for-testing-only'
os.environ['TESTING'] = '1'
os.environ['STRIPE_SECRET_KEY'] = 'sk_test_123'
os.environ['STRIPE_PUBLISHABLE_KEY'] = 'pk_test_123'
os.environ['MP_ACCESS_TOKEN'] = 'TEST-mp-token'
os.environ['MP_WEBHOOK_SECRET'] = ''

# SQLite temp file for tests
test_db_fd, test_db_path = tempfile.mkstemp(suffix='.db')
os.environ['DATABASE_URL'] = f'sqlite:///{test_db_path}'

from app import create_app
from extensions import db
from models import AccountRole, Company, Product, ProductSeller, Seller, User
from services.email_service import SmtpSettings
from services.notifications import NotificationDispatcher
from services.payment_confirmation import PaymentConfirmationService
from tests.helpers import FakeGateway, FakeMailer


@pytest.fixture(scope='session')
def app():
    """Create and configure a Flask app instance for testing."""
    flask_app = create_app()
    assert flask_app.config["TESTING"] is True

    with flask_app.app_context():
        db.create_all()

    yield flask_app

    with flask_app.app_context():
        db.session.remove()
        db.drop_all()

    # Close and remove test database
    os.close(test_db_fd)
    os.unlink(test_db_path)


@pytest.fixture(autouse=True)
def app_ctx(app):
    """Application context per test; every table is emptied afterwards."""
    with app.app_context():
        yield
        db.session.rollback()
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.extensions.pop('payment_confirmation', None)


@pytest.fixture(scope='function')
def client(app):
    """Create a test client for making requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Create a CLI runner for testing CLI commands."""
    return app.test_cli_runner()


# ===== Factories =====

@pytest.fixture
def make_user():
    def _make(name='Usuario', email=None, role=AccountRole.CLIENTE, password='secret123'):
        user = User(name=name, email=email or f"{name.lower().replace(' ', '.')}@example.com", role=role)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def make_company():
    def _make(name='Empresa', email=None):
        company = Company(name=name, email=email)
        db.session.add(company)
        db.session.commit()
        return company
    return _make


@pytest.fixture
def make_seller():
    _clock = [datetime(2026, 1, 1)]

    def _make(company, name='Vendedor', created_at=None):
        # Cada vendedor nace un segundo después del anterior: orden determinístico
        _clock[0] += timedelta(seconds=1)
        seller = Seller(name=name, company_id=company.id, created_at=created_at or _clock[0])
        db.session.add(seller)
        db.session.commit()
        return seller
    return _make


@pytest.fixture
def make_product():
    def _make(company, name='Producto', price='50.00'):
        product = Product(name=name, company_id=company.id, price=Decimal(price))
        db.session.add(product)
        db.session.commit()
        return product
    return _make


@pytest.fixture
def assign_seller():
    def _assign(product, seller, created_at=None):
        assignment = ProductSeller(
            product_id=product.id,
            seller_id=seller.id,
            created_at=created_at or datetime.utcnow(),
        )
        db.session.add(assignment)
        db.session.commit()
        return assignment
    return _assign


@pytest.fixture
def admin_user(make_user):
    return make_user(name='Admin', email='admin@example.com', role=AccountRole.ADMIN)


@pytest.fixture
def ambassador(make_user):
    return make_user(name='Referidor', email='referidor@example.com', role=AccountRole.EMBAJADOR)


@pytest.fixture
def login(client):
    """Authenticate the test client as the given user (Flask-Login session)."""
    def _login(user):
        with client.session_transaction() as sess:
            sess['_user_id'] = str(user.id)
            sess['_fresh'] = True
        return client
    return _login


# ===== Fakes =====

@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def smtp_settings():
    return SmtpSettings(host='smtp.test', port=587, user='bot@test', password='x', from_email='bot@test')


@pytest.fixture
def dispatcher_factory(mailer, smtp_settings):
    return lambda: NotificationDispatcher(settings=smtp_settings, max_workers=4, mailer=mailer)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def confirmation_service(app, fake_gateway, dispatcher_factory):
    """Orchestrator wired to the fake gateway and mailer; the routes use it too."""
    service = PaymentConfirmationService(
        gateway_factory=lambda name: fake_gateway,
        dispatcher_factory=dispatcher_factory,
    )
    app.extensions['payment_confirmation'] = service
    return service
