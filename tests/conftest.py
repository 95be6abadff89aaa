import pytest
from decimal import Decimal

from fieldservice import create_app
from fieldservice.database import create_all, get_session
from fieldservice.models import (
    Client, Job, Product, Estimate, Invoice, DocumentLine, Payment,
    DocumentCommunication, Conversation, Message, PortalAccessToken
)

# Children before parents
_CLEANUP_ORDER = (
    Message, Conversation, PortalAccessToken, DocumentCommunication, Payment,
    DocumentLine, Invoice, Estimate, Job, Client, Product,
)


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestConfig')
    with app.app_context():
        create_all()
    return app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture(scope='function')
def session(app_ctx):
    """Database session for the test, emptied afterwards."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture(autouse=True)
def _reset_state(app):
    yield
    with app.app_context():
        session = get_session()
        session.rollback()
        for model in _CLEANUP_ORDER:
            session.query(model).delete()
        session.commit()
        session.remove()
    app.extensions['conversation_list'].invalidate()
    app.extensions['builder_registry'].close_all()
    app.extensions['change_feed'].connect()


@pytest.fixture(scope='function')
def customer(session):
    """Client with both an email address and a phone number."""
    customer = Client(
        name='Dana Whitfield',
        email='dana@example.com',
        phone='(416) 555-0199',
        address='12 Elm St, Toronto'
    )
    session.add(customer)
    session.commit()
    return customer


@pytest.fixture(scope='function')
def job(session, customer):
    job = Job(client_id=customer.id, title='Furnace repair', address='12 Elm St, Toronto')
    session.add(job)
    session.commit()
    return job


@pytest.fixture(scope='function')
def service_product(session):
    product = Product(
        name='Furnace Tune-Up',
        description='Clean and inspect',
        category='service',
        price=Decimal('100.00'),
        cost=Decimal('40.00'),
        taxable=True,
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def warranty_product(session):
    product = Product(
        name='1-Year Parts Warranty',
        category='warranty',
        price=Decimal('89.00'),
        cost=Decimal('20.00'),
        taxable=False,
    )
    session.add(product)
    session.commit()
    return product
