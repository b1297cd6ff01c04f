import pytest

from app import create_app
from config import TestConfig
from models import db, Investor, Role
from services.ledger import LedgerService


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin(app):
    return Investor.query.filter_by(role=Role.ADMIN).one()


@pytest.fixture
def service(app):
    return LedgerService(db.session, app.extensions['fee_schedule'])


@pytest.fixture
def make_investor(service, admin):
    """Create an investor and optionally fund it through an approved deposit request."""
    def _make(name, deposit=0.0):
        investor = service.create_investor(name, admin.id)
        if deposit:
            fund_request = service.submit_request(investor.id, 'DEPOSIT', deposit)
            service.approve_request(fund_request.id, admin.id)
        return investor
    return _make
