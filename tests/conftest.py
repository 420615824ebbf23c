import os
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

# Stable timezone for timestamp logic
os.environ.setdefault("TZ", "UTC")

from billpay.config import load_settings
from billpay.db import Base, get_db, make_engine, make_session_factory
from billpay.deps import get_scheduler
from billpay.main import create_app
from billpay.orm_models import BillPayPayee, InternalAccount, User
from tests.helpers.auth_jwt import TEST_SECRET, bearer
from tests.helpers.fake_scheduler import RecordingScheduler


@pytest.fixture
def settings():
    return load_settings(
        DATABASE_URL="sqlite:///:memory:",
        APP_ENV="test",
        AUTH_JWT_SECRET=TEST_SECRET,
        SCHEDULER_BACKEND="memory",
    )


@pytest.fixture
def engine():
    """Fresh in-memory database per test (StaticPool shares it across threads)."""
    eng = make_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def app(settings, engine, session_factory, scheduler):
    application = create_app(settings, engine=engine)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_scheduler] = lambda: scheduler
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def seed(db_session):
    """Two onboarded users, their accounts and one shared payee."""
    alice = User(auth_user_id="auth-alice", username="alice", email="alice@example.com")
    bob = User(auth_user_id="auth-bob", username="bob", email="bob@example.com")
    db_session.add_all([alice, bob])
    db_session.flush()

    checking = InternalAccount(
        user_id=alice.id, account_number="10000000001", balance=Decimal("5000")
    )
    frozen = InternalAccount(user_id=alice.id, account_number="10000000002", is_active=False)
    bobs = InternalAccount(user_id=bob.id, account_number="20000000001")
    payee = BillPayPayee(
        business_name="City Power & Light",
        email="billing@citypower.example",
        phone="555-0100",
        street_address="1 Grid Way",
        city="Springfield",
        state_or_territory="IL",
        postal_code="62701",
        account_number="987654321",
        routing_number="021000021",
    )
    db_session.add_all([checking, frozen, bobs, payee])
    db_session.commit()
    return SimpleNamespace(
        alice=alice,
        bob=bob,
        checking=checking,
        frozen=frozen,
        bobs=bobs,
        payee=payee,
        alice_headers=bearer("auth-alice"),
        bob_headers=bearer("auth-bob"),
    )
