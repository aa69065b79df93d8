"""Pytest configuration and fixtures.

Tests run against in-memory SQLite and a fake IMAP server plugged into
MailboxClient through its client_factory; the Google OAuth client is
replaced by FakeGoogleAuth. Nothing here touches the network.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["ENVIRONMENT"] = "test"
os.environ["FRONTEND_URL"] = "http://frontend.test"

from app.config import get_settings  # noqa: E402

get_settings.cache_clear()

from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.database import Base  # noqa: E402
from app.models import Account, Message, Preference  # noqa: E402,F401
from app.models.account import utc_now  # noqa: E402
from app.services.imap_service import MailboxClient  # noqa: E402
from tests.fakes import FakeGoogleAuth, FakeMailboxServer  # noqa: E402


# ============ FIXTURES ============

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def account(db):
    account = Account(
        email="alice@example.com",
        name="Alice",
        google_id="g-alice",
        access_token="valid-token",
        refresh_token="refresh-token",
        token_expiry=utc_now() + timedelta(hours=1),
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


@pytest.fixture
def other_account(db):
    account = Account(
        email="mallory@example.com",
        google_id="g-mallory",
        access_token="other-token",
        token_expiry=utc_now() + timedelta(hours=1),
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


@pytest.fixture
def imap_server():
    return FakeMailboxServer()


@pytest.fixture
def mailbox(imap_server):
    return MailboxClient(client_factory=imap_server.factory)


@pytest.fixture
def google_auth():
    return FakeGoogleAuth()


@pytest.fixture
def add_message(db):
    """Insert a cached message row directly."""
    counter = {"n": 0}

    def _add(account, **fields):
        counter["n"] += 1
        values = {
            "message_id": f"<seed-{counter['n']}@example.com>",
            "subject": f"Seed {counter['n']}",
            "sender_email": "sender@example.com",
            "sender_name": "Sender",
            "snippet": "",
            "body_text": "",
            "received_at": datetime(2024, 1, 1) + timedelta(hours=counter["n"]),
            "folder": "INBOX",
        }
        values.update(fields)
        message = Message(account_id=account.id, **values)
        db.add(message)
        db.commit()
        db.refresh(message)
        return message

    return _add


@pytest.fixture
def client(session_factory, mailbox, google_auth):
    """TestClient wired to the test database and the fakes."""
    from fastapi.testclient import TestClient

    from app.database import get_db
    from app.dependencies import get_google_auth, get_mailbox_client
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailbox_client] = lambda: mailbox
    app.dependency_overrides[get_google_auth] = lambda: google_auth
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(account):
    from app.services.session_token import create_session_token

    return {"Authorization": f"Bearer {create_session_token(account.id)}"}
