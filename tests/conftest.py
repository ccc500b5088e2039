"""Pytest configuration: in-memory database, fixed clock, users and API client."""

import os
from datetime import datetime, timedelta

# Settings are read at import time, so point them at SQLite first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOCATION_CACHE_ENABLED"] = "false"
os.environ["TRUST_CLIENT_DURATIONS"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.core.deps import get_clock, get_db
from app.core.security import create_access_token, get_password_hash
from app.db.session import build_engine
from app.main import app
from app.models import Base, User
from app.schemas.user import ActingUser
from app.services.location_ledger import LocationLedger
from app.services.visit_lifecycle import VisitLifecycleEngine

PASSWORD = "secret123"
# bcrypt is slow on purpose; hash once per test run
PASSWORD_HASH = get_password_hash(PASSWORD)

T0 = datetime(2024, 3, 4, 8, 0, 0)


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int = 0, seconds: int = 0) -> datetime:
        self.now += timedelta(minutes=minutes, seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def _add_user(db, username: str, is_admin: bool = False) -> ActingUser:
    user = User(
        username=username,
        hashed_password=PASSWORD_HASH,
        is_admin=is_admin,
        name=username.title(),
    )
    db.add(user)
    db.commit()
    return ActingUser(id=user.id, is_admin=user.is_admin, name=user.name)


@pytest.fixture
def alice(db):
    return _add_user(db, "alice")


@pytest.fixture
def bob(db):
    return _add_user(db, "bob")


@pytest.fixture
def carol(db):
    return _add_user(db, "carol")


@pytest.fixture
def admin(db):
    return _add_user(db, "admin", is_admin=True)


@pytest.fixture
def ledger(db, clock):
    return LocationLedger(db, clock=clock)


@pytest.fixture
def engine(db, ledger, clock):
    return VisitLifecycleEngine(db, ledger=ledger, clock=clock)


@pytest.fixture
def client(session_factory, clock):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(user: ActingUser, idempotency_key: str = None) -> dict:
    headers = {"Authorization": f"Bearer {create_access_token(user.id)}"}
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key
    return headers


@pytest.fixture
def auth():
    return auth_headers
