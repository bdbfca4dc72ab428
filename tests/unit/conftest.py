import os

# Settings and the engine are built at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("TMDB_API_KEY", "test-tmdb-key")
os.environ.setdefault("ENVIRONMENT", "test")

import datetime

import fakeredis
import httpx
import pytest
from fastapi.testclient import TestClient

from cinetrack.core import redis_client
from cinetrack.core.database import SessionLocal, engine
from cinetrack.core.security import create_access_token, hash_password
from cinetrack.models import Base, User
from cinetrack.services import tmdb_client


class FakeTMDB:
    """Serves canned TMDB payloads by path; unknown paths answer 404."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, path, payload, status_code=200):
        self.routes[path] = (status_code, payload)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.replace("/3", "", 1)
        self.calls.append(path)
        status_code, payload = self.routes.get(path, (404, {"status_message": "not found"}))
        return httpx.Response(status_code, json=payload)


@pytest.fixture(autouse=True)
def fake_redis():
    server = fakeredis.FakeServer()
    redis_client.set_client_factory(lambda: fakeredis.FakeAsyncRedis(server=server, decode_responses=True))
    yield server
    redis_client.set_client_factory(None)


@pytest.fixture(autouse=True)
def tmdb():
    fake = FakeTMDB()
    tmdb_client.set_transport(httpx.MockTransport(fake.handler))
    yield fake
    tmdb_client.set_transport(None)


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    from cinetrack.main import app
    with TestClient(app) as c:
        yield c


def make_user(db, email="viewer@example.com", birth_date=datetime.date(1990, 5, 17)):
    user = User(email=email, password_hash=hash_password("hunter22"), birth_date=birth_date, agreed_to_terms=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.email)}"}


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def headers(user):
    return auth_headers(user)
