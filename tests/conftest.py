import json
import os

# Settings are read at import time; pin the test values before anything loads.
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("JWT_SECRET", "socialgraph-test-secret-0123456789abcdef")

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import socialgraph.models  # noqa: F401  (registers every table on Base.metadata)
from socialgraph.auth import issue_token
from socialgraph.clients.identity_client import IdentityClient
from socialgraph.database import Base, get_db, session_scope
from socialgraph.models import User


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'socialgraph.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def _make(username=None, **fields):
        counter["n"] += 1
        user = User(username=username or f"user{counter['n']}", **fields)
        db.add(user)
        await db.flush()
        return user

    return _make


def bearer(user_id: int) -> dict:
    return {"Authorization": f"Bearer {issue_token(user_id)}"}


def _override_db(session_factory):
    async def override_get_db():
        async with session_scope(session_factory) as session:
            yield session

    return override_get_db


@pytest.fixture
async def users_client(session_factory):
    from socialgraph.apps.users_api import app

    app.dependency_overrides[get_db] = _override_db(session_factory)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://users") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def directory():
    """Users the fake identity service knows about: id → brief."""
    return {}


@pytest.fixture
async def identity_client(directory):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/internal/users/batch":
            ids = json.loads(request.content)["user_ids"]
            return httpx.Response(
                200, json={"users": [directory[i] for i in ids if i in directory]}
            )
        if request.url.path.startswith("/internal/users/by-username/"):
            name = request.url.path.rsplit("/", 1)[-1]
            for brief in directory.values():
                if brief["username"] == name:
                    return httpx.Response(200, json={"id": brief["id"], "username": name})
            return httpx.Response(404, json={"detail": "not found"})
        return httpx.Response(404)

    client = IdentityClient(base_url="http://identity", transport=httpx.MockTransport(handler))
    await client.start()
    yield client
    await client.stop()


@pytest.fixture
async def posts_client(session_factory, identity_client):
    from socialgraph.apps.posts_api import app

    app.dependency_overrides[get_db] = _override_db(session_factory)
    app.state.identity_client = identity_client
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://posts") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    """Authorization header for a user id, signed with the test secret."""
    return bearer
