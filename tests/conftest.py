"""
Shared fixtures: a fresh SQLite file per test, the app with get_db
overridden, and helpers that sign up marketplace users over the API.
"""
import itertools
import os

# before the app is imported
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ["SESSION_BACKEND"] = "sql"
os.environ.setdefault("ADMIN_USERNAME", "admin")
os.environ.setdefault("ADMIN_PASSWORD", "supasecret")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from darcho.deps import get_db
from darcho.infra.sql import make_async_engine
from darcho.model.db import Base
from darcho.server import app

PASSWORD = "coffee-pass-1"

_phones = itertools.count(1)


@pytest_asyncio.fixture
async def engine_and_factory(tmp_path):
    engine, factory = make_async_engine(f"sqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine, factory
    await engine.dispose()


@pytest.fixture
def session_factory(engine_and_factory):
    return engine_and_factory[1]


@pytest_asyncio.fixture
async def client(session_factory):
    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def signup(client):
    """Register a user and log in; returns a dict with auth headers."""

    async def _signup(role: str, **fields):
        n = next(_phones)
        payload = {
            "fullName": f"{role.title()} {n}",
            "phone": f"+2519{n:08d}",
            "email": f"{role}{n}@example.com",
            "residence": "Sidama",
            "region": "Sidama",
            "password": PASSWORD,
            "role": role,
        }
        payload.update(fields)
        resp = await client.post("/api/auth/register", json=payload)
        assert resp.status_code == 201, resp.text
        resp = await client.post("/api/auth/login", json={
            "email": payload["email"], "password": payload["password"],
        })
        assert resp.status_code == 200, resp.text
        # keep users apart: each test call carries its own header
        client.cookies.clear()
        body = resp.json()
        return {
            "user": body["user"],
            "token": body["session"]["id"],
            "headers": {"Authorization": body["session"]["auth_header"]},
            "payload": payload,
        }

    return _signup


@pytest_asyncio.fixture
async def farmer(signup):
    return await signup("farmer", farmName="Highland Farm")


@pytest_asyncio.fixture
async def buyer(signup):
    return await signup("buyer", companyName="Bean Roasters")


@pytest.fixture
def add_product(client):
    async def _add(farmer, **fields):
        payload = {
            "name": "Yirgacheffe G1",
            "grade": "Grade 1",
            "category": "washed",
            "quantity": 100,
            "price": 10.0,
            "origin_region": "Yirgacheffe",
        }
        payload.update(fields)
        resp = await client.post(
            "/api/farmer/products", json=payload, headers=farmer["headers"]
        )
        assert resp.status_code == 201, resp.text
        return resp.json()["product"]

    return _add
