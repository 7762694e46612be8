import os
import sys
import pathlib
import tempfile
import uuid
import warnings

import pytest
import pytest_asyncio

from sqlalchemy.exc import SAWarning

warnings.filterwarnings('ignore', category=SAWarning)

# Ensure a secure SECRET_KEY is available during tests so the lifespan check
# in `todo_app.main` doesn't raise. Set a deterministic test-only key here.
os.environ.setdefault('SECRET_KEY', 'test-secret-key-for-unit-tests')
# Every test run gets its own throwaway database file. This must happen
# before todo_app.db is imported because the engine is built at import time.
_TEST_DB_DIR = tempfile.mkdtemp(prefix='todo_app_tests_')
os.environ['DATABASE_URL'] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"

# Reduce SQLAlchemy logger verbosity during tests
import logging as _logging
for _name in ('sqlalchemy', 'sqlalchemy.engine', 'sqlalchemy.pool', 'sqlmodel'):
    _logging.getLogger(_name).setLevel(_logging.ERROR)

# ensure project root is on PYTHONPATH for test runs
ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from httpx import AsyncClient, ASGITransport
from fastapi.testclient import TestClient

from todo_app.main import app
from todo_app.db import init_db
from todo_client.api import ApiGateway
from todo_client.app import TodoApp
from todo_client.connectivity import Connectivity
from todo_client.local_store import LocalStore


def unique_email(prefix: str = 'user') -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@test.com"


async def register(ac, email=None, password='pw12345'):
    """Register a fresh account and return (token, user)."""
    email = email or unique_email()
    resp = await ac.post('/api/register', json={'email': email, 'password': password})
    assert resp.status_code == 200, resp.text
    data = resp.json()
    return data['token'], data['user']


@pytest_asyncio.fixture
async def ensure_db():
    await init_db()


@pytest_asyncio.fixture
async def client(ensure_db):
    """Unauthenticated client talking to the app in-process."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def auth_client(ensure_db):
    """Client authenticated as a freshly registered account."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        token, user = await register(ac)
        ac.headers.update({"Authorization": f"Bearer {token}"})
        ac.user = user
        yield ac


@pytest.fixture
def api_client():
    # entering the context runs the lifespan (secret check + init_db)
    with TestClient(app) as tc:
        yield tc


@pytest.fixture
def local_store(tmp_path):
    return LocalStore(str(tmp_path / 'local_data.db'))


@pytest.fixture
def connectivity():
    return Connectivity(online=True)


@pytest.fixture
def gateway(api_client, local_store, connectivity):
    return ApiGateway('http://testserver', local_store=local_store, connectivity=connectivity, session=api_client)


@pytest.fixture
def todo_app(gateway):
    return TodoApp(gateway)


@pytest.fixture
def logged_in_app(todo_app):
    assert todo_app.login(unique_email(), 'pw12345', register=True)
    return todo_app


def pytest_sessionfinish(session, exitstatus):
    """Dispose the async engine so no connection outlives the session."""
    import asyncio
    from todo_app import db as app_db
    try:
        asyncio.run(app_db.engine.dispose())
    except RuntimeError:
        # an event loop is still running; nothing safe to do here
        pass
