import os
import random
import string

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from download_server.config import Settings
from download_server.main import create_app
from download_server.services.counter_store import InMemoryCounterStore

AUTH_TOKEN = "test-secret-token"
AUTH_HEADERS = {"Authorization": f"Bearer {AUTH_TOKEN}"}


def generate_random_name(extension=".pdf", length=10):
    """Generate a random filename with the given extension."""
    chars = string.ascii_letters + string.digits + '_-'
    return ''.join(random.choice(chars) for _ in range(length)) + extension


def generate_random_content(size_bytes):
    """Generate random binary content of specified size."""
    return os.urandom(size_bytes)


def make_settings(tmp_path, **overrides):
    values = dict(
        auth_token=AUTH_TOKEN,
        data_dir=str(tmp_path / "data"),
        temp_dir=str(tmp_path / "temp"),
        logs_dir=str(tmp_path / "logs"),
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def counter_store():
    return InMemoryCounterStore()


@pytest.fixture
def app(settings, counter_store):
    return create_app(settings=settings, counter_store=counter_store)


@pytest.fixture
def client(app):
    """Test client with the app lifespan running (storage initialized, tracker started)."""
    with TestClient(app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def async_client(app):
    """Async client for tests that need to await the download tracker."""
    await app.state.object_store.initialize()
    await app.state.download_tracker.start()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
    await app.state.download_tracker.close()


def upload(client, filename, content, headers=AUTH_HEADERS, form_filename=None):
    data = {"filename": form_filename} if form_filename else None
    return client.post(
        "/upload",
        files={"file": (filename, content, "application/octet-stream")},
        data=data,
        headers=headers,
    )
