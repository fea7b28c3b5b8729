"""Provide common pytest fixtures."""

import httpx
import pytest
import pytest_asyncio

from repogate.git.client import ObjectStoreClient
from repogate.git.memory import MemoryGitStore
from repogate.server import create_application, get_argparser

from . import API_KEY, REPO, SEED_FILES, RecordingStore


@pytest.fixture(name="store")
def store_fixture():
    """Return a memory store holding a seeded repository."""
    store = MemoryGitStore(base_url="https://git.example.com")
    store.seed(REPO, SEED_FILES)
    return store


@pytest.fixture(name="recording_store")
def recording_store_fixture(store):
    """Return the seeded store wrapped for call recording and fault injection."""
    return RecordingStore(store)


@pytest.fixture(name="client")
def client_fixture(recording_store):
    """Return an object store client over the recording store."""
    return ObjectStoreClient(recording_store, timeout=5)


@pytest.fixture(name="app")
def app_fixture(client):
    """Return the gateway application wired to the seeded store."""
    args = get_argparser(add_help=False).parse_args(
        ["--api-key", API_KEY, "--store", "memory"]
    )
    return create_application(args, client=client)


@pytest_asyncio.fixture(name="http_client")
async def http_client_fixture(app):
    """Return an HTTP client talking to the application in process."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://testserver",
        headers={"x-api-key": API_KEY},
    ) as http_client:
        yield http_client
