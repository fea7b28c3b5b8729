"""Test the object store client boundary."""

import asyncio

import pytest

from repogate.errors import Conflict, RemoteStoreError
from repogate.git.client import ObjectStoreClient
from repogate.git.memory import MemoryGitStore

from . import REPO, SEED_FILES, RecordingStore

pytestmark = pytest.mark.asyncio


@pytest.fixture(name="seeded")
def seeded_fixture():
    store = RecordingStore(MemoryGitStore())
    store.store.seed(REPO, SEED_FILES)
    return store


async def test_timeout_has_timeout_reason(seeded):
    seeded.delays["get_ref"] = 1
    client = ObjectStoreClient(seeded, timeout=0.01)

    with pytest.raises(RemoteStoreError) as exc_info:
        await client.get_ref(REPO, "heads/main")

    assert exc_info.value.reason == "timeout"
    assert exc_info.value.kind == "remote"


async def test_no_timeout(seeded):
    seeded.delays["get_ref"] = 0.02
    client = ObjectStoreClient(seeded, timeout=None)
    assert await client.get_ref(REPO, "heads/main") == seeded.store.branch_tip(REPO, "main")


async def test_unexpected_errors_are_wrapped(seeded):
    seeded.failures["create_blob"] = (0, KeyError("boom"))
    client = ObjectStoreClient(seeded)

    with pytest.raises(RemoteStoreError) as exc_info:
        await client.create_blob(REPO, b"x")

    assert exc_info.value.reason == "unexpected"
    assert isinstance(exc_info.value.__cause__, KeyError)


async def test_tagged_errors_pass_through(seeded):
    error = Conflict("moved")
    seeded.failures["update_ref"] = (0, error)
    client = ObjectStoreClient(seeded)

    with pytest.raises(Conflict) as exc_info:
        await client.update_ref(REPO, "heads/main", "0" * 40, "1" * 40)
    assert exc_info.value is error


async def test_error_payloads():
    error = RemoteStoreError("bad gateway", reason="http_error", status=502)
    assert error.to_dict() == {
        "error": "bad gateway",
        "kind": "remote",
        "reason": "http_error",
        "status": 502,
    }
    assert Conflict("moved").to_dict() == {"error": "moved", "kind": "conflict"}


async def test_cancellation_is_not_wrapped(seeded):
    seeded.delays["get_ref"] = 1
    client = ObjectStoreClient(seeded, timeout=5)

    task = asyncio.ensure_future(client.get_ref(REPO, "heads/main"))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
