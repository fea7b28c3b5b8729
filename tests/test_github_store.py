"""Test the GitHub REST backend against a mocked API."""

import base64
import json

import httpx
import pytest

from repogate.errors import (
    BranchNotFound,
    Conflict,
    ObjectNotFound,
    RefAlreadyExists,
    RemoteStoreError,
)
from repogate.git.client import ObjectStoreClient
from repogate.git.commit import commit_files
from repogate.git.github import GitHubObjectStore
from repogate.git.refs import create_branch, resolve_branch
from repogate.git.upsert import upsert_file
from repogate.models import FileChange

from . import REPO

pytestmark = pytest.mark.asyncio

PREFIX = "/repos/acme/widgets"
TIP = "a" * 40
TREE = "b" * 40


class FakeGitHub:
    """Answer GitHub REST calls from canned responses and record requests."""

    def __init__(self):
        self.requests = []
        self.routes = {}
        self.blob_count = 0

    def route(self, method, path, status=200, body=None):
        self.routes[(method, path)] = (status, body)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, payload))
        if (request.method, request.url.path) == ("POST", f"{PREFIX}/git/blobs"):
            self.blob_count += 1
            return httpx.Response(201, json={"sha": f"{self.blob_count:040d}"})
        status, body = self.routes.get(
            (request.method, request.url.path), (404, {"message": "Not Found"})
        )
        return httpx.Response(status, json=body)

    def calls(self, method, path):
        return [p for m, u, p in self.requests if m == method and u == path]


def make_client(fake, timeout=5):
    store = GitHubObjectStore(
        "gh-token", transport=httpx.MockTransport(fake), timeout=timeout
    )
    return ObjectStoreClient(store, timeout=timeout)


def route_main(fake):
    fake.route("GET", f"{PREFIX}/git/ref/heads/main", body={"object": {"sha": TIP}})
    fake.route(
        "GET",
        f"{PREFIX}/git/commits/{TIP}",
        body={"sha": TIP, "tree": {"sha": TREE}, "parents": [], "message": "init"},
    )


async def test_sends_token_and_api_headers():
    captured = {}

    def handler(request):
        captured.update(request.headers)
        return httpx.Response(200, json={"login": "bot", "id": 7})

    client = make_client(handler)
    assert await client.whoami() == {"login": "bot", "id": 7}
    assert captured["authorization"] == "Bearer gh-token"
    assert captured["accept"] == "application/vnd.github+json"
    await client.close()


async def test_resolve_branch():
    fake = FakeGitHub()
    route_main(fake)
    client = make_client(fake)

    tip = await resolve_branch(client, REPO, "main")

    assert (tip.commit_sha, tip.tree_sha) == (TIP, TREE)
    await client.close()


async def test_resolve_missing_branch():
    client = make_client(FakeGitHub())
    with pytest.raises(BranchNotFound):
        await resolve_branch(client, REPO, "nope")
    await client.close()


async def test_commit_files_request_sequence():
    """A bulk commit writes blobs, a layered tree, a commit, then a non-forced ref update."""
    fake = FakeGitHub()
    route_main(fake)
    fake.route("POST", f"{PREFIX}/git/trees", 201, {"sha": "c" * 40})
    fake.route("POST", f"{PREFIX}/git/commits", 201, {"sha": "d" * 40})
    fake.route("PATCH", f"{PREFIX}/git/refs/heads/main", 200, {"object": {"sha": "d" * 40}})
    client = make_client(fake)

    result = await commit_files(
        client,
        REPO,
        "main",
        "Bulk",
        [FileChange(path="a.txt", content="A"), FileChange(path="b.txt", content="B")],
    )

    assert result.commit == "d" * 40
    blobs = fake.calls("POST", f"{PREFIX}/git/blobs")
    assert sorted(base64.b64decode(b["content"]) for b in blobs) == [b"A", b"B"]
    assert all(b["encoding"] == "base64" for b in blobs)
    (tree,) = fake.calls("POST", f"{PREFIX}/git/trees")
    assert tree["base_tree"] == TREE
    assert {entry["path"] for entry in tree["tree"]} == {"a.txt", "b.txt"}
    assert all(entry["mode"] == "100644" and entry["type"] == "blob" for entry in tree["tree"])
    (commit,) = fake.calls("POST", f"{PREFIX}/git/commits")
    assert commit == {"message": "Bulk", "tree": "c" * 40, "parents": [TIP]}
    (update,) = fake.calls("PATCH", f"{PREFIX}/git/refs/heads/main")
    assert update == {"sha": "d" * 40, "force": False}
    await client.close()


async def test_non_fast_forward_is_conflict():
    fake = FakeGitHub()
    route_main(fake)
    fake.route("POST", f"{PREFIX}/git/trees", 201, {"sha": "c" * 40})
    fake.route("POST", f"{PREFIX}/git/commits", 201, {"sha": "d" * 40})
    fake.route(
        "PATCH",
        f"{PREFIX}/git/refs/heads/main",
        422,
        {"message": "Update is not a fast forward"},
    )
    client = make_client(fake)

    with pytest.raises(Conflict, match="fast forward"):
        await commit_files(client, REPO, "main", "m", [FileChange(path="a", content="A")])
    await client.close()


async def test_blob_failure_stops_before_tree():
    fake = FakeGitHub()
    route_main(fake)

    def failing(request):
        if request.url.path.endswith("/git/blobs"):
            return httpx.Response(500, json={"message": "Server Error"})
        return fake(request)

    client = make_client(failing)
    with pytest.raises(RemoteStoreError) as exc_info:
        await commit_files(client, REPO, "main", "m", [FileChange(path="a", content="A")])

    assert exc_info.value.status == 500
    assert exc_info.value.reason == "http_error"
    assert fake.calls("POST", f"{PREFIX}/git/trees") == []
    assert fake.calls("PATCH", f"{PREFIX}/git/refs/heads/main") == []
    await client.close()


async def test_create_branch_already_exists():
    fake = FakeGitHub()
    route_main(fake)
    fake.route(
        "POST", f"{PREFIX}/git/refs", 422, {"message": "Reference already exists"}
    )
    client = make_client(fake)

    with pytest.raises(RefAlreadyExists):
        await create_branch(client, REPO, "feature")
    (payload,) = fake.calls("POST", f"{PREFIX}/git/refs")
    assert payload == {"ref": "refs/heads/feature", "sha": TIP}
    await client.close()


async def test_upsert_new_file_sends_no_sha():
    fake = FakeGitHub()
    fake.route(
        "PUT",
        f"{PREFIX}/contents/docs/a.md",
        201,
        {
            "content": {"sha": "e" * 40, "html_url": "https://github.com/acme/widgets/blob/main/docs/a.md"},
            "commit": {"sha": "f" * 40},
        },
    )
    client = make_client(fake)

    result = await upsert_file(client, REPO, "main", "docs/a.md", "Add", b"hello")

    assert result.sha == "e" * 40
    assert result.commit == "f" * 40
    assert result.url.endswith("/docs/a.md")
    (put,) = fake.calls("PUT", f"{PREFIX}/contents/docs/a.md")
    assert "sha" not in put
    assert base64.b64decode(put["content"]) == b"hello"
    assert put["branch"] == "main"
    await client.close()


async def test_upsert_existing_file_sends_sha():
    fake = FakeGitHub()
    fake.route(
        "GET",
        f"{PREFIX}/contents/README.md",
        body={
            "type": "file",
            "path": "README.md",
            "sha": "1" * 40,
            "size": 2,
            "encoding": "base64",
            "content": base64.b64encode(b"hi").decode(),
        },
    )
    fake.route(
        "PUT",
        f"{PREFIX}/contents/README.md",
        200,
        {"content": {"sha": "2" * 40, "html_url": None}, "commit": {"sha": "3" * 40}},
    )
    client = make_client(fake)

    await upsert_file(client, REPO, "main", "README.md", "Update", b"bye")

    (put,) = fake.calls("PUT", f"{PREFIX}/contents/README.md")
    assert put["sha"] == "1" * 40
    await client.close()


async def test_upsert_stale_sha_is_conflict():
    fake = FakeGitHub()
    fake.route(
        "PUT",
        f"{PREFIX}/contents/a.md",
        409,
        {"message": "a.md does not match 1111"},
    )
    client = make_client(fake)

    with pytest.raises(Conflict):
        await upsert_file(client, REPO, "main", "a.md", "m", b"x")
    await client.close()


async def test_read_directory_listing():
    fake = FakeGitHub()
    fake.route(
        "GET",
        f"{PREFIX}/contents/src",
        body=[{"type": "file", "path": "src/app.py", "sha": "1" * 40}],
    )
    client = make_client(fake)

    entry = await client.read_path(REPO, "src", "main")

    assert entry.is_dir
    await client.close()


async def test_read_missing_path():
    client = make_client(FakeGitHub())
    with pytest.raises(ObjectNotFound):
        await client.read_path(REPO, "missing", "main")
    await client.close()


async def test_timeout_is_tagged():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = make_client(handler)
    with pytest.raises(RemoteStoreError) as exc_info:
        await client.get_ref(REPO, "heads/main")
    assert exc_info.value.reason == "timeout"
    await client.close()


async def test_transport_error_is_tagged():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(RemoteStoreError) as exc_info:
        await client.get_ref(REPO, "heads/main")
    assert exc_info.value.reason == "transport"
    await client.close()
