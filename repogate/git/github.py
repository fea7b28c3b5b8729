"""GitHub REST backend for the object store capability.

Uses the Git Data API (refs, commits, trees, blobs) for multi-file commits
and the Contents API for single-file create-or-update. HTTP statuses are
translated into ``repogate.errors`` here, so nothing above this module looks
at a status code.

API Reference:
- https://docs.github.com/en/rest/git
- https://docs.github.com/en/rest/repos/contents
"""

import base64
import logging
from typing import List, Optional
from urllib.parse import quote

import httpx

from repogate import __version__
from repogate.errors import (
    Conflict,
    ObjectNotFound,
    RefAlreadyExists,
    RemoteStoreError,
)
from repogate.models import CommitInfo, PathEntry, RepoId, TreeEntry, UpsertResult

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict) and data.get("message"):
        return data["message"]
    return response.reason_phrase


class GitHubObjectStore:
    """Object store over the GitHub REST API.

    Usage:
        store = GitHubObjectStore(token, timeout=10)
        sha = await store.get_ref(RepoId(owner="acme", name="app"), "heads/main")
        await store.close()
    """

    def __init__(
        self,
        token: Optional[str],
        api_url: str = GITHUB_API_URL,
        timeout: Optional[float] = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the GitHub store.

        Args:
            token: Personal access or app token used for every request.
            api_url: Base URL of the REST API (GitHub Enterprise uses
                ``https://<host>/api/v3``).
            timeout: Seconds allowed for connect, read and write.
            transport: Optional httpx transport, used by tests.
        """
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": f"repogate/{__version__}",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def _request(self, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
        logger.debug(f"GitHub {operation}: {method} {url}")
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise RemoteStoreError(
                f"{operation} timed out: {exc}", reason="timeout"
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteStoreError(
                f"{operation} failed: {exc}", reason="transport"
            ) from exc

    def _raise_for_status(self, operation: str, response: httpx.Response):
        if response.is_success:
            return
        message = _error_message(response)
        if response.status_code == 404:
            raise ObjectNotFound(message, status=404)
        logger.warning(f"GitHub {operation} failed ({response.status_code}): {message}")
        raise RemoteStoreError(message, reason="http_error", status=response.status_code)

    @staticmethod
    def _repo_url(repo: RepoId, suffix: str) -> str:
        return f"/repos/{quote(repo.owner)}/{quote(repo.name)}/{suffix}"

    async def get_ref(self, repo: RepoId, ref: str) -> str:
        response = await self._request(
            "get_ref", "GET", self._repo_url(repo, f"git/ref/{quote(ref)}")
        )
        self._raise_for_status("get_ref", response)
        data = response.json()
        # A prefix match returns a list of refs instead of the exact one
        if isinstance(data, list):
            raise ObjectNotFound(f"Reference not found: {ref}")
        return data["object"]["sha"]

    async def get_commit(self, repo: RepoId, sha: str) -> CommitInfo:
        response = await self._request(
            "get_commit", "GET", self._repo_url(repo, f"git/commits/{sha}")
        )
        self._raise_for_status("get_commit", response)
        data = response.json()
        return CommitInfo(
            sha=data["sha"],
            tree_sha=data["tree"]["sha"],
            parents=[parent["sha"] for parent in data.get("parents", [])],
            message=data.get("message", ""),
        )

    async def read_path(self, repo: RepoId, path: str, ref: str) -> PathEntry:
        response = await self._request(
            "read_path",
            "GET",
            self._repo_url(repo, f"contents/{quote(path)}"),
            params={"ref": ref},
        )
        self._raise_for_status("read_path", response)
        data = response.json()
        # Directories come back as a listing of their entries
        if isinstance(data, list):
            return PathEntry(path=path, sha="", type="dir")
        content = None
        if data.get("encoding") == "base64" and data.get("content") is not None:
            content = base64.b64decode(data["content"])
        return PathEntry(
            path=data.get("path", path),
            sha=data["sha"],
            type="file",
            size=data.get("size", 0),
            content=content,
            url=data.get("html_url"),
        )

    async def create_blob(self, repo: RepoId, content: bytes) -> str:
        response = await self._request(
            "create_blob",
            "POST",
            self._repo_url(repo, "git/blobs"),
            json={
                "content": base64.b64encode(content).decode("ascii"),
                "encoding": "base64",
            },
        )
        self._raise_for_status("create_blob", response)
        return response.json()["sha"]

    async def create_tree(
        self, repo: RepoId, base_tree: Optional[str], entries: List[TreeEntry]
    ) -> str:
        payload = {
            "tree": [
                {"path": entry.path, "mode": entry.mode, "type": "blob", "sha": entry.sha}
                for entry in entries
            ]
        }
        if base_tree is not None:
            payload["base_tree"] = base_tree
        response = await self._request(
            "create_tree", "POST", self._repo_url(repo, "git/trees"), json=payload
        )
        self._raise_for_status("create_tree", response)
        return response.json()["sha"]

    async def create_commit(
        self, repo: RepoId, tree_sha: str, parents: List[str], message: str
    ) -> str:
        response = await self._request(
            "create_commit",
            "POST",
            self._repo_url(repo, "git/commits"),
            json={"message": message, "tree": tree_sha, "parents": parents},
        )
        self._raise_for_status("create_commit", response)
        return response.json()["sha"]

    async def update_ref(
        self, repo: RepoId, ref: str, sha: str, expected_sha: str
    ) -> None:
        # GitHub has no expected-value parameter; with force=false it rejects
        # any update that is not a fast-forward of the current tip. The new
        # commit's only parent is expected_sha, so a moved branch is rejected.
        response = await self._request(
            "update_ref",
            "PATCH",
            self._repo_url(repo, f"git/refs/{quote(ref)}"),
            json={"sha": sha, "force": False},
        )
        if response.status_code in (409, 422):
            message = _error_message(response)
            if "does not exist" in message.lower():
                raise ObjectNotFound(message, status=response.status_code)
            raise Conflict(message)
        self._raise_for_status("update_ref", response)

    async def create_ref(self, repo: RepoId, ref: str, sha: str) -> None:
        if not ref.startswith("refs/"):
            ref = f"refs/{ref}"
        response = await self._request(
            "create_ref",
            "POST",
            self._repo_url(repo, "git/refs"),
            json={"ref": ref, "sha": sha},
        )
        if response.status_code == 422:
            message = _error_message(response)
            if "already exists" in message.lower():
                raise RefAlreadyExists(ref)
        self._raise_for_status("create_ref", response)

    async def put_file(
        self,
        repo: RepoId,
        path: str,
        content: bytes,
        message: str,
        branch: str,
        previous_sha: Optional[str] = None,
    ) -> UpsertResult:
        payload = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
            "branch": branch,
        }
        if previous_sha is not None:
            payload["sha"] = previous_sha
        response = await self._request(
            "put_file",
            "PUT",
            self._repo_url(repo, f"contents/{quote(path)}"),
            json=payload,
        )
        if response.status_code == 409:
            raise Conflict(_error_message(response))
        if response.status_code == 422:
            # Raised when the file exists but no (or a wrong) sha was supplied
            error = _error_message(response)
            if "sha" in error.lower():
                raise Conflict(error)
        self._raise_for_status("put_file", response)
        data = response.json()
        return UpsertResult(
            url=data["content"].get("html_url"),
            sha=data["content"]["sha"],
            commit=data["commit"]["sha"],
        )

    async def whoami(self) -> dict:
        response = await self._request("whoami", "GET", "/user")
        self._raise_for_status("whoami", response)
        data = response.json()
        return {"login": data["login"], "id": data["id"]}

    async def close(self) -> None:
        await self._client.aclose()
