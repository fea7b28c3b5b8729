"""Object store capability and the client that wraps it.

A backend implements the remote primitives of a content-addressed object
graph (blobs, trees, commits, refs). ``ObjectStoreClient`` is the only thing
the engine talks to: it bounds each call with a timeout and guarantees that
anything escaping it belongs to the ``repogate.errors`` taxonomy.
"""

import asyncio
import logging
from typing import Any, List, Optional, Protocol

from repogate.errors import RemoteStoreError, RepoGateError
from repogate.models import CommitInfo, PathEntry, RepoId, TreeEntry, UpsertResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class ObjectStore(Protocol):
    """Remote primitives every backend must provide.

    Missing refs, objects and paths raise ``ObjectNotFound``. ``update_ref``
    raises ``Conflict`` when the ref no longer points at ``expected_sha``,
    ``create_ref`` raises ``RefAlreadyExists`` and ``put_file`` raises
    ``Conflict`` when ``previous_sha`` does not match the current blob.
    """

    async def get_ref(self, repo: RepoId, ref: str) -> str:
        ...

    async def get_commit(self, repo: RepoId, sha: str) -> CommitInfo:
        ...

    async def read_path(self, repo: RepoId, path: str, ref: str) -> PathEntry:
        ...

    async def create_blob(self, repo: RepoId, content: bytes) -> str:
        ...

    async def create_tree(
        self, repo: RepoId, base_tree: Optional[str], entries: List[TreeEntry]
    ) -> str:
        ...

    async def create_commit(
        self, repo: RepoId, tree_sha: str, parents: List[str], message: str
    ) -> str:
        ...

    async def update_ref(
        self, repo: RepoId, ref: str, sha: str, expected_sha: str
    ) -> None:
        ...

    async def create_ref(self, repo: RepoId, ref: str, sha: str) -> None:
        ...

    async def put_file(
        self,
        repo: RepoId,
        path: str,
        content: bytes,
        message: str,
        branch: str,
        previous_sha: Optional[str] = None,
    ) -> UpsertResult:
        ...

    async def whoami(self) -> dict:
        ...

    async def close(self) -> None:
        ...


class ObjectStoreClient:
    """Timeout-bounded, error-normalizing access to an object store.

    Usage:
        client = ObjectStoreClient(GitHubObjectStore(token), timeout=10)
        sha = await client.get_ref(repo, "heads/main")
    """

    def __init__(self, store: ObjectStore, timeout: Optional[float] = DEFAULT_TIMEOUT):
        """Initialize the client.

        Args:
            store: The backend issuing the remote primitives.
            timeout: Seconds allowed per remote call, ``None`` disables it.
        """
        self._store = store
        self._timeout = timeout

    @property
    def store(self) -> ObjectStore:
        return self._store

    @property
    def timeout(self) -> Optional[float]:
        return self._timeout

    async def _call(self, operation: str, coro) -> Any:
        try:
            if self._timeout is None:
                return await coro
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(f"{operation} timed out after {self._timeout}s")
            raise RemoteStoreError(
                f"{operation} timed out after {self._timeout}s", reason="timeout"
            ) from exc
        except RepoGateError:
            raise
        except Exception as exc:
            logger.error(f"{operation} failed unexpectedly: {exc}")
            raise RemoteStoreError(f"{operation} failed: {exc}") from exc

    async def get_ref(self, repo: RepoId, ref: str) -> str:
        return await self._call("get_ref", self._store.get_ref(repo, ref))

    async def get_commit(self, repo: RepoId, sha: str) -> CommitInfo:
        return await self._call("get_commit", self._store.get_commit(repo, sha))

    async def read_path(self, repo: RepoId, path: str, ref: str) -> PathEntry:
        return await self._call("read_path", self._store.read_path(repo, path, ref))

    async def create_blob(self, repo: RepoId, content: bytes) -> str:
        return await self._call("create_blob", self._store.create_blob(repo, content))

    async def create_tree(
        self, repo: RepoId, base_tree: Optional[str], entries: List[TreeEntry]
    ) -> str:
        return await self._call(
            "create_tree", self._store.create_tree(repo, base_tree, entries)
        )

    async def create_commit(
        self, repo: RepoId, tree_sha: str, parents: List[str], message: str
    ) -> str:
        return await self._call(
            "create_commit",
            self._store.create_commit(repo, tree_sha, parents, message),
        )

    async def update_ref(
        self, repo: RepoId, ref: str, sha: str, expected_sha: str
    ) -> None:
        await self._call(
            "update_ref", self._store.update_ref(repo, ref, sha, expected_sha)
        )

    async def create_ref(self, repo: RepoId, ref: str, sha: str) -> None:
        await self._call("create_ref", self._store.create_ref(repo, ref, sha))

    async def put_file(
        self,
        repo: RepoId,
        path: str,
        content: bytes,
        message: str,
        branch: str,
        previous_sha: Optional[str] = None,
    ) -> UpsertResult:
        return await self._call(
            "put_file",
            self._store.put_file(
                repo, path, content, message, branch, previous_sha=previous_sha
            ),
        )

    async def whoami(self) -> dict:
        return await self._call("whoami", self._store.whoami())

    async def close(self):
        await self._store.close()
