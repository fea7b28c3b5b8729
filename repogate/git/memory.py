"""In-process object store backed by dulwich.

Objects are real git objects (SHA-1 addressed blobs, trees and commits) kept
in a dulwich ``MemoryObjectStore``; branch references live in a dulwich
``DictRefsContainer`` whose ``set_if_equals`` gives the compare-and-swap the
engine depends on. Used as the test double and by ``--store memory``.
"""

import logging
import stat
import time
from typing import Dict, List, Optional, Tuple

from dulwich.object_store import MemoryObjectStore
from dulwich.objects import Blob, Commit, Tree
from dulwich.refs import DictRefsContainer

from repogate.errors import Conflict, ObjectNotFound, RefAlreadyExists
from repogate.models import (
    REGULAR_FILE_MODE,
    CommitInfo,
    PathEntry,
    RepoId,
    TreeEntry,
    UpsertResult,
)

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR = b"repogate <repogate@localhost>"


class _Repository:
    """Objects and refs of one repository."""

    def __init__(self):
        self.objects = MemoryObjectStore()
        self.refs = DictRefsContainer({})


def _ref_name(ref: str) -> bytes:
    """Map ``heads/main`` (or ``refs/heads/main``) to ``b"refs/heads/main"``."""
    if not ref.startswith("refs/"):
        ref = f"refs/{ref}"
    return ref.encode("utf-8")


class MemoryGitStore:
    """A dulwich-backed implementation of the object store capability.

    Usage:
        store = MemoryGitStore()
        store.seed(RepoId(owner="acme", name="app"), {"README.md": b"hi"})
        client = ObjectStoreClient(store)
    """

    def __init__(
        self,
        base_url: str = "memory://repogate",
        login: str = "repogate",
        author: bytes = DEFAULT_AUTHOR,
        auto_init: bool = False,
    ):
        """Initialize the store.

        Args:
            base_url: Prefix for the file URLs returned by ``put_file``.
            login: Login reported by ``whoami``.
            author: Author and committer line for created commits.
            auto_init: Create unknown repositories on first use, with an
                empty initial commit on ``main``.
        """
        self._repos: Dict[RepoId, _Repository] = {}
        self._base_url = base_url.rstrip("/")
        self._login = login
        self._author = author
        self._auto_init = auto_init

    # =========================================================================
    # Helpers for seeding and inspecting repositories
    # =========================================================================

    def seed(
        self,
        repo: RepoId,
        files: Optional[Dict[str, bytes]] = None,
        branch: str = "main",
        message: str = "Initial commit",
    ) -> str:
        """Create a repository with one commit holding ``files``.

        Returns the hex SHA of the commit ``branch`` points to.
        """
        state = self._repos.setdefault(repo, _Repository())
        changes = []
        for path, content in (files or {}).items():
            blob = Blob.from_string(content)
            state.objects.add_object(blob)
            changes.append((path.split("/"), int(REGULAR_FILE_MODE, 8), blob.id))
        tree_sha = self._overlay(state, None, changes)
        commit_sha = self._commit(state, tree_sha, [], message)
        state.refs[_ref_name(f"heads/{branch}")] = commit_sha
        return commit_sha.decode("ascii")

    def branch_tip(self, repo: RepoId, branch: str) -> Optional[str]:
        """Return the commit ``branch`` points to, or None."""
        state = self._repos.get(repo)
        if state is None:
            return None
        try:
            return state.refs[_ref_name(f"heads/{branch}")].decode("ascii")
        except KeyError:
            return None

    def flatten_tree(self, repo: RepoId, sha: str, prefix: str = "") -> Dict[str, str]:
        """Flatten a commit or tree into ``{path: blob_sha}``."""
        state = self._repos[repo]
        obj = state.objects[sha.encode("ascii")]
        if isinstance(obj, Commit):
            obj = state.objects[obj.tree]
        result = {}
        for entry in obj.items():
            name = entry.path.decode("utf-8")
            full_path = f"{prefix}/{name}" if prefix else name
            if stat.S_ISDIR(entry.mode):
                result.update(
                    self.flatten_tree(repo, entry.sha.decode("ascii"), full_path)
                )
            else:
                result[full_path] = entry.sha.decode("ascii")
        return result

    def count_objects(self, repo: RepoId) -> int:
        """Return how many objects the repository holds."""
        return len(list(iter(self._repos[repo].objects)))

    # =========================================================================
    # Internal object graph operations
    # =========================================================================

    def _state(self, repo: RepoId) -> _Repository:
        state = self._repos.get(repo)
        if state is None:
            if not self._auto_init:
                raise ObjectNotFound(f"Repository not found: {repo}")
            self.seed(repo)
            state = self._repos[repo]
        return state

    def _resolve_branch(self, state: _Repository, branch: str) -> bytes:
        try:
            return state.refs[_ref_name(f"heads/{branch}")]
        except KeyError:
            raise ObjectNotFound(f"No commit found for the ref {branch}")

    def _lookup(
        self, state: _Repository, tree_sha: bytes, path: str
    ) -> Tuple[int, bytes]:
        """Walk ``path`` from ``tree_sha`` and return ``(mode, sha)``."""
        mode, sha = stat.S_IFDIR, tree_sha
        for segment in path.split("/"):
            if not stat.S_ISDIR(mode):
                raise ObjectNotFound(f"Not Found: {path}")
            tree = state.objects[sha]
            try:
                mode, sha = tree[segment.encode("utf-8")]
            except KeyError:
                raise ObjectNotFound(f"Not Found: {path}")
        return mode, sha

    def _overlay(
        self,
        state: _Repository,
        base_sha: Optional[bytes],
        changes: List[Tuple[List[str], int, bytes]],
    ) -> bytes:
        """Write a tree that layers ``changes`` on top of ``base_sha``.

        Each change is ``(path segments, mode, sha)``. Later changes to the
        same path win; unmentioned entries of the base tree are inherited.
        """
        tree = Tree()
        if base_sha is not None:
            for entry in state.objects[base_sha].items():
                tree.add(entry.path, entry.mode, entry.sha)

        nested: Dict[bytes, List[Tuple[List[str], int, bytes]]] = {}
        for segments, mode, sha in changes:
            name = segments[0].encode("utf-8")
            if len(segments) == 1:
                nested.pop(name, None)
                tree.add(name, mode, sha)
            else:
                nested.setdefault(name, []).append((segments[1:], mode, sha))

        for name, sub_changes in nested.items():
            sub_base = None
            if name in tree:
                mode, sha = tree[name]
                if stat.S_ISDIR(mode):
                    sub_base = sha
            tree.add(name, stat.S_IFDIR, self._overlay(state, sub_base, sub_changes))

        state.objects.add_object(tree)
        return tree.id

    def _commit(
        self, state: _Repository, tree_sha: bytes, parents: List[bytes], message: str
    ) -> bytes:
        commit = Commit()
        commit.tree = tree_sha
        commit.parents = parents
        commit.author = commit.committer = self._author
        commit.author_time = commit.commit_time = int(time.time())
        commit.author_timezone = commit.commit_timezone = 0
        commit.message = message.encode("utf-8")
        state.objects.add_object(commit)
        return commit.id

    def _require(self, state: _Repository, sha: str, kind: type):
        try:
            obj = state.objects[sha.encode("ascii")]
        except KeyError:
            raise ObjectNotFound(f"Object not found: {sha}", status=422)
        if not isinstance(obj, kind):
            raise ObjectNotFound(f"Object {sha} is not a {kind.__name__.lower()}", status=422)
        return obj

    # =========================================================================
    # Object store capability
    # =========================================================================

    async def get_ref(self, repo: RepoId, ref: str) -> str:
        state = self._state(repo)
        try:
            return state.refs[_ref_name(ref)].decode("ascii")
        except KeyError:
            raise ObjectNotFound(f"Reference not found: {ref}")

    async def get_commit(self, repo: RepoId, sha: str) -> CommitInfo:
        state = self._state(repo)
        try:
            commit = state.objects[sha.encode("ascii")]
        except KeyError:
            raise ObjectNotFound(f"Commit not found: {sha}")
        if not isinstance(commit, Commit):
            raise ObjectNotFound(f"Object {sha} is not a commit")
        return CommitInfo(
            sha=sha,
            tree_sha=commit.tree.decode("ascii"),
            parents=[parent.decode("ascii") for parent in commit.parents],
            message=commit.message.decode("utf-8", errors="replace"),
        )

    async def read_path(self, repo: RepoId, path: str, ref: str) -> PathEntry:
        state = self._state(repo)
        commit = state.objects[self._resolve_branch(state, ref)]
        mode, sha = self._lookup(state, commit.tree, path)
        if stat.S_ISDIR(mode):
            return PathEntry(path=path, sha=sha.decode("ascii"), type="dir")
        blob = state.objects[sha]
        return PathEntry(
            path=path,
            sha=sha.decode("ascii"),
            type="file",
            size=len(blob.data),
            content=blob.data,
            url=f"{self._base_url}/{repo}/blob/{ref}/{path}",
        )

    async def create_blob(self, repo: RepoId, content: bytes) -> str:
        state = self._state(repo)
        blob = Blob.from_string(content)
        state.objects.add_object(blob)
        return blob.id.decode("ascii")

    async def create_tree(
        self, repo: RepoId, base_tree: Optional[str], entries: List[TreeEntry]
    ) -> str:
        state = self._state(repo)
        base_sha = None
        if base_tree is not None:
            base_sha = self._require(state, base_tree, Tree).id
        changes = []
        for entry in entries:
            self._require(state, entry.sha, Blob)
            changes.append((entry.path.split("/"), int(entry.mode, 8), entry.sha.encode("ascii")))
        return self._overlay(state, base_sha, changes).decode("ascii")

    async def create_commit(
        self, repo: RepoId, tree_sha: str, parents: List[str], message: str
    ) -> str:
        state = self._state(repo)
        tree = self._require(state, tree_sha, Tree)
        parent_ids = [self._require(state, parent, Commit).id for parent in parents]
        return self._commit(state, tree.id, parent_ids, message).decode("ascii")

    async def update_ref(
        self, repo: RepoId, ref: str, sha: str, expected_sha: str
    ) -> None:
        state = self._state(repo)
        name = _ref_name(ref)
        self._require(state, sha, Commit)
        if name not in state.refs:
            raise ObjectNotFound(f"Reference does not exist: {ref}", status=422)
        if not state.refs.set_if_equals(
            name, expected_sha.encode("ascii"), sha.encode("ascii")
        ):
            raise Conflict(f"Reference {ref} has moved since {expected_sha[:8]}")
        logger.debug(f"Updated {repo} {ref} -> {sha}")

    async def create_ref(self, repo: RepoId, ref: str, sha: str) -> None:
        state = self._state(repo)
        self._require(state, sha, Commit)
        if not state.refs.add_if_new(_ref_name(ref), sha.encode("ascii")):
            raise RefAlreadyExists(ref)
        logger.debug(f"Created {repo} {ref} at {sha}")

    async def put_file(
        self,
        repo: RepoId,
        path: str,
        content: bytes,
        message: str,
        branch: str,
        previous_sha: Optional[str] = None,
    ) -> UpsertResult:
        state = self._state(repo)
        tip = self._resolve_branch(state, branch)
        commit = state.objects[tip]
        try:
            mode, current = self._lookup(state, commit.tree, path)
        except ObjectNotFound:
            current = None
        else:
            if stat.S_ISDIR(mode):
                raise Conflict(f"{path} is a directory")
            current = current.decode("ascii")

        if previous_sha != current:
            if current is None:
                raise Conflict(f"{path} does not exist but a sha was supplied")
            if previous_sha is None:
                raise Conflict(f"{path} already exists and no sha was supplied")
            raise Conflict(f"{path} is at {current} but expected {previous_sha}")

        blob = Blob.from_string(content)
        state.objects.add_object(blob)
        tree_sha = self._overlay(
            state, commit.tree, [(path.split("/"), int(REGULAR_FILE_MODE, 8), blob.id)]
        )
        new_commit = self._commit(state, tree_sha, [tip], message)
        if not state.refs.set_if_equals(_ref_name(f"heads/{branch}"), tip, new_commit):
            raise Conflict(f"Branch {branch} has moved")
        return UpsertResult(
            url=f"{self._base_url}/{repo}/blob/{branch}/{path}",
            sha=blob.id.decode("ascii"),
            commit=new_commit.decode("ascii"),
        )

    async def whoami(self) -> dict:
        return {"login": self._login, "id": 1}

    async def close(self) -> None:
        pass
