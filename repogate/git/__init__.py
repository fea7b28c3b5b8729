"""Branch mutation engine.

Consistent, possibly multi-file commits against a content-addressed object
graph (blobs, trees, commits and branch refs) held by a remote store.

Key components:
- ObjectStoreClient: timeout-bounded access to a store backend
- GitHubObjectStore: backend over the GitHub REST API
- MemoryGitStore: dulwich-backed in-process backend
- resolve_branch / create_branch: branch resolution and creation
- upsert_file / read_file: single-file create-or-update and reads
- commit_files: atomic multi-file commit (stage_commit + publish_commit)
"""

from repogate.git.client import ObjectStore, ObjectStoreClient
from repogate.git.commit import commit_files, publish_commit, stage_commit
from repogate.git.github import GitHubObjectStore
from repogate.git.memory import MemoryGitStore
from repogate.git.refs import create_branch, resolve_branch
from repogate.git.upsert import read_file, upsert_file

__all__ = [
    "ObjectStore",
    "ObjectStoreClient",
    "GitHubObjectStore",
    "MemoryGitStore",
    "resolve_branch",
    "create_branch",
    "upsert_file",
    "read_file",
    "stage_commit",
    "publish_commit",
    "commit_files",
]
