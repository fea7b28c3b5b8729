"""Single-file create-or-update and file reads."""

import logging
from typing import Optional

from repogate.errors import (
    BranchNotFound,
    ObjectNotFound,
    PathIsDirectory,
    ValidationError,
)
from repogate.git.client import ObjectStoreClient
from repogate.models import PathEntry, RepoId, UpsertResult

logger = logging.getLogger(__name__)


async def current_blob_sha(
    client: ObjectStoreClient, repo: RepoId, path: str, branch: str
) -> Optional[str]:
    """Return the blob sha at ``path`` on ``branch``, or None for a new file.

    Only "not found" is absorbed; every other store error propagates.
    """
    try:
        entry = await client.read_path(repo, path, branch)
    except ObjectNotFound:
        return None
    if entry.is_dir:
        raise PathIsDirectory(path)
    return entry.sha


async def upsert_file(
    client: ObjectStoreClient,
    repo: RepoId,
    branch: str,
    path: str,
    message: str,
    content: bytes,
) -> UpsertResult:
    """Create or update one file on a branch in a single commit.

    The sha read first is sent with the write, so the store refuses to
    overwrite content changed in the meantime; that surfaces as ``Conflict``
    and is not retried.
    """
    if not content:
        raise ValidationError("content required")
    previous_sha = await current_blob_sha(client, repo, path, branch)
    try:
        result = await client.put_file(
            repo, path, content, message, branch, previous_sha=previous_sha
        )
    except ObjectNotFound as exc:
        raise BranchNotFound(branch, message=exc.message)
    action = "Created" if previous_sha is None else "Updated"
    logger.info(f"{action} {path} on {repo}@{branch} in commit {result.commit}")
    return result


async def read_file(
    client: ObjectStoreClient, repo: RepoId, path: str, branch: str = "main"
) -> PathEntry:
    """Read a single file; directories are rejected."""
    entry = await client.read_path(repo, path, branch)
    if entry.is_dir:
        raise PathIsDirectory(path)
    return entry
