"""Atomic multi-file commits.

A commit is built in two phases:

- ``stage_commit`` resolves the branch, writes the blobs, layers a new tree on
  the branch's root tree and creates the commit. Nothing points at the result
  yet; if any step fails the branch is untouched and the objects already
  written are harmless orphans.
- ``publish_commit`` advances the branch with a compare-and-swap against the
  tip captured while staging. It is the only step that mutates a ref, and it
  only accepts a ``StagedCommit``.
"""

import asyncio
import logging
from typing import Dict, List

from repogate.errors import Conflict, ValidationError
from repogate.git.client import ObjectStoreClient
from repogate.git.refs import branch_ref, resolve_branch
from repogate.models import (
    BlobRef,
    CommitResult,
    FileChange,
    RepoId,
    StagedCommit,
    TreeEntry,
)

logger = logging.getLogger(__name__)

DEFAULT_BLOB_CONCURRENCY = 8


async def write_blobs(
    client: ObjectStoreClient,
    repo: RepoId,
    changes: List[FileChange],
    concurrency: int = DEFAULT_BLOB_CONCURRENCY,
) -> List[BlobRef]:
    """Write one blob per change, at most ``concurrency`` at a time.

    Results keep the order of ``changes``. The first failure cancels the
    writes still in flight and is re-raised.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def write(change: FileChange) -> BlobRef:
        async with semaphore:
            sha = await client.create_blob(repo, change.to_bytes())
            return BlobRef(path=change.path, sha=sha)

    tasks = [asyncio.ensure_future(write(change)) for change in changes]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def tree_entries(blobs: List[BlobRef]) -> List[TreeEntry]:
    """Collapse blobs into tree entries, the last blob for a path wins."""
    latest: Dict[str, str] = {}
    for blob in blobs:
        latest[blob.path] = blob.sha
    return [TreeEntry(path=path, sha=sha) for path, sha in latest.items()]


async def stage_commit(
    client: ObjectStoreClient,
    repo: RepoId,
    branch: str,
    message: str,
    changes: List[FileChange],
    concurrency: int = DEFAULT_BLOB_CONCURRENCY,
) -> StagedCommit:
    """Create the blobs, tree and commit for ``changes`` without moving the branch."""
    if not changes:
        raise ValidationError("at least one file is required")

    tip = await resolve_branch(client, repo, branch)
    blobs = await write_blobs(client, repo, changes, concurrency=concurrency)
    tree_sha = await client.create_tree(repo, tip.tree_sha, tree_entries(blobs))
    commit_sha = await client.create_commit(repo, tree_sha, [tip.commit_sha], message)
    logger.debug(
        f"Staged commit {commit_sha} on {repo}@{branch} "
        f"(parent {tip.commit_sha}, {len(blobs)} blobs)"
    )
    return StagedCommit(
        repo=repo,
        tip=tip,
        blobs=blobs,
        tree_sha=tree_sha,
        commit_sha=commit_sha,
        message=message,
    )


async def publish_commit(
    client: ObjectStoreClient, staged: StagedCommit
) -> CommitResult:
    """Move the branch to a staged commit if it still points at the staged parent."""
    tip = staged.tip
    try:
        await client.update_ref(
            staged.repo,
            branch_ref(tip.branch),
            staged.commit_sha,
            expected_sha=tip.commit_sha,
        )
    except Conflict:
        logger.warning(
            f"Branch {tip.branch} on {staged.repo} moved away from "
            f"{tip.commit_sha}, commit {staged.commit_sha} left unpublished"
        )
        raise
    logger.info(
        f"Committed {len(staged.blobs)} file(s) to {staged.repo}@{tip.branch}: "
        f"{staged.commit_sha}"
    )
    return CommitResult(
        commit=staged.commit_sha, files=[blob.path for blob in staged.blobs]
    )


async def commit_files(
    client: ObjectStoreClient,
    repo: RepoId,
    branch: str,
    message: str,
    changes: List[FileChange],
    concurrency: int = DEFAULT_BLOB_CONCURRENCY,
) -> CommitResult:
    """Write ``changes`` to ``branch`` as a single commit.

    Raises:
        BranchNotFound: If the branch does not exist.
        Conflict: If the branch moved between resolve and publish.
        RemoteStoreError: For any other store failure, including timeouts.
    """
    staged = await stage_commit(
        client, repo, branch, message, changes, concurrency=concurrency
    )
    return await publish_commit(client, staged)
