"""Branch resolution and creation."""

import logging

from repogate.errors import BranchNotFound, ObjectNotFound
from repogate.git.client import ObjectStoreClient
from repogate.models import BranchCreated, BranchTip, RepoId

logger = logging.getLogger(__name__)


def branch_ref(branch: str) -> str:
    """Return the ref name of a branch, e.g. ``heads/main``."""
    return f"heads/{branch}"


async def resolve_branch(
    client: ObjectStoreClient, repo: RepoId, branch: str
) -> BranchTip:
    """Resolve a branch to its tip commit and that commit's root tree.

    Raises:
        BranchNotFound: If the branch reference does not exist.
    """
    try:
        commit_sha = await client.get_ref(repo, branch_ref(branch))
    except ObjectNotFound:
        raise BranchNotFound(branch)
    commit = await client.get_commit(repo, commit_sha)
    logger.debug(f"Resolved {repo}@{branch} to {commit_sha} (tree {commit.tree_sha})")
    return BranchTip(branch=branch, commit_sha=commit_sha, tree_sha=commit.tree_sha)


async def create_branch(
    client: ObjectStoreClient, repo: RepoId, branch: str, source: str = "main"
) -> BranchCreated:
    """Create ``branch`` pointing at the current tip of ``source``.

    The store rejects an existing name with ``RefAlreadyExists``; there is no
    pre-check here.
    """
    try:
        sha = await client.get_ref(repo, branch_ref(source))
    except ObjectNotFound:
        raise BranchNotFound(source)
    await client.create_ref(repo, f"refs/heads/{branch}", sha)
    logger.info(f"Created branch {branch} on {repo} from {source} at {sha}")
    return BranchCreated(branch=branch, from_=source)
