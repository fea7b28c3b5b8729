"""Error taxonomy for branch mutations.

Every failure that leaves the object store client is one of these classes,
so callers switch on the exception type instead of transport status codes.
"""

from typing import Optional


class RepoGateError(Exception):
    """Base exception for gateway errors."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """Return the structured error payload."""
        return {"error": self.message, "kind": self.kind}


class ValidationError(RepoGateError):
    """Raised for missing or malformed input, before any remote call."""

    kind = "validation"


class BranchNotFound(RepoGateError):
    """Raised when a branch reference does not exist."""

    kind = "branch_not_found"

    def __init__(self, branch: str, message: Optional[str] = None):
        super().__init__(message or f"Branch not found: {branch}")
        self.branch = branch


class PathIsDirectory(RepoGateError):
    """Raised when a file operation targets a directory."""

    kind = "path_is_directory"

    def __init__(self, path: str):
        super().__init__("Path is a directory, not a file")
        self.path = path


class RefAlreadyExists(RepoGateError):
    """Raised when creating a reference whose name is already taken."""

    kind = "ref_already_exists"

    def __init__(self, ref: str):
        super().__init__(f"Reference already exists: {ref}")
        self.ref = ref


class Conflict(RepoGateError):
    """Raised when the store rejects a compare-and-swap update."""

    kind = "conflict"


class RemoteStoreError(RepoGateError):
    """Raised for transport, timeout and unexpected remote failures.

    Attributes:
        reason: one of ``timeout``, ``transport``, ``not_found``,
            ``http_error``, ``unexpected``.
            A ``timeout`` means the outcome of a mutation is unknown.
        status: the HTTP status returned by the remote, if any.
    """

    kind = "remote"

    def __init__(
        self,
        message: str,
        reason: str = "unexpected",
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.reason = reason
        self.status = status

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["reason"] = self.reason
        if self.status is not None:
            payload["status"] = self.status
        return payload


class ObjectNotFound(RemoteStoreError):
    """Raised by the store when a ref, object or path does not exist."""

    def __init__(self, message: str, status: Optional[int] = 404):
        super().__init__(message, reason="not_found", status=status)


class Unauthorized(RepoGateError):
    """Raised when a request lacks a valid shared secret."""

    kind = "unauthorized"
    status_code = 401

    def __init__(self):
        super().__init__("Unauthorized")

    def to_dict(self) -> dict:
        return {"error": self.message}
