"""Request and result models for the branch mutation engine."""

import base64
from typing import ClassVar, List, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    constr,
    field_validator,
    model_validator,
)

REGULAR_FILE_MODE = "100644"
DIRECTORY_MODE = "040000"

NonEmptyStr = constr(min_length=1)
Encoding = Literal["utf-8", "base64"]


def validate_repo_path(path: str) -> str:
    """Check that a path is relative and has no empty or dot segments."""
    if path.startswith("/"):
        raise ValueError("path must be relative to the repository root")
    segments = path.split("/")
    if any(segment in ("", ".", "..") for segment in segments):
        raise ValueError(f"invalid path: {path}")
    return path


def encode_content(content: str, encoding: str) -> bytes:
    """Turn request content into the bytes that will be stored."""
    if encoding == "base64":
        return base64.b64decode(content, validate=True)
    return content.encode("utf-8")


class RepoId(BaseModel):
    """Identify a repository on the remote store."""

    model_config = ConfigDict(frozen=True)

    owner: NonEmptyStr
    name: NonEmptyStr

    def __str__(self):
        return f"{self.owner}/{self.name}"


class FileChange(BaseModel):
    """One file to write as part of a commit."""

    path: NonEmptyStr
    content: NonEmptyStr
    encoding: Encoding = "utf-8"

    @field_validator("path")
    @classmethod
    def check_path(cls, value):
        return validate_repo_path(value)

    @model_validator(mode="after")
    def check_content(self):
        if self.encoding == "base64":
            encode_content(self.content, "base64")
        return self

    def to_bytes(self) -> bytes:
        return encode_content(self.content, self.encoding)


class CommitInfo(BaseModel):
    """An immutable commit as seen by the engine."""

    sha: str
    tree_sha: str
    parents: List[str] = []
    message: str = ""


class PathEntry(BaseModel):
    """What the store holds at a path on a ref."""

    path: str
    sha: str
    type: Literal["file", "dir"]
    size: int = 0
    content: Optional[bytes] = None
    url: Optional[str] = None

    @property
    def is_dir(self) -> bool:
        return self.type == "dir"


class TreeEntry(BaseModel):
    """An entry to overlay on a base tree."""

    path: str
    sha: str
    mode: str = REGULAR_FILE_MODE


class BranchTip(BaseModel):
    """Snapshot of a branch at resolve time."""

    branch: str
    commit_sha: str
    tree_sha: str


class BlobRef(BaseModel):
    """A blob written for one file change."""

    path: str
    sha: str


class StagedCommit(BaseModel):
    """A commit whose objects exist but which no branch points to yet."""

    repo: RepoId
    tip: BranchTip
    blobs: List[BlobRef]
    tree_sha: str
    commit_sha: str
    message: str


class CommitResult(BaseModel):
    """Outcome of a published multi-file commit."""

    commit: str
    files: List[str]


class UpsertResult(BaseModel):
    """Outcome of a single-file create or update."""

    url: Optional[str] = None
    sha: str
    commit: str


class BranchCreated(BaseModel):
    """Outcome of creating a branch."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    branch: str
    from_: str = Field(alias="from")


# Request bodies. ``required_message`` is the error reported when validation fails.


class RepoRequest(BaseModel):
    owner: NonEmptyStr
    repo: NonEmptyStr

    @property
    def repo_id(self) -> RepoId:
        return RepoId(owner=self.owner, name=self.repo)


class CreateBranchRequest(RepoRequest):
    required_message: ClassVar[str] = "owner, repo, branch required"

    model_config = ConfigDict(populate_by_name=True)

    branch: NonEmptyStr
    from_: NonEmptyStr = Field("main", alias="from")


class UpsertFileRequest(RepoRequest):
    required_message: ClassVar[str] = "owner, repo, branch, path, message, content required"

    branch: NonEmptyStr
    path: NonEmptyStr
    message: NonEmptyStr
    content: NonEmptyStr
    encoding: Encoding = "utf-8"

    @field_validator("path")
    @classmethod
    def check_path(cls, value):
        return validate_repo_path(value)

    @model_validator(mode="after")
    def check_content(self):
        if self.encoding == "base64":
            encode_content(self.content, "base64")
        return self


class BulkUpsertRequest(RepoRequest):
    required_message: ClassVar[str] = "owner, repo, branch, message, files[] required"

    branch: NonEmptyStr
    message: NonEmptyStr
    files: List[FileChange] = Field(min_length=1)


class GetFileRequest(RepoRequest):
    required_message: ClassVar[str] = "owner, repo, path required"

    path: NonEmptyStr
    branch: NonEmptyStr = "main"

    @field_validator("path")
    @classmethod
    def check_path(cls, value):
        return validate_repo_path(value)
