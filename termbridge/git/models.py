"""Data models for git review and push results."""

from typing import Literal

from pydantic import BaseModel, ConfigDict

FileStatus = Literal[
    "modified", "added", "deleted", "renamed", "copied", "conflicted", "untracked"
]


def is_diff_range(commit_range: str) -> bool:
    """True for `a..b` ranges, False for a single ref such as HEAD."""
    return ".." in commit_range


class FileChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    status: FileStatus


class GitStatus(BaseModel):
    """Parsed output of git status."""

    model_config = ConfigDict(frozen=True)

    branch: str
    tracking: str | None = None
    ahead: int = 0
    behind: int = 0
    staged: list[FileChange] = []
    unstaged: list[FileChange] = []
    untracked: list[str] = []

    @property
    def is_clean(self) -> bool:
        return not (self.staged or self.unstaged or self.untracked)


class CommitMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    hash: str
    author: str
    author_email: str = ""
    date: str
    subject: str
    body: str = ""


class CommitReview(BaseModel):
    """A single commit with its unified diff."""

    model_config = ConfigDict(frozen=True)

    commit_hash: str
    author: str
    date: str
    subject: str
    diff: str


class FileDiff(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    diff: str


class PushDecision(BaseModel):
    """Parsed yes/no answer: approved, rejected, or invalid with a reason."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["approved", "rejected", "invalid"]
    reason: str | None = None

    @classmethod
    def parse(cls, answer: str) -> "PushDecision":
        normalized = answer.strip().lower()
        if normalized in ("y", "yes"):
            return cls(kind="approved")
        if normalized in ("n", "no"):
            return cls(kind="rejected")
        shown = normalized or "<empty>"
        return cls(kind="invalid", reason=f"Invalid choice {shown!r}, expected y or n")

    @property
    def approved(self) -> bool:
        return self.kind == "approved"

    @property
    def rejected(self) -> bool:
        return self.kind == "rejected"


class PushResult(BaseModel):
    """Outcome of a push attempt.

    success=False means the push could not be attempted; success=True with
    pushed=False means it was valid but nothing was sent.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    pushed: bool
    message: str
    branch: str | None = None
    forced: bool = False


class RollbackResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    undone: int
    previous_head: str | None = None
    new_head: str | None = None
    message: str
