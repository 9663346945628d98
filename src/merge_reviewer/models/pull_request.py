"""Pull request snapshot models."""

from dataclasses import dataclass, field
from enum import Enum


class LinkType(Enum):
    """How a pull request references an issue."""

    CLOSES = "closes"
    RESOLVES = "resolves"
    FIXES = "fixes"


class FileStatus(Enum):
    """Change status of a file in a pull request."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"


@dataclass(frozen=True)
class LinkedIssue:
    """An issue referenced by a pull request body."""

    number: int
    url: str
    link_type: LinkType
    title: str = ""
    body: str = ""


@dataclass(frozen=True)
class ChangedFile:
    """A single changed file as reported by the source-control platform."""

    filename: str
    status: str
    additions: int = 0
    deletions: int = 0
    patch: str = ""
    previous_filename: str | None = None


@dataclass(frozen=True)
class PullRequestData:
    """Immutable snapshot of a pull request for one analysis run."""

    installation_id: int
    repository_name: str  # owner/name
    pr_number: int
    title: str
    author: str
    body: str = ""
    pr_url: str = ""
    is_draft: bool = False
    linked_issues: tuple[LinkedIssue, ...] = field(default_factory=tuple)
    changed_files: tuple[ChangedFile, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        # Accept lists from callers but keep the snapshot immutable
        object.__setattr__(self, "linked_issues", tuple(self.linked_issues))
        object.__setattr__(self, "changed_files", tuple(self.changed_files))

    @property
    def owner(self) -> str:
        """Repository owner."""
        return self.repository_name.split("/", 1)[0]

    @property
    def repo(self) -> str:
        """Repository name without the owner."""
        return self.repository_name.split("/", 1)[-1]

    def missing_fields(self) -> list[str]:
        """List identity fields that are absent or malformed.

        Returns:
            Names of the invalid fields (empty if the snapshot is complete)
        """
        missing = []
        if not self.installation_id:
            missing.append("installation_id")
        if not self.repository_name or "/" not in self.repository_name:
            missing.append("repository_name")
        if not self.pr_number or self.pr_number < 1:
            missing.append("pr_number")
        if not self.title:
            missing.append("title")
        if not self.author:
            missing.append("author")
        return missing


def ineligibility_reason(pr: PullRequestData) -> str | None:
    """Why a pull request cannot be reviewed, or None when it can."""
    if pr.is_draft:
        return "PR is in draft status"
    if not pr.linked_issues:
        return "PR does not link to any issues"
    return None


def is_eligible(pr: PullRequestData) -> bool:
    """Drafts and PRs without linked issues are never eligible."""
    return ineligibility_reason(pr) is None
