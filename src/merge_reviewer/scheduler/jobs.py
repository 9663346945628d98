"""Job model for the background scheduler."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar, Union

from merge_reviewer.models.pull_request import PullRequestData


class JobKind(Enum):
    """Kinds of background work."""

    PR_ANALYSIS = "pr-analysis"
    REPOSITORY_INDEXING = "repository-indexing"


class JobStatus(Enum):
    """Lifecycle of a job in the registry."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}
ACTIVE_STATUSES = {JobStatus.PENDING, JobStatus.PROCESSING}


def _repo_slug(repository_name: str) -> str:
    return repository_name.replace("/", "~")


@dataclass(frozen=True)
class PRAnalysisPayload:
    """Payload for analysing one pull request."""

    pr: PullRequestData

    kind = JobKind.PR_ANALYSIS

    def natural_key(self) -> str:
        return f"{self.pr.installation_id}-{_repo_slug(self.pr.repository_name)}-{self.pr.pr_number}"


@dataclass(frozen=True)
class RepositoryIndexingPayload:
    """Payload for (re)indexing one repository."""

    installation_id: int
    repository_name: str

    kind = JobKind.REPOSITORY_INDEXING

    def natural_key(self) -> str:
        return f"{self.installation_id}-{_repo_slug(self.repository_name)}"


JobPayload = Union[PRAnalysisPayload, RepositoryIndexingPayload]

P = TypeVar("P", PRAnalysisPayload, RepositoryIndexingPayload)

_ID_PREFIXES = {
    JobKind.PR_ANALYSIS: "pr-analysis",
    JobKind.REPOSITORY_INDEXING: "repo-indexing",
}


def job_id_for(payload: JobPayload) -> str:
    """Derive the deterministic job id for a payload.

    Args:
        payload: Job payload

    Returns:
        Id such as ``pr-analysis-42-acme~api-7``
    """
    return f"{_ID_PREFIXES[payload.kind]}-{payload.natural_key()}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job(Generic[P]):
    """A unit of background work tracked by the scheduler."""

    id: str
    payload: P
    max_retries: int
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    available_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: Any = None
    error: str | None = None
    skipped_reason: str | None = None
    retry_count: int = 0
    _done: asyncio.Future | None = field(default=None, repr=False, compare=False)

    @property
    def kind(self) -> JobKind:
        """Job kind, taken from the payload variant."""
        return self.payload.kind

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _future(self) -> asyncio.Future:
        if self._done is None:
            self._done = asyncio.get_running_loop().create_future()
        return self._done

    def _resolve(self) -> None:
        """Complete the per-job future once the job is terminal."""
        if self._done is not None and not self._done.done():
            self._done.set_result(self)

    async def wait(self, timeout: float | None = None) -> "Job[P]":
        """Wait until the job reaches a terminal state.

        Args:
            timeout: Optional time budget in seconds

        Returns:
            The job itself
        """
        if self.is_terminal:
            return self
        return await asyncio.wait_for(asyncio.shield(self._future()), timeout=timeout)
