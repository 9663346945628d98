"""Background job scheduling."""

from merge_reviewer.scheduler.events import JobEvent, JobEventBus, JobEventType
from merge_reviewer.scheduler.jobs import (
    Job,
    JobKind,
    JobStatus,
    PRAnalysisPayload,
    RepositoryIndexingPayload,
    job_id_for,
)
from merge_reviewer.scheduler.scheduler import (
    JobKindSettings,
    JobScheduler,
    SchedulerSettings,
)

__all__ = [
    "Job",
    "JobEvent",
    "JobEventBus",
    "JobEventType",
    "JobKind",
    "JobKindSettings",
    "JobScheduler",
    "JobStatus",
    "PRAnalysisPayload",
    "RepositoryIndexingPayload",
    "SchedulerSettings",
    "job_id_for",
]
