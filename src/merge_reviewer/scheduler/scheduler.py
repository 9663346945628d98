"""In-memory background job scheduler with per-kind concurrency limits."""

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from merge_reviewer.errors import NotEligibleError, ReviewEngineError, StepTimeoutError
from merge_reviewer.scheduler.events import JobEventBus, JobEventType
from merge_reviewer.scheduler.jobs import (
    ACTIVE_STATUSES,
    Job,
    JobKind,
    JobPayload,
    JobStatus,
    PRAnalysisPayload,
    job_id_for,
    utcnow,
)

logger = logging.getLogger(__name__)

# Failures that will not succeed on a later attempt
NON_RETRYABLE_MESSAGES = (
    "Authentication failed",
    "Repository not found",
    "Validation failed",
    "PR not eligible",
    "Invalid webhook payload",
    "PR not found",
)

JobHandler = Callable[[Job[Any]], Awaitable[Any]]


@dataclass
class JobKindSettings:
    """Per-kind limits."""

    max_concurrent: int
    max_retries: int
    retry_delay_seconds: float
    timeout_seconds: float


def default_job_settings() -> dict[JobKind, JobKindSettings]:
    return {
        JobKind.PR_ANALYSIS: JobKindSettings(
            max_concurrent=3, max_retries=0, retry_delay_seconds=30, timeout_seconds=10 * 60
        ),
        JobKind.REPOSITORY_INDEXING: JobKindSettings(
            max_concurrent=1, max_retries=3, retry_delay_seconds=60, timeout_seconds=6 * 60 * 60
        ),
    }


@dataclass
class SchedulerSettings:
    """Loop timing for the scheduler."""

    poll_interval_seconds: float = 5.0
    error_backoff_seconds: float = 10.0
    cleanup_interval_seconds: float = 60 * 60
    retention_seconds: float = 24 * 60 * 60
    job_settings: dict[JobKind, JobKindSettings] = field(default_factory=default_job_settings)


class JobScheduler:
    """Schedules background jobs by kind.

    The poll loop is the only writer of job status transitions. Each cycle
    selects due pending jobs oldest first and starts as many as each kind's
    concurrency ceiling allows, without waiting for them to finish.
    """

    def __init__(
        self,
        handlers: dict[JobKind, JobHandler] | None = None,
        settings: SchedulerSettings | None = None,
        events: JobEventBus | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the scheduler.

        Args:
            handlers: Coroutine function per job kind
            settings: Loop timing and per-kind limits
            events: Event bus for lifecycle notifications
            clock: Source of the current time
        """
        self.settings = settings or SchedulerSettings()
        self.events = events or JobEventBus()
        self._handlers: dict[JobKind, JobHandler] = dict(handlers or {})
        self._clock = clock
        self._jobs: dict[str, Job[Any]] = {}
        self._tasks: set[asyncio.Task] = set()
        self._loops: list[asyncio.Task] = []
        self._running = False

    def register_handler(self, kind: JobKind, handler: JobHandler) -> None:
        """Register (or replace) the handler for a job kind."""
        self._handlers[kind] = handler

    def _kind_settings(self, kind: JobKind) -> JobKindSettings:
        return self.settings.job_settings.get(kind) or default_job_settings()[kind]

    def enqueue(self, payload: JobPayload) -> str:
        """Add a job unless an identical one is already pending or processing.

        Args:
            payload: Typed job payload

        Returns:
            The deterministic job id
        """
        job_id = job_id_for(payload)
        existing = self._jobs.get(job_id)
        if existing is not None and existing.status in ACTIVE_STATUSES:
            logger.info(f"Job {job_id} already {existing.status.value}, not enqueuing again")
            return job_id

        now = self._clock()
        job: Job[Any] = Job(
            id=job_id,
            payload=payload,
            max_retries=self._kind_settings(payload.kind).max_retries,
            created_at=now,
            available_at=now,
        )
        self._jobs[job_id] = job
        logger.info(f"Enqueued {payload.kind.value} job {job_id}")
        self.events.emit(JobEventType.ADDED, job)
        return job_id

    def status(self, job_id: str) -> Job[Any] | None:
        """Look up a job by id."""
        return self._jobs.get(job_id)

    def cancel(self, job_id: str) -> bool:
        """Cancel a pending job.

        Args:
            job_id: Job to cancel

        Returns:
            True if the job was pending and is now cancelled
        """
        job = self._jobs.get(job_id)
        if job is None or job.status is not JobStatus.PENDING:
            return False

        job.status = JobStatus.FAILED
        job.error = "Job cancelled"
        job.completed_at = self._clock()
        logger.info(f"Cancelled job {job_id}")
        self.events.emit(JobEventType.CANCELLED, job)
        job._resolve()
        return True

    def jobs_for_pr(self, installation_id: int, repository_name: str, pr_number: int) -> list[Job[Any]]:
        """All registered analysis jobs for one pull request, newest first."""
        jobs = [
            job
            for job in self._jobs.values()
            if isinstance(job.payload, PRAnalysisPayload)
            and job.payload.pr.installation_id == installation_id
            and job.payload.pr.repository_name == repository_name
            and job.payload.pr.pr_number == pr_number
        ]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    def active_count(self, kind: JobKind | None = None) -> int:
        """Number of processing jobs, optionally of one kind."""
        return sum(
            1
            for job in self._jobs.values()
            if job.status is JobStatus.PROCESSING and (kind is None or job.kind is kind)
        )

    def stats(self) -> dict[str, int]:
        """Job counts by status."""
        counts = Counter(job.status for job in self._jobs.values())
        return {
            "total": len(self._jobs),
            "pending": counts[JobStatus.PENDING],
            "processing": counts[JobStatus.PROCESSING],
            "completed": counts[JobStatus.COMPLETED],
            "failed": counts[JobStatus.FAILED],
        }

    def run_cycle(self) -> list[Job[Any]]:
        """Dispatch due pending jobs up to each kind's remaining capacity.

        Must be called from a running event loop.

        Returns:
            Jobs started in this cycle
        """
        now = self._clock()
        occupied = Counter(
            job.kind for job in self._jobs.values() if job.status is JobStatus.PROCESSING
        )
        due = sorted(
            (
                job
                for job in self._jobs.values()
                if job.status is JobStatus.PENDING and job.available_at <= now
            ),
            key=lambda j: j.created_at,
        )

        selected: list[Job[Any]] = []
        for job in due:
            if occupied[job.kind] >= self._kind_settings(job.kind).max_concurrent:
                continue
            occupied[job.kind] += 1
            selected.append(job)

        for job in selected:
            job.status = JobStatus.PROCESSING
            task = asyncio.create_task(self._process(job), name=f"job-{job.id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        if selected:
            logger.debug(f"Dispatched {len(selected)} jobs")
        return selected

    async def _process(self, job: Job[Any]) -> None:
        settings = self._kind_settings(job.kind)
        job.status = JobStatus.PROCESSING
        job.started_at = self._clock()
        self.events.emit(JobEventType.STARTED, job)
        logger.info(f"Processing job {job.id} (attempt {job.retry_count + 1})")

        try:
            handler = self._handlers.get(job.kind)
            if handler is None:
                raise ReviewEngineError(f"No handler registered for {job.kind.value}")
            try:
                result = await asyncio.wait_for(handler(job), timeout=settings.timeout_seconds)
            except asyncio.TimeoutError as e:
                raise StepTimeoutError(f"{job.kind.value} job", settings.timeout_seconds) from e
        except asyncio.CancelledError:
            job.status = JobStatus.FAILED
            job.error = "Job cancelled while processing"
            job.completed_at = self._clock()
            logger.warning(f"Job {job.id} cancelled while processing")
            self.events.emit(JobEventType.FAILED, job)
            job._resolve()
            raise
        except NotEligibleError as e:
            job.status = JobStatus.COMPLETED
            job.skipped_reason = str(e)
            job.completed_at = self._clock()
            logger.info(f"Job {job.id} skipped: {e}")
            self.events.emit(JobEventType.COMPLETED, job)
            job._resolve()
        except Exception as e:
            self._handle_failure(job, e, settings)
        else:
            job.status = JobStatus.COMPLETED
            job.result = result
            job.error = None
            job.completed_at = self._clock()
            logger.info(f"Job {job.id} completed")
            self.events.emit(JobEventType.COMPLETED, job)
            job._resolve()

    def _handle_failure(self, job: Job[Any], error: Exception, settings: JobKindSettings) -> None:
        message = str(error) or type(error).__name__
        if job.retry_count < job.max_retries and _should_retry(error):
            job.retry_count += 1
            job.status = JobStatus.PENDING
            job.started_at = None
            job.error = f"Retry {job.retry_count}/{job.max_retries}: {message}"
            job.available_at = self._clock() + timedelta(seconds=settings.retry_delay_seconds)
            logger.warning(
                f"Job {job.id} failed, retry {job.retry_count}/{job.max_retries} "
                f"in {settings.retry_delay_seconds}s: {message}"
            )
            self.events.emit(JobEventType.RETRYING, job)
            return

        job.status = JobStatus.FAILED
        job.error = message
        job.completed_at = self._clock()
        logger.error(f"Job {job.id} failed: {message}")
        self.events.emit(JobEventType.FAILED, job)
        job._resolve()

    def sweep(self, now: datetime | None = None) -> int:
        """Remove terminal jobs older than the retention window.

        Returns:
            Number of jobs removed
        """
        now = now or self._clock()
        cutoff = now - timedelta(seconds=self.settings.retention_seconds)
        stale = [
            job_id
            for job_id, job in self._jobs.items()
            if job.is_terminal and (job.completed_at or job.created_at) < cutoff
        ]
        for job_id in stale:
            del self._jobs[job_id]
        if stale:
            logger.info(f"Swept {len(stale)} finished jobs")
        return len(stale)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                self.run_cycle()
                await asyncio.sleep(self.settings.poll_interval_seconds)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Scheduler poll cycle failed: {e}")
                await asyncio.sleep(self.settings.error_backoff_seconds)

    async def _cleanup_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.settings.cleanup_interval_seconds)
            try:
                self.sweep()
            except Exception as e:
                logger.exception(f"Job sweep failed: {e}")

    def start(self) -> None:
        """Start the poll and cleanup loops on the running event loop."""
        if self._running:
            return
        self._running = True
        self._loops = [
            asyncio.create_task(self._poll_loop(), name="scheduler-poll"),
            asyncio.create_task(self._cleanup_loop(), name="scheduler-cleanup"),
        ]
        logger.info("Job scheduler started")

    async def stop(self, wait_for_jobs: bool = True) -> None:
        """Stop the loops and optionally wait for in-flight jobs.

        Args:
            wait_for_jobs: Wait for running jobs instead of cancelling them
        """
        self._running = False
        for loop_task in self._loops:
            loop_task.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []

        tasks = list(self._tasks)
        if tasks:
            if wait_for_jobs:
                logger.info(f"Waiting for {len(tasks)} in-flight jobs")
            else:
                logger.info(f"Cancelling {len(tasks)} in-flight jobs")
                for task in tasks:
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Job scheduler stopped")

    @property
    def running(self) -> bool:
        return self._running


def _should_retry(error: BaseException) -> bool:
    if isinstance(error, ReviewEngineError):
        return error.retryable
    return not any(marker in str(error) for marker in NON_RETRYABLE_MESSAGES)
