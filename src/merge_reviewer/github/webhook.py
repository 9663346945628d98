"""GitHub webhook trigger for automatic PR reviews."""

import dataclasses
import hashlib
import hmac
import json
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from fastapi import FastAPI, HTTPException, Request

from merge_reviewer import __version__
from merge_reviewer.errors import ExternalServiceError, ValidationError
from merge_reviewer.github.issues import extract_linked_issues
from merge_reviewer.models.pull_request import PullRequestData, ineligibility_reason
from merge_reviewer.scheduler.jobs import Job, PRAnalysisPayload, RepositoryIndexingPayload
from merge_reviewer.scheduler.scheduler import JobScheduler
from merge_reviewer.source_control import SourceControl

logger = logging.getLogger(__name__)

TRIGGER_ACTIONS = {"opened", "synchronize", "reopened", "ready_for_review"}

# event type -> (action, payload key listing the repositories to index)
INDEXING_ACTIONS = {
    "installation": ("created", "repositories"),
    "installation_repositories": ("added", "repositories_added"),
}


def pull_request_from_payload(
    payload: dict[str, Any], web_url: str = "https://github.com"
) -> PullRequestData:
    """Build a pull request snapshot (without changed files) from a webhook payload.

    Raises:
        ValidationError: If required fields are missing
    """
    try:
        pr = payload["pull_request"]
        repository_name = payload["repository"]["full_name"]
        installation_id = int(payload["installation"]["id"])
        body = pr.get("body") or ""
        return PullRequestData(
            installation_id=installation_id,
            repository_name=repository_name,
            pr_number=int(pr["number"]),
            title=pr.get("title") or "",
            author=(pr.get("user") or {}).get("login", ""),
            body=body,
            pr_url=pr.get("html_url", ""),
            is_draft=bool(pr.get("draft", False)),
            linked_issues=extract_linked_issues(body, repository_name, web_url),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid webhook payload: missing {e}") from e


class ReviewTrigger:
    """Turns pull request webhook events into scheduled analysis jobs."""

    def __init__(
        self,
        source_control: SourceControl,
        scheduler: JobScheduler,
        web_url: str = "https://github.com",
    ) -> None:
        self.source_control = source_control
        self.scheduler = scheduler
        self.web_url = web_url

    async def handle_pull_request_event(self, payload: dict[str, Any]) -> str | None:
        """Enqueue an analysis for an eligible pull request event.

        Args:
            payload: Parsed ``pull_request`` webhook payload

        Returns:
            The job id, or None when the event is ignored

        Raises:
            ValidationError: If the payload is malformed
            ExternalServiceError: If changed files cannot be fetched
        """
        action = payload.get("action", "")
        if action not in TRIGGER_ACTIONS:
            logger.debug(f"Ignoring PR action: {action}")
            return None

        pr = pull_request_from_payload(payload, self.web_url)
        reason = ineligibility_reason(pr)
        if reason:
            logger.info(f"Skipping {pr.repository_name}#{pr.pr_number}: {reason}")
            return None

        files = await self.source_control.get_pull_request_files(
            pr.installation_id, pr.repository_name, pr.pr_number
        )
        pr = dataclasses.replace(pr, changed_files=tuple(files))

        job_id = self.scheduler.enqueue(PRAnalysisPayload(pr))
        logger.info(f"Triggered review for {pr.repository_name}#{pr.pr_number} as {job_id}")
        return job_id

    def handle_installation_event(self, event_type: str, payload: dict[str, Any]) -> list[str]:
        """Enqueue repository indexing for newly installed repositories.

        Args:
            event_type: ``installation`` or ``installation_repositories``
            payload: Parsed webhook payload

        Returns:
            Job ids, one per repository; empty when the event is ignored

        Raises:
            ValidationError: If the payload is malformed
        """
        action, key = INDEXING_ACTIONS[event_type]
        if payload.get("action") != action:
            logger.debug(f"Ignoring {event_type} action: {payload.get('action')}")
            return []

        try:
            installation_id = int(payload["installation"]["id"])
            names = [repo["full_name"] for repo in payload.get(key) or []]
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid webhook payload: missing {e}") from e

        job_ids = [
            self.scheduler.enqueue(RepositoryIndexingPayload(installation_id, name))
            for name in names
        ]
        job_ids = list(dict.fromkeys(job_ids))
        if job_ids:
            logger.info(
                f"Queued indexing of {len(job_ids)} repositories "
                f"for installation {installation_id}"
            )
        return job_ids


def job_summary(job: Job[Any]) -> dict[str, Any]:
    """JSON-friendly view of a job."""

    def stamp(value):
        return value.isoformat() if value else None

    return {
        "id": job.id,
        "kind": job.kind.value,
        "status": job.status.value,
        "retry_count": job.retry_count,
        "max_retries": job.max_retries,
        "error": job.error,
        "skipped_reason": job.skipped_reason,
        "created_at": stamp(job.created_at),
        "started_at": stamp(job.started_at),
        "completed_at": stamp(job.completed_at),
    }


def create_webhook_app(
    trigger: ReviewTrigger,
    webhook_secret: str | None = None,
    scheduler: JobScheduler | None = None,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager[None]] | None = None,
) -> FastAPI:
    """Create the FastAPI webhook application.

    Args:
        trigger: Review trigger receiving pull request events
        webhook_secret: GitHub webhook secret; signatures are not checked when empty
        scheduler: Scheduler to report on; defaults to the trigger's
        lifespan: Optional startup and shutdown context for the server

    Returns:
        FastAPI application
    """
    scheduler = scheduler or trigger.scheduler

    app = FastAPI(
        title="Merge Reviewer Webhook",
        description="Webhook server for automated pull request reviews",
        version=__version__,
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "merge-reviewer",
            "scheduler": {"running": scheduler.running, **scheduler.stats()},
        }

    @app.post("/webhook")
    async def github_webhook(request: Request):
        """Handle GitHub webhook events."""
        body = await request.body()

        if webhook_secret:
            signature = request.headers.get("X-Hub-Signature-256", "")
            if not verify_signature(body, signature, webhook_secret):
                raise HTTPException(status_code=401, detail="Invalid signature")

        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            raise HTTPException(status_code=400, detail=f"Invalid JSON: {e}") from e

        event_type = request.headers.get("X-GitHub-Event", "")

        if event_type == "ping":
            logger.info("Received ping from GitHub")
            return {"status": "pong"}

        if event_type in INDEXING_ACTIONS:
            try:
                job_ids = trigger.handle_installation_event(event_type, payload)
            except ValidationError as e:
                raise HTTPException(status_code=400, detail=str(e)) from e
            if not job_ids:
                return {"status": "skipped"}
            return {"status": "queued", "job_ids": job_ids}

        if event_type != "pull_request":
            logger.debug(f"Ignoring event type: {event_type}")
            return {"status": "ignored"}

        try:
            job_id = await trigger.handle_pull_request_event(payload)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except ExternalServiceError as e:
            logger.error(f"Could not trigger review: {e}")
            raise HTTPException(status_code=502, detail=str(e)) from e

        if job_id is None:
            return {"status": "skipped"}
        return {"status": "queued", "job_id": job_id}

    @app.get("/jobs/{job_id}")
    async def job_status(job_id: str):
        """Current state of a scheduled job."""
        job = scheduler.status(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return job_summary(job)

    return app


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Verify GitHub webhook signature.

    Args:
        payload: Raw request body
        signature: X-Hub-Signature-256 header value
        secret: Webhook secret

    Returns:
        True if signature is valid
    """
    if not signature.startswith("sha256="):
        return False

    expected = "sha256=" + hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)
