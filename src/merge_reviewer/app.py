"""Application wiring: builds every component once and passes handles explicitly."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fastapi import FastAPI

from merge_reviewer.ai.client import CompletionClient, CompletionConfig, HttpCompletionClient
from merge_reviewer.ai.context_analyzer import ContextAnalyzerConfig, IntelligentContextAnalyzer
from merge_reviewer.ai.review_generator import AIReviewGenerator, ReviewGeneratorConfig
from merge_reviewer.config import Config, JobKindConfig
from merge_reviewer.context.extractor import RawChangesExtractor
from merge_reviewer.context.fetcher import SourceControlFileFetcher
from merge_reviewer.context.pipeline import ContextAcquisitionPipeline
from merge_reviewer.context.structure import RepositoryStructureReader
from merge_reviewer.github.client import GitHubConfig, GitHubSourceControl
from merge_reviewer.github.webhook import ReviewTrigger, create_webhook_app
from merge_reviewer.models.review import ReviewResult
from merge_reviewer.orchestrator.indexer import IndexSnapshot, RepositoryIndexer
from merge_reviewer.orchestrator.orchestrator import OrchestratorConfig, ReviewOrchestrator
from merge_reviewer.resilience import CircuitBreakerConfig, CircuitBreakerRegistry, RetryPolicy
from merge_reviewer.rules.engine import PatternRuleEngine
from merge_reviewer.scheduler.jobs import (
    Job,
    JobKind,
    PRAnalysisPayload,
    RepositoryIndexingPayload,
)
from merge_reviewer.scheduler.scheduler import JobKindSettings, JobScheduler, SchedulerSettings
from merge_reviewer.source_control import SourceControl
from merge_reviewer.store.base import ReviewStore
from merge_reviewer.store.memory import InMemoryReviewStore
from merge_reviewer.store.sqlite import SQLiteReviewStore

logger = logging.getLogger(__name__)

AI_BREAKER = "ai-completion"


@dataclass
class Application:
    """Handles to the long-lived components of one running service."""

    config: Config
    scheduler: JobScheduler
    breakers: CircuitBreakerRegistry
    store: ReviewStore
    source_control: SourceControl
    completion_client: CompletionClient
    orchestrator: ReviewOrchestrator
    indexer: RepositoryIndexer
    trigger: ReviewTrigger

    async def handle_pr_analysis(self, job: Job[PRAnalysisPayload]) -> ReviewResult:
        return await self.orchestrator.analyze(job.payload.pr)

    async def handle_repository_indexing(self, job: Job[RepositoryIndexingPayload]) -> IndexSnapshot:
        payload = job.payload
        return await self.indexer.index(payload.installation_id, payload.repository_name)

    def webhook_app(self) -> FastAPI:
        """FastAPI app whose lifespan runs the scheduler."""

        @asynccontextmanager
        async def lifespan(_: FastAPI):
            self.scheduler.start()
            try:
                yield
            finally:
                await self.shutdown()

        return create_webhook_app(
            self.trigger,
            webhook_secret=self.config.github.webhook_secret,
            scheduler=self.scheduler,
            lifespan=lifespan,
        )

    async def shutdown(self) -> None:
        """Stop the scheduler and release network clients."""
        await self.scheduler.stop()
        close = getattr(self.completion_client, "close", None)
        if close is not None:
            await close()
        if isinstance(self.store, SQLiteReviewStore):
            self.store.close()


def _kind_settings(raw: JobKindConfig) -> JobKindSettings:
    return JobKindSettings(
        max_concurrent=raw.max_concurrent,
        max_retries=raw.max_retries,
        retry_delay_seconds=raw.retry_delay_seconds,
        timeout_seconds=raw.timeout_seconds,
    )


def build_scheduler_settings(config: Config) -> SchedulerSettings:
    return SchedulerSettings(
        poll_interval_seconds=config.scheduler.poll_interval_seconds,
        error_backoff_seconds=config.scheduler.error_backoff_seconds,
        cleanup_interval_seconds=config.scheduler.cleanup_interval_seconds,
        retention_seconds=config.scheduler.retention_seconds,
        job_settings={
            JobKind.PR_ANALYSIS: _kind_settings(config.jobs.pr_analysis),
            JobKind.REPOSITORY_INDEXING: _kind_settings(config.jobs.repository_indexing),
        },
    )


def build_store(config: Config) -> ReviewStore:
    if config.store.backend == "sqlite":
        return SQLiteReviewStore(config.store.path)
    return InMemoryReviewStore()


def build_source_control(config: Config) -> GitHubSourceControl:
    private_key = None
    if config.github.private_key_path:
        private_key = Path(config.github.private_key_path).read_text()
    return GitHubSourceControl(
        GitHubConfig(
            token=config.github.token or None,
            app_id=config.github.app_id,
            private_key=private_key,
            base_url=config.github.base_url,
            web_url=config.github.web_url,
        )
    )


def build_application(
    config: Config,
    source_control: SourceControl | None = None,
    completion_client: CompletionClient | None = None,
    store: ReviewStore | None = None,
    **scheduler_kwargs: Any,
) -> Application:
    """Construct one scheduler, one breaker registry and one orchestrator.

    Args:
        config: Loaded configuration
        source_control: Source-control collaborator; GitHub when omitted
        completion_client: AI completion collaborator; HTTP client when omitted
        store: Review store; chosen by ``config.store`` when omitted
        **scheduler_kwargs: Extra arguments for JobScheduler (e.g. clock, events)

    Returns:
        Wired application
    """
    source_control = source_control or build_source_control(config)
    completion_client = completion_client or HttpCompletionClient(
        CompletionConfig(
            api_key=config.ai.api_key,
            base_url=config.ai.base_url,
            model=config.ai.model,
            max_tokens=config.ai.max_tokens,
            temperature=config.ai.temperature,
            timeout=config.ai.timeout_seconds,
        )
    )
    store = store or build_store(config)

    breakers = CircuitBreakerRegistry(
        CircuitBreakerConfig(
            failure_threshold=config.circuit_breaker.failure_threshold,
            recovery_timeout=config.circuit_breaker.recovery_timeout_seconds,
            half_open_max_calls=config.circuit_breaker.half_open_max_calls,
        )
    )
    ai_breaker = breakers.get(AI_BREAKER)

    ctx = config.intelligent_context
    analyzer = IntelligentContextAnalyzer(
        completion_client,
        ContextAnalyzerConfig(
            enabled=ctx.enabled,
            fallback_on_error=ctx.fallback_on_error,
            max_recommended_files=ctx.max_recommended_files,
            min_confidence_threshold=ctx.min_confidence_threshold,
            analysis_timeout=ctx.analysis_timeout_seconds,
            max_listed_paths=ctx.max_listed_paths,
            patch_preview_chars=ctx.patch_preview_chars,
        ),
        ai_breaker,
    )
    structure_reader = RepositoryStructureReader(source_control)
    pipeline = ContextAcquisitionPipeline(
        extractor=RawChangesExtractor(source_control),
        structure_reader=structure_reader,
        analyzer=analyzer,
        fetcher=SourceControlFileFetcher(
            source_control,
            max_concurrency=ctx.fetch_concurrency,
            max_file_bytes=ctx.max_file_bytes,
        ),
    )

    orch = config.orchestrator
    step_retry = RetryPolicy(
        max_retries=orch.step_max_retries,
        base_delay=orch.base_delay_seconds,
        max_delay=orch.max_delay_seconds,
        timeout=orch.step_timeout_seconds,
    )
    generator = AIReviewGenerator(
        completion_client,
        ReviewGeneratorConfig(
            context_limit_tokens=config.ai.context_limit_tokens,
            retry=RetryPolicy(
                max_retries=config.ai.max_retries,
                base_delay=orch.base_delay_seconds,
                max_delay=orch.max_delay_seconds,
                timeout=config.ai.timeout_seconds,
            ),
        ),
        ai_breaker,
    )
    orchestrator = ReviewOrchestrator(
        pipeline=pipeline,
        rule_engine=PatternRuleEngine(),
        generator=generator,
        store=store,
        source_control=source_control,
        config=OrchestratorConfig(
            workflow_timeout_seconds=orch.workflow_timeout_seconds,
            graceful_degradation=orch.graceful_degradation,
            intelligent_context=ctx.enabled,
            step_retry=step_retry,
            comment_retry=RetryPolicy(
                max_retries=orch.comment_max_retries,
                base_delay=orch.base_delay_seconds,
                max_delay=orch.max_delay_seconds,
                timeout=orch.step_timeout_seconds,
            ),
        ),
    )

    scheduler = JobScheduler(settings=build_scheduler_settings(config), **scheduler_kwargs)
    application = Application(
        config=config,
        scheduler=scheduler,
        breakers=breakers,
        store=store,
        source_control=source_control,
        completion_client=completion_client,
        orchestrator=orchestrator,
        indexer=RepositoryIndexer(structure_reader),
        trigger=ReviewTrigger(source_control, scheduler, config.github.web_url),
    )
    scheduler.register_handler(JobKind.PR_ANALYSIS, application.handle_pr_analysis)
    scheduler.register_handler(JobKind.REPOSITORY_INDEXING, application.handle_repository_indexing)
    logger.debug("Application wired")
    return application
