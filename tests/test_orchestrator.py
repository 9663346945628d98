"""Tests for the review orchestrator."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeCompletionClient, FakeSourceControl, make_pr


class SlowListingSourceControl(FakeSourceControl):
    """Source control whose repository listing never answers in time."""

    async def list_repository_files(self, installation_id, repository_name, ref=None):
        await asyncio.sleep(1)
        return list(self.files)


class BrokenListingSourceControl(FakeSourceControl):
    """Source control whose repository listing always fails."""

    async def list_repository_files(self, installation_id, repository_name, ref=None):
        from merge_reviewer.errors import ExternalServiceError

        raise ExternalServiceError("tree API unavailable")


class CountingSlowListingSourceControl(FakeSourceControl):
    """Source control whose repository listing is slow and counts completions."""

    def __init__(self, *args, delay=0.3, **kwargs):
        super().__init__(*args, **kwargs)
        self.delay = delay
        self.listings_finished = 0

    async def list_repository_files(self, installation_id, repository_name, ref=None):
        await asyncio.sleep(self.delay)
        self.listings_finished += 1
        return list(self.files)


def failing_rules_store(error):
    """An in-memory store whose custom rule lookup always raises ``error``."""
    from merge_reviewer.store import InMemoryReviewStore

    store = InMemoryReviewStore()
    store.list_active_rules = AsyncMock(side_effect=error)
    return store


def fast_policy(**overrides):
    from merge_reviewer.resilience import RetryPolicy

    values = {"max_retries": 2, "base_delay": 0.001, "max_delay": 0.001, "timeout": 0.05}
    values.update(overrides)
    return RetryPolicy(**values)


def make_orchestrator(source_control, client=None, store=None, rule_engine=None, **config):
    from merge_reviewer.ai.context_analyzer import IntelligentContextAnalyzer
    from merge_reviewer.ai.review_generator import AIReviewGenerator, ReviewGeneratorConfig
    from merge_reviewer.context import (
        ContextAcquisitionPipeline,
        RawChangesExtractor,
        RepositoryStructureReader,
        SourceControlFileFetcher,
    )
    from merge_reviewer.orchestrator import OrchestratorConfig, ReviewOrchestrator
    from merge_reviewer.rules import PatternRuleEngine
    from merge_reviewer.store import InMemoryReviewStore

    client = client or FakeCompletionClient()
    pipeline = ContextAcquisitionPipeline(
        extractor=RawChangesExtractor(source_control),
        structure_reader=RepositoryStructureReader(source_control),
        analyzer=IntelligentContextAnalyzer(client),
        fetcher=SourceControlFileFetcher(source_control),
    )
    settings = {
        "workflow_timeout_seconds": 5,
        "step_retry": fast_policy(),
        "comment_retry": fast_policy(max_retries=1),
    }
    settings.update(config)
    return ReviewOrchestrator(
        pipeline=pipeline,
        rule_engine=rule_engine or PatternRuleEngine(),
        generator=AIReviewGenerator(
            client, ReviewGeneratorConfig(retry=fast_policy(max_retries=1, timeout=1.0))
        ),
        store=store if store is not None else InMemoryReviewStore(),
        source_control=source_control,
        config=OrchestratorConfig(**settings),
    )


class TestReviewOrchestrator:
    """Tests for ReviewOrchestrator.analyze."""

    @pytest.mark.asyncio
    async def test_successful_analysis(self, sample_pr, source_control):
        from merge_reviewer.models.review import ReviewStatus

        orchestrator = make_orchestrator(source_control)

        result = await orchestrator.analyze(sample_pr)

        assert result.status is ReviewStatus.COMPLETED
        assert 0 <= result.merge_score <= 100
        assert result.recommendation in {"ready", "review_needed", "not_ready"}
        assert result.summary == "Clean change that adds a parameterized user lookup."
        assert result.confidence == 0.8
        assert len(result.rules_passed) == 4
        assert result.processing_time_ms >= 0

        stored = await orchestrator.store.get_review(42, "test-org/test-repo", 7)
        assert stored.status is ReviewStatus.COMPLETED
        assert stored.merge_score == result.merge_score

        assert len(source_control.review_comments) == 1
        assert f"Merge Score: {result.merge_score}/100" in source_control.review_comments[0]
        assert source_control.error_comments == []

    @pytest.mark.asyncio
    async def test_in_progress_is_written_before_work(self, sample_pr, source_control):
        from merge_reviewer.models.review import ReviewStatus
        from merge_reviewer.store import InMemoryReviewStore

        store = InMemoryReviewStore()
        statuses = []
        original = store.upsert_review

        async def recording_upsert(result):
            statuses.append(result.status)
            return await original(result)

        store.upsert_review = recording_upsert
        orchestrator = make_orchestrator(source_control, store=store)

        await orchestrator.analyze(sample_pr)

        assert statuses == [ReviewStatus.IN_PROGRESS, ReviewStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_repeated_analysis_reuses_the_record(self, sample_pr, source_control):
        orchestrator = make_orchestrator(source_control)

        first = await orchestrator.analyze(sample_pr)
        second = await orchestrator.analyze(sample_pr)

        assert len(orchestrator.store) == 1
        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at

    @pytest.mark.asyncio
    async def test_draft_is_not_eligible(self, draft_pr, source_control):
        from merge_reviewer.errors import NotEligibleError

        orchestrator = make_orchestrator(source_control)

        with pytest.raises(NotEligibleError, match="PR is in draft status"):
            await orchestrator.analyze(draft_pr)

        assert len(orchestrator.store) == 0
        assert source_control.review_comments == []
        assert source_control.error_comments == []

    @pytest.mark.asyncio
    async def test_pr_without_linked_issues_is_not_eligible(self, unlinked_pr, source_control):
        from merge_reviewer.errors import NotEligibleError

        orchestrator = make_orchestrator(source_control)

        with pytest.raises(NotEligibleError, match="does not link to any issues"):
            await orchestrator.analyze(unlinked_pr)

        assert len(orchestrator.store) == 0

    @pytest.mark.asyncio
    async def test_incomplete_snapshot_fails_validation(self, source_control):
        from merge_reviewer.errors import ValidationError

        orchestrator = make_orchestrator(source_control)

        with pytest.raises(ValidationError, match="title"):
            await orchestrator.analyze(make_pr(title=""))

        assert len(orchestrator.store) == 0

    @pytest.mark.asyncio
    async def test_exhausted_retries_record_failure(self, sample_pr):
        """Repeated timeouts end in FAILED with exactly one system suggestion."""
        from merge_reviewer.errors import StepTimeoutError
        from merge_reviewer.models.review import SYSTEM_FILE, ReviewStatus

        source_control = SlowListingSourceControl(changed_files=list(sample_pr.changed_files))
        orchestrator = make_orchestrator(source_control, graceful_degradation=False)

        with pytest.raises(StepTimeoutError):
            await orchestrator.analyze(sample_pr)

        stored = await orchestrator.store.get_review(42, "test-org/test-repo", 7)
        assert stored.status is ReviewStatus.FAILED
        assert len(stored.suggestions) == 1
        assert stored.suggestions[0].file == SYSTEM_FILE
        assert stored.suggestions[0].description.startswith("Analysis failed:")
        assert stored.merge_score == 0
        assert source_control.review_comments == []
        assert source_control.error_comments == [
            "Analysis failed: context acquisition timed out after 0.05s. Please review manually."
        ]

    @pytest.mark.asyncio
    async def test_workflow_timeout_records_failure(self, sample_pr):
        from merge_reviewer.errors import StepTimeoutError
        from merge_reviewer.models.review import ReviewStatus

        source_control = SlowListingSourceControl(changed_files=list(sample_pr.changed_files))
        orchestrator = make_orchestrator(
            source_control,
            workflow_timeout_seconds=0.05,
            step_retry=fast_policy(timeout=None),
        )

        with pytest.raises(StepTimeoutError, match="review workflow"):
            await orchestrator.analyze(sample_pr)

        stored = await orchestrator.store.get_review(42, "test-org/test-repo", 7)
        assert stored.status is ReviewStatus.FAILED
        assert len(stored.suggestions) == 1

    @pytest.mark.asyncio
    async def test_context_failure_degrades_to_minimal_context(self, sample_pr):
        from merge_reviewer.models.review import ReviewStatus

        source_control = BrokenListingSourceControl(changed_files=list(sample_pr.changed_files))
        client = FakeCompletionClient()
        orchestrator = make_orchestrator(source_control, client)

        result = await orchestrator.analyze(sample_pr)

        assert result.status is ReviewStatus.COMPLETED
        # Only the review prompt reached the AI; context analysis was skipped
        assert len(client.calls) == 1
        assert len(source_control.review_comments) == 1

    @pytest.mark.asyncio
    async def test_rule_failure_degrades_to_neutral_evaluation(self, sample_pr, source_control):
        from merge_reviewer.models.review import ReviewStatus

        rule_engine = MagicMock()
        rule_engine.evaluate = AsyncMock(side_effect=RuntimeError("rule store corrupt"))
        orchestrator = make_orchestrator(source_control, rule_engine=rule_engine)

        result = await orchestrator.analyze(sample_pr)

        assert result.status is ReviewStatus.COMPLETED
        assert result.rules_passed == []
        assert result.rules_violated == []

    @pytest.mark.asyncio
    async def test_rule_failure_without_degradation_fails(self, sample_pr, source_control):
        from merge_reviewer.models.review import ReviewStatus

        rule_engine = MagicMock()
        rule_engine.evaluate = AsyncMock(side_effect=RuntimeError("rule store corrupt"))
        orchestrator = make_orchestrator(
            source_control, rule_engine=rule_engine, graceful_degradation=False
        )

        with pytest.raises(RuntimeError):
            await orchestrator.analyze(sample_pr)

        stored = await orchestrator.store.get_review(42, "test-org/test-repo", 7)
        assert stored.status is ReviewStatus.FAILED
        assert stored.summary == "Analysis failed: rule store corrupt"

    @pytest.mark.asyncio
    async def test_ai_failure_uses_fallback_review(self, sample_pr, source_control):
        from merge_reviewer.errors import ExternalServiceError
        from merge_reviewer.models.review import SYSTEM_FILE, ReviewStatus

        client = FakeCompletionClient(review=ExternalServiceError("model overloaded"))
        orchestrator = make_orchestrator(source_control, client)

        result = await orchestrator.analyze(sample_pr)

        assert result.status is ReviewStatus.COMPLETED
        assert result.confidence == 0.1
        assert [s.file for s in result.suggestions] == [SYSTEM_FILE]

    @pytest.mark.asyncio
    async def test_comment_failure_posts_fallback_message(self, sample_pr, source_control):
        from merge_reviewer.models.review import ReviewStatus
        from merge_reviewer.orchestrator.orchestrator import COMMENT_FAILURE_MESSAGE

        source_control.fail_review_comment = True
        orchestrator = make_orchestrator(source_control)

        result = await orchestrator.analyze(sample_pr)

        assert result.status is ReviewStatus.COMPLETED
        assert source_control.error_comments == [COMMENT_FAILURE_MESSAGE]

    @pytest.mark.asyncio
    async def test_minimal_context_when_intelligent_context_disabled(self, sample_pr, source_control):
        client = FakeCompletionClient()
        orchestrator = make_orchestrator(source_control, client, intelligent_context=False)

        await orchestrator.analyze(sample_pr)

        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_custom_rules_from_store_are_applied(self, source_control):
        from merge_reviewer.models.pull_request import ChangedFile
        from merge_reviewer.models.review import CustomRule, RuleSeverity
        from merge_reviewer.store import InMemoryReviewStore

        store = InMemoryReviewStore()
        await store.save_rule(
            CustomRule(
                id="no-select-star",
                installation_id=42,
                name="No SELECT *",
                description="List columns explicitly",
                pattern=r"SELECT \*",
                severity=RuleSeverity.HIGH,
            )
        )
        pr = make_pr(
            changed_files=[
                ChangedFile(
                    filename="db.py",
                    status="modified",
                    additions=1,
                    patch='+rows = db.execute("SELECT * FROM users")',
                )
            ]
        )
        orchestrator = make_orchestrator(source_control, store=store)

        result = await orchestrator.analyze(pr)

        assert [r.rule_id for r in result.rules_violated] == ["no-select-star"]

    @pytest.mark.asyncio
    async def test_without_source_control_no_comments_are_posted(self, sample_pr, source_control):
        orchestrator = make_orchestrator(source_control)
        orchestrator.source_control = None

        await orchestrator.analyze(sample_pr)

        assert source_control.review_comments == []

    @pytest.mark.asyncio
    async def test_failed_rule_lookup_stops_context_acquisition(self, sample_pr):
        from merge_reviewer.errors import ValidationError
        from merge_reviewer.models.review import ReviewStatus

        source_control = CountingSlowListingSourceControl(changed_files=list(sample_pr.changed_files))
        store = failing_rules_store(ValidationError("installation id rejected"))
        orchestrator = make_orchestrator(
            source_control, store=store, step_retry=fast_policy(timeout=5.0)
        )

        with pytest.raises(ValidationError):
            await orchestrator.analyze(sample_pr)
        await asyncio.sleep(0.5)

        assert source_control.listings_finished == 0
        stored = await store.get_review(42, "test-org/test-repo", 7)
        assert stored.status is ReviewStatus.FAILED

    @pytest.mark.asyncio
    async def test_rule_lookup_failure_degrades_to_built_in_rules(self, sample_pr, source_control):
        from merge_reviewer.errors import PersistenceError
        from merge_reviewer.models.review import ReviewStatus

        store = failing_rules_store(PersistenceError("database is locked"))
        orchestrator = make_orchestrator(source_control, store=store)

        result = await orchestrator.analyze(sample_pr)

        assert result.status is ReviewStatus.COMPLETED
        assert len(result.rules_passed) == 4

    @pytest.mark.asyncio
    async def test_rule_lookup_failure_without_degradation_fails(self, sample_pr, source_control):
        from merge_reviewer.errors import PersistenceError
        from merge_reviewer.models.review import ReviewStatus

        store = failing_rules_store(PersistenceError("database is locked"))
        orchestrator = make_orchestrator(source_control, store=store, graceful_degradation=False)

        with pytest.raises(PersistenceError):
            await orchestrator.analyze(sample_pr)

        stored = await store.get_review(42, "test-org/test-repo", 7)
        assert stored.status is ReviewStatus.FAILED

    @pytest.mark.asyncio
    async def test_cancelled_analysis_records_failure(self, sample_pr):
        from merge_reviewer.models.review import ReviewStatus

        source_control = CountingSlowListingSourceControl(
            changed_files=list(sample_pr.changed_files), delay=5
        )
        orchestrator = make_orchestrator(source_control, step_retry=fast_policy(timeout=10.0))

        task = asyncio.create_task(orchestrator.analyze(sample_pr))
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        stored = await orchestrator.store.get_review(42, "test-org/test-repo", 7)
        assert stored.status is ReviewStatus.FAILED
        assert stored.summary == "Analysis failed: analysis was cancelled before completion"
        assert source_control.error_comments == []


class TestRepositoryIndexer:
    """Tests for repository indexing."""

    @pytest.mark.asyncio
    async def test_index_keeps_latest_snapshot(self, source_control):
        from merge_reviewer.context import RepositoryStructureReader
        from merge_reviewer.orchestrator import RepositoryIndexer

        indexer = RepositoryIndexer(RepositoryStructureReader(source_control))

        assert indexer.get(42, "acme/api") is None
        snapshot = await indexer.index(42, "acme/api")

        assert snapshot.structure.total_files == len(source_control.files)
        assert indexer.get(42, "acme/api") is snapshot


class TestApplication:
    """Tests for the wired application."""

    @pytest.mark.asyncio
    async def test_scheduled_analysis_end_to_end(self, sample_pr, source_control, config_file):
        from merge_reviewer.app import build_application
        from merge_reviewer.config import load_config
        from merge_reviewer.models.review import ReviewStatus
        from merge_reviewer.scheduler import JobStatus, PRAnalysisPayload, RepositoryIndexingPayload

        config = load_config(config_file)
        config.scheduler.poll_interval_seconds = 0.01
        application = build_application(
            config, source_control=source_control, completion_client=FakeCompletionClient()
        )
        application.scheduler.start()

        review_job = application.scheduler.enqueue(PRAnalysisPayload(sample_pr))
        index_job = application.scheduler.enqueue(
            RepositoryIndexingPayload(installation_id=42, repository_name="test-org/test-repo")
        )
        review = await application.scheduler.status(review_job).wait(timeout=5)
        index = await application.scheduler.status(index_job).wait(timeout=5)
        await application.shutdown()

        assert review.status is JobStatus.COMPLETED
        assert review.result.status is ReviewStatus.COMPLETED
        assert index.status is JobStatus.COMPLETED
        assert application.indexer.get(42, "test-org/test-repo") is index.result
        assert len(source_control.review_comments) == 1

    @pytest.mark.asyncio
    async def test_job_timeout_marks_review_failed(self, sample_pr):
        from merge_reviewer.models.review import ReviewStatus
        from merge_reviewer.scheduler import (
            JobKind,
            JobKindSettings,
            JobScheduler,
            JobStatus,
            PRAnalysisPayload,
            SchedulerSettings,
        )

        source_control = CountingSlowListingSourceControl(
            changed_files=list(sample_pr.changed_files), delay=1
        )
        orchestrator = make_orchestrator(source_control, step_retry=fast_policy(timeout=5.0))

        async def handle(job):
            return await orchestrator.analyze(job.payload.pr)

        scheduler = JobScheduler(
            handlers={JobKind.PR_ANALYSIS: handle},
            settings=SchedulerSettings(
                job_settings={
                    JobKind.PR_ANALYSIS: JobKindSettings(
                        max_concurrent=1, max_retries=0, retry_delay_seconds=1, timeout_seconds=0.1
                    )
                }
            ),
        )
        job_id = scheduler.enqueue(PRAnalysisPayload(sample_pr))

        scheduler.run_cycle()
        job = await scheduler.status(job_id).wait(timeout=5)
        await scheduler.stop()

        assert job.status is JobStatus.FAILED
        assert "timed out after 0.1s" in job.error
        stored = await orchestrator.store.get_review(42, "test-org/test-repo", 7)
        assert stored.status is ReviewStatus.FAILED
        assert stored.summary == "Analysis failed: analysis was cancelled before completion"

    @pytest.mark.asyncio
    async def test_shutdown_without_waiting_marks_review_failed(self, sample_pr):
        from merge_reviewer.models.review import ReviewStatus
        from merge_reviewer.scheduler import JobKind, JobScheduler, JobStatus, PRAnalysisPayload

        source_control = CountingSlowListingSourceControl(
            changed_files=list(sample_pr.changed_files), delay=5
        )
        orchestrator = make_orchestrator(source_control, step_retry=fast_policy(timeout=10.0))

        async def handle(job):
            return await orchestrator.analyze(job.payload.pr)

        scheduler = JobScheduler(handlers={JobKind.PR_ANALYSIS: handle})
        job_id = scheduler.enqueue(PRAnalysisPayload(sample_pr))
        scheduler.run_cycle()
        await asyncio.sleep(0.1)

        await scheduler.stop(wait_for_jobs=False)

        job = scheduler.status(job_id)
        assert job.status is JobStatus.FAILED
        assert job.error == "Job cancelled while processing"
        stored = await orchestrator.store.get_review(42, "test-org/test-repo", 7)
        assert stored.status is ReviewStatus.FAILED

    @pytest.mark.asyncio
    async def test_draft_job_is_skipped(self, draft_pr, source_control, config_file):
        from merge_reviewer.app import build_application
        from merge_reviewer.config import load_config
        from merge_reviewer.scheduler import JobStatus, PRAnalysisPayload

        application = build_application(
            load_config(config_file),
            source_control=source_control,
            completion_client=FakeCompletionClient(),
        )

        job_id = application.scheduler.enqueue(PRAnalysisPayload(draft_pr))
        application.scheduler.run_cycle()
        job = await application.scheduler.status(job_id).wait(timeout=5)
        await application.shutdown()

        assert job.status is JobStatus.COMPLETED
        assert job.skipped_reason == "PR not eligible: PR is in draft status"
