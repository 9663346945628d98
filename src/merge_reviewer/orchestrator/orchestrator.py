"""Review orchestrator: the PR analysis state machine."""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from merge_reviewer.ai.review_generator import AIReviewGenerator
from merge_reviewer.context.pipeline import ContextAcquisitionPipeline
from merge_reviewer.errors import NotEligibleError, ReviewEngineError, ValidationError
from merge_reviewer.github.formatter import ReviewFormatter
from merge_reviewer.models.context import EnhancedReviewContext
from merge_reviewer.models.pull_request import PullRequestData, ineligibility_reason
from merge_reviewer.models.review import (
    SYSTEM_FILE,
    CustomRule,
    ReviewResult,
    ReviewStatus,
    RuleEvaluation,
    Suggestion,
    SuggestionSeverity,
    SuggestionType,
)
from merge_reviewer.resilience import RetryPolicy, retry_async, with_timeout
from merge_reviewer.rules.engine import RuleEngine, empty_evaluation
from merge_reviewer.scoring.merge_score import MergeScoreEngine, ScoreBreakdown, derive_code_analysis
from merge_reviewer.source_control import SourceControl
from merge_reviewer.store.base import ReviewStore

logger = logging.getLogger(__name__)

COMMENT_FAILURE_MESSAGE = (
    "Review analysis completed but failed to post detailed results. Please check the logs."
)


@dataclass
class OrchestratorConfig:
    """Configuration for the orchestrator."""

    workflow_timeout_seconds: float = 300.0
    graceful_degradation: bool = True
    intelligent_context: bool = True
    step_retry: RetryPolicy = field(default_factory=RetryPolicy)
    comment_retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_retries=3, base_delay=1.0, max_delay=10.0, timeout=30.0)
    )


def validate_pr(pr: PullRequestData) -> None:
    """Raise ValidationError if the snapshot is incomplete."""
    missing = pr.missing_fields()
    if missing:
        raise ValidationError(f"Validation failed: missing or invalid {', '.join(missing)}")


def failure_suggestion(error: BaseException) -> Suggestion:
    """The single system suggestion recorded on a failed analysis."""
    message = str(error) or type(error).__name__
    return Suggestion(
        file=SYSTEM_FILE,
        description=f"Analysis failed: {message}",
        type=SuggestionType.FIX,
        severity=SuggestionSeverity.HIGH,
        reasoning="The automated review could not complete; review this pull request manually.",
    )


class ReviewOrchestrator:
    """Drives one pull request through context, rules, AI review and scoring.

    Every status transition upserts the same ReviewResult, keyed by
    installation, repository and PR number. IN_PROGRESS is written before any
    work starts.
    """

    def __init__(
        self,
        pipeline: ContextAcquisitionPipeline,
        rule_engine: RuleEngine,
        generator: AIReviewGenerator,
        store: ReviewStore,
        source_control: SourceControl | None = None,
        score_engine: MergeScoreEngine | None = None,
        formatter: ReviewFormatter | None = None,
        config: OrchestratorConfig | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            pipeline: Context acquisition pipeline
            rule_engine: Rule evaluation collaborator
            generator: AI review generator
            store: Review result persistence
            source_control: Where review comments are posted; None disables comments
            score_engine: Merge score engine
            formatter: Comment formatter
            config: Orchestrator configuration
        """
        self.pipeline = pipeline
        self.rule_engine = rule_engine
        self.generator = generator
        self.store = store
        self.source_control = source_control
        self.score_engine = score_engine or MergeScoreEngine()
        self.formatter = formatter or ReviewFormatter()
        self.config = config or OrchestratorConfig()

    async def analyze(self, pr: PullRequestData) -> ReviewResult:
        """Analyze a pull request and persist the outcome.

        Args:
            pr: Pull request snapshot

        Returns:
            The COMPLETED review result

        Raises:
            ValidationError: If the snapshot is incomplete
            NotEligibleError: If the pull request does not qualify
            Exception: The original error after a FAILED result is recorded
        """
        validate_pr(pr)
        reason = ineligibility_reason(pr)
        if reason:
            raise NotEligibleError(f"PR not eligible: {reason}")

        started = time.perf_counter()
        label = f"{pr.repository_name}#{pr.pr_number}"
        logger.info(f"Starting analysis of {label}")

        result = ReviewResult(
            installation_id=pr.installation_id,
            repository_name=pr.repository_name,
            pr_number=pr.pr_number,
            status=ReviewStatus.IN_PROGRESS,
        )

        try:
            result = await self.store.upsert_review(result)
            result, breakdown = await with_timeout(
                self._run(pr, result),
                self.config.workflow_timeout_seconds,
                "review workflow",
            )
            result.status = ReviewStatus.COMPLETED
            result.processing_time_ms = int((time.perf_counter() - started) * 1000)
            result = await self.store.upsert_review(result)
        except asyncio.CancelledError:
            logger.warning(f"Analysis of {label} was cancelled")
            await asyncio.shield(
                self._record_failure(
                    pr,
                    result,
                    ReviewEngineError("analysis was cancelled before completion"),
                    started,
                    notify=False,
                )
            )
            raise
        except Exception as e:
            logger.error(f"Analysis of {label} failed: {e}")
            await self._record_failure(pr, result, e, started)
            raise

        logger.info(
            f"Analysis of {label} completed: score {result.merge_score} "
            f"({result.recommendation}) in {result.processing_time_ms}ms"
        )
        await self._post_review(pr, result, breakdown)
        return result

    async def _run(
        self, pr: PullRequestData, result: ReviewResult
    ) -> tuple[ReviewResult, ScoreBreakdown]:
        context_task = asyncio.create_task(self._acquire_context(pr))
        rules_task = asyncio.create_task(self._load_custom_rules(pr))
        try:
            context, custom_rules = await asyncio.gather(context_task, rules_task)
        finally:
            # a failed stage stops its sibling
            for task in (context_task, rules_task):
                task.cancel()
            await asyncio.gather(context_task, rules_task, return_exceptions=True)

        evaluation = await self._evaluate_rules(pr, custom_rules)
        review = await self.generator.generate(pr, context, evaluation)
        analysis = derive_code_analysis(review, evaluation, context.changes)
        breakdown = self.score_engine.breakdown(analysis, evaluation)

        result.merge_score = breakdown.total
        result.recommendation = breakdown.recommendation.recommendation.value
        result.rules_violated = list(evaluation.violated)
        result.rules_passed = list(evaluation.passed)
        result.suggestions = list(review.suggestions)
        result.summary = review.summary
        result.confidence = review.confidence
        return result, breakdown

    async def _acquire_context(self, pr: PullRequestData) -> EnhancedReviewContext:
        if not self.config.intelligent_context:
            return await self.pipeline.acquire_minimal(pr)
        try:
            return await retry_async(
                lambda: self.pipeline.acquire(pr),
                "context acquisition",
                self.config.step_retry,
            )
        except (ValidationError, NotEligibleError):
            raise
        except Exception as e:
            if not self.config.graceful_degradation:
                raise
            logger.warning(f"Context acquisition failed, using minimal context: {e}")
            return await self.pipeline.acquire_minimal(pr)

    async def _load_custom_rules(self, pr: PullRequestData) -> list[CustomRule]:
        try:
            return await retry_async(
                lambda: self.store.list_active_rules(pr.installation_id),
                "custom rule retrieval",
                self.config.step_retry,
            )
        except (ValidationError, NotEligibleError):
            raise
        except Exception as e:
            if not self.config.graceful_degradation:
                raise
            logger.warning(f"Custom rule retrieval failed, using built-in rules only: {e}")
            return []

    async def _evaluate_rules(
        self, pr: PullRequestData, custom_rules: list[CustomRule]
    ) -> RuleEvaluation:
        try:
            return await self.rule_engine.evaluate(pr, custom_rules)
        except Exception as e:
            if not self.config.graceful_degradation:
                raise
            logger.warning(f"Rule evaluation failed, using neutral evaluation: {e}")
            return empty_evaluation()

    async def _record_failure(
        self,
        pr: PullRequestData,
        result: ReviewResult,
        error: BaseException,
        started: float,
        notify: bool = True,
    ) -> None:
        message = str(error) or type(error).__name__
        failed = ReviewResult(
            installation_id=pr.installation_id,
            repository_name=pr.repository_name,
            pr_number=pr.pr_number,
            status=ReviewStatus.FAILED,
            suggestions=[failure_suggestion(error)],
            summary=f"Analysis failed: {message}",
            processing_time_ms=int((time.perf_counter() - started) * 1000),
            created_at=result.created_at,
        )
        try:
            await self.store.upsert_review(failed)
        except Exception as e:
            logger.error(f"Failed to record failed analysis for PR #{pr.pr_number}: {e}")

        if self.source_control is None or not notify:
            return
        try:
            await self.source_control.post_error_comment(
                pr.installation_id,
                pr.repository_name,
                pr.pr_number,
                f"Analysis failed: {message}. Please review manually.",
            )
        except Exception as e:
            logger.error(f"Failed to post error comment on PR #{pr.pr_number}: {e}")

    async def _post_review(
        self, pr: PullRequestData, result: ReviewResult, breakdown: ScoreBreakdown
    ) -> None:
        if self.source_control is None:
            return
        body = self.formatter.format_review(result, breakdown)
        try:
            await retry_async(
                lambda: self.source_control.post_review_comment(
                    pr.installation_id, pr.repository_name, pr.pr_number, body
                ),
                "review comment",
                self.config.comment_retry,
            )
            logger.info(f"Posted review comment on PR #{pr.pr_number}")
        except Exception as e:
            logger.error(f"Failed to post review comment on PR #{pr.pr_number}: {e}")
            try:
                await self.source_control.post_error_comment(
                    pr.installation_id,
                    pr.repository_name,
                    pr.pr_number,
                    COMMENT_FAILURE_MESSAGE,
                )
            except Exception as inner:
                logger.error(f"Failed to post fallback comment on PR #{pr.pr_number}: {inner}")
