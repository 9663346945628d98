"""AI review generation: prompt assembly, completion, parsing and fallback."""

import logging
from dataclasses import dataclass, field

from merge_reviewer.ai.client import CompletionClient
from merge_reviewer.ai.parsing import (
    clamp_number,
    coerce_enum,
    coerce_int,
    coerce_str,
    estimate_tokens,
    extract_json_document,
)
from merge_reviewer.errors import ContextLimitError, ResponseParseError
from merge_reviewer.models.context import PRIORITY_ORDER, EnhancedReviewContext, FilePriority
from merge_reviewer.models.pull_request import PullRequestData
from merge_reviewer.models.review import (
    SYSTEM_FILE,
    AIReview,
    QualityMetrics,
    RuleEvaluation,
    Suggestion,
    SuggestionSeverity,
    SuggestionType,
)
from merge_reviewer.resilience import CircuitBreaker, RetryPolicy, retry_async

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a code review assistant. You MUST respond with valid JSON only, "
    "no markdown and no prose outside the JSON object. Score each quality metric "
    "from 0 to 100 and give concrete, actionable suggestions."
)

RESPONSE_FORMAT = """## Response Format
Respond with a single JSON object:
{
  "merge_score": 0-100,
  "quality_metrics": {
    "code_style": 0-100,
    "test_coverage": 0-100,
    "documentation": 0-100,
    "security": 0-100,
    "performance": 0-100,
    "maintainability": 0-100
  },
  "suggestions": [
    {
      "file": "path/of/file",
      "line_number": 42,
      "type": "improvement|fix|optimization|style",
      "severity": "low|medium|high",
      "description": "what to change",
      "suggested_code": "optional replacement code",
      "reasoning": "why it matters"
    }
  ],
  "summary": "one paragraph overall assessment",
  "confidence": 0.0-1.0
}"""

REDUCED_PATCH_CHARS = 200


@dataclass
class ReviewGeneratorConfig:
    """Configuration for the review generator."""

    context_limit_tokens: int = 8000
    patch_chars: int = 1000
    context_file_chars: int = 4000
    retry: RetryPolicy = field(default_factory=RetryPolicy)


class AIReviewGenerator:
    """Generates a structured review from a pull request and its context."""

    def __init__(
        self,
        client: CompletionClient,
        config: ReviewGeneratorConfig | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        """Initialize the generator.

        Args:
            client: AI completion collaborator
            config: Generator configuration
            breaker: Optional circuit breaker guarding the completion service
        """
        self.client = client
        self.config = config or ReviewGeneratorConfig()
        self.breaker = breaker

    async def generate(
        self,
        pr: PullRequestData,
        context: EnhancedReviewContext,
        evaluation: RuleEvaluation | None = None,
    ) -> AIReview:
        """Generate a review; never raises.

        Args:
            pr: Pull request snapshot
            context: Enhanced review context
            evaluation: Rule evaluation to mention in the prompt

        Returns:
            Parsed review, or the fixed fallback review on total failure
        """
        prompt = build_review_prompt(
            pr,
            context,
            evaluation,
            budget_tokens=self.config.context_limit_tokens,
            patch_chars=self.config.patch_chars,
            file_chars=self.config.context_file_chars,
        )
        try:
            try:
                review = await self._complete_and_parse(prompt)
            except ContextLimitError as e:
                logger.warning(f"Review prompt too large ({e}), retrying with changes only")
                reduced = build_review_prompt(
                    pr,
                    context,
                    None,
                    budget_tokens=0,
                    patch_chars=REDUCED_PATCH_CHARS,
                    file_chars=0,
                )
                review = await self._complete_and_parse(reduced)
        except Exception as e:
            logger.error(f"AI review failed for {pr.repository_name}#{pr.pr_number}: {e}")
            return fallback_review(str(e) or type(e).__name__)

        logger.info(
            f"AI review for {pr.repository_name}#{pr.pr_number}: "
            f"score {review.merge_score:.0f}, {len(review.suggestions)} suggestions"
        )
        return review

    async def _complete_and_parse(self, prompt: str) -> AIReview:
        async def attempt() -> str:
            return await retry_async(
                lambda: self.client.complete(SYSTEM_PROMPT, prompt),
                "ai review completion",
                self.config.retry,
            )

        text = await (self.breaker.call(attempt) if self.breaker else attempt())
        review = parse_review(text)
        problems = validate_review(review)
        if problems:
            raise ResponseParseError(f"AI review rejected: {'; '.join(problems)}")
        return review


def build_review_prompt(
    pr: PullRequestData,
    context: EnhancedReviewContext,
    evaluation: RuleEvaluation | None,
    budget_tokens: int,
    patch_chars: int,
    file_chars: int,
) -> str:
    """Assemble the review prompt within a token budget.

    Pull request metadata and patches are always included. Context files,
    highest priority first, and then rule findings are added only while the
    estimate stays within ``budget_tokens``.
    """
    header = [
        "## Pull Request",
        f"Repository: {pr.repository_name}",
        f"PR #{pr.pr_number}: {pr.title}",
        f"Author: {pr.author}",
    ]
    if pr.body:
        header.append(f"Description:\n{pr.body[:2000]}")
    if pr.linked_issues:
        header.append("Linked issues:")
        header.extend(
            f"- #{i.number} ({i.link_type.value}){': ' + i.title if i.title else ''}"
            for i in pr.linked_issues
        )

    changes = context.changes
    header.append(
        f"\n## Changes ({changes.totals.files} files, "
        f"+{changes.totals.additions}/-{changes.totals.deletions})"
    )
    for change in changes.file_changes:
        header.append(f"### {change.filename} ({change.status}, {change.language})")
        if change.patch:
            patch = change.patch[:patch_chars]
            if len(change.patch) > patch_chars:
                patch += "\n... (truncated)"
            header.append(f"```diff\n{patch}\n```")

    sections = ["\n".join(header)]
    used = estimate_tokens(sections[0]) + estimate_tokens(RESPONSE_FORMAT)

    priorities = {r.file_path: r.priority for r in context.analysis.relevant_files}
    files = sorted(
        context.successful_files,
        key=lambda f: PRIORITY_ORDER[priorities.get(f.file_path, FilePriority.LOW)],
    )
    included, skipped = [], 0
    for fetched in files:
        if file_chars <= 0:
            skipped += 1
            continue
        block = (
            f"### {fetched.file_path}\n"
            f"Included because: {fetched.reason or 'recommended context'}\n"
            f"```\n{fetched.content[:file_chars]}\n```"
        )
        cost = estimate_tokens(block)
        if used + cost > budget_tokens:
            skipped += 1
            continue
        included.append(block)
        used += cost
    if included:
        sections.append("## Repository Context\n" + "\n\n".join(included))
    if skipped:
        logger.debug(f"Left {skipped} context files out of the review prompt")

    if evaluation is not None and evaluation.violated:
        rules = "## Rule Findings\n" + "\n".join(
            f"- [{r.severity.value}] {r.rule_name}: {r.description}"
            + (f" ({', '.join(r.affected_files)})" if r.affected_files else "")
            for r in evaluation.violated
        )
        if used + estimate_tokens(rules) <= budget_tokens:
            sections.append(rules)
            used += estimate_tokens(rules)

    sections.append(RESPONSE_FORMAT)
    return "\n\n".join(sections)


def _field(item: dict, snake: str, camel: str):
    return item.get(snake, item.get(camel))


def parse_review(text: str) -> AIReview:
    """Coerce model output into an AIReview.

    Missing or malformed numeric fields fall back to 50 (scores) or 0.5
    (confidence); nothing outside the declared ranges survives.

    Raises:
        ResponseParseError: If the output contains no JSON object at all
    """
    document = extract_json_document(text)

    metrics = _field(document, "quality_metrics", "qualityMetrics")
    if not isinstance(metrics, dict):
        metrics = document.get("metrics") if isinstance(document.get("metrics"), dict) else {}

    quality = QualityMetrics(
        code_style=clamp_number(_field(metrics, "code_style", "codeStyle"), 0, 100, 50),
        test_coverage=clamp_number(_field(metrics, "test_coverage", "testCoverage"), 0, 100, 50),
        documentation=clamp_number(metrics.get("documentation"), 0, 100, 50),
        security=clamp_number(metrics.get("security"), 0, 100, 50),
        performance=clamp_number(metrics.get("performance"), 0, 100, 50),
        maintainability=clamp_number(metrics.get("maintainability"), 0, 100, 50),
    )

    suggestions = []
    raw_suggestions = document.get("suggestions")
    for item in raw_suggestions if isinstance(raw_suggestions, list) else []:
        if not isinstance(item, dict):
            continue
        code = _field(item, "suggested_code", "suggestedCode")
        suggestions.append(
            Suggestion(
                file=coerce_str(item.get("file"), "unknown"),
                line=coerce_int(_field(item, "line_number", "lineNumber") or item.get("line")),
                type=coerce_enum(item.get("type"), SuggestionType, SuggestionType.IMPROVEMENT),
                severity=coerce_enum(
                    item.get("severity"), SuggestionSeverity, SuggestionSeverity.MEDIUM
                ),
                description=coerce_str(item.get("description"), "No description provided"),
                suggested_code=code if isinstance(code, str) and code.strip() else None,
                reasoning=coerce_str(item.get("reasoning"), "No reasoning provided"),
            )
        )

    return AIReview(
        merge_score=clamp_number(_field(document, "merge_score", "mergeScore"), 0, 100, 50),
        quality=quality,
        suggestions=suggestions,
        summary=coerce_str(document.get("summary"), "AI review completed"),
        confidence=clamp_number(document.get("confidence"), 0.0, 1.0, 0.5),
    )


def validate_review(review: AIReview) -> list[str]:
    """Return the reasons a parsed review must be rejected (empty if acceptable)."""
    problems = []
    if not 0 <= review.merge_score <= 100:
        problems.append("merge score out of range")
    for name, value in vars(review.quality).items():
        if not 0 <= value <= 100:
            problems.append(f"{name} out of range")
    if not 0 <= review.confidence <= 1:
        problems.append("confidence out of range")
    if len(review.summary.strip()) < 5:
        problems.append("summary too short")
    for index, s in enumerate(review.suggestions):
        if not s.file or not s.description:
            problems.append(f"suggestion {index} missing file or description")
        if not isinstance(s.type, SuggestionType) or not isinstance(s.severity, SuggestionSeverity):
            problems.append(f"suggestion {index} has invalid type or severity")
    return problems


def fallback_review(reason: str) -> AIReview:
    """The fixed review used when the AI path fails completely."""
    return AIReview(
        merge_score=50,
        quality=QualityMetrics(),
        suggestions=[
            Suggestion(
                file=SYSTEM_FILE,
                description="Automated AI review was unavailable; please review this change manually.",
                type=SuggestionType.IMPROVEMENT,
                severity=SuggestionSeverity.MEDIUM,
                reasoning=f"AI review failed: {reason}",
            )
        ],
        summary="AI review could not be completed; neutral scores were used.",
        confidence=0.1,
    )
