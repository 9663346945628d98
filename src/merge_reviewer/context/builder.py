"""Assembly of the enhanced review context and its metrics."""

import logging

from merge_reviewer.models.context import (
    ContextAnalysisResponse,
    ContextMetrics,
    EnhancedReviewContext,
    FetchedFile,
    RawCodeChanges,
    RepositoryStructure,
    StageTimings,
    clamp,
)
from merge_reviewer.scoring.merge_score import round_half_up

logger = logging.getLogger(__name__)


def fetch_success_rate(fetched_files: list[FetchedFile]) -> float:
    """Share of successful fetches; 1.0 when nothing was attempted."""
    if not fetched_files:
        return 1.0
    return sum(1 for f in fetched_files if f.fetch_success) / len(fetched_files)


def coverage_ratio(analysis: ContextAnalysisResponse, fetched_files: list[FetchedFile]) -> float:
    """Share of recommended files that were fetched; 1.0 when none were recommended."""
    recommended = {r.file_path for r in analysis.relevant_files}
    if not recommended:
        return 1.0
    fetched = {f.file_path for f in fetched_files if f.fetch_success}
    return len(recommended & fetched) / len(recommended)


def context_quality_score(
    confidence: float, success_rate: float, coverage: float, total_files: int
) -> int:
    """Weighted context quality on a 0-100 scale.

    confidence x40 + fetch success x25 + coverage x20 + 15 when the
    repository listing is non-empty.
    """
    completeness_bonus = 1.0 if total_files > 0 else 0.0
    score = confidence * 40 + success_rate * 25 + coverage * 20 + completeness_bonus * 15
    return round_half_up(clamp(score, 0.0, 100.0))


class ContextBuilder:
    """Combines pipeline outputs into an EnhancedReviewContext."""

    def build(
        self,
        changes: RawCodeChanges,
        structure: RepositoryStructure,
        analysis: ContextAnalysisResponse,
        fetched_files: list[FetchedFile],
        timings: StageTimings | None = None,
    ) -> EnhancedReviewContext:
        """Build the enhanced context.

        Args:
            changes: Raw changes
            structure: Repository listing
            analysis: Context analysis
            fetched_files: Fetched recommended files
            timings: Per-stage timings

        Returns:
            EnhancedReviewContext with metrics
        """
        recommended = {r.file_path for r in analysis.relevant_files}
        fetched_paths = {f.file_path for f in fetched_files}

        unexpected = sorted(fetched_paths - recommended)
        if unexpected:
            logger.warning(f"Fetched files that were not recommended: {', '.join(unexpected)}")
        missing = sorted(recommended - fetched_paths)
        if missing:
            logger.warning(f"Recommended files that were not fetched: {', '.join(missing)}")

        rate = fetch_success_rate(fetched_files)
        metrics = ContextMetrics(
            total_files_in_repo=structure.total_files,
            files_analyzed=min(structure.total_files, len(structure.file_paths)),
            files_recommended=len(analysis.relevant_files),
            files_fetched=sum(1 for f in fetched_files if f.fetch_success),
            fetch_success_rate=rate,
            context_quality_score=context_quality_score(
                analysis.confidence,
                rate,
                coverage_ratio(analysis, fetched_files),
                structure.total_files,
            ),
            timings=timings or StageTimings(),
        )

        logger.info(
            f"Context for PR #{changes.pr_number}: {metrics.files_fetched} files, "
            f"quality {metrics.context_quality_score}"
        )
        return EnhancedReviewContext(
            changes=changes,
            structure=structure,
            analysis=analysis,
            fetched_files=list(fetched_files),
            metrics=metrics,
        )


def summarize_context(context: EnhancedReviewContext) -> str:
    """One-line description of an enhanced context."""
    m = context.metrics
    return (
        f"{context.changes.totals.files} changed files, "
        f"{m.files_fetched}/{m.files_recommended} context files "
        f"({m.fetch_success_rate:.0%} fetched) from {m.total_files_in_repo} repository files; "
        f"{context.analysis.analysis_type.value} analysis, quality {m.context_quality_score}/100"
    )


def validate_context(context: EnhancedReviewContext) -> list[str]:
    """Sanity checks on an enhanced context.

    Returns:
        Issues found (empty if none)
    """
    issues = []
    m = context.metrics
    if not context.changes.file_changes:
        issues.append("no file changes")
    if m.files_recommended and len(context.fetched_files) > 1.5 * m.files_recommended:
        issues.append(
            f"fetched {len(context.fetched_files)} files for {m.files_recommended} recommendations"
        )
    if m.files_fetched > m.total_files_in_repo:
        issues.append("fetched more files than the repository contains")
    return issues
