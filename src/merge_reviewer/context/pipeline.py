"""The context acquisition pipeline."""

import logging
import time

from merge_reviewer.ai.context_analyzer import IntelligentContextAnalyzer, heuristic_response
from merge_reviewer.context.builder import ContextBuilder
from merge_reviewer.context.extractor import RawChangesExtractor
from merge_reviewer.context.fetcher import SelectiveFileFetcher
from merge_reviewer.context.structure import RepositoryStructureReader
from merge_reviewer.models.context import (
    EnhancedReviewContext,
    RepositoryStructure,
    StageTimings,
)
from merge_reviewer.models.pull_request import PullRequestData

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class ContextAcquisitionPipeline:
    """Extract changes, read the repository, pick context files, fetch them, build."""

    def __init__(
        self,
        extractor: RawChangesExtractor,
        structure_reader: RepositoryStructureReader,
        analyzer: IntelligentContextAnalyzer,
        fetcher: SelectiveFileFetcher,
        builder: ContextBuilder | None = None,
    ) -> None:
        self.extractor = extractor
        self.structure_reader = structure_reader
        self.analyzer = analyzer
        self.fetcher = fetcher
        self.builder = builder or ContextBuilder()

    async def acquire(self, pr: PullRequestData) -> EnhancedReviewContext:
        """Run all five stages for a pull request.

        Args:
            pr: Pull request snapshot

        Returns:
            Enhanced review context with per-stage timings
        """
        timings = StageTimings()
        started = time.perf_counter()

        stage = time.perf_counter()
        changes = await self.extractor.extract(pr)
        timings.code_extraction = _elapsed_ms(stage)

        stage = time.perf_counter()
        structure = await self.structure_reader.read(pr.installation_id, pr.repository_name)
        timings.path_retrieval = _elapsed_ms(stage)

        stage = time.perf_counter()
        analysis = await self.analyzer.analyze(changes, structure, pr)
        timings.ai_analysis = _elapsed_ms(stage)

        stage = time.perf_counter()
        fetched = []
        if analysis.relevant_files:
            fetched = await self.fetcher.fetch(
                pr.installation_id, pr.repository_name, analysis.relevant_files
            )
        timings.file_fetching = _elapsed_ms(stage)

        timings.total = _elapsed_ms(started)
        logger.debug(f"Context acquisition timings for PR #{pr.pr_number}: {timings}")
        return self.builder.build(changes, structure, analysis, fetched, timings)

    async def acquire_minimal(self, pr: PullRequestData) -> EnhancedReviewContext:
        """Degraded context: raw changes and heuristic recommendations, nothing fetched."""
        started = time.perf_counter()
        changes = await self.extractor.extract(pr)
        try:
            structure = await self.structure_reader.read(pr.installation_id, pr.repository_name)
        except Exception as e:
            logger.warning(f"Repository listing unavailable for minimal context: {e}")
            structure = RepositoryStructure(total_files=0, file_paths=[])
        analysis = heuristic_response(
            changes,
            structure,
            "minimal context",
            self.analyzer.config.max_recommended_files,
        )
        timings = StageTimings(code_extraction=_elapsed_ms(started), total=_elapsed_ms(started))
        return self.builder.build(changes, structure, analysis, [], timings)
