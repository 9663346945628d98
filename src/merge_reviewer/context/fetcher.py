"""Fetching recommended repository files."""

import asyncio
import logging
from typing import Protocol

from merge_reviewer.models.context import PRIORITY_ORDER, FetchedFile, RelevantFileRecommendation
from merge_reviewer.source_control import SourceControl

logger = logging.getLogger(__name__)


class SelectiveFileFetcher(Protocol):
    """Fetches the content of recommended files."""

    async def fetch(
        self,
        installation_id: int,
        repository_name: str,
        recommendations: list[RelevantFileRecommendation],
    ) -> list[FetchedFile]: ...


class SourceControlFileFetcher:
    """Fetches recommended files through the source-control collaborator.

    Files are requested highest priority first with bounded concurrency; a
    failed fetch yields an unsuccessful FetchedFile instead of an error.
    """

    def __init__(
        self,
        source_control: SourceControl,
        max_concurrency: int = 5,
        max_file_bytes: int = 100_000,
    ) -> None:
        self.source_control = source_control
        self.max_concurrency = max_concurrency
        self.max_file_bytes = max_file_bytes

    async def fetch(
        self,
        installation_id: int,
        repository_name: str,
        recommendations: list[RelevantFileRecommendation],
    ) -> list[FetchedFile]:
        """Fetch recommended files.

        Args:
            installation_id: Installation the repository belongs to
            repository_name: Repository in "owner/name" format
            recommendations: Files to fetch

        Returns:
            One FetchedFile per recommendation, in priority order
        """
        ordered = sorted(
            recommendations,
            key=lambda r: (PRIORITY_ORDER[r.priority], -r.relevance_score),
        )
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def fetch_one(rec: RelevantFileRecommendation) -> FetchedFile:
            async with semaphore:
                try:
                    content = await self.source_control.get_file_content(
                        installation_id, repository_name, rec.file_path
                    )
                except Exception as e:
                    logger.warning(f"Could not fetch {rec.file_path}: {e}")
                    return FetchedFile(
                        file_path=rec.file_path,
                        content="",
                        fetch_success=False,
                        reason=rec.reason,
                        error=str(e),
                    )
            if len(content) > self.max_file_bytes:
                content = content[: self.max_file_bytes] + "\n... (truncated)"
            return FetchedFile(
                file_path=rec.file_path, content=content, fetch_success=True, reason=rec.reason
            )

        results = await asyncio.gather(*(fetch_one(rec) for rec in ordered))
        fetched = sum(1 for f in results if f.fetch_success)
        logger.info(f"Fetched {fetched}/{len(results)} recommended files from {repository_name}")
        return list(results)
