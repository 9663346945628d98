"""Repository file listing."""

import logging
from collections import defaultdict

from merge_reviewer.context.languages import detect_language
from merge_reviewer.models.context import RepositoryStructure
from merge_reviewer.source_control import SourceControl

logger = logging.getLogger(__name__)


def build_structure(paths: list[str]) -> RepositoryStructure:
    """Group a path listing by language."""
    by_language: dict[str, list[str]] = defaultdict(list)
    for path in paths:
        by_language[detect_language(path)].append(path)
    return RepositoryStructure(
        total_files=len(paths),
        file_paths=list(paths),
        files_by_language=dict(by_language),
    )


class RepositoryStructureReader:
    """Reads a fresh repository listing for each analysis."""

    def __init__(self, source_control: SourceControl) -> None:
        self.source_control = source_control

    async def read(
        self, installation_id: int, repository_name: str, ref: str | None = None
    ) -> RepositoryStructure:
        """Read the repository's file listing.

        Args:
            installation_id: Installation the repository belongs to
            repository_name: Repository in "owner/name" format
            ref: Optional branch or commit

        Returns:
            RepositoryStructure snapshot
        """
        paths = await self.source_control.list_repository_files(
            installation_id, repository_name, ref
        )
        structure = build_structure(sorted(set(paths)))
        logger.info(
            f"Read {structure.total_files} paths from {repository_name} "
            f"({len(structure.files_by_language)} languages)"
        )
        return structure
