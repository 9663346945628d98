"""Repository indexing job handler."""

import logging
from dataclasses import dataclass
from datetime import datetime

from merge_reviewer.context.structure import RepositoryStructureReader
from merge_reviewer.models.context import RepositoryStructure
from merge_reviewer.models.review import utcnow

logger = logging.getLogger(__name__)


@dataclass
class IndexSnapshot:
    """Latest indexed listing of one repository."""

    installation_id: int
    repository_name: str
    structure: RepositoryStructure
    indexed_at: datetime


class RepositoryIndexer:
    """Keeps the most recent file listing per repository."""

    def __init__(self, reader: RepositoryStructureReader) -> None:
        self.reader = reader
        self._snapshots: dict[tuple[int, str], IndexSnapshot] = {}

    async def index(self, installation_id: int, repository_name: str) -> IndexSnapshot:
        """Read and store the repository's current listing."""
        structure = await self.reader.read(installation_id, repository_name)
        snapshot = IndexSnapshot(
            installation_id=installation_id,
            repository_name=repository_name,
            structure=structure,
            indexed_at=utcnow(),
        )
        self._snapshots[(installation_id, repository_name)] = snapshot
        logger.info(f"Indexed {repository_name}: {structure.total_files} files")
        return snapshot

    def get(self, installation_id: int, repository_name: str) -> IndexSnapshot | None:
        return self._snapshots.get((installation_id, repository_name))
