"""Review orchestration."""

from merge_reviewer.models.pull_request import ineligibility_reason, is_eligible
from merge_reviewer.orchestrator.indexer import IndexSnapshot, RepositoryIndexer
from merge_reviewer.orchestrator.orchestrator import (
    OrchestratorConfig,
    ReviewOrchestrator,
    failure_suggestion,
    validate_pr,
)

__all__ = [
    "IndexSnapshot",
    "OrchestratorConfig",
    "RepositoryIndexer",
    "ReviewOrchestrator",
    "failure_suggestion",
    "ineligibility_reason",
    "is_eligible",
    "validate_pr",
]
