"""Context acquisition models."""

from dataclasses import dataclass, field
from enum import Enum


def clamp(value: float, low: float, high: float) -> float:
    """Clamp a value into [low, high]."""
    return max(low, min(high, value))


@dataclass
class FileChange:
    """A changed file enriched with language and rename tracking."""

    filename: str
    status: str
    additions: int
    deletions: int
    patch: str
    language: str
    previous_filename: str | None = None


@dataclass
class ChangeTotals:
    """Aggregate counts across all changed files."""

    additions: int = 0
    deletions: int = 0
    files: int = 0


@dataclass
class RawCodeChanges:
    """Per-run view of a pull request's changes."""

    installation_id: int
    repository_name: str
    pr_number: int
    title: str
    author: str
    totals: ChangeTotals
    file_changes: list[FileChange]
    raw_diff: str

    @property
    def languages(self) -> set[str]:
        """Languages touched by the change."""
        return {change.language for change in self.file_changes}


@dataclass
class RepositoryStructure:
    """Snapshot of a repository's file listing."""

    total_files: int
    file_paths: list[str]
    files_by_language: dict[str, list[str]] = field(default_factory=dict)


class FileCategory(Enum):
    """Why a file is relevant to a review."""

    DEPENDENCY = "dependency"
    INTERFACE = "interface"
    TEST = "test"
    CONFIG = "config"
    DOCUMENTATION = "documentation"
    RELATED_LOGIC = "related_logic"


class FilePriority(Enum):
    """Fetch priority for a recommended file."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PRIORITY_ORDER = {FilePriority.HIGH: 0, FilePriority.MEDIUM: 1, FilePriority.LOW: 2}


class AnalysisType(Enum):
    """Depth of a context analysis."""

    COMPREHENSIVE = "comprehensive"
    FOCUSED = "focused"
    MINIMAL = "minimal"


@dataclass
class RelevantFileRecommendation:
    """A repository file recommended as review context."""

    file_path: str
    relevance_score: float
    reason: str
    category: FileCategory
    priority: FilePriority

    def __post_init__(self) -> None:
        self.relevance_score = clamp(float(self.relevance_score), 0.0, 1.0)


@dataclass
class ContextAnalysisResponse:
    """Outcome of deciding which files a review needs."""

    relevant_files: list[RelevantFileRecommendation]
    reasoning: str
    confidence: float
    analysis_type: AnalysisType
    estimated_review_quality: float

    def __post_init__(self) -> None:
        self.confidence = clamp(float(self.confidence), 0.0, 1.0)
        self.estimated_review_quality = clamp(float(self.estimated_review_quality), 0.0, 100.0)


@dataclass
class FetchedFile:
    """Content of a recommended file, or the reason it could not be fetched."""

    file_path: str
    content: str
    fetch_success: bool
    reason: str = ""
    error: str | None = None


@dataclass
class StageTimings:
    """Wall-clock milliseconds spent in each pipeline stage."""

    code_extraction: int = 0
    path_retrieval: int = 0
    ai_analysis: int = 0
    file_fetching: int = 0
    total: int = 0


@dataclass
class ContextMetrics:
    """Counts and quality signals for an acquired context."""

    total_files_in_repo: int
    files_analyzed: int
    files_recommended: int
    files_fetched: int
    fetch_success_rate: float
    context_quality_score: int
    timings: StageTimings = field(default_factory=StageTimings)

    def __post_init__(self) -> None:
        self.fetch_success_rate = clamp(self.fetch_success_rate, 0.0, 1.0)
        self.context_quality_score = int(clamp(self.context_quality_score, 0, 100))


@dataclass
class EnhancedReviewContext:
    """Everything the review generator knows about a pull request."""

    changes: RawCodeChanges
    structure: RepositoryStructure
    analysis: ContextAnalysisResponse
    fetched_files: list[FetchedFile]
    metrics: ContextMetrics

    @property
    def successful_files(self) -> list[FetchedFile]:
        """Fetched files that have content."""
        return [f for f in self.fetched_files if f.fetch_success]
