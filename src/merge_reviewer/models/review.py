"""Rule, AI review and persisted result models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from merge_reviewer.models.context import clamp


class RuleSeverity(Enum):
    """Severity of a rule, with its weight in compliance scoring."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def weight(self) -> int:
        """Weight used by the rule compliance score."""
        return _SEVERITY_WEIGHTS[self]


_SEVERITY_WEIGHTS = {
    RuleSeverity.LOW: 1,
    RuleSeverity.MEDIUM: 3,
    RuleSeverity.HIGH: 7,
    RuleSeverity.CRITICAL: 15,
}


@dataclass
class CustomRule:
    """A user-configured rule stored per installation."""

    id: str
    installation_id: int
    name: str
    description: str
    pattern: str
    severity: RuleSeverity = RuleSeverity.MEDIUM
    active: bool = True
    exclude_patterns: list[str] = field(default_factory=list)


@dataclass
class RuleResult:
    """Outcome of one rule against a pull request."""

    rule_id: str
    rule_name: str
    severity: RuleSeverity
    description: str
    details: str = ""
    affected_files: list[str] = field(default_factory=list)


@dataclass
class RuleEvaluation:
    """All rule outcomes plus the aggregate compliance score."""

    passed: list[RuleResult] = field(default_factory=list)
    violated: list[RuleResult] = field(default_factory=list)
    score: float = 100.0

    def __post_init__(self) -> None:
        self.score = clamp(self.score, 0.0, 100.0)

    @property
    def total(self) -> int:
        """Number of rules evaluated."""
        return len(self.passed) + len(self.violated)


@dataclass
class QualityMetrics:
    """Six AI-assessed quality sub-scores, each in [0, 100]."""

    code_style: float = 50.0
    test_coverage: float = 50.0
    documentation: float = 50.0
    security: float = 50.0
    performance: float = 50.0
    maintainability: float = 50.0

    def __post_init__(self) -> None:
        for name in (
            "code_style",
            "test_coverage",
            "documentation",
            "security",
            "performance",
            "maintainability",
        ):
            setattr(self, name, clamp(float(getattr(self, name)), 0.0, 100.0))


class SuggestionType(Enum):
    """Kind of change a suggestion proposes."""

    IMPROVEMENT = "improvement"
    FIX = "fix"
    OPTIMIZATION = "optimization"
    STYLE = "style"


class SuggestionSeverity(Enum):
    """How strongly a suggestion should be acted on."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class Suggestion:
    """A single review suggestion."""

    file: str
    description: str
    type: SuggestionType = SuggestionType.IMPROVEMENT
    severity: SuggestionSeverity = SuggestionSeverity.MEDIUM
    reasoning: str = ""
    line: int | None = None
    suggested_code: str | None = None


SYSTEM_FILE = "system"


@dataclass
class AIReview:
    """Structured review produced by the AI completion service."""

    merge_score: float
    quality: QualityMetrics
    suggestions: list[Suggestion]
    summary: str
    confidence: float

    def __post_init__(self) -> None:
        self.merge_score = clamp(float(self.merge_score), 0.0, 100.0)
        self.confidence = clamp(float(self.confidence), 0.0, 1.0)


@dataclass
class ComplexityMetrics:
    """Complexity estimates for a change."""

    cyclomatic: float | None = None
    cognitive: float | None = None
    maintainability_index: float | None = None


@dataclass
class TestCoverageMetrics:
    """Coverage estimate for a change."""

    covered_lines: int = 0
    total_lines: int = 0

    @property
    def percentage(self) -> float:
        """Covered share in percent (0 when there is no data)."""
        if self.total_lines <= 0:
            return 0.0
        return clamp(self.covered_lines / self.total_lines * 100, 0.0, 100.0)


@dataclass
class CodeIssue:
    """An issue derived from a rule violation or AI suggestion."""

    source: str  # "rule" or "ai"
    severity: str
    file: str
    message: str


@dataclass
class CodeAnalysis:
    """Inputs to the merge score beyond the rule evaluation."""

    quality: QualityMetrics
    complexity: ComplexityMetrics
    coverage: TestCoverageMetrics
    issues: list[CodeIssue] = field(default_factory=list)


class ReviewStatus(Enum):
    """Lifecycle of a persisted review."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReviewResult:
    """Persisted outcome of one analysis, unique per (installation, repo, PR)."""

    installation_id: int
    repository_name: str
    pr_number: int
    status: ReviewStatus = ReviewStatus.PENDING
    merge_score: int = 0
    rules_violated: list[RuleResult] = field(default_factory=list)
    rules_passed: list[RuleResult] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)
    summary: str = ""
    confidence: float = 0.0
    recommendation: str = ""
    processing_time_ms: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.merge_score = int(clamp(self.merge_score, 0, 100))
        self.confidence = clamp(self.confidence, 0.0, 1.0)

    @property
    def key(self) -> tuple[int, str, int]:
        """Natural key used for upserts."""
        return (self.installation_id, self.repository_name, self.pr_number)
