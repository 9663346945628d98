"""Data models for Merge Reviewer."""

from merge_reviewer.models.context import (
    AnalysisType,
    ChangeTotals,
    ContextAnalysisResponse,
    ContextMetrics,
    EnhancedReviewContext,
    FetchedFile,
    FileCategory,
    FileChange,
    FilePriority,
    RawCodeChanges,
    RelevantFileRecommendation,
    RepositoryStructure,
    StageTimings,
)
from merge_reviewer.models.pull_request import (
    ChangedFile,
    FileStatus,
    LinkedIssue,
    LinkType,
    PullRequestData,
    ineligibility_reason,
    is_eligible,
)
from merge_reviewer.models.review import (
    AIReview,
    CodeAnalysis,
    CodeIssue,
    ComplexityMetrics,
    CustomRule,
    QualityMetrics,
    ReviewResult,
    ReviewStatus,
    RuleEvaluation,
    RuleResult,
    RuleSeverity,
    Suggestion,
    SuggestionSeverity,
    SuggestionType,
    TestCoverageMetrics,
)

__all__ = [
    "AIReview",
    "AnalysisType",
    "ChangedFile",
    "ChangeTotals",
    "CodeAnalysis",
    "CodeIssue",
    "ComplexityMetrics",
    "ContextAnalysisResponse",
    "ContextMetrics",
    "CustomRule",
    "EnhancedReviewContext",
    "FetchedFile",
    "FileCategory",
    "FileChange",
    "FilePriority",
    "FileStatus",
    "LinkedIssue",
    "LinkType",
    "PullRequestData",
    "QualityMetrics",
    "RawCodeChanges",
    "RelevantFileRecommendation",
    "RepositoryStructure",
    "ReviewResult",
    "ReviewStatus",
    "RuleEvaluation",
    "RuleResult",
    "RuleSeverity",
    "StageTimings",
    "Suggestion",
    "SuggestionSeverity",
    "SuggestionType",
    "TestCoverageMetrics",
    "ineligibility_reason",
    "is_eligible",
]
