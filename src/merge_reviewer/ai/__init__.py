"""AI completion client, context analysis and review generation."""

from merge_reviewer.ai.client import CompletionClient, CompletionConfig, HttpCompletionClient
from merge_reviewer.ai.context_analyzer import (
    ContextAnalyzerConfig,
    IntelligentContextAnalyzer,
    heuristic_response,
)
from merge_reviewer.ai.review_generator import (
    AIReviewGenerator,
    ReviewGeneratorConfig,
    fallback_review,
    parse_review,
)

__all__ = [
    "AIReviewGenerator",
    "CompletionClient",
    "CompletionConfig",
    "ContextAnalyzerConfig",
    "HttpCompletionClient",
    "IntelligentContextAnalyzer",
    "ReviewGeneratorConfig",
    "fallback_review",
    "heuristic_response",
    "parse_review",
]
