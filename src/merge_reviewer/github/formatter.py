"""Markdown formatting for pull request review comments."""

from merge_reviewer.models.review import (
    SYSTEM_FILE,
    ReviewResult,
    Suggestion,
    SuggestionSeverity,
    SuggestionType,
)
from merge_reviewer.scoring.merge_score import ScoreBreakdown, merge_recommendation

SEVERITY_EMOJI = {
    SuggestionSeverity.HIGH: "🔴",
    SuggestionSeverity.MEDIUM: "🟡",
    SuggestionSeverity.LOW: "🔵",
}

TYPE_EMOJI = {
    SuggestionType.FIX: "🐛",
    SuggestionType.IMPROVEMENT: "✨",
    SuggestionType.OPTIMIZATION: "⚡",
    SuggestionType.STYLE: "🎨",
}

COMPONENT_LABELS = {
    "rule_compliance": "Rule compliance",
    "code_quality": "Code quality",
    "test_coverage": "Test coverage",
    "complexity": "Complexity",
    "documentation": "Documentation",
}

BAR_WIDTH = 20


def score_emoji(score: int) -> str:
    if score >= 85:
        return "🟢"
    if score >= 70:
        return "🟡"
    if score >= 50:
        return "🟠"
    return "🔴"


def score_bar(score: int, width: int = BAR_WIDTH) -> str:
    """Text progress bar for a 0-100 score."""
    filled = round(max(0, min(100, score)) / 100 * width)
    return f"`{'█' * filled}{'░' * (width - filled)}` {score}%"


class ReviewFormatter:
    """Formats review results as pull request comments."""

    def __init__(self, bot_name: str = "Merge Reviewer") -> None:
        self.bot_name = bot_name

    def format_review(self, result: ReviewResult, breakdown: ScoreBreakdown | None = None) -> str:
        """Format a completed review.

        Args:
            result: Persisted review result
            breakdown: Optional per-component score breakdown

        Returns:
            Markdown comment body
        """
        emoji = score_emoji(result.merge_score)
        recommendation = merge_recommendation(result.merge_score)

        lines = [
            f"## {emoji} {self.bot_name} Results",
            "",
            f"**Confidence:** {round(result.confidence * 100)}%",
            "",
            "---",
            "",
            f"### {emoji} Merge Score: {result.merge_score}/100",
            "",
            score_bar(result.merge_score),
            "",
            f"**Recommendation:** {recommendation.message}",
            "",
        ]
        if result.summary:
            lines.extend([result.summary, ""])

        if breakdown is not None:
            lines.extend(self._format_breakdown(breakdown))

        if result.rules_violated:
            lines.append(f"### 📏 Rule Violations ({len(result.rules_violated)})")
            lines.append("")
            for rule in result.rules_violated:
                files = ", ".join(f"`{f}`" for f in rule.affected_files[:5])
                more = len(rule.affected_files) - 5
                if more > 0:
                    files += f" and {more} more"
                lines.append(f"- **{rule.rule_name}** ({rule.severity.value}): {rule.description}")
                if files:
                    lines.append(f"  - {files}")
            lines.append("")

        lines.extend(self._format_suggestions(result.suggestions))
        lines.extend(
            [
                "",
                "<details>",
                "<summary>📊 Review Metadata</summary>",
                "",
                f"- **Processing Time:** {self._processing_time(result.processing_time_ms)}",
                f"- **Analysis Date:** {result.created_at.strftime('%Y-%m-%d %H:%M UTC')}",
                f"- **Rules Passed:** {len(result.rules_passed)}",
                "",
                "</details>",
                "",
                f"*Generated by {self.bot_name}*",
            ]
        )
        return "\n".join(lines)

    def format_error(self, message: str) -> str:
        """Format a minimal error comment."""
        return "\n".join(
            [
                f"## ❌ {self.bot_name} Failed",
                "",
                "The review system encountered an error while analyzing this pull request:",
                "",
                "```",
                message,
                "```",
                "",
                "### What to do next",
                "",
                "1. **Manual Review:** Please proceed with manual code review",
                "2. **Retry:** Push a new commit to trigger another analysis if the issue was temporary",
                "",
                f"*Generated by {self.bot_name}*",
            ]
        )

    def _format_breakdown(self, breakdown: ScoreBreakdown) -> list[str]:
        lines = [
            "| Component | Score | Weight | Contribution |",
            "|-----------|-------|--------|--------------|",
        ]
        for name, component in breakdown.components().items():
            lines.append(
                f"| {COMPONENT_LABELS[name]} | {component.score} | "
                f"{component.weight:.0%} | {component.contribution} |"
            )
        lines.append("")
        return lines

    def _format_suggestions(self, suggestions: list[Suggestion]) -> list[str]:
        if not suggestions:
            return ["### 💡 Code Suggestions", "", "✨ No specific suggestions at this time."]

        lines = [f"### 💡 Code Suggestions ({len(suggestions)})", ""]
        for severity in (SuggestionSeverity.HIGH, SuggestionSeverity.MEDIUM, SuggestionSeverity.LOW):
            group = [s for s in suggestions if s.severity is severity]
            if not group:
                continue
            lines.append(
                f"#### {SEVERITY_EMOJI[severity]} {severity.value.capitalize()} Priority ({len(group)})"
            )
            lines.append("")
            for index, suggestion in enumerate(group, 1):
                if suggestion.file and suggestion.file != SYSTEM_FILE:
                    location = f"**{suggestion.file}**"
                    if suggestion.line:
                        location += f" (Line {suggestion.line})"
                else:
                    location = "**General**"
                lines.append(f"{index}. {location}")
                lines.append(f"   {TYPE_EMOJI[suggestion.type]} {suggestion.description}")
                if suggestion.reasoning:
                    lines.append(f"   💭 **Reasoning:** {suggestion.reasoning}")
                if suggestion.suggested_code:
                    lines.extend(["", "   ```", suggestion.suggested_code, "   ```"])
                lines.append("")
        return lines

    @staticmethod
    def _processing_time(ms: int) -> str:
        return f"{round(ms / 1000)}s" if ms else "N/A"
