"""Rule evaluation."""

from merge_reviewer.rules.engine import (
    DEFAULT_RULES,
    PatternRuleEngine,
    RuleEngine,
    empty_evaluation,
    validate_custom_rule,
)

__all__ = [
    "DEFAULT_RULES",
    "PatternRuleEngine",
    "RuleEngine",
    "empty_evaluation",
    "validate_custom_rule",
]
