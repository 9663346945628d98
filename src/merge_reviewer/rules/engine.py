"""Rule evaluation against pull request changes."""

import fnmatch
import logging
import re
from dataclasses import dataclass, field
from typing import Protocol

from merge_reviewer.models.pull_request import ChangedFile, PullRequestData
from merge_reviewer.models.review import CustomRule, RuleEvaluation, RuleResult, RuleSeverity
from merge_reviewer.scoring.merge_score import rule_compliance_score

logger = logging.getLogger(__name__)

NEUTRAL_RULE_SCORE = 50.0

TEST_FILE_GLOBS = (
    "*.test.*",
    "*.spec.*",
    "test_*.py",
    "*/test_*.py",
    "*_test.py",
    "*_test.go",
    "tests/*",
    "*/tests/*",
    "__tests__/*",
    "*/__tests__/*",
)


class RuleEngine(Protocol):
    """Evaluates configured rules against a pull request."""

    async def evaluate(self, pr: PullRequestData, custom_rules: list[CustomRule]) -> RuleEvaluation: ...


@dataclass
class PatternRule:
    """A rule violated when its pattern matches an added line."""

    id: str
    name: str
    description: str
    severity: RuleSeverity
    pattern: re.Pattern
    exclude: tuple[str, ...] = field(default_factory=tuple)

    def applies_to(self, filename: str) -> bool:
        return not any(fnmatch.fnmatch(filename, glob) for glob in self.exclude)


DEFAULT_RULES = (
    PatternRule(
        id="no-console-log",
        name="No console.log statements",
        description="Remove console.log debugging output before merging",
        severity=RuleSeverity.MEDIUM,
        pattern=re.compile(r"console\.log\s*\("),
        exclude=TEST_FILE_GLOBS,
    ),
    PatternRule(
        id="no-todo-comments",
        name="No TODO comments",
        description="Resolve or track TODO comments instead of merging them",
        severity=RuleSeverity.LOW,
        pattern=re.compile(r"//\s*TODO|#\s*TODO"),
    ),
    PatternRule(
        id="no-hardcoded-secrets",
        name="No hardcoded secrets",
        description="Credentials must come from configuration, not source code",
        severity=RuleSeverity.CRITICAL,
        pattern=re.compile(
            r"""(api[_-]?key|password|secret|token)\s*[=:]\s*['"][^'"]{8,}['"]""",
            re.IGNORECASE,
        ),
    ),
)


def is_test_file(filename: str) -> bool:
    return any(fnmatch.fnmatch(filename, glob) for glob in TEST_FILE_GLOBS)


def added_lines(changed: ChangedFile) -> list[str]:
    """Lines added by a patch, without the leading '+'."""
    return [
        line[1:]
        for line in (changed.patch or "").splitlines()
        if line.startswith("+") and not line.startswith("+++")
    ]


def validate_custom_rule(rule: CustomRule) -> list[str]:
    """Return the problems that prevent a custom rule from being used."""
    problems = []
    if not rule.name.strip():
        problems.append("rule name is required")
    if not rule.pattern:
        problems.append("rule pattern is required")
    else:
        try:
            re.compile(rule.pattern)
        except re.error as e:
            problems.append(f"invalid pattern: {e}")
    if not isinstance(rule.severity, RuleSeverity):
        problems.append("invalid severity")
    return problems


def empty_evaluation() -> RuleEvaluation:
    """Neutral evaluation used when rule evaluation is unavailable."""
    return RuleEvaluation(passed=[], violated=[], score=NEUTRAL_RULE_SCORE)


class PatternRuleEngine:
    """Evaluates the built-in rules plus active custom pattern rules."""

    def __init__(
        self,
        default_rules: tuple[PatternRule, ...] = DEFAULT_RULES,
        tests_required_above: int | None = 50,
    ) -> None:
        """Initialize the engine.

        Args:
            default_rules: Built-in pattern rules
            tests_required_above: Added source lines above which a change
                must touch a test file; None disables the check
        """
        self.default_rules = default_rules
        self.tests_required_above = tests_required_above

    async def evaluate(self, pr: PullRequestData, custom_rules: list[CustomRule]) -> RuleEvaluation:
        """Evaluate all rules against the pull request's added lines.

        Args:
            pr: Pull request snapshot
            custom_rules: Custom rules for the installation

        Returns:
            RuleEvaluation with the compliance score
        """
        rules = list(self.default_rules) + self._compile_custom(custom_rules)
        passed: list[RuleResult] = []
        violated: list[RuleResult] = []

        for rule in rules:
            affected = [
                changed.filename
                for changed in pr.changed_files
                if rule.applies_to(changed.filename)
                and any(rule.pattern.search(line) for line in added_lines(changed))
            ]
            result = RuleResult(
                rule_id=rule.id,
                rule_name=rule.name,
                severity=rule.severity,
                description=rule.description,
                details=f"Matched in {len(affected)} files" if affected else "",
                affected_files=affected,
            )
            (violated if affected else passed).append(result)

        tests_result = self._check_tests(pr)
        if tests_result is not None:
            (violated if tests_result.affected_files else passed).append(tests_result)

        evaluation = RuleEvaluation(passed=passed, violated=violated)
        evaluation.score = rule_compliance_score(evaluation)
        logger.info(
            f"Rules for {pr.repository_name}#{pr.pr_number}: "
            f"{len(passed)} passed, {len(violated)} violated, score {evaluation.score:.0f}"
        )
        return evaluation

    def _compile_custom(self, custom_rules: list[CustomRule]) -> list[PatternRule]:
        compiled = []
        for rule in custom_rules:
            if not rule.active:
                continue
            problems = validate_custom_rule(rule)
            if problems:
                logger.warning(f"Skipping custom rule {rule.id}: {'; '.join(problems)}")
                continue
            compiled.append(
                PatternRule(
                    id=rule.id,
                    name=rule.name,
                    description=rule.description,
                    severity=rule.severity,
                    pattern=re.compile(rule.pattern),
                    exclude=tuple(rule.exclude_patterns),
                )
            )
        return compiled

    def _check_tests(self, pr: PullRequestData) -> RuleResult | None:
        if self.tests_required_above is None:
            return None
        source = [f for f in pr.changed_files if not is_test_file(f.filename)]
        added = sum(f.additions for f in source)
        touches_tests = any(is_test_file(f.filename) for f in pr.changed_files)
        missing = added > self.tests_required_above and not touches_tests
        return RuleResult(
            rule_id="tests-for-changes",
            rule_name="Changes include tests",
            severity=RuleSeverity.MEDIUM,
            description=f"Changes adding more than {self.tests_required_above} lines should include tests",
            details=f"{added} added source lines without test changes" if missing else "",
            affected_files=[f.filename for f in source] if missing else [],
        )
