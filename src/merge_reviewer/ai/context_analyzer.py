"""AI-driven selection of repository files needed to review a change."""

import logging
import posixpath
from dataclasses import dataclass, field
from typing import Any

from merge_reviewer.ai.client import CompletionClient
from merge_reviewer.ai.parsing import (
    clamp_number,
    coerce_enum,
    coerce_str,
    extract_json_document,
)
from merge_reviewer.errors import (
    ContextLimitError,
    ExternalServiceError,
    ReviewEngineError,
)
from merge_reviewer.models.context import (
    AnalysisType,
    ContextAnalysisResponse,
    FileCategory,
    FilePriority,
    RawCodeChanges,
    RelevantFileRecommendation,
    RepositoryStructure,
)
from merge_reviewer.models.pull_request import PullRequestData
from merge_reviewer.resilience import CircuitBreaker, with_timeout

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a code review context analyst. Given a pull request and a repository "
    "listing, choose the existing repository files a reviewer must read to judge the "
    "change. You MUST respond with valid JSON only, no prose."
)

REDUCED_CONTEXT_NOTE = " (Analysis performed with reduced context due to size limitations)"

# Well-known files recommended by the heuristic when present at the repository root
CONFIG_FILES = (
    "package.json",
    "tsconfig.json",
    "pyproject.toml",
    "setup.py",
    "setup.cfg",
    "requirements.txt",
    "webpack.config.js",
    "vite.config.js",
    "next.config.js",
    ".env",
    "README.md",
)

TYPE_FILE_LIMIT = 3


@dataclass
class ContextAnalyzerConfig:
    """Configuration for the context analyzer."""

    enabled: bool = True
    fallback_on_error: bool = True
    max_recommended_files: int = 10
    min_confidence_threshold: float = 0.3
    analysis_timeout: float = 30.0
    max_listed_paths: int = 200
    patch_preview_chars: int = 500
    reduced_listed_paths: int = 100
    reduced_patch_chars: int = 200


@dataclass
class ContextValidation:
    """Result of validating a context analysis."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


class IntelligentContextAnalyzer:
    """Decides which repository files a review needs."""

    def __init__(
        self,
        client: CompletionClient,
        config: ContextAnalyzerConfig | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        """Initialize the analyzer.

        Args:
            client: AI completion collaborator
            config: Analyzer configuration
            breaker: Optional circuit breaker guarding the completion service
        """
        self.client = client
        self.config = config or ContextAnalyzerConfig()
        self.breaker = breaker

    async def analyze(
        self,
        changes: RawCodeChanges,
        structure: RepositoryStructure,
        pr: PullRequestData | None = None,
    ) -> ContextAnalysisResponse:
        """Recommend context files for a change.

        Falls back to the heuristic response when analysis is disabled, the
        request is incomplete, or the AI path fails and fallback is allowed.

        Args:
            changes: Raw changes of the pull request
            structure: Repository listing
            pr: Pull request snapshot, for title and linked issues

        Returns:
            Context analysis response
        """
        if not self.config.enabled:
            return heuristic_response(
                changes, structure, "intelligent context disabled", self.config.max_recommended_files
            )

        problems = validate_request(changes, structure)
        if problems:
            logger.warning(f"Context analysis request incomplete: {'; '.join(problems)}")
            return heuristic_response(
                changes, structure, "; ".join(problems), self.config.max_recommended_files
            )

        try:
            response = await self._run(
                changes, structure, pr, self.config.max_listed_paths, self.config.patch_preview_chars
            )
        except ContextLimitError as e:
            logger.warning(f"Context analysis prompt too large, retrying with reduced context: {e}")
            try:
                response = await self._run(
                    changes,
                    structure,
                    pr,
                    self.config.reduced_listed_paths,
                    self.config.reduced_patch_chars,
                )
            except Exception as retry_error:
                return self._fallback(changes, structure, retry_error)
            response.reasoning += REDUCED_CONTEXT_NOTE
            response.confidence = max(0.2, response.confidence - 0.2)
        except Exception as e:
            return self._fallback(changes, structure, e)

        validation = validate_analysis(response, self.config.min_confidence_threshold)
        for warning in validation.warnings:
            logger.warning(f"Context analysis: {warning}")
        if not validation.is_valid:
            return self._fallback(
                changes, structure, ReviewEngineError("; ".join(validation.errors))
            )

        logger.info(
            f"Context analysis recommended {len(response.relevant_files)} files "
            f"({response.analysis_type.value}, confidence {response.confidence:.2f})"
        )
        return response

    async def _run(
        self,
        changes: RawCodeChanges,
        structure: RepositoryStructure,
        pr: PullRequestData | None,
        max_paths: int,
        patch_chars: int,
    ) -> ContextAnalysisResponse:
        prompt = build_context_prompt(
            changes, structure, pr, max_paths, patch_chars, self.config.max_recommended_files
        )

        async def call() -> str:
            return await with_timeout(
                self.client.complete(SYSTEM_PROMPT, prompt),
                self.config.analysis_timeout,
                "context analysis",
            )

        text = await (self.breaker.call(call) if self.breaker else call())
        response = parse_context_response(text, self.config.max_recommended_files)

        known = set(structure.file_paths)
        kept = [r for r in response.relevant_files if r.file_path in known]
        if len(kept) != len(response.relevant_files):
            logger.debug(
                f"Dropped {len(response.relevant_files) - len(kept)} recommendations "
                "not present in the repository"
            )
        response.relevant_files = kept
        return response

    def _fallback(
        self,
        changes: RawCodeChanges,
        structure: RepositoryStructure,
        error: BaseException,
    ) -> ContextAnalysisResponse:
        if not self.config.fallback_on_error:
            if isinstance(error, ReviewEngineError):
                raise error
            raise ExternalServiceError(f"Context analysis failed: {error}") from error
        logger.warning(f"Context analysis failed, using heuristics: {error}")
        return heuristic_response(
            changes, structure, str(error) or type(error).__name__, self.config.max_recommended_files
        )


def validate_request(changes: RawCodeChanges, structure: RepositoryStructure) -> list[str]:
    """Check that there is something to analyse."""
    problems = []
    if not changes.file_changes:
        problems.append("no file changes")
    if not structure.file_paths:
        problems.append("no repository paths")
    return problems


def build_context_prompt(
    changes: RawCodeChanges,
    structure: RepositoryStructure,
    pr: PullRequestData | None,
    max_paths: int,
    patch_chars: int,
    max_files: int,
) -> str:
    """Build the bounded context-selection prompt."""
    sections = [f"## Pull Request\nTitle: {changes.title}"]
    if pr and pr.body:
        sections.append(f"Description:\n{pr.body[:1000]}")

    changed = "\n".join(
        f"- {c.filename} ({c.status}, +{c.additions}/-{c.deletions}, {c.language})"
        for c in changes.file_changes
    )
    sections.append(f"## Changed Files\n{changed}")

    if pr and pr.linked_issues:
        issues = "\n".join(
            f"- #{issue.number}: {issue.title or issue.url}" for issue in pr.linked_issues
        )
        sections.append(f"## Linked Issues\n{issues}")

    listed = structure.file_paths[:max_paths]
    listing = "\n".join(listed)
    remaining = len(structure.file_paths) - len(listed)
    if remaining > 0:
        listing += f"\n... and {remaining} more files"
    sections.append(f"## Repository Files ({structure.total_files} total)\n{listing}")

    languages = sorted(structure.files_by_language.items(), key=lambda kv: -len(kv[1]))
    if languages:
        breakdown = "\n".join(f"- {lang}: {len(paths)} files" for lang, paths in languages)
        sections.append(f"## Languages\n{breakdown}")

    previews = []
    for change in changes.file_changes:
        if change.patch:
            previews.append(f"### {change.filename}\n```diff\n{change.patch[:patch_chars]}\n```")
    if previews:
        sections.append("## Change Previews\n" + "\n\n".join(previews))

    sections.append(
        f"""## Response Format
Recommend at most {max_files} existing repository files (not the changed files themselves).
Respond with JSON only:
{{
  "relevant_files": [
    {{
      "file_path": "path from the repository listing",
      "relevance_score": 0.0-1.0,
      "reason": "why a reviewer needs this file",
      "category": "dependency|interface|test|config|documentation|related_logic",
      "priority": "high|medium|low"
    }}
  ],
  "reasoning": "overall selection rationale",
  "confidence": 0.0-1.0,
  "analysis_type": "comprehensive|focused|minimal",
  "estimated_review_quality": 0-100
}}"""
    )
    return "\n\n".join(sections)


def _field(item: dict[str, Any], snake: str, camel: str) -> Any:
    return item.get(snake, item.get(camel))


def parse_context_response(text: str, max_files: int = 10) -> ContextAnalysisResponse:
    """Parse and coerce a context analysis from model output.

    Args:
        text: Raw model output
        max_files: Keep at most this many recommendations, by relevance

    Returns:
        Coerced response

    Raises:
        ResponseParseError: If the output contains no JSON object
    """
    document = extract_json_document(text)

    raw_files = _field(document, "relevant_files", "relevantFiles")
    recommendations = []
    for item in raw_files if isinstance(raw_files, list) else []:
        if not isinstance(item, dict):
            continue
        path = _field(item, "file_path", "filePath")
        if not isinstance(path, str) or not path.strip():
            continue
        recommendations.append(
            RelevantFileRecommendation(
                file_path=path.strip(),
                relevance_score=clamp_number(
                    _field(item, "relevance_score", "relevanceScore"), 0.0, 1.0, 0.5
                ),
                reason=coerce_str(item.get("reason"), "No reason provided"),
                category=coerce_enum(item.get("category"), FileCategory, FileCategory.RELATED_LOGIC),
                priority=coerce_enum(item.get("priority"), FilePriority, FilePriority.MEDIUM),
            )
        )

    recommendations.sort(key=lambda r: r.relevance_score, reverse=True)

    return ContextAnalysisResponse(
        relevant_files=recommendations[:max_files],
        reasoning=coerce_str(document.get("reasoning"), "AI analysis completed"),
        confidence=clamp_number(document.get("confidence"), 0.0, 1.0, 0.5),
        analysis_type=coerce_enum(
            _field(document, "analysis_type", "analysisType"), AnalysisType, AnalysisType.FOCUSED
        ),
        estimated_review_quality=clamp_number(
            _field(document, "estimated_review_quality", "estimatedReviewQuality"), 0, 100, 50
        ),
    )


def validate_analysis(
    response: ContextAnalysisResponse, min_confidence: float = 0.3
) -> ContextValidation:
    """Structural validation of a context analysis.

    Low confidence and thin reasoning are warnings, not errors.
    """
    result = ContextValidation()
    for rec in response.relevant_files:
        if not rec.file_path:
            result.errors.append("recommendation without file path")
        if not isinstance(rec.category, FileCategory):
            result.errors.append(f"invalid category for {rec.file_path}")
        if not isinstance(rec.priority, FilePriority):
            result.errors.append(f"invalid priority for {rec.file_path}")
        if not 0.0 <= rec.relevance_score <= 1.0:
            result.errors.append(f"relevance score out of range for {rec.file_path}")
    if not 0.0 <= response.confidence <= 1.0:
        result.errors.append("confidence out of range")
    if not 0 <= response.estimated_review_quality <= 100:
        result.errors.append("estimated review quality out of range")

    if response.confidence < min_confidence:
        result.warnings.append(
            f"low confidence {response.confidence:.2f} (threshold {min_confidence})"
        )
    if len(response.reasoning) < 10:
        result.warnings.append("reasoning is very short")
    return result


def _sibling_tests(filename: str) -> list[str]:
    directory, name = posixpath.split(filename)
    base, ext = posixpath.splitext(name)
    stem = posixpath.join(directory, base)
    candidates = [
        f"{stem}.test.ts",
        f"{stem}.test.js",
        f"{stem}.spec.ts",
        f"{stem}.spec.js",
        f"tests/{filename}",
        f"__tests__/{filename}",
    ]
    if ext == ".py":
        candidates += [
            f"tests/test_{base}.py",
            posixpath.join(directory, f"test_{base}.py"),
            posixpath.join(directory, "tests", f"test_{base}.py"),
            f"{stem}_test.py",
        ]
    elif ext == ".go":
        candidates.append(f"{stem}_test.go")
    return candidates


def _is_type_file(path: str) -> bool:
    return path.endswith((".d.ts", ".pyi")) or "types" in path or "interfaces" in path


def heuristic_response(
    changes: RawCodeChanges,
    structure: RepositoryStructure,
    reason: str,
    max_files: int = 10,
) -> ContextAnalysisResponse:
    """Recommend context files without the AI service.

    Picks well-known configuration files present in the repository, sibling
    test files for each changed file, and a few type/interface files.

    Args:
        changes: Raw changes
        structure: Repository listing
        reason: Why the heuristic path was taken
        max_files: Maximum recommendations

    Returns:
        Minimal-confidence analysis response
    """
    paths = set(structure.file_paths)
    changed = {c.filename for c in changes.file_changes}
    picked: dict[str, RelevantFileRecommendation] = {}

    def add(rec: RelevantFileRecommendation) -> None:
        if rec.file_path not in picked and rec.file_path not in changed:
            picked[rec.file_path] = rec

    for name in CONFIG_FILES:
        if name in paths:
            is_doc = name.endswith(".md")
            add(
                RelevantFileRecommendation(
                    file_path=name,
                    relevance_score=0.7,
                    reason="Documentation file" if is_doc else "Project configuration file",
                    category=FileCategory.DOCUMENTATION if is_doc else FileCategory.CONFIG,
                    priority=FilePriority.MEDIUM,
                )
            )

    for change in changes.file_changes:
        for candidate in _sibling_tests(change.filename):
            if candidate in paths:
                add(
                    RelevantFileRecommendation(
                        file_path=candidate,
                        relevance_score=0.8,
                        reason=f"Tests for {change.filename}",
                        category=FileCategory.TEST,
                        priority=FilePriority.HIGH,
                    )
                )

    type_files = [p for p in structure.file_paths if _is_type_file(p) and p not in changed]
    for path in type_files[:TYPE_FILE_LIMIT]:
        add(
            RelevantFileRecommendation(
                file_path=path,
                relevance_score=0.6,
                reason="Type or interface definitions",
                category=FileCategory.INTERFACE,
                priority=FilePriority.MEDIUM,
            )
        )

    recommendations = sorted(picked.values(), key=lambda r: r.relevance_score, reverse=True)
    return ContextAnalysisResponse(
        relevant_files=recommendations[:max_files],
        reasoning=f"Used heuristic analysis due to AI service issues: {reason}",
        confidence=0.3,
        analysis_type=AnalysisType.MINIMAL,
        estimated_review_quality=40,
    )
