"""Tests for AI-driven context selection and model output parsing."""

import json

import pytest

from conftest import SAMPLE_CONTEXT_ANALYSIS, FakeCompletionClient


def raw_changes(filenames=("src/index.js",)):
    from merge_reviewer.context.languages import detect_language
    from merge_reviewer.models.context import ChangeTotals, FileChange, RawCodeChanges

    files = [
        FileChange(
            filename=name,
            status="modified",
            additions=4,
            deletions=1,
            patch="+const x = 1;",
            language=detect_language(name),
        )
        for name in filenames
    ]
    return RawCodeChanges(
        installation_id=42,
        repository_name="acme/web",
        pr_number=3,
        title="Tweak index",
        author="dev",
        totals=ChangeTotals(additions=4 * len(files), deletions=len(files), files=len(files)),
        file_changes=files,
        raw_diff="",
    )


def structure(paths):
    from merge_reviewer.context.structure import build_structure

    return build_structure(list(paths))


class TestJsonExtraction:
    """Tests for extract_json_document."""

    def test_plain_json(self):
        from merge_reviewer.ai.parsing import extract_json_document

        assert extract_json_document('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        from merge_reviewer.ai.parsing import extract_json_document

        text = 'Here you go:\n```json\n{"a": 2}\n```\nThanks'

        assert extract_json_document(text) == {"a": 2}

    def test_embedded_braces(self):
        from merge_reviewer.ai.parsing import extract_json_document

        assert extract_json_document('Result: {"a": 3} -- done') == {"a": 3}

    def test_line_scan(self):
        from merge_reviewer.ai.parsing import extract_json_document

        text = 'Sure.\n{"a": 4}\nNote: {not json}'

        assert extract_json_document(text) == {"a": 4}

    def test_no_json_raises(self):
        from merge_reviewer.ai.parsing import extract_json_document
        from merge_reviewer.errors import ResponseParseError

        with pytest.raises(ResponseParseError):
            extract_json_document("I cannot help with that.")

    def test_coercion_helpers(self):
        from merge_reviewer.ai.parsing import clamp_number, coerce_enum, coerce_int
        from merge_reviewer.models.context import FilePriority

        assert clamp_number("0.7", 0, 1, 0.5) == 0.7
        assert clamp_number(float("nan"), 0, 1, 0.5) == 0.5
        assert clamp_number(True, 0, 1, 0.5) == 0.5
        assert clamp_number(7, 0, 1, 0.5) == 1.0
        assert coerce_enum("HIGH", FilePriority, FilePriority.LOW) is FilePriority.HIGH
        assert coerce_enum("urgent", FilePriority, FilePriority.LOW) is FilePriority.LOW
        assert coerce_int("12") == 12
        assert coerce_int(0) is None


class TestParseContextResponse:
    """Tests for coercing context analyses."""

    def test_sorted_and_truncated(self):
        from merge_reviewer.ai.context_analyzer import parse_context_response

        document = {
            "relevantFiles": [
                {"filePath": "low.py", "relevanceScore": 0.2},
                {"filePath": "high.py", "relevanceScore": 0.9},
                {"filePath": "mid.py", "relevanceScore": 0.5},
            ],
            "confidence": 2,
        }

        response = parse_context_response(json.dumps(document), max_files=2)

        assert [r.file_path for r in response.relevant_files] == ["high.py", "mid.py"]
        assert response.confidence == 1.0
        assert response.analysis_type.value == "focused"

    def test_invalid_entries_are_dropped_or_defaulted(self):
        from merge_reviewer.ai.context_analyzer import parse_context_response
        from merge_reviewer.models.context import FileCategory, FilePriority

        document = {
            "relevant_files": [
                "not-an-object",
                {"file_path": ""},
                {"file_path": "a.py", "category": "magic", "priority": "urgent", "relevance_score": "x"},
            ]
        }

        response = parse_context_response(json.dumps(document))

        assert len(response.relevant_files) == 1
        rec = response.relevant_files[0]
        assert rec.category is FileCategory.RELATED_LOGIC
        assert rec.priority is FilePriority.MEDIUM
        assert rec.relevance_score == 0.5
        assert response.confidence == 0.5
        assert response.estimated_review_quality == 50


class TestHeuristicResponse:
    """Tests for the heuristic fallback."""

    def test_package_json_recommendation(self):
        """package.json is recommended as medium-priority config at 0.7."""
        from merge_reviewer.ai.context_analyzer import heuristic_response
        from merge_reviewer.models.context import AnalysisType, FileCategory, FilePriority

        response = heuristic_response(
            raw_changes(), structure(["package.json", "src/index.js"]), "AI unavailable"
        )

        assert response.analysis_type is AnalysisType.MINIMAL
        assert response.confidence == 0.3
        assert len(response.relevant_files) == 1
        rec = response.relevant_files[0]
        assert rec.file_path == "package.json"
        assert rec.category is FileCategory.CONFIG
        assert rec.priority is FilePriority.MEDIUM
        assert rec.relevance_score == 0.7
        assert "AI unavailable" in response.reasoning

    def test_sibling_tests_and_type_files(self):
        from merge_reviewer.ai.context_analyzer import heuristic_response
        from merge_reviewer.models.context import FileCategory

        response = heuristic_response(
            raw_changes(["src/index.js"]),
            structure(["src/index.js", "src/index.test.js", "src/types/user.d.ts", "README.md"]),
            "disabled",
        )

        by_path = {r.file_path: r for r in response.relevant_files}
        assert by_path["src/index.test.js"].category is FileCategory.TEST
        assert by_path["src/types/user.d.ts"].category is FileCategory.INTERFACE
        assert by_path["README.md"].category is FileCategory.DOCUMENTATION
        assert "src/index.js" not in by_path
        assert response.relevant_files[0].file_path == "src/index.test.js"


class TestIntelligentContextAnalyzer:
    """Tests for the analyzer's AI and fallback paths."""

    def make_analyzer(self, client, **overrides):
        from merge_reviewer.ai.context_analyzer import ContextAnalyzerConfig, IntelligentContextAnalyzer

        return IntelligentContextAnalyzer(client, ContextAnalyzerConfig(**overrides))

    @pytest.mark.asyncio
    async def test_ai_recommendations_limited_to_known_paths(self):
        client = FakeCompletionClient(
            context={
                **SAMPLE_CONTEXT_ANALYSIS,
                "relevant_files": SAMPLE_CONTEXT_ANALYSIS["relevant_files"]
                + [{"file_path": "ghost.py", "relevance_score": 1.0}],
            }
        )
        analyzer = self.make_analyzer(client)

        response = await analyzer.analyze(
            raw_changes(["auth/login.py"]),
            structure(["auth/login.py", "auth/types.py", "tests/test_login.py"]),
        )

        assert [r.file_path for r in response.relevant_files] == [
            "tests/test_login.py",
            "auth/types.py",
        ]
        assert response.confidence == 0.85

    @pytest.mark.asyncio
    async def test_unusable_response_falls_back_to_heuristics(self):
        from merge_reviewer.models.context import AnalysisType

        analyzer = self.make_analyzer(FakeCompletionClient(context="no json here"))

        response = await analyzer.analyze(
            raw_changes(), structure(["package.json", "src/index.js"])
        )

        assert response.analysis_type is AnalysisType.MINIMAL
        assert [r.file_path for r in response.relevant_files] == ["package.json"]

    @pytest.mark.asyncio
    async def test_disabled_analysis_skips_the_ai(self):
        client = FakeCompletionClient()
        analyzer = self.make_analyzer(client, enabled=False)

        response = await analyzer.analyze(raw_changes(), structure(["package.json"]))

        assert client.calls == []
        assert response.confidence == 0.3

    @pytest.mark.asyncio
    async def test_empty_repository_listing_uses_heuristics(self):
        client = FakeCompletionClient()
        analyzer = self.make_analyzer(client)

        response = await analyzer.analyze(raw_changes(), structure([]))

        assert client.calls == []
        assert "no repository paths" in response.reasoning

    @pytest.mark.asyncio
    async def test_fallback_disabled_raises(self):
        from merge_reviewer.errors import ExternalServiceError

        analyzer = self.make_analyzer(
            FakeCompletionClient(context=ExternalServiceError("AI down")), fallback_on_error=False
        )

        with pytest.raises(ExternalServiceError, match="AI down"):
            await analyzer.analyze(raw_changes(), structure(["package.json", "src/index.js"]))

    @pytest.mark.asyncio
    async def test_context_limit_retries_with_reduced_context(self):
        from merge_reviewer.errors import ContextLimitError
        from merge_reviewer.ai.context_analyzer import REDUCED_CONTEXT_NOTE

        class ShrinkingClient:
            def __init__(self):
                self.prompts = []

            async def complete(self, system_prompt, user_prompt):
                self.prompts.append(user_prompt)
                if len(self.prompts) == 1:
                    raise ContextLimitError()
                return json.dumps(SAMPLE_CONTEXT_ANALYSIS)

        client = ShrinkingClient()
        paths = [f"pkg/module_{i}.py" for i in range(150)] + ["tests/test_login.py", "auth/types.py"]
        analyzer = self.make_analyzer(client)

        response = await analyzer.analyze(raw_changes(["auth/login.py"]), structure(paths))

        assert len(client.prompts) == 2
        assert "... and 52 more files" in client.prompts[1]
        assert response.reasoning.endswith(REDUCED_CONTEXT_NOTE)
        assert response.confidence == pytest.approx(0.65)

    @pytest.mark.asyncio
    async def test_open_breaker_falls_back(self):
        from merge_reviewer.models.context import AnalysisType
        from merge_reviewer.ai.context_analyzer import ContextAnalyzerConfig, IntelligentContextAnalyzer
        from merge_reviewer.resilience import CircuitBreaker, CircuitBreakerConfig

        breaker = CircuitBreaker("ai", CircuitBreakerConfig(failure_threshold=1))
        breaker._open()
        client = FakeCompletionClient()
        analyzer = IntelligentContextAnalyzer(client, ContextAnalyzerConfig(), breaker)

        response = await analyzer.analyze(raw_changes(), structure(["package.json", "src/index.js"]))

        assert client.calls == []
        assert response.analysis_type is AnalysisType.MINIMAL
