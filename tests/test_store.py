"""Tests for the review stores."""

import pytest


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Each store backend, freshly created."""
    from merge_reviewer.store import InMemoryReviewStore, SQLiteReviewStore

    if request.param == "memory":
        yield InMemoryReviewStore()
        return
    sqlite_store = SQLiteReviewStore(tmp_path / "reviews.db")
    yield sqlite_store
    sqlite_store.close()


def make_result(**overrides):
    from merge_reviewer.models.review import ReviewResult

    values = {"installation_id": 42, "repository_name": "acme/api", "pr_number": 7}
    values.update(overrides)
    return ReviewResult(**values)


class TestReviewStore:
    """Behaviour shared by every store backend."""

    @pytest.mark.asyncio
    async def test_upsert_and_get(self, store):
        from merge_reviewer.models.review import (
            ReviewStatus,
            RuleResult,
            RuleSeverity,
            Suggestion,
            SuggestionSeverity,
            SuggestionType,
        )

        result = make_result(
            status=ReviewStatus.COMPLETED,
            merge_score=88,
            rules_violated=[
                RuleResult(
                    rule_id="no-todo-comments",
                    rule_name="No TODO comments",
                    severity=RuleSeverity.LOW,
                    description="Resolve TODOs",
                    affected_files=["a.py"],
                )
            ],
            suggestions=[
                Suggestion(
                    file="a.py",
                    description="Extract helper",
                    type=SuggestionType.STYLE,
                    severity=SuggestionSeverity.LOW,
                    line=3,
                )
            ],
            summary="Good",
            confidence=0.75,
            recommendation="ready",
        )

        await store.upsert_review(result)
        loaded = await store.get_review(42, "acme/api", 7)

        assert loaded.status is ReviewStatus.COMPLETED
        assert loaded.merge_score == 88
        assert loaded.rules_violated[0].affected_files == ["a.py"]
        assert loaded.rules_violated[0].severity is RuleSeverity.LOW
        assert loaded.suggestions[0].type is SuggestionType.STYLE
        assert loaded.suggestions[0].line == 3
        assert loaded.confidence == 0.75

    @pytest.mark.asyncio
    async def test_upsert_keeps_one_record_per_pr(self, store):
        from merge_reviewer.models.review import ReviewStatus

        first = await store.upsert_review(make_result(status=ReviewStatus.IN_PROGRESS))
        await store.upsert_review(make_result(status=ReviewStatus.FAILED, summary="boom"))

        loaded = await store.get_review(42, "acme/api", 7)
        assert loaded.status is ReviewStatus.FAILED
        assert loaded.summary == "boom"
        assert loaded.created_at == first.created_at
        assert await store.get_review(42, "acme/api", 8) is None

    @pytest.mark.asyncio
    async def test_custom_rules(self, store):
        from merge_reviewer.models.review import CustomRule, RuleSeverity

        await store.save_rule(
            CustomRule(
                id="b-rule",
                installation_id=42,
                name="B",
                description="",
                pattern="b",
                severity=RuleSeverity.HIGH,
                exclude_patterns=["docs/*"],
            )
        )
        await store.save_rule(
            CustomRule(id="a-rule", installation_id=42, name="A", description="", pattern="a")
        )
        await store.save_rule(
            CustomRule(
                id="off", installation_id=42, name="Off", description="", pattern="x", active=False
            )
        )
        await store.save_rule(
            CustomRule(id="other", installation_id=9, name="Other", description="", pattern="y")
        )

        rules = sorted(await store.list_active_rules(42), key=lambda r: r.id)

        assert [r.id for r in rules] == ["a-rule", "b-rule"]
        assert rules[1].severity is RuleSeverity.HIGH
        assert rules[1].exclude_patterns == ["docs/*"]

        assert await store.delete_rule("a-rule") is True
        assert await store.delete_rule("a-rule") is False
        assert [r.id for r in await store.list_active_rules(42)] == ["b-rule"]


class TestSQLiteReviewStore:
    """SQLite-specific behaviour."""

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path):
        from merge_reviewer.models.review import ReviewStatus
        from merge_reviewer.store import SQLiteReviewStore

        path = tmp_path / "nested" / "reviews.db"
        store = SQLiteReviewStore(path)
        await store.upsert_review(make_result(status=ReviewStatus.COMPLETED, merge_score=91))
        store.close()

        reopened = SQLiteReviewStore(path)
        loaded = await reopened.get_review(42, "acme/api", 7)
        reopened.close()

        assert loaded.merge_score == 91

    @pytest.mark.asyncio
    async def test_closed_connection_raises_persistence_error(self, tmp_path):
        import sqlite3

        from merge_reviewer.errors import PersistenceError
        from merge_reviewer.store import SQLiteReviewStore

        store = SQLiteReviewStore(tmp_path / "reviews.db")
        store.close()

        with pytest.raises(PersistenceError) as exc_info:
            await store.get_review(42, "acme/api", 7)

        assert isinstance(exc_info.value.__cause__, sqlite3.Error)
