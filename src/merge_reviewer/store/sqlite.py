"""SQLite-backed review store."""

import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from merge_reviewer.errors import PersistenceError
from merge_reviewer.models.review import (
    CustomRule,
    ReviewResult,
    ReviewStatus,
    RuleResult,
    RuleSeverity,
    Suggestion,
    SuggestionSeverity,
    SuggestionType,
    utcnow,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS reviews (
    installation_id    INTEGER NOT NULL,
    repository_name    TEXT NOT NULL,
    pr_number          INTEGER NOT NULL,
    status             TEXT NOT NULL,
    merge_score        INTEGER NOT NULL DEFAULT 0,
    rules_violated     TEXT NOT NULL DEFAULT '[]',
    rules_passed       TEXT NOT NULL DEFAULT '[]',
    suggestions        TEXT NOT NULL DEFAULT '[]',
    summary            TEXT NOT NULL DEFAULT '',
    confidence         REAL NOT NULL DEFAULT 0,
    recommendation     TEXT NOT NULL DEFAULT '',
    processing_time_ms INTEGER NOT NULL DEFAULT 0,
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL,
    UNIQUE (installation_id, repository_name, pr_number)
);

CREATE TABLE IF NOT EXISTS custom_rules (
    id               TEXT PRIMARY KEY,
    installation_id  INTEGER NOT NULL,
    name             TEXT NOT NULL,
    description      TEXT NOT NULL DEFAULT '',
    pattern          TEXT NOT NULL,
    severity         TEXT NOT NULL,
    active           INTEGER NOT NULL DEFAULT 1,
    exclude_patterns TEXT NOT NULL DEFAULT '[]'
);

CREATE INDEX IF NOT EXISTS idx_custom_rules_installation
    ON custom_rules (installation_id, active);
"""

_UPSERT_REVIEW = """
INSERT INTO reviews (
    installation_id, repository_name, pr_number, status, merge_score,
    rules_violated, rules_passed, suggestions, summary, confidence,
    recommendation, processing_time_ms, created_at, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (installation_id, repository_name, pr_number) DO UPDATE SET
    status = excluded.status,
    merge_score = excluded.merge_score,
    rules_violated = excluded.rules_violated,
    rules_passed = excluded.rules_passed,
    suggestions = excluded.suggestions,
    summary = excluded.summary,
    confidence = excluded.confidence,
    recommendation = excluded.recommendation,
    processing_time_ms = excluded.processing_time_ms,
    updated_at = excluded.updated_at
"""

_UPSERT_RULE = """
INSERT INTO custom_rules (
    id, installation_id, name, description, pattern, severity, active, exclude_patterns
) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (id) DO UPDATE SET
    installation_id = excluded.installation_id,
    name = excluded.name,
    description = excluded.description,
    pattern = excluded.pattern,
    severity = excluded.severity,
    active = excluded.active,
    exclude_patterns = excluded.exclude_patterns
"""


def _rule_result_to_dict(result: RuleResult) -> dict:
    return {
        "rule_id": result.rule_id,
        "rule_name": result.rule_name,
        "severity": result.severity.value,
        "description": result.description,
        "details": result.details,
        "affected_files": list(result.affected_files),
    }


def _rule_result_from_dict(data: dict) -> RuleResult:
    return RuleResult(
        rule_id=data["rule_id"],
        rule_name=data.get("rule_name", ""),
        severity=RuleSeverity(data.get("severity", "MEDIUM")),
        description=data.get("description", ""),
        details=data.get("details", ""),
        affected_files=list(data.get("affected_files", [])),
    )


def _suggestion_to_dict(suggestion: Suggestion) -> dict:
    return {
        "file": suggestion.file,
        "description": suggestion.description,
        "type": suggestion.type.value,
        "severity": suggestion.severity.value,
        "reasoning": suggestion.reasoning,
        "line": suggestion.line,
        "suggested_code": suggestion.suggested_code,
    }


def _suggestion_from_dict(data: dict) -> Suggestion:
    return Suggestion(
        file=data.get("file", ""),
        description=data.get("description", ""),
        type=SuggestionType(data.get("type", "improvement")),
        severity=SuggestionSeverity(data.get("severity", "medium")),
        reasoning=data.get("reasoning", ""),
        line=data.get("line"),
        suggested_code=data.get("suggested_code"),
    )


class SQLiteReviewStore:
    """Review store persisted to a local SQLite database.

    Blocking sqlite3 calls run in a worker thread so the event loop
    stays responsive. A single connection is shared under a lock.
    """

    def __init__(self, db_path: str | Path = "merge_reviewer.db") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to open review store at {self.db_path}: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    async def _run(self, description: str, fn, *args):
        try:
            return await asyncio.to_thread(self._locked, fn, *args)
        except sqlite3.Error as e:
            logger.error(f"Review store failed to {description}: {e}")
            raise PersistenceError(f"Failed to {description}: {e}") from e

    def _locked(self, fn, *args):
        with self._lock:
            return fn(*args)

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    async def upsert_review(self, result: ReviewResult) -> ReviewResult:
        return await self._run("upsert review", self._upsert_review, result)

    def _upsert_review(self, result: ReviewResult) -> ReviewResult:
        now = utcnow()
        self._conn.execute(
            _UPSERT_REVIEW,
            (
                result.installation_id,
                result.repository_name,
                result.pr_number,
                result.status.value,
                result.merge_score,
                json.dumps([_rule_result_to_dict(r) for r in result.rules_violated]),
                json.dumps([_rule_result_to_dict(r) for r in result.rules_passed]),
                json.dumps([_suggestion_to_dict(s) for s in result.suggestions]),
                result.summary,
                result.confidence,
                result.recommendation,
                result.processing_time_ms,
                result.created_at.isoformat(),
                now.isoformat(),
            ),
        )
        self._conn.commit()
        return self._get_review(*result.key)

    async def get_review(
        self, installation_id: int, repository_name: str, pr_number: int
    ) -> ReviewResult | None:
        return await self._run(
            "load review", self._get_review, installation_id, repository_name, pr_number
        )

    def _get_review(
        self, installation_id: int, repository_name: str, pr_number: int
    ) -> ReviewResult | None:
        row = self._conn.execute(
            "SELECT * FROM reviews WHERE installation_id = ? AND repository_name = ? AND pr_number = ?",
            (installation_id, repository_name, pr_number),
        ).fetchone()
        return self._row_to_review(row) if row else None

    # ------------------------------------------------------------------
    # Custom rules
    # ------------------------------------------------------------------

    async def list_active_rules(self, installation_id: int) -> list[CustomRule]:
        return await self._run("list rules", self._list_active_rules, installation_id)

    def _list_active_rules(self, installation_id: int) -> list[CustomRule]:
        rows = self._conn.execute(
            "SELECT * FROM custom_rules WHERE installation_id = ? AND active = 1 ORDER BY id",
            (installation_id,),
        ).fetchall()
        return [self._row_to_rule(row) for row in rows]

    async def save_rule(self, rule: CustomRule) -> CustomRule:
        return await self._run("save rule", self._save_rule, rule)

    def _save_rule(self, rule: CustomRule) -> CustomRule:
        self._conn.execute(
            _UPSERT_RULE,
            (
                rule.id,
                rule.installation_id,
                rule.name,
                rule.description,
                rule.pattern,
                rule.severity.value,
                1 if rule.active else 0,
                json.dumps(list(rule.exclude_patterns)),
            ),
        )
        self._conn.commit()
        return rule

    async def delete_rule(self, rule_id: str) -> bool:
        return await self._run("delete rule", self._delete_rule, rule_id)

    def _delete_rule(self, rule_id: str) -> bool:
        cursor = self._conn.execute("DELETE FROM custom_rules WHERE id = ?", (rule_id,))
        self._conn.commit()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_review(row: sqlite3.Row) -> ReviewResult:
        return ReviewResult(
            installation_id=row["installation_id"],
            repository_name=row["repository_name"],
            pr_number=row["pr_number"],
            status=ReviewStatus(row["status"]),
            merge_score=row["merge_score"],
            rules_violated=[_rule_result_from_dict(d) for d in json.loads(row["rules_violated"])],
            rules_passed=[_rule_result_from_dict(d) for d in json.loads(row["rules_passed"])],
            suggestions=[_suggestion_from_dict(d) for d in json.loads(row["suggestions"])],
            summary=row["summary"],
            confidence=row["confidence"],
            recommendation=row["recommendation"],
            processing_time_ms=row["processing_time_ms"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> CustomRule:
        return CustomRule(
            id=row["id"],
            installation_id=row["installation_id"],
            name=row["name"],
            description=row["description"],
            pattern=row["pattern"],
            severity=RuleSeverity(row["severity"]),
            active=bool(row["active"]),
            exclude_patterns=json.loads(row["exclude_patterns"]),
        )
