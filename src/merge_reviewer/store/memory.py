"""In-memory review store."""

import copy
import logging

from merge_reviewer.models.review import CustomRule, ReviewResult, utcnow

logger = logging.getLogger(__name__)


class InMemoryReviewStore:
    """Process-local store keyed by (installation, repository, PR)."""

    def __init__(self) -> None:
        self._reviews: dict[tuple[int, str, int], ReviewResult] = {}
        self._rules: dict[str, CustomRule] = {}

    async def upsert_review(self, result: ReviewResult) -> ReviewResult:
        existing = self._reviews.get(result.key)
        stored = copy.deepcopy(result)
        if existing is not None:
            stored.created_at = existing.created_at
        stored.updated_at = utcnow()
        self._reviews[result.key] = stored
        logger.debug(f"Stored review {result.key} as {result.status.value}")
        return copy.deepcopy(stored)

    async def get_review(
        self, installation_id: int, repository_name: str, pr_number: int
    ) -> ReviewResult | None:
        stored = self._reviews.get((installation_id, repository_name, pr_number))
        return copy.deepcopy(stored) if stored else None

    async def list_active_rules(self, installation_id: int) -> list[CustomRule]:
        return [
            copy.deepcopy(rule)
            for rule in self._rules.values()
            if rule.installation_id == installation_id and rule.active
        ]

    async def save_rule(self, rule: CustomRule) -> CustomRule:
        self._rules[rule.id] = copy.deepcopy(rule)
        return rule

    async def delete_rule(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    def __len__(self) -> int:
        return len(self._reviews)
