"""Persistence contract for review results and custom rules."""

from typing import Protocol

from merge_reviewer.models.review import CustomRule, ReviewResult


class ReviewStore(Protocol):
    """Upsert-by-natural-key store for review results plus custom rule CRUD."""

    async def upsert_review(self, result: ReviewResult) -> ReviewResult: ...

    async def get_review(
        self, installation_id: int, repository_name: str, pr_number: int
    ) -> ReviewResult | None: ...

    async def list_active_rules(self, installation_id: int) -> list[CustomRule]: ...

    async def save_rule(self, rule: CustomRule) -> CustomRule: ...

    async def delete_rule(self, rule_id: str) -> bool: ...
