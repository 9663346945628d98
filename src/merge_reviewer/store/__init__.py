"""Review result and custom rule persistence."""

from merge_reviewer.store.base import ReviewStore
from merge_reviewer.store.memory import InMemoryReviewStore
from merge_reviewer.store.sqlite import SQLiteReviewStore

__all__ = ["InMemoryReviewStore", "ReviewStore", "SQLiteReviewStore"]
