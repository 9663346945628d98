"""GitHub integration for Merge Reviewer."""

from merge_reviewer.github.client import GitHubAppAuth, GitHubConfig, GitHubSourceControl
from merge_reviewer.github.formatter import ReviewFormatter
from merge_reviewer.github.issues import extract_linked_issues
from merge_reviewer.github.webhook import ReviewTrigger, create_webhook_app, verify_signature

__all__ = [
    "GitHubAppAuth",
    "GitHubConfig",
    "GitHubSourceControl",
    "ReviewFormatter",
    "ReviewTrigger",
    "create_webhook_app",
    "extract_linked_issues",
    "verify_signature",
]
