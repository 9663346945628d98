"""Pytest configuration and shared fixtures."""

import json
from pathlib import Path

import pytest

from merge_reviewer.models.pull_request import ChangedFile, LinkedIssue, LinkType, PullRequestData

SAMPLE_PATCH = """\
@@ -10,6 +10,12 @@ def authenticate(username: str, password: str) -> bool:
     hashed = hash_password(password)
     return db.verify_user(username, hashed)
+
+def get_user(user_id: int) -> dict:
+    \"\"\"Fetch user by ID using parameterized query.\"\"\"
+    query = "SELECT * FROM users WHERE id = %s"
+    return db.execute(query, (user_id,))
"""

SAMPLE_REPOSITORY_FILES = [
    "README.md",
    "package.json",
    "auth/login.py",
    "auth/types.py",
    "tests/test_login.py",
    "utils/processor.py",
]

SAMPLE_AI_REVIEW = {
    "merge_score": 82,
    "quality_metrics": {
        "code_style": 80,
        "test_coverage": 70,
        "documentation": 75,
        "security": 90,
        "performance": 85,
        "maintainability": 80,
    },
    "suggestions": [
        {
            "file": "auth/login.py",
            "line_number": 14,
            "type": "improvement",
            "severity": "low",
            "description": "Return a typed user object instead of a dict",
            "reasoning": "Callers rely on specific keys",
        }
    ],
    "summary": "Clean change that adds a parameterized user lookup.",
    "confidence": 0.8,
}

SAMPLE_CONTEXT_ANALYSIS = {
    "relevant_files": [
        {
            "file_path": "tests/test_login.py",
            "relevance_score": 0.9,
            "reason": "Tests for the login module",
            "category": "test",
            "priority": "high",
        },
        {
            "file_path": "auth/types.py",
            "relevance_score": 0.6,
            "reason": "Shared auth types",
            "category": "interface",
            "priority": "medium",
        },
    ],
    "reasoning": "The change touches authentication helpers and their tests.",
    "confidence": 0.85,
    "analysis_type": "focused",
    "estimated_review_quality": 80,
}


class FakeSourceControl:
    """In-memory source-control collaborator recording posted comments."""

    def __init__(
        self,
        files: dict[str, str] | None = None,
        changed_files: list[ChangedFile] | None = None,
        pull_request: PullRequestData | None = None,
    ) -> None:
        self.files = dict(files if files is not None else {p: f"# {p}\n" for p in SAMPLE_REPOSITORY_FILES})
        self.changed_files = list(changed_files or [])
        self.pull_request = pull_request
        self.review_comments: list[str] = []
        self.error_comments: list[str] = []
        self.fail_review_comment = False

    async def get_pull_request(self, installation_id, repository_name, pr_number):
        return self.pull_request

    async def get_pull_request_files(self, installation_id, repository_name, pr_number):
        return list(self.changed_files)

    async def list_repository_files(self, installation_id, repository_name, ref=None):
        return list(self.files)

    async def get_file_content(self, installation_id, repository_name, path, ref=None):
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    async def post_review_comment(self, installation_id, repository_name, pr_number, body):
        if self.fail_review_comment:
            raise ConnectionError("comment API down")
        self.review_comments.append(body)

    async def post_error_comment(self, installation_id, repository_name, pr_number, message):
        self.error_comments.append(message)


class FakeCompletionClient:
    """Completion client answering context and review prompts from canned responses."""

    def __init__(self, review=None, context=None) -> None:
        self.review = SAMPLE_AI_REVIEW if review is None else review
        self.context = SAMPLE_CONTEXT_ANALYSIS if context is None else context
        self.calls: list[str] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append(user_prompt)
        answer = self.context if "context analyst" in system_prompt else self.review
        if isinstance(answer, Exception):
            raise answer
        return answer if isinstance(answer, str) else json.dumps(answer)


def make_pr(**overrides) -> PullRequestData:
    """Build an eligible pull request snapshot."""
    values = {
        "installation_id": 42,
        "repository_name": "test-org/test-repo",
        "pr_number": 7,
        "title": "Add user lookup",
        "author": "testuser",
        "body": "Closes #12",
        "pr_url": "https://github.com/test-org/test-repo/pull/7",
        "linked_issues": [
            LinkedIssue(
                number=12,
                url="https://github.com/test-org/test-repo/issues/12",
                link_type=LinkType.CLOSES,
            )
        ],
        "changed_files": [
            ChangedFile(
                filename="auth/login.py",
                status="modified",
                additions=5,
                deletions=0,
                patch=SAMPLE_PATCH,
            )
        ],
    }
    values.update(overrides)
    return PullRequestData(**values)


@pytest.fixture
def sample_pr() -> PullRequestData:
    """An eligible pull request with one modified Python file."""
    return make_pr()


@pytest.fixture
def draft_pr() -> PullRequestData:
    """A draft pull request."""
    return make_pr(is_draft=True)


@pytest.fixture
def unlinked_pr() -> PullRequestData:
    """A pull request that links no issues."""
    return make_pr(body="Just a refactor", linked_issues=[])


@pytest.fixture
def source_control(sample_pr) -> FakeSourceControl:
    """Fake source control serving the sample repository."""
    return FakeSourceControl(changed_files=list(sample_pr.changed_files), pull_request=sample_pr)


@pytest.fixture
def completion_client() -> FakeCompletionClient:
    """Fake completion client returning well-formed JSON."""
    return FakeCompletionClient()


@pytest.fixture
def config_file(tmp_path) -> Path:
    """A minimal valid config file."""
    path = tmp_path / "config.yaml"
    path.write_text(
        """\
ai:
  api_key: test-key
github:
  token: ghp_test
  webhook_secret: s3cret
jobs:
  pr_analysis:
    max_concurrent: 2
store:
  backend: memory
"""
    )
    return path
