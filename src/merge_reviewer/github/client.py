"""GitHub source-control client."""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import jwt
import requests
from github import Github
from github.GithubException import GithubException, RateLimitExceededException
from github.PullRequest import PullRequest
from github.Repository import Repository

from merge_reviewer.errors import ExternalServiceError, RateLimitError, ValidationError
from merge_reviewer.github.formatter import ReviewFormatter
from merge_reviewer.github.issues import extract_linked_issues
from merge_reviewer.models.pull_request import ChangedFile, LinkedIssue, PullRequestData

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_API_URL = "https://api.github.com"
SERVICE = "github"


@dataclass
class GitHubConfig:
    """Configuration for the GitHub client."""

    token: str | None = None
    app_id: str | None = None
    private_key: str | None = None
    base_url: str | None = None  # For GitHub Enterprise
    web_url: str = "https://github.com"


class GitHubAppAuth:
    """Exchanges a GitHub App JWT for per-installation access tokens."""

    def __init__(self, app_id: str, private_key: str, api_url: str = DEFAULT_API_URL) -> None:
        self.app_id = app_id
        self.private_key = private_key
        self.api_url = api_url.rstrip("/")
        self._tokens: dict[int, tuple[str, float]] = {}

    def _app_jwt(self) -> str:
        now = int(time.time())
        payload = {
            "iat": now - 60,  # clock drift
            "exp": now + 600,
            "iss": self.app_id,
        }
        return jwt.encode(payload, self.private_key, algorithm="RS256")

    def installation_token(self, installation_id: int) -> str:
        """Return a cached or freshly minted installation token.

        Raises:
            ExternalServiceError: If GitHub refuses the exchange
        """
        cached = self._tokens.get(installation_id)
        if cached and cached[1] > time.time() + 60:
            return cached[0]

        headers = {
            "Authorization": f"Bearer {self._app_jwt()}",
            "Accept": "application/vnd.github+json",
        }
        try:
            response = requests.post(
                f"{self.api_url}/app/installations/{installation_id}/access_tokens",
                headers=headers,
                timeout=10,
            )
        except requests.RequestException as e:
            raise ExternalServiceError(
                f"Failed to get installation token: {e}", service=SERVICE
            ) from e

        if response.status_code != 201:
            logger.error(f"Failed to get access token: {response.status_code} {response.text}")
            raise ExternalServiceError(
                f"Authentication failed for installation {installation_id}",
                service=SERVICE,
                status_code=response.status_code,
                retryable=response.status_code >= 500,
            )

        token = response.json()["token"]
        # Installation tokens live for an hour
        self._tokens[installation_id] = (token, time.time() + 55 * 60)
        return token


def translate_github_error(error: GithubException, action: str) -> ExternalServiceError:
    """Map a PyGithub exception onto the engine's error taxonomy."""
    status = error.status
    headers = error.headers or {}
    if isinstance(error, RateLimitExceededException) or status == 429 or (
        status == 403 and "rate limit" in str(error.data).lower()
    ):
        retry_after = headers.get("retry-after") or headers.get("Retry-After")
        return RateLimitError(
            f"GitHub rate limit while trying to {action}",
            service=SERVICE,
            retry_after=float(retry_after) if retry_after else None,
        )
    if status == 401:
        return ExternalServiceError(
            f"Authentication failed while trying to {action}",
            service=SERVICE,
            status_code=status,
            retryable=False,
        )
    if status == 404:
        return ExternalServiceError(
            f"Repository not found or inaccessible while trying to {action}",
            service=SERVICE,
            status_code=status,
            retryable=False,
        )
    return ExternalServiceError(
        f"GitHub API error while trying to {action}: {status} {error.data}",
        service=SERVICE,
        status_code=status,
        retryable=status is None or status >= 500,
    )


def _changed_files(pr: PullRequest) -> list[ChangedFile]:
    return [
        ChangedFile(
            filename=f.filename,
            status=f.status,
            additions=f.additions,
            deletions=f.deletions,
            patch=f.patch or "",
            previous_filename=f.previous_filename,
        )
        for f in pr.get_files()
    ]


class GitHubSourceControl:
    """Source-control collaborator backed by PyGithub.

    PyGithub is synchronous, so each call runs in a worker thread.
    """

    def __init__(
        self,
        config: GitHubConfig,
        app_auth: GitHubAppAuth | None = None,
        formatter: ReviewFormatter | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: GitHub configuration
            app_auth: GitHub App authenticator; built from config when omitted
            formatter: Formatter for error comments

        Raises:
            ValidationError: If neither a token nor App credentials are configured
        """
        self.config = config
        if app_auth is None and config.app_id and config.private_key:
            app_auth = GitHubAppAuth(
                config.app_id, config.private_key, config.base_url or DEFAULT_API_URL
            )
        if app_auth is None and not config.token:
            raise ValidationError("GitHub token or App credentials are required")
        self.app_auth = app_auth
        self.formatter = formatter or ReviewFormatter()
        self._clients: dict[int, Github] = {}

    def _github(self, installation_id: int) -> Github:
        if self.app_auth is not None:
            token = self.app_auth.installation_token(installation_id)
        else:
            client = self._clients.get(0)
            if client is not None:
                return client
            token = self.config.token
            installation_id = 0

        if self.config.base_url:
            client = Github(token, base_url=self.config.base_url)
        else:
            client = Github(token)
        self._clients[installation_id] = client
        return client

    def _repo(self, installation_id: int, repository_name: str) -> Repository:
        return self._github(installation_id).get_repo(repository_name)

    def _pull(self, installation_id: int, repository_name: str, pr_number: int) -> PullRequest:
        return self._repo(installation_id, repository_name).get_pull(pr_number)

    async def _call(self, action: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except GithubException as e:
            error = translate_github_error(e, action)
            logger.warning(f"GitHub call failed ({action}): {error}")
            raise error from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_pull_request_files(
        self, installation_id: int, repository_name: str, pr_number: int
    ) -> list[ChangedFile]:
        """Changed files of a pull request."""
        return await self._call(
            f"list files of PR #{pr_number}",
            self._get_pull_request_files,
            installation_id,
            repository_name,
            pr_number,
        )

    def _get_pull_request_files(
        self, installation_id: int, repository_name: str, pr_number: int
    ) -> list[ChangedFile]:
        return _changed_files(self._pull(installation_id, repository_name, pr_number))

    async def list_repository_files(
        self, installation_id: int, repository_name: str, ref: str | None = None
    ) -> list[str]:
        """All blob paths in the repository tree at ``ref`` (default branch when None)."""
        return await self._call(
            f"list files of {repository_name}",
            self._list_repository_files,
            installation_id,
            repository_name,
            ref,
        )

    def _list_repository_files(
        self, installation_id: int, repository_name: str, ref: str | None
    ) -> list[str]:
        repo = self._repo(installation_id, repository_name)
        tree = repo.get_git_tree(ref or repo.default_branch, recursive=True)
        return [item.path for item in tree.tree if item.type == "blob"]

    async def get_file_content(
        self, installation_id: int, repository_name: str, path: str, ref: str | None = None
    ) -> str:
        """Decoded text content of one file."""
        return await self._call(
            f"read {path}",
            self._get_file_content,
            installation_id,
            repository_name,
            path,
            ref,
        )

    def _get_file_content(
        self, installation_id: int, repository_name: str, path: str, ref: str | None
    ) -> str:
        repo = self._repo(installation_id, repository_name)
        content = repo.get_contents(path, ref=ref) if ref else repo.get_contents(path)
        if isinstance(content, list):
            raise ValidationError(f"{path} is a directory")
        return content.decoded_content.decode("utf-8", errors="replace")

    async def get_pull_request(
        self, installation_id: int, repository_name: str, pr_number: int
    ) -> PullRequestData:
        """Full pull request snapshot, including linked issues and changed files."""
        return await self._call(
            f"load PR #{pr_number}",
            self._get_pull_request,
            installation_id,
            repository_name,
            pr_number,
        )

    def _get_pull_request(
        self, installation_id: int, repository_name: str, pr_number: int
    ) -> PullRequestData:
        repo = self._repo(installation_id, repository_name)
        pr = repo.get_pull(pr_number)
        linked = [
            self._issue_details(repo, issue)
            for issue in extract_linked_issues(pr.body, repository_name, self.config.web_url)
        ]
        return PullRequestData(
            installation_id=installation_id,
            repository_name=repository_name,
            pr_number=pr.number,
            title=pr.title,
            author=pr.user.login,
            body=pr.body or "",
            pr_url=pr.html_url,
            is_draft=bool(pr.draft),
            linked_issues=linked,
            changed_files=_changed_files(pr),
        )

    def _issue_details(self, repo: Repository, issue: LinkedIssue) -> LinkedIssue:
        if f"/{repo.full_name}/issues/" not in issue.url:
            return issue
        try:
            details = repo.get_issue(issue.number)
        except GithubException as e:
            logger.warning(f"Could not load issue #{issue.number}: {e}")
            return issue
        return LinkedIssue(
            number=issue.number,
            url=issue.url,
            link_type=issue.link_type,
            title=details.title,
            body=details.body or "",
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def post_review_comment(
        self, installation_id: int, repository_name: str, pr_number: int, body: str
    ) -> None:
        """Post a review summary as an issue comment on the pull request."""
        await self._call(
            f"comment on PR #{pr_number}",
            self._post_comment,
            installation_id,
            repository_name,
            pr_number,
            body,
        )
        logger.info(f"Posted review comment on {repository_name}#{pr_number}")

    async def post_error_comment(
        self, installation_id: int, repository_name: str, pr_number: int, message: str
    ) -> None:
        """Post a minimal error comment."""
        await self._call(
            f"post error comment on PR #{pr_number}",
            self._post_comment,
            installation_id,
            repository_name,
            pr_number,
            self.formatter.format_error(message),
        )

    def _post_comment(
        self, installation_id: int, repository_name: str, pr_number: int, body: str
    ) -> None:
        self._pull(installation_id, repository_name, pr_number).create_issue_comment(body)
