"""Contract for the source-control collaborator."""

from typing import Protocol

from merge_reviewer.models.pull_request import ChangedFile, PullRequestData


class SourceControl(Protocol):
    """Read pull request data and repository files; write review comments."""

    async def get_pull_request(
        self, installation_id: int, repository_name: str, pr_number: int
    ) -> PullRequestData: ...

    async def get_pull_request_files(
        self, installation_id: int, repository_name: str, pr_number: int
    ) -> list[ChangedFile]: ...

    async def list_repository_files(
        self, installation_id: int, repository_name: str, ref: str | None = None
    ) -> list[str]: ...

    async def get_file_content(
        self, installation_id: int, repository_name: str, path: str, ref: str | None = None
    ) -> str: ...

    async def post_review_comment(
        self, installation_id: int, repository_name: str, pr_number: int, body: str
    ) -> None: ...

    async def post_error_comment(
        self, installation_id: int, repository_name: str, pr_number: int, message: str
    ) -> None: ...
