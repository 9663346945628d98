"""Linked issue references in pull request descriptions."""

import logging
import re

from merge_reviewer.models.pull_request import LinkedIssue, LinkType

logger = logging.getLogger(__name__)

_KEYWORD = r"(closes|closed|close|resolves|resolved|resolve|fixes|fixed|fix)"

# "closes #123"
SHORT_REFERENCE = re.compile(rf"\b{_KEYWORD}:?\s+#(\d+)\b", re.IGNORECASE)

# "fixes https://github.com/owner/repo/issues/123"
URL_REFERENCE = re.compile(
    rf"\b{_KEYWORD}:?\s+https?://[^/\s]+/([\w.-]+)/([\w.-]+)/issues/(\d+)\b",
    re.IGNORECASE,
)

_LINK_TYPES = {
    "close": LinkType.CLOSES,
    "closes": LinkType.CLOSES,
    "closed": LinkType.CLOSES,
    "resolve": LinkType.RESOLVES,
    "resolves": LinkType.RESOLVES,
    "resolved": LinkType.RESOLVES,
    "fix": LinkType.FIXES,
    "fixes": LinkType.FIXES,
    "fixed": LinkType.FIXES,
}


def normalize_link_type(keyword: str) -> LinkType:
    return _LINK_TYPES[keyword.lower()]


def extract_linked_issues(
    body: str | None,
    repository_name: str,
    web_url: str = "https://github.com",
) -> list[LinkedIssue]:
    """Find issues a pull request body says it closes, resolves or fixes.

    Short references resolve against the pull request's own repository.
    The same issue referenced twice is returned once.

    Args:
        body: Pull request description
        repository_name: Repository in "owner/name" format
        web_url: Base URL used to build issue links

    Returns:
        Linked issues in order of first appearance
    """
    if not body:
        return []

    found: list[tuple[int, LinkedIssue]] = []
    seen: set[str] = set()

    def add(position: int, number: int, url: str, keyword: str) -> None:
        if url in seen:
            return
        seen.add(url)
        found.append(
            (position, LinkedIssue(number=number, url=url, link_type=normalize_link_type(keyword)))
        )

    base = web_url.rstrip("/")
    for match in SHORT_REFERENCE.finditer(body):
        number = int(match.group(2))
        add(match.start(), number, f"{base}/{repository_name}/issues/{number}", match.group(1))

    for match in URL_REFERENCE.finditer(body):
        owner, name, number = match.group(2), match.group(3), int(match.group(4))
        add(match.start(), number, f"{base}/{owner}/{name}/issues/{number}", match.group(1))

    issues = [issue for _, issue in sorted(found, key=lambda item: item[0])]
    if issues:
        logger.debug(f"Found {len(issues)} linked issues for {repository_name}")
    return issues
