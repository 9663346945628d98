"""Extraction of raw code changes from a pull request."""

import logging
from collections import Counter

from merge_reviewer.context.languages import detect_language
from merge_reviewer.errors import ValidationError
from merge_reviewer.models.context import ChangeTotals, FileChange, RawCodeChanges
from merge_reviewer.models.pull_request import ChangedFile, FileStatus, PullRequestData
from merge_reviewer.source_control import SourceControl

logger = logging.getLogger(__name__)

# Platform status spellings mapped onto FileStatus
STATUS_ALIASES = {
    "added": FileStatus.ADDED,
    "modified": FileStatus.MODIFIED,
    "changed": FileStatus.MODIFIED,
    "removed": FileStatus.REMOVED,
    "deleted": FileStatus.REMOVED,
    "renamed": FileStatus.RENAMED,
}


def normalize_status(status: str, filename: str = "") -> FileStatus:
    """Map a platform status onto FileStatus, defaulting to modified."""
    normalized = STATUS_ALIASES.get((status or "").lower())
    if normalized is None:
        logger.warning(f"Unknown file status '{status}' for {filename}, treating as modified")
        return FileStatus.MODIFIED
    return normalized


class RawChangesExtractor:
    """Builds RawCodeChanges from a pull request snapshot."""

    def __init__(self, source_control: SourceControl | None = None) -> None:
        """Initialize the extractor.

        Args:
            source_control: Used to fetch changed files when the snapshot has none
        """
        self.source_control = source_control

    async def extract(self, pr: PullRequestData) -> RawCodeChanges:
        """Combine per-file changes with pull request metadata.

        Args:
            pr: Pull request snapshot

        Returns:
            RawCodeChanges for this run

        Raises:
            ValidationError: If a changed file is malformed
        """
        files = list(pr.changed_files)
        if not files and self.source_control is not None:
            logger.debug(f"Fetching changed files for {pr.repository_name}#{pr.pr_number}")
            files = await self.source_control.get_pull_request_files(
                pr.installation_id, pr.repository_name, pr.pr_number
            )

        file_changes = [self._to_file_change(f) for f in files]
        totals = ChangeTotals(
            additions=sum(c.additions for c in file_changes),
            deletions=sum(c.deletions for c in file_changes),
            files=len(file_changes),
        )
        changes = RawCodeChanges(
            installation_id=pr.installation_id,
            repository_name=pr.repository_name,
            pr_number=pr.pr_number,
            title=pr.title,
            author=pr.author,
            totals=totals,
            file_changes=file_changes,
            raw_diff=build_raw_diff(file_changes),
        )
        check_consistency(changes)

        logger.info(
            f"Extracted {totals.files} changed files (+{totals.additions}/-{totals.deletions}) "
            f"from {pr.repository_name}#{pr.pr_number}"
        )
        return changes

    def _to_file_change(self, changed: ChangedFile) -> FileChange:
        if not changed.filename:
            raise ValidationError("Changed file without a filename")
        if changed.additions < 0 or changed.deletions < 0:
            raise ValidationError(f"Negative line counts for {changed.filename}")

        status = normalize_status(changed.status, changed.filename)
        return FileChange(
            filename=changed.filename,
            status=status.value,
            additions=changed.additions,
            deletions=changed.deletions,
            patch=changed.patch or "",
            language=detect_language(changed.filename),
            previous_filename=changed.previous_filename,
        )


def build_raw_diff(file_changes: list[FileChange]) -> str:
    """Concatenate per-file patches into one diff."""
    return "\n\n".join(
        f"diff --git a/{c.filename} b/{c.filename}\n{c.patch}"
        for c in file_changes
        if c.patch
    )


def check_consistency(changes: RawCodeChanges) -> list[str]:
    """Log (without failing) any mismatch between totals and per-file counts.

    Returns:
        Mismatch descriptions
    """
    mismatches = []
    if changes.totals.files != len(changes.file_changes):
        mismatches.append(
            f"file count {changes.totals.files} != {len(changes.file_changes)} file changes"
        )
    additions = sum(c.additions for c in changes.file_changes)
    if additions != changes.totals.additions:
        mismatches.append(f"additions {changes.totals.additions} != per-file sum {additions}")
    deletions = sum(c.deletions for c in changes.file_changes)
    if deletions != changes.totals.deletions:
        mismatches.append(f"deletions {changes.totals.deletions} != per-file sum {deletions}")
    for mismatch in mismatches:
        logger.warning(f"Inconsistent change counts for PR #{changes.pr_number}: {mismatch}")
    return mismatches


def summarize_changes(changes: RawCodeChanges) -> str:
    """One-line human-readable summary of a change set."""
    statuses = Counter(c.status for c in changes.file_changes)
    languages = Counter(c.language for c in changes.file_changes)
    status_text = ", ".join(f"{count} {status}" for status, count in sorted(statuses.items()))
    top_languages = ", ".join(lang for lang, _ in languages.most_common(3))
    return (
        f"{changes.totals.files} files changed ({status_text}); "
        f"+{changes.totals.additions}/-{changes.totals.deletions}; "
        f"languages: {top_languages or 'none'}"
    )
