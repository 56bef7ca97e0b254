"""Reading a template commit's delta and replaying it onto a derived repository branch."""

import logging
from typing import Optional

from templatebot.domain.repository import (
    ChangedFile,
    ChangeKind,
    ChangeSet,
    DerivedRepository,
    FileSyncOutcome,
    FileSyncStatus,
    SyncReport,
    TemplateCommit,
    TemplateRepository,
)
from templatebot.infrastructure.github_client import GitHubClient, NotFoundError, decode_content

logger = logging.getLogger(__name__)


class DiffResolver:
    """Resolves the latest template commit and the files it changed."""

    def __init__(self, github_client: GitHubClient):
        self.github_client = github_client

    def latest_commit(self, template: TemplateRepository) -> TemplateCommit:
        commits = self.github_client.list_commits(
            template.owner, template.name, sha=template.default_branch, per_page=1
        )
        if not commits:
            raise LookupError(f"Template {template.full_name} has no commits")
        latest = commits[0]
        return TemplateCommit(sha=latest["sha"], message=latest["commit"]["message"])

    def resolve(self, template: TemplateRepository, commit_sha: str) -> ChangeSet:
        commit = self.github_client.get_commit(template.owner, template.name, commit_sha)
        files = tuple(
            ChangedFile(
                path=f["filename"],
                kind=ChangeKind.from_status(f.get("status", "modified")),
                previous_path=f.get("previous_filename"),
            )
            for f in commit.get("files") or []
        )
        return ChangeSet(commit_sha=commit_sha, files=files)


class FileSynchronizer:
    """Writes added/modified template files to an update branch, one file at a time."""

    def __init__(self, github_client: GitHubClient):
        self.github_client = github_client

    def _template_content(self, template: TemplateRepository, path: str, ref: str) -> bytes:
        data = self.github_client.get_content(template.owner, template.name, path, ref=ref)
        if data.get("encoding") == "none" and data.get("sha"):
            # Files over 1MB come back without inline content
            data = self.github_client.get_blob(template.owner, template.name, data["sha"])
        return decode_content(data)

    def _existing_sha(self, target: DerivedRepository, path: str, base_branch: str) -> Optional[str]:
        try:
            existing = self.github_client.get_content(target.owner, target.name, path, ref=base_branch)
        except NotFoundError:
            return None
        if isinstance(existing, list):
            raise IsADirectoryError(f"{path} is a directory in {target.full_name}")
        return existing.get("sha")

    @staticmethod
    def _commit_message(changed: ChangedFile, sha: Optional[str]) -> str:
        if sha:
            return f"Update {changed.path} from template"
        if changed.previous_path:
            # The old path is left in place; removals are not propagated
            return f"Add {changed.path} (renamed from {changed.previous_path}) from template"
        return f"Add {changed.path} from template"

    def sync(
        self,
        template: TemplateRepository,
        changes: ChangeSet,
        target: DerivedRepository,
        branch: str,
        base_branch: str,
    ) -> SyncReport:
        """
        Apply a change set to ``branch`` of ``target``.

        Removed files are skipped, never deleted. The blob SHA used as the
        update token is read from ``base_branch``, which ``branch`` was cut from.
        A failure on one file is recorded and the next file is attempted.

        Returns:
            Report with one outcome per changed file
        """
        report = SyncReport()

        for changed in changes.files:
            if changed.kind is ChangeKind.REMOVED:
                logger.debug(f"Skipping removed file {changed.path}")
                report.add(FileSyncOutcome(changed.path, FileSyncStatus.SKIPPED))
                continue

            try:
                content = self._template_content(template, changed.path, changes.commit_sha)
                sha = self._existing_sha(target, changed.path, base_branch)
                message = self._commit_message(changed, sha)
                self.github_client.create_or_update_file(
                    target.owner,
                    target.name,
                    changed.path,
                    content,
                    message=message,
                    branch=branch,
                    sha=sha,
                )
                status = FileSyncStatus.UPDATED if sha else FileSyncStatus.CREATED
                report.add(FileSyncOutcome(changed.path, status))
            except Exception as e:
                logger.error(f"Error applying changes for file {changed.path} in {target.full_name}: {e}")
                report.add(FileSyncOutcome(changed.path, FileSyncStatus.FAILED, error=str(e)))

        return report
