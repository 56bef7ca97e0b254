"""Application service propagating template commits into derived repositories."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from templatebot.application.file_sync import DiffResolver, FileSynchronizer
from templatebot.application.template_registry import TemplateRegistry
from templatebot.domain.repository import (
    DerivedRepository,
    PropagationOutcome,
    PropagationResult,
    PullRequest,
    TemplateCommit,
    TemplateRepository,
)
from templatebot.infrastructure.github_client import GitHubClient

logger = logging.getLogger(__name__)

BOT_NAME = "TemplateBot"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PropagationService:
    """Opens one pull request per derived repository for each new template commit.

    Holds no mutable state; a single instance is shared by every event.
    """

    def __init__(
        self,
        github_client: GitHubClient,
        registry: TemplateRegistry,
        branch_prefix: str = "template-update-",
        max_workers: int = 1,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize propagation service.

        Args:
            github_client: GitHub API client
            registry: Template registry used to re-verify associations
            branch_prefix: Prefix of update branch names
            max_workers: Repositories processed concurrently by propagate_all
            clock: Source of the timestamp embedded in branch names
        """
        self.github_client = github_client
        self.registry = registry
        self.branch_prefix = branch_prefix
        self.max_workers = max_workers
        self.clock = clock
        self.diff_resolver = DiffResolver(github_client)
        self.synchronizer = FileSynchronizer(github_client)

    def branch_name(self) -> str:
        """``<prefix><YYYYMMDD>-<HHMM>`` in UTC."""
        return f"{self.branch_prefix}{self.clock().strftime('%Y%m%d-%H%M')}"

    def find_existing_propagation(self, repo: DerivedRepository, commit_sha: str) -> Optional[PullRequest]:
        """
        Idempotency lookup: an open pull request from an update branch whose body
        contains ``commit_sha``.

        Args:
            repo: Derived repository to inspect
            commit_sha: Template commit SHA (the idempotency key)

        Returns:
            The pull request already carrying the commit, or None
        """
        branches = self.github_client.list_branches(repo.owner, repo.name)
        update_branches = {b["name"] for b in branches if b["name"].startswith(self.branch_prefix)}
        if not update_branches:
            return None

        for data in self.github_client.list_pulls(repo.owner, repo.name, state="open"):
            pr = PullRequest.from_api(data)
            if pr.head in update_branches and commit_sha in pr.body:
                return pr

        logger.info(
            f"Found update branches in {repo.full_name} but none contain the latest commit {commit_sha[:7]}"
        )
        return None

    def build_pull_request_text(self, template: TemplateRepository, commit: TemplateCommit):
        title = f"Template Update: {commit.subject}"
        body = (
            f"This PR updates this repository with the latest changes from the template "
            f"repository ({template.full_name}).\n"
            f"\n"
            f"## Changes from template\n"
            f"{commit.message}\n"
            f"\n"
            f"Template commit: {commit.sha}\n"
            f"\n"
            f"---\n"
            f"_This PR was automatically generated by {BOT_NAME}_"
        )
        return title, body

    def _base_branch(self, repo: DerivedRepository) -> str:
        if repo.default_branch:
            return repo.default_branch
        return self.github_client.get_repository(repo.owner, repo.name)["default_branch"]

    def _run(self, template: TemplateRepository, repo: DerivedRepository) -> PropagationResult:
        logger.info(f"Propagating changes from {template.full_name} to {repo.full_name}")

        commit = self.diff_resolver.latest_commit(template)

        existing = self.find_existing_propagation(repo, commit.sha)
        if existing is not None:
            logger.info(
                f"Skipping update for {repo.full_name} - commit {commit.short_sha} is already in PR #{existing.number}"
            )
            return PropagationResult(repo, PropagationOutcome.ALREADY_PROCESSED, existing)

        if not self.registry.verify_association(template, repo):
            logger.info(
                f"Repository {repo.full_name} doesn't have the correct template association. Expected: {template.name}"
            )
            return PropagationResult(repo, PropagationOutcome.NOT_ASSOCIATED)

        changes = self.diff_resolver.resolve(template, commit.sha)
        if not changes.syncable():
            logger.info(f"No file changes to propagate in commit {commit.short_sha}, skipping {repo.full_name}")
            return PropagationResult(repo, PropagationOutcome.NO_CHANGES)

        base_branch = self._base_branch(repo)
        base_ref = self.github_client.get_ref(repo.owner, repo.name, f"heads/{base_branch}")
        branch = self.branch_name()
        self.github_client.create_ref(repo.owner, repo.name, f"refs/heads/{branch}", base_ref["object"]["sha"])
        logger.info(f"Created branch {branch} in {repo.full_name}")

        report = self.synchronizer.sync(template, changes, repo, branch, base_branch)
        if report.failed:
            logger.warning(
                f"{len(report.failed)} of {len(report.outcomes)} files failed to sync to {repo.full_name}: "
                f"{', '.join(o.path for o in report.failed)}"
            )
        if not report.succeeded:
            logger.error(f"No files were written to {branch} in {repo.full_name}, not opening a pull request")
            return PropagationResult(repo, PropagationOutcome.ERROR)

        title, body = self.build_pull_request_text(template, commit)
        pr = PullRequest.from_api(
            self.github_client.create_pull(repo.owner, repo.name, title=title, body=body, head=branch, base=base_branch)
        )
        logger.info(f"Created PR #{pr.number} in {repo.full_name}")
        return PropagationResult(repo, PropagationOutcome.OPENED, pr)

    def propagate_to(self, template: TemplateRepository, repo: DerivedRepository) -> PropagationResult:
        """Run the pipeline for one repository. Never raises."""
        try:
            return self._run(template, repo)
        except Exception as e:
            # Keep going for the other repositories of this fan-out
            logger.error(f"Error propagating changes to {repo.full_name}: {e}", exc_info=True)
            return PropagationResult(repo, PropagationOutcome.ERROR)

    def propagate(self, template: TemplateRepository, repo: DerivedRepository) -> Optional[PullRequest]:
        """
        Propagate the template's latest commit into ``repo``.

        Returns:
            The pull request opened, or None when skipped or failed
        """
        result = self.propagate_to(template, repo)
        if result.outcome is PropagationOutcome.OPENED:
            return result.pull_request
        return None

    def propagate_all(self, template: TemplateRepository, repos: Sequence[DerivedRepository]) -> List[PropagationResult]:
        """
        Propagate to every repository, isolating failures per repository.

        Runs sequentially unless ``max_workers`` > 1. Results follow the order of ``repos``.
        """
        if self.max_workers > 1 and len(repos) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                results = list(pool.map(lambda repo: self.propagate_to(template, repo), repos))
        else:
            results = [self.propagate_to(template, repo) for repo in repos]

        opened = sum(1 for r in results if r.outcome is PropagationOutcome.OPENED)
        failed = sum(1 for r in results if r.outcome is PropagationOutcome.ERROR)
        logger.info(
            f"Propagation of {template.full_name} completed: {opened} pull requests opened, "
            f"{failed} failed, {len(results) - opened - failed} skipped"
        )
        return results
