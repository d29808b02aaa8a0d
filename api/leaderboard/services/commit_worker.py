"""Commit phase: acquire a working copy, validate it, extract per-email counts, fan out identity work."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from leaderboard.adapters.database import utc_now
from leaderboard.adapters.leaderboard_store import LeaderboardStore
from leaderboard.config import LeaderboardConfig
from leaderboard.errors import CommitLimitExceeded, PipelineError, SizeLimitExceeded
from leaderboard.models.job import Job
from leaderboard.models.repository import Repository, RepositoryState
from leaderboard.services.commit_extractor import count_commits, extract_commit_counts
from leaderboard.services.dispatcher import Dispatcher
from leaderboard.services.github_client import GitHubClient
from leaderboard.services.working_copy import GitWorkingCopyProvider

logger = logging.getLogger(__name__)

_RUNNABLE_STATES = frozenset(
    {RepositoryState.PENDING, RepositoryState.FAILED, RepositoryState.COMMITS_PROCESSING}
)


class CommitWorker:
    def __init__(
        self,
        store: LeaderboardStore,
        dispatcher: Dispatcher,
        provider: GitWorkingCopyProvider,
        client: Optional[GitHubClient] = None,
        config: LeaderboardConfig | None = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.provider = provider
        self.client = client
        self.config = config or LeaderboardConfig()

    def handle(self, job: Job) -> dict[str, Any]:
        repository = self.store.get_repository(int(job.payload.get("repository_id") or 0))
        if repository is None:
            logger.warning("commit job %s: repository %s no longer exists", job.id, job.payload.get("repository_id"))
            return {"skipped": "repository_missing"}
        if repository.state not in _RUNNABLE_STATES:
            # Redelivered after the repository already moved on.
            logger.info("commit job %s: repository %s is %s, skipping", job.id, repository.url, repository.state.value)
            return {"skipped": repository.state.value}

        token = job.payload.get("token") or self.config.github_token
        repository = self.store.transition(
            repository.id, RepositoryState.COMMITS_PROCESSING, last_attempt=utc_now()
        )
        try:
            self._check_remote_size(repository, token)
            path = self.provider.acquire(repository.url, repository.path_name, token)
            self._validate(path)
            counts = extract_commit_counts(path, timeout=self.config.git_timeout_seconds)
        except PipelineError as exc:
            self.store.transition(
                repository.id,
                RepositoryState.FAILED,
                failure_kind=exc.kind,
                failure_reason=exc.reason,
            )
            logger.warning("repository %s failed (%s): %s", repository.url, exc.kind, exc.reason)
            return {"state": RepositoryState.FAILED.value, "failure_kind": exc.kind}

        repository = self.store.record_extraction(repository.id, counts)
        emails = [item.email for item in counts]
        if emails:
            self.dispatcher.enqueue_identity_batches(repository, emails, token)
        else:
            self.store.complete_if_resolved(repository.id)
        logger.info(
            "repository %s: %d commits by %d authors",
            repository.url,
            repository.total_commits or 0,
            repository.unique_contributors or 0,
        )
        return {
            "state": RepositoryState.USERS_PROCESSING.value if emails else RepositoryState.COMPLETED.value,
            "total_commits": repository.total_commits,
            "unique_contributors": repository.unique_contributors,
        }

    def _check_remote_size(self, repository: Repository, token: str | None) -> None:
        limit = self.config.max_repo_size_kb
        if not (self.config.remote_size_check and self.client is not None and limit > 0):
            return
        size_kb = self.client.repository_size_kb(repository.url, token=token)
        if size_kb is not None and size_kb > limit:
            # A copy left by an earlier run is dropped as well.
            self.provider.remove(self.provider.path_for(repository.path_name))
            raise SizeLimitExceeded(f"repository size {size_kb} KB exceeds the {limit} KB limit")

    def _validate(self, path: Path) -> None:
        size_limit = self.config.max_repo_size_kb
        if size_limit > 0:
            size_kb = self.provider.disk_usage_kb(path)
            if size_kb > size_limit:
                self.provider.remove(path)
                raise SizeLimitExceeded(f"repository size {size_kb} KB exceeds the {size_limit} KB limit")
        commit_limit = self.config.max_commit_count
        if commit_limit > 0:
            commits = count_commits(path, timeout=self.config.git_timeout_seconds)
            if commits > commit_limit:
                self.provider.remove(path)
                raise CommitLimitExceeded(f"repository has {commits} commits, above the {commit_limit} limit")
