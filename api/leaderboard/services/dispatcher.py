"""Fan-out of pipeline work onto the two queues, with per-repository de-duplication."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from leaderboard.adapters.job_queue import SqlJobQueue
from leaderboard.adapters.leaderboard_store import LeaderboardStore
from leaderboard.config import LeaderboardConfig
from leaderboard.models.job import Job, QueueName
from leaderboard.models.repository import Repository, RepositoryState

logger = logging.getLogger(__name__)


def commit_job_key(repository_id: int) -> str:
    return f"commits:{repository_id}"


def identity_job_prefix(repository_id: int) -> str:
    return f"users:{repository_id}:"


def identity_job_key(repository_id: int, emails: list[str]) -> str:
    digest = hashlib.sha1("\n".join(sorted(emails)).encode("utf-8")).hexdigest()
    return f"{identity_job_prefix(repository_id)}{digest}"


def partition(items: list[str], size: int) -> list[list[str]]:
    size = max(1, int(size))
    return [items[i : i + size] for i in range(0, len(items), size)]


@dataclass
class RedriveReport:
    commit_jobs: list[int] = field(default_factory=list)
    identity_jobs: list[int] = field(default_factory=list)
    skipped: int = 0


class Dispatcher:
    def __init__(self, queue: SqlJobQueue, config: LeaderboardConfig | None = None) -> None:
        self.queue = queue
        self.config = config or LeaderboardConfig()

    def enqueue_commit_job(self, repository: Repository, token: str | None = None) -> tuple[Job, bool]:
        """At most one outstanding commit job per repository; repeats return the existing job."""
        payload = {"repository_id": repository.id, "url": repository.url}
        if token:
            payload["token"] = token
        return self.queue.enqueue(
            QueueName.COMMITS,
            commit_job_key(repository.id),
            payload,
            max_attempts=1,
        )

    def enqueue_identity_batches(
        self,
        repository: Repository,
        emails: list[str],
        token: str | None = None,
        *,
        available_at: datetime | None = None,
    ) -> list[Job]:
        """Split ``emails`` into fixed-size batches and enqueue one job per batch.

        Batches are keyed by content, so re-driving the same emails does not
        create overlapping jobs.
        """
        created: list[Job] = []
        batches = partition(sorted(emails), self.config.identity_batch_size)
        for batch in batches:
            payload = {"repository_id": repository.id, "emails": batch}
            if token:
                payload["token"] = token
            job, is_new = self.queue.enqueue(
                QueueName.USERS,
                identity_job_key(repository.id, batch),
                payload,
                max_attempts=self.config.identity_job_max_attempts,
                available_at=available_at,
            )
            if is_new:
                created.append(job)
        logger.info(
            "repository %s: %d identity batch(es), %d new", repository.url, len(batches), len(created)
        )
        return created

    def redrive(
        self,
        store: LeaderboardStore,
        *,
        not_before: Optional[datetime] = None,
        limit: int = 1000,
    ) -> RedriveReport:
        """Re-enqueue work for repositories that have none outstanding.

        Pending repositories (and commits_processing ones whose job died) get a
        commit job. Repositories in users_processing get identity batches for
        their unprocessed emails, scheduled no earlier than ``not_before``.
        Tokens are not persisted, so re-driven jobs use the worker's own.
        """
        report = RedriveReport()
        for state in (RepositoryState.PENDING, RepositoryState.COMMITS_PROCESSING):
            for repository in store.list_repositories(state=state, limit=limit):
                if self.queue.has_outstanding(commit_job_key(repository.id)):
                    report.skipped += 1
                    continue
                job, created = self.enqueue_commit_job(repository)
                if created:
                    report.commit_jobs.append(job.id)

        for repository in store.list_repositories(state=RepositoryState.USERS_PROCESSING, limit=limit):
            if self.queue.has_outstanding(prefix=identity_job_prefix(repository.id)):
                report.skipped += 1
                continue
            emails = store.unprocessed_emails(repository.id)
            if not emails:
                # Every email is linked; only the final transition is missing.
                store.complete_if_resolved(repository.id)
                continue
            jobs = self.enqueue_identity_batches(repository, emails, available_at=not_before)
            report.identity_jobs.extend(job.id for job in jobs)

        logger.info(
            "redrive: %d commit job(s), %d identity job(s), %d repositories already queued",
            len(report.commit_jobs),
            len(report.identity_jobs),
            report.skipped,
        )
        return report
