"""Identity phase: resolve one batch of author emails and link them to the repository atomically."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Optional

from leaderboard.adapters.leaderboard_store import LeaderboardStore
from leaderboard.config import LeaderboardConfig
from leaderboard.errors import IdentityLookupFailed
from leaderboard.models.job import Job
from leaderboard.models.repository import CommitDataEntry, RepositoryState
from leaderboard.services.identity_resolver import IdentityResolver

logger = logging.getLogger(__name__)


@dataclass
class _Outcome:
    email: str
    contributor_id: Optional[int] = None
    failed: bool = False
    exhausted: bool = False
    rate_limited: bool = False
    skipped: bool = False


class UserWorker:
    def __init__(
        self,
        store: LeaderboardStore,
        resolver: IdentityResolver,
        config: LeaderboardConfig | None = None,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.config = config or LeaderboardConfig()

    def _resolve_one(self, entry: CommitDataEntry, token: str | None, stop: threading.Event) -> _Outcome:
        email = entry.author_email
        if stop.is_set():
            return _Outcome(email, skipped=True)
        try:
            resolution = self.resolver.resolve(email, token)
        except IdentityLookupFailed as exc:
            if entry.attempts + 1 >= self.config.max_identity_attempts:
                logger.warning("giving up on %s after %d attempts: %s", email, entry.attempts + 1, exc.reason)
                return _Outcome(email, contributor_id=self.resolver.fallback(email).id, exhausted=True)
            logger.info("lookup failed for %s: %s", email, exc.reason)
            return _Outcome(email, failed=True)
        if resolution.rate_limited:
            stop.set()
            return _Outcome(email, rate_limited=True)
        return _Outcome(email, contributor_id=resolution.contributor.id)

    def _resolve_all(self, entries: list[CommitDataEntry], token: str | None) -> list[_Outcome]:
        stop = threading.Event()
        workers = max(1, int(self.config.identity_concurrency))
        if workers == 1:
            outcomes = []
            for entry in entries:
                outcome = self._resolve_one(entry, token, stop)
                outcomes.append(outcome)
                if outcome.rate_limited:
                    break
            return outcomes
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="identity") as pool:
            return list(pool.map(lambda entry: self._resolve_one(entry, token, stop), entries))

    def handle(self, job: Job) -> dict[str, Any]:
        repository_id = int(job.payload.get("repository_id") or 0)
        emails = [str(e) for e in job.payload.get("emails") or []]
        token = job.payload.get("token") or self.config.github_token

        repository = self.store.get_repository(repository_id)
        if repository is None:
            return {"skipped": "repository_missing"}
        if repository.state != RepositoryState.USERS_PROCESSING:
            logger.info("identity job %s: repository %s is %s, skipping", job.id, repository.url, repository.state.value)
            return {"skipped": repository.state.value}

        entries = self.store.load_commit_data(repository_id, emails)
        outcomes = self._resolve_all(entries, token)

        resolved = {o.email: o.contributor_id for o in outcomes if o.contributor_id is not None}
        failed = [o.email for o in outcomes if o.failed]
        rate_limited = any(o.rate_limited for o in outcomes)
        remaining = self.store.link_batch(repository_id, resolved, failed)
        completed = remaining == 0 and self.store.complete_if_resolved(repository_id)

        logger.info(
            "identity job %s: repository %s linked %d/%d emails, %d failed, %d still unprocessed%s",
            job.id,
            repository.url,
            len(resolved),
            len(entries),
            len(failed),
            remaining,
            " (rate limited)" if rate_limited else "",
        )
        result = {
            "linked": len(resolved),
            "failed": len(failed),
            "exhausted": sum(1 for o in outcomes if o.exhausted),
            "remaining": remaining,
            "rate_limited": rate_limited,
            "completed": bool(completed),
        }
        if failed:
            # Successes are already committed; the job is retried for the rest.
            raise IdentityLookupFailed(f"{len(failed)} identity lookup(s) failed in batch")
        if rate_limited:
            reset_at = self.resolver.client.guard.reset_at()
            result["reset_at"] = reset_at.isoformat() if reset_at else None
        return result
