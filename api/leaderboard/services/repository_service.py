"""Submission, status and leaderboard reads for repositories."""

from __future__ import annotations

import logging
import re
from datetime import timedelta
from typing import Optional
from urllib.parse import urlsplit

from leaderboard.adapters.database import utc_now
from leaderboard.adapters.leaderboard_store import LeaderboardStore
from leaderboard.config import LeaderboardConfig
from leaderboard.errors import (
    InvalidRepositoryUrl,
    InvalidStateTransition,
    LeaderboardNotReady,
    RepositoryNotFound,
)
from leaderboard.models.contributor import Leaderboard
from leaderboard.models.repository import Repository, RepositoryState, RepositoryStatus, SubmitResult
from leaderboard.services.dispatcher import Dispatcher

logger = logging.getLogger(__name__)

_SCP_STYLE = re.compile(r"^[\w.-]+@([^:/]+):(.+)$")
_UNSAFE_PATH_CHARS = re.compile(r"[^a-z0-9._-]+")


def normalize_repo_url(url: str) -> str:
    """Canonical form: https, no credentials, no ``.git`` suffix or trailing slash, lower-case."""
    raw = (url or "").strip()
    scp = _SCP_STYLE.match(raw)
    if scp:
        host, path = scp.group(1), scp.group(2)
    else:
        parts = urlsplit(raw)
        if parts.scheme not in {"http", "https", "ssh", "git"} or not parts.hostname:
            raise InvalidRepositoryUrl(f"not a repository URL: {raw!r}")
        host = parts.hostname
        if parts.port and parts.scheme in {"http", "https"}:
            host = f"{host}:{parts.port}"
        path = parts.path
    path = path.strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    path = path.rstrip("/")
    if not path:
        raise InvalidRepositoryUrl(f"repository path missing: {raw!r}")
    return f"https://{host}/{path}".lower()


def is_valid_repo_url(url: str, host: str = "github.com") -> bool:
    """``owner/repo`` on ``host`` over HTTPS or SSH, optionally with ``.git`` and a trailing slash."""
    pattern = rf"^(https://|git@){re.escape(host)}[:/][\w.-]+/[\w.-]+?(\.git)?/?$"
    return re.match(pattern, (url or "").strip(), re.I) is not None


def derive_path_name(url: str) -> str:
    """Working-copy directory name for a normalized URL (``owner__repo``)."""
    parts = urlsplit(url)
    segments = [_UNSAFE_PATH_CHARS.sub("-", s.lower()) for s in parts.path.split("/") if s]
    if (parts.hostname or "").lower() != "github.com":
        segments.insert(0, _UNSAFE_PATH_CHARS.sub("-", (parts.hostname or "local").lower()))
    name = "__".join(s.strip("-.") or "_" for s in segments)
    if not name:
        raise InvalidRepositoryUrl(f"cannot derive a path name from {url!r}")
    return name


def _status(repository: Repository, pending: Optional[int] = None) -> RepositoryStatus:
    return RepositoryStatus(
        url=repository.url,
        state=repository.state,
        total_commits=repository.total_commits,
        unique_contributors=repository.unique_contributors,
        pending_contributors=pending,
        failure_kind=repository.failure_kind,
        failure_reason=repository.failure_reason,
        last_processed_at=repository.last_processed_at,
    )


class RepositoryService:
    def __init__(
        self,
        store: LeaderboardStore,
        dispatcher: Dispatcher,
        config: LeaderboardConfig | None = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.config = config or LeaderboardConfig()
        self._host = urlsplit(self.config.profile_base_url).hostname or "github.com"

    def _lookup(self, url: str) -> Repository:
        try:
            normalized = normalize_repo_url(url)
        except InvalidRepositoryUrl as exc:
            raise RepositoryNotFound(str(exc)) from exc
        repository = self.store.get_repository_by_url(normalized)
        if repository is None:
            raise RepositoryNotFound(f"repository not found: {normalized}")
        return repository

    def _is_stale(self, repository: Repository, max_age_hours: float) -> bool:
        if repository.last_processed_at is None:
            return True
        return utc_now() - repository.last_processed_at > timedelta(hours=max_age_hours)

    def _reset_to_pending(self, repository: Repository) -> Repository:
        try:
            return self.store.transition(repository.id, RepositoryState.PENDING)
        except InvalidStateTransition:
            # A concurrent submission already moved it.
            return self.store.get_repository(repository.id) or repository

    def submit(
        self,
        url: str,
        token: str | None = None,
        max_age_hours: float | None = None,
    ) -> SubmitResult:
        """Create or reuse the repository and enqueue a commit job if none is outstanding.

        Failed repositories are re-driven. Completed ones are re-run only when
        ``max_age_hours`` is given and the last run is older than that.
        """
        if not is_valid_repo_url(url, self._host):
            raise InvalidRepositoryUrl(f"not a valid {self._host} repository URL")
        normalized = normalize_repo_url(url)
        repository, created = self.store.get_or_create_repository(normalized, derive_path_name(normalized))
        if created:
            logger.info("new repository %s", normalized)

        if repository.state == RepositoryState.FAILED:
            repository = self._reset_to_pending(repository)
        elif repository.state == RepositoryState.COMPLETED:
            if max_age_hours is None or not self._is_stale(repository, max_age_hours):
                return SubmitResult(url=repository.url, state=repository.state, enqueued=False)
            repository = self._reset_to_pending(repository)

        if repository.state != RepositoryState.PENDING:
            return SubmitResult(url=repository.url, state=repository.state, enqueued=False)
        _job, enqueued = self.dispatcher.enqueue_commit_job(repository, token)
        return SubmitResult(url=repository.url, state=repository.state, enqueued=enqueued)

    def get_state(self, url: str) -> RepositoryStatus:
        repository = self._lookup(url)
        pending = None
        if repository.state == RepositoryState.USERS_PROCESSING:
            pending = self.store.count_unprocessed(repository.id)
        return _status(repository, pending)

    def get_leaderboard(self, url: str, limit: int | None = None) -> Leaderboard:
        repository = self._lookup(url)
        if repository.state != RepositoryState.COMPLETED:
            raise LeaderboardNotReady(repository.state.value)
        return Leaderboard(
            repository=repository.url,
            total_commits=repository.total_commits,
            top_contributors=self.store.leaderboard(repository.id, limit=limit),
        )

    def list_repositories(
        self, *, state: RepositoryState | None = None, limit: int = 100, offset: int = 0
    ) -> list[RepositoryStatus]:
        return [_status(r) for r in self.store.list_repositories(state=state, limit=limit, offset=offset)]
