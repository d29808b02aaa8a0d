"""Wires store, queue, identity client and workers from one LeaderboardConfig."""

from __future__ import annotations

from dataclasses import dataclass

from leaderboard.adapters.database import Database
from leaderboard.adapters.job_queue import SqlJobQueue
from leaderboard.adapters.leaderboard_store import LeaderboardStore
from leaderboard.config import LeaderboardConfig
from leaderboard.services.commit_worker import CommitWorker
from leaderboard.services.dispatcher import Dispatcher
from leaderboard.services.github_client import GitHubClient
from leaderboard.services.identity_cache import IdentityCache
from leaderboard.services.identity_resolver import IdentityResolver
from leaderboard.services.rate_limit import RateLimitGuard
from leaderboard.services.repository_service import RepositoryService
from leaderboard.services.user_worker import UserWorker
from leaderboard.services.working_copy import GitWorkingCopyProvider


@dataclass
class Pipeline:
    config: LeaderboardConfig
    database: Database
    store: LeaderboardStore
    queue: SqlJobQueue
    dispatcher: Dispatcher
    service: RepositoryService
    guard: RateLimitGuard
    client: GitHubClient
    resolver: IdentityResolver
    provider: GitWorkingCopyProvider

    def commit_worker(self) -> CommitWorker:
        return CommitWorker(self.store, self.dispatcher, self.provider, self.client, self.config)

    def user_worker(self) -> UserWorker:
        return UserWorker(self.store, self.resolver, self.config)

    def create_schema(self) -> None:
        self.database.create_schema()


def build_pipeline(config: LeaderboardConfig | None = None) -> Pipeline:
    config = config or LeaderboardConfig.from_env()
    database = Database(config.database_url)
    store = LeaderboardStore(database)
    queue = SqlJobQueue(database)
    dispatcher = Dispatcher(queue, config)
    guard = RateLimitGuard(config.rate_limit_min_remaining, config.rate_limit_max_wait_seconds)
    client = GitHubClient(
        token=config.github_token,
        base_url=config.api_base_url,
        timeout=config.api_timeout_seconds,
        guard=guard,
        profile_base_url=config.profile_base_url,
    )
    return Pipeline(
        config=config,
        database=database,
        store=store,
        queue=queue,
        dispatcher=dispatcher,
        service=RepositoryService(store, dispatcher, config),
        guard=guard,
        client=client,
        resolver=IdentityResolver(store, client, IdentityCache(), config),
        provider=GitWorkingCopyProvider(config.repos_dir, timeout_seconds=config.git_timeout_seconds),
    )
