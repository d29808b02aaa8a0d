"""Resolve a raw commit author email to a canonical contributor.

Resolution order: synthetic no-reply address, in-process cache, persistent
store (when fresh), then the identity API. No-reply addresses never reach the
API. A rate-limited lookup returns the best local data with
``rate_limited=True`` instead of raising.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from leaderboard.adapters.database import utc_now
from leaderboard.adapters.leaderboard_store import LeaderboardStore
from leaderboard.config import LeaderboardConfig
from leaderboard.errors import IdentityLookupFailed, RateLimited
from leaderboard.models.contributor import Contributor
from leaderboard.services.github_client import GitHubClient
from leaderboard.services.identity_cache import IdentityCache

logger = logging.getLogger(__name__)

SOURCE_NOREPLY = "noreply"
SOURCE_CACHE = "cache"
SOURCE_STORE = "store"
SOURCE_API = "api"
SOURCE_FALLBACK = "fallback"


def parse_noreply_email(email: str, domain: str) -> Optional[str]:
    """Username from ``{id}+{username}@domain`` or ``{username}@domain``; None otherwise."""
    local, sep, host = (email or "").strip().lower().rpartition("@")
    if not sep or not local or host != (domain or "").strip().lower():
        return None
    if "+" in local:
        local = local.split("+", 1)[1]
    return local or None


@dataclass(frozen=True)
class Resolution:
    contributor: Contributor
    source: str
    rate_limited: bool = False


class IdentityResolver:
    def __init__(
        self,
        store: LeaderboardStore,
        client: GitHubClient,
        cache: IdentityCache | None = None,
        config: LeaderboardConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.client = client
        self.cache = cache or IdentityCache()
        self.config = config or LeaderboardConfig()
        self._sleep = sleep
        self._now = now

    def _is_fresh(self, contributor: Contributor) -> bool:
        if contributor.updated_at is None:
            return False
        age = self._now() - contributor.updated_at
        return age <= timedelta(seconds=self.config.staleness_seconds)

    def _profile_url(self, username: str) -> str:
        return f"{self.config.profile_base_url.rstrip('/')}/{username}"

    def resolve(self, email: str, token: str | None = None) -> Resolution:
        email = (email or "").strip().lower()
        username = parse_noreply_email(email, self.config.noreply_domain)
        if username:
            return self._resolve_noreply(email, username)

        cached = self.cache.get(email=email)
        if cached is not None and self._is_fresh(cached):
            return Resolution(cached, SOURCE_CACHE)

        stored = self.store.find_contributor(email=email)
        if stored is not None and self._is_fresh(stored):
            self.cache.remember(stored, email)
            return Resolution(stored, SOURCE_STORE)

        try:
            match = self._search(email, token)
        except RateLimited:
            logger.warning("rate limited while resolving %s", email)
            best = stored or Contributor(email=email)
            return Resolution(best, SOURCE_STORE if stored else SOURCE_FALLBACK, rate_limited=True)
        except IdentityLookupFailed as exc:
            if stored is None:
                raise
            logger.warning("lookup for %s failed (%s); keeping stale record", email, exc.reason)
            self.cache.remember(stored, email)
            return Resolution(stored, SOURCE_STORE)

        now = self._now()
        if match is not None:
            contributor = self.store.upsert_username_contributor(
                match.username,
                match.profile_url or self._profile_url(match.username),
                email=email,
                now=now,
            )
        elif stored is not None:
            self.store.touch_contributor(stored.id, now=now)
            contributor = stored.model_copy(update={"updated_at": now})
        else:
            contributor = self.store.upsert_email_contributor(email, now=now)
        self.cache.remember(contributor, email)
        return Resolution(contributor, SOURCE_API)

    def _resolve_noreply(self, email: str, username: str) -> Resolution:
        cached = self.cache.get(username=username)
        if cached is not None:
            return Resolution(cached, SOURCE_CACHE)
        stored = self.store.find_contributor(username=username)
        if stored is None:
            stored = self.store.upsert_username_contributor(username, self._profile_url(username))
        self.cache.remember(stored, email)
        return Resolution(stored, SOURCE_NOREPLY)

    def _search(self, email: str, token: str | None):
        attempts = max(0, int(self.config.lookup_retries)) + 1
        for attempt in range(attempts):
            try:
                return self.client.search_user_by_email(email, token=token)
            except IdentityLookupFailed as exc:
                if attempt + 1 >= attempts:
                    raise
                delay = self.config.lookup_retry_base_seconds * (2**attempt)
                logger.info("lookup for %s failed (%s); retrying in %.1fs", email, exc.reason, delay)
                self._sleep(delay)
        return None

    def fallback(self, email: str) -> Contributor:
        """Email-only contributor for an address whose lookups keep failing."""
        email = (email or "").strip().lower()
        contributor = self.store.find_contributor(email=email) or self.store.upsert_email_contributor(email)
        self.cache.remember(contributor, email)
        return contributor
