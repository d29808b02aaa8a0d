"""Re-query email-only contributors (typically created while rate limited) for a username."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from leaderboard.adapters.database import utc_now
from leaderboard.adapters.leaderboard_store import LeaderboardStore
from leaderboard.config import LeaderboardConfig
from leaderboard.errors import IdentityLookupFailed, RateLimited
from leaderboard.services.github_client import GitHubClient
from leaderboard.services.identity_resolver import parse_noreply_email

logger = logging.getLogger(__name__)


@dataclass
class RefreshReport:
    refreshed: int = 0
    unmatched: int = 0
    failed: int = 0
    skipped: int = 0
    rate_limited: bool = False


def refresh_email_only_contributors(
    store: LeaderboardStore,
    client: GitHubClient,
    config: LeaderboardConfig | None = None,
    *,
    token: str | None = None,
    limit: int | None = None,
    include_fresh: bool = False,
) -> RefreshReport:
    """Stops at the first rate-limit response; everything after it is left for the next run."""
    config = config or LeaderboardConfig()
    stale_before = None if include_fresh else utc_now() - timedelta(seconds=config.staleness_seconds)
    candidates = store.email_only_contributors(stale_before=stale_before, limit=limit)
    logger.info("found %d email-only contributor(s) to refresh", len(candidates))

    report = RefreshReport()
    for contributor in candidates:
        email = contributor.email or ""
        if not email or parse_noreply_email(email, config.noreply_domain):
            report.skipped += 1
            continue
        try:
            match = client.search_user_by_email(email, token=token)
        except RateLimited:
            report.rate_limited = True
            logger.warning("rate limit hit; stopping refresh")
            break
        except IdentityLookupFailed as exc:
            report.failed += 1
            logger.warning("failed to refresh %s: %s", email, exc.reason)
            continue
        if match is None:
            store.touch_contributor(contributor.id)
            report.unmatched += 1
            continue
        store.upsert_username_contributor(match.username, match.profile_url, email=email)
        report.refreshed += 1

    logger.info(
        "refresh done: %d refreshed, %d unmatched, %d failed, %d skipped%s",
        report.refreshed,
        report.unmatched,
        report.failed,
        report.skipped,
        " (rate limited)" if report.rate_limited else "",
    )
    return report
