from __future__ import annotations

from datetime import timedelta

from leaderboard.adapters.database import utc_now
from leaderboard.errors import IdentityLookupFailed, RateLimited
from leaderboard.models.contributor import IdentityMatch
from leaderboard.services.refresh_service import refresh_email_only_contributors


def _stale(store, *emails):
    old = utc_now() - timedelta(days=2)
    return [store.upsert_email_contributor(email, now=old) for email in emails]


def test_refresh_promotes_matches_and_touches_the_rest(store, config, stub_identity_client) -> None:
    found, missing, broken = _stale(store, "found@example.com", "missing@example.com", "broken@example.com")
    client = stub_identity_client(
        {
            "found@example.com": IdentityMatch(username="found", profile_url="https://github.com/found"),
            "broken@example.com": IdentityLookupFailed("boom"),
        }
    )

    report = refresh_email_only_contributors(store, client, config)

    assert (report.refreshed, report.unmatched, report.failed, report.rate_limited) == (1, 1, 1, False)
    promoted = store.find_contributor(email="found@example.com")
    assert promoted.id == found.id
    assert promoted.username == "found"
    # Touched records are fresh again and drop out of the next run.
    remaining = {c.email for c in store.email_only_contributors(stale_before=utc_now() - timedelta(hours=1))}
    assert remaining == {"broken@example.com"}


def test_refresh_stops_at_rate_limit(store, config, stub_identity_client) -> None:
    _stale(store, "a@example.com", "b@example.com")
    client = stub_identity_client({"a@example.com": RateLimited("limit"), "b@example.com": None})

    report = refresh_email_only_contributors(store, client, config)

    assert report.rate_limited is True
    assert len(client.calls) == 1


def test_refresh_skips_noreply_and_fresh_records(store, config, stub_identity_client) -> None:
    _stale(store, "someone@users.noreply.example.com")
    store.upsert_email_contributor("fresh@example.com")
    client = stub_identity_client()

    report = refresh_email_only_contributors(store, client, config)

    assert report.skipped == 1
    assert client.calls == []

    refresh_email_only_contributors(store, client, config, include_fresh=True, limit=10)
    assert client.calls == ["fresh@example.com"]
