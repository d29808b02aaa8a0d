"""GitHub API client used for identity lookups and remote size hints.

REST wrapper with:
- optional token auth (per client, or per call for caller-supplied credentials)
- a shared RateLimitGuard consulted before and updated after every request
- rate-limit responses surfaced as RateLimited, everything else as IdentityLookupFailed
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlsplit

import httpx

from leaderboard.errors import IdentityLookupFailed, PipelineError, RateLimited
from leaderboard.models.contributor import IdentityMatch
from leaderboard.services.rate_limit import RateLimitGuard, is_rate_limit_response

logger = logging.getLogger(__name__)


class GitHubClient:
    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = "https://api.github.com",
        user_agent: str = "git-leaderboard/1.0",
        timeout: float = 20.0,
        guard: Optional[RateLimitGuard] = None,
        profile_base_url: str = "https://github.com",
    ) -> None:
        self._token = (token or "").strip() or None
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._profile_base_url = profile_base_url.rstrip("/")
        self.guard = guard or RateLimitGuard()
        self._headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": user_agent,
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _auth_headers(self, token: Optional[str]) -> dict[str, str]:
        h = dict(self._headers)
        effective = (token or "").strip() or self._token
        if effective:
            h["Authorization"] = f"Bearer {effective}"
        return h

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        token: Optional[str] = None,
    ) -> httpx.Response:
        url = path if path.startswith("http") else f"{self._base_url}{path}"
        self.guard.acquire()
        try:
            with httpx.Client(timeout=self._timeout, headers=self._auth_headers(token)) as client:
                r = client.request(method, url, params=params)
        except httpx.HTTPError as exc:
            raise IdentityLookupFailed(f"identity API request failed: {type(exc).__name__}") from exc

        self.guard.update_from_headers(r.headers)
        if is_rate_limit_response(r.status_code, r.headers, r.text):
            self.guard.note_rate_limited(r.headers)
            raise RateLimited("identity API rate limit exceeded", reset_at=self.guard.reset_at())
        return r

    def _json(self, r: httpx.Response) -> Any:
        try:
            return r.json()
        except ValueError as exc:
            raise IdentityLookupFailed("identity API returned invalid JSON") from exc

    def search_user_by_email(self, email: str, token: Optional[str] = None) -> Optional[IdentityMatch]:
        """Search users by email; only the first hit is considered."""
        r = self._request(
            "GET",
            "/search/users",
            params={"q": f"{email} in:email", "per_page": 1},
            token=token,
        )
        if r.status_code == 422:
            # Query the search API cannot parse; treat as no match.
            return None
        if r.status_code in (401, 403):
            raise IdentityLookupFailed(f"identity API rejected credentials ({r.status_code})")
        if r.status_code >= 400:
            raise IdentityLookupFailed(f"identity API error {r.status_code}")

        data = self._json(r)
        items = data.get("items") if isinstance(data, dict) else None
        if not items:
            return None
        first = items[0] if isinstance(items[0], dict) else {}
        login = str(first.get("login") or "").strip()
        if not login:
            return None
        profile_url = str(first.get("html_url") or "").strip() or f"{self._profile_base_url}/{login}"
        return IdentityMatch(username=login, profile_url=profile_url)

    def get_repo(self, owner: str, repo: str, token: Optional[str] = None) -> dict:
        r = self._request("GET", f"/repos/{owner}/{repo}", token=token)
        if r.status_code >= 400:
            raise IdentityLookupFailed(f"GitHub API error {r.status_code} for {owner}/{repo}")
        data = self._json(r)
        return data if isinstance(data, dict) else {}

    def repository_size_kb(self, url: str, token: Optional[str] = None) -> Optional[int]:
        """Best-effort remote size hint (KB); None for non-GitHub URLs or on any API failure."""
        parts = urlsplit(url)
        profile_host = urlsplit(self._profile_base_url).hostname
        if (parts.hostname or "").lower() != (profile_host or "").lower():
            return None
        segments = [s for s in parts.path.split("/") if s]
        if len(segments) != 2:
            return None
        try:
            data = self.get_repo(segments[0], segments[1], token=token)
        except PipelineError as exc:
            logger.info("size hint unavailable for %s: %s", url, exc.reason)
            return None
        size = data.get("size")
        return int(size) if isinstance(size, int) else None
