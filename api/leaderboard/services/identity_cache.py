"""Per-process contributor cache keyed by email and by username."""

from __future__ import annotations

import threading
from typing import Optional

from leaderboard.models.contributor import Contributor


class IdentityCache:
    """No cross-process consistency; stale entries are re-checked against the store's updated_at."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_email: dict[str, Contributor] = {}
        self._by_username: dict[str, Contributor] = {}

    def get(self, *, email: str | None = None, username: str | None = None) -> Optional[Contributor]:
        with self._lock:
            if email and email in self._by_email:
                return self._by_email[email]
            if username and username.lower() in self._by_username:
                return self._by_username[username.lower()]
        return None

    def remember(self, contributor: Contributor, email: str | None = None) -> None:
        """Cache a persisted contributor under ``email`` and its own keys."""
        if contributor.id is None:
            return
        with self._lock:
            for key in {email, contributor.email}:
                if key:
                    self._by_email[key] = contributor
            if contributor.username:
                self._by_username[contributor.username.lower()] = contributor
