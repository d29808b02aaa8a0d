"""Contributor and leaderboard models."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class AuthorCommitCount(BaseModel):
    """One row of commit-extraction output: a raw author email and its commit total."""

    email: str
    count: int


class Contributor(BaseModel):
    """Canonical contributor. ``id`` is None for records that were never persisted."""

    id: Optional[int] = None
    username: Optional[str] = None
    email: Optional[str] = None
    profile_url: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class IdentityMatch(BaseModel):
    """First user the identity API returned for an email search."""

    username: str
    profile_url: Optional[str] = None


class LeaderboardEntry(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    profile_url: Optional[str] = None
    commit_count: int


class Leaderboard(BaseModel):
    repository: str
    total_commits: Optional[int] = None
    top_contributors: list[LeaderboardEntry]
