"""Repository pipeline models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RepositoryState(str, Enum):
    PENDING = "pending"
    COMMITS_PROCESSING = "commits_processing"
    USERS_PROCESSING = "users_processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Repository(BaseModel):
    id: int
    url: str
    path_name: str
    state: RepositoryState
    failure_kind: Optional[str] = None
    failure_reason: Optional[str] = None
    total_commits: Optional[int] = None
    unique_contributors: Optional[int] = None
    last_attempt: Optional[datetime] = None
    commits_processed_at: Optional[datetime] = None
    users_processed_at: Optional[datetime] = None
    last_processed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RepositoryStatus(BaseModel):
    """What a client is told about a repository: processing, failed (with reason) or completed."""

    url: str
    state: RepositoryState
    total_commits: Optional[int] = None
    unique_contributors: Optional[int] = None
    pending_contributors: Optional[int] = Field(
        default=None, description="Author emails still waiting for identity resolution"
    )
    failure_kind: Optional[str] = None
    failure_reason: Optional[str] = None
    last_processed_at: Optional[datetime] = None


class CommitDataEntry(BaseModel):
    """Per-repository, per-email commit total awaiting (or done with) identity resolution."""

    repository_id: int
    author_email: str
    commit_count: int
    processed: bool = False
    attempts: int = 0
    contributor_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class SubmitRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=2000)
    max_age_hours: Optional[float] = Field(
        default=None,
        ge=0,
        description="Re-run a completed repository whose last run is older than this many hours.",
    )


class SubmitResult(BaseModel):
    url: str
    state: RepositoryState
    enqueued: bool
