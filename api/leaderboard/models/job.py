"""Pipeline job models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class QueueName(str, Enum):
    COMMITS = "commits"
    USERS = "users"


class JobStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(BaseModel):
    id: int
    queue: QueueName
    dedup_key: str
    status: JobStatus
    payload: dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0
    max_attempts: int = 1
    available_at: datetime
    claimed_by: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class QueueStats(BaseModel):
    queue: QueueName
    pending: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    expired_leases: int = 0
