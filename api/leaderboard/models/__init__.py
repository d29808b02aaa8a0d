"""Pydantic models."""

from leaderboard.models.contributor import (
    AuthorCommitCount,
    Contributor,
    IdentityMatch,
    Leaderboard,
    LeaderboardEntry,
)
from leaderboard.models.error import ErrorDetail
from leaderboard.models.job import Job, JobStatus, QueueName, QueueStats
from leaderboard.models.repository import (
    CommitDataEntry,
    Repository,
    RepositoryState,
    RepositoryStatus,
    SubmitRequest,
    SubmitResult,
)

__all__ = [
    "AuthorCommitCount",
    "CommitDataEntry",
    "Contributor",
    "ErrorDetail",
    "IdentityMatch",
    "Job",
    "JobStatus",
    "Leaderboard",
    "LeaderboardEntry",
    "QueueName",
    "QueueStats",
    "Repository",
    "RepositoryState",
    "RepositoryStatus",
    "SubmitRequest",
    "SubmitResult",
]
