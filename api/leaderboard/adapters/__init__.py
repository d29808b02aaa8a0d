"""Adapters for external storage: SQL database and job queue."""

from leaderboard.adapters.database import Database
from leaderboard.adapters.job_queue import SqlJobQueue
from leaderboard.adapters.leaderboard_store import LeaderboardStore

__all__ = ["Database", "LeaderboardStore", "SqlJobQueue"]
