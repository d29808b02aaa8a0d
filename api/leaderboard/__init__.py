"""Contributor leaderboard pipeline: clone, count commits, resolve identities, rank."""

__version__ = "1.0.0"
