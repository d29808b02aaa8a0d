"""Runtime configuration for the leaderboard pipeline.

Every ceiling, batch size and timeout lives here so workers, scripts and the
HTTP adapter agree on one set of values. Override via environment variables
(see ``LeaderboardConfig.from_env``) or by constructing a config directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def _env_str(name: str, default: str) -> str:
    raw = (os.getenv(name) or "").strip()
    return raw or default


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else default
    except ValueError:
        value = default
    return max(minimum, value)


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        value = float(raw) if raw else default
    except ValueError:
        value = default
    return max(minimum, value)


def _env_token() -> str | None:
    token = os.getenv("GITHUB_TOKEN") or os.getenv("GH_TOKEN") or ""
    return token.strip() or None


@dataclass(frozen=True)
class LeaderboardConfig:
    database_url: str = "sqlite:///./leaderboard.db"
    repos_dir: str = "./data/repos"

    # ── Commit phase ──────────────────────────────────────────────────────────
    # Checked against the remote size hint before cloning and against the
    # on-disk size after acquisition. 0 disables the ceiling.
    max_repo_size_kb: int = 2_000_000
    # 0 disables the ceiling.
    max_commit_count: int = 500_000
    git_timeout_seconds: float = 900.0
    remote_size_check: bool = True

    # ── Identity phase ────────────────────────────────────────────────────────
    identity_batch_size: int = 50
    identity_job_max_attempts: int = 5
    identity_retry_base_seconds: float = 30.0
    # Failed lookups per email before it is linked to its email-only record.
    max_identity_attempts: int = 3
    lookup_retries: int = 2
    lookup_retry_base_seconds: float = 1.0
    identity_concurrency: int = 1
    staleness_hours: float = 24.0

    # ── Identity API ──────────────────────────────────────────────────────────
    api_base_url: str = "https://api.github.com"
    api_timeout_seconds: float = 20.0
    github_token: str | None = None
    rate_limit_min_remaining: int = 0
    # 0 means: abort the rest of the batch instead of blocking the worker.
    rate_limit_max_wait_seconds: float = 0.0
    noreply_domain: str = "users.noreply.github.com"
    profile_base_url: str = "https://github.com"

    # ── Queue ─────────────────────────────────────────────────────────────────
    lease_seconds: int = 1800
    idle_sleep_seconds: float = 5.0

    @property
    def staleness_seconds(self) -> float:
        return self.staleness_hours * 3600.0

    @classmethod
    def from_env(cls) -> LeaderboardConfig:
        defaults = cls()
        return cls(
            database_url=_env_str("DATABASE_URL", defaults.database_url),
            repos_dir=_env_str("LEADERBOARD_REPOS_DIR", defaults.repos_dir),
            max_repo_size_kb=_env_int("LEADERBOARD_MAX_REPO_SIZE_KB", defaults.max_repo_size_kb),
            max_commit_count=_env_int("LEADERBOARD_MAX_COMMIT_COUNT", defaults.max_commit_count),
            git_timeout_seconds=_env_float(
                "LEADERBOARD_GIT_TIMEOUT_SECONDS", defaults.git_timeout_seconds, minimum=1.0
            ),
            remote_size_check=_truthy(os.getenv("LEADERBOARD_REMOTE_SIZE_CHECK", "1")),
            identity_batch_size=_env_int(
                "LEADERBOARD_IDENTITY_BATCH_SIZE", defaults.identity_batch_size, minimum=1
            ),
            identity_job_max_attempts=_env_int(
                "LEADERBOARD_IDENTITY_JOB_MAX_ATTEMPTS", defaults.identity_job_max_attempts, minimum=1
            ),
            identity_retry_base_seconds=_env_float(
                "LEADERBOARD_IDENTITY_RETRY_BASE_SECONDS", defaults.identity_retry_base_seconds
            ),
            max_identity_attempts=_env_int(
                "LEADERBOARD_MAX_IDENTITY_ATTEMPTS", defaults.max_identity_attempts, minimum=1
            ),
            lookup_retries=_env_int("LEADERBOARD_LOOKUP_RETRIES", defaults.lookup_retries),
            lookup_retry_base_seconds=_env_float(
                "LEADERBOARD_LOOKUP_RETRY_BASE_SECONDS", defaults.lookup_retry_base_seconds
            ),
            identity_concurrency=min(
                16, _env_int("LEADERBOARD_IDENTITY_CONCURRENCY", defaults.identity_concurrency, minimum=1)
            ),
            staleness_hours=_env_float("LEADERBOARD_STALENESS_HOURS", defaults.staleness_hours),
            api_base_url=_env_str("LEADERBOARD_API_BASE_URL", defaults.api_base_url).rstrip("/"),
            api_timeout_seconds=_env_float(
                "LEADERBOARD_API_TIMEOUT_SECONDS", defaults.api_timeout_seconds, minimum=1.0
            ),
            github_token=_env_token(),
            rate_limit_min_remaining=_env_int(
                "LEADERBOARD_RATE_LIMIT_MIN_REMAINING", defaults.rate_limit_min_remaining
            ),
            rate_limit_max_wait_seconds=_env_float(
                "LEADERBOARD_RATE_LIMIT_MAX_WAIT_SECONDS", defaults.rate_limit_max_wait_seconds
            ),
            noreply_domain=_env_str("LEADERBOARD_NOREPLY_DOMAIN", defaults.noreply_domain).lower(),
            profile_base_url=_env_str("LEADERBOARD_PROFILE_BASE_URL", defaults.profile_base_url).rstrip("/"),
            lease_seconds=_env_int("LEADERBOARD_LEASE_SECONDS", defaults.lease_seconds, minimum=15),
            idle_sleep_seconds=_env_float("LEADERBOARD_IDLE_SLEEP_SECONDS", defaults.idle_sleep_seconds),
        )
