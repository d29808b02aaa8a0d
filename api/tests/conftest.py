"""Pytest configuration and fixtures.

Every test gets its own SQLite database under ``tmp_path`` and a clean
environment, so no state leaks between tests through env-driven config.
"""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path
from typing import Callable

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from leaderboard.config import LeaderboardConfig  # noqa: E402
from leaderboard.services.pipeline import Pipeline, build_pipeline  # noqa: E402
from leaderboard.services.rate_limit import RateLimitGuard  # noqa: E402

NOREPLY_DOMAIN = "users.noreply.example.com"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("LEADERBOARD_") or key in {"DATABASE_URL", "GITHUB_TOKEN", "GH_TOKEN"}:
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def config(tmp_path: Path) -> LeaderboardConfig:
    return LeaderboardConfig(
        database_url=f"sqlite:///{tmp_path / 'leaderboard.db'}",
        repos_dir=str(tmp_path / "repos"),
        remote_size_check=False,
        noreply_domain=NOREPLY_DOMAIN,
        lookup_retries=0,
        lookup_retry_base_seconds=0.0,
        identity_retry_base_seconds=0.0,
        git_timeout_seconds=60.0,
    )


@pytest.fixture
def pipeline(config: LeaderboardConfig) -> Pipeline:
    p = build_pipeline(config)
    p.create_schema()
    yield p
    p.database.dispose()


@pytest.fixture
def store(pipeline: Pipeline):
    return pipeline.store


@pytest.fixture
def queue(pipeline: Pipeline):
    return pipeline.queue


def _git(path: Path, *args: str, env: dict[str, str] | None = None) -> str:
    proc = subprocess.run(
        ["git", "-c", "commit.gpgsign=false", *args],
        cwd=str(path),
        check=True,
        capture_output=True,
        text=True,
        env=env,
    )
    return proc.stdout


@pytest.fixture
def make_git_repo(tmp_path: Path) -> Callable[..., Path]:
    """Create a non-bare repository whose commits have the given author emails."""

    def _make(name: str = "origin", authors: list[str] | None = None) -> Path:
        path = tmp_path / name
        path.mkdir(parents=True, exist_ok=True)
        _git(path, "init", "-q")
        for email in authors or []:
            add_commit(path, email)
        return path

    return _make


def add_commit(path: Path, email: str, message: str = "change") -> None:
    env = dict(os.environ)
    env.update(
        {
            "GIT_AUTHOR_NAME": email.split("@")[0],
            "GIT_AUTHOR_EMAIL": email,
            "GIT_COMMITTER_NAME": "committer",
            "GIT_COMMITTER_EMAIL": "committer@example.com",
        }
    )
    _git(path, "commit", "-q", "--allow-empty", "-m", message, env=env)


@pytest.fixture
def add_git_commit() -> Callable[..., None]:
    return add_commit


class StubIdentityClient:
    """Counts lookups; answers from a fixed table whose values may be exceptions."""

    def __init__(self, answers: dict | None = None) -> None:
        self.answers = answers or {}
        self.calls: list[str] = []
        self.guard = RateLimitGuard()

    def search_user_by_email(self, email: str, token: str | None = None):
        self.calls.append(email)
        answer = self.answers.get(email)
        if isinstance(answer, Exception):
            raise answer
        return answer


@pytest.fixture
def stub_identity_client() -> type[StubIdentityClient]:
    return StubIdentityClient
