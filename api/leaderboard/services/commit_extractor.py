"""Commit extraction: author email -> commit count for the default branch of a local copy."""

from __future__ import annotations

import logging
import subprocess
from collections import Counter
from pathlib import Path

from leaderboard.errors import ExtractionFailed
from leaderboard.models.contributor import AuthorCommitCount

logger = logging.getLogger(__name__)

_UNBORN_HEAD_MARKERS = (
    "does not have any commits yet",
    "bad default revision 'head'",
    "ambiguous argument 'head'",
    "unknown revision or path not in the working tree",
)


def _git(repo_path: Path, args: list[str], timeout: float | None) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            ["git", "--git-dir", str(repo_path), *args],
            check=False,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        raise ExtractionFailed(f"git {args[0]} timed out after {timeout:.0f}s") from exc
    except OSError as exc:
        raise ExtractionFailed(f"could not run git: {exc.strerror or exc}") from exc


def _resolve_git_dir(repo_path: str | Path) -> Path:
    path = Path(repo_path)
    if not path.is_dir():
        raise ExtractionFailed(f"repository path is not readable: {path.name}")
    dot_git = path / ".git"
    return dot_git if dot_git.exists() else path


def _is_unborn(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in _UNBORN_HEAD_MARKERS)


def extract_commit_counts(repo_path: str | Path, *, timeout: float | None = None) -> list[AuthorCommitCount]:
    """Count commits per author email reachable from HEAD (merges included).

    Emails are trimmed and lower-cased; lines without ``@`` are ignored. An
    empty repository yields an empty list. Ordered by count desc, then email.
    """
    git_dir = _resolve_git_dir(repo_path)
    proc = _git(git_dir, ["log", "--format=%ae", "HEAD"], timeout)
    if proc.returncode != 0:
        if _is_unborn(proc.stderr):
            logger.info("repository %s has no commits", git_dir.name)
            return []
        message = (proc.stderr or "").strip().splitlines()
        raise ExtractionFailed(f"git log failed: {message[-1] if message else proc.returncode}")

    counts: Counter[str] = Counter()
    for line in proc.stdout.splitlines():
        email = line.strip().lower()
        if "@" not in email:
            continue
        counts[email] += 1
    return [
        AuthorCommitCount(email=email, count=count)
        for email, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    ]


def count_commits(repo_path: str | Path, *, timeout: float | None = None) -> int:
    git_dir = _resolve_git_dir(repo_path)
    proc = _git(git_dir, ["rev-list", "--count", "HEAD"], timeout)
    if proc.returncode != 0:
        if _is_unborn(proc.stderr):
            return 0
        raise ExtractionFailed("git rev-list failed")
    try:
        return int(proc.stdout.strip() or 0)
    except ValueError as exc:
        raise ExtractionFailed("git rev-list returned unexpected output") from exc
