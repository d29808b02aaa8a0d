"""Local bare working copies of remote repositories (clone on first use, fetch afterwards)."""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from pathlib import Path
from urllib.parse import quote, urlsplit, urlunsplit

from leaderboard.errors import (
    ExtractionFailed,
    NetworkError,
    PipelineError,
    RepositoryNotFoundError,
    RepositoryPermissionError,
)

logger = logging.getLogger(__name__)

_HEADS_REFSPEC = "+refs/heads/*:refs/heads/*"
_SAFE_PATH_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_CREDENTIALS_IN_URL = re.compile(r"(https?://)[^/@\s]+@", re.I)

# Ordered: first match wins.
_GIT_FAILURE_PATTERNS: list[tuple[re.Pattern[str], type[PipelineError], str]] = [
    (
        re.compile(r"could not resolve host|failed to connect|connection (timed out|refused|reset)|"
                   r"network is unreachable|early eof|remote end hung up|operation timed out|"
                   r"ssl certificate problem|gnutls_handshake", re.I),
        NetworkError,
        "network error while contacting the remote",
    ),
    (
        re.compile(r"repository .*not found|not found|does not exist|does not appear to be a git repository", re.I),
        RepositoryNotFoundError,
        "repository not found",
    ),
    (
        re.compile(r"permission denied|authentication failed|could not read username|"
                   r"terminal prompts disabled|access denied|returned error: 40[13]", re.I),
        RepositoryPermissionError,
        "permission denied by the remote",
    ),
]


def redact(text: str, token: str | None = None) -> str:
    out = _CREDENTIALS_IN_URL.sub(r"\1***@", text or "")
    if token:
        out = out.replace(token, "***")
    return out


def classify_git_failure(stderr: str, *, operation: str) -> PipelineError:
    for pattern, error_cls, reason in _GIT_FAILURE_PATTERNS:
        if pattern.search(stderr or ""):
            return error_cls(reason)
    last = (stderr or "").strip().splitlines()
    detail = redact(last[-1]) if last else "unknown error"
    return ExtractionFailed(f"git {operation} failed: {detail}")


def authenticated_url(url: str, token: str | None) -> str:
    """Embed ``token`` as x-access-token credentials for HTTPS remotes."""
    if not token:
        return url
    parts = urlsplit(url)
    if parts.scheme not in {"http", "https"} or not parts.hostname:
        return url
    netloc = f"x-access-token:{quote(token, safe='')}@{parts.hostname}"
    if parts.port:
        netloc += f":{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class GitWorkingCopyProvider:
    """Keeps one bare clone per repository under ``base_dir``."""

    def __init__(self, base_dir: str | Path, *, timeout_seconds: float = 900.0) -> None:
        self.base_dir = Path(base_dir)
        self.timeout_seconds = float(timeout_seconds)

    def path_for(self, path_name: str) -> Path:
        if not _SAFE_PATH_NAME.match(path_name or ""):
            raise ValueError(f"unsafe working copy name: {path_name!r}")
        return self.base_dir / f"{path_name}.git"

    def exists(self, path_name: str) -> bool:
        return (self.path_for(path_name) / "HEAD").is_file()

    def _run(self, args: list[str], *, operation: str, token: str | None, git_dir: Path | None = None) -> str:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        try:
            proc = subprocess.run(
                ["git", *(["--git-dir", str(git_dir)] if git_dir else []), *args],
                check=False,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout_seconds,
                env=env,
            )
        except subprocess.TimeoutExpired as exc:
            raise NetworkError(f"git {operation} timed out after {self.timeout_seconds:.0f}s") from exc
        except OSError as exc:
            raise ExtractionFailed(f"could not run git: {exc.strerror or exc}") from exc
        if proc.returncode != 0:
            stderr = redact(proc.stderr, token)
            logger.warning("git %s failed (%s): %s", operation, proc.returncode, stderr.strip()[-500:])
            raise classify_git_failure(stderr, operation=operation)
        return proc.stdout

    def acquire(self, url: str, path_name: str, token: str | None = None) -> Path:
        """Clone ``url`` bare on first use, otherwise fetch into the existing copy."""
        path = self.path_for(path_name)
        if self.exists(path_name):
            self.update(path, url=url, token=token)
            return path

        self.base_dir.mkdir(parents=True, exist_ok=True)
        partial = path.with_name(path.name + ".partial")
        self.remove(partial)
        self.remove(path)
        logger.info("cloning %s into %s", redact(url, token), path)
        try:
            self._run(
                ["clone", "--bare", "--quiet", authenticated_url(url, token), str(partial)],
                operation="clone",
                token=token,
            )
            # Never keep credentials in the stored remote.
            self._run(["remote", "set-url", "origin", url], operation="config", token=token, git_dir=partial)
            self._run(
                ["config", "remote.origin.fetch", _HEADS_REFSPEC], operation="config", token=token, git_dir=partial
            )
            partial.rename(path)
        except Exception:
            self.remove(partial)
            raise
        return path

    def update(self, path: Path, *, url: str | None = None, token: str | None = None) -> None:
        logger.info("fetching %s", path.name)
        if token and url:
            remote = authenticated_url(url, token)
            args = ["fetch", "--prune", "--quiet", remote, _HEADS_REFSPEC]
        else:
            args = ["fetch", "--prune", "--quiet", "origin"]
        self._run(args, operation="fetch", token=token, git_dir=path)

    def disk_usage_kb(self, path: Path) -> int:
        total = 0
        for root, _dirs, files in os.walk(path):
            for name in files:
                try:
                    total += os.lstat(os.path.join(root, name)).st_size
                except OSError:
                    continue
        return total // 1024

    def remove(self, path: Path) -> None:
        if path.exists():
            shutil.rmtree(path, ignore_errors=True)
