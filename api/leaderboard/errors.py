"""Failure taxonomy shared by the workers, the queue and the service surface.

Every pipeline error carries a stable ``kind`` (stored on the repository row and
used for bucketing) and a ``reason`` that is safe to show to a client: it names
the root-cause class without leaking stack traces or credentials.
"""

from __future__ import annotations

from datetime import datetime


class PipelineError(RuntimeError):
    kind = "pipeline_error"
    retryable = False

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class NetworkError(PipelineError):
    """Host unresolved, connection reset or wall-clock timeout during clone/fetch."""

    kind = "network_error"
    retryable = True


class RepositoryNotFoundError(PipelineError):
    kind = "not_found"


class RepositoryPermissionError(PipelineError):
    kind = "permission_denied"


class SizeLimitExceeded(PipelineError):
    kind = "size_limit_exceeded"


class CommitLimitExceeded(PipelineError):
    kind = "commit_limit_exceeded"


class ExtractionFailed(PipelineError):
    kind = "extraction_failed"


class RateLimited(PipelineError):
    """Flow-control signal from the identity API. Never fails a repository."""

    kind = "rate_limited"
    retryable = True

    def __init__(self, reason: str, reset_at: datetime | None = None) -> None:
        super().__init__(reason)
        self.reset_at = reset_at


class IdentityLookupFailed(PipelineError):
    """Transient network/auth failure while looking up a single email."""

    kind = "identity_lookup_failed"
    retryable = True


class InvalidRepositoryUrl(ValueError):
    pass


class InvalidStateTransition(RuntimeError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"invalid repository state transition: {current} -> {target}")
        self.current = current
        self.target = target


class RepositoryNotFound(LookupError):
    """No repository row exists for the requested URL."""


class LeaderboardNotReady(RuntimeError):
    def __init__(self, state: str) -> None:
        super().__init__(f"leaderboard is not available while repository is {state}")
        self.state = state
