"""Repository state machine for the two-phase pipeline.

    pending ──► commits_processing ──► users_processing ──► completed
       ▲               │   ▲                                   │
       │               ▼   └─ (redelivered commit job)         │
       └────────── failed ◄────────────────────────────────────┘ (re-submission → pending)

Only workers move a repository forward; re-submission moves a terminal
repository back to ``pending``.
"""

from __future__ import annotations

from leaderboard.errors import InvalidStateTransition
from leaderboard.models.repository import RepositoryState

ALLOWED_TRANSITIONS: dict[RepositoryState, frozenset[RepositoryState]] = {
    RepositoryState.PENDING: frozenset({RepositoryState.COMMITS_PROCESSING}),
    RepositoryState.COMMITS_PROCESSING: frozenset(
        {
            RepositoryState.COMMITS_PROCESSING,
            RepositoryState.USERS_PROCESSING,
            RepositoryState.FAILED,
        }
    ),
    RepositoryState.USERS_PROCESSING: frozenset({RepositoryState.COMPLETED}),
    RepositoryState.COMPLETED: frozenset({RepositoryState.PENDING}),
    RepositoryState.FAILED: frozenset({RepositoryState.PENDING, RepositoryState.COMMITS_PROCESSING}),
}

TERMINAL_STATES = frozenset({RepositoryState.COMPLETED, RepositoryState.FAILED})


def _coerce(state: RepositoryState | str) -> RepositoryState:
    return state if isinstance(state, RepositoryState) else RepositoryState(str(state))


def is_terminal(state: RepositoryState | str) -> bool:
    return _coerce(state) in TERMINAL_STATES


def can_transition(current: RepositoryState | str, target: RepositoryState | str) -> bool:
    return _coerce(target) in ALLOWED_TRANSITIONS[_coerce(current)]


def assert_transition(current: RepositoryState | str, target: RepositoryState | str) -> RepositoryState:
    """Return the target state, or raise InvalidStateTransition."""
    current_state = _coerce(current)
    target_state = _coerce(target)
    if target_state not in ALLOWED_TRANSITIONS[current_state]:
        raise InvalidStateTransition(current_state.value, target_state.value)
    return target_state
