from __future__ import annotations

import pytest

from leaderboard.errors import InvalidStateTransition
from leaderboard.models.repository import RepositoryState
from leaderboard.services.repository_state import assert_transition, can_transition, is_terminal

S = RepositoryState


@pytest.mark.parametrize(
    "current,target",
    [
        (S.PENDING, S.COMMITS_PROCESSING),
        (S.COMMITS_PROCESSING, S.USERS_PROCESSING),
        (S.COMMITS_PROCESSING, S.FAILED),
        (S.COMMITS_PROCESSING, S.COMMITS_PROCESSING),
        (S.USERS_PROCESSING, S.COMPLETED),
        (S.COMPLETED, S.PENDING),
        (S.FAILED, S.PENDING),
        (S.FAILED, S.COMMITS_PROCESSING),
    ],
)
def test_allowed_transitions(current: RepositoryState, target: RepositoryState) -> None:
    assert can_transition(current, target)
    assert assert_transition(current.value, target.value) is target


@pytest.mark.parametrize(
    "current,target",
    [
        (S.PENDING, S.COMPLETED),
        (S.PENDING, S.USERS_PROCESSING),
        (S.USERS_PROCESSING, S.FAILED),
        (S.USERS_PROCESSING, S.COMMITS_PROCESSING),
        (S.COMPLETED, S.USERS_PROCESSING),
        (S.PENDING, S.PENDING),
    ],
)
def test_rejected_transitions(current: RepositoryState, target: RepositoryState) -> None:
    assert not can_transition(current, target)
    with pytest.raises(InvalidStateTransition) as exc_info:
        assert_transition(current, target)
    assert exc_info.value.current == current.value
    assert exc_info.value.target == target.value


def test_terminal_states() -> None:
    assert is_terminal(S.COMPLETED)
    assert is_terminal("failed")
    assert not is_terminal(S.USERS_PROCESSING)
