"""Commit phase end to end against local git repositories."""

from __future__ import annotations

import dataclasses
import shutil

import pytest

from leaderboard.errors import NetworkError, RepositoryPermissionError
from leaderboard.models.job import QueueName
from leaderboard.models.repository import RepositoryState
from leaderboard.services.commit_worker import CommitWorker
from leaderboard.services.working_copy import GitWorkingCopyProvider

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


class OversizedProvider(GitWorkingCopyProvider):
    def disk_usage_kb(self, path):
        return 10_000


class FailingProvider(GitWorkingCopyProvider):
    def __init__(self, base_dir, error):
        super().__init__(base_dir)
        self.error = error

    def acquire(self, url, path_name, token=None):
        raise self.error


class SizeHintClient:
    def __init__(self, size_kb):
        self.size_kb = size_kb
        self.calls = []

    def repository_size_kb(self, url, token=None):
        self.calls.append((url, token))
        return self.size_kb


def _submit(pipeline, origin, token=None):
    repo, _ = pipeline.store.get_or_create_repository(str(origin), "local__origin")
    pipeline.dispatcher.enqueue_commit_job(repo, token=token)
    job = pipeline.queue.claim(QueueName.COMMITS, "w1", lease_seconds=60)
    return repo, job


def test_extracts_counts_and_fans_out_identity_batches(pipeline, make_git_repo) -> None:
    origin = make_git_repo(authors=["a@example.com", "a@example.com", "b@example.com"])
    repo, job = _submit(pipeline, origin)

    result = pipeline.commit_worker().handle(job)

    assert result == {"state": "users_processing", "total_commits": 3, "unique_contributors": 2}
    stored = pipeline.store.get_repository(repo.id)
    assert stored.state == RepositoryState.USERS_PROCESSING
    assert stored.last_attempt is not None
    assert pipeline.store.unprocessed_emails(repo.id) == ["a@example.com", "b@example.com"]
    (batch,) = pipeline.queue.list_jobs(QueueName.USERS)
    assert batch.payload["emails"] == ["a@example.com", "b@example.com"]
    assert pipeline.provider.exists("local__origin")


def test_empty_repository_completes_immediately(pipeline, make_git_repo) -> None:
    origin = make_git_repo(authors=[])
    repo, job = _submit(pipeline, origin)

    result = pipeline.commit_worker().handle(job)

    assert result["state"] == "completed"
    completed = pipeline.store.get_repository(repo.id)
    assert completed.state == RepositoryState.COMPLETED
    assert completed.total_commits == 0
    assert pipeline.store.leaderboard(repo.id) == []
    assert pipeline.queue.list_jobs(QueueName.USERS) == []


def test_token_is_forwarded_to_identity_jobs(pipeline, make_git_repo) -> None:
    origin = make_git_repo(authors=["a@example.com"])
    _repo, job = _submit(pipeline, origin, token="user-token")

    pipeline.commit_worker().handle(job)

    (batch,) = pipeline.queue.list_jobs(QueueName.USERS)
    assert batch.payload["token"] == "user-token"


def test_size_ceiling_fails_and_removes_copy(pipeline, config, make_git_repo) -> None:
    origin = make_git_repo(authors=["a@example.com"])
    repo, job = _submit(pipeline, origin)
    provider = OversizedProvider(config.repos_dir)
    worker = CommitWorker(
        pipeline.store, pipeline.dispatcher, provider, None, dataclasses.replace(config, max_repo_size_kb=100)
    )

    result = worker.handle(job)

    assert result == {"state": "failed", "failure_kind": "size_limit_exceeded"}
    failed = pipeline.store.get_repository(repo.id)
    assert failed.state == RepositoryState.FAILED
    assert "10000 KB" in failed.failure_reason
    assert not provider.exists("local__origin")
    assert pipeline.queue.list_jobs(QueueName.USERS) == []


def test_commit_ceiling_fails_and_removes_copy(pipeline, config, make_git_repo) -> None:
    origin = make_git_repo(authors=["a@example.com", "b@example.com", "c@example.com"])
    repo, job = _submit(pipeline, origin)
    worker = CommitWorker(
        pipeline.store,
        pipeline.dispatcher,
        pipeline.provider,
        None,
        dataclasses.replace(config, max_commit_count=2),
    )

    worker.handle(job)

    failed = pipeline.store.get_repository(repo.id)
    assert failed.failure_kind == "commit_limit_exceeded"
    assert not pipeline.provider.exists("local__origin")


def test_remote_size_hint_rejects_before_cloning(pipeline, config, make_git_repo) -> None:
    origin = make_git_repo(authors=["a@example.com"])
    repo, job = _submit(pipeline, origin, token="t")
    client = SizeHintClient(size_kb=5_000)
    worker = CommitWorker(
        pipeline.store,
        pipeline.dispatcher,
        pipeline.provider,
        client,
        dataclasses.replace(config, remote_size_check=True, max_repo_size_kb=1_000),
    )

    worker.handle(job)

    assert client.calls == [(str(origin), "t")]
    assert pipeline.store.get_repository(repo.id).failure_kind == "size_limit_exceeded"
    assert not pipeline.provider.exists("local__origin")


def test_remote_size_hint_removes_copy_from_earlier_run(pipeline, config, make_git_repo) -> None:
    origin = make_git_repo(authors=["a@example.com"])
    repo, job = _submit(pipeline, origin)
    pipeline.provider.acquire(str(origin), "local__origin")
    assert pipeline.provider.exists("local__origin")
    client = SizeHintClient(size_kb=5_000)
    worker = CommitWorker(
        pipeline.store,
        pipeline.dispatcher,
        pipeline.provider,
        client,
        dataclasses.replace(config, remote_size_check=True, max_repo_size_kb=1_000),
    )

    worker.handle(job)

    assert [url for url, _ in client.calls] == [str(origin)]
    assert pipeline.store.get_repository(repo.id).failure_kind == "size_limit_exceeded"
    assert not pipeline.provider.exists("local__origin")


def test_missing_remote_is_not_found(pipeline, tmp_path) -> None:
    repo, job = _submit(pipeline, tmp_path / "nowhere")

    pipeline.commit_worker().handle(job)

    failed = pipeline.store.get_repository(repo.id)
    assert failed.state == RepositoryState.FAILED
    assert failed.failure_kind == "not_found"


@pytest.mark.parametrize(
    "error,kind",
    [
        (NetworkError("network error while contacting the remote"), "network_error"),
        (RepositoryPermissionError("permission denied by the remote"), "permission_denied"),
    ],
)
def test_acquisition_errors_are_recorded_with_kind(pipeline, config, tmp_path, error, kind) -> None:
    repo, job = _submit(pipeline, tmp_path / "origin")
    worker = CommitWorker(pipeline.store, pipeline.dispatcher, FailingProvider(config.repos_dir, error), None, config)

    result = worker.handle(job)

    assert result["failure_kind"] == kind
    failed = pipeline.store.get_repository(repo.id)
    assert failed.failure_kind == kind
    assert failed.failure_reason == error.reason


def test_redelivered_job_is_skipped_once_repository_moved_on(pipeline, make_git_repo) -> None:
    origin = make_git_repo(authors=["a@example.com"])
    repo, job = _submit(pipeline, origin)
    worker = pipeline.commit_worker()
    worker.handle(job)

    assert worker.handle(job) == {"skipped": "users_processing"}
    assert pipeline.store.get_repository(repo.id).state == RepositoryState.USERS_PROCESSING


def test_reprocessing_fetches_new_commits(pipeline, make_git_repo, add_git_commit) -> None:
    origin = make_git_repo(authors=["a@example.com"])
    repo, job = _submit(pipeline, origin)
    worker = pipeline.commit_worker()
    worker.handle(job)
    pipeline.queue.complete(job.id, "w1", {})

    # Finish the identity phase so the repository can be resubmitted.
    contributor = pipeline.store.upsert_email_contributor("a@example.com")
    pipeline.store.link_batch(repo.id, {"a@example.com": contributor.id})
    pipeline.store.complete_if_resolved(repo.id)

    add_git_commit(origin, "b@example.com")
    pipeline.store.transition(repo.id, RepositoryState.PENDING)
    _again, job = _submit(pipeline, origin)
    result = worker.handle(job)

    assert result["total_commits"] == 2
    assert pipeline.store.unprocessed_emails(repo.id) == ["a@example.com", "b@example.com"]
