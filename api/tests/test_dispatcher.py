from __future__ import annotations

import dataclasses

from leaderboard.models.contributor import AuthorCommitCount
from leaderboard.models.job import JobStatus, QueueName
from leaderboard.models.repository import RepositoryState
from leaderboard.services.dispatcher import (
    Dispatcher,
    commit_job_key,
    identity_job_key,
    partition,
)


def _repo(store, state=RepositoryState.PENDING, emails=()):
    repo, _ = store.get_or_create_repository("https://github.com/owner/repo", "owner__repo")
    if state == RepositoryState.PENDING:
        return repo
    repo = store.transition(repo.id, RepositoryState.COMMITS_PROCESSING)
    if state == RepositoryState.USERS_PROCESSING:
        repo = store.record_extraction(repo.id, [AuthorCommitCount(email=e, count=1) for e in emails])
    return repo


def test_partition() -> None:
    assert partition(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]
    assert partition([], 3) == []
    assert partition(["a"], 0) == [["a"]]


def test_identity_job_key_ignores_order() -> None:
    assert identity_job_key(1, ["b@x", "a@x"]) == identity_job_key(1, ["a@x", "b@x"])
    assert identity_job_key(1, ["a@x"]) != identity_job_key(2, ["a@x"])
    assert identity_job_key(3, ["a@x"]).startswith("users:3:")


def test_commit_job_is_deduplicated_and_carries_token(pipeline, store) -> None:
    repo = _repo(store)
    dispatcher = pipeline.dispatcher

    job, created = dispatcher.enqueue_commit_job(repo, token="user-token")
    again, created_again = dispatcher.enqueue_commit_job(repo)

    assert created is True
    assert created_again is False
    assert again.id == job.id
    assert job.dedup_key == commit_job_key(repo.id)
    assert job.payload == {"repository_id": repo.id, "url": repo.url, "token": "user-token"}
    assert job.max_attempts == 1


def test_identity_batches_split_by_batch_size(pipeline, store, config) -> None:
    dispatcher = Dispatcher(pipeline.queue, dataclasses.replace(config, identity_batch_size=4))
    emails = [f"user{i:02d}@example.com" for i in range(10)]
    repo = _repo(store, RepositoryState.USERS_PROCESSING, emails)

    jobs = dispatcher.enqueue_identity_batches(repo, emails)

    assert [len(job.payload["emails"]) for job in jobs] == [4, 4, 2]
    assert sorted(e for job in jobs for e in job.payload["emails"]) == emails
    assert all(job.queue == QueueName.USERS for job in jobs)
    assert all(job.max_attempts == config.identity_job_max_attempts for job in jobs)
    # Same emails again: nothing new.
    assert dispatcher.enqueue_identity_batches(repo, list(reversed(emails))) == []


def test_redrive_enqueues_missing_commit_jobs(pipeline, store, queue) -> None:
    repo = _repo(store)

    first = pipeline.dispatcher.redrive(store)
    second = pipeline.dispatcher.redrive(store)

    assert len(first.commit_jobs) == 1
    assert second.commit_jobs == []
    assert second.skipped == 1
    assert queue.outstanding(commit_job_key(repo.id)) is not None


def test_redrive_recovers_commit_job_of_dead_worker(pipeline, store, queue) -> None:
    repo = _repo(store, RepositoryState.COMMITS_PROCESSING)

    report = pipeline.dispatcher.redrive(store)

    assert len(report.commit_jobs) == 1
    assert queue.get(report.commit_jobs[0]).payload["repository_id"] == repo.id


def test_redrive_enqueues_unprocessed_emails(pipeline, store, queue) -> None:
    repo = _repo(store, RepositoryState.USERS_PROCESSING, ["a@example.com", "b@example.com"])
    contributor = store.upsert_email_contributor("a@example.com")
    store.link_batch(repo.id, {"a@example.com": contributor.id})

    report = pipeline.dispatcher.redrive(store)

    assert len(report.identity_jobs) == 1
    assert queue.get(report.identity_jobs[0]).payload["emails"] == ["b@example.com"]
    assert pipeline.dispatcher.redrive(store).identity_jobs == []


def test_redrive_completes_fully_linked_repository(pipeline, store, queue) -> None:
    repo = _repo(store, RepositoryState.USERS_PROCESSING, ["a@example.com"])
    contributor = store.upsert_email_contributor("a@example.com")
    store.link_batch(repo.id, {"a@example.com": contributor.id})

    report = pipeline.dispatcher.redrive(store)

    assert report.identity_jobs == []
    assert store.get_repository(repo.id).state == RepositoryState.COMPLETED
    assert queue.list_jobs(statuses=(JobStatus.PENDING,)) == []
