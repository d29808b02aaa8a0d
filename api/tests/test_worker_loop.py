from __future__ import annotations

from leaderboard.errors import IdentityLookupFailed, RepositoryNotFoundError
from leaderboard.models.job import JobStatus, QueueName
from leaderboard.services.worker_loop import WorkerLoop, default_worker_id


def _loop(queue, config, handler, **kwargs) -> WorkerLoop:
    return WorkerLoop(QueueName.USERS, handler, queue, "w1", config, **kwargs)


def test_default_worker_ids_are_unique() -> None:
    assert default_worker_id() != default_worker_id()


def test_successful_job_is_completed(queue, config) -> None:
    job, _ = queue.enqueue(QueueName.USERS, "users:1:a", {"n": 1})
    seen = []

    processed = _loop(queue, config, lambda j: seen.append(j.payload) or {"ok": True}).run_once()

    assert processed.id == job.id
    assert seen == [{"n": 1}]
    assert queue.get(job.id).status == JobStatus.COMPLETED


def test_empty_queue_returns_none(queue, config) -> None:
    assert _loop(queue, config, lambda j: {}).run_once() is None


def test_retryable_pipeline_error_reschedules(queue, config) -> None:
    job, _ = queue.enqueue(QueueName.USERS, "users:1:a", {}, max_attempts=3)

    def handler(_job):
        raise IdentityLookupFailed("2 identity lookup(s) failed in batch")

    _loop(queue, config, handler).run_once()

    retried = queue.get(job.id)
    assert retried.status == JobStatus.PENDING
    assert retried.last_error == "identity_lookup_failed: 2 identity lookup(s) failed in batch"


def test_terminal_pipeline_error_fails_job(queue, config) -> None:
    job, _ = queue.enqueue(QueueName.USERS, "users:1:a", {}, max_attempts=3)

    def handler(_job):
        raise RepositoryNotFoundError("repository not found")

    _loop(queue, config, handler).run_once()

    assert queue.get(job.id).status == JobStatus.FAILED


def test_unexpected_error_is_retried_until_attempts_run_out(queue, config) -> None:
    job, _ = queue.enqueue(QueueName.USERS, "users:1:a", {}, max_attempts=2)

    def handler(_job):
        raise KeyError("emails")

    loop = _loop(queue, config, handler)
    loop.run_once()
    assert queue.get(job.id).status == JobStatus.PENDING
    loop.run_once()

    failed = queue.get(job.id)
    assert failed.status == JobStatus.FAILED
    assert failed.last_error.startswith("KeyError")


def test_run_stops_when_idle_or_at_max_jobs(queue, config) -> None:
    for i in range(3):
        queue.enqueue(QueueName.USERS, f"users:1:{i}", {})
    sleeps = []

    loop = _loop(queue, config, lambda j: {}, sleep=sleeps.append)
    assert loop.run(max_jobs=2) == 2
    assert loop.run(stop_when_idle=True) == 1
    assert sleeps == []
