"""Claim -> handle -> ack loop shared by the commit and identity workers."""

from __future__ import annotations

import logging
import os
import socket
import time
import uuid
from typing import Any, Callable, Optional

from leaderboard.adapters.job_queue import SqlJobQueue
from leaderboard.config import LeaderboardConfig
from leaderboard.errors import PipelineError
from leaderboard.models.job import Job, QueueName

logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], dict[str, Any]]


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class WorkerLoop:
    def __init__(
        self,
        queue_name: QueueName,
        handler: JobHandler,
        queue: SqlJobQueue,
        worker_id: str | None = None,
        config: LeaderboardConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.queue_name = queue_name
        self.handler = handler
        self.queue = queue
        self.worker_id = worker_id or default_worker_id()
        self.config = config or LeaderboardConfig()
        self._sleep = sleep

    def run_once(self) -> Optional[Job]:
        """Process at most one job. Returns the claimed job, or None when the queue was empty."""
        job = self.queue.claim(self.queue_name, self.worker_id, lease_seconds=self.config.lease_seconds)
        if job is None:
            return None
        logger.info(
            "%s claimed %s job %s (attempt %d/%d)",
            self.worker_id,
            self.queue_name.value,
            job.id,
            job.attempts,
            job.max_attempts,
        )
        try:
            result = self.handler(job)
        except PipelineError as exc:
            self.queue.fail(
                job.id,
                self.worker_id,
                f"{exc.kind}: {exc.reason}",
                retryable=exc.retryable,
                backoff_base=self.config.identity_retry_base_seconds,
            )
            return job
        except Exception as exc:
            logger.exception("%s job %s crashed", self.queue_name.value, job.id)
            self.queue.fail(
                job.id,
                self.worker_id,
                f"{type(exc).__name__}: {exc}",
                retryable=True,
                backoff_base=self.config.identity_retry_base_seconds,
            )
            return job
        self.queue.complete(job.id, self.worker_id, result)
        return job

    def run(self, *, max_jobs: int | None = None, stop_when_idle: bool = False) -> int:
        processed = 0
        while max_jobs is None or processed < max_jobs:
            job = self.run_once()
            if job is None:
                if stop_when_idle:
                    break
                self._sleep(self.config.idle_sleep_seconds)
                continue
            processed += 1
        logger.info("%s stopping after %d job(s)", self.worker_id, processed)
        return processed
