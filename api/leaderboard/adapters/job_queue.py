"""Durable, de-duplicating job queue on top of the pipeline_jobs table.

A job holds ``active_key = dedup_key`` while it is pending or active, so the
unique index on ``active_key`` rejects a second outstanding job with the same
key. Terminal jobs release the key. Claims are leases: a worker that dies
mid-job loses the job once ``lease_expires_at`` passes and another worker can
pick it up (or it fails outright if its attempts are used up).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from leaderboard.adapters.database import Database, PipelineJobRecord, aware, utc_now
from leaderboard.models.job import Job, JobStatus, QueueName, QueueStats

logger = logging.getLogger(__name__)

_CLAIM_CANDIDATES = 5
_SECRET_KEYS = ("token",)
_MAX_BACKOFF_SECONDS = 3600.0


def _job(row: PipelineJobRecord) -> Job:
    try:
        payload = json.loads(row.payload_json or "{}")
    except ValueError:
        payload = {}
    return Job(
        id=row.id,
        queue=QueueName(row.queue),
        dedup_key=row.dedup_key,
        status=JobStatus(row.status),
        payload=payload if isinstance(payload, dict) else {},
        attempts=int(row.attempts),
        max_attempts=int(row.max_attempts),
        available_at=aware(row.available_at),
        claimed_by=row.claimed_by,
        lease_expires_at=aware(row.lease_expires_at),
        last_error=row.last_error,
        created_at=aware(row.created_at),
        updated_at=aware(row.updated_at),
    )


def _without_secrets(payload_json: str | None) -> str:
    """Drop credentials from a payload once its job can no longer run."""
    try:
        payload = json.loads(payload_json or "{}")
    except ValueError:
        return "{}"
    if not isinstance(payload, dict):
        return "{}"
    return json.dumps({key: value for key, value in payload.items() if key not in _SECRET_KEYS})


def backoff_delay(attempts: int, base_seconds: float) -> float:
    """Exponential backoff: base, 2*base, 4*base, ... capped at one hour."""
    exponent = max(0, int(attempts) - 1)
    return min(_MAX_BACKOFF_SECONDS, float(base_seconds) * (2**exponent))


class SqlJobQueue:
    def __init__(self, database: Database | str) -> None:
        self.db = database if isinstance(database, Database) else Database(database)

    def create_schema(self) -> None:
        self.db.create_schema()

    def enqueue(
        self,
        queue: QueueName,
        dedup_key: str,
        payload: dict[str, Any],
        *,
        max_attempts: int = 1,
        available_at: datetime | None = None,
    ) -> tuple[Job, bool]:
        """Add a job unless one with the same key is already outstanding.

        Returns ``(job, created)``; when ``created`` is False the job is the
        existing outstanding one.
        """
        for _ in range(3):
            now = utc_now()
            try:
                with self.db.session() as session:
                    row = PipelineJobRecord(
                        queue=queue.value,
                        dedup_key=dedup_key,
                        active_key=dedup_key,
                        status=JobStatus.PENDING.value,
                        payload_json=json.dumps(payload or {}),
                        attempts=0,
                        max_attempts=max(1, int(max_attempts)),
                        available_at=available_at or now,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(row)
                    session.flush()
                    logger.info("enqueued %s job %s (%s)", queue.value, row.id, dedup_key)
                    return _job(row), True
            except IntegrityError:
                existing = self.outstanding(dedup_key)
                if existing is not None:
                    logger.debug("job %s already outstanding as %s", dedup_key, existing.id)
                    return existing, False
                # The outstanding job went terminal between our insert and lookup.
        raise RuntimeError(f"could not enqueue job {dedup_key}")

    def outstanding(self, dedup_key: str) -> Optional[Job]:
        with self.db.session() as session:
            row = session.execute(
                select(PipelineJobRecord).where(PipelineJobRecord.active_key == dedup_key)
            ).scalar_one_or_none()
            return _job(row) if row is not None else None

    def has_outstanding(self, dedup_key: str | None = None, *, prefix: str | None = None) -> bool:
        if dedup_key is None and prefix is None:
            raise ValueError("dedup_key or prefix is required")
        with self.db.session() as session:
            stmt = select(func.count(PipelineJobRecord.id))
            if dedup_key is not None:
                stmt = stmt.where(PipelineJobRecord.active_key == dedup_key)
            else:
                stmt = stmt.where(PipelineJobRecord.active_key.like(f"{prefix}%"))
            return int(session.execute(stmt).scalar_one()) > 0

    def get(self, job_id: int) -> Optional[Job]:
        with self.db.session() as session:
            row = session.get(PipelineJobRecord, job_id)
            return _job(row) if row is not None else None

    def expire_leases(self, *, now: datetime | None = None) -> int:
        """Return expired active jobs to pending, or fail them when out of attempts."""
        now = now or utc_now()
        expired = and_(
            PipelineJobRecord.status == JobStatus.ACTIVE.value,
            PipelineJobRecord.lease_expires_at < now,
        )
        with self.db.session() as session:
            retried = session.execute(
                update(PipelineJobRecord)
                .where(expired, PipelineJobRecord.attempts < PipelineJobRecord.max_attempts)
                .values(
                    status=JobStatus.PENDING.value,
                    claimed_by=None,
                    lease_expires_at=None,
                    available_at=now,
                    last_error="lease expired",
                    updated_at=now,
                )
            ).rowcount
            exhausted_rows = session.execute(
                select(PipelineJobRecord).where(
                    expired, PipelineJobRecord.attempts >= PipelineJobRecord.max_attempts
                )
            ).scalars().all()
            for row in exhausted_rows:
                row.status = JobStatus.FAILED.value
                row.active_key = None
                row.claimed_by = None
                row.lease_expires_at = None
                row.last_error = "lease expired"
                row.payload_json = _without_secrets(row.payload_json)
                row.updated_at = now
            exhausted = len(exhausted_rows)
        total = int(retried or 0) + int(exhausted or 0)
        if total:
            logger.warning("expired %d job lease(s): %d retried, %d failed", total, retried, exhausted)
        return total

    def claim(self, queue: QueueName, worker_id: str, *, lease_seconds: int) -> Optional[Job]:
        """Lease the oldest available job in ``queue`` to ``worker_id``."""
        now = utc_now()
        self.expire_leases(now=now)
        lease_expires_at = now + timedelta(seconds=max(1, int(lease_seconds)))
        with self.db.session() as session:
            candidates = session.execute(
                select(PipelineJobRecord.id)
                .where(
                    PipelineJobRecord.queue == queue.value,
                    PipelineJobRecord.status == JobStatus.PENDING.value,
                    PipelineJobRecord.available_at <= now,
                )
                .order_by(PipelineJobRecord.available_at, PipelineJobRecord.id)
                .limit(_CLAIM_CANDIDATES)
            ).scalars().all()
            for job_id in candidates:
                # Conditional update: only one worker wins a given pending row.
                claimed = session.execute(
                    update(PipelineJobRecord)
                    .where(
                        PipelineJobRecord.id == job_id,
                        PipelineJobRecord.status == JobStatus.PENDING.value,
                    )
                    .values(
                        status=JobStatus.ACTIVE.value,
                        claimed_by=worker_id,
                        lease_expires_at=lease_expires_at,
                        attempts=PipelineJobRecord.attempts + 1,
                        updated_at=now,
                    )
                ).rowcount
                if claimed == 1:
                    row = session.get(PipelineJobRecord, job_id, populate_existing=True)
                    return _job(row)
        return None

    def _owned(self, job_id: int, worker_id: str):
        return and_(
            PipelineJobRecord.id == job_id,
            PipelineJobRecord.status == JobStatus.ACTIVE.value,
            PipelineJobRecord.claimed_by == worker_id,
        )

    def complete(self, job_id: int, worker_id: str, result: dict[str, Any] | None = None) -> bool:
        now = utc_now()
        with self.db.session() as session:
            payload_json = session.execute(
                select(PipelineJobRecord.payload_json).where(PipelineJobRecord.id == job_id)
            ).scalar_one_or_none()
            done = session.execute(
                update(PipelineJobRecord)
                .where(self._owned(job_id, worker_id))
                .values(
                    status=JobStatus.COMPLETED.value,
                    active_key=None,
                    lease_expires_at=None,
                    payload_json=_without_secrets(payload_json),
                    result_json=json.dumps(result or {}),
                    updated_at=now,
                )
            ).rowcount
        if done != 1:
            logger.warning("job %s: lease_owned_by_other_worker, completion by %s ignored", job_id, worker_id)
            return False
        return True

    def fail(
        self,
        job_id: int,
        worker_id: str,
        error: str,
        *,
        retryable: bool,
        backoff_base: float = 0.0,
    ) -> Optional[Job]:
        """Record a failed attempt; reschedule with backoff while attempts remain."""
        now = utc_now()
        with self.db.session() as session:
            row = session.execute(
                select(PipelineJobRecord).where(self._owned(job_id, worker_id))
            ).scalar_one_or_none()
            if row is None:
                logger.warning("job %s: lease_owned_by_other_worker, failure from %s ignored", job_id, worker_id)
                return None
            row.last_error = (error or "")[:2000]
            row.claimed_by = None
            row.lease_expires_at = None
            row.updated_at = now
            if retryable and row.attempts < row.max_attempts:
                row.status = JobStatus.PENDING.value
                row.available_at = now + timedelta(seconds=backoff_delay(row.attempts, backoff_base))
                logger.info(
                    "job %s retry %d/%d scheduled at %s", row.id, row.attempts, row.max_attempts, row.available_at
                )
            else:
                row.status = JobStatus.FAILED.value
                row.active_key = None
                row.payload_json = _without_secrets(row.payload_json)
                logger.warning("job %s failed permanently after %d attempt(s): %s", row.id, row.attempts, error)
            session.flush()
            return _job(row)

    def list_jobs(
        self,
        queue: QueueName | None = None,
        *,
        statuses: tuple[JobStatus, ...] | None = None,
        limit: int = 50,
    ) -> list[Job]:
        with self.db.session() as session:
            stmt = select(PipelineJobRecord).order_by(PipelineJobRecord.id.desc())
            if queue is not None:
                stmt = stmt.where(PipelineJobRecord.queue == queue.value)
            if statuses:
                stmt = stmt.where(or_(*(PipelineJobRecord.status == s.value for s in statuses)))
            rows = session.execute(stmt.limit(limit)).scalars().all()
            return [_job(row) for row in rows]

    def stats(self, queue: QueueName) -> QueueStats:
        now = utc_now()
        with self.db.session() as session:
            counts = dict(
                session.execute(
                    select(PipelineJobRecord.status, func.count(PipelineJobRecord.id))
                    .where(PipelineJobRecord.queue == queue.value)
                    .group_by(PipelineJobRecord.status)
                ).all()
            )
            expired = session.execute(
                select(func.count(PipelineJobRecord.id)).where(
                    PipelineJobRecord.queue == queue.value,
                    PipelineJobRecord.status == JobStatus.ACTIVE.value,
                    PipelineJobRecord.lease_expires_at < now,
                )
            ).scalar_one()
        return QueueStats(
            queue=queue,
            pending=int(counts.get(JobStatus.PENDING.value, 0)),
            active=int(counts.get(JobStatus.ACTIVE.value, 0)),
            completed=int(counts.get(JobStatus.COMPLETED.value, 0)),
            failed=int(counts.get(JobStatus.FAILED.value, 0)),
            expired_leases=int(expired or 0),
        )
