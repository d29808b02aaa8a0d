#!/usr/bin/env python3
"""Queue and repository status at a glance.

Usage:
  python scripts/queue_status.py [--queue commits|users] [--jobs N] [--json]
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from collections import Counter

_api_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _api_dir)

from dotenv import load_dotenv

load_dotenv(os.path.join(_api_dir, ".env"))

from leaderboard.models.job import JobStatus, QueueName
from leaderboard.services.pipeline import build_pipeline


def main() -> int:
    ap = argparse.ArgumentParser(description="Show pipeline queue status.")
    ap.add_argument("--queue", choices=[q.value for q in QueueName], default=None)
    ap.add_argument("--jobs", type=int, default=10, help="Show the N most recent outstanding/failed jobs")
    ap.add_argument("--json", action="store_true")
    args = ap.parse_args()

    pipeline = build_pipeline()
    pipeline.create_schema()
    queues = [QueueName(args.queue)] if args.queue else list(QueueName)
    stats = [pipeline.queue.stats(q) for q in queues]
    states = Counter(r.state.value for r in pipeline.store.list_repositories(limit=100_000))
    jobs = [
        job
        for q in queues
        for job in pipeline.queue.list_jobs(
            q, statuses=(JobStatus.PENDING, JobStatus.ACTIVE, JobStatus.FAILED), limit=args.jobs
        )
    ]

    if args.json:
        print(
            json.dumps(
                {
                    "queues": [s.model_dump(mode="json") for s in stats],
                    "repositories": dict(states),
                    "jobs": [j.model_dump(mode="json", exclude={"payload"}) for j in jobs],
                },
                indent=2,
            )
        )
        return 0

    for s in stats:
        print(
            f"{s.queue.value:8} pending={s.pending} active={s.active} completed={s.completed} "
            f"failed={s.failed} expired_leases={s.expired_leases}"
        )
    print("repositories: " + (", ".join(f"{k}={v}" for k, v in sorted(states.items())) or "none"))
    for job in jobs:
        err = f" error={job.last_error}" if job.last_error else ""
        print(f"  #{job.id} {job.queue.value} {job.status.value} attempts={job.attempts}/{job.max_attempts} {job.dedup_key}{err}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
