#!/usr/bin/env python3
"""Run a pipeline worker against one queue.

Usage:
  python scripts/run_worker.py --queue commits [--max-jobs N] [--once] [-v]
  python scripts/run_worker.py --queue users [--concurrency 4]

  --queue commits  Clone/fetch repositories and extract per-email commit counts
  --queue users    Resolve author emails to contributors and build leaderboards
  --once           Exit once the queue is empty instead of polling
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import sys

_api_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _api_dir)

from dotenv import load_dotenv

load_dotenv(os.path.join(_api_dir, ".env"))

from leaderboard.config import LeaderboardConfig
from leaderboard.models.job import QueueName
from leaderboard.services.pipeline import build_pipeline
from leaderboard.services.worker_loop import WorkerLoop

log = logging.getLogger("leaderboard.worker")


def main() -> int:
    ap = argparse.ArgumentParser(description="Run a leaderboard pipeline worker.")
    ap.add_argument("--queue", choices=[q.value for q in QueueName], required=True)
    ap.add_argument("--max-jobs", type=int, default=None, help="Stop after N jobs")
    ap.add_argument("--once", action="store_true", help="Exit when the queue is empty")
    ap.add_argument("--worker-id", default=None)
    ap.add_argument("--concurrency", type=int, default=None, help="Parallel identity lookups (users queue)")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    config = LeaderboardConfig.from_env()
    if args.concurrency is not None:
        config = dataclasses.replace(config, identity_concurrency=max(1, args.concurrency))
    pipeline = build_pipeline(config)
    pipeline.create_schema()

    queue_name = QueueName(args.queue)
    if queue_name == QueueName.COMMITS:
        handler = pipeline.commit_worker().handle
    else:
        handler = pipeline.user_worker().handle

    loop = WorkerLoop(queue_name, handler, pipeline.queue, args.worker_id, config)
    log.info("worker %s listening on %s", loop.worker_id, queue_name.value)
    try:
        loop.run(max_jobs=args.max_jobs, stop_when_idle=args.once)
    except KeyboardInterrupt:
        log.info("interrupted")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
