#!/usr/bin/env python3
"""Re-enqueue work for repositories that are stuck without an outstanding job.

Usage:
  python scripts/redrive_pipeline.py [--delay-minutes N] [--json]

- pending / commits_processing repositories without a commit job get one
- users_processing repositories without identity jobs get batches for their
  unprocessed emails, optionally delayed (e.g. until a rate limit resets)
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os
import sys
from datetime import datetime, timedelta, timezone

_api_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _api_dir)

from dotenv import load_dotenv

load_dotenv(os.path.join(_api_dir, ".env"))

from leaderboard.services.pipeline import build_pipeline


def main() -> int:
    ap = argparse.ArgumentParser(description="Re-drive stuck repositories.")
    ap.add_argument("--delay-minutes", type=float, default=0.0, help="Schedule identity batches this far ahead")
    ap.add_argument("--limit", type=int, default=1000, help="Max repositories per state")
    ap.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    pipeline = build_pipeline()
    pipeline.create_schema()
    pipeline.queue.expire_leases()
    not_before = None
    if args.delay_minutes > 0:
        not_before = datetime.now(timezone.utc) + timedelta(minutes=args.delay_minutes)
    report = pipeline.dispatcher.redrive(pipeline.store, not_before=not_before, limit=args.limit)

    if args.json:
        print(json.dumps(dataclasses.asdict(report), indent=2))
    else:
        print(f"commit jobs enqueued:   {len(report.commit_jobs)}")
        print(f"identity jobs enqueued: {len(report.identity_jobs)}")
        print(f"already queued:         {report.skipped}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
