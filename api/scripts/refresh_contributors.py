#!/usr/bin/env python3
"""Fill in usernames for email-only contributors once the API budget allows it.

Usage:
  python scripts/refresh_contributors.py [--limit N] [--all]

  --all   Include records refreshed within the staleness window
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

_api_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _api_dir)

from dotenv import load_dotenv

load_dotenv(os.path.join(_api_dir, ".env"))

from leaderboard.services.pipeline import build_pipeline
from leaderboard.services.refresh_service import refresh_email_only_contributors

log = logging.getLogger("leaderboard.refresh")


def main() -> int:
    ap = argparse.ArgumentParser(description="Refresh email-only contributors.")
    ap.add_argument("--limit", type=int, default=None)
    ap.add_argument("--all", action="store_true")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    pipeline = build_pipeline()
    if not pipeline.config.github_token:
        log.warning("no GITHUB_TOKEN set; unauthenticated search is heavily rate limited")
    pipeline.create_schema()
    report = refresh_email_only_contributors(
        pipeline.store,
        pipeline.client,
        pipeline.config,
        limit=args.limit,
        include_fresh=args.all,
    )
    print(
        f"refreshed={report.refreshed} unmatched={report.unmatched} failed={report.failed} "
        f"skipped={report.skipped} rate_limited={report.rate_limited}"
    )
    return 1 if report.rate_limited else 0


if __name__ == "__main__":
    raise SystemExit(main())
