#!/usr/bin/env python3
"""Run People Hub scheduled jobs from the command line.

Usage:
    python scripts/run_jobs.py --list
    python scripts/run_jobs.py trial-expiration-emails
    python scripts/run_jobs.py document-expiry trial-expiration-emails
    python scripts/run_jobs.py --all

Exit codes:
    0 = every job ran without errors
    1 = a job raised or reported errors
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from backend.common.logging_utils import configure_logging  # noqa: E402
from backend.config import settings  # noqa: E402
from backend.database import session_scope  # noqa: E402
from backend.jobs.registry import JOBS  # noqa: E402

logger = logging.getLogger("run_jobs")


async def run(names: list[str]) -> int:
    failures = 0
    for name in names:
        try:
            async with session_scope() as db:
                result = await JOBS[name](db)
        except Exception:
            logger.exception("Job %s failed", name)
            failures += 1
            continue
        payload = result.model_dump()
        print(json.dumps({"job": name, "result": payload}, default=str))
        if payload.get("errors"):
            failures += 1
    return failures


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run People Hub scheduled jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("jobs", nargs="*", help="Job names to run, in order")
    parser.add_argument("--all", action="store_true", help="Run every registered job")
    parser.add_argument("--list", action="store_true", help="List job names and exit")
    args = parser.parse_args()

    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    if args.list:
        for name in sorted(JOBS):
            print(name)
        return

    names = sorted(JOBS) if args.all else args.jobs
    unknown = [n for n in names if n not in JOBS]
    if unknown or not names:
        parser.error(f"unknown or missing job name(s): {', '.join(unknown) or '-'}; use --list")

    sys.exit(1 if asyncio.run(run(names)) else 0)


if __name__ == "__main__":
    main()
