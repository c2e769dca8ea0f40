"""
Run one notification/reminder processing cycle and exit.

Meant for cron, e.g. every minute:

    * * * * *  cd /srv/carenotify/backend && python process_jobs.py
    0 2 * * *  cd /srv/carenotify/backend && python process_jobs.py --cleanup

Exit status is 0 on success and 1 if the cycle raised.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from config import get_settings
from database import close_db, connect_db
from notifications import build_services

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("process_jobs")


async def run(cleanup: bool = False, days: Optional[int] = None,
              db_path: Optional[str] = None) -> dict:
    """Connect, run a cycle (plus optional cleanup), disconnect.

    Args:
        cleanup: Also delete old finished jobs.
        days: Retention window for cleanup (defaults to JOB_RETENTION_DAYS).
        db_path: Override for the database file.

    Returns:
        Counts: notifications, reminders and (with cleanup) deleted.
    """
    settings = get_settings()
    db = await connect_db(db_path)
    try:
        processor = build_services(db, settings).processor
        counts = await processor.run_cycle()
        if cleanup:
            counts["deleted"] = await processor.cleanup_old_jobs(days or settings.job_retention_days)
    finally:
        await close_db()

    logger.info(f"Cycle finished: {counts}")
    return counts


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Process due notifications and reminders")
    parser.add_argument("--cleanup", action="store_true",
                        help="Also delete finished jobs older than --days")
    parser.add_argument("--days", type=int, default=None,
                        help="Retention window in days for --cleanup (default: JOB_RETENTION_DAYS)")
    parser.add_argument("--db", default=None, help="SQLite database path (default: SQLITE_DB_PATH)")
    args = parser.parse_args(argv)

    if args.days is not None and args.days < 1:
        parser.error("--days must be at least 1")

    try:
        asyncio.run(run(cleanup=args.cleanup, days=args.days, db_path=args.db))
    except Exception as e:
        logger.error(f"Processing cycle failed: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
