#!/usr/bin/env python
"""
Purge old system logs (and optionally check-ins) according to the retention policy.

Usage:
    python scripts/purge_logs.py [--days N] [--check-ins-before YYYY-MM-DD]
"""
import sys
import os
import logging
import argparse
from datetime import datetime, timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from db.init import SessionLocal
from utils.check_in_ledger import purge_older_than
from utils.membership import utc_now
from utils.system_log import create_system_log, purge_old_logs

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description='Apply the log retention policy')
    parser.add_argument('--days', type=int, default=int(os.getenv("LOG_RETENTION_DAYS", "30")),
                        help='Keep logs newer than this many days')
    parser.add_argument('--check-ins-before', type=datetime.fromisoformat, default=None,
                        help='Also delete check-ins older than this date')
    args = parser.parse_args()

    db = SessionLocal()
    try:
        logs_deleted = purge_old_logs(db, utc_now() - timedelta(days=args.days))
        check_ins_deleted = purge_older_than(db, args.check_ins_before) if args.check_ins_before else 0
        create_system_log(
            db,
            f"Retention purge removed {logs_deleted} logs and {check_ins_deleted} check-ins",
            "retention_purge",
            details={"logsDeleted": logs_deleted, "checkInsDeleted": check_ins_deleted, "retentionDays": args.days}
        )
    finally:
        db.close()

    logger.info(f"Logs deleted:     {logs_deleted}")
    logger.info(f"Check-ins deleted: {check_ins_deleted}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
