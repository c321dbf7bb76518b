#!/usr/bin/env python
"""
Sync Customers

Standalone script that reconciles every Square customer into the local
directory (membership type + next payment). Can be run via cron.

Usage:
    python scripts/sync_customers.py [--workers N]
"""
import sys
import os
import logging
import argparse

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from db.init import SessionLocal, init_db
from utils.membership import MembershipPolicy
from utils.reconciliation import sync_customers
from utils.renewal_watch import RENEWAL_MAX_WORKERS
from utils.square_client import SquarePaymentSource

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description='Reconcile Square customers into the local database')
    parser.add_argument('--workers', type=int, default=RENEWAL_MAX_WORKERS, help='Concurrent Square lookups')
    args = parser.parse_args()

    init_db()
    db = SessionLocal()
    try:
        results = sync_customers(db, SquarePaymentSource(), MembershipPolicy.from_env(), max_workers=args.workers)
    finally:
        db.close()

    logger.info(f"Customers synced:  {results['synced']}")
    logger.info(f"Customers skipped: {results['skipped']}")
    for err in results['errors']:
        logger.error(f"  - {err}")

    return 0 if not results['errors'] else 1


if __name__ == "__main__":
    sys.exit(main())
