#!/usr/bin/env python
"""
Renewal Report

Prints members whose coverage is expired or expiring within the horizon.

Usage:
    python scripts/renewal_report.py [--horizon DAYS] [--workers N]
"""
import sys
import os
import logging
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from db.init import SessionLocal, init_db
from utils.membership import MembershipPolicy
from utils.renewal_watch import get_members_needing_renewal, RENEWAL_HORIZON_DAYS, RENEWAL_MAX_WORKERS
from utils.square_client import SquarePaymentSource

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description='List members needing renewal')
    parser.add_argument('--horizon', type=int, default=RENEWAL_HORIZON_DAYS, help='Days ahead to flag')
    parser.add_argument('--workers', type=int, default=RENEWAL_MAX_WORKERS, help='Concurrent Square lookups')
    args = parser.parse_args()

    init_db()
    db = SessionLocal()
    try:
        report = get_members_needing_renewal(
            db, SquarePaymentSource(), MembershipPolicy.from_env(),
            horizon=args.horizon, max_workers=args.workers
        )
    finally:
        db.close()

    logger.info("=" * 60)
    logger.info(f"MEMBERS NEEDING RENEWAL: {report['count']}")
    logger.info("=" * 60)
    for member in report['members']:
        logger.info(
            f"  [{member['status']}] {member['name'] or member['id']} {member['phoneNumber']} "
            f"- {member['membershipType']} until {member['expiryDate']}"
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
