"""
Reconciliation: re-derive a customer's membership_type / next_payment from fresh
Square facts and persist them as one complete replacement.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from utils.customer_directory import upsert_customer, upsert_from_square
from utils.membership import Coverage, MembershipPolicy, resolve_coverage, utc_now
from utils.system_log import create_system_log, log_upstream_failure

logger = logging.getLogger(__name__)


def record_upstream_errors(db: Session, coverage: Coverage, customer_id: str, system_status=None):
    """Write one system_error entry per failed lookup (flushed, not committed)."""
    for operation, error in coverage.upstream_errors:
        log_upstream_failure(db, operation, error, {"customerId": customer_id},
                             system_status=system_status, commit=False)
    if not coverage.upstream_errors and system_status is not None:
        system_status.mark_connected()


def should_persist(coverage: Coverage) -> bool:
    # Never overwrite stored facts with a verdict built from missing data
    return coverage.valid or not coverage.upstream_errors


def reconcile_customer(
    db: Session,
    source,
    customer_id: str,
    policy: MembershipPolicy,
    now: Optional[datetime] = None,
    system_status=None,
    commit: bool = True
) -> Coverage:
    coverage = resolve_coverage(source, customer_id, policy, now)
    record_upstream_errors(db, coverage, customer_id, system_status)
    if should_persist(coverage):
        upsert_customer(db, customer_id, coverage=coverage, commit=False)
    if commit:
        db.commit()
    return coverage


def sync_customers(
    db: Session,
    source,
    policy: MembershipPolicy,
    now: Optional[datetime] = None,
    system_status=None,
    max_workers: int = 4
) -> Dict[str, Any]:
    """
    Reconcile every Square customer into the local directory. Upstream lookups run
    on a bounded thread pool; database writes stay on the calling thread.
    """
    now = now or utc_now()
    results = {"synced": 0, "skipped": 0, "errors": []}

    listing = source.list_customers()
    if not listing.success:
        log_upstream_failure(db, "customer list", listing.error, system_status=system_status)
        results["errors"].append({"error": listing.error})
        return results

    customers = [c for c in listing.value if c.get("id")]
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        coverages = list(pool.map(
            lambda c: guarded_coverage(source, c["id"], policy, now), customers
        ))

    for square_customer, coverage in zip(customers, coverages):
        customer_id = square_customer["id"]
        if isinstance(coverage, Exception):
            logger.error(f"Error reconciling customer {customer_id}: {str(coverage)}")
            results["skipped"] += 1
            results["errors"].append({"customer_id": customer_id, "error": str(coverage)})
            continue
        try:
            record_upstream_errors(db, coverage, customer_id, system_status)
            upsert_from_square(db, square_customer, coverage if should_persist(coverage) else None, commit=False)
            db.commit()
            results["synced"] += 1
        except Exception as e:
            db.rollback()
            logger.error(f"Error storing customer {customer_id}: {str(e)}")
            results["skipped"] += 1
            results["errors"].append({"customer_id": customer_id, "error": str(e)})

    logger.info(f"Customer sync complete: {results['synced']} synced, {results['skipped']} skipped")
    create_system_log(
        db,
        f"Synced {results['synced']} customers from Square ({results['skipped']} skipped)",
        "customer_sync",
        severity="warning" if results["skipped"] else "info",
        details={"synced": results["synced"], "skipped": results["skipped"]}
    )
    return results


def guarded_coverage(source, customer_id: str, policy: MembershipPolicy, now: datetime):
    """resolve_coverage for worker threads: hand back the exception instead of raising it."""
    try:
        return resolve_coverage(source, customer_id, policy, now)
    except Exception as e:
        return e
