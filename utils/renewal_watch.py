"""
Renewal Watch

Report of customers whose coverage is expired or runs out within the renewal
horizon, built from fresh Square facts for every known customer with a phone
number. Customers whose lookups fail are skipped, never the whole report.
"""
import os
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, List, Dict, Any

from sqlalchemy.orm import Session

from models.customer import Customer
from utils.membership import (
    MembershipPolicy, MembershipType, cash_coverage_end, latest_valid_cash_payment,
    select_subscription, utc_now
)
from utils.system_log import create_system_log, log_error, log_upstream_failure

logger = logging.getLogger(__name__)

RENEWAL_HORIZON_DAYS = int(os.getenv("RENEWAL_HORIZON_DAYS", "5"))
RENEWAL_MAX_WORKERS = int(os.getenv("RENEWAL_MAX_WORKERS", "4"))

EXPIRED = "Expired"
EXPIRING_SOON = "Expiring Soon"
STATUS_PRIORITY = {EXPIRED: 0, EXPIRING_SOON: 1}


class RenewalLookupError(Exception):
    def __init__(self, operation: str, error: str):
        super().__init__(f"{operation} lookup failed: {error}")
        self.operation = operation
        self.error = error


@dataclass
class Projection:
    membership_type: MembershipType
    expiry: Optional[date]  # None: no coverage at all


def classify(days_until_expiry: int, horizon: int = RENEWAL_HORIZON_DAYS) -> Optional[str]:
    if days_until_expiry < 0:
        return EXPIRED
    if days_until_expiry <= horizon:
        return EXPIRING_SOON
    return None


def initials_for(name: str) -> str:
    initials = "".join(part[0] for part in (name or "").split() if part)[:2].upper()
    return initials or "UN"


def project_expiry(source, customer_id: str, policy: MembershipPolicy, now: datetime) -> Projection:
    """Subscription expiry if one exists, else latest valid cash payment + lookback, else none."""
    subs = source.fetch_subscriptions(customer_id)
    if not subs.success:
        raise RenewalLookupError("subscription", subs.error)
    subscription = select_subscription(subs.value)
    if subscription is not None and subscription.charged_through_date is not None:
        return Projection(MembershipType.SUBSCRIPTION, subscription.charged_through_date)

    payments = source.fetch_recent_payments(customer_id, policy.lookback_start(now))
    if not payments.success:
        raise RenewalLookupError("payment", payments.error)
    payment = latest_valid_cash_payment(payments.value, policy, now)
    if payment is not None:
        return Projection(MembershipType.CASH, cash_coverage_end(payment, policy))
    return Projection(MembershipType.UNKNOWN, None)


def _project_safely(source, customer_id: str, policy: MembershipPolicy, now: datetime):
    try:
        return project_expiry(source, customer_id, policy, now)
    except Exception as e:
        return e


def get_members_needing_renewal(
    db: Session,
    source,
    policy: Optional[MembershipPolicy] = None,
    now: Optional[datetime] = None,
    horizon: int = RENEWAL_HORIZON_DAYS,
    max_workers: int = RENEWAL_MAX_WORKERS,
    system_status=None
) -> Dict[str, Any]:
    policy = policy or MembershipPolicy.from_env()
    now = now or utc_now()
    today = now.date()

    customers: List[Customer] = (
        db.query(Customer).filter(Customer.phone_number.isnot(None)).order_by(Customer.name).all()
    )
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        projections = list(pool.map(lambda c: _project_safely(source, c.id, policy, now), customers))

    members = []
    skipped = 0
    for customer, projection in zip(customers, projections):
        if isinstance(projection, Exception):
            skipped += 1
            logger.error(f"Error checking renewal status for customer {customer.id}: {str(projection)}")
            if isinstance(projection, RenewalLookupError):
                log_upstream_failure(db, projection.operation, projection.error, {"customerId": customer.id},
                                     system_status=system_status, commit=False)
            else:
                log_error(db, projection, details={"customerId": customer.id}, commit=False)
            continue

        if projection.expiry is None:
            status, expiry, days = EXPIRED, today, None
        else:
            expiry = projection.expiry
            days = (expiry - today).days
            status = classify(days, horizon)
            if status is None:
                continue

        members.append({
            "id": customer.id,
            "name": customer.name,
            "phoneNumber": customer.phone_number,
            "membershipType": projection.membership_type.value,
            "expiryDate": expiry.isoformat(),
            "daysUntilExpiry": days,
            "status": status,
            "initials": initials_for(customer.name)
        })

    # Stable sort keeps name order within each status
    members.sort(key=lambda m: STATUS_PRIORITY[m["status"]])

    create_system_log(
        db,
        f"Renewal watch found {len(members)} members needing renewal ({skipped} skipped)",
        "renewal_watch",
        severity="warning" if skipped else "info",
        details={"count": len(members), "skipped": skipped, "checked": len(customers)},
        commit=False
    )
    db.commit()
    return {"count": len(members), "members": members}
