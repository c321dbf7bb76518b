"""
Check-In Ledger

Append-only history of admitted check-ins. Rejected attempts never land here;
they only exist in the system log.
"""
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from models.check_in import CheckIn
from models.customer import Customer
from utils.membership import utc_now

logger = logging.getLogger(__name__)

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def record_check_in(
    db: Session,
    customer: Customer,
    membership_type: Optional[str] = None,
    location_id: Optional[str] = None,
    check_in_time: Optional[datetime] = None,
    commit: bool = True
) -> CheckIn:
    """Insert one check-in row with a snapshot of the customer. No de-duplication."""
    check_in = CheckIn(
        customer_id=customer.id,
        customer_name=customer.name,
        phone_number=customer.phone_number,
        membership_type=membership_type or customer.membership_type,
        location_id=location_id,
        check_in_time=check_in_time or utc_now()
    )
    db.add(check_in)
    if commit:
        db.commit()
        db.refresh(check_in)
    else:
        db.flush()
    return check_in


def list_recent(db: Session, page: int = 1, limit: int = 50) -> Tuple[List[CheckIn], int]:
    total = db.query(func.count(CheckIn.id)).scalar()
    rows = (
        db.query(CheckIn)
        .order_by(CheckIn.check_in_time.desc(), CheckIn.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def list_for_customer(db: Session, customer_id: str, limit: Optional[int] = None) -> List[CheckIn]:
    query = (
        db.query(CheckIn)
        .filter(CheckIn.customer_id == customer_id)
        .order_by(CheckIn.check_in_time.desc(), CheckIn.id.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()


def list_between(db: Session, start: datetime, end: datetime) -> List[CheckIn]:
    return (
        db.query(CheckIn)
        .filter(CheckIn.check_in_time >= start, CheckIn.check_in_time <= end)
        .order_by(CheckIn.check_in_time.desc())
        .all()
    )


def count_since(db: Session, since: datetime) -> int:
    return db.query(func.count(CheckIn.id)).filter(CheckIn.check_in_time >= since).scalar()


def check_in_stats(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    """Totals for today, this week (weeks start on Sunday) and this month."""
    now = now or utc_now()
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    days_since_sunday = (start_of_day.weekday() + 1) % 7
    start_of_week = start_of_day - timedelta(days=days_since_sunday)
    start_of_month = start_of_day.replace(day=1)

    return {
        "total": db.query(func.count(CheckIn.id)).scalar(),
        "today": count_since(db, start_of_day),
        "thisWeek": count_since(db, start_of_week),
        "thisMonth": count_since(db, start_of_month)
    }


def peak_hours(db: Session, since: datetime) -> List[Dict[str, int]]:
    times = [t for (t,) in db.query(CheckIn.check_in_time).filter(CheckIn.check_in_time >= since).all()]
    counts = Counter(t.hour for t in times)
    return [{"hour": hour, "count": counts.get(hour, 0)} for hour in range(24)]


def by_day_of_week(db: Session, since: datetime) -> List[Dict[str, Any]]:
    times = [t for (t,) in db.query(CheckIn.check_in_time).filter(CheckIn.check_in_time >= since).all()]
    counts = Counter(t.weekday() for t in times)
    return [{"day": name, "count": counts.get(i, 0)} for i, name in enumerate(DAY_NAMES)]


def delete_check_in(db: Session, check_in_id: int) -> bool:
    deleted = db.query(CheckIn).filter(CheckIn.id == check_in_id).delete(synchronize_session=False)
    db.commit()
    return bool(deleted)


def purge_older_than(db: Session, older_than: datetime) -> int:
    """Administrative retention cleanup; never called from the admission path."""
    deleted = db.query(CheckIn).filter(CheckIn.check_in_time < older_than).delete(synchronize_session=False)
    db.commit()
    logger.info(f"Purged {deleted} check-ins older than {older_than.isoformat()}")
    return deleted


def serialize_check_in(check_in: CheckIn) -> Dict[str, Any]:
    return {
        "id": check_in.id,
        "customerId": check_in.customer_id,
        "customerName": check_in.customer_name,
        "phoneNumber": check_in.phone_number,
        "membershipType": check_in.membership_type,
        "locationId": check_in.location_id,
        "checkInTime": check_in.check_in_time.isoformat()
    }
