"""
Customer Directory

Maps normalized phone numbers to customer identities. Identities are keyed by
the Square customer ID and are only ever created or updated, never deleted.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.customer import Customer
from models.check_in import CheckIn
from utils.membership import Coverage, MembershipType, utc_now
from utils.phone import normalize_phone
from utils.square_client import customer_display_name
from utils.system_log import log_upstream_failure

logger = logging.getLogger(__name__)


def get_customer_by_id(db: Session, customer_id: str) -> Optional[Customer]:
    return db.query(Customer).filter(Customer.id == customer_id).first()


def get_customer_by_phone(db: Session, phone_number: str) -> Optional[Customer]:
    if not phone_number:
        return None
    return db.query(Customer).filter(Customer.phone_number == phone_number).first()


def _insert_customer(db: Session, customer_id: str) -> Customer:
    """Insert a bare directory entry, or return the one a concurrent writer just stored."""
    customer = Customer(id=customer_id, name="", membership_type=MembershipType.UNKNOWN.value)
    try:
        with db.begin_nested():
            db.add(customer)
            db.flush()
        return customer
    except IntegrityError:
        existing = get_customer_by_id(db, customer_id)
        if existing is None:
            raise
        logger.info(f"Customer {customer_id} was created concurrently; updating it instead")
        return existing


def upsert_customer(
    db: Session,
    customer_id: str,
    name: Optional[str] = None,
    phone_number: Optional[str] = None,
    coverage: Optional[Coverage] = None,
    commit: bool = True
) -> Customer:
    """
    Create or update the customer keyed by id. Fields left as None keep their
    stored value; coverage replaces membership_type and next_payment together.
    """
    customer = get_customer_by_id(db, customer_id)
    if customer is None:
        customer = _insert_customer(db, customer_id)

    if name is not None:
        customer.name = name
    if phone_number is not None:
        normalized = normalize_phone(phone_number) or None
        if normalized:
            # A phone number belongs to one customer; the latest owner keeps it
            for other in db.query(Customer).filter(Customer.phone_number == normalized,
                                                   Customer.id != customer_id).all():
                logger.warning(f"Phone {normalized} moved from customer {other.id} to {customer_id}")
                other.phone_number = None
            db.flush()
        customer.phone_number = normalized
    if coverage is not None:
        customer.membership_type = coverage.membership_type.value
        customer.next_payment = coverage.next_payment

    if commit:
        db.commit()
        db.refresh(customer)
    else:
        db.flush()
    return customer


def upsert_from_square(db: Session, square_customer: Dict[str, Any], coverage: Optional[Coverage] = None,
                       commit: bool = True) -> Customer:
    return upsert_customer(
        db,
        square_customer["id"],
        name=customer_display_name(square_customer),
        phone_number=square_customer.get("phone_number") or "",
        coverage=coverage,
        commit=commit
    )


def resolve_by_phone(db: Session, phone_number: str, source=None, system_status=None) -> Optional[Customer]:
    """
    Exact-match lookup on the normalized phone number. On a local miss, and when a
    payment source is given, the customer is looked up in Square and stored locally.
    """
    customer = get_customer_by_phone(db, phone_number)
    if customer is not None or source is None:
        return customer

    result = source.search_customer_by_phone(phone_number)
    if not result.success:
        log_upstream_failure(db, "customer search", result.error, {"phoneNumber": phone_number},
                             system_status=system_status)
        return None
    if system_status is not None:
        system_status.mark_connected()
    if not result.value:
        return None

    logger.info(f"Creating local customer {result.value['id']} from Square")
    return upsert_from_square(db, result.value)


def list_customers(db: Session, page: int = 1, limit: int = 50) -> Dict[str, Any]:
    total = db.query(func.count(Customer.id)).scalar()
    rows = (
        db.query(Customer, func.count(CheckIn.id))
        .outerjoin(CheckIn, CheckIn.customer_id == Customer.id)
        .group_by(Customer.id)
        .order_by(Customer.name.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "customers": [serialize_customer(c, check_in_count=n) for c, n in rows],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": (total + limit - 1) // limit
        }
    }


def search_customers(db: Session, query: str, limit: int = 20) -> List[Dict[str, Any]]:
    pattern = f"%{query}%"
    rows = (
        db.query(Customer, func.count(CheckIn.id))
        .outerjoin(CheckIn, CheckIn.customer_id == Customer.id)
        .filter(or_(Customer.name.ilike(pattern), Customer.phone_number.like(pattern)))
        .group_by(Customer.id)
        .order_by(Customer.name.asc())
        .limit(limit)
        .all()
    )
    return [serialize_customer(c, check_in_count=n) for c, n in rows]


def get_customer_stats(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utc_now()
    thirty_days_ago = now - timedelta(days=30)

    total = db.query(func.count(Customer.id)).scalar()
    active = (
        db.query(func.count(func.distinct(CheckIn.customer_id)))
        .filter(CheckIn.check_in_time >= thirty_days_ago)
        .scalar()
    )
    by_type = (
        db.query(Customer.membership_type, func.count(Customer.id))
        .group_by(Customer.membership_type)
        .all()
    )
    return {
        "totalCustomers": total,
        "activeCustomers": active,
        "membershipTypes": [
            {"type": membership_type or MembershipType.UNKNOWN.value, "count": count}
            for membership_type, count in by_type
        ]
    }


def serialize_customer(customer: Customer, check_in_count: Optional[int] = None) -> Dict[str, Any]:
    data = {
        "id": customer.id,
        "name": customer.name,
        "phoneNumber": customer.phone_number,
        "membershipType": customer.membership_type,
        "nextPayment": customer.next_payment.isoformat() if customer.next_payment else None
    }
    if check_in_count is not None:
        data["checkInCount"] = check_in_count
    return data
