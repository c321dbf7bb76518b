"""
Admission Decision Engine

Turns one kiosk phone-number submission into a verdict. Every attempt, admitted
or rejected, leaves exactly one check_in / check_in_error entry in the system
log; admitted attempts additionally get a ledger row written in the same
transaction, after the log entry.

Callers never see an exception from process_check_in(): every failure mode
resolves to a CheckInResult.
"""
import os
import logging
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from pydantic import BaseModel
from sqlalchemy.orm import Session

from models.customer import Customer
from utils.check_in_ledger import record_check_in
from utils.customer_directory import resolve_by_phone, upsert_customer
from utils.membership import Coverage, MembershipPolicy, resolve_coverage, stored_coverage, utc_now
from utils.phone import normalize_phone
from utils.reconciliation import record_upstream_errors, should_persist
from utils.system_log import create_system_log, log_error

logger = logging.getLogger(__name__)

ADMISSION_USE_STORED_COVERAGE = os.getenv("ADMISSION_USE_STORED_COVERAGE", "true").strip().lower() in {"1", "true", "yes", "on"}


class RejectReason(str, Enum):
    MISSING_PHONE_NUMBER = "MISSING_PHONE_NUMBER"
    CUSTOMER_NOT_FOUND = "CUSTOMER_NOT_FOUND"
    NO_ACTIVE_MEMBERSHIP = "NO_ACTIVE_MEMBERSHIP"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


SUCCESS_MESSAGE = "Check-in successful! Welcome back."

REJECT_MESSAGES = {
    RejectReason.MISSING_PHONE_NUMBER: "Phone number is required",
    RejectReason.CUSTOMER_NOT_FOUND: "No customer found with this phone number",
    RejectReason.NO_ACTIVE_MEMBERSHIP: "No active membership found",
    RejectReason.UPSTREAM_UNAVAILABLE: "Unable to verify membership right now. Please try again later or contact staff.",
    RejectReason.UNEXPECTED_ERROR: "An unexpected error occurred. Please try again.",
}


class CustomerData(BaseModel):
    id: str
    name: str
    membershipStatus: str
    expirationDate: str
    paymentStatus: str


class CheckInResult(BaseModel):
    success: bool
    message: str
    error: Optional[str] = None
    customerData: Optional[CustomerData] = None


def rejected(reason: RejectReason) -> CheckInResult:
    return CheckInResult(success=False, message=REJECT_MESSAGES[reason], error=reason.value)


def process_check_in(
    db: Session,
    phone_number: Optional[str],
    source,
    system_status,
    policy: Optional[MembershipPolicy] = None,
    now: Optional[datetime] = None,
    location_id: Optional[str] = None,
    use_stored_coverage: Optional[bool] = None
) -> CheckInResult:
    now = now or utc_now()
    normalized = normalize_phone(phone_number or "")
    try:
        if not normalized:
            _log_attempt(db, RejectReason.MISSING_PHONE_NUMBER, "Check-in attempt failed: Missing phone number",
                         {"error": RejectReason.MISSING_PHONE_NUMBER.value}, now)
            system_status.record_check_in("Unknown", False)
            return rejected(RejectReason.MISSING_PHONE_NUMBER)

        if use_stored_coverage is None:
            use_stored_coverage = ADMISSION_USE_STORED_COVERAGE
        return _decide(db, normalized, source, system_status, policy or MembershipPolicy.from_env(),
                       now, location_id, use_stored_coverage)
    except Exception as e:
        logger.exception(f"Unexpected error during check-in for {normalized}")
        db.rollback()
        try:
            log_error(db, e, event_type="check_in_error",
                      details={"phoneNumber": normalized, "error": RejectReason.UNEXPECTED_ERROR.value})
        except Exception:
            logger.exception("Could not record check-in error in the system log")
            db.rollback()
        system_status.record_error(f"Check-in error: {str(e)}", upstream=False)
        return rejected(RejectReason.UNEXPECTED_ERROR)


def _decide(
    db: Session,
    phone_number: str,
    source,
    system_status,
    policy: MembershipPolicy,
    now: datetime,
    location_id: Optional[str],
    use_stored_coverage: bool
) -> CheckInResult:
    customer = resolve_by_phone(db, phone_number, source, system_status)
    if customer is None:
        _log_attempt(db, RejectReason.CUSTOMER_NOT_FOUND, f"Check-in attempt failed: No customer for {phone_number}",
                     {"phoneNumber": phone_number, "error": RejectReason.CUSTOMER_NOT_FOUND.value}, now)
        system_status.record_check_in("Unknown", False)
        return rejected(RejectReason.CUSTOMER_NOT_FOUND)

    coverage = stored_coverage(customer.membership_type, customer.next_payment, now.date())
    if not (use_stored_coverage and coverage.valid):
        coverage = resolve_coverage(source, customer.id, policy, now)
        record_upstream_errors(db, coverage, customer.id, system_status)
        if not coverage.facts_available:
            return _reject_customer(db, customer, RejectReason.UPSTREAM_UNAVAILABLE, now, system_status)
        if should_persist(coverage):
            upsert_customer(db, customer.id, coverage=coverage, commit=False)

    if not coverage.valid or coverage.next_payment < now.date():
        return _reject_customer(db, customer, RejectReason.NO_ACTIVE_MEMBERSHIP, now, system_status)

    return _admit(db, customer, coverage, now, location_id, system_status)


def _admit(db: Session, customer: Customer, coverage: Coverage, now: datetime,
           location_id: Optional[str], system_status) -> CheckInResult:
    details = {
        "customerId": customer.id,
        "phoneNumber": customer.phone_number,
        "membershipType": coverage.membership_type.value,
        "nextPayment": coverage.next_payment.isoformat()
    }
    entry = create_system_log(db, f"Check-in successful for {customer.name or customer.id}", "check_in",
                              severity="info", details=details, timestamp=now, commit=False)
    check_in = record_check_in(db, customer, membership_type=coverage.membership_type.value,
                               location_id=location_id, check_in_time=now, commit=False)
    entry.details = {**details, "checkInId": check_in.id}
    db.commit()

    logger.info(f"Admitted {customer.id} via {coverage.membership_type.value} (through {coverage.next_payment})")
    system_status.record_check_in(customer.name, True)
    return CheckInResult(
        success=True,
        message=SUCCESS_MESSAGE,
        customerData=CustomerData(
            id=customer.id,
            name=customer.name or "",
            membershipStatus="Active",
            expirationDate=coverage.next_payment.isoformat(),
            paymentStatus=coverage.payment_status
        )
    )


def _reject_customer(db: Session, customer: Customer, reason: RejectReason, now: datetime,
                     system_status) -> CheckInResult:
    _log_attempt(
        db, reason, f"Check-in rejected for {customer.name or customer.id}: {REJECT_MESSAGES[reason]}",
        {"customerId": customer.id, "phoneNumber": customer.phone_number, "error": reason.value}, now
    )
    system_status.record_check_in(customer.name, False)
    return rejected(reason)


def _log_attempt(db: Session, reason: RejectReason, message: str, details: Dict[str, Any], now: datetime):
    logger.warning(message)
    create_system_log(db, message, "check_in_error", severity="warning", details=details,
                      timestamp=now, commit=False)
    db.commit()
