"""
Membership coverage rules.

Reconciles the two independent sources of truth, recurring subscriptions and
one-off cash payments, into a single Coverage value. Nothing here performs I/O
except resolve_coverage(), which asks a payment source for fresh facts.
"""
import os
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional, List, Tuple

from utils.upstream import guarded

logger = logging.getLogger(__name__)

# Subscription states that grant entry while charged_through_date is current
COVERING_SUBSCRIPTION_STATUSES = ("ACTIVE", "PENDING")
VOID_PAYMENT_STATUSES = ("CANCELED", "FAILED")


class MembershipType(str, Enum):
    SUBSCRIPTION = "Subscription Based"
    CASH = "Cash Payment Based"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "MembershipType":
        for member in cls:
            if member.value == value:
                return member
        return cls.UNKNOWN


PAYMENT_STATUS_LABELS = {
    MembershipType.SUBSCRIPTION: "Subscription Active",
    MembershipType.CASH: "Recent Cash Payment",
}


def utc_now() -> datetime:
    """Naive UTC timestamp, matching how the database columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value) -> datetime:
    """Parse a Square RFC 3339 timestamp into a naive UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_date(value) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


# --- Facts ---

@dataclass
class SubscriptionFact:
    customer_id: str
    status: str
    charged_through_date: Optional[date] = None
    id: Optional[str] = None

    @classmethod
    def from_square(cls, data: dict) -> "SubscriptionFact":
        return cls(
            id=data.get("id"),
            customer_id=data.get("customer_id", ""),
            status=(data.get("status") or "").upper(),
            charged_through_date=parse_date(data.get("charged_through_date")),
        )


@dataclass
class CashPaymentFact:
    customer_id: str
    amount: float  # major units, e.g. 27.0 for 2700 pence
    currency: str
    created_at: datetime
    refunded: bool = False
    canceled: bool = False
    source_type: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def from_square(cls, data: dict) -> "CashPaymentFact":
        money = data.get("amount_money") or data.get("total_money")
        if not money or money.get("amount") is None:
            raise ValueError(f"Payment {data.get('id')} has no amount_money")
        status = (data.get("status") or "").upper()
        return cls(
            id=data.get("id"),
            customer_id=data.get("customer_id", ""),
            amount=int(money["amount"]) / 100,
            currency=(money.get("currency") or "").upper(),
            created_at=parse_timestamp(data["created_at"]),
            refunded=bool(data.get("refund_ids")) or bool(data.get("refunded_money")),
            canceled=status in VOID_PAYMENT_STATUSES,
            source_type=data.get("source_type"),
        )


# --- Policy ---

def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class MembershipPolicy:
    """Cash payment validity rules. The band is inclusive on both ends."""
    price: float = 28.00
    tolerance: float = 3.00
    currencies: Tuple[str, ...] = ("GBP", "USD")
    lookback_days: int = 30
    require_cash_source: bool = False

    @classmethod
    def from_env(cls) -> "MembershipPolicy":
        currencies = os.getenv("MEMBERSHIP_CURRENCIES", "GBP,USD")
        return cls(
            price=float(os.getenv("MEMBERSHIP_PRICE", "28.00")),
            tolerance=float(os.getenv("MEMBERSHIP_PRICE_TOLERANCE", "3.00")),
            currencies=tuple(c.strip().upper() for c in currencies.split(",") if c.strip()),
            lookback_days=int(os.getenv("MEMBERSHIP_LOOKBACK_DAYS", "30")),
            require_cash_source=_env_bool("MEMBERSHIP_REQUIRE_CASH_SOURCE", "false"),
        )

    def lookback_start(self, now: datetime) -> datetime:
        return now - timedelta(days=self.lookback_days)


def is_valid_cash_payment(payment: CashPaymentFact, policy: MembershipPolicy, now: datetime) -> bool:
    if payment.canceled or payment.refunded:
        return False
    if payment.currency not in policy.currencies:
        return False
    if not (policy.price - policy.tolerance <= payment.amount <= policy.price + policy.tolerance):
        return False
    if policy.require_cash_source and (payment.source_type or "").upper() != "CASH":
        return False
    return policy.lookback_start(now) <= payment.created_at <= now


def latest_valid_cash_payment(payments: List[CashPaymentFact], policy: MembershipPolicy,
                              now: datetime) -> Optional[CashPaymentFact]:
    valid = [p for p in payments if is_valid_cash_payment(p, policy, now)]
    if not valid:
        return None
    return max(valid, key=lambda p: p.created_at)


def select_subscription(subscriptions: List[SubscriptionFact]) -> Optional[SubscriptionFact]:
    """ACTIVE subscription charged through the latest date, else the same among PENDING, else None.

    A missing charged-through date sorts before any real date.
    """
    for status in COVERING_SUBSCRIPTION_STATUSES:
        candidates = [sub for sub in subscriptions if sub.status == status]
        if candidates:
            return max(candidates, key=lambda sub: sub.charged_through_date or date.min)
    return None


def cash_coverage_end(payment: CashPaymentFact, policy: MembershipPolicy) -> date:
    return (payment.created_at + timedelta(days=policy.lookback_days)).date()


# --- Coverage ---

@dataclass
class Coverage:
    valid: bool
    membership_type: MembershipType = MembershipType.UNKNOWN
    next_payment: Optional[date] = None
    # False when every upstream lookup failed and nothing could be checked
    facts_available: bool = True
    # (operation, error) for every lookup that failed
    upstream_errors: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def payment_status(self) -> Optional[str]:
        return PAYMENT_STATUS_LABELS.get(self.membership_type) if self.valid else None


def stored_coverage(membership_type: Optional[str], next_payment: Optional[date], today: date) -> Coverage:
    """Coverage from the locally stored customer fields (kiosk fast path)."""
    kind = MembershipType.parse(membership_type)
    valid = kind is not MembershipType.UNKNOWN and next_payment is not None and next_payment >= today
    return Coverage(valid=valid, membership_type=kind, next_payment=next_payment)


def derive_coverage(subscriptions: Optional[List[SubscriptionFact]],
                    payments: Optional[List[CashPaymentFact]],
                    policy: MembershipPolicy, now: datetime) -> Coverage:
    """
    Apply the admission rule to one snapshot of upstream facts. None for either
    argument means that source could not be queried and contributes no facts.

    A current subscription always wins over a cash payment.
    """
    today = now.date()
    subscription = select_subscription(subscriptions or [])
    if (subscription is not None and subscription.charged_through_date is not None
            and subscription.charged_through_date >= today):
        return Coverage(True, MembershipType.SUBSCRIPTION, subscription.charged_through_date)

    payment = latest_valid_cash_payment(payments or [], policy, now)
    if payment is not None:
        return Coverage(True, MembershipType.CASH, cash_coverage_end(payment, policy))

    available = subscriptions is not None or payments is not None
    if subscription is not None:
        return Coverage(False, MembershipType.SUBSCRIPTION, subscription.charged_through_date,
                        facts_available=available)
    return Coverage(False, facts_available=available)


def resolve_coverage(source, customer_id: str, policy: MembershipPolicy, now: datetime = None) -> Coverage:
    """
    Query both upstream sources and derive coverage. Never raises for upstream
    failures: a failed lookup is recorded in upstream_errors and treated as no facts.
    """
    now = now or utc_now()

    sub_result = guarded(source.fetch_subscriptions, customer_id)
    subscriptions = sub_result.value if sub_result.success else None
    if not sub_result.success:
        logger.error(f"Subscription lookup failed for {customer_id}: {sub_result.error}")

    pay_result = guarded(source.fetch_recent_payments, customer_id, policy.lookback_start(now))
    payments = pay_result.value if pay_result.success else None
    if not pay_result.success:
        logger.error(f"Payment lookup failed for {customer_id}: {pay_result.error}")

    coverage = derive_coverage(subscriptions, payments, policy, now)
    if not sub_result.success:
        coverage.upstream_errors.append(("subscription", sub_result.error))
    if not pay_result.success:
        coverage.upstream_errors.append(("payment", pay_result.error))
    return coverage
