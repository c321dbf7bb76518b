"""
Square webhook event handling, after the signature has been checked.

Each event is logged; customer and subscription events also update the
Customer Directory. Customers are never deleted from here.
"""
import logging
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from utils.customer_directory import get_customer_by_id, upsert_from_square
from utils.membership import MembershipPolicy
from utils.reconciliation import reconcile_customer
from utils.square_client import customer_display_name
from utils.system_log import create_system_log, log_error, log_upstream_failure

logger = logging.getLogger(__name__)

CUSTOMER_EVENTS = ("customer.created", "customer.updated", "customer.deleted")
SUBSCRIPTION_EVENTS = ("subscription.created", "subscription.updated", "subscription.canceled")


def handle_webhook_event(
    db: Session,
    payload: Dict[str, Any],
    source,
    policy: MembershipPolicy,
    system_status=None,
    now: Optional[datetime] = None
) -> str:
    """Process one verified event. Returns how it was handled."""
    event_type = payload.get("type") or "unknown_type"
    logger.info(f"Received Square webhook: {event_type}")
    create_system_log(
        db,
        f"Received webhook: {event_type}",
        "webhook_received",
        details={
            "eventType": event_type,
            "eventId": payload.get("event_id"),
            "merchantId": payload.get("merchant_id")
        }
    )
    if system_status is not None:
        system_status.mark_connected()

    if event_type in CUSTOMER_EVENTS:
        return _handle_customer_event(db, event_type, payload)
    if event_type in SUBSCRIPTION_EVENTS:
        return _handle_subscription_event(db, event_type, payload, source, policy, system_status, now)

    create_system_log(
        db,
        f"Unhandled webhook event type: {event_type}",
        "webhook_unhandled",
        severity="warning",
        details={"eventType": event_type, "eventId": payload.get("event_id")}
    )
    return "unhandled"


def _event_object(payload: Dict[str, Any], key: str) -> Dict[str, Any]:
    obj = ((payload.get("data") or {}).get("object") or {}).get(key)
    if not obj or not isinstance(obj, dict):
        raise ValueError(f"Webhook payload has no data.object.{key}")
    return obj


def _handle_customer_event(db: Session, event_type: str, payload: Dict[str, Any]) -> str:
    try:
        customer = _event_object(payload, "customer")
        if not customer.get("id"):
            raise ValueError("Webhook customer has no id")
        if event_type != "customer.deleted":
            upsert_from_square(db, customer, commit=False)
        create_system_log(
            db,
            f"Processed customer event: {event_type}",
            "customer_webhook",
            details={
                "eventType": event_type,
                "customerId": customer["id"],
                "customerName": customer_display_name(customer)
            },
            commit=False
        )
        db.commit()
        return "processed"
    except Exception as e:
        db.rollback()
        logger.error(f"Error handling {event_type}: {str(e)}")
        log_error(db, e, event_type="customer_webhook")
        return "failed"


def _handle_subscription_event(db: Session, event_type: str, payload: Dict[str, Any], source,
                               policy: MembershipPolicy, system_status, now: Optional[datetime]) -> str:
    try:
        subscription = _event_object(payload, "subscription")
        customer_id = subscription.get("customer_id")
        if not customer_id:
            raise ValueError("Webhook subscription has no customer_id")

        if get_customer_by_id(db, customer_id) is None:
            profile = source.retrieve_customer(customer_id)
            if profile.success and profile.value:
                upsert_from_square(db, profile.value, commit=False)
            elif not profile.success:
                log_upstream_failure(db, "customer", profile.error, {"customerId": customer_id},
                                     system_status=system_status, commit=False)

        coverage = reconcile_customer(db, source, customer_id, policy, now=now,
                                      system_status=system_status, commit=False)
        create_system_log(
            db,
            f"Processed subscription event: {event_type}",
            "subscription_webhook",
            details={
                "eventType": event_type,
                "subscriptionId": subscription.get("id"),
                "customerId": customer_id,
                "planId": subscription.get("plan_variation_id") or subscription.get("plan_id"),
                "status": subscription.get("status"),
                "membershipType": coverage.membership_type.value,
                "coverageValid": coverage.valid
            },
            commit=False
        )
        db.commit()
        return "processed"
    except Exception as e:
        db.rollback()
        logger.error(f"Error handling {event_type}: {str(e)}")
        log_error(db, e, event_type="subscription_webhook")
        return "failed"
