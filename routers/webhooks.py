from fastapi import APIRouter, Depends, Request, HTTPException
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from db.init import get_db
from utils.deps import get_payment_source, get_system_status, get_policy
from utils.membership import MembershipPolicy
from utils.system_log import create_system_log
from utils.system_status import SystemStatus
from utils.webhook_events import handle_webhook_event
from utils import security
import json
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/square")
async def square_webhook(
    request: Request,
    db: Session = Depends(get_db),
    source=Depends(get_payment_source),
    system_status: SystemStatus = Depends(get_system_status),
    policy: MembershipPolicy = Depends(get_policy)
):
    """
    Handle webhooks from Square.
    Events: customer.created, customer.updated, customer.deleted,
    subscription.created, subscription.updated, subscription.canceled
    """
    body = await request.body()
    signature = request.headers.get("x-square-hmacsha256-signature", "")
    notification_url = security.SQUARE_WEBHOOK_URL or str(request.url)

    # Database writes and Square lookups block, so they must stay off the event loop
    outcome = await run_in_threadpool(
        process_square_webhook, db, body, signature, notification_url, source, policy, system_status
    )
    return {"success": True, "outcome": outcome}

def process_square_webhook(
    db: Session,
    body: bytes,
    signature: str,
    notification_url: str,
    source,
    policy: MembershipPolicy,
    system_status: SystemStatus
) -> str:
    if security.SQUARE_WEBHOOK_SIGNATURE_KEY:
        if not security.verify_square_signature(body, signature, notification_url, security.SQUARE_WEBHOOK_SIGNATURE_KEY):
            logger.warning("Rejected Square webhook with invalid signature")
            create_system_log(db, "Invalid webhook signature", "system_error", severity="error",
                              details={"source": "webhook"})
            system_status.record_error("Invalid webhook signature")
            raise HTTPException(status_code=401, detail="Invalid webhook signature")
    else:
        create_system_log(
            db,
            "Webhook signature verification skipped: No signature key configured",
            "webhook_warning",
            severity="warning"
        )

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        create_system_log(db, "Webhook body is not valid JSON", "system_error", severity="error",
                          details={"source": "webhook"})
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")

    return handle_webhook_event(db, payload, source, policy, system_status)
