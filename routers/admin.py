from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional, List
from db.init import get_db
from utils.check_in_ledger import (
    list_recent, list_for_customer, check_in_stats, peak_hours, by_day_of_week,
    delete_check_in, purge_older_than, serialize_check_in
)
from utils.customer_directory import (
    get_customer_by_id, list_customers, search_customers, get_customer_stats, serialize_customer
)
from utils.deps import get_payment_source, get_system_status, get_policy
from utils.membership import MembershipPolicy, parse_timestamp, utc_now
from utils.recent_events import get_recent_events
from utils.reconciliation import sync_customers
from utils.renewal_watch import get_members_needing_renewal, RENEWAL_MAX_WORKERS
from utils.system_log import (
    create_system_log, get_system_logs, get_log_event_types, purge_old_logs, serialize_log
)
from utils.system_status import SystemStatus
from pydantic import BaseModel
from datetime import datetime, timedelta
import os

LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "30"))

TIME_RANGES = {"week": 7, "month": 30, "quarter": 90}

router = APIRouter(prefix="", tags=["admin"])

class CheckInStatsResponse(BaseModel):
    total: int
    today: int
    thisWeek: int
    thisMonth: int

class RenewalMember(BaseModel):
    id: str
    name: str
    phoneNumber: Optional[str] = None
    membershipType: str
    expiryDate: str
    daysUntilExpiry: Optional[int] = None
    status: str
    initials: str

class RenewalReport(BaseModel):
    count: int
    members: List[RenewalMember]

class PurgeRequest(BaseModel):
    logRetentionDays: Optional[int] = None
    checkInsOlderThan: Optional[datetime] = None

# --- Check-ins ---

@router.get("/check-ins")
def recent_check_ins(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db)
):
    rows, total = list_recent(db, page, limit)
    return {
        "checkIns": [serialize_check_in(c) for c in rows],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": (total + limit - 1) // limit
        }
    }

@router.delete("/check-ins/{check_in_id}")
def remove_check_in(check_in_id: int, db: Session = Depends(get_db)):
    if not delete_check_in(db, check_in_id):
        raise HTTPException(status_code=404, detail="Check-in not found")
    create_system_log(db, f"Check-in {check_in_id} deleted by administrator", "retention_purge",
                      severity="warning", details={"checkInId": check_in_id})
    return {"success": True}

@router.get("/stats", response_model=CheckInStatsResponse)
def get_check_in_stats(db: Session = Depends(get_db)):
    return CheckInStatsResponse(**check_in_stats(db))

@router.get("/analytics")
def get_analytics(
    timeRange: str = Query("week"),
    db: Session = Depends(get_db)
):
    if timeRange not in TIME_RANGES:
        raise HTTPException(status_code=400, detail=f"timeRange must be one of {', '.join(TIME_RANGES)}")
    since = utc_now() - timedelta(days=TIME_RANGES[timeRange])
    return {
        "timeRange": timeRange,
        "checkIns": check_in_stats(db),
        "peakHours": peak_hours(db, since),
        "byDayOfWeek": by_day_of_week(db, since),
        "customers": get_customer_stats(db)
    }

# --- Customers ---

@router.get("/customers")
def get_customers(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    q: Optional[str] = None,
    db: Session = Depends(get_db)
):
    if q:
        return {"customers": search_customers(db, q, limit)}
    return list_customers(db, page, limit)

@router.get("/customers/{customer_id}")
def get_customer(customer_id: str, db: Session = Depends(get_db)):
    customer = get_customer_by_id(db, customer_id)
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    data = serialize_customer(customer)
    data["checkIns"] = [serialize_check_in(c) for c in list_for_customer(db, customer_id, limit=10)]
    return data

@router.post("/sync")
def sync_from_square(
    db: Session = Depends(get_db),
    source=Depends(get_payment_source),
    system_status: SystemStatus = Depends(get_system_status),
    policy: MembershipPolicy = Depends(get_policy)
):
    return sync_customers(db, source, policy, system_status=system_status, max_workers=RENEWAL_MAX_WORKERS)

@router.get("/renewals", response_model=RenewalReport)
def members_needing_renewal(
    db: Session = Depends(get_db),
    source=Depends(get_payment_source),
    system_status: SystemStatus = Depends(get_system_status),
    policy: MembershipPolicy = Depends(get_policy)
):
    return get_members_needing_renewal(db, source, policy, system_status=system_status)

# --- Logs & events ---

@router.get("/logs")
def get_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    severity: Optional[str] = None,
    eventType: Optional[str] = None,
    after: Optional[datetime] = None,
    db: Session = Depends(get_db)
):
    result = get_system_logs(db, page=page, limit=limit, severity=severity, event_type=eventType,
                             after=parse_timestamp(after) if after else None)
    return {
        "logs": [serialize_log(entry) for entry in result["logs"]],
        "pagination": result["pagination"],
        "eventTypes": get_log_event_types(db)
    }

@router.get("/recent-events")
def recent_events(
    since: Optional[datetime] = None,
    cursor: Optional[int] = Query(None, ge=0),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db)
):
    if since is not None:
        since = parse_timestamp(since)
    return get_recent_events(db, since=since, cursor=cursor, limit=limit)

@router.post("/purge")
def purge(request: PurgeRequest, db: Session = Depends(get_db)):
    days = request.logRetentionDays or LOG_RETENTION_DAYS
    logs_deleted = purge_old_logs(db, utc_now() - timedelta(days=days))
    check_ins_deleted = 0
    if request.checkInsOlderThan is not None:
        check_ins_deleted = purge_older_than(db, parse_timestamp(request.checkInsOlderThan))
    create_system_log(
        db,
        f"Retention purge removed {logs_deleted} logs and {check_ins_deleted} check-ins",
        "retention_purge",
        details={"logsDeleted": logs_deleted, "checkInsDeleted": check_ins_deleted, "retentionDays": days}
    )
    return {"logsDeleted": logs_deleted, "checkInsDeleted": check_ins_deleted}

# --- System status ---

@router.get("/system-status")
def system_status_snapshot(system_status: SystemStatus = Depends(get_system_status)):
    return system_status.snapshot()

@router.post("/system-status/reset")
def reset_system_status(
    db: Session = Depends(get_db),
    system_status: SystemStatus = Depends(get_system_status)
):
    system_status.reset()
    create_system_log(db, "System status reset by administrator", "system_status", severity="info")
    return system_status.snapshot()

@router.get("/square/test")
def test_square(
    source=Depends(get_payment_source),
    system_status: SystemStatus = Depends(get_system_status)
):
    if not source.is_configured:
        system_status.mark_not_configured()
        return {"success": False, "message": "Square access token is not configured."}
    res = source.test_connection()
    if not res.success:
        system_status.record_error(f"Square connection test failed: {res.error}")
        return {"success": False, "message": res.error}
    system_status.mark_connected()
    return {"success": True, "message": f"Successfully connected to Square API. Found {len(res.value)} locations."}
