import logging
import traceback
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from models.system_log import SystemLog
from utils.membership import utc_now

logger = logging.getLogger(__name__)

SEVERITIES = ("debug", "info", "warning", "error")


def create_system_log(
    db: Session,
    message: str,
    event_type: str,
    severity: str = "info",
    details: Optional[Dict[str, Any]] = None,
    timestamp: Optional[datetime] = None,
    commit: bool = True
) -> SystemLog:
    """Append one audit entry. With commit=False the row is only flushed."""
    if severity not in SEVERITIES:
        raise ValueError(f"Unknown severity '{severity}'")
    entry = SystemLog(
        timestamp=timestamp or utc_now(),
        event_type=event_type,
        message=message,
        details=details,
        severity=severity
    )
    db.add(entry)
    if commit:
        db.commit()
        db.refresh(entry)
    else:
        db.flush()
    return entry


def log_error(db: Session, error: BaseException, event_type: str = "system_error",
              details: Optional[Dict[str, Any]] = None, commit: bool = True) -> SystemLog:
    """Store an exception with its stack trace."""
    payload = {
        "name": type(error).__name__,
        "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
    }
    if details:
        payload.update(details)
    return create_system_log(db, str(error) or type(error).__name__, event_type,
                             severity="error", details=payload, commit=commit)


def log_upstream_failure(db: Session, operation: str, error: str, details: Optional[Dict[str, Any]] = None,
                         system_status=None, commit: bool = True) -> SystemLog:
    """Record a swallowed upstream failure and flag the health tracker."""
    message = f"Square {operation} lookup failed: {error}"
    if system_status is not None:
        system_status.record_error(message)
    payload = {"source": "square", "operation": operation, "error": error}
    if details:
        payload.update(details)
    return create_system_log(db, message, "system_error", severity="error", details=payload, commit=commit)


def get_system_logs(
    db: Session,
    page: int = 1,
    limit: int = 50,
    severity: Optional[str] = None,
    event_type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    after: Optional[datetime] = None
) -> Dict[str, Any]:
    query = db.query(SystemLog)
    if severity:
        query = query.filter(SystemLog.severity == severity)
    if event_type:
        query = query.filter(SystemLog.event_type == event_type)
    lower = max((d for d in (start_date, after) if d is not None), default=None)
    if lower is not None:
        query = query.filter(SystemLog.timestamp >= lower)
    if end_date is not None:
        query = query.filter(SystemLog.timestamp <= end_date)

    total = query.count()
    logs = (
        query.order_by(SystemLog.timestamp.desc(), SystemLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "logs": logs,
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": (total + limit - 1) // limit
        }
    }


def get_log_event_types(db: Session) -> List[Dict[str, Any]]:
    rows = (
        db.query(SystemLog.event_type, func.count(SystemLog.id))
        .group_by(SystemLog.event_type)
        .all()
    )
    return [{"eventType": event_type, "count": count} for event_type, count in rows]


def purge_old_logs(db: Session, older_than: datetime) -> int:
    deleted = db.query(SystemLog).filter(SystemLog.timestamp < older_than).delete(synchronize_session=False)
    db.commit()
    logger.info(f"Purged {deleted} system logs older than {older_than.isoformat()}")
    return deleted


def serialize_log(entry: SystemLog) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "timestamp": entry.timestamp.isoformat(),
        "eventType": entry.event_type,
        "message": entry.message,
        "details": entry.details,
        "severity": entry.severity
    }
