"""
Cursor-based feed of recent dashboard events.

The cursor is the id of the last system log row a client has seen; a first call
without a cursor starts from a timestamp instead. Each call returns the events
strictly after that point, oldest first, and the cursor to send next time.
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from models.check_in import CheckIn
from models.system_log import SystemLog
from utils.check_in_ledger import serialize_check_in
from utils.membership import utc_now
from utils.system_log import serialize_log

FEED_EVENT_TYPES = ("check_in", "check_in_error", "customer_webhook", "subscription_webhook")
DEFAULT_WINDOW = timedelta(minutes=5)


def get_recent_events(
    db: Session,
    since: Optional[datetime] = None,
    cursor: Optional[int] = None,
    limit: int = 10
) -> Dict[str, Any]:
    query = db.query(SystemLog).filter(SystemLog.event_type.in_(FEED_EVENT_TYPES))
    if cursor is not None:
        query = query.filter(SystemLog.id > cursor)
    else:
        query = query.filter(SystemLog.timestamp > (since or utc_now() - DEFAULT_WINDOW))

    logs = query.order_by(SystemLog.id.asc()).limit(limit).all()

    check_in_ids = [
        log.details.get("checkInId") for log in logs
        if log.event_type == "check_in" and log.details and log.details.get("checkInId")
    ]
    check_ins = {}
    if check_in_ids:
        check_ins = {c.id: c for c in db.query(CheckIn).filter(CheckIn.id.in_(check_in_ids)).all()}

    events = []
    for log in logs:
        event = serialize_log(log)
        ledger_row = check_ins.get((log.details or {}).get("checkInId"))
        if ledger_row is not None:
            event["checkIn"] = serialize_check_in(ledger_row)
        events.append(event)

    next_cursor = logs[-1].id if logs else cursor
    if next_cursor is None:
        # Nothing new yet: hand back the highest id so the next call is id-based
        latest = db.query(SystemLog.id).order_by(SystemLog.id.desc()).first()
        next_cursor = latest[0] if latest else 0
    return {"events": events, "nextCursor": next_cursor}
