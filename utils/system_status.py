"""
System Health Tracker

Process-lifetime, advisory record of upstream connectivity and the latest
error / check-in. One instance is created at startup and stored on app.state;
it is never consulted for admission decisions.
"""
from typing import Optional, Dict, Any

from utils.membership import utc_now

CONNECTED = "connected"
ERROR = "error"
NOT_CONFIGURED = "not_configured"


class SystemStatus:
    def __init__(self):
        self.reset()

    def reset(self):
        self.square_api_status = NOT_CONFIGURED
        self.last_error: Optional[Dict[str, Any]] = None
        self.last_check_in: Optional[Dict[str, Any]] = None
        self.startup_time = utc_now()

    def mark_connected(self):
        self.square_api_status = CONNECTED

    def mark_not_configured(self):
        self.square_api_status = NOT_CONFIGURED

    def record_error(self, message: str, upstream: bool = True):
        if upstream:
            self.square_api_status = ERROR
        self.last_error = {"timestamp": utc_now().isoformat(), "message": message}

    def record_check_in(self, customer_name: str, success: bool):
        self.last_check_in = {
            "timestamp": utc_now().isoformat(),
            "customerName": customer_name,
            "success": success,
        }

    def snapshot(self) -> Dict[str, Any]:
        return {
            "squareApiStatus": self.square_api_status,
            "lastError": dict(self.last_error) if self.last_error else None,
            "lastCheckIn": dict(self.last_check_in) if self.last_check_in else None,
            "startupTime": self.startup_time.isoformat(),
        }
