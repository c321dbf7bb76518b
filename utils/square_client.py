"""
Square API Client Wrapper
Read-only access to customers, subscriptions and payments used for membership checks.

Every public call returns an UpstreamResult and never raises: transport errors,
timeouts, HTTP errors and Square error payloads all come back as unavailable results.
"""
import os
import logging
import requests
from datetime import datetime
from typing import Optional, Dict, Any, List

from utils.membership import SubscriptionFact, CashPaymentFact
from utils.upstream import UpstreamResult

logger = logging.getLogger(__name__)

# Square Configuration
SQUARE_ACCESS_TOKEN = os.getenv("SQUARE_ACCESS_TOKEN", "")
SQUARE_ENVIRONMENT = os.getenv("SQUARE_ENVIRONMENT", "production")
SQUARE_LOCATION_ID = os.getenv("SQUARE_LOCATION_ID", "")
SQUARE_TIMEOUT_SECONDS = float(os.getenv("SQUARE_TIMEOUT_SECONDS", "10"))
SQUARE_API_VERSION = "2024-01-18"

# Square API Base URLs
SQUARE_API_BASE_URL = {
    "sandbox": "https://connect.squareupsandbox.com",
    "production": "https://connect.squareup.com"
}

# Listings past these caps come back unavailable rather than silently cut short
MAX_PAYMENT_PAGES = int(os.getenv("SQUARE_MAX_PAYMENT_PAGES", "50"))
MAX_CUSTOMER_PAGES = int(os.getenv("SQUARE_MAX_CUSTOMER_PAGES", "100"))


class SquareAPIError(Exception):
    pass


def get_square_base_url(environment: Optional[str] = None) -> str:
    """Get the base URL for Square API based on environment"""
    return SQUARE_API_BASE_URL.get(environment or SQUARE_ENVIRONMENT, SQUARE_API_BASE_URL["production"])

def get_square_headers(access_token: Optional[str] = None) -> Dict[str, str]:
    """Get headers for Square API requests"""
    token = access_token if access_token is not None else SQUARE_ACCESS_TOKEN
    if not token:
        raise ValueError("SQUARE_ACCESS_TOKEN is not set in environment variables")

    return {
        "Square-Version": SQUARE_API_VERSION,
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json"
    }

def customer_display_name(customer: Dict[str, Any]) -> str:
    return f"{customer.get('given_name') or ''} {customer.get('family_name') or ''}".strip()

def _format_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


class SquarePaymentSource:
    """Payment Source Client backed by the Square REST API."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        environment: Optional[str] = None,
        location_id: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.access_token = SQUARE_ACCESS_TOKEN if access_token is None else access_token
        self.environment = environment or SQUARE_ENVIRONMENT
        self.location_id = SQUARE_LOCATION_ID if location_id is None else location_id
        self.timeout = timeout or SQUARE_TIMEOUT_SECONDS

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)

    def _call(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{get_square_base_url(self.environment)}{path}"
        headers = get_square_headers(self.access_token)
        if method == "GET":
            response = requests.get(url, headers=headers, timeout=self.timeout, **kwargs)
        else:
            response = requests.post(url, headers=headers, timeout=self.timeout, **kwargs)

        try:
            data = response.json()
        except ValueError:
            raise SquareAPIError(f"Non-JSON response from {path} (HTTP {response.status_code})")

        if data.get("errors"):
            details = "; ".join(
                err.get("detail") or err.get("code") or "Unknown error" for err in data["errors"]
            )
            raise SquareAPIError(f"{path} failed (HTTP {response.status_code}): {details}")
        if response.status_code >= 400:
            raise SquareAPIError(f"{path} failed with HTTP {response.status_code}")
        return data

    # --- Customer Operations ---

    def search_customer_by_phone(self, phone_number: str) -> UpstreamResult:
        """Find the Square customer with this exact (normalized) phone number."""
        try:
            payload = {"query": {"filter": {"phone_number": {"exact": phone_number}}}, "limit": 1}
            data = self._call("POST", "/v2/customers/search", json=payload)
            customers = data.get("customers", [])
            return UpstreamResult.ok(customers[0] if customers else None)
        except Exception as e:
            logger.error(f"Error searching customer by phone: {str(e)}")
            return UpstreamResult.unavailable(str(e))

    def retrieve_customer(self, customer_id: str) -> UpstreamResult:
        try:
            data = self._call("GET", f"/v2/customers/{customer_id}")
            return UpstreamResult.ok(data.get("customer"))
        except Exception as e:
            logger.error(f"Error retrieving customer {customer_id}: {str(e)}")
            return UpstreamResult.unavailable(str(e))

    def list_customers(self) -> UpstreamResult:
        """All Square customers, following pagination cursors."""
        try:
            customers: List[Dict[str, Any]] = []
            params: Dict[str, Any] = {"limit": 100}
            for _ in range(MAX_CUSTOMER_PAGES):
                data = self._call("GET", "/v2/customers", params=params)
                customers.extend(data.get("customers", []))
                cursor = data.get("cursor")
                if not cursor:
                    break
                params["cursor"] = cursor
            else:
                raise SquareAPIError(f"Customer listing truncated after {MAX_CUSTOMER_PAGES} pages")
            return UpstreamResult.ok(customers)
        except Exception as e:
            logger.error(f"Error listing customers: {str(e)}")
            return UpstreamResult.unavailable(str(e))

    # --- Subscription Operations ---

    def fetch_subscriptions(self, customer_id: str) -> UpstreamResult:
        """Subscriptions of one customer, as SubscriptionFacts (possibly empty)."""
        try:
            query_filter: Dict[str, Any] = {"customer_ids": [customer_id]}
            if self.location_id:
                query_filter["location_ids"] = [self.location_id]
            data = self._call("POST", "/v2/subscriptions/search", json={"query": {"filter": query_filter}})
            facts = [
                SubscriptionFact.from_square(sub)
                for sub in data.get("subscriptions", [])
                if sub.get("customer_id") == customer_id
            ]
            return UpstreamResult.ok(facts)
        except Exception as e:
            logger.error(f"Error fetching subscriptions for {customer_id}: {str(e)}")
            return UpstreamResult.unavailable(str(e))

    # --- Payment Operations ---

    def fetch_recent_payments(self, customer_id: str, since: datetime) -> UpstreamResult:
        """Payments created since `since` that belong to the customer, as CashPaymentFacts."""
        try:
            params: Dict[str, Any] = {
                "begin_time": _format_time(since),
                "sort_order": "DESC",
                "limit": 100
            }
            if self.location_id:
                params["location_id"] = self.location_id

            facts: List[CashPaymentFact] = []
            for _ in range(MAX_PAYMENT_PAGES):
                data = self._call("GET", "/v2/payments", params=params)
                for payment in data.get("payments", []):
                    if payment.get("customer_id") != customer_id:
                        continue
                    try:
                        facts.append(CashPaymentFact.from_square(payment))
                    except (KeyError, ValueError) as e:
                        logger.warning(f"Skipping malformed payment {payment.get('id')}: {str(e)}")
                cursor = data.get("cursor")
                if not cursor:
                    break
                params["cursor"] = cursor
            else:
                raise SquareAPIError(f"Payment listing truncated after {MAX_PAYMENT_PAGES} pages")
            return UpstreamResult.ok(facts)
        except Exception as e:
            logger.error(f"Error fetching payments for {customer_id}: {str(e)}")
            return UpstreamResult.unavailable(str(e))

    # --- Diagnostics ---

    def test_connection(self) -> UpstreamResult:
        """List locations to confirm the credentials work."""
        try:
            data = self._call("GET", "/v2/locations")
            return UpstreamResult.ok(data.get("locations", []))
        except Exception as e:
            logger.error(f"Error testing Square connection: {str(e)}")
            return UpstreamResult.unavailable(str(e))
