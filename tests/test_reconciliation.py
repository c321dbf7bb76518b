from datetime import datetime, timedelta

from models.customer import Customer
from models.system_log import SystemLog
from utils.membership import CashPaymentFact, SubscriptionFact
from utils.reconciliation import reconcile_customer, sync_customers

NOW = datetime(2024, 6, 15, 12, 0, 0)
TODAY = NOW.date()


def test_reconcile_writes_complete_replacement(db, source, policy, add_customer):
    add_customer("C1", "Jane Doe", "+447123456789", membership_type="Subscription Based",
                 next_payment=TODAY - timedelta(days=5))
    source.payments["C1"] = [CashPaymentFact("C1", 28.0, "GBP", NOW - timedelta(days=2))]

    coverage = reconcile_customer(db, source, "C1", policy, now=NOW)

    assert coverage.valid
    customer = db.get(Customer, "C1")
    assert customer.membership_type == "Cash Payment Based"
    assert customer.next_payment == TODAY + timedelta(days=28)


def test_reconcile_keeps_stored_facts_when_lookup_fails(db, source, system_status, policy, add_customer):
    add_customer("C1", "Jane Doe", "+447123456789", membership_type="Subscription Based",
                 next_payment=TODAY + timedelta(days=5))
    source.failures["fetch_subscriptions"] = "HTTP 500"

    coverage = reconcile_customer(db, source, "C1", policy, now=NOW, system_status=system_status)

    assert not coverage.valid
    customer = db.get(Customer, "C1")
    assert customer.membership_type == "Subscription Based"
    assert customer.next_payment == TODAY + timedelta(days=5)
    assert db.query(SystemLog).filter(SystemLog.severity == "error").count() == 1


def test_sync_customers_imports_square_directory(db, source, system_status, policy):
    source.customers = {
        "SQ1": {"id": "SQ1", "given_name": "Sam", "family_name": "Smith", "phone_number": "07700900001"},
        "SQ2": {"id": "SQ2", "given_name": "Pat", "phone_number": "+447700900002"},
    }
    source.subscriptions["SQ1"] = [SubscriptionFact("SQ1", "ACTIVE", TODAY + timedelta(days=12))]

    results = sync_customers(db, source, policy, now=NOW, system_status=system_status, max_workers=2)

    assert results == {"synced": 2, "skipped": 0, "errors": []}
    sam = db.get(Customer, "SQ1")
    assert sam.phone_number == "+447700900001"
    assert sam.membership_type == "Subscription Based"
    assert db.get(Customer, "SQ2").membership_type == "Unknown"
    assert db.query(SystemLog).filter(SystemLog.event_type == "customer_sync").count() == 1
    assert system_status.square_api_status == "connected"


def test_sync_customers_reports_listing_failure(db, source, system_status, policy):
    source.failures["list_customers"] = "HTTP 503"

    results = sync_customers(db, source, policy, now=NOW, system_status=system_status)

    assert results["synced"] == 0
    assert results["errors"] == [{"error": "HTTP 503"}]
    assert db.query(Customer).count() == 0
