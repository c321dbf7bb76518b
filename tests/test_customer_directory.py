from datetime import date

from models.customer import Customer
from models.system_log import SystemLog
from utils.customer_directory import (
    get_customer_by_phone, get_customer_stats, list_customers, resolve_by_phone, search_customers,
    upsert_customer, upsert_from_square
)
from utils.membership import Coverage, MembershipType


def test_upsert_normalizes_phone_and_keeps_unset_fields(db):
    upsert_customer(db, "C1", name="Jane Doe", phone_number="07123 456789")
    upsert_customer(db, "C1", coverage=Coverage(True, MembershipType.CASH, date(2024, 7, 1)))

    customer = get_customer_by_phone(db, "+447123456789")
    assert customer.id == "C1"
    assert customer.name == "Jane Doe"
    assert customer.membership_type == "Cash Payment Based"
    assert customer.next_payment == date(2024, 7, 1)


def test_coverage_replaces_both_fields(db):
    upsert_customer(db, "C1", coverage=Coverage(True, MembershipType.SUBSCRIPTION, date(2024, 7, 1)))
    upsert_customer(db, "C1", coverage=Coverage(False))

    customer = db.get(Customer, "C1")
    assert customer.membership_type == "Unknown"
    assert customer.next_payment is None


def test_phone_moves_to_latest_owner(db):
    upsert_customer(db, "C1", name="Old Owner", phone_number="+447123456789")
    upsert_customer(db, "C2", name="New Owner", phone_number="07123456789")

    assert get_customer_by_phone(db, "+447123456789").id == "C2"
    assert db.get(Customer, "C1").phone_number is None


def test_upsert_from_square(db):
    upsert_from_square(db, {"id": "SQ1", "given_name": "Sam", "family_name": "Smith",
                            "phone_number": "+44 7700 900123"})
    customer = db.get(Customer, "SQ1")
    assert customer.name == "Sam Smith"
    assert customer.phone_number == "+447700900123"


def test_resolve_by_phone_prefers_local_directory(db, source, add_customer):
    add_customer("C1", "Jane Doe", "+447123456789")
    assert resolve_by_phone(db, "+447123456789", source).id == "C1"
    assert source.total_calls == 0


def test_resolve_by_phone_logs_search_failure(db, source, system_status):
    source.failures["search_customer_by_phone"] = "connection reset"

    assert resolve_by_phone(db, "+447123456789", source, system_status) is None

    [entry] = db.query(SystemLog).all()
    assert entry.event_type == "system_error"
    assert entry.severity == "error"
    assert entry.details["operation"] == "customer search"
    assert system_status.square_api_status == "error"


def test_listing_search_and_stats(db, add_customer):
    add_customer("C1", "Alice Able", "+447000000001", membership_type="Subscription Based")
    add_customer("C2", "Bob Baker", "+447000000002", membership_type="Cash Payment Based")
    add_customer("C3", "Carol Cook", None)

    listing = list_customers(db, page=1, limit=2)
    assert [c["name"] for c in listing["customers"]] == ["Alice Able", "Bob Baker"]
    assert listing["pagination"] == {"total": 3, "page": 1, "limit": 2, "totalPages": 2}
    assert listing["customers"][0]["checkInCount"] == 0

    assert [c["id"] for c in search_customers(db, "bob")] == ["C2"]
    assert [c["id"] for c in search_customers(db, "7000000001")] == ["C1"]

    stats = get_customer_stats(db)
    assert stats["totalCustomers"] == 3
    assert stats["activeCustomers"] == 0
    assert {"type": "Unknown", "count": 1} in stats["membershipTypes"]


def test_concurrent_first_sight_updates_instead_of_failing(db, session_factory, monkeypatch):
    from utils import customer_directory

    other = session_factory()
    other.add(Customer(id="C1", name="", membership_type="Unknown"))
    other.commit()
    other.close()

    # The first lookup runs before the other writer commits
    real_lookup = customer_directory.get_customer_by_id
    lookups = []

    def lookup_after_race(session, customer_id):
        lookups.append(customer_id)
        return None if len(lookups) == 1 else real_lookup(session, customer_id)

    monkeypatch.setattr(customer_directory, "get_customer_by_id", lookup_after_race)

    customer = upsert_customer(db, "C1", name="Jane Doe",
                               coverage=Coverage(True, MembershipType.CASH, date(2024, 7, 1)))

    assert customer.name == "Jane Doe"
    assert db.query(Customer).count() == 1
    stored = db.get(Customer, "C1")
    assert stored.membership_type == "Cash Payment Based"
    assert stored.next_payment == date(2024, 7, 1)
