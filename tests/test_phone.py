import pytest

from utils.phone import normalize_phone


@pytest.mark.parametrize("raw,expected", [
    ("07123456789", "+447123456789"),
    ("07123 456 789", "+447123456789"),
    ("447123456789", "+447123456789"),
    ("7123456789", "+447123456789"),
    ("+44 7123 456789", "+447123456789"),
    ("0044 7123 456789", "+447123456789"),
    ("+1 (555) 010-0199", "+15550100199"),
])
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", None, "abc", "+", "()-"])
def test_no_digits_normalizes_to_empty(raw):
    assert normalize_phone(raw) == ""


@pytest.mark.parametrize("raw", [
    "07123456789", "447123456789", "7123456789", "+447123456789",
    "0044 20 7946 0958", "+1 555 0100", "12", "00", "0", "  +44 (0) 7123 ", "++44",
])
def test_normalization_is_idempotent(raw):
    once = normalize_phone(raw)
    assert normalize_phone(once) == once


def test_custom_country_code():
    assert normalize_phone("06123456789", country_code="31") == "+316123456789"
    assert normalize_phone("05551234567", country_code="1") == "+15551234567"
