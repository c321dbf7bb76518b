"""
Phone number normalization.

The normalized form is the join key between kiosk input, webhook payloads and
stored customers, so every entry point must go through normalize_phone().
"""
import os
import re

DEFAULT_COUNTRY_CODE = os.getenv("DEFAULT_COUNTRY_CODE", "44")

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str, country_code: str = None) -> str:
    """
    Normalize a phone number to +<country code><number>.

    - "07123 456789"  -> "+447123456789" (national trunk 0 replaced)
    - "447123456789"  -> "+447123456789"
    - "7123456789"    -> "+447123456789" (domestic, default country code)
    - "+1 555 0100"   -> "+15550100"     (already international, kept)

    Returns "" when the input holds no digits. Applying it twice gives the
    same result as applying it once.
    """
    cc = country_code or DEFAULT_COUNTRY_CODE
    text = (raw or "").strip()
    digits = _NON_DIGITS.sub("", text)
    if not digits:
        return ""

    if text.startswith("+"):
        return "+" + digits
    if digits.startswith("00"):
        # International dialling prefix
        return "+" + digits[2:] if digits[2:] else ""

    if digits.startswith("0") and len(digits) == 11:
        return f"+{cc}{digits[1:]}"
    if digits.startswith(cc) and len(digits) == len(cc) + 10:
        return "+" + digits
    return f"+{cc}{digits}"
