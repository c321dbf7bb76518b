import base64
import hashlib
import hmac
import os

SQUARE_WEBHOOK_SIGNATURE_KEY = os.getenv("SQUARE_WEBHOOK_SIGNATURE_KEY", "")
SQUARE_WEBHOOK_URL = os.getenv("SQUARE_WEBHOOK_URL", "")

def compute_square_signature(body: bytes, notification_url: str, signature_key: str) -> str:
    """Square signs notification URL + raw body with HMAC-SHA256, base64 encoded."""
    digest = hmac.new(
        signature_key.encode("utf-8"),
        notification_url.encode("utf-8") + body,
        hashlib.sha256
    ).digest()
    return base64.b64encode(digest).decode("utf-8")

def verify_square_signature(body: bytes, signature: str, notification_url: str, signature_key: str) -> bool:
    if not signature or not signature_key:
        return False
    expected = compute_square_signature(body, notification_url, signature_key)
    return hmac.compare_digest(expected, signature)
