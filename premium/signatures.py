from __future__ import annotations

import hashlib
import hmac


def _hex_hmac(secret: str, message: bytes) -> str:
    return hmac.new(str(secret).encode("utf-8"), message, hashlib.sha256).hexdigest()


def _normalize_provided(signature: str) -> str:
    provided = str(signature or "").strip()
    if provided.lower().startswith("sha256="):
        provided = provided.split("=", 1)[1].strip()
    return provided.lower()


def sign_client_payment(order_id: str, payment_id: str, secret: str) -> str:
    """Signature the checkout widget hands back: HMAC-SHA256 over `order_id|payment_id`."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return _hex_hmac(secret, message)


def verify_client_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    if not secret:
        return False
    provided = _normalize_provided(signature)
    if not provided:
        return False
    expected = sign_client_payment(order_id, payment_id, secret)
    return hmac.compare_digest(expected, provided)


def sign_webhook_body(raw_body: bytes, secret: str) -> str:
    return _hex_hmac(secret, raw_body)


def verify_webhook_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """
    Verify a gateway webhook signature.

    - Algorithm: HMAC-SHA256 over the raw request bytes, hex encoded.
    - Header format: accepts either a raw hex digest or "sha256=<hex>".
    - Constant-time compare: uses `hmac.compare_digest`.
    """

    if not secret:
        return False
    provided = _normalize_provided(signature)
    if not provided:
        return False
    expected = sign_webhook_body(raw_body, secret)
    return hmac.compare_digest(expected, provided)
