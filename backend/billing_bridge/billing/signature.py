"""Razorpay HMAC signature checks.

WHAT:
    - Webhook signatures: HMAC-SHA256 of the raw request body with the
      webhook secret, hex encoded, sent in `X-Razorpay-Signature`.
    - Checkout signatures: HMAC-SHA256 of "{order_id}|{payment_id}" with
      the key secret, returned to the browser by Razorpay Checkout.

WHY:
    Webhook bodies must be verified over the exact bytes received. Parsing
    and re-serializing JSON can reorder keys or change whitespace, which
    breaks verification for genuine deliveries.

REFERENCES:
    - https://razorpay.com/docs/webhooks/validate-test/
    - https://razorpay.com/docs/payments/server-integration/python/payment-gateway/build-integration/#verify-payment-signature
"""

import hashlib
import hmac
from typing import Optional, Union


def compute_signature(message: Union[bytes, str], secret: str) -> str:
    """Return the hex HMAC-SHA256 of `message` keyed by `secret`."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _matches(expected: str, received: str) -> bool:
    # Constant-time comparison to prevent timing attacks
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


def verify_webhook_signature(
    raw_body: bytes, signature: Optional[str], secret: Optional[str]
) -> bool:
    """Verify that a webhook body was signed by Razorpay.

    Args:
        raw_body: Request body bytes exactly as received
        signature: X-Razorpay-Signature header value
        secret: Webhook secret configured in the Razorpay dashboard

    Returns:
        True only if a secret is configured and the signature matches.
        A missing secret never skips verification.
    """
    if not secret or not signature:
        return False
    return _matches(compute_signature(raw_body, secret), signature)


def verify_payment_signature(
    order_id: str, payment_id: str, signature: Optional[str], secret: Optional[str]
) -> bool:
    """Verify the checkout signature Razorpay returns after a payment."""
    if not secret or not signature:
        return False
    return _matches(compute_signature(f"{order_id}|{payment_id}", secret), signature)
