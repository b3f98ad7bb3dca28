"""Razorpay REST API client.

WHAT: Async client for the Razorpay endpoints the action routes call
    (orders, customers, subscriptions, cancellation).
WHY: Action endpoints only initiate gateway operations; the resulting state
    arrives later through webhooks. Keeping the HTTP details here lets routes
    deal in dicts and RemoteServiceError only.

Error mapping:
    - Non-2xx response → RemoteServiceError with the upstream status and
      `error.description` / `field` / `reason` / `step` / `source`
    - Transport failure (DNS, timeout, connection reset) → RemoteServiceError 502

REFERENCES:
    - https://razorpay.com/docs/api/orders/create/
    - https://razorpay.com/docs/api/customers/create/
    - https://razorpay.com/docs/api/payments/subscriptions/create-subscription/
    - https://razorpay.com/docs/api/payments/subscriptions/cancel-subscription/
"""

import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import Depends, status

from ..deps import Settings, get_settings
from ..errors import ConfigurationError, RemoteServiceError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30.0


def _error_from_response(response: httpx.Response, step: str) -> RemoteServiceError:
    """Build a RemoteServiceError from a Razorpay error body.

    Razorpay errors look like:
        {"error": {"code": "BAD_REQUEST_ERROR", "description": "...",
                   "field": "amount", "source": "business", "step": "...",
                   "reason": "input_validation_failed"}}
    """
    try:
        body = response.json()
    except ValueError:
        body = {}

    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        error = {}

    return RemoteServiceError(
        error.get("description") or f"Razorpay {step} failed with status {response.status_code}.",
        status_code=response.status_code,
        field=error.get("field"),
        reason=error.get("reason"),
        step=error.get("step"),
        source=error.get("source"),
    )


class RazorpayClient:
    """Thin async wrapper over the Razorpay v1 REST API.

    Args:
        key_id: Razorpay key id (basic-auth username, also returned to checkout)
        key_secret: Razorpay key secret (basic-auth password)
        base_url: API root, `https://api.razorpay.com/v1` in production
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id
        self._key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    async def _request(self, method: str, path: str, step: str, json: Optional[dict] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                auth=(self.key_id, self._key_secret),
                timeout=REQUEST_TIMEOUT_SECONDS,
                transport=self._transport,
            ) as client:
                response = await client.request(method, url, json=json)
        except httpx.HTTPError as e:
            logger.error(f"[RAZORPAY_CLIENT] {step} transport failure: {e}")
            raise RemoteServiceError(
                "Could not reach Razorpay.",
                status_code=status.HTTP_502_BAD_GATEWAY,
            ) from e

        if response.status_code not in (200, 201):
            logger.error(
                f"[RAZORPAY_CLIENT] {step} failed: {response.status_code} {response.text}"
            )
            raise _error_from_response(response, step)

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteServiceError(f"Invalid {step} response from Razorpay.") from e
        if not isinstance(data, dict):
            raise RemoteServiceError(f"Invalid {step} response from Razorpay.")
        return data

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Create an order. `amount` is in minor units (paise)."""
        payload = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes or {}}
        order = await self._request("POST", "/orders", "order creation", json=payload)
        logger.info(f"[RAZORPAY_CLIENT] Created order {order.get('id')} ({amount} {currency})")
        return order

    async def create_customer(
        self,
        name: Optional[str],
        email: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"email": email, "notes": notes or {}}
        if name:
            payload["name"] = name
        customer = await self._request("POST", "/customers", "customer creation", json=payload)
        logger.info(f"[RAZORPAY_CLIENT] Created customer {customer.get('id')}")
        return customer

    async def create_subscription(
        self,
        plan_id: str,
        customer_id: str,
        total_count: int,
        notes: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload = {
            "plan_id": plan_id,
            "customer_id": customer_id,
            "total_count": total_count,
            "quantity": 1,
            "customer_notify": 1,
            "notes": notes or {},
        }
        subscription = await self._request(
            "POST", "/subscriptions", "subscription creation", json=payload
        )
        logger.info(
            f"[RAZORPAY_CLIENT] Created subscription {subscription.get('id')} "
            f"(plan={plan_id}, status={subscription.get('status')})"
        )
        return subscription

    async def cancel_subscription(
        self, subscription_id: str, cancel_at_cycle_end: bool = True
    ) -> Dict[str, Any]:
        """Cancel a subscription, by default at the end of the current cycle."""
        payload = {"cancel_at_cycle_end": 1 if cancel_at_cycle_end else 0}
        subscription = await self._request(
            "POST",
            f"/subscriptions/{subscription_id}/cancel",
            "subscription cancellation",
            json=payload,
        )
        logger.info(
            f"[RAZORPAY_CLIENT] Cancellation requested for {subscription_id} "
            f"(status={subscription.get('status')})"
        )
        return subscription


def get_razorpay_client(settings: Settings = Depends(get_settings)) -> RazorpayClient:
    """FastAPI dependency: a configured RazorpayClient.

    Raises:
        ConfigurationError: RAZORPAY_KEY_ID or RAZORPAY_KEY_SECRET is not set
    """
    if not settings.RAZORPAY_KEY_ID or not settings.RAZORPAY_KEY_SECRET:
        logger.error("[RAZORPAY_CLIENT] RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET not configured")
        raise ConfigurationError("Razorpay API keys are not configured on the server.")
    return RazorpayClient(
        settings.RAZORPAY_KEY_ID,
        settings.RAZORPAY_KEY_SECRET,
        base_url=settings.RAZORPAY_API_URL,
    )
