"""Razorpay webhook ingestion endpoint.

WHAT: Authenticates, decodes and reconciles Razorpay webhook deliveries.
WHY: Webhooks are the source of truth for subscription and payment state;
    the action endpoints only initiate gateway operations.

Order of checks (each fails before the next runs):
    1. Webhook secret configured                → 500
    2. X-Razorpay-Signature header present      → 400
    3. HMAC-SHA256 of the raw body matches      → 401
    4. Body decodes to a JSON object            → 400
    5. Reconcile inside one store transaction
         - related record missing               → 404 (Razorpay redelivers)
         - malformed event (missing entity id)  → 400
         - anything else                        → 500, logged + captured

The body is read as raw bytes before any parsing; the signature covers
those exact bytes.

REFERENCES:
    - https://razorpay.com/docs/webhooks/validate-test/
    - billing_bridge/billing/reconciler.py (transition table)
"""

import logging

from fastapi import APIRouter, Depends, Request

from .. import schemas
from ..billing.events import DecodeError, UnhandledEvent, decode_event
from ..billing.reconciler import WebhookReconciler
from ..billing.signature import verify_webhook_signature
from ..deps import Settings, get_settings
from ..errors import (
    BillingError,
    ConfigurationError,
    InternalError,
    SignatureError,
    ValidationError,
)
from ..store import RecordStore, get_record_store
from ..telemetry import capture_exception

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-razorpay-signature"


router = APIRouter(
    prefix="/razorpay",
    tags=["Webhooks"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Missing signature or malformed payload"},
        401: {"model": schemas.ErrorResponse, "description": "Invalid signature"},
        404: {"model": schemas.ErrorResponse, "description": "Related record not found"},
        500: {"model": schemas.ErrorResponse, "description": "Internal Server Error"},
    },
)


@router.post(
    "/webhook",
    response_model=schemas.WebhookResponse,
    summary="Receive Razorpay webhook",
    description="""
    Receives Razorpay webhook events and applies them to local records.

    Handled events:
        - payment.captured
        - subscription.activated
        - subscription.charged
        - subscription.halted / subscription.cancelled / subscription.completed

    Every other event is acknowledged with 200 and ignored.
    """,
)
async def handle_razorpay_webhook(
    request: Request,
    store: RecordStore = Depends(get_record_store),
    settings: Settings = Depends(get_settings),
):
    """Process one Razorpay webhook delivery."""
    secret = settings.RAZORPAY_WEBHOOK_SECRET
    if not secret:
        logger.error("[RAZORPAY_WEBHOOK] RAZORPAY_WEBHOOK_SECRET is not set; rejecting delivery")
        raise ConfigurationError("Webhook secret not configured on server.")

    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        logger.warning("[RAZORPAY_WEBHOOK] Delivery without signature header")
        raise ValidationError("Missing Razorpay signature header.")

    # Raw bytes, never a re-serialization
    body = await request.body()

    if not verify_webhook_signature(body, signature, secret):
        logger.warning("[RAZORPAY_WEBHOOK] Signature verification failed")
        raise SignatureError("Invalid webhook signature.")

    try:
        event = decode_event(body)
    except DecodeError as e:
        logger.warning(f"[RAZORPAY_WEBHOOK] Undecodable payload ({e.reason}): {e}")
        raise ValidationError("Invalid webhook payload.", extra={"reason": e.reason})

    event_name = event.name
    logger.info(f"[RAZORPAY_WEBHOOK] Received event: {event_name}")

    try:
        result = WebhookReconciler(store).apply(event, signature)
    except BillingError as e:
        # Store and validation errors carry their own client status
        if e.status_code >= 500:
            capture_exception(e, extra={"event": event_name})
        logger.warning(f"[RAZORPAY_WEBHOOK] {event_name} rejected: {e}")
        raise
    except Exception as e:
        logger.error(
            f"[RAZORPAY_WEBHOOK] Error processing {event_name}: {e}",
            exc_info=True,
        )
        capture_exception(e, extra={"event": event_name, "entity_ids": _entity_ids(event)})
        raise InternalError("Webhook processing error.") from e

    return schemas.WebhookResponse(event=event_name, action=result.action)


def _entity_ids(event) -> dict:
    """Gateway identifiers carried by an event, for error context."""
    if isinstance(event, UnhandledEvent):
        return {}
    ids = {}
    for kind in ("payment", "subscription"):
        entity = getattr(event, kind, None)
        if entity is not None:
            ids[kind] = entity.id
    return ids
