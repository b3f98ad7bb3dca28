"""Razorpay action endpoints.

WHAT: Client-initiated gateway operations
WHY: The frontend needs gateway identifiers to open Razorpay Checkout and a
    way to manage the current user's subscription. None of these endpoints
    write subscription or payment state; webhooks do that.

Key flows:
    1. One-time payment: POST /razorpay/create-order → Checkout →
       POST /razorpay/verify-payment (fast client feedback) →
       payment.captured webhook (authoritative)
    2. Subscription: POST /razorpay/create-subscription → Checkout →
       subscription.activated webhook creates the local row
    3. Cancellation: POST /razorpay/cancel-subscription (at cycle end) →
       subscription.cancelled webhook updates the status

REFERENCES:
    - https://razorpay.com/docs/payments/server-integration/python/payment-gateway/build-integration/
    - https://razorpay.com/docs/payments/subscriptions/integration-guide/
    - billing_bridge/billing/gateway.py
"""

import logging
import math
import time

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .. import schemas
from ..billing.gateway import RazorpayClient, get_razorpay_client
from ..billing.signature import verify_payment_signature
from ..deps import Settings, get_current_user, get_settings
from ..errors import (
    AuthorizationError,
    ConfigurationError,
    InternalError,
    RemoteServiceError,
    ValidationError,
)
from ..models import User
from ..store import RecordStore, get_record_store
from ..telemetry import capture_exception

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/razorpay",
    tags=["Billing"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        500: {"model": schemas.ErrorResponse, "description": "Internal Server Error"},
    },
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def _to_minor_units(amount) -> int:
    """Convert a major-unit amount to paise.

    WHAT: Validates a positive finite number and rounds to the nearest paisa
    WHY: Razorpay amounts are integers in the smallest currency unit
    """
    if amount is None or isinstance(amount, bool) or not math.isfinite(amount) or amount <= 0:
        raise ValidationError("Invalid amount provided. Amount must be a positive number.")
    scaled = amount * 100
    if not math.isfinite(scaled):
        raise ValidationError("Invalid amount provided. Amount must be a positive number.")
    minor = int(round(scaled))
    if minor <= 0:
        raise ValidationError("Invalid amount provided. Amount must be a positive number.")
    return minor


def _generate_receipt() -> str:
    return f"receipt_order_{int(time.time() * 1000)}"


# =============================================================================
# ORDERS
# =============================================================================


@router.post(
    "/create-order",
    response_model=schemas.CreateOrderResponse,
    summary="Create one-time payment order",
)
async def create_order(
    payload: schemas.CreateOrderRequest,
    client: RazorpayClient = Depends(get_razorpay_client),
):
    """Create a Razorpay order for a one-time payment."""
    amount = _to_minor_units(payload.amount)
    receipt = payload.receipt or _generate_receipt()

    order = await client.create_order(
        amount=amount,
        currency=payload.currency,
        receipt=receipt,
        notes={"type": "one-time_payment"},
    )
    if not order.get("id"):
        raise RemoteServiceError("Razorpay order creation failed.")

    return schemas.CreateOrderResponse(
        orderId=order["id"],
        amount=order.get("amount", amount),
        currency=order.get("currency", payload.currency),
        keyId=client.key_id,
    )


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================


@router.post(
    "/create-subscription",
    response_model=schemas.CreateSubscriptionResponse,
    summary="Start a subscription",
    description="""
    Create a Razorpay subscription for the current user.

    Flow:
        1. Ensure the user has a Razorpay customer (created once, id persisted)
        2. Create the subscription bound to the plan
        3. Return identifiers for Razorpay Checkout

    The local Subscription record is created by the subscription.activated
    webhook, not here.
    """,
)
async def create_subscription(
    payload: schemas.CreateSubscriptionRequest,
    current_user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
    client: RazorpayClient = Depends(get_razorpay_client),
):
    if not payload.plan_id:
        raise ValidationError("`plan_id` is required.")

    customer_id = current_user.razorpay_customer_id
    if not customer_id:
        customer = await client.create_customer(
            name=current_user.name or current_user.email,
            email=current_user.email,
            notes={"internal_user_id": current_user.id},
        )
        customer_id = customer.get("id")
        if not customer_id:
            raise RemoteServiceError("Razorpay customer creation failed.")
        try:
            store.attach_customer_id(current_user, customer_id)
        except SQLAlchemyError as e:
            logger.error(f"[RAZORPAY] Failed to persist customer {customer_id}: {e}", exc_info=True)
            capture_exception(e, extra={"user_id": current_user.id, "razorpay_customer_id": customer_id})
            raise InternalError("Internal Server Error while creating subscription.") from e

    subscription = await client.create_subscription(
        plan_id=payload.plan_id,
        customer_id=customer_id,
        total_count=payload.total_count,
        notes={"internal_user_id": current_user.id, "plan_selected": payload.plan_id},
    )
    if not subscription.get("id"):
        raise RemoteServiceError("Razorpay subscription creation failed.")

    logger.info(
        f"[RAZORPAY] Subscription {subscription['id']} created for user {current_user.id}; "
        f"awaiting subscription.activated"
    )
    return schemas.CreateSubscriptionResponse(
        subscriptionId=subscription["id"],
        razorpayCustomerId=customer_id,
        keyId=client.key_id,
        planId=payload.plan_id,
        status=subscription.get("status"),
    )


@router.post(
    "/cancel-subscription",
    response_model=schemas.CancelSubscriptionResponse,
    summary="Cancel subscription at cycle end",
    responses={404: {"model": schemas.ErrorResponse, "description": "Subscription not found"}},
)
async def cancel_subscription(
    payload: schemas.CancelSubscriptionRequest,
    current_user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
    client: RazorpayClient = Depends(get_razorpay_client),
):
    """Request cancellation at the end of the current billing cycle.

    The local status is left to the subscription.cancelled webhook.
    """
    subscription_id = payload.razorpay_subscription_id
    if not subscription_id:
        raise ValidationError("`razorpay_subscription_id` is required.")

    subscription = store.find_user_subscription(subscription_id, current_user.id)
    if subscription is None:
        raise AuthorizationError("Subscription not found or does not belong to the user.")

    if subscription.status.is_terminal:
        raise ValidationError(f"Subscription is already {subscription.status.value}.")

    cancelled = await client.cancel_subscription(subscription_id, cancel_at_cycle_end=True)
    logger.info(
        f"[RAZORPAY] Cancellation initiated for {subscription_id} by user {current_user.id} "
        f"(status={cancelled.get('status')}, schedule_change_at={cancelled.get('schedule_change_at')})"
    )

    return schemas.CancelSubscriptionResponse(
        message=(
            "Subscription cancellation initiated successfully. The subscription will be "
            "cancelled at the end of the current billing cycle."
        ),
        status=cancelled.get("status"),
        schedule_change_at=cancelled.get("schedule_change_at"),
    )


# =============================================================================
# PAYMENT VERIFICATION
# =============================================================================


@router.post(
    "/verify-payment",
    response_model=schemas.VerifyPaymentResponse,
    summary="Verify checkout payment signature",
)
async def verify_payment(
    payload: schemas.VerifyPaymentRequest,
    store: RecordStore = Depends(get_record_store),
    settings: Settings = Depends(get_settings),
):
    """Check the signature Razorpay Checkout returned to the client.

    Read-only: the payment.captured webhook owns the payment record.
    """
    if not settings.RAZORPAY_KEY_SECRET:
        logger.error("[RAZORPAY] RAZORPAY_KEY_SECRET not configured; cannot verify payments")
        raise ConfigurationError("Server configuration error for payment verification.")

    order_id = payload.razorpay_order_id
    payment_id = payload.razorpay_payment_id
    if not order_id or not payment_id or not payload.razorpay_signature:
        raise ValidationError("Missing payment verification details.")

    if not verify_payment_signature(order_id, payment_id, payload.razorpay_signature, settings.RAZORPAY_KEY_SECRET):
        logger.warning(f"[RAZORPAY] Invalid checkout signature for payment {payment_id}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"verified": False, "error": "Invalid payment signature."},
        )

    try:
        payment = store.find_payment(payment_id)
    except SQLAlchemyError as e:
        # Lookup is informational; verification already succeeded
        logger.error(f"[RAZORPAY] Payment lookup failed during verification: {e}")
    else:
        if payment is not None:
            logger.info(
                f"[RAZORPAY] Payment {payment_id} verified client-side. "
                f"Current DB status: {payment.status.value}"
            )
        else:
            logger.info(
                f"[RAZORPAY] Payment {payment_id} verified client-side. "
                f"No local record yet (payment.captured webhook pending)"
            )

    return schemas.VerifyPaymentResponse(verified=True, message="Payment signature verified successfully.")
