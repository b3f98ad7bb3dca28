"""Pydantic schemas for request/response payloads.

Response field names follow the public contract of the billing endpoints
(camelCase for the checkout helpers the frontend already consumes).
"""

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field, StrictFloat, StrictInt, field_validator

from .models import SubscriptionStatusEnum


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(description="Error message", examples=["Invalid signature."])
    field: Optional[str] = Field(None, description="Offending field reported by Razorpay")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status", examples=["ok"])


# =============================================================================
# ORDERS
# =============================================================================

class CreateOrderRequest(BaseModel):
    """Request to create a one-time payment order.

    WHAT: Amount in major units (rupees); converted to paise server-side
    WHY: Razorpay Checkout needs an order id before the payment popup opens
    """

    # Strict types keep booleans and numeric strings out
    amount: Optional[Union[StrictInt, StrictFloat]] = Field(None, description="Amount in major units", examples=[999])
    currency: str = Field("INR", description="ISO currency code")
    receipt: Optional[str] = Field(None, description="Merchant receipt id (generated when absent)")


class CreateOrderResponse(BaseModel):
    orderId: str = Field(description="Razorpay order id")
    amount: int = Field(description="Order amount in minor units")
    currency: str
    keyId: str = Field(description="Public Razorpay key id for Checkout")


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================

class CreateSubscriptionRequest(BaseModel):
    """Request to start a Razorpay subscription for the current user."""

    plan_id: Optional[str] = Field(None, description="Razorpay plan id", examples=["plan_ABC123"])
    total_count: StrictInt = Field(12, gt=0, description="Number of billing cycles")


class CreateSubscriptionResponse(BaseModel):
    """Identifiers the frontend passes to Razorpay Checkout.

    The local Subscription row is written later by the
    `subscription.activated` webhook.
    """

    subscriptionId: str
    razorpayCustomerId: str
    keyId: str
    planId: str
    status: Optional[str] = Field(None, description="Status reported by Razorpay (usually 'created')")


class CancelSubscriptionRequest(BaseModel):
    razorpay_subscription_id: Optional[str] = Field(None, description="Razorpay subscription id")


class CancelSubscriptionResponse(BaseModel):
    message: str
    status: Optional[str] = Field(None, description="Status reported by Razorpay after the request")
    schedule_change_at: Optional[Union[int, str]] = Field(
        None, description="When the cancellation takes effect (Razorpay value)"
    )


class SubscriptionOut(BaseModel):
    """Subscription record as stored locally."""

    id: str
    user_id: str
    razorpay_subscription_id: str
    razorpay_plan_id: Optional[str] = None
    status: SubscriptionStatusEnum
    current_period_end: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_validator("current_period_end", "created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        """Stored timestamps are UTC; SQLite reads them back without an offset."""
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class GetSubscriptionResponse(BaseModel):
    subscription: Optional[SubscriptionOut] = None
    message: Optional[str] = None


# =============================================================================
# PAYMENT VERIFICATION
# =============================================================================

class VerifyPaymentRequest(BaseModel):
    """Checkout handler result posted back by the frontend."""

    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class VerifyPaymentResponse(BaseModel):
    verified: bool
    message: Optional[str] = None
    error: Optional[str] = None


# =============================================================================
# WEBHOOKS
# =============================================================================

class WebhookResponse(BaseModel):
    """Standard webhook response.

    WHAT: Acknowledges webhook receipt
    WHY: Razorpay retries every non-2xx delivery
    """

    received: bool = Field(default=True, description="Webhook received successfully")
    message: str = Field(default="Webhook processed successfully.")
    event: Optional[str] = Field(None, description="Event name processed")
    action: Optional[str] = Field(None, description="Action taken (processed, ignored, skipped)")
