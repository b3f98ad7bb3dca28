"""Webhook reconciliation engine.

WHAT:
    Applies a decoded Razorpay webhook event to the Subscription and Payment
    records. Each handled event maps to one transition:

        payment.captured        → upsert Payment (key: payment id)
        subscription.activated  → upsert Subscription (key: subscription id)
        subscription.charged    → update Subscription + upsert its Payment
        subscription.halted     → update Subscription status
        subscription.cancelled  → update Subscription status (period end kept)
        subscription.completed  → update Subscription status
        anything else           → no-op, acknowledged

WHY:
    Razorpay delivers webhooks at least once and in no guaranteed order.
    Every transition is keyed on the gateway's identifiers and overwrites
    fields instead of incrementing them, so a redelivered event converges
    on the same rows.

RULES:
    - A stored terminal status (cancelled, completed) is never replaced by
      a non-terminal one.
    - Update-only transitions on an unseen subscription raise
      RecordNotFoundError; the endpoint answers 404 and Razorpay redelivers
      later, by which time subscription.activated has usually landed.
    - subscription.activated for an unknown customer does not create an
      orphan row; it is logged, captured, and acknowledged.
    - Payments with no resolvable owner are stored under UNKNOWN_USER_ID and
      backfilled when a later delivery identifies the owner.

REFERENCES:
    - https://razorpay.com/docs/webhooks/payloads/subscriptions/
    - https://razorpay.com/docs/webhooks/payloads/payments/
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from ..errors import ValidationError
from ..models import (
    UNKNOWN_USER_ID,
    Payment,
    PaymentStatusEnum,
    Subscription,
    SubscriptionStatusEnum,
)
from ..store import RecordStore
from ..telemetry import capture_message
from .events import (
    PaymentCaptured,
    PaymentEntity,
    SubscriptionActivated,
    SubscriptionCharged,
    SubscriptionEntity,
    SubscriptionStatusChanged,
    UnhandledEvent,
    WebhookEvent,
)

logger = logging.getLogger(__name__)


# Status an event implies when the entity's own status is missing or unknown
_IMPLIED_SUBSCRIPTION_STATUS = {
    "subscription.activated": SubscriptionStatusEnum.active,
    "subscription.charged": SubscriptionStatusEnum.active,
    "subscription.halted": SubscriptionStatusEnum.halted,
    "subscription.cancelled": SubscriptionStatusEnum.cancelled,
    "subscription.completed": SubscriptionStatusEnum.completed,
}

_MINOR_UNITS = Decimal(100)
_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of applying one event.

    action: processed | ignored | skipped
    """

    event: Optional[str]
    action: str
    detail: Optional[str] = None


# =============================================================================
# FIELD CONVERSION
# =============================================================================

def to_major_units(amount: Optional[int]) -> Optional[Decimal]:
    """Convert a minor-unit amount (paise) to major units (rupees)."""
    if amount is None:
        return None
    try:
        return (Decimal(amount) / _MINOR_UNITS).quantize(_CENTS)
    except InvalidOperation:
        logger.warning(f"[RECONCILER] Ignoring out-of-range amount={amount}")
        return None


def period_end_from_epoch(current_end: Optional[int]) -> Optional[datetime]:
    """Convert Razorpay's `current_end` (epoch seconds) to a UTC datetime."""
    if current_end is None:
        return None
    try:
        return datetime.fromtimestamp(current_end, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        logger.warning(f"[RECONCILER] Ignoring out-of-range current_end={current_end}")
        return None


def _subscription_status(value: Optional[str]) -> Optional[SubscriptionStatusEnum]:
    try:
        return SubscriptionStatusEnum(value)
    except ValueError:
        return None


def _payment_status(value: Optional[str], default: PaymentStatusEnum) -> PaymentStatusEnum:
    try:
        return PaymentStatusEnum(value)
    except ValueError:
        if value is not None:
            logger.warning(f"[RECONCILER] Unknown payment status {value!r}, using {default.value}")
        return default


def next_subscription_status(
    current: Optional[SubscriptionStatusEnum],
    event_name: str,
    reported: Optional[str],
) -> SubscriptionStatusEnum:
    """Resolve the status a transition writes.

    The entity's status wins when it is a known value, otherwise the status
    the event implies. A terminal current status is kept against a
    non-terminal incoming one.
    """
    incoming = _subscription_status(reported) or _IMPLIED_SUBSCRIPTION_STATUS[event_name]
    if current is not None and current.is_terminal and not incoming.is_terminal:
        logger.warning(
            f"[RECONCILER] Ignoring {event_name} status {incoming.value}: "
            f"subscription is already {current.value}"
        )
        return current
    return incoming


def _present(values: Dict[str, Any]) -> Dict[str, Any]:
    return {name: value for name, value in values.items() if value is not None}


def _require_id(entity_id: Optional[str], event_name: str, kind: str) -> str:
    if not entity_id:
        raise ValidationError(f"{event_name} payload is missing the {kind} id.")
    return entity_id


# =============================================================================
# ENGINE
# =============================================================================

class WebhookReconciler:
    """Applies decoded webhook events to the record store.

    One instance per request; every event runs in a single store
    transaction (commit on success, rollback on failure).
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def apply(self, event: WebhookEvent, signature: Optional[str] = None) -> ReconcileResult:
        with self.store.transaction():
            if isinstance(event, PaymentCaptured):
                return self._payment_captured(event, signature)
            if isinstance(event, SubscriptionActivated):
                return self._subscription_activated(event)
            if isinstance(event, SubscriptionCharged):
                return self._subscription_charged(event, signature)
            if isinstance(event, SubscriptionStatusChanged):
                return self._subscription_status_changed(event)
            if isinstance(event, UnhandledEvent):
                logger.info(f"[RECONCILER] Unhandled Razorpay event: {event.name}")
                return ReconcileResult(event.name, "ignored")
        raise TypeError(f"Unsupported webhook event variant: {type(event).__name__}")

    # -------------------------------------------------------------------------
    # payment.captured
    # -------------------------------------------------------------------------

    def _payment_captured(self, event: PaymentCaptured, signature: Optional[str]) -> ReconcileResult:
        payment = event.payment
        payment_id = _require_id(payment.id, event.name, "payment")
        owner_id = self._resolve_payment_owner(payment)

        fields = {
            "status": _payment_status(payment.status, PaymentStatusEnum.captured),
            "amount": to_major_units(payment.amount),
            "currency": payment.currency,
            "method": payment.method,
            "razorpay_order_id": payment.order_id,
            "notes": payment.notes,
            "razorpay_signature": signature,
        }

        def update(row: Payment) -> Dict[str, Any]:
            values = _present(fields)
            if row.needs_reconciliation and owner_id:
                logger.info(f"[RECONCILER] Backfilled owner {owner_id} for payment {payment_id}")
                values["user_id"] = owner_id
            if payment.subscription_id:
                values["subscription_id"] = payment.subscription_id
                values["is_subscription_payment"] = True
            return values

        record = self.store.upsert_payment(
            payment_id,
            create={
                **fields,
                "user_id": owner_id or UNKNOWN_USER_ID,
                "is_subscription_payment": bool(payment.subscription_id),
                "subscription_id": payment.subscription_id,
            },
            update=update,
        )
        logger.info(f"[RECONCILER] Payment record {record.id} upserted for {payment_id}")

        if record.needs_reconciliation:
            self._report_unowned_payment(payment_id, event.name)
        elif not payment.subscription_id and payment.internal_user_id:
            logger.info(
                f"[RECONCILER] One-time payment {payment_id} captured for user {payment.internal_user_id}"
            )
        return ReconcileResult(event.name, "processed")

    def _resolve_payment_owner(self, payment: PaymentEntity) -> Optional[str]:
        if payment.internal_user_id:
            return payment.internal_user_id
        if payment.subscription_id:
            subscription = self.store.find_subscription(payment.subscription_id)
            if subscription is not None:
                return subscription.user_id
        return None

    def _report_unowned_payment(self, payment_id: str, event_name: str) -> None:
        logger.warning(
            f"[RECONCILER] Payment {payment_id} stored under {UNKNOWN_USER_ID}: "
            f"no internal_user_id in notes and no owning subscription"
        )
        capture_message(
            "Razorpay payment stored without owner",
            level="warning",
            extra={"razorpay_payment_id": payment_id, "event": event_name},
        )

    # -------------------------------------------------------------------------
    # subscription.activated
    # -------------------------------------------------------------------------

    def _subscription_activated(self, event: SubscriptionActivated) -> ReconcileResult:
        entity = event.subscription
        subscription_id = _require_id(entity.id, event.name, "subscription")

        user = (
            self.store.find_user_by_customer_id(entity.customer_id)
            if entity.customer_id
            else None
        )
        if user is None:
            logger.error(
                f"[RECONCILER] User not found for Razorpay customer {entity.customer_id} "
                f"on {event.name} ({subscription_id}); no subscription row created"
            )
            capture_message(
                "Razorpay subscription activated for unknown customer",
                level="error",
                extra={
                    "razorpay_subscription_id": subscription_id,
                    "razorpay_customer_id": entity.customer_id,
                },
            )
            return ReconcileResult(event.name, "skipped", "user_not_found")

        period_end = period_end_from_epoch(entity.current_end)

        def update(row: Subscription) -> Dict[str, Any]:
            values = _present({
                "razorpay_plan_id": entity.plan_id,
                "current_period_end": period_end,
            })
            values["status"] = next_subscription_status(row.status, event.name, entity.status)
            values["user_id"] = user.id
            return values

        record = self.store.upsert_subscription(
            subscription_id,
            create={
                "user_id": user.id,
                "razorpay_plan_id": entity.plan_id,
                "status": next_subscription_status(None, event.name, entity.status),
                "current_period_end": period_end,
            },
            update=update,
        )
        logger.info(
            f"[RECONCILER] Subscription {record.id} for user {user.id} activated/updated "
            f"(status={record.status.value})"
        )
        return ReconcileResult(event.name, "processed")

    # -------------------------------------------------------------------------
    # subscription.charged
    # -------------------------------------------------------------------------

    def _subscription_charged(self, event: SubscriptionCharged, signature: Optional[str]) -> ReconcileResult:
        entity = event.subscription
        subscription_id = _require_id(entity.id, event.name, "subscription")
        period_end = period_end_from_epoch(entity.current_end)

        def update_subscription(row: Subscription) -> Dict[str, Any]:
            values = _present({"current_period_end": period_end})
            values["status"] = next_subscription_status(row.status, event.name, entity.status)
            return values

        subscription = self.store.update_subscription(subscription_id, update_subscription)
        logger.info(
            f"[RECONCILER] Subscription {subscription.id} charged. "
            f"New period end: {subscription.current_period_end}"
        )

        payment = event.payment
        if payment is None or not payment.id:
            logger.warning(f"[RECONCILER] {event.name} for {subscription_id} carried no payment entity")
            return ReconcileResult(event.name, "processed")

        owner_id = subscription.user_id

        def update_payment(row: Payment) -> Dict[str, Any]:
            values: Dict[str, Any] = {
                "status": PaymentStatusEnum.captured,
                "subscription_id": subscription_id,
                "is_subscription_payment": True,
            }
            if row.needs_reconciliation:
                logger.info(f"[RECONCILER] Backfilled owner {owner_id} for payment {payment.id}")
                values["user_id"] = owner_id
            return values

        self.store.upsert_payment(
            payment.id,
            create={
                "user_id": owner_id,
                "status": PaymentStatusEnum.captured,
                "amount": to_major_units(payment.amount),
                "currency": payment.currency,
                "method": payment.method,
                "razorpay_order_id": payment.order_id,
                "is_subscription_payment": True,
                "subscription_id": subscription_id,
                "notes": payment.notes,
                "razorpay_signature": signature,
            },
            update=update_payment,
        )
        logger.info(f"[RECONCILER] Payment record for subscription charge {payment.id} ensured")
        return ReconcileResult(event.name, "processed")

    # -------------------------------------------------------------------------
    # subscription.halted / cancelled / completed
    # -------------------------------------------------------------------------

    def _subscription_status_changed(self, event: SubscriptionStatusChanged) -> ReconcileResult:
        entity: SubscriptionEntity = event.subscription
        subscription_id = _require_id(entity.id, event.name, "subscription")

        record = self.store.update_subscription(
            subscription_id,
            lambda row: {"status": next_subscription_status(row.status, event.name, entity.status)},
        )
        logger.info(f"[RECONCILER] Subscription {subscription_id} is now {record.status.value}")
        return ReconcileResult(event.name, "processed")
