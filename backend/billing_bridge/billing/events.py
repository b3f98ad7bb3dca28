"""Razorpay webhook envelope decoding.

WHAT:
    Turns a verified raw webhook body into one variant of WebhookEvent,
    chosen by the envelope's `event` field:

        {"event": "subscription.charged",
         "payload": {"subscription": {"entity": {...}},
                     "payment": {"entity": {...}}}}

WHY:
    The same envelope carries different nested keys per event type. Each
    variant declares exactly which entities it carries, so the reconciler
    matches on the variant instead of probing the payload.

    Vendor payloads are loosely typed. Beyond JSON well-formedness nothing
    is validated here: entity fields that are missing or of an unexpected
    type decode to None and the reconciler decides what that means.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union


class DecodeError(Exception):
    """Raised when the webhook body is not a JSON object."""

    INVALID_PAYLOAD = "invalid_payload"

    def __init__(self, message: str, reason: str = INVALID_PAYLOAD):
        super().__init__(message)
        self.reason = reason


# =============================================================================
# FIELD COERCION
# =============================================================================

def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value or None
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _entity(payload: Dict[str, Any], kind: str) -> Dict[str, Any]:
    return _as_dict(_as_dict(payload.get(kind)).get("entity"))


# =============================================================================
# ENTITIES
# =============================================================================

@dataclass(frozen=True)
class PaymentEntity:
    """Razorpay payment entity; `amount` is in minor units (paise)."""

    id: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    method: Optional[str] = None
    order_id: Optional[str] = None
    subscription_id: Optional[str] = None
    notes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaymentEntity":
        return cls(
            id=_as_str(data.get("id")),
            status=_as_str(data.get("status")),
            amount=_as_int(data.get("amount")),
            currency=_as_str(data.get("currency")),
            method=_as_str(data.get("method")),
            order_id=_as_str(data.get("order_id")),
            subscription_id=_as_str(data.get("subscription_id")),
            notes=_as_dict(data.get("notes")),
        )

    @property
    def internal_user_id(self) -> Optional[str]:
        return _as_str(self.notes.get("internal_user_id"))


@dataclass(frozen=True)
class SubscriptionEntity:
    """Razorpay subscription entity; `current_end` is epoch seconds."""

    id: Optional[str] = None
    customer_id: Optional[str] = None
    plan_id: Optional[str] = None
    status: Optional[str] = None
    current_end: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubscriptionEntity":
        return cls(
            id=_as_str(data.get("id")),
            customer_id=_as_str(data.get("customer_id")),
            plan_id=_as_str(data.get("plan_id")),
            status=_as_str(data.get("status")),
            current_end=_as_int(data.get("current_end")),
        )


# =============================================================================
# EVENT VARIANTS
# =============================================================================

@dataclass(frozen=True)
class PaymentCaptured:
    name: str
    payment: PaymentEntity


@dataclass(frozen=True)
class SubscriptionActivated:
    name: str
    subscription: SubscriptionEntity


@dataclass(frozen=True)
class SubscriptionCharged:
    name: str
    subscription: SubscriptionEntity
    payment: Optional[PaymentEntity]


@dataclass(frozen=True)
class SubscriptionStatusChanged:
    """subscription.halted / subscription.cancelled / subscription.completed."""

    name: str
    subscription: SubscriptionEntity


@dataclass(frozen=True)
class UnhandledEvent:
    name: Optional[str]


WebhookEvent = Union[
    PaymentCaptured,
    SubscriptionActivated,
    SubscriptionCharged,
    SubscriptionStatusChanged,
    UnhandledEvent,
]


def _payment_captured(name: str, payload: Dict[str, Any]) -> WebhookEvent:
    return PaymentCaptured(name, PaymentEntity.from_dict(_entity(payload, "payment")))


def _subscription_activated(name: str, payload: Dict[str, Any]) -> WebhookEvent:
    return SubscriptionActivated(
        name, SubscriptionEntity.from_dict(_entity(payload, "subscription"))
    )


def _subscription_charged(name: str, payload: Dict[str, Any]) -> WebhookEvent:
    payment = _entity(payload, "payment")
    return SubscriptionCharged(
        name,
        SubscriptionEntity.from_dict(_entity(payload, "subscription")),
        PaymentEntity.from_dict(payment) if payment else None,
    )


def _subscription_status_changed(name: str, payload: Dict[str, Any]) -> WebhookEvent:
    return SubscriptionStatusChanged(
        name, SubscriptionEntity.from_dict(_entity(payload, "subscription"))
    )


_DECODERS: Dict[str, Callable[[str, Dict[str, Any]], WebhookEvent]] = {
    "payment.captured": _payment_captured,
    "subscription.activated": _subscription_activated,
    "subscription.charged": _subscription_charged,
    "subscription.halted": _subscription_status_changed,
    "subscription.cancelled": _subscription_status_changed,
    "subscription.completed": _subscription_status_changed,
}

HANDLED_EVENTS = frozenset(_DECODERS)


def decode_event(raw_body: bytes) -> WebhookEvent:
    """Parse a raw webhook body into a WebhookEvent variant.

    Raises:
        DecodeError: body is not UTF-8 JSON or its top level is not an object
    """
    try:
        envelope = json.loads(raw_body)
    except (UnicodeDecodeError, ValueError) as e:
        raise DecodeError(f"Invalid JSON payload: {e}") from e

    if not isinstance(envelope, dict):
        raise DecodeError("Invalid JSON payload: expected an object")

    name = _as_str(envelope.get("event"))
    decoder = _DECODERS.get(name) if name else None
    if decoder is None:
        return UnhandledEvent(name)
    return decoder(name, _as_dict(envelope.get("payload")))
