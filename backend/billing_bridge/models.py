"""SQLAlchemy ORM models and enums.

This module defines the billing records reconciled from Razorpay webhooks.
Subscriptions and payments are keyed on the gateway's external identifiers
(unique columns), which is what makes webhook re-delivery idempotent.
Users are owned by the wider application; only the fields the billing
bridge reads or writes are mapped here.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    String,
)
from sqlalchemy.orm import declarative_base, relationship


# Single Base used by the entire application
Base = declarative_base()

# Owner placeholder for payments whose user could not be resolved
UNKNOWN_USER_ID = "UNKNOWN_USER"


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# Enums ---------------------------------------------------------

class SubscriptionStatusEnum(str, enum.Enum):
    created = "created"
    active = "active"
    pending = "pending"
    halted = "halted"
    cancelled = "cancelled"
    completed = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_SUBSCRIPTION_STATUSES


TERMINAL_SUBSCRIPTION_STATUSES = frozenset(
    {SubscriptionStatusEnum.cancelled, SubscriptionStatusEnum.completed}
)


class PaymentStatusEnum(str, enum.Enum):
    created = "created"
    authorized = "authorized"
    captured = "captured"
    failed = "failed"


# Core models ----------------------------------------------------

class User(Base):
    """Application user, referenced by billing records.

    `razorpay_customer_id` is attached the first time the user starts a
    subscription and is how `subscription.activated` webhooks find their
    owner.
    """
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=_new_id)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    razorpay_customer_id = Column(String, unique=True, index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    subscriptions = relationship("Subscription", back_populates="user")

    def __str__(self):
        return self.email


class Subscription(Base):
    """A Razorpay subscription as last reported by webhooks.

    Rows are created by `subscription.activated` and updated by every later
    lifecycle event. They are never deleted.
    """
    __tablename__ = "subscriptions"

    id = Column(String(64), primary_key=True, default=_new_id)
    user_id = Column(String(64), ForeignKey("users.id"), index=True, nullable=False)
    razorpay_subscription_id = Column(String, unique=True, index=True, nullable=False)
    razorpay_plan_id = Column(String, nullable=True)
    status = Column(
        Enum(SubscriptionStatusEnum, values_callable=_enum_values, native_enum=False),
        nullable=False,
        default=SubscriptionStatusEnum.created,
    )
    # Access window end; kept on cancellation
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    user = relationship("User", back_populates="subscriptions")

    def __str__(self):
        return self.razorpay_subscription_id


class Payment(Base):
    """A captured (or otherwise reported) Razorpay payment.

    `amount` is stored in major currency units. `user_id` is not a foreign
    key: payments that arrive without a resolvable owner are stored under
    UNKNOWN_USER_ID until a later delivery backfills them.
    """
    __tablename__ = "payments"

    id = Column(String(64), primary_key=True, default=_new_id)
    razorpay_payment_id = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(String(64), index=True, nullable=False)
    status = Column(
        Enum(PaymentStatusEnum, values_callable=_enum_values, native_enum=False),
        nullable=False,
        default=PaymentStatusEnum.created,
    )
    amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(8), nullable=True)
    method = Column(String, nullable=True)
    razorpay_order_id = Column(String, index=True, nullable=True)  # absent for recurring charges
    is_subscription_payment = Column(Boolean, nullable=False, default=False)
    subscription_id = Column(String, index=True, nullable=True)  # external subscription id
    notes = Column(JSON, nullable=True)
    razorpay_signature = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def needs_reconciliation(self) -> bool:
        return self.user_id == UNKNOWN_USER_ID

    def __str__(self):
        return self.razorpay_payment_id
