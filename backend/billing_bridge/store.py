"""Record store for billing records.

WHAT:
    Keyed persistence over the SQLAlchemy session: find by unique key,
    update by unique key, and upsert (create-if-absent-else-update) by
    unique key for Subscription and Payment, plus the user lookups the
    billing flow needs.

WHY:
    The reconciler relies on the store, not on in-process locking, for
    per-record consistency. Upserts insert inside a SAVEPOINT; when a
    concurrent delivery wins the race on the unique key, the insert is
    rolled back and the winning row is updated instead, so both deliveries
    converge on one row.

USAGE:
    store = RecordStore(db)
    with store.transaction():
        store.upsert_payment("pay_123", create={...}, update={...})
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Type, Union

from fastapi import Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .database import get_db
from .errors import RecordNotFoundError
from .models import Payment, Subscription, User

logger = logging.getLogger(__name__)

# Update values, or a function computing them from the current row
UpdateSpec = Union[Mapping[str, Any], Callable[[Any], Mapping[str, Any]]]


def _assign(row, values: Mapping[str, Any]) -> None:
    for name, value in values.items():
        setattr(row, name, value)


def _resolve_update(row, update: UpdateSpec) -> Mapping[str, Any]:
    return update(row) if callable(update) else update


class RecordStore:
    """Billing record store bound to one request-scoped session."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    @contextmanager
    def transaction(self) -> Iterator["RecordStore"]:
        """Commit on success, roll back on any exception."""
        try:
            yield self
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    # =========================================================================
    # USERS
    # =========================================================================

    def find_user(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def find_user_by_customer_id(self, customer_id: str) -> Optional[User]:
        return (
            self.db.query(User)
            .filter(User.razorpay_customer_id == customer_id)
            .first()
        )

    def attach_customer_id(self, user: User, customer_id: str) -> User:
        """Persist the Razorpay customer id assigned to a user."""
        user.razorpay_customer_id = customer_id
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"[STORE] Attached Razorpay customer {customer_id} to user {user.id}")
        return user

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def find_subscription(self, razorpay_subscription_id: str) -> Optional[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(Subscription.razorpay_subscription_id == razorpay_subscription_id)
            .first()
        )

    def find_user_subscription(
        self, razorpay_subscription_id: str, user_id: str
    ) -> Optional[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.razorpay_subscription_id == razorpay_subscription_id,
                Subscription.user_id == user_id,
            )
            .first()
        )

    def latest_subscription_for_user(self, user_id: str) -> Optional[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .first()
        )

    def update_subscription(
        self, razorpay_subscription_id: str, update: UpdateSpec
    ) -> Subscription:
        """Update an existing subscription.

        Raises:
            RecordNotFoundError: no subscription has this external id
        """
        row = self.find_subscription(razorpay_subscription_id)
        if row is None:
            raise RecordNotFoundError("Subscription", razorpay_subscription_id)
        _assign(row, _resolve_update(row, update))
        self.db.flush()
        return row

    def upsert_subscription(
        self,
        razorpay_subscription_id: str,
        create: Mapping[str, Any],
        update: UpdateSpec,
    ) -> Subscription:
        return self._upsert(
            Subscription, "razorpay_subscription_id", razorpay_subscription_id, create, update
        )

    # =========================================================================
    # PAYMENTS
    # =========================================================================

    def find_payment(self, razorpay_payment_id: str) -> Optional[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.razorpay_payment_id == razorpay_payment_id)
            .first()
        )

    def upsert_payment(
        self,
        razorpay_payment_id: str,
        create: Mapping[str, Any],
        update: UpdateSpec,
    ) -> Payment:
        return self._upsert(Payment, "razorpay_payment_id", razorpay_payment_id, create, update)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _find_by(self, model: Type, key_name: str, key: str):
        return self.db.query(model).filter(getattr(model, key_name) == key).first()

    def _upsert(
        self,
        model: Type,
        key_name: str,
        key: str,
        create: Mapping[str, Any],
        update: UpdateSpec,
    ):
        row = self._find_by(model, key_name, key)
        if row is not None:
            _assign(row, _resolve_update(row, update))
            self.db.flush()
            return row

        values: Dict[str, Any] = dict(create)
        values[key_name] = key
        try:
            with self.db.begin_nested():
                row = model(**values)
                self.db.add(row)
        except IntegrityError:
            logger.info(
                f"[STORE] Concurrent insert for {model.__name__} {key}; updating existing row"
            )
            row = self._find_by(model, key_name, key)
            if row is None:
                raise
            _assign(row, _resolve_update(row, update))
            self.db.flush()
        return row


def get_record_store(db: Session = Depends(get_db)) -> RecordStore:
    """FastAPI dependency: a RecordStore over the request-scoped session."""
    return RecordStore(db)
