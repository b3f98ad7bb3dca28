"""Current user's billing state."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from .. import schemas
from ..deps import get_current_user
from ..errors import InternalError
from ..models import User
from ..store import RecordStore, get_record_store

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/user",
    tags=["User"],
    responses={
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
    },
)


@router.get(
    "/get-subscription",
    response_model=schemas.GetSubscriptionResponse,
    summary="Get current subscription",
)
def get_subscription(
    current_user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
):
    """Return the caller's most recently created subscription, or null."""
    try:
        subscription = store.latest_subscription_for_user(current_user.id)
    except SQLAlchemyError as e:
        logger.error(f"[USER] Subscription lookup failed for {current_user.id}: {e}", exc_info=True)
        raise InternalError("Internal Server Error while fetching subscription details.") from e

    if subscription is None:
        return schemas.GetSubscriptionResponse(
            subscription=None, message="No subscription found for this user."
        )
    return schemas.GetSubscriptionResponse(
        subscription=schemas.SubscriptionOut.model_validate(subscription)
    )
