"""
Billing Error Taxonomy
======================

Exception types raised by the webhook pipeline, the record store and the
action endpoints, plus the FastAPI handler that renders them.

WHY THIS FILE EXISTS
--------------------
Every failure has a client-facing status and message decided where it is
detected:

- Validation and authorization problems are returned immediately.
- Signature problems fail closed.
- Gateway failures pass through the upstream status/description.
- Everything else becomes a generic internal error, so store error codes
  and stack traces never reach the response.

RELATED FILES
-------------
- billing_bridge/store.py: raises RecordNotFoundError
- billing_bridge/billing/gateway.py: raises RemoteServiceError
- billing_bridge/routers/*.py: raise and convert these errors
- billing_bridge/main.py: registers register_error_handlers()
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class BillingError(Exception):
    """
    Base exception for all billing bridge errors.

    ATTRIBUTES:
        message: Client-facing description
        status_code: HTTP status used when the error reaches a response
        extra: Additional response fields (e.g. upstream `field`)
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error."

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra or {}
        super().__init__(self.message)

    def to_response_body(self) -> Dict[str, Any]:
        body = {"error": self.message}
        body.update({k: v for k, v in self.extra.items() if v is not None})
        return body


class AuthenticationError(BillingError):
    """Missing or invalid session."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized. User session not found."


class AuthorizationError(BillingError):
    """Resource exists but does not belong to the caller.

    Reported as 404 so callers cannot probe for other users' resources.
    """

    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found or does not belong to the user."


class ValidationError(BillingError):
    """Missing or malformed required field."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request."


class SignatureError(BillingError):
    """HMAC signature did not match."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid signature."


class NotFoundError(BillingError):
    """Record absent."""

    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Record not found."


class RecordNotFoundError(NotFoundError):
    """An update-only store operation found no row for its key."""

    default_message = "Related record not found for processing webhook."

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__()

    def __str__(self) -> str:
        return f"{self.kind} not found for key {self.key}"


class RemoteServiceError(BillingError):
    """Razorpay API call failed.

    Carries the upstream status and error description when the gateway
    returned one; otherwise the failure is generalized to a 500.
    """

    default_message = "Razorpay request failed."

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        field: Optional[str] = None,
        reason: Optional[str] = None,
        step: Optional[str] = None,
        source: Optional[str] = None,
    ):
        self.description = message
        super().__init__(
            message,
            status_code=status_code,
            extra={"field": field, "reason": reason, "step": step, "source": source},
        )


class InternalError(BillingError):
    """Unexpected failure (store error, bug)."""


class ConfigurationError(InternalError):
    """Server-side configuration (keys, webhook secret) is missing."""

    default_message = "Server configuration error."


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return ValidationError.default_message
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    if location:
        return f"Invalid value for `{location}`: {first.get('msg')}."
    return "Invalid request body."


def register_error_handlers(app: FastAPI) -> None:
    """Render BillingError subclasses as `{"error": ...}` JSON responses.

    Request body validation failures use the same shape with status 400.
    """

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        message = _describe_validation_error(exc)
        logger.info(f"[ERRORS] Invalid request on {request.method} {request.url.path}: {message}")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})

    @app.exception_handler(BillingError)
    async def handle_billing_error(request: Request, exc: BillingError):
        if exc.status_code >= 500:
            logger.error(
                f"[ERRORS] {type(exc).__name__} on {request.method} {request.url.path}: {exc.message}"
            )
        else:
            logger.info(
                f"[ERRORS] {type(exc).__name__} on {request.method} {request.url.path}: {exc.message}"
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_response_body())
