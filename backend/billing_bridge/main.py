"""FastAPI application entrypoint.

Configures error tracking, CORS and error handlers, includes the Razorpay
routers, and exposes a healthcheck endpoint.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .database import init_db
from .deps import get_settings
from .errors import register_error_handlers
from .routers import razorpay as razorpay_router
from .routers import razorpay_webhook as razorpay_webhook_router
from .routers import user as user_router
from .telemetry import init_sentry
from . import schemas


def create_app() -> FastAPI:
    # Sentry must be initialized before the app so the FastAPI integration hooks in
    init_sentry()

    app = FastAPI(
        title="Billing Bridge API",
        description="""
        Bridge between the Razorpay payment gateway and the application's
        subscription state.

        This API provides endpoints for:
        - Creating one-time payment orders and verifying checkout signatures
        - Starting, cancelling and reading the current user's subscription
        - Ingesting Razorpay webhooks (the source of truth for billing state)

        ## Authentication

        Subscription endpoints require the session JWT issued by the main
        application, sent as the `access_token` cookie or a Bearer header.
        """,
        version="1.0.0",
    )

    settings = get_settings()

    logger.info(f"[CORS] Allowed origins: {settings.cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(razorpay_router.router)
    app.include_router(razorpay_webhook_router.router)
    app.include_router(user_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    def health():
        return schemas.HealthResponse(status="ok")

    @app.on_event("startup")
    async def startup_checks():
        """Warn about missing gateway configuration and ensure tables exist."""
        if not settings.RAZORPAY_WEBHOOK_SECRET:
            logger.warning("[STARTUP] RAZORPAY_WEBHOOK_SECRET not set - webhooks will be rejected with 500")
        if not settings.RAZORPAY_KEY_ID or not settings.RAZORPAY_KEY_SECRET:
            logger.warning("[STARTUP] RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET not set - action endpoints will fail")
        init_db()

    return app


app = create_app()
