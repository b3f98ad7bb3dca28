"""
Telemetry Module
================

Observability for the billing bridge.

Components:
- sentry.py: Error tracking

Usage:
    from billing_bridge.telemetry import init_sentry, capture_exception

    init_sentry()  # once, in create_app()
"""

from billing_bridge.telemetry.sentry import (
    capture_exception,
    capture_message,
    init_sentry,
    set_user_context,
)

__all__ = [
    "capture_exception",
    "capture_message",
    "init_sentry",
    "set_user_context",
]
