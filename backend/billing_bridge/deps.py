"""Dependency providers and settings management."""

from functools import lru_cache
from typing import Optional

from fastapi import Cookie, Depends, Header
from jose import JWTError
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.orm import Session

from .database import get_db
from .errors import AuthenticationError
from .models import User
from .security import decode_token
from .telemetry import set_user_context


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"

    # Razorpay credentials; missing values fail closed per request
    RAZORPAY_KEY_ID: Optional[str] = None
    RAZORPAY_KEY_SECRET: Optional[str] = None
    RAZORPAY_WEBHOOK_SECRET: Optional[str] = None
    RAZORPAY_API_URL: str = "https://api.razorpay.com/v1"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def _strip_bearer(value: str) -> str:
    if value.startswith("Bearer "):
        return value[len("Bearer ") :]
    return value


def get_current_user(
    db: Session = Depends(get_db),
    access_token: Optional[str] = Cookie(default=None, alias="access_token"),
    authorization: Optional[str] = Header(default=None),
) -> User:
    """Resolve the current user from the `access_token` cookie or Bearer header.

    The token's `sub` claim is the internal user id.
    """
    raw = access_token or authorization
    if not raw:
        raise AuthenticationError()

    try:
        payload = decode_token(_strip_bearer(raw))
    except JWTError:
        raise AuthenticationError("Unauthorized. Invalid session token.")

    subject = payload.get("sub")
    if not subject:
        raise AuthenticationError("Unauthorized. Invalid session token.")

    user = db.query(User).filter(User.id == subject).first()
    if not user:
        raise AuthenticationError("Unauthorized. User not found.")

    set_user_context(user.id, user.email)
    return user
