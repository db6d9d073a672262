"""Helpers for issuing and verifying bearer credentials."""

from __future__ import annotations

from datetime import timedelta

from fastapi import HTTPException, status

from app.config import get_settings
from zap.realtime.auth import ConnectionAuthenticator
from zap.realtime.errors import AuthError
from zap.realtime.schemas import Identity

settings = get_settings()


def get_authenticator() -> ConnectionAuthenticator:
    return ConnectionAuthenticator(
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
        leeway_seconds=settings.jwt_leeway_seconds,
    )


def create_access_token(
    user_id: str, username: str, expires_delta: timedelta | None = None
) -> str:
    """Create a signed JWT access token with an expiration time."""

    lifetime = (
        expires_delta
        if expires_delta is not None
        else timedelta(minutes=settings.access_token_expire_minutes)
    )
    return get_authenticator().issue(user_id, username, expires_delta=lifetime)


def decode_access_token(token: str | None) -> Identity:
    """Decode and validate a JWT access token."""

    try:
        return get_authenticator().authenticate(token)
    except AuthError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
