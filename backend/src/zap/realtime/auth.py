"""Verification of the bearer credential presented when a connection opens."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from .errors import AuthError, AuthFailure
from .schemas import Identity


class ConnectionAuthenticator:
    """Turn a signed credential into ``(userId, username)`` or an :class:`AuthError`."""

    def __init__(self, secret_key: str, *, algorithm: str = "HS256", leeway_seconds: int = 0) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._leeway = leeway_seconds

    def authenticate(self, credential: str | None) -> Identity:
        if not credential:
            raise AuthError(AuthFailure.MISSING)

        try:
            payload = jwt.decode(
                credential,
                self._secret_key,
                algorithms=[self._algorithm],
                leeway=self._leeway,
            )
        except jwt.ExpiredSignatureError as exc:
            raise AuthError(AuthFailure.EXPIRED) from exc
        except jwt.InvalidTokenError as exc:
            raise AuthError(AuthFailure.INVALID) from exc

        user_id = payload.get("userId")
        username = payload.get("username")
        if not isinstance(user_id, str) or not user_id:
            raise AuthError(AuthFailure.INVALID)
        if not isinstance(username, str) or not username:
            raise AuthError(AuthFailure.INVALID)
        return Identity(user_id=user_id, username=username)

    def issue(self, user_id: str, username: str, *, expires_delta: timedelta) -> str:
        """Sign a credential carrying ``userId`` and ``username`` claims."""

        to_encode: Dict[str, Any] = {"userId": user_id, "username": username}
        to_encode["exp"] = datetime.now(timezone.utc) + expires_delta
        return jwt.encode(to_encode, self._secret_key, algorithm=self._algorithm)


__all__ = ["ConnectionAuthenticator"]
