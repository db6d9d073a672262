"""Unit tests for credential verification."""

from __future__ import annotations

from datetime import timedelta

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from app.api.deps import get_current_identity
from app.core.security import create_access_token, decode_access_token
from zap.realtime.auth import ConnectionAuthenticator
from zap.realtime.errors import AuthError, AuthFailure
from zap.realtime.schemas import Identity

from conftest import SECRET


@pytest.fixture()
def authenticator() -> ConnectionAuthenticator:
    return ConnectionAuthenticator(SECRET)


def test_issued_token_round_trips(authenticator) -> None:
    token = authenticator.issue("u1", "alice", expires_delta=timedelta(minutes=1))

    assert authenticator.authenticate(token) == Identity(user_id="u1", username="alice")


@pytest.mark.parametrize("credential", [None, ""])
def test_missing_credential(authenticator, credential) -> None:
    with pytest.raises(AuthError) as exc:
        authenticator.authenticate(credential)

    assert exc.value.kind is AuthFailure.MISSING
    assert exc.value.message == "Authentication required"


def test_expired_credential(authenticator) -> None:
    token = authenticator.issue("u1", "alice", expires_delta=timedelta(seconds=-30))

    with pytest.raises(AuthError) as exc:
        authenticator.authenticate(token)

    assert exc.value.kind is AuthFailure.EXPIRED
    assert exc.value.message == "Token expired"


def test_leeway_tolerates_small_clock_skew() -> None:
    authenticator = ConnectionAuthenticator(SECRET, leeway_seconds=60)
    token = authenticator.issue("u1", "alice", expires_delta=timedelta(seconds=-5))

    assert authenticator.authenticate(token).user_id == "u1"


def test_wrong_signature_is_invalid(authenticator) -> None:
    token = ConnectionAuthenticator("other-secret").issue(
        "u1", "alice", expires_delta=timedelta(minutes=1)
    )

    with pytest.raises(AuthError) as exc:
        authenticator.authenticate(token)

    assert exc.value.kind is AuthFailure.INVALID
    assert exc.value.message == "Invalid token"


def test_garbage_is_invalid(authenticator) -> None:
    with pytest.raises(AuthError) as exc:
        authenticator.authenticate("not-a-jwt")

    assert exc.value.kind is AuthFailure.INVALID


@pytest.mark.parametrize(
    "claims",
    [
        {"username": "alice"},
        {"userId": "u1"},
        {"userId": 7, "username": "alice"},
        {"sub": "u1"},
    ],
)
def test_missing_identity_claims_are_invalid(authenticator, claims) -> None:
    token = jwt.encode(claims, SECRET, algorithm="HS256")

    with pytest.raises(AuthError) as exc:
        authenticator.authenticate(token)

    assert exc.value.kind is AuthFailure.INVALID


def test_security_helpers_use_settings() -> None:
    token = create_access_token("u9", "ivy")

    assert decode_access_token(token) == Identity(user_id="u9", username="ivy")


def test_decode_access_token_maps_to_http_401() -> None:
    token = create_access_token("u9", "ivy", expires_delta=timedelta(seconds=-30))

    with pytest.raises(HTTPException) as exc:
        decode_access_token(token)

    assert exc.value.status_code == 401
    assert exc.value.detail == "Token expired"


def test_current_identity_requires_bearer() -> None:
    with pytest.raises(HTTPException) as exc:
        get_current_identity(None)

    assert exc.value.status_code == 401
    assert exc.value.detail == "Authentication required"

    credentials = HTTPAuthorizationCredentials(
        scheme="Bearer", credentials=create_access_token("u1", "alice")
    )
    assert get_current_identity(credentials).username == "alice"
