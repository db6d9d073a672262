"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import os
from datetime import timedelta
from typing import Any, Awaitable, Callable, Iterator

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest
from fastapi import status
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import get_settings
from app.main import app
from app.models import Base
from app.services import SqlChatStore
from zap.realtime.auth import ConnectionAuthenticator
from zap.realtime.coordinator import ConnectionSession
from zap.realtime.managers import RealtimeContext, get_realtime

SECRET = get_settings().jwt_secret_key


class DummyWebSocket:
    """Stand-in for a Starlette websocket that records every frame sent."""

    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.close_code: int | None = None
        self.close_reason: str | None = None

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    async def close(self, code: int = status.WS_1000_NORMAL_CLOSURE, reason: str | None = None) -> None:
        self.application_state = WebSocketState.DISCONNECTED
        self.close_code = code
        self.close_reason = reason

    def events(self, event: str) -> list[Any]:
        return [frame["data"] for frame in self.sent if frame.get("type") == event]

    def types(self) -> list[str]:
        return [frame.get("type") for frame in self.sent]

    def clear(self) -> None:
        self.sent.clear()


def make_token(
    user_id: str,
    username: str,
    *,
    minutes: int = 5,
    secret: str = SECRET,
) -> str:
    authenticator = ConnectionAuthenticator(secret)
    return authenticator.issue(user_id, username, expires_delta=timedelta(minutes=minutes))


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, future=True)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(session_factory) -> SqlChatStore:
    return SqlChatStore(session_factory)


@pytest.fixture()
def realtime(store) -> RealtimeContext:
    """Realtime context wired to the in-memory store."""

    return RealtimeContext(store=store, authenticator=ConnectionAuthenticator(SECRET))


@pytest.fixture()
def connect(realtime) -> Callable[..., Awaitable[tuple[ConnectionSession, DummyWebSocket]]]:
    """Return a coroutine that opens an authenticated, active session."""

    async def _connect(
        user_id: str, username: str | None = None, *, context: RealtimeContext | None = None
    ) -> tuple[ConnectionSession, DummyWebSocket]:
        websocket = DummyWebSocket()
        session = ConnectionSession(context or realtime, websocket)  # type: ignore[arg-type]
        await session.authenticate(make_token(user_id, username or user_id))
        await session.activate()
        return session, websocket

    return _connect


@pytest.fixture()
def client(realtime) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient bound to the test realtime context."""

    app.dependency_overrides[get_realtime] = lambda: realtime
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
