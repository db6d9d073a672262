"""FastAPI dependencies for the API layer."""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.security import decode_access_token
from zap.realtime.schemas import Identity

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Identity:
    """Retrieve the caller's identity from the bearer token."""

    token = credentials.credentials if credentials is not None else None
    return decode_access_token(token)
