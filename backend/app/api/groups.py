"""HTTP endpoint for creating groups."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_current_identity
from app.schemas import GroupCreate
from zap.realtime.errors import StoreError
from zap.realtime.managers import RealtimeContext, get_realtime
from zap.realtime.schemas import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/groups", tags=["groups"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_group(
    payload: GroupCreate,
    identity: Identity = Depends(get_current_identity),
    realtime: RealtimeContext = Depends(get_realtime),
) -> dict[str, Any]:
    """Create a group with the caller as its admin."""

    try:
        await realtime.store.upsert_user(identity.user_id, identity.username)
        group = await realtime.store.create_group(
            identity.user_id,
            payload.name,
            payload.description,
            payload.member_ids,
        )
    except StoreError as exc:
        logger.exception("Failed to create group for %s", identity.user_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create group",
        ) from exc
    return group.to_wire()
