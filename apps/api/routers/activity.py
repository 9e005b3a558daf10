"""
Activity log router.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import get_actor, require_owner
from services.activity import MAX_ACTIVITY_LIMIT, cleanup_activity_service, list_activity_service
from services.identity import Actor

router = APIRouter()


class CleanupRequest(BaseModel):
    days_old: Optional[int] = Field(default=None, validation_alias=AliasChoices("days_old", "daysOld"))


@router.get("")
async def list_activity(
    limit: int = Query(default=50, ge=1, le=MAX_ACTIVITY_LIMIT),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Owners see every entry, other users only their own."""
    user_id = None if actor.is_owner else actor.id
    return await list_activity_service(db=db, user_id=user_id, limit=limit)


@router.get("/user/{user_id}")
async def list_user_activity(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=MAX_ACTIVITY_LIMIT),
    actor: Actor = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    return await list_activity_service(db=db, user_id=user_id, limit=limit)


@router.post("/cleanup")
async def cleanup_activity(
    request: Optional[CleanupRequest] = None,
    actor: Actor = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    days_old = request.days_old if request else None
    return await cleanup_activity_service(actor_id=actor.id, db=db, days_old=days_old)
