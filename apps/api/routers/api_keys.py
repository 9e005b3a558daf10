"""
Integration API key management (owner only).
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import require_owner
from services.identity import Actor
from services.integration_keys import (
    create_api_key_service,
    list_api_keys_service,
    update_api_key_service,
)

router = APIRouter()


class CreateApiKeyRequest(BaseModel):
    user_id: str
    name: str
    uid_limit: Optional[int] = None
    allowed_plans: Optional[List[int]] = None


class UpdateApiKeyRequest(BaseModel):
    name: Optional[str] = None
    is_enabled: Optional[bool] = None
    is_paused: Optional[bool] = None
    uid_limit: Optional[int] = None
    allowed_plans: Optional[List[int]] = None


@router.get("")
async def list_api_keys(
    user_id: Optional[str] = None,
    actor: Actor = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    return await list_api_keys_service(db=db, user_id=user_id)


@router.post("", status_code=201)
async def create_api_key(
    request: CreateApiKeyRequest,
    actor: Actor = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    """The raw key is only ever returned by this call."""
    return await create_api_key_service(
        actor_id=actor.id,
        user_id=request.user_id,
        name=request.name,
        uid_limit=request.uid_limit,
        allowed_plans=request.allowed_plans,
        db=db,
    )


@router.patch("/{key_id}")
async def update_api_key(
    key_id: str,
    request: UpdateApiKeyRequest,
    actor: Actor = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    changes = request.model_dump(exclude_unset=True)
    return await update_api_key_service(actor_id=actor.id, key_id=key_id, changes=changes, db=db)
