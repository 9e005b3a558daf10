"""
User management router (owner only).
"""

from typing import Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import require_owner
from services.credits import adjust_credits_service
from services.identity import Actor
from services.users import (
    create_user_service,
    delete_user_service,
    list_users_service,
    set_user_active_service,
)

router = APIRouter()


class CreateUserRequest(BaseModel):
    username: str
    password: str
    credits: Optional[Union[str, float, int]] = "0"
    is_owner: bool = False


class AdjustCreditsRequest(BaseModel):
    amount: Union[str, float, int]
    operation: str


class UserStatusRequest(BaseModel):
    is_active: bool


@router.get("")
async def list_users(
    actor: Actor = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    return await list_users_service(db=db)


@router.post("", status_code=201)
async def create_user(
    request: CreateUserRequest,
    actor: Actor = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    return await create_user_service(
        actor_id=actor.id,
        username=request.username,
        password=request.password,
        credits=request.credits,
        is_owner=request.is_owner,
        db=db,
    )


@router.patch("/{user_id}/credits")
async def adjust_credits(
    user_id: str,
    request: AdjustCreditsRequest,
    actor: Actor = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    return await adjust_credits_service(
        actor_id=actor.id,
        user_id=user_id,
        amount=request.amount,
        operation=request.operation,
        db=db,
    )


@router.patch("/{user_id}/status")
async def set_user_status(
    user_id: str,
    request: UserStatusRequest,
    actor: Actor = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    return await set_user_active_service(actor_id=actor.id, user_id=user_id, is_active=request.is_active, db=db)


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    actor: Actor = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    return await delete_user_service(actor_id=actor.id, user_id=user_id, db=db)
