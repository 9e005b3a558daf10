"""
UID lifecycle router for the dashboard.
"""

from typing import Optional, Union

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import get_actor, get_bypass_client_factory
from services.bypass_client import BypassClientFactory
from services.credits import pricing_table
from services.identity import Actor
from services.uid_lifecycle import (
    create_uid_service,
    delete_uid_service,
    list_all_uids_service,
    list_external_uids_service,
    list_user_uids_service,
    update_uid_status_service,
    update_uid_value_service,
)

router = APIRouter()


class CreateUidRequest(BaseModel):
    user_id: str = Field(validation_alias=AliasChoices("user_id", "userId"))
    uid_value: str = Field(validation_alias=AliasChoices("uid_value", "uidValue"))
    duration: Union[int, str]
    region: Optional[str] = None


class UidStatusRequest(BaseModel):
    status: str


class UidValueRequest(BaseModel):
    new_uid_value: str = Field(validation_alias=AliasChoices("new_uid_value", "newUidValue"))


@router.get("/pricing")
async def get_pricing(actor: Actor = Depends(get_actor)):
    return {"tiers": pricing_table()}


@router.post("", status_code=201)
async def create_uid(
    request: CreateUidRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    client_factory: BypassClientFactory = Depends(get_bypass_client_factory),
):
    """Provision a UID with the provider and charge the tier price."""
    return await create_uid_service(
        actor=actor,
        user_id=request.user_id,
        uid_value=request.uid_value,
        duration=request.duration,
        region=request.region,
        db=db,
        client_factory=client_factory,
    )


@router.get("/all")
async def list_all_uids(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    client_factory: BypassClientFactory = Depends(get_bypass_client_factory),
):
    return await list_all_uids_service(actor=actor, db=db, client_factory=client_factory)


@router.get("/external/list")
async def list_external_uids(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    client_factory: BypassClientFactory = Depends(get_bypass_client_factory),
):
    """Provider listing alongside the caller's own UIDs."""
    return await list_external_uids_service(actor=actor, db=db, client_factory=client_factory)


@router.get("/user/{user_id}")
async def list_user_uids(
    user_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await list_user_uids_service(actor=actor, user_id=user_id, db=db)


@router.delete("/{uid_id}")
async def delete_uid(
    uid_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    client_factory: BypassClientFactory = Depends(get_bypass_client_factory),
):
    return await delete_uid_service(actor=actor, uid_id=uid_id, db=db, client_factory=client_factory)


@router.patch("/{uid_id}")
async def update_uid_status(
    uid_id: str,
    request: UidStatusRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await update_uid_status_service(actor=actor, uid_id=uid_id, status=request.status, db=db)


@router.patch("/{uid_id}/value")
async def update_uid_value(
    uid_id: str,
    request: UidValueRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    client_factory: BypassClientFactory = Depends(get_bypass_client_factory),
):
    return await update_uid_value_service(
        actor=actor,
        uid_id=uid_id,
        new_uid_value=request.new_uid_value,
        db=db,
        client_factory=client_factory,
    )
