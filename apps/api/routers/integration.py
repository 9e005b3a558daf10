"""
Integration handler for API-key clients.

A single `/handler` path dispatches on `action`, read from the query string or
the JSON body, the way third-party panels already call the bypass provider.
"""

from typing import Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from errors import ValidationError
from routers.auth_scope import get_bypass_client_factory, get_integration_context
from routers.rate_limit import api_key_identifier, rate_limit
from services.bypass_client import BypassClientFactory
from services.integration_keys import IntegrationContext
from services.uid_lifecycle import (
    list_for_integration_service,
    provision_for_integration_service,
    provision_free_for_integration_service,
    remove_for_integration_service,
    renew_for_integration_service,
)

router = APIRouter(
    dependencies=[
        Depends(
            rate_limit(
                "integration",
                settings.INTEGRATION_RATE_LIMIT_PER_HOUR,
                3600,
                identifier=api_key_identifier,
            )
        )
    ]
)

POST_ACTIONS = ("add_uid_api", "add_uid_free_api", "remove_uid_api", "renew_uid_api")


class HandlerRequest(BaseModel):
    action: Optional[str] = None
    uid: Optional[str] = None
    uid_id: Optional[str] = None
    plan_id: Optional[Union[int, str]] = None
    region: Optional[str] = None
    days: Optional[Union[int, float, str]] = None


@router.post("/handler")
async def handle_post(
    action: str = Query(default=""),
    request: Optional[HandlerRequest] = None,
    context: IntegrationContext = Depends(get_integration_context),
    db: AsyncSession = Depends(get_db),
    client_factory: BypassClientFactory = Depends(get_bypass_client_factory),
):
    body = request or HandlerRequest()
    action = action or body.action or ""

    if action == "add_uid_api":
        if not body.uid or body.plan_id is None:
            raise ValidationError("UID and plan_id are required")
        return await provision_for_integration_service(
            context=context,
            uid_value=body.uid,
            plan_id=body.plan_id,
            region=body.region,
            db=db,
            client_factory=client_factory,
        )
    if action == "add_uid_free_api":
        if not body.uid:
            raise ValidationError("UID is required")
        return await provision_free_for_integration_service(
            context=context,
            uid_value=body.uid,
            region=body.region,
            db=db,
            client_factory=client_factory,
        )
    if action == "remove_uid_api":
        return await remove_for_integration_service(
            context=context,
            uid_id=body.uid_id,
            uid_value=body.uid,
            db=db,
            client_factory=client_factory,
        )
    if action == "renew_uid_api":
        if body.days is None:
            raise ValidationError("Days must be a positive number")
        return await renew_for_integration_service(
            context=context,
            days=body.days,
            uid_id=body.uid_id,
            uid_value=body.uid,
            db=db,
            client_factory=client_factory,
        )
    raise ValidationError("Invalid action", details={"allowed_actions": list(POST_ACTIONS)})


@router.get("/handler")
async def handle_get(
    action: str = Query(default=""),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1),
    status: Optional[str] = Query(default=None),
    context: IntegrationContext = Depends(get_integration_context),
    db: AsyncSession = Depends(get_db),
):
    if action != "list_uids_api":
        raise ValidationError("Invalid action", details={"allowed_actions": ["list_uids_api"]})
    return await list_for_integration_service(
        context=context,
        page=page,
        per_page=per_page,
        status=status,
        db=db,
    )
