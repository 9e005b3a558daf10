"""
External bypass provider settings (owner only).
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import require_owner
from services import ledger
from services.activity import SETTINGS_UPDATED
from services.identity import Actor
from services.settings_store import get_settings_row, serialize_settings, upsert_settings

router = APIRouter()


class ApiSettingsRequest(BaseModel):
    base_url: str = Field(validation_alias=AliasChoices("base_url", "baseUrl"))
    api_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("api_key", "apiKey"))


@router.get("")
async def get_api_settings(
    actor: Actor = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    return serialize_settings(await get_settings_row(db))


@router.post("")
async def save_api_settings(
    request: ApiSettingsRequest,
    actor: Actor = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    """Store the provider URL and key; the key is encrypted at rest."""
    row = await upsert_settings(db, base_url=request.base_url, api_key=request.api_key)
    await ledger.append_activity(
        db,
        user_id=actor.id,
        action=SETTINGS_UPDATED,
        details=f"External API settings updated ({row.base_url})",
    )
    await db.commit()
    return {"success": True, "settings": serialize_settings(row)}
