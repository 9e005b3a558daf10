"""Startup seeding: default owner account and the provider settings row."""

from __future__ import annotations

import logging
from typing import Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from services import ledger
from services.passwords import hash_password
from services.settings_store import get_settings_row, upsert_settings

logger = logging.getLogger(__name__)


async def ensure_default_owner(db: AsyncSession) -> bool:
    username = (settings.DEFAULT_OWNER_USERNAME or "").strip()
    password = settings.DEFAULT_OWNER_PASSWORD or ""
    if not username or not password:
        return False
    if await ledger.get_user_by_username(db, username):
        return False
    await ledger.create_user(
        db,
        username=username,
        password_hash=hash_password(password),
        credits=ledger.to_money(settings.DEFAULT_OWNER_CREDITS),
        is_owner=True,
    )
    await db.commit()
    logger.warning("Default owner %s created; change its password after first login.", username)
    return True


async def ensure_external_settings(db: AsyncSession) -> bool:
    if not settings.EXTERNAL_API_BASE_URL or not settings.EXTERNAL_API_KEY:
        return False
    if await get_settings_row(db):
        return False
    await upsert_settings(db, base_url=settings.EXTERNAL_API_BASE_URL, api_key=settings.EXTERNAL_API_KEY)
    await db.commit()
    return True


async def bootstrap(session_maker: async_sessionmaker) -> Dict[str, bool]:
    async with session_maker() as db:
        owner_created = await ensure_default_owner(db)
        settings_seeded = await ensure_external_settings(db)
    return {"owner_created": owner_created, "settings_seeded": settings_seeded}
