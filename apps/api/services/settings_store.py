"""External API settings row: storage and the provider the client factory reads."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from errors import ValidationError
from models.external_api_settings import ExternalApiSettings
from services.bypass_client import ExternalApiConfig
from services.crypto import decrypt_secret, encrypt_secret, mask_secret

logger = logging.getLogger(__name__)


async def get_settings_row(db: AsyncSession) -> Optional[ExternalApiSettings]:
    result = await db.execute(select(ExternalApiSettings).order_by(ExternalApiSettings.updated_at.desc()).limit(1))
    return result.scalars().first()


def _decrypt_key(row: ExternalApiSettings) -> str:
    if not row.api_key_encrypted:
        return ""
    try:
        return decrypt_secret(row.api_key_encrypted)
    except ValueError as exc:
        logger.error("External API key unreadable: %s", exc)
        return ""


async def load_external_config(db: AsyncSession) -> Optional[ExternalApiConfig]:
    row = await get_settings_row(db)
    if not row:
        return None
    return ExternalApiConfig(base_url=(row.base_url or "").strip(), api_key=_decrypt_key(row))


class DatabaseSettingsProvider:
    """Reads the settings row on every load so edits apply without restart."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load(self) -> Optional[ExternalApiConfig]:
        return await load_external_config(self.db)


def serialize_settings(row: Optional[ExternalApiSettings]) -> Dict[str, Any]:
    if not row:
        return {"base_url": "", "api_key": "", "api_key_configured": False, "updated_at": None}
    api_key = _decrypt_key(row)
    return {
        "base_url": row.base_url or "",
        "api_key": mask_secret(api_key),
        "api_key_configured": bool(api_key),
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


async def upsert_settings(
    db: AsyncSession,
    *,
    base_url: str,
    api_key: Optional[str],
) -> ExternalApiSettings:
    """Write the single settings row; an empty api_key keeps the stored one."""
    url = (base_url or "").strip()
    if not url.startswith(("http://", "https://")):
        raise ValidationError("base_url must be an http(s) URL")

    row = await get_settings_row(db)
    if row is None:
        row = ExternalApiSettings()
        db.add(row)
    row.base_url = url
    row.updated_at = datetime.now(timezone.utc)
    if api_key:
        row.api_key_encrypted = encrypt_secret(api_key.strip())
    elif not row.api_key_encrypted:
        raise ValidationError("api_key is required")
    await db.flush()
    return row
