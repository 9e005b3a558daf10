"""Activity log: action tags, listing and retention cleanup."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from errors import ValidationError
from models.activity_log import ActivityLog
from models.user import User
from services import ledger

logger = logging.getLogger(__name__)

LOGIN = "login"
CREATE_UID = "create_uid"
UPDATE_UID = "update_uid"
UPDATE_UID_VALUE = "update_uid_value"
DELETE_UID = "delete_uid"
RENEW_UID = "renew_uid"
CREDIT_ADD = "credit_add"
CREDIT_DEDUCT = "credit_deduct"
USER_CREATED = "user_created"
USER_DELETED = "user_deleted"
USER_STATUS = "user_status"
SETTINGS_UPDATED = "settings_updated"
API_KEY_CREATED = "api_key_created"
API_KEY_UPDATED = "api_key_updated"
ACTIVITY_CLEANUP = "activity_cleanup"

MAX_ACTIVITY_LIMIT = 500


def serialize_activity(entry: ActivityLog, username: Optional[str] = None) -> Dict[str, Any]:
    created_at = ledger.as_utc(entry.created_at)
    payload = {
        "id": entry.id,
        "user_id": entry.user_id,
        "action": entry.action,
        "details": entry.details,
        "created_at": created_at.isoformat() if created_at else None,
    }
    if username is not None:
        payload["username"] = username
    return payload


async def _usernames(db: AsyncSession, user_ids: List[str]) -> Dict[str, str]:
    if not user_ids:
        return {}
    result = await db.execute(select(User.id, User.username).where(User.id.in_(user_ids)))
    return {row.id: row.username for row in result.all()}


async def list_activity_service(
    *,
    db: AsyncSession,
    user_id: Optional[str] = None,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    """Newest first; user_id=None lists every user's entries."""
    bounded = max(1, min(int(limit), MAX_ACTIVITY_LIMIT))
    entries = await ledger.list_activity(db, user_id=user_id, limit=bounded)
    names = await _usernames(db, sorted({entry.user_id for entry in entries}))
    return [serialize_activity(entry, names.get(entry.user_id, "Unknown User")) for entry in entries]


async def cleanup_activity_service(
    *,
    actor_id: Optional[str],
    db: AsyncSession,
    days_old: Optional[int] = None,
) -> Dict[str, Any]:
    """Purge entries older than the retention window, then record the purge."""
    days = settings.ACTIVITY_RETENTION_DAYS if days_old is None else int(days_old)
    if days < 1:
        raise ValidationError("days_old must be at least 1")

    try:
        deleted_count = await ledger.purge_activity_older_than(db, days)
        if actor_id:
            await ledger.append_activity(
                db,
                user_id=actor_id,
                action=ACTIVITY_CLEANUP,
                details=f"Cleaned up {deleted_count} activity logs older than {days} days",
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Activity cleanup removed %s entries older than %s days", deleted_count, days)
    return {"success": True, "deleted_count": deleted_count, "days_old": days}
