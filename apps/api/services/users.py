"""User accounts: creation, login, suspension and deletion."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import AuthenticationError, AuthorizationError, ConflictError, ValidationError
from models.user import User
from services import ledger
from services.activity import LOGIN, USER_CREATED, USER_DELETED, USER_STATUS
from services.passwords import hash_password, verify_password

logger = logging.getLogger(__name__)

CREDITS_PATTERN = re.compile(r"^\d+(\.\d{1,2})?$")


def serialize_user(user: User) -> Dict[str, Any]:
    created_at = ledger.as_utc(user.created_at)
    last_active = ledger.as_utc(user.last_active)
    return {
        "id": user.id,
        "username": user.username,
        "is_owner": bool(user.is_owner),
        "credits": ledger.format_money(user.credits),
        "is_active": bool(user.is_active),
        "created_at": created_at.isoformat() if created_at else None,
        "last_active": last_active.isoformat() if last_active else None,
    }


def parse_credits(value: Any) -> Any:
    text = "0" if value in (None, "") else str(value).strip()
    if not CREDITS_PATTERN.match(text):
        raise ValidationError("Credits must be a valid decimal number")
    return ledger.to_money(text)


async def authenticate_user_service(*, username: str, password: str, db: AsyncSession) -> User:
    user = await ledger.get_user_by_username(db, (username or "").strip())
    if not user or not verify_password(password or "", user.password_hash):
        raise AuthenticationError("Invalid credentials")
    if not user.is_active:
        raise AuthorizationError("Account is suspended")

    user.last_active = ledger.utcnow()
    await ledger.append_activity(db, user_id=user.id, action=LOGIN, details=f"{user.username} logged in")
    await db.commit()
    return user


async def list_users_service(*, db: AsyncSession) -> List[Dict[str, Any]]:
    return [serialize_user(user) for user in await ledger.list_users(db)]


async def create_user_service(
    *,
    actor_id: str,
    username: str,
    password: str,
    credits: Any,
    is_owner: bool,
    db: AsyncSession,
) -> Dict[str, Any]:
    name = (username or "").strip()
    if len(name) < 3:
        raise ValidationError("Username must be at least 3 characters")
    if len(password or "") < 6:
        raise ValidationError("Password must be at least 6 characters")
    balance = parse_credits(credits)

    if await ledger.get_user_by_username(db, name):
        raise ConflictError("Username already exists")
    try:
        user = await ledger.create_user(
            db,
            username=name,
            password_hash=hash_password(password),
            credits=balance,
            is_owner=bool(is_owner),
        )
        await ledger.append_activity(
            db,
            user_id=actor_id,
            action=USER_CREATED,
            details=f"User {name} created by admin",
        )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("Username already exists") from exc

    logger.info("User %s created by %s", name, actor_id)
    return serialize_user(user)


async def set_user_active_service(*, actor_id: str, user_id: str, is_active: bool, db: AsyncSession) -> Dict[str, Any]:
    user = await ledger.require_user(db, user_id)
    if user.is_owner and not is_active:
        raise AuthorizationError("Cannot suspend owner account")
    user.is_active = bool(is_active)
    await ledger.append_activity(
        db,
        user_id=actor_id,
        action=USER_STATUS,
        details=f"User {user.username} {'activated' if is_active else 'suspended'}",
    )
    await db.commit()
    return serialize_user(user)


async def delete_user_service(*, actor_id: str, user_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Cascade-delete a regular user. Their provider UIDs are left untouched."""
    user = await ledger.require_user(db, user_id)
    if user.is_owner:
        raise AuthorizationError("Cannot delete owner account")
    username = user.username

    try:
        await ledger.delete_user(db, user_id)
        await ledger.append_activity(
            db,
            user_id=actor_id,
            action=USER_DELETED,
            details=f"User {username} deleted",
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("User %s deleted by %s", username, actor_id)
    return {"success": True}
