"""
Integration API keys for the external-facing handler API.

Keys look like `uidb_<random>`. Only a SHA-256 digest is stored, which
keeps lookups a single indexed query; the raw key is returned once at
creation time.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from models.integration_api_key import IntegrationApiKey
from services import ledger
from services.activity import API_KEY_CREATED, API_KEY_UPDATED
from services.credits import INTEGRATION_PLANS

logger = logging.getLogger(__name__)

KEY_PREFIX = "uidb_"


@dataclass
class IntegrationContext:
    key: IntegrationApiKey

    @property
    def user_id(self) -> str:
        return self.key.user_id


def generate_api_key() -> str:
    return f"{KEY_PREFIX}{secrets.token_urlsafe(32)}"


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode()).hexdigest()


def serialize_api_key(key: IntegrationApiKey) -> Dict[str, Any]:
    created_at = ledger.as_utc(key.created_at)
    last_used_at = ledger.as_utc(key.last_used_at)
    return {
        "id": key.id,
        "user_id": key.user_id,
        "name": key.name,
        "key_prefix": key.key_prefix,
        "is_enabled": key.is_enabled,
        "is_paused": key.is_paused,
        "uid_limit": key.uid_limit,
        "allowed_plans": list(key.allowed_plans or []),
        "created_at": created_at.isoformat() if created_at else None,
        "last_used_at": last_used_at.isoformat() if last_used_at else None,
    }


def _validate_limits(uid_limit: Optional[int], allowed_plans: Optional[List[int]]) -> None:
    if uid_limit is not None and int(uid_limit) < 0:
        raise ValidationError("uid_limit cannot be negative")
    unknown = [plan for plan in (allowed_plans or []) if int(plan) not in INTEGRATION_PLANS]
    if unknown:
        raise ValidationError(f"Unknown plan ids: {unknown}")


async def resolve_integration_key(db: AsyncSession, raw_key: Optional[str]) -> IntegrationContext:
    """Look up an enabled, unpaused key and stamp its last use."""
    if not raw_key:
        raise AuthenticationError("Unauthorized - Invalid or missing API key")
    result = await db.execute(select(IntegrationApiKey).where(IntegrationApiKey.key_hash == hash_api_key(raw_key)))
    key = result.scalar_one_or_none()
    if not key:
        raise AuthenticationError("Unauthorized - Invalid API key")
    if not key.is_enabled:
        raise AuthorizationError("Forbidden - API key is disabled")
    if key.is_paused:
        raise AuthorizationError("Forbidden - API key is paused")

    key.last_used_at = ledger.utcnow()
    await db.commit()
    return IntegrationContext(key=key)


async def list_api_keys_service(*, db: AsyncSession, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    query = select(IntegrationApiKey).order_by(IntegrationApiKey.created_at.desc())
    if user_id:
        query = query.where(IntegrationApiKey.user_id == user_id)
    result = await db.execute(query)
    return [serialize_api_key(key) for key in result.scalars().all()]


async def create_api_key_service(
    *,
    actor_id: str,
    user_id: str,
    name: str,
    db: AsyncSession,
    uid_limit: Optional[int] = None,
    allowed_plans: Optional[List[int]] = None,
) -> Dict[str, Any]:
    label = (name or "").strip()
    if not label:
        raise ValidationError("name is required")
    _validate_limits(uid_limit, allowed_plans)
    user = await ledger.require_user(db, user_id)

    raw_key = generate_api_key()
    key = IntegrationApiKey(
        id=str(uuid.uuid4()),
        user_id=user.id,
        name=label,
        key_hash=hash_api_key(raw_key),
        key_prefix=raw_key[: len(KEY_PREFIX) + 6],
        is_enabled=True,
        is_paused=False,
        uid_limit=uid_limit,
        allowed_plans=[int(plan) for plan in allowed_plans] if allowed_plans else None,
        created_at=ledger.utcnow(),
    )
    db.add(key)
    await ledger.append_activity(
        db,
        user_id=actor_id,
        action=API_KEY_CREATED,
        details=f"API key '{label}' created for {user.username}",
    )
    await db.commit()
    logger.info("Integration API key %s created for user %s", key.id, user.id)

    payload = serialize_api_key(key)
    payload["api_key"] = raw_key
    return payload


async def update_api_key_service(
    *,
    actor_id: str,
    key_id: str,
    changes: Dict[str, Any],
    db: AsyncSession,
) -> Dict[str, Any]:
    result = await db.execute(select(IntegrationApiKey).where(IntegrationApiKey.id == key_id))
    key = result.scalar_one_or_none()
    if not key:
        raise NotFoundError("API key not found")

    _validate_limits(changes.get("uid_limit"), changes.get("allowed_plans"))
    if "name" in changes:
        changes["name"] = (changes["name"] or "").strip()
        if not changes["name"]:
            raise ValidationError("name cannot be empty")
    for flag in ("is_enabled", "is_paused"):
        if flag in changes and changes[flag] is None:
            changes.pop(flag)
    for field in ("name", "is_enabled", "is_paused", "uid_limit", "allowed_plans"):
        if field in changes:
            setattr(key, field, changes[field])

    await ledger.append_activity(
        db,
        user_id=actor_id,
        action=API_KEY_UPDATED,
        details=f"API key '{key.name}' updated: {', '.join(sorted(changes)) or 'no changes'}",
    )
    await db.commit()
    return serialize_api_key(key)
