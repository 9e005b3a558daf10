"""UID lifecycle: create, rename, delete, status, renew and the read models.

Every operation that touches the bypass provider follows the same order:
validate locally, call the provider, then write locally in one
transaction. A provider failure therefore never leaves local changes
behind. A local failure after provider success cannot be undone here; it
is logged for manual reconciliation and raised as `PersistenceError`.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from errors import (
    AuthorizationError,
    ExternalServiceError,
    InsufficientCreditsError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from models.uid_record import UidRecord
from services import ledger
from services.activity import CREATE_UID, DELETE_UID, RENEW_UID, UPDATE_UID, UPDATE_UID_VALUE
from services.bypass_client import BypassClientFactory, remote_plan_id
from services.credits import FREE_DURATION_HOURS, get_integration_plan, price_for_duration
from services.identity import Actor, ensure_actor_scope, ensure_owner
from services.integration_keys import IntegrationContext
from services.locks import lifecycle_locks, uid_key, uid_value_key, user_key

logger = logging.getLogger(__name__)

UID_MIN_LENGTH = 6
UID_MAX_LENGTH = 12
LOCAL_STATUS_UPDATES = ("active", "expired")


def normalize_uid_value(value: Any) -> str:
    text = str(value or "").strip()
    if len(text) < UID_MIN_LENGTH:
        raise ValidationError(f"UID must be at least {UID_MIN_LENGTH} characters")
    if len(text) > UID_MAX_LENGTH:
        raise ValidationError(f"UID must be at most {UID_MAX_LENGTH} characters")
    return text


def effective_status(record: UidRecord, now: Optional[datetime] = None) -> str:
    """Expiry is computed at read time; nothing sweeps stored statuses."""
    if record.status != "active":
        return record.status
    expires_at = ledger.as_utc(record.expires_at)
    if expires_at is not None and expires_at <= (now or ledger.utcnow()):
        return "expired"
    return "active"


def serialize_uid(
    record: UidRecord,
    *,
    username: Optional[str] = None,
    source: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    created_at = ledger.as_utc(record.created_at)
    expires_at = ledger.as_utc(record.expires_at)
    payload: Dict[str, Any] = {
        "id": record.id,
        "user_id": record.user_id,
        "api_key_id": record.api_key_id,
        "uid_value": record.uid_value,
        "player_name": record.player_name,
        "region": record.region,
        "plan_id": record.plan_id,
        "duration": record.duration,
        "cost": ledger.format_money(record.cost),
        "status": record.status,
        "effective_status": effective_status(record, now),
        "created_at": created_at.isoformat() if created_at else None,
        "expires_at": expires_at.isoformat() if expires_at else None,
    }
    if username is not None:
        payload["username"] = username
    if source is not None:
        payload["source"] = source
    return payload


def _external_plan_id(external: Dict[str, Any], fallback: int) -> int:
    data = external.get("data") if isinstance(external, dict) else None
    plan = data.get("plan") if isinstance(data, dict) else None
    try:
        return int(plan.get("id")) if isinstance(plan, dict) and plan.get("id") is not None else fallback
    except (TypeError, ValueError):
        return fallback


def _external_player_name(external: Dict[str, Any]) -> Optional[str]:
    data = external.get("data") if isinstance(external, dict) else None
    if isinstance(data, dict):
        name = data.get("player_name") or data.get("nickname")
        return str(name) if name else None
    return None


async def _persistence_failure(db: AsyncSession, operation: str, context: Dict[str, Any], exc: Exception) -> None:
    await db.rollback()
    logger.critical(
        "Local write failed after bypass provider %s succeeded; manual reconciliation required. context=%s error=%r",
        operation,
        context,
        exc,
    )
    raise PersistenceError(
        f"{operation} succeeded on the bypass provider but could not be saved locally; "
        "an operator must reconcile this record.",
        details={"operation": operation, "reconciliation_required": True, **context},
    ) from exc


def _ensure_affordable(balance: Any, cost: Any) -> None:
    available = ledger.to_money(balance or 0)
    required = ledger.to_money(cost)
    if available < required:
        raise InsufficientCreditsError(
            "Insufficient credits",
            details={"required": ledger.format_money(required), "available": ledger.format_money(available)},
        )


# --- dashboard operations ---------------------------------------------------


async def create_uid_service(
    *,
    actor: Actor,
    user_id: str,
    uid_value: str,
    duration: Any,
    db: AsyncSession,
    client_factory: BypassClientFactory,
    region: Optional[str] = None,
) -> Dict[str, Any]:
    """Provision a paid UID, then record it and debit the tier price."""
    ensure_actor_scope(actor, user_id, "Can only create UIDs for your own account")
    value = normalize_uid_value(uid_value)
    cost = price_for_duration(duration)
    hours = int(duration)
    region = region or settings.EXTERNAL_API_DEFAULT_REGION

    async with lifecycle_locks.hold(user_key(user_id), uid_value_key(value)):
        user = await ledger.require_user(db, user_id)
        _ensure_affordable(user.credits, cost)

        client = await client_factory.create()
        external = await client.create_uid(value, hours, region)

        now = ledger.utcnow()
        context = {"user_id": user_id, "uid_value": value, "duration": hours, "cost": ledger.format_money(cost)}
        try:
            record = await ledger.create_uid_record(
                db,
                user_id=user_id,
                uid_value=value,
                duration=hours,
                cost=cost,
                created_at=now,
                expires_at=now + timedelta(hours=hours),
                region=region,
                plan_id=_external_plan_id(external, remote_plan_id(hours)),
                player_name=_external_player_name(external),
            )
            new_balance = await ledger.adjust_user_credits(db, user_id, -cost)
            await ledger.append_activity(
                db,
                user_id=actor.id,
                action=CREATE_UID,
                details=f"Created UID {value} with {hours}h duration - Cost: ${ledger.format_money(cost)}",
            )
            await db.commit()
        except Exception as exc:
            await _persistence_failure(db, "create_uid", context, exc)

    logger.info("UID %s created for user %s (%sh, $%s)", value, user_id, hours, ledger.format_money(cost))
    return {
        "uid": serialize_uid(record, now=now),
        "new_credits": ledger.format_money(new_balance),
        "external": external,
    }


async def update_uid_value_service(
    *,
    actor: Actor,
    uid_id: str,
    new_uid_value: str,
    db: AsyncSession,
    client_factory: BypassClientFactory,
) -> Dict[str, Any]:
    """Rename a UID on the provider, then locally. No credit charge."""
    new_value = normalize_uid_value(new_uid_value)

    async with lifecycle_locks.hold(uid_key(uid_id), uid_value_key(new_value)):
        record = await ledger.require_uid_record(db, uid_id)
        ensure_actor_scope(actor, record.user_id, "Can only update your own UIDs")
        if record.status == "deleted":
            raise ValidationError("UID has been deleted")
        old_value = record.uid_value
        if new_value == old_value:
            raise ValidationError("New UID must differ from the current UID")

        client = await client_factory.create()
        external = await client.update_uid(old_value, new_value, record.region)

        context = {"uid_id": uid_id, "old_value": old_value, "new_value": new_value}
        try:
            record = await ledger.set_uid_value(db, uid_id, new_value)
            await ledger.append_activity(
                db,
                user_id=actor.id,
                action=UPDATE_UID_VALUE,
                details=f"Updated UID from {old_value} to {new_value}",
            )
            await db.commit()
        except Exception as exc:
            await _persistence_failure(db, "update_uid_value", context, exc)

    logger.info("UID %s renamed %s -> %s", uid_id, old_value, new_value)
    return {
        "success": True,
        "old_value": old_value,
        "new_value": new_value,
        "uid": serialize_uid(record),
        "external": external,
    }


async def delete_uid_service(
    *,
    actor: Actor,
    uid_id: str,
    db: AsyncSession,
    client_factory: BypassClientFactory,
) -> Dict[str, Any]:
    """Remove a UID on the provider first; the local row goes only after."""
    async with lifecycle_locks.hold(uid_key(uid_id)):
        record = await ledger.require_uid_record(db, uid_id)
        ensure_actor_scope(actor, record.user_id, "Can only delete your own UIDs")
        value = record.uid_value
        owner_id = record.user_id

        # A "deleted" status is only ever set after a provider removal.
        if record.status != "deleted":
            client = await client_factory.create()
            await client.delete_uid(value)

        context = {"uid_id": uid_id, "uid_value": value, "user_id": owner_id}
        try:
            await ledger.delete_uid_record(db, uid_id)
            await ledger.append_activity(
                db,
                user_id=actor.id,
                action=DELETE_UID,
                details=f"Deleted UID {value} (User: {owner_id})",
            )
            await db.commit()
        except Exception as exc:
            await _persistence_failure(db, "delete_uid", context, exc)

    logger.info("UID %s (%s) deleted", uid_id, value)
    return {"success": True, "id": uid_id, "uid_value": value}


async def update_uid_status_service(
    *,
    actor: Actor,
    uid_id: str,
    status: str,
    db: AsyncSession,
) -> Dict[str, Any]:
    """Local bookkeeping only: no provider call, no credit change."""
    if status not in LOCAL_STATUS_UPDATES:
        raise ValidationError(
            f"status must be one of {', '.join(LOCAL_STATUS_UPDATES)}; use delete to remove a UID"
        )

    async with lifecycle_locks.hold(uid_key(uid_id)):
        record = await ledger.require_uid_record(db, uid_id)
        ensure_actor_scope(actor, record.user_id, "Can only update your own UIDs")
        if record.status == "deleted":
            raise ValidationError("Cannot change the status of a deleted UID")

        try:
            record = await ledger.set_uid_status(db, uid_id, status)
            await ledger.append_activity(
                db,
                user_id=actor.id,
                action=UPDATE_UID,
                details=f"Updated UID {record.uid_value} status to {status}",
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    return {"success": True, "uid": serialize_uid(record)}


async def list_user_uids_service(*, actor: Actor, user_id: str, db: AsyncSession) -> List[Dict[str, Any]]:
    ensure_actor_scope(actor, user_id, "Can only view your own UIDs")
    now = ledger.utcnow()
    return [serialize_uid(record, now=now) for record in await ledger.list_user_uid_records(db, user_id)]


def _map_external_uid(item: Dict[str, Any], now: datetime) -> Optional[Dict[str, Any]]:
    value = str(item.get("uid") or "").strip()
    if not value:
        return None
    try:
        remaining_hours = max(float(item.get("remaining_hours") or 0), 0.0)
    except (TypeError, ValueError):
        remaining_hours = 0.0
    status = "active" if str(item.get("status") or "").lower() in ("active", "online") else "expired"
    return {
        "id": f"ext-{value}",
        "user_id": "external",
        "api_key_id": None,
        "uid_value": value,
        "player_name": item.get("player_name") or item.get("nickname"),
        "region": item.get("region"),
        "plan_id": None,
        "duration": int(round(remaining_hours)),
        "cost": "0.00",
        "status": status,
        "effective_status": status,
        "created_at": now.isoformat(),
        "expires_at": (now + timedelta(hours=remaining_hours)).isoformat(),
        "username": item.get("nickname") or "External API",
        "source": "external",
    }


async def list_all_uids_service(
    *,
    actor: Actor,
    db: AsyncSession,
    client_factory: BypassClientFactory,
) -> List[Dict[str, Any]]:
    """Local records plus provider-only UIDs; local wins on equal values."""
    ensure_owner(actor)
    now = ledger.utcnow()
    records = await ledger.list_all_uid_records(db)
    usernames = {user.id: user.username for user in await ledger.list_users(db)}
    merged = [
        serialize_uid(record, username=usernames.get(record.user_id, "Unknown User"), source="local", now=now)
        for record in records
    ]

    try:
        client = await client_factory.create()
        listing = await client.list_uids(page=1, per_page=100)
    except ExternalServiceError as exc:
        logger.warning("External UID listing unavailable, returning local UIDs only: %s", exc.message)
        return merged

    items = listing.get("data") or []
    seen = {record.uid_value for record in records}
    for item in items if isinstance(items, list) else []:
        mapped = _map_external_uid(item, now) if isinstance(item, dict) else None
        if mapped and mapped["uid_value"] not in seen:
            seen.add(mapped["uid_value"])
            merged.append(mapped)
    return merged


async def list_external_uids_service(
    *,
    actor: Actor,
    db: AsyncSession,
    client_factory: BypassClientFactory,
) -> Dict[str, Any]:
    """Raw provider listing next to the caller's own records."""
    client = await client_factory.create()
    external = await client.list_uids()
    now = ledger.utcnow()
    local = [serialize_uid(record, now=now) for record in await ledger.list_user_uid_records(db, actor.id)]
    return {"external": external, "local": local}


# --- integration (API key) operations ---------------------------------------


def _integration_uid_data(record: UidRecord, **extra: Any) -> Dict[str, Any]:
    created_at = ledger.as_utc(record.created_at)
    expires_at = ledger.as_utc(record.expires_at)
    data = {
        "uid_id": record.id,
        "uid": record.uid_value,
        "player_name": record.player_name,
        "region": record.region,
        "start_date": created_at.date().isoformat() if created_at else None,
        "expire_date": expires_at.date().isoformat() if expires_at else None,
    }
    data.update(extra)
    return data


async def _ensure_key_capacity(db: AsyncSession, context: IntegrationContext) -> None:
    limit = context.key.uid_limit
    if limit:
        active = await ledger.count_active_key_uids(db, context.key.id)
        if active >= int(limit):
            raise AuthorizationError("UID limit reached for this API key", details={"uid_limit": int(limit)})


async def provision_for_integration_service(
    *,
    context: IntegrationContext,
    uid_value: str,
    plan_id: Any,
    db: AsyncSession,
    client_factory: BypassClientFactory,
    region: Optional[str] = None,
) -> Dict[str, Any]:
    """`add_uid_api`: paid provisioning against the key owner's balance."""
    value = normalize_uid_value(uid_value)
    plan = get_integration_plan(plan_id)
    allowed = context.key.allowed_plans or []
    if allowed and plan.plan_id not in [int(item) for item in allowed]:
        raise AuthorizationError("This plan is not allowed for this API key")
    region = region or settings.EXTERNAL_API_DEFAULT_REGION
    user_id = context.user_id

    async with lifecycle_locks.hold(user_key(user_id), uid_value_key(value), f"apikey:{context.key.id}"):
        await _ensure_key_capacity(db, context)
        user = await ledger.require_user(db, user_id)
        _ensure_affordable(user.credits, plan.price)

        client = await client_factory.create()
        external = await client.create_uid(value, plan.hours, region)
        player_name = _external_player_name(external) or await client.get_player_name(value, region)

        now = ledger.utcnow()
        ctx = {"user_id": user_id, "api_key_id": context.key.id, "uid_value": value, "plan_id": plan.plan_id}
        try:
            record = await ledger.create_uid_record(
                db,
                user_id=user_id,
                uid_value=value,
                duration=plan.hours,
                cost=plan.price,
                created_at=now,
                expires_at=now + timedelta(hours=plan.hours),
                region=region,
                plan_id=plan.plan_id,
                api_key_id=context.key.id,
                player_name=player_name,
            )
            new_balance = await ledger.adjust_user_credits(db, user_id, -plan.price)
            await ledger.append_activity(
                db,
                user_id=user_id,
                action=CREATE_UID,
                details=f"UID {value} created via API with plan {plan.name} - Cost: ${ledger.format_money(plan.price)}",
            )
            await db.commit()
        except Exception as exc:
            await _persistence_failure(db, "add_uid_api", ctx, exc)

    return {
        "success": True,
        "message": "UID added successfully",
        "data": _integration_uid_data(
            record,
            plan={"id": plan.plan_id, "name": plan.name, "days": plan.days},
            credits_used=ledger.format_money(plan.price),
            credits_remaining=ledger.format_money(new_balance),
        ),
    }


async def provision_free_for_integration_service(
    *,
    context: IntegrationContext,
    uid_value: str,
    db: AsyncSession,
    client_factory: BypassClientFactory,
    region: Optional[str] = None,
) -> Dict[str, Any]:
    """`add_uid_free_api`: one day at no cost, still capped per key."""
    value = normalize_uid_value(uid_value)
    region = region or settings.EXTERNAL_API_DEFAULT_REGION
    user_id = context.user_id

    async with lifecycle_locks.hold(uid_value_key(value), f"apikey:{context.key.id}"):
        await _ensure_key_capacity(db, context)
        user = await ledger.require_user(db, user_id)
        balance = ledger.format_money(user.credits)

        client = await client_factory.create()
        external = await client.create_uid_free(value, region)
        player_name = _external_player_name(external) or await client.get_player_name(value, region)

        now = ledger.utcnow()
        ctx = {"user_id": user_id, "api_key_id": context.key.id, "uid_value": value}
        try:
            record = await ledger.create_uid_record(
                db,
                user_id=user_id,
                uid_value=value,
                duration=FREE_DURATION_HOURS,
                cost=0,
                created_at=now,
                expires_at=now + timedelta(hours=FREE_DURATION_HOURS),
                region=region,
                plan_id=1,
                api_key_id=context.key.id,
                player_name=player_name,
            )
            await ledger.append_activity(
                db,
                user_id=user_id,
                action=CREATE_UID,
                details=f"UID {value} created via API (FREE - 1 day)",
            )
            await db.commit()
        except Exception as exc:
            await _persistence_failure(db, "add_uid_free_api", ctx, exc)

    return {
        "success": True,
        "message": "UID added successfully (FREE - 1 day)",
        "data": _integration_uid_data(
            record,
            plan={"id": 1, "name": "1 day", "days": 1},
            credits_used="0.00",
            credits_remaining=balance,
        ),
    }


async def _find_key_record(
    db: AsyncSession,
    context: IntegrationContext,
    uid_id: Optional[str],
    uid_value: Optional[str],
) -> UidRecord:
    if not uid_id and not uid_value:
        raise ValidationError("Either uid_id or uid is required")
    record = await ledger.find_key_uid_record(db, context.key.id, uid_id=uid_id, uid_value=uid_value)
    if not record:
        raise NotFoundError("UID not found or not created by this API key")
    return record


async def remove_for_integration_service(
    *,
    context: IntegrationContext,
    db: AsyncSession,
    client_factory: BypassClientFactory,
    uid_id: Optional[str] = None,
    uid_value: Optional[str] = None,
) -> Dict[str, Any]:
    """`remove_uid_api`: provider removal, then a local soft delete."""
    found = await _find_key_record(db, context, uid_id, uid_value)

    async with lifecycle_locks.hold(uid_key(found.id)):
        record = await ledger.require_uid_record(db, found.id)
        if record.status == "deleted":
            raise ValidationError("UID already removed")
        value = record.uid_value

        client = await client_factory.create()
        await client.delete_uid(value)

        ctx = {"uid_id": record.id, "uid_value": value, "api_key_id": context.key.id}
        try:
            record = await ledger.set_uid_status(db, record.id, "deleted")
            await ledger.append_activity(
                db,
                user_id=context.user_id,
                action=DELETE_UID,
                details=f"UID {value} deleted via API",
            )
            await db.commit()
        except Exception as exc:
            await _persistence_failure(db, "remove_uid_api", ctx, exc)

    return {
        "success": True,
        "message": "UID removed successfully",
        "data": {"uid_id": record.id, "uid": value, "player_name": record.player_name},
    }


def _parse_days(days: Any) -> int:
    try:
        parsed = float(days)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Days must be a positive number") from exc
    if not math.isfinite(parsed) or parsed <= 0 or not parsed.is_integer():
        raise ValidationError("Days must be a positive number")
    return int(parsed)


async def renew_for_integration_service(
    *,
    context: IntegrationContext,
    days: Any,
    db: AsyncSession,
    client_factory: BypassClientFactory,
    uid_id: Optional[str] = None,
    uid_value: Optional[str] = None,
) -> Dict[str, Any]:
    """`renew_uid_api`: extend expiry by whole days; expired flips to active."""
    day_count = _parse_days(days)
    found = await _find_key_record(db, context, uid_id, uid_value)

    async with lifecycle_locks.hold(uid_key(found.id)):
        record = await ledger.require_uid_record(db, found.id)
        if record.status == "deleted":
            raise ValidationError("Cannot renew a deleted UID")
        value = record.uid_value
        old_expiry = ledger.as_utc(record.expires_at)
        new_expiry = old_expiry + timedelta(hours=day_count * 24)

        client = await client_factory.create()
        await client.renew_uid(value, day_count)

        ctx = {"uid_id": record.id, "uid_value": value, "days": day_count}
        try:
            record.expires_at = new_expiry
            record.duration = int(record.duration or 0) + day_count * 24
            if record.status == "expired":
                record.status = "active"
            await ledger.append_activity(
                db,
                user_id=context.user_id,
                action=RENEW_UID,
                details=(
                    f"UID {value} renewed for {day_count} days via API "
                    f"(expiry {old_expiry.isoformat()} -> {new_expiry.isoformat()})"
                ),
            )
            await db.commit()
        except Exception as exc:
            await _persistence_failure(db, "renew_uid_api", ctx, exc)

    return {
        "success": True,
        "message": "UID renewed successfully",
        "data": {
            "uid_id": record.id,
            "uid": value,
            "player_name": record.player_name,
            "old_expire_date": old_expiry.date().isoformat(),
            "new_expire_date": new_expiry.date().isoformat(),
            "days_added": day_count,
            "duration": record.duration,
            "status": record.status,
        },
    }


async def list_for_integration_service(
    *,
    context: IntegrationContext,
    db: AsyncSession,
    page: int = 1,
    per_page: int = 20,
    status: Optional[str] = None,
) -> Dict[str, Any]:
    """`list_uids_api`: the key's own records, newest first."""
    page = max(int(page or 1), 1)
    per_page = max(min(int(per_page or 20), 100), 1)
    now = ledger.utcnow()
    records, total = await ledger.page_key_uid_records(
        db,
        context.key.id,
        status_filter=status,
        now=now,
        offset=(page - 1) * per_page,
        limit=per_page,
    )
    data = []
    for record in records:
        created_at = ledger.as_utc(record.created_at)
        item = _integration_uid_data(record)
        item.update(
            {
                "id": record.id,
                "plan_name": _plan_name(record.plan_id),
                "status": "online" if effective_status(record, now) == "active" else record.status,
                "created_at": created_at.isoformat() if created_at else None,
            }
        )
        data.append(item)
    return {
        "success": True,
        "data": data,
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": math.ceil(total / per_page) if total else 0,
        },
    }


def _plan_name(plan_id: Optional[int]) -> str:
    try:
        return get_integration_plan(plan_id).name
    except ValidationError:
        return "Unknown"
