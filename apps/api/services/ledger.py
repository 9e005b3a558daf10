"""Persistence for users, UID records, activity entries and integration keys.

Functions here only flush; the calling service owns the transaction and
decides when to commit or roll back.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, List, Optional, Sequence, Tuple
import uuid

from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from errors import InsufficientCreditsError, NotFoundError, ValidationError
from models.activity_log import ActivityLog
from models.integration_api_key import IntegrationApiKey
from models.uid_record import UidRecord
from models.user import User

CENT = Decimal("0.01")
UID_STATUSES = ("active", "expired", "deleted")


def to_money(value: Any) -> Decimal:
    """Coerce to an exact two-place Decimal; floats go through str()."""
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Any) -> str:
    return f"{to_money(value if value is not None else 0):.2f}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# --- users -----------------------------------------------------------------


async def get_user(db: AsyncSession, user_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id).execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def require_user(db: AsyncSession, user_id: str) -> User:
    user = await get_user(db, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


async def get_user_by_username(db: AsyncSession, username: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def list_users(db: AsyncSession) -> Sequence[User]:
    result = await db.execute(select(User).order_by(User.created_at.desc()))
    return result.scalars().all()


async def create_user(
    db: AsyncSession,
    *,
    username: str,
    password_hash: str,
    credits: Decimal,
    is_owner: bool = False,
) -> User:
    user = User(
        id=str(uuid.uuid4()),
        username=username,
        password_hash=password_hash,
        credits=to_money(credits),
        is_owner=is_owner,
        is_active=True,
        created_at=utcnow(),
    )
    db.add(user)
    await db.flush()
    return user


async def delete_user(db: AsyncSession, user_id: str) -> None:
    """Remove a user with its UID records, activity entries and keys."""
    await db.execute(delete(UidRecord).where(UidRecord.user_id == user_id))
    await db.execute(delete(ActivityLog).where(ActivityLog.user_id == user_id))
    await db.execute(delete(IntegrationApiKey).where(IntegrationApiKey.user_id == user_id))
    await db.execute(delete(User).where(User.id == user_id))
    await db.flush()


async def adjust_user_credits(db: AsyncSession, user_id: str, delta: Any) -> Decimal:
    """Apply a signed delta to a balance and return the new balance.

    The row is locked for the rest of the transaction where the backend
    supports it. A result below zero raises `InsufficientCreditsError`.
    """
    amount = to_money(delta)
    result = await db.execute(
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if not user:
        raise NotFoundError("User not found")

    current = to_money(user.credits or 0)
    new_balance = (current + amount).quantize(CENT)
    if new_balance < 0:
        raise InsufficientCreditsError(
            f"Insufficient credits. Required: {format_money(-amount)}, available: {format_money(current)}.",
            details={"required": format_money(-amount), "available": format_money(current)},
        )
    user.credits = new_balance
    await db.flush()
    return new_balance


# --- uid records -----------------------------------------------------------


async def create_uid_record(
    db: AsyncSession,
    *,
    user_id: str,
    uid_value: str,
    duration: int,
    cost: Decimal,
    expires_at: datetime,
    created_at: Optional[datetime] = None,
    region: str = "PK",
    plan_id: Optional[int] = None,
    api_key_id: Optional[str] = None,
    player_name: Optional[str] = None,
) -> UidRecord:
    record = UidRecord(
        id=str(uuid.uuid4()),
        user_id=user_id,
        api_key_id=api_key_id,
        uid_value=uid_value,
        player_name=player_name,
        region=region,
        plan_id=plan_id,
        duration=int(duration),
        cost=to_money(cost),
        status="active",
        created_at=created_at or utcnow(),
        expires_at=expires_at,
    )
    db.add(record)
    await db.flush()
    return record


async def get_uid_record(db: AsyncSession, uid_id: str) -> Optional[UidRecord]:
    result = await db.execute(
        select(UidRecord).where(UidRecord.id == uid_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def require_uid_record(db: AsyncSession, uid_id: str) -> UidRecord:
    record = await get_uid_record(db, uid_id)
    if not record:
        raise NotFoundError("UID not found")
    return record


async def list_user_uid_records(db: AsyncSession, user_id: str) -> Sequence[UidRecord]:
    result = await db.execute(
        select(UidRecord).where(UidRecord.user_id == user_id).order_by(UidRecord.created_at.desc())
    )
    return result.scalars().all()


async def list_all_uid_records(db: AsyncSession) -> Sequence[UidRecord]:
    result = await db.execute(select(UidRecord).order_by(UidRecord.created_at.desc()))
    return result.scalars().all()


async def find_key_uid_record(
    db: AsyncSession,
    api_key_id: str,
    *,
    uid_id: Optional[str] = None,
    uid_value: Optional[str] = None,
) -> Optional[UidRecord]:
    query = select(UidRecord).where(UidRecord.api_key_id == api_key_id)
    if uid_id:
        query = query.where(UidRecord.id == uid_id)
    elif uid_value:
        query = query.where(UidRecord.uid_value == uid_value)
    else:
        return None
    result = await db.execute(query.order_by(UidRecord.created_at.desc()).limit(1))
    return result.scalars().first()


async def page_key_uid_records(
    db: AsyncSession,
    api_key_id: str,
    *,
    status_filter: Optional[str] = None,
    now: Optional[datetime] = None,
    offset: int = 0,
    limit: int = 20,
) -> Tuple[List[UidRecord], int]:
    """One page of a key's records plus the filtered total.

    `online` is active and unexpired, `offline` any stored active record,
    `expired` a stored expired record; other values do not filter.
    """
    conditions = [UidRecord.api_key_id == api_key_id]
    if status_filter == "online":
        conditions += [UidRecord.status == "active", UidRecord.expires_at > (now or utcnow())]
    elif status_filter == "offline":
        conditions.append(UidRecord.status == "active")
    elif status_filter == "expired":
        conditions.append(UidRecord.status == "expired")

    total_result = await db.execute(select(func.count(UidRecord.id)).where(*conditions))
    result = await db.execute(
        select(UidRecord).where(*conditions).order_by(UidRecord.created_at.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all()), int(total_result.scalar() or 0)


async def count_active_key_uids(db: AsyncSession, api_key_id: str) -> int:
    result = await db.execute(
        select(func.count(UidRecord.id)).where(
            UidRecord.api_key_id == api_key_id,
            UidRecord.status == "active",
        )
    )
    return int(result.scalar() or 0)


async def set_uid_status(db: AsyncSession, uid_id: str, status: str) -> UidRecord:
    if status not in UID_STATUSES:
        raise ValidationError(f"Invalid status: {status!r}. Expected one of {', '.join(UID_STATUSES)}.")
    record = await require_uid_record(db, uid_id)
    record.status = status
    await db.flush()
    return record


async def set_uid_value(db: AsyncSession, uid_id: str, new_value: str) -> UidRecord:
    record = await require_uid_record(db, uid_id)
    record.uid_value = new_value
    await db.flush()
    return record


async def delete_uid_record(db: AsyncSession, uid_id: str) -> None:
    await db.execute(delete(UidRecord).where(UidRecord.id == uid_id))
    await db.flush()


# --- activity --------------------------------------------------------------


async def append_activity(db: AsyncSession, *, user_id: str, action: str, details: Optional[str] = None) -> ActivityLog:
    entry = ActivityLog(
        id=str(uuid.uuid4()),
        user_id=user_id,
        action=action,
        details=details,
        created_at=utcnow(),
    )
    db.add(entry)
    await db.flush()
    return entry


async def list_activity(db: AsyncSession, *, user_id: Optional[str] = None, limit: int = 50) -> List[ActivityLog]:
    query = select(ActivityLog)
    if user_id:
        query = query.where(ActivityLog.user_id == user_id)
    result = await db.execute(query.order_by(ActivityLog.created_at.desc()).limit(max(int(limit), 1)))
    return list(result.scalars().all())


async def purge_activity_older_than(db: AsyncSession, days: int, *, now: Optional[datetime] = None) -> int:
    cutoff = (now or utcnow()) - timedelta(days=days)
    result = await db.execute(delete(ActivityLog).where(ActivityLog.created_at < cutoff))
    await db.flush()
    return int(result.rowcount or 0)
