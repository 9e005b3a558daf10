"""Server-side pricing and manual credit adjustments."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from errors import ValidationError
from services import ledger
from services.activity import CREDIT_ADD, CREDIT_DEDUCT
from services.locks import lifecycle_locks, user_key

# Duration in hours -> price. Exact matches only.
PRICING_TIERS: Dict[int, Decimal] = {
    24: Decimal("0.50"),
    72: Decimal("1.30"),
    168: Decimal("2.33"),
    336: Decimal("3.50"),
    720: Decimal("5.20"),
}

FREE_DURATION_HOURS = 24


@dataclass(frozen=True)
class IntegrationPlan:
    plan_id: int
    name: str
    hours: int

    @property
    def days(self) -> int:
        return self.hours // 24

    @property
    def price(self) -> Decimal:
        return PRICING_TIERS[self.hours]


INTEGRATION_PLANS: Dict[int, IntegrationPlan] = {
    1: IntegrationPlan(1, "1 day", 24),
    2: IntegrationPlan(2, "3 days", 72),
    3: IntegrationPlan(3, "7 days", 168),
    4: IntegrationPlan(4, "14 days", 336),
    5: IntegrationPlan(5, "30 days", 720),
}


def price_for_duration(duration_hours: Any) -> Decimal:
    """Return the tier price for an exact duration or reject it."""
    try:
        hours = int(duration_hours)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Invalid duration selected") from exc
    if isinstance(duration_hours, float) and not float(duration_hours).is_integer():
        raise ValidationError("Invalid duration selected")
    price = PRICING_TIERS.get(hours)
    if price is None:
        raise ValidationError(
            "Invalid duration selected",
            details={"allowed_durations": sorted(PRICING_TIERS)},
        )
    return price


def get_integration_plan(plan_id: Any) -> IntegrationPlan:
    try:
        plan = INTEGRATION_PLANS.get(int(plan_id))
    except (TypeError, ValueError):
        plan = None
    if plan is None:
        raise ValidationError("Plan not found or inactive", details={"plan_id": plan_id})
    return plan


def pricing_table() -> List[Dict[str, Any]]:
    return [
        {"duration": hours, "price": ledger.format_money(price)}
        for hours, price in sorted(PRICING_TIERS.items())
    ]


async def adjust_credits_service(
    *,
    actor_id: str,
    user_id: str,
    amount: Any,
    operation: str,
    db: AsyncSession,
) -> Dict[str, Any]:
    """Owner top-up or deduction of a user's balance."""
    value = ledger.to_money(amount)
    if value <= 0:
        raise ValidationError("amount must be greater than 0")
    if operation not in ("add", "deduct"):
        raise ValidationError("operation must be 'add' or 'deduct'")

    async with lifecycle_locks.hold(user_key(user_id)):
        user = await ledger.require_user(db, user_id)
        delta = value if operation == "add" else -value
        try:
            new_balance = await ledger.adjust_user_credits(db, user_id, delta)
            if operation == "add":
                details = f"Added ${ledger.format_money(value)} to {user.username}"
            else:
                details = f"Deducted ${ledger.format_money(value)} from {user.username}"
            await ledger.append_activity(
                db,
                user_id=actor_id,
                action=CREDIT_ADD if operation == "add" else CREDIT_DEDUCT,
                details=details,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    return {"success": True, "new_credits": ledger.format_money(new_balance)}
