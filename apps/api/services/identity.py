"""Caller identity passed explicitly into services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from errors import AuthorizationError


@dataclass(frozen=True)
class Actor:
    id: str
    username: str = ""
    is_owner: bool = False

    @property
    def role(self) -> str:
        return "owner" if self.is_owner else "user"

    def can_act_for(self, user_id: Optional[str]) -> bool:
        return self.is_owner or (user_id is not None and user_id == self.id)


def ensure_actor_scope(actor: Actor, user_id: Optional[str], message: str = "Can only act on your own account") -> None:
    """Reject regular users touching another user's resources."""
    if not actor.can_act_for(user_id):
        raise AuthorizationError(message)


def ensure_owner(actor: Actor) -> None:
    if not actor.is_owner:
        raise AuthorizationError("Owner access required")
