"""Authentication dependencies for dashboard sessions and integration keys."""

from typing import Optional

from fastapi import Depends, Header, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from errors import AuthenticationError, AuthorizationError
from services import ledger
from services.bypass_client import BypassClientFactory
from services.identity import Actor, ensure_owner
from services.integration_keys import IntegrationContext, resolve_integration_key
from services.session_token import read_session_token
from services.settings_store import DatabaseSettingsProvider


auth_scheme = HTTPBearer(auto_error=False)


def _session_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.scheme.lower() == "bearer":
        return credentials.credentials
    return request.cookies.get(settings.SESSION_COOKIE_NAME)


async def get_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """Resolve the signed-in user from a Bearer token or the session cookie."""
    token = _session_token(request, credentials)
    if not token:
        raise AuthenticationError("Missing session token.")

    claims = read_session_token(token)
    user = await ledger.get_user(db, claims.user_id)
    if not user:
        raise AuthenticationError("Session user no longer exists.")
    if not user.is_active:
        raise AuthorizationError("Account is suspended")

    return Actor(id=user.id, username=user.username, is_owner=bool(user.is_owner))


async def require_owner(actor: Actor = Depends(get_actor)) -> Actor:
    ensure_owner(actor)
    return actor


async def get_integration_context(
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
    api_key: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> IntegrationContext:
    """Resolve an integration key from the X-API-Key header or `api_key` query."""
    return await resolve_integration_key(db, x_api_key or api_key)


async def get_bypass_client_factory(db: AsyncSession = Depends(get_db)) -> BypassClientFactory:
    return BypassClientFactory(DatabaseSettingsProvider(db))
