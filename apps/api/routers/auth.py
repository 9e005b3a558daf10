"""
Authentication router for dashboard login sessions.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import get_actor
from routers.rate_limit import rate_limit
from services import ledger
from services.identity import Actor
from services.session_token import issue_session_token
from services.users import authenticate_user_service, serialize_user

router = APIRouter()


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    user: Dict[str, Any]
    session_token: str
    expires_at: int


@router.post(
    "/login",
    response_model=LoginResponse,
    dependencies=[Depends(rate_limit("login", settings.LOGIN_RATE_LIMIT_PER_HOUR, 3600))],
)
async def login(
    request: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Check credentials and issue a session cookie plus bearer token."""
    user = await authenticate_user_service(username=request.username, password=request.password, db=db)
    session = issue_session_token(user.id, user.username)

    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=session.token,
        max_age=session.max_age,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )
    return LoginResponse(
        user=serialize_user(user),
        session_token=session.token,
        expires_at=int(session.expires_at.timestamp()),
    )


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return {"success": True}


@router.get("/me")
async def get_current_user(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    user = await ledger.require_user(db, actor.id)
    return serialize_user(user)
