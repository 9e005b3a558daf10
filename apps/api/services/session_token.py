"""Signed dashboard session tokens (JWT via python-jose)."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from config import settings
from errors import AuthenticationError


SESSION_ISSUER = "uid-bypass-dashboard"
SESSION_TOKEN_TYPE = "uidb_session"


@dataclass(frozen=True)
class IssuedSession:
    token: str
    expires_at: datetime

    @property
    def max_age(self) -> int:
        return max(int((self.expires_at - datetime.now(timezone.utc)).total_seconds()), 0)


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    username: Optional[str]
    expires_at: datetime


def issue_session_token(user_id: str, username: Optional[str] = None, ttl_hours: Optional[int] = None) -> IssuedSession:
    issued_at = datetime.now(timezone.utc)
    hours = max(int(ttl_hours or settings.JWT_EXPIRATION_HOURS or 24), 1)
    expires_at = issued_at + timedelta(hours=hours)
    token = jwt.encode(
        {
            "sub": user_id,
            "name": username,
            "iss": SESSION_ISSUER,
            "typ": SESSION_TOKEN_TYPE,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        },
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    return IssuedSession(token=token, expires_at=expires_at.replace(microsecond=0))


def read_session_token(token: str) -> SessionClaims:
    """Verify signature, expiry, issuer and token type."""
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=SESSION_ISSUER,
        )
    except ExpiredSignatureError as exc:
        raise AuthenticationError("Session expired. Please log in again.") from exc
    except JWTError as exc:
        raise AuthenticationError("Invalid session token.") from exc

    if claims.get("typ") != SESSION_TOKEN_TYPE or not str(claims.get("sub") or "").strip():
        raise AuthenticationError("Invalid session token.")

    return SessionClaims(
        user_id=str(claims["sub"]),
        username=claims.get("name"),
        expires_at=datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc),
    )
