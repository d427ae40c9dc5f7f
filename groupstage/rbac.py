"""
groupstage/rbac.py
Caller identity and host authorization.

Tokens are issued by the external identity service. This module only
verifies them and turns the claims into an explicit RequestContext:
    sub       -> user_id
    username  -> username (optional)

Host ownership is checked per tournament inside the engine
(core.tournament_guard.ensure_host), before any domain validation.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from groupstage.config.settings import settings
from groupstage.core.context import RequestContext
from groupstage.errors import ErrorCode, UnauthorizedError

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


# ================= TOKEN UTILS =================

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token (tests and local tooling)."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({
        "exp": expire,
        "type": "access"
    })
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate JWT token"""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


# ================= AUTH DEPENDENCIES =================

async def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> RequestContext:
    """
    Resolve the caller from the bearer token.
    Raises 401 if the token is missing, invalid or expired.
    """
    if not token:
        raise UnauthorizedError()

    payload = decode_token(token)
    if not payload or payload.get("type", "access") != "access":
        logger.warning("[AUTH] rejected invalid or expired token")
        raise UnauthorizedError("Invalid or expired token", ErrorCode.AUTH_INVALID)

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid or expired token", ErrorCode.AUTH_INVALID)

    return RequestContext(user_id=str(user_id), username=payload.get("username"))
