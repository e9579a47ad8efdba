"""
Authentication
- Passwords: bcrypt
- Sessions: HS256 JWT (python-jose) sent as "Authorization: Bearer <token>"
- Job endpoints: admin bearer or the shared X-Cron-Secret header
"""

import hmac
from datetime import datetime, timedelta, UTC
from typing import Any, Dict, Optional

import bcrypt
from fastapi import Depends, Header
from jose import ExpiredSignatureError, JWTError, jwt
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import CRON_SECRET, JWT_ALGORITHM, JWT_EXPIRE_MINUTES, JWT_SECRET
from config.sentry import set_user_context
from src.core.exceptions import Forbidden, NotAuthenticated
from src.database.crud import get_user_by_id
from src.database.engine import get_session
from src.database.models import User


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(user: User, expires_minutes: int = JWT_EXPIRE_MINUTES) -> str:
    """
    Issue a JWT for a user

    Payload:
        sub: user ID (string), role, exp, iat
    """
    now = datetime.now(UTC)
    payload = {
        "sub": str(user.id),
        "role": user.role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Raises:
        NotAuthenticated: expired, malformed, or badly signed token
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise NotAuthenticated("Token has expired")
    except JWTError as e:
        logger.debug(f"JWT decode failed: {e}")
        raise NotAuthenticated("Not authorized, token failed")

    if not payload.get("sub"):
        raise NotAuthenticated("Not authorized, token failed")
    return payload


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


async def get_current_user(
    authorization: Optional[str] = Header(None),
    session: AsyncSession = Depends(get_session),
) -> User:
    """
    FastAPI dependency: the authenticated, active user

    Usage:
        @router.get("/me")
        async def me(user: User = Depends(get_current_user)):
            ...

    Raises:
        NotAuthenticated: no/invalid token or unknown user
        Forbidden: account deactivated
    """
    token = _bearer_token(authorization)
    if not token:
        raise NotAuthenticated("Not authorized, no token")

    payload = decode_access_token(token)
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise NotAuthenticated("Not authorized, token failed")

    user = await get_user_by_id(session, user_id)
    if not user:
        raise NotAuthenticated("User not found")
    if not user.is_active:
        raise Forbidden("Your account has been deactivated")

    set_user_context(user.id, user.username)
    return user


async def get_optional_user(
    authorization: Optional[str] = Header(None),
    session: AsyncSession = Depends(get_session),
) -> Optional[User]:
    """Like get_current_user, but anonymous requests get None"""
    if not _bearer_token(authorization):
        return None
    return await get_current_user(authorization, session)


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise Forbidden(f"User role {user.role} is not authorized to access this route")
    return user


async def require_cron_or_admin(
    x_cron_secret: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
    session: AsyncSession = Depends(get_session),
) -> Optional[User]:
    """
    Job endpoints accept the shared cron secret or an admin bearer token

    Returns:
        The admin user, or None for a cron call
    """
    if CRON_SECRET and x_cron_secret and hmac.compare_digest(x_cron_secret, CRON_SECRET):
        return None

    user = await get_current_user(authorization, session)
    if not user.is_admin:
        raise Forbidden(f"User role {user.role} is not authorized to access this route")
    return user
