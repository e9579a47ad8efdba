"""
Accounts API

/auth: register, login, current user, global-leaderboard MT5 credentials
/users: profile reads and edits (self or admin), admin listing and deletion
"""

from datetime import datetime, UTC
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import (
    create_access_token,
    get_current_user,
    hash_password,
    require_admin,
    verify_password,
)
from src.api.schemas import LoginRequest, MT5Credentials, RegisterRequest, UserUpdateRequest
from src.api.serializers import envelope, user_to_dict
from src.core.enums import UserRole
from src.core.exceptions import Forbidden, NotAuthenticated, NotFound, ValidationFailed
from src.database.crud import (
    create_user,
    delete_user,
    get_all_users,
    get_user_by_email,
    get_user_by_id,
    get_user_by_username,
    get_users_count,
    update_user,
)
from src.database.engine import get_session
from src.database.models import User
from src.services.stats_service import compute_user_trading_stats, recompute_all_users_stats, recompute_user_trading_stats

MIN_PASSWORD_LENGTH = 8

# Self-service profile fields; the rest of UserUpdateRequest is admin only
PROFILE_FIELDS = {"first_name", "last_name", "avatar", "theme", "notify_email", "notify_push"}
ADMIN_FIELDS = {"role", "is_active", "is_premium"}


auth_router = APIRouter(prefix="/auth", tags=["auth"])
router = APIRouter(prefix="/users", tags=["users"])


def _ensure_self_or_admin(user: User, user_id: int) -> None:
    if user.id != user_id and not user.is_admin:
        raise Forbidden("Not authorized to access this user")


# ===========================
# AUTH
# ===========================


@auth_router.post("/register", status_code=201)
async def register(
    request: RegisterRequest,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Create an account and sign it in

    Returns:
        {"success": true, "data": {"token": "...", "user": {...}}}
    """
    if len(request.password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters", fields=["password"]
        )
    if await get_user_by_email(session, request.email):
        raise ValidationFailed("User with this email already exists", fields=["email"])
    if await get_user_by_username(session, request.username):
        raise ValidationFailed("Username is already taken", fields=["username"])

    user = await create_user(
        session,
        username=request.username,
        email=request.email,
        password_hash=hash_password(request.password),
        first_name=request.first_name,
        last_name=request.last_name,
    )
    logger.info(f"User registered: {user.id} ({user.username})")

    return envelope(
        {"token": create_access_token(user), "user": user_to_dict(user)},
        message="User registered successfully",
    )


@auth_router.post("/login")
async def login(
    request: LoginRequest,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    user = await get_user_by_email(session, request.email)
    if not user or not verify_password(request.password, user.password_hash):
        raise NotAuthenticated("Invalid email or password")
    if not user.is_active:
        raise Forbidden("Your account has been deactivated")

    user.last_login = datetime.now(UTC)
    await session.commit()
    await recompute_user_trading_stats(session, user.id)

    logger.info(f"User {user.id} logged in")
    return envelope({"token": create_access_token(user), "user": user_to_dict(user)})


@auth_router.get("/me")
async def me(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    await recompute_user_trading_stats(session, user.id)
    return envelope(user_to_dict(user))


@auth_router.put("/me/mt5-credentials")
async def set_mt5_credentials(
    request: MT5Credentials,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Credentials polled for the global leaderboard"""
    if not request.account_id.strip() or not request.password or not request.server.strip():
        raise ValidationFailed(
            "MT5 account ID, password and server are required",
            fields=["accountId", "password", "server"],
        )

    user = await update_user(
        session,
        user,
        mt5_account_id=request.account_id.strip(),
        mt5_password=request.password,
        mt5_server=request.server.strip(),
    )
    logger.info(f"User {user.id} updated MT5 credentials (account {user.mt5_account_id})")
    return envelope(user_to_dict(user), message="MT5 credentials updated")


# ===========================
# USERS
# ===========================


@router.get("")
async def list_users(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    users = await get_all_users(session, skip=skip, limit=limit)
    total = await get_users_count(session)
    return envelope(
        {"users": [user_to_dict(u) for u in users], "count": len(users), "total": total}
    )


@router.post("/admin/recompute-stats")
async def recompute_stats(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    updated = await recompute_all_users_stats(session)
    return envelope({"updated": updated}, message=f"Recomputed trading stats for {updated} users")


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    _ensure_self_or_admin(user, user_id)
    target = await get_user_by_id(session, user_id)
    if not target:
        raise NotFound("User not found")
    return envelope(user_to_dict(target))


@router.put("/{user_id}")
async def update_user_profile(
    user_id: int,
    request: UserUpdateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    _ensure_self_or_admin(user, user_id)
    target = await get_user_by_id(session, user_id)
    if not target:
        raise NotFound("User not found")

    changes = request.fields_set()
    if not user.is_admin and ADMIN_FIELDS & changes.keys():
        raise Forbidden("Only admins can change role or account status")
    if "role" in changes:
        try:
            changes["role"] = UserRole(changes["role"]).value
        except ValueError:
            raise ValidationFailed("Invalid role", fields=["role"])

    allowed = PROFILE_FIELDS | (ADMIN_FIELDS if user.is_admin else set())
    target = await update_user(
        session, target, **{key: value for key, value in changes.items() if key in allowed}
    )
    return envelope(user_to_dict(target), message="User updated successfully")


@router.get("/{user_id}/stats")
async def get_user_stats(
    user_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    _ensure_self_or_admin(user, user_id)
    if not await get_user_by_id(session, user_id):
        raise NotFound("User not found")

    stats = await compute_user_trading_stats(session, user_id)
    return envelope(
        {
            "totalChallenges": stats["total_challenges"],
            "completedChallenges": stats["completed_challenges"],
            "totalProfit": stats["total_profit"],
            "winRate": stats["win_rate"],
        }
    )


@router.delete("/{user_id}")
async def remove_user(
    user_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Cascading delete: participations, subscriptions, leaderboard entry, push endpoints"""
    if user_id == admin.id:
        raise ValidationFailed("You cannot delete your own account", fields=["id"])

    target = await get_user_by_id(session, user_id)
    if not target:
        raise NotFound("User not found")

    await delete_user(session, target)
    logger.info(f"User {user_id} deleted by admin {admin.id}")
    return envelope(message="User deleted successfully")
