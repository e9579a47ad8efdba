"""
Leaderboard projector

Maintains the global leaderboard (one entry per user, refreshed by the MT5
poller and by participant changes) and computes challenge leaderboards on
read from participant rows.
"""

import math
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from src.core.exceptions import NotFound, ValidationFailed
from src.database.crud import (
    get_challenge,
    get_leaderboard_entry,
    get_leaderboard_entry_by_id,
    get_all_participants,
)
from src.database.models import (
    Challenge,
    ChallengeParticipant,
    LeaderboardEntry,
    User,
)
from src.utils.dates import isoformat


# Columns the admin list may sort by
ADMIN_SORT_COLUMNS = {
    "profitPercent": LeaderboardEntry.profit_percent,
    "profit": LeaderboardEntry.profit,
    "balance": LeaderboardEntry.balance,
    "equity": LeaderboardEntry.equity,
    "username": LeaderboardEntry.username,
    "updatedAt": LeaderboardEntry.updated_at,
    "createdAt": LeaderboardEntry.created_at,
}

# Fields an admin may edit on an entry (API name -> column)
EDITABLE_FIELDS = {
    "username": "username",
    "firstName": "first_name",
    "lastName": "last_name",
    "avatar": "avatar",
    "accountId": "account_id",
    "balance": "balance",
    "equity": "equity",
    "profit": "profit",
    "margin": "margin",
    "freeMargin": "free_margin",
    "marginLevel": "margin_level",
    "profitPercent": "profit_percent",
    "positions": "positions",
}


def participant_profit_percent(profit: Optional[float], balance: Optional[float]) -> float:
    """profit / balance * 100, 0 when balance is falsy"""
    if not balance:
        return 0.0
    return (profit or 0.0) / balance * 100


def snapshot_profit_percent(snapshot: Dict[str, Any]) -> float:
    """
    profit_percent of an MT5 account snapshot

    Uses the service-provided value when present, otherwise derives it
    from equity against balance.
    """
    if snapshot.get("profit_percent") is not None:
        return float(snapshot["profit_percent"])

    balance = float(snapshot.get("balance") or 0)
    equity = float(snapshot.get("equity") or 0)
    if balance > 0:
        return (equity - balance) / balance * 100
    return 0.0


def entry_to_row(entry: LeaderboardEntry, rank: Optional[int] = None) -> Dict[str, Any]:
    row = {
        "id": entry.id,
        "userId": entry.user_id,
        "participantId": None,
        "username": entry.username,
        "firstName": entry.first_name,
        "lastName": entry.last_name,
        "avatar": entry.avatar,
        "accountId": entry.account_id,
        "balance": entry.balance,
        "equity": entry.equity,
        "profit": entry.profit,
        "profitPercent": entry.profit_percent,
        "margin": entry.margin,
        "freeMargin": entry.free_margin,
        "marginLevel": entry.margin_level,
        "positions": entry.positions or [],
        "updatedAt": isoformat(entry.updated_at),
    }
    if rank is not None:
        row["rank"] = rank
    return row


class LeaderboardService:
    """Global and challenge-scoped rankings"""

    # ===========================
    # GLOBAL LEADERBOARD
    # ===========================

    @staticmethod
    async def get_global_leaderboard(
        session: AsyncSession, skip: int = 0, limit: int = 50
    ) -> Dict[str, Any]:
        """
        Global leaderboard page

        Ordered by profit_percent desc, most recently updated first on ties.

        Args:
            session: Database session
            skip: Offset
            limit: Page size

        Returns:
            {"leaderboard": [...], "count": page size, "total": all entries}
        """
        stmt = (
            select(LeaderboardEntry)
            .order_by(
                LeaderboardEntry.profit_percent.desc(),
                LeaderboardEntry.updated_at.desc(),
                LeaderboardEntry.id.asc(),
            )
            .offset(skip)
            .limit(limit)
        )
        entries = list((await session.execute(stmt)).scalars().all())
        total = await session.scalar(select(func.count(LeaderboardEntry.id))) or 0

        rows = [entry_to_row(entry, rank=skip + index + 1) for index, entry in enumerate(entries)]
        return {"leaderboard": rows, "count": len(rows), "total": total}

    @staticmethod
    async def get_user_rank(session: AsyncSession, user_id: int) -> Dict[str, Any]:
        """
        Global rank of a user: 1 + number of entries with strictly greater profit_percent

        Raises:
            NotFound: user has no leaderboard entry
        """
        entry = await get_leaderboard_entry(session, user_id)
        if not entry:
            raise NotFound("User not found in leaderboard")

        higher = await session.scalar(
            select(func.count(LeaderboardEntry.id)).where(
                LeaderboardEntry.profit_percent > entry.profit_percent
            )
        )
        rank = (higher or 0) + 1
        total_users = await session.scalar(select(func.count(LeaderboardEntry.id))) or 0

        return {
            "rank": rank,
            "totalUsers": total_users,
            "percentile": round((total_users - rank + 1) / total_users * 100),
            "stats": {
                "profitPercent": entry.profit_percent,
                "balance": entry.balance,
                "equity": entry.equity,
                "profit": entry.profit,
                "updatedAt": isoformat(entry.updated_at),
            },
        }

    @staticmethod
    async def get_global_stats(session: AsyncSession) -> Dict[str, Any]:
        total_users = await session.scalar(select(func.count(LeaderboardEntry.id))) or 0
        top = (
            await session.execute(
                select(LeaderboardEntry)
                .order_by(LeaderboardEntry.profit_percent.desc(), LeaderboardEntry.updated_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()

        return {
            "totalUsers": total_users,
            "topPerformer": (
                {"username": top.username, "profitPercent": top.profit_percent} if top else None
            ),
        }

    # ===========================
    # CHALLENGE LEADERBOARD
    # ===========================

    @staticmethod
    def challenge_rows(challenge: Challenge) -> List[Dict[str, Any]]:
        """
        Project participants of a challenge into ranked rows (unpaginated, unranked)

        MT5 credentials are never part of the projection.
        """
        rows = []
        for participant in challenge.participants:
            user = participant.user
            balance = participant.current_balance or challenge.account_size
            profit = participant.profit or 0.0
            profit_percent = participant.profit_percent or participant_profit_percent(profit, balance)

            rows.append(
                {
                    "userId": participant.user_id,
                    "participantId": participant.id,
                    "username": user.username if user else "",
                    "firstName": user.first_name if user else "",
                    "lastName": user.last_name if user else "",
                    "avatar": (user.avatar if user else "") or "",
                    "accountId": participant.mt5_account_id or "N/A",
                    "balance": balance,
                    "equity": balance,
                    "profit": profit,
                    "profitPercent": profit_percent,
                    "margin": 0,
                    "freeMargin": balance,
                    "marginLevel": 0,
                    "positions": [],
                    "status": participant.status,
                    "updatedAt": isoformat(participant.updated_at),
                }
            )

        rows.sort(key=lambda row: row["profitPercent"] or 0, reverse=True)
        return rows

    @staticmethod
    async def get_challenge_leaderboard(
        session: AsyncSession, challenge_id: int, skip: int = 0, limit: int = 50
    ) -> Dict[str, Any]:
        """
        Challenge leaderboard computed from participant rows

        Sorted by profit_percent desc, then sliced [skip:skip+limit];
        rank is skip + index + 1 within the slice.

        Raises:
            NotFound: challenge does not exist
        """
        challenge = await get_challenge(session, challenge_id)
        if not challenge:
            raise NotFound("Challenge not found")

        rows = LeaderboardService.challenge_rows(challenge)
        page = rows[skip: skip + limit]
        for index, row in enumerate(page):
            row["rank"] = skip + index + 1

        return {"leaderboard": page, "count": len(page), "total": len(rows)}

    @staticmethod
    async def get_challenge_stats(session: AsyncSession, challenge_id: int) -> Dict[str, Any]:
        challenge = await get_challenge(session, challenge_id)
        if not challenge:
            raise NotFound("Challenge not found")

        rows = LeaderboardService.challenge_rows(challenge)
        top = rows[0] if rows else None
        return {
            "totalParticipants": len(rows),
            "topPerformer": (
                {"username": top["username"], "profitPercent": top["profitPercent"]} if top else None
            ),
        }

    # ===========================
    # UPSERTS
    # ===========================

    @staticmethod
    async def upsert_from_participant(
        session: AsyncSession, user_id: int, participant: ChallengeParticipant
    ) -> Optional[LeaderboardEntry]:
        """
        Create or refresh the user's global entry from a challenge participant

        Best effort: failures are logged and None is returned.
        """
        try:
            user = await session.get(User, user_id)
            if not user:
                return None

            balance = participant.current_balance or 0.0
            entry = await get_leaderboard_entry(session, user_id)

            if entry is None:
                entry = LeaderboardEntry(
                    user_id=user_id,
                    username=user.username,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    avatar=user.avatar or "",
                    account_id=participant.mt5_account_id or "N/A",
                    balance=balance,
                    equity=balance,
                    profit=participant.profit or 0.0,
                    profit_percent=participant.profit_percent or 0.0,
                    margin=0.0,
                    free_margin=balance,
                    margin_level=0.0,
                    positions=[],
                )
                session.add(entry)
            else:
                # Falsy inputs keep the stored value
                entry.account_id = participant.mt5_account_id or entry.account_id
                entry.balance = balance or entry.balance
                entry.equity = balance or entry.equity
                entry.profit = participant.profit or entry.profit
                entry.profit_percent = participant.profit_percent or entry.profit_percent
                entry.free_margin = balance or entry.free_margin
                entry.updated_at = datetime.now(UTC)

            await session.commit()
            return entry

        except Exception as e:
            logger.exception(f"Failed to update leaderboard entry for user {user_id}: {e}")
            await session.rollback()
            return None

    @staticmethod
    async def upsert_from_mt5(
        session: AsyncSession, user: User, snapshot: Dict[str, Any]
    ) -> LeaderboardEntry:
        """
        Create or refresh the user's global entry from an MT5 account snapshot

        Args:
            session: Database session
            user: User whose account was polled
            snapshot: {balance, equity, profit, margin, free_margin, margin_level, positions, profit_percent?}

        Returns:
            Updated LeaderboardEntry
        """
        entry = await get_leaderboard_entry(session, user.id)
        if entry is None:
            entry = LeaderboardEntry(user_id=user.id)
            session.add(entry)

        entry.username = user.username
        entry.first_name = user.first_name
        entry.last_name = user.last_name
        entry.avatar = user.avatar or ""
        entry.account_id = str(snapshot.get("account_id") or user.mt5_account_id or "N/A")
        entry.balance = float(snapshot.get("balance") or 0)
        entry.equity = float(snapshot.get("equity") or 0)
        entry.profit = float(snapshot.get("profit") or 0)
        entry.margin = float(snapshot.get("margin") or 0)
        entry.free_margin = float(snapshot.get("free_margin") or 0)
        entry.margin_level = float(snapshot.get("margin_level") or 0)
        entry.positions = [
            {
                "symbol": position.get("symbol"),
                "volume": position.get("volume"),
                "entry_price": position.get("entry_price"),
                "profit": position.get("profit"),
            }
            for position in snapshot.get("positions") or []
        ]
        entry.profit_percent = snapshot_profit_percent(snapshot)
        entry.updated_at = datetime.now(UTC)

        await session.commit()
        return entry

    @staticmethod
    async def sync_all_participants(session: AsyncSession) -> int:
        """
        Upsert a global entry for every participant of every challenge

        Returns:
            Number of participants synced
        """
        synced = 0
        for participant in await get_all_participants(session):
            if await LeaderboardService.upsert_from_participant(
                session, participant.user_id, participant
            ):
                synced += 1

        logger.info(f"Synced {synced} challenge participants to leaderboard")
        return synced

    # ===========================
    # ADMIN
    # ===========================

    @staticmethod
    async def list_entries(
        session: AsyncSession,
        page: int = 1,
        limit: int = 50,
        sort_by: str = "profitPercent",
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        """
        Admin listing with whitelisted sort columns

        Raises:
            ValidationFailed: unknown sort column
        """
        column = ADMIN_SORT_COLUMNS.get(sort_by)
        if column is None:
            raise ValidationFailed(f"Cannot sort by '{sort_by}'", fields=["sortBy"])

        page = max(page, 1)
        order = column.desc() if sort_order == "desc" else column.asc()
        stmt = (
            select(LeaderboardEntry)
            .order_by(order, LeaderboardEntry.id.asc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        entries = list((await session.execute(stmt)).scalars().all())
        total = await session.scalar(select(func.count(LeaderboardEntry.id))) or 0

        return {
            "entries": [entry_to_row(entry) for entry in entries],
            "pagination": {
                "current": page,
                "pages": math.ceil(total / limit) if limit else 0,
                "total": total,
                "limit": limit,
            },
        }

    @staticmethod
    async def update_entry(
        session: AsyncSession, entry_id: int, updates: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Admin edit; identity fields are ignored and updated_at is refreshed"""
        entry = await get_leaderboard_entry_by_id(session, entry_id)
        if not entry:
            raise NotFound("Leaderboard entry not found")

        for key, value in updates.items():
            column = EDITABLE_FIELDS.get(key)
            if column is not None:
                setattr(entry, column, value)
        entry.updated_at = datetime.now(UTC)

        await session.commit()
        return entry_to_row(entry)

    @staticmethod
    async def delete_entry(session: AsyncSession, entry_id: int) -> None:
        entry = await get_leaderboard_entry_by_id(session, entry_id)
        if not entry:
            raise NotFound("Leaderboard entry not found")

        await session.delete(entry)
        await session.commit()
        logger.info(f"Leaderboard entry {entry_id} deleted")
