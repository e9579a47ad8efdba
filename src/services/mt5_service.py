# coding: utf-8
"""
MT5 account service client

Fetches trading-account snapshots from the external MT5 bridge service
and feeds them into the global leaderboard.

Endpoint: POST {MT5_SERVICE_URL}/fetch-account
Body: {"account_id": ..., "password": ..., "server": ...}
Response: {balance, equity, profit, margin, free_margin, margin_level,
           positions: [...], profit_percent?}
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

import aiohttp
from loguru import logger
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from config.config import MT5_SERVICE_URL, MT5_REQUEST_TIMEOUT
from src.core.exceptions import MT5ServiceError, MT5ServiceUnavailable
from src.database.models import User
from src.services.leaderboard_service import LeaderboardService


# tenacity logs retries through stdlib logging
_retry_logger = logging.getLogger(__name__)


class MT5Service:
    """
    Client for the MT5 bridge service

    Features:
    - 30s request timeout
    - Up to 3 attempts on connection errors
    - Per-user failure isolation when polling many accounts
    """

    def __init__(self, base_url: str = MT5_SERVICE_URL, timeout: int = MT5_REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    @retry(
        retry=retry_if_exception_type((aiohttp.ClientConnectionError, asyncio.TimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        before_sleep=before_sleep_log(_retry_logger, logging.WARNING),
        reraise=True,
    )
    async def _post(self, path: str, payload: Dict[str, Any]) -> tuple[int, Any]:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(f"{self.base_url}{path}", json=payload) as response:
                try:
                    data = await response.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    data = {"message": await response.text()}
                return response.status, data

    async def fetch_account_data(self, credentials: Dict[str, str]) -> Dict[str, Any]:
        """
        Fetch an account snapshot

        Args:
            credentials: {"account_id", "password", "server"}

        Returns:
            Account snapshot dict

        Raises:
            MT5ServiceError: service answered with an error status
            MT5ServiceUnavailable: service could not be reached
        """
        payload = {
            "account_id": credentials.get("account_id"),
            "password": credentials.get("password"),
            "server": credentials.get("server"),
        }

        try:
            status, data = await self._post("/fetch-account", payload)
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            logger.error(f"MT5 service unreachable at {self.base_url}: {e}")
            raise MT5ServiceUnavailable(
                "MT5 Service Unavailable: Could not connect to MT5 service"
            ) from e
        except aiohttp.ClientError as e:
            raise MT5ServiceError(f"MT5 Service Error: {e}") from e

        if status >= 400:
            detail = None
            if isinstance(data, dict):
                detail = data.get("detail") or data.get("message")
            raise MT5ServiceError(f"MT5 Service Error: {detail or f'HTTP {status}'}")

        return data

    async def process_user(self, session_maker: Callable, user: User) -> bool:
        """
        Poll one user's account and upsert their leaderboard entry

        Runs in its own session so one failure cannot affect another user.

        Returns:
            True on success, False when skipped or failed
        """
        if not user.has_mt5_credentials:
            logger.debug(f"User {user.username} has no MT5 credentials, skipping")
            return False

        try:
            snapshot = await self.fetch_account_data(
                {
                    "account_id": user.mt5_account_id,
                    "password": user.mt5_password,
                    "server": user.mt5_server,
                }
            )
            async with session_maker() as session:
                await LeaderboardService.upsert_from_mt5(session, user, snapshot)

            logger.info(f"Updated leaderboard for user {user.username} ({user.id})")
            return True

        except Exception as e:
            logger.error(f"Error processing MT5 data for user {user.username}: {e}")
            return False

    async def process_all_users(
        self, session_maker: Callable, users: List[User]
    ) -> Dict[str, int]:
        """
        Poll every user concurrently

        Returns:
            {"successful": n, "failed": n, "total": n}
        """
        results = await asyncio.gather(
            *(self.process_user(session_maker, user) for user in users),
            return_exceptions=True,
        )
        successful = sum(1 for result in results if result is True)

        return {
            "successful": successful,
            "failed": len(results) - successful,
            "total": len(results),
        }


_mt5_service: Optional[MT5Service] = None


def get_mt5_service() -> MT5Service:
    global _mt5_service
    if _mt5_service is None:
        _mt5_service = MT5Service()
    return _mt5_service
