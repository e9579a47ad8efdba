"""
Platform Scheduler

APScheduler jobs for the API process:
- Challenge status sweep: every 60 sec
- MT5 leaderboard poll: hourly at :00
- Subscription expiry: daily 00:10 UTC
- Scheduled notifications: every minute
- Expired push endpoint cleanup: daily 03:00 UTC

Every job also runs through a single-flight guard so a manual trigger
cannot overlap a scheduled run of the same job.
"""

import asyncio
from datetime import datetime, UTC
from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config.config import MT5_POLL_INTERVAL_MINUTES, STATUS_SWEEP_INTERVAL_SECONDS
from src.database.crud import delete_expired_push_subscriptions
from src.database.engine import get_session_maker
from src.services.notification_service import dispatch_due_notifications
from src.services.push_service import get_push_service
from src.services.subscription_service import expire_subscriptions
from src.tasks.challenge_status import update_challenge_statuses
from src.tasks.mt5_sync import update_all_users_mt5_data


class JobGuard:
    """Per-job asyncio lock with run bookkeeping"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._status: Dict[str, Dict[str, Any]] = {}

    def _lock(self, job_id: str) -> asyncio.Lock:
        if job_id not in self._locks:
            self._locks[job_id] = asyncio.Lock()
            self._status[job_id] = {
                "running": False,
                "runs": 0,
                "last_run_at": None,
                "last_success_at": None,
                "last_error": None,
            }
        return self._locks[job_id]

    def is_running(self, job_id: str) -> bool:
        return self._lock(job_id).locked()

    async def run(self, job_id: str, func: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run func unless the same job is already in flight

        Returns:
            func's result, {"skipped": True, "reason": "already running"},
            or {"error": str} when func raised
        """
        lock = self._lock(job_id)
        if lock.locked():
            logger.warning(f"Job {job_id} already running, skipping")
            return {"skipped": True, "reason": "already running"}

        async with lock:
            status = self._status[job_id]
            status["running"] = True
            status["runs"] += 1
            status["last_run_at"] = datetime.now(UTC).isoformat()
            try:
                result = await func()
                status["last_success_at"] = datetime.now(UTC).isoformat()
                status["last_error"] = None
                return result
            except Exception as e:
                status["last_error"] = str(e)
                logger.exception(f"Job {job_id} failed: {e}")
                return {"error": str(e)}
            finally:
                status["running"] = False

    def status(self) -> Dict[str, Dict[str, Any]]:
        return {job_id: dict(values) for job_id, values in self._status.items()}


class PlatformScheduler:
    """
    APScheduler wrapper for the platform's periodic jobs.

    Jobs:
    - challenge_status_sweep: time-driven challenge status changes
    - mt5_data_poll: global leaderboard refresh from the MT5 service
    - subscription_expiry: expire subscriptions past their end date
    - scheduled_notifications: dispatch due scheduled notifications
    - push_subscription_cleanup: delete push endpoints flagged expired
    """

    def __init__(self, session_maker: Optional[Callable] = None):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.guard = JobGuard()
        self._session_maker = session_maker
        self._running = False

    @property
    def session_maker(self) -> Callable:
        return self._session_maker or get_session_maker()

    @property
    def running(self) -> bool:
        return self._running

    def start(self, run_sweep_now: bool = True):
        if self._running:
            logger.warning("Platform scheduler already running")
            return

        self.scheduler = AsyncIOScheduler(timezone="UTC")
        job_defaults = {"max_instances": 1, "coalesce": True, "replace_existing": True}

        self.scheduler.add_job(
            self._job_status_sweep,
            IntervalTrigger(seconds=STATUS_SWEEP_INTERVAL_SECONDS),
            id="challenge_status_sweep",
            name="Challenge Status Sweep",
            **job_defaults,
        )

        # Hourly at :00 by default; a custom interval falls back to IntervalTrigger
        mt5_trigger = (
            CronTrigger(minute=0, timezone="UTC")
            if MT5_POLL_INTERVAL_MINUTES == 60
            else IntervalTrigger(minutes=MT5_POLL_INTERVAL_MINUTES)
        )
        self.scheduler.add_job(
            self._job_mt5_poll,
            mt5_trigger,
            id="mt5_data_poll",
            name="MT5 Leaderboard Poll",
            **job_defaults,
        )

        self.scheduler.add_job(
            self._job_subscription_expiry,
            CronTrigger(hour=0, minute=10, timezone="UTC"),
            id="subscription_expiry",
            name="Subscription Expiry",
            **job_defaults,
        )

        self.scheduler.add_job(
            self._job_scheduled_notifications,
            IntervalTrigger(minutes=1),
            id="scheduled_notifications",
            name="Scheduled Notifications",
            **job_defaults,
        )

        self.scheduler.add_job(
            self._job_push_cleanup,
            CronTrigger(hour=3, minute=0, timezone="UTC"),
            id="push_subscription_cleanup",
            name="Push Subscription Cleanup",
            **job_defaults,
        )

        if run_sweep_now:
            # First sweep right away instead of waiting a full interval
            self.scheduler.add_job(
                self._job_status_sweep,
                id="challenge_status_sweep_startup",
                name="Challenge Status Sweep (startup)",
                replace_existing=True,
            )

        self.scheduler.start()
        self._running = True

        logger.info(
            f"Platform scheduler started: status sweep every {STATUS_SWEEP_INTERVAL_SECONDS}s, "
            f"MT5 poll every {MT5_POLL_INTERVAL_MINUTES}min"
        )

    def stop(self):
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Platform scheduler stopped")

    def status(self) -> Dict[str, Any]:
        jobs = []
        if self.scheduler:
            for job in self.scheduler.get_jobs():
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run_at": job.next_run_time.isoformat() if job.next_run_time else None,
                    }
                )
        return {"running": self._running, "jobs": jobs, "runs": self.guard.status()}

    # ------------------------------------------------------------------
    # Manual triggers
    # ------------------------------------------------------------------

    async def trigger_status_sweep_now(self) -> dict:
        logger.info("Manual challenge status sweep triggered")
        return await self._job_status_sweep()

    async def trigger_mt5_poll_now(self) -> dict:
        logger.info("Manual MT5 poll triggered")
        return await self._job_mt5_poll()

    async def trigger_subscription_expiry_now(self) -> dict:
        logger.info("Manual subscription expiry triggered")
        return await self._job_subscription_expiry()

    async def trigger_push_cleanup_now(self) -> dict:
        logger.info("Manual push cleanup triggered")
        return await self._job_push_cleanup()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def _job_status_sweep(self) -> dict:
        async def run():
            async with self.session_maker() as session:
                return await update_challenge_statuses(session)

        return await self.guard.run("challenge_status_sweep", run)

    async def _job_mt5_poll(self) -> dict:
        async def run():
            return await update_all_users_mt5_data(session_maker=self.session_maker)

        return await self.guard.run("mt5_data_poll", run)

    async def _job_subscription_expiry(self) -> dict:
        async def run():
            async with self.session_maker() as session:
                return {"expired": await expire_subscriptions(session)}

        return await self.guard.run("subscription_expiry", run)

    async def _job_scheduled_notifications(self) -> dict:
        async def run():
            async with self.session_maker() as session:
                return {"dispatched": await dispatch_due_notifications(session, get_push_service())}

        return await self.guard.run("scheduled_notifications", run)

    async def _job_push_cleanup(self) -> dict:
        async def run():
            async with self.session_maker() as session:
                return {"deleted": await delete_expired_push_subscriptions(session)}

        return await self.guard.run("push_subscription_cleanup", run)


_scheduler: Optional[PlatformScheduler] = None


def get_scheduler() -> PlatformScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = PlatformScheduler()
    return _scheduler
