# Файл: billing_backoffice/services/scheduler.py

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from billing_backoffice.db.uow import TransactionRunner
from billing_backoffice.models import PendingChargeInDB
from billing_backoffice.models.enums import ChargeStatus, charge_sources
from billing_backoffice.repositories import PendingChargeRepository, TokenBlacklistRepository
from billing_backoffice.services.cache import TTLCache

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScheduledJobs:
    """
    Периодические задачи над начислениями. Каждая задача - одна транзакция.
    Ошибки не выпускаются наружу: задача пишет лог с трейсбеком и отдаёт "пустой" результат,
    чтобы планировщик продолжил работу.
    """

    def __init__(
        self,
        runner: TransactionRunner,
        charges: PendingChargeRepository,
        blacklist: TokenBlacklistRepository,
        cache: Optional[TTLCache] = None,
        reminder_days: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._runner = runner
        self._charges = charges
        self._blacklist = blacklist
        self._cache = cache
        self._reminder_days = reminder_days
        self._clock = clock

    def _today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    async def age_pending_charges(self) -> int:
        """PENDING с прошедшим сроком -> OVERDUE. Возвращает число переведённых."""
        today = self._today()

        async def _work(session: AsyncSession) -> int:
            past_due = await self._charges.list_past_due(session, today)
            pending_ids = [c.id for c in past_due if c.status in charge_sources(ChargeStatus.OVERDUE)]
            if not pending_ids:
                return 0
            return await self._charges.mark_overdue(session, pending_ids)

        try:
            moved = await self._runner.run(_work)
        except Exception as e:
            logger.error(f"Aging job failed: {e}", exc_info=True)
            return 0
        if moved and self._cache is not None:
            self._cache.invalidate()
        logger.info(f"Aging job: {moved} charges marked OVERDUE (today={today.isoformat()})")
        return moved

    async def remind_upcoming_charges(self, days: Optional[int] = None) -> List[PendingChargeInDB]:
        """Только чтение: PENDING-начисления со сроком в [сегодня, сегодня + days]."""
        days = self._reminder_days if days is None else days
        today = self._today()
        until = today + timedelta(days=days)

        async def _work(session: AsyncSession) -> List[PendingChargeInDB]:
            rows = await self._charges.list_due_between(session, today, until, ChargeStatus.PENDING)
            return [PendingChargeInDB.model_validate(r) for r in rows]

        try:
            upcoming = await self._runner.run(_work)
        except Exception as e:
            logger.error(f"Reminder job failed: {e}", exc_info=True)
            return []
        for charge in upcoming:
            logger.info(
                f"Reminder: '{charge.description}' of {charge.amount} due {charge.due_date.isoformat()} "
                f"(user {charge.user_id})"
            )
        logger.info(f"Reminder job: {len(upcoming)} charges due until {until.isoformat()}")
        return upcoming

    async def prune_token_blacklist(self) -> int:
        now = self._clock()

        async def _work(session: AsyncSession) -> int:
            return await self._blacklist.prune_expired(session, now)

        try:
            return await self._runner.run(_work)
        except Exception as e:
            logger.error(f"Blacklist pruning failed: {e}", exc_info=True)
            return 0


def parse_hhmm(value: str) -> time:
    hours, _, minutes = value.partition(":")
    try:
        return time(int(hours), int(minutes), tzinfo=timezone.utc)
    except ValueError as e:
        raise ValueError(f"Invalid time of day '{value}', expected HH:MM") from e


def seconds_until(at: time, now: datetime) -> float:
    """Секунды до ближайшего наступления `at` (UTC) после `now`."""
    now = now.astimezone(timezone.utc)
    target = datetime.combine(now.date(), at.replace(tzinfo=None), tzinfo=timezone.utc)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


@dataclass
class DailyJob:
    name: str
    at: time
    func: Callable[[], Awaitable[Any]]


class DailyScheduler:
    """Запускает задачи раз в сутки в заданное время UTC. Каждая задача - отдельный asyncio.Task."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._jobs: List[DailyJob] = []
        self._tasks: Dict[str, asyncio.Task] = {}
        self._stop_event = asyncio.Event()

    def add_job(self, name: str, at: str, func: Callable[[], Awaitable[Any]]) -> None:
        if any(job.name == name for job in self._jobs):
            raise ValueError(f"Job '{name}' is already registered")
        self._jobs.append(DailyJob(name=name, at=parse_hhmm(at), func=func))

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks.values())

    async def start(self) -> None:
        if self.running:
            logger.warning("Scheduler already running")
            return
        self._stop_event.clear()
        self._tasks = {job.name: asyncio.create_task(self._job_loop(job), name=job.name) for job in self._jobs}
        logger.info(f"Scheduler started with jobs: {', '.join(j.name for j in self._jobs) or 'none'}")

    async def stop(self) -> None:
        if not self._tasks:
            return
        self._stop_event.set()
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._tasks = {}
        logger.info("Scheduler stopped")

    async def _job_loop(self, job: DailyJob) -> None:
        try:
            while not self._stop_event.is_set():
                delay = seconds_until(job.at, self._clock())
                logger.debug(f"Job '{job.name}' sleeps {delay:.0f}s until {job.at.strftime('%H:%M')} UTC")
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                    break
                except asyncio.TimeoutError:
                    pass
                await self.run_job(job)
        except asyncio.CancelledError:
            logger.info(f"Job loop '{job.name}' cancelled")
            raise

    async def run_job(self, job: DailyJob) -> None:
        logger.info(f"Running scheduled job '{job.name}'")
        try:
            await job.func()
        except Exception as e:
            logger.error(f"Scheduled job '{job.name}' failed: {e}", exc_info=True)


def build_default_scheduler(jobs: ScheduledJobs, scheduler_config, clock: Callable[[], datetime] = _utcnow) -> DailyScheduler:
    scheduler = DailyScheduler(clock=clock)
    scheduler.add_job("aging", scheduler_config.aging_at, jobs.age_pending_charges)
    scheduler.add_job("reminders", scheduler_config.reminder_at, jobs.remind_upcoming_charges)
    scheduler.add_job("prune-tokens", scheduler_config.prune_at, jobs.prune_token_blacklist)
    return scheduler
