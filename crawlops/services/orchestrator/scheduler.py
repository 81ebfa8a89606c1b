import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable

from celery.schedules import ParseException, crontab

from crawlops.services.orchestrator.exceptions import JobValidationError
from crawlops.services.orchestrator.monitor import utcnow

logger = logging.getLogger("crawlops.orchestrator.scheduler")

FireCallback = Callable[[uuid.UUID], Awaitable[object]]


def parse_cron(expression: str, nowfun: Callable[[], datetime] | None = None) -> crontab:
    """Parse a 5-field cron expression (min hour dom month dow)."""
    fields = (expression or "").split()
    if len(fields) != 5:
        raise JobValidationError(
            f"Invalid cron expression {expression!r}: expected 5 fields, got {len(fields)}"
        )
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    try:
        return crontab(
            minute=minute,
            hour=hour,
            day_of_month=day_of_month,
            month_of_year=month_of_year,
            day_of_week=day_of_week,
            nowfun=nowfun,
        )
    except (ParseException, ValueError) as e:
        raise JobValidationError(f"Invalid cron expression {expression!r}: {e}") from e


@dataclass
class Trigger:
    job_id: uuid.UUID
    expression: str
    schedule: crontab
    task: asyncio.Task | None = None
    firing: asyncio.Task | None = None


class CronScheduler:
    """Recurring per-job triggers that re-invoke job start.

    Triggers live only as long as the process; nothing is reloaded from
    the database on restart.
    """

    def __init__(self, fire: FireCallback, clock: Callable[[], datetime] = utcnow):
        self.fire = fire
        self.clock = clock
        self._triggers: dict[uuid.UUID, Trigger] = {}
        # Starts still running, including those of triggers already removed
        self._firing: set[asyncio.Task] = set()

    def is_scheduled(self, job_id: uuid.UUID) -> bool:
        return job_id in self._triggers

    def active(self) -> dict[uuid.UUID, str]:
        return {job_id: t.expression for job_id, t in self._triggers.items()}

    async def schedule(self, job_id: uuid.UUID, expression: str) -> Trigger:
        """Install a trigger, replacing (and fully stopping) any existing one."""
        schedule = parse_cron(expression, nowfun=self.clock)
        await self.unschedule(job_id)

        trigger = Trigger(job_id=job_id, expression=expression, schedule=schedule)
        trigger.task = asyncio.create_task(self._run(trigger), name=f"schedule-{job_id}")
        self._triggers[job_id] = trigger
        logger.info("Scheduled job %s with %r", job_id, expression)
        return trigger

    async def unschedule(self, job_id: uuid.UUID) -> bool:
        trigger = self._triggers.pop(job_id, None)
        if trigger is None:
            return False
        if trigger.task is not None and not trigger.task.done():
            trigger.task.cancel()
            await asyncio.gather(trigger.task, return_exceptions=True)
        logger.info("Removed schedule %r for job %s", trigger.expression, job_id)
        return True

    async def shutdown(self) -> None:
        """Remove every trigger, then wait for starts already in flight."""
        for job_id in list(self._triggers):
            await self.unschedule(job_id)
        if self._firing:
            await asyncio.gather(*self._firing, return_exceptions=True)

    def next_due(self, trigger: Trigger, last_run_at: datetime) -> datetime:
        # remaining_estimate is measured from the schedule's "now", not from last_run_at
        return self.clock() + trigger.schedule.remaining_estimate(last_run_at)

    async def _run(self, trigger: Trigger) -> None:
        last_run_at = self.clock()
        while True:
            due_at = self.next_due(trigger, last_run_at)
            remaining = (due_at - self.clock()).total_seconds()
            while remaining > 0:
                await asyncio.sleep(remaining)
                remaining = (due_at - self.clock()).total_seconds()
            last_run_at = due_at
            # An in-flight start must not be torn down with the trigger.
            firing = asyncio.create_task(self._fire(trigger), name=f"fire-{trigger.job_id}")
            trigger.firing = firing
            self._firing.add(firing)
            firing.add_done_callback(self._firing.discard)
            await asyncio.shield(firing)

    async def _fire(self, trigger: Trigger) -> None:
        logger.info("Schedule %r firing for job %s", trigger.expression, trigger.job_id)
        try:
            await self.fire(trigger.job_id)
        except Exception as e:
            logger.warning("Scheduled start of job %s failed: %s", trigger.job_id, e)
