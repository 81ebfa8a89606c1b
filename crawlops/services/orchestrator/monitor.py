"""Per-job monitor loops.

Each running job gets one background task that wakes every
``interval`` seconds, polls the cluster for metrics, appends a CrawlStat,
refreshes the job's aggregate counters and stops the job once its time
budget is spent.

Loop lifecycle: Idle (no registry entry) -> Active (task installed) ->
Cancelled (entry removed, task finished). Once ``cancel()`` returns, the
job's loop will not run or persist anything again.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from crawlops.config import settings
from crawlops.services.orchestrator.exceptions import (
    JobNotFoundError,
    MonitorAlreadyActiveError,
)
from crawlops.services.orchestrator.metrics import MetricsPoller
from crawlops.services.orchestrator.store import JobStore, as_utc

logger = logging.getLogger("crawlops.orchestrator.monitor")

Clock = Callable[[], datetime]
TimeLimitCallback = Callable[[uuid.UUID], Awaitable[None]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MonitorHandle:
    job_id: uuid.UUID
    topology_id: str
    task: asyncio.Task | None = None
    cancelled: bool = False


class MonitorRegistry:
    """Owns the job id -> active monitor mapping."""

    def __init__(
        self,
        store: JobStore,
        poller: MetricsPoller,
        on_time_limit: TimeLimitCallback,
        interval: float | None = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.poller = poller
        self.on_time_limit = on_time_limit
        self.interval = interval if interval is not None else settings.monitor_interval_seconds
        self.clock = clock
        self._handles: dict[uuid.UUID, MonitorHandle] = {}

    def is_active(self, job_id: uuid.UUID) -> bool:
        return job_id in self._handles

    def active_jobs(self) -> list[uuid.UUID]:
        return list(self._handles)

    def start(self, job_id: uuid.UUID, topology_id: str) -> MonitorHandle:
        if job_id in self._handles:
            raise MonitorAlreadyActiveError(f"Monitor already active for job {job_id}")

        handle = MonitorHandle(job_id=job_id, topology_id=topology_id)
        handle.task = asyncio.create_task(
            self._run(handle), name=f"monitor-{job_id}"
        )
        self._handles[job_id] = handle
        logger.info(
            "Monitoring job %s (topology %s) every %.0fs", job_id, topology_id, self.interval
        )
        return handle

    async def cancel(self, job_id: uuid.UUID) -> bool:
        """Stop the job's loop and wait for it to finish. Idempotent.

        Called from inside the loop's own tick (auto-stop), the handle is
        only flagged: the loop exits as soon as that tick returns.
        """
        handle = self._handles.pop(job_id, None)
        if handle is None:
            return False

        handle.cancelled = True
        task = handle.task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        logger.info("Cancelled monitor for job %s", job_id)
        return True

    async def cancel_all(self) -> None:
        for job_id in list(self._handles):
            await self.cancel(job_id)

    async def tick(self, job_id: uuid.UUID) -> None:
        """Run one monitoring pass for an active job, outside its timer."""
        handle = self._handles.get(job_id)
        if handle is not None:
            await self._tick(handle)

    async def _run(self, handle: MonitorHandle) -> None:
        while not handle.cancelled:
            await asyncio.sleep(self.interval)
            if handle.cancelled:
                break
            await self._tick(handle)

    async def _tick(self, handle: MonitorHandle) -> None:
        job_id = handle.job_id
        snapshot = await self.poller.fetch(handle.topology_id)
        if handle.cancelled:
            return

        now = self.clock()
        try:
            job = await self.store.read_job(job_id)
            await self.store.append_stat(job_id, snapshot, now)
            await self.store.update_job(
                job_id,
                urls_crawled=max(job.urls_crawled or 0, snapshot.fetched),
                urls_discovered=max(job.urls_discovered or 0, snapshot.discovered),
            )
        except JobNotFoundError:
            logger.warning("Job %s disappeared while monitored, dropping its monitor", job_id)
            if self._handles.get(job_id) is handle:
                await self.cancel(job_id)
            handle.cancelled = True
            return
        except Exception:
            logger.exception("Failed to persist stats for job %s, skipping tick", job_id)
            return

        logger.debug(
            "Job %s: fetched=%d failed=%d discovered=%d avg_ms=%.1f",
            job_id,
            snapshot.fetched,
            snapshot.failed,
            snapshot.discovered,
            snapshot.avg_time_ms,
        )

        started_at = as_utc(job.started_at)
        if started_at is None or not job.max_time_minutes:
            return
        elapsed = now - started_at
        if elapsed >= timedelta(minutes=job.max_time_minutes):
            logger.info(
                "Job %s reached its %d minute limit (elapsed %s), stopping",
                job_id,
                job.max_time_minutes,
                elapsed,
            )
            try:
                await self.on_time_limit(job_id)
            except Exception:
                logger.exception("Auto-stop failed for job %s, retrying next tick", job_id)
