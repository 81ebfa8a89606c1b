import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass

from crawlops.models.crawl_job import CrawlJob, JobStatus
from crawlops.models.crawl_stat import CrawlStat
from crawlops.services.orchestrator.exceptions import JobConflictError
from crawlops.services.orchestrator.execution import ExecutionClient
from crawlops.services.orchestrator.metrics import MetricsPoller
from crawlops.services.orchestrator.monitor import Clock, MonitorRegistry, utcnow
from crawlops.services.orchestrator.scheduler import CronScheduler, parse_cron
from crawlops.services.orchestrator.store import JobDefinition, JobStore
from crawlops.services.orchestrator.topology import TopologyConfigBuilder

logger = logging.getLogger("crawlops.orchestrator.manager")


@dataclass
class JobDetail:
    job: CrawlJob
    seed_urls: list[str]
    stats: list[CrawlStat]


class CrawlOrchestrator:
    """Public contract for crawl job lifecycle.

    One instance per process, created at application startup. It owns the
    registries of running monitor loops and cron triggers; every change to
    them for a given job happens under that job's lock, so concurrent
    start/stop/delete calls for the same job are serialized.
    """

    def __init__(
        self,
        store: JobStore,
        builder: TopologyConfigBuilder,
        execution: ExecutionClient,
        poller: MetricsPoller,
        monitor_interval: float | None = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.builder = builder
        self.execution = execution
        self.clock = clock
        self.monitors = MonitorRegistry(
            store,
            poller,
            on_time_limit=self.stop_job,
            interval=monitor_interval,
            clock=clock,
        )
        self.scheduler = CronScheduler(fire=self.start_job, clock=clock)
        self._locks: defaultdict[uuid.UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _lock(self, job_id: uuid.UUID) -> asyncio.Lock:
        return self._locks[job_id]

    async def create_job(self, definition: JobDefinition) -> uuid.UUID:
        definition.validate()
        recurring = bool(definition.auto_mode and definition.schedule_cron)
        if recurring:
            parse_cron(definition.schedule_cron)

        job_id = await self.store.create_job(definition)
        if recurring:
            async with self._lock(job_id):
                await self.scheduler.schedule(job_id, definition.schedule_cron)
        return job_id

    async def start_job(self, job_id: uuid.UUID) -> str:
        """Submit the job's topology and begin monitoring it.

        Returns the topology id. A job that is already running is rejected
        rather than resubmitted over its live topology.
        """
        async with self._lock(job_id):
            job = await self.store.read_job(job_id)
            if job.status == JobStatus.RUNNING or self.monitors.is_active(job_id):
                raise JobConflictError(f"Crawl job {job_id} is already running")

            seed_urls = await self.store.read_seeds(job_id)
            config_path = await self.builder.write(job, seed_urls)
            # ExecutionSubmitError propagates with the job left as it was
            topology_id = await self.execution.submit(job.name, config_path)

            await self.store.update_job(
                job_id,
                status=JobStatus.RUNNING,
                topology_id=topology_id,
                started_at=self.clock(),
                completed_at=None,
            )
            self.monitors.start(job_id, topology_id)

        logger.info("Started crawl job %s as topology %s", job_id, topology_id)
        return topology_id

    async def stop_job(self, job_id: uuid.UUID) -> None:
        async with self._lock(job_id):
            await self._stop(job_id)

    async def _stop(self, job_id: uuid.UUID) -> None:
        try:
            job = await self.store.read_job(job_id)
            if job.topology_id and job.status == JobStatus.RUNNING:
                await self.execution.kill(job.topology_id)
                await self.store.update_job(
                    job_id,
                    status=JobStatus.STOPPED,
                    completed_at=self.clock(),
                )
                logger.info("Stopped crawl job %s (topology %s)", job_id, job.topology_id)
        finally:
            await self.monitors.cancel(job_id)

    async def delete_job(self, job_id: uuid.UUID) -> None:
        async with self._lock(job_id):
            await self.scheduler.unschedule(job_id)
            await self._stop(job_id)
            await self.store.delete_job(job_id)
        self._locks.pop(job_id, None)

    async def list_jobs(self) -> list[CrawlJob]:
        return await self.store.list_jobs()

    async def get_job_detail(self, job_id: uuid.UUID, stats_limit: int = 20) -> JobDetail:
        job = await self.store.read_job(job_id)
        seed_urls = await self.store.read_seeds(job_id)
        stats = await self.store.read_stats(job_id, limit=stats_limit)
        return JobDetail(job=job, seed_urls=seed_urls, stats=stats)

    async def shutdown(self) -> None:
        """Release background tasks without touching persisted job state."""
        await self.scheduler.shutdown()
        await self.monitors.cancel_all()
        logger.info("Orchestrator shut down")
