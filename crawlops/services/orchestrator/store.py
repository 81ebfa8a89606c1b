import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crawlops.config import settings
from crawlops.models.crawl_job import CrawlJob, JobStatus
from crawlops.models.crawl_stat import CrawlStat
from crawlops.models.seed_url import SeedUrl
from crawlops.services.orchestrator.exceptions import JobNotFoundError, JobValidationError

logger = logging.getLogger("crawlops.orchestrator.store")

# Columns a caller may change after creation
UPDATABLE_FIELDS = frozenset(
    {
        "status",
        "topology_id",
        "started_at",
        "completed_at",
        "urls_crawled",
        "urls_discovered",
    }
)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes even for timezone-aware columns."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _coerce_int(payload: dict, key: str, default: int, minimum: int) -> int:
    raw = payload.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise JobValidationError(f"{key} must be an integer")
    if value < minimum:
        raise JobValidationError(f"{key} must be >= {minimum}")
    return value


@dataclass
class JobDefinition:
    """Everything needed to create a crawl job."""

    name: str
    max_depth: int = settings.default_max_depth
    max_time_minutes: int = settings.default_max_time_minutes
    politeness_delay_ms: int = settings.default_politeness_delay_ms
    max_urls_per_host: int = settings.default_max_urls_per_host
    auto_mode: bool = False
    schedule_cron: str | None = None
    seed_urls: list[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: dict) -> "JobDefinition":
        """Build a definition from the camelCase JSON body of ``POST /jobs``."""
        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            raise JobValidationError("name is required")

        seeds = payload.get("seedUrls") or []
        if not isinstance(seeds, list) or not all(isinstance(s, str) for s in seeds):
            raise JobValidationError("seedUrls must be a list of strings")

        cron = payload.get("scheduleCron") or None
        if cron is not None and not isinstance(cron, str):
            raise JobValidationError("scheduleCron must be a string")

        auto_mode = payload.get("autoMode")
        if auto_mode is None:
            auto_mode = False
        elif not isinstance(auto_mode, bool):
            raise JobValidationError("autoMode must be a boolean")

        definition = cls(
            name=name.strip(),
            max_depth=_coerce_int(payload, "maxDepth", settings.default_max_depth, 0),
            max_time_minutes=_coerce_int(
                payload, "maxTimeMinutes", settings.default_max_time_minutes, 1
            ),
            politeness_delay_ms=_coerce_int(
                payload, "politenessDelay", settings.default_politeness_delay_ms, 0
            ),
            max_urls_per_host=_coerce_int(
                payload, "maxUrlsPerHost", settings.default_max_urls_per_host, 1
            ),
            auto_mode=auto_mode,
            schedule_cron=cron.strip() if cron else None,
            seed_urls=[s.strip() for s in seeds if s.strip()],
        )
        return definition

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise JobValidationError("name is required")
        if self.max_depth < 0:
            raise JobValidationError("maxDepth must be >= 0")
        if self.max_time_minutes <= 0:
            raise JobValidationError("maxTimeMinutes must be > 0")
        if self.politeness_delay_ms < 0:
            raise JobValidationError("politenessDelay must be >= 0")
        if self.max_urls_per_host <= 0:
            raise JobValidationError("maxUrlsPerHost must be > 0")


class JobStore:
    """Persistence for crawl jobs, their seed URLs and stat snapshots.

    Every method opens its own session from the shared pool, so the store
    can be used from request handlers and background loops alike.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_job(self, definition: JobDefinition) -> uuid.UUID:
        """Persist the job row and all seed rows in a single transaction."""
        async with self._session_factory() as session:
            async with session.begin():
                job = CrawlJob(
                    name=definition.name,
                    max_depth=definition.max_depth,
                    max_time_minutes=definition.max_time_minutes,
                    politeness_delay_ms=definition.politeness_delay_ms,
                    max_urls_per_host=definition.max_urls_per_host,
                    auto_mode=definition.auto_mode,
                    schedule_cron=definition.schedule_cron,
                    status=JobStatus.PENDING,
                )
                session.add(job)
                await session.flush()
                session.add_all(
                    SeedUrl(job_id=job.id, url=url) for url in definition.seed_urls
                )
            job_id = job.id

        logger.info(
            "Created crawl job %s (%s) with %d seeds",
            job_id,
            definition.name,
            len(definition.seed_urls),
        )
        return job_id

    async def read_job(self, job_id: uuid.UUID) -> CrawlJob:
        async with self._session_factory() as session:
            result = await session.execute(select(CrawlJob).where(CrawlJob.id == job_id))
            job = result.scalar_one_or_none()
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def read_seeds(self, job_id: uuid.UUID) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SeedUrl.url).where(SeedUrl.job_id == job_id).order_by(SeedUrl.id)
            )
            return list(result.scalars().all())

    async def list_jobs(self) -> list[CrawlJob]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CrawlJob).order_by(CrawlJob.created_at.desc())
            )
            return list(result.scalars().all())

    async def update_job(self, job_id: uuid.UUID, **fields) -> None:
        """Apply a partial update. Raises JobNotFoundError if no row matched."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        if not fields:
            return

        async with self._session_factory() as session:
            result = await session.execute(
                update(CrawlJob).where(CrawlJob.id == job_id).values(**fields)
            )
            await session.commit()
        if result.rowcount == 0:
            raise JobNotFoundError(job_id)

    async def append_stat(self, job_id: uuid.UUID, snapshot, timestamp: datetime) -> None:
        async with self._session_factory() as session:
            session.add(
                CrawlStat(
                    job_id=job_id,
                    timestamp=timestamp,
                    urls_fetched=snapshot.fetched,
                    urls_failed=snapshot.failed,
                    bytes_downloaded=snapshot.bytes,
                    avg_fetch_time_ms=snapshot.avg_time_ms,
                )
            )
            await session.commit()

    async def read_stats(self, job_id: uuid.UUID, limit: int = 20) -> list[CrawlStat]:
        """Most recent snapshots first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(CrawlStat)
                .where(CrawlStat.job_id == job_id)
                .order_by(CrawlStat.timestamp.desc(), CrawlStat.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def delete_job(self, job_id: uuid.UUID) -> None:
        """Remove the job with its seeds and stats as one unit."""
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(delete(CrawlStat).where(CrawlStat.job_id == job_id))
                await session.execute(delete(SeedUrl).where(SeedUrl.job_id == job_id))
                result = await session.execute(delete(CrawlJob).where(CrawlJob.id == job_id))
                if result.rowcount == 0:
                    raise JobNotFoundError(job_id)
        logger.info("Deleted crawl job %s", job_id)
