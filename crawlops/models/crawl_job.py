import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from crawlops.database import Base


class JobStatus:
    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


class CrawlJob(Base):
    __tablename__ = "crawl_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    max_depth: Mapped[int] = mapped_column(Integer, default=3)
    max_time_minutes: Mapped[int] = mapped_column(Integer, default=60)
    politeness_delay_ms: Mapped[int] = mapped_column(Integer, default=1000)
    max_urls_per_host: Mapped[int] = mapped_column(Integer, default=100)
    auto_mode: Mapped[bool] = mapped_column(Boolean, default=False)
    schedule_cron: Mapped[str | None] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(
        String(20), default=JobStatus.PENDING, index=True
    )  # pending, running, stopped, failed
    topology_id: Mapped[str | None] = mapped_column(String(255))
    urls_crawled: Mapped[int] = mapped_column(Integer, default=0)
    urls_discovered: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        index=True,
    )
