import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest

import crawlops.models  # noqa: F401  (registers tables on Base.metadata)
from crawlops.database import Base, create_engine, create_session_factory
from crawlops.services.orchestrator.exceptions import ExecutionSubmitError
from crawlops.services.orchestrator.manager import CrawlOrchestrator
from crawlops.services.orchestrator.metrics import MetricsSnapshot
from crawlops.services.orchestrator.store import JobStore
from crawlops.services.orchestrator.topology import TopologyConfigBuilder


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 10, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeExecutionClient:
    def __init__(self):
        self.submitted: list[tuple[str, str]] = []
        self.killed: list[str] = []
        self.fail_submit = False

    async def submit(self, job_name, config_path) -> str:
        await asyncio.sleep(0)
        if self.fail_submit:
            raise ExecutionSubmitError("submission exited with status 1", returncode=1)
        self.submitted.append((job_name, str(config_path)))
        return f"{job_name}-topology-{len(self.submitted)}"

    async def kill(self, topology_id) -> bool:
        self.killed.append(topology_id)
        return True


class FakePoller:
    def __init__(self, snapshot: MetricsSnapshot | None = None):
        self.snapshot = snapshot or MetricsSnapshot(
            fetched=10, failed=1, discovered=25, bytes=0, avg_time_ms=42.0
        )
        self.calls: list[str] = []

    async def fetch(self, topology_id) -> MetricsSnapshot:
        self.calls.append(topology_id)
        return self.snapshot


@pytest.fixture
def sqlite_store(tmp_path):
    """Returns an async context manager yielding a JobStore on a fresh SQLite file."""

    @asynccontextmanager
    async def _open():
        engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'crawlops.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        try:
            yield JobStore(create_session_factory(engine))
        finally:
            await engine.dispose()

    return _open


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_orchestrator(tmp_path, clock):
    """Builds an orchestrator around fake cluster collaborators."""

    def _make(store, interval=3600.0, poller=None, execution=None):
        return CrawlOrchestrator(
            store=store,
            builder=TopologyConfigBuilder(scratch_dir=str(tmp_path / "topologies")),
            execution=execution or FakeExecutionClient(),
            poller=poller or FakePoller(),
            monitor_interval=interval,
            clock=clock,
        )

    return _make
