"""Tests for job persistence (SQLite through aiosqlite)."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from crawlops.models.crawl_job import JobStatus
from crawlops.services.orchestrator.exceptions import JobNotFoundError, JobValidationError
from crawlops.services.orchestrator.metrics import MetricsSnapshot
from crawlops.services.orchestrator.store import JobDefinition, as_utc


def test_from_payload_applies_defaults():
    definition = JobDefinition.from_payload({"name": "  docs  "})
    assert definition.name == "docs"
    assert definition.max_depth == 3
    assert definition.max_time_minutes == 60
    assert definition.politeness_delay_ms == 1000
    assert definition.max_urls_per_host == 100
    assert definition.auto_mode is False
    assert definition.schedule_cron is None
    assert definition.seed_urls == []


def test_from_payload_maps_camel_case_fields():
    definition = JobDefinition.from_payload(
        {
            "name": "news",
            "maxDepth": "2",
            "maxTimeMinutes": 5,
            "politenessDelay": 250,
            "maxUrlsPerHost": 10,
            "autoMode": True,
            "scheduleCron": "*/5 * * * *",
            "seedUrls": ["http://a.example", " ", "http://b.example"],
        }
    )
    assert definition.max_depth == 2
    assert definition.max_time_minutes == 5
    assert definition.politeness_delay_ms == 250
    assert definition.max_urls_per_host == 10
    assert definition.auto_mode is True
    assert definition.schedule_cron == "*/5 * * * *"
    assert definition.seed_urls == ["http://a.example", "http://b.example"]


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"name": ""},
        {"name": "   "},
        {"name": "x", "maxTimeMinutes": 0},
        {"name": "x", "maxDepth": -1},
        {"name": "x", "maxUrlsPerHost": "lots"},
        {"name": "x", "seedUrls": "http://a.example"},
        {"name": "x", "autoMode": "false", "scheduleCron": "0 * * * *"},
        {"name": "x", "autoMode": 1},
        {"name": "x", "autoMode": ["yes"]},
    ],
)
def test_from_payload_rejects_invalid(payload):
    with pytest.raises(JobValidationError):
        JobDefinition.from_payload(payload)


def test_from_payload_treats_null_auto_mode_as_manual():
    definition = JobDefinition.from_payload(
        {"name": "x", "autoMode": None, "scheduleCron": "0 * * * *"}
    )
    assert definition.auto_mode is False


def test_as_utc_marks_naive_values():
    naive = datetime(2026, 1, 1, 12, 0)
    assert as_utc(naive).tzinfo is timezone.utc
    assert as_utc(None) is None


def test_create_job_persists_job_and_seeds(sqlite_store):
    async def scenario():
        async with sqlite_store() as store:
            job_id = await store.create_job(
                JobDefinition(name="a", seed_urls=["http://a.example", "http://b.example"])
            )
            job = await store.read_job(job_id)
            seeds = await store.read_seeds(job_id)
            return job, seeds

    job, seeds = asyncio.run(scenario())
    assert job.status == JobStatus.PENDING
    assert job.topology_id is None
    assert job.urls_crawled == 0
    assert sorted(seeds) == ["http://a.example", "http://b.example"]


def test_read_unknown_job_raises(sqlite_store):
    async def scenario():
        async with sqlite_store() as store:
            await store.read_job(uuid.uuid4())

    with pytest.raises(JobNotFoundError):
        asyncio.run(scenario())


def test_list_jobs_newest_first(sqlite_store):
    async def scenario():
        async with sqlite_store() as store:
            first = await store.create_job(JobDefinition(name="first"))
            await asyncio.sleep(0.01)
            second = await store.create_job(JobDefinition(name="second"))
            jobs = await store.list_jobs()
            return first, second, [j.id for j in jobs]

    first, second, ids = asyncio.run(scenario())
    assert ids == [second, first]


def test_update_job_partial(sqlite_store):
    started = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)

    async def scenario():
        async with sqlite_store() as store:
            job_id = await store.create_job(JobDefinition(name="a"))
            await store.update_job(
                job_id, status=JobStatus.RUNNING, topology_id="topo-1", started_at=started
            )
            return await store.read_job(job_id)

    job = asyncio.run(scenario())
    assert job.status == JobStatus.RUNNING
    assert job.topology_id == "topo-1"
    assert as_utc(job.started_at) == started
    assert job.name == "a"


def test_update_job_rejects_unknown_fields(sqlite_store):
    async def scenario():
        async with sqlite_store() as store:
            job_id = await store.create_job(JobDefinition(name="a"))
            await store.update_job(job_id, name="renamed")

    with pytest.raises(ValueError):
        asyncio.run(scenario())


def test_update_missing_job_raises(sqlite_store):
    async def scenario():
        async with sqlite_store() as store:
            await store.update_job(uuid.uuid4(), status=JobStatus.STOPPED)

    with pytest.raises(JobNotFoundError):
        asyncio.run(scenario())


def test_read_stats_most_recent_first_with_limit(sqlite_store):
    base = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    async def scenario():
        async with sqlite_store() as store:
            job_id = await store.create_job(JobDefinition(name="a"))
            for i in range(5):
                await store.append_stat(
                    job_id, MetricsSnapshot(fetched=i), base + timedelta(seconds=30 * i)
                )
            return await store.read_stats(job_id, limit=3)

    stats = asyncio.run(scenario())
    assert [s.urls_fetched for s in stats] == [4, 3, 2]


def test_delete_job_removes_seeds_and_stats(sqlite_store):
    async def scenario():
        async with sqlite_store() as store:
            job_id = await store.create_job(
                JobDefinition(name="a", seed_urls=["http://a.example"])
            )
            await store.append_stat(job_id, MetricsSnapshot(fetched=1), datetime.now(timezone.utc))
            await store.delete_job(job_id)

            with pytest.raises(JobNotFoundError):
                await store.read_job(job_id)
            return await store.read_seeds(job_id), await store.read_stats(job_id)

    seeds, stats = asyncio.run(scenario())
    assert seeds == []
    assert stats == []
