"""Seed the database with sample crawl jobs.

Usage:
    python -m scripts.seed_data

This script:
1. Creates a one-off crawl job and a scheduled (auto mode) crawl job
2. Prints the topology config each job would be submitted with

Jobs are only created, never started: starting needs a reachable cluster.
Schedules are not installed either, since they live in the API process.
"""

import asyncio
import sys

sys.path.insert(0, ".")

from crawlops.database import create_engine, create_session_factory
from crawlops.services.orchestrator.store import JobDefinition, JobStore
from crawlops.services.orchestrator.topology import build_topology_config, render_config

SAMPLE_JOBS = [
    JobDefinition(
        name="docs-sites",
        max_depth=2,
        max_time_minutes=30,
        seed_urls=["https://docs.python.org/3/", "https://fastapi.tiangolo.com/"],
    ),
    JobDefinition(
        name="nightly-news",
        max_depth=1,
        max_time_minutes=45,
        politeness_delay_ms=2000,
        max_urls_per_host=50,
        auto_mode=True,
        schedule_cron="0 2 * * *",
        seed_urls=["https://news.ycombinator.com/"],
    ),
]


async def main():
    print("=== CrawlOps Seeder ===\n")

    engine = create_engine()
    store = JobStore(create_session_factory(engine))

    try:
        for i, definition in enumerate(SAMPLE_JOBS, start=1):
            print(f"[{i}/{len(SAMPLE_JOBS)}] Creating job {definition.name!r}...")
            definition.validate()
            job_id = await store.create_job(definition)
            job = await store.read_job(job_id)
            seeds = await store.read_seeds(job_id)
            print(f"  id={job_id} seeds={len(seeds)} status={job.status}")
            print("  topology config:")
            for line in render_config(build_topology_config(job, seeds)).splitlines():
                print(f"    {line}")
            print()

        jobs = await store.list_jobs()
        print("=== CrawlOps Seed Complete ===")
        print(f"Total crawl jobs in database: {len(jobs)}")
        print("API base URL: http://localhost:8000/api/v1")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
