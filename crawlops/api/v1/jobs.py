import uuid

from fastapi import APIRouter, Depends

from crawlops.api.deps import get_orchestrator
from crawlops.models.crawl_job import CrawlJob
from crawlops.models.crawl_stat import CrawlStat
from crawlops.services.orchestrator.manager import CrawlOrchestrator
from crawlops.services.orchestrator.store import JobDefinition

router = APIRouter(prefix="/jobs")

RECENT_STATS_LIMIT = 20


def _iso(value):
    return value.isoformat() if value else None


def _job_to_dict(job: CrawlJob) -> dict:
    return {
        "id": str(job.id),
        "name": job.name,
        "maxDepth": job.max_depth,
        "maxTimeMinutes": job.max_time_minutes,
        "politenessDelay": job.politeness_delay_ms,
        "maxUrlsPerHost": job.max_urls_per_host,
        "autoMode": job.auto_mode,
        "scheduleCron": job.schedule_cron,
        "status": job.status,
        "topologyId": job.topology_id,
        "urlsCrawled": job.urls_crawled,
        "urlsDiscovered": job.urls_discovered,
        "startedAt": _iso(job.started_at),
        "completedAt": _iso(job.completed_at),
        "createdAt": _iso(job.created_at),
    }


def _stat_to_dict(stat: CrawlStat) -> dict:
    return {
        "timestamp": _iso(stat.timestamp),
        "urlsFetched": stat.urls_fetched,
        "urlsFailed": stat.urls_failed,
        "bytesDownloaded": stat.bytes_downloaded,
        "avgFetchTimeMs": stat.avg_fetch_time_ms,
    }


@router.post("", status_code=201)
async def create_job(
    request: dict,
    orchestrator: CrawlOrchestrator = Depends(get_orchestrator),
):
    """Create a crawl job.

    Body:
      - name (required)
      - maxDepth, maxTimeMinutes, politenessDelay (ms), maxUrlsPerHost
      - autoMode + scheduleCron: install a recurring start trigger
      - seedUrls: [str]
    """
    definition = JobDefinition.from_payload(request)
    job_id = await orchestrator.create_job(definition)
    return {"id": str(job_id)}


@router.get("")
async def list_jobs(orchestrator: CrawlOrchestrator = Depends(get_orchestrator)):
    jobs = await orchestrator.list_jobs()
    return [_job_to_dict(j) for j in jobs]


@router.get("/{job_id}")
async def get_job(
    job_id: uuid.UUID,
    orchestrator: CrawlOrchestrator = Depends(get_orchestrator),
):
    detail = await orchestrator.get_job_detail(job_id, stats_limit=RECENT_STATS_LIMIT)
    return {
        "job": _job_to_dict(detail.job),
        "seedUrls": detail.seed_urls,
        "stats": [_stat_to_dict(s) for s in detail.stats],
    }


@router.post("/{job_id}/start")
async def start_job(
    job_id: uuid.UUID,
    orchestrator: CrawlOrchestrator = Depends(get_orchestrator),
):
    topology_id = await orchestrator.start_job(job_id)
    return {"topologyId": topology_id}


@router.post("/{job_id}/stop")
async def stop_job(
    job_id: uuid.UUID,
    orchestrator: CrawlOrchestrator = Depends(get_orchestrator),
):
    await orchestrator.stop_job(job_id)
    return {"message": f"Crawl job {job_id} stopped"}


@router.delete("/{job_id}")
async def delete_job(
    job_id: uuid.UUID,
    orchestrator: CrawlOrchestrator = Depends(get_orchestrator),
):
    await orchestrator.delete_job(job_id)
    return {"message": f"Crawl job {job_id} deleted"}
