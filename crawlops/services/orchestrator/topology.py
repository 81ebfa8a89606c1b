import asyncio
import logging
from pathlib import Path

from crawlops.config import settings
from crawlops.models.crawl_job import CrawlJob

logger = logging.getLogger("crawlops.orchestrator.topology")

# Fixed fallbacks for jobs that predate a column or were created with nulls
DEFAULT_MAX_DEPTH = 3
DEFAULT_MAX_TIME_MINUTES = 60
DEFAULT_POLITENESS_DELAY_MS = 1000
DEFAULT_MAX_URLS_PER_HOST = 100

METADATA_PERSIST = [
    "_redirTo",
    "error.cause",
    "error.source",
    "isSitemap",
    "isFeed",
]


def _or_default(value, default):
    return default if value is None else value


def topology_name(job: CrawlJob) -> str:
    return f"crawl-{job.id}"


def build_topology_config(job: CrawlJob, seed_urls: list[str]) -> dict:
    """Build the declarative execution config for a job.

    Insertion order is preserved in the rendered artifact.
    """
    max_depth = _or_default(job.max_depth, DEFAULT_MAX_DEPTH)
    max_time = _or_default(job.max_time_minutes, DEFAULT_MAX_TIME_MINUTES)
    politeness_ms = _or_default(job.politeness_delay_ms, DEFAULT_POLITENESS_DELAY_MS)
    per_host = _or_default(job.max_urls_per_host, DEFAULT_MAX_URLS_PER_HOST)

    return {
        "topology.name": topology_name(job),
        "topology.workers": 1,
        "topology.max.spout.pending": 100,
        "topology.message.timeout.secs": 300,
        "topology.max.task.parallelism": 4,
        "http.agent.name": settings.http_agent_name,
        "http.agent.version": settings.http_agent_version,
        "http.agent.url": settings.http_agent_url,
        "http.agent.email": settings.http_agent_email,
        "http.content.limit": 65536,
        "http.timeout": 10000,
        "fetcher.threads.number": 10,
        "fetcher.max.queue.size": -1,
        "partition.url.mode": "byHost",
        "metadata.track.path": False,
        "metadata.track.depth": True,
        "metadata.persist": list(METADATA_PERSIST),
        "fetchInterval.default": 1440,
        "fetchInterval.fetch.error": 120,
        "fetchInterval.error": -1,
        "max.depth": max_depth,
        "max.time.minutes": max_time,
        "fetcher.server.delay": politeness_ms / 1000,
        "fetcher.max.urls.in.queues": per_host,
        "urlfrontier.host": settings.frontier_host,
        "urlfrontier.port": settings.frontier_port,
        "solr.url": settings.solr_url,
        "solr.commit.size": 250,
        "seeds": list(seed_urls),
    }


def _render_scalar(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (int, float, str)):
        return str(value)
    raise TypeError(f"Unsupported config value type: {type(value).__name__}")


def render_config(config: dict) -> str:
    """Render a flat config as ``key: value`` lines.

    List values become a ``key:`` header followed by indented ``- item``
    lines. Only scalars and flat lists are supported.
    """
    lines = []
    for key, value in config.items():
        if isinstance(value, (list, tuple)):
            lines.append(f"{key}:")
            for item in value:
                lines.append(f"  - {_render_scalar(item)}")
        else:
            lines.append(f"{key}: {_render_scalar(value)}")
    return "\n".join(lines) + "\n"


def config_path_for(job_id, scratch_dir: str | None = None) -> Path:
    return Path(scratch_dir or settings.topology_scratch_dir) / f"crawl-{job_id}.yaml"


class TopologyConfigBuilder:
    def __init__(self, scratch_dir: str | None = None):
        self.scratch_dir = scratch_dir or settings.topology_scratch_dir

    async def write(self, job: CrawlJob, seed_urls: list[str]) -> Path:
        """Build, render and write the config artifact. Returns its path."""
        config = build_topology_config(job, seed_urls)
        path = config_path_for(job.id, self.scratch_dir)
        content = render_config(config)
        await asyncio.to_thread(self._write_file, path, content)
        logger.debug("Wrote topology config for job %s to %s", job.id, path)
        return path

    @staticmethod
    def _write_file(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
