from crawlops.models.crawl_job import CrawlJob, JobStatus
from crawlops.models.crawl_stat import CrawlStat
from crawlops.models.seed_url import SeedUrl

__all__ = [
    "CrawlJob",
    "JobStatus",
    "SeedUrl",
    "CrawlStat",
]
