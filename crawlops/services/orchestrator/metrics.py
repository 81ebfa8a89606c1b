import logging
from dataclasses import dataclass

import httpx
from pydantic import BaseModel, ConfigDict, Field

from crawlops.config import settings
from crawlops.services.orchestrator.exceptions import MetricsFetchError

logger = logging.getLogger("crawlops.orchestrator.metrics")


class ComponentStats(BaseModel):
    """One spout or bolt entry of the topology status response."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    emitted: int = 0
    failed: int = 0
    complete_latency: float = Field(default=0.0, alias="completeLatency")


class TopologyStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    spouts: list[ComponentStats] = Field(default_factory=list)
    bolts: list[ComponentStats] = Field(default_factory=list)


EMPTY_COMPONENT = ComponentStats()


@dataclass(frozen=True)
class MetricsSnapshot:
    fetched: int = 0
    failed: int = 0
    discovered: int = 0
    bytes: int = 0
    avg_time_ms: float = 0.0

    @classmethod
    def zero(cls) -> "MetricsSnapshot":
        return cls()

    @classmethod
    def from_status(cls, status: TopologyStatus) -> "MetricsSnapshot":
        """Source stage feeds discovery and latency, processing stage feeds fetch counts.

        The cluster exposes no byte counter, so ``bytes`` stays 0.
        """
        source = status.spouts[0] if status.spouts else EMPTY_COMPONENT
        processing = status.bolts[0] if status.bolts else EMPTY_COMPONENT
        return cls(
            fetched=processing.emitted,
            failed=processing.failed,
            discovered=source.emitted,
            bytes=0,
            avg_time_ms=source.complete_latency,
        )


class MetricsPoller:
    """Reads runtime counters for a topology from the cluster UI API."""

    def __init__(self, client: httpx.AsyncClient, base_url: str | None = None):
        self.client = client
        self.base_url = (base_url or settings.storm_ui_url).rstrip("/")

    async def fetch_status(self, topology_id: str) -> TopologyStatus:
        url = f"{self.base_url}/api/v1/topology/{topology_id}"
        try:
            resp = await self.client.get(url, timeout=settings.metrics_timeout_seconds)
            resp.raise_for_status()
            return TopologyStatus.model_validate(resp.json())
        except (httpx.HTTPError, ValueError) as e:
            # ValueError covers both bad JSON and pydantic ValidationError
            raise MetricsFetchError(f"Metrics unavailable for {topology_id}: {e}") from e

    async def fetch(self, topology_id: str) -> MetricsSnapshot:
        """Never raises: any failure yields an all-zero snapshot."""
        try:
            status = await self.fetch_status(topology_id)
        except MetricsFetchError as e:
            logger.warning("%s", e)
            return MetricsSnapshot.zero()
        return MetricsSnapshot.from_status(status)
