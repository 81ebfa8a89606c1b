from fastapi import Request

from crawlops.services.orchestrator.manager import CrawlOrchestrator


def get_orchestrator(request: Request) -> CrawlOrchestrator:
    """The orchestrator instance created in the application lifespan."""
    return request.app.state.orchestrator
