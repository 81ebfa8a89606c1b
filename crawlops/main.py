import logging
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from crawlops.config import settings
from crawlops.database import create_engine, create_session_factory
from crawlops.middleware.request_logging import RequestLoggingMiddleware
from crawlops.services.orchestrator.exceptions import (
    ExecutionSubmitError,
    JobConflictError,
    JobNotFoundError,
    JobValidationError,
)
from crawlops.services.orchestrator.execution import ExecutionClient
from crawlops.services.orchestrator.manager import CrawlOrchestrator
from crawlops.services.orchestrator.metrics import MetricsPoller
from crawlops.services.orchestrator.store import JobStore
from crawlops.services.orchestrator.topology import TopologyConfigBuilder

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s %(message)s",
)

logger = logging.getLogger("crawlops.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = create_engine()
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    app.state.http = httpx.AsyncClient(timeout=settings.metrics_timeout_seconds)

    # The single orchestrator instance; handlers reach it through app.state
    app.state.orchestrator = CrawlOrchestrator(
        store=JobStore(app.state.session_factory),
        builder=TopologyConfigBuilder(),
        execution=ExecutionClient(),
        poller=MetricsPoller(app.state.http),
    )
    yield
    await app.state.orchestrator.shutdown()
    await app.state.http.aclose()
    await app.state.redis.close()
    await engine.dispose()


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(JobNotFoundError)
    async def not_found_handler(request: Request, exc: JobNotFoundError):
        return JSONResponse(status_code=404, content={"detail": "Crawl job not found"})

    @app.exception_handler(JobValidationError)
    async def validation_handler(request: Request, exc: JobValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(JobConflictError)
    async def conflict_handler(request: Request, exc: JobConflictError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ExecutionSubmitError)
    async def submit_error_handler(request: Request, exc: ExecutionSubmitError):
        # Process output stays in the logs
        return JSONResponse(
            status_code=502, content={"detail": "Topology submission failed"}
        )

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="CrawlOps - orchestration of distributed crawl topologies.",
        lifespan=lifespan,
    )
    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)

    from crawlops.api.v1 import jobs, proxy

    app.include_router(jobs.router, prefix="/api/v1", tags=["Jobs"])
    app.include_router(proxy.router, prefix="/api/v1", tags=["Proxy"])

    @app.get("/api/v1/health", tags=["Health"])
    async def health_check(request: Request):
        redis_ok = False
        try:
            redis_ok = await request.app.state.redis.ping()
        except Exception:
            pass

        db_ok = False
        try:
            async with request.app.state.session_factory() as session:
                await session.execute(text("SELECT 1"))
            db_ok = True
        except Exception:
            pass

        return {
            "status": "healthy" if redis_ok and db_ok else "degraded",
            "version": settings.app_version,
            "services": {
                "redis": "up" if redis_ok else "down",
                "database": "up" if db_ok else "down",
            },
            "activeMonitors": len(request.app.state.orchestrator.monitors.active_jobs()),
            "activeSchedules": len(request.app.state.orchestrator.scheduler.active()),
        }

    return app


app = create_app()
