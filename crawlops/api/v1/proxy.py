"""Pass-through endpoints for the frontier, the cluster UI and Solr.

No logic lives here beyond forwarding parameters; upstream failures are
reported as a generic 502.
"""

import logging

import httpx
from fastapi import APIRouter, HTTPException, Query, Request

from crawlops.config import settings
from crawlops.utils.cache import cache_get, cache_set

logger = logging.getLogger("crawlops.api.proxy")

router = APIRouter()


async def _forward(request: Request, url: str, params: dict | None = None):
    client: httpx.AsyncClient = request.app.state.http
    try:
        resp = await client.get(url, params=params)
        resp.raise_for_status()
        return resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Upstream request to %s failed: %s", url, e)
        raise HTTPException(status_code=502, detail="Upstream service unavailable")


@router.get("/frontier/stats")
async def frontier_stats(request: Request):
    return await _forward(request, settings.frontier_stats_url)


@router.get("/cluster/status")
async def cluster_status(request: Request):
    url = f"{settings.storm_ui_url.rstrip('/')}/api/v1/cluster/summary"
    return await _forward(request, url)


@router.get("/search")
async def search(
    request: Request,
    q: str = Query(..., min_length=1, max_length=500),
    start: int = Query(0, ge=0),
    rows: int = Query(10, ge=1, le=100),
):
    cache_key = f"search:{q}:{start}:{rows}"
    redis = request.app.state.redis
    cached = await cache_get(redis, cache_key)
    if cached:
        return cached

    params = {
        "q": q,
        "start": start,
        "rows": rows,
        "wt": "json",
        "hl": "true",
        "hl.fl": "content,title",
    }
    result = await _forward(request, f"{settings.solr_url.rstrip('/')}/select", params)
    await cache_set(redis, cache_key, result, ttl=settings.search_cache_ttl)
    return result


@router.get("/suggest")
async def suggest(
    request: Request,
    q: str = Query(..., min_length=1, max_length=200),
):
    cache_key = f"suggest:{q}"
    redis = request.app.state.redis
    cached = await cache_get(redis, cache_key)
    if cached:
        return cached

    params = {"suggest": "true", "suggest.q": q, "wt": "json"}
    result = await _forward(request, f"{settings.solr_url.rstrip('/')}/suggest", params)
    await cache_set(redis, cache_key, result, ttl=settings.search_cache_ttl)
    return result
