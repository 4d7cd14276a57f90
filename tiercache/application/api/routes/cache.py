"""
Cache Operations Routes

Operational surface for the tiered cache:
- GET    /cache/stats                 hit/miss per tier and domain, health
- GET    /cache/health                per-tier health
- DELETE /cache/{domain}?prefix=...   pattern invalidation
- DELETE /cache/{domain}/{key}        single-key delete
- GET    /metrics                     Prometheus scrape endpoint

Content routes that *use* the cache live with their callers, not here.
"""

from typing import Any

from fastapi import APIRouter, Query, Response
from pydantic import BaseModel

from tiercache.application.api.dependencies import CacheDep

router = APIRouter(prefix="/cache", tags=["Cache"])
metrics_router = APIRouter(tags=["Metrics"])


# ============================================================================
# RESPONSE MODELS
# ============================================================================


class HealthResponse(BaseModel):
    status: str  # "healthy" or "degraded"
    tiers: dict[str, Any]
    monitor_running: bool
    write_back_running: bool


class InvalidationResponse(BaseModel):
    domain: str
    prefix: str
    removed: int


class DeleteResponse(BaseModel):
    domain: str
    key: str
    removed: bool


# ============================================================================
# ROUTES
# ============================================================================


@router.get("/stats")
async def cache_stats(cache: CacheDep) -> dict[str, Any]:
    """Snapshot of cache counters, latency and current tier health."""
    return cache.stats()


@router.get("/health", response_model=HealthResponse)
async def cache_health(cache: CacheDep) -> dict[str, Any]:
    """
    Per-tier health.

    Always 200: a degraded remote tier means slower responses, not an outage.
    """
    return await cache.health_check()


@router.delete("/{domain}", response_model=InvalidationResponse)
async def invalidate_domain(
    domain: str,
    cache: CacheDep,
    prefix: str = Query(default="", description="Key prefix within the domain; empty drops the whole domain"),
) -> InvalidationResponse:
    removed = await cache.invalidate_pattern(domain, prefix)
    return InvalidationResponse(domain=domain, prefix=prefix, removed=removed)


@router.delete("/{domain}/{key:path}", response_model=DeleteResponse)
async def delete_key(domain: str, key: str, cache: CacheDep) -> DeleteResponse:
    removed = await cache.delete(domain, key)
    return DeleteResponse(domain=domain, key=key, removed=removed)


@metrics_router.get("/metrics")
async def prometheus_metrics(cache: CacheDep) -> Response:
    """Prometheus text exposition format."""
    metrics = cache.metrics
    return Response(content=metrics.get_prometheus_metrics(), media_type=metrics.get_content_type())
