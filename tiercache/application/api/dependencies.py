"""
FastAPI Dependency Injection

The TieredCache is built once in the application lifespan and stored on
``app.state``. Route handlers receive it through ``Depends`` rather than a
module-level global, so tests can swap it with ``app.dependency_overrides``.

Example:
    @router.get("/cache/stats")
    async def stats(cache: CacheDep):
        return cache.stats()
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from tiercache.infrastructure.cache.coordinator import TieredCache


def get_tiered_cache(request: Request) -> TieredCache:
    """
    Retrieve the TieredCache from application state.

    Raises:
        HTTPException: 503 if the lifespan has not (or no longer) provided a cache
    """
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        raise HTTPException(status_code=503, detail="Cache not initialized")
    return cache


CacheDep = Annotated[TieredCache, Depends(get_tiered_cache)]
