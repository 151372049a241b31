"""Read-only diagnostics endpoints.

GET /v1/diagnostics/cache   - hit/miss counters per cache tier
GET /v1/diagnostics/stores  - open and absent store handles
GET /v1/diagnostics/queries - per-statement counts, cache hits and timings

Routers are thin: read the core attached to app.state by the lifespan.
"""

from fastapi import APIRouter, Query, Request

from chessstats.core import Core
from chessstats.schemas import (
    CacheStatsResponse,
    QueryStatsInfo,
    QueryStatsResponse,
    StoreInfo,
    StoresResponse,
    TierStats,
)

router = APIRouter()


def _core(request: Request) -> Core:
    return request.app.state.core


@router.get("/cache", response_model=CacheStatsResponse)
async def get_cache_stats(request: Request) -> CacheStatsResponse:
    stats = _core(request).cache.stats_all()
    return CacheStatsResponse(
        **{name: TierStats(**tier.as_dict()) for name, tier in stats.items()},
    )


@router.get("/stores", response_model=StoresResponse)
async def get_stores(request: Request) -> StoresResponse:
    described = _core(request).connections.describe()
    stores = []
    for name in sorted(described):
        info = described[name]
        stores.append(
            StoreInfo(
                name=name,
                alive=info.get("alive", False),
                absent=info.get("absent", False),
                path=info.get("path"),
                mode=info.get("mode"),
                record_count=info.get("record_count"),
                tuning=info.get("tuning", []),
            )
        )
    return StoresResponse(stores=stores)


@router.get("/queries", response_model=QueryStatsResponse)
async def get_query_stats(
    request: Request,
    limit: int = Query(default=20, ge=1, le=200),
) -> QueryStatsResponse:
    stats = _core(request).executor.query_stats(limit)
    return QueryStatsResponse(queries=[QueryStatsInfo(**s.as_dict()) for s in stats])
