"""Process-wide singletons: stores, executor, cache, limiter, ingestion.

Built once by the application lifespan (or a script) and torn down at shutdown.
"""

import logging
from dataclasses import dataclass

import httpx

from chessstats.services.ingestion import IngestionClient
from chessstats.services.rate_limiter import RateLimiter
from chessstats.services.sources import build_sources
from chessstats.services.statistics import StatisticsService
from chessstats.settings import Settings, get_settings
from chessstats.stores.cache import CacheTier, CacheTierManager
from chessstats.stores.executor import QueryExecutor
from chessstats.stores.sqlite import ConnectionManager

logger = logging.getLogger("uvicorn.error")


@dataclass
class Core:
    settings: Settings
    connections: ConnectionManager
    executor: QueryExecutor
    cache: CacheTierManager
    limiter: RateLimiter
    ingestion: IngestionClient
    statistics: StatisticsService


async def start_core(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Core:
    """Open the configured stores and wire every component.

    Raises:
        OpenFailure: a store marked as required could not be opened.
    """
    settings = settings or get_settings()

    connections = ConnectionManager()
    await connections.open_configured(settings)

    executor = QueryExecutor(connections, timeout=settings.query_timeout_seconds)
    cache = CacheTierManager(
        ttls={CacheTier.SHORT: settings.cache_short_ttl, CacheTier.LONG: settings.cache_long_ttl},
        max_entries={
            CacheTier.SHORT: settings.cache_short_max_entries,
            CacheTier.LONG: settings.cache_long_max_entries,
        },
    )
    limiter = RateLimiter(settings.source_delays_ms, default_delay_ms=settings.default_min_delay_ms)
    ingestion = IngestionClient(limiter, executor, build_sources(settings, transport))
    statistics = StatisticsService(executor, cache)

    logger.info(
        f"Core ready: stores={sorted(n for n, s in connections.describe().items() if s.get('alive'))} "
        f"sources={ingestion.source_names}"
    )
    return Core(
        settings=settings,
        connections=connections,
        executor=executor,
        cache=cache,
        limiter=limiter,
        ingestion=ingestion,
        statistics=statistics,
    )


async def stop_core(core: Core) -> None:
    """Release HTTP clients and store handles. Errors are logged, not raised."""
    try:
        await core.ingestion.close()
    except Exception as e:
        logger.error(f"Error closing source clients: {e}")
    await core.connections.close_all()
