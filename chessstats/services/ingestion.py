"""Ingestion service: external source → throttle → normalize → main store.

Flow for one (source, player) request:
1. Check the main store is open (StoreUnavailable before any outbound traffic)
2. Wait for the source's rate-limit slot
3. Fetch raw games through the source client
4. Normalize payloads into `games` rows (unusable payloads are dropped)
5. INSERT OR IGNORE the rows, so games already stored are skipped

Fetch problems surface as FetchFailure and persist problems as StoreFailure.
Nothing here retries on its own; fetch_with_retry() is the caller-side helper
for retryable fetch failures.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, TypeVar

from chessstats.errors import FetchFailure, QueryFailure, StoreFailure, StoreUnavailable
from chessstats.services.rate_limiter import RateLimiter
from chessstats.services.sources import GameSource, GamesRequest
from chessstats.stores.executor import QueryExecutor
from chessstats.stores.sqlite import StoreDomain

logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")

GAME_COLUMNS = (
    "source",
    "external_id",
    "white",
    "black",
    "white_elo",
    "black_elo",
    "result",
    "date",
    "eco",
    "opening",
    "time_control",
    "time_class",
    "ply_count",
    "pgn",
    "retrieved_at",
)

INSERT_GAME_SQL = (
    f"INSERT OR IGNORE INTO games ({', '.join(GAME_COLUMNS)}) "
    f"VALUES ({', '.join(':' + c for c in GAME_COLUMNS)})"
)


@dataclass
class IngestionStats:
    """Statistics from an ingestion run."""

    source: str
    username: str
    fetched: int = 0
    stored: int = 0
    skipped: int = 0  # already present
    rejected: int = 0  # payload could not be normalized


class IngestionClient:
    """Pulls games from external sources into the main store."""

    def __init__(
        self,
        limiter: RateLimiter,
        executor: QueryExecutor,
        sources: Mapping[str, GameSource],
        store: StoreDomain = StoreDomain.MAIN,
    ):
        self._limiter = limiter
        self._executor = executor
        self._sources = dict(sources)
        self._store = store

    @property
    def source_names(self) -> list[str]:
        return sorted(self._sources)

    async def fetch_and_store(self, source: str, request: GamesRequest) -> int:
        """Fetch one player's games from `source` and persist them.

        Returns:
            Number of records newly stored.

        Raises:
            StoreUnavailable: the main store is not open; no request was made.
            FetchFailure: the source could not be reached or answered non-2xx.
            StoreFailure: the records could not be written.
        """
        stats = await self.ingest(source, request)
        return stats.stored

    async def ingest(self, source: str, request: GamesRequest) -> IngestionStats:
        """Same flow as fetch_and_store(), returning the full counts."""
        client = self._sources.get(source)
        if client is None:
            raise ValueError(f"Unknown source: {source!r}")

        self._executor.ensure_available(self._store)

        stats = IngestionStats(source=source, username=request.username)
        await self._limiter.acquire(source)
        records = await client.fetch_games(request)
        stats.fetched = len(records)

        rows = []
        for record in records:
            row = client.normalize(record)
            if row is None:
                stats.rejected += 1
                continue
            rows.append(row)

        if rows:
            try:
                result = await self._executor.mutate(self._store, INSERT_GAME_SQL, rows)
            except (QueryFailure, StoreUnavailable) as e:
                raise StoreFailure(source, str(e)) from e
            stats.stored = result.rowcount
        stats.skipped = len(rows) - stats.stored

        logger.info(
            f"Ingested {source}/{request.username}: fetched={stats.fetched} "
            f"stored={stats.stored} skipped={stats.skipped} rejected={stats.rejected}"
        )
        return stats

    async def close(self) -> None:
        for client in self._sources.values():
            await client.close()


async def fetch_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run `operation`, retrying retryable FetchFailures with exponential backoff.

    Delays are base_delay * 2**attempt (1s, 2s, 4s by default). A 429 that
    carries Retry-After waits that long instead. Non-retryable fetch failures
    and every other exception propagate immediately.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except FetchFailure as e:
            attempt += 1
            if not e.retryable or attempt >= max_attempts:
                raise
            delay = base_delay * (2 ** (attempt - 1))
            if e.status_code == 429 and e.retry_after is not None:
                delay = e.retry_after
            logger.warning(f"{e}; retrying in {delay:.1f}s (attempt {attempt + 1}/{max_attempts})")
            await sleep(delay)
