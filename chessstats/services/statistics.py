"""Cached statistics reads.

Every read is fingerprinted from its query id and parameters, looked up in the
tier the query declares, and only on a miss executed against the store of its
data domain. Results are stored back in the same tier.
"""

import logging
from typing import Any, Mapping

from chessstats.stores.cache import CacheStatus, CacheTier, CacheTierManager, fingerprint
from chessstats.stores.executor import QueryExecutor, Read
from chessstats.stores.sqlite import StoreDomain

logger = logging.getLogger("uvicorn.error")

OVERVIEW_SQL = """
SELECT
    COUNT(*) AS total_games,
    MIN(date) AS first_date,
    MAX(date) AS last_date,
    SUM(CASE WHEN result = '1-0' THEN 1 ELSE 0 END) AS white_wins,
    SUM(CASE WHEN result = '0-1' THEN 1 ELSE 0 END) AS black_wins,
    SUM(CASE WHEN result = '1/2-1/2' THEN 1 ELSE 0 END) AS draws
FROM games
"""

TOP_PLAYERS_SQL = """
SELECT player, COUNT(*) AS games
FROM (
    SELECT white AS player FROM games WHERE :time_class IS NULL OR time_class = :time_class
    UNION ALL
    SELECT black AS player FROM games WHERE :time_class IS NULL OR time_class = :time_class
)
GROUP BY player
ORDER BY games DESC, player ASC
LIMIT :limit
"""

GAME_MOVES_SQL = """
SELECT id, white, black, result, date, eco, opening, ply_count, pgn
FROM games
WHERE id = :game_id
"""


class StatisticsService:
    """Read path: cache first, then the domain's store."""

    def __init__(self, executor: QueryExecutor, cache: CacheTierManager):
        self._executor = executor
        self._cache = cache

    async def query(
        self,
        query_id: str,
        params: Mapping[str, Any] | None,
        read: Read,
        *,
        domain: StoreDomain,
        tier: CacheTier,
    ) -> tuple[Any, CacheStatus]:
        """Serve `read` from `tier`, executing it on `domain` on a miss.

        Returns:
            (result, HIT) when cached, else (result, MISS) after the read ran.
        """
        key = fingerprint(query_id, params)
        value, status = self._cache.get(key, tier)
        if status is CacheStatus.HIT:
            self._executor.note_cache_hit(read.sql)
            return value, status

        value = await self._executor.execute(domain, read)
        self._cache.put(key, value, tier)
        return value, CacheStatus.MISS

    async def overview(self) -> dict[str, Any]:
        """Totals, date range and result split of the main store."""
        read = Read(OVERVIEW_SQL, single=True)
        value, _ = await self.query("overview", None, read, domain=StoreDomain.MAIN, tier=CacheTier.LONG)
        return value or {}

    async def top_players(self, time_class: str | None = None, limit: int = 10) -> list[dict[str, Any]]:
        params = {"time_class": time_class, "limit": max(1, min(limit, 100))}
        read = Read(TOP_PLAYERS_SQL, params)
        value, _ = await self.query("top_players", params, read, domain=StoreDomain.MAIN, tier=CacheTier.SHORT)
        return value

    async def game_moves(self, game_id: int) -> dict[str, Any] | None:
        params = {"game_id": game_id}
        read = Read(GAME_MOVES_SQL, params, single=True)
        value, _ = await self.query("game_moves", params, read, domain=StoreDomain.MOVES, tier=CacheTier.LONG)
        return value

    def invalidate_after_ingest(self) -> int:
        """Drop aggregates that new games make stale. Returns entries removed."""
        removed = self._cache.invalidate_prefix("top_players:", CacheTier.SHORT)
        removed += self._cache.invalidate_prefix("overview:", CacheTier.LONG)
        if removed:
            logger.info(f"Invalidated {removed} cached aggregates after ingestion")
        return removed
