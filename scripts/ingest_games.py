#!/usr/bin/env python3
"""Game ingestion job for cron.

Behavior:
- Opens the main store read-write (creating the file and `games` table if missing)
- For each configured username, pulls games from Lichess and/or Chess.com
  through the per-source rate limiter and inserts new ones (duplicates skipped)
- Retryable fetch failures (network, 429, 5xx) back off 1s, 2s, 4s

Run (local / cron):
  python -m scripts.ingest_games

Optional env vars:
  INGEST_LICHESS_USERS="DrNykterstein,penguingim1"
  INGEST_CHESSCOM_USERS="hikaru,magnuscarlsen"
  INGEST_MAX_GAMES=100
  INGEST_YEAR=2024
  INGEST_MONTH=6
"""

import asyncio
import os
import sys
from dataclasses import asdict


# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from chessstats.errors import CoreError  # noqa: E402
from chessstats.services.ingestion import IngestionClient, fetch_with_retry  # noqa: E402
from chessstats.services.rate_limiter import RateLimiter  # noqa: E402
from chessstats.services.sources import CHESSCOM, LICHESS, GamesRequest, build_sources  # noqa: E402
from chessstats.settings import get_settings  # noqa: E402
from chessstats.stores.executor import QueryExecutor  # noqa: E402
from chessstats.stores.sqlite import (  # noqa: E402
    ConnectionManager,
    StoreDomain,
    StoreMode,
    tuning_from_settings,
)


def _parse_csv_env(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    return [p.strip() for p in raw.split(",") if p.strip()]


def _int_env(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else None


async def main() -> None:
    settings = get_settings()
    connections = ConnectionManager()

    # Ingestion always writes, whatever the API process uses
    handle = await connections.open(
        StoreDomain.MAIN.value,
        settings.main_db_path,
        StoreMode.READ_WRITE,
        tuning=tuning_from_settings(settings),
        count_table=None,
        create=True,
    )
    await connections.create_tables(handle)

    executor = QueryExecutor(connections, timeout=settings.query_timeout_seconds)
    limiter = RateLimiter(settings.source_delays_ms, default_delay_ms=settings.default_min_delay_ms)
    client = IngestionClient(limiter, executor, build_sources(settings))

    try:
        plan = [(LICHESS, u) for u in _parse_csv_env("INGEST_LICHESS_USERS", [])]
        plan += [(CHESSCOM, u) for u in _parse_csv_env("INGEST_CHESSCOM_USERS", [])]
        max_games = _int_env("INGEST_MAX_GAMES") or 100
        year = _int_env("INGEST_YEAR")
        month = _int_env("INGEST_MONTH")

        runs: list[dict] = []
        failures: list[dict] = []
        for source, username in plan:
            request = GamesRequest(username=username, max_games=max_games, year=year, month=month)
            try:
                stats = await fetch_with_retry(
                    lambda: client.ingest(source, request),
                    max_attempts=settings.fetch_max_attempts,
                )
            except CoreError as e:
                failures.append({"source": source, "username": username, "code": e.code, "error": str(e)})
                continue
            runs.append(asdict(stats))

        total = await connections.record_count(handle, settings.count_table)

        # Final output for cron logs (single JSON-ish blob)
        print(
            {
                "ok": not failures,
                "runs": len(runs),
                "fetched": sum(x["fetched"] for x in runs),
                "stored": sum(x["stored"] for x in runs),
                "skipped": sum(x["skipped"] for x in runs),
                "rejected": sum(x["rejected"] for x in runs),
                "failures": failures,
                "total_games": total,
            }
        )
    finally:
        await client.close()
        await connections.close_all()


if __name__ == "__main__":
    asyncio.run(main())
