"""Shared fixtures: temporary SQLite stores seeded through the real code path."""

from pathlib import Path
from typing import Any, Awaitable, Callable

import pytest

from chessstats.services.ingestion import INSERT_GAME_SQL
from chessstats.settings import Settings
from chessstats.stores.executor import QueryExecutor
from chessstats.stores.sqlite import ConnectionManager, StoreMode


def make_game(i: int, **overrides: Any) -> dict[str, Any]:
    row = {
        "source": "otb",
        "external_id": f"otb-{i}",
        "white": f"White {i % 3}",
        "black": f"Black {i % 2}",
        "white_elo": 2500,
        "black_elo": 2400,
        "result": "1-0",
        "date": "2024.01.01",
        "eco": "B90",
        "opening": "Sicilian Defense",
        "time_control": "180+2",
        "time_class": "blitz",
        "ply_count": 40,
        "pgn": "1. e4 c5 *",
        "retrieved_at": "2024-01-01T00:00:00+00:00",
    }
    row.update(overrides)
    return row


@pytest.fixture
def game_row() -> Callable[..., dict[str, Any]]:
    return make_game


@pytest.fixture
def seed_store() -> Callable[..., Awaitable[Path]]:
    """Create a SQLite file with the games schema and the given rows."""

    async def _seed(path: Path, games: list[dict[str, Any]]) -> Path:
        manager = ConnectionManager()
        handle = await manager.open("seed", path, StoreMode.READ_WRITE, create=True, count_table=None)
        await manager.create_tables(handle)
        if games:
            await QueryExecutor(manager).mutate("seed", INSERT_GAME_SQL, games)
        await manager.close_all()
        return path

    return _seed


@pytest.fixture
async def main_db(tmp_path: Path, seed_store) -> Path:
    """Main store with ten blitz games."""
    return await seed_store(tmp_path / "complete-tournaments.db", [make_game(i) for i in range(10)])


@pytest.fixture
async def connections():
    manager = ConnectionManager()
    yield manager
    await manager.close_all()


@pytest.fixture
def store_settings(main_db: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Settings pointing at the seeded main store and an absent moves store."""
    monkeypatch.setenv("MAIN_DB_PATH", str(main_db))
    monkeypatch.setenv("MOVES_DB_PATH", str(tmp_path / "missing.db"))
    return Settings()
