"""Tests for store connections (open, tuning, record counts, absence, close)."""

import logging

import pytest

from chessstats.errors import OpenFailure, QueryFailure, StoreUnavailable
from chessstats.settings import Settings
from chessstats.stores.executor import QueryExecutor
from chessstats.stores.sqlite import (
    DEFAULT_TUNING,
    ConnectionManager,
    StoreDomain,
    StoreMode,
    TuningDirective,
)


@pytest.mark.asyncio
async def test_open_read_only_reports_record_count(connections: ConnectionManager, main_db):
    handle = await connections.open("main", main_db, StoreMode.READ_ONLY)

    assert handle.alive
    assert handle.read_only
    assert handle.record_count == 10
    assert await connections.record_count(handle, "games") == 10
    assert connections.get("main") is handle


@pytest.mark.asyncio
async def test_open_logs_one_line_with_volume(connections: ConnectionManager, main_db, caplog):
    with caplog.at_level(logging.INFO, logger="uvicorn.error"):
        await connections.open("main", main_db)

    lines = [r.getMessage() for r in caplog.records if "connected" in r.getMessage()]
    assert len(lines) == 1
    assert "'main'" in lines[0]
    assert "10 records" in lines[0]


@pytest.mark.asyncio
async def test_open_applies_default_tuning(connections: ConnectionManager, main_db):
    handle = await connections.open("main", main_db)

    assert [d.key for d in handle.applied_tuning] == [d.key for d in DEFAULT_TUNING]
    assert str(handle.applied_tuning[0]) == "cache_size=-64000"


@pytest.mark.asyncio
async def test_rejected_tuning_directive_does_not_fail_open(connections: ConnectionManager, main_db, caplog):
    bad = TuningDirective("user_version", 7)  # header write, refused read-only
    good = TuningDirective("temp_store", "MEMORY")

    with caplog.at_level(logging.INFO, logger="uvicorn.error"):
        handle = await connections.open("main", main_db, tuning=[bad, good])

    assert handle.alive
    assert handle.applied_tuning == [good]
    assert any("Could not apply" in r.getMessage() for r in caplog.records)


def test_tuning_directive_rejects_non_identifier_key():
    with pytest.raises(ValueError):
        TuningDirective("cache_size; DROP TABLE games", 1)


@pytest.mark.parametrize("value", ["= =", "MEMORY; DROP TABLE games", "-64000", 1.5, True, None])
def test_tuning_directive_rejects_non_integer_non_keyword_value(value):
    with pytest.raises(ValueError):
        TuningDirective("cache_size", value)


def test_tuning_directive_renders_pragma():
    assert TuningDirective("cache_size", -64000).as_pragma() == "PRAGMA cache_size = -64000"
    assert TuningDirective("temp_store", "MEMORY").as_pragma() == "PRAGMA temp_store = MEMORY"


@pytest.mark.asyncio
async def test_open_missing_file_raises(connections: ConnectionManager, tmp_path):
    with pytest.raises(OpenFailure) as exc_info:
        await connections.open("main", tmp_path / "nope.db")

    assert exc_info.value.store == "main"
    assert "does not exist" in exc_info.value.reason
    assert not connections.is_available("main")


@pytest.mark.asyncio
async def test_open_non_sqlite_file_raises(connections: ConnectionManager, tmp_path):
    path = tmp_path / "garbage.db"
    path.write_bytes(b"this is definitely not a sqlite database file " * 20)

    with pytest.raises(OpenFailure):
        await connections.open("main", path)


@pytest.mark.asyncio
async def test_open_twice_raises(connections: ConnectionManager, main_db):
    await connections.open("main", main_db)
    with pytest.raises(OpenFailure):
        await connections.open("main", main_db)


@pytest.mark.asyncio
async def test_open_creates_missing_file_in_read_write_mode(connections: ConnectionManager, tmp_path):
    path = tmp_path / "nested" / "fresh.db"
    handle = await connections.open("main", path, StoreMode.READ_WRITE, create=True, count_table=None)
    await connections.create_tables(handle)

    assert path.is_file()
    assert await connections.record_count(handle, "games") == 0


@pytest.mark.asyncio
async def test_create_tables_refuses_read_only(connections: ConnectionManager, main_db):
    handle = await connections.open("main", main_db)
    with pytest.raises(QueryFailure):
        await connections.create_tables(handle)


@pytest.mark.asyncio
async def test_optional_absent_store(connections: ConnectionManager, tmp_path, caplog):
    with caplog.at_level(logging.WARNING, logger="uvicorn.error"):
        first = await connections.open_optional("moves", tmp_path / "chess-stats.db")
        second = await connections.open_optional("moves", tmp_path / "chess-stats.db")

    assert first is None
    assert second is None
    assert sum("unavailable" in r.getMessage() for r in caplog.records) == 1
    with pytest.raises(StoreUnavailable):
        connections.get("moves")
    assert connections.describe()["moves"]["absent"] is True


@pytest.mark.asyncio
async def test_statement_on_absent_store_raises_without_running(connections: ConnectionManager, tmp_path):
    await connections.open_optional("moves", tmp_path / "missing.db")
    executor = QueryExecutor(connections)

    with pytest.raises(StoreUnavailable):
        await executor.fetch_all("moves", "SELECT 1")


@pytest.mark.asyncio
async def test_record_count_validates_table_name(connections: ConnectionManager, main_db):
    handle = await connections.open("main", main_db)
    with pytest.raises(QueryFailure):
        await connections.record_count(handle, 'games"; DROP TABLE games; --')


@pytest.mark.asyncio
async def test_record_count_unknown_table(connections: ConnectionManager, main_db):
    handle = await connections.open("main", main_db)
    with pytest.raises(QueryFailure):
        await connections.record_count(handle, "no_such_table")


@pytest.mark.asyncio
async def test_close_is_idempotent(connections: ConnectionManager, main_db):
    handle = await connections.open("main", main_db)

    await connections.close(handle)
    await connections.close(handle)

    assert not handle.alive
    with pytest.raises(StoreUnavailable):
        connections.get("main")
    with pytest.raises(StoreUnavailable):
        await connections.record_count(handle, "games")


@pytest.mark.asyncio
async def test_open_configured_tolerates_missing_optional_store(connections: ConnectionManager, store_settings):
    opened = await connections.open_configured(store_settings)

    assert opened[StoreDomain.MAIN.value] is not None
    assert opened[StoreDomain.MOVES.value] is None
    assert connections.is_available("main")
    assert not connections.is_available("moves")


@pytest.mark.asyncio
async def test_open_configured_required_store_is_fatal(
    connections: ConnectionManager, tmp_path, monkeypatch: pytest.MonkeyPatch
):
    monkeypatch.setenv("MAIN_DB_PATH", str(tmp_path / "missing.db"))
    monkeypatch.setenv("MOVES_DB_PATH", str(tmp_path / "also-missing.db"))
    settings = Settings(main_db_required=True)

    with pytest.raises(OpenFailure):
        await connections.open_configured(settings)


@pytest.mark.asyncio
async def test_reconnect_replaces_connection_and_keeps_tuning(connections: ConnectionManager, main_db):
    handle = await connections.open("main", main_db)
    old_connection = handle.connection
    old_raw = handle.raw_connection
    assert old_raw is not None

    async with handle.lock:
        await connections.reconnect(handle)

    assert handle.alive
    assert handle.connection is not old_connection
    assert handle.raw_connection is not old_raw
    assert [d.key for d in handle.applied_tuning] == [d.key for d in DEFAULT_TUNING]
    executor = QueryExecutor(connections)
    assert await executor.fetch_one("main", "SELECT COUNT(*) AS n FROM games") == {"n": 10}
