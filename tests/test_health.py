"""Tests for health and diagnostics endpoints."""

import pytest
from httpx import ASGITransport, AsyncClient

from chessstats.core import start_core, stop_core
from chessstats.errors import FetchFailure, StoreUnavailable
from chessstats.main import app, create_app


@pytest.fixture
async def client():
    """Create test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
async def core_app(store_settings):
    """App with a core over a temporary main store and no moves store."""
    core = await start_core(store_settings)
    application = create_app()
    application.state.core = core
    yield application
    await stop_core(core)


@pytest.fixture
async def core_client(core_app):
    async with AsyncClient(
        transport=ASGITransport(app=core_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test health endpoint returns ok."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


@pytest.mark.asyncio
async def test_cache_diagnostics(core_app, core_client: AsyncClient):
    core = core_app.state.core
    await core.statistics.overview()
    await core.statistics.overview()

    response = await core_client.get("/v1/diagnostics/cache")
    assert response.status_code == 200
    data = response.json()

    assert data["long"] == {"entries": 1, "hits": 1, "misses": 1, "hitRate": 0.5}
    assert data["short"]["entries"] == 0


@pytest.mark.asyncio
async def test_store_diagnostics(core_client: AsyncClient):
    response = await core_client.get("/v1/diagnostics/stores")
    assert response.status_code == 200
    stores = {s["name"]: s for s in response.json()["stores"]}

    assert stores["main"]["alive"] is True
    assert stores["main"]["recordCount"] == 10
    assert stores["moves"]["absent"] is True
    assert stores["moves"]["alive"] is False


@pytest.mark.asyncio
async def test_store_unavailable_maps_to_503(core_app, core_client: AsyncClient):
    @core_app.get("/v1/test/moves")
    async def read_moves() -> dict:
        await core_app.state.core.statistics.game_moves(1)
        return {}

    response = await core_client.get("/v1/test/moves")
    assert response.status_code == 503
    error = response.json()["error"]
    assert error["code"] == StoreUnavailable.code
    assert error["context"] == {"store": "moves"}


@pytest.mark.asyncio
async def test_fetch_failure_maps_to_502_with_source_context(core_app, core_client: AsyncClient):
    @core_app.get("/v1/test/fetch")
    async def fetch() -> dict:
        raise FetchFailure("lichess", "HTTP 429 for /games/user/x", status_code=429, retry_after=30)

    response = await core_client.get("/v1/test/fetch")
    assert response.status_code == 502
    error = response.json()["error"]
    assert error["code"] == FetchFailure.code
    assert error["context"] == {"source": "lichess", "statusCode": 429, "retryAfter": 30.0}


@pytest.mark.asyncio
async def test_query_diagnostics(core_app, core_client: AsyncClient):
    core = core_app.state.core
    await core.statistics.overview()
    await core.statistics.overview()
    await core.executor.fetch_one("main", "SELECT 1 AS one")

    response = await core_client.get("/v1/diagnostics/queries")
    assert response.status_code == 200
    queries = response.json()["queries"]

    assert queries[0]["statement"].startswith("SELECT COUNT(*) AS total_games")
    assert queries[0]["count"] == 2
    assert queries[0]["cacheHits"] == 1
    assert queries[0]["failures"] == 0
    assert queries[0]["avgMs"] >= 0
    assert any(q["statement"] == "SELECT 1 AS one" for q in queries)
