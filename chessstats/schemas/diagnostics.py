"""Schemas for the diagnostics endpoints (/v1/diagnostics/*)."""

from pydantic import BaseModel, Field


class TierStats(BaseModel):
    """Counters of one cache tier."""

    entries: int = Field(ge=0)
    hits: int = Field(ge=0)
    misses: int = Field(ge=0)
    hit_rate: float = Field(alias="hitRate", ge=0, le=1)

    model_config = {"populate_by_name": True}


class CacheStatsResponse(BaseModel):
    """Per-tier cache statistics."""

    short: TierStats
    long: TierStats


class StoreInfo(BaseModel):
    """Snapshot of one store handle."""

    name: str
    alive: bool
    absent: bool = False
    path: str | None = None
    mode: str | None = None
    record_count: int | None = Field(alias="recordCount", default=None)
    tuning: list[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class StoresResponse(BaseModel):
    """Every known store, open or absent."""

    stores: list[StoreInfo]


class QueryStatsInfo(BaseModel):
    """Counters of one statement, keyed by its leading text."""

    statement: str
    count: int = Field(ge=0)
    cache_hits: int = Field(alias="cacheHits", ge=0)
    failures: int = Field(ge=0)
    avg_ms: float = Field(alias="avgMs", ge=0)
    max_ms: float = Field(alias="maxMs", ge=0)

    model_config = {"populate_by_name": True}


class QueryStatsResponse(BaseModel):
    """Most requested statements first."""

    queries: list[QueryStatsInfo]
