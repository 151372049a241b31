"""Pydantic schemas for API request/response validation."""

from chessstats.schemas.common import ErrorContext, ErrorDetail, ErrorResponse
from chessstats.schemas.diagnostics import (
    CacheStatsResponse,
    QueryStatsInfo,
    QueryStatsResponse,
    StoreInfo,
    StoresResponse,
    TierStats,
)

__all__ = [
    "ErrorContext",
    "ErrorDetail",
    "ErrorResponse",
    "CacheStatsResponse",
    "QueryStatsInfo",
    "QueryStatsResponse",
    "StoreInfo",
    "StoresResponse",
    "TierStats",
]
