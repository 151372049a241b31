"""API routes."""

from fastapi import APIRouter

from chessstats.routes import diagnostics

api_router = APIRouter()

# Diagnostics (cache counters, store handles)
api_router.include_router(diagnostics.router, prefix="/v1/diagnostics", tags=["diagnostics"])
