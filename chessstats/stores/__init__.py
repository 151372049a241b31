"""Data stores for persistence and caching.

Stores handle:
- SQLite: store handles, tuning, serialized statement execution
- Cache: two-tier in-memory TTL/LRU result cache

No statistics or ingestion logic in stores - that belongs in services.
"""
