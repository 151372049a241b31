"""Tests for settings parsing."""

import pytest
from pydantic import ValidationError

from chessstats.settings import Settings


def test_defaults():
    settings = Settings()

    assert settings.main_db_mode == "ro"
    assert settings.source_delays_ms == {"lichess": 1000, "chesscom": 200}
    assert settings.cache_short_ttl == 60
    assert settings.cache_long_ttl == 3600
    assert settings.tuning_pragmas[0] == ("cache_size", -64000)


def test_store_mode_aliases():
    assert Settings(main_db_mode="read-write").main_db_mode == "rw"
    assert Settings(main_db_mode="READONLY").main_db_mode == "ro"
    with pytest.raises(ValidationError):
        Settings(main_db_mode="append")


def test_database_path_from_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DATABASE_PATH", "/data/otb.db")
    assert Settings().main_db_path == "/data/otb.db"


def test_cors_origins_accepts_json_list(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("CORS_ORIGINS", '["https://a.com", " ", "http://localhost:3000"]')
    settings = Settings()
    assert settings.cors_origins == ["https://a.com", "http://localhost:3000"]
