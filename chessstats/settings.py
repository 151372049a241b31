"""Application settings via Pydantic Settings."""

import json
from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "Chess Stats Core"
    app_version: str = "0.1.0"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 3007

    # CORS (diagnostics dashboard)
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        validation_alias=AliasChoices("CORS_ORIGINS", "ALLOWED_ORIGINS"),
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v: object) -> list[str]:
        """Accept a JSON array string, a comma-separated string or a list."""
        if v is None:
            return []
        if isinstance(v, list):
            return [str(x).strip() for x in v if str(x).strip()]
        s = str(v).strip()
        if s.startswith("["):
            try:
                parsed = json.loads(s)
            except json.JSONDecodeError:
                parsed = s.strip("[]").split(",")
            if isinstance(parsed, list):
                return [str(x).strip().strip("\"") for x in parsed if str(x).strip()]
        return [part.strip() for part in s.split(",") if part.strip()]

    # Stores (SQLite)
    main_db_path: str = Field(
        default="otb-database/complete-tournaments.db",
        validation_alias=AliasChoices("MAIN_DB_PATH", "DATABASE_PATH"),
    )
    moves_db_path: str = Field(
        default="chess-stats.db",
        validation_alias=AliasChoices("MOVES_DB_PATH"),
    )
    main_db_mode: str = Field(
        default="ro",
        description="'ro' for the read-only API process, 'rw' for ingestion jobs.",
    )
    main_db_required: bool = False
    moves_db_required: bool = False
    count_table: str = "games"

    @field_validator("main_db_mode", mode="before")
    @classmethod
    def _parse_mode(cls, v: object) -> str:
        s = str(v or "ro").strip().lower()
        if s in ("ro", "read-only", "readonly"):
            return "ro"
        if s in ("rw", "read-write", "readwrite"):
            return "rw"
        raise ValueError(f"Unsupported store mode: {v!r}")

    # SQLite tuning (applied best-effort at open time)
    sqlite_cache_size: int = -64000  # 64MB
    sqlite_temp_store: str = "MEMORY"
    sqlite_mmap_size: int = 268435456  # 256MB memory-mapped I/O
    sqlite_threads: int = 4

    @property
    def tuning_pragmas(self) -> list[tuple[str, str | int]]:
        """Ordered (key, value) tuning hints for every store."""
        return [
            ("cache_size", self.sqlite_cache_size),
            ("temp_store", self.sqlite_temp_store),
            ("mmap_size", self.sqlite_mmap_size),
            ("threads", self.sqlite_threads),
        ]

    query_timeout_seconds: float = Field(default=30.0, gt=0)

    # Result cache
    cache_short_ttl: int = Field(default=60, ge=1)  # 1 minute
    cache_long_ttl: int = Field(default=3600, ge=1)  # 1 hour
    cache_short_max_entries: int = Field(default=10000, ge=1)
    cache_long_max_entries: int = Field(default=10000, ge=1)

    # External sources
    lichess_base_url: str = "https://lichess.org/api"
    lichess_api_token: str = Field(
        default="",
        validation_alias=AliasChoices("LICHESS_API_TOKEN", "LICHESS_TOKEN"),
    )
    chesscom_base_url: str = "https://api.chess.com/pub"
    lichess_min_delay_ms: int = Field(default=1000, ge=0)
    chesscom_min_delay_ms: int = Field(default=200, ge=0)
    default_min_delay_ms: int = Field(default=1000, ge=0)
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    http_user_agent: str = (
        "Chess-Stats-Website/1.0 (contact: chessstats@example.com; purpose: educational)"
    )
    fetch_max_attempts: int = Field(default=3, ge=1, le=10)

    @property
    def source_delays_ms(self) -> dict[str, int]:
        return {
            "lichess": self.lichess_min_delay_ms,
            "chesscom": self.chesscom_min_delay_ms,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
