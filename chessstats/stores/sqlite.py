"""SQLite store connections with async SQLAlchemy (aiosqlite driver).

Handles:
- Opening the main and moves stores, read-only or read-write
- Best-effort engine tuning (PRAGMAs) at open time
- Record-count snapshots for startup diagnostics
- Releasing every handle at shutdown

Each StoreHandle keeps one long-lived connection and a FIFO lock, so at most
one statement is in flight per store and writes run in the order issued.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from chessstats.errors import OpenFailure, QueryFailure, StoreUnavailable, TuningFailure
from chessstats.settings import Settings

logger = logging.getLogger("uvicorn.error")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class StoreMode(str, Enum):
    READ_ONLY = "ro"
    READ_WRITE = "rw"


class StoreDomain(str, Enum):
    """Logical datasets, one store each."""

    MAIN = "main"  # canonical tournament games
    MOVES = "moves"  # move-indexed games


@dataclass(frozen=True)
class TuningDirective:
    """Engine hint applied at open time, e.g. cache_size=-64000."""

    key: str
    value: str | int

    def __post_init__(self) -> None:
        if not _IDENTIFIER.match(self.key):
            raise ValueError(f"Invalid tuning key: {self.key!r}")
        # Values are rendered into the PRAGMA text: integers or bare keywords only
        if isinstance(self.value, bool) or not isinstance(self.value, (int, str)):
            raise ValueError(f"Invalid tuning value for {self.key}: {self.value!r}")
        if isinstance(self.value, str) and not _IDENTIFIER.match(self.value):
            raise ValueError(f"Invalid tuning value for {self.key}: {self.value!r}")

    def as_pragma(self) -> str:
        return f"PRAGMA {self.key} = {self.value}"

    def __str__(self) -> str:
        return f"{self.key}={self.value}"


DEFAULT_TUNING: tuple[TuningDirective, ...] = (
    TuningDirective("cache_size", -64000),  # 64MB cache
    TuningDirective("temp_store", "MEMORY"),
    TuningDirective("mmap_size", 268435456),  # 256MB memory-mapped I/O
    TuningDirective("threads", 4),
)


def tuning_from_settings(settings: Settings) -> list[TuningDirective]:
    return [TuningDirective(key, value) for key, value in settings.tuning_pragmas]


@dataclass
class StoreHandle:
    """An opened connection to one logical store."""

    name: str
    path: str
    mode: StoreMode
    engine: AsyncEngine = field(repr=False)
    connection: AsyncConnection = field(repr=False)
    # sqlite3 connection under the driver, used to interrupt a running statement
    raw_connection: Any = field(default=None, repr=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    applied_tuning: list[TuningDirective] = field(default_factory=list)
    record_count: int = 0
    alive: bool = True

    @property
    def read_only(self) -> bool:
        return self.mode is StoreMode.READ_ONLY

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "mode": self.mode.value,
            "alive": self.alive,
            "record_count": self.record_count,
            "tuning": [str(d) for d in self.applied_tuning],
        }


def _reason(exc: Exception) -> str:
    """Driver-level message of a SQLAlchemy error, without the SQL echo."""
    return str(getattr(exc, "orig", None) or exc)


async def _sqlite_connection(connection: AsyncConnection) -> Any:
    """The stdlib sqlite3 connection behind an aiosqlite-backed AsyncConnection."""
    try:
        raw = await connection.get_raw_connection()
        return getattr(raw.driver_connection, "_conn", None)
    except (SQLAlchemyError, AttributeError, ValueError) as e:
        logger.warning(f"sqlite3 connection not reachable, statements cannot be interrupted: {e}")
        return None


def _build_url(path: Path, mode: StoreMode) -> str:
    if mode is StoreMode.READ_ONLY:
        # URI filename so SQLite itself refuses writes
        return f"sqlite+aiosqlite:///file:{path.as_posix()}?mode=ro&uri=true"
    return f"sqlite+aiosqlite:///{path.as_posix()}"


class ConnectionManager:
    """Opens, tunes and releases the process-wide store handles."""

    def __init__(self) -> None:
        self._handles: dict[str, StoreHandle] = {}
        self._absent: set[str] = set()

    async def open(
        self,
        name: str,
        path: str | Path,
        mode: StoreMode = StoreMode.READ_ONLY,
        *,
        tuning: Iterable[TuningDirective] = DEFAULT_TUNING,
        count_table: str | None = "games",
        create: bool = False,
    ) -> StoreHandle:
        """Open a store and register it under `name`.

        Args:
            name: Store identity (e.g. "main").
            path: Filesystem path of the SQLite file.
            mode: Read-only or read-write.
            tuning: Ordered tuning directives, applied best-effort.
            count_table: Table counted for the open-time diagnostic line.
            create: Allow creating a missing file (read-write only).

        Raises:
            OpenFailure: file missing or rejected by the engine.
        """
        if name in self._handles and self._handles[name].alive:
            raise OpenFailure(name, str(path), "store is already open")

        db_path = Path(path).expanduser().resolve()
        if not db_path.is_file():
            if not (create and mode is StoreMode.READ_WRITE):
                raise OpenFailure(name, str(db_path), "file does not exist")
            db_path.parent.mkdir(parents=True, exist_ok=True)

        engine = create_async_engine(
            _build_url(db_path, mode),
            poolclass=NullPool,
            isolation_level="AUTOCOMMIT",
        )
        try:
            connection = await engine.connect()
        except SQLAlchemyError as e:
            await engine.dispose()
            raise OpenFailure(name, str(db_path), _reason(e)) from e

        try:
            # Touch the schema so corrupt or non-SQLite files fail here
            await connection.exec_driver_sql("SELECT COUNT(*) FROM sqlite_master")
        except SQLAlchemyError as e:
            await connection.close()
            await engine.dispose()
            raise OpenFailure(name, str(db_path), _reason(e)) from e

        handle = StoreHandle(
            name=name,
            path=str(db_path),
            mode=mode,
            engine=engine,
            connection=connection,
            raw_connection=await _sqlite_connection(connection),
        )
        await self.apply_tuning(handle, tuning)

        if count_table:
            try:
                handle.record_count = await self.record_count(handle, count_table)
            except QueryFailure as e:
                logger.warning(f"Record count unavailable for '{name}': {e}")

        self._handles[name] = handle
        self._absent.discard(name)
        logger.info(
            f"✓ Store '{name}' connected ({mode.value}): "
            f"{handle.record_count:,} records in {count_table or '-'} [{db_path}]"
        )
        return handle

    async def open_optional(
        self,
        name: str,
        path: str | Path,
        mode: StoreMode = StoreMode.READ_ONLY,
        **kwargs: Any,
    ) -> StoreHandle | None:
        """Open a store that may be absent.

        Returns None (and logs once) instead of raising, and marks the
        store name as unavailable for later statements.
        """
        if self.is_available(name):
            return self._handles[name]
        try:
            return await self.open(name, path, mode, **kwargs)
        except OpenFailure as e:
            if name not in self._absent:
                logger.warning(f"⚠️ Store '{name}' unavailable, continuing without it: {e.reason}")
            self._absent.add(name)
            return None

    async def open_configured(self, settings: Settings) -> dict[str, StoreHandle | None]:
        """Open the main and moves stores described by settings.

        Raises:
            OpenFailure: a store flagged as required could not be opened.
        """
        tuning = tuning_from_settings(settings)
        plan = [
            (StoreDomain.MAIN, settings.main_db_path, StoreMode(settings.main_db_mode), settings.main_db_required),
            (StoreDomain.MOVES, settings.moves_db_path, StoreMode.READ_ONLY, settings.moves_db_required),
        ]
        opened: dict[str, StoreHandle | None] = {}
        for domain, path, mode, required in plan:
            if required:
                opened[domain.value] = await self.open(
                    domain.value, path, mode, tuning=tuning, count_table=settings.count_table
                )
            else:
                opened[domain.value] = await self.open_optional(
                    domain.value, path, mode, tuning=tuning, count_table=settings.count_table
                )
        return opened

    async def apply_tuning(
        self,
        handle: StoreHandle,
        directives: Iterable[TuningDirective],
    ) -> list[TuningDirective]:
        """Apply each directive independently; failures are logged, never raised.

        Returns:
            The directives that were applied.
        """
        applied: list[TuningDirective] = []
        for directive in directives:
            try:
                await handle.connection.exec_driver_sql(directive.as_pragma())
            except SQLAlchemyError as e:
                failure = TuningFailure(handle.name, directive.as_pragma(), _reason(e))
                logger.info(f"Note: {failure}")
                continue
            applied.append(directive)
            if directive not in handle.applied_tuning:
                handle.applied_tuning.append(directive)
        return applied

    async def reconnect(self, handle: StoreHandle) -> None:
        """Swap in a fresh connection after the current one was invalidated.

        The caller must hold `handle.lock`. Tuning already applied to the
        handle is applied again on the new connection.

        Raises:
            QueryFailure: the engine refused a new connection; the handle is
                marked dead.
        """
        try:
            await handle.connection.close()
        except Exception as e:
            logger.warning(f"Error closing invalidated {handle.name} connection: {e}")
        try:
            handle.connection = await handle.engine.connect()
        except SQLAlchemyError as e:
            handle.alive = False
            raise QueryFailure(handle.name, f"reconnect failed: {_reason(e)}") from e
        handle.raw_connection = await _sqlite_connection(handle.connection)
        await self.apply_tuning(handle, list(handle.applied_tuning))
        logger.warning(f"Store '{handle.name}' reconnected")

    async def record_count(self, handle: StoreHandle, table: str) -> int:
        """Count rows in `table`. Diagnostics only, not for hot paths."""
        if not _IDENTIFIER.match(table):
            raise QueryFailure(handle.name, f"invalid table name {table!r}")
        if not handle.alive:
            raise StoreUnavailable(handle.name)
        async with handle.lock:
            try:
                result = await handle.connection.exec_driver_sql(f'SELECT COUNT(*) FROM "{table}"')
                count = result.scalar()
            except SQLAlchemyError as e:
                raise QueryFailure(handle.name, _reason(e)) from e
        return int(count or 0)

    async def create_tables(self, handle: StoreHandle) -> None:
        """Create all model tables in a read-write store."""
        if handle.read_only:
            raise QueryFailure(handle.name, "cannot create tables in a read-only store")
        # Register models on Base.metadata
        from chessstats import models  # noqa: F401

        async with handle.lock:
            try:
                await handle.connection.run_sync(Base.metadata.create_all)
            except SQLAlchemyError as e:
                raise QueryFailure(handle.name, _reason(e)) from e

    def get(self, name: str) -> StoreHandle:
        """Return a live handle.

        Raises:
            StoreUnavailable: the store was never opened, is absent or closed.
        """
        handle = self._handles.get(name)
        if handle is None or not handle.alive:
            raise StoreUnavailable(name)
        return handle

    def is_available(self, name: str) -> bool:
        handle = self._handles.get(name)
        return handle is not None and handle.alive

    def describe(self) -> dict[str, Any]:
        stores: dict[str, Any] = {name: h.describe() for name, h in self._handles.items()}
        for name in self._absent:
            stores.setdefault(name, {"name": name, "alive": False, "absent": True})
        return stores

    async def close(self, handle: StoreHandle) -> None:
        """Release a handle. Idempotent; errors are logged, not raised."""
        if not handle.alive:
            return
        handle.alive = False
        try:
            await handle.connection.close()
        except Exception as e:
            logger.error(f"Error closing {handle.name} store: {e}")
        try:
            await handle.engine.dispose()
        except Exception as e:
            logger.error(f"Error disposing {handle.name} engine: {e}")
        logger.info(f"Closed {handle.name} store")

    async def close_all(self) -> None:
        for handle in list(self._handles.values()):
            await self.close(handle)
        self._handles.clear()
