"""Statement execution over store handles.

Three operation kinds, chosen by the caller:
- Tuning: engine hint, fire-and-forget, failures logged and suppressed
- Mutation: insert/update/delete, returns affected rows and last row id
- Read: zero-or-one row, or all rows in order, as dicts

Statements on one handle run one at a time, in the order they were issued.
Every statement carries a deadline enforced inside SQLite itself: when it
expires the running statement is interrupted and QueryFailure is raised. A
caller that cancels its task gets the same interrupt, and the handle lock is
released only once the connection is back in a usable state. Nothing is
retried here.

Per-statement counters (executions, cache hits, failures, timings) are kept
for the diagnostics endpoint.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Sequence, TypeVar, Union

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from chessstats.errors import QueryFailure, StoreUnavailable
from chessstats.stores.sqlite import (
    ConnectionManager,
    StoreDomain,
    StoreHandle,
    TuningDirective,
    _reason,
)

logger = logging.getLogger("uvicorn.error")

Params = Mapping[str, Any]
T = TypeVar("T")

STATEMENT_KEY_LENGTH = 100


@dataclass(frozen=True)
class Tuning:
    directive: TuningDirective


@dataclass(frozen=True)
class Mutation:
    """Write statement. A sequence of parameter sets runs as executemany."""

    sql: str
    params: Params | Sequence[Params] | None = None

    @property
    def many(self) -> bool:
        return isinstance(self.params, (list, tuple))


@dataclass(frozen=True)
class Read:
    sql: str
    params: Params | None = None
    single: bool = False


Operation = Union[Tuning, Mutation, Read]


@dataclass(frozen=True)
class MutationResult:
    rowcount: int
    last_row_id: int | None = None


@dataclass
class QueryStats:
    """Running totals for one statement text.

    `count` includes requests answered by the cache; timings cover only the
    statements that actually ran.
    """

    statement: str
    count: int = 0
    cache_hits: int = 0
    failures: int = 0
    total_time: float = 0.0
    max_time: float = 0.0

    @property
    def executions(self) -> int:
        return self.count - self.cache_hits

    @property
    def avg_time(self) -> float:
        return self.total_time / self.executions if self.executions else 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "statement": self.statement,
            "count": self.count,
            "cache_hits": self.cache_hits,
            "failures": self.failures,
            "avg_ms": round(self.avg_time * 1000, 3),
            "max_ms": round(self.max_time * 1000, 3),
        }


def statement_key(sql: str) -> str:
    """Whitespace-collapsed prefix that identifies a statement in the stats."""
    return " ".join(sql.split())[:STATEMENT_KEY_LENGTH]


def _store_name(store: str | StoreDomain) -> str:
    return store.value if isinstance(store, StoreDomain) else store


class QueryExecutor:
    """Uniform request/result contract over the ConnectionManager's handles."""

    def __init__(self, connections: ConnectionManager, timeout: float = 30.0):
        self._connections = connections
        self._timeout = timeout
        self._stats: dict[str, QueryStats] = {}

    def ensure_available(self, store: str | StoreDomain) -> StoreHandle:
        """Return the live handle for `store` or raise StoreUnavailable."""
        return self._connections.get(_store_name(store))

    async def execute(
        self,
        store: str | StoreDomain,
        operation: Operation,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Run one operation against a store.

        Returns:
            bool for Tuning, MutationResult for Mutation, dict | None or
            list[dict] for Read.

        Raises:
            StoreUnavailable: the store is absent or closed (nothing runs).
            QueryFailure: the statement failed or exceeded its deadline.
        """
        handle = self.ensure_available(store)

        if isinstance(operation, Tuning):
            return await self._tune(handle, operation.directive)
        if not isinstance(operation, (Mutation, Read)):
            raise TypeError(f"Unsupported operation: {operation!r}")

        deadline = timeout if timeout is not None else self._timeout
        return await self._guarded(
            handle,
            lambda: self._run_one(handle, operation),
            deadline,
            label=operation.sql,
        )

    async def execute_batch(
        self,
        store: str | StoreDomain,
        operations: Sequence[Mutation | Read],
        *,
        timeout: float | None = None,
    ) -> list[Any]:
        """Run several statements in one transaction, all or nothing.

        The whole batch holds the handle lock and shares one deadline.

        Returns:
            One result per operation, in order.

        Raises:
            StoreUnavailable: the store is absent or closed (nothing runs).
            QueryFailure: a statement failed or the deadline expired; every
                change made by the batch is rolled back.
        """
        for operation in operations:
            if not isinstance(operation, (Mutation, Read)):
                raise TypeError(f"Unsupported batch operation: {operation!r}")
        handle = self.ensure_available(store)
        if not operations:
            return []

        deadline = timeout if timeout is not None else self._timeout
        return await self._guarded(handle, lambda: self._run_batch(handle, operations), deadline)

    def submit(
        self,
        store: str | StoreDomain,
        operation: Operation,
        *,
        timeout: float | None = None,
    ) -> "asyncio.Task[Any]":
        """Schedule an operation and return its deferred result."""
        return asyncio.create_task(self.execute(store, operation, timeout=timeout))

    async def tune(self, store: str | StoreDomain, directive: TuningDirective) -> bool:
        return await self.execute(store, Tuning(directive))

    async def mutate(
        self,
        store: str | StoreDomain,
        sql: str,
        params: Params | Sequence[Params] | None = None,
        *,
        timeout: float | None = None,
    ) -> MutationResult:
        return await self.execute(store, Mutation(sql, params), timeout=timeout)

    async def fetch_one(
        self,
        store: str | StoreDomain,
        sql: str,
        params: Params | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any] | None:
        return await self.execute(store, Read(sql, params, single=True), timeout=timeout)

    async def fetch_all(
        self,
        store: str | StoreDomain,
        sql: str,
        params: Params | None = None,
        *,
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        return await self.execute(store, Read(sql, params), timeout=timeout)

    def note_cache_hit(self, sql: str) -> None:
        """Count a request for `sql` that the cache answered."""
        stats = self._stats_for(sql)
        stats.count += 1
        stats.cache_hits += 1

    def query_stats(self, limit: int | None = None) -> list[QueryStats]:
        """Statement counters, most requested first."""
        ordered = sorted(self._stats.values(), key=lambda s: (-s.count, s.statement))
        return ordered[:limit] if limit is not None else ordered

    def _stats_for(self, sql: str) -> QueryStats:
        key = statement_key(sql)
        stats = self._stats.get(key)
        if stats is None:
            stats = self._stats[key] = QueryStats(statement=key)
        return stats

    def _record(self, sql: str, elapsed: float, failed: bool = False) -> None:
        stats = self._stats_for(sql)
        stats.count += 1
        stats.total_time += elapsed
        stats.max_time = max(stats.max_time, elapsed)
        if failed:
            stats.failures += 1

    async def _guarded(
        self,
        handle: StoreHandle,
        work: Callable[[], Awaitable[T]],
        deadline: float,
        *,
        label: str | None = None,
    ) -> T:
        """Run `work` alone on the handle, interrupting SQLite at the deadline.

        The statement runs as its own task so a cancelled caller can still
        wait for it to stop before giving the connection to the next one.
        """
        loop = asyncio.get_running_loop()
        async with handle.lock:
            if not handle.alive:
                raise StoreUnavailable(handle.name)

            expired = False

            def expire() -> None:
                nonlocal expired
                expired = True
                self._interrupt(handle)

            timer = loop.call_later(deadline, expire)
            started = time.perf_counter()
            failed = True
            statement = asyncio.ensure_future(work())
            try:
                result = await asyncio.shield(statement)
                failed = False
                return result
            except asyncio.CancelledError:
                timer.cancel()
                self._interrupt(handle)
                await self._settle(handle, statement)
                raise
            except SQLAlchemyError as e:
                await self._recover(handle)
                if expired:
                    raise QueryFailure(handle.name, f"statement exceeded {deadline:.1f}s deadline") from e
                raise QueryFailure(handle.name, _reason(e)) from e
            finally:
                timer.cancel()
                if label is not None:
                    self._record(label, time.perf_counter() - started, failed)

    async def _settle(self, handle: StoreHandle, statement: "asyncio.Future[Any]") -> None:
        """Wait for an abandoned statement to stop, then clean the connection."""
        try:
            await statement
        except SQLAlchemyError as e:
            logger.info(f"Abandoned statement on '{handle.name}' stopped: {_reason(e)}")
        await self._recover(handle)

    async def _recover(self, handle: StoreHandle) -> None:
        """Roll back leftovers of a failed statement; reconnect if invalidated."""
        connection = handle.connection
        if not connection.invalidated:
            try:
                await connection.rollback()
            except SQLAlchemyError as e:
                logger.warning(f"Rollback on '{handle.name}' failed: {_reason(e)}")
        if connection.invalidated:
            try:
                await self._connections.reconnect(handle)
            except QueryFailure as e:
                logger.error(f"Store '{handle.name}' lost: {e}")

    async def _tune(self, handle: StoreHandle, directive: TuningDirective) -> bool:
        try:
            await self._guarded(
                handle,
                lambda: handle.connection.exec_driver_sql(directive.as_pragma()),
                self._timeout,
            )
        except QueryFailure as e:
            logger.info(f"Note: could not apply {directive.as_pragma()} on '{handle.name}': {e}")
            return False
        if directive not in handle.applied_tuning:
            handle.applied_tuning.append(directive)
        return True

    async def _run_one(self, handle: StoreHandle, op: Mutation | Read) -> Any:
        if isinstance(op, Mutation):
            return await self._run_mutation(handle, op)
        return await self._run_read(handle, op)

    async def _run_batch(self, handle: StoreHandle, operations: Sequence[Mutation | Read]) -> list[Any]:
        connection = handle.connection
        await connection.exec_driver_sql("BEGIN")
        results: list[Any] = []
        try:
            for op in operations:
                started = time.perf_counter()
                try:
                    results.append(await self._run_one(handle, op))
                except SQLAlchemyError:
                    self._record(op.sql, time.perf_counter() - started, failed=True)
                    raise
                self._record(op.sql, time.perf_counter() - started)
            await connection.exec_driver_sql("COMMIT")
        except SQLAlchemyError:
            try:
                await connection.exec_driver_sql("ROLLBACK")
            except SQLAlchemyError as e:
                # SQLite already rolled back an interrupted write
                logger.info(f"Batch rollback on '{handle.name}': {_reason(e)}")
            raise
        return results

    async def _run_mutation(self, handle: StoreHandle, op: Mutation) -> MutationResult:
        params: Any = list(op.params) if op.many else (op.params or {})
        result = await handle.connection.execute(text(op.sql), params)
        last_row_id = None if op.many else result.lastrowid
        return MutationResult(rowcount=max(result.rowcount, 0), last_row_id=last_row_id)

    async def _run_read(self, handle: StoreHandle, op: Read) -> dict[str, Any] | list[dict[str, Any]] | None:
        result = await handle.connection.execute(text(op.sql), op.params or {})
        if op.single:
            row = result.mappings().first()
            return dict(row) if row is not None else None
        return [dict(row) for row in result.mappings()]

    def _interrupt(self, handle: StoreHandle) -> None:
        """Abort the statement running in the driver's worker thread."""
        raw = handle.raw_connection
        if raw is None:
            logger.warning(f"Cannot interrupt statement on '{handle.name}': no sqlite3 connection")
            return
        try:
            raw.interrupt()
        except Exception as e:
            logger.warning(f"Could not interrupt statement on '{handle.name}': {e}")
