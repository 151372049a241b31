"""Failure taxonomy for the data-access core.

Every failure surfaced by the stores, the executor or ingestion is exactly one
of these kinds, so callers can map it to a response:

- OpenFailure: store missing or rejected at startup (fatal only when required)
- TuningFailure: a tuning directive was rejected (always logged and swallowed)
- QueryFailure: malformed statement, constraint violation, I/O error, timeout
- StoreUnavailable: the domain's store is absent or closed; nothing was run
- FetchFailure: transport-level failure talking to an external source
- StoreFailure: ingested records could not be persisted
"""

from typing import Any


class CoreError(RuntimeError):
    """Base class for classified core failures."""

    code = "CORE_ERROR"
    # attributes echoed in the API error body
    context_fields: tuple[str, ...] = ()

    @property
    def context(self) -> dict[str, Any]:
        """What failed (store, source, ...), without unset values."""
        values = {name: getattr(self, name, None) for name in self.context_fields}
        return {name: value for name, value in values.items() if value is not None}


class OpenFailure(CoreError):
    code = "OPEN_FAILURE"
    context_fields = ("store",)

    def __init__(self, store: str, path: str, reason: str):
        super().__init__(f"Cannot open store '{store}' at {path}: {reason}")
        self.store = store
        self.path = path
        self.reason = reason


class TuningFailure(CoreError):
    code = "TUNING_FAILURE"
    context_fields = ("store", "directive")

    def __init__(self, store: str, directive: str, reason: str):
        super().__init__(f"Could not apply {directive} on '{store}': {reason}")
        self.store = store
        self.directive = directive


class QueryFailure(CoreError):
    code = "QUERY_FAILURE"
    context_fields = ("store",)

    def __init__(self, store: str, message: str):
        super().__init__(f"Query on '{store}' failed: {message}")
        self.store = store


class StoreUnavailable(CoreError):
    code = "STORE_UNAVAILABLE"
    context_fields = ("store",)

    def __init__(self, store: str):
        super().__init__(f"Store '{store}' is not available")
        self.store = store


class FetchFailure(CoreError):
    code = "FETCH_FAILURE"
    context_fields = ("source", "status_code", "retry_after")

    def __init__(
        self,
        source: str,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(f"Fetch from {source} failed: {message}")
        self.source = source
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        """Network errors, 429 and 5xx are worth retrying; other 4xx are not."""
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class StoreFailure(CoreError):
    code = "STORE_FAILURE"
    context_fields = ("source",)

    def __init__(self, source: str, message: str):
        super().__init__(f"Storing records from {source} failed: {message}")
        self.source = source
