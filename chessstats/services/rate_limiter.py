"""Per-source fixed-delay throttle for outbound requests.

Each external source gets a strict minimum spacing between request starts.
There is no burst capacity. The limiter only delays, it never rejects.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping

logger = logging.getLogger("uvicorn.error")


@dataclass
class RateLimitState:
    min_delay: float  # seconds
    last_request: float | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class RateLimiter:
    """Keyed registry of per-source schedules."""

    def __init__(
        self,
        delays_ms: Mapping[str, int] | None = None,
        default_delay_ms: int = 1000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._default_delay = default_delay_ms / 1000.0
        self._states: dict[str, RateLimitState] = {
            source: RateLimitState(min_delay=ms / 1000.0) for source, ms in (delays_ms or {}).items()
        }
        self._clock = clock
        self._sleep = sleep

    def configure(self, source: str, min_delay_ms: int) -> None:
        state = self._state(source)
        state.min_delay = min_delay_ms / 1000.0

    def delay_for(self, source: str) -> float:
        """Minimum spacing for `source`, in seconds."""
        state = self._states.get(source)
        return state.min_delay if state else self._default_delay

    async def acquire(self, source: str) -> float:
        """Wait until a request to `source` is permitted.

        Returns:
            Seconds spent waiting.
        """
        state = self._state(source)
        async with state.lock:
            waited = 0.0
            if state.last_request is not None:
                deadline = state.last_request + state.min_delay
                remaining = deadline - self._clock()
                # Loop: the event loop may wake us marginally early
                while remaining > 0:
                    await self._sleep(remaining)
                    waited += remaining
                    remaining = deadline - self._clock()
            state.last_request = self._clock()
        if waited:
            logger.debug(f"Throttled {source} request by {waited * 1000:.0f}ms")
        return waited

    def _state(self, source: str) -> RateLimitState:
        state = self._states.get(source)
        if state is None:
            state = RateLimitState(min_delay=self._default_delay)
            self._states[source] = state
        return state
