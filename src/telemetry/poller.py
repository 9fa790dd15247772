"""Fixed-interval polling of the metrics backend.

:class:`PollingScheduler` runs an asyncio fetch-then-wait loop around any
zero-argument async fetch callable, so the same scheduler drives the unified
snapshot endpoint and the per-category endpoints.  Only one fetch is ever in
flight: the interval tick and :meth:`PollingScheduler.refresh_now` share the
same guard.  Failures flip ``connected`` to False and the loop carries on at
the same interval.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Generic, TypeVar

from src.observability.metrics import BACKEND_CONNECTED, POLL_DURATION, POLLS_TOTAL
from src.telemetry.source import ProtocolFailure, SampleFetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_INTERVAL_SECONDS = 0.05


@dataclass(frozen=True, slots=True)
class PollResult(Generic[T]):
    """Outcome of one poll: either a payload or a classified failure."""

    ok: bool
    payload: T | None = None
    failure_kind: str | None = None
    error: str | None = None
    timestamp: datetime | None = None


Subscriber = Callable[[PollResult[T]], None]


def format_update_age(last_update: datetime | None, now: datetime | None = None) -> str:
    """Human-readable age of the last successful update."""
    if last_update is None:
        return "Never updated"
    now = now or datetime.now(UTC)
    seconds = int((now - last_update).total_seconds())
    if seconds < 5:
        return "Just now"
    if seconds < 60:
        return f"{seconds} seconds ago"
    minutes = seconds // 60
    return f"{minutes} minute{'s' if minutes != 1 else ''} ago"


class PollingScheduler(Generic[T]):
    """Drive a fetch callable on a fixed interval and publish the results."""

    def __init__(self, fetch: Callable[[], Awaitable[T]], name: str = "snapshot") -> None:
        self._fetch = fetch
        self._name = name
        self._subscribers: list[Subscriber[T]] = []
        self._task: asyncio.Task[None] | None = None
        self._in_flight = False
        self._running = False
        self._stopped = False
        self._generation = 0
        self._interval = 3.0

        self._connected = False
        self._last_update: datetime | None = None
        self._poll_count = 0
        self._failure_count = 0
        self._latest: T | None = None

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def last_update(self) -> datetime | None:
        return self._last_update

    @property
    def poll_count(self) -> int:
        """Number of successful polls since construction."""
        return self._poll_count

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def latest(self) -> T | None:
        """Payload from the most recent successful poll."""
        return self._latest

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def interval(self) -> float:
        return self._interval

    def last_update_text(self) -> str:
        return format_update_age(self._last_update)

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber[T]) -> Callable[[], None]:
        """Register a subscriber. Returns a callable that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._subscribers.remove(callback)

        return _unsubscribe

    def _publish(self, result: PollResult[T]) -> None:
        for callback in list(self._subscribers):
            try:
                callback(result)
            except Exception:
                logger.exception("Poll subscriber %r failed (%s)", callback, self._name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, interval_seconds: float = 3.0) -> None:
        """Start the fetch-then-wait loop. Must be called from a running event loop."""
        if self._running:
            return
        self._interval = max(MIN_INTERVAL_SECONDS, interval_seconds)
        self._running = True
        self._stopped = False
        self._task = asyncio.get_running_loop().create_task(self._run(self._generation), name=f"poller-{self._name}")
        logger.info("Polling %s every %.1fs", self._name, self._interval)

    async def stop(self) -> None:
        """Cancel the schedule. A fetch already in flight is left to finish but not published."""
        self._running = False
        self._stopped = True
        self._generation += 1
        task, self._task = self._task, None
        if task is None or task.done():
            logger.info("Polling %s stopped", self._name)
            return
        if not self._in_flight:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Polling %s stopped", self._name)

    async def refresh_now(self) -> PollResult[T] | None:
        """Fetch out of band without touching the schedule.

        Returns None (and does nothing) when a fetch is already in flight.
        """
        return await self.poll_once()

    async def _run(self, generation: int) -> None:
        # A loop whose generation is stale exits after its outstanding fetch
        while generation == self._generation:
            _ = await self._poll(generation)
            if generation != self._generation:
                break
            await asyncio.sleep(self._interval)

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    async def poll_once(self) -> PollResult[T] | None:
        """Run a single guarded fetch and publish its outcome."""
        return await self._poll(self._generation)

    async def _poll(self, generation: int) -> PollResult[T] | None:
        if self._in_flight:
            logger.debug("Poll of %s skipped: fetch already in flight", self._name)
            return None

        self._in_flight = True
        start = time.monotonic()
        try:
            result = await self._fetch_result()
        finally:
            self._in_flight = False
            POLL_DURATION.labels(source=self._name).observe(time.monotonic() - start)

        if self._stopped or generation != self._generation:
            # stop() was called while this fetch was outstanding
            logger.debug("Discarding %s poll result that arrived after stop()", self._name)
            return None

        self._record(result)
        self._publish(result)
        return result

    async def _fetch_result(self) -> PollResult[T]:
        now = datetime.now(UTC)
        try:
            payload = await self._fetch()
        except asyncio.CancelledError:
            raise
        except ProtocolFailure as e:
            logger.warning("Poll of %s failed with HTTP error %d: %s", self._name, e.status_code, e)
            return PollResult(ok=False, failure_kind=e.kind, error=str(e), timestamp=now)
        except SampleFetchError as e:
            if e.kind == "transport":
                logger.warning("Poll of %s got no response: %s", self._name, e)
            else:
                logger.warning("Poll of %s returned an unparseable body: %s", self._name, e)
            return PollResult(ok=False, failure_kind=e.kind, error=str(e), timestamp=now)
        except Exception as e:
            logger.exception("Unexpected error while polling %s", self._name)
            return PollResult(ok=False, failure_kind="unknown", error=str(e), timestamp=now)
        return PollResult(ok=True, payload=payload, timestamp=datetime.now(UTC))

    def _record(self, result: PollResult[T]) -> None:
        if result.ok:
            self._connected = True
            self._last_update = result.timestamp
            self._poll_count += 1
            self._latest = result.payload
            POLLS_TOTAL.labels(source=self._name, outcome="success").inc()
            BACKEND_CONNECTED.labels(source=self._name).set(1)
            if self._poll_count <= 3:
                logger.info("Poll #%d of %s succeeded", self._poll_count, self._name)
        else:
            self._connected = False
            self._failure_count += 1
            POLLS_TOTAL.labels(source=self._name, outcome=result.failure_kind or "unknown").inc()
            BACKEND_CONNECTED.labels(source=self._name).set(0)
