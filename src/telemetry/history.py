"""Fixed-capacity rolling history for chart series."""

import logging
import math
from collections import deque
from datetime import UTC, datetime
from typing import NamedTuple

from src.telemetry.models import Snapshot
from src.telemetry.poller import PollResult

logger = logging.getLogger(__name__)


class HistoryPoint(NamedTuple):
    timestamp: datetime
    value: float


class HistoryBuffer:
    """FIFO ring of ``(timestamp, value)`` samples with a fixed capacity.

    Non-finite values are stored as 0 and timestamps later than "now" are
    clamped to the current time, so a series never holds NaN or future points.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"History capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._points: deque[HistoryPoint] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._points)

    def push(self, timestamp: datetime, value: float) -> None:
        """Append a sample, evicting the oldest one when full."""
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = 0.0
        if not math.isfinite(number):
            number = 0.0

        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        now = datetime.now(UTC)
        if timestamp > now:
            timestamp = now

        self._points.append(HistoryPoint(timestamp, number))

    def snapshot(self) -> tuple[HistoryPoint, ...]:
        """Current samples, oldest first."""
        return tuple(self._points)

    def values(self) -> list[float]:
        return [point.value for point in self._points]

    def latest(self) -> HistoryPoint | None:
        return self._points[-1] if self._points else None

    def mean(self) -> float:
        if not self._points:
            return 0.0
        return sum(point.value for point in self._points) / len(self._points)

    def peak(self) -> float:
        return max((point.value for point in self._points), default=0.0)

    def clear(self) -> None:
        self._points.clear()


# ---------------------------------------------------------------------------
# Snapshot-fed series
# ---------------------------------------------------------------------------

CPU_SERIES = "cpu"
MEMORY_SERIES = "memory"
TEMPERATURE_SERIES = "temperature"
UPLOAD_SERIES = "network_upload"
DOWNLOAD_SERIES = "network_download"
CORE_SERIES_PREFIX = "cpu_core_"


class HistoryRecorder:
    """Owns one HistoryBuffer per series and feeds them from polled snapshots.

    Per-core series are created the first time a snapshot reports that core.
    Subscribe :meth:`on_poll` to a snapshot PollingScheduler.
    """

    def __init__(self, capacity: int = 20, core_capacity: int = 10) -> None:
        self._capacity = capacity
        self._core_capacity = core_capacity
        self._series: dict[str, HistoryBuffer] = {
            name: HistoryBuffer(capacity)
            for name in (CPU_SERIES, MEMORY_SERIES, TEMPERATURE_SERIES, UPLOAD_SERIES, DOWNLOAD_SERIES)
        }

    def on_poll(self, result: PollResult[Snapshot]) -> None:
        if result.ok and result.payload is not None:
            self.record(result.payload, result.timestamp)

    def record(self, snapshot: Snapshot, timestamp: datetime | None = None) -> None:
        """Push one sample per series from a snapshot."""
        ts = timestamp or snapshot.received_at
        self._series[CPU_SERIES].push(ts, snapshot.dashboard.cpu_usage)
        self._series[MEMORY_SERIES].push(ts, snapshot.dashboard.memory_usage)
        self._series[TEMPERATURE_SERIES].push(ts, snapshot.dashboard.cpu_temperature)
        self._series[UPLOAD_SERIES].push(ts, sum(n.upload_speed for n in snapshot.networks))
        self._series[DOWNLOAD_SERIES].push(ts, sum(n.download_speed for n in snapshot.networks))

        for index, usage in enumerate(snapshot.cpu.per_core_usage):
            name = f"{CORE_SERIES_PREFIX}{index}"
            if name not in self._series:
                self._series[name] = HistoryBuffer(self._core_capacity)
                logger.debug("Created history series %s", name)
            self._series[name].push(ts, usage)

    def series(self, name: str) -> HistoryBuffer | None:
        return self._series.get(name)

    def names(self) -> list[str]:
        return sorted(self._series)

    def views(self) -> dict[str, tuple[HistoryPoint, ...]]:
        """Read-only copies of every series."""
        return {name: buffer.snapshot() for name, buffer in self._series.items()}

    def clear(self) -> None:
        for buffer in self._series.values():
            buffer.clear()
