"""Tests for rolling history buffers and the snapshot-fed recorder."""

from datetime import UTC, datetime, timedelta

import pytest

from src.telemetry.history import HistoryBuffer, HistoryRecorder
from src.telemetry.models import Snapshot
from src.telemetry.poller import PollResult

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


class TestHistoryBuffer:
    def test_keeps_n_most_recent_in_order(self) -> None:
        buffer = HistoryBuffer(5)
        for i in range(12):
            buffer.push(T0 + timedelta(seconds=i), float(i))

        assert len(buffer) == 5
        assert buffer.values() == [7.0, 8.0, 9.0, 10.0, 11.0]
        points = buffer.snapshot()
        assert points[0].timestamp == T0 + timedelta(seconds=7)
        assert points[-1].timestamp == T0 + timedelta(seconds=11)

    def test_never_exceeds_capacity(self) -> None:
        buffer = HistoryBuffer(3)
        for i in range(100):
            buffer.push(T0, i)
            assert len(buffer) <= 3

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            _ = HistoryBuffer(0)

    def test_non_finite_values_stored_as_zero(self) -> None:
        buffer = HistoryBuffer(5)
        buffer.push(T0, float("nan"))
        buffer.push(T0, float("inf"))
        buffer.push(T0, "not a number")  # type: ignore[arg-type]
        assert buffer.values() == [0.0, 0.0, 0.0]

    def test_future_timestamp_clamped_to_now(self) -> None:
        buffer = HistoryBuffer(5)
        buffer.push(datetime.now(UTC) + timedelta(days=1), 1.0)
        latest = buffer.latest()
        assert latest is not None
        assert latest.timestamp <= datetime.now(UTC)

    def test_naive_timestamp_treated_as_utc(self) -> None:
        buffer = HistoryBuffer(5)
        buffer.push(datetime(2024, 1, 1, 12, 0, 0), 1.0)
        latest = buffer.latest()
        assert latest is not None
        assert latest.timestamp == T0

    def test_snapshot_is_a_copy(self) -> None:
        buffer = HistoryBuffer(5)
        buffer.push(T0, 1.0)
        copy = buffer.snapshot()
        buffer.push(T0, 2.0)
        assert len(copy) == 1

    def test_helpers(self) -> None:
        buffer = HistoryBuffer(5)
        assert buffer.latest() is None
        assert buffer.mean() == 0.0
        assert buffer.peak() == 0.0
        for value in (10.0, 30.0, 20.0):
            buffer.push(T0, value)
        assert buffer.mean() == 20.0
        assert buffer.peak() == 30.0
        buffer.clear()
        assert len(buffer) == 0
        assert buffer.capacity == 5


class TestHistoryRecorder:
    def test_records_every_series(self, snapshot: Snapshot) -> None:
        recorder = HistoryRecorder(capacity=20, core_capacity=10)
        recorder.record(snapshot, T0)

        views = recorder.views()
        assert views["cpu"][0].value == 75.5
        assert views["memory"][0].value == 62.0
        assert views["temperature"][0].value == 55.0
        assert views["network_upload"][0].value == pytest.approx(130.5)
        assert views["network_download"][0].value == pytest.approx(1000.0)
        assert views["cpu_core_3"][0].value == 77.0

    def test_core_series_created_lazily_with_own_capacity(self, snapshot: Snapshot) -> None:
        recorder = HistoryRecorder(capacity=20, core_capacity=10)
        assert "cpu_core_0" not in recorder.names()

        for _ in range(15):
            recorder.record(snapshot, T0)

        core = recorder.series("cpu_core_0")
        cpu = recorder.series("cpu")
        assert core is not None and cpu is not None
        assert core.capacity == 10
        assert len(core) == 10
        assert len(cpu) == 15

    def test_on_poll_ignores_failures(self, snapshot: Snapshot) -> None:
        recorder = HistoryRecorder()
        recorder.on_poll(PollResult(ok=False, failure_kind="transport", error="down", timestamp=T0))
        assert all(len(points) == 0 for points in recorder.views().values())

        recorder.on_poll(PollResult(ok=True, payload=snapshot, timestamp=T0))
        cpu = recorder.series("cpu")
        assert cpu is not None and len(cpu) == 1

    def test_unknown_series(self) -> None:
        assert HistoryRecorder().series("gpu") is None

    def test_clear(self, snapshot: Snapshot) -> None:
        recorder = HistoryRecorder()
        recorder.record(snapshot, T0)
        recorder.clear()
        assert all(len(points) == 0 for points in recorder.views().values())
