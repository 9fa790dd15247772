"""Tests for the terminal watcher."""

import sys
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.cli import _status_line, main
from src.insights.coordinator import InsightRequestCoordinator
from src.monitor import HostMonitor
from src.telemetry.history import HistoryRecorder
from src.telemetry.models import Snapshot
from src.telemetry.poller import PollResult
from src.telemetry.source import HttpSampleSource


def _monitor(snapshot: Snapshot, **kwargs: Any) -> HostMonitor:
    source = MagicMock(spec=HttpSampleSource)
    source.fetch_snapshot = AsyncMock(return_value=snapshot)
    source.fetch_category = AsyncMock(side_effect=lambda name: getattr(snapshot, name))
    return HostMonitor(source, InsightRequestCoordinator(None), HistoryRecorder(), **kwargs)


class TestStatusLine:
    async def test_connected(self, snapshot: Snapshot) -> None:
        monitor = _monitor(snapshot)
        result = await monitor.poller.poll_once()
        assert result is not None

        line = _status_line(monitor, result)

        assert line.startswith("[WARNING] CPU  75.5%  MEM  62.0%")
        assert "procs 212" in line
        assert "0 critical / 2 warning" in line

    def test_disconnected(self, snapshot: Snapshot) -> None:
        monitor = _monitor(snapshot)
        result: PollResult[Snapshot] = PollResult(ok=False, failure_kind="transport", error="Connection refused")
        assert _status_line(monitor, result) == "[disconnected] transport: Connection refused"

    async def test_categories_mode_follows_dashboard_poller(self, snapshot: Snapshot) -> None:
        monitor = _monitor(snapshot, category_intervals={"dashboard": 3.0, "alerts": 3.0}, polling_mode="categories")
        lines: list[str] = []
        _ = monitor.subscribe(lambda result: lines.append(_status_line(monitor, result)))

        _ = await monitor.refresh()

        assert len(lines) == 1
        assert lines[0].startswith("[WARNING] CPU  75.5%")
        monitor.source.fetch_snapshot.assert_not_called()


class TestMain:
    async def test_starts_monitor_in_configured_mode(self, mock_settings: Any) -> None:  # noqa: ARG002 - mock_settings activates patches
        monitor = MagicMock(spec=HostMonitor)
        monitor.stop = AsyncMock()
        with (
            patch("src.cli.create_monitor", return_value=monitor),
            patch.object(sys, "argv", ["src.cli"]),
            patch("src.cli.asyncio.sleep", AsyncMock(side_effect=RuntimeError("interrupted"))),
            pytest.raises(RuntimeError),
        ):
            await main()

        monitor.subscribe.assert_called_once()
        monitor.start.assert_called_once_with()
        monitor.stop.assert_awaited_once()
