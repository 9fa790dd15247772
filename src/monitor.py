"""Composition root: wires the metrics source, pollers, history, alerts and AI analysis.

``create_monitor(settings)`` is the only place that reads configuration; every
component below it receives plain values.  The resulting :class:`HostMonitor`
exposes read-only views for the API layer.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from src.alerts.classifier import (
    DEFAULT_THRESHOLDS,
    AlertClassification,
    AlertStatistics,
    AlertThresholds,
    alert_statistics,
    classify,
    derive_local_alerts,
    overall_status,
)
from src.config import Settings
from src.insights.coordinator import InsightRequestCoordinator
from src.insights.llm import create_completion_service
from src.insights.models import InsightRecord, ProcessPrediction
from src.risk.scorer import risk_level, score
from src.telemetry.history import HistoryRecorder
from src.telemetry.models import AlertRecord, ProcessSample, Snapshot
from src.telemetry.poller import PollingScheduler, PollResult, Subscriber, format_update_age
from src.telemetry.source import HttpSampleSource

logger = logging.getLogger(__name__)

DASHBOARD_CATEGORY = "dashboard"


class HostMonitor:
    """Owns the live monitoring state for one metrics backend.

    In ``snapshot`` mode a single poller fetches the unified snapshot.  In
    ``categories`` mode every section is polled on its own cadence and the
    current snapshot is assembled from the latest section payloads.
    """

    def __init__(
        self,
        source: HttpSampleSource,
        coordinator: InsightRequestCoordinator,
        history: HistoryRecorder,
        poll_interval: float = 3.0,
        category_intervals: dict[str, float] | None = None,
        polling_mode: str = "snapshot",
        thresholds: AlertThresholds = DEFAULT_THRESHOLDS,
        batch_limit: int = 5,
    ) -> None:
        self.source = source
        self.coordinator = coordinator
        self.history = history
        self.thresholds = thresholds
        self.polling_mode = polling_mode
        self.batch_limit = batch_limit
        self._poll_interval = poll_interval
        self._category_intervals = category_intervals or {}

        self.poller: PollingScheduler[Snapshot] = PollingScheduler(source.fetch_snapshot, name="snapshot")
        _ = self.poller.subscribe(history.on_poll)

        self.category_pollers: dict[str, PollingScheduler[Any]] = {}
        if polling_mode == "categories":
            for name in self._category_intervals:
                self.category_pollers[name] = PollingScheduler(self._category_fetcher(name), name=name)
            dashboard = self.category_pollers.get(DASHBOARD_CATEGORY)
            if dashboard is not None:
                _ = dashboard.subscribe(self._on_dashboard_poll)

    def _category_fetcher(self, name: str) -> Any:
        async def _fetch() -> Any:
            return await self.source.fetch_category(name)

        return _fetch

    def _on_dashboard_poll(self, result: PollResult[Any]) -> None:
        if not result.ok:
            return
        snapshot = self.current_snapshot()
        if snapshot is not None:
            self.history.record(snapshot, result.timestamp)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.category_pollers:
            for name, poller in self.category_pollers.items():
                poller.start(self._category_intervals.get(name, self._poll_interval))
        else:
            self.poller.start(self._poll_interval)

    async def stop(self) -> None:
        await self.poller.stop()
        for poller in self.category_pollers.values():
            await poller.stop()

    async def refresh(self) -> bool:
        """Out-of-band fetch. Returns False when nothing was fetched or the fetch failed."""
        if self.category_pollers:
            results = [await poller.refresh_now() for poller in self.category_pollers.values()]
            return any(result is not None and result.ok for result in results)
        result = await self.poller.refresh_now()
        return result is not None and result.ok

    def subscribe(self, callback: Subscriber[Snapshot]) -> Callable[[], None]:
        """Register a callback for every snapshot-level poll outcome.

        In categories mode the dashboard poll drives it and successful results
        carry the assembled snapshot.  Returns a callable that unsubscribes it.
        """
        dashboard = self.category_pollers.get(DASHBOARD_CATEGORY)
        if dashboard is None:
            return self.poller.subscribe(callback)

        def _forward(result: PollResult[Any]) -> None:
            if result.ok:
                result = PollResult(ok=True, payload=self.current_snapshot(), timestamp=result.timestamp)
            callback(result)

        return dashboard.subscribe(_forward)

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        if self.category_pollers:
            return any(poller.connected for poller in self.category_pollers.values())
        return self.poller.connected

    @property
    def last_update(self) -> datetime | None:
        if self.category_pollers:
            updates = [p.last_update for p in self.category_pollers.values() if p.last_update is not None]
            return max(updates, default=None)
        return self.poller.last_update

    @property
    def poll_count(self) -> int:
        if self.category_pollers:
            return sum(poller.poll_count for poller in self.category_pollers.values())
        return self.poller.poll_count

    def last_update_text(self) -> str:
        return format_update_age(self.last_update)

    # ------------------------------------------------------------------
    # Snapshot views
    # ------------------------------------------------------------------

    def current_snapshot(self) -> Snapshot | None:
        """Latest snapshot, or None before the first successful poll."""
        if not self.category_pollers:
            return self.poller.latest

        sections = {name: poller.latest for name, poller in self.category_pollers.items()}
        if all(value is None for value in sections.values()):
            return None
        return Snapshot.model_validate(
            {name: value for name, value in sections.items() if value is not None},
        )

    def active_alerts(self, include_local: bool = False) -> list[AlertRecord]:
        """Backend alerts from the latest snapshot, optionally merged with locally derived ones.

        Local alerts are only added for types the backend did not report.
        """
        snapshot = self.current_snapshot()
        if snapshot is None:
            return []
        alerts = list(snapshot.alerts)
        if include_local:
            reported = {alert.type for alert in alerts}
            alerts.extend(
                alert for alert in derive_local_alerts(snapshot, self.thresholds) if alert.type not in reported
            )
        return alerts

    def alert_classification(self, include_local: bool = False) -> AlertClassification:
        return classify(self.active_alerts(include_local))

    def alert_statistics(self, include_local: bool = False) -> AlertStatistics:
        return alert_statistics(self.active_alerts(include_local))

    def status(self) -> str:
        """Backend-reported status, or one computed from CPU and memory when absent."""
        snapshot = self.current_snapshot()
        if snapshot is None:
            return "UNKNOWN"
        reported = snapshot.dashboard.status
        if reported and reported != "UNKNOWN":
            return reported
        return overall_status(snapshot.dashboard.cpu_usage, snapshot.dashboard.memory_usage, self.thresholds)

    def process_risks(self) -> list[dict[str, Any]]:
        """Risk score and level per process, riskiest first."""
        snapshot = self.current_snapshot()
        if snapshot is None:
            return []
        rows = [
            {
                "pid": proc.pid,
                "name": proc.name,
                "score": score(proc),
                "level": risk_level(score(proc)),
                "analyzing": proc.pid in self.coordinator.analyzing,
            }
            for proc in snapshot.processes
        ]
        rows.sort(key=lambda row: row["score"], reverse=True)
        return rows

    def find_process(self, pid: int) -> ProcessSample | None:
        snapshot = self.current_snapshot()
        return snapshot.process(pid) if snapshot is not None else None

    # ------------------------------------------------------------------
    # AI analysis
    # ------------------------------------------------------------------

    async def analyze_system(self) -> InsightRecord | None:
        """Analyze the current snapshot. None before the first successful poll."""
        snapshot = self.current_snapshot()
        if snapshot is None:
            return None
        return await self.coordinator.analyze_system(snapshot)

    async def analyze_process(self, pid: int) -> list[ProcessPrediction] | None:
        """Analyze one process from the current snapshot. None if the pid is unknown."""
        snapshot = self.current_snapshot()
        process = snapshot.process(pid) if snapshot is not None else None
        if process is None:
            return None
        return await self.coordinator.analyze_process(process, snapshot)

    async def analyze_high_risk(self) -> dict[int, list[ProcessPrediction]]:
        snapshot = self.current_snapshot()
        if snapshot is None:
            return {}
        return await self.coordinator.analyze_all_high_risk(snapshot, limit=self.batch_limit)


def create_monitor(settings: Settings) -> HostMonitor:
    """Build a HostMonitor from settings.

    Args:
        settings: Application settings (backend URL, cadences, capacities, AI config).

    Returns:
        A HostMonitor ready to be started from a running event loop.
    """
    source = HttpSampleSource(settings.metrics_api_url, timeout=settings.metrics_timeout_seconds)
    coordinator = InsightRequestCoordinator(
        create_completion_service(settings),
        timeout_seconds=settings.ai_timeout_seconds,
    )
    history = HistoryRecorder(settings.history_capacity, settings.core_history_capacity)
    category_intervals = {
        "dashboard": settings.poll_interval_seconds,
        "cpu": settings.cpu_poll_interval_seconds,
        "memory": settings.memory_poll_interval_seconds,
        "disks": settings.disk_poll_interval_seconds,
        "networks": settings.poll_interval_seconds,
        "processes": settings.process_poll_interval_seconds,
        "alerts": settings.alert_poll_interval_seconds,
    }
    logger.info("Monitoring %s in %s mode", settings.metrics_api_url, settings.polling_mode)
    return HostMonitor(
        source,
        coordinator,
        history,
        poll_interval=settings.poll_interval_seconds,
        category_intervals=category_intervals,
        polling_mode=settings.polling_mode,
        batch_limit=settings.high_risk_batch_limit,
    )
