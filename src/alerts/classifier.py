"""Alert classification, hourly trend statistics and local threshold checks."""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Literal, TypedDict

from src.telemetry.models import AlertLevel, AlertRecord, Snapshot

ALL_LEVELS = "ALL"
TREND_WINDOW_BUCKETS = 6

LevelFilter = AlertLevel | Literal["ALL"]


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AlertClassification:
    """Alerts grouped by level. Every level is present in ``counts_by_level``."""

    alerts: tuple[AlertRecord, ...]
    counts_by_level: dict[AlertLevel, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.alerts)

    @property
    def critical(self) -> int:
        return self.counts_by_level.get(AlertLevel.CRITICAL, 0)

    @property
    def warning(self) -> int:
        return self.counts_by_level.get(AlertLevel.WARNING, 0)

    @property
    def info(self) -> int:
        return self.counts_by_level.get(AlertLevel.INFO, 0)

    def filtered(self, level: LevelFilter | str = ALL_LEVELS) -> list[AlertRecord]:
        """Active alerts at the selected level, or all of them for ``"ALL"``."""
        selected = str(level).upper()
        if selected == ALL_LEVELS:
            return list(self.alerts)
        return [alert for alert in self.alerts if alert.level == selected]


def classify(alerts: Iterable[AlertRecord]) -> AlertClassification:
    """Group alerts by level and count CRITICAL / WARNING / INFO."""
    items = tuple(alerts)
    counts = {level: 0 for level in AlertLevel}
    for alert in items:
        counts[alert.level] += 1
    return AlertClassification(alerts=items, counts_by_level=counts)


# ---------------------------------------------------------------------------
# Trend and hourly statistics
# ---------------------------------------------------------------------------


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def trend(hourly_counts: Sequence[float]) -> float:
    """Percent change of the last 6 buckets' mean versus the 6 before them.

    Each mean is taken over the buckets actually present.  A zero (or missing)
    earlier mean yields 0 rather than an infinite change.
    """
    recent = hourly_counts[-TREND_WINDOW_BUCKETS:]
    previous = hourly_counts[-2 * TREND_WINDOW_BUCKETS : -TREND_WINDOW_BUCKETS]
    previous_mean = _mean(previous)
    if previous_mean == 0:
        return 0.0
    change = (_mean(recent) - previous_mean) / previous_mean * 100
    return round(change, 1)


class HourlyBucket(TypedDict):
    hour_start: datetime
    critical: int
    warning: int
    info: int
    total: int


class AlertStatistics(TypedDict):
    trend: float
    average_per_hour: float
    peak_hour: datetime | None
    peak_count: int


def bucket_by_hour(
    alerts: Iterable[AlertRecord],
    hours: int = 24,
    now: datetime | None = None,
) -> list[HourlyBucket]:
    """Count alerts per clock hour over the trailing window, oldest bucket first."""
    now = now or datetime.now(UTC)
    current_hour = now.astimezone(UTC).replace(minute=0, second=0, microsecond=0)
    buckets: list[HourlyBucket] = [
        HourlyBucket(
            hour_start=current_hour - timedelta(hours=offset),
            critical=0,
            warning=0,
            info=0,
            total=0,
        )
        for offset in range(hours - 1, -1, -1)
    ]
    index = {bucket["hour_start"]: bucket for bucket in buckets}

    for alert in alerts:
        hour = alert.timestamp.astimezone(UTC).replace(minute=0, second=0, microsecond=0)
        bucket = index.get(hour)
        if bucket is None:
            continue
        key = alert.level.value.lower()
        bucket[key] += 1  # type: ignore[literal-required]
        bucket["total"] += 1

    return buckets


def alert_statistics(alerts: Sequence[AlertRecord], now: datetime | None = None) -> AlertStatistics:
    """Trend, average alerts per hour and busiest hour over the last 24 hours."""
    if not alerts:
        return AlertStatistics(trend=0.0, average_per_hour=0.0, peak_hour=None, peak_count=0)

    buckets = bucket_by_hour(alerts, now=now)
    totals = [bucket["total"] for bucket in buckets]
    peak = max(buckets, key=lambda b: b["total"])
    return AlertStatistics(
        trend=trend(totals),
        average_per_hour=round(_mean(totals), 2),
        peak_hour=peak["hour_start"] if peak["total"] > 0 else None,
        peak_count=peak["total"],
    )


# ---------------------------------------------------------------------------
# Local threshold checks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AlertThresholds:
    cpu_critical: float = 90.0
    cpu_warning: float = 70.0
    memory_critical: float = 90.0
    memory_warning: float = 80.0
    temperature_critical: float = 80.0
    temperature_warning: float = 70.0
    disk_critical: float = 95.0
    disk_warning: float = 90.0
    process_count_warning: int = 300


DEFAULT_THRESHOLDS = AlertThresholds()


def _tiered_alert(
    kind: str,
    value: float,
    critical: float,
    warning: float,
    critical_message: str,
    warning_message: str,
    timestamp: datetime,
) -> AlertRecord | None:
    if value >= critical:
        return AlertRecord(
            type=kind,
            level=AlertLevel.CRITICAL,
            message=critical_message,
            value=value,
            threshold=critical,
            timestamp=timestamp,
        )
    if value >= warning:
        return AlertRecord(
            type=kind,
            level=AlertLevel.WARNING,
            message=warning_message,
            value=value,
            threshold=warning,
            timestamp=timestamp,
        )
    return None


def derive_local_alerts(
    snapshot: Snapshot,
    thresholds: AlertThresholds = DEFAULT_THRESHOLDS,
    now: datetime | None = None,
) -> list[AlertRecord]:
    """Derive threshold-crossing alerts from raw snapshot values."""
    now = now or datetime.now(UTC)
    dashboard = snapshot.dashboard
    candidates: list[AlertRecord | None] = [
        _tiered_alert(
            "CPU",
            dashboard.cpu_usage,
            thresholds.cpu_critical,
            thresholds.cpu_warning,
            f"CPU usage critical: {dashboard.cpu_usage:.1f}%",
            f"CPU usage high: {dashboard.cpu_usage:.1f}%",
            now,
        ),
        _tiered_alert(
            "MEMORY",
            dashboard.memory_usage,
            thresholds.memory_critical,
            thresholds.memory_warning,
            f"Memory usage critical: {dashboard.memory_usage:.1f}%",
            f"Memory usage high: {dashboard.memory_usage:.1f}%",
            now,
        ),
    ]

    # Sensors that are missing report 0
    if dashboard.cpu_temperature > 0:
        candidates.append(
            _tiered_alert(
                "TEMPERATURE",
                dashboard.cpu_temperature,
                thresholds.temperature_critical,
                thresholds.temperature_warning,
                f"CPU temperature critical: {dashboard.cpu_temperature:.1f}°C",
                f"CPU temperature high: {dashboard.cpu_temperature:.1f}°C",
                now,
            )
        )

    for disk in snapshot.disks:
        candidates.append(
            _tiered_alert(
                "DISK",
                disk.usage_percentage,
                thresholds.disk_critical,
                thresholds.disk_warning,
                f"Disk {disk.name} critical: {disk.usage_percentage:.1f}% full",
                f"Disk {disk.name} almost full: {disk.usage_percentage:.1f}% full",
                now,
            )
        )

    process_count = dashboard.running_processes or len(snapshot.processes)
    if process_count > thresholds.process_count_warning:
        candidates.append(
            AlertRecord(
                type="PROCESSES",
                level=AlertLevel.WARNING,
                message=f"High process count: {process_count}",
                value=process_count,
                threshold=thresholds.process_count_warning,
                timestamp=now,
            )
        )

    return [alert for alert in candidates if alert is not None]


def overall_status(
    cpu_usage: float,
    memory_usage: float,
    thresholds: AlertThresholds = DEFAULT_THRESHOLDS,
) -> str:
    """Collapse CPU and memory usage into HEALTHY / WARNING / CRITICAL."""
    if cpu_usage >= thresholds.cpu_critical or memory_usage >= thresholds.memory_critical:
        return "CRITICAL"
    if cpu_usage >= thresholds.cpu_warning or memory_usage >= thresholds.memory_warning:
        return "WARNING"
    return "HEALTHY"
