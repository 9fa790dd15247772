"""Pydantic models for metrics snapshots served by the monitoring backend.

The backend speaks camelCase JSON; every model accepts both the wire aliases
and the snake_case field names.  Numeric fields are coerced at the boundary:
null, non-numeric and non-finite values become 0 so downstream code never
sees NaN or None.
"""

import math
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _coerce_float(value: Any) -> float:
    """Coerce a loosely-typed JSON value to a finite float (0.0 on failure)."""
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _coerce_int(value: Any) -> int:
    return int(_coerce_float(value))


def _none_as_empty(value: Any) -> Any:
    return [] if value is None else value


def _coerce_str(value: Any) -> str:
    return "" if value is None else str(value)


SafeFloat = Annotated[float, BeforeValidator(_coerce_float)]
SafeInt = Annotated[int, BeforeValidator(_coerce_int)]
SafeStr = Annotated[str, BeforeValidator(_coerce_str)]


class _WireModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


class AlertLevel(StrEnum):
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    INFO = "INFO"


def parse_alert_timestamp(value: Any) -> datetime:
    """Normalize an alert timestamp to an aware UTC datetime.

    The backend sends epoch milliseconds; ISO 8601 strings and datetimes are
    accepted too.  Anything unparseable falls back to the current time.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return datetime.now(UTC)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return parse_alert_timestamp(float(text))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(UTC)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return datetime.now(UTC)


class AlertRecord(_WireModel):
    """A single alert, either reported by the backend or derived locally."""

    type: SafeStr = "UNKNOWN"
    level: AlertLevel = AlertLevel.INFO
    message: SafeStr = ""
    value: SafeFloat = 0.0
    threshold: SafeFloat = 0.0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> AlertLevel:
        try:
            return AlertLevel(str(value).strip().upper())
        except ValueError:
            return AlertLevel.INFO

    @field_validator("timestamp", mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: Any) -> datetime:
        return parse_alert_timestamp(value)


# ---------------------------------------------------------------------------
# Snapshot sections
# ---------------------------------------------------------------------------


class DashboardSummary(_WireModel):
    status: SafeStr = "UNKNOWN"
    cpu_usage: SafeFloat = 0.0
    memory_usage: SafeFloat = 0.0
    cpu_temperature: SafeFloat = 0.0
    system_uptime: SafeStr = ""
    running_processes: SafeInt = 0


class CpuDetails(_WireModel):
    name: SafeStr = ""
    physical_cores: SafeInt = 0
    logical_cores: SafeInt = 0
    current_frequency: SafeStr = ""
    max_frequency: SafeStr = ""
    per_core_usage: Annotated[tuple[SafeFloat, ...], BeforeValidator(_none_as_empty)] = ()
    load_averages: Annotated[tuple[SafeFloat, ...], BeforeValidator(_none_as_empty)] = ()
    cpu_ticks: dict[str, SafeInt] = Field(default_factory=dict)

    @field_validator("cpu_ticks", mode="before")
    @classmethod
    def _ticks_or_empty(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}


class MemoryDetails(_WireModel):
    total: SafeInt = 0
    used: SafeInt = 0
    available: SafeInt = 0
    cached: SafeInt = 0
    usage_percentage: SafeFloat = 0.0
    swap_total: SafeInt = 0
    swap_used: SafeInt = 0


class DiskInfo(_WireModel):
    name: SafeStr = ""
    mount_point: SafeStr = ""
    type: SafeStr = ""
    total_space: SafeInt = 0
    used_space: SafeInt = 0
    free_space: SafeInt = 0
    usage_percentage: SafeFloat = 0.0
    status: SafeStr = "UNKNOWN"


class NetworkInfo(_WireModel):
    name: SafeStr = ""
    display_name: SafeStr = ""
    bytes_sent: SafeInt = 0
    bytes_received: SafeInt = 0
    upload_speed: SafeFloat = 0.0
    download_speed: SafeFloat = 0.0


class ProcessSample(_WireModel):
    pid: SafeInt
    name: SafeStr = ""
    cpu_usage: SafeFloat = 0.0
    memory_usage: SafeInt = 0  # resident set size in bytes
    thread_count: SafeInt = 0
    state: SafeStr = "UNKNOWN"


class SystemInfo(_WireModel):
    os_name: SafeStr = ""
    os_version: SafeStr = ""
    system_manufacturer: SafeStr = ""
    system_model: SafeStr = ""


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


class Snapshot(_WireModel):
    """One polled metrics reading. Superseded wholesale by the next poll."""

    dashboard: DashboardSummary = Field(default_factory=DashboardSummary)
    cpu: CpuDetails = Field(default_factory=CpuDetails)
    memory: MemoryDetails = Field(default_factory=MemoryDetails)
    disks: Annotated[tuple[DiskInfo, ...], BeforeValidator(_none_as_empty)] = ()
    networks: Annotated[tuple[NetworkInfo, ...], BeforeValidator(_none_as_empty)] = ()
    processes: Annotated[tuple[ProcessSample, ...], BeforeValidator(_none_as_empty)] = ()
    alerts: Annotated[tuple[AlertRecord, ...], BeforeValidator(_none_as_empty)] = ()
    system_info: SystemInfo | None = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("dashboard", "cpu", "memory", mode="before")
    @classmethod
    def _section_or_default(cls, value: Any) -> Any:
        return {} if value is None else value

    def process(self, pid: int) -> ProcessSample | None:
        """Look up a process sample by pid."""
        for proc in self.processes:
            if proc.pid == pid:
                return proc
        return None


# Per-category endpoints wrap one section: {"cpu": {...}, "timestamp": ...}
CATEGORY_MODELS: dict[str, Any] = {
    "dashboard": DashboardSummary,
    "cpu": CpuDetails,
    "memory": MemoryDetails,
    "disks": tuple[DiskInfo, ...],
    "networks": tuple[NetworkInfo, ...],
    "processes": tuple[ProcessSample, ...],
    "alerts": tuple[AlertRecord, ...],
}
