"""FastAPI backend for the host monitor.

Provides HTTP endpoints over the live monitoring state.  The monitor is built
once at startup, its pollers run for the lifetime of the app and it is shared
across requests.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from src.alerts.classifier import ALL_LEVELS, bucket_by_hour
from src.config import get_settings
from src.insights.models import InsightRecord, ProcessPrediction
from src.insights.scheduler import is_scheduler_running, start_scheduler, stop_scheduler
from src.monitor import HostMonitor, create_monitor
from src.observability.metrics import APP_INFO
from src.telemetry.models import AlertRecord

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class StatusResponse(BaseModel):
    """Response body for GET /status."""

    connected: bool
    status: str
    last_update: datetime | None
    last_update_text: str
    poll_count: int
    polling_mode: str
    ai_enabled: bool
    analyzing: list[int]


class HistoryPointModel(BaseModel):
    timestamp: datetime
    value: float


class AlertsResponse(BaseModel):
    """Response body for GET /alerts."""

    alerts: list[AlertRecord]
    total: int
    critical: int
    warning: int
    info: int


class HourlyBucketModel(BaseModel):
    hour_start: datetime
    critical: int
    warning: int
    info: int
    total: int


class AlertStatsResponse(BaseModel):
    """Response body for GET /alerts/stats."""

    trend: float
    average_per_hour: float
    peak_hour: datetime | None
    peak_count: int
    hourly: list[HourlyBucketModel]


class ProcessRisk(BaseModel):
    pid: int
    name: str
    score: int
    level: str
    analyzing: bool


class PredictionsResponse(BaseModel):
    """Response body for GET /predictions."""

    by_pid: dict[int, list[ProcessPrediction]]
    history: list[ProcessPrediction]
    analyzing: list[int]


class RefreshResponse(BaseModel):
    refreshed: bool
    connected: bool


class ComponentHealth(BaseModel):
    """Health status of a single component."""

    name: str
    status: str
    detail: str | None = None


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    components: list[ComponentHealth]


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the monitor and start polling at startup, tear down on shutdown."""
    settings = get_settings()
    active_model = settings.anthropic_model if settings.llm_provider == "anthropic" else settings.openai_model
    APP_INFO.info({"version": "0.1.0", "model": active_model, "polling_mode": settings.polling_mode})

    logger.info("Building host monitor...")
    try:
        monitor = create_monitor(settings)
        app.state.monitor = monitor
    except Exception:
        logger.exception("Failed to build host monitor at startup")
        raise

    monitor.start()
    _ = start_scheduler(settings.analysis_schedule_cron, monitor.analyze_system)
    yield
    stop_scheduler()
    await monitor.stop()
    logger.info("Shutting down host monitor")


app = FastAPI(title="Host Monitor", lifespan=lifespan)


def _monitor(request: Request) -> HostMonitor:
    monitor: HostMonitor = request.app.state.monitor
    return monitor


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/snapshot")
async def snapshot(request: Request) -> dict[str, Any]:
    """Latest metrics snapshot in the backend's camelCase shape."""
    current = _monitor(request).current_snapshot()
    if current is None:
        raise HTTPException(status_code=503, detail="No snapshot received yet")
    return current.model_dump(mode="json", by_alias=True)


@app.get("/status", response_model=StatusResponse)
async def status(request: Request) -> StatusResponse:
    """Connectivity and polling state."""
    monitor = _monitor(request)
    return StatusResponse(
        connected=monitor.connected,
        status=monitor.status(),
        last_update=monitor.last_update,
        last_update_text=monitor.last_update_text(),
        poll_count=monitor.poll_count,
        polling_mode=monitor.polling_mode,
        ai_enabled=monitor.coordinator.enabled,
        analyzing=sorted(monitor.coordinator.analyzing),
    )


@app.get("/history")
async def history_names(request: Request) -> list[str]:
    """Names of every recorded history series."""
    return _monitor(request).history.names()


@app.get("/history/{series}", response_model=list[HistoryPointModel])
async def history(series: str, request: Request) -> list[HistoryPointModel]:
    """Rolling samples of one series, oldest first."""
    buffer = _monitor(request).history.series(series)
    if buffer is None:
        raise HTTPException(status_code=404, detail=f"Unknown history series: {series}")
    return [HistoryPointModel(timestamp=point.timestamp, value=point.value) for point in buffer.snapshot()]


@app.get("/alerts", response_model=AlertsResponse)
async def alerts(request: Request, level: str = ALL_LEVELS, include_local: bool = False) -> AlertsResponse:
    """Active alerts filtered by level (CRITICAL, WARNING, INFO or ALL)."""
    classification = _monitor(request).alert_classification(include_local)
    return AlertsResponse(
        alerts=classification.filtered(level),
        total=classification.total,
        critical=classification.critical,
        warning=classification.warning,
        info=classification.info,
    )


@app.get("/alerts/stats", response_model=AlertStatsResponse)
async def alert_stats(request: Request, include_local: bool = False) -> AlertStatsResponse:
    """Hourly alert counts over the last 24 hours with trend and peak hour."""
    monitor = _monitor(request)
    active = monitor.active_alerts(include_local)
    stats = monitor.alert_statistics(include_local)
    return AlertStatsResponse(
        trend=stats["trend"],
        average_per_hour=stats["average_per_hour"],
        peak_hour=stats["peak_hour"],
        peak_count=stats["peak_count"],
        hourly=[HourlyBucketModel(**bucket) for bucket in bucket_by_hour(active)],
    )


@app.get("/processes/risk", response_model=list[ProcessRisk])
async def process_risk(request: Request) -> list[ProcessRisk]:
    """Heuristic risk score per process, riskiest first."""
    return [ProcessRisk(**row) for row in _monitor(request).process_risks()]


@app.get("/predictions", response_model=PredictionsResponse)
async def predictions(request: Request) -> PredictionsResponse:
    """Latest predictions per pid plus the bounded prediction history."""
    coordinator = _monitor(request).coordinator
    return PredictionsResponse(
        by_pid=coordinator.predictions_by_pid,
        history=coordinator.prediction_history,
        analyzing=sorted(coordinator.analyzing),
    )


@app.get("/insights", response_model=InsightRecord)
async def insights(request: Request) -> InsightRecord:
    """Most recent system analysis."""
    record = _monitor(request).coordinator.last_insight
    if record is None:
        raise HTTPException(status_code=404, detail="No system analysis has run yet")
    return record


@app.post("/refresh", response_model=RefreshResponse)
async def refresh(request: Request) -> RefreshResponse:
    """Fetch a snapshot now without disturbing the polling schedule."""
    monitor = _monitor(request)
    refreshed = await monitor.refresh()
    return RefreshResponse(refreshed=refreshed, connected=monitor.connected)


@app.post("/analyze/system", response_model=InsightRecord)
async def analyze_system(request: Request) -> InsightRecord:
    """Run (or join) a system-wide AI analysis of the current snapshot."""
    record = await _monitor(request).analyze_system()
    if record is None:
        raise HTTPException(status_code=503, detail="No snapshot received yet")
    return record


@app.post("/analyze/process/{pid}", response_model=list[ProcessPrediction])
async def analyze_process(pid: int, request: Request) -> list[ProcessPrediction]:
    """Predict failures for one process. Empty when it is already being analyzed."""
    result = await _monitor(request).analyze_process(pid)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Process {pid} not found in the current snapshot")
    return result


@app.post("/analyze/high-risk", response_model=dict[int, list[ProcessPrediction]])
async def analyze_high_risk(request: Request) -> dict[int, list[ProcessPrediction]]:
    """Sequentially analyze the riskiest processes in the current snapshot."""
    return await _monitor(request).analyze_high_risk()


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Check health of the monitor and its collaborators."""
    monitor = _monitor(request)
    components: list[ComponentHealth] = []

    # --- Metrics backend ---
    if monitor.connected:
        components.append(ComponentHealth(name="metrics_backend", status="healthy"))
    else:
        components.append(
            ComponentHealth(
                name="metrics_backend",
                status="unhealthy",
                detail=f"Last update: {monitor.last_update_text()}",
            )
        )

    # --- AI service ---
    if monitor.coordinator.enabled:
        last = monitor.coordinator.last_insight
        if last is not None and last.error:
            components.append(ComponentHealth(name="ai_service", status="unhealthy", detail=last.error))
        else:
            components.append(ComponentHealth(name="ai_service", status="healthy"))
    else:
        components.append(ComponentHealth(name="ai_service", status="disabled", detail="No API key configured"))

    # --- Analysis scheduler ---
    components.append(
        ComponentHealth(name="analysis_scheduler", status="running" if is_scheduler_running() else "disabled")
    )

    unhealthy = [c for c in components if c.status == "unhealthy"]
    if not unhealthy:
        overall = "healthy"
    elif len(unhealthy) == len(components):
        overall = "unhealthy"
    else:
        overall = "degraded"

    return HealthResponse(status=overall, components=components)
