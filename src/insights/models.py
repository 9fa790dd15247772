"""Pydantic models for AI-derived system insights and process predictions."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Severity = Literal["low", "medium", "high"]

InsightSource = Literal["structured", "keyword_fallback", "unparseable", "disabled", "service_error"]


class PredictionType(StrEnum):
    CPU_SPIKE = "CPU_SPIKE"
    MEMORY_LEAK = "MEMORY_LEAK"
    THREAD_EXPLOSION = "THREAD_EXPLOSION"
    PROCESS_HANG = "PROCESS_HANG"
    RESOURCE_EXHAUSTION = "RESOURCE_EXHAUSTION"
    ANALYSIS_COMPLETE = "ANALYSIS_COMPLETE"
    PARSE_ERROR = "PARSE_ERROR"
    OTHER = "OTHER"


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class InsightRecord(_Record):
    """One system-wide AI analysis. Superseded by the next analysis cycle."""

    health_score: int = Field(ge=1, le=10)
    summary: str = ""
    insights: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()
    predictions: tuple[str, ...] = ()
    bottlenecks: tuple[str, ...] = ()
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    enabled: bool = True
    error: str | None = None
    source: InsightSource = "structured"


class ProcessPrediction(_Record):
    """One AI prediction about a single process."""

    pid: int
    process_name: str = ""
    type: PredictionType
    confidence: int = Field(ge=0, le=100)
    message: str = ""
    severity: Severity
    prediction_timeframe: str = "30 minutes"
    suggested_action: str = "Monitor closely"
    probability_factors: tuple[str, ...] = ()
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
