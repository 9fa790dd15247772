"""Turn free-text AI responses into validated insight and prediction records.

Model output is untrusted.  Each response is first interpreted into one of
three outcomes:

- ``StructuredJSON``: a balanced JSON object/array was found and decoded;
- ``KeywordFallback``: no JSON at all, so only the prose is usable;
- ``Unparseable``: something bracket-shaped was found but is not valid JSON.

The public parse functions pattern-match on that outcome and always return a
well-typed value.  Nothing in this module raises on bad input.
"""

import json
import logging
import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from src.insights.models import InsightRecord, PredictionType, ProcessPrediction, Severity
from src.observability.metrics import NORMALIZER_OUTCOMES_TOTAL
from src.telemetry.models import AlertLevel, ProcessSample, Snapshot

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 50
DEFAULT_TIMEFRAME = "30 minutes"
DEFAULT_ACTION = "Monitor closely"
MAX_FALLBACK_INSIGHT_CHARS = 200

CPU_KEYWORDS = ("cpu", "spike")
MEMORY_KEYWORDS = ("memory", "leak")
CPU_FALLBACK_CONFIDENCE = 60
MEMORY_FALLBACK_CONFIDENCE = 55
NEUTRAL_FALLBACK_CONFIDENCE = 60


# ---------------------------------------------------------------------------
# Parse outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StructuredJSON:
    payload: object


@dataclass(frozen=True)
class KeywordFallback:
    text: str


@dataclass(frozen=True)
class Unparseable:
    fragment: str
    error: str


ParseOutcome = StructuredJSON | KeywordFallback | Unparseable


_FENCE_OPEN = re.compile(r"```[a-zA-Z0-9_-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?```")


def strip_code_fences(text: str) -> str:
    """Remove Markdown code fence markers (```json ... ```), keeping their content."""
    stripped = _FENCE_OPEN.sub("", text)
    return _FENCE_CLOSE.sub("", stripped).strip()


def find_balanced(text: str, opening: str, closing: str) -> str | None:
    """Return the first balanced ``opening ... closing`` substring, or None.

    Brackets inside JSON string literals are ignored.  An unterminated first
    bracket means None: any later bracket is nested inside it.
    """
    start = text.find(opening)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == opening:
            depth += 1
        elif char == closing:
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def interpret(raw_text: str, expect: Literal["object", "array"]) -> ParseOutcome:
    """Classify a raw AI response into a parse outcome."""
    text = strip_code_fences(raw_text or "")
    if expect == "array":
        fragment = find_balanced(text, "[", "]") or find_balanced(text, "{", "}")
    else:
        fragment = find_balanced(text, "{", "}")

    if fragment is None:
        return KeywordFallback(text=text)
    try:
        payload: object = json.loads(fragment)
    except (json.JSONDecodeError, RecursionError) as e:
        return Unparseable(fragment=fragment, error=str(e))
    return StructuredJSON(payload=payload)


# ---------------------------------------------------------------------------
# Value coercion helpers
# ---------------------------------------------------------------------------


def _as_number(value: object) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_text(value: object, default: str = "") -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def _as_string_list(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    if isinstance(value, list):
        return tuple(str(item) for item in value if item is not None and str(item).strip())
    return ()


def clamp_confidence(value: object) -> int:
    """Clamp a model-supplied confidence to [0, 100]; 50 when absent or invalid."""
    number = _as_number(value)
    if number is None:
        return DEFAULT_CONFIDENCE
    return int(round(max(0.0, min(100.0, number))))


def severity_for(confidence: int) -> Severity:
    if confidence > 70:
        return "high"
    if confidence > 50:
        return "medium"
    return "low"


def _coerce_severity(value: object, confidence: int) -> Severity:
    label = _as_text(value).lower()
    if label == "high":
        return "high"
    if label == "medium":
        return "medium"
    if label == "low":
        return "low"
    return severity_for(confidence)


# ---------------------------------------------------------------------------
# Local health score
# ---------------------------------------------------------------------------


def fallback_health_score(snapshot: Snapshot) -> int:
    """Deterministic 1-10 health score used whenever the AI cannot supply one."""
    score = 10
    cpu = snapshot.dashboard.cpu_usage
    memory = snapshot.dashboard.memory_usage

    if cpu > 90:
        score -= 4
    elif cpu > 70:
        score -= 2

    if memory > 90:
        score -= 3
    elif memory > 80:
        score -= 1

    critical = sum(1 for alert in snapshot.alerts if alert.level == AlertLevel.CRITICAL)
    warning = sum(1 for alert in snapshot.alerts if alert.level == AlertLevel.WARNING)
    score -= critical * 2 + warning

    return max(1, min(10, score))


# ---------------------------------------------------------------------------
# System insight
# ---------------------------------------------------------------------------


def parse_system_insight(raw_text: str, fallback_score: Callable[[], int]) -> InsightRecord:
    """Parse a system-analysis response into an InsightRecord.

    Args:
        raw_text: Raw text returned by the AI service.
        fallback_score: Zero-argument callable producing the local health score,
            used whenever the response does not carry a usable one.

    Returns:
        An InsightRecord; never raises.
    """
    now = datetime.now(UTC)

    match interpret(raw_text, "object"):
        case StructuredJSON(payload=dict() as payload):
            NORMALIZER_OUTCOMES_TOTAL.labels(kind="system", branch="structured").inc()
            score = _as_number(payload.get("healthScore"))
            health = int(round(max(1.0, min(10.0, score)))) if score is not None else fallback_score()
            return InsightRecord(
                health_score=health,
                summary=_as_text(payload.get("summary"), "Analysis Complete"),
                insights=_as_string_list(payload.get("insights")),
                recommendations=_as_string_list(payload.get("recommendations")),
                predictions=_as_string_list(payload.get("predictions")),
                bottlenecks=_as_string_list(payload.get("bottlenecks")),
                timestamp=now,
                source="structured",
            )
        case StructuredJSON():
            # Balanced braces always decode to an object; kept for exhaustiveness
            NORMALIZER_OUTCOMES_TOTAL.labels(kind="system", branch="unparseable").inc()
            return _unparseable_insight(fallback_score(), now)
        case KeywordFallback(text=text):
            NORMALIZER_OUTCOMES_TOTAL.labels(kind="system", branch="keyword_fallback").inc()
            insights: tuple[str, ...] = ()
            if text:
                snippet = text[:MAX_FALLBACK_INSIGHT_CHARS]
                insights = (snippet + "..." if len(text) > MAX_FALLBACK_INSIGHT_CHARS else snippet,)
            return InsightRecord(
                health_score=fallback_score(),
                summary="AI Analysis Complete",
                insights=insights,
                timestamp=now,
                source="keyword_fallback",
            )
        case Unparseable(error=error):
            NORMALIZER_OUTCOMES_TOTAL.labels(kind="system", branch="unparseable").inc()
            logger.warning("Failed to parse AI system insight: %s", error)
            return _unparseable_insight(fallback_score(), now)


def _unparseable_insight(health: int, now: datetime) -> InsightRecord:
    return InsightRecord(
        health_score=health,
        summary="Analysis Complete",
        insights=("AI analysis completed but format error occurred.",),
        timestamp=now,
        error="Failed to parse AI response",
        source="unparseable",
    )


# ---------------------------------------------------------------------------
# Process predictions
# ---------------------------------------------------------------------------


def _prediction_from_item(item: dict[str, object], process: ProcessSample, now: datetime) -> ProcessPrediction:
    confidence = clamp_confidence(item.get("confidence"))
    raw_type = _as_text(item.get("type"), PredictionType.ANALYSIS_COMPLETE.value)
    message = _as_text(item.get("message") or item.get("description"))
    try:
        prediction_type = PredictionType(raw_type.upper())
    except ValueError:
        prediction_type = PredictionType.OTHER
        message = f"{raw_type}: {message}" if message else raw_type

    return ProcessPrediction(
        pid=process.pid,
        process_name=process.name,
        type=prediction_type,
        confidence=confidence,
        message=message,
        severity=_coerce_severity(item.get("severity"), confidence),
        prediction_timeframe=_as_text(item.get("predictionTimeframe"), DEFAULT_TIMEFRAME),
        suggested_action=_as_text(item.get("suggestedAction"), DEFAULT_ACTION),
        probability_factors=_as_string_list(item.get("probabilityFactors")),
        timestamp=now,
    )


def _neutral_prediction(process: ProcessSample, now: datetime, message: str) -> ProcessPrediction:
    return ProcessPrediction(
        pid=process.pid,
        process_name=process.name,
        type=PredictionType.ANALYSIS_COMPLETE,
        confidence=NEUTRAL_FALLBACK_CONFIDENCE,
        message=message,
        severity="low",
        timestamp=now,
    )


def _keyword_predictions(text: str, process: ProcessSample, now: datetime) -> list[ProcessPrediction]:
    lowered = text.lower()
    predictions: list[ProcessPrediction] = []

    if any(keyword in lowered for keyword in CPU_KEYWORDS):
        predictions.append(
            ProcessPrediction(
                pid=process.pid,
                process_name=process.name,
                type=PredictionType.CPU_SPIKE,
                confidence=CPU_FALLBACK_CONFIDENCE,
                message=f"Possible CPU spike for {process.name or process.pid}",
                severity=severity_for(CPU_FALLBACK_CONFIDENCE),
                timestamp=now,
            )
        )
    if any(keyword in lowered for keyword in MEMORY_KEYWORDS):
        predictions.append(
            ProcessPrediction(
                pid=process.pid,
                process_name=process.name,
                type=PredictionType.MEMORY_LEAK,
                confidence=MEMORY_FALLBACK_CONFIDENCE,
                message=f"Possible memory leak in {process.name or process.pid}",
                severity=severity_for(MEMORY_FALLBACK_CONFIDENCE),
                timestamp=now,
            )
        )

    if not predictions:
        predictions.append(_neutral_prediction(process, now, "Analysis complete, no specific risk identified"))
    return predictions


def parse_process_predictions(raw_text: str, process: ProcessSample) -> list[ProcessPrediction]:
    """Parse a process-analysis response into a non-empty list of predictions.

    Args:
        raw_text: Raw text returned by the AI service.
        process: The process the analysis was requested for; every record is
            tagged with its pid and name.

    Returns:
        At least one ProcessPrediction; never raises.
    """
    now = datetime.now(UTC)

    match interpret(raw_text, "array"):
        case StructuredJSON(payload=list() as items):
            NORMALIZER_OUTCOMES_TOTAL.labels(kind="process", branch="structured").inc()
            predictions = [_prediction_from_item(item, process, now) for item in items if isinstance(item, dict)]
            return predictions or [_neutral_prediction(process, now, "Analysis complete, no predictions returned")]
        case StructuredJSON(payload=dict() as item):
            NORMALIZER_OUTCOMES_TOTAL.labels(kind="process", branch="structured").inc()
            return [_prediction_from_item(item, process, now)]
        case StructuredJSON():
            NORMALIZER_OUTCOMES_TOTAL.labels(kind="process", branch="structured").inc()
            return [_neutral_prediction(process, now, "Analysis complete, no predictions returned")]
        case KeywordFallback(text=text):
            NORMALIZER_OUTCOMES_TOTAL.labels(kind="process", branch="keyword_fallback").inc()
            return _keyword_predictions(text, process, now)
        case Unparseable(error=error):
            NORMALIZER_OUTCOMES_TOTAL.labels(kind="process", branch="unparseable").inc()
            logger.warning("Failed to parse AI predictions for pid %d: %s", process.pid, error)
            return [
                ProcessPrediction(
                    pid=process.pid,
                    process_name=process.name,
                    type=PredictionType.PARSE_ERROR,
                    confidence=0,
                    message="AI response could not be parsed",
                    severity="low",
                    timestamp=now,
                )
            ]
