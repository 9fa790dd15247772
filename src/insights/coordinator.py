"""Coordinate AI analysis requests and own the resulting insight state.

The coordinator builds prompts, calls the completion service and hands the
raw text to the normalizer.  It exclusively owns the set of pids currently
being analyzed, the latest predictions per pid and a bounded prediction
history; accessors only ever return copies.
"""

import asyncio
import logging
import time
from collections import deque
from enum import StrEnum

from src.insights.llm import CompletionService
from src.insights.models import InsightRecord, ProcessPrediction
from src.insights.normalizer import fallback_health_score, parse_process_predictions, parse_system_insight
from src.insights.prompts import build_process_prompt, build_system_prompt
from src.observability.metrics import ANALYSES_IN_PROGRESS, ANALYSES_TOTAL, ANALYSIS_DURATION
from src.risk.scorer import is_batch_candidate, score
from src.telemetry.models import ProcessSample, Snapshot

logger = logging.getLogger(__name__)

PREDICTION_HISTORY_CAPACITY = 100
DEFAULT_BATCH_LIMIT = 5


class AnalysisState(StrEnum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


class InsightRequestCoordinator:
    """Run system and per-process AI analyses and keep their results.

    Args:
        service: Completion service, or None when AI analysis is not configured.
        timeout_seconds: Bound on a single AI call; 0 waits indefinitely.
        history_capacity: Number of predictions kept in the history log.
    """

    def __init__(
        self,
        service: CompletionService | None,
        timeout_seconds: float = 0.0,
        history_capacity: int = PREDICTION_HISTORY_CAPACITY,
    ) -> None:
        self._service = service
        self._timeout = timeout_seconds
        self._analyzing: set[int] = set()
        self._states: dict[int, AnalysisState] = {}
        self._predictions_by_pid: dict[int, list[ProcessPrediction]] = {}
        self._history: deque[ProcessPrediction] = deque(maxlen=history_capacity)
        self._last_insight: InsightRecord | None = None
        self._system_task: asyncio.Task[InsightRecord] | None = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._service is not None

    @property
    def analyzing(self) -> frozenset[int]:
        return frozenset(self._analyzing)

    @property
    def predictions_by_pid(self) -> dict[int, list[ProcessPrediction]]:
        return {pid: list(predictions) for pid, predictions in self._predictions_by_pid.items()}

    @property
    def prediction_history(self) -> list[ProcessPrediction]:
        """Most recent predictions, oldest first."""
        return list(self._history)

    @property
    def last_insight(self) -> InsightRecord | None:
        return self._last_insight

    @property
    def system_analysis_in_flight(self) -> bool:
        return self._system_task is not None and not self._system_task.done()

    def state_of(self, pid: int) -> AnalysisState:
        return self._states.get(pid, AnalysisState.IDLE)

    # ------------------------------------------------------------------
    # AI call
    # ------------------------------------------------------------------

    async def _complete(self, service: CompletionService, prompt: str) -> str:
        if self._timeout > 0:
            return await asyncio.wait_for(service.complete(prompt), timeout=self._timeout)
        return await service.complete(prompt)

    # ------------------------------------------------------------------
    # System analysis
    # ------------------------------------------------------------------

    async def analyze_system(self, snapshot: Snapshot) -> InsightRecord:
        """Analyze overall system health.

        A call made while another system analysis is in flight awaits and
        returns that analysis instead of starting a second one.
        """
        service = self._service
        if service is None:
            ANALYSES_TOTAL.labels(kind="system", status="disabled").inc()
            record = InsightRecord(
                health_score=fallback_health_score(snapshot),
                summary="AI analysis is not configured",
                enabled=False,
                source="disabled",
            )
            self._last_insight = record
            return record

        if self._system_task is None or self._system_task.done():
            self._system_task = asyncio.create_task(self._run_system_analysis(service, snapshot))
        else:
            logger.debug("System analysis already in flight, joining it")
        return await asyncio.shield(self._system_task)

    async def _run_system_analysis(self, service: CompletionService, snapshot: Snapshot) -> InsightRecord:
        start = time.monotonic()
        try:
            raw_text = await self._complete(service, build_system_prompt(snapshot))
        except TimeoutError:
            logger.warning("System analysis timed out after %.1fs", self._timeout)
            record = self._service_error_record(snapshot)
        except Exception:
            logger.exception("System analysis failed")
            record = self._service_error_record(snapshot)
        else:
            record = parse_system_insight(raw_text, lambda: fallback_health_score(snapshot))
            ANALYSES_TOTAL.labels(kind="system", status="success").inc()
        finally:
            ANALYSIS_DURATION.labels(kind="system").observe(time.monotonic() - start)

        self._last_insight = record
        return record

    @staticmethod
    def _service_error_record(snapshot: Snapshot) -> InsightRecord:
        ANALYSES_TOTAL.labels(kind="system", status="error").inc()
        return InsightRecord(
            health_score=fallback_health_score(snapshot),
            summary="AI analysis failed",
            insights=("AI service temporarily unavailable.",),
            error="AI analysis failed",
            source="service_error",
        )

    # ------------------------------------------------------------------
    # Process analysis
    # ------------------------------------------------------------------

    async def analyze_process(
        self,
        process: ProcessSample,
        context: Snapshot | None = None,
    ) -> list[ProcessPrediction]:
        """Predict failures for one process.

        Args:
            process: The process sample to analyze.
            context: Snapshot the process was taken from, used for prompt context.

        Returns:
            The new predictions, or an empty list when the pid is already being
            analyzed, AI is disabled, or the AI call failed.
        """
        pid = process.pid
        service = self._service
        if service is None:
            logger.debug("Process analysis for pid %d skipped: AI disabled", pid)
            return []
        if pid in self._analyzing:
            logger.debug("Analysis for pid %d already in progress", pid)
            return []

        self._analyzing.add(pid)
        self._states[pid] = AnalysisState.ANALYZING
        ANALYSES_IN_PROGRESS.set(len(self._analyzing))
        start = time.monotonic()
        try:
            raw_text = await self._complete(service, build_process_prompt(process, context))
        except TimeoutError:
            logger.warning("Analysis for pid %d timed out after %.1fs", pid, self._timeout)
            self._states[pid] = AnalysisState.FAILED
            ANALYSES_TOTAL.labels(kind="process", status="error").inc()
            return []
        except Exception:
            logger.exception("Analysis for pid %d (%s) failed", pid, process.name)
            self._states[pid] = AnalysisState.FAILED
            ANALYSES_TOTAL.labels(kind="process", status="error").inc()
            return []
        except asyncio.CancelledError:
            logger.info("Analysis for pid %d cancelled", pid)
            self._states[pid] = AnalysisState.FAILED
            ANALYSES_TOTAL.labels(kind="process", status="cancelled").inc()
            raise
        finally:
            self._analyzing.discard(pid)
            ANALYSES_IN_PROGRESS.set(len(self._analyzing))
            ANALYSIS_DURATION.labels(kind="process").observe(time.monotonic() - start)

        predictions = parse_process_predictions(raw_text, process)
        self._predictions_by_pid[pid] = predictions
        self._history.extend(predictions)
        self._states[pid] = AnalysisState.COMPLETED
        ANALYSES_TOTAL.labels(kind="process", status="success").inc()
        return list(predictions)

    async def analyze_all_high_risk(
        self,
        snapshot: Snapshot,
        limit: int = DEFAULT_BATCH_LIMIT,
    ) -> dict[int, list[ProcessPrediction]]:
        """Sequentially analyze the riskiest batch candidates in a snapshot."""
        candidates = sorted(
            (proc for proc in snapshot.processes if is_batch_candidate(proc)),
            key=score,
            reverse=True,
        )[: max(0, limit)]
        logger.info("Batch analysis of %d high-risk process(es)", len(candidates))

        results: dict[int, list[ProcessPrediction]] = {}
        for proc in candidates:
            results[proc.pid] = await self.analyze_process(proc, snapshot)
        return results
