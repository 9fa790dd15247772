"""Tests for the AI insight request coordinator."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from src.insights.coordinator import AnalysisState, InsightRequestCoordinator
from src.insights.models import PredictionType
from src.insights.normalizer import fallback_health_score
from src.telemetry.models import ProcessSample, Snapshot

SYSTEM_RESPONSE = json.dumps({"healthScore": 6, "summary": "Busy", "insights": ["CPU high"]})
PROCESS_RESPONSE = json.dumps([{"type": "CPU_SPIKE", "confidence": 80, "message": "spike"}])


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def _service(response: str = PROCESS_RESPONSE) -> AsyncMock:
    service = AsyncMock()
    service.complete.return_value = response
    return service


class _GatedService:
    """Completion service that blocks until released and tracks concurrency."""

    def __init__(self, response: str) -> None:
        self.response = response
        self.release = asyncio.Event()
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    async def complete(self, prompt: str) -> str:
        self.calls.append(prompt)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await self.release.wait()
        finally:
            self.active -= 1
        return self.response


@pytest.fixture
def java(snapshot: Snapshot) -> ProcessSample:
    proc = snapshot.process(101)
    assert proc is not None
    return proc


class TestAnalyzeSystem:
    async def test_disabled(self, snapshot: Snapshot) -> None:
        coordinator = InsightRequestCoordinator(None)
        record = await coordinator.analyze_system(snapshot)
        assert not record.enabled
        assert record.source == "disabled"
        assert record.health_score == fallback_health_score(snapshot)
        assert coordinator.last_insight == record
        assert not coordinator.enabled

    async def test_structured_response(self, snapshot: Snapshot) -> None:
        service = _service(SYSTEM_RESPONSE)
        coordinator = InsightRequestCoordinator(service)
        record = await coordinator.analyze_system(snapshot)

        assert record.health_score == 6
        assert record.summary == "Busy"
        assert record.enabled
        assert coordinator.last_insight == record
        prompt = service.complete.await_args.args[0]
        assert "CPU: 75.5% usage" in prompt
        assert "SYSTEM STATUS: WARNING" in prompt

    async def test_service_failure(self, snapshot: Snapshot) -> None:
        service = AsyncMock()
        service.complete.side_effect = RuntimeError("quota exceeded")
        coordinator = InsightRequestCoordinator(service)

        record = await coordinator.analyze_system(snapshot)

        assert record.enabled
        assert record.error == "AI analysis failed"
        assert record.source == "service_error"
        assert record.insights == ("AI service temporarily unavailable.",)
        assert record.health_score == fallback_health_score(snapshot)

    async def test_timeout_is_service_failure(self, snapshot: Snapshot) -> None:
        service = _GatedService(SYSTEM_RESPONSE)
        coordinator = InsightRequestCoordinator(service, timeout_seconds=0.01)
        record = await coordinator.analyze_system(snapshot)
        assert record.error == "AI analysis failed"

    async def test_concurrent_calls_collapse(self, snapshot: Snapshot) -> None:
        service = _GatedService(SYSTEM_RESPONSE)
        coordinator = InsightRequestCoordinator(service)

        first = asyncio.create_task(coordinator.analyze_system(snapshot))
        second = asyncio.create_task(coordinator.analyze_system(snapshot))
        await _settle()
        assert coordinator.system_analysis_in_flight

        service.release.set()
        one, two = await asyncio.gather(first, second)

        assert one == two
        assert len(service.calls) == 1
        assert not coordinator.system_analysis_in_flight


class TestAnalyzeProcess:
    async def test_success_stores_predictions(self, snapshot: Snapshot, java: ProcessSample) -> None:
        coordinator = InsightRequestCoordinator(_service())

        predictions = await coordinator.analyze_process(java, snapshot)

        assert [p.type for p in predictions] == [PredictionType.CPU_SPIKE]
        assert predictions[0].pid == 101
        assert coordinator.predictions_by_pid == {101: predictions}
        assert coordinator.prediction_history == predictions
        assert coordinator.state_of(101) == AnalysisState.COMPLETED
        assert coordinator.analyzing == frozenset()

    async def test_prompt_describes_process(self, snapshot: Snapshot, java: ProcessSample) -> None:
        service = _service()
        coordinator = InsightRequestCoordinator(service)
        _ = await coordinator.analyze_process(java, snapshot)
        prompt = service.complete.await_args.args[0]
        assert "PID: 101" in prompt
        assert "Heuristic risk score: 100/100" in prompt

    async def test_duplicate_request_ignored(self, snapshot: Snapshot, java: ProcessSample) -> None:
        service = _GatedService(PROCESS_RESPONSE)
        coordinator = InsightRequestCoordinator(service)

        first = asyncio.create_task(coordinator.analyze_process(java, snapshot))
        await _settle()
        assert coordinator.analyzing == frozenset({101})
        assert coordinator.state_of(101) == AnalysisState.ANALYZING

        assert await coordinator.analyze_process(java, snapshot) == []
        assert coordinator.analyzing == frozenset({101})

        service.release.set()
        predictions = await first
        assert len(predictions) == 1
        assert len(service.calls) == 1
        assert coordinator.analyzing == frozenset()

    async def test_failure_stores_nothing(self, snapshot: Snapshot, java: ProcessSample) -> None:
        service = AsyncMock()
        service.complete.side_effect = ConnectionError("AI service down")
        coordinator = InsightRequestCoordinator(service)

        assert await coordinator.analyze_process(java, snapshot) == []
        assert coordinator.state_of(101) == AnalysisState.FAILED
        assert coordinator.analyzing == frozenset()
        assert coordinator.predictions_by_pid == {}
        assert coordinator.prediction_history == []

    async def test_timeout_fails(self, snapshot: Snapshot, java: ProcessSample) -> None:
        coordinator = InsightRequestCoordinator(_GatedService(PROCESS_RESPONSE), timeout_seconds=0.01)
        assert await coordinator.analyze_process(java, snapshot) == []
        assert coordinator.state_of(101) == AnalysisState.FAILED
        assert coordinator.analyzing == frozenset()

    async def test_cancelled_request_fails(self, java: ProcessSample) -> None:
        service = _GatedService(PROCESS_RESPONSE)
        coordinator = InsightRequestCoordinator(service)

        task = asyncio.create_task(coordinator.analyze_process(java))
        await _settle()
        assert coordinator.state_of(101) == AnalysisState.ANALYZING

        _ = task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert coordinator.analyzing == frozenset()
        assert coordinator.state_of(101) == AnalysisState.FAILED
        assert coordinator.predictions_by_pid == {}

    async def test_disabled_returns_empty(self, java: ProcessSample) -> None:
        coordinator = InsightRequestCoordinator(None)
        assert await coordinator.analyze_process(java) == []
        assert coordinator.state_of(101) == AnalysisState.IDLE

    async def test_last_write_wins(self, java: ProcessSample) -> None:
        service = _service()
        coordinator = InsightRequestCoordinator(service)
        _ = await coordinator.analyze_process(java)
        service.complete.return_value = "Looks like a memory leak"
        _ = await coordinator.analyze_process(java)

        (latest,) = coordinator.predictions_by_pid[101]
        assert latest.type == PredictionType.MEMORY_LEAK
        assert len(coordinator.prediction_history) == 2

    async def test_history_is_bounded(self, java: ProcessSample) -> None:
        coordinator = InsightRequestCoordinator(_service(), history_capacity=3)
        for _ in range(5):
            _ = await coordinator.analyze_process(java)
        assert len(coordinator.prediction_history) == 3

    async def test_accessors_return_copies(self, java: ProcessSample) -> None:
        coordinator = InsightRequestCoordinator(_service())
        _ = await coordinator.analyze_process(java)

        by_pid = coordinator.predictions_by_pid
        by_pid[101].clear()
        by_pid[999] = []
        coordinator.prediction_history.clear()

        assert len(coordinator.predictions_by_pid[101]) == 1
        assert 999 not in coordinator.predictions_by_pid
        assert len(coordinator.prediction_history) == 1


class TestAnalyzeAllHighRisk:
    async def test_candidates_ordered_by_score(self, snapshot: Snapshot) -> None:
        service = _service()
        coordinator = InsightRequestCoordinator(service)

        results = await coordinator.analyze_all_high_risk(snapshot)

        # sshd is neither above 40% CPU nor 500 MB
        assert list(results) == [101, 202]
        prompts = [call.args[0] for call in service.complete.await_args_list]
        assert "PID: 101" in prompts[0]
        assert "PID: 202" in prompts[1]

    async def test_limit(self, snapshot: Snapshot) -> None:
        coordinator = InsightRequestCoordinator(_service())
        results = await coordinator.analyze_all_high_risk(snapshot, limit=1)
        assert list(results) == [101]

    async def test_sequential(self, snapshot: Snapshot) -> None:
        service = _GatedService(PROCESS_RESPONSE)
        coordinator = InsightRequestCoordinator(service)

        batch = asyncio.create_task(coordinator.analyze_all_high_risk(snapshot))
        await _settle()
        assert len(service.calls) == 1
        assert coordinator.analyzing == frozenset({101})

        # wake the held call only; the next one must block again
        service.release.set()
        service.release.clear()
        await _settle()
        assert len(service.calls) == 2
        assert coordinator.analyzing == frozenset({202})
        assert coordinator.state_of(101) == AnalysisState.COMPLETED

        service.release.set()
        results = await batch

        assert list(results) == [101, 202]
        assert service.max_active == 1
