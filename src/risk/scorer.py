"""Heuristic 0-100 risk score for a single process sample.

Each rule is checked independently and the triggered weights are summed, so a
process above 70% CPU also collects the >40% bonus (60 points for CPU alone).
"""

from collections.abc import Iterable
from typing import Literal

from src.telemetry.models import ProcessSample

GIB = 2**30

HIGH_RISK_THRESHOLD = 60
MEDIUM_RISK_THRESHOLD = 30

# Batch-analysis selection is broader than the risk score threshold
BATCH_CPU_THRESHOLD = 40.0
BATCH_MEMORY_THRESHOLD = 500_000_000

RiskLevel = Literal["high", "medium", "low"]


def score(process: ProcessSample) -> int:
    """Weighted rule sum clamped to [0, 100]."""
    total = 0
    if process.cpu_usage > 70:
        total += 40
    if process.cpu_usage > 40:
        total += 20
    if process.memory_usage > GIB:
        total += 30
    if process.thread_count > 50:
        total += 10
    if process.state != "RUNNING":
        total += 20
    return max(0, min(100, total))


def score_processes(processes: Iterable[ProcessSample]) -> dict[int, int]:
    """Risk score per pid for a process list."""
    return {process.pid: score(process) for process in processes}


def risk_level(value: int) -> RiskLevel:
    if value > HIGH_RISK_THRESHOLD:
        return "high"
    if value >= MEDIUM_RISK_THRESHOLD:
        return "medium"
    return "low"


def is_high_risk(process: ProcessSample) -> bool:
    return score(process) > HIGH_RISK_THRESHOLD


def is_batch_candidate(process: ProcessSample) -> bool:
    """Whether a process qualifies for batch AI analysis, independent of its score."""
    return process.cpu_usage > BATCH_CPU_THRESHOLD or process.memory_usage > BATCH_MEMORY_THRESHOLD
