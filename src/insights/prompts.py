"""Deterministic prompt builders for system and per-process AI analysis."""

from src.risk.scorer import score
from src.telemetry.models import ProcessSample, Snapshot

MAX_PROCESS_NAME_CHARS = 30
TOP_PROCESS_COUNT = 3


def format_bytes(value: float) -> str:
    """Render a byte count as B / KB / MB / GB with one decimal."""
    if value < 1024:
        return f"{int(value)} B"
    size = value / 1024
    for unit in ("KB", "MB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def _short_name(name: str) -> str:
    name = name or "Unknown"
    if len(name) > MAX_PROCESS_NAME_CHARS:
        return name[: MAX_PROCESS_NAME_CHARS - 3] + "..."
    return name


SYSTEM_PROMPT_TEMPLATE = """\
You are an expert system administrator analyzing server metrics in real-time.

CURRENT SYSTEM METRICS:

1. CPU: {cpu_usage:.1f}% usage
   - Cores: {logical_cores} logical, {physical_cores} physical
   - Load averages: {load_averages}

2. MEMORY: {memory_usage:.1f}% used
   - Total: {memory_total}
   - Available: {memory_available}

3. DISKS: {disk_count} disks
{disk_lines}

4. PROCESSES: {process_count} top processes
{process_lines}

5. ALERTS: {alert_count} active alerts
{alert_lines}

6. SYSTEM STATUS: {status}

ANALYSIS REQUEST:
1. Provide 3-5 key insights about system health
2. Identify potential bottlenecks or issues
3. Suggest optimization recommendations
4. Predict potential problems in next 1 hour
5. Rate system health from 1-10 (10 = perfect)

Format response as JSON:
{{
  "healthScore": number (1-10),
  "insights": ["insight1", "insight2", ...],
  "recommendations": ["rec1", "rec2", ...],
  "predictions": ["prediction1", "prediction2", ...],
  "bottlenecks": ["bottleneck1", "bottleneck2", ...],
  "summary": "one line summary"
}}

Be concise, technical, and actionable. Focus on critical issues first.
"""


def build_system_prompt(snapshot: Snapshot) -> str:
    """Build the system-health analysis prompt for a snapshot."""
    dashboard = snapshot.dashboard
    load_averages = ", ".join(f"{load:.1f}" if load >= 0 else "N/A" for load in snapshot.cpu.load_averages)
    disk_lines = "\n".join(f"- {disk.name or 'Unknown'}: {disk.usage_percentage:.1f}% used" for disk in snapshot.disks)
    process_lines = "\n".join(
        f"- {_short_name(proc.name)}: {proc.cpu_usage:.1f}% CPU" for proc in snapshot.processes[:TOP_PROCESS_COUNT]
    )
    alert_lines = "\n".join(
        f"- {alert.type or 'Unknown'}: {alert.message or 'No message'}" for alert in snapshot.alerts
    )

    return SYSTEM_PROMPT_TEMPLATE.format(
        cpu_usage=dashboard.cpu_usage,
        logical_cores=snapshot.cpu.logical_cores,
        physical_cores=snapshot.cpu.physical_cores,
        load_averages=load_averages or "N/A",
        memory_usage=dashboard.memory_usage,
        memory_total=format_bytes(snapshot.memory.total),
        memory_available=format_bytes(snapshot.memory.available),
        disk_count=len(snapshot.disks),
        disk_lines=disk_lines or "No disk data",
        process_count=len(snapshot.processes),
        process_lines=process_lines or "No process data",
        alert_count=len(snapshot.alerts),
        alert_lines=alert_lines or "No active alerts",
        status=dashboard.status or "UNKNOWN",
    )


PROCESS_PROMPT_TEMPLATE = """\
You are an expert system administrator predicting failures of a single process.

PROCESS:
- PID: {pid}
- Name: {name}
- CPU: {cpu_usage:.1f}%
- Memory: {memory}
- Threads: {thread_count}
- State: {state}
- Heuristic risk score: {risk_score}/100

SYSTEM CONTEXT:
- CPU usage: {system_cpu:.1f}%
- Memory usage: {system_memory:.1f}%
- Running processes: {running_processes}
- Active alerts: {alert_count}

Predict problems this process is likely to cause in the next hour.
Use these types: CPU_SPIKE, MEMORY_LEAK, THREAD_EXPLOSION, PROCESS_HANG,
RESOURCE_EXHAUSTION.  If nothing is wrong, return one ANALYSIS_COMPLETE entry.

Format response as a JSON array:
[
  {{
    "type": "CPU_SPIKE",
    "confidence": number (0-100),
    "message": "what is likely to happen",
    "severity": "low" | "medium" | "high",
    "predictionTimeframe": "30 minutes",
    "suggestedAction": "what to do",
    "probabilityFactors": ["factor1", "factor2"]
  }}
]
"""


def build_process_prompt(process: ProcessSample, context: Snapshot | None = None) -> str:
    """Build the failure-prediction prompt for one process, with optional system context."""
    dashboard = context.dashboard if context is not None else None
    return PROCESS_PROMPT_TEMPLATE.format(
        pid=process.pid,
        name=_short_name(process.name),
        cpu_usage=process.cpu_usage,
        memory=format_bytes(process.memory_usage),
        thread_count=process.thread_count,
        state=process.state,
        risk_score=score(process),
        system_cpu=dashboard.cpu_usage if dashboard else 0.0,
        system_memory=dashboard.memory_usage if dashboard else 0.0,
        running_processes=dashboard.running_processes if dashboard else 0,
        alert_count=len(context.alerts) if context is not None else 0,
    )
