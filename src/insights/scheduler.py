"""APScheduler integration for periodic system analysis.

Uses AsyncIOScheduler with CronTrigger to analyze the latest snapshot on a
configurable schedule.  No-ops gracefully if no cron expression is configured.
"""

import contextlib
import logging
from collections.abc import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]

from src.insights.models import InsightRecord

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None

AnalysisJob = Callable[[], Awaitable[InsightRecord | None]]


async def _scheduled_analysis_job(run_analysis: AnalysisJob) -> None:
    """Async job executed by the scheduler: analyze the latest snapshot."""
    try:
        record = await run_analysis()
    except Exception:
        logger.exception("Scheduled system analysis failed")
        return
    if record is None:
        logger.info("Scheduled system analysis skipped: no snapshot yet")
    else:
        logger.info("Scheduled system analysis done (health %d/10, source %s)", record.health_score, record.source)


def start_scheduler(cron: str, run_analysis: AnalysisJob) -> bool:
    """Start the APScheduler if a cron expression is configured.

    Returns:
        True when a job was scheduled.
    """
    global _scheduler  # noqa: PLW0603

    if not cron:
        logger.info("Analysis scheduler disabled (ANALYSIS_SCHEDULE_CRON not set)")
        return False

    trigger = CronTrigger.from_crontab(cron)
    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        _scheduled_analysis_job,
        trigger=trigger,
        args=[run_analysis],
        id="system_analysis",
        name="Periodic System Analysis",
        replace_existing=True,
    )
    _scheduler.start()
    logger.info("Analysis scheduler started with cron: %s", cron)
    return True


def is_scheduler_running() -> bool:
    return _scheduler is not None


def stop_scheduler() -> None:
    """Gracefully shut down the scheduler if it is running."""
    global _scheduler  # noqa: PLW0603

    if _scheduler is not None:
        with contextlib.suppress(Exception):
            _scheduler.shutdown(wait=False)
        logger.info("Analysis scheduler stopped")
        _scheduler = None
