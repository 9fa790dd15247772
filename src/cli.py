"""Terminal watcher for the host monitor.

Usage:
    uv run python -m src.cli            # print a status line after every poll
    uv run python -m src.cli --analyze  # also run one AI system analysis
"""

import asyncio
import logging
import sys

from src.config import get_settings
from src.monitor import HostMonitor, create_monitor
from src.telemetry.models import Snapshot
from src.telemetry.poller import PollResult

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)


def _status_line(monitor: HostMonitor, result: PollResult[Snapshot]) -> str:
    if not result.ok or result.payload is None:
        return f"[disconnected] {result.failure_kind}: {result.error}"
    dashboard = result.payload.dashboard
    classification = monitor.alert_classification(include_local=True)
    return (
        f"[{monitor.status()}] CPU {dashboard.cpu_usage:5.1f}%  MEM {dashboard.memory_usage:5.1f}%  "
        f"procs {dashboard.running_processes}  alerts {classification.critical} critical / "
        f"{classification.warning} warning"
    )


async def main() -> None:
    """Poll until interrupted, printing one line per poll."""
    analyze = "--analyze" in sys.argv[1:]
    settings = get_settings()
    monitor = create_monitor(settings)
    _ = monitor.subscribe(lambda result: print(_status_line(monitor, result)))

    print(f"Host monitor watching {settings.metrics_api_url} (Ctrl+C to exit)")
    print("=" * 50)

    if analyze:
        _ = await monitor.refresh()
        record = await monitor.analyze_system()
        if record is None:
            print("No snapshot available for analysis")
        else:
            print(f"\nHealth {record.health_score}/10: {record.summary}")
            for insight in record.insights:
                print(f"  - {insight}")
            if record.error:
                print(f"  ({record.error})")
            print()

    monitor.start()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await monitor.stop()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nGoodbye!")
