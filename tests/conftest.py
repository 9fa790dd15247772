"""Shared pytest configuration and fixtures."""

from collections.abc import Generator
from typing import Any
from unittest.mock import patch

import pytest

from src.config import Settings, get_settings
from src.telemetry.models import Snapshot


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run e2e tests that hit a real metrics backend (requires .env with METRICS_API_URL)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="Need --run-e2e flag to run")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _no_dotenv(request: pytest.FixtureRequest) -> Generator[None]:
    """Block .env loading so a developer's local keys never leak into tests.

    Sets Settings.model_config['env_file'] = None before each test (except e2e).
    Tests that use mock_settings bypass Settings() entirely, so this is transparent.
    """
    if "e2e" in request.keywords:
        yield
        return

    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def mock_settings() -> Generator[Any]:
    """Provide fake settings so tests don't need a .env file.

    Patches get_settings at every import site so cached references are overridden.
    """
    fake_settings = type(
        "FakeSettings",
        (),
        {
            "metrics_api_url": "http://monitor.test:8080/api",
            "metrics_timeout_seconds": 2.0,
            "polling_mode": "snapshot",
            "poll_interval_seconds": 3600.0,
            "cpu_poll_interval_seconds": 3600.0,
            "memory_poll_interval_seconds": 3600.0,
            "process_poll_interval_seconds": 3600.0,
            "alert_poll_interval_seconds": 3600.0,
            "disk_poll_interval_seconds": 3600.0,
            "history_capacity": 20,
            "core_history_capacity": 10,
            "llm_provider": "openai",
            "openai_api_key": "",
            "openai_model": "gpt-4o-mini",
            "openai_base_url": "",
            "anthropic_api_key": "",
            "anthropic_model": "claude-sonnet-4-5",
            "llm_temperature": 0.2,
            "ai_enabled": False,
            "ai_timeout_seconds": 0.0,
            "high_risk_batch_limit": 5,
            "analysis_schedule_cron": "",
        },
    )()
    with (
        patch("src.config.get_settings", return_value=fake_settings),
        patch("src.api.main.get_settings", return_value=fake_settings),
        patch("src.cli.get_settings", return_value=fake_settings),
    ):
        yield fake_settings


# ---------------------------------------------------------------------------
# Sample payloads
# ---------------------------------------------------------------------------


@pytest.fixture
def snapshot_payload() -> dict[str, Any]:
    """A realistic /monitor/metrics body in the backend's camelCase shape."""
    return {
        "dashboard": {
            "status": "WARNING",
            "cpuUsage": 75.5,
            "memoryUsage": 62.0,
            "cpuTemperature": 55.0,
            "systemUptime": "3 days, 4 hours",
            "runningProcesses": 212,
        },
        "cpu": {
            "name": "Intel(R) Core(TM) i7-10700",
            "physicalCores": 8,
            "logicalCores": 16,
            "currentFrequency": "2.90 GHz",
            "maxFrequency": "4.80 GHz",
            "perCoreUsage": [80.0, 70.0, 75.0, 77.0],
            "loadAverages": [2.5, 2.1, 1.9],
            "cpuTicks": {"user": 1000, "system": 500, "idle": 8000},
        },
        "memory": {
            "total": 34359738368,
            "used": 21303639654,
            "available": 13056098714,
            "cached": 4294967296,
            "usagePercentage": 62.0,
            "swapTotal": 8589934592,
            "swapUsed": 0,
        },
        "disks": [
            {
                "name": "/dev/nvme0n1p2",
                "mountPoint": "/",
                "type": "ext4",
                "totalSpace": 500000000000,
                "usedSpace": 460000000000,
                "freeSpace": 40000000000,
                "usagePercentage": 92.0,
                "status": "WARNING",
            }
        ],
        "networks": [
            {
                "name": "eth0",
                "displayName": "Ethernet",
                "bytesSent": 1000,
                "bytesReceived": 5000,
                "uploadSpeed": 120.5,
                "downloadSpeed": 980.0,
            },
            {
                "name": "wlan0",
                "displayName": "Wi-Fi",
                "bytesSent": 10,
                "bytesReceived": 20,
                "uploadSpeed": 10.0,
                "downloadSpeed": 20.0,
            },
        ],
        "processes": [
            {
                "pid": 101,
                "name": "java",
                "cpuUsage": 85.0,
                "memoryUsage": 2147483648,
                "threadCount": 120,
                "state": "RUNNING",
            },
            {
                "pid": 202,
                "name": "postgres",
                "cpuUsage": 45.0,
                "memoryUsage": 600000000,
                "threadCount": 12,
                "state": "SLEEPING",
            },
            {
                "pid": 303,
                "name": "sshd",
                "cpuUsage": 0.1,
                "memoryUsage": 8000000,
                "threadCount": 1,
                "state": "SLEEPING",
            },
        ],
        "alerts": [
            {
                "type": "CPU",
                "level": "WARNING",
                "message": "CPU usage high: 75.5%",
                "value": 75.5,
                "threshold": "70",
                "timestamp": 1760000000000,
            }
        ],
    }


@pytest.fixture
def snapshot(snapshot_payload: dict[str, Any]) -> Snapshot:
    return Snapshot.model_validate(snapshot_payload)
