"""HTTP client for the monitoring backend's REST API.

Wraps the ``/monitor/metrics`` snapshot endpoint and the per-category
endpoints (``/monitor/cpu``, ``/monitor/disks`` ...).  Every failure is
raised as a :class:`SampleFetchError` subclass so callers can tell a dead
backend apart from an HTTP error or a garbled body.
"""

import json
import logging
from typing import Any, Protocol

import httpx
from pydantic import TypeAdapter, ValidationError

from src.telemetry.models import CATEGORY_MODELS, Snapshot

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10

SNAPSHOT_PATH = "/monitor/metrics"
CATEGORY_PATHS: dict[str, str] = {name: f"/monitor/{name}" for name in CATEGORY_MODELS}


# --- Failure taxonomy ---


class SampleFetchError(Exception):
    """Base class for a failed metrics fetch."""

    kind = "unknown"


class TransportFailure(SampleFetchError):
    """The request never got a response (connection refused, DNS, timeout)."""

    kind = "transport"


class ProtocolFailure(SampleFetchError):
    """The backend answered with a non-success status code."""

    kind = "protocol"

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class DecodeFailure(SampleFetchError):
    """The body was not JSON or did not match the expected shape."""

    kind = "decode"


class SampleSource(Protocol):
    async def fetch_snapshot(self) -> Snapshot: ...


# --- HTTP implementation ---


class HttpSampleSource:
    """Fetch snapshots from the monitoring backend over HTTP."""

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._category_adapters: dict[str, TypeAdapter[Any]] = {
            name: TypeAdapter(model) for name, model in CATEGORY_MODELS.items()
        }

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _get_json(self, path: str) -> object:
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(url, headers={"Accept": "application/json"})
                _ = response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ProtocolFailure(f"HTTP {status} from {url}: {e.response.text[:200]}", status) from e
        except httpx.TimeoutException as e:
            raise TransportFailure(f"Request to {url} timed out after {self._timeout}s: {e}") from e
        except httpx.TransportError as e:
            raise TransportFailure(f"Cannot connect to metrics backend at {url}: {e}") from e

        try:
            body: object = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeFailure(f"Response from {url} is not valid JSON: {e}") from e
        return body

    async def fetch_snapshot(self) -> Snapshot:
        """Fetch and validate one complete metrics snapshot."""
        body = await self._get_json(SNAPSHOT_PATH)
        if not isinstance(body, dict):
            raise DecodeFailure(f"Expected a JSON object for snapshot, got {type(body).__name__}")
        try:
            return Snapshot.model_validate(body)
        except ValidationError as e:
            raise DecodeFailure(f"Snapshot failed validation: {e.error_count()} error(s)") from e

    async def fetch_category(self, name: str) -> Any:
        """Fetch a single metrics category (e.g. ``"cpu"`` or ``"disks"``).

        Returns the validated section model (or tuple of models for list
        categories).
        """
        if name not in CATEGORY_PATHS:
            raise ValueError(f"Unknown metrics category: {name!r}")
        body = await self._get_json(CATEGORY_PATHS[name])
        if not isinstance(body, dict) or name not in body:
            raise DecodeFailure(f"Response for category {name!r} is missing the '{name}' key")
        try:
            return self._category_adapters[name].validate_python(body[name])
        except ValidationError as e:
            raise DecodeFailure(f"Category {name!r} failed validation: {e.error_count()} error(s)") from e
