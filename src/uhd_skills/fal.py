"""
Minimal async client for the fal.ai queue API.

Requests are submitted to ``{FAL_QUEUE_URL}/{endpoint}``, polled through the returned
``status_url`` until they complete and then fetched from ``response_url``. Transient failures
are retried with exponential backoff; authentication failures are not.
"""

import asyncio
import base64
import mimetypes
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from http import HTTPStatus
from pathlib import Path
from typing import Any

import httpx
from loguru import logger


# Configuration defaults
FAL_QUEUE_URL = os.getenv("FAL_QUEUE_URL", "https://queue.fal.run")
FAL_POLL_INTERVAL = float(os.getenv("FAL_POLL_INTERVAL", "1.0"))
FAL_TIMEOUT = float(os.getenv("FAL_TIMEOUT", "600"))
MAX_ATTEMPTS = 3
RETRY_BASE_SECONDS = 2.0
REQUEST_TIMEOUT = 60.0
NO_RETRY_STATUSES = frozenset({HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN})


class FalError(RuntimeError):
    """A fal.ai request failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code not in NO_RETRY_STATUSES


@dataclass
class FalResult:
    request_id: str
    data: dict[str, Any]


def fal_key() -> str | None:
    return os.getenv("FAL_KEY") or None


def require_fal_key() -> str:
    """Return FAL_KEY or exit with a hint when it is not set."""
    key = fal_key()
    if not key:
        logger.error("fal_key_missing", hint="Set FAL_KEY, e.g. export FAL_KEY=your-key")
        raise SystemExit(1)
    return key


def app_id(endpoint: str) -> str:
    """
    Queue status routes live under the first two path segments of an endpoint.

    Examples:
        >>> app_id("fal-ai/bytedance/seedream/v4.5/text-to-image")
        'fal-ai/bytedance'

    """
    return "/".join(endpoint.strip("/").split("/")[:2])


def image_data_uri(path: Path) -> str:
    """Inline a local file as a base64 data URI for upload."""
    mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime};base64,{encoded}"


def first_image_url(data: dict[str, Any]) -> str | None:
    """Pick the result URL from ``image.url`` or ``images[0].url``."""
    image = data.get("image")
    if isinstance(image, dict) and image.get("url"):
        return str(image["url"])
    images = data.get("images")
    if isinstance(images, list) and images and isinstance(images[0], dict):
        url = images[0].get("url")
        return str(url) if url else None
    return None


class FalClient:
    """
    Queue client bound to one API key.

    Args:
        key: fal.ai API key
        base_url: Queue root (``FAL_QUEUE_URL``)
        poll_interval: Seconds between status polls
        timeout: Seconds to wait for a request to complete
        retry_base: Backoff base; attempt ``n`` waits ``retry_base * 2**n`` seconds
        client: Optional pre-built ``httpx.AsyncClient`` (not closed by this object)

    """

    def __init__(
        self,
        key: str,
        *,
        base_url: str = FAL_QUEUE_URL,
        poll_interval: float = FAL_POLL_INTERVAL,
        timeout: float = FAL_TIMEOUT,
        retry_base: float = RETRY_BASE_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.retry_base = retry_base
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
        self._headers = {
            "Authorization": f"Key {key}",
            "Accept": "application/json",
        }

    async def __aenter__(self) -> "FalClient":
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self, method: str, url: str, **kwargs: Any,  # noqa: ANN401
    ) -> dict[str, Any]:
        response = await self._client.request(method, url, headers=self._headers, **kwargs)
        if response.status_code >= HTTPStatus.BAD_REQUEST:
            msg = f"fal.ai {method} {url} returned {response.status_code}: {response.text[:300]}"
            raise FalError(msg, response.status_code)
        try:
            payload = response.json()
        except ValueError as exc:
            msg = f"fal.ai {method} {url} returned invalid JSON"
            raise FalError(msg, response.status_code) from exc
        if not isinstance(payload, dict):
            msg = f"fal.ai {method} {url} returned an unexpected payload"
            raise FalError(msg, response.status_code)
        return payload

    async def submit(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Enqueue a request and return the queue record (request_id, status_url, response_url)."""
        record = await self._request("POST", f"{self.base_url}/{endpoint}", json=payload)
        if "request_id" not in record:
            msg = f"fal.ai submit to {endpoint} did not return a request_id"
            raise FalError(msg)
        logger.debug("fal_request_submitted", endpoint=endpoint, request_id=record["request_id"])
        return record

    def _status_url(self, endpoint: str, request_id: str) -> str:
        return f"{self.base_url}/{app_id(endpoint)}/requests/{request_id}/status"

    def _response_url(self, endpoint: str, request_id: str) -> str:
        return f"{self.base_url}/{app_id(endpoint)}/requests/{request_id}"

    async def status(self, endpoint: str, request_id: str) -> dict[str, Any]:
        """Fetch the queue status of a request."""
        return await self._request("GET", self._status_url(endpoint, request_id))

    async def wait(
        self,
        endpoint: str,
        record: dict[str, Any],
        on_status: Callable[[str], None] | None = None,
    ) -> dict[str, Any]:
        """Poll until the request completes and return its response body."""
        request_id = str(record["request_id"])
        status_url = record.get("status_url") or self._status_url(endpoint, request_id)
        response_url = record.get("response_url") or self._response_url(endpoint, request_id)
        deadline = time.monotonic() + self.timeout

        while True:
            state = await self._request("GET", status_url)
            status = str(state.get("status", "")).upper()
            if status == "COMPLETED":
                if state.get("error"):
                    msg = f"fal.ai request {request_id} failed: {state['error']}"
                    raise FalError(msg)
                break
            if on_status is not None:
                if status == "IN_QUEUE":
                    on_status(f"Queued (position: {state.get('queue_position', '?')})")
                elif status == "IN_PROGRESS":
                    on_status("Generating...")
            if time.monotonic() > deadline:
                msg = f"fal.ai request {request_id} timed out after {self.timeout:.0f}s"
                raise FalError(msg)
            await asyncio.sleep(self.poll_interval)

        return await self._request("GET", response_url)

    async def run(
        self,
        endpoint: str,
        payload: dict[str, Any],
        on_status: Callable[[str], None] | None = None,
    ) -> FalResult:
        """Submit and wait once, without retries."""
        record = await self.submit(endpoint, payload)
        data = await self.wait(endpoint, record, on_status)
        return FalResult(request_id=str(record["request_id"]), data=data)

    async def subscribe(
        self,
        endpoint: str,
        payload: dict[str, Any],
        on_status: Callable[[str], None] | None = None,
        attempts: int = MAX_ATTEMPTS,
    ) -> FalResult:
        """
        Submit, wait and fetch the result, retrying transient failures.

        Raises:
            FalError: When the request is rejected (401/403) or every attempt fails.

        """
        last_error: Exception | None = None
        for attempt in range(attempts):
            try:
                return await self.run(endpoint, payload, on_status)
            except FalError as exc:
                if not exc.retryable:
                    logger.error("fal_auth_failed", endpoint=endpoint, status=exc.status_code)
                    raise
                last_error = exc
            except httpx.HTTPError as exc:
                last_error = exc

            if attempt < attempts - 1:
                delay = self.retry_base * 2**attempt
                logger.warning(
                    "fal_retry",
                    endpoint=endpoint,
                    attempt=attempt + 1,
                    delay=delay,
                    error=str(last_error),
                )
                if on_status is not None:
                    on_status(f"Retrying in {delay:g}s...")
                await asyncio.sleep(delay)

        msg = f"fal.ai request to {endpoint} failed after {attempts} attempts: {last_error}"
        raise FalError(msg) from last_error

    async def download(self, url: str, destination: Path) -> str:
        """Save a result file and return its content type."""
        response = await self._client.get(url, follow_redirects=True)
        if response.status_code >= HTTPStatus.BAD_REQUEST:
            msg = f"Failed to download image: {response.status_code} {response.reason_phrase}"
            raise FalError(msg, response.status_code)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(response.content)
        logger.debug("fal_file_downloaded", path=str(destination), size=len(response.content))
        return response.headers.get("content-type", "image/png")
