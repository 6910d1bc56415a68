"""Tests for the fal.ai queue client and job execution, against a mocked transport."""

import asyncio
import io
from collections.abc import Awaitable, Callable
from pathlib import Path

import httpx
import pytest
from PIL import Image

import uhd_skills.fal as f
from uhd_skills.t2i import queue
from uhd_skills.t2i.models import JobDefinition


BASE = "https://queue.test"
BANANA = "fal-ai/nano-banana-pro"


def _png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), (200, 10, 10)).save(buf, format="PNG")
    return buf.getvalue()


def _client(
    handler: Callable[[httpx.Request], httpx.Response | Awaitable[httpx.Response]],
) -> f.FalClient:
    transport = httpx.MockTransport(handler)
    return f.FalClient(
        "test-key",
        base_url=BASE,
        poll_interval=0,
        retry_base=0,
        client=httpx.AsyncClient(transport=transport),
    )


def _queue_handler(calls: list[str]) -> Callable[[httpx.Request], httpx.Response]:
    """Serve submit, status, result and the image download for one Banana request."""

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(f"{request.method} {request.url.path}")
        url = str(request.url)
        if request.method == "POST" and url == f"{BASE}/{BANANA}":
            assert request.headers["Authorization"] == "Key test-key"
            return httpx.Response(200, json={"request_id": "r1"})
        if url == f"{BASE}/{BANANA}/requests/r1/status":
            return httpx.Response(200, json={"status": "COMPLETED"})
        if url == f"{BASE}/{BANANA}/requests/r1":
            return httpx.Response(
                200,
                json={"images": [{"url": "https://cdn.test/a.png", "width": 4, "height": 4}]},
            )
        if url == "https://cdn.test/a.png":
            return httpx.Response(200, content=_png_bytes(), headers={"content-type": "image/png"})
        return httpx.Response(404, json={"detail": "not found"})

    return handler


def test_app_id() -> None:
    """Status routes use the first two endpoint segments."""
    assert f.app_id("fal-ai/bytedance/seedream/v4.5/text-to-image") == "fal-ai/bytedance"
    assert f.app_id("/fal-ai/nano-banana-pro/") == "fal-ai/nano-banana-pro"


def test_first_image_url() -> None:
    """Both single-image and list responses are understood."""
    assert f.first_image_url({"image": {"url": "u1"}}) == "u1"
    assert f.first_image_url({"images": [{"url": "u2"}]}) == "u2"
    assert f.first_image_url({"images": []}) is None


def test_require_fal_key_exits_when_unset(monkeypatch: pytest.MonkeyPatch) -> None:
    """A missing key is a hard exit with status 1."""
    monkeypatch.delenv("FAL_KEY", raising=False)
    with pytest.raises(SystemExit) as exc_info:
        f.require_fal_key()
    assert exc_info.value.code == 1


def test_subscribe_submits_polls_and_fetches() -> None:
    """A completed request returns its response body and request id."""
    calls: list[str] = []

    async def _run() -> f.FalResult:
        async with _client(_queue_handler(calls)) as client:
            return await client.subscribe(BANANA, {"prompt": "x"})

    result = asyncio.run(_run())

    assert result.request_id == "r1"
    assert result.data["images"][0]["url"] == "https://cdn.test/a.png"
    assert calls[0] == f"POST /{BANANA}"


def test_subscribe_retries_server_errors() -> None:
    """A 500 on submit is retried until the request goes through."""
    attempts = {"count": 0}
    inner = _queue_handler([])

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            attempts["count"] += 1
            if attempts["count"] < 3:
                return httpx.Response(500, text="busy")
        return inner(request)

    async def _run() -> f.FalResult:
        async with _client(handler) as client:
            return await client.subscribe(BANANA, {"prompt": "x"})

    result = asyncio.run(_run())

    assert result.request_id == "r1"
    assert attempts["count"] == 3


def test_subscribe_gives_up_after_max_attempts() -> None:
    """Persistent failures raise after the configured number of attempts."""
    attempts = {"count": 0}

    def handler(_request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        return httpx.Response(503, text="down")

    async def _run() -> None:
        async with _client(handler) as client:
            await client.subscribe(BANANA, {"prompt": "x"}, attempts=2)

    with pytest.raises(f.FalError, match="after 2 attempts"):
        asyncio.run(_run())
    assert attempts["count"] == 2


def test_subscribe_does_not_retry_auth_errors() -> None:
    """401 responses fail immediately."""
    attempts = {"count": 0}

    def handler(_request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        return httpx.Response(401, text="bad key")

    async def _run() -> None:
        async with _client(handler) as client:
            await client.subscribe(BANANA, {"prompt": "x"})

    with pytest.raises(f.FalError) as exc_info:
        asyncio.run(_run())
    assert exc_info.value.status_code == 401
    assert not exc_info.value.retryable
    assert attempts["count"] == 1


def test_execute_job_downloads_images(tmp_path: Path) -> None:
    """Generated images are saved under names derived from the prompt."""
    job = JobDefinition(prompt="A red square on a table", model="banana")

    async def _run() -> queue.JobResult:
        async with _client(_queue_handler([])) as client:
            return await queue.execute_job(client, job, tmp_path)

    result = asyncio.run(_run())

    assert result.request_id == "r1"
    assert [img.local_path.name for img in result.images] == ["red-square-table.png"]
    assert result.images[0].local_path.is_file()
    session_job = result.to_session_job(1)
    assert session_job.images[0].filename == "red-square-table.png"
    assert session_job.cost == pytest.approx(0.15)
    assert result.to_json_dict()["requestId"] == "r1"


def test_execute_batch_same_prompt_gets_distinct_files(tmp_path: Path) -> None:
    """Two jobs sharing a prompt never write to the same file, even with slow downloads."""
    serve = _queue_handler([])

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "cdn.test":
            await asyncio.sleep(0.05)
        return serve(request)

    jobs = [JobDefinition(prompt="A red square", model="banana") for _ in range(2)]

    async def _run() -> list[queue.JobResult | Exception]:
        async with _client(handler) as client:
            return await queue.execute_batch(client, jobs, tmp_path, 2)

    results = asyncio.run(_run())

    names = [r.images[0].local_path.name for r in results if isinstance(r, queue.JobResult)]
    assert sorted(names) == ["red-square-1.png", "red-square.png"]
    assert len(list(tmp_path.glob("*.png"))) == 2


def test_execute_job_without_images_fails(tmp_path: Path) -> None:
    """An empty result is an error rather than an empty job."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"request_id": "r2"})
        if request.url.path.endswith("/status"):
            return httpx.Response(200, json={"status": "COMPLETED"})
        return httpx.Response(200, json={"images": []})

    job = JobDefinition(prompt="nothing", model="seedream")

    async def _run() -> None:
        async with _client(handler) as client:
            await queue.execute_job(client, job, tmp_path)

    with pytest.raises(f.FalError, match="returned no images"):
        asyncio.run(_run())


def test_check_status_falls_back_to_banana() -> None:
    """Unknown to Seedream, the request is found on the Banana queue."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"/{BANANA}/requests/abc/status":
            return httpx.Response(200, json={"status": "IN_QUEUE", "queue_position": 3})
        return httpx.Response(404, text="unknown")

    async def _run() -> dict[str, object]:
        async with _client(handler) as client:
            return await queue.check_status(client, "abc")

    status = asyncio.run(_run())

    assert status == {"requestId": "abc", "status": "IN_QUEUE", "position": 3, "model": "banana"}
