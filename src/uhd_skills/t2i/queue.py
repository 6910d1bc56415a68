"""Run generation jobs on fal.ai and download their images."""

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from uhd_skills.common import run_pool
from uhd_skills.fal import FalClient, FalError
from uhd_skills.t2i.cost import estimate_job_cost
from uhd_skills.t2i.models import MODELS, JobDefinition, build_input
from uhd_skills.t2i.naming import generate_filenames, slugify_prompt
from uhd_skills.t2i.session import SessionImage, SessionJob


@dataclass
class DownloadedImage:
    url: str
    local_path: Path
    width: int
    height: int
    content_type: str


@dataclass
class JobResult:
    job: JobDefinition
    request_id: str
    duration: float
    images: list[DownloadedImage] = field(default_factory=list)

    def to_session_job(self, round_number: int) -> SessionJob:
        return SessionJob(
            prompt=self.job.prompt,
            model=self.job.model,
            num_images=self.job.num_images,
            cost=estimate_job_cost(self.job),
            round=round_number,
            params=self.job.params(),
            images=[
                SessionImage(
                    filename=img.local_path.name,
                    width=img.width,
                    height=img.height,
                    request_id=self.request_id,
                    url=img.url,
                )
                for img in self.images
            ],
        )

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "model": self.job.model,
            "prompt": self.job.prompt,
            "requestId": self.request_id,
            "durationMs": round(self.duration * 1000),
            "images": [
                {
                    "path": str(img.local_path),
                    "url": img.url,
                    "width": img.width,
                    "height": img.height,
                }
                for img in self.images
            ],
        }


ProgressCallback = Callable[[str], None]


async def execute_job(
    client: FalClient,
    job: JobDefinition,
    out_dir: Path,
    on_progress: ProgressCallback | None = None,
    reserved: set[str] | None = None,
) -> JobResult:
    """
    Generate one job's images into ``out_dir``.

    The request is retried by :meth:`FalClient.subscribe`; file names come from the job
    name or a slug of the prompt. Names are claimed in ``reserved`` before the first
    download starts, so jobs running side by side cannot write the same file.

    Raises:
        FalError: If generation or a download fails.

    """
    started = time.perf_counter()
    with logger.contextualize(model=job.model):
        result = await client.subscribe(job.config.endpoint, build_input(job), on_progress)
        images = result.data.get("images")
        if not isinstance(images, list) or not images:
            msg = f"{job.config.display_name} returned no images (request {result.request_id})"
            raise FalError(msg)

        base_name = job.name or slugify_prompt(job.prompt)
        filenames = generate_filenames(
            base_name, len(images), job.output_format, out_dir, reserved,
        )
        downloaded: list[DownloadedImage] = []
        for info, filename in zip(images, filenames, strict=True):
            destination = out_dir / filename
            content_type = await client.download(str(info["url"]), destination)
            downloaded.append(
                DownloadedImage(
                    url=str(info["url"]),
                    local_path=destination,
                    width=int(info.get("width") or 0),
                    height=int(info.get("height") or 0),
                    content_type=str(info.get("content_type") or content_type),
                ),
            )
        logger.info("job_completed", request_id=result.request_id, images=len(downloaded))

    return JobResult(
        job=job,
        request_id=result.request_id,
        duration=time.perf_counter() - started,
        images=downloaded,
    )


async def execute_batch(
    client: FalClient,
    jobs: Sequence[JobDefinition],
    out_dir: Path,
    concurrency: int,
    on_progress: Callable[[int, str], None] | None = None,
) -> list[JobResult | Exception]:
    """Run jobs through the worker pool; results (or exceptions) keep the job order."""
    indexed = list(enumerate(jobs))
    reserved: set[str] = set()

    async def _one(item: tuple[int, JobDefinition]) -> JobResult:
        idx, job = item

        def _report(status: str) -> None:
            if on_progress is not None:
                on_progress(idx, status)

        _report("Starting...")
        result = await execute_job(client, job, out_dir, _report, reserved)
        _report("Done")
        return result

    return await run_pool(indexed, _one, concurrency)


async def check_status(client: FalClient, request_id: str) -> dict[str, Any]:
    """
    Queue status of a request, trying the Seedream endpoint first and then Banana.

    Raises:
        FalError: If neither endpoint knows the request.

    """
    last_error: FalError | None = None
    for model in (MODELS["seedream"], MODELS["banana"]):
        try:
            state = await client.status(model.endpoint, request_id)
        except FalError as exc:
            logger.debug("status_lookup_failed", endpoint=model.endpoint, error=str(exc))
            last_error = exc
            continue
        return {
            "requestId": request_id,
            "status": state.get("status", "UNKNOWN"),
            "position": state.get("queue_position"),
            "model": model.id,
        }
    msg = f"Could not find request: {request_id}"
    raise FalError(msg) from last_error
