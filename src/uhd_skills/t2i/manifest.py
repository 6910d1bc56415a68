"""Batch manifests: a JSON file with optional ``defaults`` and a list of ``jobs``."""

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from uhd_skills.common import CamelModel
from uhd_skills.t2i.models import JobDefinition, ModelChoice, OutputFormat, resolve_model


class ManifestJobEntry(CamelModel):
    prompt: str | None = None
    name: str | None = None
    model: ModelChoice | None = None
    num_images: int | None = None
    image_size: str | None = None
    resolution: str | None = None
    aspect_ratio: str | None = None
    enable_web_search: bool | None = None
    output_format: OutputFormat | None = None
    seed: int | None = None


class BatchManifest(CamelModel):
    defaults: ManifestJobEntry = ManifestJobEntry()
    jobs: list[ManifestJobEntry]


def parse_manifest(path: Path) -> BatchManifest:
    """
    Read and validate a manifest file.

    Raises:
        ValueError: If the file is unreadable, not JSON, has no jobs or a job has no
            string ``prompt``.

    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read manifest file: {path}"
        raise ValueError(msg) from exc
    try:
        data: Any = json.loads(raw)
    except json.JSONDecodeError as exc:
        msg = f"Invalid JSON in manifest file: {path}"
        raise ValueError(msg) from exc

    jobs = data.get("jobs") if isinstance(data, dict) else None
    if not isinstance(jobs, list) or not jobs:
        msg = "Manifest must have a non-empty 'jobs' array"
        raise ValueError(msg)
    for i, job in enumerate(jobs, start=1):
        if not isinstance(job, dict) or not isinstance(job.get("prompt"), str) or not job["prompt"]:
            msg = f"Job {i}: 'prompt' is required and must be a string"
            raise ValueError(msg)

    try:
        return BatchManifest.model_validate(data)
    except ValidationError as exc:
        msg = f"Invalid manifest {path}: {exc}"
        raise ValueError(msg) from exc


def resolve_manifest_jobs(manifest: BatchManifest) -> list[JobDefinition]:
    """Merge defaults into each entry and resolve ``auto`` models per prompt."""
    defaults = manifest.defaults.model_dump(exclude_none=True)
    jobs: list[JobDefinition] = []
    for entry in manifest.jobs:
        merged = {**defaults, **entry.model_dump(exclude_none=True)}
        prompt = str(merged.pop("prompt"))
        model = resolve_model(merged.pop("model", "auto"), prompt)
        jobs.append(JobDefinition(prompt=prompt, model=model, **merged))
    return jobs
