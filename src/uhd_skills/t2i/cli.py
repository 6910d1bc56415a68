"""
UHD text-to-image CLI: generate, review, refine and finalize images with fal.ai models.

Every generation run creates a session under ``$UHD_HOME/sessions``; ``review`` opens a
browser picker over it, ``refine`` regenerates what was marked for regeneration and
``finalize`` copies the keepers into a project folder.
"""
# ruff: noqa: PLR0913

import asyncio
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter, validators
from loguru import logger

from uhd_skills.common import DEFAULT_CONCURRENCY, LogOptions, confirm, emit_json, init_logging
from uhd_skills.fal import FalClient, FalError, require_fal_key
from uhd_skills.t2i.cost import estimate_job_cost, estimate_total_cost, format_cost
from uhd_skills.t2i.finalize import finalize_session
from uhd_skills.t2i.manifest import parse_manifest, resolve_manifest_jobs
from uhd_skills.t2i.models import MODELS, JobDefinition, ModelChoice, OutputFormat, resolve_model
from uhd_skills.t2i.naming import generate_filenames, slugify_prompt
from uhd_skills.t2i.queue import JobResult, check_status, execute_batch
from uhd_skills.t2i.review import DEFAULT_REVIEW_PORT, serve
from uhd_skills.t2i.session import SelectionEntry, SessionError, SessionMeta, SessionStore, now_iso


COMPARE_CONCURRENCY = 2
RULE = "-" * 40

app = App(name="uhd-t2i", help="Generate images from text with fal.ai and review them.")


@Parameter(name="*")
@dataclass(frozen=True)
class GenerationOptions:
    """Model and output flags for a single prompt."""

    model: Annotated[
        ModelChoice, Parameter(name=("--model", "-m"), help="seedream, banana or auto"),
    ] = "auto"
    num_images: Annotated[
        int,
        Parameter(
            name=("--num", "-n"),
            validator=validators.Number(gte=1),
            help="Images per job",
        ),
    ] = 1
    image_size: Annotated[str, Parameter(name="--size", help="Seedream image_size")] = "auto_2K"
    resolution: Annotated[
        str, Parameter(name="--resolution", help="Banana resolution: 1K, 2K, 4K"),
    ] = "2K"
    aspect_ratio: Annotated[str, Parameter(name="--aspect", help="Banana aspect ratio")] = "auto"
    output_format: Annotated[OutputFormat, Parameter(name="--format")] = "png"
    web_search: Annotated[
        bool, Parameter(name="--web-search", help="Banana web search (+$0.015/image)"),
    ] = False
    seed: Annotated[int | None, Parameter(name="--seed")] = None
    name: Annotated[str | None, Parameter(name="--name", help="Output filename base")] = None

    def job(self, prompt: str, model: str | None = None, name: str | None = None) -> JobDefinition:
        chosen = model or resolve_model(self.model, prompt)
        return JobDefinition(
            prompt=prompt,
            model=chosen,
            num_images=self.num_images,
            name=name or self.name,
            image_size=self.image_size,
            resolution=self.resolution,
            aspect_ratio=self.aspect_ratio,
            enable_web_search=self.web_search and chosen == "banana",
            output_format=self.output_format,
            seed=self.seed,
        )


YesOpt = Annotated[bool, Parameter(name=("--yes", "-y"), help="Skip confirmation")]
JsonOpt = Annotated[bool, Parameter(name="--json", help="JSON output (implies --yes)")]
DryRunOpt = Annotated[bool, Parameter(name="--dry-run", help="Show the plan only")]
ConcurrencyOpt = Annotated[
    int, Parameter(name=("--concurrency", "-c"), validator=validators.Number(gte=1)),
]


def _check_limits(jobs: list[JobDefinition]) -> None:
    for job in jobs:
        if job.num_images > job.config.max_images:
            logger.error(
                "too_many_images",
                model=job.config.display_name,
                requested=job.num_images,
                max_images=job.config.max_images,
            )
            raise SystemExit(1)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def print_plan(jobs: list[JobDefinition], out_dir: Path, session_id: str | None = None) -> None:
    """Show each job's model, file names and cost before anything is spent."""
    print("\n=== UHD Generation Plan ===\n")  # noqa: T201
    if session_id:
        print(f"Session: {session_id}\n")  # noqa: T201
    planned: set[str] = set()
    for i, job in enumerate(jobs, start=1):
        model = job.config
        base_name = job.name or slugify_prompt(job.prompt)
        filenames = generate_filenames(
            base_name, job.num_images, job.output_format, out_dir, planned,
        )
        cost = estimate_job_cost(job)
        print(f"Job {i}/{len(jobs)}:")  # noqa: T201
        print(f"  Model:      {model.display_name}")  # noqa: T201
        print(f'  Prompt:     "{_truncate(job.prompt, 60)}"')  # noqa: T201
        if job.model == "seedream":
            print(f"  Size:       {job.image_size}")  # noqa: T201
        else:
            print(f"  Resolution: {job.resolution}")  # noqa: T201
            if job.aspect_ratio != "auto":
                print(f"  Aspect:     {job.aspect_ratio}")  # noqa: T201
            if job.enable_web_search and model.web_search_cost:
                surcharge = format_cost(model.web_search_cost * job.num_images)
                print(f"  Web search: enabled (+{surcharge})")  # noqa: T201
        print(f"  Images:     {job.num_images}")  # noqa: T201
        print(f"  Filenames:  {filenames[0]}")  # noqa: T201
        for filename in filenames[1:]:
            print(f"              {filename}")  # noqa: T201
        print(  # noqa: T201
            f"  Cost:       {format_cost(cost)} "
            f"({job.num_images} x {format_cost(cost / job.num_images)})",
        )
        if job.seed is not None:
            print(f"  Seed:       {job.seed}")  # noqa: T201
        if i < len(jobs):
            print()  # noqa: T201
    total_images = sum(job.num_images for job in jobs)
    print(f"\n{RULE}")  # noqa: T201
    print(  # noqa: T201
        f"Total: {total_images} image{'s' if total_images != 1 else ''}, "
        f"{format_cost(estimate_total_cost(jobs))}",
    )
    print(f"Output: {out_dir}")  # noqa: T201
    print(RULE)  # noqa: T201


def print_results(results: list[JobResult], session_id: str) -> None:
    print("\n=== UHD Results ===\n")  # noqa: T201
    print(f"Session: {session_id}\n")  # noqa: T201
    for result in results:
        print(f"{result.job.config.display_name} ({result.duration:.1f}s):")  # noqa: T201
        for img in result.images:
            print(f"  {img.local_path} ({img.width}x{img.height})")  # noqa: T201
    total = sum(len(r.images) for r in results)
    duration = sum(r.duration for r in results)
    print(f"\nDone: {total} image{'s' if total != 1 else ''} in {duration:.1f}s")  # noqa: T201
    print(f"\nNext: uhd-t2i review {session_id}")  # noqa: T201


def _progress(as_json: bool, label: Callable[[int], str]) -> Callable[[int, str], None] | None:
    if as_json:
        return None

    def _write(idx: int, status: str) -> None:
        sys.stderr.write(f"\r  {label(idx)}: {status}    ")
        sys.stderr.flush()

    return _write


def _generate(
    store: SessionStore,
    jobs: list[JobDefinition],
    *,
    session: SessionMeta,
    round_number: int,
    concurrency: int,
    as_json: bool,
    label: Callable[[int], str],
) -> tuple[list[JobResult], int]:
    """Run jobs into the session's image folder and record the finished ones in its metadata."""
    key = require_fal_key()
    images_dir = store.images_dir(session.id)

    async def _run() -> list[JobResult | Exception]:
        async with FalClient(key) as client:
            progress = _progress(as_json, label)
            return await execute_batch(client, jobs, images_dir, concurrency, progress)

    raw = asyncio.run(_run())
    if not as_json:
        sys.stderr.write("\r" + " " * 60 + "\r")

    results: list[JobResult] = []
    for job, outcome in zip(jobs, raw, strict=True):
        if isinstance(outcome, Exception):
            logger.error(
                "generation_failed",
                model=job.model,
                prompt=_truncate(job.prompt, 60),
                error=str(outcome),
            )
        else:
            results.append(outcome)

    session.jobs.extend(result.to_session_job(round_number) for result in results)
    session.total_cost += estimate_total_cost(result.job for result in results)
    store.write_meta(session)
    return results, len(jobs) - len(results)


def _run_new_session(
    jobs: list[JobDefinition],
    command: str,
    *,
    concurrency: int,
    yes: bool,
    dry_run: bool,
    as_json: bool,
    label: Callable[[int], str],
) -> None:
    _check_limits(jobs)
    store = SessionStore()
    preview_dir = store.root / "<new-session>" / "images"
    if dry_run:
        if as_json:
            emit_json(
                {
                    "dryRun": True,
                    "jobs": [job.to_json_dict() for job in jobs],
                    "totalCost": round(estimate_total_cost(jobs), 4),
                },
            )
        else:
            print_plan(jobs, preview_dir)
        return

    if not as_json:
        print_plan(jobs, preview_dir)
    require_fal_key()
    if not (yes or as_json) and not confirm("Proceed?"):
        print("Cancelled.")  # noqa: T201
        return

    session = store.create(jobs[0].prompt, command)
    results, failed = _generate(
        store,
        jobs,
        session=session,
        round_number=0,
        concurrency=concurrency,
        as_json=as_json,
        label=label,
    )
    if as_json:
        emit_json(
            {
                "sessionId": session.id,
                "results": [r.to_json_dict() for r in results],
                "failed": failed,
            },
        )
    else:
        print_results(results, session.id)
    if failed:
        raise SystemExit(1)


def _resolve_session(store: SessionStore, session_id: str | None) -> str:
    try:
        return store.resolve(session_id)
    except SessionError as exc:
        logger.error("session_not_resolved", error=str(exc))
        raise SystemExit(1) from exc


@app.command
def generate(
    prompt: Annotated[str, Parameter(help="Text prompt")],
    *,
    options: GenerationOptions | None = None,
    yes: YesOpt = False,
    dry_run: DryRunOpt = False,
    as_json: JsonOpt = False,
    log: LogOptions | None = None,
) -> None:
    """
    Generate image(s) from a text prompt.

    Examples:
        uhd-t2i generate "A white kitten in a teacup" --num 2
        uhd-t2i generate "Badge with 'AI Summit'" -m banana --web-search

    """
    init_logging(log)
    if not prompt.strip():
        logger.error("prompt_required")
        raise SystemExit(1)
    options = options or GenerationOptions()
    job = options.job(prompt)
    _run_new_session(
        [job], "generate",
        concurrency=1, yes=yes, dry_run=dry_run, as_json=as_json,
        label=lambda _idx: job.config.display_name,
    )


@app.command
def batch(
    manifest: Annotated[
        Path, Parameter(validator=validators.Path(exists=True), help="Manifest JSON"),
    ],
    *,
    concurrency: ConcurrencyOpt = DEFAULT_CONCURRENCY,
    yes: YesOpt = False,
    dry_run: DryRunOpt = False,
    as_json: JsonOpt = False,
    log: LogOptions | None = None,
) -> None:
    """Generate every job of a JSON manifest (``{"defaults": {...}, "jobs": [...]}``)."""
    init_logging(log)
    try:
        jobs = resolve_manifest_jobs(parse_manifest(manifest))
    except ValueError as exc:
        logger.error("invalid_manifest", path=str(manifest), error=str(exc))
        raise SystemExit(1) from exc
    _run_new_session(
        jobs, "batch",
        concurrency=concurrency, yes=yes, dry_run=dry_run, as_json=as_json,
        label=lambda idx: f"Job {idx + 1}/{len(jobs)}",
    )


@app.command
def compare(
    prompt: Annotated[str, Parameter(help="Text prompt")],
    *,
    options: GenerationOptions | None = None,
    yes: YesOpt = False,
    dry_run: DryRunOpt = False,
    as_json: JsonOpt = False,
    log: LogOptions | None = None,
) -> None:
    """Generate the same prompt with every model."""
    init_logging(log)
    options = options or GenerationOptions()
    base = options.name or slugify_prompt(prompt)
    jobs = [options.job(prompt, model=model_id, name=f"{base}-{model_id}") for model_id in MODELS]
    _run_new_session(
        jobs, "compare",
        concurrency=COMPARE_CONCURRENCY, yes=yes, dry_run=dry_run, as_json=as_json,
        label=lambda idx: jobs[idx].config.display_name,
    )


@app.command
def review(
    session_ids: Annotated[
        list[str] | None, Parameter(help="Session ids or prefixes (default latest)"),
    ] = None,
    *,
    port: Annotated[
        int, Parameter(name="--port", validator=validators.Number(gte=0, lte=65535)),
    ] = (
        DEFAULT_REVIEW_PORT
    ),
    no_browser: Annotated[
        bool, Parameter(name="--no-browser", help="Do not open a browser"),
    ] = False,
    log: LogOptions | None = None,
) -> None:
    """Open the browser review picker for one or more sessions."""
    init_logging(log)
    store = SessionStore()
    resolved = [_resolve_session(store, sid) for sid in session_ids] if session_ids else [
        _resolve_session(store, None),
    ]
    resolved = list(dict.fromkeys(resolved))
    mode = "multi" if len(resolved) > 1 else "single"
    serve(store, resolved, mode, port=port, open_browser=not no_browser)


def build_refine_jobs(meta: SessionMeta, entries: list[SelectionEntry]) -> list[JobDefinition]:
    """
    New jobs for images marked ``regenerate``, inheriting model and parameters from the job
    that produced each image (the first job when the image is unknown).
    """
    jobs: list[JobDefinition] = []
    for entry in entries:
        original = next(
            (job for job in meta.jobs if any(img.filename == entry.filename for img in job.images)),
            meta.jobs[0],
        )
        params = original.params
        jobs.append(
            JobDefinition(
                prompt=entry.new_prompt or original.prompt,
                model=original.model,
                num_images=entry.num_images or 1,
                image_size=params.get("imageSize", "auto_2K"),
                resolution=params.get("resolution", "2K"),
                aspect_ratio=params.get("aspectRatio", "auto"),
                enable_web_search=bool(params.get("enableWebSearch", False)),
                output_format=params.get("outputFormat", "png"),
                seed=params.get("seed"),
            ),
        )
    return jobs


@app.command
def refine(
    session_id: Annotated[
        str | None, Parameter(help="Session id or prefix (default latest)"),
    ] = None,
    *,
    concurrency: ConcurrencyOpt = DEFAULT_CONCURRENCY,
    yes: YesOpt = False,
    dry_run: DryRunOpt = False,
    as_json: JsonOpt = False,
    log: LogOptions | None = None,
) -> None:
    """Regenerate the images marked for regeneration in the review picker."""
    init_logging(log)
    store = SessionStore()
    sid = _resolve_session(store, session_id)
    meta = store.read_meta(sid)
    selections = store.read_selections(sid)
    if selections is None:
        logger.error("no_selections_found", session=sid, hint="Run 'review' first to select images")
        raise SystemExit(1)

    regen = [s for s in selections.selections if s.status == "regenerate"]
    if not regen or not meta.jobs:
        if as_json:
            message = "No images marked for regeneration."
            emit_json({"sessionId": sid, "results": [], "message": message})
        else:
            print("No images marked for regeneration.")  # noqa: T201
        return

    next_round = meta.current_round + 1
    jobs = build_refine_jobs(meta, regen)
    _check_limits(jobs)
    if not as_json:
        print(f"\n=== UHD Refinement (Round {next_round}) ===\n")  # noqa: T201
        print(f"Session: {sid}")  # noqa: T201
        print(f"Regenerating {len(regen)} job(s)...")  # noqa: T201
        print_plan(jobs, store.images_dir(sid))
    if dry_run:
        if as_json:
            emit_json({"dryRun": True, "sessionId": sid, "jobs": [j.to_json_dict() for j in jobs]})
        return
    require_fal_key()
    if not (yes or as_json) and not confirm("Proceed with refinement?"):
        print("Cancelled.")  # noqa: T201
        return

    results, failed = _generate(
        store, jobs, session=meta, round_number=next_round, concurrency=concurrency,
        as_json=as_json, label=lambda idx: f"Regen {idx + 1}/{len(jobs)}",
    )
    meta.status = "refined"
    store.write_meta(meta)

    kept = [s for s in selections.selections if s.status != "regenerate"]
    kept.extend(
        SelectionEntry(filename=img.local_path.name, status="keep")
        for result in results
        for img in result.images
    )
    selections.selections = kept
    selections.round = next_round
    selections.timestamp = now_iso()
    store.write_selections(sid, selections)

    if as_json:
        emit_json(
            {
                "sessionId": sid,
                "results": [r.to_json_dict() for r in results],
                "failed": failed,
            },
        )
    else:
        print_results(results, sid)
    if failed:
        raise SystemExit(1)


@app.command
def finalize(
    session_id: Annotated[
        str | None, Parameter(help="Session id or prefix (default latest)"),
    ] = None,
    *,
    dest: Annotated[Path, Parameter(name=("--dest", "-d"), help="Destination folder")] = Path(),
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """Copy the kept images of a session into a folder."""
    init_logging(log)
    store = SessionStore()
    sid = _resolve_session(store, session_id)
    try:
        copied = finalize_session(store, sid, dest)
    except OSError as exc:
        logger.error("finalize_failed", session=sid, error=str(exc))
        raise SystemExit(1) from exc

    if as_json:
        emit_json({"sessionId": sid, "copied": [str(p) for p in copied]})
    elif not copied:
        print("No images to finalize.")  # noqa: T201
    else:
        print(f"\nFinalized {len(copied)} image(s) to {dest}/")  # noqa: T201
        for path in copied:
            print(f"  {path}")  # noqa: T201


@app.command
def sessions(
    *,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """List sessions, newest first."""
    init_logging(log)
    store = SessionStore()
    metas = [store.read_meta(sid) for sid in store.list_ids()]
    if as_json:
        emit_json([meta.to_json_dict() for meta in metas])
        return
    if not metas:
        print("No sessions found.")  # noqa: T201
        return
    print("\n=== UHD Sessions ===\n")  # noqa: T201
    for meta in metas:
        print(f"  {meta.id}")  # noqa: T201
        print(  # noqa: T201
            f"    Status: {meta.status}  |  {meta.image_count} images  |  "
            f"{format_cost(meta.total_cost)}  |  {meta.command}",
        )


@app.command
def clean(
    session_id: Annotated[
        str | None, Parameter(help="Session id or prefix (default latest)"),
    ] = None,
    *,
    all_sessions: Annotated[bool, Parameter(name="--all", help="Delete every session")] = False,
    yes: Annotated[bool, Parameter(name=("--yes", "-y"), help="Skip confirmation")] = False,
    log: LogOptions | None = None,
) -> None:
    """Delete one session (default latest) or all of them."""
    init_logging(log)
    store = SessionStore()
    if all_sessions:
        if not yes and not confirm("Delete ALL sessions?"):
            print("Cancelled.")  # noqa: T201
            return
        count = store.delete_all()
        print(f"All sessions deleted ({count}).")  # noqa: T201
        return

    sid = _resolve_session(store, session_id)
    if not yes and not confirm(f"Delete session {sid}?"):
        print("Cancelled.")  # noqa: T201
        return
    store.delete(sid)
    print(f"Session {sid} deleted.")  # noqa: T201


@app.command
def status(
    request_id: Annotated[str, Parameter(help="fal.ai request id")],
    *,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """Check the queue status of a request."""
    init_logging(log)
    key = require_fal_key()

    async def _run() -> dict[str, object]:
        async with FalClient(key) as client:
            return await check_status(client, request_id)

    try:
        state = asyncio.run(_run())
    except FalError as exc:
        logger.error("request_not_found", request_id=request_id, error=str(exc))
        raise SystemExit(1) from exc
    if as_json:
        emit_json(state)
        return
    print(f"Request: {state['requestId']}")  # noqa: T201
    print(f"Status:  {state['status']}")  # noqa: T201
    if state.get("position") is not None:
        print(f"Queue position: {state['position']}")  # noqa: T201


if __name__ == "__main__":
    app()
