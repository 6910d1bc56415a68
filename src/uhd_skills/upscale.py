"""
UHD image upscaler: 2x/4x AI upscaling through fal.ai models.

Every call costs money, so commands show a cost plan and ask for confirmation unless
``--yes``/``--json`` is given. ``FAL_KEY`` is required except for ``--dry-run``.
"""
# ruff: noqa: PLR0913

import asyncio
import tempfile
import time
from io import BytesIO
from pathlib import Path
from typing import Annotated, Literal

from cyclopts import App, Parameter, validators
from loguru import logger
from PIL import Image
from pydantic import BaseModel, ConfigDict

from uhd_skills.common import (
    CamelModel,
    LogOptions,
    confirm,
    emit_json,
    gather_inputs,
    human_size,
    init_logging,
    run_pool,
    single_input,
    split_results,
)
from uhd_skills.fal import FalClient, FalError, first_image_url, image_data_uri, require_fal_key


ModelId = Literal["clarity", "real-esrgan", "aura-sr", "creative"]
ModelChoice = Literal["auto", "clarity", "real-esrgan", "aura-sr", "creative"]
ScaleFactor = Literal[2, 4]
OutputFormat = Literal["png", "jpeg", "webp"]

AI_NAME_MARKERS = ("gen", "ai-", "dalle", "midjourney", "sd-")
DEFAULT_UPSCALE_CONCURRENCY = 2
DEFAULT_CREATIVITY = 0.5
CREATIVE_PROMPT = "high quality, detailed, sharp"


class UpscaleModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    endpoint: str
    display_name: str
    cost_per_image: float
    supports_4x: bool
    description: str


MODELS: dict[str, UpscaleModel] = {
    "clarity": UpscaleModel(
        id="clarity",
        endpoint="fal-ai/clarity-upscaler",
        display_name="Clarity Upscaler",
        cost_per_image=0.10,
        supports_4x=True,
        description="Best for photographs: faces, landscapes, products",
    ),
    "real-esrgan": UpscaleModel(
        id="real-esrgan",
        endpoint="fal-ai/real-esrgan",
        display_name="Real-ESRGAN",
        cost_per_image=0.05,
        supports_4x=True,
        description="General purpose: illustrations, anime, screenshots",
    ),
    "aura-sr": UpscaleModel(
        id="aura-sr",
        endpoint="fal-ai/aura-sr",
        display_name="Aura SR",
        cost_per_image=0.08,
        supports_4x=False,
        description="AI-generated images: fixes artifacts while upscaling",
    ),
    "creative": UpscaleModel(
        id="creative",
        endpoint="fal-ai/creative-upscaler",
        display_name="Creative Upscaler",
        cost_per_image=0.12,
        supports_4x=True,
        description="Artistic enhancement: adds detail, impressionistic",
    ),
}


class UpscaleResult(CamelModel):
    input: str
    output: str
    model: str
    scale: int
    input_width: int
    input_height: int
    output_width: int
    output_height: int
    input_size: int
    output_size: int
    cost: float
    duration: float
    request_id: str


class CompareEntry(CamelModel):
    model: str
    display_name: str
    output: str
    size: int
    size_human: str
    cost: float
    duration: float


class CompareResult(CamelModel):
    input: str
    input_width: int
    input_height: int
    output_width: int
    output_height: int
    scale: int
    results: list[CompareEntry]
    skipped: list[str]
    total_cost: float
    output_dir: str


app = App(name="uhd-upscale", help="Upscale images 2x or 4x with fal.ai models.")


def resolve_model(model: ModelChoice, source: Path) -> str:
    """
    Pick a model for ``auto``: Aura SR for files that look AI-generated, else Clarity.

    Examples:
        >>> resolve_model("auto", Path("midjourney-cat.png"))
        'aura-sr'
        >>> resolve_model("auto", Path("holiday.jpg"))
        'clarity'

    """
    if model != "auto":
        return model
    name = source.name.lower()
    if any(marker in name for marker in AI_NAME_MARKERS):
        return "aura-sr"
    return "clarity"


def format_cost(cost: float) -> str:
    return f"${cost:.2f}"


def extension_for(fmt: OutputFormat) -> str:
    return ".jpg" if fmt == "jpeg" else f".{fmt}"


def build_payload(model: str, source: Path, scale: int, creativity: float) -> dict[str, object]:
    payload: dict[str, object] = {"image_url": image_data_uri(source), "scale": scale}
    if model == "creative":
        payload["creativity"] = creativity
        payload["prompt"] = CREATIVE_PROMPT
    return payload


def _save_output(data: bytes, destination: Path, fmt: OutputFormat) -> tuple[int, int]:
    destination.parent.mkdir(parents=True, exist_ok=True)
    with Image.open(BytesIO(data)) as img:
        if fmt == "jpeg":
            img.convert("RGB").save(destination, format="JPEG", quality=95, optimize=True)
        elif fmt == "webp":
            img.save(destination, format="WEBP", quality=90)
        else:
            img.save(destination, format="PNG")
        return img.width, img.height


async def upscale_image(
    client: FalClient,
    source: Path,
    destination: Path,
    model: str,
    scale: int,
    fmt: OutputFormat = "png",
    creativity: float = DEFAULT_CREATIVITY,
) -> UpscaleResult:
    """
    Upscale one image and save it in ``fmt``.

    Raises:
        ValueError: If the model cannot upscale by ``scale``.
        FalError: If the API call or the download fails.

    """
    config = MODELS[model]
    if scale == 4 and not config.supports_4x:  # noqa: PLR2004
        msg = f"{config.display_name} does not support 4x upscaling. Use --scale 2."
        raise ValueError(msg)

    start = time.perf_counter()
    with Image.open(source) as probe:
        input_width, input_height = probe.size

    payload = build_payload(model, source, scale, creativity)
    result = await client.subscribe(config.endpoint, payload)
    url = first_image_url(result.data)
    if url is None:
        msg = "No image URL in API response"
        raise FalError(msg)

    with tempfile.TemporaryDirectory(prefix="uhd-") as tmp:
        downloaded = Path(tmp) / "upscaled"
        await client.download(url, downloaded)
        width, height = await asyncio.to_thread(
            _save_output, downloaded.read_bytes(), destination, fmt,
        )

    upscaled = UpscaleResult(
        input=str(source),
        output=str(destination),
        model=model,
        scale=scale,
        input_width=input_width,
        input_height=input_height,
        output_width=width,
        output_height=height,
        input_size=source.stat().st_size,
        output_size=destination.stat().st_size,
        cost=config.cost_per_image,
        duration=round((time.perf_counter() - start) * 1000, 1),
        request_id=result.request_id,
    )
    logger.info(
        "image_upscaled",
        input=source.name,
        output=str(destination),
        model=model,
        scale=scale,
    )
    return upscaled


ScaleOpt = Annotated[ScaleFactor, Parameter(name=("--scale", "-s"), help="Upscale factor")]
ModelOpt = Annotated[ModelChoice, Parameter(name=("--model", "-m"), help="Upscale model")]
FormatOpt = Annotated[OutputFormat, Parameter(name=("--format", "-f"), help="Output format")]
CreativityOpt = Annotated[
    float,
    Parameter(
        name="--creativity",
        validator=validators.Number(gte=0, lte=1),
        help="Creative model only",
    ),
]


@app.command
def upscale(
    image: Annotated[Path | None, Parameter(help="Image to upscale")] = None,
    *,
    scale: ScaleOpt = 2,
    model: ModelOpt = "auto",
    fmt: FormatOpt = "png",
    creativity: CreativityOpt = DEFAULT_CREATIVITY,
    output: Annotated[Path | None, Parameter(name=("--output", "-o"), help="Output path")] = None,
    stdin: Annotated[
        bool, Parameter(name="--stdin", help="Read the input path from stdin"),
    ] = False,
    yes: Annotated[bool, Parameter(name=("--yes", "-y"), help="Skip confirmation")] = False,
    dry_run: Annotated[bool, Parameter(name="--dry-run", help="Show the cost plan only")] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """
    Upscale one image.

    Examples:
        uhd-upscale upscale photo.jpg --scale 4 --model clarity

    """
    init_logging(log)
    source = single_input(image, stdin=stdin)
    chosen = resolve_model(model, source)
    config = MODELS[chosen]
    destination = output or source.with_name(f"{source.stem}-{scale}x{extension_for(fmt)}")

    if dry_run:
        plan = {
            "input": str(source), "output": str(destination), "model": chosen,
            "scale": scale, "cost": config.cost_per_image, "dryRun": True,
        }
        if as_json:
            emit_json(plan)
            return
        print(f"\nDry run: upscale {source.name}")  # noqa: T201
        print(f"  Model: {config.display_name}")  # noqa: T201
        print(f"  Scale: {scale}x")  # noqa: T201
        print(f"  Cost: {format_cost(config.cost_per_image)}")  # noqa: T201
        print(f"  Output: {destination}")  # noqa: T201
        return

    key = require_fal_key()
    if not (yes or as_json):
        print(f"\nUpscale: {source.name} -> {scale}x")  # noqa: T201
        print(f"  Model: {config.display_name} ({config.description})")  # noqa: T201
        print(f"  Cost: {format_cost(config.cost_per_image)}")  # noqa: T201
        if not confirm("Proceed?"):
            print("Cancelled.")  # noqa: T201
            return

    async def _run() -> UpscaleResult:
        async with FalClient(key) as client:
            return await upscale_image(client, source, destination, chosen, scale, fmt, creativity)

    try:
        result = asyncio.run(_run())
    except (OSError, ValueError, FalError) as exc:
        logger.error("upscale_failed", input=str(source), model=chosen, error=str(exc))
        raise SystemExit(1) from exc

    if as_json:
        emit_json(result)
        return
    print(f"\n{source.name} -> {Path(result.output).name}")  # noqa: T201
    print(f"  Model: {config.display_name}")  # noqa: T201
    print(  # noqa: T201
        f"  Scale: {result.input_width}x{result.input_height} -> "
        f"{result.output_width}x{result.output_height} ({scale}x)",
    )
    print(  # noqa: T201
        f"  Size: {human_size(result.input_size)} -> {human_size(result.output_size)}",
    )
    print(f"  Cost: {format_cost(result.cost)}")  # noqa: T201
    print(f"  Time: {result.duration / 1000:.1f}s")  # noqa: T201


@app.command
def batch(
    inputs: Annotated[list[Path] | None, Parameter(help="Folders or files to upscale")] = None,
    *,
    scale: ScaleOpt = 2,
    model: ModelOpt = "auto",
    fmt: FormatOpt = "png",
    creativity: CreativityOpt = DEFAULT_CREATIVITY,
    output: Annotated[
        Path | None, Parameter(name=("--output", "-o"), help="Output directory"),
    ] = None,
    recursive: Annotated[bool, Parameter(name=("--recursive", "-r"))] = False,
    concurrency: Annotated[
        int, Parameter(name=("--concurrency", "-c"), validator=validators.Number(gte=1)),
    ] = DEFAULT_UPSCALE_CONCURRENCY,
    stdin: Annotated[bool, Parameter(name="--stdin", help="Read input paths from stdin")] = False,
    yes: Annotated[bool, Parameter(name=("--yes", "-y"), help="Skip confirmation")] = False,
    dry_run: Annotated[bool, Parameter(name="--dry-run", help="Show the cost plan only")] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """
    Upscale every image in a folder.

    Outputs go to ``<dir>/upscaled-<scale>x``. Exit status: 1 if any image fails.
    """
    init_logging(log)
    files = gather_inputs(inputs, stdin=stdin, recursive=recursive)
    base_dir = inputs[0] if inputs and inputs[0].is_dir() else files[0].parent
    out_dir = output or base_dir / f"upscaled-{scale}x"
    chosen = {file: resolve_model(model, file) for file in files}
    estimated = sum(MODELS[m].cost_per_image for m in chosen.values())

    if not as_json:
        print(f"\nBatch upscale: {len(files)} images")  # noqa: T201
        print(f"  Model: {model}")  # noqa: T201
        print(f"  Scale: {scale}x")  # noqa: T201
        print(f"  Est. cost: {format_cost(estimated)}")  # noqa: T201
        print(f"  Output: {out_dir}")  # noqa: T201
    if dry_run:
        if as_json:
            emit_json(
                {
                    "dryRun": True,
                    "files": [str(f) for f in files],
                    "estimatedCost": round(estimated, 2),
                    "output": str(out_dir),
                },
            )
        return

    key = require_fal_key()
    if not (yes or as_json) and not confirm("Proceed?"):
        print("Cancelled.")  # noqa: T201
        return

    ext = extension_for(fmt)

    async def _run() -> list[UpscaleResult | Exception]:
        async with FalClient(key) as client:

            async def _one(file: Path) -> UpscaleResult:
                destination = out_dir / f"{file.stem}-{scale}x{ext}"
                return await upscale_image(
                    client, file, destination, chosen[file], scale, fmt, creativity,
                )

            return await run_pool(files, _one, concurrency)

    results, failed = split_results(asyncio.run(_run()))
    total_cost = sum(r.cost for r in results)
    logger.info("batch_upscale_summary", total=len(files), successful=len(results), failed=failed)
    if as_json:
        emit_json(
            {"results": [r.to_json_dict() for r in results], "failed": failed,
             "totalCost": round(total_cost, 2)},
        )
    else:
        print(f"\nDone: {len(results)}/{len(files)} images upscaled {scale}x")  # noqa: T201
        print(f"  Total cost: {format_cost(total_cost)}")  # noqa: T201
        print(f"  Output: {out_dir}")  # noqa: T201
    if failed:
        raise SystemExit(1)


@app.command
def compare(
    image: Annotated[Path | None, Parameter(help="Image to upscale with every model")] = None,
    *,
    scale: ScaleOpt = 2,
    fmt: FormatOpt = "png",
    creativity: CreativityOpt = DEFAULT_CREATIVITY,
    output: Annotated[
        Path | None, Parameter(name=("--output", "-o"), help="Output directory"),
    ] = None,
    stdin: Annotated[
        bool, Parameter(name="--stdin", help="Read the input path from stdin"),
    ] = False,
    yes: Annotated[bool, Parameter(name=("--yes", "-y"), help="Skip confirmation")] = False,
    dry_run: Annotated[bool, Parameter(name="--dry-run", help="Show the cost plan only")] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """Upscale one image with every model for side-by-side comparison."""
    init_logging(log)
    source = single_input(image, stdin=stdin)
    out_dir = output or source.parent / f"compare-{source.stem}"
    models = [m for m, cfg in MODELS.items() if scale == 2 or cfg.supports_4x]  # noqa: PLR2004
    skipped = [m for m in MODELS if m not in models]
    total = sum(MODELS[m].cost_per_image for m in models)

    if not as_json:
        print(f"\nCompare upscale: {source.name}")  # noqa: T201
        print(f"  Models: {', '.join(MODELS[m].display_name for m in models)}")  # noqa: T201
        for m in skipped:
            print(f"  Skipping {MODELS[m].display_name} (no {scale}x support)")  # noqa: T201
        print(f"  Scale: {scale}x")  # noqa: T201
        print(f"  Total cost: {format_cost(total)}")  # noqa: T201
    if dry_run:
        if as_json:
            emit_json(
                {
                    "dryRun": True,
                    "models": models,
                    "skipped": skipped,
                    "totalCost": round(total, 2),
                },
            )
        return

    key = require_fal_key()
    if not (yes or as_json) and not confirm("Proceed?"):
        print("Cancelled.")  # noqa: T201
        return

    ext = extension_for(fmt)

    async def _run() -> list[UpscaleResult | Exception]:
        async with FalClient(key) as client:

            async def _one(model_id: str) -> UpscaleResult:
                destination = out_dir / f"{source.stem}-{model_id}-{scale}x{ext}"
                return await upscale_image(
                    client, source, destination, model_id, scale, fmt, creativity,
                )

            return await run_pool(models, _one, len(models))

    results, failed = split_results(asyncio.run(_run()))
    with Image.open(source) as probe:
        width, height = probe.size
    entries = [
        CompareEntry(
            model=r.model,
            display_name=MODELS[r.model].display_name,
            output=r.output,
            size=r.output_size,
            size_human=human_size(r.output_size),
            cost=r.cost,
            duration=r.duration,
        )
        for r in results
    ]
    summary = CompareResult(
        input=source.name,
        input_width=width,
        input_height=height,
        output_width=width * scale,
        output_height=height * scale,
        scale=scale,
        results=entries,
        skipped=skipped,
        total_cost=round(sum(e.cost for e in entries), 2),
        output_dir=str(out_dir),
    )

    if as_json:
        emit_json(summary)
    else:
        print(f"\n{'Model':<20} {'Size':>10} {'Time':>8} {'Cost':>7}")  # noqa: T201
        for e in entries:
            print(  # noqa: T201
                f"{e.display_name:<20} {e.size_human:>10} "
                f"{e.duration / 1000:>7.1f}s {format_cost(e.cost):>7}",
            )
        print(f"\nTotal cost: {format_cost(summary.total_cost)}  Output: {out_dir}")  # noqa: T201
    if failed:
        raise SystemExit(1)


if __name__ == "__main__":
    app()
