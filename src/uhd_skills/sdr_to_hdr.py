"""
UHD SDR-to-HDR converter.

Two methods are available:
- ``gainmap``: local tone expansion (shadow lift, highlight boost scaled by the target
  headroom) followed by HDR encoding with PQ, HLG or SDR transfer
- ``ai``: fal.ai clarity upscaler at scale 1 to recover detail, then the same expansion

``auto`` looks at the histogram and picks ``ai`` only for images with clipped highlights and
little dynamic range.
"""
# ruff: noqa: PLR0913

import asyncio
import math
import tempfile
import time
from pathlib import Path
from typing import Annotated, Literal

import numpy as np
from cyclopts import App, Parameter, validators
from loguru import logger
from PIL import Image, ImageOps
from pydantic import BaseModel

from uhd_skills.common import (
    DEFAULT_CONCURRENCY,
    CamelModel,
    LogOptions,
    confirm,
    emit_json,
    gather_inputs,
    human_size,
    init_logging,
    open_image,
    output_path,
    run_pool,
    single_input,
    split_results,
)
from uhd_skills.fal import FalClient, FalError, first_image_url, image_data_uri, require_fal_key
from uhd_skills.hdr_encode import (
    Cicp,
    HdrCapabilities,
    HdrColorSpace,
    HdrEncodeOptions,
    HdrOutputFormat,
    HdrTransfer,
    capabilities,
    encode_hdr,
)


Method = Literal["gainmap", "ai", "auto"]
MapType = Literal["rgb", "luminosity"]

FORMAT_EXTENSIONS: dict[str, str] = {
    "avif": ".avif",
    "jxl": ".jxl",
    "heif": ".heic",
    "jpeg": ".jpg",
    "ultrahdr-jpeg": ".jpg",
}
AI_ENDPOINT = "fal-ai/clarity-upscaler"
AI_COST = 0.10
AI_PROMPT = "enhance HDR dynamic range, expand highlights and shadows, vivid colors"

# Histogram bands
ANALYSIS_SIZE = 512
SHADOW_BAND = 0.15
HIGHLIGHT_BAND = 0.85
CLIP_LOW = 0.02
CLIP_HIGH = 0.98
CLIP_FRACTION = 0.02
DEFAULT_DYNAMIC_RANGE = 6.0

# Tone expansion
SDR_WHITE_NITS = 203.0
PQ_MAX_NITS = 10000.0
SHADOW_KNEE = 0.25
HIGHLIGHT_KNEE = 0.5
REC709 = np.array([0.2126, 0.7152, 0.0722])
PREVIEW_HEADROOMS = (1.5, 2.5, 4.0)

# Defaults
DEFAULT_HEADROOM = 2.5
DEFAULT_GAMMA = 1.0
DEFAULT_HIGHLIGHT_BOOST = 1.5
DEFAULT_SHADOW_LIFT = 1.2
DEFAULT_PEAK_NITS = 1000
DEFAULT_STRENGTH = 0.7
GAINMAP_QUALITY = 80
AI_QUALITY = 85


class ToneOptions(BaseModel):
    headroom: float = DEFAULT_HEADROOM
    map_type: MapType = "rgb"
    gamma: float = DEFAULT_GAMMA
    highlight_boost: float = DEFAULT_HIGHLIGHT_BOOST
    shadow_lift: float = DEFAULT_SHADOW_LIFT


class HistogramAnalysis(CamelModel):
    shadow_percent: float
    midtone_percent: float
    highlight_percent: float
    shadow_clipping: bool
    highlight_clipping: bool
    dynamic_range: float
    peak_brightness: float


class ConvertResult(CamelModel):
    input: str
    output: str
    method: str
    input_format: str
    output_format: str
    input_size: int
    output_size: int
    headroom: float
    color_space: str
    bit_depth: int
    transfer: str
    encoder: str
    duration: float
    cost: float | None = None
    cicp: Cicp | None = None
    warning: str | None = None


class AnalyzeResult(CamelModel):
    file: str
    width: int
    height: int
    format: str
    bit_depth: int
    color_space: str
    current_dr: float
    histogram: HistogramAnalysis
    potential: Literal["high", "medium", "low"]
    recommended_method: str
    recommended_headroom: float
    suggested_command: str
    quality: int
    capabilities: HdrCapabilities | None = None


app = App(name="uhd-sdr-to-hdr", help="Convert SDR images to HDR (AVIF, JPEG XL, Ultra HDR JPEG).")


def analyze_histogram(img: Image.Image) -> HistogramAnalysis:
    """
    Summarise the tonal distribution of an image on a 512 px grayscale thumbnail.

    Dynamic range is ``log2(max/min)`` over the significant values (2 < v < 253); when no
    such spread exists it defaults to 6 stops.
    """
    gray = ImageOps.grayscale(img)
    gray.thumbnail((ANALYSIS_SIZE, ANALYSIS_SIZE), Image.Resampling.LANCZOS)
    data = np.asarray(gray, dtype=np.uint8)
    values = data.astype(np.float64) / 255.0
    total = values.size

    shadows = values < SHADOW_BAND
    highlights = values > HIGHLIGHT_BAND
    midtones = ~(shadows | highlights)

    significant = data[(data > 2) & (data < 253)]  # noqa: PLR2004
    if significant.size and int(significant.max()) > int(significant.min()):
        dynamic_range = math.log2(int(significant.max()) / max(int(significant.min()), 1))
    else:
        dynamic_range = DEFAULT_DYNAMIC_RANGE

    return HistogramAnalysis(
        shadow_percent=round(np.count_nonzero(shadows) / total * 100, 1),
        midtone_percent=round(np.count_nonzero(midtones) / total * 100, 1),
        highlight_percent=round(np.count_nonzero(highlights) / total * 100, 1),
        shadow_clipping=np.count_nonzero(values < CLIP_LOW) / total > CLIP_FRACTION,
        highlight_clipping=np.count_nonzero(values > CLIP_HIGH) / total > CLIP_FRACTION,
        dynamic_range=round(dynamic_range, 1),
        peak_brightness=round(float(values.max()), 3),
    )


def select_method(histogram: HistogramAnalysis) -> Literal["gainmap", "ai"]:
    """Clipped highlights with under 6 stops of range benefit from AI reconstruction."""
    if histogram.highlight_clipping and histogram.dynamic_range < DEFAULT_DYNAMIC_RANGE:
        return "ai"
    return "gainmap"


def srgb_to_linear(x: np.ndarray) -> np.ndarray:
    return np.where(x <= 0.04045, x / 12.92, ((x + 0.055) / 1.055) ** 2.4)  # noqa: PLR2004


def linear_to_srgb(x: np.ndarray) -> np.ndarray:
    encoded = 1.055 * np.power(x, 1 / 2.4) - 0.055
    return np.where(x <= 0.0031308, x * 12.92, encoded)  # noqa: PLR2004


def pq_encode(nits: np.ndarray) -> np.ndarray:
    """SMPTE ST 2084 inverse EOTF: absolute luminance in nits to a [0, 1] signal."""
    m1, m2 = 2610 / 16384, 2523 / 4096 * 128
    c1, c2, c3 = 3424 / 4096, 2413 / 4096 * 32, 2392 / 4096 * 32
    y = np.clip(nits / PQ_MAX_NITS, 0.0, 1.0) ** m1
    return ((c1 + c2 * y) / (1 + c3 * y)) ** m2


def hlg_encode(relative: np.ndarray) -> np.ndarray:
    """ARIB STD-B67 OETF on scene light normalised to [0, 1]."""
    a, b, c = 0.17883277, 0.28466892, 0.55991073
    e = np.clip(relative, 0.0, 1.0)
    return np.where(e <= 1 / 12, np.sqrt(3 * e), a * np.log(np.maximum(12 * e - b, 1e-12)) + c)


def expand_tone(
    rgb: np.ndarray,
    tone: ToneOptions,
    *,
    transfer: HdrTransfer = "pq",
    peak_nits: int = DEFAULT_PEAK_NITS,
) -> np.ndarray:
    """
    Expand an 8-bit sRGB image into HDR signal values.

    Shadows below 25% luminance are lifted by up to ``shadow_lift``; values above 50% gain up
    to ``headroom`` stops, with ``highlight_boost`` widening the boosted band. Diffuse white
    sits at 203 nits and the result is encoded for ``transfer`` (PQ, HLG or sRGB).

    Args:
        rgb: HxWx3 uint8 array in sRGB
        tone: Expansion parameters
        transfer: Output transfer function
        peak_nits: Peak brightness ceiling for PQ/HLG

    Returns:
        HxWx3 float array in [0, 1].

    """
    x = (rgb[..., :3].astype(np.float64) / 255.0) ** (1.0 / tone.gamma)
    linear = srgb_to_linear(x)
    basis = (linear @ REC709)[..., None] if tone.map_type == "luminosity" else linear

    lift = 1 + (tone.shadow_lift - 1) * np.clip(1 - basis / SHADOW_KNEE, 0.0, 1.0)
    weight = np.clip((basis - HIGHLIGHT_KNEE) / (1 - HIGHLIGHT_KNEE), 0.0, 1.0)
    weight = weight ** (2.0 / tone.highlight_boost)
    gain = lift * np.exp2(tone.headroom * weight)
    expanded = linear * gain

    if transfer == "pq":
        return pq_encode(np.minimum(expanded * SDR_WHITE_NITS, peak_nits))
    if transfer == "hlg":
        return hlg_encode(expanded * SDR_WHITE_NITS / peak_nits)
    return linear_to_srgb(np.clip(expanded, 0.0, 1.0))


def _encode_options(
    output_format: HdrOutputFormat,
    bit_depth: int,
    color_space: HdrColorSpace,
    transfer: HdrTransfer,
    peak_nits: int,
    quality: int,
    sdr_jpeg: Path | None,
) -> HdrEncodeOptions:
    return HdrEncodeOptions(
        format=output_format,
        bit_depth=bit_depth,  # type: ignore[arg-type]
        color_space=color_space,
        transfer=transfer,
        quality=quality,
        effort=6,
        peak_nits=peak_nits,
        sdr_jpeg_path=sdr_jpeg if output_format == "ultrahdr-jpeg" else None,
    )


def convert_with_gainmap(
    source: Path,
    destination: Path,
    tone: ToneOptions,
    *,
    output_format: HdrOutputFormat = "avif",
    bit_depth: int = 10,
    color_space: HdrColorSpace = "display-p3",
    transfer: HdrTransfer = "pq",
    peak_nits: int = DEFAULT_PEAK_NITS,
    method: str = "gainmap",
    cost: float | None = None,
    input_format: str | None = None,
    input_size: int | None = None,
    started: float | None = None,
    quality: int = GAINMAP_QUALITY,
) -> ConvertResult:
    """Tone-expand an SDR file locally and encode it with the best available HDR encoder."""
    start = started or time.perf_counter()
    img = open_image(source)
    fmt = input_format or (img.format or "jpeg").upper()
    rgb = np.asarray(img.convert("RGB"))
    pixels = expand_tone(rgb, tone, transfer=transfer, peak_nits=peak_nits)
    options = _encode_options(
        output_format, bit_depth, color_space, transfer, peak_nits, quality,
        source if source.suffix.lower() in (".jpg", ".jpeg") else None,
    )
    encoded = encode_hdr(pixels, destination, options, sdr=img.convert("RGB"))

    result = ConvertResult(
        input=str(source),
        output=encoded.output_path,
        method=method,
        input_format=fmt,
        output_format=output_format,
        input_size=input_size if input_size is not None else source.stat().st_size,
        output_size=encoded.output_size,
        headroom=tone.headroom,
        color_space=color_space,
        bit_depth=encoded.bit_depth,
        transfer=transfer,
        encoder=encoded.encoder,
        duration=round((time.perf_counter() - start) * 1000, 1),
        cost=cost,
        cicp=encoded.cicp,
        warning=encoded.warning,
    )
    logger.info(
        "sdr_converted_to_hdr",
        input=source.name,
        output=result.output,
        method=method,
        encoder=result.encoder,
    )
    return result


async def convert_with_ai(
    client: FalClient,
    source: Path,
    destination: Path,
    tone: ToneOptions,
    *,
    strength: float = DEFAULT_STRENGTH,
    **encode: object,
) -> ConvertResult:
    """Enhance the image with the clarity upscaler (scale 1), then expand and encode it."""
    start = time.perf_counter()
    with Image.open(source) as probe:
        input_format = (probe.format or "jpeg").upper()
    result = await client.subscribe(
        AI_ENDPOINT,
        {
            "image_url": image_data_uri(source),
            "scale": 1,
            "creativity": strength,
            "prompt": AI_PROMPT,
        },
    )
    url = first_image_url(result.data)
    if url is None:
        msg = "No image URL in API response"
        raise FalError(msg)

    with tempfile.TemporaryDirectory(prefix="uhd-") as tmp:
        enhanced = Path(tmp) / f"{source.stem}-enhanced.png"
        await client.download(url, enhanced)
        return await asyncio.to_thread(
            convert_with_gainmap,
            enhanced,
            destination,
            tone,
            method="ai",
            cost=AI_COST,
            input_format=input_format,
            input_size=source.stat().st_size,
            started=start,
            quality=AI_QUALITY,
            **encode,  # type: ignore[arg-type]
        )


def analyze_potential(source: Path, *, with_capabilities: bool = False) -> AnalyzeResult:
    """Rate how much an image would gain from HDR expansion and suggest a command."""
    img = open_image(source)
    histogram = analyze_histogram(img)
    method = select_method(histogram)

    if histogram.highlight_clipping and histogram.dynamic_range < 7:  # noqa: PLR2004
        potential, quality = "high", 4
    elif histogram.dynamic_range > 7.5:  # noqa: PLR2004
        potential, quality = "low", 2
    else:
        potential, quality = "medium", 3
    headroom = 3.0 if potential == "high" else DEFAULT_HEADROOM

    bit_depth = 16 if img.mode.startswith("I;16") else 32 if img.mode in ("I", "F") else 8
    return AnalyzeResult(
        file=source.name,
        width=img.width,
        height=img.height,
        format=(img.format or "unknown").upper(),
        bit_depth=bit_depth,
        color_space="icc" if img.info.get("icc_profile") else "sRGB",
        current_dr=histogram.dynamic_range,
        histogram=histogram,
        potential=potential,
        recommended_method=method,
        recommended_headroom=headroom,
        suggested_command=(
            f"uhd-sdr-to-hdr convert {source.name} -m {method} --headroom {headroom} --transfer pq"
        ),
        quality=quality,
        capabilities=capabilities() if with_capabilities else None,
    )


def preview_image(img: Image.Image, tone: ToneOptions) -> Image.Image:
    """Side-by-side SDR | expanded rendering (sRGB) for eyeballing the expansion."""
    rgb = img.convert("RGB")
    expanded = expand_tone(np.asarray(rgb), tone, transfer="sdr")
    right = Image.fromarray(np.clip(np.round(expanded * 255), 0, 255).astype(np.uint8))
    canvas = Image.new("RGB", (rgb.width * 2, rgb.height))
    canvas.paste(rgb, (0, 0))
    canvas.paste(right, (rgb.width, 0))
    return canvas


def _validate(output_format: str, bit_depth: int) -> None:
    if output_format == "jpeg" and bit_depth != 8:  # noqa: PLR2004
        logger.error("invalid_bit_depth", hint="JPEG output supports only --bit-depth 8")
        raise SystemExit(1)


def _encoder_label(output_format: str) -> str:
    caps = capabilities()
    if output_format == "avif" and caps.avif10bit:
        return "avifenc"
    if output_format == "jxl" and caps.jxl:
        return "cjxl"
    if output_format == "heif" and caps.heif:
        return "heif-enc"
    if output_format == "ultrahdr-jpeg" and caps.ultra_hdr_jpeg:
        return "ultrahdr_app"
    return "pillow (fallback)"


def _print_result(result: ConvertResult) -> None:
    print(f"\n{Path(result.input).name} -> {Path(result.output).name}")  # noqa: T201
    print(f"  Method: {result.method}, Encoder: {result.encoder}")  # noqa: T201
    print(f"  {human_size(result.input_size)} -> {human_size(result.output_size)}")  # noqa: T201
    print(  # noqa: T201
        f"  {result.bit_depth}-bit {result.output_format.upper()}, "
        f"{result.transfer.upper()} ({result.color_space})",
    )
    if result.cicp:
        print(  # noqa: T201
            f"  CICP: {result.cicp.primaries}/{result.cicp.transfer}/{result.cicp.matrix}",
        )
    if result.warning:
        print(f"  warning: {result.warning}")  # noqa: T201
    print(f"  Time: {result.duration / 1000:.2f}s")  # noqa: T201
    if result.cost:
        print(f"  Cost: ${result.cost:.2f}")  # noqa: T201


HeadroomOpt = Annotated[
    float,
    Parameter(
        name="--headroom",
        validator=validators.Number(gte=0.5, lte=8),
        help="Target headroom in stops",
    ),
]
PositiveFloat = validators.Number(gt=0)


@app.command
def convert(
    image: Annotated[Path | None, Parameter(help="SDR input image")] = None,
    *,
    method: Annotated[
        Method, Parameter(name=("--method", "-m"), help="gainmap, ai or auto"),
    ] = "auto",
    headroom: HeadroomOpt = DEFAULT_HEADROOM,
    map_type: Annotated[MapType, Parameter(name="--map-type", help="rgb or luminosity")] = "rgb",
    gamma: Annotated[float, Parameter(name="--gamma", validator=PositiveFloat)] = DEFAULT_GAMMA,
    highlight_boost: Annotated[
        float, Parameter(name="--highlight-boost", validator=PositiveFloat),
    ] = DEFAULT_HIGHLIGHT_BOOST,
    shadow_lift: Annotated[
        float, Parameter(name="--shadow-lift", validator=PositiveFloat),
    ] = DEFAULT_SHADOW_LIFT,
    output_format: Annotated[HdrOutputFormat, Parameter(name=("--format", "-f"))] = "avif",
    bit_depth: Annotated[Literal[8, 10, 12], Parameter(name="--bit-depth")] = 10,
    color_space: Annotated[HdrColorSpace, Parameter(name="--color-space")] = "display-p3",
    transfer: Annotated[HdrTransfer, Parameter(name="--transfer", help="pq, hlg or sdr")] = "pq",
    peak_nits: Annotated[
        int, Parameter(name="--peak-nits", validator=validators.Number(gt=0)),
    ] = DEFAULT_PEAK_NITS,
    strength: Annotated[
        float,
        Parameter(
            name="--strength",
            validator=validators.Number(gte=0, lte=1),
            help="AI strength",
        ),
    ] = DEFAULT_STRENGTH,
    output: Annotated[Path | None, Parameter(name=("--output", "-o"), help="Output path")] = None,
    stdin: Annotated[
        bool, Parameter(name="--stdin", help="Read the input path from stdin"),
    ] = False,
    yes: Annotated[bool, Parameter(name=("--yes", "-y"), help="Skip confirmation")] = False,
    dry_run: Annotated[bool, Parameter(name="--dry-run", help="Show the plan only")] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """
    Convert one SDR image to HDR.

    Examples:
        uhd-sdr-to-hdr convert photo.jpg --transfer pq --bit-depth 10
        uhd-sdr-to-hdr convert photo.jpg -f ultrahdr-jpeg --headroom 3

    """
    init_logging(log)
    _validate(output_format, bit_depth)
    source = single_input(image, stdin=stdin)
    destination = output or output_path(source, FORMAT_EXTENSIONS[output_format], suffix="-hdr")
    tone = ToneOptions(
        headroom=headroom, map_type=map_type, gamma=gamma,
        highlight_boost=highlight_boost, shadow_lift=shadow_lift,
    )

    chosen = method
    if chosen == "auto":
        chosen = select_method(analyze_histogram(open_image(source)))
        logger.info("method_auto_selected", method=chosen, input=source.name)
        if not as_json:
            print(f"Auto-selected method: {chosen}")  # noqa: T201

    if dry_run:
        plan = {
            "input": str(source), "output": str(destination), "method": chosen,
            "headroom": headroom, "format": output_format, "bitDepth": bit_depth,
            "transfer": transfer, "colorSpace": color_space, "peakNits": peak_nits,
            "encoder": _encoder_label(output_format),
            "cost": AI_COST if chosen == "ai" else 0.0, "dryRun": True,
        }
        if as_json:
            emit_json(plan)
            return
        print(f"\nDry run: {source.name} -> HDR")  # noqa: T201
        for key in ("method", "headroom", "format", "bitDepth", "transfer", "encoder", "output"):
            print(f"  {key}: {plan[key]}")  # noqa: T201
        print(f"  cost: {'~$0.10' if chosen == 'ai' else 'free (local)'}")  # noqa: T201
        return

    encode = {
        "output_format": output_format, "bit_depth": bit_depth, "color_space": color_space,
        "transfer": transfer, "peak_nits": peak_nits,
    }
    try:
        if chosen == "ai":
            key = require_fal_key()
            prompt = f"AI mode costs ~${AI_COST:.2f} per image. Proceed?"
            if not (yes or as_json) and not confirm(prompt):
                print("Cancelled.")  # noqa: T201
                return

            async def _run() -> ConvertResult:
                async with FalClient(key) as client:
                    return await convert_with_ai(
                        client, source, destination, tone, strength=strength, **encode,
                    )

            result = asyncio.run(_run())
        else:
            result = convert_with_gainmap(
                source, destination, tone, **encode,  # type: ignore[arg-type]
            )
    except (OSError, ValueError, RuntimeError) as exc:
        logger.error("sdr_to_hdr_failed", input=str(source), error=str(exc))
        raise SystemExit(1) from exc

    if as_json:
        emit_json(result)
    else:
        _print_result(result)


@app.command
def batch(
    inputs: Annotated[list[Path] | None, Parameter(help="Folders or files to convert")] = None,
    *,
    method: Annotated[Method, Parameter(name=("--method", "-m"))] = "auto",
    headroom: HeadroomOpt = DEFAULT_HEADROOM,
    map_type: Annotated[MapType, Parameter(name="--map-type")] = "rgb",
    gamma: Annotated[float, Parameter(name="--gamma", validator=PositiveFloat)] = DEFAULT_GAMMA,
    highlight_boost: Annotated[
        float, Parameter(name="--highlight-boost", validator=PositiveFloat),
    ] = DEFAULT_HIGHLIGHT_BOOST,
    shadow_lift: Annotated[
        float, Parameter(name="--shadow-lift", validator=PositiveFloat),
    ] = DEFAULT_SHADOW_LIFT,
    output_format: Annotated[HdrOutputFormat, Parameter(name=("--format", "-f"))] = "avif",
    bit_depth: Annotated[Literal[8, 10, 12], Parameter(name="--bit-depth")] = 10,
    color_space: Annotated[HdrColorSpace, Parameter(name="--color-space")] = "display-p3",
    transfer: Annotated[HdrTransfer, Parameter(name="--transfer")] = "pq",
    peak_nits: Annotated[
        int, Parameter(name="--peak-nits", validator=validators.Number(gt=0)),
    ] = DEFAULT_PEAK_NITS,
    strength: Annotated[
        float, Parameter(name="--strength", validator=validators.Number(gte=0, lte=1)),
    ] = DEFAULT_STRENGTH,
    output: Annotated[
        Path | None, Parameter(name=("--output", "-o"), help="Output directory"),
    ] = None,
    recursive: Annotated[bool, Parameter(name=("--recursive", "-r"))] = False,
    concurrency: Annotated[
        int, Parameter(name=("--concurrency", "-c"), validator=validators.Number(gte=1)),
    ] = DEFAULT_CONCURRENCY,
    stdin: Annotated[bool, Parameter(name="--stdin", help="Read input paths from stdin")] = False,
    yes: Annotated[bool, Parameter(name=("--yes", "-y"), help="Skip confirmation")] = False,
    dry_run: Annotated[bool, Parameter(name="--dry-run", help="Show the plan only")] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """
    Convert every image in a folder to HDR.

    Outputs go to ``<dir>/hdr`` unless ``-o`` is given. Exit status: 1 if any image fails.
    """
    init_logging(log)
    _validate(output_format, bit_depth)
    files = gather_inputs(inputs, stdin=stdin, recursive=recursive)
    first_dir = (inputs or [files[0].parent])[0]
    out_dir = output or (first_dir if first_dir.is_dir() else files[0].parent) / "hdr"
    ext = FORMAT_EXTENSIONS[output_format]
    tone = ToneOptions(
        headroom=headroom, map_type=map_type, gamma=gamma,
        highlight_boost=highlight_boost, shadow_lift=shadow_lift,
    )
    estimated = f"~${len(files) * AI_COST:.2f}" if method == "ai" else "free (local)"

    if not as_json:
        print(f"\nBatch SDR->HDR: {len(files)} images")  # noqa: T201
        print(f"  Method: {method}, Headroom: {headroom} stops")  # noqa: T201
        print(f"  Format: {output_format.upper()} {bit_depth}-bit {transfer.upper()}")  # noqa: T201
        print(f"  Est. cost: {estimated}")  # noqa: T201
        print(f"  Output: {out_dir}")  # noqa: T201
    if dry_run:
        if as_json:
            emit_json({"dryRun": True, "files": [str(f) for f in files], "output": str(out_dir)})
        return
    if not (yes or as_json) and not confirm("Proceed?"):
        print("Cancelled.")  # noqa: T201
        return

    key = require_fal_key() if method == "ai" else None
    encode = {
        "output_format": output_format, "bit_depth": bit_depth, "color_space": color_space,
        "transfer": transfer, "peak_nits": peak_nits,
    }

    async def _run() -> list[ConvertResult | Exception]:
        client = FalClient(key) if key else None

        async def _one(file: Path) -> ConvertResult:
            destination = out_dir / f"{file.stem}{ext}"
            chosen = method
            if chosen == "auto":
                histogram = await asyncio.to_thread(lambda: analyze_histogram(open_image(file)))
                chosen = select_method(histogram)
            if chosen == "ai":
                if client is None:
                    msg = "FAL_KEY is required for AI mode"
                    raise FalError(msg)
                return await convert_with_ai(
                    client, file, destination, tone, strength=strength, **encode,
                )
            return await asyncio.to_thread(
                convert_with_gainmap, file, destination, tone, **encode,  # type: ignore[arg-type]
            )

        try:
            return await run_pool(files, _one, concurrency)
        finally:
            if client is not None:
                await client.aclose()

    results, failed = split_results(asyncio.run(_run()))
    logger.info("batch_hdr_summary", total=len(files), successful=len(results), failed=failed)
    if as_json:
        emit_json({"results": [r.to_json_dict() for r in results], "failed": failed})
    else:
        print(f"\nDone: {len(results)}/{len(files)} images converted to HDR")  # noqa: T201
        print(f"  Output: {out_dir}")  # noqa: T201
    if failed:
        raise SystemExit(1)


@app.command
def preview(
    image: Annotated[Path | None, Parameter(help="SDR input image")] = None,
    *,
    headroom: HeadroomOpt = DEFAULT_HEADROOM,
    output: Annotated[
        Path | None, Parameter(name=("--output", "-o"), help="Preview JPEG path"),
    ] = None,
    stdin: Annotated[
        bool, Parameter(name="--stdin", help="Read the input path from stdin"),
    ] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """Write a side-by-side SDR | expanded preview and show the headroom simulation."""
    init_logging(log)
    source = single_input(image, stdin=stdin)
    img = open_image(source)
    histogram = analyze_histogram(img)
    destination = output or output_path(source, ".jpg", suffix="-hdr-preview")
    preview_image(img, ToneOptions(headroom=headroom)).save(destination, format="JPEG", quality=90)
    logger.info("hdr_preview_written", output=str(destination))

    rows = [(h, h / 4.0 * 100) for h in PREVIEW_HEADROOMS]
    caps = capabilities()
    if as_json:
        emit_json(
            {
                "file": source.name,
                "width": img.width,
                "height": img.height,
                "dynamicRange": histogram.dynamic_range,
                "preview": str(destination),
                "headroom": [{"stops": h, "expansionPercent": round(p)} for h, p in rows],
                "supportedFormats": caps.supported_formats,
            },
        )
        return
    print(f"\nHDR preview: {source.name} ({img.width}x{img.height})")  # noqa: T201
    print(f"  DR: ~{histogram.dynamic_range} stops")  # noqa: T201
    for stops, pct in rows:
        filled = round(pct / 5)
        print(  # noqa: T201
            f"  {stops:.1f} stops: [{'#' * filled}{'.' * (20 - filled)}] {pct:.0f}% expansion",
        )
    print("  PQ (HDR10): up to 10,000 nits, best for mastered HDR content")  # noqa: T201
    print("  HLG: up to 1,000 nits, broadcast-compatible with graceful SDR fallback")  # noqa: T201
    print(f"  Formats: {', '.join(caps.supported_formats)}")  # noqa: T201
    print(f"  Side-by-side preview: {destination}")  # noqa: T201


@app.command
def analyze(
    image: Annotated[Path | None, Parameter(help="Image to analyze")] = None,
    *,
    stdin: Annotated[
        bool, Parameter(name="--stdin", help="Read the input path from stdin"),
    ] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """Estimate an image's HDR expansion potential and suggest a conversion command."""
    init_logging(log)
    source = single_input(image, stdin=stdin)
    result = analyze_potential(source, with_capabilities=as_json)
    if as_json:
        emit_json(result)
        return
    h = result.histogram
    stars = "*" * result.quality + "." * (5 - result.quality)
    print(f"\nHDR potential analysis: {result.file}")  # noqa: T201
    print(f"  Dimensions: {result.width} x {result.height}")  # noqa: T201
    print(f"  Format: {result.format} ({result.bit_depth}-bit, {result.color_space})")  # noqa: T201
    print(f"  Current DR: ~{result.current_dr} stops (estimated)")  # noqa: T201
    print(  # noqa: T201
        f"  Shadows: {h.shadow_percent}%{' (clipping)' if h.shadow_clipping else ''}",
    )
    print(f"  Midtones: {h.midtone_percent}%")  # noqa: T201
    print(  # noqa: T201
        f"  Highlights: {h.highlight_percent}%{' (clipping)' if h.highlight_clipping else ''}",
    )
    print(f"  Potential: {result.potential.upper()} [{stars}]")  # noqa: T201
    print(  # noqa: T201
        f"  Recommended: {result.recommended_method}, {result.recommended_headroom} stops",
    )
    print(f"  Suggested command: {result.suggested_command}")  # noqa: T201


@app.command(name="capabilities")
def show_capabilities(
    *,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """Show which HDR encoders are installed."""
    init_logging(log)
    caps = capabilities()
    if as_json:
        emit_json(caps)
        return

    def mark(flag: bool) -> str:  # noqa: FBT001
        return "yes" if flag else "no "

    print("\nHDR encoding capabilities")  # noqa: T201
    rows = [
        ("AVIF 10/12-bit", caps.avif10bit, "avifenc"),
        ("JPEG XL", caps.jxl, "cjxl"),
        ("HEIF", caps.heif, "heif-enc"),
        ("Ultra HDR JPEG", caps.ultra_hdr_jpeg, "ultrahdr_app"),
    ]
    for label, available, tool in rows:
        version = caps.versions.get(tool, f"({tool} not found)")
        print(f"  {label + ':':<16}{mark(available)} {version}")  # noqa: T201
    print(f"  Max bit depth:  {caps.max_bit_depth}-bit")  # noqa: T201
    print(f"  Formats:        {', '.join(caps.supported_formats)}")  # noqa: T201
    if not caps.avif10bit:
        print("  Install libavif for avifenc (10/12-bit AVIF)")  # noqa: T201
    if not caps.jxl:
        print("  Install libjxl for cjxl (JPEG XL)")  # noqa: T201
    if not caps.ultra_hdr_jpeg:
        print("  Install libultrahdr for ultrahdr_app (Ultra HDR JPEG)")  # noqa: T201


if __name__ == "__main__":
    app()
