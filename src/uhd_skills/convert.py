"""
UHD format converter: convert, batch convert, compare and negotiate image formats.

Encoding goes through Pillow. AVIF, WebP, JPEG, PNG and TIFF are always available on a
current Pillow; HEIF and JPEG XL need a Pillow plugin (pillow-heif, pillow-jxl-plugin)
and are reported as unsupported otherwise.
"""
# ruff: noqa: PLR0913

import time
from io import BytesIO
from pathlib import Path
from typing import Annotated, Literal

import numpy as np
from cyclopts import App, Parameter, validators
from loguru import logger
from PIL import Image, ImageCms
from pydantic import BaseModel, ConfigDict

from uhd_skills.common import (
    DEFAULT_CONCURRENCY,
    CamelModel,
    LogOptions,
    confirm,
    emit_json,
    gather_inputs,
    human_size,
    init_logging,
    output_path,
    open_image,
    parse_csv,
    percent_change,
    run_blocking_pool,
    single_input,
    split_results,
)


ImageFormat = Literal["avif", "webp", "jpeg", "png", "jxl", "heif", "tiff"]
Chroma = Literal["420", "422", "444"]
ColorSpace = Literal["srgb", "display-p3", "rec2020", "adobe-rgb"]

PIL_BIT_DEPTH = 8
MAX_PNG_COMPRESS_LEVEL = 9


class FormatSpec(BaseModel):
    """Static capabilities and encoder defaults of an output format."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    extensions: tuple[str, ...]
    mime_type: str
    pil_format: str
    supports_hdr: bool
    supports_lossless: bool
    supports_alpha: bool
    max_bit_depth: int
    default_quality: int
    default_effort: int

    @property
    def extension(self) -> str:
        return self.extensions[0]


FORMATS: dict[str, FormatSpec] = {
    spec.id: spec
    for spec in (
        FormatSpec(
            id="avif", display_name="AVIF", extensions=(".avif",), mime_type="image/avif",
            pil_format="AVIF", supports_hdr=True, supports_lossless=True, supports_alpha=True,
            max_bit_depth=12, default_quality=75, default_effort=6,
        ),
        FormatSpec(
            id="webp", display_name="WebP", extensions=(".webp",), mime_type="image/webp",
            pil_format="WEBP", supports_hdr=False, supports_lossless=True, supports_alpha=True,
            max_bit_depth=8, default_quality=80, default_effort=6,
        ),
        FormatSpec(
            id="jpeg", display_name="JPEG", extensions=(".jpg", ".jpeg"), mime_type="image/jpeg",
            pil_format="JPEG", supports_hdr=False, supports_lossless=False, supports_alpha=False,
            max_bit_depth=8, default_quality=82, default_effort=0,
        ),
        FormatSpec(
            id="png", display_name="PNG", extensions=(".png",), mime_type="image/png",
            pil_format="PNG", supports_hdr=False, supports_lossless=True, supports_alpha=True,
            max_bit_depth=16, default_quality=100, default_effort=6,
        ),
        FormatSpec(
            id="jxl", display_name="JPEG XL", extensions=(".jxl",), mime_type="image/jxl",
            pil_format="JXL", supports_hdr=True, supports_lossless=True, supports_alpha=True,
            max_bit_depth=32, default_quality=75, default_effort=7,
        ),
        FormatSpec(
            id="heif", display_name="HEIF", extensions=(".heif", ".heic"), mime_type="image/heif",
            pil_format="HEIF", supports_hdr=True, supports_lossless=False, supports_alpha=False,
            max_bit_depth=10, default_quality=80, default_effort=0,
        ),
        FormatSpec(
            id="tiff", display_name="TIFF", extensions=(".tiff", ".tif"), mime_type="image/tiff",
            pil_format="TIFF", supports_hdr=False, supports_lossless=True, supports_alpha=True,
            max_bit_depth=32, default_quality=100, default_effort=0,
        ),
    )
}

COMPARE_FORMATS: tuple[ImageFormat, ...] = ("avif", "webp", "jpeg", "jxl")
COMPARE_QUALITIES: tuple[int, ...] = (75, 85, 95)
PIL_CHROMA = {"420": "4:2:0", "422": "4:2:2", "444": "4:4:4"}


class ConvertOptions(BaseModel):
    """Encoder settings for one conversion; unset values fall back to format defaults."""

    format: ImageFormat
    quality: int | None = None
    lossless: bool = False
    effort: int | None = None
    bit_depth: int | None = None
    color_space: ColorSpace | None = None
    chroma: Chroma | None = None
    strip: bool = False


class ConvertResult(CamelModel):
    input: str
    output: str
    input_format: str
    output_format: str
    input_size: int
    output_size: int
    reduction: int
    reduction_percent: str
    width: int
    height: int
    duration: float
    warning: str | None = None


class CompareEntry(CamelModel):
    format: str
    quality: int
    lossless: bool = False
    size: int
    size_human: str
    reduction_percent: str
    path: str


class CompareResult(CamelModel):
    input: str
    input_size: int
    width: int
    height: int
    results: list[CompareEntry]
    skipped: list[str] = []
    best: CompareEntry | None = None


class NegotiateEntry(CamelModel):
    browser: str
    recommended_format: str
    reason: str


class NegotiateResult(CamelModel):
    input: str
    primary_format: str
    fallback_format: str
    universal_format: str
    recommendations: list[NegotiateEntry]
    picture_html: str
    generated_files: list[str] | None = None


app = App(
    name="uhd-convert",
    help="Convert images between JPEG, PNG, WebP, AVIF, JXL, HEIF and TIFF.",
)


def format_for_extension(extension: str) -> FormatSpec | None:
    """Look up a format by file extension (case-insensitive)."""
    ext = extension.lower()
    return next((spec for spec in FORMATS.values() if ext in spec.extensions), None)


def can_encode(fmt: str) -> bool:
    """Whether the installed Pillow (plus plugins) can write ``fmt``."""
    Image.init()
    return FORMATS[fmt].pil_format in Image.SAVE


def flatten_alpha(img: Image.Image) -> Image.Image:
    """Composite transparent images onto white and return an RGB image."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        alpha = img.convert("RGBA")
        bg = Image.new("RGBA", alpha.size, (255, 255, 255, 255))
        return Image.alpha_composite(bg, alpha).convert("RGB")
    return img.convert("RGB")


def to_8bit(img: Image.Image) -> Image.Image:
    """Bring 16/32-bit integer and float modes down to 8 bits per channel."""
    if img.mode in ("I;16", "I;16B", "I;16L", "I"):
        arr = np.asarray(img, dtype=np.float64)
        peak = 65535.0 if arr.max(initial=0) > 255 else 255.0  # noqa: PLR2004
        return Image.fromarray(np.clip(arr / peak * 255.0, 0, 255).round().astype(np.uint8))
    if img.mode == "F":
        arr = np.asarray(img, dtype=np.float64)
        return Image.fromarray(np.clip(arr * 255.0, 0, 255).round().astype(np.uint8))
    return img


def prepare_for_format(img: Image.Image, spec: FormatSpec) -> Image.Image:
    """Normalise the pixel mode to something the target encoder accepts."""
    img = to_8bit(img)
    has_alpha = img.mode in ("RGBA", "LA", "PA") or (
        img.mode == "P" and "transparency" in img.info
    )
    if has_alpha and not spec.supports_alpha:
        return flatten_alpha(img)
    if has_alpha:
        return img.convert("RGBA")
    if img.mode == "RGB" or (img.mode == "L" and spec.id in ("jpeg", "png", "tiff")):
        return img
    return img.convert("RGB")


def _to_srgb(img: Image.Image) -> Image.Image:
    icc = img.info.get("icc_profile")
    if not icc:
        return img
    src_profile = ImageCms.ImageCmsProfile(BytesIO(icc))
    dst_profile = ImageCms.createProfile("sRGB")
    mode = "RGBA" if img.mode == "RGBA" else "RGB"
    converted = ImageCms.profileToProfile(
        img.convert(mode), src_profile, dst_profile, outputMode=mode,
    )
    if converted is None:
        return img
    converted.info.pop("icc_profile", None)
    return converted


def encoder_kwargs(
    spec: FormatSpec,
    *,
    quality: int,
    lossless: bool,
    effort: int,
    chroma: str | None,
) -> dict[str, object]:
    """Translate generic encoder settings into Pillow ``save`` keyword arguments."""
    if spec.id == "avif":
        kwargs: dict[str, object] = {
            "quality": 100 if lossless else quality,
            "speed": max(0, min(10, 10 - effort)),
        }
        if lossless:
            kwargs["subsampling"] = "4:4:4"
        elif chroma:
            kwargs["subsampling"] = PIL_CHROMA[chroma]
        return kwargs
    if spec.id == "webp":
        return {"quality": quality, "lossless": lossless, "method": max(0, min(6, effort))}
    if spec.id == "jpeg":
        kwargs = {"quality": quality, "optimize": True, "progressive": True}
        if chroma:
            kwargs["subsampling"] = PIL_CHROMA[chroma]
        return kwargs
    if spec.id == "png":
        return {"optimize": True, "compress_level": max(0, min(MAX_PNG_COMPRESS_LEVEL, effort))}
    if spec.id == "tiff":
        return {"compression": "tiff_deflate"}
    if spec.id == "jxl":
        return {"quality": quality, "lossless": lossless, "effort": max(1, min(9, effort))}
    return {"quality": quality}


def save_image(
    img: Image.Image,
    destination: Path,
    fmt: str,
    *,
    quality: int | None = None,
    lossless: bool = False,
    effort: int | None = None,
    chroma: str | None = None,
    metadata_source: Image.Image | None = None,
) -> None:
    """
    Encode ``img`` to ``destination`` in format ``fmt`` with Pillow.

    Args:
        img: Image to encode (any mode; normalised for the target format)
        destination: Output file path; parent folders are created
        fmt: Format id from FORMATS
        quality: Encoder quality (format default when None)
        lossless: Request lossless encoding where supported
        effort: Encoder effort/speed trade-off (format default when None)
        chroma: Chroma subsampling ('420', '422', '444') for AVIF/JPEG
        metadata_source: Image whose EXIF and ICC profile should be carried over

    Raises:
        ValueError: If the installed Pillow cannot write ``fmt``.

    """
    spec = FORMATS[fmt]
    if not can_encode(fmt):
        msg = f"{spec.display_name} encoding is not supported by the installed Pillow"
        raise ValueError(msg)

    prepared = prepare_for_format(img, spec)
    kwargs = encoder_kwargs(
        spec,
        quality=quality if quality is not None else spec.default_quality,
        lossless=lossless,
        effort=effort if effort is not None else spec.default_effort,
        chroma=chroma,
    )
    if metadata_source is not None:
        if exif := metadata_source.info.get("exif"):
            kwargs["exif"] = exif
        if icc := metadata_source.info.get("icc_profile"):
            kwargs["icc_profile"] = icc

    destination.parent.mkdir(parents=True, exist_ok=True)
    prepared.save(destination, format=spec.pil_format, **kwargs)


def convert_image(source: Path, destination: Path, options: ConvertOptions) -> ConvertResult:
    """
    Convert one image file and report the size change.

    Args:
        source: Input image (RAW supported through rawpy)
        destination: Output path
        options: Encoder settings

    Returns:
        ConvertResult with sizes, dimensions, duration (ms) and an optional warning when a
        requested setting could not be honoured.

    Examples:
        >>> opts = ConvertOptions(format="avif")
        >>> convert_image(Path("a.jpg"), Path("a.avif"), opts)  # doctest: +SKIP
        ConvertResult(input='a.jpg', output='a.avif', reduction_percent='62.3%', ...)

    """
    spec = FORMATS[options.format]
    start = time.perf_counter()
    warnings: list[str] = []

    img = open_image(source)
    metadata_source = None if options.strip else img

    if options.color_space == "srgb":
        img = _to_srgb(img)
    elif options.color_space:
        warnings.append(
            f"Color space {options.color_space} needs an ICC profile; kept the source profile",
        )

    if options.bit_depth:
        if options.bit_depth > spec.max_bit_depth:
            warnings.append(
                f"{spec.display_name} supports at most {spec.max_bit_depth}-bit; "
                f"requested {options.bit_depth}-bit",
            )
        if options.bit_depth > PIL_BIT_DEPTH:
            warnings.append(
                f"Requested {options.bit_depth}-bit output; Pillow encodes 8-bit. "
                "Use uhd-sdr-to-hdr for high bit depth AVIF/JXL.",
            )

    lossless = options.lossless and spec.supports_lossless
    if options.lossless and not spec.supports_lossless:
        warnings.append(f"{spec.display_name} has no lossless mode; encoded lossy")

    save_image(
        img,
        destination,
        spec.id,
        quality=options.quality,
        lossless=lossless,
        effort=options.effort,
        chroma=options.chroma,
        metadata_source=metadata_source,
    )

    input_size = source.stat().st_size
    output_size = destination.stat().st_size
    result = ConvertResult(
        input=str(source),
        output=str(destination),
        input_format=source.suffix.lstrip(".").upper(),
        output_format=spec.id,
        input_size=input_size,
        output_size=output_size,
        reduction=input_size - output_size,
        reduction_percent=percent_change(input_size, output_size),
        width=img.width,
        height=img.height,
        duration=round((time.perf_counter() - start) * 1000, 1),
        warning="; ".join(warnings) or None,
    )
    logger.info(
        "image_converted",
        input=source.name,
        output=destination.name,
        reduction=result.reduction_percent,
    )
    if result.warning:
        logger.warning("conversion_degraded", warning=result.warning)
    return result


def compare_formats(
    source: Path,
    out_dir: Path,
    *,
    formats: tuple[str, ...] = COMPARE_FORMATS,
    qualities: tuple[int, ...] = COMPARE_QUALITIES,
) -> CompareResult:
    """Encode ``source`` at every format/quality (plus lossless) and rank the lossy outputs."""
    input_size = source.stat().st_size
    with Image.open(source) as probe:
        width, height = probe.size

    entries: list[CompareEntry] = []
    skipped: list[str] = []

    def _record(fmt: str, quality: int, *, lossless: bool) -> None:
        spec = FORMATS[fmt]
        tag = "lossless" if lossless else f"q{quality}"
        out = out_dir / f"{source.stem}-{fmt}-{tag}{spec.extension}"
        convert_image(
            source,
            out,
            ConvertOptions(
                format=fmt, quality=quality, lossless=lossless,  # type: ignore[arg-type]
            ),
        )
        size = out.stat().st_size
        entries.append(
            CompareEntry(
                format=fmt,
                quality=quality,
                lossless=lossless,
                size=size,
                size_human=human_size(size),
                reduction_percent=percent_change(input_size, size),
                path=str(out),
            ),
        )

    for fmt in formats:
        if fmt not in FORMATS or not can_encode(fmt):
            logger.warning("compare_format_unavailable", format=fmt)
            skipped.append(fmt)
            continue
        spec = FORMATS[fmt]
        if fmt == "png":
            _record(fmt, 100, lossless=True)
            continue
        for quality in qualities:
            _record(fmt, quality, lossless=False)
        if spec.supports_lossless:
            _record(fmt, 100, lossless=True)

    lossy = [entry for entry in entries if not entry.lossless]
    best = min(lossy, key=lambda entry: entry.size) if lossy else None
    return CompareResult(
        input=source.name,
        input_size=input_size,
        width=width,
        height=height,
        results=entries,
        skipped=skipped,
        best=best,
    )


def negotiate_formats(source: Path, target: str = "modern") -> NegotiateResult:
    """
    Recommend primary, fallback and universal formats for a browser target.

    ``target`` is ``modern``, ``universal`` or a comma list of browser names.
    """
    primary, fallback, universal = "avif", "webp", "jpeg"
    recommendations: list[NegotiateEntry] = []

    if target == "modern":
        recommendations = [
            NegotiateEntry(browser="Chrome 85+", recommended_format="avif",
                           reason="Full AVIF support, best compression"),
            NegotiateEntry(browser="Edge 85+", recommended_format="avif",
                           reason="Chromium-based, full AVIF"),
            NegotiateEntry(browser="Safari 16.4+", recommended_format="avif",
                           reason="AVIF support added"),
            NegotiateEntry(browser="Firefox 93+", recommended_format="avif",
                           reason="AVIF support"),
            NegotiateEntry(browser="Older browsers", recommended_format="webp",
                           reason="WebP fallback (98% support)"),
        ]
    elif target == "universal":
        primary, fallback = "webp", "jpeg"
        recommendations = [
            NegotiateEntry(browser="Modern browsers", recommended_format="webp",
                           reason="98% browser support"),
            NegotiateEntry(browser="Legacy browsers", recommended_format="jpeg",
                           reason="Universal compatibility"),
        ]
    else:
        for browser in parse_csv(target):
            if "chrome" in browser or "edge" in browser:
                reason = "Full AVIF support"
            elif "safari" in browser:
                reason = "AVIF support in Safari 16.4+"
            elif "firefox" in browser:
                reason = "AVIF support in Firefox 93+"
            else:
                recommendations.append(
                    NegotiateEntry(browser=browser, recommended_format="jpeg",
                                   reason="Unknown browser, use the universal format"),
                )
                continue
            recommendations.append(
                NegotiateEntry(browser=browser, recommended_format="avif", reason=reason),
            )

    return NegotiateResult(
        input=source.name,
        primary_format=primary,
        fallback_format=fallback,
        universal_format=universal,
        recommendations=recommendations,
        picture_html=picture_html(source.stem, [primary, fallback], universal),
    )


def picture_html(stem: str, sources: list[str], universal: str) -> str:
    """Build a ``<picture>`` element with one ``<source>`` per modern format."""
    lines = ["<picture>"]
    for fmt in sources:
        spec = FORMATS[fmt]
        lines.append(f'  <source srcset="{stem}{spec.extension}" type="{spec.mime_type}">')
    lines.append(f'  <img src="{stem}{FORMATS[universal].extension}" alt="" loading="lazy">')
    lines.append("</picture>")
    return "\n".join(lines)


def _print_convert(result: ConvertResult) -> None:
    print(f"\n{Path(result.input).name} -> {Path(result.output).name}")  # noqa: T201
    print(  # noqa: T201
        f"  {human_size(result.input_size)} -> {human_size(result.output_size)} "
        f"({result.reduction_percent} reduction)",
    )
    print(f"  {result.width}x{result.height}, {result.duration / 1000:.2f}s")  # noqa: T201
    if result.warning:
        print(f"  Warning: {result.warning}")  # noqa: T201


@app.command
def convert(
    image: Annotated[
        Path | None,
        Parameter(help="Image to convert (omit with --stdin)"),
    ] = None,
    *,
    fmt: Annotated[ImageFormat, Parameter(name=("--format", "-f"), help="Target format")],
    quality: Annotated[
        int | None,
        Parameter(name=("--quality", "-q"), validator=validators.Number(gte=1, lte=100),
                  help="Quality 1-100 (format default when omitted)"),
    ] = None,
    bit_depth: Annotated[
        int | None, Parameter(name="--bit-depth", help="Output bit depth (8, 10, 12, 16)"),
    ] = None,
    color_space: Annotated[
        ColorSpace | None, Parameter(name="--color-space", help="Target color space"),
    ] = None,
    lossless: Annotated[bool, Parameter(name="--lossless", help="Lossless encoding")] = False,
    effort: Annotated[
        int | None, Parameter(name="--effort", help="Encoder effort 0-9 (speed vs size)"),
    ] = None,
    chroma: Annotated[Chroma | None, Parameter(name="--chroma", help="Chroma subsampling")] = None,
    strip: Annotated[
        bool,
        Parameter(name="--strip", negative="--keep-metadata", help="Remove EXIF/ICC metadata"),
    ] = False,
    output: Annotated[
        Path | None, Parameter(name=("--output", "-o"), help="Output file or directory"),
    ] = None,
    stdin: Annotated[
        bool, Parameter(name="--stdin", help="Read the input path from stdin"),
    ] = False,
    dry_run: Annotated[bool, Parameter(name="--dry-run", help="Show the plan only")] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """
    Convert a single image.

    Examples:
        uhd-convert convert photo.jpg -f avif -q 75
        echo '{"path": "photo.jpg"}' | uhd-convert convert --stdin -f webp

    """
    init_logging(log)
    source = single_input(image, stdin=stdin)
    spec = FORMATS[fmt]
    if output is None:
        destination = output_path(source, spec.extension)
    elif output.is_dir() or not output.suffix:
        destination = output_path(source, spec.extension, output)
    else:
        destination = output
    options = ConvertOptions(
        format=fmt,
        quality=quality,
        lossless=lossless,
        effort=effort,
        bit_depth=bit_depth,
        color_space=color_space,
        chroma=chroma,
        strip=strip,
    )

    if dry_run:
        plan = {
            "input": str(source),
            "output": str(destination),
            "format": fmt,
            "quality": quality or spec.default_quality,
            "lossless": lossless,
            "dryRun": True,
        }
        if as_json:
            emit_json(plan)
        else:
            print(f"\nDry run: {source.name} -> {spec.display_name}")  # noqa: T201
            print(f"  Quality: {plan['quality']}  Lossless: {lossless}")  # noqa: T201
            print(f"  Output: {destination}")  # noqa: T201
        return

    try:
        result = convert_image(source, destination, options)
    except (OSError, ValueError) as exc:
        logger.error("conversion_failed", input=str(source), error=str(exc))
        raise SystemExit(1) from exc

    if as_json:
        emit_json(result)
    else:
        _print_convert(result)


@app.command
def batch(
    directory: Annotated[
        Path | None,
        Parameter(validator=validators.Path(exists=True), help="Directory of images"),
    ] = None,
    *,
    fmt: Annotated[ImageFormat, Parameter(name=("--format", "-f"), help="Target format")],
    quality: Annotated[
        int | None, Parameter(name=("--quality", "-q"), help="Quality 1-100"),
    ] = None,
    lossless: Annotated[bool, Parameter(name="--lossless", help="Lossless encoding")] = False,
    effort: Annotated[int | None, Parameter(name="--effort", help="Encoder effort")] = None,
    chroma: Annotated[Chroma | None, Parameter(name="--chroma", help="Chroma subsampling")] = None,
    strip: Annotated[
        bool,
        Parameter(name="--strip", negative="--keep-metadata", help="Remove EXIF/ICC metadata"),
    ] = False,
    output: Annotated[
        Path | None,
        Parameter(name=("--output", "-o"), help="Output directory (default <dir>/converted-<fmt>)"),
    ] = None,
    recursive: Annotated[
        bool, Parameter(name=("--recursive", "-r"), help="Recurse into subdirectories"),
    ] = False,
    preserve_structure: Annotated[
        bool, Parameter(name="--preserve-structure", help="Mirror input folders in the output"),
    ] = False,
    skip_existing: Annotated[
        bool, Parameter(name="--skip-existing", help="Skip outputs that already exist"),
    ] = False,
    concurrency: Annotated[
        int,
        Parameter(name=("--concurrency", "-c"), validator=validators.Number(gte=1),
                  help="Parallel conversions"),
    ] = DEFAULT_CONCURRENCY,
    stdin: Annotated[bool, Parameter(name="--stdin", help="Read input paths from stdin")] = False,
    yes: Annotated[bool, Parameter(name=("--yes", "-y"), help="Skip confirmation")] = False,
    dry_run: Annotated[bool, Parameter(name="--dry-run", help="Show the plan only")] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output (implies --yes)")] = False,
    log: LogOptions | None = None,
) -> None:
    """
    Convert every image in a directory.

    Exit status: 1 if any file fails to convert.

    Examples:
        uhd-convert batch ./photos -f avif -r -c 8 --skip-existing

    """
    init_logging(log)
    spec = FORMATS[fmt]
    inputs = [directory] if directory else []
    files = gather_inputs(inputs, stdin=stdin, recursive=recursive)
    base_dir = directory if directory and directory.is_dir() else None
    out_dir = output or (base_dir or Path.cwd()) / f"converted-{fmt}"

    jobs: list[tuple[Path, Path]] = []
    for file in files:
        target_dir = out_dir
        if preserve_structure and base_dir is not None:
            relative_parent = file.parent.relative_to(base_dir.resolve())
            target_dir = out_dir / relative_parent
        destination = output_path(file, spec.extension, target_dir)
        if skip_existing and destination.exists():
            logger.info("skipping_existing_output", file=file.name, output=str(destination))
            continue
        jobs.append((file, destination))

    logger.info("batch_convert_planned", files=len(jobs), format=fmt, output=str(out_dir))
    if not as_json:
        print(f"\nBatch convert: {len(jobs)} images -> {spec.display_name}")  # noqa: T201
        print(f"  Output: {out_dir}")  # noqa: T201

    if dry_run or not jobs:
        if as_json:
            emit_json({"dryRun": dry_run, "files": [str(src) for src, _ in jobs]})
        return
    if not (yes or as_json) and not confirm("Proceed?"):
        print("Cancelled.")  # noqa: T201
        return

    options = ConvertOptions(
        format=fmt, quality=quality, lossless=lossless, effort=effort, chroma=chroma, strip=strip,
    )
    raw_results = run_blocking_pool(
        jobs,
        lambda job: convert_image(job[0], job[1], options),
        concurrency,
    )
    results, failed = split_results(raw_results)
    total_in = sum(r.input_size for r in results)
    total_out = sum(r.output_size for r in results)

    logger.info(
        "batch_convert_summary",
        total_files=len(jobs),
        successful=len(results),
        failed=failed,
    )
    if as_json:
        emit_json(
            {
                "results": [r.to_json_dict() for r in results],
                "failed": failed,
                "totalInput": total_in,
                "totalOutput": total_out,
                "reduction": percent_change(total_in, total_out),
            },
        )
    else:
        print(f"\nDone: {len(results)}/{len(jobs)} images converted")  # noqa: T201
        print(  # noqa: T201
            f"  Total: {human_size(total_in)} -> {human_size(total_out)} "
            f"({percent_change(total_in, total_out)} reduction)",
        )
        print(f"  Output: {out_dir}")  # noqa: T201

    if failed:
        raise SystemExit(1)


@app.command
def compare(
    image: Annotated[Path | None, Parameter(help="Image to compare (omit with --stdin)")] = None,
    *,
    formats: Annotated[
        str, Parameter(name="--formats", help="Comma-separated formats to try"),
    ] = ",".join(COMPARE_FORMATS),
    quality_levels: Annotated[
        str, Parameter(name="--quality-levels", help="Comma-separated qualities"),
    ] = ",".join(str(q) for q in COMPARE_QUALITIES),
    output: Annotated[
        Path | None, Parameter(name=("--output", "-o"), help="Output directory"),
    ] = None,
    stdin: Annotated[
        bool, Parameter(name="--stdin", help="Read the input path from stdin"),
    ] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """Encode one image in several formats and qualities and compare the sizes."""
    init_logging(log)
    source = single_input(image, stdin=stdin)
    try:
        qualities = tuple(int(q) for q in parse_csv(quality_levels))
    except ValueError as exc:
        logger.error("invalid_quality_levels", value=quality_levels)
        raise SystemExit(1) from exc
    out_dir = output or source.parent / f"compare-{source.stem}"

    result = compare_formats(
        source, out_dir, formats=tuple(parse_csv(formats)), qualities=qualities,
    )
    if as_json:
        emit_json(result)
        return

    print(  # noqa: T201
        f"\nFormat comparison: {result.input} ({result.width}x{result.height}, "
        f"{human_size(result.input_size)})",
    )
    for entry in result.results:
        label = "lossless" if entry.lossless else f"q{entry.quality}"
        print(  # noqa: T201
            f"  {entry.format:<6} {label:<9} {entry.size_human:>10}  {entry.reduction_percent}",
        )
    if result.best:
        print(  # noqa: T201
            f"\nBest lossy: {FORMATS[result.best.format].display_name} @ Q{result.best.quality} "
            f"({result.best.size_human}, {result.best.reduction_percent} reduction)",
        )
    if result.skipped:
        print(f"Skipped (no encoder): {', '.join(result.skipped)}")  # noqa: T201
    print(f"Output: {out_dir}")  # noqa: T201


@app.command
def negotiate(
    image: Annotated[Path | None, Parameter(help="Image to negotiate (omit with --stdin)")] = None,
    *,
    target: Annotated[
        str, Parameter(name="--target", help="modern, universal or 'chrome,safari,firefox'"),
    ] = "modern",
    generate: Annotated[
        bool, Parameter(name="--generate", help="Convert to the recommended formats"),
    ] = False,
    output: Annotated[
        Path | None, Parameter(name=("--output", "-o"), help="Directory for generated files"),
    ] = None,
    stdin: Annotated[
        bool, Parameter(name="--stdin", help="Read the input path from stdin"),
    ] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """Recommend formats for a browser target and optionally generate them."""
    init_logging(log)
    source = single_input(image, stdin=stdin)
    result = negotiate_formats(source, target)

    if generate:
        if output is None:
            logger.error("generate_requires_output", hint="Pass -o <dir> with --generate")
            raise SystemExit(1)
        generated: list[str] = []
        for fmt in (result.primary_format, result.fallback_format, result.universal_format):
            destination = output_path(source, FORMATS[fmt].extension, output)
            if not destination.exists():
                options = ConvertOptions(format=fmt)  # type: ignore[arg-type]
                convert_image(source, destination, options)
            generated.append(str(destination))
        result.generated_files = generated

    if as_json:
        emit_json(result)
        return

    print(f"\nFormat negotiation: {result.input}")  # noqa: T201
    print(f"  Primary:   {FORMATS[result.primary_format].display_name}")  # noqa: T201
    print(f"  Fallback:  {FORMATS[result.fallback_format].display_name}")  # noqa: T201
    print(f"  Universal: {FORMATS[result.universal_format].display_name}\n")  # noqa: T201
    for rec in result.recommendations:
        print(  # noqa: T201
            f"  {rec.browser:<20} -> {FORMATS[rec.recommended_format].display_name:<10} "
            f"({rec.reason})",
        )
    print(f"\n{result.picture_html}")  # noqa: T201
    for path in result.generated_files or []:
        print(f"  generated {path}")  # noqa: T201


if __name__ == "__main__":
    app()
