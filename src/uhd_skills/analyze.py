"""
UHD image analyzer: inspect images, detect HDR capability and report browser support.

Pillow decodes everything to 8 bits for most formats, so the real container bit depth is
read from the file itself (PNG ``IHDR``, AVIF/HEIF ``pixi``). EXIF/XMP extraction uses
ExifTool when it is installed and falls back to Pillow's EXIF reader otherwise.
"""
# ruff: noqa: PLR0913

from collections import Counter
from io import BytesIO
from pathlib import Path
from typing import Annotated, Any, Literal

from cyclopts import App, Parameter, validators
from exiftool import ExifToolHelper  # type: ignore[attr-defined]
from exiftool.exceptions import ExifToolExecuteError
from loguru import logger
from PIL import ExifTags, Image, ImageCms

from uhd_skills.common import (
    DEFAULT_CONCURRENCY,
    CamelModel,
    LogOptions,
    emit_json,
    gather_inputs,
    human_size,
    init_logging,
    run_blocking_pool,
    single_input,
    split_results,
    write_json,
)


Support = Literal["full", "partial", "none"]

LOSSLESS_FORMATS = frozenset({"png", "tiff", "gif", "bmp"})
WIDE_GAMUT_MARKERS = ("display p3", "p3", "rec. 2020", "rec2020", "bt.2020", "prophoto")
ICC_NAMES = (
    ("srgb", "sRGB IEC61966-2.1"),
    ("display p3", "Display P3"),
    ("adobe rgb", "Adobe RGB (1998)"),
    ("prophoto", "ProPhoto RGB"),
    ("rec. 2020", "Rec. 2020"),
    ("rec2020", "Rec. 2020"),
    ("bt.2020", "Rec. 2020"),
)
MODE_COLOR_SPACES = {
    "RGB": "sRGB",
    "RGBA": "sRGB",
    "L": "Grayscale",
    "LA": "Grayscale",
    "I;16": "Grayscale (16-bit)",
    "I;16B": "Grayscale (16-bit)",
    "I;16L": "Grayscale (16-bit)",
    "CMYK": "CMYK",
    "LAB": "CIE Lab",
    "YCbCr": "YCbCr",
    "P": "Indexed",
}
SDR_REASON = "Standard dynamic range (8-bit, sRGB)"
HEADER_SCAN_BYTES = 65536
PNG_IHDR_DEPTH_OFFSET = 24
BIT_DEPTH_TAGS = ["ImagePixelDepth", "BitDepth", "BitsPerSample"]


class IccProfile(CamelModel):
    name: str
    color_space: str


class GainMapInfo(CamelModel):
    present: bool
    type: str | None = None
    headroom: float | None = None


class HdrInfo(CamelModel):
    capable: bool
    reason: str
    headroom: float | None = None
    wide_gamut: bool
    gain_map: GainMapInfo
    color_space: str
    estimated_dynamic_range: int


class CompressionInfo(CamelModel):
    codec: str
    lossless: bool


class ImageInfo(CamelModel):
    path: str
    filename: str
    format: str
    mime_type: str
    width: int
    height: int
    file_size: int
    file_size_human: str
    color_space: str
    bit_depth: int
    channels: int
    has_alpha: bool
    icc_profile: IccProfile | None = None
    hdr: HdrInfo
    compression: CompressionInfo


class CompatEntry(CamelModel):
    browser: str
    version: str
    support: Support
    note: str


class CompatReport(CamelModel):
    file: str
    format: str
    hdr: bool
    desktop: list[CompatEntry]
    mobile: list[CompatEntry]
    recommended_fallback: str
    hdr_audience_percent: int


class BatchSummary(CamelModel):
    count: int
    total_size: int
    avg_size: int
    formats: dict[str, int]
    hdr_count: int
    sdr_count: int
    color_spaces: dict[str, int]
    bit_depths: dict[str, int]
    errors: int


class DiffEntry(CamelModel):
    field: str
    value1: str
    value2: str
    significant: bool


app = App(name="uhd-analyze", help="Inspect images, detect HDR and report browser support.")


def exiftool_bit_depth(path: Path) -> int | None:
    """Per-channel depth reported by ExifTool (the ``pixi`` box for AVIF/HEIF), if any."""
    try:
        with ExifToolHelper() as et:  # type: ignore[no-untyped-call]
            blocks = et.get_tags(files=[str(path)], tags=BIT_DEPTH_TAGS)
    except (FileNotFoundError, ValueError, TypeError, ExifToolExecuteError) as exc:
        logger.debug("exiftool_bit_depth_unavailable", file=path.name, error=str(exc))
        return None
    for key, value in (blocks[0] if blocks else {}).items():
        if key.split(":")[-1] not in BIT_DEPTH_TAGS:
            continue
        # multi-channel values arrive as "10 10 10"
        parts = str(value).split()
        if parts and parts[0].isdigit() and int(parts[0]) > 0:
            return int(parts[0])
    return None


def container_bit_depth(path: Path, fmt: str, mode: str) -> int:
    """
    Bits per channel as stored in the file.

    PNG reads the ``IHDR`` depth byte. AVIF/HEIF ask ExifTool first, since the ``pixi`` box
    can sit anywhere in the ``meta`` box, then fall back to scanning the file header.
    Other formats are judged from the decoded Pillow mode.
    """
    with path.open("rb") as handle:
        head = handle.read(HEADER_SCAN_BYTES)
    if fmt == "png" and len(head) > PNG_IHDR_DEPTH_OFFSET:
        return head[PNG_IHDR_DEPTH_OFFSET]
    if fmt in ("avif", "heif"):
        reported = exiftool_bit_depth(path)
        if reported is not None:
            return reported
        idx = head.find(b"pixi")
        # box: 'pixi' + version/flags (4) + channel count (1) + depth per channel
        if idx != -1 and len(head) > idx + 9 and head[idx + 8] > 0:
            return head[idx + 9]
    if mode.startswith("I;16"):
        return 16
    if mode in ("I", "F"):
        return 32
    return 8


def parse_icc_profile(icc: bytes | None) -> IccProfile | None:
    """Name a profile by its description, falling back to a scan of the header bytes."""
    if not icc:
        return None
    description = ""
    color_space = "RGB"
    try:
        profile = ImageCms.ImageCmsProfile(BytesIO(icc))
        description = ImageCms.getProfileDescription(profile) or ""
        color_space = profile.profile.xcolor_space.strip() or color_space
    except (OSError, ImageCms.PyCMSError) as exc:
        logger.debug("icc_profile_unreadable", error=str(exc))
    haystack = (description + " " + icc[:256].decode("ascii", errors="ignore")).lower()
    name = next((label for marker, label in ICC_NAMES if marker in haystack), "Unknown")
    if name == "Unknown" and description.strip():
        name = description.strip()
    return IccProfile(name=name, color_space=color_space)


def detect_hdr(
    fmt: str,
    bit_depth: int,
    color_space: str,
    icc: IccProfile | None,
    frames: int,
) -> HdrInfo:
    """Decide HDR capability from bit depth, container, gamut and gain-map signals."""
    reasons: list[str] = []
    capable = False
    headroom: float | None = None

    if bit_depth > 8:  # noqa: PLR2004
        reasons.append(f"{bit_depth}-bit color depth")
        capable = True
    if fmt == "avif" and bit_depth > 8:  # noqa: PLR2004
        reasons.append("AVIF HDR format")
        headroom = 4.0 if bit_depth >= 12 else 3.0  # noqa: PLR2004
    if fmt == "heif" and bit_depth > 8:  # noqa: PLR2004
        reasons.append("HEIF with extended depth")

    gamut_source = (icc.name if icc else color_space).lower()
    wide_gamut = any(marker in gamut_source for marker in WIDE_GAMUT_MARKERS)
    if wide_gamut:
        reasons.append(f"Wide gamut color space ({icc.name if icc else color_space})")
        capable = True

    gain_map = GainMapInfo(present=False)
    if fmt in ("jpeg", "mpo") and frames > 1:
        gain_map = GainMapInfo(present=True, type="unknown")
        reasons.append("Gain map detected")
        capable = True

    return HdrInfo(
        capable=capable,
        reason="; ".join(reasons) if capable else SDR_REASON,
        headroom=headroom,
        wide_gamut=wide_gamut,
        gain_map=gain_map,
        color_space=color_space,
        estimated_dynamic_range=10 + (bit_depth - 8) if bit_depth > 8 else 8,  # noqa: PLR2004
    )


def analyze_image(path: Path) -> ImageInfo:
    """
    Inspect one image file.

    Args:
        path: Image to inspect

    Returns:
        ImageInfo with dimensions, colour, HDR and compression details.

    Raises:
        OSError: If the file cannot be read or is not a recognised image.

    """
    resolved = path.resolve()
    size = resolved.stat().st_size
    with Image.open(resolved) as img:
        pil_format = (img.format or "unknown").lower()
        mode = img.mode
        width, height = img.size
        frames = getattr(img, "n_frames", 1)
        icc_bytes = img.info.get("icc_profile")
        bands = len(img.getbands())
        has_alpha = mode in ("RGBA", "LA", "PA") or "transparency" in img.info

    fmt = "jpeg" if pil_format == "mpo" else pil_format
    bit_depth = container_bit_depth(resolved, fmt, mode)
    icc = parse_icc_profile(icc_bytes)
    color_space = MODE_COLOR_SPACES.get(mode, mode)
    if icc and icc.name not in ("Unknown", "sRGB IEC61966-2.1"):
        color_space = icc.name
    hdr = detect_hdr(fmt, bit_depth, color_space, icc, frames)

    logger.debug("image_analyzed", file=resolved.name, format=fmt, hdr=hdr.capable)
    return ImageInfo(
        path=str(resolved),
        filename=resolved.name,
        format=fmt.upper(),
        mime_type=f"image/{fmt}",
        width=width,
        height=height,
        file_size=size,
        file_size_human=human_size(size),
        color_space=color_space,
        bit_depth=bit_depth,
        channels=bands,
        has_alpha=has_alpha,
        icc_profile=icc,
        hdr=hdr,
        compression=CompressionInfo(codec=fmt.upper(), lossless=fmt in LOSSLESS_FORMATS),
    )


def read_metadata(path: Path) -> dict[str, Any]:
    """
    Read EXIF/XMP/IPTC tags with ExifTool, or basic EXIF through Pillow when it is missing.

    Binary values are summarised as ``<N bytes>`` so the result is JSON-safe.
    """
    try:
        with ExifToolHelper() as et:  # type: ignore[no-untyped-call]
            blocks = et.get_metadata(files=[str(path)])
        if blocks:
            return {key: value for key, value in blocks[0].items() if key != "SourceFile"}
    except (FileNotFoundError, ValueError, TypeError, ExifToolExecuteError) as exc:
        logger.warning("exiftool_unavailable_falling_back_to_pil", error=str(exc))

    metadata: dict[str, Any] = {}
    with Image.open(path) as img:
        metadata["Format"] = img.format
        metadata["Mode"] = img.mode
        metadata["Width"] = img.width
        metadata["Height"] = img.height
        for key in ("icc_profile", "exif", "xmp"):
            value = img.info.get(key)
            if isinstance(value, bytes):
                metadata[key] = f"<{len(value)} bytes>"
        for tag_id, value in img.getexif().items():
            name = ExifTags.TAGS.get(tag_id, str(tag_id))
            if isinstance(value, bytes):
                value = f"<{len(value)} bytes>"
            metadata[f"EXIF:{name}"] = value
    return metadata


def _entry(browser: str, version: str, support: Support, note: str) -> CompatEntry:
    return CompatEntry(browser=browser, version=version, support=support, note=note)


def compat_report(info: ImageInfo) -> CompatReport:
    """Browser and platform support for the image's format and HDR features."""
    fmt = info.format.lower()
    is_hdr = info.hdr.capable
    has_gain_map = info.hdr.gain_map.present
    desktop: list[CompatEntry] = []
    mobile: list[CompatEntry] = []

    if fmt == "avif":
        hdr_note = "Full HDR support" if is_hdr else "Full AVIF support"
        desktop = [
            _entry("Chrome", "85+", "full", hdr_note),
            _entry("Edge", "85+", "full", hdr_note),
            _entry("Safari", "16.4+", "partial" if is_hdr else "full",
                   "AVIF support, HDR varies by version" if is_hdr else "Full AVIF support"),
            _entry("Opera", "71+", "full", hdr_note),
            _entry("Firefox", "93+", "partial" if is_hdr else "full",
                   "AVIF SDR only, no HDR" if is_hdr else "Full AVIF support"),
        ]
        mobile = [
            _entry("iOS Safari", "16.4+", "full",
                   "AVIF + HDR (500M+ devices)" if is_hdr else "Full AVIF support"),
            _entry("Chrome Android", "85+", "full", hdr_note),
            _entry("Samsung Internet", "15+", "partial" if is_hdr else "full",
                   "AVIF yes, HDR limited" if is_hdr else "Full AVIF support"),
        ]
    elif fmt == "webp":
        desktop = [
            _entry("Chrome", "32+", "full", "Full WebP support"),
            _entry("Edge", "18+", "full", "Full WebP support"),
            _entry("Safari", "16+", "full", "Full WebP support"),
            _entry("Firefox", "65+", "full", "Full WebP support"),
        ]
        mobile = [
            _entry("iOS Safari", "16+", "full", "Full WebP support"),
            _entry("Chrome Android", "32+", "full", "Full WebP support"),
        ]
    elif fmt == "jpeg":
        universal = "Universal JPEG support"
        desktop = [
            _entry("Chrome", "All", "full", "JPEG + gain map HDR" if has_gain_map else universal),
            _entry("Edge", "All", "full", "JPEG + gain map HDR" if has_gain_map else universal),
            _entry(
                "Safari",
                "18+" if has_gain_map else "All",
                "partial" if has_gain_map else "full",
                "ISO gain map support (Safari 18+)" if has_gain_map else universal,
            ),
            _entry("Firefox", "All", "none" if has_gain_map else "full",
                   "No gain map support" if has_gain_map else universal),
        ]
        mobile = [
            _entry("iOS Safari", "18+" if has_gain_map else "All", "full",
                   "HDR gain map support" if has_gain_map else "Universal"),
            _entry("Chrome Android", "All", "full",
                   "Ultra HDR support (Android 14+)" if has_gain_map else "Universal"),
        ]
    elif fmt == "png":
        desktop = [_entry("All browsers", "All", "full", "Universal PNG support")]
        mobile = [_entry("All mobile", "All", "full", "Universal PNG support")]

    hdr_percent = 85 if fmt == "avif" else 75 if fmt == "jpeg" and has_gain_map else 0
    fallback = {
        "avif": "WebP (SDR) -> JPEG (universal)",
        "webp": "JPEG (universal)",
    }.get(fmt, "None needed")
    return CompatReport(
        file=info.filename,
        format=(
            f"{info.format}{' HDR' if is_hdr else ''} ({info.bit_depth}-bit, {info.color_space})"
        ),
        hdr=is_hdr,
        desktop=desktop,
        mobile=mobile,
        recommended_fallback=fallback,
        hdr_audience_percent=hdr_percent,
    )


def summarize(images: list[ImageInfo], errors: int = 0) -> BatchSummary:
    total_size = sum(img.file_size for img in images)
    hdr_count = sum(1 for img in images if img.hdr.capable)
    return BatchSummary(
        count=len(images),
        total_size=total_size,
        avg_size=round(total_size / len(images)) if images else 0,
        formats=dict(Counter(img.format for img in images)),
        hdr_count=hdr_count,
        sdr_count=len(images) - hdr_count,
        color_spaces=dict(Counter(img.color_space for img in images)),
        bit_depths={str(k): v for k, v in Counter(img.bit_depth for img in images).items()},
        errors=errors,
    )


def analyze_many(files: list[Path], concurrency: int) -> tuple[list[ImageInfo], int]:
    """Analyze files through the worker pool; returns (infos in input order, error count)."""
    return split_results(run_blocking_pool(files, analyze_image, concurrency))


def diff_images(first: ImageInfo, second: ImageInfo) -> list[DiffEntry]:
    """List the fields that differ between two images; ``significant`` marks the important ones."""
    fields = (
        ("Format", first.format, second.format, True),
        ("Dimensions", f"{first.width}x{first.height}", f"{second.width}x{second.height}", True),
        ("File size", first.file_size_human, second.file_size_human, False),
        ("Color space", first.color_space, second.color_space, True),
        ("Bit depth", f"{first.bit_depth}-bit", f"{second.bit_depth}-bit", True),
        ("Channels", str(first.channels), str(second.channels), False),
        ("HDR capable", str(first.hdr.capable).lower(), str(second.hdr.capable).lower(), True),
        ("Compression", first.compression.codec, second.compression.codec, False),
    )
    return [
        DiffEntry(field=name, value1=a, value2=b, significant=significant)
        for name, a, b, significant in fields
        if a != b
    ]


def markdown_report(
    directory: Path, total: int, summary: BatchSummary, images: list[ImageInfo],
) -> str:
    lines = [
        "# Image Analysis Report",
        "",
        f"**Directory:** {directory}",
        f"**Total files:** {total} ({summary.errors} errors)",
        "",
        "## Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Total size | {human_size(summary.total_size)} |",
        f"| Average size | {human_size(summary.avg_size)} |",
        f"| HDR images | {summary.hdr_count} |",
        f"| SDR images | {summary.sdr_count} |",
        "",
        "## Images",
        "",
        "| File | Format | Dimensions | Size | HDR |",
        "|------|--------|------------|------|-----|",
    ]
    lines += [
        f"| {img.filename} | {img.format} | {img.width}x{img.height} | {img.file_size_human} | "
        f"{'Yes' if img.hdr.capable else 'No'} |"
        for img in images
    ]
    return "\n".join(lines) + "\n"


def _analyze_or_exit(path: Path) -> ImageInfo:
    try:
        return analyze_image(path)
    except OSError as exc:
        logger.error("image_analysis_failed", path=str(path), error=str(exc))
        raise SystemExit(1) from exc


def _print_info(info: ImageInfo) -> None:
    print(f"\nImage inspection: {info.filename}")  # noqa: T201
    print(f"  Format:       {info.format}")  # noqa: T201
    print(f"  Dimensions:   {info.width} x {info.height}")  # noqa: T201
    print(f"  File size:    {info.file_size_human} ({info.file_size:,} bytes)")  # noqa: T201
    print(f"  Color space:  {info.color_space}")  # noqa: T201
    print(f"  Bit depth:    {info.bit_depth}-bit")  # noqa: T201
    print(  # noqa: T201
        f"  Channels:     {info.channels}{' (with alpha)' if info.has_alpha else ''}",
    )
    if info.icc_profile:
        print(f"  ICC profile:  {info.icc_profile.name}")  # noqa: T201
    print(  # noqa: T201
        f"  HDR capable:  {'Yes' if info.hdr.capable else 'No'} ({info.hdr.reason})",
    )
    if info.hdr.gain_map.present:
        print(f"  Gain map:     Present ({info.hdr.gain_map.type})")  # noqa: T201
    if info.hdr.headroom:
        print(f"  Max headroom: {info.hdr.headroom} stops")  # noqa: T201
    print(f"  Est. DR:      ~{info.hdr.estimated_dynamic_range} stops")  # noqa: T201
    lossless = " (lossless)" if info.compression.lossless else ""
    print(f"  Compression:  {info.compression.codec}{lossless}")  # noqa: T201


ImageArg = Annotated[Path | None, Parameter(help="Image file")]
StdinOpt = Annotated[bool, Parameter(name="--stdin", help="Read the input path from stdin")]
JsonOpt = Annotated[bool, Parameter(name="--json", help="JSON output")]


@app.command
def inspect(
    image: ImageArg = None,
    *,
    stdin: StdinOpt = False,
    as_json: JsonOpt = False,
    log: LogOptions | None = None,
) -> None:
    """Full inspection report for one image."""
    init_logging(log)
    info = _analyze_or_exit(single_input(image, stdin=stdin))
    if as_json:
        emit_json(info)
    else:
        _print_info(info)


@app.command
def metadata(
    image: ImageArg = None,
    *,
    stdin: StdinOpt = False,
    as_json: JsonOpt = False,
    log: LogOptions | None = None,
) -> None:
    """Dump EXIF/XMP/IPTC metadata."""
    init_logging(log)
    source = single_input(image, stdin=stdin)
    try:
        tags = read_metadata(source)
    except OSError as exc:
        logger.error("metadata_read_failed", path=str(source), error=str(exc))
        raise SystemExit(1) from exc
    if as_json:
        emit_json(tags)
        return
    print(f"\nMetadata: {source.name}")  # noqa: T201
    for key, value in tags.items():
        print(f"  {key}: {value}")  # noqa: T201


@app.command
def hdr(
    image: ImageArg = None,
    *,
    stdin: StdinOpt = False,
    as_json: JsonOpt = False,
    log: LogOptions | None = None,
) -> None:
    """HDR capability analysis for one image."""
    init_logging(log)
    info = _analyze_or_exit(single_input(image, stdin=stdin))
    if as_json:
        emit_json(info.hdr)
        return
    print(f"\nHDR analysis: {info.filename}")  # noqa: T201
    print(f"  HDR capable:  {'Yes' if info.hdr.capable else 'No'}")  # noqa: T201
    print(f"  Reason:       {info.hdr.reason}")  # noqa: T201
    print(f"  Color space:  {info.hdr.color_space}")  # noqa: T201
    print(f"  Wide gamut:   {'Yes' if info.hdr.wide_gamut else 'No'}")  # noqa: T201
    print(f"  Bit depth:    {info.bit_depth}-bit")  # noqa: T201
    gain_map = "Not detected"
    if info.hdr.gain_map.present:
        gain_map = f"Present ({info.hdr.gain_map.type})"
    print(f"  Gain map:     {gain_map}")  # noqa: T201
    if info.hdr.headroom:
        print(f"  Max headroom: {info.hdr.headroom} stops")  # noqa: T201
    print(f"  Estimated DR: ~{info.hdr.estimated_dynamic_range} stops")  # noqa: T201


@app.command
def compat(
    image: ImageArg = None,
    *,
    stdin: StdinOpt = False,
    as_json: JsonOpt = False,
    log: LogOptions | None = None,
) -> None:
    """Browser and device compatibility matrix for one image."""
    init_logging(log)
    report = compat_report(_analyze_or_exit(single_input(image, stdin=stdin)))
    if as_json:
        emit_json(report)
        return
    marks = {"full": "[ok]  ", "partial": "[part]", "none": "[no]  "}
    print(f"\nBrowser compatibility: {report.file}")  # noqa: T201
    print(f"Format: {report.format}")  # noqa: T201
    for title, entries in (("Desktop", report.desktop), ("Mobile", report.mobile)):
        print(f"\n{title}:")  # noqa: T201
        for e in entries:
            print(f"  {marks[e.support]} {e.browser + ' ' + e.version:<26} {e.note}")  # noqa: T201
    if report.recommended_fallback != "None needed":
        print(f"\nRecommended fallback: {report.recommended_fallback}")  # noqa: T201
    if report.hdr_audience_percent:
        print(f"HDR-capable audience: ~{report.hdr_audience_percent}% of web traffic")  # noqa: T201


@app.command
def batch(
    inputs: Annotated[list[Path] | None, Parameter(help="Folders or files to analyze")] = None,
    *,
    hdr_filter: Annotated[
        Literal["hdr", "sdr"] | None,
        Parameter(name="--filter", help="Keep only HDR or SDR images"),
    ] = None,
    recursive: Annotated[bool, Parameter(name=("--recursive", "-r"))] = False,
    concurrency: Annotated[
        int, Parameter(name=("--concurrency", "-c"), validator=validators.Number(gte=1)),
    ] = DEFAULT_CONCURRENCY,
    stdin: Annotated[bool, Parameter(name="--stdin", help="Read input paths from stdin")] = False,
    as_json: JsonOpt = False,
    log: LogOptions | None = None,
) -> None:
    """
    Analyze every image in a folder.

    The JSON output carries a ``paths`` list so it can be piped into another skill's
    ``--stdin``.
    """
    init_logging(log)
    files = gather_inputs(inputs, stdin=stdin, recursive=recursive)
    images, errors = analyze_many(files, concurrency)
    if hdr_filter == "hdr":
        images = [img for img in images if img.hdr.capable]
    elif hdr_filter == "sdr":
        images = [img for img in images if not img.hdr.capable]
    summary = summarize(images, errors)
    logger.info("batch_analysis_summary", total=len(files), analyzed=len(images), errors=errors)

    if as_json:
        emit_json(
            {
                "total": len(files),
                "analyzed": len(images),
                "errors": errors,
                "summary": summary.to_json_dict(),
                "images": [img.to_json_dict() for img in images],
                "paths": [img.path for img in images],
            },
        )
        return
    print(f"\nBatch analysis: {len(files)} files")  # noqa: T201
    print(f"  Total size:   {human_size(summary.total_size)}")  # noqa: T201
    print(f"  Avg size:     {human_size(summary.avg_size)}")  # noqa: T201
    print(f"  HDR images:   {summary.hdr_count}")  # noqa: T201
    print(f"  SDR images:   {summary.sdr_count}")  # noqa: T201
    print(  # noqa: T201
        f"  Formats:      {', '.join(f'{k}:{v}' for k, v in summary.formats.items())}",
    )
    print(  # noqa: T201
        f"  Color spaces: {', '.join(f'{k}:{v}' for k, v in summary.color_spaces.items())}",
    )
    print(  # noqa: T201
        f"  Bit depths:   {', '.join(f'{k}-bit:{v}' for k, v in summary.bit_depths.items())}",
    )
    if errors:
        print(f"  Errors:       {errors}")  # noqa: T201
    print()  # noqa: T201
    for img in images:
        tag = " [HDR]" if img.hdr.capable else ""
        dims = f"{img.width}x{img.height}"
        print(  # noqa: T201
            f"  {img.filename:<30} {img.format:<6} {dims:<12} {img.file_size_human:<10}{tag}",
        )


@app.command
def report(
    directory: Annotated[
        Path,
        Parameter(
            validator=validators.Path(exists=True, file_okay=False), help="Folder to report on",
        ),
    ],
    *,
    output: Annotated[
        Path | None, Parameter(name=("--output", "-o"), help="report.json or report.md"),
    ] = None,
    recursive: Annotated[
        bool, Parameter(name=("--recursive", "-r"), negative="--no-recursive"),
    ] = True,
    concurrency: Annotated[
        int, Parameter(name=("--concurrency", "-c"), validator=validators.Number(gte=1)),
    ] = DEFAULT_CONCURRENCY,
    log: LogOptions | None = None,
) -> None:
    """Write a JSON or Markdown analysis report (JSON to stdout without ``-o``)."""
    init_logging(log)
    files = gather_inputs([directory], stdin=False, recursive=recursive)
    images, errors = analyze_many(files, concurrency)
    summary = summarize(images, errors)
    payload = {
        "directory": str(directory),
        "total": len(files),
        "analyzed": len(images),
        "errors": errors,
        "summary": summary.to_json_dict(),
        "images": [img.to_json_dict() for img in images],
    }
    if output is None:
        emit_json(payload)
        return
    if output.suffix.lower() == ".json":
        write_json(output, payload)
    else:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(markdown_report(directory, len(files), summary, images), encoding="utf-8")
    logger.info("analysis_report_written", output=str(output))
    print(f"Report written to {output}")  # noqa: T201


@app.command
def diff(
    first: Annotated[Path, Parameter(validator=validators.Path(exists=True), help="First image")],
    second: Annotated[Path, Parameter(validator=validators.Path(exists=True), help="Second image")],
    *,
    as_json: JsonOpt = False,
    log: LogOptions | None = None,
) -> None:
    """Compare two images field by field (``***`` marks significant differences)."""
    init_logging(log)
    info1, info2 = _analyze_or_exit(first), _analyze_or_exit(second)
    differences = diff_images(info1, info2)
    if as_json:
        emit_json(
            {
                "file1": info1.to_json_dict(),
                "file2": info2.to_json_dict(),
                "differences": [d.to_json_dict() for d in differences],
            },
        )
        return
    print("\nImage diff")  # noqa: T201
    print(f"  File 1: {info1.filename}")  # noqa: T201
    print(f"  File 2: {info2.filename}\n")  # noqa: T201
    if not differences:
        print("  No differences")  # noqa: T201
    for d in differences:
        marker = " ***" if d.significant else ""
        print(f"  {d.field:<20} {d.value1:<20} {d.value2:<20}{marker}")  # noqa: T201


if __name__ == "__main__":
    app()
