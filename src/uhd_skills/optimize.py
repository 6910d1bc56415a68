"""
UHD image optimizer: responsive variants, LQIP placeholders, platform presets and audits.

Encoding reuses the converter's Pillow pipeline (:func:`uhd_skills.convert.save_image`).
Platform profiles can be extended or overridden with ``$UHD_HOME/platforms.json``.
"""
# ruff: noqa: PLR0913

import base64
import json
import re
from collections import Counter
from dataclasses import dataclass, replace
from functools import partial
from io import BytesIO
from pathlib import Path
from typing import Annotated, Literal

from cyclopts import App, Parameter, validators
from loguru import logger
from PIL import Image, ImageStat
from pydantic import BaseModel, ValidationError

from uhd_skills.common import (
    DEFAULT_CONCURRENCY,
    UHD_HOME,
    CamelModel,
    LogOptions,
    confirm,
    emit_json,
    gather_inputs,
    human_size,
    init_logging,
    open_image,
    parse_csv,
    percent_change,
    run_blocking_pool,
    single_input,
    split_results,
    write_json,
)
from uhd_skills.convert import FORMATS, can_encode, save_image


Preset = Literal["web", "print", "social", "custom"]
LqipType = Literal["blurhash", "micro", "css", "svg", "none"]
AuditStatus = Literal["ok", "warning", "critical"]

DEFAULT_BANDWIDTH_MBPS = 1.6
LCP_CRITICAL_SECONDS = 2.5
LCP_WARNING_SECONDS = 1.0
AUDIT_MAX_WIDTH = 1920
FALLBACK_QUALITY = 80
PICTURE_ORDER = ("avif", "webp", "jpeg")
RESPONSIVE_NAME = re.compile(r"\d+w\.")


class PresetConfig(BaseModel):
    id: str
    display_name: str
    formats: list[str]
    qualities: dict[str, int]
    max_width: int | None
    breakpoints: list[int]
    lqip: LqipType = "none"
    strip_metadata: bool
    effort: int

    def quality_for(self, fmt: str) -> int:
        return self.qualities.get(fmt, FALLBACK_QUALITY)


PRESETS: dict[str, PresetConfig] = {
    "web": PresetConfig(
        id="web",
        display_name="Web (CWV Optimized)",
        formats=["avif", "webp", "jpeg"],
        qualities={"avif": 75, "webp": 80, "jpeg": 82, "png": 100, "tiff": 100},
        max_width=1920,
        breakpoints=[320, 640, 960, 1280, 1920],
        lqip="blurhash",
        strip_metadata=True,
        effort=6,
    ),
    "print": PresetConfig(
        id="print",
        display_name="Print (Max Quality)",
        formats=["tiff", "png"],
        qualities={"avif": 100, "webp": 100, "jpeg": 100, "png": 100, "tiff": 100},
        max_width=None,
        breakpoints=[],
        strip_metadata=False,
        effort=0,
    ),
    "social": PresetConfig(
        id="social",
        display_name="Social Media",
        formats=["jpeg", "avif"],
        qualities={"avif": 80, "webp": 85, "jpeg": 88, "png": 100, "tiff": 100},
        max_width=1440,
        breakpoints=[],
        strip_metadata=True,
        effort=6,
    ),
    "custom": PresetConfig(
        id="custom",
        display_name="Custom",
        formats=["avif"],
        qualities={"avif": 75, "webp": 80, "jpeg": 82, "png": 100, "tiff": 100},
        max_width=1920,
        breakpoints=[],
        strip_metadata=False,
        effort=6,
    ),
}


class PlatformProfile(CamelModel):
    name: str
    max_width: int
    max_height: int
    aspect_ratios: list[str] = []
    formats: list[str]
    quality: int
    hdr_support: bool = False


DEFAULT_PLATFORMS: dict[str, PlatformProfile] = {
    "instagram": PlatformProfile(
        name="Instagram", max_width=1080, max_height=1350,
        aspect_ratios=["1:1", "4:5", "1.91:1"], formats=["jpeg", "avif"], quality=88,
        hdr_support=True,
    ),
    "threads": PlatformProfile(
        name="Threads", max_width=1080, max_height=1350, aspect_ratios=["1:1", "4:5"],
        formats=["jpeg"], quality=88, hdr_support=True,
    ),
    "twitter": PlatformProfile(
        name="X/Twitter", max_width=1200, max_height=675, aspect_ratios=["16:9", "2:1"],
        formats=["jpeg", "webp"], quality=85,
    ),
    "facebook": PlatformProfile(
        name="Facebook", max_width=1200, max_height=630, aspect_ratios=["1.91:1", "1:1"],
        formats=["jpeg"], quality=85,
    ),
    "linkedin": PlatformProfile(
        name="LinkedIn", max_width=1200, max_height=627, aspect_ratios=["1.91:1"],
        formats=["jpeg"], quality=85,
    ),
    "youtube": PlatformProfile(
        name="YouTube Thumbnail", max_width=1280, max_height=720, aspect_ratios=["16:9"],
        formats=["jpeg"], quality=90,
    ),
}


class VariantResult(CamelModel):
    path: str
    format: str
    width: int
    height: int
    size: int
    size_human: str
    breakpoint: int | None = None


class LqipResult(CamelModel):
    type: str
    value: str
    path: str | None = None
    size: int


class OptimizeResult(CamelModel):
    input: str
    input_size: int
    output_dir: str
    preset: str
    variants: list[VariantResult]
    lqip: LqipResult | None = None
    total_output_size: int
    savings: int
    savings_percent: str
    skipped_formats: list[str] = []


class AuditResult(CamelModel):
    file: str
    file_size: int
    file_size_human: str
    width: int
    height: int
    format: str
    load_time_on_target: float
    target_bandwidth: float
    status: AuditStatus
    suggestions: list[str]
    estimated_optimized_size: int | None = None
    estimated_savings: str | None = None


class AuditReport(CamelModel):
    total_files: int
    total_size: int
    total_size_human: str
    ok: int
    warnings: int
    critical: int
    audits: list[AuditResult]
    potential_savings: int
    potential_savings_percent: str


@Parameter(name="*")
@dataclass(frozen=True)
class OptimizeFlags:
    """Variant and placeholder flags shared by ``optimize``, ``web`` and ``batch``."""

    formats: Annotated[
        str | None, Parameter(name="--formats", help="Comma-separated output formats"),
    ] = None
    breakpoints: Annotated[
        str | None, Parameter(name="--breakpoints", help="Comma-separated widths, e.g. 320,640"),
    ] = None
    max_width: Annotated[
        int | None, Parameter(name="--max-width", validator=validators.Number(gte=1)),
    ] = None
    quality_avif: Annotated[int | None, Parameter(name="--quality-avif")] = None
    quality_webp: Annotated[int | None, Parameter(name="--quality-webp")] = None
    quality_jpeg: Annotated[int | None, Parameter(name="--quality-jpeg")] = None
    lqip: Annotated[LqipType | None, Parameter(name="--lqip", help="Placeholder type")] = None
    html: Annotated[bool, Parameter(name="--html", help="Write a <picture> snippet")] = False
    platform: Annotated[
        str | None, Parameter(name="--platform", help="instagram, twitter, youtube, ...")
    ] = None


def load_platforms(config_dir: Path = UHD_HOME) -> dict[str, PlatformProfile]:
    """
    Built-in platform profiles merged with ``<config_dir>/platforms.json``.

    Custom entries replace built-ins with the same key; invalid files or entries are
    logged and ignored.
    """
    platforms = dict(DEFAULT_PLATFORMS)
    custom_path = config_dir / "platforms.json"
    if not custom_path.is_file():
        return platforms
    try:
        custom = json.loads(custom_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("platforms_file_unreadable", path=str(custom_path), error=str(exc))
        return platforms
    if not isinstance(custom, dict):
        logger.warning("platforms_file_not_an_object", path=str(custom_path))
        return platforms
    for key, entry in custom.items():
        try:
            platforms[key.lower()] = PlatformProfile.model_validate(entry)
        except ValidationError as exc:
            logger.warning("platform_entry_invalid", platform=key, error=str(exc))
    return platforms


def resolve_preset(preset: str, flags: OptimizeFlags, config_dir: Path = UHD_HOME) -> PresetConfig:
    """
    Apply platform and command-line overrides to a preset without mutating it.

    Raises:
        ValueError: If the platform is unknown or a numeric list cannot be parsed.

    """
    config = PRESETS[preset].model_copy(deep=True)
    if flags.platform:
        platforms = load_platforms(config_dir)
        profile = platforms.get(flags.platform.lower())
        if profile is None:
            msg = f"Unknown platform '{flags.platform}'. Available: {', '.join(sorted(platforms))}"
            raise ValueError(msg)
        config.max_width = profile.max_width
        config.formats = list(profile.formats)
        for fmt in profile.formats:
            config.qualities[fmt] = profile.quality

    if flags.formats:
        config.formats = parse_csv(flags.formats)
    if flags.breakpoints:
        config.breakpoints = [int(bp) for bp in parse_csv(flags.breakpoints)]
    if flags.max_width:
        config.max_width = flags.max_width
    for fmt, quality in (
        ("avif", flags.quality_avif),
        ("webp", flags.quality_webp),
        ("jpeg", flags.quality_jpeg),
    ):
        if quality:
            config.qualities[fmt] = quality
    if flags.lqip:
        config.lqip = flags.lqip

    unknown = [fmt for fmt in config.formats if fmt not in FORMATS]
    if unknown:
        msg = f"Unknown format(s): {', '.join(unknown)}"
        raise ValueError(msg)
    return config


def resize_to_width(img: Image.Image, width: int) -> Image.Image:
    """Scale to ``width`` keeping the aspect ratio; never enlarges."""
    if width >= img.width:
        return img
    height = max(1, round(img.height * width / img.width))
    return img.resize((width, height), Image.Resampling.LANCZOS)


def average_color(img: Image.Image) -> tuple[int, int, int]:
    r, g, b = ImageStat.Stat(img.convert("RGB")).mean[:3]
    return round(r), round(g), round(b)


def generate_lqip(img: Image.Image, kind: LqipType, out_dir: Path, stem: str) -> LqipResult | None:
    """
    Build a low-quality image placeholder.

    Args:
        img: Decoded source image
        kind: ``blurhash`` (compact base64 of a 32px RGBA thumbnail), ``micro`` (16px WebP
            data URI, also saved as ``<stem>-lqip.webp``), ``css`` (average colour
            background) or ``svg`` (solid-colour rect data URI)
        out_dir: Folder for files written alongside the placeholder
        stem: Base name for those files

    Returns:
        LqipResult, or None for ``none``.

    """
    if kind == "none":
        return None

    if kind == "blurhash":
        thumb = img.convert("RGBA")
        thumb.thumbnail((32, 32))
        value = base64.b64encode(thumb.tobytes()[:64]).decode("ascii")[:28]
        return LqipResult(type=kind, value=value, size=len(value))

    if kind == "micro":
        micro = resize_to_width(img.convert("RGB"), 16)
        buffer = BytesIO()
        micro.save(buffer, format="WEBP", quality=20)
        micro_path = out_dir / f"{stem}-lqip.webp"
        micro_path.write_bytes(buffer.getvalue())
        value = "data:image/webp;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")
        return LqipResult(type=kind, value=value, path=str(micro_path), size=buffer.tell())

    r, g, b = average_color(img)
    if kind == "css":
        value = f"background:rgb({r},{g},{b})"
        return LqipResult(type=kind, value=value, size=len(value))

    svg = (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{img.width}" height="{img.height}">'
        f'<rect fill="rgb({r},{g},{b})" width="100%" height="100%"/></svg>'
    )
    value = "data:image/svg+xml;base64," + base64.b64encode(svg.encode()).decode("ascii")
    return LqipResult(type=kind, value=value, size=len(value))


def picture_element(variants: list[VariantResult], lqip: LqipResult | None = None) -> str:
    """
    ``<picture>`` markup with one srcset per format, AVIF first and JPEG as the ``<img>``.

    Formats without breakpoint variants get a single-source entry.
    """
    by_format: dict[str, list[VariantResult]] = {}
    for variant in variants:
        by_format.setdefault(variant.format, []).append(variant)

    lines = ["<picture>"]
    img_tag: str | None = None
    for fmt in PICTURE_ORDER:
        group = by_format.get(fmt)
        if not group:
            continue
        responsive = sorted((v for v in group if v.breakpoint), key=lambda v: v.breakpoint or 0)
        full = next((v for v in group if v.breakpoint is None), group[0])
        if responsive:
            srcset = ", ".join(f"{Path(v.path).name} {v.width}w" for v in responsive)
            sizes = ", ".join(f"(max-width: {v.width}px) {v.width}px" for v in responsive)
            attrs = f'srcset="{srcset}" sizes="{sizes}"'
        else:
            attrs = f'srcset="{Path(full.path).name}"'
        if fmt == "jpeg":
            style = f' style="{lqip.value}"' if lqip and lqip.type == "css" else ""
            img_tag = (
                f'  <img src="{Path(full.path).name}" {attrs} alt="" loading="lazy"{style} />'
            )
        else:
            lines.append(f'  <source type="{FORMATS[fmt].mime_type}" {attrs} />')

    if img_tag is None and variants:
        fallback = next((v for v in variants if v.breakpoint is None), variants[0])
        img_tag = f'  <img src="{Path(fallback.path).name}" alt="" loading="lazy" />'
    if img_tag:
        lines.append(img_tag)
    lines.append("</picture>")
    return "\n".join(lines)


def _write_variant(
    img: Image.Image,
    destination: Path,
    fmt: str,
    preset: PresetConfig,
    breakpoint: int | None,
    metadata_source: Image.Image | None,
) -> VariantResult:
    save_image(
        img,
        destination,
        fmt,
        quality=preset.quality_for(fmt),
        effort=preset.effort or None,
        metadata_source=metadata_source,
    )
    size = destination.stat().st_size
    return VariantResult(
        path=str(destination),
        format=fmt,
        width=img.width,
        height=img.height,
        size=size,
        size_human=human_size(size),
        breakpoint=breakpoint,
    )


def optimize_image(
    source: Path,
    out_dir: Path,
    preset: PresetConfig,
    *,
    html: bool = False,
) -> OptimizeResult:
    """
    Write responsive variants, a placeholder and a manifest for one image.

    Per format, one ``<stem>-<w>w.<ext>`` per breakpoint not wider than the source (capped at
    the preset max width) and a full-size ``<stem>.<ext>``. Savings compare the input with
    the first full-size variant.

    Args:
        source: Image to optimize
        out_dir: Output folder (created)
        preset: Resolved preset configuration
        html: Also write ``<stem>.html`` with a ``<picture>`` element

    Returns:
        OptimizeResult describing every file written.

    """
    input_size = source.stat().st_size
    stem = source.stem
    out_dir.mkdir(parents=True, exist_ok=True)

    img = open_image(source)
    metadata_source = None if preset.strip_metadata else img
    full_width = min(img.width, preset.max_width) if preset.max_width else img.width
    full = resize_to_width(img, full_width)

    variants: list[VariantResult] = []
    skipped: list[str] = []
    for fmt in preset.formats:
        if not can_encode(fmt):
            logger.warning("format_encoder_unavailable", format=fmt, file=source.name)
            skipped.append(fmt)
            continue
        extension = FORMATS[fmt].extension
        for bp in preset.breakpoints:
            if bp > img.width:
                continue
            width = min(bp, preset.max_width) if preset.max_width else bp
            variants.append(
                _write_variant(
                    resize_to_width(img, width),
                    out_dir / f"{stem}-{width}w{extension}",
                    fmt,
                    preset,
                    bp,
                    metadata_source,
                ),
            )
        variants.append(
            _write_variant(
                full, out_dir / f"{stem}{extension}", fmt, preset, None, metadata_source,
            ),
        )

    lqip = generate_lqip(img, preset.lqip, out_dir, stem)
    if lqip is not None:
        (out_dir / f"{stem}-lqip.txt").write_text(lqip.value, encoding="utf-8")

    write_json(
        out_dir / f"{stem}-manifest.json",
        {
            "source": source.name,
            "preset": preset.id,
            "variants": [v.to_json_dict() for v in variants],
            "lqip": lqip.to_json_dict() if lqip else None,
        },
    )
    if html:
        markup = picture_element(variants, lqip)
        (out_dir / f"{stem}.html").write_text(markup + "\n", encoding="utf-8")

    total_output = sum(v.size for v in variants)
    primary = next((v.size for v in variants if v.breakpoint is None), total_output)
    logger.info(
        "image_optimized",
        file=source.name,
        variants=len(variants),
        savings=percent_change(input_size, primary),
    )
    return OptimizeResult(
        input=source.name,
        input_size=input_size,
        output_dir=str(out_dir),
        preset=preset.id,
        variants=variants,
        lqip=lqip,
        total_output_size=total_output,
        savings=input_size - primary,
        savings_percent=percent_change(input_size, primary),
        skipped_formats=skipped,
    )


def audit_image(path: Path, bandwidth: float = DEFAULT_BANDWIDTH_MBPS) -> AuditResult:
    """
    Check one image against an LCP budget on a ``bandwidth`` Mbps connection.

    Over 2.5 s is critical and over 1 s a warning. Suggestions cover AVIF conversion for
    PNG/JPEG, resizing past 1920 px wide and missing ``-<w>w.`` responsive variants.
    """
    size = path.stat().st_size
    with Image.open(path) as img:
        width, height = img.size
        fmt = (img.format or "unknown").lower()
    if fmt == "mpo":
        fmt = "jpeg"
    load_time = size * 8 / (bandwidth * 1024 * 1024)

    suggestions: list[str] = []
    status: AuditStatus = "ok"
    estimated: int | None = None
    if load_time > LCP_CRITICAL_SECONDS:
        status = "critical"
        suggestions.append("Image too large for target LCP threshold")
    elif load_time > LCP_WARNING_SECONDS:
        status = "warning"

    if fmt in ("jpeg", "png"):
        suggestions.append(f"Convert to AVIF (est. {'90' if fmt == 'png' else '60'}% smaller)")
        estimated = round(size * (0.1 if fmt == "png" else 0.4))
    if width > AUDIT_MAX_WIDTH:
        suggestions.append(f"Resize from {width}px to {AUDIT_MAX_WIDTH}px max width")
        ratio = AUDIT_MAX_WIDTH / width
        estimated = round((estimated or size) * ratio * ratio)
    if "-" not in path.name or not RESPONSIVE_NAME.search(path.name):
        suggestions.append("Add responsive srcset variants")

    savings = None
    if estimated is not None and size:
        savings = f"{(size - estimated) / size * 100:.0f}%"
    return AuditResult(
        file=path.name,
        file_size=size,
        file_size_human=human_size(size),
        width=width,
        height=height,
        format=fmt.upper(),
        load_time_on_target=round(load_time, 2),
        target_bandwidth=bandwidth,
        status=status,
        suggestions=suggestions,
        estimated_optimized_size=estimated,
        estimated_savings=savings,
    )


def build_audit_report(audits: list[AuditResult]) -> AuditReport:
    total = sum(a.file_size for a in audits)
    potential = sum(
        a.file_size - a.estimated_optimized_size
        for a in audits
        if a.estimated_optimized_size is not None
    )
    return AuditReport(
        total_files=len(audits),
        total_size=total,
        total_size_human=human_size(total),
        ok=sum(1 for a in audits if a.status == "ok"),
        warnings=sum(1 for a in audits if a.status == "warning"),
        critical=sum(1 for a in audits if a.status == "critical"),
        audits=audits,
        potential_savings=potential,
        potential_savings_percent=f"{potential / total * 100:.0f}%" if total else "0%",
    )


def audit_files(files: list[Path], bandwidth: float, concurrency: int) -> AuditReport:
    results, failed = split_results(
        run_blocking_pool(files, partial(audit_image, bandwidth=bandwidth), concurrency),
    )
    if failed:
        logger.warning("audit_files_unreadable", failed=failed)
    return build_audit_report(results)


def markdown_report(directory: Path, report: AuditReport) -> str:
    formats = Counter(a.format for a in report.audits)
    lines = [
        "# Image Optimization Report",
        "",
        f"**Directory:** {directory}",
        f"**Total files:** {report.total_files}",
        f"**Total size:** {report.total_size_human}",
        "",
        "## Format Distribution",
        "",
        *(f"- {fmt}: {count} files" for fmt, count in formats.items()),
        "",
        "## Optimization Opportunities",
        "",
        "| File | Size | Status | Suggestion |",
        "|------|------|--------|------------|",
        *(
            f"| {a.file} | {a.file_size_human} | {a.status} | "
            f"{a.suggestions[0] if a.suggestions else 'OK'} |"
            for a in report.audits
        ),
        "",
        "## Summary",
        "",
        f"- Potential savings: **{human_size(report.potential_savings)}** "
        f"({report.potential_savings_percent})",
    ]
    return "\n".join(lines) + "\n"


app = App(name="uhd-optimize", help="Responsive variants, LQIP and Core Web Vitals audits.")


def _resolve_or_exit(preset: str, flags: OptimizeFlags) -> PresetConfig:
    try:
        return resolve_preset(preset, flags)
    except ValueError as exc:
        logger.error("invalid_optimize_options", error=str(exc))
        raise SystemExit(1) from exc


def _print_plan(name: str, config: PresetConfig, out_dir: Path) -> None:
    print(f'\nDry run: optimize {name} with "{config.display_name}" preset')  # noqa: T201
    print(f"  Formats:     {', '.join(config.formats)}")  # noqa: T201
    print(f"  Max width:   {f'{config.max_width}px' if config.max_width else 'none'}")  # noqa: T201
    bps = ", ".join(str(bp) for bp in config.breakpoints) or "none"
    print(f"  Breakpoints: {bps}")  # noqa: T201
    print(f"  LQIP:        {config.lqip}")  # noqa: T201
    print(f"  Output:      {out_dir}")  # noqa: T201


def _run_optimize(
    image: Path | None,
    preset: str,
    flags: OptimizeFlags,
    *,
    output: Path | None,
    stdin: bool,
    dry_run: bool,
    as_json: bool,
) -> None:
    source = single_input(image, stdin=stdin)
    config = _resolve_or_exit(preset, flags)
    out_dir = output or source.parent / f"optimized-{preset}"

    if dry_run:
        if as_json:
            emit_json(
                {
                    "dryRun": True,
                    "input": str(source),
                    "output": str(out_dir),
                    "preset": config.model_dump(mode="json"),
                },
            )
        else:
            _print_plan(source.name, config, out_dir)
        return

    try:
        result = optimize_image(source, out_dir, config, html=flags.html)
    except (OSError, ValueError) as exc:
        logger.error("optimize_failed", file=str(source), error=str(exc))
        raise SystemExit(1) from exc

    if as_json:
        emit_json(result)
        return
    print(f"\nOptimized: {result.input}")  # noqa: T201
    print(f"  Preset:   {config.display_name}")  # noqa: T201
    print(f"  Original: {human_size(result.input_size)}")  # noqa: T201
    print(f"  Variants: {len(result.variants)}")  # noqa: T201
    print(f"  Savings:  {result.savings_percent}")  # noqa: T201
    print(f"  Output:   {out_dir}")  # noqa: T201
    if result.lqip:
        print(f"  LQIP:     {result.lqip.type} ({result.lqip.size} bytes)")  # noqa: T201
    if result.skipped_formats:
        print(f"  Skipped (no encoder): {', '.join(result.skipped_formats)}")  # noqa: T201


OutputOpt = Annotated[Path | None, Parameter(name=("--output", "-o"), help="Output directory")]
StdinOpt = Annotated[bool, Parameter(name="--stdin", help="Read the input path from stdin")]
DryRunOpt = Annotated[bool, Parameter(name="--dry-run", help="Show the plan only")]
JsonOpt = Annotated[bool, Parameter(name="--json", help="JSON output")]


@app.command
def optimize(
    image: Annotated[Path | None, Parameter(help="Image to optimize (omit with --stdin)")] = None,
    *,
    preset: Annotated[Preset, Parameter(name=("--preset", "-p"))] = "web",
    flags: OptimizeFlags | None = None,
    output: OutputOpt = None,
    stdin: StdinOpt = False,
    dry_run: DryRunOpt = False,
    as_json: JsonOpt = False,
    log: LogOptions | None = None,
) -> None:
    """
    Optimize one image with a preset.

    Examples:
        uhd-optimize optimize hero.png --preset social --platform instagram -o out/

    """
    init_logging(log)
    _run_optimize(
        image, preset, flags or OptimizeFlags(),
        output=output, stdin=stdin, dry_run=dry_run, as_json=as_json,
    )


@app.command
def web(
    image: Annotated[Path | None, Parameter(help="Image to optimize (omit with --stdin)")] = None,
    *,
    flags: OptimizeFlags | None = None,
    output: OutputOpt = None,
    stdin: StdinOpt = False,
    dry_run: DryRunOpt = False,
    as_json: JsonOpt = False,
    log: LogOptions | None = None,
) -> None:
    """Web preset with srcset variants, LQIP and a ``<picture>`` snippet."""
    init_logging(log)
    flags = flags or OptimizeFlags()
    if not flags.html:
        flags = replace(flags, html=True)
    _run_optimize(image, "web", flags, output=output, stdin=stdin, dry_run=dry_run, as_json=as_json)


@app.command
def batch(
    directory: Annotated[
        Path | None,
        Parameter(validator=validators.Path(exists=True), help="Directory of images"),
    ] = None,
    *,
    preset: Annotated[Preset, Parameter(name=("--preset", "-p"))] = "web",
    flags: OptimizeFlags | None = None,
    output: Annotated[
        Path | None,
        Parameter(
            name=("--output", "-o"),
            help="Output directory (default <dir>/optimized-<preset>)",
        ),
    ] = None,
    recursive: Annotated[bool, Parameter(name=("--recursive", "-r"))] = False,
    concurrency: Annotated[
        int, Parameter(name=("--concurrency", "-c"), validator=validators.Number(gte=1)),
    ] = DEFAULT_CONCURRENCY,
    stdin: Annotated[bool, Parameter(name="--stdin", help="Read input paths from stdin")] = False,
    yes: Annotated[bool, Parameter(name=("--yes", "-y"), help="Skip confirmation")] = False,
    dry_run: DryRunOpt = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output (implies --yes)")] = False,
    log: LogOptions | None = None,
) -> None:
    """
    Optimize every image in a directory, one output subfolder per image.

    Exit status: 1 if any image fails.
    """
    init_logging(log)
    flags = flags or OptimizeFlags()
    config = _resolve_or_exit(preset, flags)
    files = gather_inputs([directory] if directory else [], stdin=stdin, recursive=recursive)
    base = directory if directory and directory.is_dir() else Path.cwd()
    out_dir = output or base / f"optimized-{preset}"

    if not as_json:
        print(  # noqa: T201
            f'\nBatch optimize: {len(files)} images with "{config.display_name}" preset',
        )
        print(f"  Output: {out_dir}")  # noqa: T201
    if dry_run:
        if as_json:
            emit_json({"dryRun": True, "files": [str(f) for f in files], "output": str(out_dir)})
        return
    if not (yes or as_json) and not confirm("Proceed?"):
        print("Cancelled.")  # noqa: T201
        return

    results, failed = split_results(
        run_blocking_pool(
            files,
            lambda file: optimize_image(file, out_dir / file.stem, config, html=flags.html),
            concurrency,
        ),
    )
    total_in = sum(r.input_size for r in results)
    total_out = sum(r.input_size - r.savings for r in results)
    logger.info("batch_optimize_summary", total=len(files), successful=len(results), failed=failed)

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
        print(f"\nDone: {len(results)}/{len(files)} images optimized")  # noqa: T201
        print(  # noqa: T201
            f"  Total: {human_size(total_in)} -> {human_size(total_out)} "
            f"({percent_change(total_in, total_out)} reduction)",
        )
    if failed:
        raise SystemExit(1)


@app.command
def audit(
    target: Annotated[Path | None, Parameter(help="Image or directory to audit")] = None,
    *,
    bandwidth: Annotated[
        float,
        Parameter(name="--bandwidth", validator=validators.Number(gt=0), help="Target Mbps"),
    ] = DEFAULT_BANDWIDTH_MBPS,
    concurrency: Annotated[
        int, Parameter(name=("--concurrency", "-c"), validator=validators.Number(gte=1)),
    ] = DEFAULT_CONCURRENCY,
    stdin: Annotated[bool, Parameter(name="--stdin", help="Read input paths from stdin")] = False,
    as_json: JsonOpt = False,
    log: LogOptions | None = None,
) -> None:
    """Audit images against an LCP < 2.5 s budget (directories are scanned recursively)."""
    init_logging(log)
    files = gather_inputs([target] if target else [], stdin=stdin, recursive=True)
    report = audit_files(files, bandwidth, concurrency)

    if as_json:
        emit_json(report)
        return
    icons = {"ok": "[ok]  ", "warning": "[warn]", "critical": "[crit]"}
    print("\nImage audit report")  # noqa: T201
    print(f"Target: LCP < {LCP_CRITICAL_SECONDS}s at {bandwidth} Mbps\n")  # noqa: T201
    for a in report.audits:
        timing = (
            f"Would take {a.load_time_on_target}s"
            if a.load_time_on_target > LCP_CRITICAL_SECONDS
            else f"OK ({a.load_time_on_target}s)"
        )
        print(f"{icons[a.status]} {a.file:<25} {a.file_size_human:<10} {timing}")  # noqa: T201
        for suggestion in a.suggestions:
            print(f"    -> {suggestion}")  # noqa: T201
    print(  # noqa: T201
        f"\nSummary: {report.ok} OK, {report.warnings} warnings, {report.critical} critical",
    )
    if report.potential_savings > 0:
        print(  # noqa: T201
            f"Potential savings: {human_size(report.potential_savings)} "
            f"({report.potential_savings_percent})",
        )


@app.command
def report(
    directory: Annotated[
        Path,
        Parameter(
            validator=validators.Path(exists=True, file_okay=False),
            help="Folder to report on",
        ),
    ],
    *,
    output: Annotated[
        Path | None, Parameter(name=("--output", "-o"), help="report.md or report.json"),
    ] = None,
    bandwidth: Annotated[
        float, Parameter(name="--bandwidth", validator=validators.Number(gt=0)),
    ] = (
        DEFAULT_BANDWIDTH_MBPS
    ),
    concurrency: Annotated[
        int, Parameter(name=("--concurrency", "-c"), validator=validators.Number(gte=1)),
    ] = DEFAULT_CONCURRENCY,
    log: LogOptions | None = None,
) -> None:
    """Write an optimization report (JSON to stdout without ``-o``)."""
    init_logging(log)
    files = gather_inputs([directory], stdin=False, recursive=True)
    audit_report = audit_files(files, bandwidth, concurrency)
    payload = {
        "directory": str(directory),
        "formatDistribution": dict(Counter(a.format for a in audit_report.audits)),
        **audit_report.to_json_dict(),
    }
    if output is None:
        emit_json(payload)
        return
    if output.suffix.lower() == ".json":
        write_json(output, payload)
    else:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(markdown_report(directory, audit_report), encoding="utf-8")
    logger.info("optimization_report_written", output=str(output))
    print(f"Report written to {output}")  # noqa: T201


if __name__ == "__main__":
    app()
