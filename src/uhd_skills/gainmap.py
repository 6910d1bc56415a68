"""
UHD gain-map editor: create, extract, edit, inspect, validate and preview gain maps.

A gain map stores, per pixel, how much brighter the HDR rendition is than the SDR base.
Gains are assumed to lie in 0-8x and are quantised to 8 bits as ``round(gain / 8 * 255)``.
JPEG outputs are written as Multi-Picture (MPO) files with the gain map as the second
frame; a ``-gainmap.json`` sidecar carries the parameters and statistics.
"""
# ruff: noqa: PLR0913

import math
import time
from pathlib import Path
from typing import Annotated, Literal

import numpy as np
from cyclopts import App, Parameter, validators
from loguru import logger
from PIL import Image, ImageEnhance, ImageOps

from uhd_skills.common import (
    DEFAULT_CONCURRENCY,
    CamelModel,
    LogOptions,
    collect_images,
    confirm,
    emit_json,
    human_size,
    init_logging,
    open_image,
    run_blocking_pool,
    single_input,
    split_results,
    write_json,
)
from uhd_skills.convert import save_image


GainMapType = Literal["rgb", "luminosity"]
GainMapStandard = Literal["iso", "android", "both"]
BaseFormat = Literal["jpeg", "avif"]
MapResolution = Literal["full", "half"]

MAX_GAIN = 8.0
SDR_EPSILON = 1.0 / 255.0
LUM_EPSILON = 0.001
REC709 = np.array([0.2126, 0.7152, 0.0722])
HIGHLIGHT_GAIN = 2.0
SHADOW_GAIN = 1.0
EXTRACT_MAX_WIDTH = 2048
INSPECT_SIZE = 512
PSNR_PASS = 30.0
GAIN_MAP_CONTAINERS = ("jpeg", "mpo", "avif", "heif")
PREVIEW_HEADROOMS = (1.5, 2.0, 2.5, 3.0, 4.0)
PREVIEW_DEVICES = (
    ("iPhone 15 Pro", 2.5, "Full HDR experience"),
    ("MacBook Pro M1+", 4.0, "Maximum HDR"),
    ("Samsung Galaxy", 2.0, "Good HDR"),
    ("Budget phone", 1.5, "Minimal HDR boost"),
    ("SDR monitor", 0.0, "SDR base only"),
)

# Create defaults
DEFAULT_HEADROOM = 3.0
DEFAULT_QUALITY = 90
DEFAULT_MAP_QUALITY = 85


class GainStats(CamelModel):
    min: float
    max: float
    mean: float
    std_dev: float


class GainCoverage(CamelModel):
    highlight_percent: float
    shadow_percent: float
    neutral_percent: float


class Verification(CamelModel):
    passed: bool
    max_error: float
    mean_error: float
    psnr: float


class GainMapResult(CamelModel):
    """Quantised gain map plus the statistics gathered while computing it."""

    width: int
    height: int
    channels: int
    stats: GainStats
    coverage: GainCoverage


class CreateResult(CamelModel):
    sdr_input: str
    hdr_input: str
    output: str
    gain_map: str
    heatmap: str
    sidecar: str
    type: str
    headroom: float
    standard: str
    map_width: int
    map_height: int
    output_size: int
    map_size: int
    duration: float
    stats: GainStats
    coverage: GainCoverage
    verification: Verification


class GainMapMetadata(CamelModel):
    type: str
    standard: str
    headroom: float
    min_headroom: float
    map_width: int
    map_height: int
    map_bit_depth: int
    sdr_width: int
    sdr_height: int
    sdr_color_space: str
    hdr_color_space: str
    gamma: float
    source: str


class ValidateCheck(CamelModel):
    name: str
    passed: bool
    message: str


class ValidateResult(CamelModel):
    file: str
    valid: bool
    checks: list[ValidateCheck]
    warnings: list[str]
    recommendations: list[str]


app = App(name="uhd-gainmap", help="Create, inspect and edit HDR gain maps.")


def _rgb_array(img: Image.Image, size: tuple[int, int] | None = None) -> np.ndarray:
    rgb = img.convert("RGB")
    if size is not None and rgb.size != size:
        rgb = rgb.resize(size, Image.Resampling.LANCZOS)
    return np.asarray(rgb, dtype=np.float64)


def compute_gain_map(
    sdr: Image.Image,
    hdr: Image.Image,
    *,
    mode: GainMapType = "rgb",
    half_resolution: bool = False,
) -> tuple[np.ndarray, GainMapResult]:
    """
    Compute a quantised gain map from co-registered SDR and HDR renditions.

    Args:
        sdr: SDR base image
        hdr: HDR rendition with the same dimensions (8-bit tone-mapped or display-referred)
        mode: 'rgb' for one gain per channel, 'luminosity' for a single Rec.709 luma gain
        half_resolution: Compute the map at half width and height

    Returns:
        Tuple of (quantised uint8 array of shape HxWx3 or HxW, GainMapResult with stats).

    Raises:
        ValueError: If the two images do not have the same dimensions.

    Examples:
        >>> flat = Image.new("RGB", (4, 4), (120, 120, 120))
        >>> data, result = compute_gain_map(flat, flat)
        >>> result.stats.mean
        1.0

    """
    if sdr.size != hdr.size:
        msg = (
            f"SDR ({sdr.width}x{sdr.height}) and HDR ({hdr.width}x{hdr.height}) "
            "dimensions must match"
        )
        raise ValueError(msg)

    width, height = sdr.size
    if half_resolution:
        width, height = max(1, round(width / 2)), max(1, round(height / 2))
    sdr_px = _rgb_array(sdr, (width, height))
    hdr_px = _rgb_array(hdr, (width, height))

    if mode == "rgb":
        gain = np.maximum(hdr_px / 255.0, SDR_EPSILON) / np.maximum(sdr_px / 255.0, SDR_EPSILON)
        channels = 3
    else:
        sdr_lum = sdr_px @ REC709 / 255.0
        hdr_lum = hdr_px @ REC709 / 255.0
        gain = np.maximum(hdr_lum, LUM_EPSILON) / np.maximum(sdr_lum, LUM_EPSILON)
        channels = 1

    clamped = np.clip(gain, 0.0, MAX_GAIN)
    quantized = np.clip(np.round(clamped / MAX_GAIN * 255.0), 0, 255).astype(np.uint8)

    first_channel = quantized[..., 0] if mode == "rgb" else quantized
    dequantized = first_channel.astype(np.float64) / 255.0 * MAX_GAIN
    total = dequantized.size
    highlight = int(np.count_nonzero(dequantized > HIGHLIGHT_GAIN))
    shadow = int(np.count_nonzero(dequantized < SHADOW_GAIN))
    neutral = total - highlight - shadow

    result = GainMapResult(
        width=width,
        height=height,
        channels=channels,
        stats=GainStats(
            min=round(float(gain.min()), 3),
            max=round(float(gain.max()), 3),
            mean=round(float(gain.mean()), 3),
            std_dev=round(float(clamped.std()), 3),
        ),
        coverage=GainCoverage(
            highlight_percent=round(highlight / total * 100, 1),
            shadow_percent=round(shadow / total * 100, 1),
            neutral_percent=round(neutral / total * 100, 1),
        ),
    )
    logger.debug(
        "gain_map_computed",
        width=width,
        height=height,
        mode=mode,
        mean=result.stats.mean,
    )
    return quantized, result


def dequantize(quantized: np.ndarray) -> np.ndarray:
    """Map stored gain bytes back to linear gain factors in [0, 8]."""
    return quantized.astype(np.float64) / 255.0 * MAX_GAIN


def verify_reconstruction(
    sdr: Image.Image,
    hdr: Image.Image,
    quantized: np.ndarray,
) -> Verification:
    """Rebuild the HDR rendition from SDR x gain and measure the error against the real one."""
    height, width = quantized.shape[:2]
    sdr_px = np.maximum(_rgb_array(sdr, (width, height)) / 255.0, SDR_EPSILON)
    hdr_px = _rgb_array(hdr, (width, height)) / 255.0
    gain = dequantize(quantized)
    if gain.ndim == 2:  # noqa: PLR2004
        sdr_lum = np.maximum(sdr_px @ REC709, LUM_EPSILON)
        hdr_lum = hdr_px @ REC709
        error = np.abs(np.clip(sdr_lum * gain, 0, 1) - hdr_lum)
    else:
        error = np.abs(np.clip(sdr_px * gain, 0, 1) - hdr_px)
    mse = float(np.mean(error**2))
    psnr = 99.0 if mse == 0 else 10 * math.log10(1.0 / mse)
    return Verification(
        passed=psnr >= PSNR_PASS,
        max_error=round(float(error.max()), 4),
        mean_error=round(float(error.mean()), 4),
        psnr=round(psnr, 2),
    )


def heatmap_image(quantized: np.ndarray) -> Image.Image:
    """Colour a gain map blue (low) through green and yellow to red (high)."""
    values = quantized[..., 0] if quantized.ndim == 3 else quantized  # noqa: PLR2004
    n = values.astype(np.float64) / 255.0
    rgb = np.zeros((*n.shape, 3), dtype=np.float64)

    low = n < 0.33  # noqa: PLR2004
    mid = (n >= 0.33) & (n < 0.66)  # noqa: PLR2004
    high = n >= 0.66  # noqa: PLR2004

    rgb[low, 1] = n[low] * 3
    rgb[low, 2] = 1 - n[low] * 3
    rgb[mid, 0] = (n[mid] - 0.33) * 3
    rgb[mid, 1] = 1.0
    rgb[high, 0] = 1.0
    rgb[high, 1] = 1 - (n[high] - 0.66) * 3
    return Image.fromarray(np.clip(np.round(rgb * 255), 0, 255).astype(np.uint8))


def gain_map_image(quantized: np.ndarray) -> Image.Image:
    return Image.fromarray(quantized)


def _sibling(output: Path, suffix: str, extension: str) -> Path:
    return output.with_name(f"{output.stem}{suffix}{extension}")


def create_gain_map(
    sdr_path: Path,
    hdr_path: Path,
    output: Path,
    *,
    mode: GainMapType = "rgb",
    headroom: float = DEFAULT_HEADROOM,
    standard: GainMapStandard = "both",
    base_format: BaseFormat = "jpeg",
    quality: int = DEFAULT_QUALITY,
    map_quality: int = DEFAULT_MAP_QUALITY,
    map_resolution: MapResolution = "full",
) -> CreateResult:
    """
    Create an SDR base, gain map, heatmap and JSON sidecar from an SDR/HDR pair.

    Files written next to ``output``:
    - ``<output>``: SDR base (JPEG MPO with the gain map as second frame, or AVIF)
    - ``<stem>-gainmap.png``: lossless gain map
    - ``<stem>-heatmap.png``: false-colour visualisation
    - ``<stem>-gainmap.json``: parameters, statistics and verification
    """
    start = time.perf_counter()
    sdr = open_image(sdr_path)
    hdr = open_image(hdr_path)
    quantized, gain = compute_gain_map(
        sdr, hdr, mode=mode, half_resolution=map_resolution == "half",
    )
    verification = verify_reconstruction(sdr, hdr, quantized)

    output.parent.mkdir(parents=True, exist_ok=True)
    gain_img = gain_map_image(quantized)
    gain_map_path = _sibling(output, "-gainmap", ".png")
    heatmap_path = _sibling(output, "-heatmap", ".png")
    sidecar_path = _sibling(output, "-gainmap", ".json")
    gain_img.save(gain_map_path, format="PNG", compress_level=6)
    heatmap_image(quantized).save(heatmap_path, format="PNG")

    if base_format == "jpeg":
        base = sdr.convert("RGB")
        embedded = gain_img.convert("RGB").resize(base.size, Image.Resampling.BILINEAR)
        base.save(
            output,
            format="MPO",
            save_all=True,
            append_images=[embedded],
            quality=quality,
        )
    else:
        save_image(sdr, output, "avif", quality=quality, metadata_source=sdr)

    # the stored map saturates at MAX_GAIN whatever the raw ratio was
    gain_min = min(max(gain.stats.min, 1.0 / MAX_GAIN), MAX_GAIN)
    gain_max = min(max(gain.stats.max, 1.0), MAX_GAIN)
    write_json(
        sidecar_path,
        {
            "version": "1.0",
            "type": mode,
            "standard": standard,
            "headroom": headroom,
            "mapResolution": map_resolution,
            "mapQuality": map_quality,
            "mapWidth": gain.width,
            "mapHeight": gain.height,
            "gainMapMin": round(math.log2(gain_min), 3),
            "gainMapMax": round(min(math.log2(gain_max), headroom), 3),
            "gamma": 1.0,
            "offsetSdr": 1 / 64,
            "offsetHdr": 1 / 64,
            "hdrCapacityMin": 0.0,
            "hdrCapacityMax": headroom,
            "stats": gain.stats.to_json_dict(),
            "coverage": gain.coverage.to_json_dict(),
            "verification": verification.to_json_dict(),
        },
    )

    result = CreateResult(
        sdr_input=str(sdr_path),
        hdr_input=str(hdr_path),
        output=str(output),
        gain_map=str(gain_map_path),
        heatmap=str(heatmap_path),
        sidecar=str(sidecar_path),
        type=mode,
        headroom=headroom,
        standard=standard,
        map_width=gain.width,
        map_height=gain.height,
        output_size=output.stat().st_size,
        map_size=gain_map_path.stat().st_size,
        duration=round((time.perf_counter() - start) * 1000, 1),
        stats=gain.stats,
        coverage=gain.coverage,
        verification=verification,
    )
    logger.info(
        "gain_map_created",
        output=str(output),
        psnr=verification.psnr,
        highlight_percent=gain.coverage.highlight_percent,
    )
    return result


def _embedded_gain_frame(img: Image.Image) -> Image.Image | None:
    """Return the second MPF frame of a JPEG, which is where gain maps live."""
    if getattr(img, "n_frames", 1) < 2:  # noqa: PLR2004
        return None
    img.seek(1)
    frame = img.copy()
    img.seek(0)
    return frame


def extract_gain_map(source: Path, out_dir: Path) -> tuple[Path, Path, GainMapMetadata]:
    """
    Split an image into an SDR base and a gain map.

    The gain map is the embedded MPF frame when present, otherwise a luminance estimate.
    Both the map and its width are capped at 2048 pixels.
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    img = open_image(source)
    embedded = _embedded_gain_frame(img)
    base = img.convert("RGB")

    sdr_path = out_dir / "sdr-base.jpg"
    base.save(sdr_path, format="JPEG", quality=95)

    gain_source = embedded if embedded is not None else base
    gain = ImageOps.grayscale(gain_source)
    if gain.width > EXTRACT_MAX_WIDTH:
        new_height = round(gain.height * EXTRACT_MAX_WIDTH / gain.width)
        gain = gain.resize((EXTRACT_MAX_WIDTH, new_height), Image.Resampling.LANCZOS)
    gain_path = out_dir / "gain-map.png"
    gain.save(gain_path, format="PNG")

    metadata = GainMapMetadata(
        type="luminosity",
        standard="mpf" if embedded is not None else "unknown",
        headroom=0.0,
        min_headroom=0.0,
        map_width=gain.width,
        map_height=gain.height,
        map_bit_depth=8,
        sdr_width=base.width,
        sdr_height=base.height,
        sdr_color_space="icc" if img.info.get("icc_profile") else "sRGB",
        hdr_color_space="unknown",
        gamma=1.0,
        source="embedded" if embedded is not None else "luminance-estimate",
    )
    write_json(out_dir / "metadata.json", metadata)
    logger.info("gain_map_extracted", input=source.name, source=metadata.source)
    return sdr_path, gain_path, metadata


def _tone_lut(shadows: float, highlights: float) -> list[int]:
    """Build a 256-entry curve that lifts shadows and compresses or boosts highlights."""
    lut: list[int] = []
    for value in range(256):
        x = value / 255.0
        if x < 0.5:  # noqa: PLR2004
            y = x + shadows * 0.25 * (1 - x) ** 2
        else:
            y = x + highlights * 0.25 * x**2
        lut.append(max(0, min(255, round(y * 255))))
    return lut


def edit_sdr_base(
    img: Image.Image,
    *,
    brightness: float = 0.0,
    contrast: float = 1.0,
    saturation: float = 1.0,
    shadows: float = 0.0,
    highlights: float = 0.0,
    warmth: float = 0.0,
) -> tuple[Image.Image, dict[str, float]]:
    """
    Apply SDR-base adjustments and report which ones were non-neutral.

    Brightness and saturation are multiplicative (1 + brightness, saturation), contrast is
    the linear map ``a * x - 128 * (a - 1)`` and warmth scales red up and blue down by
    ``warmth * 30`` levels.
    """
    out = img.convert("RGB")
    adjustments: dict[str, float] = {}

    if brightness:
        out = ImageEnhance.Brightness(out).enhance(1 + brightness)
        adjustments["brightness"] = brightness
    if saturation != 1.0:
        out = ImageEnhance.Color(out).enhance(saturation)
        adjustments["saturation"] = saturation
    if contrast != 1.0:
        px = np.asarray(out, dtype=np.float64)
        px = contrast * px - 128 * (contrast - 1)
        out = Image.fromarray(np.clip(np.round(px), 0, 255).astype(np.uint8))
        adjustments["contrast"] = contrast
    if shadows or highlights:
        out = out.point(_tone_lut(shadows, highlights) * 3)
        if shadows:
            adjustments["shadows"] = shadows
        if highlights:
            adjustments["highlights"] = highlights
    if warmth:
        px = np.asarray(out, dtype=np.float64)
        px[..., 0] *= (255 + warmth * 30) / 255
        px[..., 2] *= (255 - warmth * 30) / 255
        out = Image.fromarray(np.clip(np.round(px), 0, 255).astype(np.uint8))
        adjustments["warmth"] = warmth

    return out, adjustments


def inspect_gain_map(source: Path) -> dict[str, object]:
    """Summarise the gain content of an image (embedded map if present, else luminance)."""
    img = open_image(source)
    embedded = _embedded_gain_frame(img)
    target = ImageOps.grayscale(embedded if embedded is not None else img)
    target.thumbnail((INSPECT_SIZE, INSPECT_SIZE), Image.Resampling.LANCZOS)
    gains = dequantize(np.asarray(target))
    return {
        "file": source.name,
        "type": "luminosity",
        "standard": "mpf" if embedded is not None else "unknown",
        "embedded": embedded is not None,
        "mapWidth": (embedded or img).width,
        "mapHeight": (embedded or img).height,
        "mapBitDepth": 8,
        "sdrBase": {"width": img.width, "height": img.height},
        "gainStats": GainStats(
            min=round(float(gains.min()), 3),
            max=round(float(gains.max()), 3),
            mean=round(float(gains.mean()), 3),
            std_dev=round(float(gains.std()), 3),
        ).to_json_dict(),
    }


def _bit_depth(img: Image.Image) -> int:
    if img.mode.startswith("I;16") or img.mode == "I":
        return 16
    if img.mode == "F":
        return 32
    return 8


def validate_gain_map(source: Path) -> ValidateResult:
    """Check that a file is a plausible gain-map container."""
    with Image.open(source) as img:
        fmt = (img.format or "unknown").lower()
        frames = getattr(img, "n_frames", 1)
        icc = img.info.get("icc_profile")
        xmp = img.info.get("xmp") or b""
        mode = img.mode
        width, height = img.size
        depth = _bit_depth(img)

    checks: list[ValidateCheck] = []
    warnings: list[str] = []
    recommendations: list[str] = []
    is_jpeg = fmt in ("jpeg", "mpo")

    valid_container = fmt in GAIN_MAP_CONTAINERS
    checks.append(
        ValidateCheck(
            name="Container format",
            passed=valid_container,
            message=(
                f"Valid container format ({fmt.upper()})"
                if valid_container
                else f"{fmt.upper()} is not a standard gain map container"
            ),
        ),
    )
    checks.append(
        ValidateCheck(
            name="Image dimensions",
            passed=width > 0 and height > 0,
            message=f"{width}x{height}",
        ),
    )
    checks.append(
        ValidateCheck(
            name="Color space metadata",
            passed=bool(mode),
            message=f"Color space: {mode}",
        ),
    )
    checks.append(
        ValidateCheck(
            name="ICC profile",
            passed=bool(icc),
            message=f"ICC profile present ({len(icc)} bytes)" if icc else "No ICC profile",
        ),
    )
    if is_jpeg:
        has_mpf = frames > 1
        checks.append(
            ValidateCheck(
                name="Multi-Picture Format (MPF)",
                passed=has_mpf,
                message=(
                    "MPF detected (possible gain map container)"
                    if has_mpf
                    else "No MPF detected, may not contain a gain map"
                ),
            ),
        )
        if not has_mpf:
            warnings.append("No Multi-Picture Format detected. JPEG gain maps require MPF.")
            recommendations.append("Add Android XMP metadata for Android 14+ compatibility")
        xmp_text = xmp if isinstance(xmp, str) else xmp.decode("utf-8", errors="ignore")
        if has_mpf and "hdrgm" not in xmp_text:
            recommendations.append("Add hdrgm XMP metadata so ISO 21496-1 readers find the map")
    checks.append(ValidateCheck(name="Bit depth", passed=True, message=f"{depth}-bit"))
    if fmt == "avif" and depth == 8:  # noqa: PLR2004
        recommendations.append("Consider 10-bit encoding for better HDR quality")

    return ValidateResult(
        file=source.name,
        valid=all(check.passed for check in checks),
        checks=checks,
        warnings=warnings,
        recommendations=recommendations,
    )


def headroom_bars(max_headroom: float = 4.0, width: int = 20) -> list[tuple[float, int, str]]:
    """Return (stops, percent, bar) rows relative to ``max_headroom``."""
    rows = []
    for stops in PREVIEW_HEADROOMS:
        pct = stops / max_headroom * 100
        filled = min(width, round(pct / (100 / width)))
        rows.append((stops, round(pct), "#" * filled + "." * (width - filled)))
    return rows


def pair_by_stem(sdr_dir: Path, hdr_dir: Path) -> tuple[list[tuple[Path, Path]], list[str]]:
    """Match SDR and HDR files that share a stem; return (pairs, unmatched stems)."""
    sdr_files = {path.stem: path for path in collect_images(sdr_dir)}
    hdr_files = {path.stem: path for path in collect_images(hdr_dir)}
    common = sorted(sdr_files.keys() & hdr_files.keys())
    pairs = [(sdr_files[stem], hdr_files[stem]) for stem in common]
    unmatched = sorted(sdr_files.keys() ^ hdr_files.keys())
    return pairs, unmatched


def _fail(event: str, exc: Exception, **context: object) -> SystemExit:
    logger.error(event, error=str(exc), **context)
    return SystemExit(1)


@app.command
def create(
    sdr: Annotated[Path, Parameter(validator=validators.Path(exists=True), help="SDR image")],
    hdr: Annotated[Path, Parameter(validator=validators.Path(exists=True), help="HDR image")],
    *,
    output: Annotated[Path, Parameter(name=("--output", "-o"), help="Output SDR base path")],
    map_type: Annotated[GainMapType, Parameter(name="--type", help="Gain map type")] = "rgb",
    headroom: Annotated[
        float,
        Parameter(name="--headroom", validator=validators.Number(gt=0, lte=8),
                  help="Max headroom in stops"),
    ] = DEFAULT_HEADROOM,
    standard: Annotated[
        GainMapStandard, Parameter(name="--standard", help="Target metadata standard"),
    ] = "both",
    base_format: Annotated[
        BaseFormat, Parameter(name=("--format", "-f"), help="SDR base format"),
    ] = "jpeg",
    quality: Annotated[
        int, Parameter(name=("--quality", "-q"), help="SDR base quality"),
    ] = DEFAULT_QUALITY,
    map_quality: Annotated[
        int, Parameter(name="--map-quality", help="Gain map quality"),
    ] = DEFAULT_MAP_QUALITY,
    map_resolution: Annotated[
        MapResolution, Parameter(name="--map-resolution", help="full or half"),
    ] = "full",
    dry_run: Annotated[bool, Parameter(name="--dry-run", help="Show the plan only")] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """
    Create a gain map from an SDR + HDR pair.

    Examples:
        uhd-gainmap create photo-sdr.jpg photo-hdr.png -o out/photo.jpg --headroom 3

    """
    init_logging(log)
    if dry_run:
        plan = {
            "sdr": str(sdr), "hdr": str(hdr), "output": str(output), "type": map_type,
            "headroom": headroom, "standard": standard, "dryRun": True,
        }
        if as_json:
            emit_json(plan)
        else:
            print(f"\nDry run: create gain map -> {output}")  # noqa: T201
        return

    try:
        result = create_gain_map(
            sdr, hdr, output, mode=map_type, headroom=headroom, standard=standard,
            base_format=base_format, quality=quality, map_quality=map_quality,
            map_resolution=map_resolution,
        )
    except (OSError, ValueError) as exc:
        raise _fail("gain_map_create_failed", exc, sdr=str(sdr), hdr=str(hdr)) from exc

    if as_json:
        emit_json(result)
        return
    print("\nGain map created")  # noqa: T201
    print(f"  SDR base: {result.output} ({human_size(result.output_size)})")  # noqa: T201
    print(f"  Gain map: {result.gain_map} ({human_size(result.map_size)})")  # noqa: T201
    print(f"  Heatmap:  {result.heatmap}")  # noqa: T201
    print(f"  Sidecar:  {result.sidecar}")  # noqa: T201
    print(f"  Map: {result.map_width}x{result.map_height} ({map_resolution})")  # noqa: T201
    stats, cov = result.stats, result.coverage
    print(f"  Gain min {stats.min}, max {stats.max}, mean {stats.mean}")  # noqa: T201
    print(  # noqa: T201
        f"  Highlights {cov.highlight_percent}%  Shadows {cov.shadow_percent}%  "
        f"Neutral {cov.neutral_percent}%",
    )
    print(f"  Reconstruction PSNR {result.verification.psnr} dB")  # noqa: T201


@app.command
def extract(
    image: Annotated[Path | None, Parameter(help="Image with a gain map")] = None,
    *,
    output: Annotated[
        Path | None, Parameter(name=("--output", "-o"), help="Output directory"),
    ] = None,
    stdin: Annotated[
        bool, Parameter(name="--stdin", help="Read the input path from stdin"),
    ] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """Extract the SDR base, gain map and metadata from an image."""
    init_logging(log)
    source = single_input(image, stdin=stdin)
    out_dir = output or source.parent / f"extracted-{source.stem}"
    try:
        sdr_path, gain_path, metadata = extract_gain_map(source, out_dir)
    except OSError as exc:
        raise _fail("gain_map_extract_failed", exc, input=str(source)) from exc

    if as_json:
        emit_json(
            {
                "input": str(source),
                "outputDir": str(out_dir),
                "sdrBase": str(sdr_path),
                "gainMap": str(gain_path),
                "metadata": metadata.to_json_dict(),
            },
        )
        return
    print(f"\nExtracted: {source.name}")  # noqa: T201
    print(f"  SDR base: {sdr_path}")  # noqa: T201
    print(f"  Gain map: {gain_path} ({metadata.source})")  # noqa: T201
    print(f"  Metadata: {out_dir / 'metadata.json'}")  # noqa: T201


@app.command
def edit(
    image: Annotated[Path | None, Parameter(help="Image to adjust")] = None,
    *,
    brightness: Annotated[float, Parameter(name="--sdr-brightness", help="-1..1")] = 0.0,
    contrast: Annotated[float, Parameter(name="--sdr-contrast", help="0..3, 1 = unchanged")] = 1.0,
    saturation: Annotated[float, Parameter(name="--sdr-saturation", help="0..3")] = 1.0,
    shadows: Annotated[float, Parameter(name="--sdr-shadows", help="-1..1")] = 0.0,
    highlights: Annotated[float, Parameter(name="--sdr-highlights", help="-1..1")] = 0.0,
    warmth: Annotated[float, Parameter(name="--sdr-warmth", help="-1..1")] = 0.0,
    quality: Annotated[
        int, Parameter(name=("--quality", "-q"), help="Output quality"),
    ] = DEFAULT_QUALITY,
    output: Annotated[Path | None, Parameter(name=("--output", "-o"), help="Output path")] = None,
    stdin: Annotated[
        bool, Parameter(name="--stdin", help="Read the input path from stdin"),
    ] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """Adjust the SDR base of an image (brightness, contrast, saturation, tone, warmth)."""
    init_logging(log)
    source = single_input(image, stdin=stdin)
    destination = output or source.with_name(f"{source.stem}-edited{source.suffix}")
    start = time.perf_counter()

    img = open_image(source)
    edited, adjustments = edit_sdr_base(
        img, brightness=brightness, contrast=contrast, saturation=saturation,
        shadows=shadows, highlights=highlights, warmth=warmth,
    )
    ext = destination.suffix.lower()
    fmt = "jpeg" if ext in (".jpg", ".jpeg") else "avif" if ext == ".avif" else "png"
    try:
        save_image(edited, destination, fmt, quality=quality, metadata_source=img)
    except (OSError, ValueError) as exc:
        raise _fail("gain_map_edit_failed", exc, output=str(destination)) from exc

    duration = round((time.perf_counter() - start) * 1000, 1)
    logger.info("sdr_base_edited", output=str(destination), adjustments=adjustments)
    if as_json:
        emit_json(
            {"input": str(source), "output": str(destination), "adjustments": adjustments,
             "duration": duration},
        )
        return
    summary = ", ".join(f"{k}={v:+g}" for k, v in adjustments.items()) or "none"
    print(f"\nEdited: {source.name} -> {destination.name}")  # noqa: T201
    print(f"  Adjustments: {summary}")  # noqa: T201


@app.command
def inspect(
    image: Annotated[Path | None, Parameter(help="Image to inspect")] = None,
    *,
    stdin: Annotated[
        bool, Parameter(name="--stdin", help="Read the input path from stdin"),
    ] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """Inspect gain map dimensions and gain statistics."""
    init_logging(log)
    source = single_input(image, stdin=stdin)
    result = inspect_gain_map(source)
    if as_json:
        emit_json(result)
        return
    stats = result["gainStats"]
    print(f"\nGain map inspection: {result['file']}")  # noqa: T201
    print(f"  Embedded map: {result['embedded']}")  # noqa: T201
    print(f"  Map resolution: {result['mapWidth']} x {result['mapHeight']}")  # noqa: T201
    print(  # noqa: T201
        f"  Gain min {stats['min']}, max {stats['max']}, "  # type: ignore[index]
        f"mean {stats['mean']}",  # type: ignore[index]
    )


@app.command
def validate(
    image: Annotated[Path | None, Parameter(help="Image to validate")] = None,
    *,
    stdin: Annotated[
        bool, Parameter(name="--stdin", help="Read the input path from stdin"),
    ] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """
    Validate gain map container compliance.

    Exit status: 1 when any check fails.
    """
    init_logging(log)
    source = single_input(image, stdin=stdin)
    result = validate_gain_map(source)
    if as_json:
        emit_json(result)
    else:
        print(f"\nGain map validation: {result.file}")  # noqa: T201
        for check in result.checks:
            print(  # noqa: T201
                f"  [{'ok' if check.passed else 'FAIL'}] {check.name}: {check.message}",
            )
        for warning in result.warnings:
            print(f"  warning: {warning}")  # noqa: T201
        for rec in result.recommendations:
            print(f"  hint: {rec}")  # noqa: T201
        print(f"\nResult: {'PASS' if result.valid else 'FAIL'}")  # noqa: T201
    if not result.valid:
        raise SystemExit(1)


@app.command
def preview(
    image: Annotated[Path, Parameter(validator=validators.Path(exists=True), help="Image")],
    *,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """Simulate how the image's HDR boost scales across display headroom levels."""
    init_logging(log)
    with Image.open(image) as img:
        width, height, fmt = img.width, img.height, (img.format or "unknown").upper()
    bars = headroom_bars()
    if as_json:
        emit_json(
            {
                "file": image.name,
                "width": width,
                "height": height,
                "format": fmt,
                "headroom": [{"stops": s, "percent": p} for s, p, _ in bars],
                "devices": [
                    {"device": d, "stops": s, "note": n} for d, s, n in PREVIEW_DEVICES
                ],
            },
        )
        return
    print(f"\nGain map preview: {image.name} ({width}x{height}, {fmt})")  # noqa: T201
    for stops, pct, bar in bars:
        print(f"  {stops:.1f} stops: [{bar}] {pct}%")  # noqa: T201
    for device, stops, note in PREVIEW_DEVICES:
        print(f"  {device:<17} {stops:.1f} stops, {note}")  # noqa: T201


@app.command(name="batch-create")
def batch_create(
    sdr_dir: Annotated[
        Path, Parameter(validator=validators.Path(exists=True, file_okay=False), help="SDR folder"),
    ],
    hdr_dir: Annotated[
        Path, Parameter(validator=validators.Path(exists=True, file_okay=False), help="HDR folder"),
    ],
    *,
    output: Annotated[Path, Parameter(name=("--output", "-o"), help="Output directory")],
    map_type: Annotated[GainMapType, Parameter(name="--type", help="Gain map type")] = "rgb",
    headroom: Annotated[
        float, Parameter(name="--headroom", help="Max headroom in stops"),
    ] = DEFAULT_HEADROOM,
    base_format: Annotated[
        BaseFormat, Parameter(name=("--format", "-f"), help="SDR base format"),
    ] = "jpeg",
    quality: Annotated[
        int, Parameter(name=("--quality", "-q"), help="SDR base quality"),
    ] = DEFAULT_QUALITY,
    concurrency: Annotated[
        int, Parameter(name=("--concurrency", "-c"), validator=validators.Number(gte=1)),
    ] = DEFAULT_CONCURRENCY,
    yes: Annotated[bool, Parameter(name=("--yes", "-y"), help="Skip confirmation")] = False,
    dry_run: Annotated[bool, Parameter(name="--dry-run", help="Show the plan only")] = False,
    as_json: Annotated[bool, Parameter(name="--json", help="JSON output")] = False,
    log: LogOptions | None = None,
) -> None:
    """
    Create gain maps for every SDR/HDR pair that shares a file stem.

    Exit status: 1 if any pair fails.
    """
    init_logging(log)
    pairs, unmatched = pair_by_stem(sdr_dir, hdr_dir)
    for stem in unmatched:
        logger.warning("unmatched_gain_map_input", stem=stem)
    if not pairs:
        logger.error("no_matching_pairs", sdr_dir=str(sdr_dir), hdr_dir=str(hdr_dir))
        raise SystemExit(1)

    ext = ".jpg" if base_format == "jpeg" else ".avif"
    if not as_json:
        print(f"\nBatch create: {len(pairs)} pairs -> {output}")  # noqa: T201
    if dry_run:
        if as_json:
            emit_json({"dryRun": True, "pairs": [[str(s), str(h)] for s, h in pairs],
                       "unmatched": unmatched})
        return
    if not (yes or as_json) and not confirm("Proceed?"):
        print("Cancelled.")  # noqa: T201
        return

    raw = run_blocking_pool(
        pairs,
        lambda pair: create_gain_map(
            pair[0], pair[1], output / f"{pair[0].stem}{ext}",
            mode=map_type, headroom=headroom, base_format=base_format, quality=quality,
        ),
        concurrency,
    )
    results, failed = split_results(raw)
    logger.info("batch_create_summary", total=len(pairs), successful=len(results), failed=failed)
    if as_json:
        emit_json(
            {"results": [r.to_json_dict() for r in results], "failed": failed,
             "unmatched": unmatched},
        )
    else:
        print(f"Done: {len(results)}/{len(pairs)} gain maps created")  # noqa: T201
    if failed:
        raise SystemExit(1)


if __name__ == "__main__":
    app()
