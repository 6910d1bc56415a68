"""
HDR encoding: hand processed pixels to the best available encoder.

External tools do what Pillow cannot:
- avifenc: 10/12-bit AVIF with CICP HDR signalling (PQ, HLG, BT.2020)
- cjxl: JPEG XL with Rec.2100 PQ/HLG colour spaces and intensity targets
- heif-enc: 10-bit HEIF
- ultrahdr_app: Ultra HDR JPEG (ISO 21496-1) with an embedded gain map

When a tool is missing the image is written with Pillow at 8 bits and the result carries a
``warning`` explaining what was lost.
"""

import shutil
import subprocess
import tempfile
from collections.abc import Callable
from functools import cache
from pathlib import Path
from typing import Literal

import numpy as np
import png
from loguru import logger
from PIL import Image
from pydantic import BaseModel

from uhd_skills.common import CamelModel
from uhd_skills.convert import can_encode, save_image


HdrTransfer = Literal["pq", "hlg", "sdr"]
HdrColorSpace = Literal["display-p3", "rec2020", "srgb"]
HdrOutputFormat = Literal["avif", "jxl", "heif", "jpeg", "ultrahdr-jpeg"]
BitDepth = Literal[8, 10, 12]

# CICP code points (ITU-T H.273)
CICP_PRIMARIES = {"bt709": 1, "bt2020": 9, "displayP3": 12}
CICP_TRANSFER = {"srgb": 13, "pq": 16, "hlg": 18}
CICP_MATRIX = {"bt709": 1, "bt2020": 9, "identity": 0}

TOOLS = ("avifenc", "cjxl", "djxl", "heif-enc", "ultrahdr_app", "ffmpeg")
VERSION_TIMEOUT = 10
ULTRAHDR_SDR_QUALITY = 95


class ToolAvailability(CamelModel):
    avifenc: bool
    cjxl: bool
    djxl: bool
    heif_enc: bool
    ultrahdr_app: bool
    ffmpeg: bool


class Cicp(CamelModel):
    primaries: int
    transfer: int
    matrix: int


class HdrEncodeOptions(BaseModel):
    format: HdrOutputFormat = "avif"
    bit_depth: BitDepth = 10
    color_space: HdrColorSpace = "display-p3"
    transfer: HdrTransfer = "pq"
    quality: int = 90
    effort: int = 6
    peak_nits: int | None = 1000
    sdr_jpeg_path: Path | None = None


class HdrEncodeResult(CamelModel):
    output_path: str
    output_size: int
    bit_depth: int
    encoder: str
    cicp: Cicp | None = None
    warning: str | None = None


class HdrCapabilities(CamelModel):
    avif10bit: bool
    avif12bit: bool
    avif_hdr_metadata: bool
    jxl: bool
    jxl_hdr: bool
    heif: bool
    ultra_hdr_jpeg: bool
    max_bit_depth: int
    supported_formats: list[str]
    tools: ToolAvailability
    versions: dict[str, str]


@cache
def detect_tools() -> ToolAvailability:
    """Probe PATH for the external encoders once per process."""
    found = {name: shutil.which(name) is not None for name in TOOLS}
    logger.debug("hdr_tools_detected", **found)
    return ToolAvailability(
        avifenc=found["avifenc"],
        cjxl=found["cjxl"],
        djxl=found["djxl"],
        heif_enc=found["heif-enc"],
        ultrahdr_app=found["ultrahdr_app"],
        ffmpeg=found["ffmpeg"],
    )


@cache
def tool_versions() -> dict[str, str]:
    """First line of ``<tool> --version`` for every available encoder."""
    versions: dict[str, str] = {}
    for name in ("avifenc", "cjxl", "heif-enc"):
        executable = shutil.which(name)
        if executable is None:
            continue
        try:
            proc = subprocess.run(  # noqa: S603
                [executable, "--version"],
                capture_output=True,
                text=True,
                check=False,
                timeout=VERSION_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("tool_version_probe_failed", tool=name, error=str(exc))
            continue
        lines = (proc.stdout or proc.stderr).strip().splitlines()
        if lines:
            versions[name] = lines[0]
    if detect_tools().ultrahdr_app:
        versions["ultrahdr_app"] = "libultrahdr (CLI)"
    return versions


def resolve_cicp(color_space: HdrColorSpace, transfer: HdrTransfer) -> Cicp:
    """
    Map colour space and transfer names to CICP code points.

    Examples:
        >>> resolve_cicp("rec2020", "pq")
        Cicp(primaries=9, transfer=16, matrix=9)

    """
    primaries = {
        "rec2020": CICP_PRIMARIES["bt2020"],
        "display-p3": CICP_PRIMARIES["displayP3"],
    }.get(color_space, CICP_PRIMARIES["bt709"])
    transfer_code = {
        "pq": CICP_TRANSFER["pq"],
        "hlg": CICP_TRANSFER["hlg"],
    }.get(transfer, CICP_TRANSFER["srgb"])
    matrix = CICP_MATRIX["bt2020"] if color_space == "rec2020" else CICP_MATRIX["bt709"]
    return Cicp(primaries=primaries, transfer=transfer_code, matrix=matrix)


def avifenc_args(source: Path, output: Path, options: HdrEncodeOptions) -> list[str]:
    cicp = resolve_cicp(options.color_space, options.transfer)
    speed = max(0, min(10, 10 - options.effort))
    return [
        "avifenc",
        "-d", str(options.bit_depth),
        "-q", str(round(options.quality)),
        "-s", str(speed),
        "--cicp", f"{cicp.primaries}/{cicp.transfer}/{cicp.matrix}",
        "-r", "full",
        "-y", "444",
        str(source),
        str(output),
    ]


def cjxl_args(source: Path, output: Path, options: HdrEncodeOptions) -> list[str]:
    args = [
        "cjxl",
        "-q", str(round(options.quality)),
        "-e", str(max(1, min(10, options.effort))),
    ]
    if options.transfer == "pq":
        args += ["-x", "color_space=RGB_D65_202_Rel_PeQ"]
    elif options.transfer == "hlg":
        args += ["-x", "color_space=RGB_D65_202_Rel_HLG"]
    if options.peak_nits and options.transfer != "sdr":
        args += ["--intensity_target", str(options.peak_nits)]
    if options.bit_depth > 8:  # noqa: PLR2004
        args += ["--override_bitdepth", str(options.bit_depth)]
    return [*args, str(source), str(output)]


def heif_enc_args(source: Path, output: Path, options: HdrEncodeOptions) -> list[str]:
    return [
        "heif-enc",
        "-q", str(round(options.quality)),
        "-b", str(options.bit_depth),
        "-o", str(output),
        str(source),
    ]


def ultrahdr_args(
    hdr_raw: Path,
    sdr_raw: Path,
    sdr_jpeg: Path,
    output: Path,
    width: int,
    height: int,
    options: HdrEncodeOptions,
) -> list[str]:
    transfer_flag = "2" if options.transfer == "pq" else "1"
    gamut = {"rec2020": "2", "display-p3": "1"}.get(options.color_space, "0")
    return [
        "ultrahdr_app",
        "-m", "0",
        "-p", str(hdr_raw),
        "-y", str(sdr_raw),
        "-i", str(sdr_jpeg),
        "-w", str(width),
        "-h", str(height),
        "-a", "5",
        "-b", "3",
        "-C", gamut,
        "-c", "0",
        "-t", transfer_flag,
        "-q", str(round(options.quality)),
        "-z", str(output),
    ]


def write_png16(pixels: np.ndarray, destination: Path) -> None:
    """
    Write an HxWx3 float array in [0, 1] as a 16-bit RGB PNG.

    Pillow cannot save 16-bit RGB, so pypng writes the rows; the encoders quantize from there.
    """
    height, width = pixels.shape[:2]
    data = np.clip(np.round(pixels[..., :3] * 65535.0), 0, 65535).astype(np.uint16)
    writer = png.Writer(width=width, height=height, bitdepth=16, greyscale=False)
    with destination.open("wb") as f:
        writer.write(f, data.reshape(height, width * 3))


def pack_rgba1010102(pixels: np.ndarray) -> bytes:
    """Pack an HxWx3 float array into little-endian RGBA1010102 words (alpha opaque)."""
    ten_bit = np.clip(np.round(pixels[..., :3] * 1023.0), 0, 1023).astype(np.uint32)
    red, green, blue = ten_bit[..., 0], ten_bit[..., 1], ten_bit[..., 2]
    packed = red | (green << 10) | (blue << 20) | (np.uint32(3) << 30)
    return packed.astype("<u4").tobytes()


def to_8bit_image(pixels: np.ndarray) -> Image.Image:
    return Image.fromarray(np.clip(np.round(pixels[..., :3] * 255.0), 0, 255).astype(np.uint8))


def _run_tool(args: list[str]) -> None:
    logger.debug("hdr_tool_run", tool=args[0], args=args[1:])
    try:
        subprocess.run(args, capture_output=True, check=True)  # noqa: S603
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.decode("utf-8", errors="replace").strip() if exc.stderr else ""
        msg = f"{args[0]} failed with exit code {exc.returncode}: {stderr}"
        raise RuntimeError(msg) from exc


def _encode_external(
    pixels: np.ndarray,
    output: Path,
    options: HdrEncodeOptions,
    build_args: Callable[[Path, Path, HdrEncodeOptions], list[str]],
    encoder: str,
) -> HdrEncodeResult:
    output.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix="uhd-") as tmp:
        intermediate = Path(tmp) / "intermediate.png"
        write_png16(pixels, intermediate)
        _run_tool(build_args(intermediate, output, options))
    cicp = resolve_cicp(options.color_space, options.transfer) if encoder == "avifenc" else None
    return HdrEncodeResult(
        output_path=str(output),
        output_size=output.stat().st_size,
        bit_depth=options.bit_depth,
        encoder=encoder,
        cicp=cicp,
    )


def _encode_ultrahdr(
    pixels: np.ndarray,
    output: Path,
    options: HdrEncodeOptions,
    sdr: Image.Image | None,
) -> HdrEncodeResult:
    height, width = pixels.shape[:2]
    base = (sdr or to_8bit_image(pixels)).convert("RGB")
    if base.size != (width, height):
        base = base.resize((width, height), Image.Resampling.LANCZOS)

    output.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix="uhd-") as tmp:
        tmp_dir = Path(tmp)
        hdr_raw = tmp_dir / "hdr.raw"
        sdr_raw = tmp_dir / "sdr.raw"
        hdr_raw.write_bytes(pack_rgba1010102(pixels))
        sdr_raw.write_bytes(base.convert("RGBA").tobytes())
        sdr_jpeg = options.sdr_jpeg_path
        if sdr_jpeg is None:
            sdr_jpeg = tmp_dir / "sdr.jpg"
            base.save(sdr_jpeg, format="JPEG", quality=ULTRAHDR_SDR_QUALITY)
        _run_tool(ultrahdr_args(hdr_raw, sdr_raw, sdr_jpeg, output, width, height, options))

    return HdrEncodeResult(
        output_path=str(output),
        output_size=output.stat().st_size,
        bit_depth=10,
        encoder="ultrahdr_app",
    )


def _encode_pillow(pixels: np.ndarray, output: Path, options: HdrEncodeOptions) -> HdrEncodeResult:
    """8-bit Pillow encode used whenever no HDR-capable tool applies."""
    img = to_8bit_image(pixels)
    warning: str | None = None

    if options.format in ("jpeg", "ultrahdr-jpeg"):
        save_image(img, output, "jpeg", quality=options.quality)
        if options.format == "ultrahdr-jpeg":
            warning = (
                "ultrahdr_app not found; wrote standard JPEG instead. "
                "Install libultrahdr for Ultra HDR output."
            )
    else:
        save_image(img, output, "avif", quality=options.quality, effort=options.effort)
        if options.bit_depth > 8:  # noqa: PLR2004
            warning = (
                f"Requested {options.bit_depth}-bit AVIF not supported by Pillow; used 8-bit. "
                "Install avifenc for HDR output."
            )

    if warning:
        logger.warning("hdr_encode_fallback", output=str(output), warning=warning)
    return HdrEncodeResult(
        output_path=str(output),
        output_size=output.stat().st_size,
        bit_depth=8,
        encoder="pillow",
        warning=warning,
    )


def encode_hdr(
    pixels: np.ndarray,
    output: Path,
    options: HdrEncodeOptions,
    *,
    sdr: Image.Image | None = None,
) -> HdrEncodeResult:
    """
    Encode processed pixels with the best available HDR encoder.

    Args:
        pixels: HxWx3 float array with display-referred values in [0, 1]
        output: Destination file
        options: Target format, bit depth, colour space, transfer and quality
        sdr: SDR base for Ultra HDR JPEG (derived from ``pixels`` when omitted)

    Returns:
        HdrEncodeResult naming the encoder used; ``warning`` is set on degraded output.

    Raises:
        RuntimeError: If an external encoder was found but failed.

    """
    tools = detect_tools()

    if options.format == "ultrahdr-jpeg":
        if tools.ultrahdr_app:
            return _encode_ultrahdr(pixels, output, options, sdr)
        return _encode_pillow(pixels, output, options)

    if options.format == "jxl":
        if tools.cjxl:
            return _encode_external(pixels, output, options, cjxl_args, "cjxl")
        fallback = _encode_pillow(pixels, output.with_suffix(".avif"), options)
        fallback.warning = "cjxl not found; wrote AVIF instead of JXL. Install libjxl for JPEG XL."
        logger.warning("hdr_encode_fallback", output=fallback.output_path, warning=fallback.warning)
        return fallback

    if options.format == "heif":
        if tools.heif_enc:
            return _encode_external(pixels, output, options, heif_enc_args, "heif-enc")
        fallback = _encode_pillow(pixels, output.with_suffix(".avif"), options)
        fallback.warning = "heif-enc not found; wrote AVIF instead of HEIF. Install libheif."
        logger.warning("hdr_encode_fallback", output=fallback.output_path, warning=fallback.warning)
        return fallback

    if options.format == "avif":
        needs_external = options.bit_depth > 8 or options.transfer != "sdr"  # noqa: PLR2004
        if needs_external and tools.avifenc:
            return _encode_external(pixels, output, options, avifenc_args, "avifenc")
        return _encode_pillow(pixels, output, options)

    return _encode_pillow(pixels, output, options)


def capabilities() -> HdrCapabilities:
    """Report which HDR outputs this machine can produce."""
    tools = detect_tools()
    formats = ["avif", "jpeg"]
    if tools.cjxl:
        formats.append("jxl")
    if tools.heif_enc or can_encode("heif"):
        formats.append("heif")
    if tools.ultrahdr_app:
        formats.append("ultrahdr-jpeg")
    return HdrCapabilities(
        avif10bit=tools.avifenc,
        avif12bit=tools.avifenc,
        avif_hdr_metadata=tools.avifenc,
        jxl=tools.cjxl,
        jxl_hdr=tools.cjxl,
        heif=tools.heif_enc,
        ultra_hdr_jpeg=tools.ultrahdr_app,
        max_bit_depth=12 if tools.avifenc else 8,
        supported_formats=formats,
        tools=tools,
        versions=tool_versions(),
    )
