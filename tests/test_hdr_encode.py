"""Tests for HDR encoder selection, tool arguments and the 16-bit PNG writer."""

from pathlib import Path

import numpy as np
import png
import pytest
from PIL import Image

import uhd_skills.hdr_encode as he
from uhd_skills.convert import can_encode


NO_TOOLS = he.ToolAvailability(
    avifenc=False, cjxl=False, djxl=False, heif_enc=False, ultrahdr_app=False, ffmpeg=False,
)


def _pixels(height: int = 8, width: int = 12) -> np.ndarray:
    ramp = np.linspace(0.0, 1.0, width)
    return np.stack([np.tile(ramp, (height, 1))] * 3, axis=-1)


@pytest.fixture
def no_tools(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pretend no external encoder is installed."""
    monkeypatch.setattr(he, "detect_tools", lambda: NO_TOOLS)


def test_resolve_cicp() -> None:
    """Colour space and transfer map to H.273 code points."""
    assert he.resolve_cicp("rec2020", "pq") == he.Cicp(primaries=9, transfer=16, matrix=9)
    assert he.resolve_cicp("display-p3", "hlg") == he.Cicp(primaries=12, transfer=18, matrix=1)
    assert he.resolve_cicp("srgb", "sdr") == he.Cicp(primaries=1, transfer=13, matrix=1)


def test_avifenc_args() -> None:
    """avifenc gets depth, quality, speed and CICP flags before the paths."""
    options = he.HdrEncodeOptions(bit_depth=12, color_space="rec2020", transfer="pq", quality=80)

    args = he.avifenc_args(Path("in.png"), Path("out.avif"), options)

    assert args[0] == "avifenc"
    assert args[args.index("-d") + 1] == "12"
    assert args[args.index("-q") + 1] == "80"
    assert args[args.index("-s") + 1] == "4"
    assert args[args.index("--cicp") + 1] == "9/16/9"
    assert args[-2:] == ["in.png", "out.avif"]


def test_cjxl_args_hdr_flags() -> None:
    """PQ output sets the colour space and intensity target."""
    args = he.cjxl_args(Path("in.png"), Path("out.jxl"), he.HdrEncodeOptions(format="jxl"))

    assert "color_space=RGB_D65_202_Rel_PeQ" in args
    assert args[args.index("--intensity_target") + 1] == "1000"
    assert args[args.index("--override_bitdepth") + 1] == "10"


def test_write_png16_keeps_full_precision(tmp_path: Path) -> None:
    """The intermediate PNG is 16-bit RGB and keeps the 0..65535 range."""
    dest = tmp_path / "deep.png"

    he.write_png16(_pixels(), dest)

    raw = dest.read_bytes()
    assert raw[24] == 16
    assert raw[25] == 2
    width, height, rows, info = png.Reader(filename=str(dest)).read()
    assert (width, height) == (12, 8)
    assert info["bitdepth"] == 16
    first_row = list(next(iter(rows)))
    assert first_row[:3] == [0, 0, 0]
    assert first_row[-3:] == [65535, 65535, 65535]
    with Image.open(dest) as img:
        assert img.size == (12, 8)


def test_pack_rgba1010102_sets_opaque_alpha() -> None:
    """Each pixel packs into one 32-bit word with both alpha bits set."""
    packed = he.pack_rgba1010102(np.ones((1, 2, 3)))

    assert len(packed) == 8
    word = int.from_bytes(packed[:4], "little")
    assert word >> 30 == 3
    assert word & 0x3FF == 1023


@pytest.mark.usefixtures("no_tools")
def test_ultrahdr_without_tool_falls_back_to_jpeg(tmp_path: Path) -> None:
    """Without ultrahdr_app a plain JPEG is written and a warning is attached."""
    output = tmp_path / "out.jpg"

    result = he.encode_hdr(_pixels(), output, he.HdrEncodeOptions(format="ultrahdr-jpeg"))

    assert result.encoder == "pillow"
    assert result.bit_depth == 8
    assert result.warning is not None
    assert "ultrahdr_app" in result.warning
    assert output.is_file()


@pytest.mark.usefixtures("no_tools")
@pytest.mark.skipif(not can_encode("avif"), reason="Pillow built without AVIF")
def test_jxl_without_cjxl_falls_back_to_avif(tmp_path: Path) -> None:
    """Missing cjxl yields an 8-bit AVIF next to the requested path."""
    result = he.encode_hdr(_pixels(), tmp_path / "out.jxl", he.HdrEncodeOptions(format="jxl"))

    assert result.output_path.endswith("out.avif")
    assert result.warning is not None
    assert "cjxl" in result.warning
    assert result.bit_depth == 8


@pytest.mark.usefixtures("no_tools")
@pytest.mark.skipif(not can_encode("avif"), reason="Pillow built without AVIF")
def test_default_avif_without_avifenc_uses_pillow(tmp_path: Path) -> None:
    """The default 10-bit PQ AVIF drops to an 8-bit Pillow encode with a warning."""
    output = tmp_path / "out.avif"

    result = he.encode_hdr(_pixels(), output, he.HdrEncodeOptions())

    assert result.encoder == "pillow"
    assert result.bit_depth == 8
    assert result.output_path == str(output)
    assert result.warning is not None
    assert result.warning.startswith("Requested 10-bit AVIF not supported")
    assert output.is_file()


@pytest.mark.usefixtures("no_tools")
@pytest.mark.skipif(not can_encode("avif"), reason="Pillow built without AVIF")
def test_heif_without_heif_enc_falls_back_to_avif(tmp_path: Path) -> None:
    """Missing heif-enc yields an 8-bit AVIF beside the requested HEIF path."""
    result = he.encode_hdr(_pixels(), tmp_path / "out.heic", he.HdrEncodeOptions(format="heif"))

    assert result.output_path.endswith("out.avif")
    assert result.bit_depth == 8
    assert result.warning is not None
    assert "heif-enc" in result.warning
    assert (tmp_path / "out.avif").is_file()


def test_capabilities_without_tools(monkeypatch: pytest.MonkeyPatch) -> None:
    """With no tools only the Pillow formats are listed and the depth is capped at 8."""
    monkeypatch.setattr(he, "detect_tools", lambda: NO_TOOLS)
    monkeypatch.setattr(he, "tool_versions", dict)

    caps = he.capabilities()

    assert caps.max_bit_depth == 8
    assert caps.supported_formats[:2] == ["avif", "jpeg"]
    assert "jxl" not in caps.supported_formats
    assert caps.versions == {}
