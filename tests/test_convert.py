"""Tests for format conversion with Pillow encoders."""

from pathlib import Path

import numpy as np
import pytest
from PIL import Image

import uhd_skills.convert as cv


def _gradient_jpeg(path: Path, size: tuple[int, int] = (1920, 1080)) -> Path:
    width, height = size
    x = np.linspace(0, 255, width, dtype=np.float64)
    y = np.linspace(0, 255, height, dtype=np.float64)
    rgb = np.stack(
        [
            np.tile(x, (height, 1)),
            np.tile(y[:, None], (1, width)),
            np.full((height, width), 128.0),
        ],
        axis=-1,
    )
    Image.fromarray(rgb.astype(np.uint8)).save(path, format="JPEG", quality=95)
    return path


def test_convert_jpeg_to_webp(tmp_path: Path) -> None:
    """A converted WebP keeps its dimensions and is smaller than the source JPEG."""
    source = _gradient_jpeg(tmp_path / "photo.jpg")
    dest = tmp_path / "photo.webp"

    result = cv.convert_image(source, dest, cv.ConvertOptions(format="webp"))

    assert dest.is_file()
    assert (result.width, result.height) == (1920, 1080)
    assert result.output_format == "webp"
    assert result.input_format == "JPG"
    assert result.output_size < result.input_size
    assert result.reduction == result.input_size - result.output_size
    assert result.reduction_percent.endswith("%")
    assert result.warning is None
    with Image.open(dest) as img:
        assert img.size == (1920, 1080)


@pytest.mark.skipif(not cv.can_encode("avif"), reason="Pillow built without AVIF")
def test_convert_jpeg_to_avif(tmp_path: Path) -> None:
    """AVIF output keeps dimensions and shrinks a high-quality JPEG."""
    source = _gradient_jpeg(tmp_path / "photo.jpg")
    dest = tmp_path / "photo.avif"

    result = cv.convert_image(source, dest, cv.ConvertOptions(format="avif", quality=60))

    assert (result.width, result.height) == (1920, 1080)
    assert result.output_size < result.input_size


def test_high_bit_depth_request_warns(tmp_path: Path) -> None:
    """Asking for more than 8 bits through Pillow is reported as a warning."""
    source = _gradient_jpeg(tmp_path / "small.jpg", (64, 48))

    result = cv.convert_image(
        source, tmp_path / "small.png", cv.ConvertOptions(format="png", bit_depth=16),
    )

    assert result.warning is not None
    assert "8-bit" in result.warning


def test_lossless_jpeg_request_warns(tmp_path: Path) -> None:
    """JPEG has no lossless mode, so a lossless request falls back to lossy."""
    source = _gradient_jpeg(tmp_path / "small.jpg", (64, 48))

    result = cv.convert_image(
        source, tmp_path / "out.jpg", cv.ConvertOptions(format="jpeg", lossless=True),
    )

    assert result.warning is not None
    assert "lossless" in result.warning


def test_prepare_for_format_flattens_alpha_for_jpeg() -> None:
    """Transparent pixels are composited onto white for formats without alpha."""
    img = Image.new("RGBA", (4, 4), (0, 0, 0, 0))

    prepared = cv.prepare_for_format(img, cv.FORMATS["jpeg"])

    assert prepared.mode == "RGB"
    assert prepared.getpixel((0, 0)) == (255, 255, 255)
    assert cv.prepare_for_format(img, cv.FORMATS["webp"]).mode == "RGBA"


def test_format_for_extension() -> None:
    """Extensions map to formats regardless of case."""
    spec = cv.format_for_extension(".JPEG")
    assert spec is not None
    assert spec.id == "jpeg"
    assert cv.format_for_extension(".xyz") is None


def test_picture_html_lists_sources_in_order() -> None:
    """The picture element lists modern sources first and the universal image last."""
    html = cv.picture_html("hero", ["avif", "webp"], "jpeg")

    lines = html.splitlines()
    assert lines[0] == "<picture>"
    assert 'srcset="hero.avif" type="image/avif"' in lines[1]
    assert 'srcset="hero.webp" type="image/webp"' in lines[2]
    assert 'src="hero.jpg"' in lines[3]
    assert lines[-1] == "</picture>"


def test_negotiate_custom_browsers(tmp_path: Path) -> None:
    """Known browsers get AVIF, unknown ones the universal format."""
    result = cv.negotiate_formats(tmp_path / "hero.png", "chrome,lynx")

    assert [r.recommended_format for r in result.recommendations] == ["avif", "jpeg"]
    assert result.primary_format == "avif"
