"""Tests for SDR histogram analysis, tone expansion and the local conversion path."""

from pathlib import Path

import numpy as np
import pytest
from PIL import Image

import uhd_skills.hdr_encode as he
import uhd_skills.sdr_to_hdr as s2h


def _histogram(*, clipping: bool, dynamic_range: float) -> s2h.HistogramAnalysis:
    return s2h.HistogramAnalysis(
        shadow_percent=10.0,
        midtone_percent=60.0,
        highlight_percent=30.0,
        shadow_clipping=False,
        highlight_clipping=clipping,
        dynamic_range=dynamic_range,
        peak_brightness=1.0,
    )


def test_select_method() -> None:
    """Only clipped, low-range images are sent to AI reconstruction."""
    assert s2h.select_method(_histogram(clipping=True, dynamic_range=4.0)) == "ai"
    assert s2h.select_method(_histogram(clipping=True, dynamic_range=7.0)) == "gainmap"
    assert s2h.select_method(_histogram(clipping=False, dynamic_range=3.0)) == "gainmap"


def test_analyze_histogram_detects_clipping() -> None:
    """A half-white image has clipped highlights and a narrow significant range."""
    data = np.zeros((64, 64), dtype=np.uint8)
    data[:, :32] = 255
    data[:, 32:] = np.linspace(100, 200, 32, dtype=np.uint8)

    histogram = s2h.analyze_histogram(Image.fromarray(data))

    assert histogram.highlight_clipping
    assert not histogram.shadow_clipping
    assert histogram.highlight_percent >= 50.0
    assert histogram.dynamic_range == pytest.approx(1.0, abs=0.1)
    assert s2h.select_method(histogram) == "ai"


def test_analyze_histogram_flat_defaults_range() -> None:
    """Without a spread of significant values the range defaults to six stops."""
    histogram = s2h.analyze_histogram(Image.new("L", (16, 16), 0))

    assert histogram.dynamic_range == s2h.DEFAULT_DYNAMIC_RANGE
    assert histogram.shadow_clipping


def test_expand_tone_pq_range_and_order() -> None:
    """PQ output stays in [0, 1], keeps tonal order and caps white at the peak."""
    rgb = np.array([[[0, 0, 0], [128, 128, 128], [255, 255, 255]]], dtype=np.uint8)

    signal = s2h.expand_tone(rgb, s2h.ToneOptions(), transfer="pq", peak_nits=1000)

    assert signal.shape == (1, 3, 3)
    assert float(signal.min()) >= 0.0
    assert float(signal.max()) <= 1.0
    black, grey, white = signal[0, :, 0]
    assert black < grey < white
    assert black < 0.01
    assert white == pytest.approx(float(s2h.pq_encode(np.array(1000.0))), abs=1e-6)


def test_expand_tone_sdr_boosts_highlights() -> None:
    """In sRGB output a bright value is pushed up while black stays black."""
    rgb = np.array([[[0, 0, 0], [200, 200, 200]]], dtype=np.uint8)

    out = s2h.expand_tone(rgb, s2h.ToneOptions(headroom=2.0), transfer="sdr")

    assert out[0, 0, 0] == pytest.approx(0.0, abs=1e-9)
    assert out[0, 1, 0] > 200 / 255


def test_convert_with_gainmap_jpeg_without_tools(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
) -> None:
    """JPEG output goes through Pillow and reports the encoder used."""
    monkeypatch.setattr(
        he,
        "detect_tools",
        lambda: he.ToolAvailability(
            avifenc=False, cjxl=False, djxl=False, heif_enc=False, ultrahdr_app=False, ffmpeg=False,
        ),
    )
    source = tmp_path / "sdr.png"
    Image.new("RGB", (24, 16), (120, 140, 160)).save(source)
    destination = tmp_path / "hdr.jpg"

    result = s2h.convert_with_gainmap(
        source, destination, s2h.ToneOptions(), output_format="jpeg", bit_depth=8,
    )

    assert destination.is_file()
    assert result.encoder == "pillow"
    assert result.method == "gainmap"
    assert result.input_format == "PNG"
    assert result.bit_depth == 8


def test_preview_image_is_side_by_side() -> None:
    """The preview is the original and the expansion next to each other."""
    preview = s2h.preview_image(Image.new("RGB", (10, 6), (50, 50, 50)), s2h.ToneOptions())

    assert preview.size == (20, 6)
    assert preview.getpixel((0, 0)) == (50, 50, 50)
