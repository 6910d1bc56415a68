"""Tests for gain map computation, creation and extraction."""

import json
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

import uhd_skills.gainmap as gm


def test_equal_renditions_give_unit_gain() -> None:
    """Identical SDR and HDR renditions produce a gain of 1 everywhere."""
    flat = Image.new("RGB", (16, 8), (120, 90, 60))

    quantized, result = gm.compute_gain_map(flat, flat)

    assert quantized.shape == (8, 16, 3)
    assert quantized.dtype == np.uint8
    assert result.stats.mean == 1.0
    assert result.stats.min == 1.0
    assert result.stats.max == 1.0
    assert result.coverage.neutral_percent == 100.0
    assert int(quantized.min()) >= 0
    assert int(quantized.max()) <= 255


def test_brighter_hdr_counts_as_highlight() -> None:
    """Doubling brightness is recorded as highlight gain."""
    sdr = Image.new("RGB", (8, 8), (100, 100, 100))
    hdr = Image.new("RGB", (8, 8), (200, 200, 200))

    _, result = gm.compute_gain_map(sdr, hdr)

    assert result.stats.mean == 2.0
    assert result.coverage.highlight_percent == 100.0


def test_stats_use_raw_gain_above_map_range() -> None:
    """Min, max and mean report the real ratio while the stored map saturates at 8x."""
    sdr = Image.new("RGB", (4, 4), (10, 10, 10))
    hdr = Image.new("RGB", (4, 4), (255, 255, 255))

    quantized, result = gm.compute_gain_map(sdr, hdr)

    assert result.stats.max == 25.5
    assert result.stats.min == 25.5
    assert result.stats.mean == 25.5
    assert result.stats.std_dev == 0.0
    assert int(quantized.max()) == 255
    assert result.coverage.highlight_percent == 100.0


def test_luminosity_mode_is_single_channel() -> None:
    """Luminosity maps have one channel."""
    img = Image.new("RGB", (10, 6), (80, 80, 80))

    quantized, result = gm.compute_gain_map(img, img, mode="luminosity", half_resolution=True)

    assert quantized.shape == (3, 5)
    assert result.channels == 1
    assert (result.width, result.height) == (5, 3)


def test_dimension_mismatch_raises() -> None:
    """SDR and HDR must be the same size."""
    with pytest.raises(ValueError, match="dimensions must match"):
        gm.compute_gain_map(Image.new("RGB", (4, 4)), Image.new("RGB", (5, 4)))


def test_verify_reconstruction_passes_for_identical_images() -> None:
    """Rebuilding SDR x gain reproduces the HDR rendition."""
    img = Image.new("RGB", (8, 8), (60, 120, 180))
    quantized, _ = gm.compute_gain_map(img, img)

    verification = gm.verify_reconstruction(img, img, quantized)

    assert verification.passed
    assert verification.psnr >= gm.PSNR_PASS


def test_create_and_extract(tmp_path: Path) -> None:
    """Create writes base, map, heatmap and sidecar; extract finds the embedded map."""
    sdr_path = tmp_path / "sdr.png"
    hdr_path = tmp_path / "hdr.png"
    Image.new("RGB", (32, 24), (90, 90, 90)).save(sdr_path)
    Image.new("RGB", (32, 24), (180, 180, 180)).save(hdr_path)
    output = tmp_path / "out" / "photo.jpg"

    result = gm.create_gain_map(sdr_path, hdr_path, output, headroom=2.0)

    assert output.is_file()
    assert Path(result.gain_map).name == "photo-gainmap.png"
    assert Path(result.heatmap).is_file()
    sidecar = json.loads(Path(result.sidecar).read_text(encoding="utf-8"))
    assert sidecar["headroom"] == 2.0
    assert sidecar["hdrCapacityMax"] == 2.0
    assert sidecar["mapWidth"] == 32
    assert sidecar["verification"]["passed"] is True
    assert result.verification.passed

    sdr_out, gain_out, metadata = gm.extract_gain_map(output, tmp_path / "extracted")

    assert sdr_out.is_file()
    assert gain_out.is_file()
    assert metadata.source == "embedded"
    assert (metadata.sdr_width, metadata.sdr_height) == (32, 24)
    assert (tmp_path / "extracted" / "metadata.json").is_file()


def test_extract_without_embedded_map_estimates(tmp_path: Path) -> None:
    """A plain image yields a luminance estimate instead of an embedded map."""
    source = tmp_path / "plain.png"
    Image.new("RGB", (20, 10), (10, 200, 30)).save(source)

    _, gain_out, metadata = gm.extract_gain_map(source, tmp_path / "x")

    assert metadata.source == "luminance-estimate"
    with Image.open(gain_out) as gain:
        assert gain.mode == "L"
        assert gain.size == (20, 10)


def test_pair_by_stem(tmp_path: Path) -> None:
    """Pairs are matched on file stem and unmatched SDR files are reported."""
    sdr_dir = tmp_path / "sdr"
    hdr_dir = tmp_path / "hdr"
    sdr_dir.mkdir()
    hdr_dir.mkdir()
    for name in ("a.jpg", "b.jpg"):
        Image.new("RGB", (2, 2)).save(sdr_dir / name)
    Image.new("RGB", (2, 2)).save(hdr_dir / "a.png")

    pairs, missing = gm.pair_by_stem(sdr_dir, hdr_dir)

    assert [(s.name, h.name) for s, h in pairs] == [("a.jpg", "a.png")]
    assert missing == ["b"]
