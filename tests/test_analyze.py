"""Tests for image inspection, HDR detection and browser compatibility reports."""

from pathlib import Path

import numpy as np
import pytest
from PIL import Image, ImageCms

import uhd_skills.analyze as an
from uhd_skills.hdr_encode import write_png16


def _png(path: Path, size: tuple[int, int] = (40, 30), mode: str = "RGB") -> Path:
    Image.new(mode, size).save(path, format="PNG")
    return path


def test_analyze_image_png(tmp_path: Path) -> None:
    """An 8-bit RGB PNG is reported as lossless sRGB SDR."""
    info = an.analyze_image(_png(tmp_path / "flat.png"))

    assert info.format == "PNG"
    assert info.mime_type == "image/png"
    assert (info.width, info.height) == (40, 30)
    assert info.bit_depth == 8
    assert info.channels == 3
    assert not info.has_alpha
    assert info.color_space == "sRGB"
    assert info.compression.lossless
    assert not info.hdr.capable
    assert info.hdr.reason == an.SDR_REASON
    assert info.hdr.estimated_dynamic_range == 8


def test_analyze_image_reads_png_depth_from_header(tmp_path: Path) -> None:
    """A 16-bit PNG is HDR-capable even though Pillow decodes it to 8 bits."""
    path = tmp_path / "deep.png"
    write_png16(np.full((4, 6, 3), 0.5), path)

    info = an.analyze_image(path)

    assert info.bit_depth == 16
    assert info.hdr.capable
    assert "16-bit color depth" in info.hdr.reason
    assert info.hdr.estimated_dynamic_range == 18


def test_analyze_image_alpha(tmp_path: Path) -> None:
    """RGBA images report four channels and alpha."""
    info = an.analyze_image(_png(tmp_path / "alpha.png", mode="RGBA"))

    assert info.has_alpha
    assert info.channels == 4


def test_parse_icc_profile_srgb() -> None:
    """Pillow's built-in sRGB profile is recognised by its description."""
    icc = ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB")).tobytes()

    profile = an.parse_icc_profile(icc)

    assert profile is not None
    assert profile.name == "sRGB IEC61966-2.1"
    assert an.parse_icc_profile(None) is None


def test_detect_hdr_wide_gamut() -> None:
    """A Display P3 profile alone makes an 8-bit image HDR-capable."""
    profile = an.IccProfile(name="Display P3", color_space="RGB")

    hdr = an.detect_hdr("jpeg", 8, "Display P3", profile, 1)

    assert hdr.capable
    assert hdr.wide_gamut
    assert "Wide gamut" in hdr.reason


def test_detect_hdr_avif_headroom() -> None:
    """10-bit AVIF gets 3 stops of headroom, 12-bit gets 4."""
    assert an.detect_hdr("avif", 10, "sRGB", None, 1).headroom == 3.0
    assert an.detect_hdr("avif", 12, "sRGB", None, 1).headroom == 4.0
    assert an.detect_hdr("avif", 8, "sRGB", None, 1).headroom is None


def test_detect_hdr_gain_map_frames() -> None:
    """A multi-frame JPEG is treated as carrying a gain map."""
    hdr = an.detect_hdr("jpeg", 8, "sRGB", None, 2)

    assert hdr.capable
    assert hdr.gain_map.present


def test_compat_report_png_and_jpeg(tmp_path: Path) -> None:
    """PNG is universal; a gain-map JPEG is unsupported in Firefox."""
    png_report = an.compat_report(an.analyze_image(_png(tmp_path / "a.png")))
    assert png_report.desktop[0].support == "full"
    assert png_report.recommended_fallback == "None needed"
    assert png_report.hdr_audience_percent == 0

    jpeg = an.analyze_image(_png(tmp_path / "b.png")).model_copy(
        update={
            "format": "JPEG",
            "hdr": an.detect_hdr("jpeg", 8, "sRGB", None, 2),
        },
    )
    jpeg_report = an.compat_report(jpeg)
    firefox = next(e for e in jpeg_report.desktop if e.browser == "Firefox")
    assert firefox.support == "none"
    assert jpeg_report.hdr_audience_percent == 75
    assert jpeg_report.format.startswith("JPEG HDR")


def test_diff_images(tmp_path: Path) -> None:
    """Only differing fields are listed, with dimensions marked significant."""
    first = an.analyze_image(_png(tmp_path / "one.png", (10, 10)))
    second = an.analyze_image(_png(tmp_path / "two.png", (20, 10)))

    diffs = {d.field: d for d in an.diff_images(first, second)}

    assert diffs["Dimensions"].value1 == "10x10"
    assert diffs["Dimensions"].value2 == "20x10"
    assert diffs["Dimensions"].significant
    assert "Format" not in diffs
    assert an.diff_images(first, first) == []


def test_analyze_many_counts_errors(tmp_path: Path) -> None:
    """Unreadable files are counted as errors and the rest are summarised."""
    good = _png(tmp_path / "good.png")
    bad = tmp_path / "bad.png"
    bad.write_bytes(b"not an image")

    infos, errors = an.analyze_many([good, bad], 2)
    summary = an.summarize(infos, errors)

    assert [i.filename for i in infos] == ["good.png"]
    assert errors == 1
    assert summary.count == 1
    assert summary.errors == 1
    assert summary.formats == {"PNG": 1}
    assert summary.sdr_count == 1


def test_read_metadata_falls_back_to_pillow(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Without exiftool the basic Pillow fields are returned."""

    class _MissingExifTool:
        def __enter__(self) -> "_MissingExifTool":
            msg = "exiftool"
            raise FileNotFoundError(msg)

        def __exit__(self, *_exc: object) -> None:
            return None

    monkeypatch.setattr(an, "ExifToolHelper", _MissingExifTool)

    metadata = an.read_metadata(_png(tmp_path / "meta.png", (7, 5)))

    assert metadata["Format"] == "PNG"
    assert (metadata["Width"], metadata["Height"]) == (7, 5)


def test_container_bit_depth_prefers_exiftool(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A pixi box beyond the scanned header is still found through ExifTool."""

    class _FakeExifTool:
        def __enter__(self) -> "_FakeExifTool":
            return self

        def __exit__(self, *_exc: object) -> None:
            return None

        def get_tags(self, files: list[str], tags: list[str]) -> list[dict[str, object]]:
            assert "ImagePixelDepth" in tags
            return [{"SourceFile": files[0], "QuickTime:ImagePixelDepth": "10 10 10"}]

    path = tmp_path / "late.avif"
    padding = b"\x00" * (an.HEADER_SCAN_BYTES + 16)
    path.write_bytes(padding + b"pixi\x00\x00\x00\x00\x03\x0a\x0a\x0a")
    monkeypatch.setattr(an, "ExifToolHelper", _FakeExifTool)

    assert an.container_bit_depth(path, "avif", "RGB") == 10


def test_container_bit_depth_scans_header_without_exiftool(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Without ExifTool the pixi box in the file header gives the depth."""

    class _MissingExifTool:
        def __enter__(self) -> "_MissingExifTool":
            msg = "exiftool"
            raise FileNotFoundError(msg)

        def __exit__(self, *_exc: object) -> None:
            return None

    path = tmp_path / "early.avif"
    path.write_bytes(b"ftypavif" + b"pixi\x00\x00\x00\x00\x03\x0c\x0c\x0c")
    monkeypatch.setattr(an, "ExifToolHelper", _MissingExifTool)

    assert an.container_bit_depth(path, "avif", "RGB") == 12
    assert an.container_bit_depth(path, "jpeg", "RGB") == 8
