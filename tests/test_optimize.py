"""Tests for web optimization presets, responsive variants, placeholders and audits."""

import json
from pathlib import Path

import pytest
from PIL import Image

import uhd_skills.optimize as op


MIB = 1024 * 1024


def _photo(path: Path, size: tuple[int, int] = (800, 600), fmt: str = "JPEG") -> Path:
    img = Image.radial_gradient("L").resize(size).convert("RGB")
    img.save(path, format=fmt)
    return path


def _bandwidth_for(path: Path, seconds: float) -> float:
    """Bandwidth (Mbps) at which ``path`` takes ``seconds`` to load."""
    return path.stat().st_size * 8 / (seconds * MIB)


def test_resolve_preset_does_not_mutate_builtin() -> None:
    """Flag overrides apply to a copy of the preset."""
    flags = op.OptimizeFlags(
        formats="webp,jpeg", breakpoints="320,640", quality_webp=60, lqip="css",
    )

    config = op.resolve_preset("web", flags)

    assert config.formats == ["webp", "jpeg"]
    assert config.breakpoints == [320, 640]
    assert config.quality_for("webp") == 60
    assert config.lqip == "css"
    assert op.PRESETS["web"].formats == ["avif", "webp", "jpeg"]
    assert op.PRESETS["web"].qualities["webp"] == 80


def test_resolve_preset_platform(tmp_path: Path) -> None:
    """A platform sets width, formats and quality for each of its formats."""
    config = op.resolve_preset("social", op.OptimizeFlags(platform="Twitter"), tmp_path)

    assert config.max_width == 1200
    assert config.formats == ["jpeg", "webp"]
    assert config.quality_for("jpeg") == 85
    assert config.quality_for("webp") == 85


def test_resolve_preset_rejects_unknown(tmp_path: Path) -> None:
    """Unknown platforms and formats are errors."""
    with pytest.raises(ValueError, match="Unknown platform"):
        op.resolve_preset("web", op.OptimizeFlags(platform="myspace"), tmp_path)
    with pytest.raises(ValueError, match="Unknown format"):
        op.resolve_preset("web", op.OptimizeFlags(formats="bmp"), tmp_path)


def test_load_platforms_merges_custom_file(tmp_path: Path) -> None:
    """Entries in platforms.json override built-ins; invalid entries are skipped."""
    (tmp_path / "platforms.json").write_text(
        json.dumps(
            {
                "Twitter": {
                    "name": "X",
                    "maxWidth": 1600,
                    "maxHeight": 900,
                    "formats": ["webp"],
                    "quality": 70,
                },
                "mastodon": {
                    "name": "Mastodon",
                    "maxWidth": 1280,
                    "maxHeight": 1280,
                    "formats": ["jpeg"],
                    "quality": 82,
                },
                "broken": {"name": "Broken"},
            },
        ),
        encoding="utf-8",
    )

    platforms = op.load_platforms(tmp_path)

    assert platforms["twitter"].max_width == 1600
    assert platforms["mastodon"].quality == 82
    assert "broken" not in platforms
    assert platforms["youtube"] == op.DEFAULT_PLATFORMS["youtube"]


def test_load_platforms_ignores_invalid_json(tmp_path: Path) -> None:
    """An unreadable file leaves the built-ins in place."""
    (tmp_path / "platforms.json").write_text("{not json", encoding="utf-8")

    assert op.load_platforms(tmp_path) == op.DEFAULT_PLATFORMS


def test_optimize_image_writes_variants(tmp_path: Path) -> None:
    """Breakpoints wider than the source are skipped; each format gets a full-size file."""
    source = _photo(tmp_path / "hero.jpg")
    out_dir = tmp_path / "out"
    preset = op.resolve_preset(
        "web", op.OptimizeFlags(formats="webp,jpeg", breakpoints="320,640,960", lqip="css"),
    )

    result = op.optimize_image(source, out_dir, preset, html=True)

    names = sorted(Path(v.path).name for v in result.variants)
    assert names == [
        "hero-320w.jpg",
        "hero-320w.webp",
        "hero-640w.jpg",
        "hero-640w.webp",
        "hero.jpg",
        "hero.webp",
    ]
    assert all(Path(v.path).is_file() for v in result.variants)
    widths = {Path(v.path).name: v.width for v in result.variants}
    assert widths["hero-320w.webp"] == 320
    assert widths["hero.webp"] == 800
    assert result.skipped_formats == []
    assert result.lqip is not None
    assert result.lqip.type == "css"
    assert (out_dir / "hero-lqip.txt").read_text(encoding="utf-8").startswith("background:rgb(")

    manifest = json.loads((out_dir / "hero-manifest.json").read_text(encoding="utf-8"))
    assert manifest["preset"] == "web"
    assert len(manifest["variants"]) == 6

    html = (out_dir / "hero.html").read_text(encoding="utf-8")
    assert html.index('type="image/webp"') < html.index("<img")
    assert 'src="hero.jpg"' in html
    assert 'style="background:rgb(' in html


def test_optimize_image_caps_at_max_width(tmp_path: Path) -> None:
    """The full-size variant is limited to the preset max width."""
    source = _photo(tmp_path / "wide.png", (1000, 500), "PNG")
    preset = op.resolve_preset("custom", op.OptimizeFlags(formats="jpeg", max_width=400))

    result = op.optimize_image(source, tmp_path / "out", preset)

    assert [(v.width, v.height) for v in result.variants] == [(400, 200)]
    assert result.lqip is None


@pytest.mark.parametrize("kind", ["css", "svg", "blurhash", "micro"])
def test_generate_lqip(tmp_path: Path, kind: str) -> None:
    """Every placeholder kind produces a non-empty value."""
    img = Image.new("RGB", (64, 32), (10, 20, 30))

    lqip = op.generate_lqip(img, kind, tmp_path, "pic")  # type: ignore[arg-type]

    assert lqip is not None
    assert lqip.value
    if kind == "css":
        assert lqip.value == "background:rgb(10,20,30)"
    if kind == "svg":
        assert lqip.value.startswith("data:image/svg+xml;base64,")
    if kind == "blurhash":
        assert len(lqip.value) == 28
    if kind == "micro":
        assert (tmp_path / "pic-lqip.webp").is_file()
        assert lqip.value.startswith("data:image/webp;base64,")


def test_audit_image_thresholds(tmp_path: Path) -> None:
    """Load time over 2.5 s is critical and over 1 s a warning."""
    path = _photo(tmp_path / "photo.jpg", (100, 80))

    critical = op.audit_image(path, _bandwidth_for(path, 3.0))
    warning = op.audit_image(path, _bandwidth_for(path, 2.0))
    ok = op.audit_image(path, _bandwidth_for(path, 0.5))

    assert critical.status == "critical"
    assert "Image too large for target LCP threshold" in critical.suggestions
    assert warning.status == "warning"
    assert ok.status == "ok"


def test_audit_image_suggestions(tmp_path: Path) -> None:
    """PNG gets an AVIF suggestion, wide images a resize and plain names srcset variants."""
    path = _photo(tmp_path / "banner.png", (2400, 100), "PNG")

    audit = op.audit_image(path)

    assert audit.format == "PNG"
    assert "Convert to AVIF (est. 90% smaller)" in audit.suggestions
    assert "Resize from 2400px to 1920px max width" in audit.suggestions
    assert "Add responsive srcset variants" in audit.suggestions
    assert audit.estimated_optimized_size is not None
    assert audit.estimated_optimized_size < audit.file_size


def test_audit_image_responsive_name(tmp_path: Path) -> None:
    """Files already named like responsive variants are not asked for srcset."""
    path = _photo(tmp_path / "hero-640w.jpg", (64, 48))

    audit = op.audit_image(path)

    assert "Add responsive srcset variants" not in audit.suggestions


def test_build_audit_report_counts(tmp_path: Path) -> None:
    """The report tallies statuses and potential savings."""
    small = _photo(tmp_path / "a.jpg", (64, 48))
    audits = [op.audit_image(small), op.audit_image(small, _bandwidth_for(small, 3.0))]

    report = op.build_audit_report(audits)

    assert report.total_files == 2
    assert report.ok == 1
    assert report.critical == 1
    assert report.potential_savings > 0
    assert "# Image Optimization Report" in op.markdown_report(tmp_path, report)
