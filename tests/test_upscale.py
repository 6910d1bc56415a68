"""Tests for upscale model selection and request payloads."""

from pathlib import Path

import pytest
from PIL import Image

import uhd_skills.upscale as up


@pytest.mark.parametrize(
    ("filename", "expected"),
    [
        ("midjourney-castle.png", "aura-sr"),
        ("gen-042.png", "aura-sr"),
        ("SD-portrait.jpg", "aura-sr"),
        ("holiday.jpg", "clarity"),
    ],
)
def test_resolve_model_auto(filename: str, expected: str) -> None:
    """Files that look AI-generated go to Aura SR, everything else to Clarity."""
    assert up.resolve_model("auto", Path(filename)) == expected


def test_resolve_model_explicit() -> None:
    """An explicit model is used as given."""
    assert up.resolve_model("real-esrgan", Path("gen-1.png")) == "real-esrgan"


def test_build_payload(tmp_path: Path) -> None:
    """The image is inlined as a data URI; only the creative model gets a prompt."""
    source = tmp_path / "in.png"
    Image.new("RGB", (2, 2)).save(source)

    plain = up.build_payload("clarity", source, 4, 0.5)
    creative = up.build_payload("creative", source, 2, 0.3)

    assert str(plain["image_url"]).startswith("data:image/png;base64,")
    assert plain["scale"] == 4
    assert "prompt" not in plain
    assert creative["creativity"] == 0.3
    assert creative["prompt"] == up.CREATIVE_PROMPT


def test_aura_sr_has_no_4x() -> None:
    """Aura SR is the only model limited to 2x."""
    assert [m.id for m in up.MODELS.values() if not m.supports_4x] == ["aura-sr"]


def test_extension_for() -> None:
    """JPEG output uses the .jpg extension."""
    assert up.extension_for("jpeg") == ".jpg"
    assert up.extension_for("webp") == ".webp"
