"""Text-to-image models, job definitions and automatic model choice."""

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from uhd_skills.common import CamelModel


ModelId = Literal["seedream", "banana"]
ModelChoice = Literal["auto", "seedream", "banana"]
OutputFormat = Literal["png", "jpeg", "webp"]


class ModelConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: ModelId
    endpoint: str
    display_name: str
    max_images: int
    cost_per_image: float
    cost_per_image_4k: float | None = None
    web_search_cost: float | None = None


MODELS: dict[str, ModelConfig] = {
    "seedream": ModelConfig(
        id="seedream",
        endpoint="fal-ai/bytedance/seedream/v4.5/text-to-image",
        display_name="Seedream v4.5",
        max_images=6,
        cost_per_image=0.04,
    ),
    "banana": ModelConfig(
        id="banana",
        endpoint="fal-ai/nano-banana-pro",
        display_name="Nano Banana Pro",
        max_images=4,
        cost_per_image=0.15,
        cost_per_image_4k=0.30,
        web_search_cost=0.015,
    ),
}

# Prompts asking for rendered text go to Banana.
TEXT_CUES = (
    "text",
    "typography",
    "infographic",
    "badge",
    "poster",
    "logo with text",
    "lettering",
    "font",
    "headline",
    "title card",
    "sign",
    "label",
    "caption",
    "diagram",
    "chart",
)
QUOTED_PATTERN = re.compile(r"'[^']{2,}'|\"[^\"]{2,}\"")


class JobDefinition(CamelModel):
    prompt: str
    model: ModelId
    num_images: int = 1
    name: str | None = None
    image_size: str = "auto_2K"
    resolution: str = "2K"
    aspect_ratio: str = "auto"
    enable_web_search: bool = False
    output_format: OutputFormat = "png"
    seed: int | None = None

    @property
    def config(self) -> ModelConfig:
        return MODELS[self.model]

    def params(self) -> dict[str, Any]:
        """Generation parameters recorded in session metadata for later refinement."""
        params: dict[str, Any] = {
            "imageSize": self.image_size,
            "resolution": self.resolution,
            "aspectRatio": self.aspect_ratio,
            "outputFormat": self.output_format,
        }
        if self.enable_web_search:
            params["enableWebSearch"] = True
        if self.seed is not None:
            params["seed"] = self.seed
        return params


def auto_select_model(prompt: str) -> ModelId:
    """
    Pick Banana for prompts that need legible text, Seedream otherwise.

    Examples:
        >>> auto_select_model('A badge that says "AI Summit"')
        'banana'
        >>> auto_select_model("A white kitten in a teacup")
        'seedream'

    """
    if QUOTED_PATTERN.search(prompt):
        return "banana"
    lower = prompt.lower()
    if any(cue in lower for cue in TEXT_CUES):
        return "banana"
    return "seedream"


def resolve_model(choice: str, prompt: str) -> ModelId:
    if choice == "auto":
        return auto_select_model(prompt)
    if choice not in MODELS:
        msg = f"Unknown model '{choice}'. Available: auto, {', '.join(MODELS)}"
        raise ValueError(msg)
    return choice  # type: ignore[return-value]


def build_input(job: JobDefinition) -> dict[str, Any]:
    """fal.ai request payload for a job."""
    if job.model == "seedream":
        payload: dict[str, Any] = {
            "prompt": job.prompt,
            "image_size": job.image_size,
            "num_images": job.num_images,
        }
    else:
        payload = {
            "prompt": job.prompt,
            "resolution": job.resolution,
            "aspect_ratio": job.aspect_ratio,
            "num_images": job.num_images,
            "output_format": job.output_format,
            "enable_web_search": job.enable_web_search,
        }
    if job.seed is not None:
        payload["seed"] = job.seed
    return payload
