"""Output file names derived from prompts."""

import re
from pathlib import Path


STOP_WORDS = frozenset(
    {
        "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "from", "is", "are", "was", "were", "be", "been",
        "being", "have", "has", "had", "do", "does", "did", "will", "would",
        "could", "should", "may", "might", "shall", "can", "it", "its", "this",
        "that", "these", "those", "very", "just", "also",
    },
)
MAX_SLUG_WORDS = 7
MAX_SLUG_LENGTH = 50


def slugify_prompt(prompt: str) -> str:
    """
    Short file-name slug from the first significant words of a prompt.

    Examples:
        >>> slugify_prompt("A white kitten sitting in a teacup, studio lighting")
        'white-kitten-sitting-teacup-studio-lighting'
        >>> slugify_prompt("the of and")
        'image'

    """
    cleaned = re.sub(r"[^a-z0-9\s]", " ", prompt.lower())
    words = [w for w in cleaned.split() if w not in STOP_WORDS]
    slug = "-".join(words[:MAX_SLUG_WORDS])[:MAX_SLUG_LENGTH].rstrip("-")
    return slug or "image"


def generate_filenames(
    base_name: str,
    num_images: int,
    fmt: str,
    out_dir: Path,
    reserved: set[str] | None = None,
) -> list[str]:
    """
    File names for a job's images.

    Multi-image jobs get ``-1``, ``-2``... suffixes; names already present in ``out_dir``
    or in ``reserved`` get a further ``-k`` collision counter. Chosen names are added to
    ``reserved`` so concurrent jobs sharing the set never pick the same file.
    """
    taken = reserved if reserved is not None else set()
    names: list[str] = []
    for i in range(num_images):
        suffix = f"-{i + 1}" if num_images > 1 else ""
        candidate = f"{base_name}{suffix}.{fmt}"
        counter = 1
        while (out_dir / candidate).exists() or candidate in taken:
            candidate = f"{base_name}{suffix}-{counter}.{fmt}"
            counter += 1
        taken.add(candidate)
        names.append(candidate)
    return names
